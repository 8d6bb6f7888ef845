"""
Entity models shared by both backends.

These are the write-side shapes handed to adapters. Both adapters accept
the same models and return plain dict rows in the same logical shape, so
callers never see which physical representation answered.
"""

from __future__ import annotations

import secrets
import string
from datetime import UTC, date, datetime
from datetime import time as time_of_day
from typing import Any
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, model_validator

from concertdb.types import UserRole

REFERRAL_CODE_LENGTH = 8
_REFERRAL_ALPHABET = string.ascii_uppercase + string.digits


def new_id() -> str:
    """Generate a string id usable as a primary key on both backends."""
    return str(uuid4())


def generate_referral_code(length: int = REFERRAL_CODE_LENGTH) -> str:
    """Generate a random upper-case referral code."""
    return "".join(secrets.choice(_REFERRAL_ALPHABET) for _ in range(length))


def _utcnow() -> datetime:
    return datetime.now(UTC)


class FanDetails(BaseModel):
    """Fan-specific part of a user."""

    model_config = ConfigDict(frozen=True)

    username: str
    preferred_genre: str | None = None
    phone_number: str | None = None
    referral_code: str = Field(default_factory=generate_referral_code)
    referral_points: int = Field(default=0, ge=0)
    referral_code_used: bool = False
    referred_by: str | None = None


class OrganizerDetails(BaseModel):
    """Organizer-specific part of a user."""

    model_config = ConfigDict(frozen=True)

    organization_name: str
    contact_info: str | None = None


class User(BaseModel):
    """
    Identity record for fans, organizers and admins.

    Exactly one role-specific sub-record may be attached: ``fan_details`` for
    fans, ``organizer_details`` for organizers, neither for admins.

    Example:
        >>> fan = User(
        ...     email="ana@example.com",
        ...     user_password="$2b$12$...",
        ...     first_name="Ana",
        ...     last_name="Silva",
        ...     fan_details=FanDetails(username="ana"),
        ... )
        >>> fan.user_type
        <UserRole.FAN: 'fan'>
    """

    model_config = ConfigDict(frozen=True)

    user_id: str = Field(default_factory=new_id)
    email: str
    user_password: str
    first_name: str
    last_name: str
    registration_date: datetime = Field(default_factory=_utcnow)
    last_login: datetime | None = None
    user_type: UserRole = UserRole.FAN
    fan_details: FanDetails | None = None
    organizer_details: OrganizerDetails | None = None

    @model_validator(mode="after")
    def _check_role_details(self) -> User:
        if self.fan_details is not None and self.organizer_details is not None:
            raise ValueError("a user carries fan_details or organizer_details, not both")
        if self.user_type == UserRole.ADMIN and (self.fan_details or self.organizer_details):
            raise ValueError("admin users carry no role details")
        if self.user_type == UserRole.FAN and self.organizer_details is not None:
            raise ValueError("fans cannot carry organizer_details")
        if self.user_type == UserRole.ORGANIZER and self.fan_details is not None:
            raise ValueError("organizers cannot carry fan_details")
        return self


class Artist(BaseModel):
    model_config = ConfigDict(frozen=True)

    artist_id: str = Field(default_factory=new_id)
    artist_name: str
    genre: str | None = None


class ArtistSnapshot(BaseModel):
    """Artist fields embedded in a concert at creation time."""

    model_config = ConfigDict(frozen=True)

    artist_id: str
    artist_name: str | None = None
    genre: str | None = None


class Zone(BaseModel):
    """A seating zone owned by an arena."""

    model_config = ConfigDict(frozen=True)

    zone_name: str
    capacity_per_zone: int = Field(ge=0)


class Arena(BaseModel):
    model_config = ConfigDict(frozen=True)

    arena_id: str = Field(default_factory=new_id)
    arena_name: str
    arena_location: str | None = None
    total_capacity: int = Field(ge=0)
    zones: list[Zone] = Field(default_factory=list)


class ZonePrice(BaseModel):
    """Price charged for one zone at one concert."""

    model_config = ConfigDict(frozen=True)

    zone_name: str
    price: float = Field(ge=0)


class Concert(BaseModel):
    """
    A concert held at an arena by an organizer.

    ``artists`` accepts bare artist ids or artist snapshots. The relational
    backend only keeps the ids; the document backend embeds snapshots,
    resolving bare ids at write time.
    """

    model_config = ConfigDict(frozen=True)

    concert_id: str = Field(default_factory=new_id)
    concert_date: date
    time: time_of_day
    description: str | None = None
    organizer_id: str
    arena_id: str
    artists: list[str | ArtistSnapshot] = Field(default_factory=list)
    zone_pricing: list[ZonePrice] = Field(default_factory=list)

    @property
    def artist_ids(self) -> list[str]:
        return [a if isinstance(a, str) else a.artist_id for a in self.artists]


class Ticket(BaseModel):
    model_config = ConfigDict(frozen=True)

    ticket_id: str = Field(default_factory=new_id)
    fan_id: str
    concert_id: str
    arena_id: str
    zone_name: str
    purchase_date: datetime = Field(default_factory=_utcnow)
    purchase_price: float | None = Field(default=None, ge=0)
    referral_code_used: bool = False


class DatabaseStats(BaseModel):
    """Entity counts reported by an adapter."""

    model_config = ConfigDict(frozen=True)

    users: int = 0
    artists: int = 0
    arenas: int = 0
    concerts: int = 0
    tickets: int = 0

    def as_dict(self) -> dict[str, Any]:
        return self.model_dump()


class OrganizerStats(BaseModel):
    """
    Sales overview for one organizer's concerts.

    Revenue is counted at zone list price. Average attendance is tickets
    sold per concert, rounded to two decimals.
    """

    model_config = ConfigDict(frozen=True)

    total_concerts: int = 0
    upcoming_concerts: int = 0
    total_tickets_sold: int = 0
    total_revenue: float = 0.0
    average_attendance: float = 0.0

    @classmethod
    def from_totals(
        cls, total_concerts: int, upcoming_concerts: int, tickets_sold: int, revenue: float
    ) -> OrganizerStats:
        average = round(tickets_sold / total_concerts, 2) if total_concerts else 0.0
        return cls(
            total_concerts=total_concerts,
            upcoming_concerts=upcoming_concerts,
            total_tickets_sold=tickets_sold,
            total_revenue=float(revenue),
            average_attendance=average,
        )


__all__ = [
    "FanDetails",
    "OrganizerDetails",
    "User",
    "Artist",
    "ArtistSnapshot",
    "Zone",
    "Arena",
    "ZonePrice",
    "Concert",
    "Ticket",
    "DatabaseStats",
    "OrganizerStats",
    "new_id",
    "generate_referral_code",
    "REFERRAL_CODE_LENGTH",
]
