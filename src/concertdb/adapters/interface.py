"""
Database adapter interface and result envelope.

Every business operation goes through a DatabaseAdapter obtained from the
AdapterFactory. Two implementations exist, one per backend, and both return
rows in the same logical shape:

- users carry ``user_type`` and an embedded ``fan_details`` or
  ``organizer_details`` dict (admins carry neither)
- arenas carry a ``zones`` list
- concerts carry ``artists`` and ``zone_pricing`` lists and an ``arena``
  object resolved from the arena they are held at
- tickets carry ``fan_username``, ``concert_date`` and ``price``
- every row exposes its id as ``<entity>_id``

This module provides:
- QueryResult: uniform envelope for adapter reads and writes
- DatabaseAdapter: abstract base class for backend implementations
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Iterator, Sequence
from dataclasses import dataclass, field
from datetime import UTC, date, datetime
from typing import Any

from concertdb.models import Arena, Artist, Concert, DatabaseStats, OrganizerStats, Ticket, User
from concertdb.types import DatabaseType, Row

# Identity fields callers may change through update_user
UPDATABLE_USER_FIELDS = frozenset(
    {"email", "user_password", "first_name", "last_name", "last_login"}
)


def today() -> date:
    """Current UTC date, the default cut-off for upcoming concerts."""
    return datetime.now(UTC).date()


@dataclass(frozen=True)
class QueryResult:
    """
    Envelope returned by adapter operations.

    Lookups by id return zero or one row; "not found" is an empty result,
    never None and never an exception.

    Attributes:
        rows: Shaped rows in backend-independent form

    Example:
        >>> result = await adapter.get_user_by_id(user_id)
        >>> if result.is_empty:
        ...     raise NotFoundError("User", user_id)
        >>> user = result.first
    """

    rows: list[Row] = field(default_factory=list)

    @classmethod
    def empty(cls) -> QueryResult:
        return cls(rows=[])

    @classmethod
    def of(cls, rows: Sequence[Row]) -> QueryResult:
        return cls(rows=list(rows))

    @property
    def first(self) -> Row | None:
        return self.rows[0] if self.rows else None

    @property
    def is_empty(self) -> bool:
        return not self.rows

    def __len__(self) -> int:
        return len(self.rows)

    def __iter__(self) -> Iterator[Row]:
        return iter(self.rows)


class DatabaseAdapter(ABC):
    """
    Abstract base class for backend-specific data access.

    Implementations keep all entity shaping (SQL JSON aggregation on one side,
    embedded arrays on the other) inside themselves; callers only ever use
    the methods below.

    Concrete implementations:
    - RelationalAdapter: PostgreSQL through SQLAlchemy
    - DocumentAdapter: MongoDB through motor

    Writes take effect immediately. There is no transaction spanning several
    adapter calls; ``create_concert`` (and ``create_user``) are the only
    multi-row writes, and only the relational backend makes them atomic.

    Example:
        >>> adapter = factory.get_adapter()
        >>> concerts = await adapter.get_concerts()
        >>> for concert in concerts:
        ...     print(concert["concert_id"], concert["arena"]["arena_name"])
    """

    @property
    @abstractmethod
    def database_type(self) -> DatabaseType:
        """Backend this adapter talks to."""
        pass

    # ------------------------------------------------------------------
    # Users
    # ------------------------------------------------------------------

    @abstractmethod
    async def get_users(self) -> QueryResult:
        """All users, newest registration first, with role details attached."""
        pass

    @abstractmethod
    async def get_user_by_id(self, user_id: str) -> QueryResult:
        pass

    @abstractmethod
    async def get_user_by_email(self, email: str) -> QueryResult:
        pass

    @abstractmethod
    async def create_user(self, user: User) -> QueryResult:
        """
        Persist a user together with its role details.

        Args:
            user: The user; ``fan_details`` / ``organizer_details`` are
                written alongside it

        Returns:
            QueryResult holding the created user as it reads back
        """
        pass

    @abstractmethod
    async def update_user(self, user_id: str, updates: dict[str, Any]) -> QueryResult:
        """
        Update top-level user fields.

        Args:
            user_id: User to update
            updates: Field name to new value; only identity fields (email,
                names, password hash, last_login) are accepted

        Returns:
            QueryResult holding the updated user, empty if it does not exist

        Raises:
            ValueError: If ``updates`` names a field that cannot be updated
        """
        pass

    @abstractmethod
    async def delete_user(self, user_id: str) -> QueryResult:
        """Delete a user; the result holds the row as it was before deletion."""
        pass

    # ------------------------------------------------------------------
    # Artists and arenas
    # ------------------------------------------------------------------

    @abstractmethod
    async def get_artists(self) -> QueryResult:
        pass

    @abstractmethod
    async def get_artist_by_id(self, artist_id: str) -> QueryResult:
        pass

    @abstractmethod
    async def create_artist(self, artist: Artist) -> QueryResult:
        pass

    @abstractmethod
    async def get_arenas(self) -> QueryResult:
        pass

    @abstractmethod
    async def get_arena_by_id(self, arena_id: str) -> QueryResult:
        pass

    @abstractmethod
    async def create_arena(self, arena: Arena) -> QueryResult:
        """Persist an arena and its zones."""
        pass

    # ------------------------------------------------------------------
    # Concerts
    # ------------------------------------------------------------------

    @abstractmethod
    async def get_concerts(self) -> QueryResult:
        """
        All concerts, latest date first.

        Each row carries an ``arena`` object (``arena_id``, ``arena_name``,
        ``arena_location``, ``capacity``; None if the arena is missing) plus
        ``artists`` and ``zone_pricing`` lists.
        """
        pass

    @abstractmethod
    async def get_concert_by_id(self, concert_id: str) -> QueryResult:
        pass

    @abstractmethod
    async def get_concerts_by_organizer(self, organizer_id: str) -> QueryResult:
        pass

    @abstractmethod
    async def create_concert(self, concert: Concert) -> QueryResult:
        """
        Persist a concert with its artists and zone pricing.

        The relational backend writes the concert, pricing rows and artist
        links in one transaction and raises TransactionFailureError after
        rolling back if any of them fails. The document backend resolves
        artist ids to snapshots first and then writes a single document.

        Args:
            concert: Concert to create

        Returns:
            QueryResult holding the created concert row

        Raises:
            TransactionFailureError: Relational write failed and was rolled back
        """
        pass

    # ------------------------------------------------------------------
    # Tickets
    # ------------------------------------------------------------------

    @abstractmethod
    async def get_tickets(self) -> QueryResult:
        pass

    @abstractmethod
    async def get_ticket_by_id(self, ticket_id: str) -> QueryResult:
        pass

    @abstractmethod
    async def create_ticket(self, ticket: Ticket) -> QueryResult:
        pass

    @abstractmethod
    async def get_tickets_by_user_id(self, user_id: str) -> QueryResult:
        pass

    @abstractmethod
    async def get_tickets_by_concert_and_zone(self, concert_id: str, zone_name: str) -> QueryResult:
        pass

    # ------------------------------------------------------------------
    # Aggregates
    # ------------------------------------------------------------------

    @abstractmethod
    async def get_stats(self) -> DatabaseStats:
        """Entity counts for users, artists, arenas, concerts and tickets."""
        pass

    @abstractmethod
    async def get_concert_ticket_summary(self, concert_id: str) -> QueryResult:
        """
        Per-zone sales for one concert.

        Returns:
            One row per zone with ``zone_name``, ``tickets_sold``, ``revenue``
            and ``referral_tickets``, ordered by zone name
        """
        pass

    @abstractmethod
    async def get_organizer_stats(
        self, organizer_id: str, *, as_of: date | None = None
    ) -> OrganizerStats:
        """
        Concert and sales totals for one organizer.

        Args:
            organizer_id: Organizer whose concerts are counted
            as_of: Day that concerts must be after to count as upcoming
                (defaults to today, UTC)
        """
        pass

    @abstractmethod
    async def get_arena_analytics(self, organizer_id: str) -> QueryResult:
        """
        Per-zone sales in every arena where the organizer holds concerts.

        Returns:
            One row per arena, ordered by arena name, with ``arena_id``,
            ``arena_name``, ``arena_location``, ``total_capacity`` and a
            ``zones`` list. Each zone carries ``zone_name``,
            ``capacity_per_zone``, ``tickets_sold`` and ``revenue`` counted
            over this organizer's concerts only.
        """
        pass

    @abstractmethod
    async def get_upcoming_concerts_performance(
        self, *, as_of: date | None = None
    ) -> QueryResult:
        """
        Sales of every concert on or after ``as_of`` (defaults to today, UTC).

        Returns:
            One row per concert with ``concert_id``, ``concert_date``,
            ``description``, ``arena_name``, ``artist_names`` (sorted),
            ``tickets_sold`` and ``total_revenue``; best sellers first
        """
        pass

    # ------------------------------------------------------------------
    # Referrals
    # ------------------------------------------------------------------

    @abstractmethod
    async def get_user_by_referral_code(self, referral_code: str) -> QueryResult:
        pass

    @abstractmethod
    async def update_user_referral_points(self, user_id: str, delta: int) -> QueryResult:
        """
        Adjust a fan's referral balance by a signed delta.

        The adjustment is a single atomic increment on the backend, so
        concurrent awards and redemptions never lose updates. The balance
        never goes below zero: a deduction larger than the current balance
        changes nothing.

        Args:
            user_id: Fan whose balance changes
            delta: Points to add (negative to deduct)

        Returns:
            QueryResult holding the updated user, or an empty result if the
            user is not a fan or the balance is too small for the deduction
        """
        pass

    @abstractmethod
    async def mark_referral_code_used(self, fan_id: str) -> QueryResult:
        pass

    @abstractmethod
    async def claim_referral_code(self, fan_id: str) -> bool:
        """
        Atomically flip ``referral_code_used`` from False to True.

        Returns:
            True if this call performed the flip, False if the fan had
            already used a referral code (or does not exist)
        """
        pass

    @abstractmethod
    async def update_fan_referrer(self, fan_id: str, referrer_id: str) -> QueryResult:
        pass

    @abstractmethod
    async def get_users_referred_by(self, fan_id: str) -> QueryResult:
        pass

    @abstractmethod
    async def get_tickets_from_referrals(self, fan_id: str) -> QueryResult:
        """Tickets bought with a referral code by fans this fan referred."""
        pass

    # ------------------------------------------------------------------
    # Escape hatch and health
    # ------------------------------------------------------------------

    @abstractmethod
    async def query(self, sql: str, params: dict[str, Any] | None = None) -> QueryResult:
        """
        Run a raw parameterized query.

        Only the relational backend supports this. Code that must work on
        both backends cannot use it.

        Raises:
            UnsupportedOperationError: Always, on the document backend
        """
        pass

    @abstractmethod
    async def health_check(self) -> bool:
        pass


__all__ = ["QueryResult", "DatabaseAdapter", "UPDATABLE_USER_FIELDS", "today"]
