"""
Referral rules.

Each fan owns a referral code. Another fan may redeem it once, which gives
them a discount on the purchase and earns the code owner points per ticket.
Points can later be converted into a discount percentage.

All reads and writes go through the adapter the factory currently hands
out, so the rules behave identically on both backends.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from concertdb.exceptions import NotFoundError, ReferralError
from concertdb.types import Row, UserRole

if TYPE_CHECKING:
    from concertdb.adapters import DatabaseAdapter
    from concertdb.factory import AdapterFactory

logger = logging.getLogger(__name__)

REFERRAL_DISCOUNT_PERCENT = 10
POINTS_PER_TICKET = 5
MAX_POINTS_DISCOUNT_PERCENT = 50

ALREADY_USED_MESSAGE = "You have already used a referral code"
INVALID_CODE_MESSAGE = "Invalid referral code"
OWN_CODE_MESSAGE = "Cannot use your own referral code"


@dataclass(frozen=True)
class ReferrerInfo:
    """Public view of the fan who owns a referral code."""

    id: str
    username: str | None
    name: str


@dataclass(frozen=True)
class ReferralValidation:
    """
    Outcome of checking a referral code for a fan.

    Attributes:
        valid: Whether the fan may redeem the code
        message: Reason the code was rejected (None when valid)
        referrer: Owner of the code (set when valid)
        discount: Discount percentage the code grants (0 when invalid)
    """

    valid: bool
    message: str | None = None
    referrer: ReferrerInfo | None = None
    discount: int = 0

    @classmethod
    def rejected(cls, message: str) -> ReferralValidation:
        return cls(valid=False, message=message)

    @classmethod
    def accepted(cls, referrer: ReferrerInfo) -> ReferralValidation:
        return cls(valid=True, referrer=referrer, discount=REFERRAL_DISCOUNT_PERCENT)


@dataclass(frozen=True)
class PointsConversion:
    fan_id: str
    points_converted: int
    discount_percentage: int
    remaining_points: int


@dataclass(frozen=True)
class ReferralStats:
    """Referral summary for one fan."""

    fan_id: str
    referral_code: str | None
    referral_points: int
    referral_code_used: bool
    referred_by: str | None
    total_referrals: int
    tickets_from_referrals: int

    @property
    def points_earned(self) -> int:
        return self.tickets_from_referrals * POINTS_PER_TICKET

    @property
    def conversion_rate(self) -> float:
        if self.total_referrals == 0:
            return 0.0
        return round(self.tickets_from_referrals / self.total_referrals * 100, 1)


def fan_details_of(user: Row) -> dict[str, Any]:
    return user.get("fan_details") or {}


class ReferralService:
    """
    Validates, redeems and rewards referral codes.

    Args:
        factory: Factory handing out the active adapter

    Example:
        >>> referrals = ReferralService(factory)
        >>> result = await referrals.validate_referral_code("fan-2", "ABC123")
        >>> result.valid, result.discount
        (True, 10)
    """

    def __init__(self, factory: AdapterFactory) -> None:
        self._factory = factory

    @property
    def adapter(self) -> DatabaseAdapter:
        return self._factory.get_adapter()

    async def _get_fan(self, fan_id: str) -> Row:
        user = (await self.adapter.get_user_by_id(fan_id)).first
        if user is None or user["user_type"] != UserRole.FAN.value:
            raise NotFoundError("Fan", fan_id)
        return user

    async def validate_referral_code(self, fan_id: str, referral_code: str) -> ReferralValidation:
        """
        Check whether a fan may redeem a referral code.

        Rules, checked in order: the fan has not redeemed a code before, the
        code belongs to some fan, and that fan is not the one redeeming it.

        Raises:
            NotFoundError: If the fan does not exist
        """
        fan = (await self.adapter.get_user_by_id(fan_id)).first
        if fan is None:
            raise NotFoundError("Fan", fan_id)
        if fan_details_of(fan).get("referral_code_used"):
            return ReferralValidation.rejected(ALREADY_USED_MESSAGE)

        referrer = (await self.adapter.get_user_by_referral_code(referral_code)).first
        if referrer is None:
            return ReferralValidation.rejected(INVALID_CODE_MESSAGE)
        if referrer["user_id"] == fan_id:
            return ReferralValidation.rejected(OWN_CODE_MESSAGE)

        return ReferralValidation.accepted(
            ReferrerInfo(
                id=referrer["user_id"],
                username=fan_details_of(referrer).get("username"),
                name=f"{referrer['first_name']} {referrer['last_name']}",
            )
        )

    async def apply_referral_code(self, fan_id: str, referral_code: str) -> ReferralValidation:
        """
        Record who referred a fan without a purchase.

        Raises:
            ReferralError: If the code cannot be used by this fan
        """
        validation = await self.validate_referral_code(fan_id, referral_code)
        if not validation.valid or validation.referrer is None:
            raise ReferralError(validation.message or INVALID_CODE_MESSAGE)
        await self.adapter.update_fan_referrer(fan_id, validation.referrer.id)
        logger.info(f"Fan {fan_id} referred by {validation.referrer.id}")
        return validation

    async def award_referral_points(self, fan_id: str, points: int) -> int:
        """
        Add points to a fan's balance.

        Returns:
            The balance after the award

        Raises:
            ReferralError: If ``points`` is not positive
            NotFoundError: If the fan does not exist
        """
        if points <= 0:
            raise ReferralError("Points must be positive")
        await self._get_fan(fan_id)
        updated = (await self.adapter.update_user_referral_points(fan_id, points)).first
        total = fan_details_of(updated or {}).get("referral_points") or 0
        logger.info(f"Awarded {points} referral points to {fan_id}, balance {total}")
        return total

    async def convert_points_to_discount(self, fan_id: str, points: int) -> PointsConversion:
        """
        Spend points for a discount: one point per percent, capped at 50%.

        Every point requested is deducted, even above the cap.

        Raises:
            ReferralError: If ``points`` is not positive or exceeds the balance
            NotFoundError: If the fan does not exist
        """
        if points <= 0:
            raise ReferralError("Points to convert must be positive")
        fan = await self._get_fan(fan_id)
        balance = fan_details_of(fan).get("referral_points") or 0
        if balance < points:
            raise ReferralError(
                f"Insufficient points. You have {balance} points but tried to convert {points}"
            )

        # Spent concurrently since the read above
        updated = (await self.adapter.update_user_referral_points(fan_id, -points)).first
        if updated is None:
            raise ReferralError(
                f"Insufficient points. Your balance changed before {points} points "
                "could be converted"
            )

        discount = min(points, MAX_POINTS_DISCOUNT_PERCENT)
        logger.info(f"Fan {fan_id} converted {points} points to a {discount}% discount")
        return PointsConversion(
            fan_id=fan_id,
            points_converted=points,
            discount_percentage=discount,
            remaining_points=fan_details_of(updated).get("referral_points") or 0,
        )

    async def reward_referrer(self, referrer_id: str, fan_id: str, ticket_count: int) -> None:
        """
        Pay out a redeemed code: points to the referrer, the code marked as
        used and the referrer recorded on the fan.
        """
        points = ticket_count * POINTS_PER_TICKET
        await self.adapter.update_user_referral_points(referrer_id, points)
        await self.adapter.mark_referral_code_used(fan_id)
        await self.adapter.update_fan_referrer(fan_id, referrer_id)

    async def get_referral_stats(self, fan_id: str) -> ReferralStats:
        fan = await self._get_fan(fan_id)
        details = fan_details_of(fan)
        referred = await self.adapter.get_users_referred_by(fan_id)
        tickets = await self.adapter.get_tickets_from_referrals(fan_id)
        return ReferralStats(
            fan_id=fan_id,
            referral_code=details.get("referral_code"),
            referral_points=details.get("referral_points") or 0,
            referral_code_used=bool(details.get("referral_code_used")),
            referred_by=details.get("referred_by"),
            total_referrals=len(referred),
            tickets_from_referrals=len(tickets),
        )

    async def get_referrals(self, fan_id: str, *, limit: int = 10, offset: int = 0) -> list[Row]:
        """Fans referred by ``fan_id``, newest first, one page at a time."""
        referred = await self.adapter.get_users_referred_by(fan_id)
        return [
            {
                "id": user["user_id"],
                "username": fan_details_of(user).get("username"),
                "name": f"{user['first_name']} {user['last_name']}",
                "registration_date": user["registration_date"],
                "referral_code_used": bool(fan_details_of(user).get("referral_code_used")),
            }
            for user in referred.rows[offset : offset + limit]
        ]


__all__ = [
    "ReferralService",
    "ReferralValidation",
    "ReferrerInfo",
    "PointsConversion",
    "ReferralStats",
    "REFERRAL_DISCOUNT_PERCENT",
    "POINTS_PER_TICKET",
    "MAX_POINTS_DISCOUNT_PERCENT",
]
