"""
Ticket purchase.

A purchase checks the fan, the zone price and the remaining capacity. It
then applies an optional referral discount, writes one ticket per seat and
pays the referrer.

By default the referral code is validated first and marked used after the
tickets are written. Two concurrent purchases by the same fan can therefore
both redeem a code. With ``exactly_once_referrals=True`` the code is claimed
with a compare-and-swap before any ticket is written, and a lost claim means
the purchase gets no discount.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from concertdb.exceptions import NotFoundError, PurchaseError
from concertdb.models import Ticket
from concertdb.observability import ATTR_ENTITY_ID, ATTR_FAN_ID, Tracer, create_tracer
from concertdb.services.referrals import (
    ALREADY_USED_MESSAGE,
    POINTS_PER_TICKET,
    ReferralService,
    ReferralValidation,
)
from concertdb.types import DatabaseType, Row, UserRole

if TYPE_CHECKING:
    from concertdb.adapters import DatabaseAdapter
    from concertdb.factory import AdapterFactory

logger = logging.getLogger(__name__)

MIN_TICKETS_PER_PURCHASE = 1
MAX_TICKETS_PER_PURCHASE = 10


@dataclass(frozen=True)
class PurchaseResult:
    """
    Outcome of a successful purchase.

    Attributes:
        tickets: Ticket rows as written
        total_amount: Amount charged for all tickets
        discount_applied: Amount saved through the referral discount
        discount_percentage: Discount percentage applied per ticket
        referral_message: Why a supplied referral code was not applied
        database_type: Backend that stored the tickets
    """

    tickets: list[Row]
    total_amount: float
    discount_applied: float
    discount_percentage: int
    database_type: DatabaseType
    referral_message: str | None = None
    referrer_id: str | None = None
    points_awarded: int = 0
    ticket_ids: list[str] = field(default_factory=list)


class TicketService:
    """
    Sells tickets through the active adapter.

    Args:
        factory: Factory handing out the active adapter
        referrals: Referral rules (built from the factory if omitted)
        exactly_once_referrals: Claim referral codes atomically before
            writing tickets
        tracer: Optional custom Tracer
        enable_tracing: If True and OpenTelemetry is available, emit traces
    """

    def __init__(
        self,
        factory: AdapterFactory,
        *,
        referrals: ReferralService | None = None,
        exactly_once_referrals: bool = False,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        self._factory = factory
        self._referrals = referrals or ReferralService(factory)
        self._exactly_once = exactly_once_referrals
        self._tracer = tracer or create_tracer(__name__, enable_tracing)

    @property
    def adapter(self) -> DatabaseAdapter:
        return self._factory.get_adapter()

    async def get_available_tickets(self, concert: Row, zone_name: str) -> int:
        """Zone capacity at the concert's arena minus tickets already sold."""
        arena = (await self.adapter.get_arena_by_id(concert["arena_id"])).first
        capacity = 0
        for zone in (arena or {}).get("zones", []):
            if zone["zone_name"] == zone_name:
                capacity = zone["capacity_per_zone"]
                break
        sold = await self.adapter.get_tickets_by_concert_and_zone(concert["concert_id"], zone_name)
        return max(capacity - len(sold), 0)

    async def _redeem(self, fan_id: str, referral_code: str | None) -> ReferralValidation | None:
        if not referral_code:
            return None
        validation = await self._referrals.validate_referral_code(fan_id, referral_code)
        if not validation.valid:
            logger.info(f"Referral code not applied for {fan_id}: {validation.message}")
            return validation
        if self._exactly_once and not await self.adapter.claim_referral_code(fan_id):
            logger.warning(f"Referral code for {fan_id} was claimed concurrently")
            return ReferralValidation.rejected(ALREADY_USED_MESSAGE)
        return validation

    async def purchase_tickets(
        self,
        fan_id: str,
        concert_id: str,
        zone_name: str,
        quantity: int,
        referral_code: str | None = None,
    ) -> PurchaseResult:
        """
        Buy ``quantity`` tickets for one zone of a concert.

        An invalid referral code does not fail the purchase; the tickets are
        sold at full price and ``referral_message`` says why.

        Raises:
            NotFoundError: If the fan or concert does not exist
            PurchaseError: If the quantity is out of range, the zone has no
                price at this concert, or not enough seats are left
        """
        with self._tracer.span(
            "concertdb.tickets.purchase", {ATTR_FAN_ID: fan_id, ATTR_ENTITY_ID: concert_id}
        ):
            return await self._purchase(fan_id, concert_id, zone_name, quantity, referral_code)

    async def _purchase(
        self,
        fan_id: str,
        concert_id: str,
        zone_name: str,
        quantity: int,
        referral_code: str | None,
    ) -> PurchaseResult:
        fan = (await self.adapter.get_user_by_id(fan_id)).first
        if fan is None or fan["user_type"] != UserRole.FAN.value:
            raise NotFoundError("Fan", fan_id)

        if not MIN_TICKETS_PER_PURCHASE <= quantity <= MAX_TICKETS_PER_PURCHASE:
            raise PurchaseError(
                f"Quantity must be between {MIN_TICKETS_PER_PURCHASE} and "
                f"{MAX_TICKETS_PER_PURCHASE} tickets"
            )

        concert = (await self.adapter.get_concert_by_id(concert_id)).first
        if concert is None:
            raise NotFoundError("Concert", concert_id)

        price = next(
            (z["price"] for z in concert["zone_pricing"] if z["zone_name"] == zone_name), None
        )
        if price is None:
            raise PurchaseError(f"Zone {zone_name} not found for this concert")

        available = await self.get_available_tickets(concert, zone_name)
        if available < quantity:
            raise PurchaseError(f"Only {available} tickets available in {zone_name}")

        validation = await self._redeem(fan_id, referral_code)
        redeemed = validation is not None and validation.valid
        discount = validation.discount if redeemed else 0
        unit_price = float(price) * (1 - discount / 100)

        tickets = []
        for _ in range(quantity):
            ticket = Ticket(
                fan_id=fan_id,
                concert_id=concert_id,
                arena_id=concert["arena_id"],
                zone_name=zone_name,
                purchase_price=round(unit_price, 2),
                referral_code_used=redeemed,
            )
            created = await self.adapter.create_ticket(ticket)
            tickets.extend(created.rows)

        referrer_id = None
        points = 0
        if redeemed and validation is not None and validation.referrer is not None:
            referrer_id = validation.referrer.id
            points = quantity * POINTS_PER_TICKET
            if self._exactly_once:
                await self.adapter.update_user_referral_points(referrer_id, points)
                await self.adapter.update_fan_referrer(fan_id, referrer_id)
            else:
                await self._referrals.reward_referrer(referrer_id, fan_id, quantity)

        total = unit_price * quantity
        logger.info(
            f"Fan {fan_id} bought {quantity} ticket(s) for {concert_id}/{zone_name}, "
            f"total {total:.2f} ({discount}% discount)"
        )
        return PurchaseResult(
            tickets=tickets,
            total_amount=round(total, 2),
            discount_applied=round(float(price) * quantity - total, 2),
            discount_percentage=discount,
            database_type=self._factory.get_current_database_type(),
            referral_message=None if redeemed or validation is None else validation.message,
            referrer_id=referrer_id,
            points_awarded=points,
            ticket_ids=[row["ticket_id"] for row in tickets],
        )

    async def get_fan_tickets(self, fan_id: str) -> list[Row]:
        return (await self.adapter.get_tickets_by_user_id(fan_id)).rows


__all__ = [
    "TicketService",
    "PurchaseResult",
    "MIN_TICKETS_PER_PURCHASE",
    "MAX_TICKETS_PER_PURCHASE",
]
