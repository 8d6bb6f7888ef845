"""Business services built on the adapter factory."""

from concertdb.services.admin import AdminService, BackendHealth, SystemStatus
from concertdb.services.referrals import (
    PointsConversion,
    ReferralService,
    ReferralStats,
    ReferralValidation,
    ReferrerInfo,
)
from concertdb.services.tickets import PurchaseResult, TicketService

__all__ = [
    "AdminService",
    "BackendHealth",
    "SystemStatus",
    "ReferralService",
    "ReferralValidation",
    "ReferrerInfo",
    "ReferralStats",
    "PointsConversion",
    "TicketService",
    "PurchaseResult",
]
