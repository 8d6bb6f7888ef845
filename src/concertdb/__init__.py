"""
concertdb - Dual-database data layer for a concert ticketing backend.

This library provides:
- One DatabaseAdapter interface with PostgreSQL and MongoDB implementations
- A file-backed migration status that selects the active backend
- An AdapterFactory that hands out the adapter for the active backend
- A one-way migration from the relational store into the document store
- Referral, ticket purchase and admin services on top of the adapters
"""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("concertdb")
except PackageNotFoundError:
    # Package not installed (running from source without install)
    __version__ = "0.0.0.dev0"

# Adapters
from concertdb.adapters import (
    DatabaseAdapter,
    DocumentAdapter,
    QueryResult,
    RelationalAdapter,
)

# Configuration
from concertdb.config import MigrationConfig, MongoConfig, PostgresConfig, Settings

# Connections
from concertdb.connections import DocumentConnection, RelationalConnection

# Exceptions
from concertdb.exceptions import (
    ConcertDBError,
    ConnectivityError,
    MigrationStatusWriteError,
    NotFoundError,
    PurchaseError,
    ReferralError,
    TransactionFailureError,
    UnsupportedOperationError,
)
from concertdb.factory import AdapterFactory

# Migration
from concertdb.migration import MigrationProcedure, MigrationResult

# Models
from concertdb.models import (
    Arena,
    Artist,
    ArtistSnapshot,
    Concert,
    DatabaseStats,
    FanDetails,
    OrganizerDetails,
    OrganizerStats,
    Ticket,
    User,
    Zone,
    ZonePrice,
)

# Services
from concertdb.services import AdminService, ReferralService, TicketService
from concertdb.status import MigrationStatus, MigrationStatusStore
from concertdb.types import DatabaseType, UserRole

__all__ = [
    "__version__",
    # Types
    "DatabaseType",
    "UserRole",
    # Models
    "User",
    "FanDetails",
    "OrganizerDetails",
    "Artist",
    "ArtistSnapshot",
    "Arena",
    "Zone",
    "Concert",
    "ZonePrice",
    "Ticket",
    "DatabaseStats",
    "OrganizerStats",
    # Configuration
    "Settings",
    "PostgresConfig",
    "MongoConfig",
    "MigrationConfig",
    # Status
    "MigrationStatus",
    "MigrationStatusStore",
    # Connections
    "RelationalConnection",
    "DocumentConnection",
    # Adapters
    "DatabaseAdapter",
    "QueryResult",
    "RelationalAdapter",
    "DocumentAdapter",
    "AdapterFactory",
    # Migration
    "MigrationProcedure",
    "MigrationResult",
    # Services
    "AdminService",
    "ReferralService",
    "TicketService",
    # Exceptions
    "ConcertDBError",
    "NotFoundError",
    "UnsupportedOperationError",
    "TransactionFailureError",
    "ConnectivityError",
    "MigrationStatusWriteError",
    "ReferralError",
    "PurchaseError",
]
