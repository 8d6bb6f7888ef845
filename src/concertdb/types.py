"""Common type definitions for the concertdb library."""

from enum import Enum
from typing import Any


class DatabaseType(Enum):
    """
    Backend that currently answers adapter calls.

    Values match the names persisted and reported by the admin surface.
    """

    RELATIONAL = "postgresql"
    DOCUMENT = "mongodb"


class UserRole(Enum):
    """Role tag carried by every user."""

    FAN = "fan"
    ORGANIZER = "organizer"
    ADMIN = "admin"


# Type aliases for clarity and documentation
UserId = str
ArtistId = str
ArenaId = str
ConcertId = str
TicketId = str

# A shaped row returned by an adapter
Row = dict[str, Any]
