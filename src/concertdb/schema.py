"""
Physical schemas for both backends.

The relational schema is normalized: role details, arena zones, concert
artists and concert zone prices live in their own tables. The document
schema needs no DDL, only the collection names and the indexes that the
adapters' lookups rely on.
"""

from __future__ import annotations

import logging
from typing import Any

from pymongo import ASCENDING, DESCENDING
from sqlalchemy import text

from concertdb.connections import DocumentConnection, RelationalConnection

logger = logging.getLogger(__name__)

# Dependency order; tables are dropped in reverse.
RELATIONAL_TABLES: tuple[str, ...] = (
    "users",
    "fans",
    "organizers",
    "artists",
    "arenas",
    "zones",
    "concerts",
    "concert_features_artists",
    "concert_zone_pricing",
    "tickets",
)

RELATIONAL_SCHEMA: tuple[str, ...] = (
    """
    CREATE TABLE IF NOT EXISTS users (
        user_id VARCHAR(64) PRIMARY KEY,
        email VARCHAR(255) NOT NULL UNIQUE,
        user_password TEXT NOT NULL,
        first_name VARCHAR(100) NOT NULL,
        last_name VARCHAR(100) NOT NULL,
        registration_date TIMESTAMPTZ NOT NULL DEFAULT NOW(),
        last_login TIMESTAMPTZ
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS fans (
        user_id VARCHAR(64) PRIMARY KEY REFERENCES users(user_id) ON DELETE CASCADE,
        username VARCHAR(100) NOT NULL UNIQUE,
        preferred_genre VARCHAR(100),
        phone_number VARCHAR(50),
        referral_code VARCHAR(32) NOT NULL UNIQUE,
        referral_points INTEGER NOT NULL DEFAULT 0 CHECK (referral_points >= 0),
        referral_code_used BOOLEAN NOT NULL DEFAULT FALSE,
        referred_by VARCHAR(64) REFERENCES fans(user_id) ON DELETE SET NULL,
        CHECK (referred_by IS NULL OR referred_by <> user_id)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS organizers (
        user_id VARCHAR(64) PRIMARY KEY REFERENCES users(user_id) ON DELETE CASCADE,
        organization_name VARCHAR(255) NOT NULL,
        contact_info TEXT
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS artists (
        artist_id VARCHAR(64) PRIMARY KEY,
        artist_name VARCHAR(255) NOT NULL,
        genre VARCHAR(100)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS arenas (
        arena_id VARCHAR(64) PRIMARY KEY,
        arena_name VARCHAR(255) NOT NULL,
        arena_location VARCHAR(255),
        total_capacity INTEGER NOT NULL CHECK (total_capacity >= 0)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS zones (
        arena_id VARCHAR(64) NOT NULL REFERENCES arenas(arena_id) ON DELETE CASCADE,
        zone_name VARCHAR(100) NOT NULL,
        capacity_per_zone INTEGER NOT NULL CHECK (capacity_per_zone >= 0),
        PRIMARY KEY (arena_id, zone_name)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS concerts (
        concert_id VARCHAR(64) PRIMARY KEY,
        concert_date DATE NOT NULL,
        time TIME NOT NULL,
        description TEXT,
        organizer_id VARCHAR(64) NOT NULL REFERENCES users(user_id),
        arena_id VARCHAR(64) NOT NULL REFERENCES arenas(arena_id)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS concert_features_artists (
        concert_id VARCHAR(64) NOT NULL REFERENCES concerts(concert_id) ON DELETE CASCADE,
        artist_id VARCHAR(64) NOT NULL REFERENCES artists(artist_id),
        PRIMARY KEY (concert_id, artist_id)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS concert_zone_pricing (
        concert_id VARCHAR(64) NOT NULL REFERENCES concerts(concert_id) ON DELETE CASCADE,
        arena_id VARCHAR(64) NOT NULL REFERENCES arenas(arena_id),
        zone_name VARCHAR(100) NOT NULL,
        price NUMERIC(10, 2) NOT NULL CHECK (price >= 0),
        PRIMARY KEY (concert_id, zone_name)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS tickets (
        ticket_id VARCHAR(64) PRIMARY KEY,
        fan_id VARCHAR(64) NOT NULL REFERENCES fans(user_id) ON DELETE CASCADE,
        concert_id VARCHAR(64) NOT NULL REFERENCES concerts(concert_id),
        arena_id VARCHAR(64) NOT NULL REFERENCES arenas(arena_id),
        zone_name VARCHAR(100) NOT NULL,
        purchase_date TIMESTAMPTZ NOT NULL DEFAULT NOW(),
        purchase_price NUMERIC(10, 2),
        referral_code_used BOOLEAN NOT NULL DEFAULT FALSE
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_fans_referred_by ON fans (referred_by)",
    "CREATE INDEX IF NOT EXISTS idx_concerts_organizer ON concerts (organizer_id)",
    "CREATE INDEX IF NOT EXISTS idx_tickets_fan ON tickets (fan_id)",
    "CREATE INDEX IF NOT EXISTS idx_tickets_concert_zone ON tickets (concert_id, zone_name)",
)

USERS = "users"
ARTISTS = "artists"
ARENAS = "arenas"
CONCERTS = "concerts"
TICKETS = "tickets"

DOCUMENT_COLLECTIONS: tuple[str, ...] = (USERS, ARTISTS, ARENAS, CONCERTS, TICKETS)


def _unique_fan_field(field: str) -> dict[str, Any]:
    """Unique among fans only; organizers and admins carry no fan_details."""
    path = f"fan_details.{field}"
    return {"unique": True, "partialFilterExpression": {path: {"$type": "string"}}}


# collection -> [(keys, options)]
DOCUMENT_INDEXES: dict[str, list[tuple[list[tuple[str, int]], dict[str, Any]]]] = {
    USERS: [
        ([("email", ASCENDING)], {"unique": True}),
        ([("user_type", ASCENDING)], {}),
        ([("fan_details.username", ASCENDING)], _unique_fan_field("username")),
        ([("fan_details.referral_code", ASCENDING)], _unique_fan_field("referral_code")),
        ([("fan_details.referred_by", ASCENDING)], {}),
    ],
    ARTISTS: [
        ([("genre", ASCENDING)], {}),
    ],
    ARENAS: [
        ([("arena_location", ASCENDING)], {}),
    ],
    CONCERTS: [
        ([("concert_date", DESCENDING)], {}),
        ([("organizer_id", ASCENDING)], {}),
        ([("arena_id", ASCENDING)], {}),
    ],
    TICKETS: [
        ([("fan_id", ASCENDING)], {}),
        ([("concert_id", ASCENDING), ("zone_name", ASCENDING)], {}),
        ([("purchase_date", DESCENDING)], {}),
    ],
}


async def create_relational_schema(connection: RelationalConnection) -> None:
    """Create every relational table and index that does not exist yet."""
    async with connection.connect(transactional=True) as conn:
        for statement in RELATIONAL_SCHEMA:
            await conn.execute(text(statement))
    logger.info("Relational schema ensured")


async def drop_relational_schema(connection: RelationalConnection) -> None:
    async with connection.connect(transactional=True) as conn:
        for table in reversed(RELATIONAL_TABLES):
            await conn.execute(text(f"DROP TABLE IF EXISTS {table} CASCADE"))
    logger.info("Relational schema dropped")


async def ensure_document_indexes(connection: DocumentConnection) -> None:
    """Create the indexes used by the document adapter (no-op if present)."""
    for collection_name, indexes in DOCUMENT_INDEXES.items():
        collection = connection.collection(collection_name)
        for keys, options in indexes:
            await collection.create_index(keys, **options)
    logger.info("Document indexes ensured")


__all__ = [
    "RELATIONAL_TABLES",
    "RELATIONAL_SCHEMA",
    "DOCUMENT_COLLECTIONS",
    "DOCUMENT_INDEXES",
    "USERS",
    "ARTISTS",
    "ARENAS",
    "CONCERTS",
    "TICKETS",
    "create_relational_schema",
    "drop_relational_schema",
    "ensure_document_indexes",
]
