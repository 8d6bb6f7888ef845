"""
Standard span attributes for concertdb.

Database attributes follow OpenTelemetry semantic conventions; the rest are
namespaced under ``concertdb.``.

Example:
    >>> from concertdb.observability.attributes import ATTR_DB_SYSTEM, ATTR_DB_OPERATION
    >>>
    >>> with tracer.span(
    ...     "concertdb.relational.create_concert",
    ...     {ATTR_DB_SYSTEM: "postgresql", ATTR_DB_OPERATION: "create_concert"},
    ... ):
    ...     pass
"""

# =============================================================================
# Database Attributes (OpenTelemetry semantic conventions)
# =============================================================================

ATTR_DB_SYSTEM = "db.system"
"""Database system identifier ('postgresql' or 'mongodb')."""

ATTR_DB_OPERATION = "db.operation"
"""Adapter operation being performed (e.g., 'create_concert')."""

ATTR_DB_COLLECTION = "db.mongodb.collection"
"""Collection targeted by a document-store operation."""

# =============================================================================
# Entity Attributes
# =============================================================================

ATTR_ENTITY_ID = "concertdb.entity.id"
"""Id of the entity touched by an operation."""

ATTR_ROW_COUNT = "concertdb.row_count"
"""Number of rows or documents involved (integer)."""

# =============================================================================
# Migration Attributes
# =============================================================================

ATTR_MIGRATION_STAGE = "concertdb.migration.stage"
"""Migration stage name ('users', 'artists', 'arenas', 'concerts', 'tickets')."""

ATTR_MIGRATION_SOURCE = "concertdb.migration.source"
"""Backend data is read from."""

ATTR_MIGRATION_TARGET = "concertdb.migration.target"
"""Backend data is written to."""

# =============================================================================
# Referral Attributes
# =============================================================================

ATTR_FAN_ID = "concertdb.fan.id"
"""Id of the fan performing a purchase or redemption."""

ATTR_POINTS_DELTA = "concertdb.referral.points_delta"
"""Signed referral point adjustment (integer)."""


__all__ = [
    "ATTR_DB_SYSTEM",
    "ATTR_DB_OPERATION",
    "ATTR_DB_COLLECTION",
    "ATTR_ENTITY_ID",
    "ATTR_ROW_COUNT",
    "ATTR_MIGRATION_STAGE",
    "ATTR_MIGRATION_SOURCE",
    "ATTR_MIGRATION_TARGET",
    "ATTR_FAN_ID",
    "ATTR_POINTS_DELTA",
]
