"""
Observability utilities for concertdb.

Tracing is optional: OpenTelemetry is only used when it is installed and
tracing is enabled on the component.
"""

from concertdb.observability.attributes import (
    ATTR_DB_COLLECTION,
    ATTR_DB_OPERATION,
    ATTR_DB_SYSTEM,
    ATTR_ENTITY_ID,
    ATTR_FAN_ID,
    ATTR_MIGRATION_SOURCE,
    ATTR_MIGRATION_STAGE,
    ATTR_MIGRATION_TARGET,
    ATTR_POINTS_DELTA,
    ATTR_ROW_COUNT,
)
from concertdb.observability.tracer import (
    OTEL_AVAILABLE,
    MockTracer,
    NullTracer,
    OpenTelemetryTracer,
    Tracer,
    create_tracer,
)

__all__ = [
    # Availability
    "OTEL_AVAILABLE",
    # Tracers
    "Tracer",
    "NullTracer",
    "OpenTelemetryTracer",
    "MockTracer",
    "create_tracer",
    # Attributes
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
