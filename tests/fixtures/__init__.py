"""
Shared test fixtures for the concertdb library.

Usage:
    from tests.fixtures import make_fan, make_result, make_engine
"""

from tests.fixtures.entities import (
    REGISTERED,
    fan_row,
    make_arena,
    make_artist,
    make_concert,
    make_fan,
    make_organizer,
    seed_catalog,
)
from tests.fixtures.mocks import (
    executed_sql,
    make_collection,
    make_cursor,
    make_adapter,
    make_engine,
    make_factory,
    make_result,
)

__all__ = [
    "REGISTERED",
    "fan_row",
    "make_arena",
    "make_artist",
    "make_concert",
    "make_fan",
    "make_organizer",
    "seed_catalog",
    "executed_sql",
    "make_collection",
    "make_cursor",
    "make_adapter",
    "make_engine",
    "make_factory",
    "make_result",
]
