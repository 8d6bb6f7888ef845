"""
Shared pytest fixtures for the concertdb tests.

This module provides:
- Mock SQLAlchemy engine/connection fixtures for relational unit tests
- Mock motor collection fixtures for document unit tests
- A tmp_path-backed migration status store
- A recording tracer and a deterministic password hasher
"""

from __future__ import annotations

from collections import defaultdict
from collections.abc import Callable
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

import pytest

from concertdb.connections import DocumentConnection, RelationalConnection
from concertdb.observability import MockTracer
from concertdb.status import MigrationStatusStore
from tests.fixtures import make_collection, make_engine, make_result

# ============================================================================
# Relational mocks
# ============================================================================


@pytest.fixture
def sql_connection() -> AsyncMock:
    """Mock AsyncConnection; set ``execute.side_effect`` per test."""
    connection = AsyncMock()
    connection.execute.return_value = make_result()
    return connection


@pytest.fixture
def sql_engine(sql_connection: AsyncMock) -> MagicMock:
    return make_engine(sql_connection)


@pytest.fixture
def relational_connection(sql_engine: MagicMock) -> RelationalConnection:
    return RelationalConnection(engine=sql_engine)


# ============================================================================
# Document mocks
# ============================================================================


@pytest.fixture
def collections() -> defaultdict[str, MagicMock]:
    """Mock collections keyed by name, created on first access."""
    return defaultdict(make_collection)


@pytest.fixture
def document_connection(collections: defaultdict[str, MagicMock]) -> MagicMock:
    connection = MagicMock(spec=DocumentConnection)
    connection.collection.side_effect = lambda name: collections[name]
    connection.ping = AsyncMock()
    connection.health_check = AsyncMock(return_value=True)
    return connection


# ============================================================================
# Status, tracing, hashing
# ============================================================================


@pytest.fixture
def status_file(tmp_path: Path) -> Path:
    return tmp_path / "state" / "migration-status.json"


@pytest.fixture
def status_store(status_file: Path) -> MigrationStatusStore:
    return MigrationStatusStore(status_file)


@pytest.fixture
def tracer() -> MockTracer:
    return MockTracer()


@pytest.fixture
def fixed_hasher() -> Callable[[str], str]:
    return lambda password: f"hashed:{password}"
