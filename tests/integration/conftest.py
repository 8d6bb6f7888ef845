"""
Shared pytest fixtures for integration tests.

This module provides fixtures for PostgreSQL and MongoDB test infrastructure
using testcontainers for automatic container management.

If testcontainers or Docker is not available, tests are automatically skipped.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator, Generator
from pathlib import Path
from typing import Any

import pytest
import pytest_asyncio

from concertdb.adapters import DocumentAdapter, RelationalAdapter
from concertdb.config import MongoConfig, PostgresConfig
from concertdb.connections import DocumentConnection, RelationalConnection
from concertdb.factory import AdapterFactory
from concertdb.schema import create_relational_schema, drop_relational_schema
from concertdb.status import MigrationStatusStore

# ============================================================================
# Pytest Configuration
# ============================================================================


def pytest_configure(config: pytest.Config) -> None:
    """Register custom markers for integration tests."""
    config.addinivalue_line(
        "markers", "integration: marks tests as integration tests (may require docker)"
    )
    config.addinivalue_line("markers", "postgres: marks tests that require PostgreSQL")
    config.addinivalue_line("markers", "mongodb: marks tests that require MongoDB")


# ============================================================================
# Testcontainers Detection
# ============================================================================

TESTCONTAINERS_AVAILABLE = False

try:
    from testcontainers.mongodb import MongoDbContainer
    from testcontainers.postgres import PostgresContainer

    TESTCONTAINERS_AVAILABLE = True
except ImportError:
    MongoDbContainer = None  # type: ignore[assignment, misc]
    PostgresContainer = None  # type: ignore[assignment, misc]


def is_docker_available() -> bool:
    """Check if Docker is available for running containers."""
    import subprocess

    try:
        result = subprocess.run(
            ["docker", "info"],
            capture_output=True,
            timeout=5,
        )
        return result.returncode == 0
    except (subprocess.TimeoutExpired, OSError):
        return False


DOCKER_AVAILABLE = is_docker_available()


# ============================================================================
# Skip Conditions
# ============================================================================

skip_if_no_postgres_infra = pytest.mark.skipif(
    not (TESTCONTAINERS_AVAILABLE and DOCKER_AVAILABLE),
    reason="PostgreSQL test infrastructure not available",
)

skip_if_no_mongodb_infra = pytest.mark.skipif(
    not (TESTCONTAINERS_AVAILABLE and DOCKER_AVAILABLE),
    reason="MongoDB test infrastructure not available",
)


# ============================================================================
# Containers
# ============================================================================


@pytest.fixture(scope="session")
def postgres_container() -> Generator[Any, None, None]:
    """
    Provide PostgreSQL container for integration tests.

    Container is shared across all tests in the session; each test gets a
    freshly created schema.
    """
    if not TESTCONTAINERS_AVAILABLE or not DOCKER_AVAILABLE:
        pytest.skip("PostgreSQL testcontainer not available")

    container = PostgresContainer("postgres:16")
    container.start()

    yield container

    container.stop()


@pytest.fixture(scope="session")
def postgres_config(postgres_container: Any) -> PostgresConfig:
    return PostgresConfig(
        host=postgres_container.get_container_host_ip(),
        port=int(postgres_container.get_exposed_port(5432)),
        user=postgres_container.username,
        password=postgres_container.password,
        database=postgres_container.dbname,
        pool_size=5,
    )


@pytest.fixture(scope="session")
def mongodb_container() -> Generator[Any, None, None]:
    """Provide MongoDB container for integration tests."""
    if not TESTCONTAINERS_AVAILABLE or not DOCKER_AVAILABLE:
        pytest.skip("MongoDB testcontainer not available")

    container = MongoDbContainer("mongo:7")
    container.start()

    yield container

    container.stop()


@pytest.fixture(scope="session")
def mongodb_config(mongodb_container: Any) -> MongoConfig:
    return MongoConfig(uri=mongodb_container.get_connection_url(), database="concert_test")


# ============================================================================
# Connections and adapters
# ============================================================================


@pytest_asyncio.fixture
async def relational_connection(
    postgres_config: PostgresConfig,
) -> AsyncGenerator[RelationalConnection, None]:
    """Connection to a freshly created relational schema."""
    connection = RelationalConnection(postgres_config)
    await drop_relational_schema(connection)
    await create_relational_schema(connection)

    yield connection

    await drop_relational_schema(connection)
    await connection.close()


@pytest_asyncio.fixture
async def document_connection(
    mongodb_config: MongoConfig,
) -> AsyncGenerator[DocumentConnection, None]:
    """Connection to an empty document database."""
    connection = DocumentConnection(mongodb_config)
    await connection.client.drop_database(connection.database_name)

    yield connection

    await connection.client.drop_database(connection.database_name)
    connection.close()


@pytest.fixture
def relational_adapter(relational_connection: RelationalConnection) -> RelationalAdapter:
    return RelationalAdapter(relational_connection, enable_tracing=False)


@pytest.fixture
def document_adapter(document_connection: DocumentConnection) -> DocumentAdapter:
    return DocumentAdapter(document_connection, enable_tracing=False)


@pytest.fixture
def factory(
    tmp_path: Path,
    relational_connection: RelationalConnection,
    document_connection: DocumentConnection,
) -> AdapterFactory:
    return AdapterFactory(
        MigrationStatusStore(tmp_path / "migration-status.json"),
        relational_connection,
        document_connection,
        enable_tracing=False,
    )
