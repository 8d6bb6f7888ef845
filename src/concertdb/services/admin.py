"""
Administrative operations: migration trigger, system status, data reset.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from sqlalchemy import text

from concertdb.config import MigrationConfig
from concertdb.exceptions import ConnectivityError
from concertdb.migration import MigrationProcedure, MigrationResult
from concertdb.schema import DOCUMENT_COLLECTIONS, RELATIONAL_TABLES
from concertdb.status import MigrationStatus
from concertdb.types import DatabaseType

if TYPE_CHECKING:
    from concertdb.factory import AdapterFactory

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BackendHealth:
    backend: str
    healthy: bool
    error: str | None = None


@dataclass(frozen=True)
class SystemStatus:
    """Snapshot of which backend is active and how much data it holds."""

    database_type: DatabaseType
    is_migrated: bool
    migration: MigrationStatus
    statistics: dict[str, int] = field(default_factory=dict)
    backends: list[BackendHealth] = field(default_factory=list)

    @property
    def healthy(self) -> bool:
        return all(backend.healthy for backend in self.backends)


class AdminService:
    """
    Admin-facing operations over the factory and the migration procedure.

    Args:
        factory: Factory handing out adapters and connections
        migration_config: Admin account settings used by the migration
        procedure: Pre-built migration procedure (built lazily if omitted)
    """

    def __init__(
        self,
        factory: AdapterFactory,
        migration_config: MigrationConfig | None = None,
        *,
        procedure: MigrationProcedure | None = None,
    ) -> None:
        self._factory = factory
        self._migration_config = migration_config or MigrationConfig()
        self._procedure = procedure

    @property
    def procedure(self) -> MigrationProcedure:
        if self._procedure is None:
            self._procedure = MigrationProcedure.from_factory(self._factory, self._migration_config)
        return self._procedure

    async def migrate(self, *, force: bool = False) -> MigrationResult | None:
        """
        Migrate relational data into the document store.

        Returns:
            The migration result, or None if the system was already migrated
            and ``force`` is False
        """
        if self._factory.is_migrated() and not force:
            logger.warning("System is already migrated to mongodb, skipping migration")
            return None
        return await self.procedure.run()

    async def check_health(self) -> list[BackendHealth]:
        """Ping both backends concurrently."""

        async def check_backend(backend: str, ping: Any) -> BackendHealth:
            try:
                await ping()
            except ConnectivityError as e:
                return BackendHealth(backend=backend, healthy=False, error=str(e))
            return BackendHealth(backend=backend, healthy=True)

        return list(
            await asyncio.gather(
                check_backend("postgresql", self._factory.relational_connection.ping),
                check_backend("mongodb", self._factory.document_connection.ping),
            )
        )

    async def get_system_status(self) -> SystemStatus:
        stats = await self._factory.get_adapter().get_stats()
        return SystemStatus(
            database_type=self._factory.get_current_database_type(),
            is_migrated=self._factory.is_migrated(),
            migration=self._factory.status.get_status(),
            statistics=stats.as_dict(),
            backends=await self.check_health(),
        )

    def reset_migration_status(self) -> MigrationStatus:
        """Forget any completed migration; the relational backend becomes active again."""
        self._factory.status.reset()
        logger.info("Migration status reset, active database is postgresql")
        return self._factory.status.get_status()

    async def clear_data(self) -> datetime:
        """
        Delete every row and document from both backends.

        Tables that do not exist are skipped. Returns the time the data was
        cleared.
        """
        relational = self._factory.relational_connection
        async with relational.connect() as conn:
            result = await conn.execute(
                text(
                    "SELECT table_name FROM information_schema.tables "
                    "WHERE table_schema = current_schema() AND table_name = ANY(:names)"
                ),
                {"names": list(RELATIONAL_TABLES)},
            )
            existing = {row[0] for row in result.all()}

        tables = [table for table in reversed(RELATIONAL_TABLES) if table in existing]
        if tables:
            async with relational.connect(transactional=True) as conn:
                await conn.execute(text(f"TRUNCATE TABLE {', '.join(tables)} CASCADE"))
        logger.info(f"Cleared relational tables: {', '.join(tables) or 'none'}")

        document = self._factory.document_connection
        await asyncio.gather(
            *(document.collection(name).delete_many({}) for name in DOCUMENT_COLLECTIONS)
        )
        logger.info("Cleared document collections")
        return datetime.now(UTC)


__all__ = ["AdminService", "SystemStatus", "BackendHealth"]
