"""
Adapter factory.

Hands out the adapter for whichever backend the migration status currently
names. Each adapter is built at most once per factory and cached; flipping
the status only changes which cached adapter is returned.
"""

from __future__ import annotations

import logging

from concertdb.adapters import DatabaseAdapter, DocumentAdapter, RelationalAdapter
from concertdb.config import DEFAULT_ADMIN_EMAIL, Settings
from concertdb.connections import DocumentConnection, RelationalConnection
from concertdb.observability import Tracer
from concertdb.status import MigrationStatusStore
from concertdb.types import DatabaseType

logger = logging.getLogger(__name__)


class AdapterFactory:
    """
    Dispatches to the active backend's adapter.

    Args:
        status: Store deciding which backend is active
        relational: Connection used by the relational adapter
        document: Connection used by the document adapter
        admin_email: Email of the built-in admin account
        tracer: Tracer passed to the adapters
        enable_tracing: Passed to the adapters when no tracer is given

    Example:
        >>> factory = AdapterFactory.from_settings(Settings.from_env())
        >>> adapter = factory.get_adapter()
        >>> adapter.database_type
        <DatabaseType.RELATIONAL: 'postgresql'>
    """

    def __init__(
        self,
        status: MigrationStatusStore,
        relational: RelationalConnection,
        document: DocumentConnection,
        *,
        admin_email: str = DEFAULT_ADMIN_EMAIL,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        self._status = status
        self._relational_connection = relational
        self._document_connection = document
        self._admin_email = admin_email
        self._tracer = tracer
        self._enable_tracing = enable_tracing
        self._relational_adapter: RelationalAdapter | None = None
        self._document_adapter: DocumentAdapter | None = None

    @classmethod
    def from_settings(cls, settings: Settings, *, tracer: Tracer | None = None) -> AdapterFactory:
        return cls(
            MigrationStatusStore.from_config(settings.migration),
            RelationalConnection(settings.postgres),
            DocumentConnection(settings.mongodb),
            admin_email=settings.migration.admin_email,
            tracer=tracer,
        )

    @property
    def status(self) -> MigrationStatusStore:
        return self._status

    @property
    def relational_connection(self) -> RelationalConnection:
        return self._relational_connection

    @property
    def document_connection(self) -> DocumentConnection:
        return self._document_connection

    @property
    def relational_adapter(self) -> RelationalAdapter:
        if self._relational_adapter is None:
            logger.debug("Building relational adapter")
            self._relational_adapter = RelationalAdapter(
                self._relational_connection,
                admin_email=self._admin_email,
                tracer=self._tracer,
                enable_tracing=self._enable_tracing,
            )
        return self._relational_adapter

    @property
    def document_adapter(self) -> DocumentAdapter:
        if self._document_adapter is None:
            logger.debug("Building document adapter")
            self._document_adapter = DocumentAdapter(
                self._document_connection,
                tracer=self._tracer,
                enable_tracing=self._enable_tracing,
            )
        return self._document_adapter

    def get_adapter(self) -> DatabaseAdapter:
        """Return the adapter for the backend the status store names."""
        if self._status.get_database_type() == DatabaseType.DOCUMENT:
            return self.document_adapter
        return self.relational_adapter

    def get_current_database_type(self) -> DatabaseType:
        return self._status.get_database_type()

    def is_migrated(self) -> bool:
        return self._status.is_migrated()

    async def close(self) -> None:
        await self._relational_connection.close()
        self._document_connection.close()


__all__ = ["AdapterFactory"]
