"""
Relational connection holder.

Wraps a SQLAlchemy AsyncEngine (asyncpg driver) and hands out connections
through ``connect()``. When a statement fails because the underlying
connection was invalidated (server restart, idle client dropped by a proxy),
the pool is discarded so the next call starts from fresh connections. The
error itself still reaches the caller.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from sqlalchemy import text
from sqlalchemy.exc import DBAPIError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine, create_async_engine

from concertdb.config import PostgresConfig
from concertdb.exceptions import ConnectivityError

logger = logging.getLogger(__name__)


class RelationalConnection:
    """
    Lazily-built, self-healing access to the relational backend.

    Args:
        config: Connection parameters used to build the engine on first use
        engine: Pre-built engine (tests, or callers that own engine setup).
            An injected engine is disposed on reset rather than replaced.

    Example:
        >>> connection = RelationalConnection(PostgresConfig(host="db"))
        >>> async with connection.connect() as conn:
        ...     result = await conn.execute(text("SELECT 1"))
        >>>
        >>> async with connection.connect(transactional=True) as conn:
        ...     await conn.execute(text("UPDATE fans SET referral_points = 0"))
    """

    def __init__(
        self,
        config: PostgresConfig | None = None,
        *,
        engine: AsyncEngine | None = None,
    ) -> None:
        if config is None and engine is None:
            config = PostgresConfig()
        self._config = config
        self._engine = engine
        self._owns_engine = engine is None

    @property
    def engine(self) -> AsyncEngine:
        if self._engine is None:
            assert self._config is not None
            logger.debug(
                f"Creating relational engine for {self._config.host}:{self._config.port}"
                f"/{self._config.database}"
            )
            self._engine = create_async_engine(
                self._config.url,
                pool_size=self._config.pool_size,
                max_overflow=self._config.max_overflow,
                pool_pre_ping=self._config.pool_pre_ping,
            )
        return self._engine

    @asynccontextmanager
    async def connect(self, transactional: bool = False) -> AsyncIterator[AsyncConnection]:
        """
        Yield a connection, optionally inside a transaction.

        Args:
            transactional: If True, the block runs in a transaction that
                commits on exit and rolls back on error (engine.begin()).
                If False, a plain connection is used (engine.connect()).

        Yields:
            AsyncConnection ready for execute() calls
        """
        engine = self.engine
        try:
            if transactional:
                async with engine.begin() as connection:
                    yield connection
            else:
                async with engine.connect() as connection:
                    yield connection
        except DBAPIError as e:
            if e.connection_invalidated:
                logger.warning(f"Relational connection invalidated, resetting pool: {e}")
                await self.reset()
            raise

    async def reset(self) -> None:
        """Discard pooled connections; the next call builds fresh ones."""
        if self._engine is None:
            return
        engine = self._engine
        if self._owns_engine:
            self._engine = None
        await engine.dispose()

    async def ping(self) -> None:
        """
        Run a trivial query.

        Raises:
            ConnectivityError: If the database cannot be reached
        """
        try:
            async with self.connect() as conn:
                await conn.execute(text("SELECT 1"))
        except (SQLAlchemyError, OSError) as e:
            raise ConnectivityError("postgresql", str(e)) from e

    async def health_check(self) -> bool:
        try:
            await self.ping()
        except ConnectivityError as e:
            logger.warning(f"Relational health check failed: {e}")
            return False
        return True

    async def close(self) -> None:
        if self._engine is not None:
            await self._engine.dispose()
            if self._owns_engine:
                self._engine = None


__all__ = ["RelationalConnection"]
