"""Document store connection holder built on motor."""

from __future__ import annotations

import logging

from motor.motor_asyncio import (
    AsyncIOMotorClient,
    AsyncIOMotorCollection,
    AsyncIOMotorDatabase,
)
from pymongo.errors import PyMongoError

from concertdb.config import MongoConfig
from concertdb.exceptions import ConnectivityError

logger = logging.getLogger(__name__)


class DocumentConnection:
    """
    Lazily-connected motor client for the document backend.

    The client is created on first use. Connection failures are not retried
    here; they propagate to whoever issued the operation.

    Args:
        config: URI and database name
        client: Pre-built client (tests, or callers that own client setup)
    """

    def __init__(
        self,
        config: MongoConfig | None = None,
        *,
        client: AsyncIOMotorClient | None = None,
    ) -> None:
        self._config = config or MongoConfig()
        self._client = client

    @property
    def client(self) -> AsyncIOMotorClient:
        if self._client is None:
            logger.debug(f"Creating document client for database {self._config.database}")
            self._client = AsyncIOMotorClient(self._config.uri, tz_aware=True)
        return self._client

    @property
    def database(self) -> AsyncIOMotorDatabase:
        return self.client[self._config.database]

    @property
    def database_name(self) -> str:
        return self._config.database

    def collection(self, name: str) -> AsyncIOMotorCollection:
        return self.database[name]

    async def ping(self) -> None:
        """
        Ping the server.

        Raises:
            ConnectivityError: If the server cannot be reached
        """
        try:
            await self.client.admin.command("ping")
        except PyMongoError as e:
            raise ConnectivityError("mongodb", str(e)) from e

    async def health_check(self) -> bool:
        try:
            await self.ping()
        except ConnectivityError as e:
            logger.warning(f"Document store health check failed: {e}")
            return False
        return True

    def close(self) -> None:
        if self._client is not None:
            self._client.close()
            self._client = None


__all__ = ["DocumentConnection"]
