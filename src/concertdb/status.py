"""
Migration status store.

Persists which backend is authoritative in a small JSON file::

    {"migrated": true, "migrationDate": "2026-01-31T12:00:00Z", "version": "1.0.0"}

The store never raises on I/O problems. A missing or unreadable file falls
back to the default (not migrated) and write failures are logged, leaving the
in-memory state as the answer for the rest of the process.
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from concertdb.config import DEFAULT_STATUS_VERSION, MigrationConfig
from concertdb.exceptions import MigrationStatusWriteError
from concertdb.types import DatabaseType

logger = logging.getLogger(__name__)


class MigrationStatus(BaseModel):
    """Snapshot of the persisted migration state."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    migrated: bool = False
    migration_date: datetime | None = Field(default=None, alias="migrationDate")
    version: str = DEFAULT_STATUS_VERSION


class MigrationStatusStore:
    """
    File-backed source of truth for the active backend.

    The environment override (``migrated_override``) forces ``is_migrated()``
    to True regardless of the file; it does not change what is persisted.

    Example:
        >>> store = MigrationStatusStore(Path("/var/lib/concerts/migration-status.json"))
        >>> store.get_database_type()
        <DatabaseType.RELATIONAL: 'postgresql'>
        >>> store.mark_migrated()
        >>> store.get_database_type()
        <DatabaseType.DOCUMENT: 'mongodb'>
    """

    def __init__(
        self,
        status_file: Path | str,
        *,
        migrated_override: bool = False,
        version: str = DEFAULT_STATUS_VERSION,
    ) -> None:
        self._path = Path(status_file)
        self._override = migrated_override
        self._version = version
        self._status = self._load()

    @classmethod
    def from_config(cls, config: MigrationConfig) -> MigrationStatusStore:
        return cls(
            config.status_file,
            migrated_override=config.migrated_override,
            version=config.version,
        )

    @property
    def path(self) -> Path:
        return self._path

    def _default(self) -> MigrationStatus:
        return MigrationStatus(migrated=False, version=self._version)

    def _load(self) -> MigrationStatus:
        if not self._path.exists():
            status = self._default()
            self._save(status)
            return status

        try:
            return MigrationStatus.model_validate_json(self._path.read_text(encoding="utf-8"))
        except (OSError, UnicodeDecodeError, ValidationError) as e:
            logger.warning(
                f"Could not read migration status from {self._path}, using defaults: {e}"
            )
            return self._default()

    def _save(self, status: MigrationStatus) -> bool:
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            self._path.write_text(
                status.model_dump_json(by_alias=True, exclude_none=True, indent=2),
                encoding="utf-8",
            )
        except OSError as e:
            error = MigrationStatusWriteError(str(self._path), str(e))
            logger.error(str(error))
            return False
        return True

    def reload(self) -> MigrationStatus:
        """Re-read the status file and return the new snapshot."""
        self._status = self._load()
        return self.get_status()

    def is_migrated(self) -> bool:
        """True if the override flag is set, else the persisted flag."""
        return self._override or self._status.migrated

    def mark_migrated(self) -> None:
        self._status = MigrationStatus(
            migrated=True,
            migration_date=datetime.now(UTC),
            version=self._version,
        )
        self._save(self._status)
        logger.info("Migration status set to migrated")

    def mark_not_migrated(self) -> None:
        self._status = MigrationStatus(migrated=False, version=self._version)
        self._save(self._status)
        logger.info("Migration status set to not migrated")

    def get_database_type(self) -> DatabaseType:
        return DatabaseType.DOCUMENT if self.is_migrated() else DatabaseType.RELATIONAL

    def get_status(self) -> MigrationStatus:
        """Return a copy of the current persisted state."""
        return self._status.model_copy()

    def reset(self) -> None:
        """Delete the status file and start over from the defaults."""
        try:
            self._path.unlink(missing_ok=True)
        except OSError as e:
            logger.error(f"Failed to delete migration status file {self._path}: {e}")
        self._status = self._load()


__all__ = ["MigrationStatus", "MigrationStatusStore"]
