"""
Unit tests for MigrationStatusStore.

Tests cover:
- Default state and file creation
- Persisting migrated / not migrated
- Environment override
- Corrupt and unwritable status files
- reset()
"""

from __future__ import annotations

import json
import logging
from pathlib import Path

import pytest

from concertdb.config import MigrationConfig
from concertdb.status import MigrationStatus, MigrationStatusStore
from concertdb.types import DatabaseType


class TestDefaults:
    def test_missing_file_is_created_with_default(self, status_file: Path):
        store = MigrationStatusStore(status_file)

        assert status_file.exists()
        assert json.loads(status_file.read_text()) == {"migrated": False, "version": "1.0.0"}
        assert store.is_migrated() is False

    def test_default_database_is_relational(self, status_store: MigrationStatusStore):
        assert status_store.get_database_type() == DatabaseType.RELATIONAL

    def test_from_config_uses_configured_version(self, tmp_path: Path):
        config = MigrationConfig(status_file=tmp_path / "status.json", version="2.1.0")

        store = MigrationStatusStore.from_config(config)

        assert store.get_status().version == "2.1.0"
        assert store.path == tmp_path / "status.json"


class TestMarking:
    def test_mark_migrated_switches_to_document(self, status_store: MigrationStatusStore):
        status_store.mark_migrated()

        assert status_store.is_migrated() is True
        assert status_store.get_database_type() == DatabaseType.DOCUMENT
        assert status_store.get_status().migration_date is not None

    def test_mark_migrated_persists_camel_case_date(
        self, status_store: MigrationStatusStore, status_file: Path
    ):
        status_store.mark_migrated()

        data = json.loads(status_file.read_text())
        assert data["migrated"] is True
        assert "migrationDate" in data
        assert data["version"] == "1.0.0"

    def test_mark_migrated_twice_is_harmless(self, status_store: MigrationStatusStore):
        status_store.mark_migrated()
        status_store.mark_migrated()

        assert status_store.is_migrated() is True
        assert status_store.get_database_type() == DatabaseType.DOCUMENT

    def test_mark_not_migrated_clears_date(
        self, status_store: MigrationStatusStore, status_file: Path
    ):
        status_store.mark_migrated()
        status_store.mark_not_migrated()

        assert status_store.is_migrated() is False
        assert status_store.get_status().migration_date is None
        assert "migrationDate" not in json.loads(status_file.read_text())

    def test_state_survives_new_store_instance(self, status_file: Path):
        MigrationStatusStore(status_file).mark_migrated()

        assert MigrationStatusStore(status_file).is_migrated() is True

    def test_get_status_returns_copy(self, status_store: MigrationStatusStore):
        snapshot = status_store.get_status()
        status_store.mark_migrated()

        assert isinstance(snapshot, MigrationStatus)
        assert snapshot.migrated is False


class TestOverride:
    def test_override_forces_document_backend(self, status_file: Path):
        store = MigrationStatusStore(status_file, migrated_override=True)

        assert store.is_migrated() is True
        assert store.get_database_type() == DatabaseType.DOCUMENT

    def test_override_does_not_change_persisted_flag(self, status_file: Path):
        store = MigrationStatusStore(status_file, migrated_override=True)

        assert store.get_status().migrated is False
        assert json.loads(status_file.read_text())["migrated"] is False


class TestFailures:
    def test_corrupt_file_falls_back_to_default(
        self, status_file: Path, caplog: pytest.LogCaptureFixture
    ):
        status_file.parent.mkdir(parents=True)
        status_file.write_text("{not json")

        with caplog.at_level(logging.WARNING, logger="concertdb.status"):
            store = MigrationStatusStore(status_file)

        assert store.is_migrated() is False
        assert store.get_status().version == "1.0.0"
        assert "Could not read migration status" in caplog.text

    def test_undecodable_file_falls_back_to_default(
        self, status_file: Path, caplog: pytest.LogCaptureFixture
    ):
        status_file.parent.mkdir(parents=True)
        status_file.write_bytes(b'{"migrated": true, "version": "1.0.0\xff"}')

        with caplog.at_level(logging.WARNING, logger="concertdb.status"):
            store = MigrationStatusStore(status_file)

        assert store.is_migrated() is False
        assert store.get_database_type() == DatabaseType.RELATIONAL
        assert "Could not read migration status" in caplog.text

    def test_accepts_file_without_date(self, status_file: Path):
        status_file.parent.mkdir(parents=True)
        status_file.write_text(json.dumps({"migrated": True, "version": "1.0.0"}))

        assert MigrationStatusStore(status_file).is_migrated() is True

    def test_write_failure_is_logged_not_raised(
        self, tmp_path: Path, caplog: pytest.LogCaptureFixture
    ):
        blocker = tmp_path / "not-a-directory"
        blocker.write_text("")
        status_file = blocker / "migration-status.json"

        with caplog.at_level(logging.ERROR, logger="concertdb.status"):
            store = MigrationStatusStore(status_file)
            store.mark_migrated()

        assert store.is_migrated() is True
        assert "Failed to write migration status" in caplog.text


class TestReset:
    def test_reset_returns_to_default(
        self, status_store: MigrationStatusStore, status_file: Path
    ):
        status_store.mark_migrated()

        status_store.reset()

        assert status_store.is_migrated() is False
        assert json.loads(status_file.read_text())["migrated"] is False

    def test_reload_picks_up_external_change(
        self, status_store: MigrationStatusStore, status_file: Path
    ):
        status_file.write_text(json.dumps({"migrated": True, "version": "1.0.0"}))

        status = status_store.reload()

        assert status.migrated is True
        assert status_store.get_database_type() == DatabaseType.DOCUMENT
