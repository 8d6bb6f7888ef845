"""Unit tests for configuration dataclasses and environment loading."""

from __future__ import annotations

from pathlib import Path

import pytest

from concertdb.config import (
    DEFAULT_ADMIN_EMAIL,
    MigrationConfig,
    MongoConfig,
    PostgresConfig,
    Settings,
)


class TestPostgresConfig:
    def test_defaults(self):
        config = PostgresConfig()

        assert config.host == "localhost"
        assert config.port == 5432
        assert config.database == "concert_booking"
        assert config.pool_pre_ping is True

    def test_url_uses_asyncpg_driver(self):
        url = PostgresConfig(host="db", user="app", password="secret", database="tickets").url

        assert url.drivername == "postgresql+asyncpg"
        assert url.host == "db"
        assert url.database == "tickets"
        assert url.render_as_string(hide_password=True) == (
            "postgresql+asyncpg://app:***@db:5432/tickets"
        )

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"host": ""},
            {"port": 0},
            {"port": 70000},
            {"pool_size": 0},
            {"max_overflow": -1},
        ],
    )
    def test_invalid_values_rejected(self, kwargs):
        with pytest.raises(ValueError):
            PostgresConfig(**kwargs)


class TestMongoConfig:
    def test_rejects_non_mongodb_uri(self):
        with pytest.raises(ValueError, match="mongodb://"):
            MongoConfig(uri="postgresql://localhost")

    def test_accepts_srv_uri(self):
        assert MongoConfig(uri="mongodb+srv://cluster.example.net").database == "concert_booking"


class TestMigrationConfig:
    def test_status_file_coerced_to_path(self):
        config = MigrationConfig(status_file="status.json")  # type: ignore[arg-type]

        assert config.status_file == Path("status.json")

    def test_rejects_invalid_admin_email(self):
        with pytest.raises(ValueError, match="admin_email"):
            MigrationConfig(admin_email="admin")


class TestSettingsFromEnv:
    def test_defaults_without_environment(self, monkeypatch: pytest.MonkeyPatch):
        for name in ("POSTGRES_HOST", "IS_MIGRATED", "ADMIN_EMAIL", "MONGODB_URI"):
            monkeypatch.delenv(name, raising=False)

        settings = Settings.from_env()

        assert settings.postgres.host == "localhost"
        assert settings.mongodb.uri == "mongodb://localhost:27017/concert_booking"
        assert settings.migration.migrated_override is False
        assert settings.migration.admin_email == DEFAULT_ADMIN_EMAIL

    def test_reads_environment(self, monkeypatch: pytest.MonkeyPatch, tmp_path: Path):
        monkeypatch.setenv("POSTGRES_HOST", "pg.internal")
        monkeypatch.setenv("POSTGRES_PORT", "6543")
        monkeypatch.setenv("POSTGRES_POOL_SIZE", "3")
        monkeypatch.setenv("MONGODB_URI", "mongodb://mongo.internal:27017")
        monkeypatch.setenv("MONGODB_DB", "concerts")
        monkeypatch.setenv("MIGRATION_STATUS_FILE", str(tmp_path / "status.json"))
        monkeypatch.setenv("IS_MIGRATED", "true")
        monkeypatch.setenv("ADMIN_EMAIL", "root@concerts.io")

        settings = Settings.from_env()

        assert settings.postgres.host == "pg.internal"
        assert settings.postgres.port == 6543
        assert settings.postgres.pool_size == 3
        assert settings.mongodb.database == "concerts"
        assert settings.migration.status_file == tmp_path / "status.json"
        assert settings.migration.migrated_override is True
        assert settings.migration.admin_email == "root@concerts.io"
