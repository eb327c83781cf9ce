"""Tests for ``ratchet.core.settings`` and building stores from settings."""

from __future__ import annotations

from pathlib import Path

import pytest

from ratchet.core.errors import ConfigError, MissingConfigError
from ratchet.core.settings import RatchetSettings
from ratchet.core.stores import MySQLStore, SQLiteStore, create_store


@pytest.fixture(autouse=True)
def _isolated_env(monkeypatch, tmp_path):
    """Keep the developer's environment and .env file out of the tests."""
    for key in [
        "BACKEND", "HOST", "PORT", "USER", "PASSWORD", "DATABASE", "PATH",
        "SSL_KEY", "SSL_CERT", "SSL_CA", "SSL_SERVER_NAME", "LOG_LEVEL",
    ]:
        monkeypatch.delenv(f"RATCHET_{key}", raising=False)
    monkeypatch.chdir(tmp_path)


class TestRatchetSettings:
    def test_defaults(self):
        settings = RatchetSettings()
        assert settings.backend == "mysql"
        assert settings.port == 3306
        assert settings.path == ":memory:"
        assert settings.ssl_ca is None

    def test_env_prefix(self, monkeypatch):
        monkeypatch.setenv("RATCHET_HOST", "db.internal")
        monkeypatch.setenv("RATCHET_PORT", "3307")
        monkeypatch.setenv("RATCHET_PASSWORD", "hunter2")
        settings = RatchetSettings()
        assert settings.host == "db.internal"
        assert settings.port == 3307
        assert "hunter2" not in repr(settings)

    def test_dotenv_file(self, tmp_path):
        (tmp_path / ".env").write_text("RATCHET_BACKEND=sqlite\nRATCHET_PATH=state.db\n")
        settings = RatchetSettings()
        assert settings.backend == "sqlite"
        assert settings.store_kwargs() == {"path": "state.db"}

    def test_mysql_kwargs(self):
        settings = RatchetSettings(
            user="app",
            password="secret",
            database="appdb",
            ssl_ca=Path("/etc/ratchet/ca.pem"),
        )
        kwargs = settings.store_kwargs()
        assert kwargs["password"] == "secret"
        assert kwargs["ssl_ca"] == "/etc/ratchet/ca.pem"
        assert kwargs["ssl_key"] is None


class TestCreateStore:
    def test_sqlite(self):
        store = create_store(RatchetSettings(backend="sqlite", path=":memory:"))
        assert isinstance(store, SQLiteStore)
        assert store.is_open is False

    def test_mysql(self):
        store = create_store(RatchetSettings(user="app", database="appdb"))
        assert isinstance(store, MySQLStore)
        assert store.config.database == "appdb"

    def test_mysql_partial_tls(self):
        settings = RatchetSettings(database="appdb", ssl_ca=Path("ca.pem"))
        with pytest.raises(MissingConfigError) as exc_info:
            create_store(settings)
        assert exc_info.value.key == "ssl_key"

    def test_from_environment(self, monkeypatch):
        monkeypatch.setenv("RATCHET_BACKEND", "sqlite")
        assert isinstance(create_store(), SQLiteStore)

    def test_unknown_backend(self):
        with pytest.raises(ConfigError, match="Unknown store backend"):
            create_store(RatchetSettings(backend="oracle"))
