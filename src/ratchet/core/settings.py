"""Environment-driven settings for building a migration store.

``RatchetSettings`` reads ``RATCHET_*`` environment variables (and a
``.env`` file) with pydantic-settings. It only carries values; the TLS
all-or-nothing rule is enforced when a store is built from it, so the
failure surfaces as a :class:`~ratchet.core.errors.MissingConfigError`
rather than a pydantic validation error.

Examples:
    >>> import os
    >>> os.environ["RATCHET_BACKEND"] = "sqlite"
    >>> os.environ["RATCHET_PATH"] = "/var/lib/app/state.db"
    >>> settings = RatchetSettings()
    >>> settings.backend
    'sqlite'
"""

from __future__ import annotations

from pathlib import Path

from pydantic import Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict


class RatchetSettings(BaseSettings):
    """Connection and logging settings.

    Fields
    ──────
    backend         : Store backend name ("mysql" or "sqlite")
    host/port       : MySQL server address
    user/password   : MySQL credentials
    database        : MySQL database name
    path            : SQLite database file
    ssl_*           : Mutual TLS material, all four or none
    log_level       : Structlog log level
    """

    model_config = SettingsConfigDict(
        env_prefix="RATCHET_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    backend: str = "mysql"

    # ── MySQL ────────────────────────────────────────────────────
    host: str = "localhost"
    port: int = 3306
    user: str = ""
    password: SecretStr = SecretStr("")
    database: str = ""
    connect_timeout: int = 10

    # ── Mutual TLS ───────────────────────────────────────────────
    ssl_key: Path | None = None
    ssl_cert: Path | None = None
    ssl_ca: Path | None = None
    ssl_server_name: str | None = None

    # ── SQLite ───────────────────────────────────────────────────
    path: str = Field(default=":memory:", description="SQLite database file")

    # ── Observability ────────────────────────────────────────────
    log_level: str = "INFO"

    def store_kwargs(self) -> dict:
        """Keyword arguments for the configured backend's store class."""
        if self.backend.lower() == "sqlite":
            return {"path": self.path}
        return {
            "user": self.user,
            "password": self.password.get_secret_value(),
            "host": self.host,
            "port": self.port,
            "database": self.database,
            "ssl_key": str(self.ssl_key) if self.ssl_key else None,
            "ssl_cert": str(self.ssl_cert) if self.ssl_cert else None,
            "ssl_ca": str(self.ssl_ca) if self.ssl_ca else None,
            "ssl_server_name": self.ssl_server_name,
            "connect_timeout": self.connect_timeout,
        }


__all__ = ["RatchetSettings"]
