"""Store types and connection configuration."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from ratchet.core.errors import MissingConfigError
from ratchet.core.hashing import checksum_matches

# Structural version of the tracking tables: 0 = legacy, 1 = checkpoint-capable.
SCHEMA_VERSION = 1
LEGACY_SCHEMA_VERSION = 0


class StoreType(str, Enum):
    """Supported store backends."""

    MYSQL = "mysql"
    SQLITE = "sqlite"


@dataclass(frozen=True)
class Migration:
    """One applied migration as recorded in the ``meta`` table."""

    filename: str
    content: str
    checksum: str
    created_at: datetime | str | None = field(default=None, compare=False)

    def verify(self) -> bool:
        """Whether the recorded checksum matches a fresh hash of the content."""
        return checksum_matches(self.content, self.checksum)


@dataclass(frozen=True)
class TLSMaterial:
    """
    Mutual-TLS material for a store connection.

    All four fields are required together. Use :meth:`from_optional` to
    validate a partially-filled set of values before any I/O happens.
    """

    key_path: str
    cert_path: str
    ca_path: str
    server_name: str

    @classmethod
    def from_optional(
        cls,
        key_path: str | None = None,
        cert_path: str | None = None,
        ca_path: str | None = None,
        server_name: str | None = None,
    ) -> TLSMaterial | None:
        """Build material from optional values.

        Returns None when nothing is supplied. Raises
        :class:`MissingConfigError` naming the first missing field when only
        some of the four values are supplied.
        """
        values = {
            "ssl_key": key_path,
            "ssl_cert": cert_path,
            "ssl_ca": ca_path,
            "ssl_server_name": server_name,
        }
        supplied = [name for name, value in values.items() if value]
        if not supplied:
            return None
        for name, value in values.items():
            if not value:
                raise MissingConfigError(
                    name,
                    f"{name} is required when {supplied[0]} is provided "
                    "(ssl_key, ssl_cert, ssl_ca and ssl_server_name go together)",
                )
        return cls(
            key_path=str(key_path),
            cert_path=str(cert_path),
            ca_path=str(ca_path),
            server_name=str(server_name),
        )


@dataclass
class StoreConfig:
    """
    Configuration for a store connection.

    Different fields are used by different backends.
    """

    store_type: StoreType = StoreType.MYSQL

    # SQLite
    path: str | None = None

    # MySQL
    host: str = "localhost"
    port: int = 3306
    database: str = ""
    user: str | None = None
    password: str | None = None
    connect_timeout: int = 10
    tls: TLSMaterial | None = None

    # Extra options (driver-specific)
    options: dict[str, Any] = field(default_factory=dict)

    def describe(self) -> dict[str, Any]:
        """Loggable summary of the target, without credentials."""
        if self.store_type is StoreType.SQLITE:
            return {"store": self.store_type.value, "path": self.path or ":memory:"}
        return {
            "store": self.store_type.value,
            "host": self.host,
            "port": self.port,
            "database": self.database,
            "tls": self.tls is not None,
        }


__all__ = [
    "SCHEMA_VERSION",
    "LEGACY_SCHEMA_VERSION",
    "StoreType",
    "Migration",
    "TLSMaterial",
    "StoreConfig",
]
