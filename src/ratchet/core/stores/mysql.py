"""MySQL migration store.

The reference backend. Uses PyMySQL, which accepts a caller-built
:class:`ssl.SSLContext`; that is what lets :class:`~.tls.TLSProfile` run its
own certificate checks after the handshake. MySQL uses **format** (``%s``)
placeholder style.

MySQL commits DDL implicitly, so the v0 -> v1 upgrade cannot be rolled
back statement by statement the way it can on SQLite. Every upgrade step
tolerates having already run, which makes a failed upgrade safe to re-run.
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import Any

import pymysql
from pymysql.constants import ER

from ratchet.core.errors import (
    DatabaseConnectionError,
    MissingConfigError,
    TLSVerificationError,
    TransactionError,
)
from ratchet.core.logging import get_logger

from .base import MigrationStore
from .tls import TLSProfile
from .types import SCHEMA_VERSION, Migration, StoreConfig, StoreType, TLSMaterial

logger = get_logger(__name__)


def _errno(exc: Exception) -> int | None:
    if isinstance(exc, pymysql.MySQLError) and exc.args and isinstance(exc.args[0], int):
        return exc.args[0]
    return None


class MySQLStore(MigrationStore):
    """
    MySQL / MariaDB migration store.

    Connection parameters are validated at construction: a partial set of
    TLS values raises :class:`MissingConfigError`, and unreadable TLS files
    raise :class:`DatabaseConnectionError`, both before any network I/O.
    """

    VERSION_TABLE_DDL = "CREATE TABLE metaversion (version INTEGER NOT NULL)"
    MIGRATIONS_TABLE_DDL = """
        CREATE TABLE IF NOT EXISTS meta (
            filename VARCHAR(255) UNIQUE NOT NULL,
            md5 VARCHAR(255) NOT NULL,
            content TEXT NOT NULL,
            createdat DATETIME(6) NOT NULL DEFAULT CURRENT_TIMESTAMP(6)
        )"""
    CHECKPOINTS_TABLE_DDL = """
        CREATE TABLE IF NOT EXISTS metacheckpoints (
            filename VARCHAR(255) NOT NULL,
            idx INTEGER NOT NULL,
            md5 VARCHAR(255) NOT NULL,
            content TEXT NOT NULL,
            createdat DATETIME(6) NOT NULL DEFAULT CURRENT_TIMESTAMP(6),
            PRIMARY KEY (filename, idx)
        )"""
    NUMERIC_FILENAME_ORDER = "filename * 1"

    def __init__(
        self,
        user: str = "",
        password: str = "",
        host: str = "localhost",
        port: int = 3306,
        database: str = "",
        *,
        ssl_key: str | None = None,
        ssl_cert: str | None = None,
        ssl_ca: str | None = None,
        ssl_server_name: str | None = None,
        connect_timeout: int = 10,
        charset: str = "utf8mb4",
        **kwargs: Any,
    ):
        if not database:
            raise MissingConfigError("database")
        tls = TLSMaterial.from_optional(ssl_key, ssl_cert, ssl_ca, ssl_server_name)
        config = StoreConfig(
            store_type=StoreType.MYSQL,
            host=host,
            port=port,
            database=database,
            user=user,
            password=password,
            connect_timeout=connect_timeout,
            tls=tls,
            options={**kwargs, "charset": charset},
        )
        super().__init__(config)
        self._tls = TLSProfile(tls) if tls is not None else None

    @property
    def placeholder(self) -> str:
        return "%s"

    @property
    def tls_profile(self) -> TLSProfile | None:
        return self._tls

    def _connect(self) -> Any:
        cfg = self._config
        try:
            return pymysql.connect(
                host=cfg.host,
                port=cfg.port,
                user=cfg.user,
                password=cfg.password or "",
                database=cfg.database,
                charset=cfg.options.get("charset", "utf8mb4"),
                connect_timeout=cfg.connect_timeout,
                autocommit=True,
                ssl=self._tls.ssl_context if self._tls else None,
            )
        except TLSVerificationError:
            raise
        except pymysql.MySQLError as e:
            raise DatabaseConnectionError(
                f"Failed to connect to MySQL at {cfg.host}:{cfg.port}", cause=e
            ) from e

    def _begin(self, conn: Any) -> None:
        conn.begin()

    def _is_integrity_error(self, exc: Exception) -> bool:
        return isinstance(exc, pymysql.err.IntegrityError)

    def _is_already_exists(self, exc: Exception) -> bool:
        return _errno(exc) == ER.TABLE_EXISTS_ERROR

    def _is_duplicate_column(self, exc: Exception) -> bool:
        return _errno(exc) == ER.DUP_FIELDNAME

    def _is_missing_key(self, exc: Exception) -> bool:
        return _errno(exc) == ER.CANT_DROP_FIELD_OR_KEY

    def upsert_migration(self, filename: str, content: str, checksum: str) -> None:
        self._run(
            """
            INSERT INTO meta (filename, content, md5) VALUES (%s, %s, %s)
            ON DUPLICATE KEY UPDATE md5=%s, content=%s
            """,
            (filename, content, checksum, checksum, content),
            action="upsert migration",
        )

    def table_columns(self, table: str) -> list[str]:
        rows = self._fetchall(
            """
            SELECT column_name FROM information_schema.columns
            WHERE table_schema = DATABASE() AND table_name = %s
            ORDER BY ordinal_position
            """,
            (table,),
            action=f"inspect {table}",
        )
        return [row[0] for row in rows]

    def upgrade_to_v1(self, existing: Sequence[Migration]) -> None:
        logger.info("metadata.upgrade.started", store="mysql", migrations=len(existing))
        try:
            self._upgrade_steps(existing)
        except TransactionError as e:
            # DDL already executed stays committed; the steps are safe to re-run.
            logger.warning(
                "metadata.upgrade.partial",
                store="mysql",
                step=e.step,
                error=str(e),
            )
            raise
        logger.info("metadata.upgrade.completed", store="mysql", version=SCHEMA_VERSION)

    def _upgrade_steps(self, existing: Sequence[Migration]) -> None:
        with self.transaction():
            self._step(
                "remove md5 unique",
                "ALTER TABLE meta DROP INDEX md5",
                tolerate=self._is_missing_key,
            )

            # Record the exact migration text alongside the md5: add the
            # column, backfill it, then tighten it to NOT NULL.
            self._step(
                "add content column",
                "ALTER TABLE meta ADD COLUMN content TEXT",
                tolerate=self._is_duplicate_column,
            )
            for m in existing:
                self._step(
                    "update meta content",
                    "UPDATE meta SET content=%s WHERE filename=%s",
                    (m.content, m.filename),
                )
            self._step(
                "update meta content not null",
                "ALTER TABLE meta MODIFY COLUMN content TEXT NOT NULL",
            )

            self._step(
                "add metacheckpoints content",
                "ALTER TABLE metacheckpoints ADD COLUMN content TEXT NOT NULL",
                tolerate=self._is_duplicate_column,
            )

            self._step(
                "create metaversion table",
                "CREATE TABLE IF NOT EXISTS metaversion (version INTEGER NOT NULL)",
            )
            self._step("delete metaversion", "DELETE FROM metaversion")
            self._step(
                "insert metaversion",
                "INSERT INTO metaversion (version) VALUES (%s)",
                (SCHEMA_VERSION,),
            )


__all__ = [
    "MySQLStore",
]
