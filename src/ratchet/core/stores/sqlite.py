"""SQLite migration store.

Uses the built-in sqlite3 module. Suitable for embedded deployments,
single-process tools and tests. SQLite has transactional DDL, so a failed
:meth:`SQLiteStore.upgrade_to_v1` leaves the tracking tables exactly as they
were.
"""

from __future__ import annotations

import sqlite3
from collections.abc import Sequence
from typing import Any

from ratchet.core.errors import DatabaseConnectionError
from ratchet.core.logging import get_logger

from .base import MigrationStore
from .types import SCHEMA_VERSION, Migration, StoreConfig, StoreType

logger = get_logger(__name__)

_NOW = "(strftime('%Y-%m-%d %H:%M:%f', 'now'))"

# Columns the meta table may carry across schema versions, in copy order.
_META_COLUMNS = ("filename", "md5", "content", "createdat")


class SQLiteStore(MigrationStore):
    """
    SQLite migration store.

    The connection runs with ``isolation_level=None`` so each statement
    commits on its own and :meth:`transaction` issues an explicit BEGIN.
    """

    VERSION_TABLE_DDL = "CREATE TABLE metaversion (version INTEGER NOT NULL)"
    MIGRATIONS_TABLE_DDL = f"""
        CREATE TABLE IF NOT EXISTS meta (
            filename TEXT UNIQUE NOT NULL,
            md5 TEXT NOT NULL,
            content TEXT NOT NULL,
            createdat TEXT NOT NULL DEFAULT {_NOW}
        )"""
    CHECKPOINTS_TABLE_DDL = f"""
        CREATE TABLE IF NOT EXISTS metacheckpoints (
            filename TEXT NOT NULL,
            idx INTEGER NOT NULL,
            md5 TEXT NOT NULL,
            content TEXT NOT NULL,
            createdat TEXT NOT NULL DEFAULT {_NOW},
            PRIMARY KEY (filename, idx)
        )"""
    # CAST takes the longest integer prefix: '10_y.sql' -> 10.
    NUMERIC_FILENAME_ORDER = "CAST(filename AS INTEGER)"

    def __init__(
        self,
        path: str = ":memory:",
        *,
        timeout: float = 5.0,
        **kwargs: Any,
    ):
        config = StoreConfig(
            store_type=StoreType.SQLITE,
            path=path,
            options=kwargs,
        )
        super().__init__(config)
        self._timeout = timeout

    @property
    def placeholder(self) -> str:
        return "?"

    def _connect(self) -> sqlite3.Connection:
        path = self._config.path or ":memory:"
        uri = path.startswith("file:")
        try:
            return sqlite3.connect(
                path,
                timeout=self._timeout,
                isolation_level=None,
                check_same_thread=False,
                uri=uri,
            )
        except sqlite3.Error as e:
            raise DatabaseConnectionError(
                f"Failed to open SQLite database {path}", cause=e
            ) from e

    def _begin(self, conn: sqlite3.Connection) -> None:
        conn.execute("BEGIN")

    def _is_integrity_error(self, exc: Exception) -> bool:
        return isinstance(exc, sqlite3.IntegrityError)

    def _is_already_exists(self, exc: Exception) -> bool:
        return isinstance(exc, sqlite3.OperationalError) and "already exists" in str(exc)

    def _is_duplicate_column(self, exc: Exception) -> bool:
        return isinstance(exc, sqlite3.OperationalError) and "duplicate column" in str(exc).lower()

    def upsert_migration(self, filename: str, content: str, checksum: str) -> None:
        self._run(
            """
            INSERT INTO meta (filename, content, md5) VALUES (?, ?, ?)
            ON CONFLICT (filename) DO UPDATE SET md5=excluded.md5, content=excluded.content
            """,
            (filename, content, checksum),
            action="upsert migration",
        )

    # ------------------------------------------------------------------
    # v0 -> v1 upgrade
    # ------------------------------------------------------------------

    def table_columns(self, table: str) -> list[str]:
        rows = self._fetchall(f"PRAGMA table_info({table})", action=f"inspect {table}")
        return [row[1] for row in rows]

    def _rebuild_meta(self, step: str, *, content_not_null: bool) -> None:
        """Recreate ``meta`` without the md5 uniqueness constraint.

        SQLite cannot drop a column constraint or change nullability in
        place, so the table is copied into a new definition and renamed.
        """
        existing = self.table_columns("meta")
        copied = ", ".join(col for col in _META_COLUMNS if col in existing)
        content_type = "TEXT NOT NULL" if content_not_null else "TEXT"
        content_col = f"content {content_type},"
        if "content" not in existing:
            content_col = ""
        self._step(step, "DROP TABLE IF EXISTS meta_rebuild")
        self._step(
            step,
            f"""
            CREATE TABLE meta_rebuild (
                filename TEXT UNIQUE NOT NULL,
                md5 TEXT NOT NULL,
                {content_col}
                createdat TEXT NOT NULL DEFAULT {_NOW}
            )""",
        )
        self._step(step, f"INSERT INTO meta_rebuild ({copied}) SELECT {copied} FROM meta")
        self._step(step, "DROP TABLE meta")
        self._step(step, "ALTER TABLE meta_rebuild RENAME TO meta")

    def upgrade_to_v1(self, existing: Sequence[Migration]) -> None:
        logger.info("metadata.upgrade.started", store="sqlite", migrations=len(existing))
        with self.transaction():
            self._rebuild_meta("remove md5 unique", content_not_null=False)

            self._step(
                "add content column",
                "ALTER TABLE meta ADD COLUMN content TEXT",
                tolerate=self._is_duplicate_column,
            )
            for m in existing:
                self._step(
                    "update meta content",
                    "UPDATE meta SET content=? WHERE filename=?",
                    (m.content, m.filename),
                )
            self._rebuild_meta("update meta content not null", content_not_null=True)

            self._step(
                "add metacheckpoints content",
                "ALTER TABLE metacheckpoints ADD COLUMN content TEXT NOT NULL DEFAULT ''",
                tolerate=self._is_duplicate_column,
            )

            self._step(
                "create metaversion table",
                "CREATE TABLE IF NOT EXISTS metaversion (version INTEGER NOT NULL)",
            )
            self._step("delete metaversion", "DELETE FROM metaversion")
            self._step(
                "insert metaversion",
                "INSERT INTO metaversion (version) VALUES (?)",
                (SCHEMA_VERSION,),
            )
        logger.info("metadata.upgrade.completed", store="sqlite", version=SCHEMA_VERSION)


__all__ = [
    "SQLiteStore",
]
