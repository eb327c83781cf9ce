"""Migration store base class.

Manifesto:
    The migration runner only ever talks to a :class:`MigrationStore`. It
    never sees a driver, a cursor class or a vendor error code. Each backend
    wraps one DB-API connection (composition, not inheritance), re-exposes
    the subset of operations the runner needs, and translates driver errors
    into the :mod:`ratchet.core.errors` hierarchy with operation context.

Features:
    - Abstract lifecycle (``open``/``close``) and every tracking operation
    - Shared ``exec`` / query helpers with uniform error wrapping
    - ``transaction()`` context manager: commit on success, rollback on error
    - Context-manager protocol for connection lifecycle

Tags:
    ratchet, store, abstract-base, adapter-pattern
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Callable, Iterator, Sequence
from contextlib import contextmanager
from typing import Any

from ratchet.core.errors import (
    DatabaseError,
    IntegrityError,
    QueryError,
    RatchetError,
    SchemaError,
    TransactionError,
)
from ratchet.core.logging import get_logger

from .types import LEGACY_SCHEMA_VERSION, Migration, StoreConfig, StoreType

logger = get_logger(__name__)


class MigrationStore(ABC):
    """
    Abstract base class for migration-state stores.

    Subclasses hold a DB-API connection in ``self._conn`` opened in
    autocommit mode, so every operation outside :meth:`transaction`
    commits on its own.
    """

    def __init__(self, config: StoreConfig):
        self._config = config
        self._conn: Any = None

    @property
    def store_type(self) -> StoreType:
        return self._config.store_type

    @property
    def config(self) -> StoreConfig:
        return self._config

    @property
    def is_open(self) -> bool:
        """Whether :meth:`open` has materialized a handle."""
        return self._conn is not None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @abstractmethod
    def _connect(self) -> Any:
        """Open and return a DB-API connection in autocommit mode."""
        ...

    def open(self) -> None:
        """Materialize the database handle. A second call is a no-op."""
        if self._conn is not None:
            return
        self._conn = self._connect()
        logger.info("store.opened", **self._config.describe())

    def close(self) -> None:
        """Release the database handle. Safe to call more than once."""
        if self._conn is None:
            return
        conn, self._conn = self._conn, None
        try:
            conn.close()
        except Exception as e:
            raise DatabaseError("close database connection", cause=e) from e
        logger.info("store.closed", store=self.store_type.value)

    def __enter__(self) -> MigrationStore:
        self.open()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    # ------------------------------------------------------------------
    # Statement execution
    # ------------------------------------------------------------------

    @abstractmethod
    def _is_integrity_error(self, exc: Exception) -> bool:
        """Whether a driver exception is a constraint violation."""
        ...

    @abstractmethod
    def _is_already_exists(self, exc: Exception) -> bool:
        """Whether a driver exception reports that a table already exists."""
        ...

    @abstractmethod
    def _is_duplicate_column(self, exc: Exception) -> bool:
        """Whether a driver exception reports that a column already exists."""
        ...

    def _require_open(self) -> Any:
        if self._conn is None:
            raise DatabaseError("store is not open").with_context(store=self.store_type.value)
        return self._conn

    def _execute(
        self,
        sql: str,
        params: Sequence[Any] = (),
        *,
        action: str,
        error: type[DatabaseError] = QueryError,
    ) -> Any:
        conn = self._require_open()
        cursor = conn.cursor()
        try:
            if params:
                cursor.execute(sql, tuple(params))
            else:
                cursor.execute(sql)
        except Exception as e:
            cursor.close()
            error_cls = IntegrityError if self._is_integrity_error(e) else error
            raise error_cls(action, cause=e).with_context(
                store=self.store_type.value, operation=action
            ) from e
        return cursor

    def _fetchall(self, sql: str, params: Sequence[Any] = (), *, action: str) -> list[tuple]:
        cursor = self._execute(sql, params, action=action)
        try:
            return [tuple(row) for row in cursor.fetchall()]
        finally:
            cursor.close()

    def _run(
        self,
        sql: str,
        params: Sequence[Any] = (),
        *,
        action: str,
        error: type[DatabaseError] = QueryError,
    ) -> None:
        self._execute(sql, params, action=action, error=error).close()

    def exec(self, sql: str, *args: Any) -> Any:
        """Execute arbitrary migration SQL and return the driver cursor.

        The caller owns the returned cursor. Failures raise
        :class:`QueryError` (or :class:`IntegrityError` for constraint
        violations) with the driver error chained.
        """
        return self._execute(sql, args, action="exec")

    @contextmanager
    def transaction(self) -> Iterator[None]:
        """Run the enclosed operations in one transaction.

        Commits on success. Any exception rolls back and is re-raised as
        :class:`TransactionError` unless it already is one.
        """
        conn = self._require_open()
        self._begin(conn)
        try:
            yield
        except Exception as e:
            try:
                conn.rollback()
            except Exception as rollback_exc:
                logger.error("transaction.rollback_failed", error=str(rollback_exc))
            logger.warning("transaction.rolled_back", error=str(e))
            if isinstance(e, TransactionError):
                raise
            raise TransactionError("transaction failed", cause=e) from e
        try:
            conn.commit()
        except Exception as e:
            raise TransactionError("commit transaction", cause=e) from e

    @abstractmethod
    def _begin(self, conn: Any) -> None:
        """Start an explicit transaction on an autocommit connection."""
        ...

    def _step(
        self,
        step: str,
        sql: str,
        params: Sequence[Any] = (),
        *,
        tolerate: Callable[[Exception], bool] | None = None,
    ) -> None:
        """Run one named step of a multi-step transaction.

        ``tolerate`` marks driver errors meaning the step is already done;
        those are logged and skipped. Anything else raises TransactionError.
        """
        try:
            self._run(sql, params, action=step, error=SchemaError)
        except RatchetError as e:
            if tolerate is not None and isinstance(e.cause, Exception) and tolerate(e.cause):
                logger.info("metadata.upgrade.step_skipped", step=step, reason=str(e.cause))
                return
            raise TransactionError(step, step=step, cause=e) from e

    # ------------------------------------------------------------------
    # Metadata schema
    # ------------------------------------------------------------------

    #: DDL for the tracking tables. Backends supply vendor-specific types.
    VERSION_TABLE_DDL: str = ""
    MIGRATIONS_TABLE_DDL: str = ""
    CHECKPOINTS_TABLE_DDL: str = ""

    def ensure_version_table(self, default_version: int) -> int:
        """Create the version table if needed and return the current version.

        A freshly created table is seeded with ``default_version``. A table
        that already existed but holds no row is seeded with 0 instead, which
        marks a legacy store that predates checkpoints.
        """
        created = True
        try:
            self._run(self.VERSION_TABLE_DDL, action="create metaversion table", error=SchemaError)
        except SchemaError as e:
            if not (isinstance(e.cause, Exception) and self._is_already_exists(e.cause)):
                raise
            created = False

        rows = self._fetchall("SELECT version FROM metaversion", action="get version")
        if rows:
            return int(rows[0][0])

        version = default_version if created else LEGACY_SCHEMA_VERSION
        self._run(
            f"INSERT INTO metaversion (version) VALUES ({self.placeholder})",
            (version,),
            action="insert version",
            error=SchemaError,
        )
        logger.info("metadata.version_seeded", version=version, created=created)
        return version

    def ensure_migrations_table(self) -> None:
        """Create the applied-migrations table if absent."""
        self._run(self.MIGRATIONS_TABLE_DDL, action="create meta table", error=SchemaError)

    def ensure_checkpoints_table(self) -> None:
        """Create the checkpoint table if absent."""
        self._run(
            self.CHECKPOINTS_TABLE_DDL, action="create metacheckpoints table", error=SchemaError
        )

    @abstractmethod
    def table_columns(self, table: str) -> list[str]:
        """Column names of ``table``, or an empty list if it does not exist."""
        ...

    def has_legacy_migrations_table(self) -> bool:
        """Whether ``meta`` exists in its v0 shape, without a content column."""
        columns = self.table_columns("meta")
        return bool(columns) and "content" not in columns

    @abstractmethod
    def upgrade_to_v1(self, existing: Sequence[Migration]) -> None:
        """Upgrade legacy (v0) tracking tables to v1 in one transaction.

        Complete any migrations before calling this; running it with
        pending checkpoints is unsupported. Every step tolerates having
        already been applied, so the upgrade can be re-run.
        """
        ...

    # ------------------------------------------------------------------
    # Migration records
    # ------------------------------------------------------------------

    #: Expression ordering filenames by their leading number.
    NUMERIC_FILENAME_ORDER: str = "filename"

    def list_migrations(self) -> list[Migration]:
        """All applied migrations, ordered by the numeric filename prefix."""
        rows = self._fetchall(
            "SELECT filename, content, md5, createdat FROM meta "
            f"ORDER BY {self.NUMERIC_FILENAME_ORDER}, filename",
            action="list migrations",
        )
        return [
            Migration(filename=row[0], content=row[1], checksum=row[2], created_at=row[3])
            for row in rows
        ]

    def insert_migration(self, filename: str, content: str, checksum: str) -> None:
        """Record a new migration. A duplicate filename raises IntegrityError."""
        p = self.placeholder
        try:
            self._run(
                f"INSERT INTO meta (filename, content, md5) VALUES ({p}, {p}, {p})",
                (filename, content, checksum),
                action="insert migration",
            )
        except IntegrityError as e:
            raise e.with_context(filename=filename)

    @abstractmethod
    def upsert_migration(self, filename: str, content: str, checksum: str) -> None:
        """Insert a migration or overwrite content and checksum for its filename."""
        ...

    # ------------------------------------------------------------------
    # Checkpoint log
    # ------------------------------------------------------------------

    def list_checkpoints(self, filename: str) -> list[str]:
        """Checksums of the recorded checkpoints for ``filename`` by idx."""
        rows = self._fetchall(
            f"SELECT md5 FROM metacheckpoints WHERE filename={self.placeholder} ORDER BY idx",
            (filename,),
            action="list checkpoints",
        )
        return [row[0] for row in rows]

    def append_checkpoint(self, filename: str, content: str, checksum: str, idx: int) -> None:
        """Record one executed sub-statement.

        A duplicate ``(filename, idx)`` raises IntegrityError; existing rows
        are never overwritten.
        """
        p = self.placeholder
        try:
            self._run(
                f"INSERT INTO metacheckpoints (filename, content, idx, md5) VALUES ({p}, {p}, {p}, {p})",
                (filename, content, idx, checksum),
                action="insert checkpoint",
            )
        except IntegrityError as e:
            raise e.with_context(filename=filename, idx=idx)

    def clear_checkpoints(self) -> None:
        """Delete every checkpoint for every migration."""
        self._run("DELETE FROM metacheckpoints", action="delete checkpoints")
        logger.debug("checkpoints.cleared", store=self.store_type.value)

    # ------------------------------------------------------------------
    # Dialect
    # ------------------------------------------------------------------

    @property
    @abstractmethod
    def placeholder(self) -> str:
        """Parameter placeholder for this driver."""
        ...


__all__ = [
    "MigrationStore",
]
