"""Checkpointed migration runner.

Drives a :class:`~ratchet.core.stores.MigrationStore`: prepares the tracking
tables (upgrading legacy metadata when needed), checks applied migrations for
drift, and applies pending migrations one statement at a time. Every executed
statement is recorded as a checkpoint that commits on its own, so a run that
crashes halfway through a migration resumes after the last statement that
completed instead of re-running it.
"""

from __future__ import annotations

import re
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field

from ratchet.core.errors import ChecksumMismatchError, RatchetError
from ratchet.core.hashing import compute_checksum
from ratchet.core.logging import LogContext, get_logger
from ratchet.core.stores.base import MigrationStore
from ratchet.core.stores.types import LEGACY_SCHEMA_VERSION, SCHEMA_VERSION, Migration

logger = get_logger(__name__)

_LEADING_NUMBER = re.compile(r"^\s*(\d+)")


def numeric_filename_key(filename: str) -> tuple[int, str]:
    """Sort key matching the stores' numeric-aware filename ordering."""
    match = _LEADING_NUMBER.match(filename)
    return (int(match.group(1)) if match else 0, filename)


def split_statements(content: str) -> list[str]:
    """Split migration text into statements on ``;``.

    Semicolons inside quoted strings, quoted identifiers and comments do
    not split. Chunks that hold only whitespace or comments are dropped.
    """
    statements: list[str] = []
    buf: list[str] = []
    has_code = False
    quote: str | None = None
    i, n = 0, len(content)

    def flush() -> None:
        text = "".join(buf).strip()
        if has_code and text:
            statements.append(text)
        buf.clear()

    while i < n:
        ch = content[i]
        nxt = content[i + 1] if i + 1 < n else ""
        if quote is not None:
            buf.append(ch)
            if ch == quote:
                quote = None
            i += 1
        elif ch == "-" and nxt == "-":
            end = content.find("\n", i)
            end = n if end == -1 else end
            buf.append(content[i:end])
            i = end
        elif ch == "/" and nxt == "*":
            end = content.find("*/", i + 2)
            end = n if end == -1 else end + 2
            buf.append(content[i:end])
            i = end
        elif ch == ";":
            flush()
            has_code = False
            i += 1
        else:
            if ch in "'\"`":
                quote = ch
            if not ch.isspace():
                has_code = True
            buf.append(ch)
            i += 1
    flush()
    return statements


@dataclass(frozen=True)
class MigrationFile:
    """A migration as supplied by the caller: a filename and its full text."""

    filename: str
    content: str

    @property
    def checksum(self) -> str:
        return compute_checksum(self.content)

    def statements(self) -> list[str]:
        return split_statements(self.content)

    def to_migration(self) -> Migration:
        return Migration(filename=self.filename, content=self.content, checksum=self.checksum)


@dataclass
class RunResult:
    """Result of a migration run."""

    applied: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)
    # filename -> number of statements skipped because a checkpoint matched
    resumed: dict[str, int] = field(default_factory=dict)
    errors: dict[str, str] = field(default_factory=dict)

    @property
    def success(self) -> bool:
        return len(self.errors) == 0


class MigrationRunner:
    """Applies migrations through a store, resuming from checkpoints.

    Parameters
    ----------
    store
        An open :class:`MigrationStore`.

    Example::

        with get_store("sqlite", path="state.db") as store:
            runner = MigrationRunner(store)
            files = [MigrationFile("001_init.sql", sql)]
            runner.prepare(files)
            result = runner.apply(files)
    """

    def __init__(self, store: MigrationStore) -> None:
        self._store = store

    @property
    def store(self) -> MigrationStore:
        return self._store

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def prepare(self, files: Sequence[MigrationFile] = ()) -> int:
        """Create the tracking tables and upgrade legacy metadata.

        ``files`` supplies the verbatim content that legacy rows lack; it is
        only consulted when the store reports schema version 0.

        A store whose ``meta`` table predates the content column is legacy
        even when it has no version table yet; a version table created for
        it is seeded with 0 rather than the current version.

        Returns the schema version after preparation.
        """
        default = SCHEMA_VERSION
        if self._store.has_legacy_migrations_table():
            default = LEGACY_SCHEMA_VERSION
        version = self._store.ensure_version_table(default)
        self._store.ensure_migrations_table()
        self._store.ensure_checkpoints_table()
        if version == LEGACY_SCHEMA_VERSION:
            logger.info("metadata.legacy_detected", files=len(files))
            self._store.upgrade_to_v1([f.to_migration() for f in files])
            version = SCHEMA_VERSION
        return version

    def verify(self, files: Iterable[MigrationFile] = ()) -> list[Migration]:
        """Check applied migrations for corruption and drift.

        Raises:
            ChecksumMismatchError: A record's checksum does not match its own
                content, or a supplied file differs from what was applied.
        """
        applied = self._store.list_migrations()
        by_name = {m.filename: m for m in applied}
        for m in applied:
            if not m.verify():
                raise ChecksumMismatchError(
                    m.filename,
                    m.checksum,
                    compute_checksum(m.content),
                    message=f"recorded migration {m.filename} is corrupted",
                )
        for f in files:
            recorded = by_name.get(f.filename)
            if recorded is not None and recorded.checksum != f.checksum:
                raise ChecksumMismatchError(
                    f.filename,
                    recorded.checksum,
                    f.checksum,
                    message=f"migration {f.filename} changed since it was applied",
                )
        return applied

    def pending(self, files: Iterable[MigrationFile]) -> list[MigrationFile]:
        """Supplied migrations not yet applied, in apply order."""
        applied = {m.filename for m in self._store.list_migrations()}
        return sorted(
            (f for f in files if f.filename not in applied),
            key=lambda f: numeric_filename_key(f.filename),
        )

    def apply(self, files: Sequence[MigrationFile]) -> RunResult:
        """Apply all pending migrations in numeric filename order.

        Stops at the first failure. The failed migration's checkpoints stay
        in place so the next run resumes after its last completed statement.
        """
        self.verify(files)
        result = RunResult()
        pending = {f.filename for f in self.pending(files)}

        for f in sorted(files, key=lambda f: numeric_filename_key(f.filename)):
            if f.filename not in pending:
                result.skipped.append(f.filename)
                continue
            with LogContext(filename=f.filename):
                try:
                    resumed = self._apply_one(f)
                except RatchetError as e:
                    result.errors[f.filename] = str(e)
                    logger.error("migration.failed", error=str(e), **e.to_dict().get("context", {}))
                    break
            result.applied.append(f.filename)
            if resumed:
                result.resumed[f.filename] = resumed

        if result.success:
            self._store.clear_checkpoints()
        return result

    def amend(self, file: MigrationFile) -> None:
        """Re-record an intentionally edited migration without re-running it."""
        self._store.upsert_migration(file.filename, file.content, file.checksum)
        logger.info("migration.amended", filename=file.filename, checksum=file.checksum)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _apply_one(self, f: MigrationFile) -> int:
        """Run one migration's statements, skipping checkpointed ones.

        Returns the number of statements skipped.
        """
        done = self._store.list_checkpoints(f.filename)
        statements = f.statements()
        if len(done) > len(statements):
            raise ChecksumMismatchError(
                f.filename,
                f"{len(done)} checkpoints",
                f"{len(statements)} statements",
                message=f"{f.filename} has more checkpoints than statements",
            )

        skipped = 0
        for idx, statement in enumerate(statements):
            checksum = compute_checksum(statement)
            if idx < len(done):
                if done[idx] != checksum:
                    raise ChecksumMismatchError(
                        f.filename,
                        done[idx],
                        checksum,
                        message=f"statement {idx} of {f.filename} changed since it was checkpointed",
                    )
                skipped += 1
                logger.debug("checkpoint.skipped", idx=idx)
                continue
            self._store.exec(statement).close()
            self._store.append_checkpoint(f.filename, statement, checksum, idx)
            logger.debug("statement.executed", idx=idx)

        self._store.insert_migration(f.filename, f.content, f.checksum)
        self._store.clear_checkpoints()
        logger.info(
            "migration.applied",
            statements=len(statements),
            resumed_from=skipped,
        )
        return skipped


__all__ = [
    "MigrationFile",
    "MigrationRunner",
    "RunResult",
    "numeric_filename_key",
    "split_statements",
]
