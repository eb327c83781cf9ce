"""Ratchet Core -- migration-state tracking primitives.

Architecture::

    Layer 1 -- Errors & Utilities
        errors.py          Structured error hierarchy (RatchetError)
        hashing.py         MD5 content checksums
        logging.py         Structured logging (structlog)
        settings.py        RatchetSettings (pydantic-settings)

    Layer 2 -- Stores
        stores/            MigrationStore contract, MySQL + SQLite backends,
                           mutual-TLS profile, store registry

    Layer 3 -- Runner
        migrations/        Checkpointed MigrationRunner
"""

from ratchet.core.errors import (
    ChecksumMismatchError,
    ConfigError,
    DatabaseConnectionError,
    DatabaseError,
    IntegrityError,
    MissingConfigError,
    RatchetError,
    SchemaError,
    TLSVerificationError,
    TransactionError,
)
from ratchet.core.migrations import MigrationFile, MigrationRunner, RunResult
from ratchet.core.stores import (
    SCHEMA_VERSION,
    Migration,
    MigrationStore,
    MySQLStore,
    SQLiteStore,
    create_store,
    get_store,
)

__all__ = [
    # Errors
    "RatchetError",
    "ConfigError",
    "MissingConfigError",
    "DatabaseConnectionError",
    "TLSVerificationError",
    "DatabaseError",
    "SchemaError",
    "IntegrityError",
    "TransactionError",
    "ChecksumMismatchError",
    # Stores
    "SCHEMA_VERSION",
    "Migration",
    "MigrationStore",
    "MySQLStore",
    "SQLiteStore",
    "get_store",
    "create_store",
    # Runner
    "MigrationFile",
    "MigrationRunner",
    "RunResult",
]
