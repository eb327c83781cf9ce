"""
Structured error types for Ratchet.

Every failure a store or the migration runner can raise is a subclass of
:class:`RatchetError`. Errors carry a category, a retryable flag, structured
context (which store, which migration, which statement) and the chained
driver exception that caused them, so callers can decide between
skip-and-continue and abort without parsing messages.

Manifesto:
    - **Typed Error Hierarchy:** Configuration, connection, schema, integrity
      and transaction failures are distinct types
    - **Wrap, don't swallow:** Driver errors are wrapped with the operation
      that was being attempted and chained as ``cause``
    - **Explicit Retry Semantics:** Each error knows if it's retryable

Architecture:
    ::

        ┌──────────────────────────────────────────────────────────────┐
        │                        RatchetError                           │
        │  (category, retryable, context, cause)                        │
        ├──────────────────────────────────────────────────────────────┤
        │                                                               │
        │  ConfigError              DatabaseConnectionError             │
        │  (CONFIG)                 (CONNECTION)                        │
        │       │                        │                              │
        │  MissingConfigError       TLSVerificationError                │
        │  InvalidConfigError                                           │
        │                                                               │
        │  DatabaseError (DATABASE)                                     │
        │       │                                                       │
        │  SchemaError   IntegrityError   TransactionError              │
        │  QueryError    ChecksumMismatchError                          │
        └──────────────────────────────────────────────────────────────┘

Examples:
    Distinguishing "already applied" from other failures:

    >>> try:
    ...     store.insert_migration("001_init.sql", sql, checksum)
    ... except IntegrityError:
    ...     logger.info("migration.already_recorded")

    Adding context to an error:

    >>> err = SchemaError("create meta table").with_context(store="mysql")
    >>> err.context.store
    'mysql'

Tags:
    error-handling, exception-hierarchy, error-context, ratchet
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class ErrorCategory(str, Enum):
    """Standard error categories for classification and routing."""

    CONFIG = "CONFIG"             # Missing or invalid settings
    CONNECTION = "CONNECTION"     # Cannot reach or authenticate to the database
    DATABASE = "DATABASE"         # Statement, schema or transaction failures
    INTEGRITY = "INTEGRITY"       # Constraint violations, checksum drift
    INTERNAL = "INTERNAL"         # Bugs, unexpected state


@dataclass
class ErrorContext:
    """
    Structured metadata attached to an error.

    Attributes:
        store: Backend name ("mysql", "sqlite")
        operation: What was being attempted ("insert migration")
        filename: Migration filename involved, if any
        idx: Checkpoint index involved, if any
        step: Upgrade step that failed, if any
        metadata: Any additional key/value pairs
    """

    store: str | None = None
    operation: str | None = None
    filename: str | None = None
    idx: int | None = None
    step: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Serialize all set fields, flattening metadata."""
        result: dict[str, Any] = {}
        for key in ("store", "operation", "filename", "idx", "step"):
            value = getattr(self, key)
            if value is not None:
                result[key] = value
        result.update(self.metadata)
        return result


class RatchetError(Exception):
    """
    Base exception for all Ratchet errors.

    Subclasses set ``default_category`` and ``default_retryable`` to give
    sensible defaults for their domain. The underlying exception, when
    there is one, is passed as ``cause`` and chained as ``__cause__``.
    """

    default_category: ErrorCategory = ErrorCategory.INTERNAL
    default_retryable: bool = False

    def __init__(
        self,
        message: str,
        *,
        category: ErrorCategory | None = None,
        retryable: bool | None = None,
        context: ErrorContext | None = None,
        cause: BaseException | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.category = category or self.default_category
        self.retryable = retryable if retryable is not None else self.default_retryable
        self.context = context or ErrorContext()
        self.cause = cause

        if cause is not None:
            self.__cause__ = cause

    def with_context(self, **kwargs: Any) -> RatchetError:
        """
        Add context to this error (fluent API).

        Usage:
            raise IntegrityError("duplicate checkpoint").with_context(
                filename="001_init.sql", idx=3
            )
        """
        for key, value in kwargs.items():
            if key != "metadata" and hasattr(self.context, key):
                setattr(self.context, key, value)
            else:
                self.context.metadata[key] = value
        return self

    def to_dict(self) -> dict[str, Any]:
        """Convert error to dictionary for logging/serialization."""
        result: dict[str, Any] = {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "category": self.category.value,
            "retryable": self.retryable,
        }
        context = self.context.to_dict()
        if context:
            result["context"] = context
        if self.cause is not None:
            result["cause"] = str(self.cause)
        return result

    def __str__(self) -> str:
        if self.cause is not None:
            return f"{self.message}: {self.cause}"
        return self.message

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.message!r}, category={self.category.value})"


# =============================================================================
# CONFIGURATION ERRORS
# =============================================================================


class ConfigError(RatchetError):
    """
    Configuration error.

    Raised before any I/O. Never retryable - configuration must be fixed.
    """

    default_category = ErrorCategory.CONFIG
    default_retryable = False


class MissingConfigError(ConfigError):
    """Required configuration is missing."""

    def __init__(self, key: str, message: str | None = None):
        self.key = key
        super().__init__(message or f"Missing required configuration: {key}")


class InvalidConfigError(ConfigError):
    """Configuration value is invalid."""

    def __init__(self, key: str, value: Any, message: str | None = None):
        self.key = key
        self.value = value
        super().__init__(message or f"Invalid configuration for {key}: {value!r}")


# =============================================================================
# CONNECTION ERRORS
# =============================================================================


class DatabaseConnectionError(RatchetError):
    """Cannot read TLS material, register the TLS profile or open the handle."""

    default_category = ErrorCategory.CONNECTION
    default_retryable = True


class TLSVerificationError(DatabaseConnectionError):
    """The peer certificate was rejected by the verification hook."""

    default_retryable = False


# =============================================================================
# DATABASE ERRORS
# =============================================================================


class DatabaseError(RatchetError):
    """Database statement or transaction error."""

    default_category = ErrorCategory.DATABASE
    default_retryable = False


class QueryError(DatabaseError):
    """A statement handed to ``exec()`` or a read query failed."""

    pass


class SchemaError(DatabaseError):
    """Unexpected failure creating or altering the tracking tables."""

    pass


class TransactionError(DatabaseError):
    """A multi-step transaction failed and was rolled back."""

    def __init__(self, message: str, *, step: str | None = None, **kwargs: Any):
        super().__init__(message, **kwargs)
        self.step = step
        if step is not None:
            self.context.step = step


class IntegrityError(DatabaseError):
    """
    Integrity constraint violation.

    Raised for a duplicate migration filename on insert and a duplicate
    ``(filename, idx)`` on checkpoint append.
    """

    default_category = ErrorCategory.INTEGRITY


class ChecksumMismatchError(IntegrityError):
    """Recorded checksum does not match the content it was recorded for."""

    def __init__(self, filename: str, expected: str, actual: str, message: str | None = None):
        self.filename = filename
        self.expected = expected
        self.actual = actual
        super().__init__(
            message or f"checksum mismatch for {filename}: recorded {expected}, computed {actual}",
            context=ErrorContext(filename=filename),
        )


__all__ = [
    "ErrorCategory",
    "ErrorContext",
    "RatchetError",
    # Configuration
    "ConfigError",
    "MissingConfigError",
    "InvalidConfigError",
    # Connection
    "DatabaseConnectionError",
    "TLSVerificationError",
    # Database
    "DatabaseError",
    "QueryError",
    "SchemaError",
    "TransactionError",
    "IntegrityError",
    "ChecksumMismatchError",
]
