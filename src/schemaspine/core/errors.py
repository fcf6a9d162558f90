"""
Structured error types for schema-spine.

Every failure the engine raises carries a category, a retry hint, structured
context (migration version, stage, step, table) and the chained driver error,
so callers can route, log and decide on retries without parsing messages.

Manifesto:
    - **Typed hierarchy:** One subclass per failure domain (config, validation,
      migration, transformation, database, concurrency)
    - **Explicit retry semantics:** Each error knows whether a retry can help
    - **Rich context:** Errors carry migration/stage/step metadata for logs
    - **Error chaining:** The driver exception is kept as ``cause``

Architecture:
    ::

        ┌─────────────────────────────────────────────────────────────────┐
        │                      SchemaSpineError                           │
        │           (category, retryable, context, cause)                 │
        ├─────────────────────────────────────────────────────────────────┤
        │                                                                 │
        │  ConfigError          ValidationError         MigrationError    │
        │  (CONFIG)             (VALIDATION)            (MIGRATION)       │
        │     │                     │                       │             │
        │  InvalidConfigError   MigrationValidationError StageExecution.. │
        │                       PreMigrationError       RollbackError     │
        │                       PostMigrationValid..                      │
        │                       TransformationValid..                     │
        │                                                                 │
        │  TransformationError  DatabaseError           ConcurrencyError  │
        │  (TRANSFORMATION)     (DATABASE)              (CONCURRENCY)     │
        │                           │                       │             │
        │                       TransactionError        LockNotAcquired.. │
        │                                               SagaError         │
        └─────────────────────────────────────────────────────────────────┘

Examples:
    >>> error = StageExecutionError("Stage add_column failed")
    >>> error.with_context(migration_version="2025.08.27.1000", stage="add_column")
    StageExecutionError('Stage add_column failed', category=MIGRATION)
    >>> error.context.stage
    'add_column'

Guardrails:
    ❌ DON'T: Raise bare Exception from engine code
    ✅ DO: Raise the SchemaSpineError subclass for the failing domain

    ❌ DON'T: Drop the driver exception when wrapping
    ✅ DO: Pass it as ``cause=`` and ``raise ... from``

Tags:
    error-handling, exception-hierarchy, migrations, schema-spine

Doc-Types:
    - API Reference
    - Error Handling Guide
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class ErrorCategory(str, Enum):
    """
    Standard error categories for classification and routing.

    Categories are grouped by their typical retry behavior:
    - **Infrastructure (sometimes transient):** DATABASE, CONCURRENCY
    - **Authoring errors (never retryable):** CONFIG, VALIDATION
    - **Execution errors:** MIGRATION, TRANSFORMATION
    - **Internal errors:** INTERNAL, UNKNOWN
    """

    DATABASE = "DATABASE"              # Driver, connection, statement errors
    CONCURRENCY = "CONCURRENCY"        # Locks, version conflicts, sagas

    CONFIG = "CONFIG"                  # Malformed migration config
    VALIDATION = "VALIDATION"          # Plan, pre/post validation failures

    MIGRATION = "MIGRATION"            # Stage, rollback execution failures
    TRANSFORMATION = "TRANSFORMATION"  # Data transformation planning

    INTERNAL = "INTERNAL"              # Bugs, unexpected state
    UNKNOWN = "UNKNOWN"                # Uncategorized errors


@dataclass
class ErrorContext:
    """
    Structured metadata attached to an error.

    Only non-None fields are emitted by :meth:`to_dict`, so the context can
    be splatted straight into a structlog call.

    Attributes:
        migration_version: Version of the migration being applied/rolled back
        stage: Name of the evolution stage
        step: Index or name of the step within the stage
        table: Table the failing statement targets
        transaction_id: Id of the active TransactionContext
        sql: The statement that failed (truncated by callers if large)
        metadata: Additional key-value pairs
    """

    migration_version: str | None = None
    stage: str | None = None
    step: str | None = None
    table: str | None = None
    transaction_id: str | None = None
    sql: str | None = None

    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for logging."""
        result = {}
        for key in ["migration_version", "stage", "step", "table", "transaction_id", "sql"]:
            value = getattr(self, key)
            if value is not None:
                result[key] = value
        if self.metadata:
            result.update(self.metadata)
        return result


class SchemaSpineError(Exception):
    """
    Base exception for all schema-spine errors.

    All instances carry:
    - **category:** ErrorCategory for classification and routing
    - **retryable:** Whether repeating the operation may succeed
    - **context:** ErrorContext with migration metadata
    - **cause:** Optional underlying exception for chaining

    Subclasses set ``default_category`` and ``default_retryable``.

    Examples:
        >>> error = SchemaSpineError("Something went wrong")
        >>> error.category
        <ErrorCategory.INTERNAL: 'INTERNAL'>
        >>> error.retryable
        False

        >>> try:
        ...     raise ConnectionError("server closed the connection")
        ... except ConnectionError as e:
        ...     error = DatabaseError("Query failed", cause=e)
        >>> error.cause
        ConnectionError('server closed the connection')
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

    def with_context(self, **kwargs: Any) -> SchemaSpineError:
        """
        Add context to this error (fluent API).

        Usage:
            raise StageExecutionError("Stage failed").with_context(
                migration_version="2025.08.27.1000",
                stage="apply_steps",
            )
        """
        for key, value in kwargs.items():
            if hasattr(self.context, key) and key != "metadata":
                setattr(self.context, key, value)
            else:
                self.context.metadata[key] = value
        return self

    def to_dict(self) -> dict[str, Any]:
        """Convert error to dictionary for logging/serialization."""
        result = {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "category": self.category.value,
            "retryable": self.retryable,
        }

        context_dict = self.context.to_dict()
        if context_dict:
            result["context"] = context_dict

        if self.cause is not None:
            result["cause"] = str(self.cause)

        return result

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.message!r}, category={self.category.value})"


# =============================================================================
# CONFIG ERRORS
# =============================================================================


class ConfigError(SchemaSpineError):
    """Configuration or migration-config authoring error."""

    default_category = ErrorCategory.CONFIG
    default_retryable = False


class InvalidConfigError(ConfigError):
    """A migration config or identifier failed validation."""

    def __init__(self, message: str, *, field_name: str | None = None, **kwargs: Any):
        super().__init__(message, **kwargs)
        if field_name:
            self.context.metadata["field"] = field_name


# =============================================================================
# VALIDATION ERRORS
# =============================================================================


class ValidationError(SchemaSpineError):
    """A validation gate rejected the migration."""

    default_category = ErrorCategory.VALIDATION
    default_retryable = False

    def __init__(self, message: str, *, errors: list[str] | None = None, **kwargs: Any):
        super().__init__(message, **kwargs)
        self.errors = list(errors or [])


class MigrationValidationError(ValidationError):
    """Plan validation found error-severity issues."""


class PreMigrationError(ValidationError):
    """Required version or dependencies are not satisfied."""


class PostMigrationValidationError(ValidationError):
    """Custom validators or integrity checks failed after the stages ran."""


class TransformationValidationError(ValidationError):
    """A data transformation validation rule did not match."""


# =============================================================================
# MIGRATION ERRORS
# =============================================================================


class MigrationError(SchemaSpineError):
    """Failure while executing a migration."""

    default_category = ErrorCategory.MIGRATION
    default_retryable = False


class StageExecutionError(MigrationError):
    """A stage's transaction failed; later stages were not run."""


class RollbackError(MigrationError):
    """A rollback step or rollback verification failed."""


class TransformationError(SchemaSpineError):
    """A data transformation could not be planned."""

    default_category = ErrorCategory.TRANSFORMATION
    default_retryable = False


# =============================================================================
# DATABASE ERRORS
# =============================================================================


class DatabaseError(SchemaSpineError):
    """Database operation error."""

    default_category = ErrorCategory.DATABASE
    default_retryable = False


class TransactionError(DatabaseError):
    """Transaction lifecycle error (begin, commit, savepoint, state)."""

    def __init__(self, message: str, *, code: str = "TRANSACTION_ERROR", **kwargs: Any):
        super().__init__(message, **kwargs)
        self.code = code


# =============================================================================
# CONCURRENCY ERRORS
# =============================================================================


class ConcurrencyError(SchemaSpineError):
    """Lock or concurrency-control failure."""

    default_category = ErrorCategory.CONCURRENCY
    default_retryable = True


class LockNotAcquiredError(ConcurrencyError):
    """An advisory try-lock returned false."""


class SagaError(ConcurrencyError):
    """Raised by saga bookkeeping (duplicate step names, empty saga)."""

    default_retryable = False


__all__ = [
    "ErrorCategory",
    "ErrorContext",
    "SchemaSpineError",
    # Config
    "ConfigError",
    "InvalidConfigError",
    # Validation
    "ValidationError",
    "MigrationValidationError",
    "PreMigrationError",
    "PostMigrationValidationError",
    "TransformationValidationError",
    # Migration
    "MigrationError",
    "StageExecutionError",
    "RollbackError",
    "TransformationError",
    # Database
    "DatabaseError",
    "TransactionError",
    # Concurrency
    "ConcurrencyError",
    "LockNotAcquiredError",
    "SagaError",
]
