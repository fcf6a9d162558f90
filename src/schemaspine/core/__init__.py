"""schema-spine core -- errors, logging, settings and the transaction boundary.

Architecture::

    Layer 1 -- Types & Errors
        errors.py          Structured error hierarchy (SchemaSpineError)
        protocols.py       QueryClient / TransactionRunner contracts
        sql.py             Identifier validation, batch placeholders
        models.py          Pydantic base for config models

    Layer 2 -- Runtime
        settings.py        pydantic-settings (SCHEMASPINE_*)
        logging.py         structlog configuration
        retry.py           Retry strategies (constant, exponential)
        transactions.py    psycopg 3 transaction boundary
"""

from schemaspine.core.errors import (
    ConcurrencyError,
    ConfigError,
    DatabaseError,
    ErrorCategory,
    ErrorContext,
    InvalidConfigError,
    LockNotAcquiredError,
    MigrationError,
    MigrationValidationError,
    PostMigrationValidationError,
    PreMigrationError,
    RollbackError,
    SagaError,
    SchemaSpineError,
    StageExecutionError,
    TransactionError,
    TransformationError,
    TransformationValidationError,
    ValidationError,
)
from schemaspine.core.protocols import QueryClient, QueryResult, TransactionRunner

__all__ = [
    "ErrorCategory",
    "ErrorContext",
    "SchemaSpineError",
    "ConfigError",
    "InvalidConfigError",
    "ValidationError",
    "MigrationValidationError",
    "PreMigrationError",
    "PostMigrationValidationError",
    "TransformationValidationError",
    "MigrationError",
    "StageExecutionError",
    "RollbackError",
    "TransformationError",
    "DatabaseError",
    "TransactionError",
    "ConcurrencyError",
    "LockNotAcquiredError",
    "SagaError",
    "QueryClient",
    "QueryResult",
    "TransactionRunner",
]
