"""
Transaction boundary over psycopg 3.

Every unit of database work in schema-spine (one evolution stage, one data
batch, one saga step) runs through :meth:`TransactionManager.with_transaction`.
The manager opens the transaction with the configured isolation level,
read-only flag and statement timeout, hands the callable a
:class:`TransactionContext`, and commits or rolls back.

Manifesto:
    - **One connection, many transactions:** advisory locks are session
      scoped, so the manager keeps one connection open across transactions
    - **Positional SQL:** statements use ``$n`` placeholders executed through
      ``psycopg.RawCursor``, so parameter order is visible in the SQL text
    - **Autocommit when required:** ``CREATE INDEX CONCURRENTLY`` cannot run
      inside a transaction block; ``auto_commit=True`` runs each statement on
      its own
    - **Retry the whole unit:** serialization failures and deadlocks re-run
      ``fn`` from the start with exponential backoff

Architecture:
    ::

        with_transaction(fn, config)
            │
            ├── RetryContext(ExponentialBackoff(retryable=is_transient_error))
            │      │
            │      ├── begin(config)          → TransactionContext(status=active)
            │      ├── fn(ctx)                → ctx.client.query(sql, params)
            │      ├── commit(ctx)            → status=committed
            │      └── on error: rollback(ctx) → status=rolledback, re-raise
            │
            └── result of fn

Examples:
    >>> manager = TransactionManager.from_settings(get_settings())
    >>> def bump(ctx):
    ...     return ctx.client.query("UPDATE players SET bankroll = bankroll + $1 WHERE id = $2", [10, "p1"])
    >>> manager.with_transaction(bump).row_count
    1

Tags:
    transaction, psycopg, postgresql, isolation, savepoint, schema-spine

Doc-Types:
    - API Reference
"""

from __future__ import annotations

import time
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field, replace
from datetime import UTC, datetime
from enum import Enum
from typing import Any, TypeVar
from uuid import uuid4

import psycopg
from psycopg import errors as pg_errors
from psycopg.rows import dict_row

from schemaspine.core.errors import TransactionError
from schemaspine.core.logging import get_logger
from schemaspine.core.protocols import QueryClient, QueryResult
from schemaspine.core.retry import ExponentialBackoff, RetryContext, RetryStrategy
from schemaspine.core.settings import SchemaSpineSettings, get_settings
from schemaspine.core.sql import validate_identifier

logger = get_logger(__name__)

T = TypeVar("T")


class IsolationLevel(str, Enum):
    """PostgreSQL transaction isolation levels."""

    READ_COMMITTED = "read_committed"
    REPEATABLE_READ = "repeatable_read"
    SERIALIZABLE = "serializable"

    @property
    def psycopg_level(self) -> psycopg.IsolationLevel:
        return psycopg.IsolationLevel[self.name]

    @property
    def sql(self) -> str:
        return self.value.replace("_", " ").upper()


class TransactionStatus(str, Enum):
    ACTIVE = "active"
    COMMITTED = "committed"
    ROLLEDBACK = "rolledback"
    FAILED = "failed"


@dataclass
class TransactionConfig:
    """
    Options for one transaction.

    Attributes:
        isolation_level: Isolation level for the transaction (None = settings default)
        timeout_ms: ``statement_timeout`` applied for the transaction (None = settings default)
        retry_policy: Strategy for transient failures (None = manager default)
        auto_commit: Run statements outside a transaction block
        read_only: Open the transaction READ ONLY
    """

    isolation_level: IsolationLevel | None = None
    timeout_ms: int | None = None
    retry_policy: RetryStrategy | None = None
    auto_commit: bool = False
    read_only: bool = False


@dataclass
class TransactionContext:
    """State of one running transaction, handed to the unit of work."""

    client: QueryClient
    config: TransactionConfig
    id: str = field(default_factory=lambda: str(uuid4()))
    start_time: datetime = field(default_factory=lambda: datetime.now(UTC))
    operations: list[str] = field(default_factory=list)
    status: TransactionStatus = TransactionStatus.ACTIVE
    savepoints: dict[str, int] = field(default_factory=dict)

    @property
    def is_active(self) -> bool:
        return self.status == TransactionStatus.ACTIVE


class PsycopgQueryClient:
    """:class:`QueryClient` over a psycopg connection using ``$n`` placeholders."""

    def __init__(self, conn: psycopg.Connection, *, operations: list[str] | None = None):
        self._conn = conn
        self._operations = operations if operations is not None else []

    def query(self, sql: str, params: Sequence[Any] | None = None) -> QueryResult:
        self._operations.append(sql)
        with psycopg.RawCursor(self._conn, row_factory=dict_row) as cur:
            cur.execute(sql, list(params) if params is not None else None)
            rows = cur.fetchall() if cur.description is not None else []
            row_count = cur.rowcount if cur.rowcount >= 0 else len(rows)
        return QueryResult(rows=list(rows), row_count=row_count)


def is_transient_error(error: Exception) -> bool:
    """Serialization failures and deadlocks are worth re-running."""
    return isinstance(error, (pg_errors.SerializationFailure, pg_errors.DeadlockDetected))


class TransactionManager:
    """
    Begins, commits and rolls back transactions on one psycopg connection.

    Args:
        connect: Factory returning a new ``psycopg.Connection``; called lazily
            and again after the connection is closed or broken
        settings: Source of the default isolation level, statement timeout
            and retry budget
        retry: Override for the transient-error retry strategy
        sleep: Sleep function used between retries
    """

    def __init__(
        self,
        connect: Callable[[], psycopg.Connection],
        *,
        settings: SchemaSpineSettings | None = None,
        retry: RetryStrategy | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self._connect = connect
        self._settings = settings or get_settings()
        self._retry = retry or ExponentialBackoff(
            max_attempts=self._settings.transaction_max_attempts,
            base_delay=self._settings.transaction_retry_base_delay,
            retryable=is_transient_error,
        )
        self._sleep = sleep
        self._conn: psycopg.Connection | None = None

    @classmethod
    def from_settings(cls, settings: SchemaSpineSettings | None = None) -> TransactionManager:
        settings = settings or get_settings()
        return cls(lambda: psycopg.connect(settings.database_url), settings=settings)

    # ── Connection lifecycle ─────────────────────────────────────────────

    @property
    def connection(self) -> psycopg.Connection:
        if self._conn is None or self._conn.closed or self._conn.broken:
            self._conn = self._connect()
        return self._conn

    def close(self) -> None:
        if self._conn is not None and not self._conn.closed:
            self._conn.close()
        self._conn = None

    def __enter__(self) -> TransactionManager:
        return self

    def __exit__(self, *args: Any) -> None:
        self.close()

    def default_config(self) -> TransactionConfig:
        return TransactionConfig(
            isolation_level=IsolationLevel(self._settings.isolation_level),
            timeout_ms=self._settings.statement_timeout_ms,
        )

    def _resolve(self, config: TransactionConfig | None) -> TransactionConfig:
        if config is None:
            return self.default_config()
        if config.isolation_level is None:
            return replace(config, isolation_level=IsolationLevel(self._settings.isolation_level))
        return config

    # ── Transaction lifecycle ────────────────────────────────────────────

    def begin(self, config: TransactionConfig | None = None) -> TransactionContext:
        """Open a transaction (or an autocommit session) and return its context."""
        config = self._resolve(config)
        conn = self.connection
        if conn.info.transaction_status != psycopg.pq.TransactionStatus.IDLE:
            raise TransactionError(
                "Cannot begin: a transaction is already in progress on this connection",
                code="TRANSACTION_IN_PROGRESS",
            )

        conn.autocommit = config.auto_commit
        if not config.auto_commit:
            conn.isolation_level = config.isolation_level.psycopg_level
            conn.read_only = config.read_only

        operations: list[str] = []
        ctx = TransactionContext(
            client=PsycopgQueryClient(conn, operations=operations),
            config=config,
            operations=operations,
        )

        timeout_ms = config.timeout_ms if config.timeout_ms is not None else self._settings.statement_timeout_ms
        if timeout_ms:
            scope = "" if config.auto_commit else "LOCAL "
            ctx.client.query(f"SET {scope}statement_timeout = {int(timeout_ms)}")

        logger.debug(
            "transaction_started",
            transaction_id=ctx.id,
            isolation_level=config.isolation_level.value,
            auto_commit=config.auto_commit,
            read_only=config.read_only,
        )
        return ctx

    def commit(self, ctx: TransactionContext) -> None:
        self._require_active(ctx)
        if ctx.config.auto_commit:
            self._reset_session(ctx)
        else:
            self.connection.commit()
        ctx.status = TransactionStatus.COMMITTED
        logger.debug("transaction_committed", transaction_id=ctx.id, operations=len(ctx.operations))

    def rollback(self, ctx: TransactionContext) -> None:
        if ctx.status in (TransactionStatus.COMMITTED, TransactionStatus.ROLLEDBACK):
            return
        try:
            if ctx.config.auto_commit:
                self._reset_session(ctx)
            else:
                self.connection.rollback()
        except psycopg.Error:
            ctx.status = TransactionStatus.FAILED
            logger.exception("transaction_rollback_failed", transaction_id=ctx.id)
            raise
        ctx.status = TransactionStatus.ROLLEDBACK
        logger.debug("transaction_rolled_back", transaction_id=ctx.id)

    def _reset_session(self, ctx: TransactionContext) -> None:
        if self._conn is not None and not self._conn.broken:
            self._conn.execute("RESET statement_timeout")

    def _require_active(self, ctx: TransactionContext) -> None:
        if not ctx.is_active:
            raise TransactionError(
                f"Transaction {ctx.id} is {ctx.status.value}, not active",
                code="TRANSACTION_NOT_ACTIVE",
            ).with_context(transaction_id=ctx.id)

    # ── Savepoints ───────────────────────────────────────────────────────

    def create_savepoint(self, ctx: TransactionContext, name: str) -> None:
        self._require_active(ctx)
        if ctx.config.auto_commit:
            raise TransactionError("Savepoints need a transaction block", code="AUTOCOMMIT_SAVEPOINT")
        validate_identifier(name, field_name="savepoint")
        ctx.client.query(f"SAVEPOINT {name}")
        ctx.savepoints[name] = len(ctx.operations)

    def rollback_to_savepoint(self, ctx: TransactionContext, name: str) -> None:
        self._require_active(ctx)
        if name not in ctx.savepoints:
            raise TransactionError(
                f"Savepoint {name!r} not found", code="SAVEPOINT_NOT_FOUND"
            ).with_context(transaction_id=ctx.id)
        position = ctx.savepoints[name]
        ctx.client.query(f"ROLLBACK TO SAVEPOINT {name}")
        # Savepoints established after this one are destroyed by the rollback
        for later in [k for k, v in ctx.savepoints.items() if v > position]:
            del ctx.savepoints[later]

    def release_savepoint(self, ctx: TransactionContext, name: str) -> None:
        self._require_active(ctx)
        if name not in ctx.savepoints:
            raise TransactionError(f"Savepoint {name!r} not found", code="SAVEPOINT_NOT_FOUND")
        ctx.client.query(f"RELEASE SAVEPOINT {name}")
        del ctx.savepoints[name]

    # ── Unit of work ─────────────────────────────────────────────────────

    def with_transaction(
        self,
        fn: Callable[[TransactionContext], T],
        config: TransactionConfig | None = None,
    ) -> T:
        """Run ``fn`` in a transaction; commit on return, roll back on error."""
        config = self._resolve(config)

        def attempt() -> T:
            ctx = self.begin(config)
            try:
                result = fn(ctx)
                self.commit(ctx)
            except Exception:
                self.rollback(ctx)
                raise
            return result

        def on_retry(attempt_no: int, error: Exception, delay: float) -> None:
            logger.warning(
                "transaction_retry",
                attempt=attempt_no,
                error=str(error),
                error_type=type(error).__name__,
                delay_s=round(delay, 3),
            )

        return RetryContext(
            config.retry_policy or self._retry,
            on_retry=on_retry,
            sleep=self._sleep,
        ).run(attempt)


__all__ = [
    "IsolationLevel",
    "TransactionStatus",
    "TransactionConfig",
    "TransactionContext",
    "PsycopgQueryClient",
    "TransactionManager",
    "is_transient_error",
]
