"""
Protocol definitions for the collaborators the engine depends on.

The evolution manager, the transformation planner and every consistency
primitive talk to the database through two narrow contracts: a query client
and a transaction runner.  Both are constructor-injected, so tests pass a
scripted fake and production passes the psycopg-backed
:class:`~schemaspine.core.transactions.TransactionManager`.

Architecture:
    ::

        protocols.py
        ├── QueryResult        rows (dicts) + affected row count
        ├── QueryClient        query(sql, params) → QueryResult
        └── TransactionRunner  with_transaction(fn, config) → fn's result

        SQL passed to ``query`` uses PostgreSQL positional placeholders
        (``$1``, ``$2`` ...), so parameter order is explicit in the text.

Guardrails:
    ❌ DON'T: Import psycopg in engine modules
    ✅ DO: Depend on QueryClient / TransactionRunner and let the
       transaction boundary own the driver

Tags:
    protocol, database, transaction, schema-spine, contracts

Doc-Types:
    - API Reference
"""

from __future__ import annotations

from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Protocol, TypeVar, runtime_checkable

if TYPE_CHECKING:
    from schemaspine.core.transactions import TransactionConfig, TransactionContext

T = TypeVar("T")


@dataclass
class QueryResult:
    """Rows returned by a statement plus the number of rows it affected."""

    rows: list[dict[str, Any]] = field(default_factory=list)
    row_count: int = 0

    def first(self) -> dict[str, Any] | None:
        return self.rows[0] if self.rows else None


@runtime_checkable
class QueryClient(Protocol):
    """Executes one SQL statement with ``$n`` positional parameters."""

    def query(self, sql: str, params: Sequence[Any] | None = None) -> QueryResult:
        ...


@runtime_checkable
class TransactionRunner(Protocol):
    """
    Runs a unit of work inside one database transaction.

    ``with_transaction`` begins a transaction, builds a
    :class:`TransactionContext`, calls ``fn(ctx)``, then commits and returns
    the result.  If ``fn`` raises, the transaction is rolled back and the
    error propagates.
    """

    def with_transaction(
        self,
        fn: Callable[[TransactionContext], T],
        config: TransactionConfig | None = None,
    ) -> T:
        ...


__all__ = ["QueryResult", "QueryClient", "TransactionRunner"]
