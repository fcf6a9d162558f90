"""
Scripted in-memory database for unit tests.

``FakeDatabase`` answers queries from rules registered with :meth:`on`:
the first rule whose regex matches the SQL wins.  A rule's responses are
consumed in order and the last one repeats.  A response may be a list of row
dicts, a :class:`QueryResult`, an ``int`` row count, an exception (raised) or
a callable ``(sql, params) -> response``.  Unmatched queries return no rows.

Usage::

    db = FakeDatabase()
    db.on(r"SELECT version FROM schema_migrations", [{"version": "2025.01.01.0000"}])
    db.on(r"INSERT INTO users", 1000, 1000, 250)
    tm = FakeTransactionManager(db)
    tm.with_transaction(lambda ctx: ctx.client.query("INSERT INTO users ..."))
    assert db.executed("INSERT INTO users")
"""

from __future__ import annotations

import re
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from schemaspine.core.protocols import QueryResult
from schemaspine.core.transactions import TransactionConfig, TransactionContext, TransactionStatus


@dataclass
class _Rule:
    pattern: re.Pattern[str]
    responses: list[Any]
    calls: int = 0

    def next(self) -> Any:
        index = min(self.calls, len(self.responses) - 1)
        self.calls += 1
        return self.responses[index]


@dataclass
class RecordedQuery:
    sql: str
    params: list[Any] | None
    transaction: int


class FakeDatabase:
    def __init__(self) -> None:
        self.rules: list[_Rule] = []
        self.queries: list[RecordedQuery] = []

    def on(self, pattern: str, *responses: Any) -> _Rule:
        rule = _Rule(re.compile(pattern, re.IGNORECASE | re.DOTALL), list(responses) or [[]])
        self.rules.insert(0, rule)
        return rule

    def respond(self, sql: str, params: list[Any] | None, transaction: int) -> QueryResult:
        self.queries.append(RecordedQuery(sql=sql, params=params, transaction=transaction))
        for rule in self.rules:
            if rule.pattern.search(sql):
                response = rule.next()
                if callable(response) and not isinstance(response, type):
                    response = response(sql, params)
                return _to_result(response)
        return QueryResult(rows=[], row_count=0)

    # ── Assertions ───────────────────────────────────────────────────────

    def matching(self, pattern: str) -> list[RecordedQuery]:
        rx = re.compile(pattern, re.IGNORECASE | re.DOTALL)
        return [q for q in self.queries if rx.search(q.sql)]

    def executed(self, pattern: str) -> bool:
        return bool(self.matching(pattern))

    @property
    def statements(self) -> list[str]:
        return [q.sql for q in self.queries]


def _to_result(response: Any) -> QueryResult:
    if isinstance(response, BaseException):
        raise response
    if isinstance(response, QueryResult):
        return response
    if isinstance(response, int):
        return QueryResult(rows=[], row_count=response)
    rows = list(response)
    return QueryResult(rows=rows, row_count=len(rows))


class FakeClient:
    def __init__(self, db: FakeDatabase, transaction: int, operations: list[str]):
        self._db = db
        self._transaction = transaction
        self._operations = operations

    def query(self, sql: str, params: Any = None) -> QueryResult:
        self._operations.append(sql)
        return self._db.respond(sql, list(params) if params is not None else None, self._transaction)


@dataclass
class RecordedTransaction:
    index: int
    config: TransactionConfig
    status: TransactionStatus = TransactionStatus.ACTIVE
    operations: list[str] = field(default_factory=list)


class FakeTransactionManager:
    """:class:`TransactionRunner` over a :class:`FakeDatabase`; no retries."""

    def __init__(self, db: FakeDatabase | None = None):
        self.db = db or FakeDatabase()
        self.transactions: list[RecordedTransaction] = []

    def with_transaction(
        self,
        fn: Callable[[TransactionContext], Any],
        config: TransactionConfig | None = None,
    ) -> Any:
        record = RecordedTransaction(index=len(self.transactions), config=config or TransactionConfig())
        self.transactions.append(record)
        ctx = TransactionContext(
            client=FakeClient(self.db, record.index, record.operations),
            config=record.config,
            operations=record.operations,
        )
        try:
            result = fn(ctx)
        except Exception:
            ctx.status = record.status = TransactionStatus.ROLLEDBACK
            raise
        ctx.status = record.status = TransactionStatus.COMMITTED
        return result

    @property
    def committed(self) -> list[RecordedTransaction]:
        return [t for t in self.transactions if t.status == TransactionStatus.COMMITTED]

    @property
    def rolled_back(self) -> list[RecordedTransaction]:
        return [t for t in self.transactions if t.status == TransactionStatus.ROLLEDBACK]


def context(db: FakeDatabase | None = None, **config: Any) -> TransactionContext:
    """A standalone active context for primitives that take ``ctx`` directly."""
    db = db or FakeDatabase()
    operations: list[str] = []
    return TransactionContext(
        client=FakeClient(db, 0, operations),
        config=TransactionConfig(**config),
        operations=operations,
    )
