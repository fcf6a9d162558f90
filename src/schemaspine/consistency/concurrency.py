"""
Optimistic and pessimistic concurrency control.

Optimistic control detects lost updates with a ``version`` counter checked at
write time; pessimistic control takes row or table locks held until the
transaction ends.  Neither keeps an in-process wait queue: any blocking is
done by PostgreSQL, and callers only see the driver result.

Examples:
    >>> occ = OptimisticConcurrencyControl()
    >>> row = occ.select_for_update_with_version(ctx, "players", "p1")
    >>> occ.update_with_version_check(ctx, "players", "p1", {"bankroll": 100}, row.version)
    True

    >>> PessimisticConcurrencyControl().lock_table(ctx, "players", LockMode.SHARE_ROW_EXCLUSIVE)

Tags:
    concurrency, optimistic-locking, row-lock, table-lock, schema-spine

Doc-Types:
    - API Reference
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from schemaspine.core.errors import InvalidConfigError
from schemaspine.core.logging import get_logger
from schemaspine.core.protocols import QueryResult
from schemaspine.core.sql import validate_identifier
from schemaspine.core.transactions import TransactionContext

logger = get_logger(__name__)


class LockMode(str, Enum):
    """The eight PostgreSQL table lock modes, weakest first."""

    ACCESS_SHARE = "ACCESS SHARE"
    ROW_SHARE = "ROW SHARE"
    ROW_EXCLUSIVE = "ROW EXCLUSIVE"
    SHARE_UPDATE_EXCLUSIVE = "SHARE UPDATE EXCLUSIVE"
    SHARE = "SHARE"
    SHARE_ROW_EXCLUSIVE = "SHARE ROW EXCLUSIVE"
    EXCLUSIVE = "EXCLUSIVE"
    ACCESS_EXCLUSIVE = "ACCESS EXCLUSIVE"


@dataclass(slots=True)
class VersionedRow:
    """A row split into its ``version`` and the remaining columns."""

    data: dict[str, Any] = field(default_factory=dict)
    version: int = 0


class OptimisticConcurrencyControl:
    """Version-stamp updates: a write only lands on the version it read."""

    version_column = "version"

    def update_with_version_check(
        self,
        ctx: TransactionContext,
        table: str,
        id: Any,
        fields: Mapping[str, Any],
        expected_version: int,
    ) -> bool:
        """Update ``fields`` on row ``id`` if it is still at ``expected_version``.

        Parameters are ``[id, expected_version, *fields.values()]`` so ``$1`` and
        ``$2`` always name the row and its version.

        Returns:
            True if exactly one row matched and was bumped to the next version
        """
        validate_identifier(table, field_name="table")
        if not fields:
            raise InvalidConfigError("update_with_version_check needs at least one field")
        columns = [validate_identifier(name, field_name="column") for name in fields]
        if self.version_column in columns:
            raise InvalidConfigError("The version column is managed by the update", field_name="version")

        assignments = ", ".join(f"{col} = ${i}" for i, col in enumerate(columns, start=3))
        sql = (
            f"UPDATE {table} SET {self.version_column} = {self.version_column} + 1, {assignments} "
            f"WHERE id = $1 AND {self.version_column} = $2"
        )
        result = ctx.client.query(sql, [id, expected_version, *fields.values()])
        updated = result.row_count == 1
        if not updated:
            logger.info(
                "optimistic_update_conflict",
                table=table,
                id=str(id),
                expected_version=expected_version,
                rows_matched=result.row_count,
            )
        return updated

    def select_for_update_with_version(
        self, ctx: TransactionContext, table: str, id: Any
    ) -> VersionedRow | None:
        """Lock row ``id`` and return it split into data and version."""
        validate_identifier(table, field_name="table")
        result = ctx.client.query(f"SELECT * FROM {table} WHERE id = $1 FOR UPDATE", [id])
        row = result.first()
        if row is None:
            return None
        data = dict(row)
        version = data.pop(self.version_column, 0)
        return VersionedRow(data=data, version=version)


class PessimisticConcurrencyControl:
    """Row and table locks held for the rest of the transaction."""

    def lock_row(
        self, ctx: TransactionContext, table: str, id: Any, *, nowait: bool = False
    ) -> QueryResult:
        return self._select_locked(ctx, table, id, "FOR UPDATE", nowait)

    def lock_row_shared(
        self, ctx: TransactionContext, table: str, id: Any, *, nowait: bool = False
    ) -> QueryResult:
        return self._select_locked(ctx, table, id, "FOR SHARE", nowait)

    def lock_table(
        self,
        ctx: TransactionContext,
        table: str,
        mode: LockMode | str = LockMode.ACCESS_EXCLUSIVE,
        *,
        nowait: bool = False,
    ) -> QueryResult:
        validate_identifier(table, field_name="table")
        try:
            lock_mode = LockMode(mode.value if isinstance(mode, LockMode) else str(mode).upper())
        except ValueError as e:
            raise InvalidConfigError(f"Unknown lock mode: {mode!r}", field_name="mode") from e
        suffix = " NOWAIT" if nowait else ""
        return ctx.client.query(f"LOCK TABLE {table} IN {lock_mode.value} MODE{suffix}")

    @staticmethod
    def _select_locked(
        ctx: TransactionContext, table: str, id: Any, clause: str, nowait: bool
    ) -> QueryResult:
        validate_identifier(table, field_name="table")
        suffix = " NOWAIT" if nowait else ""
        return ctx.client.query(f"SELECT * FROM {table} WHERE id = $1 {clause}{suffix}", [id])


__all__ = [
    "LockMode",
    "VersionedRow",
    "OptimisticConcurrencyControl",
    "PessimisticConcurrencyControl",
]
