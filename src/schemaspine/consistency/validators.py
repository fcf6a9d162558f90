"""
Catalog of business-rule consistency validators.

Each factory returns a :class:`~schemaspine.consistency.acid.ConsistencyValidator`.
A validator that hits a query error reports one ``validation_error``
violation instead of raising, so an :func:`enforce_consistency` batch keeps
going.

Tags:
    consistency, business-rules, referential-integrity, schema-spine
"""

from __future__ import annotations

from collections.abc import Callable

from schemaspine.consistency.acid import (
    ConsistencyResult,
    ConsistencyViolation,
    FunctionValidator,
    Severity,
)
from schemaspine.core.logging import get_logger
from schemaspine.core.sql import validate_identifier
from schemaspine.core.transactions import TransactionContext

logger = get_logger(__name__)

DEFAULT_MAX_BANKROLL = 1_000_000


def _guarded(
    label: str, check: Callable[[TransactionContext], list[ConsistencyViolation]]
) -> Callable[[TransactionContext], ConsistencyResult]:
    def validate(ctx: TransactionContext) -> ConsistencyResult:
        try:
            violations = check(ctx)
        except Exception as e:
            logger.warning("business_rule_query_failed", validator=label, error=str(e))
            violations = [
                ConsistencyViolation(
                    rule="validation_error",
                    message=f"{label} validation failed: {e}",
                    severity=Severity.ERROR,
                )
            ]
        return ConsistencyResult.from_violations(violations)

    return validate


class BusinessRuleValidators:
    """Factories for the standard validators."""

    @staticmethod
    def bankroll_validator(max_bankroll: int | float = DEFAULT_MAX_BANKROLL) -> FunctionValidator:
        """Negative balances are errors; balances above ``max_bankroll`` are warnings."""

        def check(ctx: TransactionContext) -> list[ConsistencyViolation]:
            violations = [
                ConsistencyViolation(
                    rule="no_negative_bankroll",
                    message=f"Player {row['username']} has negative bankroll: {row['bankroll']}",
                    severity=Severity.ERROR,
                )
                for row in ctx.client.query(
                    "SELECT id, username, bankroll FROM players WHERE bankroll < 0"
                ).rows
            ]
            violations.extend(
                ConsistencyViolation(
                    rule="max_bankroll_limit",
                    message=f"Player {row['username']} exceeds maximum bankroll limit",
                    severity=Severity.WARNING,
                )
                for row in ctx.client.query(
                    "SELECT id, username, bankroll FROM players WHERE bankroll > $1",
                    [max_bankroll],
                ).rows
            )
            return violations

        return FunctionValidator("bankroll_consistency", _guarded("Bankroll", check))

    @staticmethod
    def game_state_validator() -> FunctionValidator:
        """Flags game history rows without a table and games that end before they start."""

        def check(ctx: TransactionContext) -> list[ConsistencyViolation]:
            orphaned = ctx.client.query(
                "SELECT gh.id, gh.table_id FROM game_history gh "
                "LEFT JOIN game_tables gt ON gh.table_id = gt.id "
                "WHERE gt.id IS NULL"
            ).rows
            violations = [
                ConsistencyViolation(
                    rule="no_orphaned_game_history",
                    message=f"Game history record {row['id']} references non-existent table {row['table_id']}",
                )
                for row in orphaned
            ]
            inverted = ctx.client.query(
                "SELECT id, started_at, ended_at FROM game_history WHERE ended_at < started_at"
            ).rows
            violations.extend(
                ConsistencyViolation(
                    rule="valid_timestamps",
                    message=f"Game {row['id']} has end time before start time",
                )
                for row in inverted
            )
            return violations

        return FunctionValidator("game_state_consistency", _guarded("Game state", check))

    @staticmethod
    def referential_integrity_validator(
        child: str = "player_game_stats",
        foreign_key: str = "player_id",
        parent: str = "players",
        parent_key: str = "id",
    ) -> FunctionValidator:
        """Flags ``child`` rows whose ``foreign_key`` no longer resolves in ``parent``."""
        validate_identifier(child, field_name="child")
        validate_identifier(foreign_key, field_name="foreign_key")
        validate_identifier(parent, field_name="parent")
        validate_identifier(parent_key, field_name="parent_key")
        rule = f"valid_{parent}_references"

        def check(ctx: TransactionContext) -> list[ConsistencyViolation]:
            rows = ctx.client.query(
                f"SELECT c.id, c.{foreign_key} FROM {child} c "
                f"LEFT JOIN {parent} p ON c.{foreign_key} = p.{parent_key} "
                f"WHERE c.{foreign_key} IS NOT NULL AND p.{parent_key} IS NULL"
            ).rows
            return [
                ConsistencyViolation(
                    rule=rule,
                    message=f"{child} row {row['id']} references non-existent {parent} {row[foreign_key]}",
                )
                for row in rows
            ]

        return FunctionValidator("referential_integrity", _guarded("Referential integrity", check))


__all__ = ["BusinessRuleValidators", "DEFAULT_MAX_BANKROLL"]
