"""Tests for ``schemaspine.consistency.acid``."""

from __future__ import annotations

import pytest

from schemaspine.consistency.acid import (
    ConsistencyResult,
    ConsistencyViolation,
    FunctionValidator,
    Severity,
    enforce_consistency,
    ensure_atomicity,
    ensure_durability,
    verify_isolation,
)
from schemaspine.core.transactions import IsolationLevel
from tests._support.fake_db import FakeDatabase, FakeTransactionManager, context


def _passing(name: str) -> FunctionValidator:
    return FunctionValidator(name, lambda ctx: ConsistencyResult(is_valid=True))


def _failing(name: str, rule: str) -> FunctionValidator:
    return FunctionValidator(
        name,
        lambda ctx: ConsistencyResult(
            is_valid=False, violations=[ConsistencyViolation(rule=rule, message=f"{rule} broken")]
        ),
    )


class TestEnsureAtomicity:
    def test_results_in_order_in_one_transaction(self, tm: FakeTransactionManager):
        results = ensure_atomicity(
            tm,
            [
                lambda ctx: ctx.client.query("UPDATE players SET bankroll = bankroll - 10 WHERE id = 1"),
                lambda ctx: "second",
            ],
        )
        assert results[1] == "second"
        assert len(tm.transactions) == 1
        assert tm.committed

    def test_first_error_propagates_and_rolls_back(self, tm: FakeTransactionManager):
        ran = []

        def boom(ctx):
            raise RuntimeError("insufficient funds")

        with pytest.raises(RuntimeError, match="insufficient funds"):
            ensure_atomicity(tm, [lambda ctx: ran.append(1), boom, lambda ctx: ran.append(3)])
        assert ran == [1]
        assert tm.rolled_back


class TestEnforceConsistency:
    def test_all_pass(self):
        result = enforce_consistency(context(), [_passing("a"), _passing("b")])
        assert result.is_valid
        assert result.violations == []

    def test_one_failure_invalidates(self):
        result = enforce_consistency(context(), [_passing("a"), _failing("b", "rule_b")])
        assert not result.is_valid
        assert [v.rule for v in result.violations] == ["rule_b"]

    def test_raising_validator_becomes_violation(self):
        def broken(ctx):
            raise ConnectionError("server closed the connection")

        result = enforce_consistency(context(), [FunctionValidator("ledger", broken), _passing("a")])
        assert not result.is_valid
        assert result.violations == [
            ConsistencyViolation(
                rule="ledger",
                message="Validation failed: server closed the connection",
                severity=Severity.ERROR,
            )
        ]

    def test_warning_only_result_is_valid(self):
        result = ConsistencyResult.from_violations(
            [ConsistencyViolation(rule="soft", message="m", severity=Severity.WARNING)]
        )
        assert result.is_valid


class TestVerifyIsolation:
    @pytest.mark.parametrize(
        "expected",
        ["serializable", "SERIALIZABLE", IsolationLevel.SERIALIZABLE],
    )
    def test_match(self, expected):
        db = FakeDatabase()
        db.on(r"SHOW transaction_isolation", [{"transaction_isolation": "serializable"}])
        assert verify_isolation(context(db), expected) is True

    def test_normalizes_separators(self):
        db = FakeDatabase()
        db.on(r"SHOW transaction_isolation", [{"transaction_isolation": "repeatable read"}])
        assert verify_isolation(context(db), "repeatable_read")
        assert verify_isolation(context(db), "Repeatable-Read")
        assert not verify_isolation(context(db), "read committed")

    def test_error_yields_false(self):
        db = FakeDatabase()
        db.on(r"SHOW", RuntimeError("connection lost"))
        assert verify_isolation(context(db), "serializable") is False


class TestEnsureDurability:
    def test_runs_wal_lookup_then_checks(self):
        db = FakeDatabase()
        assert ensure_durability(context(db), ["SELECT COUNT(*) FROM players"]) is True
        assert db.statements == [
            "SELECT pg_walfile_name(pg_current_wal_lsn())",
            "SELECT COUNT(*) FROM players",
        ]

    def test_any_error_yields_false(self):
        db = FakeDatabase()
        db.on(r"FROM players", RuntimeError("relation does not exist"))
        assert ensure_durability(context(db), ["SELECT COUNT(*) FROM players"]) is False
