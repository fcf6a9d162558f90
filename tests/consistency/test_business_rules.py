"""Tests for ``schemaspine.consistency.validators``."""

from __future__ import annotations

import pytest

from schemaspine.consistency.acid import Severity, enforce_consistency
from schemaspine.consistency.validators import BusinessRuleValidators
from schemaspine.core.errors import InvalidConfigError
from tests._support.fake_db import FakeDatabase, context


class TestBankrollValidator:
    def test_clean(self):
        result = BusinessRuleValidators.bankroll_validator().validate(context())
        assert result.is_valid
        assert result.violations == []

    def test_negative_is_error_and_excess_is_warning(self):
        db = FakeDatabase()
        db.on(r"bankroll < 0", [{"id": 1, "username": "alice", "bankroll": -5}])
        db.on(r"bankroll > \$1", [{"id": 2, "username": "bob", "bankroll": 2_000_000}])
        validator = BusinessRuleValidators.bankroll_validator()

        result = validator.validate(context(db))

        assert validator.name == "bankroll_consistency"
        assert not result.is_valid
        assert [(v.rule, v.severity) for v in result.violations] == [
            ("no_negative_bankroll", Severity.ERROR),
            ("max_bankroll_limit", Severity.WARNING),
        ]
        assert db.matching(r"bankroll > \$1")[0].params == [1_000_000]

    def test_only_excess_stays_valid(self):
        db = FakeDatabase()
        db.on(r"bankroll > \$1", [{"id": 2, "username": "bob", "bankroll": 600}])
        result = BusinessRuleValidators.bankroll_validator(max_bankroll=500).validate(context(db))
        assert result.is_valid
        assert len(result.violations) == 1

    def test_query_error_becomes_single_violation(self):
        db = FakeDatabase()
        db.on(r"FROM players", RuntimeError("relation \"players\" does not exist"))
        result = BusinessRuleValidators.bankroll_validator().validate(context(db))
        assert not result.is_valid
        assert [v.rule for v in result.violations] == ["validation_error"]


class TestGameStateValidator:
    def test_orphans_and_inverted_timestamps(self):
        db = FakeDatabase()
        db.on(r"LEFT JOIN game_tables", [{"id": 10, "table_id": 99}])
        db.on(r"ended_at < started_at", [{"id": 11, "started_at": 2, "ended_at": 1}])
        result = BusinessRuleValidators.game_state_validator().validate(context(db))
        assert [v.rule for v in result.violations] == ["no_orphaned_game_history", "valid_timestamps"]
        assert not result.is_valid


class TestReferentialIntegrityValidator:
    def test_custom_tables(self):
        db = FakeDatabase()
        db.on(r"FROM orders c", [{"id": 5, "customer_id": 77}])
        validator = BusinessRuleValidators.referential_integrity_validator(
            child="orders", foreign_key="customer_id", parent="customers"
        )
        result = validator.validate(context(db))
        assert validator.name == "referential_integrity"
        assert result.violations[0].rule == "valid_customers_references"
        assert "77" in result.violations[0].message

    def test_rejects_unsafe_identifiers(self):
        with pytest.raises(InvalidConfigError):
            BusinessRuleValidators.referential_integrity_validator(child="orders o; --")

    def test_composes_with_enforce_consistency(self):
        result = enforce_consistency(
            context(),
            [
                BusinessRuleValidators.bankroll_validator(),
                BusinessRuleValidators.game_state_validator(),
                BusinessRuleValidators.referential_integrity_validator(),
            ],
        )
        assert result.is_valid
