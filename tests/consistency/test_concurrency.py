"""Tests for ``schemaspine.consistency.concurrency``."""

from __future__ import annotations

import pytest

from schemaspine.consistency.concurrency import (
    LockMode,
    OptimisticConcurrencyControl,
    PessimisticConcurrencyControl,
    VersionedRow,
)
from schemaspine.core.errors import InvalidConfigError
from tests._support.fake_db import FakeDatabase, context


class TestOptimisticConcurrencyControl:
    def test_update_sql_and_params(self):
        db = FakeDatabase()
        db.on(r"^UPDATE players", 1)
        occ = OptimisticConcurrencyControl()

        ok = occ.update_with_version_check(
            context(db), "players", 42, {"bankroll": 900, "status": "active"}, expected_version=7
        )

        assert ok is True
        (query,) = db.queries
        assert query.sql == (
            "UPDATE players SET version = version + 1, bankroll = $3, status = $4 "
            "WHERE id = $1 AND version = $2"
        )
        assert query.params == [42, 7, 900, "active"]

    def test_stale_version_returns_false(self):
        db = FakeDatabase()
        db.on(r"^UPDATE", 0)
        assert not OptimisticConcurrencyControl().update_with_version_check(
            context(db), "players", 42, {"bankroll": 1}, expected_version=6
        )

    def test_rejects_empty_fields_and_version_field(self):
        occ = OptimisticConcurrencyControl()
        with pytest.raises(InvalidConfigError):
            occ.update_with_version_check(context(), "players", 1, {}, 1)
        with pytest.raises(InvalidConfigError):
            occ.update_with_version_check(context(), "players", 1, {"version": 3}, 1)

    def test_rejects_unsafe_identifiers(self):
        with pytest.raises(InvalidConfigError):
            OptimisticConcurrencyControl().update_with_version_check(
                context(), "players; DROP TABLE x", 1, {"a": 1}, 1
            )

    def test_select_for_update_with_version(self):
        db = FakeDatabase()
        db.on(r"FOR UPDATE", [{"id": 42, "bankroll": 900, "version": 7}])
        row = OptimisticConcurrencyControl().select_for_update_with_version(context(db), "players", 42)
        assert row == VersionedRow(data={"id": 42, "bankroll": 900}, version=7)
        assert db.queries[0].sql == "SELECT * FROM players WHERE id = $1 FOR UPDATE"
        assert db.queries[0].params == [42]

    def test_select_for_update_missing_row(self):
        assert OptimisticConcurrencyControl().select_for_update_with_version(context(), "players", 1) is None


class TestPessimisticConcurrencyControl:
    def test_lock_row_variants(self):
        db = FakeDatabase()
        pcc = PessimisticConcurrencyControl()
        pcc.lock_row(context(db), "players", 1)
        pcc.lock_row_shared(context(db), "players", 2, nowait=True)
        assert db.statements == [
            "SELECT * FROM players WHERE id = $1 FOR UPDATE",
            "SELECT * FROM players WHERE id = $1 FOR SHARE NOWAIT",
        ]

    @pytest.mark.parametrize(
        ("mode", "expected"),
        [
            (LockMode.ACCESS_EXCLUSIVE, "LOCK TABLE players IN ACCESS EXCLUSIVE MODE"),
            (LockMode.SHARE_ROW_EXCLUSIVE, "LOCK TABLE players IN SHARE ROW EXCLUSIVE MODE"),
            ("row exclusive", "LOCK TABLE players IN ROW EXCLUSIVE MODE"),
        ],
    )
    def test_lock_table(self, mode, expected):
        db = FakeDatabase()
        PessimisticConcurrencyControl().lock_table(context(db), "players", mode)
        assert db.statements == [expected]

    def test_lock_table_nowait(self):
        db = FakeDatabase()
        PessimisticConcurrencyControl().lock_table(context(db), "players", nowait=True)
        assert db.statements == ["LOCK TABLE players IN ACCESS EXCLUSIVE MODE NOWAIT"]

    def test_unknown_mode(self):
        with pytest.raises(InvalidConfigError, match="Unknown lock mode"):
            PessimisticConcurrencyControl().lock_table(context(), "players", "TOTAL")

    def test_eight_modes(self):
        assert len(LockMode) == 8
