"""Tests for ``schemaspine.consistency.locks``."""

from __future__ import annotations

import pytest

from schemaspine.consistency.locks import DistributedLock, lock_key
from schemaspine.core.errors import LockNotAcquiredError
from tests._support.fake_db import FakeDatabase, context


class TestLockKey:
    def test_stable_and_signed_64_bit(self):
        key = lock_key("migration:2025.08.27.1000")
        assert key == lock_key("migration:2025.08.27.1000")
        assert -(2**63) <= key < 2**63

    def test_distinct_keys(self):
        assert lock_key("a") != lock_key("b")


class TestDistributedLock:
    def test_acquire_and_release(self):
        db = FakeDatabase()
        db.on(r"pg_try_advisory_lock", [{"pg_try_advisory_lock": True}])
        db.on(r"pg_advisory_unlock", [{"pg_advisory_unlock": True}])
        lock = DistributedLock()
        ctx = context(db)

        assert lock.acquire(ctx, "schema") is True
        assert lock.release(ctx, "schema") is True
        assert [q.params for q in db.queries] == [[lock_key("schema")], [lock_key("schema")]]

    def test_acquire_contended(self):
        db = FakeDatabase()
        db.on(r"pg_try_advisory_lock", [{"pg_try_advisory_lock": False}])
        assert DistributedLock().acquire(context(db), "schema") is False

    def test_release_reports_server_answer(self):
        db = FakeDatabase()
        db.on(r"pg_advisory_unlock", [{"pg_advisory_unlock": False}])
        assert DistributedLock().release(context(db), "never-held") is False

    def test_hold_releases_after_block(self):
        db = FakeDatabase()
        db.on(r"pg_try_advisory_lock", [{"pg_try_advisory_lock": True}])
        with DistributedLock().hold(context(db), "schema"):
            assert not db.executed("pg_advisory_unlock")
        assert db.executed("pg_advisory_unlock")

    def test_hold_releases_on_error(self):
        db = FakeDatabase()
        db.on(r"pg_try_advisory_lock", [{"pg_try_advisory_lock": True}])
        with pytest.raises(KeyError):
            with DistributedLock().hold(context(db), "schema"):
                raise KeyError("x")
        assert db.executed("pg_advisory_unlock")

    def test_hold_raises_when_not_acquired(self):
        db = FakeDatabase()
        db.on(r"pg_try_advisory_lock", [{"pg_try_advisory_lock": False}])
        with pytest.raises(LockNotAcquiredError):
            with DistributedLock().hold(context(db), "schema"):
                pass
        assert not db.executed("pg_advisory_unlock")
