"""
Shared pytest fixtures for schema-spine tests.

This module provides:
- Settings isolation (no ``.env`` or ``SCHEMASPINE_*`` leakage between tests)
- A scripted fake database and transaction manager
- An evolution manager wired to the fake with an instant ``sleep``
"""

from __future__ import annotations

from collections.abc import Generator

import pytest

from schemaspine.core.settings import SchemaSpineSettings, clear_settings_cache
from schemaspine.evolution.manager import SchemaEvolutionManager
from tests._support.fake_db import FakeDatabase, FakeTransactionManager


@pytest.fixture(autouse=True)
def _isolate_settings(monkeypatch: pytest.MonkeyPatch) -> Generator[None, None, None]:
    """Drop cached settings and any SCHEMASPINE_* variables for every test."""
    import os

    for key in list(os.environ):
        if key.startswith("SCHEMASPINE_"):
            monkeypatch.delenv(key, raising=False)
    clear_settings_cache()
    yield
    clear_settings_cache()


@pytest.fixture
def settings() -> SchemaSpineSettings:
    return SchemaSpineSettings(_env_file=None, batch_pause_ms=0)


@pytest.fixture
def db() -> FakeDatabase:
    return FakeDatabase()


@pytest.fixture
def tm(db: FakeDatabase) -> FakeTransactionManager:
    return FakeTransactionManager(db)


@pytest.fixture
def sleeps() -> list[float]:
    return []


@pytest.fixture
def manager(
    tm: FakeTransactionManager, settings: SchemaSpineSettings, sleeps: list[float]
) -> SchemaEvolutionManager:
    return SchemaEvolutionManager(tm, settings=settings, sleep=sleeps.append)
