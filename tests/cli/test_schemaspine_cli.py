"""Tests for the schemaspine CLI via CliRunner.

``open_manager`` is patched to yield a manager over the scripted fake
database, so no PostgreSQL server is needed.
"""

from __future__ import annotations

import json
import re
from contextlib import nullcontext
from unittest.mock import patch

import pytest
from typer.testing import CliRunner

from schemaspine.cli.app import app
from tests._support.configs import VIP_YAML

runner = CliRunner()

DROP_YAML = """
version: 2025.09.01.0800
steps:
  - type: dropColumn
    table: players
    details: {columnName: nickname}
"""


@pytest.fixture(autouse=True)
def _no_logging_setup():
    with patch("schemaspine.cli.app.configure_logging"):
        yield


@pytest.fixture
def cli_manager(manager):
    with patch("schemaspine.cli.app.open_manager", side_effect=lambda *a, **k: nullcontext(manager)) as opened:
        yield opened


@pytest.fixture
def vip_config(tmp_path):
    path = tmp_path / "vip.yaml"
    path.write_text(VIP_YAML, encoding="utf-8")
    return path


@pytest.fixture
def vip_ready(db):
    """Satisfy the dependency and pre-check of the VIP config."""
    db.on(r"^SELECT version FROM schema_migrations$", [{"version": "2025.08.01.0900"}])
    db.on(r"information_schema.tables", [{"count": 1}])
    return db


@pytest.fixture
def drop_config(tmp_path):
    path = tmp_path / "drop.yaml"
    path.write_text(DROP_YAML, encoding="utf-8")
    return path


class TestBasics:
    def test_version(self):
        result = runner.invoke(app, ["--version"])
        assert result.exit_code == 0
        assert result.output.startswith("schema-spine ")

    def test_new_version(self):
        result = runner.invoke(app, ["new-version"])
        assert result.exit_code == 0
        assert re.fullmatch(r"\d{4}\.\d{2}\.\d{2}\.\d{4}", result.output.strip())

    def test_init(self, cli_manager, db):
        result = runner.invoke(app, ["init"])
        assert result.exit_code == 0
        assert "tables ready" in result.output
        assert db.executed(r"CREATE TABLE IF NOT EXISTS schema_migrations")


class TestPlan:
    def test_valid_plan(self, cli_manager, vip_config, db):
        result = runner.invoke(app, ["plan", str(vip_config)])
        assert result.exit_code == 0, result.output
        assert "apply_steps" in result.output
        assert "Plan is valid" in result.output
        assert db.queries == []

    def test_plan_json(self, cli_manager, vip_config):
        result = runner.invoke(app, ["plan", str(vip_config), "--json"])
        assert result.exit_code == 0, result.output
        payload = json.loads(result.stdout)
        assert payload["version"] == "2025.08.27.1000"
        assert payload["validation"]["is_valid"] is True
        assert payload["statements"][0].startswith("ALTER TABLE players ADD COLUMN")

    def test_invalid_plan_exits_1(self, cli_manager, drop_config):
        result = runner.invoke(app, ["plan", str(drop_config)])
        assert result.exit_code == 1
        assert "Plan is invalid" in result.output

    def test_malformed_config(self, cli_manager, tmp_path):
        path = tmp_path / "bad.yaml"
        path.write_text("steps: [unclosed", encoding="utf-8")
        result = runner.invoke(app, ["plan", str(path)])
        assert result.exit_code == 1
        assert "Error" in result.output

    def test_missing_file(self, cli_manager, tmp_path):
        result = runner.invoke(app, ["plan", str(tmp_path / "nope.yaml")])
        assert result.exit_code != 0


class TestApply:
    def test_apply(self, cli_manager, vip_config, vip_ready, db):
        result = runner.invoke(app, ["apply", str(vip_config)])
        assert result.exit_code == 0, result.output
        assert "Migration 2025.08.27.1000 applied" in result.output
        assert db.executed(r"^INSERT INTO schema_migrations")

    def test_apply_json(self, cli_manager, vip_config, vip_ready):
        result = runner.invoke(app, ["apply", str(vip_config), "--json"])
        assert result.exit_code == 0, result.output
        payload = json.loads(result.stdout)
        assert payload["success"] is True
        assert payload["stage_results"][0]["stage_name"] == "apply_steps"

    def test_invalid_plan_is_refused(self, cli_manager, drop_config, db):
        result = runner.invoke(app, ["apply", str(drop_config)])
        assert result.exit_code == 1
        assert "VALIDATION" in result.output
        assert not db.executed(r"DROP COLUMN IF EXISTS nickname")

    def test_force_skips_validation(self, cli_manager, drop_config, db):
        result = runner.invoke(app, ["apply", str(drop_config), "--force"])
        assert result.exit_code == 0, result.output
        assert db.executed(r"DROP COLUMN IF EXISTS nickname")

    def test_database_url_is_forwarded(self, cli_manager, vip_config):
        runner.invoke(app, ["apply", str(vip_config), "-d", "postgresql://db.internal/app"])
        cli_manager.assert_called_once_with("postgresql://db.internal/app")


class TestRollback:
    def test_success(self, cli_manager, db):
        db.on(r"rollback_steps FROM schema_migrations", [{"version": "2025.01.01.0000", "rollback_available": True}])
        db.on(r"LIMIT 1", [{"version": "2025.01.01.0000"}])
        result = runner.invoke(app, ["rollback", "2025.01.01.0000"])
        assert result.exit_code == 0, result.output
        assert "Rolled back to 2025.01.01.0000" in result.output

    def test_failure_exits_1(self, cli_manager):
        result = runner.invoke(app, ["rollback", "2025.01.01.0000"])
        assert result.exit_code == 1
        assert "Rollback failed" in result.output


class TestHistory:
    def test_history_json(self, cli_manager, db):
        db.on(
            r"FROM schema_migrations ORDER BY applied_at DESC$",
            [{"version": "2025.08.27.1000", "description": "VIP", "rollback_available": True}],
        )
        result = runner.invoke(app, ["history", "--json"])
        assert result.exit_code == 0, result.output
        (record,) = json.loads(result.stdout)
        assert record["version"] == "2025.08.27.1000"
        assert record["rollback_available"] is True

    def test_history_empty(self, cli_manager):
        result = runner.invoke(app, ["history"])
        assert result.exit_code == 0
        assert "No items" in result.output

    def test_current_none(self, cli_manager):
        result = runner.invoke(app, ["current"])
        assert result.output.strip() == "none"

    def test_current(self, cli_manager, db):
        db.on(r"LIMIT 1", [{"version": "2025.08.27.1000"}])
        assert runner.invoke(app, ["current"]).output.strip() == "2025.08.27.1000"

    def test_log_filters(self, cli_manager, db):
        result = runner.invoke(app, ["log", "--version", "2025.08.27.1000", "--limit", "3"])
        assert result.exit_code == 0
        assert db.queries[-1].params == ["2025.08.27.1000", 3]

    def test_cleanup(self, cli_manager):
        result = runner.invoke(app, ["cleanup"])
        assert result.exit_code == 0
        assert "Cleaned up 0 migration(s)" in result.output

    def test_database_error_is_reported(self, cli_manager, db):
        db.on(r"LIMIT 1", OSError("connection refused"))
        result = runner.invoke(app, ["current"])
        assert result.exit_code == 1
        assert "OSError" in result.output
