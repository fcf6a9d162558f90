"""Tests for the MigrationConfig models and YAML loading."""

from __future__ import annotations

import pydantic
import pytest

from schemaspine.evolution.config import (
    AddColumnStep,
    AddIndexStep,
    CustomStep,
    MigrationConfig,
)
from tests._support.configs import VIP_YAML


class TestMigrationConfig:
    def test_from_yaml(self):
        cfg = MigrationConfig.from_yaml(VIP_YAML)

        assert cfg.version == "2025.08.27.1000"
        assert cfg.dependencies == ["2025.08.01.0900"]
        assert cfg.pre_checks[0].expected == {"count": 1}
        assert [type(s) for s in cfg.steps] == [AddColumnStep, AddIndexStep, CustomStep]
        assert cfg.steps[0].details.default_value is False
        assert cfg.steps[2].details.batch is True
        assert len(cfg.rollback) == 2
        assert cfg.cleanup_delay == 48

    def test_snake_and_camel_case_are_equivalent(self):
        camel = MigrationConfig.model_validate(
            {
                "version": "2025.08.27.1000",
                "requiredVersion": "2025.08.01.0900",
                "steps": [{"type": "dropColumn", "table": "players", "details": {"columnName": "nickname"}}],
                "rollbackSafetyChecks": ["SELECT 1"],
            }
        )
        snake = MigrationConfig.model_validate(
            {
                "version": "2025.08.27.1000",
                "required_version": "2025.08.01.0900",
                "steps": [{"type": "dropColumn", "table": "players", "details": {"column_name": "nickname"}}],
                "rollback_safety_checks": ["SELECT 1"],
            }
        )
        assert camel == snake

    def test_unknown_step_type_rejected(self):
        with pytest.raises(pydantic.ValidationError):
            MigrationConfig.model_validate(
                {"version": "2025.08.27.1000", "steps": [{"type": "renameTable", "table": "t", "details": {}}]}
            )

    def test_unknown_key_rejected(self):
        with pytest.raises(pydantic.ValidationError):
            MigrationConfig.model_validate({"version": "2025.08.27.1000", "stepz": []})

    def test_index_needs_columns(self):
        with pytest.raises(pydantic.ValidationError):
            MigrationConfig.model_validate(
                {
                    "version": "2025.08.27.1000",
                    "steps": [{"type": "addIndex", "table": "t", "details": {"columns": []}}],
                }
            )

    def test_invalid_yaml(self):
        with pytest.raises(ValueError, match="Invalid YAML"):
            MigrationConfig.from_yaml("steps: [unclosed")

    def test_from_yaml_file(self, tmp_path):
        path = tmp_path / "vip.yaml"
        path.write_text(VIP_YAML, encoding="utf-8")
        assert MigrationConfig.from_yaml_file(path) == MigrationConfig.from_yaml(VIP_YAML)
