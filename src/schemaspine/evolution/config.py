"""Pydantic models for declarative migration configs.

A :class:`MigrationConfig` is the authored form of a migration; the
:class:`~schemaspine.evolution.builder.ConfigDrivenMigrationManager` turns it
into a :class:`~schemaspine.evolution.models.ZeroDowntimeMigration`.

Every key accepts both its ``snake_case`` name and its ``camelCase`` alias,
and step types accept both spellings (``add_column`` / ``addColumn``).

Example YAML::

    version: 2025.08.27.1000
    description: Add VIP flag to players
    preChecks:
      - name: players_table_exists
        sql: SELECT COUNT(*) AS count FROM information_schema.tables WHERE table_name = 'players'
        expected: {count: 1}
    steps:
      - type: addColumn
        table: players
        details: {columnName: is_vip, dataType: BOOLEAN, nullable: false, defaultValue: false}
      - type: addIndex
        table: players
        details: {columns: [is_vip], where: is_vip}
    rollback:
      - sql: DROP INDEX CONCURRENTLY IF EXISTS idx_players_is_vip
      - sql: ALTER TABLE players DROP COLUMN IF EXISTS is_vip

Tags:
    schema-evolution, yaml, declarative, config-driven, schema-spine

Doc-Types:
    - API Reference
"""

from __future__ import annotations

from pathlib import Path
from typing import Annotated, Any, Literal, Union

import yaml
from pydantic import Field, field_validator

from schemaspine.core.models import ConfigModel
from schemaspine.evolution.transform import DataTransformation

# ── Step details ─────────────────────────────────────────────────────────


class AddColumnDetails(ConfigModel):
    column_name: str
    data_type: str
    nullable: bool = False
    default_value: Any = None


class DropColumnDetails(ConfigModel):
    column_name: str


class ModifyColumnDetails(ConfigModel):
    """``default_value`` is applied only when present in the config, so ``null`` sets ``DEFAULT NULL``."""

    column_name: str
    new_type: str | None = None
    not_null: bool = False
    drop_not_null: bool = False
    default_value: Any = None


class AddIndexDetails(ConfigModel):
    columns: list[str] = Field(..., min_length=1)
    index_name: str | None = None
    where: str | None = None
    unique: bool = False


class CustomDetails(ConfigModel):
    sql: str = Field(..., min_length=1)
    batch: bool = False


class DataTransformationDetails(ConfigModel):
    transformation: DataTransformation
    batch_size: int | None = Field(default=None, ge=1)
    description: str | None = None


# ── Steps ────────────────────────────────────────────────────────────────


class AddColumnStep(ConfigModel):
    type: Literal["add_column", "addColumn"]
    table: str
    details: AddColumnDetails


class DropColumnStep(ConfigModel):
    type: Literal["drop_column", "dropColumn"]
    table: str
    details: DropColumnDetails


class ModifyColumnStep(ConfigModel):
    type: Literal["modify_column", "modifyColumn"]
    table: str
    details: ModifyColumnDetails


class AddIndexStep(ConfigModel):
    type: Literal["add_index", "addIndex"]
    table: str
    details: AddIndexDetails


class CustomStep(ConfigModel):
    type: Literal["custom"]
    table: str = ""
    details: CustomDetails


class DataTransformationStep(ConfigModel):
    type: Literal["data_transformation", "dataTransformation"]
    table: str = ""
    details: DataTransformationDetails


MigrationStep = Annotated[
    Union[
        AddColumnStep,
        DropColumnStep,
        ModifyColumnStep,
        AddIndexStep,
        CustomStep,
        DataTransformationStep,
    ],
    Field(discriminator="type"),
]


# ── Checks, rollback, compatibility ──────────────────────────────────────


class MigrationCheck(ConfigModel):
    name: str = Field(..., min_length=1)
    sql: str = Field(..., min_length=1)
    expected: dict[str, Any] | None = None
    error_message: str | None = None


class RollbackStepConfig(ConfigModel):
    sql: str = Field(..., min_length=1)
    params: list[Any] | None = None
    condition: str | None = None


class CompatibilityObjectConfig(ConfigModel):
    name: str
    sql: str


class BackwardCompatibilityConfig(ConfigModel):
    compatibility_views: list[CompatibilityObjectConfig] = Field(default_factory=list)
    compatibility_functions: list[CompatibilityObjectConfig] = Field(default_factory=list)
    deprecation_warnings: list[str] = Field(default_factory=list)


# ── Root ─────────────────────────────────────────────────────────────────


class MigrationConfig(ConfigModel):
    """Root model of a migration config document.

    ``version`` is a ``YYYY.MM.DD.NNNN`` string (see
    :class:`~schemaspine.evolution.versioning.MigrationVersioning`). The model
    only requires a non-empty ``version``; the format is enforced
    when the config is built into a plan.
    """

    version: str = Field(..., min_length=1)
    description: str | None = None
    dependencies: list[str] = Field(default_factory=list)
    required_version: str | None = None
    pre_checks: list[MigrationCheck] = Field(default_factory=list)
    steps: list[MigrationStep] = Field(default_factory=list)
    post_checks: list[MigrationCheck] = Field(default_factory=list)
    rollback: list[RollbackStepConfig] = Field(default_factory=list)
    rollback_safety_checks: list[str] = Field(default_factory=list)
    backward_compatibility: BackwardCompatibilityConfig | None = None
    cleanup_delay: float | None = Field(default=None, ge=0)

    @field_validator("version", "required_version", mode="before")
    @classmethod
    def _coerce_version(cls, v: Any) -> Any:
        # YAML reads an unquoted 2025.08.27.1000 as a string, but 2025.08 as a float
        return str(v) if isinstance(v, (int, float)) else v

    @field_validator("dependencies", mode="before")
    @classmethod
    def _coerce_dependencies(cls, v: Any) -> Any:
        if isinstance(v, list):
            return [str(d) if isinstance(d, (int, float)) else d for d in v]
        return v

    @classmethod
    def from_yaml(cls, yaml_content: str) -> MigrationConfig:
        """Parse and validate YAML content.

        Raises:
            ValueError: If the YAML is malformed or does not match the schema
        """
        try:
            data = yaml.safe_load(yaml_content)
        except yaml.YAMLError as e:
            raise ValueError(f"Invalid YAML: {e}") from e
        return cls.model_validate(data)

    @classmethod
    def from_yaml_file(cls, path: str | Path) -> MigrationConfig:
        content = Path(path).read_text(encoding="utf-8")
        return cls.from_yaml(content)


__all__ = [
    "AddColumnDetails",
    "DropColumnDetails",
    "ModifyColumnDetails",
    "AddIndexDetails",
    "CustomDetails",
    "DataTransformationDetails",
    "AddColumnStep",
    "DropColumnStep",
    "ModifyColumnStep",
    "AddIndexStep",
    "CustomStep",
    "DataTransformationStep",
    "MigrationStep",
    "MigrationCheck",
    "RollbackStepConfig",
    "CompatibilityObjectConfig",
    "BackwardCompatibilityConfig",
    "MigrationConfig",
]
