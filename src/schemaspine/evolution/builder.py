"""
Config-driven migrations.

:class:`ConfigDrivenMigrationManager` maps a :class:`MigrationConfig` onto a
:class:`ZeroDowntimeMigration` and runs it through the
:class:`SchemaEvolutionManager`.

Manifesto:
    - **Build is pure:** ``build_from_config`` performs no I/O; the same
      config always produces an equal plan
    - **Every step kind is handled:** dispatch is an exhaustive ``match`` and
      an unhandled kind raises :class:`InvalidConfigError`
    - **No raw identifiers:** table, column and index names are validated
      before they are interpolated into DDL
    - **Versions sort numerically:** ``version`` must be ``YYYY.MM.DD.NNNN``
      (four dot-separated numbers); any other spelling raises
      :class:`InvalidConfigError` before a plan is built
    - **Invalid plans never run:** ``run`` validates first and raises
      :class:`MigrationValidationError` listing every issue

Architecture:
    ::

        MigrationConfig
          ├── pre_checks  ──► validation.pre_validators
          ├── steps       ──► stage "apply_steps" (one transaction)
          │     ├── custom(batch) / data_transformation data steps
          │     │                ──► data_migration.operations
          ├── post_checks ──► validation.validators
          └── rollback    ──► RollbackConfiguration (only when non-empty)

Tags:
    schema-evolution, config-driven, builder, schema-spine

Doc-Types:
    - API Reference
"""

from __future__ import annotations

from typing import Any, assert_never

from schemaspine.core.errors import InvalidConfigError, MigrationValidationError
from schemaspine.core.logging import get_logger
from schemaspine.core.sql import (
    has_batch_placeholders,
    validate_identifier,
    validate_identifiers,
    validate_type_name,
)
from schemaspine.evolution.config import (
    AddColumnStep,
    AddIndexStep,
    CustomStep,
    DataTransformationStep,
    DropColumnStep,
    MigrationCheck,
    MigrationConfig,
    MigrationStep,
    ModifyColumnStep,
)
from schemaspine.evolution.manager import SchemaEvolutionManager
from schemaspine.evolution.models import (
    BackwardCompatibilitySetup,
    CompatibilityObject,
    CustomValidator,
    DataMigrationPlan,
    DataOperation,
    EvolutionStage,
    EvolutionStep,
    MigrationExecutionResult,
    RetryPolicy,
    RollbackConfiguration,
    RollbackResult,
    RollbackStep,
    ValidationConfiguration,
    ZeroDowntimeMigration,
)
from schemaspine.evolution.transform import DataTransformationService
from schemaspine.evolution.versioning import MigrationVersioning

logger = get_logger(__name__)

INDEX_RETRY_POLICY = RetryPolicy(max_attempts=3, delay_ms=5000)


def render_default(value: Any) -> str:
    """Render a config default as SQL text (``False`` → ``false``)."""
    if isinstance(value, bool):
        return "true" if value else "false"
    if value is None:
        return "NULL"
    return str(value)


class ConfigDrivenMigrationManager:
    def __init__(
        self,
        evolution: SchemaEvolutionManager,
        transformer: DataTransformationService | None = None,
    ):
        self.evolution = evolution
        self.transformer = transformer

    def build_from_config(self, cfg: MigrationConfig) -> ZeroDowntimeMigration:
        if not MigrationVersioning.is_valid_version(cfg.version):
            raise InvalidConfigError(
                f"Invalid migration version: {cfg.version} (expected YYYY.MM.DD.NNNN)", field_name="version"
            )

        steps: list[EvolutionStep] = []
        operations: list[DataOperation] = []
        batch_size: int | None = None

        for index, step in enumerate(cfg.steps):
            step_batch = self._map_step(step, index, steps, operations)
            if step_batch is not None:
                batch_size = step_batch

        stages = []
        if steps:
            stages.append(
                EvolutionStage(
                    name="apply_steps",
                    description="Apply configured schema steps",
                    steps=steps,
                    can_rollback=True,
                )
            )

        rollback = None
        if cfg.rollback:
            rollback = RollbackConfiguration(
                steps=[RollbackStep(sql=r.sql, params=r.params, condition=r.condition) for r in cfg.rollback],
                safety_checks=list(cfg.rollback_safety_checks),
            )

        migration = ZeroDowntimeMigration(
            version=cfg.version,
            description=cfg.description or "Config-driven schema migration",
            required_version=cfg.required_version,
            dependencies=list(cfg.dependencies),
            stages=stages,
            data_migration=DataMigrationPlan(operations=operations, batch_size=batch_size) if operations else None,
            backward_compatibility=self._compatibility(cfg),
            rollback=rollback,
            validation=ValidationConfiguration(
                validators=[self._validator(c, "Post-check failed") for c in cfg.post_checks],
                pre_validators=[self._validator(c, "Pre-check failed") for c in cfg.pre_checks],
            ),
            cleanup_delay=cfg.cleanup_delay,
        )
        logger.debug(
            "migration_built",
            migration_version=migration.version,
            steps=len(steps),
            data_operations=len(operations),
        )
        return migration

    def _map_step(
        self,
        step: MigrationStep,
        index: int,
        steps: list[EvolutionStep],
        operations: list[DataOperation],
    ) -> int | None:
        """Append the statements for one config step; returns a batch size override."""
        where = f"steps[{index}]"
        match step:
            case AddColumnStep(table=table, details=d):
                validate_identifier(table, field_name=f"{where}.table")
                validate_identifier(d.column_name, field_name=f"{where}.details.column_name")
                validate_type_name(d.data_type, field_name=f"{where}.details.data_type")
                sql = f"ALTER TABLE {table} ADD COLUMN IF NOT EXISTS {d.column_name} {d.data_type}"
                if not d.nullable:
                    sql += " NOT NULL"
                if d.default_value is not None:
                    sql += f" DEFAULT {render_default(d.default_value)}"
                steps.append(EvolutionStep(sql=sql))

            case DropColumnStep(table=table, details=d):
                validate_identifier(table, field_name=f"{where}.table")
                validate_identifier(d.column_name, field_name=f"{where}.details.column_name")
                steps.append(EvolutionStep(sql=f"ALTER TABLE {table} DROP COLUMN IF EXISTS {d.column_name}"))

            case ModifyColumnStep(table=table, details=d):
                validate_identifier(table, field_name=f"{where}.table")
                validate_identifier(d.column_name, field_name=f"{where}.details.column_name")
                prefix = f"ALTER TABLE {table} ALTER COLUMN {d.column_name}"
                if d.new_type:
                    validate_type_name(d.new_type, field_name=f"{where}.details.new_type")
                    steps.append(EvolutionStep(sql=f"{prefix} TYPE {d.new_type}"))
                if d.not_null:
                    steps.append(EvolutionStep(sql=f"{prefix} SET NOT NULL"))
                if d.drop_not_null:
                    steps.append(EvolutionStep(sql=f"{prefix} DROP NOT NULL"))
                if "default_value" in d.model_fields_set:
                    steps.append(EvolutionStep(sql=f"{prefix} SET DEFAULT {render_default(d.default_value)}"))

            case AddIndexStep(table=table, details=d):
                validate_identifier(table, field_name=f"{where}.table")
                validate_identifiers(d.columns, field_name=f"{where}.details.columns")
                name = d.index_name or f"idx_{table.replace('.', '_')}_{'_'.join(d.columns)}"
                validate_identifier(name, field_name=f"{where}.details.index_name")
                unique = "UNIQUE " if d.unique else ""
                sql = f"CREATE {unique}INDEX CONCURRENTLY IF NOT EXISTS {name} ON {table} ({', '.join(d.columns)})"
                if d.where:
                    sql += f" WHERE {d.where}"
                steps.append(EvolutionStep(sql=sql, retry_policy=INDEX_RETRY_POLICY))

            case CustomStep(details=d):
                if d.batch and has_batch_placeholders(d.sql):
                    operations.append(DataOperation(sql=d.sql, description="Config-driven batched operation"))
                else:
                    steps.append(EvolutionStep(sql=d.sql))

            case DataTransformationStep(details=d):
                if self.transformer is None:
                    raise InvalidConfigError(
                        "DataTransformationService not provided to ConfigDrivenMigrationManager",
                        field_name=f"{where}.type",
                    )
                plan = self.transformer.plan(d.transformation)
                steps.extend(EvolutionStep(sql=sc.sql) for sc in plan.schema_changes)
                operations.extend(
                    DataOperation(
                        sql=ds.sql,
                        description=d.description or ds.description or "Data transformation step",
                    )
                    for ds in plan.data_steps
                )
                return d.batch_size

            case _:
                assert_never(step)
        return None

    @staticmethod
    def _validator(check: MigrationCheck, fallback: str) -> CustomValidator:
        return CustomValidator(
            name=check.name,
            sql=check.sql,
            expected_result=dict(check.expected or {}),
            error_message=check.error_message or f"{fallback}: {check.name}",
        )

    @staticmethod
    def _compatibility(cfg: MigrationConfig) -> BackwardCompatibilitySetup | None:
        bc = cfg.backward_compatibility
        if bc is None:
            return None
        return BackwardCompatibilitySetup(
            compatibility_views=[CompatibilityObject(name=v.name, sql=v.sql) for v in bc.compatibility_views],
            compatibility_functions=[
                CompatibilityObject(name=f.name, sql=f.sql) for f in bc.compatibility_functions
            ],
            deprecation_warnings=list(bc.deprecation_warnings),
        )

    def run(self, cfg: MigrationConfig) -> MigrationExecutionResult:
        migration = self.build_from_config(cfg)
        validation = self.evolution.validate_evolution_plan(migration, record=True)
        if not validation.is_valid:
            messages = [i.message for i in validation.issues]
            raise MigrationValidationError(
                f"Migration validation failed: {', '.join(messages)}",
                errors=messages,
            ).with_context(migration_version=migration.version)
        return self.evolution.execute_zero_downtime_migration(migration)

    def rollback_to(self, version: str) -> RollbackResult:
        return self.evolution.rollback_to_version(version)


__all__ = ["ConfigDrivenMigrationManager", "INDEX_RETRY_POLICY", "render_default"]
