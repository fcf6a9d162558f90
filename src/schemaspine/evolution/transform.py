"""
Data transformation planner.

Turns a declarative field mapping between two table versions into
schema-change statements and one batched ``INSERT ... SELECT`` data step,
and optionally executes them.

Manifesto:
    - **Plan is pure:** :meth:`DataTransformationService.plan` touches no
      database and raises :class:`TransformationError` on a mapping that
      references an undeclared column, or
      :class:`InvalidConfigError` on a table, column or type name that is
      not a plain identifier
    - **Idempotent data movement:** the data step ends in
      ``ON CONFLICT DO NOTHING`` so a re-run batch does not duplicate rows
    - **Warnings do not block:** validation rules marked ``warning`` are
      recorded and logged, every other mismatch raises

Examples:
    >>> service = DataTransformationService(transactions)
    >>> plan = service.plan(DataTransformation.model_validate(cfg))
    >>> print(plan.data_steps[0].sql)
    INSERT INTO users_v2 (id, username)
    SELECT s.id, LOWER(s.username)
    FROM users s
    LIMIT {LIMIT} OFFSET {OFFSET}
    ON CONFLICT DO NOTHING

Tags:
    schema-evolution, data-transformation, batching, schema-spine

Doc-Types:
    - API Reference
"""

from __future__ import annotations

import time
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any, Literal

from pydantic import Field

from schemaspine.core.errors import TransformationError, TransformationValidationError
from schemaspine.core.logging import get_logger
from schemaspine.core.models import ConfigModel
from schemaspine.core.protocols import TransactionRunner
from schemaspine.core.settings import SchemaSpineSettings, get_settings
from schemaspine.core.sql import render_batch, validate_identifier, validate_type_name

logger = get_logger(__name__)


# =============================================================================
# DECLARATIVE MODELS
# =============================================================================


class SchemaColumn(ConfigModel):
    name: str
    type: str
    nullable: bool | None = None
    primary_key: bool = False


class SchemaDefinition(ConfigModel):
    name: str = ""
    columns: list[SchemaColumn] = Field(default_factory=list)

    def column(self, name: str) -> SchemaColumn | None:
        return next((c for c in self.columns if c.name == name), None)


class TableVersion(ConfigModel):
    table: str = ""
    version: str = ""
    schema_: SchemaDefinition = Field(default_factory=SchemaDefinition, alias="schema")


class FieldMapping(ConfigModel):
    """One target column, fed from ``source`` or a ``transform`` expression over alias ``s``."""

    source: str
    target: str
    transform: str | None = None
    type_change: str | None = None
    nullable: bool | None = None


class ValidationRule(ConfigModel):
    name: str
    sql: str
    expected: dict[str, Any] = Field(default_factory=dict)
    severity: Literal["error", "warning"] = "error"


class DataTransformation(ConfigModel):
    source: TableVersion
    target: TableVersion
    mapping: list[FieldMapping] = Field(default_factory=list)
    validation: list[ValidationRule] = Field(default_factory=list)


# =============================================================================
# PLAN / OUTCOME
# =============================================================================


@dataclass(frozen=True)
class PlannedStatement:
    sql: str
    description: str = ""


@dataclass
class DataTransformationPlan:
    schema_changes: list[PlannedStatement] = field(default_factory=list)
    data_steps: list[PlannedStatement] = field(default_factory=list)


@dataclass
class ExecuteOptions:
    batch_size: int | None = None
    offset: int = 0
    dry_run: bool = False
    validate: bool = False


@dataclass
class TransformationOutcome:
    executed: bool
    plan: DataTransformationPlan
    rows_moved: int = 0
    batches: int = 0
    warnings: list[str] = field(default_factory=list)


# =============================================================================
# SERVICE
# =============================================================================


class DataTransformationService:
    """Plans and executes field-mapped data transformations."""

    def __init__(
        self,
        transactions: TransactionRunner,
        *,
        settings: SchemaSpineSettings | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self._transactions = transactions
        self._settings = settings or get_settings()
        self._sleep = sleep

    def plan(self, transformation: DataTransformation) -> DataTransformationPlan:
        self._check_columns(transformation)
        target = transformation.target
        plan = DataTransformationPlan()

        for m in transformation.mapping:
            column = target.schema_.column(m.target)
            if column is None:
                continue
            if m.type_change and m.type_change != column.type:
                plan.schema_changes.append(
                    PlannedStatement(
                        sql=f"ALTER TABLE {target.table} ALTER COLUMN {m.target} TYPE {m.type_change}",
                        description=f"Change type of {m.target} to {m.type_change}",
                    )
                )
            if m.nullable is not None:
                action = "DROP NOT NULL" if m.nullable else "SET NOT NULL"
                label = "NULLABLE" if m.nullable else "NOT NULL"
                plan.schema_changes.append(
                    PlannedStatement(
                        sql=f"ALTER TABLE {target.table} ALTER COLUMN {m.target} {action}",
                        description=f"Set nullability of {m.target} to {label}",
                    )
                )

        columns = ", ".join(m.target for m in transformation.mapping)
        exprs = ", ".join(m.transform or f"s.{m.source}" for m in transformation.mapping)
        plan.data_steps.append(
            PlannedStatement(
                sql=(
                    f"INSERT INTO {target.table} ({columns})\n"
                    f"SELECT {exprs}\n"
                    f"FROM {transformation.source.table} s\n"
                    "LIMIT {LIMIT} OFFSET {OFFSET}\n"
                    "ON CONFLICT DO NOTHING"
                ),
                description="Apply field mappings",
            )
        )
        return plan

    @staticmethod
    def _check_columns(t: DataTransformation) -> None:
        if not t.source.table or not t.target.table:
            raise TransformationError("Source and target must be provided")
        validate_identifier(t.source.table, field_name="source.table")
        validate_identifier(t.target.table, field_name="target.table")
        for i, m in enumerate(t.mapping):
            if t.target.schema_.column(m.target) is None:
                raise TransformationError(f"Target column not found: {m.target}")
            if not m.transform and t.source.schema_.column(m.source) is None:
                raise TransformationError(f"Source column not found: {m.source}")
            validate_identifier(m.target, field_name=f"mapping[{i}].target")
            if not m.transform:
                validate_identifier(m.source, field_name=f"mapping[{i}].source")
            if m.type_change:
                validate_type_name(m.type_change, field_name=f"mapping[{i}].type_change")

    def execute(
        self, transformation: DataTransformation, options: ExecuteOptions | None = None
    ) -> TransformationOutcome:
        options = options or ExecuteOptions()
        plan = self.plan(transformation)
        if options.dry_run:
            return TransformationOutcome(executed=False, plan=plan)

        for change in plan.schema_changes:
            self._transactions.with_transaction(lambda ctx, sql=change.sql: ctx.client.query(sql))
            logger.info("schema_change_applied", description=change.description)

        outcome = TransformationOutcome(executed=True, plan=plan)
        batch_size = options.batch_size or self._settings.default_batch_size
        pause = self._settings.batch_pause_ms / 1000
        for step in plan.data_steps:
            offset = options.offset
            while True:
                sql = render_batch(step.sql, batch_size, offset)
                result = self._transactions.with_transaction(lambda ctx, sql=sql: ctx.client.query(sql))
                outcome.batches += 1
                outcome.rows_moved += result.row_count
                logger.debug("transform_batch_completed", offset=offset, rows=result.row_count)
                if result.row_count < batch_size:
                    break
                offset += batch_size
                if pause > 0:
                    self._sleep(pause)

        logger.info(
            "transformation_executed",
            source=transformation.source.table,
            target=transformation.target.table,
            rows_moved=outcome.rows_moved,
            batches=outcome.batches,
        )

        if options.validate:
            outcome.warnings.extend(self._run_validation(transformation))
        return outcome

    def _run_validation(self, t: DataTransformation) -> list[str]:
        warnings = []
        for rule in t.validation:
            result = self._transactions.with_transaction(lambda ctx, sql=rule.sql: ctx.client.query(sql))
            row = result.first() or {}
            if all(str(row.get(k)) == str(v) for k, v in rule.expected.items()):
                continue
            if rule.severity == "warning":
                logger.warning("transformation_validation_warning", rule=rule.name, row=row)
                warnings.append(f"Validation warning: {rule.name}")
                continue
            raise TransformationValidationError(f"Validation failed: {rule.name}", errors=[rule.name])
        return warnings


__all__ = [
    "SchemaColumn",
    "SchemaDefinition",
    "TableVersion",
    "FieldMapping",
    "ValidationRule",
    "DataTransformation",
    "PlannedStatement",
    "DataTransformationPlan",
    "ExecuteOptions",
    "TransformationOutcome",
    "DataTransformationService",
]
