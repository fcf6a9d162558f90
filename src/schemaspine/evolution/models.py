"""
Plan and result models for schema evolution.

A :class:`ZeroDowntimeMigration` is the concrete plan the evolution manager
executes: ordered stages of SQL steps, an optional batched data migration,
optional backward-compatibility shims, rollback steps and post-migration
validators.  All plan types are plain dataclasses so a plan built twice from
the same config compares equal.

Architecture:
    ::

        ZeroDowntimeMigration
        ├── stages: [EvolutionStage]          one transaction each, in order
        │     └── steps: [EvolutionStep]       sql, params, condition, retry_policy
        ├── data_migration: DataMigrationPlan  {LIMIT}/{OFFSET} batched operations
        ├── backward_compatibility             views + functions installed first
        ├── rollback: RollbackConfiguration    undo steps (run in reverse)
        ├── validation: ValidationConfiguration
        │     ├── pre_validators               checked before any stage
        │     ├── validators                   checked after data migration
        │     └── data_integrity_checks        must execute without error
        └── cleanup_delay                      hours before shims are dropped

Tags:
    schema-evolution, migration, dataclass, schema-spine

Doc-Types:
    - API Reference
"""

from __future__ import annotations

import hashlib
import json
from dataclasses import asdict, dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from schemaspine.consistency.acid import Severity

# =============================================================================
# PLAN
# =============================================================================


@dataclass(frozen=True)
class RetryPolicy:
    """Bounded retry of one statement with a fixed delay."""

    max_attempts: int = 1
    delay_ms: int = 0


@dataclass(frozen=True)
class EvolutionStep:
    sql: str
    params: list[Any] | None = None
    condition: str | None = None
    retry_policy: RetryPolicy | None = None


@dataclass(frozen=True)
class EvolutionStage:
    name: str
    description: str = ""
    steps: list[EvolutionStep] = field(default_factory=list)
    can_rollback: bool = True

    @property
    def requires_autocommit(self) -> bool:
        """``CONCURRENTLY`` statements cannot run inside a transaction block."""
        return any("CONCURRENTLY" in step.sql.upper() for step in self.steps)


@dataclass(frozen=True)
class DataOperation:
    sql: str
    params: list[Any] | None = None
    description: str = ""


@dataclass(frozen=True)
class DataMigrationPlan:
    """Batched operations.  ``batch_size=None`` uses the configured default.

    ``parallel`` is accepted for compatibility and ignored: operations always
    run one after another.
    """

    operations: list[DataOperation] = field(default_factory=list)
    batch_size: int | None = None
    parallel: bool = False


@dataclass(frozen=True)
class CompatibilityObject:
    name: str
    sql: str


@dataclass(frozen=True)
class BackwardCompatibilitySetup:
    compatibility_views: list[CompatibilityObject] = field(default_factory=list)
    compatibility_functions: list[CompatibilityObject] = field(default_factory=list)
    deprecation_warnings: list[str] = field(default_factory=list)

    @property
    def has_shims(self) -> bool:
        return bool(self.compatibility_views or self.compatibility_functions)

    def cleanup_statements(self) -> list[str]:
        return [f"DROP VIEW IF EXISTS {v.name}" for v in self.compatibility_views] + [
            f"DROP FUNCTION IF EXISTS {f.name}" for f in self.compatibility_functions
        ]


@dataclass(frozen=True)
class RollbackStep:
    sql: str
    params: list[Any] | None = None
    condition: str | None = None
    migration_version: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {"sql": self.sql, "params": self.params, "condition": self.condition}


@dataclass(frozen=True)
class RollbackConfiguration:
    """Undo steps listed in forward order; they are executed in reverse."""

    steps: list[RollbackStep] = field(default_factory=list)
    safety_checks: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "steps": [s.to_dict() for s in self.steps],
            "safety_checks": list(self.safety_checks),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None, *, version: str | None = None) -> RollbackConfiguration:
        data = data or {}
        return cls(
            steps=[
                RollbackStep(
                    sql=s["sql"],
                    params=s.get("params"),
                    condition=s.get("condition"),
                    migration_version=version,
                )
                for s in data.get("steps", [])
            ],
            safety_checks=list(data.get("safety_checks", [])),
        )


@dataclass(frozen=True)
class CustomValidator:
    """A query whose first row must contain ``expected_result``.

    An expected value that names another column of the row is compared with
    that column (``{"old_count": "new_count"}``).  An empty
    ``expected_result`` only requires the query to succeed.
    """

    name: str
    sql: str
    expected_result: dict[str, Any] = field(default_factory=dict)
    error_message: str = ""


@dataclass(frozen=True)
class ValidationConfiguration:
    validators: list[CustomValidator] = field(default_factory=list)
    data_integrity_checks: list[str] = field(default_factory=list)
    pre_validators: list[CustomValidator] = field(default_factory=list)


@dataclass(frozen=True)
class ZeroDowntimeMigration:
    version: str
    description: str = ""
    required_version: str | None = None
    dependencies: list[str] = field(default_factory=list)
    stages: list[EvolutionStage] = field(default_factory=list)
    data_migration: DataMigrationPlan | None = None
    backward_compatibility: BackwardCompatibilitySetup | None = None
    rollback: RollbackConfiguration | None = None
    validation: ValidationConfiguration | None = None
    cleanup_delay: float | None = None

    @property
    def rollback_available(self) -> bool:
        return self.rollback is not None and bool(self.rollback.steps)

    def all_statements(self) -> list[str]:
        """Forward SQL in execution order (stages, then data operations)."""
        statements = [step.sql for stage in self.stages for step in stage.steps]
        if self.data_migration:
            statements.extend(op.sql for op in self.data_migration.operations)
        return statements

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    def checksum(self) -> str:
        """SHA-256 of the plan's canonical JSON form."""
        payload = json.dumps(self.to_dict(), sort_keys=True, default=str)
        return hashlib.sha256(payload.encode("utf-8")).hexdigest()


# =============================================================================
# VALIDATION
# =============================================================================


class IssueType(str, Enum):
    BREAKING_CHANGE = "breaking_change"
    DATA_LOSS = "data_loss"
    NO_ROLLBACK = "no_rollback"
    PERFORMANCE = "performance"


@dataclass(frozen=True)
class ValidationIssue:
    type: IssueType
    severity: Severity
    message: str
    mitigation: str = ""


@dataclass
class EvolutionValidationResult:
    is_valid: bool
    issues: list[ValidationIssue] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    recommendations: list[str] = field(default_factory=list)

    @property
    def error_messages(self) -> list[str]:
        return [i.message for i in self.issues if i.severity == Severity.ERROR]


@dataclass
class ValidationResult:
    is_valid: bool
    errors: list[str] = field(default_factory=list)

    @classmethod
    def from_errors(cls, errors: list[str]) -> ValidationResult:
        return cls(is_valid=not errors, errors=errors)


# =============================================================================
# EXECUTION RESULTS
# =============================================================================


class RunPhase(str, Enum):
    """Phases of one migration run, logged at each transition."""

    VALIDATING = "validating"
    COMPATIBILITY_SETUP = "compatibility_setup"
    STAGING = "staging"
    DATA_MIGRATION = "data_migration"
    POST_VALIDATING = "post_validating"
    ROLLING_BACK = "rolling_back"
    COMMITTED = "committed"
    FAILED = "failed"


@dataclass
class StageResult:
    stage_name: str
    success: bool
    execution_time_ms: int
    steps_executed: int = 0
    steps_skipped: int = 0
    error: str | None = None


@dataclass
class MigrationExecutionResult:
    version: str
    success: bool
    execution_time_ms: int
    stage_results: list[StageResult] = field(default_factory=list)
    pre_validation: ValidationResult | None = None
    post_validation: ValidationResult | None = None
    rows_migrated: int = 0
    cleanup_scheduled: bool = False
    error: str | None = None


@dataclass
class RollbackStepResult:
    sql: str
    success: bool
    migration_version: str | None = None
    skipped: bool = False
    error: str | None = None


@dataclass
class RollbackResult:
    target_version: str
    success: bool
    steps_executed: int = 0
    step_results: list[RollbackStepResult] = field(default_factory=list)
    rolled_back_versions: list[str] = field(default_factory=list)
    error: str | None = None


@dataclass
class RollbackPlan:
    """Rollback of every applied migration newer than ``target_version``.

    ``migrations`` lists the versions newest first; ``steps`` holds their undo
    steps in forward order so executing ``reversed(steps)`` undoes the newest
    change first.
    """

    target_version: str
    target_found: bool = True
    migrations: list[str] = field(default_factory=list)
    steps: list[RollbackStep] = field(default_factory=list)
    safety_checks: list[str] = field(default_factory=list)
    missing_rollback: list[str] = field(default_factory=list)


@dataclass
class RollbackSafetyCheck:
    is_safe: bool
    risks: list[str] = field(default_factory=list)


# =============================================================================
# BOOKKEEPING
# =============================================================================


@dataclass
class MigrationRecord:
    version: str
    applied_at: datetime | None
    description: str | None
    execution_time_ms: int | None
    rollback_available: bool
    checksum: str | None = None

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> MigrationRecord:
        return cls(
            version=row["version"],
            applied_at=row.get("applied_at"),
            description=row.get("description"),
            execution_time_ms=row.get("execution_time_ms"),
            rollback_available=bool(row.get("rollback_available")),
            checksum=row.get("checksum"),
        )


@dataclass
class EvolutionLogEntry:
    id: str
    migration_version: str
    operation_type: str
    started_at: datetime | None = None
    completed_at: datetime | None = None
    success: bool | None = None
    error_message: str | None = None
    metadata: dict[str, Any] | None = None

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> EvolutionLogEntry:
        metadata = row.get("metadata")
        if isinstance(metadata, str):
            metadata = json.loads(metadata)
        return cls(
            id=str(row["id"]),
            migration_version=row["migration_version"],
            operation_type=row["operation_type"],
            started_at=row.get("started_at"),
            completed_at=row.get("completed_at"),
            success=row.get("success"),
            error_message=row.get("error_message"),
            metadata=metadata,
        )


__all__ = [
    "RetryPolicy",
    "EvolutionStep",
    "EvolutionStage",
    "DataOperation",
    "DataMigrationPlan",
    "CompatibilityObject",
    "BackwardCompatibilitySetup",
    "RollbackStep",
    "RollbackConfiguration",
    "CustomValidator",
    "ValidationConfiguration",
    "ZeroDowntimeMigration",
    "IssueType",
    "Severity",
    "ValidationIssue",
    "EvolutionValidationResult",
    "ValidationResult",
    "RunPhase",
    "StageResult",
    "MigrationExecutionResult",
    "RollbackStepResult",
    "RollbackResult",
    "RollbackPlan",
    "RollbackSafetyCheck",
    "MigrationRecord",
    "EvolutionLogEntry",
]
