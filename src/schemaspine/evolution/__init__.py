"""Zero-downtime schema evolution.

Architecture::

    models.py        Plan dataclasses (ZeroDowntimeMigration, stages, rollback, results)
    analysis.py      sqlparse-based classification of forward SQL
    strategies.py    Pre-migration and rollback-safety gates
    manager.py       SchemaEvolutionManager (apply, validate, rollback, history)
    transform.py     DataTransformationService (field-mapped data movement)
    config.py        MigrationConfig pydantic models (YAML / dict)
    builder.py       ConfigDrivenMigrationManager (config → plan → run)
    templates.py     MigrationTemplateFactory
    versioning.py    MigrationVersioning (YYYY.MM.DD.HHMM)
"""

from schemaspine.evolution.analysis import Finding, FindingKind, PlanAnalysis, PlanAnalyzer
from schemaspine.evolution.builder import ConfigDrivenMigrationManager
from schemaspine.evolution.config import MigrationConfig
from schemaspine.evolution.manager import SchemaEvolutionManager
from schemaspine.evolution.models import (
    BackwardCompatibilitySetup,
    CompatibilityObject,
    CustomValidator,
    DataMigrationPlan,
    DataOperation,
    EvolutionLogEntry,
    EvolutionStage,
    EvolutionStep,
    EvolutionValidationResult,
    IssueType,
    MigrationExecutionResult,
    MigrationRecord,
    RetryPolicy,
    RollbackConfiguration,
    RollbackPlan,
    RollbackResult,
    RollbackStep,
    ValidationConfiguration,
    ValidationIssue,
    ValidationResult,
    ZeroDowntimeMigration,
)
from schemaspine.evolution.strategies import (
    DefaultPreMigrationValidator,
    DefaultRollbackSafetyChecker,
    PreMigrationValidator,
    RollbackSafetyChecker,
)
from schemaspine.evolution.templates import MigrationTemplateFactory
from schemaspine.evolution.transform import (
    DataTransformation,
    DataTransformationService,
    ExecuteOptions,
)
from schemaspine.evolution.versioning import MigrationVersioning

__all__ = [
    "Finding",
    "FindingKind",
    "PlanAnalysis",
    "PlanAnalyzer",
    "ConfigDrivenMigrationManager",
    "MigrationConfig",
    "SchemaEvolutionManager",
    "BackwardCompatibilitySetup",
    "CompatibilityObject",
    "CustomValidator",
    "DataMigrationPlan",
    "DataOperation",
    "EvolutionLogEntry",
    "EvolutionStage",
    "EvolutionStep",
    "EvolutionValidationResult",
    "IssueType",
    "MigrationExecutionResult",
    "MigrationRecord",
    "RetryPolicy",
    "RollbackConfiguration",
    "RollbackPlan",
    "RollbackResult",
    "RollbackStep",
    "ValidationConfiguration",
    "ValidationIssue",
    "ValidationResult",
    "ZeroDowntimeMigration",
    "DefaultPreMigrationValidator",
    "DefaultRollbackSafetyChecker",
    "PreMigrationValidator",
    "RollbackSafetyChecker",
    "MigrationTemplateFactory",
    "DataTransformation",
    "DataTransformationService",
    "ExecuteOptions",
    "MigrationVersioning",
]
