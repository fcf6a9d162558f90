"""
Pluggable gates used by the evolution manager.

Both gates are constructor-injected into
:class:`~schemaspine.evolution.manager.SchemaEvolutionManager`, so tests
and deployments can swap the policy without touching the manager.

- :class:`PreMigrationValidator` decides whether a migration may start.
- :class:`RollbackSafetyChecker` decides whether a rollback plan may run.
"""

from __future__ import annotations

from numbers import Number
from typing import TYPE_CHECKING, Protocol, runtime_checkable

from schemaspine.core.logging import get_logger
from schemaspine.core.transactions import TransactionConfig
from schemaspine.evolution.models import (
    RollbackPlan,
    RollbackSafetyCheck,
    ValidationResult,
    ZeroDowntimeMigration,
)

if TYPE_CHECKING:
    from schemaspine.evolution.manager import SchemaEvolutionManager

logger = get_logger(__name__)


@runtime_checkable
class PreMigrationValidator(Protocol):
    def validate(
        self, migration: ZeroDowntimeMigration, manager: SchemaEvolutionManager
    ) -> ValidationResult:
        ...


@runtime_checkable
class RollbackSafetyChecker(Protocol):
    def check(self, plan: RollbackPlan, manager: SchemaEvolutionManager) -> RollbackSafetyCheck:
        ...


class DefaultPreMigrationValidator:
    """Checks the required version, the dependencies and the pre-check validators.

    Every problem is collected; nothing short-circuits.
    """

    def validate(
        self, migration: ZeroDowntimeMigration, manager: SchemaEvolutionManager
    ) -> ValidationResult:
        errors: list[str] = []

        if migration.required_version:
            current = manager.get_current_version()
            if current != migration.required_version:
                errors.append(
                    f"Required version {migration.required_version}, but current is {current}"
                )

        if migration.dependencies:
            applied = manager.get_applied_versions()
            errors.extend(
                f"Missing dependency: {dep}" for dep in migration.dependencies if dep not in applied
            )

        if migration.validation:
            for validator in migration.validation.pre_validators:
                ok, message = manager.run_validator(validator)
                if not ok:
                    errors.append(message)

        return ValidationResult.from_errors(errors)


def _is_positive(value: object) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, Number):
        return value > 0  # type: ignore[operator]
    return False


class DefaultRollbackSafetyChecker:
    """
    A rollback is unsafe when:

    - the target version was never applied;
    - a migration to undo has no stored rollback steps;
    - a safety-check query fails, or its first row holds a positive number
      (``SELECT COUNT(*) FROM players WHERE is_vip IS NOT NULL`` > 0 means
      the rollback would discard data).
    """

    def check(self, plan: RollbackPlan, manager: SchemaEvolutionManager) -> RollbackSafetyCheck:
        risks: list[str] = []
        if not plan.target_found:
            risks.append(f"Target version {plan.target_version} is not in the migration history")
        risks.extend(f"Migration {v} has no rollback steps" for v in plan.missing_rollback)

        for sql in plan.safety_checks:
            try:
                result = manager.transactions.with_transaction(
                    lambda ctx, sql=sql: ctx.client.query(sql),
                    TransactionConfig(read_only=True),
                )
            except Exception as e:
                logger.warning("rollback_safety_check_failed", sql=sql, error=str(e))
                risks.append(f"Safety check failed: {sql} ({e})")
                continue
            row = result.first() or {}
            flagged = {k: v for k, v in row.items() if _is_positive(v)}
            if flagged:
                details = ", ".join(f"{k}={v}" for k, v in flagged.items())
                risks.append(f"Safety check reported affected data ({details}): {sql}")

        return RollbackSafetyCheck(is_safe=not risks, risks=risks)


__all__ = [
    "PreMigrationValidator",
    "RollbackSafetyChecker",
    "DefaultPreMigrationValidator",
    "DefaultRollbackSafetyChecker",
]
