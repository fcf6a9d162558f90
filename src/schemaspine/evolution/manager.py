"""
Schema evolution manager: staged, validated, rollback-capable migrations.

Manifesto:
    - **Stages are independent commits:** each stage is its own transaction.
      A failing stage halts the run; earlier stages stay committed and must be
      undone with an explicit rollback
    - **Validation gates the run:** pre-migration checks (required version,
      dependencies, pre-checks) run before any DDL; post-migration validators
      run after the data migration and trigger one automatic rollback
    - **Everything is recorded:** every apply and rollback writes an
      ``schema_evolution_log`` row; successful applies upsert
      ``schema_migrations`` together with their rollback steps
    - **Rollbacks report, they do not raise:** an unsafe or failing rollback
      returns ``RollbackResult(success=False, error=...)``

Architecture:
    ::

        execute_zero_downtime_migration(migration)
          │
          ├── log start (schema_evolution_log, operation_type='apply')
          ├── VALIDATING           PreMigrationValidator
          ├── COMPATIBILITY_SETUP  views, then functions (one transaction)
          ├── STAGING              stage 1..N, one transaction each
          │     └── step: condition? → RetryContext(ConstantBackoff) → query
          ├── DATA_MIGRATION       {LIMIT}/{OFFSET} batches, pause between
          ├── POST_VALIDATING      validators + integrity checks
          │     └── failure → ROLLING_BACK → PostMigrationValidationError
          ├── schedule compatibility cleanup (cleanup_delay)
          ├── upsert schema_migrations (ON CONFLICT (version) DO UPDATE)
          └── COMMITTED | FAILED   log completion

        rollback_to_version(target)
          ├── create_rollback_plan    newer migrations, stored steps
          ├── RollbackSafetyChecker   unsafe → RollbackResult(success=False)
          ├── execute steps in reverse
          ├── delete rolled-back schema_migrations rows
          └── verify current version == target

Examples:
    >>> manager = SchemaEvolutionManager(TransactionManager.from_settings())
    >>> manager.initialize()
    >>> result = manager.execute_zero_downtime_migration(migration)
    >>> result.stage_results[0].stage_name
    'apply_steps'
    >>> manager.rollback_to_version("2025.08.27.1000").success
    True

Tags:
    schema-evolution, zero-downtime, migration, rollback, schema-spine

Doc-Types:
    - API Reference
    - Architecture Decision Record
"""

from __future__ import annotations

import json
import time
from collections.abc import Callable
from typing import Any

from schemaspine.consistency.acid import Severity
from schemaspine.core.errors import (
    PostMigrationValidationError,
    PreMigrationError,
    RollbackError,
    StageExecutionError,
)
from schemaspine.core.logging import LogContext, get_logger
from schemaspine.core.protocols import QueryResult, TransactionRunner
from schemaspine.core.retry import ConstantBackoff, RetryContext
from schemaspine.core.settings import SchemaSpineSettings, get_settings
from schemaspine.core.sql import render_batch
from schemaspine.core.transactions import TransactionConfig, TransactionContext
from schemaspine.evolution.analysis import PlanAnalyzer
from schemaspine.evolution.models import (
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
    RollbackStepResult,
    RunPhase,
    StageResult,
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

logger = get_logger(__name__)

# ── Bookkeeping DDL ──────────────────────────────────────────────────────

SCHEMA_MIGRATIONS_DDL = """
CREATE TABLE IF NOT EXISTS schema_migrations (
    version VARCHAR(255) PRIMARY KEY,
    applied_at TIMESTAMP WITH TIME ZONE DEFAULT NOW(),
    description TEXT,
    checksum VARCHAR(64),
    execution_time_ms INTEGER,
    rollback_available BOOLEAN DEFAULT false,
    rollback_steps JSONB
)
"""

SCHEMA_EVOLUTION_LOG_DDL = """
CREATE TABLE IF NOT EXISTS schema_evolution_log (
    id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
    migration_version VARCHAR(255) NOT NULL,
    operation_type VARCHAR(50) NOT NULL,
    started_at TIMESTAMP WITH TIME ZONE DEFAULT NOW(),
    completed_at TIMESTAMP WITH TIME ZONE,
    success BOOLEAN,
    error_message TEXT,
    metadata JSONB
)
"""

SCHEMA_COMPATIBILITY_CLEANUP_DDL = """
CREATE TABLE IF NOT EXISTS schema_compatibility_cleanup (
    id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
    migration_version VARCHAR(255) NOT NULL,
    statements JSONB NOT NULL,
    cleanup_after TIMESTAMP WITH TIME ZONE NOT NULL,
    completed_at TIMESTAMP WITH TIME ZONE
)
"""

_READ_ONLY = TransactionConfig(read_only=True)

_MITIGATIONS = {
    IssueType.BREAKING_CHANGE: "Ensure backward compatibility or plan application updates",
    IssueType.DATA_LOSS: "Add data preservation steps or backup procedures",
    IssueType.NO_ROLLBACK: "Consider adding rollback steps or alternative recovery plan",
}


def _jsonb(value: Any) -> str | None:
    return None if value is None else json.dumps(value, default=str)


def _load_json(value: Any) -> Any:
    return json.loads(value) if isinstance(value, str) else value


def _elapsed_ms(start: float) -> int:
    return int((time.monotonic() - start) * 1000)


class SchemaEvolutionManager:
    """
    Orchestrates migration runs against the bookkeeping tables.

    Args:
        transactions: Transaction boundary every statement runs through
        pre_validator: Gate deciding whether a migration may start
        rollback_checker: Gate deciding whether a rollback plan may run
        analyzer: SQL classifier used by :meth:`validate_evolution_plan`
        settings: Batch size and inter-batch pause defaults
        sleep: Sleep function for step retries and batch pauses
    """

    def __init__(
        self,
        transactions: TransactionRunner,
        *,
        pre_validator: PreMigrationValidator | None = None,
        rollback_checker: RollbackSafetyChecker | None = None,
        analyzer: PlanAnalyzer | None = None,
        settings: SchemaSpineSettings | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.transactions = transactions
        self._pre_validator = pre_validator or DefaultPreMigrationValidator()
        self._rollback_checker = rollback_checker or DefaultRollbackSafetyChecker()
        self._analyzer = analyzer or PlanAnalyzer()
        self._settings = settings or get_settings()
        self._sleep = sleep

    # =========================================================================
    # SETUP
    # =========================================================================

    def initialize(self) -> None:
        """Create the bookkeeping tables if they do not exist."""

        def create(ctx: TransactionContext) -> None:
            ctx.client.query(SCHEMA_MIGRATIONS_DDL)
            ctx.client.query(SCHEMA_EVOLUTION_LOG_DDL)
            ctx.client.query(SCHEMA_COMPATIBILITY_CLEANUP_DDL)

        self.transactions.with_transaction(create)
        logger.info("schema_evolution_initialized")

    # =========================================================================
    # APPLY
    # =========================================================================

    def execute_zero_downtime_migration(
        self, migration: ZeroDowntimeMigration
    ) -> MigrationExecutionResult:
        """Run ``migration`` through every phase and record the outcome.

        Raises:
            PreMigrationError: Required version or dependencies not satisfied
            StageExecutionError: A stage failed (earlier stages stay committed)
            PostMigrationValidationError: Validators failed (after one rollback attempt)
        """
        start = time.monotonic()
        with LogContext(migration_version=migration.version):
            log_id = self._log_start(
                migration.version,
                "apply",
                metadata={"description": migration.description, "stages": len(migration.stages)},
            )
            phase = RunPhase.VALIDATING
            try:
                self._enter(phase)
                pre = self._pre_validator.validate(migration, self)
                if not pre.is_valid:
                    raise PreMigrationError(
                        f"Pre-migration validation failed: {', '.join(pre.errors)}",
                        errors=pre.errors,
                    ).with_context(migration_version=migration.version)

                shims_installed = False
                if migration.backward_compatibility:
                    phase = self._enter(RunPhase.COMPATIBILITY_SETUP)
                    shims_installed = self._setup_backward_compatibility(migration)

                phase = self._enter(RunPhase.STAGING)
                stage_results = self._execute_stages(migration)

                rows_migrated = 0
                if migration.data_migration:
                    phase = self._enter(RunPhase.DATA_MIGRATION)
                    rows_migrated = self._execute_data_migration(migration.data_migration)

                phase = self._enter(RunPhase.POST_VALIDATING)
                post = self._post_validate(migration)
                if not post.is_valid:
                    phase = self._enter(RunPhase.ROLLING_BACK)
                    rollback_errors = self._automatic_rollback(migration)
                    error = PostMigrationValidationError(
                        f"Post-migration validation failed: {', '.join(post.errors)}",
                        errors=post.errors,
                    ).with_context(migration_version=migration.version)
                    if rollback_errors:
                        error.with_context(rollback_errors=rollback_errors)
                    raise error

                cleanup_scheduled = False
                if shims_installed and migration.cleanup_delay:
                    self._schedule_compatibility_cleanup(migration)
                    cleanup_scheduled = True

                result = MigrationExecutionResult(
                    version=migration.version,
                    success=True,
                    execution_time_ms=_elapsed_ms(start),
                    stage_results=stage_results,
                    pre_validation=pre,
                    post_validation=post,
                    rows_migrated=rows_migrated,
                    cleanup_scheduled=cleanup_scheduled,
                )
                self._record_migration_success(migration, result)
                self._log_complete(log_id, True)
                self._enter(RunPhase.COMMITTED)
                logger.info(
                    "migration_applied",
                    execution_time_ms=result.execution_time_ms,
                    stages=len(stage_results),
                    rows_migrated=rows_migrated,
                )
                return result

            except Exception as e:
                self._log_complete(log_id, False, str(e))
                logger.error(
                    "migration_failed",
                    phase=phase.value,
                    error=str(e),
                    error_type=type(e).__name__,
                    execution_time_ms=_elapsed_ms(start),
                )
                self._enter(RunPhase.FAILED)
                raise

    def _enter(self, phase: RunPhase) -> RunPhase:
        logger.info("migration_phase", phase=phase.value)
        return phase

    # ── Backward compatibility ───────────────────────────────────────────

    def _setup_backward_compatibility(self, migration: ZeroDowntimeMigration) -> bool:
        setup = migration.backward_compatibility
        assert setup is not None

        for warning in setup.deprecation_warnings:
            logger.warning("deprecation_warning", message=warning)

        if not setup.has_shims:
            return False

        def install(ctx: TransactionContext) -> None:
            for view in setup.compatibility_views:
                ctx.client.query(view.sql)
            for func in setup.compatibility_functions:
                ctx.client.query(func.sql)

        self.transactions.with_transaction(install)
        logger.info(
            "compatibility_shims_installed",
            views=[v.name for v in setup.compatibility_views],
            functions=[f.name for f in setup.compatibility_functions],
        )
        return True

    def _schedule_compatibility_cleanup(self, migration: ZeroDowntimeMigration) -> None:
        setup = migration.backward_compatibility
        assert setup is not None
        statements = setup.cleanup_statements()
        self.transactions.with_transaction(
            lambda ctx: ctx.client.query(
                "INSERT INTO schema_compatibility_cleanup (migration_version, statements, cleanup_after) "
                "VALUES ($1, $2::jsonb, NOW() + ($3::float8 * INTERVAL '1 hour'))",
                [migration.version, _jsonb(statements), float(migration.cleanup_delay or 0)],
            )
        )
        logger.info(
            "compatibility_cleanup_scheduled",
            statements=len(statements),
            cleanup_delay_hours=migration.cleanup_delay,
        )

    def run_due_cleanups(self) -> list[str]:
        """Drop compatibility objects whose cleanup time has passed.

        Returns:
            Versions whose cleanup ran
        """
        due = self.transactions.with_transaction(
            lambda ctx: ctx.client.query(
                "SELECT id, migration_version, statements FROM schema_compatibility_cleanup "
                "WHERE completed_at IS NULL AND cleanup_after <= NOW() "
                "ORDER BY cleanup_after"
            ),
            _READ_ONLY,
        )
        cleaned: list[str] = []
        for row in due.rows:
            statements = _load_json(row["statements"]) or []

            def drop(ctx: TransactionContext, row: dict[str, Any] = row, statements: list[str] = statements) -> None:
                for sql in statements:
                    ctx.client.query(sql)
                ctx.client.query(
                    "UPDATE schema_compatibility_cleanup SET completed_at = NOW() WHERE id = $1",
                    [row["id"]],
                )

            self.transactions.with_transaction(drop)
            cleaned.append(row["migration_version"])
            logger.info(
                "compatibility_cleanup_completed",
                migration_version=row["migration_version"],
                statements=len(statements),
            )
        return cleaned

    # ── Stages ───────────────────────────────────────────────────────────

    def _execute_stages(self, migration: ZeroDowntimeMigration) -> list[StageResult]:
        results = []
        for index, stage in enumerate(migration.stages, start=1):
            logger.info("stage_started", stage=stage.name, index=index, total=len(migration.stages))
            result = self._execute_stage(stage, migration.version)
            results.append(result)
            logger.info(
                "stage_completed",
                stage=stage.name,
                duration_ms=result.execution_time_ms,
                steps_executed=result.steps_executed,
                steps_skipped=result.steps_skipped,
            )
        return results

    def _execute_stage(self, stage: EvolutionStage, version: str) -> StageResult:
        start = time.monotonic()
        counts = {"executed": 0, "skipped": 0}

        def run(ctx: TransactionContext) -> None:
            counts["executed"] = counts["skipped"] = 0
            for step in stage.steps:
                if self._execute_step(ctx, step):
                    counts["executed"] += 1
                else:
                    counts["skipped"] += 1

        config = TransactionConfig(auto_commit=stage.requires_autocommit)
        try:
            self.transactions.with_transaction(run, config)
        except Exception as e:
            logger.error(
                "stage_failed",
                stage=stage.name,
                error=str(e),
                steps_executed=counts["executed"],
                duration_ms=_elapsed_ms(start),
            )
            raise StageExecutionError(f"Stage {stage.name} failed: {e}", cause=e).with_context(
                migration_version=version, stage=stage.name
            ) from e

        return StageResult(
            stage_name=stage.name,
            success=True,
            execution_time_ms=_elapsed_ms(start),
            steps_executed=counts["executed"],
            steps_skipped=counts["skipped"],
        )

    def _execute_step(self, ctx: TransactionContext, step: EvolutionStep) -> bool:
        """Run one step; returns False when its condition skipped it."""
        if step.condition:
            check = ctx.client.query(step.condition)
            if not check.rows and not check.row_count:
                logger.debug("step_skipped", sql=step.sql[:200])
                return False

        policy = step.retry_policy or RetryPolicy()
        attempts = max(policy.max_attempts, 1)
        # Inside a transaction block a failed statement aborts the transaction;
        # a savepoint per attempt keeps the retry meaningful.
        use_savepoint = attempts > 1 and not ctx.config.auto_commit

        def attempt() -> QueryResult:
            if not use_savepoint:
                return ctx.client.query(step.sql, step.params)
            ctx.client.query("SAVEPOINT schemaspine_step")
            try:
                result = ctx.client.query(step.sql, step.params)
            except Exception:
                ctx.client.query("ROLLBACK TO SAVEPOINT schemaspine_step")
                raise
            ctx.client.query("RELEASE SAVEPOINT schemaspine_step")
            return result

        def on_retry(attempt_no: int, error: Exception, delay: float) -> None:
            logger.warning(
                "step_retry",
                attempt=attempt_no,
                max_attempts=attempts,
                delay_ms=policy.delay_ms,
                error=str(error),
            )

        RetryContext(
            ConstantBackoff(max_attempts=attempts, delay=policy.delay_ms / 1000),
            on_retry=on_retry,
            sleep=self._sleep,
        ).run(attempt)
        return True

    # ── Data migration ───────────────────────────────────────────────────

    def _execute_data_migration(self, plan: DataMigrationPlan) -> int:
        batch_size = plan.batch_size or self._settings.default_batch_size
        if plan.parallel:
            logger.info("data_migration_parallel_ignored", operations=len(plan.operations))
        total = 0
        for operation in plan.operations:
            total += self._execute_batched_operation(operation, batch_size)
        return total

    def _execute_batched_operation(self, operation: DataOperation, batch_size: int) -> int:
        offset = 0
        batches = 0
        total = 0
        pause = self._settings.batch_pause_ms / 1000

        while True:
            sql = render_batch(operation.sql, batch_size, offset)
            result = self.transactions.with_transaction(
                lambda ctx, sql=sql: ctx.client.query(sql, operation.params)
            )
            batches += 1
            total += result.row_count
            logger.debug(
                "batch_completed",
                operation=operation.description,
                offset=offset,
                rows=result.row_count,
            )
            if result.row_count < batch_size:
                break
            offset += batch_size
            if pause > 0:
                self._sleep(pause)

        logger.info(
            "data_operation_completed",
            operation=operation.description,
            batches=batches,
            rows=total,
        )
        return total

    # ── Validation ───────────────────────────────────────────────────────

    def run_validator(self, validator: CustomValidator) -> tuple[bool, str]:
        """Run one validator query; returns ``(ok, error_message)``."""
        message = validator.error_message or f"Validator {validator.name} failed"
        try:
            result = self.transactions.with_transaction(
                lambda ctx: ctx.client.query(validator.sql), _READ_ONLY
            )
        except Exception as e:
            logger.warning("validator_query_failed", validator=validator.name, error=str(e))
            return False, f"{message}: {e}"

        if not validator.expected_result:
            return True, ""

        row = result.first() or {}
        for key, expected in validator.expected_result.items():
            if isinstance(expected, str) and expected != key and expected in row:
                expected = row[expected]
            if str(row.get(key)) != str(expected):
                logger.warning(
                    "validator_mismatch",
                    validator=validator.name,
                    column=key,
                    expected=str(expected),
                    actual=str(row.get(key)),
                )
                return False, message
        return True, ""

    def _post_validate(self, migration: ZeroDowntimeMigration) -> ValidationResult:
        errors: list[str] = []
        if migration.validation:
            for validator in migration.validation.validators:
                ok, message = self.run_validator(validator)
                if not ok:
                    errors.append(message)
            for check in migration.validation.data_integrity_checks:
                try:
                    self.transactions.with_transaction(
                        lambda ctx, check=check: ctx.client.query(check), _READ_ONLY
                    )
                except Exception as e:
                    errors.append(f"Data integrity check failed: {check} ({e})")
        return ValidationResult.from_errors(errors)

    def _automatic_rollback(self, migration: ZeroDowntimeMigration) -> list[str]:
        if not migration.rollback_available:
            logger.warning("automatic_rollback_unavailable")
            return ["no rollback steps configured"]
        assert migration.rollback is not None
        errors = []
        for step in reversed(migration.rollback.steps):
            result = self._execute_rollback_step(step)
            if not result.success:
                errors.append(result.error or step.sql)
                break
        logger.info("automatic_rollback_finished", success=not errors)
        return errors

    # =========================================================================
    # PLAN VALIDATION
    # =========================================================================

    def validate_evolution_plan(
        self, migration: ZeroDowntimeMigration, *, record: bool = False
    ) -> EvolutionValidationResult:
        """Classify the plan's risks.

        Breaking changes and data loss are error-severity issues; a missing
        rollback is a warning-severity issue; performance impact and other
        risks are warning strings.

        Args:
            record: Also write a ``validate`` entry to the evolution log
        """
        analysis = self._analyzer.analyze(migration)
        issues: list[ValidationIssue] = []
        warnings: list[str] = []

        if analysis.breaking_changes:
            issues.append(
                ValidationIssue(
                    type=IssueType.BREAKING_CHANGE,
                    severity=Severity.ERROR,
                    message=f"Breaking changes detected: {', '.join(analysis.breaking_changes)}",
                    mitigation=_MITIGATIONS[IssueType.BREAKING_CHANGE],
                )
            )
        if analysis.data_loss:
            issues.append(
                ValidationIssue(
                    type=IssueType.DATA_LOSS,
                    severity=Severity.ERROR,
                    message=f"Migration may cause data loss: {', '.join(analysis.data_loss)}",
                    mitigation=_MITIGATIONS[IssueType.DATA_LOSS],
                )
            )
        if analysis.performance:
            warnings.append(f"High performance impact expected: {', '.join(analysis.performance)}")
        warnings.extend(f"Risky statement: {risk}" for risk in analysis.risks)
        if not analysis.rollbackable:
            issues.append(
                ValidationIssue(
                    type=IssueType.NO_ROLLBACK,
                    severity=Severity.WARNING,
                    message="Migration cannot be rolled back",
                    mitigation=_MITIGATIONS[IssueType.NO_ROLLBACK],
                )
            )

        result = EvolutionValidationResult(
            is_valid=not any(i.severity == Severity.ERROR for i in issues),
            issues=issues,
            warnings=warnings,
            recommendations=self._recommendations(migration, analysis.performance, issues),
        )
        logger.info(
            "evolution_plan_validated",
            migration_version=migration.version,
            is_valid=result.is_valid,
            issues=len(issues),
            warnings=len(warnings),
        )
        if record:
            log_id = self._log_start(
                migration.version,
                "validate",
                metadata={"issues": [i.message for i in issues], "warnings": warnings},
            )
            self._log_complete(
                log_id,
                result.is_valid,
                None if result.is_valid else "; ".join(result.error_messages),
            )
        return result

    @staticmethod
    def _recommendations(
        migration: ZeroDowntimeMigration,
        performance: list[str],
        issues: list[ValidationIssue],
    ) -> list[str]:
        kinds = {i.type for i in issues}
        out: list[str] = []
        if IssueType.BREAKING_CHANGE in kinds:
            out.append("Install compatibility views or functions before the breaking change ships")
        if IssueType.DATA_LOSS in kinds:
            out.append("Back up affected tables before running destructive statements")
        if any("CONCURRENTLY" in p for p in performance):
            out.append("Use CREATE INDEX CONCURRENTLY to avoid blocking writes")
        if any("full-table UPDATE" in p for p in performance):
            out.append("Move full-table updates into a batched data migration ({LIMIT}/{OFFSET})")
        if IssueType.NO_ROLLBACK in kinds:
            out.append("Add rollback steps so the migration can be reversed")
        setup = migration.backward_compatibility
        if setup and setup.has_shims and not migration.cleanup_delay:
            out.append("Set cleanup_delay so compatibility objects are eventually dropped")
        return out

    # =========================================================================
    # ROLLBACK
    # =========================================================================

    def create_rollback_plan(self, target_version: str) -> RollbackPlan:
        """Collect the stored rollback of every migration applied after ``target_version``."""
        rows = self.transactions.with_transaction(
            lambda ctx: ctx.client.query(
                "SELECT version, rollback_available, rollback_steps FROM schema_migrations "
                "ORDER BY applied_at DESC"
            ),
            _READ_ONLY,
        ).rows

        newer: list[dict[str, Any]] = []
        target_found = False
        for row in rows:
            if row["version"] == target_version:
                target_found = True
                break
            newer.append(row)

        plan = RollbackPlan(target_version=target_version, target_found=target_found)
        if not target_found:
            return plan

        plan.migrations = [row["version"] for row in newer]
        for row in reversed(newer):
            config = RollbackConfiguration.from_dict(
                _load_json(row.get("rollback_steps")), version=row["version"]
            )
            if not row.get("rollback_available") or not config.steps:
                plan.missing_rollback.append(row["version"])
                continue
            plan.steps.extend(config.steps)
            plan.safety_checks.extend(config.safety_checks)
        return plan

    def rollback_to_version(self, target_version: str) -> RollbackResult:
        """Undo every migration applied after ``target_version``.

        Never raises for an unsafe plan or a failing step; the failure is
        reported in the returned :class:`RollbackResult`.
        """
        with LogContext(migration_version=target_version):
            log_id = self._log_start(target_version, "rollback")
            step_results: list[RollbackStepResult] = []
            plan: RollbackPlan | None = None
            try:
                plan = self.create_rollback_plan(target_version)
                safety = self._rollback_checker.check(plan, self)
                if not safety.is_safe:
                    raise RollbackError(f"Rollback not safe: {', '.join(safety.risks)}").with_context(
                        migration_version=target_version
                    )

                logger.info(
                    "rollback_started",
                    migrations=plan.migrations,
                    steps=len(plan.steps),
                )
                for step in reversed(plan.steps):
                    step_result = self._execute_rollback_step(step)
                    step_results.append(step_result)
                    if not step_result.success:
                        raise RollbackError(f"Rollback step failed: {step_result.error}").with_context(
                            migration_version=step.migration_version
                        )

                if plan.migrations:
                    self.transactions.with_transaction(
                        lambda ctx: ctx.client.query(
                            "DELETE FROM schema_migrations WHERE version = ANY($1)",
                            [list(plan.migrations)],
                        )
                    )

                current = self.get_current_version()
                if current != target_version:
                    raise RollbackError(
                        f"Rollback verification failed: current version is {current}, expected {target_version}"
                    )

                self._log_complete(log_id, True)
                logger.info("rollback_completed", steps_executed=len(step_results))
                return RollbackResult(
                    target_version=target_version,
                    success=True,
                    steps_executed=len(step_results),
                    step_results=step_results,
                    rolled_back_versions=list(plan.migrations),
                )

            except Exception as e:
                self._log_complete(log_id, False, str(e))
                logger.error("rollback_failed", error=str(e), steps_executed=len(step_results))
                return RollbackResult(
                    target_version=target_version,
                    success=False,
                    steps_executed=len(step_results),
                    step_results=step_results,
                    error=str(e),
                )

    def _execute_rollback_step(self, step: RollbackStep) -> RollbackStepResult:
        skipped = False

        def run(ctx: TransactionContext) -> None:
            nonlocal skipped
            if step.condition:
                check = ctx.client.query(step.condition)
                if not check.rows and not check.row_count:
                    skipped = True
                    return
            ctx.client.query(step.sql, step.params)

        config = TransactionConfig(auto_commit="CONCURRENTLY" in step.sql.upper())
        try:
            self.transactions.with_transaction(run, config)
        except Exception as e:
            logger.error("rollback_step_failed", sql=step.sql[:200], error=str(e))
            return RollbackStepResult(
                sql=step.sql,
                success=False,
                migration_version=step.migration_version,
                error=str(e),
            )
        return RollbackStepResult(
            sql=step.sql,
            success=True,
            migration_version=step.migration_version,
            skipped=skipped,
        )

    # =========================================================================
    # HISTORY
    # =========================================================================

    def get_current_version(self) -> str | None:
        result = self.transactions.with_transaction(
            lambda ctx: ctx.client.query(
                "SELECT version FROM schema_migrations ORDER BY applied_at DESC LIMIT 1"
            ),
            _READ_ONLY,
        )
        row = result.first()
        return row["version"] if row else None

    def get_applied_versions(self) -> set[str]:
        result = self.transactions.with_transaction(
            lambda ctx: ctx.client.query("SELECT version FROM schema_migrations"),
            _READ_ONLY,
        )
        return {row["version"] for row in result.rows}

    def get_migration_history(self) -> list[MigrationRecord]:
        result = self.transactions.with_transaction(
            lambda ctx: ctx.client.query(
                "SELECT version, applied_at, description, checksum, execution_time_ms, rollback_available "
                "FROM schema_migrations ORDER BY applied_at DESC"
            ),
            _READ_ONLY,
        )
        return [MigrationRecord.from_row(row) for row in result.rows]

    def get_evolution_log(self, version: str | None = None, limit: int = 50) -> list[EvolutionLogEntry]:
        if version is None:
            sql = (
                "SELECT id, migration_version, operation_type, started_at, completed_at, success, "
                "error_message, metadata FROM schema_evolution_log ORDER BY started_at DESC LIMIT $1"
            )
            params: list[Any] = [limit]
        else:
            sql = (
                "SELECT id, migration_version, operation_type, started_at, completed_at, success, "
                "error_message, metadata FROM schema_evolution_log WHERE migration_version = $1 "
                "ORDER BY started_at DESC LIMIT $2"
            )
            params = [version, limit]
        result = self.transactions.with_transaction(
            lambda ctx: ctx.client.query(sql, params), _READ_ONLY
        )
        return [EvolutionLogEntry.from_row(row) for row in result.rows]

    # ── Bookkeeping writes ───────────────────────────────────────────────

    def _log_start(self, version: str, operation: str, metadata: dict[str, Any] | None = None) -> str:
        result = self.transactions.with_transaction(
            lambda ctx: ctx.client.query(
                "INSERT INTO schema_evolution_log (migration_version, operation_type, metadata) "
                "VALUES ($1, $2, $3::jsonb) RETURNING id",
                [version, operation, _jsonb(metadata)],
            )
        )
        row = result.first()
        return str(row["id"]) if row else ""

    def _log_complete(self, log_id: str, success: bool, error: str | None = None) -> None:
        self.transactions.with_transaction(
            lambda ctx: ctx.client.query(
                "UPDATE schema_evolution_log SET completed_at = NOW(), success = $2, error_message = $3 "
                "WHERE id = $1",
                [log_id, success, error],
            )
        )

    def _record_migration_success(
        self, migration: ZeroDowntimeMigration, result: MigrationExecutionResult
    ) -> None:
        rollback_steps = migration.rollback.to_dict() if migration.rollback else None
        self.transactions.with_transaction(
            lambda ctx: ctx.client.query(
                "INSERT INTO schema_migrations "
                "(version, description, checksum, execution_time_ms, rollback_available, rollback_steps) "
                "VALUES ($1, $2, $3, $4, $5, $6::jsonb) "
                "ON CONFLICT (version) DO UPDATE SET "
                "applied_at = NOW(), "
                "execution_time_ms = EXCLUDED.execution_time_ms, "
                "checksum = EXCLUDED.checksum, "
                "rollback_available = EXCLUDED.rollback_available, "
                "rollback_steps = EXCLUDED.rollback_steps",
                [
                    migration.version,
                    migration.description,
                    migration.checksum(),
                    result.execution_time_ms,
                    migration.rollback_available,
                    _jsonb(rollback_steps),
                ],
            )
        )


__all__ = [
    "SchemaEvolutionManager",
    "SCHEMA_MIGRATIONS_DDL",
    "SCHEMA_EVOLUTION_LOG_DDL",
    "SCHEMA_COMPATIBILITY_CLEANUP_DDL",
]
