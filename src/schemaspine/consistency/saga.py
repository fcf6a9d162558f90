"""
Saga runner: ordered steps with compensating actions.

Each step runs in its own transaction.  When a step fails, compensations run
for the steps that completed before it, newest first, then the original error
is re-raised.  The failing step itself is never compensated.

A compensation that raises is logged and the remaining compensations still
run; the collected failures are attached to the re-raised error as
``compensation_errors``.

Example:
    >>> saga = SagaPattern()
    >>> saga.add_step("debit", lambda ctx: debit(ctx, "p1", 50))
    >>> saga.register_compensation("debit", lambda ctx: credit(ctx, "p1", 50))
    >>> saga.add_step("seat", lambda ctx: claim_seat(ctx, "t1", "p1"))
    >>> saga.execute(transactions)
    [...]
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from schemaspine.core.errors import SagaError
from schemaspine.core.logging import get_logger
from schemaspine.core.protocols import TransactionRunner
from schemaspine.core.transactions import TransactionContext

logger = get_logger(__name__)

StepFn = Callable[[TransactionContext], Any]


@dataclass(frozen=True, slots=True)
class SagaStep:
    name: str
    execute: StepFn


class SagaPattern:
    """An ordered list of named steps, each optionally paired with a compensation."""

    def __init__(self) -> None:
        self._steps: list[SagaStep] = []
        self._compensations: dict[str, StepFn] = {}

    @property
    def steps(self) -> list[SagaStep]:
        return list(self._steps)

    def add_step(self, name: str | SagaStep, execute: StepFn | None = None) -> SagaPattern:
        """Append a step; accepts ``(name, fn)`` or a :class:`SagaStep`."""
        step = name if isinstance(name, SagaStep) else SagaStep(name=name, execute=execute)
        if step.execute is None:
            raise SagaError(f"Saga step {step.name!r} has no execute function")
        if any(s.name == step.name for s in self._steps):
            raise SagaError(f"Duplicate saga step name: {step.name!r}")
        self._steps.append(step)
        return self

    def register_compensation(self, name: str, compensation: StepFn) -> SagaPattern:
        """Register the undo action for the step called ``name``."""
        self._compensations[name] = compensation
        return self

    def execute(self, transactions: TransactionRunner) -> list[Any]:
        """Run every step; on failure compensate completed steps and re-raise."""
        results: list[Any] = []
        completed: list[str] = []

        for step in self._steps:
            try:
                result = transactions.with_transaction(step.execute)
            except Exception as e:
                logger.warning(
                    "saga_step_failed",
                    step=step.name,
                    completed=completed,
                    error=str(e),
                )
                failures = self._compensate(list(reversed(completed)), transactions)
                e.compensation_errors = failures  # type: ignore[attr-defined]
                raise
            results.append(result)
            completed.append(step.name)
            logger.debug("saga_step_completed", step=step.name)

        logger.info("saga_completed", steps=len(completed))
        return results

    def _compensate(
        self, step_names: list[str], transactions: TransactionRunner
    ) -> list[tuple[str, Exception]]:
        failures: list[tuple[str, Exception]] = []
        for name in step_names:
            compensation = self._compensations.get(name)
            if compensation is None:
                continue
            try:
                transactions.with_transaction(compensation)
            except Exception as e:
                logger.error("saga_compensation_failed", step=name, error=str(e), exc_info=True)
                failures.append((name, e))
            else:
                logger.info("saga_compensation_completed", step=name)
        return failures


__all__ = ["SagaStep", "SagaPattern"]
