"""
ACID helpers used by application code inside a transaction.

Manifesto:
    - **Atomicity:** a list of operations shares one transaction; the first
      failure rolls everything back
    - **Consistency:** every validator runs, even after an earlier one fails;
      a validator that raises becomes a violation named after it
    - **Isolation / Durability checks:** answer ``True`` or ``False``; any error
      while probing counts as ``False`` ("could not verify" is treated as
      "failed")

Architecture:
    ::

        ensure_atomicity(transactions, [op1, op2, op3])
            └── transactions.with_transaction(ctx → [op1(ctx), op2(ctx), op3(ctx)])

        enforce_consistency(ctx, [v1, v2, v3])
            ├── v1.validate(ctx) → ConsistencyResult(is_valid, violations)
            ├── v2.validate(ctx) → raises → ConsistencyViolation(rule=v2.name)
            └── v3.validate(ctx)
            → ConsistencyResult(is_valid = all passed and none raised)

Examples:
    >>> result = enforce_consistency(ctx, [BusinessRuleValidators.bankroll_validator()])
    >>> result.is_valid
    True

Tags:
    acid, consistency, validation, isolation, durability, schema-spine

Doc-Types:
    - API Reference
"""

from __future__ import annotations

from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Protocol, TypeVar, runtime_checkable

from schemaspine.core.logging import get_logger
from schemaspine.core.protocols import TransactionRunner
from schemaspine.core.transactions import TransactionContext

logger = get_logger(__name__)

T = TypeVar("T")


class Severity(str, Enum):
    ERROR = "error"
    WARNING = "warning"


@dataclass(frozen=True, slots=True)
class ConsistencyViolation:
    """One broken rule found by a validator."""

    rule: str
    message: str
    severity: Severity = Severity.ERROR


@dataclass(slots=True)
class ConsistencyResult:
    is_valid: bool
    violations: list[ConsistencyViolation] = field(default_factory=list)

    @classmethod
    def from_violations(cls, violations: list[ConsistencyViolation]) -> ConsistencyResult:
        """Valid unless some violation has error severity."""
        return cls(
            is_valid=not any(v.severity == Severity.ERROR for v in violations),
            violations=violations,
        )


@runtime_checkable
class ConsistencyValidator(Protocol):
    """A named rule checked against the state visible to a transaction."""

    name: str

    def validate(self, ctx: TransactionContext) -> ConsistencyResult:
        ...


@dataclass(slots=True)
class FunctionValidator:
    """Adapts a plain ``fn(ctx) -> ConsistencyResult`` to :class:`ConsistencyValidator`."""

    name: str
    fn: Callable[[TransactionContext], ConsistencyResult]

    def validate(self, ctx: TransactionContext) -> ConsistencyResult:
        return self.fn(ctx)


# ── Atomicity ────────────────────────────────────────────────────────────


def ensure_atomicity(
    transactions: TransactionRunner,
    operations: Sequence[Callable[[TransactionContext], T]],
) -> list[T]:
    """Run ``operations`` in order inside one transaction and return their results.

    The first exception propagates and the whole transaction is rolled back;
    no partial result list is returned.
    """

    def run_all(ctx: TransactionContext) -> list[T]:
        return [operation(ctx) for operation in operations]

    return transactions.with_transaction(run_all)


# ── Consistency ──────────────────────────────────────────────────────────


def enforce_consistency(
    ctx: TransactionContext,
    validators: Sequence[ConsistencyValidator],
) -> ConsistencyResult:
    """Run every validator and aggregate the violations."""
    violations: list[ConsistencyViolation] = []
    all_passed = True

    for validator in validators:
        try:
            result = validator.validate(ctx)
        except Exception as e:
            all_passed = False
            logger.warning("consistency_validator_raised", validator=validator.name, error=str(e))
            violations.append(
                ConsistencyViolation(
                    rule=validator.name,
                    message=f"Validation failed: {e}",
                    severity=Severity.ERROR,
                )
            )
            continue
        if not result.is_valid:
            all_passed = False
        violations.extend(result.violations)

    return ConsistencyResult(is_valid=all_passed, violations=violations)


# ── Isolation ────────────────────────────────────────────────────────────


def _normalize_isolation(level: Any) -> str:
    text = getattr(level, "value", level)
    return str(text).strip().lower().replace("_", " ").replace("-", " ")


def verify_isolation(ctx: TransactionContext, expected: Any) -> bool:
    """Check the effective isolation level of the current transaction.

    ``expected`` may be ``"serializable"``, ``"REPEATABLE READ"``,
    ``"read_committed"`` or an :class:`~schemaspine.core.transactions.IsolationLevel`.
    """
    try:
        row = ctx.client.query("SHOW transaction_isolation").first()
    except Exception as e:
        logger.warning("isolation_check_failed", transaction_id=ctx.id, error=str(e))
        return False
    if row is None:
        return False
    return _normalize_isolation(row.get("transaction_isolation", "")) == _normalize_isolation(expected)


# ── Durability ───────────────────────────────────────────────────────────


def ensure_durability(ctx: TransactionContext, checks: Sequence[str] = ()) -> bool:
    """Confirm a WAL position is readable, then run each check query."""
    try:
        ctx.client.query("SELECT pg_walfile_name(pg_current_wal_lsn())")
        for check in checks:
            ctx.client.query(check)
    except Exception as e:
        logger.warning("durability_check_failed", transaction_id=ctx.id, error=str(e))
        return False
    return True


__all__ = [
    "Severity",
    "ConsistencyViolation",
    "ConsistencyResult",
    "ConsistencyValidator",
    "FunctionValidator",
    "ensure_atomicity",
    "enforce_consistency",
    "verify_isolation",
    "ensure_durability",
]
