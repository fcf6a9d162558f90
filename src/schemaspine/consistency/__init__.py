"""Transaction-scoped consistency primitives.

Architecture::

    acid.py           ensure_atomicity, enforce_consistency, verify_isolation, ensure_durability
    concurrency.py    OptimisticConcurrencyControl, PessimisticConcurrencyControl, LockMode
    saga.py           SagaPattern (steps + compensations)
    locks.py          DistributedLock (pg advisory locks)
    validators.py     BusinessRuleValidators catalog
"""

from schemaspine.consistency.acid import (
    ConsistencyResult,
    ConsistencyValidator,
    ConsistencyViolation,
    FunctionValidator,
    Severity,
    enforce_consistency,
    ensure_atomicity,
    ensure_durability,
    verify_isolation,
)
from schemaspine.consistency.concurrency import (
    LockMode,
    OptimisticConcurrencyControl,
    PessimisticConcurrencyControl,
    VersionedRow,
)
from schemaspine.consistency.locks import DistributedLock, lock_key
from schemaspine.consistency.saga import SagaPattern, SagaStep
from schemaspine.consistency.validators import BusinessRuleValidators

__all__ = [
    "ConsistencyResult",
    "ConsistencyValidator",
    "ConsistencyViolation",
    "FunctionValidator",
    "Severity",
    "enforce_consistency",
    "ensure_atomicity",
    "ensure_durability",
    "verify_isolation",
    "LockMode",
    "OptimisticConcurrencyControl",
    "PessimisticConcurrencyControl",
    "VersionedRow",
    "DistributedLock",
    "lock_key",
    "SagaPattern",
    "SagaStep",
    "BusinessRuleValidators",
]
