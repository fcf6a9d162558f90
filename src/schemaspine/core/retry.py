"""Retry strategies for statements and transactions.

Two disciplines are used by the engine:

* step retries: a bounded loop around one statement with a *fixed* delay
  and no jitter (:class:`ConstantBackoff`);
* transaction retries: the transaction boundary re-runs a whole unit of work
  after serialization failures or deadlocks (:class:`ExponentialBackoff`).

Example:
    >>> ctx = RetryContext(ConstantBackoff(max_attempts=3, delay=5.0))
    >>> ctx.run(lambda: client.query("CREATE INDEX CONCURRENTLY ..."))
"""

from __future__ import annotations

import random
import time
from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any, TypeVar

T = TypeVar("T")


class RetryStrategy(ABC):
    """Abstract base for retry strategies."""

    @abstractmethod
    def next_delay(self, attempt: int) -> float:
        """Delay in seconds before the next attempt.

        Args:
            attempt: Number of attempts already made (1 after the first failure)
        """
        ...

    @abstractmethod
    def should_retry(self, attempt: int, error: Exception | None = None) -> bool:
        """Whether another attempt is allowed after ``attempt`` failures."""
        ...


@dataclass
class ConstantBackoff(RetryStrategy):
    """Fixed delay between attempts, bounded by ``max_attempts`` total tries."""

    max_attempts: int = 1
    delay: float = 0.0

    def next_delay(self, attempt: int) -> float:
        return self.delay

    def should_retry(self, attempt: int, error: Exception | None = None) -> bool:
        return attempt < self.max_attempts


@dataclass
class ExponentialBackoff(RetryStrategy):
    """Exponential backoff with optional jitter.

    Delay = min(base_delay * (multiplier ** (attempt - 1)), max_delay) ± jitter

    Attributes:
        max_attempts: Total attempts including the first one
        base_delay: Delay after the first failure, in seconds
        max_delay: Cap on any single delay
        multiplier: Growth factor
        jitter: Randomize each delay by ``jitter_range`` of its value
        retryable: Predicate selecting errors worth retrying (None = all)
    """

    max_attempts: int = 3
    base_delay: float = 0.1
    max_delay: float = 5.0
    multiplier: float = 2.0
    jitter: bool = True
    jitter_range: float = 0.25
    retryable: Callable[[Exception], bool] | None = None

    def next_delay(self, attempt: int) -> float:
        delay = min(self.base_delay * (self.multiplier ** max(attempt - 1, 0)), self.max_delay)
        if self.jitter:
            jitter_amount = delay * self.jitter_range
            delay = max(0.0, delay + random.uniform(-jitter_amount, jitter_amount))
        return delay

    def should_retry(self, attempt: int, error: Exception | None = None) -> bool:
        if attempt >= self.max_attempts:
            return False
        if error is not None and self.retryable is not None:
            return self.retryable(error)
        return True


@dataclass
class NoRetry(RetryStrategy):
    """Fail on the first error."""

    def next_delay(self, attempt: int) -> float:
        return 0.0

    def should_retry(self, attempt: int, error: Exception | None = None) -> bool:
        return False


@dataclass
class RetryContext:
    """Runs a callable under a retry strategy and tracks the attempts.

    ``sleep`` is injectable so tests do not wait for real delays.
    ``on_retry`` is called with ``(attempt, error, delay)`` before each sleep.
    """

    strategy: RetryStrategy
    on_retry: Callable[[int, Exception, float], None] | None = None
    sleep: Callable[[float], None] = time.sleep
    attempt: int = field(default=0, init=False)
    last_error: Exception | None = field(default=None, init=False)

    def run(self, func: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        """Execute ``func`` until it succeeds or the strategy gives up.

        Raises:
            The last exception once no further attempt is allowed
        """
        while True:
            self.attempt += 1
            try:
                return func(*args, **kwargs)
            except Exception as e:
                self.last_error = e
                if not self.strategy.should_retry(self.attempt, e):
                    raise
                delay = self.strategy.next_delay(self.attempt)
                if self.on_retry:
                    self.on_retry(self.attempt, e, delay)
                if delay > 0:
                    self.sleep(delay)


__all__ = [
    "RetryStrategy",
    "ConstantBackoff",
    "ExponentialBackoff",
    "NoRetry",
    "RetryContext",
]
