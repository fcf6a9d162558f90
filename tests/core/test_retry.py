"""Tests for ``schemaspine.core.retry``: retry strategies and RetryContext."""

from __future__ import annotations

import pytest

from schemaspine.core.retry import ConstantBackoff, ExponentialBackoff, NoRetry, RetryContext


class TestConstantBackoff:
    def test_default_is_single_attempt(self):
        strategy = ConstantBackoff()
        assert strategy.should_retry(1) is False

    def test_bounded_attempts(self):
        strategy = ConstantBackoff(max_attempts=3, delay=5.0)
        assert strategy.should_retry(1) and strategy.should_retry(2)
        assert not strategy.should_retry(3)
        assert strategy.next_delay(1) == 5.0


class TestExponentialBackoff:
    def test_delays_grow_and_cap(self):
        strategy = ExponentialBackoff(base_delay=1.0, max_delay=3.0, jitter=False)
        assert [strategy.next_delay(n) for n in (1, 2, 3, 4)] == [1.0, 2.0, 3.0, 3.0]

    def test_jitter_stays_in_range(self):
        strategy = ExponentialBackoff(base_delay=1.0, jitter=True, jitter_range=0.25)
        for _ in range(20):
            assert 0.75 <= strategy.next_delay(1) <= 1.25

    def test_retryable_predicate(self):
        strategy = ExponentialBackoff(max_attempts=5, retryable=lambda e: isinstance(e, TimeoutError))
        assert strategy.should_retry(1, TimeoutError())
        assert not strategy.should_retry(1, ValueError())


class TestRetryContext:
    def test_succeeds_after_failures(self):
        calls = []
        sleeps: list[float] = []

        def flaky():
            calls.append(1)
            if len(calls) < 3:
                raise RuntimeError("lock timeout")
            return "ok"

        ctx = RetryContext(ConstantBackoff(max_attempts=3, delay=5.0), sleep=sleeps.append)
        assert ctx.run(flaky) == "ok"
        assert ctx.attempt == 3
        assert sleeps == [5.0, 5.0]

    def test_exhaustion_surfaces_last_error(self):
        errors = iter([RuntimeError("first"), RuntimeError("second"), RuntimeError("third")])

        def always_fails():
            raise next(errors)

        ctx = RetryContext(ConstantBackoff(max_attempts=3), sleep=lambda s: None)
        with pytest.raises(RuntimeError, match="third"):
            ctx.run(always_fails)
        assert ctx.attempt == 3

    def test_on_retry_called_before_each_retry(self):
        seen = []

        def fails():
            raise ValueError("x")

        ctx = RetryContext(
            ConstantBackoff(max_attempts=2, delay=0.0),
            on_retry=lambda attempt, error, delay: seen.append((attempt, str(error), delay)),
        )
        with pytest.raises(ValueError):
            ctx.run(fails)
        assert seen == [(1, "x", 0.0)]

    def test_no_retry(self):
        ctx = RetryContext(NoRetry())
        with pytest.raises(KeyError):
            ctx.run(lambda: {}["missing"])
        assert ctx.attempt == 1
