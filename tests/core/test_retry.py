"""Tests for convoy.core.retry."""

from __future__ import annotations

import pytest

from convoy.core.retry import ConstantBackoff, ExponentialBackoff, RetryContext


def _always(exc: Exception):
    def fail():
        raise exc

    return fail


class TestExponentialBackoff:
    def test_delays_double_and_cap(self):
        s = ExponentialBackoff(base_delay=1.0, max_delay=5.0)
        assert [s.next_delay(i) for i in range(5)] == [1.0, 2.0, 4.0, 5.0, 5.0]

    def test_should_retry_respects_budget_and_types(self):
        s = ExponentialBackoff(max_retries=2, retryable_errors=(TimeoutError,))
        assert s.should_retry(0, TimeoutError())
        assert not s.should_retry(0, ValueError())
        assert not s.should_retry(2, TimeoutError())


class TestConstantBackoff:
    def test_constant_delay(self):
        s = ConstantBackoff(max_retries=3, delay=10.0)
        assert s.next_delay(0) == s.next_delay(7) == 10.0

    def test_budget(self):
        s = ConstantBackoff(max_retries=1)
        assert s.should_retry(0)
        assert not s.should_retry(1)

    def test_zero_retries_never_retries(self):
        assert not ConstantBackoff(max_retries=0).should_retry(0, RuntimeError())


class TestRetryContext:
    def test_success_after_failures(self):
        calls = []
        sleeps: list[float] = []

        def flaky():
            calls.append(1)
            if len(calls) < 3:
                raise TimeoutError("not yet")
            return "ok"

        ctx = RetryContext(ConstantBackoff(max_retries=5, delay=2.0), sleep=sleeps.append)
        assert ctx.run(flaky) == "ok"
        assert ctx.attempts == 3
        assert sleeps == [2.0, 2.0]
        assert isinstance(ctx.last_error, TimeoutError)

    def test_total_calls_is_max_retries_plus_one(self):
        sleeps: list[float] = []
        ctx = RetryContext(ConstantBackoff(max_retries=9, delay=10.0), sleep=sleeps.append)

        with pytest.raises(TimeoutError):
            ctx.run(_always(TimeoutError()))

        assert ctx.attempts == 10
        # No sleep after the final attempt
        assert len(sleeps) == 9

    def test_non_retryable_error_raises_immediately(self):
        sleeps: list[float] = []
        ctx = RetryContext(
            ConstantBackoff(max_retries=5, retryable_errors=(TimeoutError,)),
            sleep=sleeps.append,
        )
        with pytest.raises(ValueError):
            ctx.run(_always(ValueError()))
        assert ctx.attempts == 1
        assert sleeps == []

    def test_on_retry_callback(self):
        seen = []
        ctx = RetryContext(
            ConstantBackoff(max_retries=2, delay=0.5),
            on_retry=lambda a, e, d: seen.append((a, d)),
            sleep=lambda _: None,
        )
        with pytest.raises(RuntimeError):
            ctx.run(_always(RuntimeError()))
        assert seen == [(1, 0.5), (2, 0.5)]

    def test_passes_arguments_through(self):
        ctx = RetryContext(ConstantBackoff(max_retries=0))
        assert ctx.run(lambda a, b=0: a + b, 2, b=3) == 5
        assert ctx.elapsed_seconds >= 0
