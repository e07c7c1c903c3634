"""Tests for RetryExecutor."""

from __future__ import annotations

import random
from unittest.mock import MagicMock

import pytest

from delivery_pipeline.core.config.retry import RetryConfig
from delivery_pipeline.core.errors import (
    AuthError,
    BuildError,
    RolloutTimeout,
    RolloutUnhealthy,
    StageCancelled,
)
from delivery_pipeline.core.resilience.retry import RetryExecutor

# ---------------------------------------------------------------------------
# Parameterized: exponential backoff delay table
# ---------------------------------------------------------------------------


@pytest.mark.parametrize(
    ("initial", "multiplier", "attempt", "expected"),
    [
        (1.0, 2.0, 0, 1.0),
        (1.0, 2.0, 1, 2.0),
        (1.0, 2.0, 3, 8.0),
        (0.5, 3.0, 2, 4.5),
    ],
    ids=["1x2^0=1", "1x2^1=2", "1x2^3=8", "0.5x3^2=4.5"],
)
def test_exponential_backoff_parametrized(initial: float, multiplier: float, attempt: int, expected: float) -> None:
    config = RetryConfig(
        initial_delay_seconds=initial,
        backoff_multiplier=multiplier,
        max_delay_seconds=100.0,
    )
    executor = RetryExecutor(config, jitter_factor=0.0)
    assert executor.calculate_delay(attempt) == expected


class TestCalculateDelay:
    def test_capped_at_max_delay(self) -> None:
        config = RetryConfig(initial_delay_seconds=1.0, backoff_multiplier=10.0, max_delay_seconds=5.0)
        executor = RetryExecutor(config, jitter_factor=0.0)

        assert executor.calculate_delay(3) == 5.0

    def test_with_jitter(self) -> None:
        config = RetryConfig(initial_delay_seconds=1.0, backoff_multiplier=2.0, max_delay_seconds=60.0)
        executor = RetryExecutor(config, jitter_factor=0.25)

        random.seed(42)
        delay = executor.calculate_delay(0)
        assert 1.0 <= delay <= 1.25


class TestIsRetryable:
    def test_defaults_to_error_flag(self) -> None:
        executor = RetryExecutor(RetryConfig())

        assert executor.is_retryable(BuildError("push failed"))
        assert executor.is_retryable(RolloutTimeout("slow"))
        assert not executor.is_retryable(AuthError("denied"))
        assert not executor.is_retryable(RolloutUnhealthy("crash loop"))
        assert not executor.is_retryable(StageCancelled("stop"))

    def test_non_pipeline_errors_never_retried(self) -> None:
        executor = RetryExecutor(RetryConfig())

        assert not executor.is_retryable(ValueError("bug"))

    def test_retry_on_kinds_overrides_flag(self) -> None:
        executor = RetryExecutor(RetryConfig(retry_on_kinds=["rollout_unhealthy"]))

        assert executor.is_retryable(RolloutUnhealthy("crash loop"))
        assert not executor.is_retryable(BuildError("push failed"))


class TestExecute:
    def test_succeeds_first_try(self) -> None:
        sleep = MagicMock()
        executor = RetryExecutor(RetryConfig(max_attempts=3), sleep_func=sleep)

        assert executor.execute(lambda: 42) == 42
        sleep.assert_not_called()

    def test_retries_on_failure_then_succeeds(self) -> None:
        sleep = MagicMock()
        executor = RetryExecutor(
            RetryConfig(max_attempts=3, initial_delay_seconds=0.1),
            jitter_factor=0.0,
            sleep_func=sleep,
        )
        call_count = 0

        def flaky() -> str:
            nonlocal call_count
            call_count += 1
            if call_count < 3:
                raise BuildError("transient")
            return "ok"

        assert executor.execute(flaky) == "ok"
        assert call_count == 3
        assert sleep.call_count == 2

    def test_exhausts_attempts(self) -> None:
        executor = RetryExecutor(
            RetryConfig(max_attempts=2, initial_delay_seconds=0.1),
            jitter_factor=0.0,
            sleep_func=MagicMock(),
        )

        def always_fails() -> None:
            raise BuildError("always fails")

        with pytest.raises(BuildError, match="always fails"):
            executor.execute(always_fails)

    def test_non_retryable_raises_immediately(self) -> None:
        sleep = MagicMock()
        executor = RetryExecutor(RetryConfig(max_attempts=5), sleep_func=sleep)
        calls = 0

        def denied() -> None:
            nonlocal calls
            calls += 1
            raise AuthError("denied")

        with pytest.raises(AuthError):
            executor.execute(denied)
        assert calls == 1
        sleep.assert_not_called()

    def test_on_retry_callback(self) -> None:
        on_retry = MagicMock()
        executor = RetryExecutor(
            RetryConfig(max_attempts=3, initial_delay_seconds=1.0),
            jitter_factor=0.0,
            sleep_func=MagicMock(),
        )
        error = BuildError("flaky")
        outcomes: list[BuildError | None] = [error, None]

        def func() -> str:
            outcome = outcomes.pop(0)
            if outcome is not None:
                raise outcome
            return "done"

        executor.execute(func, on_retry=on_retry)

        on_retry.assert_called_once_with(1, error, 1.0)
