"""Retry execution with exponential backoff and jitter."""

from __future__ import annotations

import logging
import random
import time
from collections.abc import Callable
from typing import TypeVar

from delivery_pipeline.core.config.retry import RetryConfig
from delivery_pipeline.core.errors import PipelineError

logger = logging.getLogger(__name__)

T = TypeVar("T")


class RetryExecutor:
    """Re-runs a callable while it fails with a retryable pipeline error.

    Waits grow exponentially between attempts, capped by the config. Only
    :class:`PipelineError` instances are retried; any other exception is a
    bug and propagates at once.

    Args:
        config: Retry configuration.
        jitter_factor: Random jitter multiplier applied to each delay (0 disables jitter).
        sleep_func: Injectable sleep function for testing. Defaults to ``time.sleep``.
    """

    def __init__(
        self,
        config: RetryConfig,
        jitter_factor: float = 0.25,
        sleep_func: Callable[[float], None] | None = None,
    ) -> None:
        self._config = config
        self._jitter_factor = jitter_factor
        self._sleep = sleep_func or time.sleep

    @property
    def config(self) -> RetryConfig:
        return self._config

    def calculate_delay(self, attempt: int) -> float:
        """Calculate the delay in seconds before retry number *attempt*.

        Uses ``min(initial * multiplier^attempt, max) * (1 + jitter)``.

        Args:
            attempt: Zero-based attempt index (0 = first retry).
        """
        base = self._config.initial_delay_seconds * (self._config.backoff_multiplier ** attempt)
        base = min(base, self._config.max_delay_seconds)

        if self._jitter_factor > 0:
            base += base * self._jitter_factor * random.random()

        return base

    def is_retryable(self, error: Exception) -> bool:
        """Check whether an error should be retried.

        With ``retry_on_kinds`` configured, the error's kind must be listed;
        otherwise the error's own ``retryable`` flag decides.
        """
        if not isinstance(error, PipelineError):
            return False
        if self._config.retry_on_kinds:
            return error.kind.value in self._config.retry_on_kinds
        return error.retryable

    def execute(
        self,
        func: Callable[[], T],
        on_retry: Callable[[int, Exception, float], None] | None = None,
    ) -> T:
        """Execute a callable with retry logic.

        Args:
            func: Zero-argument callable to execute.
            on_retry: Optional callback invoked before each retry with
                ``(attempt, exception, delay)`` where attempt is 1-based.

        Returns:
            The return value of *func*.

        Raises:
            Exception: The last exception if all attempts are exhausted,
                or immediately if the exception is not retryable.
        """
        attempt = 0
        while True:
            try:
                return func()
            except Exception as exc:
                is_last = attempt == self._config.max_attempts - 1
                if is_last or not self.is_retryable(exc):
                    raise

                delay = self.calculate_delay(attempt)
                logger.debug(
                    "Attempt %d/%d failed (%s), retrying in %.3fs",
                    attempt + 1,
                    self._config.max_attempts,
                    type(exc).__name__,
                    delay,
                )

                if on_retry is not None:
                    on_retry(attempt + 1, exc, delay)

                self._sleep(delay)
                attempt += 1
