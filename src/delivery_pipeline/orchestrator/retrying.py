"""Re-trigger failed revisions with exponential backoff."""

from __future__ import annotations

import logging
from collections.abc import Callable

from delivery_pipeline.core.config.retry import RetryConfig
from delivery_pipeline.core.errors import PipelineError
from delivery_pipeline.core.resilience.retry import RetryExecutor
from delivery_pipeline.orchestrator.execution import ExecutionState, PipelineExecution
from delivery_pipeline.orchestrator.orchestrator import PipelineOrchestrator

logger = logging.getLogger(__name__)


class RetryingTrigger:
    """Triggers a revision and triggers it again while it fails retryably.

    Every attempt is a new, independent execution; the orchestrator itself
    never retries. Whether a failure is retried follows
    :meth:`RetryExecutor.is_retryable`: the error's ``retryable`` flag, or
    ``retry_on_kinds`` when configured.

    Args:
        orchestrator: Orchestrator receiving the triggers.
        config: Attempts and backoff.
        sleep_func: Injectable sleep for testing.
    """

    def __init__(
        self,
        orchestrator: PipelineOrchestrator,
        config: RetryConfig,
        sleep_func: Callable[[float], None] | None = None,
    ) -> None:
        self._orchestrator = orchestrator
        self._retry = RetryExecutor(config, sleep_func=sleep_func)

    def run(self, source_revision: str, wait_timeout: float | None = None) -> PipelineExecution:
        """Drive *source_revision* to a terminal state, re-triggering on failure.

        Returns:
            The last execution. It may still be running if *wait_timeout*
            elapsed first.
        """
        attempts: list[PipelineExecution] = []

        def attempt() -> PipelineExecution:
            execution = self._orchestrator.trigger(source_revision)
            execution = self._orchestrator.wait(execution.id, wait_timeout)
            attempts.append(execution)
            if execution.state is ExecutionState.FAILED and execution.error is not None:
                raise execution.error
            return execution

        def on_retry(number: int, error: Exception, delay: float) -> None:
            self._orchestrator.hooks.on_retrigger(attempts[-1], number + 1, delay)

        try:
            return self._retry.execute(attempt, on_retry=on_retry)
        except PipelineError:
            logger.info(
                "Revision %s failed after %d execution(s)",
                source_revision,
                len(attempts),
            )
            return attempts[-1]
