"""Tests for re-triggering failed revisions."""

from __future__ import annotations

import threading
from unittest.mock import MagicMock

from delivery_pipeline.core.artifact import ArtifactDescriptor
from delivery_pipeline.core.config.retry import RetryConfig
from delivery_pipeline.core.errors import AuthError, BuildError, PipelineError
from delivery_pipeline.orchestrator.execution import ExecutionState
from delivery_pipeline.orchestrator.retrying import RetryingTrigger
from tests.factories import RecordingHooks, make_artifact, make_orchestrator


class FlakyBuilder:
    """Raises the queued errors in order, then builds normally."""

    def __init__(self, *errors: PipelineError) -> None:
        self._errors = list(errors)
        self.calls = 0

    def build(
        self,
        source_revision: str,
        *,
        timeout: float | None = None,
        cancel_event: threading.Event | None = None,
    ) -> ArtifactDescriptor:
        self.calls += 1
        if self._errors:
            raise self._errors.pop(0)
        return make_artifact(source_revision)


def _trigger(
    builder: FlakyBuilder, hooks: RecordingHooks | None = None, **config: int
) -> tuple[RetryingTrigger, MagicMock]:
    sleep = MagicMock()
    orchestrator = make_orchestrator(builder, hooks=hooks)
    retry = RetryConfig(initial_delay_seconds=1.0, max_delay_seconds=10.0, **config)
    return RetryingTrigger(orchestrator, retry, sleep_func=sleep), sleep


class TestRetryingTrigger:
    def test_first_attempt_succeeds(self) -> None:
        builder = FlakyBuilder()
        trigger, sleep = _trigger(builder)

        execution = trigger.run("abc123", wait_timeout=5)

        assert execution.state is ExecutionState.SUCCEEDED
        assert builder.calls == 1
        sleep.assert_not_called()

    def test_retryable_failure_then_success(self) -> None:
        hooks = RecordingHooks()
        builder = FlakyBuilder(BuildError("flaky"), BuildError("flaky"))
        trigger, sleep = _trigger(builder, hooks, max_attempts=3)

        execution = trigger.run("abc123", wait_timeout=5)

        assert execution.state is ExecutionState.SUCCEEDED
        assert builder.calls == 3
        assert sleep.call_count == 2
        retriggers = [detail for event, _, detail in hooks.events if event == "on_retrigger"]
        assert retriggers == ["2", "3"]

    def test_each_attempt_is_new_execution(self) -> None:
        builder = FlakyBuilder(BuildError("flaky"))
        trigger, _ = _trigger(builder, max_attempts=2)

        trigger.run("abc123", wait_timeout=5)

        executions = trigger._orchestrator.executions()
        assert [e.state for e in executions] == [ExecutionState.FAILED, ExecutionState.SUCCEEDED]
        assert len({e.id for e in executions}) == 2

    def test_non_retryable_stops(self) -> None:
        builder = FlakyBuilder(AuthError("denied"))
        trigger, sleep = _trigger(builder, max_attempts=3)

        execution = trigger.run("abc123", wait_timeout=5)

        assert execution.state is ExecutionState.FAILED
        assert isinstance(execution.error, AuthError)
        assert builder.calls == 1
        sleep.assert_not_called()

    def test_exhausted_returns_last_failure(self) -> None:
        builder = FlakyBuilder(*(BuildError(f"attempt {i}") for i in range(5)))
        trigger, _ = _trigger(builder, max_attempts=2)

        execution = trigger.run("abc123", wait_timeout=5)

        assert execution.state is ExecutionState.FAILED
        assert str(execution.error) == "attempt 1"
        assert builder.calls == 2
