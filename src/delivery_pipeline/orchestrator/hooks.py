"""Execution lifecycle hooks protocol and infrastructure."""

from __future__ import annotations

import logging
from typing import Any, Protocol

from delivery_pipeline.core.result import StageResult
from delivery_pipeline.core.types import Stage
from delivery_pipeline.orchestrator.execution import PipelineExecution

logger = logging.getLogger(__name__)


class PipelineHooks(Protocol):
    """Protocol defining lifecycle callbacks for pipeline executions.

    Callbacks run on the execution's worker thread (``before_execution`` on
    the triggering thread), so implementations shared between executions
    must be thread-safe. This protocol is NOT ``@runtime_checkable``.
    """

    def before_execution(self, execution: PipelineExecution) -> None:
        """Called when an execution is triggered."""
        ...

    def on_stage_start(self, execution: PipelineExecution, stage: Stage) -> None:
        """Called when a stage begins."""
        ...

    def on_stage_complete(self, execution: PipelineExecution, result: StageResult) -> None:
        """Called after a stage succeeds."""
        ...

    def on_stage_failure(self, execution: PipelineExecution, result: StageResult) -> None:
        """Called after a stage fails or is cancelled."""
        ...

    def after_execution(self, execution: PipelineExecution) -> None:
        """Called once the execution reaches a terminal state."""
        ...

    def on_retrigger(self, previous: PipelineExecution, attempt: int, delay_seconds: float) -> None:
        """Called before a failed revision is triggered again."""
        ...


class NoOpHooks:
    """Hooks implementation that does nothing.

    Useful as a base class or placeholder.
    """

    def before_execution(self, execution: PipelineExecution) -> None:
        pass

    def on_stage_start(self, execution: PipelineExecution, stage: Stage) -> None:
        pass

    def on_stage_complete(self, execution: PipelineExecution, result: StageResult) -> None:
        pass

    def on_stage_failure(self, execution: PipelineExecution, result: StageResult) -> None:
        pass

    def after_execution(self, execution: PipelineExecution) -> None:
        pass

    def on_retrigger(self, previous: PipelineExecution, attempt: int, delay_seconds: float) -> None:
        pass


class CompositeHooks:
    """Broadcasts lifecycle events to multiple hooks implementations.

    Exceptions raised by individual hooks are caught and logged so that
    one misbehaving hook does not change an execution's outcome.
    """

    def __init__(self, *hooks: PipelineHooks) -> None:
        self._hooks: tuple[PipelineHooks, ...] = hooks

    @property
    def hooks(self) -> tuple[PipelineHooks, ...]:
        return self._hooks

    def _call_all(self, method: str, *args: Any) -> None:
        """Invoke *method* on every registered hook, swallowing errors."""
        for hook in self._hooks:
            try:
                getattr(hook, method)(*args)
            except Exception:
                logger.warning(
                    "Hook %s.%s raised an exception",
                    type(hook).__name__,
                    method,
                    exc_info=True,
                )

    def before_execution(self, execution: PipelineExecution) -> None:
        self._call_all("before_execution", execution)

    def on_stage_start(self, execution: PipelineExecution, stage: Stage) -> None:
        self._call_all("on_stage_start", execution, stage)

    def on_stage_complete(self, execution: PipelineExecution, result: StageResult) -> None:
        self._call_all("on_stage_complete", execution, result)

    def on_stage_failure(self, execution: PipelineExecution, result: StageResult) -> None:
        self._call_all("on_stage_failure", execution, result)

    def after_execution(self, execution: PipelineExecution) -> None:
        self._call_all("after_execution", execution)

    def on_retrigger(self, previous: PipelineExecution, attempt: int, delay_seconds: float) -> None:
        self._call_all("on_retrigger", previous, attempt, delay_seconds)
