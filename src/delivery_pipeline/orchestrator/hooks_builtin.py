"""Built-in execution hooks: logging and metrics collection."""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable

from delivery_pipeline.core.errors import Severity
from delivery_pipeline.core.metrics.registry import MeterRegistry
from delivery_pipeline.core.result import StageResult
from delivery_pipeline.core.types import Stage, StageStatus
from delivery_pipeline.orchestrator.execution import PipelineExecution


class LoggingHooks:
    """Hooks that log execution lifecycle events.

    Uses ``%s`` formatting for lazy evaluation. Failures with ``critical``
    severity (an unhealthy rollout) are logged at CRITICAL so they can page.

    Args:
        logger: Custom logger instance. Defaults to ``logging.getLogger("dpo.pipeline")``.
    """

    def __init__(self, logger: logging.Logger | None = None) -> None:
        self._logger = logger or logging.getLogger("dpo.pipeline")

    @property
    def logger(self) -> logging.Logger:
        """Return the logger used by this hooks instance."""
        return self._logger

    def before_execution(self, execution: PipelineExecution) -> None:
        self._logger.info(
            "Execution %s triggered for revision %s",
            execution.id,
            execution.source_revision,
        )

    def on_stage_start(self, execution: PipelineExecution, stage: Stage) -> None:
        self._logger.info("Execution %s: %s stage starting", execution.id, stage.value)

    def on_stage_complete(self, execution: PipelineExecution, result: StageResult) -> None:
        self._logger.info(
            "Execution %s: %s stage succeeded in %dms",
            execution.id,
            result.stage.value,
            result.duration_ms,
        )

    def on_stage_failure(self, execution: PipelineExecution, result: StageResult) -> None:
        error = result.error
        if result.status is StageStatus.CANCELLED:
            level = logging.WARNING
        elif error is not None and error.severity is Severity.CRITICAL:
            level = logging.CRITICAL
        else:
            level = logging.ERROR
        self._logger.log(
            level,
            "Execution %s: %s stage %s [%s]: %s",
            execution.id,
            result.stage.value,
            result.status.value,
            error.kind.value if error is not None else "-",
            error,
        )

    def after_execution(self, execution: PipelineExecution) -> None:
        if execution.endpoint:
            self._logger.info(
                "Execution %s %s; endpoint %s",
                execution.id,
                execution.state.value,
                execution.endpoint,
            )
        else:
            self._logger.info("Execution %s %s", execution.id, execution.state.value)

    def on_retrigger(self, previous: PipelineExecution, attempt: int, delay_seconds: float) -> None:
        self._logger.warning(
            "Re-triggering revision %s (attempt %d) in %.1fs after %s",
            previous.source_revision,
            attempt,
            delay_seconds,
            previous.error.kind.value if previous.error is not None else "failure",
        )


class MetricsHooks:
    """Hooks that collect execution timing and outcome metrics.

    Metrics are recorded into a
    :class:`~delivery_pipeline.core.metrics.registry.MeterRegistry`:

    - ``dpo.execution.triggered`` counter
    - ``dpo.execution.duration`` timer and ``dpo.execution.completed``
      counter tagged with ``state``
    - ``dpo.stage.duration`` timer and ``dpo.stage.failures`` counter tagged
      with ``stage`` (and ``kind`` for failures)
    - ``dpo.execution.retriggers`` counter
    - ``dpo.executions.in_flight`` gauge

    Args:
        registry: Meter registry receiving the metrics.
        clock: Injectable monotonic clock for testing.
            Defaults to ``time.monotonic``.
        pipeline: Value of the ``pipeline`` tag.
    """

    def __init__(
        self,
        registry: MeterRegistry,
        clock: Callable[[], float] | None = None,
        pipeline: str = "default",
    ) -> None:
        self._registry = registry
        self._clock = clock or time.monotonic
        self._pipeline = pipeline
        self._lock = threading.Lock()
        self._started: dict[str, float] = {}

    @property
    def registry(self) -> MeterRegistry:
        """Return the meter registry."""
        return self._registry

    def _tags(self, **extra: str) -> dict[str, str]:
        return {"pipeline": self._pipeline, **extra}

    def before_execution(self, execution: PipelineExecution) -> None:
        with self._lock:
            self._started[execution.id] = self._clock()
            in_flight = len(self._started)
        self._registry.counter("dpo.execution.triggered", tags=self._tags())
        self._registry.gauge("dpo.executions.in_flight", float(in_flight), tags=self._tags())

    def on_stage_start(self, execution: PipelineExecution, stage: Stage) -> None:
        pass

    def on_stage_complete(self, execution: PipelineExecution, result: StageResult) -> None:
        self._registry.timer(
            "dpo.stage.duration",
            float(result.duration_ms),
            tags=self._tags(stage=result.stage.value),
        )

    def on_stage_failure(self, execution: PipelineExecution, result: StageResult) -> None:
        kind = result.error.kind.value if result.error is not None else "unknown"
        self._registry.counter("dpo.stage.failures", tags=self._tags(stage=result.stage.value, kind=kind))

    def after_execution(self, execution: PipelineExecution) -> None:
        with self._lock:
            started = self._started.pop(execution.id, None)
            in_flight = len(self._started)
        if started is not None:
            self._registry.timer(
                "dpo.execution.duration",
                (self._clock() - started) * 1000.0,
                tags=self._tags(state=execution.state.value),
            )
        self._registry.counter("dpo.execution.completed", tags=self._tags(state=execution.state.value))
        self._registry.gauge("dpo.executions.in_flight", float(in_flight), tags=self._tags())

    def on_retrigger(self, previous: PipelineExecution, attempt: int, delay_seconds: float) -> None:
        self._registry.counter("dpo.execution.retriggers", tags=self._tags())
