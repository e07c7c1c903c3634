"""Audit trail hooks for execution lifecycle integration."""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime, timezone

from delivery_pipeline.core.audit.sinks import AuditSink
from delivery_pipeline.core.audit.types import (
    AuditAction,
    AuditEvent,
    AuditStatus,
)
from delivery_pipeline.core.result import StageResult
from delivery_pipeline.core.types import Stage, StageStatus
from delivery_pipeline.orchestrator.execution import ExecutionState, PipelineExecution


class AuditHooks:
    """Hooks that emit an audit event at every lifecycle point.

    Events carry the execution id as ``trace_id`` so one execution's trail
    can be reassembled from a shared sink.

    Args:
        sink: The audit sink to emit events to.
        actor: Actor recorded on every event (the pipeline name).
        now_fn: Injectable clock for testing.
            Defaults to ``datetime.now(timezone.utc)``.
    """

    def __init__(
        self,
        sink: AuditSink,
        actor: str = "dpo",
        now_fn: Callable[[], datetime] | None = None,
    ) -> None:
        self._sink = sink
        self._actor = actor
        self._now_fn = now_fn or (lambda: datetime.now(timezone.utc))

    def _emit(
        self,
        action: AuditAction,
        execution: PipelineExecution,
        status: AuditStatus,
        metadata: dict[str, str] | None = None,
    ) -> None:
        event = AuditEvent(
            action=action,
            actor=self._actor,
            resource=execution.source_revision,
            status=status,
            timestamp=self._now_fn(),
            metadata=metadata or {},
            trace_id=execution.id,
        )
        self._sink.emit(event)

    # ------------------------------------------------------------------
    # PipelineHooks protocol
    # ------------------------------------------------------------------

    def before_execution(self, execution: PipelineExecution) -> None:
        self._emit(
            AuditAction.EXECUTION_TRIGGERED,
            execution,
            AuditStatus.SUCCESS,
            {"sequence": str(execution.sequence)},
        )

    def on_stage_start(self, execution: PipelineExecution, stage: Stage) -> None:
        self._emit(AuditAction.STAGE_STARTED, execution, AuditStatus.SUCCESS, {"stage": stage.value})

    def on_stage_complete(self, execution: PipelineExecution, result: StageResult) -> None:
        metadata = {"stage": result.stage.value, "duration_ms": str(result.duration_ms)}
        if result.artifact is not None:
            metadata["image"] = result.artifact.image_uri
        self._emit(AuditAction.STAGE_SUCCEEDED, execution, AuditStatus.SUCCESS, metadata)

    def on_stage_failure(self, execution: PipelineExecution, result: StageResult) -> None:
        status = AuditStatus.WARNING if result.status is StageStatus.CANCELLED else AuditStatus.FAILURE
        metadata = {"stage": result.stage.value, "status": result.status.value}
        if result.error is not None:
            metadata["kind"] = result.error.kind.value
            metadata["error"] = result.error.message[:500]
        self._emit(AuditAction.STAGE_FAILED, execution, status, metadata)

    def after_execution(self, execution: PipelineExecution) -> None:
        if execution.state is ExecutionState.SUCCEEDED:
            self._emit(
                AuditAction.EXECUTION_SUCCEEDED,
                execution,
                AuditStatus.SUCCESS,
                {"endpoint": execution.endpoint or ""},
            )
            return
        metadata = {}
        if execution.error is not None:
            metadata = {"kind": execution.error.kind.value, "error": execution.error.message[:500]}
        self._emit(AuditAction.EXECUTION_FAILED, execution, AuditStatus.FAILURE, metadata)

    def on_retrigger(self, previous: PipelineExecution, attempt: int, delay_seconds: float) -> None:
        self._emit(
            AuditAction.EXECUTION_RETRIGGERED,
            previous,
            AuditStatus.RETRY,
            {"attempt": str(attempt), "delay_seconds": f"{delay_seconds:.1f}"},
        )
