"""Pipeline execution records and their state machine."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from delivery_pipeline.core.artifact import ArtifactDescriptor
from delivery_pipeline.core.errors import PipelineError
from delivery_pipeline.core.result import StageResult
from delivery_pipeline.core.types import Stage


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ExecutionState(str, Enum):
    """Lifecycle state of one execution."""

    PENDING = "pending"
    BUILDING = "building"
    DEPLOYING = "deploying"
    SUCCEEDED = "succeeded"
    FAILED = "failed"

    @property
    def terminal(self) -> bool:
        return self in (ExecutionState.SUCCEEDED, ExecutionState.FAILED)


class ExecutionStatus(str, Enum):
    """Coarse status reported to callers of ``status()``."""

    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


_TRANSITIONS: dict[ExecutionState, frozenset[ExecutionState]] = {
    ExecutionState.PENDING: frozenset({ExecutionState.BUILDING, ExecutionState.FAILED}),
    ExecutionState.BUILDING: frozenset({ExecutionState.DEPLOYING, ExecutionState.FAILED}),
    ExecutionState.DEPLOYING: frozenset({ExecutionState.SUCCEEDED, ExecutionState.FAILED}),
    ExecutionState.SUCCEEDED: frozenset(),
    ExecutionState.FAILED: frozenset(),
}


class InvalidTransition(Exception):
    """Raised when an execution is moved along an edge the state machine forbids."""

    def __init__(self, current: ExecutionState, target: ExecutionState) -> None:
        self.current = current
        self.target = target
        super().__init__(f"Cannot move execution from {current.value} to {target.value}")


@dataclass(frozen=True)
class PipelineExecution:
    """Immutable snapshot of one trigger's progress.

    Every state change produces a new snapshot; callers of ``status()`` can
    keep the one they received without it changing under them.
    """

    id: str
    source_revision: str
    sequence: int
    state: ExecutionState = ExecutionState.PENDING
    triggered_at: datetime = field(default_factory=utcnow)
    started_at: datetime | None = None
    finished_at: datetime | None = None
    stage_results: tuple[StageResult, ...] = ()
    artifact: ArtifactDescriptor | None = None
    endpoint: str | None = None
    error: PipelineError | None = None
    queued_for_deploy: bool = False

    @property
    def status(self) -> ExecutionStatus:
        if self.state is ExecutionState.PENDING:
            return ExecutionStatus.PENDING
        if self.state is ExecutionState.SUCCEEDED:
            return ExecutionStatus.SUCCEEDED
        if self.state is ExecutionState.FAILED:
            return ExecutionStatus.FAILED
        return ExecutionStatus.RUNNING

    @property
    def done(self) -> bool:
        return self.state.terminal

    @property
    def current_stage(self) -> Stage | None:
        if self.state is ExecutionState.BUILDING:
            return Stage.BUILD
        if self.state is ExecutionState.DEPLOYING:
            return Stage.DEPLOY
        return None

    def result_for(self, stage: Stage) -> StageResult | None:
        """Return the last recorded result for *stage*."""
        for result in reversed(self.stage_results):
            if result.stage is stage:
                return result
        return None

    def transition(self, target: ExecutionState, **changes: Any) -> PipelineExecution:
        """Return a copy moved to *target*.

        Raises:
            InvalidTransition: If the state machine forbids the move.
        """
        if target not in _TRANSITIONS[self.state]:
            raise InvalidTransition(self.state, target)
        if target is ExecutionState.BUILDING and self.started_at is None:
            changes.setdefault("started_at", utcnow())
        if target.terminal:
            changes.setdefault("finished_at", utcnow())
            changes.setdefault("queued_for_deploy", False)
        return replace(self, state=target, **changes)

    def with_result(self, result: StageResult) -> PipelineExecution:
        """Return a copy with *result* appended."""
        return replace(self, stage_results=(*self.stage_results, result))

    def to_dict(self) -> dict[str, Any]:
        """Convert to a JSON-serializable dictionary."""
        return {
            "id": self.id,
            "source_revision": self.source_revision,
            "sequence": self.sequence,
            "state": self.state.value,
            "status": self.status.value,
            "triggered_at": self.triggered_at.isoformat(),
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "queued_for_deploy": self.queued_for_deploy,
            "stage_results": [r.to_dict() for r in self.stage_results],
            "artifact": self.artifact.to_dict() if self.artifact else None,
            "endpoint": self.endpoint,
            "error": self.error.to_dict() if self.error else None,
        }
