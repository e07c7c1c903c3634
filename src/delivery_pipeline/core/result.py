"""Stage result model."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from delivery_pipeline.core.artifact import ArtifactDescriptor
from delivery_pipeline.core.errors import PipelineError, StageCancelled
from delivery_pipeline.core.types import Stage, StageStatus


@dataclass(frozen=True)
class StageResult:
    """Outcome of one stage attempt. Never mutated once recorded."""

    stage: Stage
    status: StageStatus
    duration_ms: int
    attempt: int = 1
    error: PipelineError | None = None
    output: str = ""
    artifact: ArtifactDescriptor | None = None

    @property
    def success(self) -> bool:
        return self.status is StageStatus.SUCCEEDED

    @classmethod
    def failed(cls, stage: Stage, error: PipelineError, duration_ms: int, attempt: int = 1) -> StageResult:
        """Build a failure result, marking cancellations as ``cancelled``."""
        status = StageStatus.CANCELLED if isinstance(error, StageCancelled) else StageStatus.FAILED
        return cls(
            stage=stage,
            status=status,
            duration_ms=duration_ms,
            attempt=attempt,
            error=error.with_stage(stage),
            output=error.detail,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "stage": self.stage.value,
            "status": self.status.value,
            "attempt": self.attempt,
            "duration_ms": self.duration_ms,
            "error": self.error.to_dict() if self.error is not None else None,
            "artifact": self.artifact.to_dict() if self.artifact is not None else None,
        }
