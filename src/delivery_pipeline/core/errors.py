"""Error taxonomy for pipeline stages and collaborators.

Every failure that can end an execution is a :class:`PipelineError`.  Each
subclass carries a stable :class:`ErrorKind`, whether re-triggering the same
revision is expected to help (``retryable``) and a :class:`Severity` used for
log levels and alerting.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, ClassVar

from delivery_pipeline.core.types import Stage

MAX_DETAIL_CHARS = 4000
"""Captured output is truncated to its last ``MAX_DETAIL_CHARS`` characters."""


class ErrorKind(str, Enum):
    """Stable, user-visible error categories."""

    AUTH = "auth"
    BUILD = "build"
    TIMEOUT = "timeout"
    ROLLOUT = "rollout"
    ROLLOUT_TIMEOUT = "rollout_timeout"
    ROLLOUT_UNHEALTHY = "rollout_unhealthy"
    COLLABORATOR_UNAVAILABLE = "collaborator_unavailable"
    CANCELLED = "cancelled"
    STAGE_FAILED = "stage_failed"
    MANIFEST = "manifest"
    INTERNAL = "internal"


class Severity(str, Enum):
    """How loudly a failure should be reported."""

    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


def _tail(text: str) -> str:
    if len(text) <= MAX_DETAIL_CHARS:
        return text
    return text[-MAX_DETAIL_CHARS:]


class PipelineError(Exception):
    """Base class for all errors recorded on a pipeline execution.

    Args:
        message: Human-readable summary.
        stage: Stage the error originated in, if known.
        detail: Captured collaborator output (truncated to its tail).
        cause: Underlying exception, chained as ``__cause__``.
    """

    kind: ClassVar[ErrorKind] = ErrorKind.INTERNAL
    retryable: ClassVar[bool] = False
    severity: ClassVar[Severity] = Severity.ERROR

    def __init__(
        self,
        message: str,
        *,
        stage: Stage | None = None,
        detail: str = "",
        cause: BaseException | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.stage = stage
        self.detail = _tail(detail)
        if cause is not None:
            self.__cause__ = cause

    def with_stage(self, stage: Stage) -> PipelineError:
        """Attach the originating stage unless one is already set."""
        if self.stage is None:
            self.stage = stage
        return self

    def to_dict(self) -> dict[str, Any]:
        """Convert to a JSON-serializable dictionary."""
        return {
            "kind": self.kind.value,
            "type": type(self).__name__,
            "message": self.message,
            "stage": self.stage.value if self.stage is not None else None,
            "retryable": self.retryable,
            "severity": self.severity.value,
            "detail": self.detail,
        }


# ---------------------------------------------------------------------------
# Stage executor signals
# ---------------------------------------------------------------------------


class StageFailed(PipelineError):
    """An external command exited with a non-zero status."""

    kind = ErrorKind.STAGE_FAILED

    def __init__(self, command: str, exit_code: int, output: str = "", *, stage: Stage | None = None) -> None:
        self.command = command
        self.exit_code = exit_code
        super().__init__(
            f"Command '{command}' exited with status {exit_code}",
            stage=stage,
            detail=output,
        )


class StageTimeout(PipelineError):
    """A stage exceeded its time budget."""

    kind = ErrorKind.TIMEOUT
    retryable = True

    def __init__(
        self,
        message: str,
        *,
        timeout_seconds: float | None = None,
        stage: Stage | None = None,
        detail: str = "",
    ) -> None:
        self.timeout_seconds = timeout_seconds
        super().__init__(message, stage=stage, detail=detail)


class StageCancelled(PipelineError):
    """The execution was cancelled while the stage was in progress."""

    kind = ErrorKind.CANCELLED
    severity = Severity.WARNING


class CollaboratorUnavailable(PipelineError):
    """An external collaborator could not be reached or launched."""

    kind = ErrorKind.COLLABORATOR_UNAVAILABLE
    retryable = True
    severity = Severity.WARNING

    def __init__(
        self,
        collaborator: str,
        reason: str,
        *,
        stage: Stage | None = None,
        detail: str = "",
        cause: BaseException | None = None,
    ) -> None:
        self.collaborator = collaborator
        self.reason = reason
        super().__init__(
            f"Collaborator '{collaborator}' unavailable: {reason}",
            stage=stage,
            detail=detail,
            cause=cause,
        )


# ---------------------------------------------------------------------------
# Stage-level failures
# ---------------------------------------------------------------------------


class AuthError(PipelineError):
    """Credential or permission failure; requires operator action."""

    kind = ErrorKind.AUTH


class BuildError(PipelineError):
    """Source or build-tool failure; safe to retry by re-triggering."""

    kind = ErrorKind.BUILD
    retryable = True


class BuildTimeout(BuildError):
    """The build stage exceeded its timeout."""

    kind = ErrorKind.TIMEOUT


class ManifestError(PipelineError):
    """The manifest template is invalid or cannot be rendered."""

    kind = ErrorKind.MANIFEST


class RolloutError(PipelineError):
    """The cluster rejected or failed to converge on a manifest."""

    kind = ErrorKind.ROLLOUT

    def __init__(
        self,
        message: str,
        *,
        status: Any = None,
        stage: Stage | None = None,
        detail: str = "",
        cause: BaseException | None = None,
    ) -> None:
        self.status = status
        super().__init__(message, stage=stage, detail=detail, cause=cause)


class RolloutTimeout(RolloutError):
    """The cluster did not converge within the poll budget."""

    kind = ErrorKind.ROLLOUT_TIMEOUT
    retryable = True


class RolloutUnhealthy(RolloutError):
    """The new revision is observably broken; investigate before retrying."""

    kind = ErrorKind.ROLLOUT_UNHEALTHY
    severity = Severity.CRITICAL


class InternalError(PipelineError):
    """An unexpected exception escaped a stage."""

    kind = ErrorKind.INTERNAL

    def __init__(self, cause: BaseException, *, stage: Stage | None = None) -> None:
        super().__init__(
            f"Unexpected {type(cause).__name__}: {cause}",
            stage=stage,
            cause=cause,
        )
