"""Audit event types and models."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class AuditAction(str, Enum):
    """Auditable pipeline actions."""

    EXECUTION_TRIGGERED = "execution_triggered"
    EXECUTION_SUCCEEDED = "execution_succeeded"
    EXECUTION_FAILED = "execution_failed"
    EXECUTION_RETRIGGERED = "execution_retriggered"
    STAGE_STARTED = "stage_started"
    STAGE_SUCCEEDED = "stage_succeeded"
    STAGE_FAILED = "stage_failed"
    BINDING_ASSERTED = "binding_asserted"
    BINDING_UNCHANGED = "binding_unchanged"


class AuditStatus(str, Enum):
    """Audit event status."""

    SUCCESS = "success"
    FAILURE = "failure"
    RETRY = "retry"
    WARNING = "warning"


@dataclass
class AuditEvent:
    """A single audit event.

    Args:
        action: What happened.
        actor: Who did it (orchestrator name, identity).
        resource: What it happened to (execution id, binding identity).
        status: Outcome of the action.
        timestamp: When the event occurred.
        metadata: Additional key-value data.
        trace_id: Correlation ID, the execution id for pipeline events.
    """

    action: AuditAction | str
    actor: str
    resource: str
    status: AuditStatus
    timestamp: datetime = field(default_factory=_utcnow)
    metadata: dict[str, str] = field(default_factory=dict)
    trace_id: str | None = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to a JSON-serializable dictionary."""
        return {
            "action": self.action.value if isinstance(self.action, AuditAction) else self.action,
            "actor": self.actor,
            "resource": self.resource,
            "status": self.status.value,
            "timestamp": self.timestamp.isoformat(),
            "metadata": self.metadata,
            "trace_id": self.trace_id,
        }
