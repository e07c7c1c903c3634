"""Cluster collaborator interface and the observed rollout state."""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from typing import Any, Protocol

from delivery_pipeline.core.manifest import WorkloadTarget


@dataclass(frozen=True)
class RolloutStatus:
    """One observation of a workload. Recomputed on every poll.

    ``total_replicas`` counts pods of every revision still owned by the
    workload; ``available_replicas`` counts those past ``minReadySeconds``.
    Either may be ``None`` when the cluster does not report it, in which case
    the updated and ready counts stand in.
    """

    desired_replicas: int
    ready_replicas: int
    updated_replicas: int = 0
    endpoint: str | None = None
    unhealthy_reason: str | None = None
    total_replicas: int | None = None
    available_replicas: int | None = None

    @property
    def healthy(self) -> bool:
        return self.unhealthy_reason is None

    def is_converged(self, require_endpoint: bool = False) -> bool:
        """True when every desired replica runs the new revision and is available.

        Replicas of the previous revision must be gone: during a surge they
        still count as ready, so ``ready == desired`` alone is not enough.
        """
        total = self.updated_replicas if self.total_replicas is None else self.total_replicas
        available = self.ready_replicas if self.available_replicas is None else self.available_replicas
        if self.updated_replicas != self.desired_replicas or total != self.updated_replicas:
            return False
        if self.ready_replicas < self.desired_replicas or available < self.updated_replicas:
            return False
        if require_endpoint and not self.endpoint:
            return False
        return True

    def to_dict(self) -> dict[str, Any]:
        return {
            "desired_replicas": self.desired_replicas,
            "ready_replicas": self.ready_replicas,
            "updated_replicas": self.updated_replicas,
            "total_replicas": self.total_replicas,
            "available_replicas": self.available_replicas,
            "endpoint": self.endpoint,
            "unhealthy_reason": self.unhealthy_reason,
        }


class ClusterClient(Protocol):
    """Control-plane operations the orchestrator needs."""

    def apply(self, documents: Sequence[dict[str, Any]], namespace: str) -> None:
        """Declaratively apply *documents*. Re-applying identical documents is a no-op."""
        ...

    def observe(self, target: WorkloadTarget) -> RolloutStatus:
        """Return the current rollout state of *target*."""
        ...

    def get(self, kind: str, name: str, namespace: str) -> dict[str, Any] | None:
        """Return one object, or ``None`` if it does not exist."""
        ...
