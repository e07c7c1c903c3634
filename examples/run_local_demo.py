"""Local demo: drive three revisions through the orchestrator in memory.

Uses an in-process builder and cluster so no Docker daemon or Kubernetes
cluster is required. Shows deploys being serialized in trigger order and the
lifecycle hooks at work.

Usage:
    python examples/run_local_demo.py
"""

from __future__ import annotations

import logging
import threading
import time
from pathlib import Path
from typing import Any

from delivery_pipeline.cluster.client import RolloutStatus
from delivery_pipeline.core.artifact import ArtifactDescriptor
from delivery_pipeline.core.audit import LoggingAuditSink
from delivery_pipeline.core.config.stages import PollConfig
from delivery_pipeline.core.errors import BuildError
from delivery_pipeline.core.manifest import ManifestSet, WorkloadTarget
from delivery_pipeline.core.metrics.registry import InMemoryRegistry
from delivery_pipeline.orchestrator import (
    AuditHooks,
    CompositeHooks,
    LoggingHooks,
    MetricsHooks,
    PipelineOrchestrator,
)
from delivery_pipeline.stages.rollout import RolloutCoordinator

MANIFEST = Path(__file__).parent / "manifests" / "app.yaml"


class DemoBuilder:
    """Pretends to build; revisions starting with ``bad`` fail."""

    def build(self, source_revision: str, **_: Any) -> ArtifactDescriptor:
        time.sleep(0.2)
        if source_revision.startswith("bad"):
            raise BuildError(f"Build step 'build' failed for {source_revision}")
        return ArtifactDescriptor.for_revision("registry.local", "web", source_revision)


class DemoCluster:
    """Reports a rollout as converged on the second observation."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._polls = 0
        self.applied: list[str] = []

    def apply(self, documents: Any, namespace: str) -> None:
        image = documents[0]["spec"]["template"]["spec"]["containers"][0]["image"]
        with self._lock:
            self.applied.append(image)
            self._polls = 0

    def observe(self, target: WorkloadTarget) -> RolloutStatus:
        with self._lock:
            self._polls += 1
            ready = target.replicas if self._polls > 1 else 0
        return RolloutStatus(target.replicas, ready, ready, endpoint="web.local" if ready else None)

    def get(self, kind: str, name: str, namespace: str) -> None:
        return None


def main() -> None:
    logging.basicConfig(level=logging.INFO, format="%(asctime)s [%(levelname)s] %(name)s: %(message)s")

    registry = InMemoryRegistry()
    cluster = DemoCluster()
    hooks = CompositeHooks(LoggingHooks(), MetricsHooks(registry, pipeline="demo"), AuditHooks(LoggingAuditSink()))
    orchestrator = PipelineOrchestrator(
        DemoBuilder(),
        RolloutCoordinator(cluster, poll=PollConfig(interval_seconds=0.1, timeout_seconds=5), container_name="web"),
        ManifestSet.from_file(MANIFEST),
        hooks=hooks,
    )

    with orchestrator:
        ids = [orchestrator.trigger(rev).id for rev in ("v1", "bad-v2", "v3")]
        for execution_id in ids:
            execution = orchestrator.wait(execution_id)
            print(f"{execution.source_revision:8} {execution.state.value:10} {execution.endpoint or '-'}")

    print("\nApplied images in order:")
    for image in cluster.applied:
        print(f"  {image}")
    print(f"\nMetrics: {registry.get_metrics()['counters']}")


if __name__ == "__main__":
    main()
