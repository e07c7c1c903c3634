"""Cluster client implemented over the ``kubectl`` command line."""

from __future__ import annotations

import json
import logging
from collections.abc import Mapping, Sequence
from typing import Any

from delivery_pipeline.cluster.client import RolloutStatus
from delivery_pipeline.core.config.stages import ClusterConfig
from delivery_pipeline.core.errors import (
    AuthError,
    CollaboratorUnavailable,
    PipelineError,
    StageFailed,
    StageTimeout,
)
from delivery_pipeline.core.manifest import WorkloadTarget
from delivery_pipeline.core.types import Stage
from delivery_pipeline.stages.executor import Command, StageExecutor

logger = logging.getLogger(__name__)

UNHEALTHY_WAITING_REASONS = frozenset(
    {
        "CrashLoopBackOff",
        "ImagePullBackOff",
        "ErrImagePull",
        "CreateContainerConfigError",
        "InvalidImageName",
    }
)

_AUTH_MARKERS = ("unauthorized", "forbidden", "you must be logged in")
_CONNECTION_MARKERS = (
    "unable to connect to the server",
    "connection refused",
    "no such host",
    "i/o timeout",
    "tls handshake timeout",
)


REVISION_ANNOTATION = "deployment.kubernetes.io/revision"
POD_TEMPLATE_HASH = "pod-template-hash"
CONTROLLER_REVISION_HASH = "controller-revision-hash"


def _labels(obj: Mapping[str, Any]) -> Mapping[str, Any]:
    return (obj.get("metadata") or {}).get("labels") or {}


def current_revision_pods(
    workload: Mapping[str, Any],
    replica_sets: Sequence[Mapping[str, Any]],
    pods: Sequence[Mapping[str, Any]],
) -> list[Mapping[str, Any]]:
    """Return only the pods created from the workload's latest pod template.

    A Deployment's current revision is the ReplicaSet carrying the same
    ``deployment.kubernetes.io/revision`` annotation; its pods share that
    ReplicaSet's ``pod-template-hash``. A StatefulSet names its revision in
    ``status.updateRevision``. When the revision cannot be identified yet,
    no pods qualify.
    """
    if workload.get("kind", "Deployment") == "StatefulSet":
        revision = (workload.get("status") or {}).get("updateRevision")
        if not revision:
            return []
        return [pod for pod in pods if _labels(pod).get(CONTROLLER_REVISION_HASH) == revision]

    annotations = (workload.get("metadata") or {}).get("annotations") or {}
    revision = annotations.get(REVISION_ANNOTATION)
    if revision is None:
        return []
    for replica_set in replica_sets:
        rs_annotations = (replica_set.get("metadata") or {}).get("annotations") or {}
        if rs_annotations.get(REVISION_ANNOTATION) == revision:
            template_hash = _labels(replica_set).get(POD_TEMPLATE_HASH)
            if template_hash is None:
                return []
            return [pod for pod in pods if _labels(pod).get(POD_TEMPLATE_HASH) == template_hash]
    return []


def _unhealthy_reason(deployment: Mapping[str, Any], pods: Sequence[Mapping[str, Any]]) -> str | None:
    for condition in (deployment.get("status") or {}).get("conditions") or []:
        if condition.get("type") == "Progressing" and condition.get("reason") == "ProgressDeadlineExceeded":
            return "ProgressDeadlineExceeded"

    for pod in pods:
        statuses = (pod.get("status") or {}).get("containerStatuses") or []
        for status in statuses:
            waiting = (status.get("state") or {}).get("waiting") or {}
            reason = waiting.get("reason")
            if reason in UNHEALTHY_WAITING_REASONS:
                pod_name = (pod.get("metadata") or {}).get("name", "?")
                return f"{reason} in pod {pod_name}"
    return None


def _endpoint(service: Mapping[str, Any] | None) -> str | None:
    if not service:
        return None
    for ingress in ((service.get("status") or {}).get("loadBalancer") or {}).get("ingress") or []:
        endpoint = ingress.get("hostname") or ingress.get("ip")
        if endpoint:
            return str(endpoint)
    return None


def parse_rollout_status(
    workload: Mapping[str, Any] | None,
    pods: Sequence[Mapping[str, Any]] = (),
    service: Mapping[str, Any] | None = None,
    desired_replicas: int = 1,
    replica_sets: Sequence[Mapping[str, Any]] = (),
) -> RolloutStatus:
    """Derive a :class:`RolloutStatus` from raw ``kubectl get -o json`` objects.

    A workload whose controller has not yet observed the latest generation
    reports zero updated replicas and no unhealthy reason, so a stale status
    neither looks converged nor blames the previous revision. Only pods of
    the current revision are checked for crash loops and image-pull errors.
    """
    if workload is None:
        return RolloutStatus(desired_replicas=desired_replicas, ready_replicas=0, endpoint=_endpoint(service))

    metadata = workload.get("metadata") or {}
    spec = workload.get("spec") or {}
    status = workload.get("status") or {}

    desired = int(spec.get("replicas", desired_replicas))
    ready = int(status.get("readyReplicas") or 0)
    updated = int(status.get("updatedReplicas") or 0)
    total = int(status.get("replicas") or 0)
    # StatefulSets on older clusters do not report availableReplicas
    fallback = ready if workload.get("kind") == "StatefulSet" else 0
    available = int(status.get("availableReplicas", fallback) or 0)

    unhealthy: str | None = None
    if int(status.get("observedGeneration") or 0) < int(metadata.get("generation") or 0):
        updated = 0
    else:
        unhealthy = _unhealthy_reason(workload, current_revision_pods(workload, replica_sets, pods))

    return RolloutStatus(
        desired_replicas=desired,
        ready_replicas=ready,
        updated_replicas=updated,
        endpoint=_endpoint(service),
        unhealthy_reason=unhealthy,
        total_replicas=total,
        available_replicas=available,
    )


class KubectlClusterClient:
    """Talks to the cluster control plane through ``kubectl``.

    Every request is bounded by ``ClusterConfig.request_timeout_seconds``.
    Unauthorized or forbidden responses raise :class:`AuthError`; an
    unreachable API server raises :class:`CollaboratorUnavailable`. Other
    failures surface as :class:`StageFailed` with the captured output.

    Args:
        config: kubectl location and context.
        executor: Stage executor used to run kubectl.
    """

    def __init__(self, config: ClusterConfig | None = None, executor: StageExecutor | None = None) -> None:
        self._config = config or ClusterConfig()
        self._executor = executor or StageExecutor()

    def _base_argv(self) -> list[str]:
        argv = [self._config.kubectl]
        if self._config.kubeconfig:
            argv += ["--kubeconfig", self._config.kubeconfig]
        if self._config.context:
            argv += ["--context", self._config.context]
        argv.append(f"--request-timeout={int(self._config.request_timeout_seconds)}s")
        return argv

    def _run(self, args: Sequence[str], name: str, stdin: str | None = None) -> str:
        command = Command(tuple(self._base_argv() + list(args)), name=name, stdin=stdin)
        result = self._executor.run(
            [command],
            timeout=self._config.request_timeout_seconds + 5,
            stage=Stage.DEPLOY,
        )
        if result.error is not None:
            raise self._classify(result.error)
        return result.output

    @staticmethod
    def _classify(error: PipelineError) -> PipelineError:
        if isinstance(error, StageTimeout):
            return CollaboratorUnavailable("kubectl", "request timed out", stage=Stage.DEPLOY, cause=error)
        if not isinstance(error, StageFailed):
            return error
        text = error.detail.lower()
        if any(marker in text for marker in _AUTH_MARKERS):
            return AuthError(
                f"Cluster denied '{error.command}'",
                stage=Stage.DEPLOY,
                detail=error.detail,
                cause=error,
            )
        if any(marker in text for marker in _CONNECTION_MARKERS):
            return CollaboratorUnavailable(
                "kubectl",
                "cluster API unreachable",
                stage=Stage.DEPLOY,
                detail=error.detail,
                cause=error,
            )
        return error

    def apply(self, documents: Sequence[dict[str, Any]], namespace: str) -> None:
        payload = json.dumps({"apiVersion": "v1", "kind": "List", "items": list(documents)})
        output = self._run(["apply", "--namespace", namespace, "-f", "-"], name="apply", stdin=payload)
        logger.debug("kubectl apply: %s", output.strip())

    def get(self, kind: str, name: str, namespace: str) -> dict[str, Any] | None:
        try:
            output = self._run(["get", kind, name, "--namespace", namespace, "-o", "json"], name="get")
        except StageFailed as exc:
            if "notfound" in exc.detail.lower().replace(" ", ""):
                return None
            raise
        return json.loads(output)

    def list(self, kind: str, namespace: str, selector: Mapping[str, str]) -> list[dict[str, Any]]:
        args = ["get", kind, "--namespace", namespace, "-o", "json"]
        if selector:
            args += ["--selector", ",".join(f"{k}={v}" for k, v in sorted(selector.items()))]
        output = self._run(args, name="list")
        return list(json.loads(output).get("items") or [])

    def observe(self, target: WorkloadTarget) -> RolloutStatus:
        workload = self.get(target.kind.lower(), target.name, target.namespace)
        pods: list[dict[str, Any]] = []
        replica_sets: list[dict[str, Any]] = []
        if target.selector:
            if target.kind == "Deployment":
                replica_sets = self.list("replicasets", target.namespace, target.selector)
            pods = self.list("pods", target.namespace, target.selector)
        service = None
        if target.service_name:
            service = self.get("service", target.service_name, target.namespace)
        return parse_rollout_status(
            workload,
            pods,
            service,
            desired_replicas=target.replicas,
            replica_sets=replica_sets,
        )
