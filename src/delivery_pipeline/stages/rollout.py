"""Deploy stage: apply the rendered manifest and wait for convergence."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable

from delivery_pipeline.cluster.client import ClusterClient, RolloutStatus
from delivery_pipeline.core.artifact import ArtifactDescriptor
from delivery_pipeline.core.config.stages import PollConfig
from delivery_pipeline.core.errors import (
    RolloutError,
    RolloutTimeout,
    RolloutUnhealthy,
    StageFailed,
    StageTimeout,
)
from delivery_pipeline.core.manifest import ManifestSet, WorkloadTarget
from delivery_pipeline.core.types import Stage

logger = logging.getLogger(__name__)


class RolloutCoordinator:
    """Converges the cluster on a manifest that references a new artifact.

    The poll loop is bounded by ``poll.timeout_seconds`` and, when given, by
    the remaining deploy stage budget. Rollback is not attempted.

    Args:
        cluster: Cluster collaborator.
        poll: Poll interval and budget.
        container_name: Container whose placeholder receives the image.
        clock: Injectable monotonic clock for testing.
        sleep_func: Injectable sleep for testing.
    """

    def __init__(
        self,
        cluster: ClusterClient,
        poll: PollConfig | None = None,
        container_name: str = "app",
        clock: Callable[[], float] | None = None,
        sleep_func: Callable[[float], None] | None = None,
    ) -> None:
        self._cluster = cluster
        self._poll = poll or PollConfig()
        self._container_name = container_name
        self._clock = clock or time.monotonic
        self._sleep = sleep_func or time.sleep

    @property
    def poll(self) -> PollConfig:
        return self._poll

    def rollout(
        self,
        manifest_set: ManifestSet,
        artifact: ArtifactDescriptor,
        *,
        timeout: float | None = None,
        before_apply: Callable[[], None] | None = None,
    ) -> RolloutStatus:
        """Apply *artifact* and poll until the workload converges.

        Args:
            manifest_set: Template to render.
            artifact: Artifact from a succeeded build.
            timeout: Remaining deploy stage budget in seconds, counted from
                this call so render and apply time are charged against it.
            before_apply: Invoked immediately before the apply; may raise to
                abort the rollout.

        Returns:
            The converged status.

        Raises:
            ManifestError: The template cannot be rendered.
            RolloutError: The cluster rejected the manifest.
            RolloutUnhealthy: The new revision is crash-looping or cannot
                pull its image.
            RolloutTimeout: The poll budget ran out.
            StageTimeout: The deploy stage budget ran out first.
        """
        entered = self._clock()
        documents = manifest_set.render(artifact.image_definitions(self._container_name))
        target = manifest_set.target

        if before_apply is not None:
            before_apply()

        logger.info("Applying %s %s/%s with %s", target.kind, target.namespace, target.name, artifact.image_uri)
        try:
            self._cluster.apply(documents, manifest_set.namespace)
        except StageFailed as exc:
            raise RolloutError(
                f"Cluster rejected manifest for {target.kind} {target.name}",
                stage=Stage.DEPLOY,
                detail=exc.detail,
                cause=exc,
            ) from exc

        budget = self._poll.timeout_seconds
        start = self._clock()
        remaining = None if timeout is None else timeout - (start - entered)
        stage_bound = remaining is not None and remaining < budget
        if stage_bound:
            budget = max(remaining, 0.0)
        end = start + budget

        status: RolloutStatus | None = None
        while True:
            status = self._observe(target)
            if status.unhealthy_reason:
                raise RolloutUnhealthy(
                    f"{target.kind} {target.name} is unhealthy: {status.unhealthy_reason}",
                    status=status,
                    stage=Stage.DEPLOY,
                )
            if status.is_converged(require_endpoint=target.exposed):
                logger.info(
                    "%s %s converged: %d/%d ready, endpoint %s",
                    target.kind,
                    target.name,
                    status.ready_replicas,
                    status.desired_replicas,
                    status.endpoint or "-",
                )
                return status

            now = self._clock()
            if now >= end:
                break
            logger.debug(
                "Waiting for %s: %d/%d ready, %d updated",
                target.name,
                status.ready_replicas,
                status.desired_replicas,
                status.updated_replicas,
            )
            self._sleep(min(self._poll.interval_seconds, end - now))

        summary = f"ready={status.ready_replicas}/desired={status.desired_replicas}"
        if stage_bound:
            raise StageTimeout(
                f"Deploy stage timed out after {self._clock() - entered:.0f}s waiting for {target.name} ({summary})",
                timeout_seconds=timeout,
                stage=Stage.DEPLOY,
            )
        raise RolloutTimeout(
            f"{target.kind} {target.name} did not converge within {budget:.0f}s ({summary})",
            status=status,
            stage=Stage.DEPLOY,
        )

    def _observe(self, target: WorkloadTarget) -> RolloutStatus:
        try:
            return self._cluster.observe(target)
        except StageFailed as exc:
            raise RolloutError(
                f"Could not observe {target.kind} {target.name}",
                stage=Stage.DEPLOY,
                detail=exc.detail,
                cause=exc,
            ) from exc
