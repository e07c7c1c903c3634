"""Pipeline orchestrator: drives executions through build and deploy."""

from __future__ import annotations

import logging
import threading
import time
import uuid
from collections.abc import Callable
from dataclasses import dataclass, field, replace
from typing import Any, Protocol

from delivery_pipeline.cluster.client import ClusterClient, RolloutStatus
from delivery_pipeline.cluster.kubectl import KubectlClusterClient
from delivery_pipeline.core.artifact import ArtifactDescriptor
from delivery_pipeline.core.audit import AuditSink, CompositeAuditSink, FileAuditSink, LoggingAuditSink
from delivery_pipeline.core.config.pipeline import PipelineConfig
from delivery_pipeline.core.errors import InternalError, PipelineError, StageCancelled
from delivery_pipeline.core.manifest import ManifestSet
from delivery_pipeline.core.metrics.registry import InMemoryRegistry, MeterRegistry
from delivery_pipeline.core.result import StageResult
from delivery_pipeline.core.secrets.resolver import SecretsResolver
from delivery_pipeline.core.types import Stage, StageStatus
from delivery_pipeline.orchestrator.audit_hooks import AuditHooks
from delivery_pipeline.orchestrator.execution import ExecutionState, PipelineExecution
from delivery_pipeline.orchestrator.history import HistoryHooks, LocalExecutionStore
from delivery_pipeline.orchestrator.hooks import CompositeHooks, PipelineHooks
from delivery_pipeline.orchestrator.hooks_builtin import LoggingHooks, MetricsHooks
from delivery_pipeline.orchestrator.lease import DeployLease
from delivery_pipeline.stages.build import BuildCoordinator
from delivery_pipeline.stages.credentials import credential_provider_from_config
from delivery_pipeline.stages.executor import StageExecutor
from delivery_pipeline.stages.rollout import RolloutCoordinator

logger = logging.getLogger(__name__)


class UnknownExecutionError(KeyError):
    """Raised when an execution id was never issued by this orchestrator."""


class Builder(Protocol):
    def build(
        self,
        source_revision: str,
        *,
        timeout: float | None = None,
        cancel_event: threading.Event | None = None,
    ) -> ArtifactDescriptor: ...


class Deployer(Protocol):
    def rollout(
        self,
        manifest_set: ManifestSet,
        artifact: ArtifactDescriptor,
        *,
        timeout: float | None = None,
        before_apply: Callable[[], None] | None = None,
    ) -> RolloutStatus: ...


@dataclass
class _Run:
    execution: PipelineExecution
    ticket: int
    cancel_event: threading.Event = field(default_factory=threading.Event)
    done: threading.Event = field(default_factory=threading.Event)
    apply_issued: bool = False
    thread: threading.Thread | None = None


class PipelineOrchestrator:
    """Runs pipeline executions, one worker thread per trigger.

    Each execution moves ``pending -> building -> deploying -> succeeded``
    and ends ``failed`` from any stage. Builds of different executions run
    concurrently; deploys are serialized by a :class:`DeployLease` and
    entered in trigger order. An execution never retries a stage: a failed
    revision is retried by triggering it again.

    Args:
        builder: Build stage (``BuildCoordinator`` or compatible).
        deployer: Deploy stage (``RolloutCoordinator`` or compatible).
        manifest_set: Template rendered for every execution.
        hooks: Lifecycle hooks. Failures are logged, never propagated.
        lease: Deploy lease; a private one by default.
        build_timeout: Build stage budget in seconds.
        deploy_timeout: Deploy stage budget in seconds, lease wait excluded.
        lease_timeout: Maximum wait for the deploy lease in seconds.
        clock: Injectable monotonic clock for testing.
        id_factory: Produces execution ids.
        first_sequence: Sequence number of the first trigger.
    """

    def __init__(
        self,
        builder: Builder,
        deployer: Deployer,
        manifest_set: ManifestSet,
        hooks: PipelineHooks | None = None,
        lease: DeployLease | None = None,
        build_timeout: float | None = None,
        deploy_timeout: float | None = None,
        lease_timeout: float | None = None,
        clock: Callable[[], float] | None = None,
        id_factory: Callable[[], str] | None = None,
        first_sequence: int = 0,
    ) -> None:
        self._builder = builder
        self._deployer = deployer
        self._manifest_set = manifest_set
        self._hooks = CompositeHooks(hooks) if hooks is not None else CompositeHooks()
        self._lease = lease or DeployLease()
        self._build_timeout = build_timeout
        self._deploy_timeout = deploy_timeout
        self._lease_timeout = lease_timeout
        self._clock = clock or time.monotonic
        self._id_factory = id_factory or (lambda: uuid.uuid4().hex)
        self._lock = threading.RLock()
        self._runs: dict[str, _Run] = {}
        self._sequence = first_sequence
        self._closed = False

    @classmethod
    def from_config(
        cls,
        config: PipelineConfig,
        *,
        cluster: ClusterClient | None = None,
        executor: StageExecutor | None = None,
        hooks: PipelineHooks | None = None,
        resolver: SecretsResolver | None = None,
        registry: MeterRegistry | None = None,
    ) -> PipelineOrchestrator:
        """Wire an orchestrator from configuration.

        Args:
            config: Pipeline configuration.
            cluster: Cluster client; kubectl over *executor* by default.
            executor: Stage executor shared by build and cluster calls.
            hooks: Lifecycle hooks; built from ``config.hooks`` by default.
            resolver: Secrets resolver for registry credentials.
            registry: Meter registry for the default metrics hooks.

        Raises:
            ManifestError: The manifest template is missing or invalid.
        """
        executor = executor or StageExecutor()
        builder = BuildCoordinator(
            config.registry,
            config.build,
            executor=executor,
            credentials=credential_provider_from_config(config.registry, resolver),
            container_name=config.deploy.container_name,
        )
        deployer = RolloutCoordinator(
            cluster or KubectlClusterClient(config.cluster, executor),
            poll=config.deploy.poll,
            container_name=config.deploy.container_name,
        )
        manifest_set = ManifestSet.from_file(config.deploy.manifest_path, namespace=config.deploy.namespace)

        first_sequence = 0
        if hooks is None:
            hooks, store = default_hooks(config, registry)
            if store is not None:
                first_sequence = store.next_sequence()

        return cls(
            builder,
            deployer,
            manifest_set,
            hooks=hooks,
            build_timeout=config.build.timeout_seconds,
            deploy_timeout=config.deploy.timeout_seconds,
            lease_timeout=config.deploy.lease_timeout_seconds,
            first_sequence=first_sequence,
        )

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    @property
    def hooks(self) -> CompositeHooks:
        return self._hooks

    @property
    def lease(self) -> DeployLease:
        return self._lease

    def trigger(self, source_revision: str) -> PipelineExecution:
        """Start a new execution for *source_revision*.

        Returns immediately with a snapshot already in ``building``.

        Raises:
            RuntimeError: The orchestrator has been shut down.
        """
        with self._lock:
            if self._closed:
                raise RuntimeError("Orchestrator has been shut down")
            execution = PipelineExecution(
                id=self._id_factory(),
                source_revision=source_revision,
                sequence=self._sequence,
            )
            self._sequence += 1
            run = _Run(execution=execution, ticket=self._lease.reserve())
            self._runs[execution.id] = run
            self._hooks.before_execution(execution)
            snapshot = self._update(run, lambda e: e.transition(ExecutionState.BUILDING))
            run.thread = threading.Thread(
                target=self._execute,
                args=(run,),
                name=f"dpo-execution-{execution.id[:8]}",
                daemon=True,
            )
            run.thread.start()
        return snapshot

    def status(self, execution_id: str) -> PipelineExecution:
        """Return the current snapshot of an execution."""
        with self._lock:
            return self._get(execution_id).execution

    def wait(self, execution_id: str, timeout: float | None = None) -> PipelineExecution:
        """Block until the execution is terminal or *timeout* elapses.

        Returns the latest snapshot either way.
        """
        run = self._get(execution_id)
        run.done.wait(timeout)
        return self.status(execution_id)

    def cancel(self, execution_id: str) -> bool:
        """Request cancellation.

        Cancellation is accepted while building and while deploying until
        the manifest apply has been issued. An accepted request always ends
        the execution ``failed`` with a ``cancelled`` error.

        Returns:
            ``True`` if the request was accepted.
        """
        with self._lock:
            run = self._get(execution_id)
            if run.execution.done or run.apply_issued:
                return False
            run.cancel_event.set()
        self._lease.wake()
        logger.info("Cancellation requested for execution %s", execution_id)
        return True

    def executions(self) -> list[PipelineExecution]:
        """Return snapshots of every execution in trigger order."""
        with self._lock:
            return sorted((r.execution for r in self._runs.values()), key=lambda e: e.sequence)

    def shutdown(self, wait: bool = True, cancel_pending: bool = False, timeout: float | None = None) -> None:
        """Stop accepting triggers and optionally wait for in-flight executions."""
        with self._lock:
            self._closed = True
            runs = list(self._runs.values())
        if cancel_pending:
            for run in runs:
                self.cancel(run.execution.id)
        if wait:
            for run in runs:
                if run.thread is not None:
                    run.thread.join(timeout)

    def __enter__(self) -> PipelineOrchestrator:
        return self

    def __exit__(self, *exc: Any) -> None:
        self.shutdown()

    # ------------------------------------------------------------------
    # Worker
    # ------------------------------------------------------------------

    def _get(self, execution_id: str) -> _Run:
        try:
            return self._runs[execution_id]
        except KeyError:
            raise UnknownExecutionError(execution_id) from None

    def _update(self, run: _Run, change: Callable[[PipelineExecution], PipelineExecution]) -> PipelineExecution:
        with self._lock:
            run.execution = change(run.execution)
            return run.execution

    def _execute(self, run: _Run) -> None:
        try:
            artifact = self._build_stage(run)
            if artifact is not None:
                self._deploy_stage(run, artifact)
        except Exception as exc:
            logger.exception("Execution %s crashed", run.execution.id)
            if not run.execution.done:
                stage = run.execution.current_stage or Stage.BUILD
                self._fail(run, StageResult.failed(stage, InternalError(exc, stage=stage), 0))
        finally:
            self._lease.forfeit(run.ticket)
            run.done.set()

    def _build_stage(self, run: _Run) -> ArtifactDescriptor | None:
        self._hooks.on_stage_start(run.execution, Stage.BUILD)
        start = self._clock()
        try:
            artifact = self._builder.build(
                run.execution.source_revision,
                timeout=self._build_timeout,
                cancel_event=run.cancel_event,
            )
        except PipelineError as exc:
            self._fail(run, StageResult.failed(Stage.BUILD, exc, self._elapsed_ms(start)))
            return None
        except Exception as exc:
            self._fail(run, StageResult.failed(Stage.BUILD, InternalError(exc), self._elapsed_ms(start)))
            return None

        result = StageResult(
            stage=Stage.BUILD,
            status=StageStatus.SUCCEEDED,
            duration_ms=self._elapsed_ms(start),
            artifact=artifact,
        )
        snapshot = self._update(
            run,
            lambda e: replace(e.with_result(result), artifact=artifact, queued_for_deploy=True),
        )
        self._hooks.on_stage_complete(snapshot, result)
        return artifact

    def _deploy_stage(self, run: _Run, artifact: ArtifactDescriptor) -> None:
        start = self._clock()
        try:
            with self._lease.hold(run.ticket, timeout=self._lease_timeout, cancel_event=run.cancel_event):
                snapshot = self._update(
                    run,
                    lambda e: e.transition(ExecutionState.DEPLOYING, queued_for_deploy=False),
                )
                start = self._clock()
                self._hooks.on_stage_start(snapshot, Stage.DEPLOY)
                remaining = None
                if self._deploy_timeout is not None:
                    remaining = self._deploy_timeout - (self._clock() - start)
                status = self._deployer.rollout(
                    self._manifest_set,
                    artifact,
                    timeout=remaining,
                    before_apply=lambda: self._before_apply(run),
                )
        except PipelineError as exc:
            self._fail(run, StageResult.failed(Stage.DEPLOY, exc, self._elapsed_ms(start)))
            return
        except Exception as exc:
            self._fail(run, StageResult.failed(Stage.DEPLOY, InternalError(exc), self._elapsed_ms(start)))
            return

        result = StageResult(
            stage=Stage.DEPLOY,
            status=StageStatus.SUCCEEDED,
            duration_ms=self._elapsed_ms(start),
            artifact=artifact,
            output=status.endpoint or "",
        )
        snapshot = self._update(
            run,
            lambda e: e.with_result(result).transition(ExecutionState.SUCCEEDED, endpoint=status.endpoint),
        )
        self._hooks.on_stage_complete(snapshot, result)
        self._hooks.after_execution(snapshot)

    def _before_apply(self, run: _Run) -> None:
        with self._lock:
            if run.cancel_event.is_set():
                raise StageCancelled("Cancelled before the manifest apply", stage=Stage.DEPLOY)
            run.apply_issued = True

    def _fail(self, run: _Run, result: StageResult) -> None:
        snapshot = self._update(
            run,
            lambda e: e.with_result(result).transition(ExecutionState.FAILED, error=result.error),
        )
        self._hooks.on_stage_failure(snapshot, result)
        self._hooks.after_execution(snapshot)

    def _elapsed_ms(self, start: float) -> int:
        return int((self._clock() - start) * 1000)


def default_hooks(
    config: PipelineConfig,
    registry: MeterRegistry | None = None,
) -> tuple[CompositeHooks, LocalExecutionStore | None]:
    """Build the hooks selected by ``config.hooks`` and ``config.history_dir``.

    Logging hooks are always installed. Returns the execution store too, when
    history is enabled.
    """
    hooks: list[PipelineHooks] = [LoggingHooks()]
    if config.hooks.metrics is None or config.hooks.metrics.enabled:
        hooks.append(MetricsHooks(registry or InMemoryRegistry(), pipeline=config.name))
    if config.hooks.audit is not None and config.hooks.audit.enabled:
        sink: AuditSink = LoggingAuditSink()
        if config.hooks.audit.audit_trail_path:
            sink = CompositeAuditSink(sink, FileAuditSink(config.hooks.audit.audit_trail_path))
        hooks.append(AuditHooks(sink, actor=config.name))
    store = None
    if config.history_dir:
        store = LocalExecutionStore(config.history_dir, config.name)
        hooks.append(HistoryHooks(store))
    return CompositeHooks(*hooks), store
