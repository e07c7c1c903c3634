"""Tests for PipelineOrchestrator."""

from __future__ import annotations

import threading
import time
from pathlib import Path

import pytest

from delivery_pipeline.core.config.hooks import AuditConfig, HooksConfig, MetricsConfig
from delivery_pipeline.core.config.stages import PollConfig
from delivery_pipeline.core.errors import (
    BuildError,
    ErrorKind,
    RolloutTimeout,
    StageTimeout,
)
from delivery_pipeline.core.metrics.registry import InMemoryRegistry
from delivery_pipeline.core.types import Stage, StageStatus
from delivery_pipeline.orchestrator.audit_hooks import AuditHooks
from delivery_pipeline.orchestrator.execution import ExecutionState, ExecutionStatus
from delivery_pipeline.orchestrator.history import HistoryHooks, LocalExecutionStore
from delivery_pipeline.orchestrator.hooks import NoOpHooks
from delivery_pipeline.orchestrator.hooks_builtin import LoggingHooks, MetricsHooks
from delivery_pipeline.orchestrator.lease import DeployLease
from delivery_pipeline.orchestrator.orchestrator import (
    PipelineOrchestrator,
    UnknownExecutionError,
    default_hooks,
)
from delivery_pipeline.stages.executor import StageExecutor
from tests.factories import (
    ENDPOINT,
    MANIFEST_YAML,
    REGISTRY_HOST,
    FakeClock,
    FakeCluster,
    FakePopen,
    FakeProcess,
    RecordingHooks,
    StubBuilder,
    make_orchestrator,
    make_pipeline_config,
    pending,
)

WAIT = 5.0


def _wait_until(predicate, timeout: float = WAIT) -> None:  # type: ignore[no-untyped-def]
    deadline = time.monotonic() + timeout
    while not predicate():
        if time.monotonic() > deadline:
            raise AssertionError("condition not reached")
        time.sleep(0.005)


# ---------------------------------------------------------------------------
# Happy path and stage failures
# ---------------------------------------------------------------------------


class TestTrigger:
    def test_succeeds_with_endpoint(self) -> None:
        cluster = FakeCluster()
        orchestrator = make_orchestrator(cluster=cluster)

        execution = orchestrator.trigger("abc123")
        assert execution.state in (ExecutionState.BUILDING, ExecutionState.DEPLOYING, ExecutionState.SUCCEEDED)
        final = orchestrator.wait(execution.id, WAIT)

        assert final.state is ExecutionState.SUCCEEDED
        assert final.status is ExecutionStatus.SUCCEEDED
        assert final.endpoint == ENDPOINT
        assert final.artifact is not None
        assert final.artifact.image_uri == f"{REGISTRY_HOST}/app:abc123"
        assert [r.stage for r in final.stage_results] == [Stage.BUILD, Stage.DEPLOY]
        assert all(r.status is StageStatus.SUCCEEDED for r in final.stage_results)
        assert cluster.applied_image() == f"{REGISTRY_HOST}/app:abc123"
        assert final.started_at is not None and final.finished_at is not None

    def test_trigger_returns_building_snapshot(self) -> None:
        gate = threading.Event()
        orchestrator = make_orchestrator(StubBuilder(gates={"abc123": gate}))

        execution = orchestrator.trigger("abc123")

        assert execution.state is ExecutionState.BUILDING
        assert orchestrator.status(execution.id).status is ExecutionStatus.RUNNING
        gate.set()
        orchestrator.wait(execution.id, WAIT)

    def test_build_failure_never_deploys(self) -> None:
        cluster = FakeCluster()
        builder = StubBuilder(failures={"abc123": BuildError("push failed", detail="denied")})
        orchestrator = make_orchestrator(builder, cluster)

        final = orchestrator.wait(orchestrator.trigger("abc123").id, WAIT)

        assert final.state is ExecutionState.FAILED
        assert final.error is not None
        assert final.error.kind is ErrorKind.BUILD
        assert final.error.stage is Stage.BUILD
        assert final.artifact is None
        assert final.result_for(Stage.DEPLOY) is None
        assert cluster.applies == []

    def test_rollout_timeout(self) -> None:
        cluster = FakeCluster([pending()])
        orchestrator = make_orchestrator(cluster=cluster, poll=PollConfig(interval_seconds=5, timeout_seconds=120))

        final = orchestrator.wait(orchestrator.trigger("abc123").id, WAIT)

        assert final.state is ExecutionState.FAILED
        assert isinstance(final.error, RolloutTimeout)
        assert final.error.stage is Stage.DEPLOY
        assert final.artifact is not None
        assert final.result_for(Stage.BUILD).success  # type: ignore[union-attr]

    def test_unexpected_builder_exception(self) -> None:
        class Exploding:
            def build(self, source_revision: str, **kwargs: object) -> None:
                raise KeyError("boom")

        orchestrator = make_orchestrator(Exploding())

        final = orchestrator.wait(orchestrator.trigger("abc123").id, WAIT)

        assert final.state is ExecutionState.FAILED
        assert final.error is not None
        assert final.error.kind is ErrorKind.INTERNAL

    def test_same_revision_twice_is_idempotent(self) -> None:
        cluster = FakeCluster()
        orchestrator = make_orchestrator(cluster=cluster)

        first = orchestrator.wait(orchestrator.trigger("abc123").id, WAIT)
        second = orchestrator.wait(orchestrator.trigger("abc123").id, WAIT)

        assert first.id != second.id
        assert second.state is ExecutionState.SUCCEEDED
        assert len(cluster.applies) == 2
        assert len(cluster.changes) == 2

    def test_sequence_and_listing(self) -> None:
        orchestrator = make_orchestrator(first_sequence=7)

        ids = [orchestrator.trigger(rev).id for rev in ("a", "b")]
        for execution_id in ids:
            orchestrator.wait(execution_id, WAIT)

        assert [(e.source_revision, e.sequence) for e in orchestrator.executions()] == [("a", 7), ("b", 8)]

    def test_unknown_execution(self) -> None:
        with pytest.raises(UnknownExecutionError):
            make_orchestrator().status("missing")

    def test_trigger_after_shutdown(self) -> None:
        orchestrator = make_orchestrator()
        orchestrator.shutdown()

        with pytest.raises(RuntimeError, match="shut down"):
            orchestrator.trigger("abc123")


# ---------------------------------------------------------------------------
# Deploy lease
# ---------------------------------------------------------------------------


class TestDeployQueue:
    def test_queued_while_lease_busy(self) -> None:
        lease = DeployLease(wait_slice=0.01)
        blocker = lease.reserve()
        orchestrator = make_orchestrator(lease=lease)

        with lease.hold(blocker):
            execution = orchestrator.trigger("abc123")
            _wait_until(lambda: orchestrator.status(execution.id).queued_for_deploy)
            queued = orchestrator.status(execution.id)
            assert queued.state is ExecutionState.BUILDING
            assert queued.artifact is not None

        final = orchestrator.wait(execution.id, WAIT)
        assert final.state is ExecutionState.SUCCEEDED
        assert final.queued_for_deploy is False

    def test_lease_timeout(self) -> None:
        lease = DeployLease(wait_slice=0.01)
        blocker = lease.reserve()
        cluster = FakeCluster()
        orchestrator = make_orchestrator(cluster=cluster, lease=lease, lease_timeout=0.05)

        with lease.hold(blocker):
            final = orchestrator.wait(orchestrator.trigger("abc123").id, WAIT)

        assert final.state is ExecutionState.FAILED
        assert isinstance(final.error, StageTimeout)
        assert final.error.stage is Stage.DEPLOY
        assert cluster.applies == []

    def test_deploy_budget_charges_time_spent_in_stage_start_hooks(self) -> None:
        clock = FakeClock()

        class SlowStart(NoOpHooks):
            def on_stage_start(self, execution, stage):  # type: ignore[no-untyped-def]
                if stage is Stage.DEPLOY:
                    clock.advance(30.0)

        orchestrator = make_orchestrator(
            cluster=FakeCluster([pending()]),
            poll=PollConfig(interval_seconds=5.0, timeout_seconds=600.0),
            hooks=SlowStart(),
            clock=clock,
            deploy_timeout=100.0,
        )

        final = orchestrator.wait(orchestrator.trigger("abc123").id, WAIT)

        assert final.state is ExecutionState.FAILED
        assert isinstance(final.error, StageTimeout)
        assert clock() == 100.0
        assert sum(clock.sleeps) == 70.0


# ---------------------------------------------------------------------------
# Cancellation
# ---------------------------------------------------------------------------


class TestCancel:
    def test_cancel_during_build(self) -> None:
        gate = threading.Event()
        cluster = FakeCluster()
        orchestrator = make_orchestrator(StubBuilder(gates={"abc123": gate}), cluster)
        execution = orchestrator.trigger("abc123")

        assert orchestrator.cancel(execution.id) is True
        gate.set()
        final = orchestrator.wait(execution.id, WAIT)

        assert final.state is ExecutionState.FAILED
        assert final.error is not None
        assert final.error.kind is ErrorKind.CANCELLED
        assert final.stage_results[-1].status is StageStatus.CANCELLED
        assert cluster.applies == []

    def test_cancel_after_apply_rejected(self) -> None:
        entered = threading.Event()
        release = threading.Event()
        cluster = FakeCluster()
        cluster.apply_delay = lambda: (entered.set(), release.wait(WAIT))  # type: ignore[assignment,func-returns-value]
        orchestrator = make_orchestrator(cluster=cluster)
        execution = orchestrator.trigger("abc123")

        assert entered.wait(WAIT)
        assert orchestrator.cancel(execution.id) is False
        release.set()

        assert orchestrator.wait(execution.id, WAIT).state is ExecutionState.SUCCEEDED

    def test_cancel_finished_execution(self) -> None:
        orchestrator = make_orchestrator()
        execution = orchestrator.wait(orchestrator.trigger("abc123").id, WAIT)

        assert orchestrator.cancel(execution.id) is False

    def test_shutdown_cancel_pending(self) -> None:
        gate = threading.Event()
        orchestrator = make_orchestrator(StubBuilder(gates={"abc123": gate}))
        execution = orchestrator.trigger("abc123")

        threading.Timer(0.05, gate.set).start()
        orchestrator.shutdown(cancel_pending=True, timeout=WAIT)

        assert orchestrator.status(execution.id).error.kind is ErrorKind.CANCELLED  # type: ignore[union-attr]


# ---------------------------------------------------------------------------
# Hooks
# ---------------------------------------------------------------------------


class TestHooks:
    def test_lifecycle_order(self) -> None:
        hooks = RecordingHooks()
        orchestrator = make_orchestrator(hooks=hooks)

        orchestrator.wait(orchestrator.trigger("abc123").id, WAIT)

        assert hooks.events == [
            ("before_execution", "abc123", "pending"),
            ("on_stage_start", "abc123", "build"),
            ("on_stage_complete", "abc123", "build"),
            ("on_stage_start", "abc123", "deploy"),
            ("on_stage_complete", "abc123", "deploy"),
            ("after_execution", "abc123", "succeeded"),
        ]

    def test_failure_events(self) -> None:
        hooks = RecordingHooks()
        builder = StubBuilder(failures={"abc123": BuildError("x")})
        orchestrator = make_orchestrator(builder, hooks=hooks)

        orchestrator.wait(orchestrator.trigger("abc123").id, WAIT)

        assert hooks.names() == ["before_execution", "on_stage_start", "on_stage_failure", "after_execution"]

    def test_failing_hook_does_not_change_outcome(self) -> None:
        class Broken(NoOpHooks):
            def on_stage_complete(self, execution, result):  # type: ignore[no-untyped-def]
                raise RuntimeError("hook bug")

        orchestrator = make_orchestrator(hooks=Broken())

        final = orchestrator.wait(orchestrator.trigger("abc123").id, WAIT)

        assert final.state is ExecutionState.SUCCEEDED


# ---------------------------------------------------------------------------
# Wiring from configuration
# ---------------------------------------------------------------------------


class TestFromConfig:
    def test_end_to_end_with_fake_collaborators(self, tmp_path: Path) -> None:
        manifest = tmp_path / "app.yaml"
        manifest.write_text(MANIFEST_YAML)
        popen = FakePopen(FakeProcess(), FakeProcess(), FakeProcess(), FakeProcess())
        cluster = FakeCluster()

        orchestrator = PipelineOrchestrator.from_config(
            make_pipeline_config(str(manifest)),
            cluster=cluster,
            executor=StageExecutor(popen=popen),
            hooks=NoOpHooks(),
        )
        final = orchestrator.wait(orchestrator.trigger("abc123").id, WAIT)

        assert final.state is ExecutionState.SUCCEEDED
        assert [argv[1] for argv in popen.argvs] == ["build", "tag", "push", "push"]
        assert cluster.applied_image() == f"{REGISTRY_HOST}/app:abc123"

    def test_history_continues_sequence(self, tmp_path: Path) -> None:
        manifest = tmp_path / "app.yaml"
        manifest.write_text(MANIFEST_YAML)
        config = make_pipeline_config(str(manifest), history_dir=str(tmp_path / "history"))

        def run_once() -> int:
            orchestrator = PipelineOrchestrator.from_config(
                config,
                cluster=FakeCluster(),
                executor=StageExecutor(popen=FakePopen()),
            )
            execution = orchestrator.trigger("  ")
            orchestrator.wait(execution.id, WAIT)
            return execution.sequence

        assert [run_once(), run_once()] == [0, 1]
        assert len(LocalExecutionStore(tmp_path / "history", "test-pipeline").list()) == 2


class TestDefaultHooks:
    def test_defaults(self) -> None:
        hooks, store = default_hooks(make_pipeline_config())

        assert [type(h) for h in hooks.hooks] == [LoggingHooks, MetricsHooks]
        assert store is None

    def test_everything_enabled(self, tmp_path: Path) -> None:
        registry = InMemoryRegistry()
        config = make_pipeline_config(
            hooks=HooksConfig(audit=AuditConfig(audit_trail_path=str(tmp_path / "audit.jsonl"))),
            history_dir=str(tmp_path),
        )

        hooks, store = default_hooks(config, registry)

        assert [type(h) for h in hooks.hooks] == [LoggingHooks, MetricsHooks, AuditHooks, HistoryHooks]
        assert isinstance(store, LocalExecutionStore)
        assert store.directory == tmp_path / "test-pipeline"

    def test_metrics_disabled(self) -> None:
        config = make_pipeline_config(hooks=HooksConfig(metrics=MetricsConfig(enabled=False)))

        hooks, _ = default_hooks(config)

        assert [type(h) for h in hooks.hooks] == [LoggingHooks]
