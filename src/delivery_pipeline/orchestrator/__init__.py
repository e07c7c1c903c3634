"""Execution orchestration: state machine, deploy lease, hooks and CLI."""

from delivery_pipeline.orchestrator.audit_hooks import AuditHooks
from delivery_pipeline.orchestrator.execution import (
    ExecutionState,
    ExecutionStatus,
    InvalidTransition,
    PipelineExecution,
)
from delivery_pipeline.orchestrator.history import HistoryHooks, LocalExecutionStore
from delivery_pipeline.orchestrator.hooks import CompositeHooks, NoOpHooks, PipelineHooks
from delivery_pipeline.orchestrator.hooks_builtin import LoggingHooks, MetricsHooks
from delivery_pipeline.orchestrator.lease import DeployLease
from delivery_pipeline.orchestrator.orchestrator import (
    PipelineOrchestrator,
    UnknownExecutionError,
    default_hooks,
)
from delivery_pipeline.orchestrator.retrying import RetryingTrigger

__all__ = [
    "AuditHooks",
    "CompositeHooks",
    "DeployLease",
    "ExecutionState",
    "ExecutionStatus",
    "HistoryHooks",
    "InvalidTransition",
    "LocalExecutionStore",
    "LoggingHooks",
    "MetricsHooks",
    "NoOpHooks",
    "PipelineExecution",
    "PipelineHooks",
    "PipelineOrchestrator",
    "RetryingTrigger",
    "UnknownExecutionError",
    "default_hooks",
]
