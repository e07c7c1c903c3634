"""Metrics collection abstractions."""

from delivery_pipeline.core.metrics.registry import InMemoryRegistry, MeterRegistry

__all__ = ["InMemoryRegistry", "MeterRegistry"]
