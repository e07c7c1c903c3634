"""Resilience patterns: retry with backoff."""

from delivery_pipeline.core.resilience.retry import RetryExecutor

__all__ = ["RetryExecutor"]
