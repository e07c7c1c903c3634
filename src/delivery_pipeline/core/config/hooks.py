"""Lifecycle hooks configuration models."""

from dataclasses import dataclass

from delivery_pipeline.core.config.base import LogLevel


@dataclass
class LoggingConfig:
    """Configuration for logging behavior."""

    level: LogLevel = LogLevel.INFO
    """Logging level (default: INFO)"""


@dataclass
class MetricsConfig:
    """Configuration for in-process metrics collection."""

    enabled: bool = True
    """Record execution and stage metrics (default: True)"""


@dataclass
class AuditConfig:
    """Configuration for the audit trail."""

    enabled: bool = True
    """Enable audit trail (default: True)"""

    audit_trail_path: str | None = None
    """JSON-lines file for audit events; logging only when unset (optional)"""


@dataclass
class HooksConfig:
    """Composite configuration for all lifecycle hooks."""

    logging: LoggingConfig = None  # type: ignore
    """Logging configuration"""

    metrics: MetricsConfig | None = None
    """Metrics configuration (optional)"""

    audit: AuditConfig | None = None
    """Audit configuration (optional)"""

    def __post_init__(self) -> None:
        """Initialize default logging if not provided."""
        if self.logging is None:
            self.logging = LoggingConfig()
