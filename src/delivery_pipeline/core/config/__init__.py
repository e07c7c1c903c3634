"""Configuration models for the delivery pipeline.

Configuration is written in HOCON and loaded with dataconf into validated
dataclasses.
"""

from delivery_pipeline.core.config.base import CredentialSource, Environment, LogLevel
from delivery_pipeline.core.config.hooks import AuditConfig, HooksConfig, LoggingConfig, MetricsConfig
from delivery_pipeline.core.config.loader import load_from_env, load_from_file, load_from_string
from delivery_pipeline.core.config.pipeline import PipelineConfig
from delivery_pipeline.core.config.retry import RetryConfig
from delivery_pipeline.core.config.stages import (
    BindingConfig,
    BuildConfig,
    ClusterConfig,
    DeployConfig,
    PollConfig,
    RegistryConfig,
)

__all__ = [
    "AuditConfig",
    "BindingConfig",
    "BuildConfig",
    "ClusterConfig",
    "CredentialSource",
    "DeployConfig",
    "Environment",
    "HooksConfig",
    "LogLevel",
    "LoggingConfig",
    "MetricsConfig",
    "PipelineConfig",
    "PollConfig",
    "RegistryConfig",
    "RetryConfig",
    "load_from_env",
    "load_from_file",
    "load_from_string",
]
