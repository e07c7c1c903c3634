"""Secrets providers and resolution."""

from delivery_pipeline.core.secrets.base import (
    SecretResolutionResult,
    SecretResolutionStatus,
    SecretsProvider,
    SecretsReference,
)
from delivery_pipeline.core.secrets.providers import AwsSecretsProvider, EnvSecretsProvider, FileSecretsProvider
from delivery_pipeline.core.secrets.resolver import (
    SecretResolutionError,
    SecretsResolver,
    parse_secret_reference,
)

__all__ = [
    "AwsSecretsProvider",
    "EnvSecretsProvider",
    "FileSecretsProvider",
    "SecretResolutionError",
    "SecretResolutionResult",
    "SecretResolutionStatus",
    "SecretsProvider",
    "SecretsReference",
    "SecretsResolver",
    "parse_secret_reference",
]
