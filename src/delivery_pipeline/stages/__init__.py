"""Pipeline stages: build, rollout and the one-time permission bootstrap."""

from delivery_pipeline.stages.bootstrap import (
    AwsAuthBindingStore,
    BindingStore,
    ClusterBinding,
    PermissionBootstrapper,
)
from delivery_pipeline.stages.build import BuildCoordinator, parse_push_digest
from delivery_pipeline.stages.credentials import (
    CredentialProvider,
    EcrCredentialProvider,
    RegistryCredential,
    SecretsCredentialProvider,
    credential_provider_from_config,
)
from delivery_pipeline.stages.executor import Command, StageExecutor
from delivery_pipeline.stages.rollout import RolloutCoordinator

__all__ = [
    "AwsAuthBindingStore",
    "BindingStore",
    "BuildCoordinator",
    "ClusterBinding",
    "Command",
    "CredentialProvider",
    "EcrCredentialProvider",
    "PermissionBootstrapper",
    "RegistryCredential",
    "RolloutCoordinator",
    "SecretsCredentialProvider",
    "StageExecutor",
    "credential_provider_from_config",
    "parse_push_digest",
]
