"""Registry credential providers used by the build stage."""

from __future__ import annotations

import base64
import logging
from dataclasses import dataclass, field
from typing import Any, Protocol

from delivery_pipeline.core.config.base import CredentialSource
from delivery_pipeline.core.config.stages import RegistryConfig
from delivery_pipeline.core.errors import AuthError
from delivery_pipeline.core.secrets.providers import AwsSecretsProvider, EnvSecretsProvider, FileSecretsProvider
from delivery_pipeline.core.secrets.resolver import SecretResolutionError, SecretsResolver

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RegistryCredential:
    """Login credential for one registry host. The password is never shown."""

    registry: str
    username: str
    password: str = field(repr=False)


class CredentialProvider(Protocol):
    """Resolves the current login credential for a registry."""

    def get_credential(self, registry: str) -> RegistryCredential:
        """Return a credential or raise :class:`AuthError`."""
        ...


class SecretsCredentialProvider:
    """Credential from configured values, resolving ``secret://`` references.

    Args:
        username: User name or secret reference.
        password: Password or secret reference.
        resolver: Resolver for references. Defaults to env + file providers.
    """

    def __init__(self, username: str, password: str, resolver: SecretsResolver | None = None) -> None:
        self._username = username
        self._password = password
        self._resolver = resolver or SecretsResolver.with_defaults()

    def get_credential(self, registry: str) -> RegistryCredential:
        try:
            username = self._resolver.resolve_value(self._username)
            password = self._resolver.resolve_value(self._password)
        except SecretResolutionError as exc:
            raise AuthError(f"Registry credential for '{registry}' unavailable: {exc.reason}", cause=exc) from exc
        if not username or not password:
            raise AuthError(f"Registry credential for '{registry}' is empty")
        return RegistryCredential(registry=registry, username=username, password=password)


class EcrCredentialProvider:
    """Short-lived credential from Amazon ECR's authorization token API.

    Requires ``boto3``. The client is created lazily on first use.

    Args:
        region_name: AWS region. Defaults to boto3's default region.
    """

    def __init__(self, region_name: str | None = None) -> None:
        self._region = region_name
        self._client: Any = None

    def _get_client(self) -> Any:
        if self._client is None:
            import boto3  # type: ignore[import-untyped]

            self._client = boto3.client("ecr", region_name=self._region)
        return self._client

    def get_credential(self, registry: str) -> RegistryCredential:
        try:
            response = self._get_client().get_authorization_token()
            token = response["authorizationData"][0]["authorizationToken"]
            username, _, password = base64.b64decode(token).decode().partition(":")
        except Exception as exc:
            raise AuthError(f"Could not obtain ECR token for '{registry}': {exc}", cause=exc) from exc
        if not password:
            raise AuthError(f"ECR returned a malformed token for '{registry}'")
        logger.debug("Obtained ECR credential for %s", registry)
        return RegistryCredential(registry=registry, username=username, password=password)


def credential_provider_from_config(
    registry: RegistryConfig,
    resolver: SecretsResolver | None = None,
) -> CredentialProvider | None:
    """Build the provider selected by ``registry.credential_source``.

    Returns ``None`` when the registry needs no login.
    """
    if registry.credential_source is CredentialSource.NONE:
        return None
    if registry.credential_source is CredentialSource.ECR:
        return EcrCredentialProvider(region_name=registry.region)
    if resolver is None:
        resolver = SecretsResolver(EnvSecretsProvider(), FileSecretsProvider(), AwsSecretsProvider(registry.region))
    return SecretsCredentialProvider(registry.username, registry.password, resolver)
