"""Provider routing for ``secret://PROVIDER/KEY`` configuration values.

Examples::

    password = "secret://env/REGISTRY_PASSWORD"
    password = "secret://file/run/secrets/registry-password"
    password = "secret://aws/prod/registry"
"""

from __future__ import annotations

from delivery_pipeline.core.secrets.base import SecretResolutionResult, SecretsProvider, SecretsReference
from delivery_pipeline.core.secrets.providers import EnvSecretsProvider, FileSecretsProvider


class SecretResolutionError(Exception):
    """A ``secret://`` value whose provider is unknown or could not supply it."""

    def __init__(self, reference: str, reason: str) -> None:
        self.reference = reference
        self.reason = reason
        super().__init__(f"Failed to resolve '{reference}': {reason}")


def parse_secret_reference(value: str) -> SecretsReference | None:
    return SecretsReference.parse(value)


class SecretsResolver:
    """Holds providers by name and hands each reference to its provider."""

    def __init__(self, *providers: SecretsProvider) -> None:
        self._providers = {provider.provider_name: provider for provider in providers}

    @classmethod
    def with_defaults(cls) -> SecretsResolver:
        """``env`` and ``file`` only; neither needs a third-party client."""
        return cls(EnvSecretsProvider(), FileSecretsProvider())

    def register(self, provider: SecretsProvider) -> None:
        self._providers[provider.provider_name] = provider

    def resolve(self, reference: SecretsReference) -> SecretResolutionResult:
        if reference.provider not in self._providers:
            return SecretResolutionResult.failed(reference, f"Unknown provider: {reference.provider}")
        return self._providers[reference.provider].resolve(reference)

    def resolve_value(self, value: str) -> str:
        """Return a literal *value* unchanged, or the secret it points to.

        Raises:
            SecretResolutionError: If the reference cannot be resolved.
        """
        reference = SecretsReference.parse(value)
        if reference is None:
            return value
        result = self.resolve(reference)
        if not result.ok:
            raise SecretResolutionError(value, result.error or result.status.value)
        return result.value  # type: ignore[return-value]
