"""Tests for secret reference parsing and routing."""

from __future__ import annotations

import pytest

from delivery_pipeline.core.secrets.base import (
    SecretResolutionResult,
    SecretsProvider,
    SecretsReference,
)
from delivery_pipeline.core.secrets.resolver import (
    SecretResolutionError,
    SecretsResolver,
    parse_secret_reference,
)


class _StaticProvider(SecretsProvider):
    def __init__(self, values: dict[str, str]) -> None:
        self._values = values

    @property
    def provider_name(self) -> str:
        return "static"

    def resolve(self, reference: SecretsReference) -> SecretResolutionResult:
        if reference.key not in self._values:
            return SecretResolutionResult.missing(reference, "missing")
        return SecretResolutionResult.found(reference, self._values[reference.key])


class TestParseSecretReference:
    def test_parses_provider_and_key(self) -> None:
        assert parse_secret_reference("secret://aws/prod/registry") == SecretsReference("aws", "prod/registry")

    @pytest.mark.parametrize("value", ["plain", "secret://", "secret://env", "secrets://env/X"])
    def test_non_references(self, value: str) -> None:
        assert parse_secret_reference(value) is None


class TestSecretsResolver:
    def test_plain_value_passes_through(self) -> None:
        assert SecretsResolver().resolve_value("hunter2") == "hunter2"

    def test_resolves_through_registered_provider(self) -> None:
        resolver = SecretsResolver(_StaticProvider({"password": "s3cret"}))

        assert resolver.resolve_value("secret://static/password") == "s3cret"

    def test_unknown_provider(self) -> None:
        with pytest.raises(SecretResolutionError, match="Unknown provider: vault") as exc_info:
            SecretsResolver().resolve_value("secret://vault/x")
        assert exc_info.value.reference == "secret://vault/x"

    def test_missing_secret(self) -> None:
        resolver = SecretsResolver(_StaticProvider({}))

        with pytest.raises(SecretResolutionError, match="missing"):
            resolver.resolve_value("secret://static/password")

    def test_with_defaults_registers_env_and_file(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("DPO_TEST_SECRET", "value")

        assert SecretsResolver.with_defaults().resolve_value("secret://env/DPO_TEST_SECRET") == "value"

    def test_register_replaces_same_name(self) -> None:
        resolver = SecretsResolver(_StaticProvider({"k": "old"}))
        resolver.register(_StaticProvider({"k": "new"}))

        assert resolver.resolve_value("secret://static/k") == "new"
