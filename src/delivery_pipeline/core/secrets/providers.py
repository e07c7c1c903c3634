"""Secret stores the registry credentials can come from."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any

from delivery_pipeline.core.secrets.base import SecretResolutionResult, SecretsProvider, SecretsReference


class EnvSecretsProvider(SecretsProvider):
    """Reads the key as an environment variable name."""

    @property
    def provider_name(self) -> str:
        return "env"

    def resolve(self, reference: SecretsReference) -> SecretResolutionResult:
        if reference.key not in os.environ:
            return SecretResolutionResult.missing(reference, f"Environment variable '{reference.key}' not set")
        return SecretResolutionResult.found(reference, os.environ[reference.key])


class FileSecretsProvider(SecretsProvider):
    """Reads the key as a file path, e.g. a mounted Kubernetes secret.

    Relative paths are taken from *base_dir*; one trailing newline is dropped.
    """

    def __init__(self, base_dir: str | Path = ".") -> None:
        self._base_dir = Path(base_dir)

    @property
    def provider_name(self) -> str:
        return "file"

    def resolve(self, reference: SecretsReference) -> SecretResolutionResult:
        path = self._base_dir / reference.key
        if not path.is_file():
            return SecretResolutionResult.missing(reference, f"Secret file '{path}' not found")
        try:
            text = path.read_text()
        except OSError as exc:
            return SecretResolutionResult.failed(reference, str(exc))
        return SecretResolutionResult.found(reference, text.rstrip("\r\n"))


class AwsSecretsProvider(SecretsProvider):
    """Reads the key as an AWS Secrets Manager secret id.

    The boto3 client is created on first use, so the ``aws`` extra is only
    needed when a ``secret://aws/...`` reference is actually resolved.
    """

    def __init__(self, region_name: str | None = None) -> None:
        self._region = region_name
        self._client: Any = None

    @property
    def provider_name(self) -> str:
        return "aws"

    def _secretsmanager(self) -> Any:
        if self._client is None:
            import boto3  # type: ignore[import-untyped]

            self._client = boto3.client("secretsmanager", region_name=self._region)
        return self._client

    def resolve(self, reference: SecretsReference) -> SecretResolutionResult:
        try:
            response = self._secretsmanager().get_secret_value(SecretId=reference.key)
        except Exception as exc:
            return SecretResolutionResult.failed(reference, str(exc))
        if response.get("SecretString") is None:
            return SecretResolutionResult.missing(reference, f"Secret '{reference.key}' has no string value")
        return SecretResolutionResult.found(reference, response["SecretString"])
