"""Secret references, lookup results and the provider interface.

Registry passwords in the pipeline configuration may be written as
``secret://PROVIDER/KEY`` instead of a literal value. A provider turns the
key into the secret text.
"""

from __future__ import annotations

import re
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum

SECRET_PATTERN = re.compile(r"^secret://([^/]+)/(.+)$")
"""Regex matching ``secret://PROVIDER/KEY`` references."""


class SecretResolutionStatus(str, Enum):
    SUCCESS = "success"
    NOT_FOUND = "not_found"
    ERROR = "error"


@dataclass(frozen=True)
class SecretsReference:
    """Where a secret lives: a provider name and a key inside it."""

    provider: str
    key: str

    @classmethod
    def parse(cls, value: str) -> SecretsReference | None:
        """Parse a ``secret://PROVIDER/KEY`` string, or return ``None`` for a literal."""
        match = SECRET_PATTERN.match(value)
        if match is None:
            return None
        return cls(provider=match.group(1), key=match.group(2))

    @property
    def uri(self) -> str:
        return f"secret://{self.provider}/{self.key}"


@dataclass
class SecretResolutionResult:
    """Outcome of one lookup. ``repr`` never shows the secret value."""

    reference: SecretsReference
    status: SecretResolutionStatus
    value: str | None = None
    error: str | None = None

    @classmethod
    def found(cls, reference: SecretsReference, value: str) -> SecretResolutionResult:
        return cls(reference, SecretResolutionStatus.SUCCESS, value=value)

    @classmethod
    def missing(cls, reference: SecretsReference, error: str) -> SecretResolutionResult:
        return cls(reference, SecretResolutionStatus.NOT_FOUND, error=error)

    @classmethod
    def failed(cls, reference: SecretsReference, error: str) -> SecretResolutionResult:
        return cls(reference, SecretResolutionStatus.ERROR, error=error)

    @property
    def ok(self) -> bool:
        return self.status is SecretResolutionStatus.SUCCESS and self.value is not None

    def __repr__(self) -> str:
        shown = "***" if self.value is not None else "None"
        return (
            f"SecretResolutionResult(reference={self.reference.uri!r}, "
            f"status={self.status.value!r}, value={shown}, error={self.error!r})"
        )


class SecretsProvider(ABC):
    """Looks up keys in one secret store."""

    @property
    @abstractmethod
    def provider_name(self) -> str:
        """Name used as ``PROVIDER`` in ``secret://PROVIDER/KEY``."""

    @abstractmethod
    def resolve(self, reference: SecretsReference) -> SecretResolutionResult: ...
