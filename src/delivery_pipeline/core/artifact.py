"""Artifact descriptors and the Build -> Deploy image handoff format."""

from __future__ import annotations

import hashlib
import json
import os
import re
import tempfile
from collections.abc import Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import Any

DEFAULT_ALIAS = "latest"
MAX_TAG_LENGTH = 128
TAG_DIGEST_LENGTH = 12

_TAG_PATTERN = re.compile(r"^[A-Za-z0-9_][A-Za-z0-9_.-]{0,127}$")
_INVALID_TAG_CHARS = re.compile(r"[^A-Za-z0-9_.-]")


def compute_tag(source_revision: str) -> str:
    """Derive the content tag for a source revision.

    The result is deterministic and always a valid Docker tag. A revision
    that already is one is used as is. Otherwise characters outside
    ``[A-Za-z0-9_.-]`` become ``-``, a leading ``.`` or ``-`` is prefixed
    with ``r``, and ``-`` plus the first 12 hex digits of the revision's
    SHA-256 are appended, cutting the readable part so the tag fits in 128
    characters. Two revisions that sanitise alike (``feature/x`` and
    ``feature-x``) therefore never share a tag.

    Raises:
        ValueError: If the revision is empty.
    """
    revision = source_revision.strip()
    if not revision:
        raise ValueError("source_revision must not be empty")
    tag = _INVALID_TAG_CHARS.sub("-", revision)
    if tag[0] in ".-":
        tag = "r" + tag
    if tag == source_revision and len(tag) <= MAX_TAG_LENGTH:
        return tag
    digest = hashlib.sha256(source_revision.encode("utf-8")).hexdigest()[:TAG_DIGEST_LENGTH]
    return f"{tag[: MAX_TAG_LENGTH - TAG_DIGEST_LENGTH - 1]}-{digest}"


def is_valid_tag(tag: str) -> bool:
    """Return whether *tag* satisfies the Docker tag grammar."""
    return bool(_TAG_PATTERN.match(tag))


@dataclass(frozen=True)
class ImageDefinition:
    """One entry of the handoff list: a container name and its image URI.

    Serialised as ``{"name": ..., "imageUri": ...}``; the key names are a
    stable contract between the build and deploy stages.
    """

    name: str
    image_uri: str

    def __post_init__(self) -> None:
        if not self.name:
            raise ValueError("name is required")
        if not self.image_uri:
            raise ValueError("image_uri is required")

    def to_dict(self) -> dict[str, str]:
        return {"name": self.name, "imageUri": self.image_uri}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ImageDefinition:
        try:
            return cls(name=str(data["name"]), image_uri=str(data["imageUri"]))
        except KeyError as exc:
            raise ValueError(f"Image definition is missing key {exc}") from None


def dump_image_definitions(definitions: Sequence[ImageDefinition]) -> str:
    """Serialise image definitions to the handoff JSON document."""
    return json.dumps([d.to_dict() for d in definitions], indent=2)


def parse_image_definitions(text: str) -> list[ImageDefinition]:
    """Parse a handoff JSON document.

    Raises:
        ValueError: If the document is not a list of ``{name, imageUri}``.
    """
    data = json.loads(text)
    if not isinstance(data, list):
        raise ValueError("Image definitions must be a JSON list")
    return [ImageDefinition.from_dict(item) for item in data]


def image_definitions_path_for(template: str | Path, tag: str) -> Path:
    """Resolve where the handoff file for the build tagged *tag* goes.

    ``{tag}`` in *template* is replaced by the content tag. A template without
    it gets a directory named after the tag inserted before the file name,
    e.g. ``build/imagedefinitions.json`` becomes
    ``build/abc123/imagedefinitions.json``. Builds of different revisions
    therefore never write the same file.
    """
    text = str(template)
    if "{tag}" in text:
        return Path(text.replace("{tag}", tag))
    path = Path(text)
    return path.parent / tag / path.name


def write_image_definitions(path: str | Path, definitions: Sequence[ImageDefinition]) -> Path:
    """Atomically write the handoff document to *path*, creating parent directories."""
    target = Path(path)
    target.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_path_str = tempfile.mkstemp(dir=str(target.parent), suffix=".tmp")
    tmp_path = Path(tmp_path_str)
    try:
        with os.fdopen(fd, "w") as handle:
            handle.write(dump_image_definitions(definitions) + "\n")
        tmp_path.replace(target)
    except BaseException:
        tmp_path.unlink(missing_ok=True)
        raise
    return target


def read_image_definitions(path: str | Path) -> list[ImageDefinition]:
    """Read a handoff document written by :func:`write_image_definitions`."""
    return parse_image_definitions(Path(path).read_text())


@dataclass(frozen=True)
class ArtifactDescriptor:
    """Immutable identity of one built and published image.

    Args:
        registry: Registry host, e.g. ``123456789012.dkr.ecr.eu-west-1.amazonaws.com``.
        repository: Repository name within the registry.
        tag: Content tag derived from ``source_revision``.
        source_revision: Revision the image was built from.
        alias: Mutable alias pushed alongside the content tag.
        digest: ``sha256:...`` content digest, when the registry reported one.
    """

    registry: str
    repository: str
    tag: str
    source_revision: str
    alias: str = DEFAULT_ALIAS
    digest: str | None = None

    def __post_init__(self) -> None:
        if not self.registry:
            raise ValueError("registry is required")
        if not self.repository:
            raise ValueError("repository is required")
        if not is_valid_tag(self.tag):
            raise ValueError(f"Invalid image tag: {self.tag!r}")
        if not is_valid_tag(self.alias):
            raise ValueError(f"Invalid image alias: {self.alias!r}")
        if not self.source_revision:
            raise ValueError("source_revision is required")

    @classmethod
    def for_revision(
        cls,
        registry: str,
        repository: str,
        source_revision: str,
        alias: str = DEFAULT_ALIAS,
        digest: str | None = None,
    ) -> ArtifactDescriptor:
        """Build a descriptor whose tag is computed from *source_revision*."""
        return cls(
            registry=registry,
            repository=repository,
            tag=compute_tag(source_revision),
            source_revision=source_revision,
            alias=alias,
            digest=digest,
        )

    @property
    def repository_uri(self) -> str:
        return f"{self.registry}/{self.repository}"

    @property
    def image_uri(self) -> str:
        """URI of the content tag, e.g. ``registry/app:abc123``."""
        return f"{self.repository_uri}:{self.tag}"

    @property
    def alias_uri(self) -> str:
        return f"{self.repository_uri}:{self.alias}"

    @property
    def digest_uri(self) -> str | None:
        if self.digest is None:
            return None
        return f"{self.repository_uri}@{self.digest}"

    def image_definitions(self, container_name: str) -> list[ImageDefinition]:
        """Return the handoff list binding *container_name* to this image."""
        return [ImageDefinition(name=container_name, image_uri=self.image_uri)]

    def to_dict(self) -> dict[str, Any]:
        return {
            "registry": self.registry,
            "repository": self.repository,
            "tag": self.tag,
            "alias": self.alias,
            "digest": self.digest,
            "source_revision": self.source_revision,
            "image_uri": self.image_uri,
        }
