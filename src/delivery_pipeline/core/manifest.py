"""Manifest templates and image substitution.

A :class:`ManifestSet` holds the declarative cluster target (one workload and
optionally a Service) with ``${image:<container>}`` placeholders.  Rendering is
a pure function: the template is never modified, so one set can be rendered
for many executions.
"""

from __future__ import annotations

import copy
import re
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from delivery_pipeline.core.artifact import ImageDefinition
from delivery_pipeline.core.errors import ManifestError

PLACEHOLDER_PATTERN = re.compile(r"\$\{image:([A-Za-z0-9_.-]+)\}")
"""Regex matching ``${image:NAME}`` placeholders."""

WORKLOAD_KINDS = frozenset({"Deployment", "StatefulSet"})


def _substitute(value: Any, images: Mapping[str, str]) -> Any:
    if isinstance(value, str):

        def replace(match: re.Match[str]) -> str:
            name = match.group(1)
            if name not in images:
                raise ManifestError(f"No image definition for container '{name}'")
            return images[name]

        return PLACEHOLDER_PATTERN.sub(replace, value)
    if isinstance(value, Mapping):
        return {key: _substitute(item, images) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [_substitute(item, images) for item in value]
    return copy.deepcopy(value)


def render_manifest(
    documents: Sequence[Mapping[str, Any]],
    image_definitions: Sequence[ImageDefinition],
) -> tuple[dict[str, Any], ...]:
    """Return concrete documents with every image placeholder substituted.

    Args:
        documents: Template documents; left untouched.
        image_definitions: Handoff list produced by the build stage.

    Returns:
        New documents sharing no mutable state with *documents*.

    Raises:
        ManifestError: If a placeholder names a container with no image.
    """
    images = {d.name: d.image_uri for d in image_definitions}
    return tuple(_substitute(doc, images) for doc in documents)


def find_placeholders(documents: Sequence[Mapping[str, Any]]) -> set[str]:
    """Return the container names referenced by placeholders."""
    found: set[str] = set()

    def walk(value: Any) -> None:
        if isinstance(value, str):
            found.update(PLACEHOLDER_PATTERN.findall(value))
        elif isinstance(value, Mapping):
            for item in value.values():
                walk(item)
        elif isinstance(value, (list, tuple)):
            for item in value:
                walk(item)

    for doc in documents:
        walk(doc)
    return found


@dataclass(frozen=True)
class WorkloadTarget:
    """What the rollout coordinator observes after applying a manifest."""

    kind: str
    name: str
    namespace: str
    replicas: int
    selector: dict[str, str] = field(default_factory=dict)
    service_name: str | None = None
    exposed: bool = False


@dataclass(frozen=True)
class ManifestSet:
    """Workload and network-exposure templates for one application.

    Args:
        documents: Kubernetes documents in apply order.
        namespace: Namespace used for documents that do not set one.
    """

    documents: tuple[dict[str, Any], ...]
    namespace: str = "default"

    def __post_init__(self) -> None:
        if not self.documents:
            raise ManifestError("Manifest set contains no documents")
        for doc in self.documents:
            if not isinstance(doc, Mapping) or "kind" not in doc:
                raise ManifestError("Every manifest document must be a mapping with a 'kind'")
        workloads = [d for d in self.documents if d["kind"] in WORKLOAD_KINDS]
        if len(workloads) != 1:
            raise ManifestError(f"Manifest set must contain exactly one workload, found {len(workloads)}")
        if not (workloads[0].get("metadata") or {}).get("name"):
            raise ManifestError("Workload metadata.name is required")

    @classmethod
    def from_string(cls, text: str, namespace: str = "default") -> ManifestSet:
        """Parse a multi-document YAML (or JSON) string."""
        try:
            docs = [d for d in yaml.safe_load_all(text) if d is not None]
        except yaml.YAMLError as exc:
            raise ManifestError(f"Manifest is not valid YAML: {exc}", cause=exc) from exc
        return cls(documents=tuple(docs), namespace=namespace)

    @classmethod
    def from_file(cls, path: str | Path, namespace: str = "default") -> ManifestSet:
        try:
            text = Path(path).read_text()
        except OSError as exc:
            raise ManifestError(f"Cannot read manifest {path}: {exc}", cause=exc) from exc
        return cls.from_string(text, namespace=namespace)

    @property
    def placeholders(self) -> set[str]:
        return find_placeholders(self.documents)

    @property
    def target(self) -> WorkloadTarget:
        workload = next(d for d in self.documents if d["kind"] in WORKLOAD_KINDS)
        metadata = workload.get("metadata") or {}
        spec = workload.get("spec") or {}
        selector = (spec.get("selector") or {}).get("matchLabels") or {}

        service = next((d for d in self.documents if d["kind"] == "Service"), None)
        service_name: str | None = None
        exposed = False
        if service is not None:
            service_name = (service.get("metadata") or {}).get("name")
            exposed = (service.get("spec") or {}).get("type") == "LoadBalancer"

        return WorkloadTarget(
            kind=workload["kind"],
            name=metadata.get("name", ""),
            namespace=metadata.get("namespace", self.namespace),
            replicas=int(spec.get("replicas", 1)),
            selector={str(k): str(v) for k, v in selector.items()},
            service_name=service_name,
            exposed=exposed,
        )

    def render(self, image_definitions: Sequence[ImageDefinition]) -> tuple[dict[str, Any], ...]:
        """Render this set for a build's image definitions."""
        return render_manifest(self.documents, image_definitions)
