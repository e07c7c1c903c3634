"""Core models: artifacts, manifests, results, errors and configuration."""

from delivery_pipeline.core.artifact import (
    ArtifactDescriptor,
    ImageDefinition,
    compute_tag,
    read_image_definitions,
    write_image_definitions,
)
from delivery_pipeline.core.errors import (
    AuthError,
    BuildError,
    BuildTimeout,
    CollaboratorUnavailable,
    ErrorKind,
    ManifestError,
    PipelineError,
    RolloutError,
    RolloutTimeout,
    RolloutUnhealthy,
    Severity,
    StageCancelled,
    StageFailed,
    StageTimeout,
)
from delivery_pipeline.core.manifest import ManifestSet, WorkloadTarget, render_manifest
from delivery_pipeline.core.result import StageResult
from delivery_pipeline.core.types import Stage, StageStatus

__all__ = [
    "ArtifactDescriptor",
    "AuthError",
    "BuildError",
    "BuildTimeout",
    "CollaboratorUnavailable",
    "ErrorKind",
    "ImageDefinition",
    "ManifestError",
    "ManifestSet",
    "PipelineError",
    "RolloutError",
    "RolloutTimeout",
    "RolloutUnhealthy",
    "Severity",
    "Stage",
    "StageCancelled",
    "StageFailed",
    "StageResult",
    "StageStatus",
    "StageTimeout",
    "WorkloadTarget",
    "compute_tag",
    "read_image_definitions",
    "render_manifest",
    "write_image_definitions",
]
