"""Stage identifiers shared by results, errors and hooks."""

from enum import Enum


class Stage(str, Enum):
    """Phases of a pipeline execution."""

    SOURCE = "source"
    BUILD = "build"
    DEPLOY = "deploy"


class StageStatus(str, Enum):
    """Outcome of a single stage attempt."""

    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELLED = "cancelled"
