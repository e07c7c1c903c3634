"""Pipeline configuration model."""

from dataclasses import dataclass, field

from .base import Environment
from .hooks import HooksConfig
from .retry import RetryConfig
from .stages import BindingConfig, BuildConfig, ClusterConfig, DeployConfig, RegistryConfig


@dataclass
class PipelineConfig:
    """Top-level configuration for one delivery pipeline.

    Ties together the registry an image is published to, how it is built,
    the manifest it is rolled out with and the cluster it lands on.
    """

    name: str
    """Pipeline name (required)"""

    registry: RegistryConfig
    """Image registry (required)"""

    build: BuildConfig
    """Build stage settings (required)"""

    deploy: DeployConfig
    """Deploy stage settings (required)"""

    cluster: ClusterConfig = field(default_factory=ClusterConfig)
    """Cluster access settings (default: ClusterConfig with defaults)"""

    binding: BindingConfig | None = None
    """Identity binding asserted by the bootstrap command (optional)"""

    hooks: HooksConfig = field(default_factory=HooksConfig)
    """Lifecycle hooks configuration (default: HooksConfig with defaults)"""

    trigger_retry: RetryConfig | None = None
    """Re-trigger failed revisions with backoff (optional)"""

    history_dir: str | None = None
    """Directory for persisted execution records (optional)"""

    environment: Environment = Environment.DEV
    """Deployment environment (default: dev)"""

    tags: dict[str, str] = field(default_factory=dict)
    """Arbitrary key-value tags for metadata (default: {})"""

    def __post_init__(self) -> None:
        """Validate configuration after initialization."""
        if not self.name:
            raise ValueError("name is required")
