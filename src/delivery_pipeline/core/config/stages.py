"""Registry, build, deploy, cluster and binding configuration models."""

from dataclasses import dataclass, field

from delivery_pipeline.core.artifact import DEFAULT_ALIAS, is_valid_tag
from delivery_pipeline.core.config.base import CredentialSource


@dataclass
class RegistryConfig:
    """Where built images are published."""

    host: str
    """Registry host, e.g. ``123456789012.dkr.ecr.eu-west-1.amazonaws.com`` (required)"""

    repository: str
    """Repository name within the registry (required)"""

    alias: str = DEFAULT_ALIAS
    """Mutable alias pushed with every build (default: latest)"""

    credential_source: CredentialSource = CredentialSource.SECRET
    """How the login credential is obtained (default: secret)"""

    username: str = ""
    """Login user name; may be a ``secret://PROVIDER/KEY`` reference"""

    password: str = ""
    """Login password; should be a ``secret://PROVIDER/KEY`` reference"""

    region: str | None = None
    """AWS region for ECR credentials (optional)"""

    def __post_init__(self) -> None:
        """Validate configuration after initialization."""
        if not self.host:
            raise ValueError("host is required")
        if not self.repository:
            raise ValueError("repository is required")
        if not is_valid_tag(self.alias):
            raise ValueError(f"alias {self.alias!r} is not a valid image tag")
        if self.credential_source is CredentialSource.SECRET and not (self.username and self.password):
            raise ValueError("username and password are required when credential_source is 'secret'")


@dataclass
class BuildConfig:
    """How the build collaborator is invoked."""

    context: str = "."
    """Build context directory (default: .)"""

    dockerfile: str = "Dockerfile"
    """Dockerfile path (default: Dockerfile)"""

    docker: str = "docker"
    """Build tool executable (default: docker)"""

    build_args: dict[str, str] = field(default_factory=dict)
    """Extra ``--build-arg`` values (default: {})"""

    timeout_seconds: float = 1800.0
    """Build stage timeout in seconds (default: 1800)"""

    image_definitions_path: str | None = None
    """Handoff file path; ``{tag}`` expands to the content tag, otherwise a per-tag directory is added (optional)"""

    def __post_init__(self) -> None:
        """Validate configuration after initialization."""
        if not self.docker:
            raise ValueError("docker is required")
        if self.timeout_seconds <= 0:
            raise ValueError("timeout_seconds must be positive")


@dataclass(frozen=True)
class PollConfig:
    """Bounded poll loop used while waiting for a rollout to converge."""

    interval_seconds: float = 5.0
    """Delay between cluster observations in seconds (default: 5)"""

    timeout_seconds: float = 120.0
    """Give up after this many seconds (default: 120)"""

    def __post_init__(self) -> None:
        """Validate configuration after initialization."""
        if self.interval_seconds <= 0:
            raise ValueError("interval_seconds must be positive")
        if self.timeout_seconds < self.interval_seconds:
            raise ValueError("timeout_seconds must be >= interval_seconds")


@dataclass
class DeployConfig:
    """How the manifest set is rolled out."""

    manifest_path: str
    """Path to the manifest template (required)"""

    container_name: str
    """Container the built image is bound to (required)"""

    namespace: str = "default"
    """Namespace for documents that do not set one (default: default)"""

    timeout_seconds: float = 600.0
    """Deploy stage timeout in seconds, lease wait excluded (default: 600)"""

    lease_timeout_seconds: float = 3600.0
    """Maximum wait for the deploy lease in seconds (default: 3600)"""

    poll: PollConfig = field(default_factory=PollConfig)
    """Rollout poll loop settings"""

    def __post_init__(self) -> None:
        """Validate configuration after initialization."""
        if not self.manifest_path:
            raise ValueError("manifest_path is required")
        if not self.container_name:
            raise ValueError("container_name is required")
        if self.timeout_seconds <= 0:
            raise ValueError("timeout_seconds must be positive")
        if self.lease_timeout_seconds <= 0:
            raise ValueError("lease_timeout_seconds must be positive")


@dataclass
class ClusterConfig:
    """How the cluster collaborator is reached."""

    kubectl: str = "kubectl"
    """kubectl executable (default: kubectl)"""

    context: str | None = None
    """kubeconfig context (optional)"""

    kubeconfig: str | None = None
    """kubeconfig path (optional)"""

    request_timeout_seconds: float = 30.0
    """Timeout for a single cluster request in seconds (default: 30)"""

    def __post_init__(self) -> None:
        """Validate configuration after initialization."""
        if self.request_timeout_seconds <= 0:
            raise ValueError("request_timeout_seconds must be positive")


@dataclass
class BindingConfig:
    """Cluster privileges granted to the orchestrator's identity."""

    identity: str
    """IAM role ARN the orchestrator runs as (required)"""

    username: str = "delivery-pipeline"
    """Kubernetes user name mapped to the identity (default: delivery-pipeline)"""

    privileges: list[str] = field(default_factory=lambda: ["system:masters"])
    """Kubernetes groups required (default: ['system:masters'])"""

    def __post_init__(self) -> None:
        """Validate configuration after initialization."""
        if not self.identity:
            raise ValueError("identity is required")
        if not self.privileges:
            raise ValueError("privileges must not be empty")
