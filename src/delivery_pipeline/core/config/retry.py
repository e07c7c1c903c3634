"""Re-trigger policy configuration."""

from dataclasses import dataclass, field


@dataclass(frozen=True)
class RetryConfig:
    """Exponential backoff for re-triggering a failed revision.

    Retries happen at the trigger layer: each attempt is a brand new
    execution, never a retry inside a stage.
    """

    max_attempts: int = 3
    """Maximum number of executions per revision, including the first (default: 3)"""

    initial_delay_seconds: float = 30.0
    """Delay before the first re-trigger in seconds (default: 30.0)"""

    max_delay_seconds: float = 600.0
    """Upper bound on the delay between re-triggers in seconds (default: 600.0)"""

    backoff_multiplier: float = 2.0
    """Multiplier for exponential backoff (default: 2.0)"""

    retry_on_kinds: list[str] = field(default_factory=list)
    """Error kinds to re-trigger on. Empty means every error marked retryable (default: [])"""

    def __post_init__(self) -> None:
        """Validate configuration after initialization."""
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.initial_delay_seconds <= 0:
            raise ValueError("initial_delay_seconds must be positive")
        if self.max_delay_seconds < self.initial_delay_seconds:
            raise ValueError("max_delay_seconds must be >= initial_delay_seconds")
        if self.backoff_multiplier < 1.0:
            raise ValueError("backoff_multiplier must be >= 1.0")
