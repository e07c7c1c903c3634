"""Base enums for configuration models."""

from enum import Enum


class Environment(str, Enum):
    """Deployment environment types."""

    DEV = "dev"
    STAGING = "staging"
    PROD = "prod"
    TEST = "test"


class LogLevel(str, Enum):
    """Logging levels."""

    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class CredentialSource(str, Enum):
    """Where the registry login credential comes from."""

    SECRET = "secret"
    ECR = "ecr"
    NONE = "none"
