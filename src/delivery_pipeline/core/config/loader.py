"""HOCON configuration loader using dataconf."""

from typing import TypeVar, cast

import dataconf

T = TypeVar("T")


def load_from_file(path: str, config_class: type[T]) -> T:
    """Load configuration from a HOCON file.

    Example:
        >>> config = load_from_file("pipeline.conf", PipelineConfig)
    """
    return cast(T, dataconf.file(path, config_class))


def load_from_string(hocon_str: str, config_class: type[T]) -> T:
    """Load configuration from a HOCON string.

    Example:
        >>> hocon = '''
        ... {
        ...   host: "registry.example.com"
        ...   repository: "app"
        ...   credential_source: "none"
        ... }
        ... '''
        >>> registry = load_from_string(hocon, RegistryConfig)
    """
    return cast(T, dataconf.string(hocon_str, config_class))


def load_from_env(prefix: str, config_class: type[T]) -> T:
    """Load configuration from environment variables.

    Variables use ``PREFIX_FIELD_NAME=value``; nested fields are joined with
    underscores, e.g. ``DPO_REGISTRY_HOST=registry.example.com``.
    """
    return cast(T, dataconf.env(prefix, config_class))
