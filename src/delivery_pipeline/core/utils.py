"""Shared utility functions."""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any


def safe_call(
    fn: Callable[[], None],
    call_logger: logging.Logger,
    message: str,
    *message_args: Any,
) -> None:
    """Invoke *fn*, logging any exception as a warning instead of raising.

    Used for hooks and audit sinks, whose failures must never change the
    outcome of a pipeline execution.

    Args:
        fn: Zero-argument callable to invoke.
        call_logger: Logger receiving the warning.
        message: ``%s``-style log message template.
        *message_args: Arguments interpolated into *message*.
    """
    try:
        fn()
    except Exception:
        call_logger.warning(message, *message_args, exc_info=True)
