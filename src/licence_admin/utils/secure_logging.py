"""Logging helpers that keep sensitive data out of production logs."""

import logging
import re
from functools import lru_cache
from typing import Any

from licence_admin.config import get_settings

MAX_MESSAGE_LENGTH = 200

_REDACTIONS = (
    # Connection strings and URLs
    (re.compile(r"(postgresql|postgres|sqlite|http|https)(\+\w+)?://[^\s]+"), "[URL]"),
    # File paths (Unix and Windows)
    (re.compile(r"['\"]?(/[a-zA-Z0-9_./\-]+|[A-Z]:\\[^\s'\"]+)['\"]?"), "[PATH]"),
    (re.compile(r"[a-zA-Z0-9_.+-]+@[a-zA-Z0-9-]+\.[a-zA-Z0-9-.]+"), "[EMAIL]"),
    # Long opaque strings (API keys, tokens)
    (re.compile(r"[a-zA-Z0-9_\-]{32,}"), "[TOKEN]"),
)


@lru_cache(maxsize=1)
def is_debug_mode() -> bool:
    """Check if application is running in debug mode."""
    return get_settings().debug


def sanitize_exception_message(error: Exception, max_length: int = MAX_MESSAGE_LENGTH) -> str:
    """Redact paths, URLs, email addresses and tokens from an error message.

    Args:
        error: The exception to sanitize
        max_length: Truncate the result to this many characters

    Returns:
        Sanitized error message
    """
    message = str(error) or type(error).__name__
    for pattern, replacement in _REDACTIONS:
        message = pattern.sub(replacement, message)

    if len(message) > max_length:
        message = message[: max_length - 3] + "..."
    return message


def describe_error(error: Exception) -> str:
    """Short ``Type: message`` text suitable for persisting on a record."""
    return f"{type(error).__name__}: {sanitize_exception_message(error, max_length=500)}"


def _log(
    logger: logging.Logger,
    level: int,
    message: str,
    error: Exception | None,
    exc_info: bool,
    extra: dict[str, Any],
) -> None:
    if is_debug_mode():
        if error:
            logger.log(level, f"{message}: {error}", exc_info=exc_info, extra=extra)
        else:
            logger.log(level, message, extra=extra)
    elif error:
        logger.log(level, f"{message}: {sanitize_exception_message(error)}")
    else:
        logger.log(level, message)


def log_error(
    logger: logging.Logger,
    message: str,
    error: Exception | None = None,
    **kwargs: Any,
) -> None:
    """Log an error with full detail in debug mode, sanitized otherwise.

    Args:
        logger: The logger instance to use
        message: The log message (should be generic, no sensitive data)
        error: Optional exception to include
        **kwargs: Additional context, only attached in debug mode
    """
    _log(logger, logging.ERROR, message, error, exc_info=True, extra=kwargs)


def log_warning(
    logger: logging.Logger,
    message: str,
    error: Exception | None = None,
    **kwargs: Any,
) -> None:
    """Log a warning with full detail in debug mode, sanitized otherwise."""
    _log(logger, logging.WARNING, message, error, exc_info=False, extra=kwargs)
