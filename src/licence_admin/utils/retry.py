"""Bounded retry with exponential backoff for batch-level operations."""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import TypeVar

from licence_admin.exceptions import TransientInfrastructureError

logger = logging.getLogger(__name__)

T = TypeVar("T")


async def retry_transient(
    operation: Callable[[], Awaitable[T]],
    attempts: int = 3,
    base_delay: float = 2.0,
    multiplier: float = 2.0,
    timeout: float | None = None,
    description: str = "operation",
) -> T:
    """Run ``operation``, retrying only on transient infrastructure errors.

    Each attempt is bounded by ``timeout``; a timeout counts as transient.

    Args:
        operation: Zero-argument coroutine factory
        attempts: Total attempts including the first
        base_delay: Delay before the first retry, in seconds
        multiplier: Delay growth factor per retry
        timeout: Per-attempt timeout in seconds (None for no limit)
        description: Label used in log messages

    Returns:
        The operation's result

    Raises:
        TransientInfrastructureError: When every attempt failed transiently
    """
    attempts = max(1, attempts)
    last_error = TransientInfrastructureError(f"{description} was not attempted")
    for attempt in range(attempts):
        try:
            if timeout is None:
                return await operation()
            return await asyncio.wait_for(operation(), timeout=timeout)
        except TimeoutError as e:
            last_error = TransientInfrastructureError(f"{description} timed out after {timeout}s")
            last_error.__cause__ = e
        except TransientInfrastructureError as e:
            last_error = e

        if attempt < attempts - 1:
            delay = base_delay * (multiplier**attempt)
            logger.warning(
                f"{description} failed ({last_error.message}), "
                f"retrying in {delay}s (attempt {attempt + 2}/{attempts})"
            )
            await asyncio.sleep(delay)

    raise last_error
