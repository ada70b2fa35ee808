"""Retry with backoff for provider calls."""

import asyncio
import logging
from typing import Any, Awaitable, Callable, TypeVar

from app.services.errors import OwnerDeleted, StravaError

logger = logging.getLogger(__name__)

T = TypeVar("T")

BASE_DELAY = 1.0


def _retry_delay(error: Exception, attempt: int, base_delay: float) -> float | None:
    if isinstance(error, OwnerDeleted):
        return None
    if isinstance(error, StravaError):
        return error.retry_delay(attempt, base_delay)
    # Anything outside the provider taxonomy is treated as transient
    return base_delay * (2 ** attempt)


async def with_retry(
    operation: Callable[[], Awaitable[T]],
    max_attempts: int = 3,
    base_delay: float = BASE_DELAY,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    description: str = "operation",
) -> T:
    """
    Run ``operation`` until it succeeds or ``max_attempts`` is used up.

    Throttling waits the provider's retry-after (900s if missing), other
    failures back off exponentially (1s, 2s, 4s, ...). Errors whose delay is
    None are raised immediately.

    Raises:
        The last error once attempts are exhausted.
    """
    for attempt in range(max_attempts):
        try:
            return await operation()
        except Exception as e:
            delay = _retry_delay(e, attempt, base_delay)
            if delay is None or attempt >= max_attempts - 1:
                raise
            logger.warning(
                f"{description} failed ({e}), retrying in {delay:.0f}s "
                f"(attempt {attempt + 1}/{max_attempts})"
            )
            await sleep(delay)

    raise ValueError("max_attempts must be at least 1")
