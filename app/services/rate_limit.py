"""Minimum-interval rate limiter shared across concurrent callers."""

import asyncio
import time
from typing import Awaitable, Callable


class RateLimiter:
    """
    Serializes callers so that consecutive ``acquire`` calls are at least
    ``min_interval_ms`` apart, process-wide for whoever shares the instance.

    The lock is held while sleeping, so waiting callers queue in order.
    """

    def __init__(
        self,
        min_interval_ms: int,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.min_interval = min_interval_ms / 1000.0
        self._clock = clock
        self._sleep = sleep
        self._lock = asyncio.Lock()
        self._last_call: float | None = None

    async def acquire(self) -> None:
        """Block until the interval since the previous call has elapsed."""
        async with self._lock:
            if self._last_call is not None and self.min_interval > 0:
                elapsed = self._clock() - self._last_call
                if elapsed < self.min_interval:
                    await self._sleep(self.min_interval - elapsed)
            self._last_call = self._clock()
