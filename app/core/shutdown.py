"""Cooperative cancellation, background run tracking and graceful shutdown.

Syncs run as detached asyncio tasks held in ``SyncRuns`` rather than as
request-scoped background tasks. The server does not wait for them when it
stops accepting requests, so the lifespan exit is what tells them to stop:
it cancels the token, waits for the runs to reach a page boundary, then
marks anything still SYNCING as FAILED.
"""

import asyncio
import logging
from typing import Coroutine, Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.services.store import ActivityStore

logger = logging.getLogger(__name__)


class CancellationToken:
    """Explicit shutdown signal handed to every sync run."""

    def __init__(self):
        self._event = asyncio.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()


class SyncRuns:
    """Registry of in-flight sync tasks."""

    def __init__(self):
        self._tasks: set[asyncio.Task] = set()

    def spawn(self, coro: Coroutine, name: Optional[str] = None) -> asyncio.Task:
        task = asyncio.create_task(coro, name=name)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    @property
    def active(self) -> int:
        return len(self._tasks)

    async def drain(self, timeout: Optional[float] = None) -> None:
        """
        Wait for every tracked run to finish.

        Runs still going after ``timeout`` seconds are cancelled outright.
        """
        if not self._tasks:
            return

        tasks = set(self._tasks)
        logger.info(f"Waiting for {len(tasks)} sync run(s) to stop")
        _, pending = await asyncio.wait(tasks, timeout=timeout)
        if pending:
            logger.warning(f"{len(pending)} sync run(s) still busy after {timeout}s, cancelling")
            for task in pending:
                task.cancel()
            await asyncio.gather(*pending, return_exceptions=True)


# Process-wide instances owned by the application lifespan
shutdown_token = CancellationToken()
sync_runs = SyncRuns()


def get_shutdown_token() -> CancellationToken:
    """Dependency returning the process-wide cancellation token."""
    return shutdown_token


def get_sync_runs() -> SyncRuns:
    """Dependency returning the process-wide run registry."""
    return sync_runs


async def graceful_shutdown(
    token: CancellationToken,
    session_maker: async_sessionmaker[AsyncSession],
    runs: Optional[SyncRuns] = None,
    grace_seconds: Optional[float] = None,
) -> int:
    """
    Stop in-flight syncs and mark them resumable.

    Cancels the token so running syncs exit at their next page boundary,
    waits up to ``grace_seconds`` for them, then flips every SYNCING athlete
    to FAILED.

    Returns:
        Number of syncs marked failed (0 if already shutting down).
    """
    if token.cancelled:
        logger.info("Already shutting down, ignoring")
        return 0

    logger.info("Starting graceful shutdown")
    token.cancel()

    if runs is not None:
        await runs.drain(grace_seconds)

    try:
        count = await ActivityStore(session_maker).fail_syncing_owners()
        logger.info(f"Cancelled {count} in-progress sync(s)")
        return count
    except Exception as e:
        logger.error(f"Error cancelling syncs during shutdown: {e}")
        return 0
