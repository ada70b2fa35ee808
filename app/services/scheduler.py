"""APScheduler setup for the stale sync reaper."""

import logging
from datetime import datetime, timedelta
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core.config import get_settings
from app.core.database import async_session_maker
from app.services.store import ActivityStore
from app.services.sync import SyncLocks, sync_locks

logger = logging.getLogger(__name__)

# Global scheduler instance
scheduler: AsyncIOScheduler | None = None


async def fail_stale_syncs(
    session_maker: async_sessionmaker[AsyncSession] = async_session_maker,
    locks: SyncLocks = sync_locks,
    stale_minutes: int | None = None,
) -> int:
    """
    Mark syncs FAILED whose heartbeat has gone quiet.

    A SYNCING athlete with no progress for ``stale_minutes`` and no lease in
    this process belongs to a run that died (crash, redeploy). Flipping it to
    FAILED lets the user resume instead of waiting forever.
    """
    if stale_minutes is None:
        stale_minutes = get_settings().stale_sync_minutes
    cutoff = datetime.utcnow() - timedelta(minutes=stale_minutes)

    count = await ActivityStore(session_maker).fail_syncing_owners(
        stale_before=cutoff,
        exclude=locks.active,
    )
    if count:
        logger.warning(f"Marked {count} stale sync(s) as failed (no progress since {cutoff})")
    return count


async def run_stale_sync_check():
    """Scheduled job wrapper; never lets an error kill the scheduler."""
    try:
        await fail_stale_syncs()
    except Exception as e:
        logger.error(f"Stale sync check failed: {e}")


def start_scheduler():
    """Start the APScheduler."""
    global scheduler

    if scheduler is not None:
        logger.warning("Scheduler already started")
        return

    settings = get_settings()
    scheduler = AsyncIOScheduler()

    scheduler.add_job(
        run_stale_sync_check,
        IntervalTrigger(minutes=settings.stale_check_minutes),
        id="stale_sync_check",
        name="Fail syncs with no recent progress",
        replace_existing=True
    )

    scheduler.start()
    logger.info(f"Scheduler started - stale sync check every {settings.stale_check_minutes} minutes")


def stop_scheduler():
    """Stop the APScheduler."""
    global scheduler

    if scheduler is not None:
        scheduler.shutdown()
        scheduler = None
        logger.info("Scheduler stopped")
