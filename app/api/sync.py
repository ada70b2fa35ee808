"""Sync API endpoints."""

import logging
from datetime import datetime
from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core.config import get_settings
from app.core.database import get_session_maker
from app.core.shutdown import CancellationToken, SyncRuns, get_shutdown_token, get_sync_runs
from app.models.database import SyncStatus
from app.schemas.responses import AthleteRequest, SyncResponse, SyncStatusResponse
from app.services.errors import SyncAlreadyRunning
from app.services.store import ActivityStore
from app.services.sync import SyncLocks, SyncService, build_sync_service, get_sync_locks

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/sync", tags=["sync"])


def get_sync_service(
    session_maker: async_sessionmaker[AsyncSession] = Depends(get_session_maker),
    locks: SyncLocks = Depends(get_sync_locks),
) -> SyncService:
    """Create a sync service instance."""
    return build_sync_service(get_settings(), session_maker, locks)


async def _run_sync_in_background(
    sync_service: SyncService,
    athlete_id: str,
    token: CancellationToken,
):
    """Detached task running one sync. The lease is already held."""
    try:
        await sync_service.sync_activities(athlete_id, token, lease_acquired=True)
    except Exception as e:
        logger.error(f"Background sync error for athlete {athlete_id}: {e}")
    finally:
        await sync_service.close()


async def _acquire_lease(locks: SyncLocks, athlete_id: str) -> None:
    try:
        await locks.acquire(athlete_id)
    except SyncAlreadyRunning:
        raise HTTPException(
            status_code=409,
            detail=f"A sync is already running for athlete {athlete_id}. Check /api/sync/status/{athlete_id} for progress.",
        )


@router.post("", response_model=SyncResponse)
async def start_sync(
    request: AthleteRequest,
    session_maker: async_sessionmaker[AsyncSession] = Depends(get_session_maker),
    locks: SyncLocks = Depends(get_sync_locks),
    token: CancellationToken = Depends(get_shutdown_token),
    runs: SyncRuns = Depends(get_sync_runs),
    sync_service: SyncService = Depends(get_sync_service),
):
    """Start (or resume) a sync for an athlete. Runs in the background."""
    if token.cancelled:
        raise HTTPException(status_code=503, detail="Server is shutting down")

    store = ActivityStore(session_maker)
    if not await store.owner_exists(request.athlete_id):
        raise HTTPException(status_code=404, detail=f"Athlete {request.athlete_id} not found")

    await _acquire_lease(locks, request.athlete_id)
    runs.spawn(
        _run_sync_in_background(sync_service, request.athlete_id, token),
        name=f"sync-{request.athlete_id}",
    )

    return SyncResponse(status="syncing", athlete_id=request.athlete_id)


@router.get("/status/{athlete_id}", response_model=SyncStatusResponse)
async def sync_status(
    athlete_id: str,
    session_maker: async_sessionmaker[AsyncSession] = Depends(get_session_maker),
    locks: SyncLocks = Depends(get_sync_locks),
):
    """Get sync progress fields for an athlete."""
    store = ActivityStore(session_maker)
    owner = await store.get_owner(athlete_id)
    if owner is None:
        raise HTTPException(status_code=404, detail=f"Athlete {athlete_id} not found")

    return SyncStatusResponse(
        athlete_id=owner.athlete_id,
        sync_status=owner.sync_status,
        sync_progress=owner.sync_progress or 0,
        sync_total=owner.sync_total,
        sync_started_at=owner.sync_started_at,
        sync_last_activity_at=owner.sync_last_activity_at,
        last_sync_at=owner.last_sync_at,
        is_running=locks.is_running(athlete_id),
        activity_count=await store.count_activities(athlete_id),
    )


@router.post("/clear-and-resync", response_model=SyncResponse)
async def clear_and_resync(
    request: AthleteRequest,
    session_maker: async_sessionmaker[AsyncSession] = Depends(get_session_maker),
    locks: SyncLocks = Depends(get_sync_locks),
    token: CancellationToken = Depends(get_shutdown_token),
    runs: SyncRuns = Depends(get_sync_runs),
    sync_service: SyncService = Depends(get_sync_service),
):
    """Delete all stored activities and summaries, then sync from scratch."""
    if token.cancelled:
        raise HTTPException(status_code=503, detail="Server is shutting down")

    store = ActivityStore(session_maker)
    if not await store.owner_exists(request.athlete_id):
        raise HTTPException(status_code=404, detail=f"Athlete {request.athlete_id} not found")

    await _acquire_lease(locks, request.athlete_id)
    try:
        logger.info(f"Clearing location data for athlete {request.athlete_id}")
        await store.clear_location_data(request.athlete_id)
        await store.update_owner(
            request.athlete_id,
            sync_status=SyncStatus.SYNCING,
            sync_progress=0,
            sync_started_at=datetime.utcnow(),
        )
    except Exception:
        await locks.release(request.athlete_id)
        raise

    logger.info(f"Location data cleared, starting fresh sync for athlete {request.athlete_id}")
    runs.spawn(
        _run_sync_in_background(sync_service, request.athlete_id, token),
        name=f"sync-{request.athlete_id}",
    )

    return SyncResponse(status="syncing", athlete_id=request.athlete_id)
