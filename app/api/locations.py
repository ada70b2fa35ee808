"""Location summary and account endpoints."""

import logging
from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core.database import get_session_maker
from app.schemas.responses import (
    AthleteRequest,
    DisconnectResponse,
    LocationStatResponse,
    UpdateStatsResponse,
)
from app.services.aggregator import recompute_summary
from app.services.store import ActivityStore

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["locations"])


@router.get("/locations/{athlete_id}", response_model=list[LocationStatResponse])
async def get_locations(
    athlete_id: str,
    session_maker: async_sessionmaker[AsyncSession] = Depends(get_session_maker),
):
    """Location summary rows, most visited first."""
    store = ActivityStore(session_maker)
    if not await store.owner_exists(athlete_id):
        raise HTTPException(status_code=404, detail=f"Athlete {athlete_id} not found")

    stats = await store.list_location_stats(athlete_id)
    return [LocationStatResponse.model_validate(stat) for stat in stats]


@router.post("/update-stats", response_model=UpdateStatsResponse)
async def update_stats(
    request: AthleteRequest,
    session_maker: async_sessionmaker[AsyncSession] = Depends(get_session_maker),
):
    """Rebuild the location summary from stored activities."""
    store = ActivityStore(session_maker)
    if not await store.owner_exists(request.athlete_id):
        raise HTTPException(status_code=404, detail=f"Athlete {request.athlete_id} not found")

    logger.info(f"Updating stats for athlete {request.athlete_id}")
    count = await recompute_summary(session_maker, request.athlete_id)
    logger.info(f"Created {count} location stat records for athlete {request.athlete_id}")

    return UpdateStatsResponse(success=True, stats_count=count)


@router.post("/disconnect", response_model=DisconnectResponse)
async def disconnect(
    request: AthleteRequest,
    session_maker: async_sessionmaker[AsyncSession] = Depends(get_session_maker),
):
    """
    Delete everything stored for an athlete: summaries, activities, tokens
    and the athlete itself. A sync still running for them stops at its next
    check without writing anything further.
    """
    logger.info(f"Deleting all data for athlete {request.athlete_id}")
    deleted = await ActivityStore(session_maker).delete_owner(request.athlete_id)
    if not deleted:
        raise HTTPException(status_code=404, detail=f"Athlete {request.athlete_id} not found")

    logger.info(f"Deleted all data for athlete {request.athlete_id}")
    return DisconnectResponse(success=True, message="All data deleted successfully")
