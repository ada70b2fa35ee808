"""Per-location rollup of an athlete's activities."""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Iterable
from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.models.database import Activity, LocationStat
from app.services.store import raise_if_owner_missing

logger = logging.getLogger(__name__)


@dataclass
class LocationTotals:
    country: str
    city: str | None
    activity_count: int
    total_distance: float
    total_time: int
    first_activity: datetime
    last_activity: datetime


def compute_location_stats(activities: Iterable[Activity]) -> dict[tuple[str, str], LocationTotals]:
    """
    Group activities by (country, city) and total them.

    Activities without a city share the ``(country, "")`` group.

    Returns:
        Dict keyed by (country, city-or-empty-string).
    """
    stats: dict[tuple[str, str], LocationTotals] = {}

    for activity in activities:
        key = (activity.country, activity.city or "")
        existing = stats.get(key)

        if existing is None:
            stats[key] = LocationTotals(
                country=activity.country,
                city=activity.city or None,
                activity_count=1,
                total_distance=activity.distance or 0.0,
                total_time=activity.moving_time or 0,
                first_activity=activity.start_date,
                last_activity=activity.start_date,
            )
            continue

        existing.activity_count += 1
        existing.total_distance += activity.distance or 0.0
        existing.total_time += activity.moving_time or 0
        if activity.start_date < existing.first_activity:
            existing.first_activity = activity.start_date
        if activity.start_date > existing.last_activity:
            existing.last_activity = activity.start_date

    return stats


async def recompute_summary(session_maker: async_sessionmaker[AsyncSession], athlete_id: str) -> int:
    """
    Rebuild the athlete's location stats from every stored activity.

    The old rows are deleted and the new set inserted in one transaction,
    so readers see either the previous summary or the new one.

    Returns:
        Number of location rows written.

    Raises:
        OwnerDeleted: if the athlete was deleted before the rows were written.
    """
    async with session_maker() as session:
        result = await session.execute(
            select(Activity).where(Activity.athlete_id == athlete_id)
        )
        stats = compute_location_stats(result.scalars().all())

        await session.execute(delete(LocationStat).where(LocationStat.athlete_id == athlete_id))
        for totals in stats.values():
            session.add(LocationStat(
                athlete_id=athlete_id,
                country=totals.country,
                city=totals.city,
                activity_count=totals.activity_count,
                total_distance=totals.total_distance,
                total_time=totals.total_time,
                first_activity=totals.first_activity,
                last_activity=totals.last_activity,
            ))
        try:
            await session.commit()
        except IntegrityError as e:
            raise_if_owner_missing(e, athlete_id)
            raise

    logger.debug(f"Recomputed {len(stats)} location stats for athlete {athlete_id}")
    return len(stats)
