"""
Sync orchestration - pages through Strava, enriches locations, stores
activities and keeps the location summary current.

A run walks every page of the athlete's activities from page 1. Activities
already stored with a resolved country are skipped, so a resumed run only
pays for the detail/geocode calls it has not done yet. Progress, written
batches and the summary are committed as the run goes, which keeps the
dashboard live and makes a crashed or throttled run cheap to resume.
"""

import asyncio
import logging
from datetime import datetime, timezone
from functools import lru_cache, partial
from typing import Any, Awaitable, Callable, Optional
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core.config import Settings
from app.core.shutdown import CancellationToken
from app.models.database import UNKNOWN_COUNTRY, SyncStatus
from app.services.aggregator import recompute_summary
from app.services.errors import OwnerDeleted, SyncAlreadyRunning, Throttled
from app.services.geocoding import Geocoder
from app.services.mocks import mock_transport
from app.services.rate_limit import RateLimiter
from app.services.retry import with_retry
from app.services.store import ActivityStore
from app.services.strava import StravaClient, total_activity_count

logger = logging.getLogger(__name__)

PAGE_SIZE = 200
BATCH_SIZE = 20
PROGRESS_INTERVAL = 10
PAGE_DELAY_SECONDS = 1.0
MAX_ATTEMPTS = 3


def _utcnow() -> datetime:
    return datetime.utcnow()


def _parse_start_date(value: Optional[str]) -> datetime:
    """Parse a Strava ISO timestamp into a naive UTC datetime."""
    if not value:
        return _utcnow()
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


def has_coordinates(latlng: Any) -> bool:
    return isinstance(latlng, (list, tuple)) and len(latlng) == 2 and all(
        isinstance(v, (int, float)) for v in latlng
    )


def extract_location_data(activity: dict[str, Any], athlete_id: str) -> dict[str, Any]:
    """Map a Strava activity payload onto an activities row."""
    return {
        "athlete_id": athlete_id,
        "activity_id": str(activity["id"]),
        "name": activity.get("name"),
        "type": activity.get("type") or activity.get("sport_type"),
        "distance": float(activity.get("distance") or 0.0),
        "moving_time": int(activity.get("moving_time") or 0),
        "start_date": _parse_start_date(activity.get("start_date")),
        "country": activity.get("location_country") or UNKNOWN_COUNTRY,
        "city": activity.get("location_city") or None,
        "state": activity.get("location_state") or None,
    }


class SyncLocks:
    """In-process lease ensuring one sync per athlete at a time."""

    def __init__(self):
        self._active: set[str] = set()
        self._lock = asyncio.Lock()

    async def acquire(self, athlete_id: str) -> None:
        """
        Raises:
            SyncAlreadyRunning: if the athlete already holds a lease.
        """
        async with self._lock:
            if athlete_id in self._active:
                raise SyncAlreadyRunning(athlete_id)
            self._active.add(athlete_id)

    async def release(self, athlete_id: str) -> None:
        async with self._lock:
            self._active.discard(athlete_id)

    def is_running(self, athlete_id: str) -> bool:
        return athlete_id in self._active

    @property
    def active(self) -> frozenset[str]:
        return frozenset(self._active)


# Process-wide lease registry
sync_locks = SyncLocks()


def get_sync_locks() -> SyncLocks:
    """Dependency returning the process-wide lease registry."""
    return sync_locks


class SyncService:
    """Runs the Strava activity sync for one athlete at a time."""

    def __init__(
        self,
        strava: StravaClient,
        geocoder: Geocoder,
        store: ActivityStore,
        session_maker: async_sessionmaker[AsyncSession],
        locks: Optional[SyncLocks] = None,
        page_size: int = PAGE_SIZE,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.strava = strava
        self.geocoder = geocoder
        self.store = store
        self.session_maker = session_maker
        self.locks = locks or sync_locks
        self.page_size = page_size
        self.sleep = sleep

    async def close(self):
        await self.strava.close()
        await self.geocoder.close()

    async def sync_activities(
        self,
        athlete_id: str,
        cancel_token: CancellationToken,
        lease_acquired: bool = False,
    ) -> None:
        """
        Sync all of an athlete's activities.

        Returns normally on completion, on cancellation (status untouched)
        and when the athlete is deleted mid-run (nothing further written).

        Args:
            athlete_id: Athlete to sync.
            cancel_token: Checked before each page; when set the run stops.
            lease_acquired: The caller already holds the athlete's lease.

        Raises:
            SyncAlreadyRunning: another run holds the lease.
            Exception: any other failure, after marking the athlete FAILED.
        """
        if not lease_acquired:
            await self.locks.acquire(athlete_id)

        try:
            await self._run(athlete_id, cancel_token)
        except OwnerDeleted:
            logger.info(f"Athlete {athlete_id} was deleted during sync, stopping")
        except Exception as e:
            logger.error(f"Sync failed for athlete {athlete_id}: {e}")
            try:
                await self.store.update_owner(athlete_id, sync_status=SyncStatus.FAILED)
            except Exception as status_err:
                logger.warning(f"Could not mark athlete {athlete_id} as failed: {status_err}")
            raise
        finally:
            await self.locks.release(athlete_id)

    async def _run(self, athlete_id: str, cancel_token: CancellationToken) -> None:
        if cancel_token.cancelled:
            logger.info(f"Shutdown in progress, not starting sync for athlete {athlete_id}")
            return

        owner = await self.store.get_owner(athlete_id)
        if owner is None:
            raise OwnerDeleted(athlete_id)

        baseline = owner.sync_progress or 0
        now = _utcnow()
        await self.store.update_owner(
            athlete_id,
            sync_status=SyncStatus.SYNCING,
            sync_started_at=now,
            sync_last_activity_at=now,
        )
        logger.info(f"Starting sync for athlete {athlete_id} (resuming from {baseline} processed)")

        await self._record_expected_total(athlete_id)

        page = 1
        while True:
            if cancel_token.cancelled:
                logger.info(f"Shutdown requested, stopping sync for athlete {athlete_id} before page {page}")
                return

            if not await self.store.owner_exists(athlete_id):
                raise OwnerDeleted(athlete_id)

            activities = await with_retry(
                partial(self.strava.list_activities, athlete_id, page, self.page_size),
                max_attempts=MAX_ATTEMPTS,
                sleep=self.sleep,
                description=f"List activities page {page}",
            )
            if not activities:
                break

            processed = await self._sync_page(athlete_id, activities, baseline)
            baseline += processed
            await self.store.update_owner(
                athlete_id,
                sync_progress=baseline,
                sync_last_activity_at=_utcnow(),
            )
            logger.info(f"Page {page} done for athlete {athlete_id}: {processed} processed, {baseline} total")

            await self.sleep(PAGE_DELAY_SECONDS)
            page += 1

        await recompute_summary(self.session_maker, athlete_id)
        await self.store.update_owner(
            athlete_id,
            sync_status=SyncStatus.COMPLETED,
            last_sync_at=_utcnow(),
        )
        logger.info(f"Sync completed for athlete {athlete_id}")

    async def _record_expected_total(self, athlete_id: str) -> None:
        """Store the lifetime activity count as a progress denominator. Best effort."""
        try:
            stats = await self.strava.get_athlete_stats(athlete_id)
            total = total_activity_count(stats)
        except Exception as e:
            logger.warning(f"Could not fetch athlete stats for {athlete_id}: {e}")
            return
        await self.store.update_owner(athlete_id, sync_total=total)

    async def _sync_page(self, athlete_id: str, activities: list[dict], baseline: int) -> int:
        """
        Enrich and store one page of activities.

        Returns:
            Number of activities processed (enriched or skipped on error).
        """
        with_coordinates = [a for a in activities if has_coordinates(a.get("start_latlng"))]
        resolved = await self.store.resolved_activity_ids(
            athlete_id, [str(a["id"]) for a in with_coordinates]
        )
        pending = [a for a in with_coordinates if str(a["id"]) not in resolved]
        logger.info(
            f"Fetched {len(activities)} activities for athlete {athlete_id}: "
            f"{len(with_coordinates)} with coordinates, {len(pending)} need enrichment"
        )

        batch: list[dict[str, Any]] = []
        processed = 0

        for summary in pending:
            activity_id = str(summary["id"])
            try:
                batch.append(await self._enrich(athlete_id, summary))
            except Throttled:
                logger.warning(f"Rate limited on activity {activity_id}, saving {len(batch)} buffered activities")
                await self._flush(athlete_id, batch)
                raise
            except OwnerDeleted:
                raise
            except Exception as e:
                logger.error(f"Failed to process activity {activity_id}: {e}")

            processed += 1

            if processed % PROGRESS_INTERVAL == 0:
                await self.store.update_owner(
                    athlete_id,
                    sync_progress=baseline + processed,
                    sync_last_activity_at=_utcnow(),
                )

            if len(batch) >= BATCH_SIZE:
                await self._flush(athlete_id, batch)
                batch = []

        await self._flush(athlete_id, batch)
        return processed

    async def _enrich(self, athlete_id: str, summary: dict[str, Any]) -> dict[str, Any]:
        """Fetch activity detail, geocoding its start point when Strava has no country."""
        activity_id = str(summary["id"])
        detail = await with_retry(
            partial(self.strava.get_activity, athlete_id, activity_id),
            max_attempts=MAX_ATTEMPTS,
            sleep=self.sleep,
            description=f"Get activity {activity_id}",
        )

        if not detail.get("location_country"):
            latlng = detail.get("start_latlng")
            if not has_coordinates(latlng):
                latlng = summary.get("start_latlng")
            if has_coordinates(latlng):
                location = await self.geocoder.reverse_geocode(latlng[0], latlng[1])
                detail = {
                    **detail,
                    "location_country": location.country,
                    "location_state": location.state or detail.get("location_state"),
                    "location_city": location.city or detail.get("location_city"),
                }

        return extract_location_data(detail, athlete_id)

    async def _flush(self, athlete_id: str, batch: list[dict[str, Any]]) -> None:
        """Replace stored rows for the batch ids, then rebuild the summary."""
        if not batch:
            return

        if not await self.store.owner_exists(athlete_id):
            raise OwnerDeleted(athlete_id)

        activity_ids = [row["activity_id"] for row in batch]
        await self.store.delete_activities(athlete_id, activity_ids)
        await self.store.insert_activities(batch)
        await recompute_summary(self.session_maker, athlete_id)
        logger.info(f"Saved {len(batch)} activities for athlete {athlete_id}")


@lru_cache()
def get_geocode_limiter(min_interval_ms: int) -> RateLimiter:
    """One geocoding limiter per interval, shared by every sync in the process."""
    return RateLimiter(min_interval_ms)


@lru_cache()
def get_strava_limiter(min_interval_ms: int) -> RateLimiter:
    return RateLimiter(min_interval_ms)


def build_sync_service(
    settings: Settings,
    session_maker: async_sessionmaker[AsyncSession],
    locks: Optional[SyncLocks] = None,
) -> SyncService:
    """Wire a SyncService from settings, using the mock provider in mock mode."""
    strava_transport = geocode_transport = None
    if settings.use_mocks:
        strava_transport = geocode_transport = mock_transport()

    store = ActivityStore(session_maker)
    strava = StravaClient(
        store,
        settings.strava_client_id,
        settings.strava_client_secret,
        rate_limiter=get_strava_limiter(settings.effective_strava_interval_ms),
        base_url=settings.strava_api_url,
        token_url=settings.strava_token_url,
        transport=strava_transport,
    )
    geocoder = Geocoder(
        settings.nominatim_url,
        settings.nominatim_user_agent,
        rate_limiter=get_geocode_limiter(settings.effective_geocode_interval_ms),
        transport=geocode_transport,
    )
    return SyncService(
        strava,
        geocoder,
        store,
        session_maker,
        locks=locks,
        page_size=settings.sync_page_size,
    )
