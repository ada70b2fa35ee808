"""Tests for the sync, location and account API endpoints.

Tests focus on:
1. GET /api/sync/status - progress fields and lease state
2. POST /api/sync - starts a background run, 404/409/503 guards
3. POST /api/sync/clear-and-resync - wipes data before starting
4. Location summary, stats rebuild and disconnect

The routers are mounted on a bare app with the session maker, lease
registry, shutdown token, run registry and sync service overridden. Requests
go through httpx's ASGI transport so they share the test's event loop and
database. Sync runs are detached tasks, so tests drain the registry before
checking what a run did.
"""

import asyncio
from datetime import datetime
from types import SimpleNamespace
from unittest.mock import AsyncMock

import httpx
import pytest
import pytest_asyncio
from fastapi import FastAPI

from app.api import config, locations, sync
from app.core.database import get_session_maker
from app.core.shutdown import CancellationToken, SyncRuns, get_shutdown_token, get_sync_runs
from app.models.database import SyncStatus
from app.services.aggregator import recompute_summary
from app.services.sync import SyncLocks, get_sync_locks


def activity_row(athlete_id, activity_id, country, city, distance=1000.0):
    return {
        "athlete_id": athlete_id,
        "activity_id": str(activity_id),
        "name": f"Run {activity_id}",
        "type": "Run",
        "distance": distance,
        "moving_time": 600,
        "start_date": datetime(2025, 1, activity_id),
        "country": country,
        "city": city,
        "state": None,
    }


@pytest_asyncio.fixture
async def api(session_maker):
    locks = SyncLocks()
    token = CancellationToken()
    runs = SyncRuns()
    service = AsyncMock()

    app = FastAPI()
    app.include_router(config.router)
    app.include_router(sync.router)
    app.include_router(locations.router)
    app.dependency_overrides[get_session_maker] = lambda: session_maker
    app.dependency_overrides[get_sync_locks] = lambda: locks
    app.dependency_overrides[get_shutdown_token] = lambda: token
    app.dependency_overrides[get_sync_runs] = lambda: runs
    app.dependency_overrides[sync.get_sync_service] = lambda: service

    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        yield SimpleNamespace(client=client, locks=locks, token=token, runs=runs, service=service)

    await runs.drain()


class TestSyncStatus:

    @pytest.mark.asyncio
    async def test_unknown_athlete_returns_404(self, api):
        resp = await api.client.get("/api/sync/status/nobody")
        assert resp.status_code == 404

    @pytest.mark.asyncio
    async def test_returns_progress_fields(self, api, store, athlete):
        await store.update_owner(athlete, sync_status=SyncStatus.SYNCING, sync_progress=40, sync_total=120)
        await store.insert_activities([activity_row(athlete, 1, "France", "Paris")])
        await api.locks.acquire(athlete)

        resp = await api.client.get(f"/api/sync/status/{athlete}")

        assert resp.status_code == 200
        data = resp.json()
        assert data["athlete_id"] == athlete
        assert data["sync_status"] == "SYNCING"
        assert data["sync_progress"] == 40
        assert data["sync_total"] == 120
        assert data["is_running"] is True
        assert data["activity_count"] == 1
        assert data["last_sync_at"] is None


class TestStartSync:

    @pytest.mark.asyncio
    async def test_starts_background_run_with_lease(self, api, athlete):
        resp = await api.client.post("/api/sync", json={"athlete_id": athlete})

        assert resp.status_code == 200
        assert resp.json() == {"status": "syncing", "athlete_id": athlete}
        await api.runs.drain()
        api.service.sync_activities.assert_awaited_once_with(athlete, api.token, lease_acquired=True)
        api.service.close.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_unknown_athlete_returns_404(self, api):
        resp = await api.client.post("/api/sync", json={"athlete_id": "nobody"})

        assert resp.status_code == 404
        api.service.sync_activities.assert_not_called()
        assert not api.locks.is_running("nobody")
        assert api.runs.active == 0

    @pytest.mark.asyncio
    async def test_running_sync_returns_409(self, api, athlete):
        await api.locks.acquire(athlete)

        resp = await api.client.post("/api/sync", json={"athlete_id": athlete})

        assert resp.status_code == 409
        api.service.sync_activities.assert_not_called()
        assert api.runs.active == 0

    @pytest.mark.asyncio
    async def test_shutting_down_returns_503(self, api, athlete):
        api.token.cancel()

        resp = await api.client.post("/api/sync", json={"athlete_id": athlete})

        assert resp.status_code == 503
        assert not api.locks.is_running(athlete)

    @pytest.mark.asyncio
    async def test_blank_athlete_id_is_rejected(self, api):
        resp = await api.client.post("/api/sync", json={"athlete_id": "   "})
        assert resp.status_code == 422

    @pytest.mark.asyncio
    async def test_request_returns_while_run_continues(self, api, athlete):
        release = asyncio.Event()

        async def slow_sync(*args, **kwargs):
            await release.wait()

        api.service.sync_activities.side_effect = slow_sync

        resp = await api.client.post("/api/sync", json={"athlete_id": athlete})

        assert resp.status_code == 200
        assert api.runs.active == 1
        release.set()
        await api.runs.drain()
        assert api.runs.active == 0

    @pytest.mark.asyncio
    async def test_background_error_is_contained(self, api, athlete):
        api.service.sync_activities.side_effect = RuntimeError("boom")

        resp = await api.client.post("/api/sync", json={"athlete_id": athlete})
        await api.runs.drain()

        assert resp.status_code == 200
        api.service.close.assert_awaited_once()


class TestClearAndResync:

    @pytest.mark.asyncio
    async def test_clears_data_then_starts_sync(self, api, store, session_maker, athlete):
        await store.insert_activities([activity_row(athlete, 1, "France", "Paris")])
        await recompute_summary(session_maker, athlete)
        await store.update_owner(athlete, sync_progress=57, sync_status=SyncStatus.COMPLETED)

        resp = await api.client.post("/api/sync/clear-and-resync", json={"athlete_id": athlete})

        assert resp.status_code == 200
        await api.runs.drain()
        owner = await store.get_owner(athlete)
        assert owner.sync_status == SyncStatus.SYNCING
        assert owner.sync_progress == 0
        assert await store.count_activities(athlete) == 0
        assert await store.list_location_stats(athlete) == []
        api.service.sync_activities.assert_awaited_once_with(athlete, api.token, lease_acquired=True)

    @pytest.mark.asyncio
    async def test_running_sync_keeps_data(self, api, store, athlete):
        await store.insert_activities([activity_row(athlete, 1, "France", "Paris")])
        await api.locks.acquire(athlete)

        resp = await api.client.post("/api/sync/clear-and-resync", json={"athlete_id": athlete})

        assert resp.status_code == 409
        assert await store.count_activities(athlete) == 1


class TestLocations:

    @pytest.mark.asyncio
    async def test_returns_summary_most_visited_first(self, api, store, session_maker, athlete):
        await store.insert_activities([
            activity_row(athlete, 1, "United States", "San Francisco", distance=5000.0),
            activity_row(athlete, 2, "United States", "San Francisco", distance=3000.0),
            activity_row(athlete, 3, "France", None, distance=2000.0),
        ])
        await recompute_summary(session_maker, athlete)

        resp = await api.client.get(f"/api/locations/{athlete}")

        assert resp.status_code == 200
        data = resp.json()
        assert [(d["country"], d["city"], d["activity_count"]) for d in data] == [
            ("United States", "San Francisco", 2),
            ("France", None, 1),
        ]
        assert data[0]["total_distance"] == 8000.0
        assert data[0]["total_time"] == 1200

    @pytest.mark.asyncio
    async def test_unknown_athlete_returns_404(self, api):
        resp = await api.client.get("/api/locations/nobody")
        assert resp.status_code == 404

    @pytest.mark.asyncio
    async def test_update_stats_rebuilds_summary(self, api, store, athlete):
        await store.insert_activities([
            activity_row(athlete, 1, "France", "Paris"),
            activity_row(athlete, 2, "France", "Lyon"),
        ])

        resp = await api.client.post("/api/update-stats", json={"athlete_id": athlete})

        assert resp.status_code == 200
        assert resp.json() == {"success": True, "stats_count": 2}
        assert len(await store.list_location_stats(athlete)) == 2


class TestDisconnect:

    @pytest.mark.asyncio
    async def test_deletes_athlete_and_data(self, api, store, athlete):
        await store.insert_activities([activity_row(athlete, 1, "France", "Paris")])

        resp = await api.client.post("/api/disconnect", json={"athlete_id": athlete})

        assert resp.status_code == 200
        assert resp.json()["success"] is True
        assert not await store.owner_exists(athlete)
        assert await store.get_token(athlete) is None
        assert await store.count_activities(athlete) == 0

    @pytest.mark.asyncio
    async def test_unknown_athlete_returns_404(self, api):
        resp = await api.client.post("/api/disconnect", json={"athlete_id": "nobody"})
        assert resp.status_code == 404


class TestConfig:

    @pytest.mark.asyncio
    async def test_health(self, api):
        resp = await api.client.get("/api/health")
        assert resp.json()["status"] == "ok"

    @pytest.mark.asyncio
    async def test_config_hides_secrets(self, api):
        resp = await api.client.get("/api/config")

        assert resp.status_code == 200
        data = resp.json()
        assert "strava_client_secret" not in data
        assert "sync_page_size" in data
