"""Tests for mock mode: the fake providers and a full sync against them."""

import httpx
import pytest

from app.core.config import Settings
from app.core.shutdown import CancellationToken
from app.models.database import SyncStatus
from app.services.mocks import (
    TOTAL_MOCK_ACTIVITIES,
    generate_activities,
    generate_activity,
    mock_transport,
)
from app.services.sync import SyncLocks, build_sync_service


async def no_sleep(seconds):
    pass


class TestGenerator:

    def test_activity_is_deterministic(self):
        assert generate_activity(42, 41) == generate_activity(42, 41)

    def test_activity_shape(self):
        activity = generate_activity(1, 0)

        assert activity["id"] == 1
        assert activity["start_date"] == "2025-01-01T00:00:00Z"
        assert len(activity["start_latlng"]) == 2
        assert activity["location_country"]

    def test_pages_stop_at_total(self):
        assert len(generate_activities(1, 200)) == 200
        assert len(generate_activities(3, 200)) == TOTAL_MOCK_ACTIVITIES - 400
        assert generate_activities(4, 200) == []


class TestMockTransport:

    @pytest.mark.asyncio
    async def test_reverse_returns_nearest_city(self):
        async with httpx.AsyncClient(transport=mock_transport(), base_url="http://mock") as client:
            resp = await client.get("/reverse", params={"lat": 48.86, "lon": 2.35})

        assert resp.json()["address"] == {"city": "Paris", "country": "France"}

    @pytest.mark.asyncio
    async def test_unknown_path_is_404(self):
        async with httpx.AsyncClient(transport=mock_transport(), base_url="http://mock") as client:
            resp = await client.get("/nowhere")

        assert resp.status_code == 404


class TestMockModeSync:

    def test_mock_mode_disables_rate_limits(self):
        settings = Settings(use_mocks=True, strava_min_interval_ms=6000, geocode_min_interval_ms=1000)

        assert settings.effective_strava_interval_ms == 0
        assert settings.effective_geocode_interval_ms == 0
        assert Settings(use_mocks=False).effective_strava_interval_ms == 6000

    @pytest.mark.asyncio
    async def test_full_sync_against_mocks(self, session_maker, store, athlete):
        service = build_sync_service(Settings(use_mocks=True), session_maker, SyncLocks())
        service.sleep = no_sleep

        try:
            await service.sync_activities(athlete, CancellationToken())
        finally:
            await service.close()

        owner = await store.get_owner(athlete)
        assert owner.sync_status == SyncStatus.COMPLETED
        assert owner.sync_progress == TOTAL_MOCK_ACTIVITIES
        assert owner.sync_total == 523 + 847 + 134
        assert await store.count_activities(athlete) == TOTAL_MOCK_ACTIVITIES
        stats = await store.list_location_stats(athlete)
        assert sum(s.activity_count for s in stats) == TOTAL_MOCK_ACTIVITIES
