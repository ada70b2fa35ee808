"""Strava API client with transparent token refresh and rate-limit signalling."""

import logging
import time
from typing import Any, Optional
import httpx

from app.services.errors import NotFound, Throttled, TransportError
from app.services.rate_limit import RateLimiter
from app.services.store import ActivityStore

logger = logging.getLogger(__name__)

# Refresh tokens that expire within this many seconds
TOKEN_REFRESH_MARGIN = 300


def _parse_retry_after(value: Optional[str]) -> Optional[float]:
    if not value:
        return None
    try:
        return max(float(value), 0.0)
    except ValueError:
        return None


def total_activity_count(stats: dict[str, Any]) -> int:
    """Sum lifetime run, ride and swim counts from an athlete stats payload."""
    total = 0
    for key in ("all_run_totals", "all_ride_totals", "all_swim_totals"):
        total += int((stats.get(key) or {}).get("count") or 0)
    return total


class StravaClient:
    """Async client for the Strava v3 API."""

    def __init__(
        self,
        store: ActivityStore,
        client_id: str,
        client_secret: str,
        rate_limiter: RateLimiter,
        base_url: str = "https://www.strava.com/api/v3",
        token_url: str = "https://www.strava.com/oauth/token",
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.store = store
        self.client_id = client_id
        self.client_secret = client_secret
        self.rate_limiter = rate_limiter
        self.base_url = base_url.rstrip('/')
        self.token_url = token_url
        self.transport = transport
        self.client: Optional[httpx.AsyncClient] = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create async HTTP client."""
        if self.client is None:
            self.client = httpx.AsyncClient(timeout=30.0, transport=self.transport)
        return self.client

    async def close(self):
        """Close the HTTP client."""
        if self.client:
            await self.client.aclose()
            self.client = None

    async def _refresh_token(self, athlete_id: str, refresh_token: str) -> str:
        """Exchange the refresh token and persist the new pair."""
        logger.info(f"Refreshing Strava token for athlete {athlete_id}")
        client = await self._get_client()
        try:
            response = await client.post(
                self.token_url,
                data={
                    "client_id": self.client_id,
                    "client_secret": self.client_secret,
                    "refresh_token": refresh_token,
                    "grant_type": "refresh_token",
                },
            )
        except httpx.HTTPError as e:
            raise TransportError(f"Token refresh failed: {e}") from e

        if response.status_code == 429:
            raise Throttled(retry_after=_parse_retry_after(response.headers.get("Retry-After")))
        if response.status_code >= 400:
            raise TransportError(
                f"Token refresh returned HTTP {response.status_code}: {response.text[:200]}",
                status_code=response.status_code,
            )

        tokens = response.json()
        await self.store.save_token(
            athlete_id,
            access_token=tokens["access_token"],
            refresh_token=tokens.get("refresh_token") or refresh_token,
            expires_at=int(tokens["expires_at"]),
        )
        return tokens["access_token"]

    async def _get_access_token(self, athlete_id: str) -> str:
        token = await self.store.get_token(athlete_id)
        if token is None:
            raise TransportError(f"No Strava token stored for athlete {athlete_id}", status_code=401)

        if token.expires_at <= time.time() + TOKEN_REFRESH_MARGIN:
            return await self._refresh_token(athlete_id, token.refresh_token)
        return token.access_token

    async def _get(self, athlete_id: str, path: str, params: Optional[dict] = None) -> Any:
        """Authenticated GET, mapping provider failures onto the error taxonomy."""
        access_token = await self._get_access_token(athlete_id)
        await self.rate_limiter.acquire()

        client = await self._get_client()
        try:
            response = await client.get(
                f"{self.base_url}{path}",
                params=params,
                headers={"Authorization": f"Bearer {access_token}"},
            )
        except httpx.HTTPError as e:
            raise TransportError(f"GET {path} failed: {e}") from e

        if response.status_code == 429:
            retry_after = _parse_retry_after(response.headers.get("Retry-After"))
            logger.warning(f"Strava rate limited GET {path} (retry after {retry_after}s)")
            raise Throttled(f"Rate limited on {path}", retry_after=retry_after)
        if response.status_code == 404:
            raise NotFound(f"GET {path} returned 404")
        if response.status_code >= 400:
            raise TransportError(
                f"GET {path} returned HTTP {response.status_code}: {response.text[:200]}",
                status_code=response.status_code,
            )

        try:
            return response.json()
        except ValueError as e:
            raise TransportError(f"GET {path} returned invalid JSON: {e}") from e

    async def list_activities(self, athlete_id: str, page: int, per_page: int = 200) -> list[dict]:
        """Fetch one page of the athlete's activity summaries."""
        activities = await self._get(
            athlete_id,
            "/athlete/activities",
            params={"page": page, "per_page": per_page},
        )
        return activities or []

    async def get_activity(self, athlete_id: str, activity_id: str) -> dict:
        """Fetch full detail for one activity."""
        return await self._get(athlete_id, f"/activities/{activity_id}")

    async def get_athlete_stats(self, athlete_id: str) -> dict:
        """Fetch lifetime statistics for the athlete."""
        return await self._get(athlete_id, f"/athletes/{athlete_id}/stats")
