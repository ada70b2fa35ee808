"""
Reverse geocoding using Nominatim (OpenStreetMap).

Nominatim's usage policy allows at most one request per second, so every
caller in the process goes through one shared RateLimiter.
"""

import logging
from dataclasses import dataclass
from typing import Optional
import httpx

from app.services.rate_limit import RateLimiter

logger = logging.getLogger(__name__)

CITY_FIELDS = ("city", "town", "village", "municipality")


@dataclass(frozen=True)
class Location:
    country: Optional[str] = None
    state: Optional[str] = None
    city: Optional[str] = None


def parse_address(data: dict) -> Location:
    """Extract country/state/city from a Nominatim reverse response."""
    address = data.get("address") or {}
    city = next((address[f] for f in CITY_FIELDS if address.get(f)), None)
    return Location(
        country=address.get("country") or None,
        state=address.get("state") or None,
        city=city,
    )


class Geocoder:
    """Async Nominatim client. Never raises; failures yield an empty Location."""

    def __init__(
        self,
        base_url: str,
        user_agent: str,
        rate_limiter: RateLimiter,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip('/')
        self.user_agent = user_agent
        self.rate_limiter = rate_limiter
        self.transport = transport
        self.client: Optional[httpx.AsyncClient] = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create async HTTP client."""
        if self.client is None:
            self.client = httpx.AsyncClient(
                headers={
                    "User-Agent": self.user_agent,
                    "Accept-Language": "en",
                },
                timeout=30.0,
                transport=self.transport,
            )
        return self.client

    async def close(self):
        """Close the HTTP client."""
        if self.client:
            await self.client.aclose()
            self.client = None

    async def reverse_geocode(self, lat: float, lng: float) -> Location:
        """Resolve a coordinate pair to country/state/city."""
        await self.rate_limiter.acquire()

        try:
            client = await self._get_client()
            response = await client.get(
                f"{self.base_url}/reverse",
                params={
                    "format": "json",
                    "lat": lat,
                    "lon": lng,
                    "zoom": 10,
                    "addressdetails": 1,
                },
            )
            response.raise_for_status()
            data = response.json()
        except httpx.HTTPStatusError as e:
            logger.error(f"Geocoding HTTP {e.response.status_code} for coordinates {lat},{lng}")
            return Location()
        except Exception as e:
            logger.error(f"Failed to geocode {lat},{lng}: {e}")
            return Location()

        if not isinstance(data, dict) or not data.get("address"):
            logger.warning(f"No address data for coordinates {lat},{lng}")
            return Location()

        location = parse_address(data)
        logger.info(
            f"Geocoded {lat},{lng} -> {location.city or 'Unknown city'}, "
            f"{location.country or 'Unknown country'}"
        )
        return location
