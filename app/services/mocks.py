"""
Deterministic fake Strava and Nominatim backends for local development.

Enabled with USE_MOCKS=true. Requests are answered in-process through an
httpx.MockTransport, so nothing leaves the machine and no rate limits apply.
"""

import math
import re
import time
from datetime import datetime, timedelta
from typing import Any
import httpx

TOTAL_MOCK_ACTIVITIES = 500
MOCK_ACCESS_TOKEN = "mock_access_token"
MOCK_REFRESH_TOKEN = "mock_refresh_token"

ACTIVITY_TYPES = ["Run", "Ride", "Walk", "Hike", "Swim"]

CITIES = [
    {"city": "San Francisco", "state": "California", "country": "United States", "lat": 37.7749, "lng": -122.4194},
    {"city": "London", "state": None, "country": "United Kingdom", "lat": 51.5074, "lng": -0.1278},
    {"city": "Tokyo", "state": None, "country": "Japan", "lat": 35.6762, "lng": 139.6503},
    {"city": "Paris", "state": None, "country": "France", "lat": 48.8566, "lng": 2.3522},
    {"city": "Berlin", "state": None, "country": "Germany", "lat": 52.5200, "lng": 13.4050},
    {"city": "Sydney", "state": "New South Wales", "country": "Australia", "lat": -33.8688, "lng": 151.2093},
    {"city": "New York", "state": "New York", "country": "United States", "lat": 40.7128, "lng": -74.0060},
    {"city": "Barcelona", "state": None, "country": "Spain", "lat": 41.3851, "lng": 2.1734},
    {"city": "Amsterdam", "state": None, "country": "Netherlands", "lat": 52.3676, "lng": 4.9041},
    {"city": "Singapore", "state": None, "country": "Singapore", "lat": 1.3521, "lng": 103.8198},
]


def _seeded_random(seed: int) -> float:
    x = math.sin(seed) * 10000
    return x - math.floor(x)


def generate_activity(activity_id: int, days_ago: int) -> dict[str, Any]:
    """Build a Strava-shaped activity whose contents depend only on its id."""
    location = CITIES[int(_seeded_random(activity_id) * len(CITIES))]
    activity_type = ACTIVITY_TYPES[int(_seeded_random(activity_id + 1) * len(ACTIVITY_TYPES))]

    # Up to ~5km of jitter around the city centre
    lat = location["lat"] + (_seeded_random(activity_id + 2) - 0.5) * 0.05
    lng = location["lng"] + (_seeded_random(activity_id + 3) - 0.5) * 0.05

    distance = 1000 + _seeded_random(activity_id + 4) * 20000
    moving_time = int(distance / 3)
    start = datetime(2025, 1, 1) - timedelta(days=days_ago)
    prefix = {"Run": "Morning", "Ride": "Evening"}.get(activity_type, "Afternoon")

    return {
        "id": activity_id,
        "name": f"{prefix} {activity_type}",
        "type": activity_type,
        "distance": distance,
        "moving_time": moving_time,
        "elapsed_time": moving_time + int(_seeded_random(activity_id + 5) * 300),
        "start_date": start.strftime("%Y-%m-%dT%H:%M:%SZ"),
        "start_latlng": [lat, lng],
        "location_city": location["city"],
        "location_state": location["state"],
        "location_country": location["country"],
    }


def generate_activities(page: int, per_page: int, total: int = TOTAL_MOCK_ACTIVITIES) -> list[dict[str, Any]]:
    start = (page - 1) * per_page
    end = min(start + per_page, total)
    return [generate_activity(i + 1, i) for i in range(start, end)]


def generate_athlete_stats() -> dict[str, Any]:
    return {
        "all_ride_totals": {"count": 523, "distance": 12500000, "moving_time": 1850000},
        "all_run_totals": {"count": 847, "distance": 6200000, "moving_time": 1250000},
        "all_swim_totals": {"count": 134, "distance": 285000, "moving_time": 165000},
    }


def _nearest_city(lat: float, lng: float) -> dict[str, Any]:
    return min(CITIES, key=lambda c: (c["lat"] - lat) ** 2 + (c["lng"] - lng) ** 2)


def _handle(request: httpx.Request) -> httpx.Response:
    path = request.url.path
    params = request.url.params

    if path.endswith("/oauth/token"):
        return httpx.Response(200, json={
            "token_type": "Bearer",
            "access_token": MOCK_ACCESS_TOKEN,
            "refresh_token": MOCK_REFRESH_TOKEN,
            "expires_at": int(time.time()) + 21600,
            "expires_in": 21600,
        })

    if path.endswith("/athlete/activities"):
        page = int(params.get("page", 1))
        per_page = int(params.get("per_page", 30))
        return httpx.Response(200, json=generate_activities(page, per_page))

    match = re.search(r"/activities/(\d+)$", path)
    if match:
        activity_id = int(match.group(1))
        return httpx.Response(200, json=generate_activity(activity_id, activity_id - 1))

    if re.search(r"/athletes/[^/]+/stats$", path):
        return httpx.Response(200, json=generate_athlete_stats())

    if path.endswith("/reverse"):
        city = _nearest_city(float(params["lat"]), float(params["lon"]))
        address = {"city": city["city"], "country": city["country"]}
        if city["state"]:
            address["state"] = city["state"]
        return httpx.Response(200, json={"address": address})

    return httpx.Response(404, json={"message": "Record Not Found"})


def mock_transport() -> httpx.MockTransport:
    """Transport serving the fake Strava and Nominatim endpoints."""
    return httpx.MockTransport(_handle)
