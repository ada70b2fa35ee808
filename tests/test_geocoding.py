"""Tests for Nominatim reverse geocoding."""

import httpx
import pytest

from app.services.geocoding import Geocoder, Location, parse_address
from app.services.rate_limit import RateLimiter


def make_geocoder(handler, limiter=None):
    return Geocoder(
        base_url="https://nominatim.test",
        user_agent="RunTheWorld-tests",
        rate_limiter=limiter or RateLimiter(0),
        transport=httpx.MockTransport(handler),
    )


class CountingLimiter(RateLimiter):
    def __init__(self):
        super().__init__(0)
        self.calls = 0

    async def acquire(self):
        self.calls += 1


class TestParseAddress:

    def test_prefers_city_field(self):
        location = parse_address({"address": {"city": "Paris", "town": "Other", "state": "IDF", "country": "France"}})
        assert location == Location(country="France", state="IDF", city="Paris")

    def test_falls_back_through_town_village_municipality(self):
        assert parse_address({"address": {"town": "Hove", "country": "UK"}}).city == "Hove"
        assert parse_address({"address": {"village": "Ditchling", "country": "UK"}}).city == "Ditchling"
        assert parse_address({"address": {"municipality": "Lewes", "country": "UK"}}).city == "Lewes"

    def test_missing_fields_are_none(self):
        assert parse_address({"address": {"country": "Antarctica"}}) == Location(country="Antarctica")


class TestReverseGeocode:

    @pytest.mark.asyncio
    async def test_returns_location_and_sends_expected_request(self):
        seen = {}

        def handler(request):
            seen["params"] = dict(request.url.params)
            seen["user_agent"] = request.headers["user-agent"]
            seen["language"] = request.headers["accept-language"]
            return httpx.Response(200, json={
                "address": {"city": "San Francisco", "state": "California", "country": "United States"}
            })

        geocoder = make_geocoder(handler)
        location = await geocoder.reverse_geocode(37.77, -122.42)
        await geocoder.close()

        assert location == Location(country="United States", state="California", city="San Francisco")
        assert seen["params"]["lat"] == "37.77"
        assert seen["params"]["lon"] == "-122.42"
        assert seen["params"]["zoom"] == "10"
        assert seen["params"]["addressdetails"] == "1"
        assert seen["user_agent"] == "RunTheWorld-tests"
        assert seen["language"] == "en"

    @pytest.mark.asyncio
    async def test_http_error_returns_empty_location(self):
        geocoder = make_geocoder(lambda request: httpx.Response(503, text="busy"))

        assert await geocoder.reverse_geocode(1.0, 2.0) == Location()

    @pytest.mark.asyncio
    async def test_missing_address_returns_empty_location(self):
        geocoder = make_geocoder(lambda request: httpx.Response(200, json={"error": "Unable to geocode"}))

        assert await geocoder.reverse_geocode(0.0, 0.0) == Location()

    @pytest.mark.asyncio
    async def test_transport_failure_returns_empty_location(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        geocoder = make_geocoder(handler)

        assert await geocoder.reverse_geocode(1.0, 2.0) == Location()

    @pytest.mark.asyncio
    async def test_every_call_goes_through_rate_limiter(self):
        limiter = CountingLimiter()
        geocoder = make_geocoder(
            lambda request: httpx.Response(200, json={"address": {"country": "France"}}),
            limiter=limiter,
        )

        await geocoder.reverse_geocode(1.0, 2.0)
        await geocoder.reverse_geocode(3.0, 4.0)

        assert limiter.calls == 2
