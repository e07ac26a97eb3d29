"""
Unit tests for distance estimation and geocoding (routing providers mocked with httpx.MockTransport).
"""
import json

import httpx
import pytest

from freight.config import Settings
from freight.errors import DependencyError, ValidationError
from freight.services.distance import (
    Geocoder,
    Point,
    RoadDistanceEstimator,
    fallback_geocode,
    haversine_km,
    make_point,
    straight_line_estimate,
)

NAIROBI = Point(-1.2921, 36.8219)
THIKA = Point(-1.0333, 37.0693)


def _client(handler) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


def _osrm_ok(request: httpx.Request) -> httpx.Response:
    return httpx.Response(200, json={"code": "Ok", "routes": [{"distance": 45200.0, "duration": 3000.0}]})


def _unavailable(request: httpx.Request) -> httpx.Response:
    return httpx.Response(503, json={"error": "down"})


class TestGeometry:
    def test_haversine_same_point_is_zero(self):
        assert haversine_km(1.0, 36.0, 1.0, 36.0) == 0

    def test_haversine_nairobi_thika(self):
        # ~39.7 km as the crow flies
        assert 38 < haversine_km(NAIROBI.lat, NAIROBI.lng, THIKA.lat, THIKA.lng) < 41

    def test_straight_line_applies_road_multiplier(self):
        est = straight_line_estimate(NAIROBI, THIKA, road_multiplier=1.35, minutes_per_km=1.8)
        crow = haversine_km(NAIROBI.lat, NAIROBI.lng, THIKA.lat, THIKA.lng)
        assert est.distance_km == round(crow * 1.35, 1)
        assert est.source == "haversine"
        assert est.duration_minutes >= est.distance_km * 1.8 - 1

    @pytest.mark.parametrize("lat,lng", [(None, 36.8), (-1.2, None), (91, 0), (0, 181), (float("nan"), 0), ("x", 1)])
    def test_make_point_rejects_invalid(self, lat, lng):
        assert make_point(lat, lng) is None

    def test_make_point_accepts_strings_of_numbers(self):
        assert make_point("-1.5", "36.9") == Point(-1.5, 36.9)


@pytest.mark.asyncio
class TestRoadDistanceEstimator:
    async def test_requires_both_points(self):
        estimator = RoadDistanceEstimator(settings=Settings())
        with pytest.raises(ValidationError):
            await estimator.estimate(NAIROBI, None)

    async def test_osrm_used_without_ors_key(self):
        settings = Settings(openrouteservice_api_key="")
        async with _client(_osrm_ok) as client:
            est = await RoadDistanceEstimator(client=client, settings=settings).estimate(NAIROBI, THIKA)
        assert est.source == "osrm"
        assert est.distance_km == pytest.approx(45.2)
        assert est.duration_minutes == pytest.approx(50.0)

    async def test_ors_preferred_when_key_configured(self):
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request.url.host)
            return httpx.Response(200, json={
                "features": [{"properties": {"summary": {"distance": 47000.0, "duration": 3600.0}}}]
            })

        settings = Settings(openrouteservice_api_key="ors-key")
        async with _client(handler) as client:
            est = await RoadDistanceEstimator(client=client, settings=settings).estimate(NAIROBI, THIKA)
        assert est.source == "openrouteservice"
        assert est.distance_km == pytest.approx(47.0)
        assert seen == ["api.openrouteservice.org"]

    async def test_falls_back_to_osrm_when_ors_fails(self):
        def handler(request: httpx.Request) -> httpx.Response:
            if "openrouteservice" in request.url.host:
                return httpx.Response(500)
            return _osrm_ok(request)

        settings = Settings(openrouteservice_api_key="ors-key")
        async with _client(handler) as client:
            est = await RoadDistanceEstimator(client=client, settings=settings).estimate(NAIROBI, THIKA)
        assert est.source == "osrm"

    async def test_straight_line_when_all_providers_fail(self):
        settings = Settings(openrouteservice_api_key="", allow_straight_line_fallback=True)
        async with _client(_unavailable) as client:
            est = await RoadDistanceEstimator(client=client, settings=settings).estimate(NAIROBI, THIKA)
        assert est.source == "haversine"
        assert est.distance_km > 40

    async def test_dependency_error_when_fallback_disabled(self):
        settings = Settings(openrouteservice_api_key="", allow_straight_line_fallback=False)
        async with _client(_unavailable) as client:
            with pytest.raises(DependencyError):
                await RoadDistanceEstimator(client=client, settings=settings).estimate(NAIROBI, THIKA)

    async def test_osrm_no_route_is_a_provider_failure(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"code": "NoRoute", "routes": []})

        settings = Settings(openrouteservice_api_key="", allow_straight_line_fallback=True)
        async with _client(handler) as client:
            est = await RoadDistanceEstimator(client=client, settings=settings).estimate(NAIROBI, THIKA)
        assert est.source == "haversine"

    async def test_cached_estimate_skips_providers(self, fake_redis):
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request.url)
            return _osrm_ok(request)

        settings = Settings(openrouteservice_api_key="")
        async with _client(handler) as client:
            estimator = RoadDistanceEstimator(client=client, redis=fake_redis, settings=settings)
            first = await estimator.estimate(NAIROBI, THIKA)
            second = await estimator.estimate(NAIROBI, THIKA)
        assert first == second
        assert len(calls) == 1
        cached = next(iter(fake_redis.store.values()))
        assert json.loads(cached)["source"] == "osrm"


@pytest.mark.asyncio
class TestGeocoder:
    async def test_fallback_is_deterministic_near_base(self):
        a = fallback_geocode("Westlands", -1.2921, 36.8219)
        b = fallback_geocode("Westlands", -1.2921, 36.8219)
        assert a == b
        assert abs(a.point.lat - -1.2921) <= 0.1
        assert abs(a.point.lng - 36.8219) <= 0.1

    async def test_blank_address_rejected(self):
        with pytest.raises(ValidationError):
            await Geocoder(settings=Settings()).geocode("   ")

    async def test_ors_result_used(self):
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url.params["text"] == "Westlands, Kenya"
            return httpx.Response(200, json={"features": [{
                "geometry": {"coordinates": [36.8065, -1.2676]},
                "properties": {"label": "Westlands, Nairobi, Kenya"},
            }]})

        settings = Settings(openrouteservice_api_key="ors-key", geocoding_region="Kenya")
        async with _client(handler) as client:
            result = await Geocoder(client=client, settings=settings).geocode("Westlands")
        assert result.point == Point(-1.2676, 36.8065)
        assert result.formatted_address == "Westlands, Nairobi, Kenya"

    async def test_fallback_when_provider_fails(self):
        settings = Settings(openrouteservice_api_key="ors-key", geocoding_fallback_enabled=True)
        async with _client(_unavailable) as client:
            result = await Geocoder(client=client, settings=settings).geocode("Karen")
        assert result == fallback_geocode("Karen", settings.geocoding_base_lat, settings.geocoding_base_lng)

    async def test_dependency_error_without_fallback(self):
        settings = Settings(openrouteservice_api_key="", geocoding_fallback_enabled=False)
        with pytest.raises(DependencyError):
            await Geocoder(settings=settings).geocode("Karen")
