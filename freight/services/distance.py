"""
Distance estimation and geocoding.

Road distance is resolved through a provider chain:
  1. OpenRouteService directions (only when an API key is configured)
  2. OSRM public/self-hosted instance
  3. Straight-line haversine scaled by a road-network multiplier

Geocoding uses OpenRouteService search with a deterministic fallback around
the configured base point, so development environments work without keys.
"""
import json
import logging
import math
from dataclasses import dataclass
from typing import Optional

import httpx
import redis.asyncio as aioredis

from freight.config import Settings, get_settings
from freight.errors import DependencyError, ValidationError
from freight.redis_client import cache_get, cache_set

logger = logging.getLogger(__name__)

EARTH_RADIUS_KM = 6371


@dataclass(frozen=True)
class Point:
    lat: float
    lng: float


@dataclass(frozen=True)
class DistanceEstimate:
    distance_km: float
    duration_minutes: float
    source: str = "haversine"


@dataclass(frozen=True)
class GeocodeResult:
    point: Point
    formatted_address: str


def make_point(lat: Optional[float], lng: Optional[float]) -> Optional[Point]:
    """Build a Point, or None when either coordinate is missing or out of range."""
    if lat is None or lng is None:
        return None
    try:
        lat, lng = float(lat), float(lng)
    except (TypeError, ValueError):
        return None
    if not (math.isfinite(lat) and math.isfinite(lng)):
        return None
    if not (-90 <= lat <= 90 and -180 <= lng <= 180):
        return None
    return Point(lat, lng)


def haversine_km(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    """Great-circle distance in km."""
    phi1, phi2 = math.radians(lat1), math.radians(lat2)
    dphi = math.radians(lat2 - lat1)
    dlambda = math.radians(lng2 - lng1)
    a = math.sin(dphi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(dlambda / 2) ** 2
    return 2 * EARTH_RADIUS_KM * math.atan2(math.sqrt(a), math.sqrt(1 - a))


def straight_line_estimate(
    origin: Point,
    destination: Point,
    road_multiplier: float = 1.35,
    minutes_per_km: float = 1.8,
) -> DistanceEstimate:
    """Haversine scaled up to approximate the road network detour."""
    road_km = haversine_km(origin.lat, origin.lng, destination.lat, destination.lng) * road_multiplier
    return DistanceEstimate(
        distance_km=round(road_km, 1),
        duration_minutes=math.ceil(road_km * minutes_per_km),
        source="haversine",
    )


class RoadDistanceEstimator:
    def __init__(
        self,
        client: Optional[httpx.AsyncClient] = None,
        redis: Optional[aioredis.Redis] = None,
        settings: Optional[Settings] = None,
    ):
        self.settings = settings or get_settings()
        self.client = client
        self.redis = redis

    async def estimate(self, origin: Point, destination: Point) -> DistanceEstimate:
        if origin is None or destination is None:
            raise ValidationError("Both endpoints need coordinates to estimate a distance")

        cache_key = _cache_key(origin, destination)
        cached = await self._cache_read(cache_key)
        if cached is not None:
            return cached

        estimate = await self._resolve(origin, destination)
        await self._cache_write(cache_key, estimate)
        return estimate

    async def _resolve(self, origin: Point, destination: Point) -> DistanceEstimate:
        if self.settings.openrouteservice_api_key:
            try:
                return await self._openrouteservice(origin, destination)
            except (httpx.HTTPError, LookupError, ValueError) as exc:
                logger.warning("OpenRouteService directions failed, trying OSRM: %s", exc)

        try:
            return await self._osrm(origin, destination)
        except (httpx.HTTPError, LookupError, ValueError) as exc:
            logger.warning("OSRM route failed: %s", exc)

        if not self.settings.allow_straight_line_fallback:
            raise DependencyError("No routing provider could estimate the distance")

        logger.info("Using straight-line distance with road multiplier")
        return straight_line_estimate(
            origin,
            destination,
            road_multiplier=self.settings.road_distance_multiplier,
            minutes_per_km=self.settings.road_minutes_per_km,
        )

    async def _openrouteservice(self, origin: Point, destination: Point) -> DistanceEstimate:
        key = self.settings.openrouteservice_api_key
        data = await self._get_json(
            f"{self.settings.openrouteservice_base_url}/v2/directions/driving-car",
            params={
                "api_key": key,
                # ORS expects lng,lat
                "start": f"{origin.lng},{origin.lat}",
                "end": f"{destination.lng},{destination.lat}",
            },
            headers={"Authorization": key},
        )
        summary = data["features"][0]["properties"]["summary"] if "features" in data else data["routes"][0]["summary"]
        return DistanceEstimate(
            distance_km=summary["distance"] / 1000,
            duration_minutes=summary["duration"] / 60,
            source="openrouteservice",
        )

    async def _osrm(self, origin: Point, destination: Point) -> DistanceEstimate:
        url = (
            f"{self.settings.osrm_base_url}/route/v1/driving/"
            f"{origin.lng},{origin.lat};{destination.lng},{destination.lat}"
        )
        data = await self._get_json(url, params={"overview": "false", "alternatives": "false"})
        if data.get("code") != "Ok" or not data.get("routes"):
            raise LookupError("No route found")
        route = data["routes"][0]
        return DistanceEstimate(
            distance_km=route["distance"] / 1000,
            duration_minutes=route["duration"] / 60,
            source="osrm",
        )

    async def _get_json(self, url: str, params: dict, headers: Optional[dict] = None) -> dict:
        if self.client is not None:
            resp = await self.client.get(url, params=params, headers=headers, timeout=self.settings.maps_timeout_seconds)
        else:
            async with httpx.AsyncClient(timeout=self.settings.maps_timeout_seconds) as client:
                resp = await client.get(url, params=params, headers=headers)
        resp.raise_for_status()
        return resp.json()

    async def _cache_read(self, key: str) -> Optional[DistanceEstimate]:
        if self.redis is None:
            return None
        try:
            raw = await cache_get(self.redis, key)
        except aioredis.RedisError as exc:
            logger.warning("Distance cache read failed: %s", exc)
            return None
        if not raw:
            return None
        return DistanceEstimate(**json.loads(raw))

    async def _cache_write(self, key: str, estimate: DistanceEstimate) -> None:
        if self.redis is None:
            return
        try:
            await cache_set(
                self.redis,
                key,
                json.dumps(estimate.__dict__),
                ttl=self.settings.distance_cache_ttl_seconds,
            )
        except aioredis.RedisError as exc:
            logger.warning("Distance cache write failed: %s", exc)


def _cache_key(origin: Point, destination: Point) -> str:
    return f"distance:{origin.lat:.5f},{origin.lng:.5f}:{destination.lat:.5f},{destination.lng:.5f}"


# ---------------------------------------------------------------------------
# Geocoding
# ---------------------------------------------------------------------------

def fallback_geocode(address: str, base_lat: float, base_lng: float) -> GeocodeResult:
    """Deterministic approximate coordinates within ~0.1 degrees of the base point."""
    offset = (sum(ord(ch) for ch in address) % 200) / 1000 - 0.1
    return GeocodeResult(point=Point(base_lat + offset, base_lng + offset), formatted_address=address)


class Geocoder:
    def __init__(self, client: Optional[httpx.AsyncClient] = None, settings: Optional[Settings] = None):
        self.settings = settings or get_settings()
        self.client = client

    async def geocode(self, address: str) -> GeocodeResult:
        address = (address or "").strip()
        if not address:
            raise ValidationError("Address is required")

        if self.settings.openrouteservice_api_key:
            try:
                result = await self._openrouteservice(address)
                if result is not None:
                    return result
                logger.warning("OpenRouteService geocoding returned no features for %r", address)
            except (httpx.HTTPError, LookupError, ValueError) as exc:
                logger.error("OpenRouteService geocoding error: %s", exc)

        if not self.settings.geocoding_fallback_enabled:
            raise DependencyError(f"Could not resolve coordinates for address: {address}")

        logger.warning("Using fallback geocoding for %r", address)
        return fallback_geocode(address, self.settings.geocoding_base_lat, self.settings.geocoding_base_lng)

    async def _openrouteservice(self, address: str) -> Optional[GeocodeResult]:
        key = self.settings.openrouteservice_api_key
        params = {"api_key": key, "text": f"{address}, {self.settings.geocoding_region}", "size": 1}
        url = f"{self.settings.openrouteservice_base_url}/geocode/search"
        if self.client is not None:
            resp = await self.client.get(url, params=params, headers={"Authorization": key},
                                         timeout=self.settings.maps_timeout_seconds)
        else:
            async with httpx.AsyncClient(timeout=self.settings.maps_timeout_seconds) as client:
                resp = await client.get(url, params=params, headers={"Authorization": key})
        resp.raise_for_status()
        features = resp.json().get("features") or []
        if not features:
            return None
        feature = features[0]
        lng, lat = feature["geometry"]["coordinates"][:2]
        props = feature.get("properties") or {}
        return GeocodeResult(
            point=Point(float(lat), float(lng)),
            formatted_address=props.get("label") or props.get("name") or address,
        )
