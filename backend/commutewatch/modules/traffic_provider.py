"""Travel-time provider clients.

Each route names a provider; ``get_provider()`` resolves it to a client with
two calls:

  geocode(address)                    -> "lat,lon" | None
  get_travel_time(origin, destination) -> TravelResult | None

Clients return None on any HTTP, network or payload error (after the shared
retry helper has given up) and log why. The poll executor still guards
against a client raising, but a well-behaved client never does.

Providers:
  google_maps — Google Geocoding + Distance Matrix (traffic-aware, needs key)
  tomtom      — Nominatim geocoding + OSRM routing (free, no key)
  mock        — synthetic results for local development and e2e runs

References:
  https://developers.google.com/maps/documentation/distance-matrix
  https://nominatim.org/release-docs/latest/api/Search/
  https://project-osrm.org/docs/v5.24.0/api/#route-service
"""
from __future__ import annotations

import json
import logging
import random
from typing import NamedTuple, Optional

import httpx

from commutewatch.config import settings
from commutewatch.models.base import RouteProviderEnum
from commutewatch.utils.geo import (
    format_coordinates,
    haversine_meters,
    parse_coordinates,
    to_lon_lat,
)
from commutewatch.utils.http_retry import retry_request

logger = logging.getLogger(__name__)

_GOOGLE_GEOCODE_URL = "https://maps.googleapis.com/maps/api/geocode/json"
_GOOGLE_DISTANCE_MATRIX_URL = "https://maps.googleapis.com/maps/api/distancematrix/json"
_NOMINATIM_URL = "https://nominatim.openstreetmap.org/search"

# Errors that mean "no usable answer this time" rather than a programming bug
_PROVIDER_ERRORS = (httpx.HTTPError, ValueError, KeyError, IndexError, TypeError)


class TravelResult(NamedTuple):
    duration_seconds: int
    distance_metres: int
    raw_json: Optional[str]


class TrafficProvider:
    """Base client. ``transport`` lets tests inject ``httpx.MockTransport``."""

    name = "base"

    def __init__(self, timeout: float | None = None, transport: httpx.BaseTransport | None = None):
        self.timeout = timeout if timeout is not None else settings.PROVIDER_TIMEOUT_SECONDS
        self._transport = transport

    def _client(self, **kwargs) -> httpx.Client:
        return httpx.Client(timeout=self.timeout, transport=self._transport, **kwargs)

    def geocode(self, address: str) -> Optional[str]:
        raise NotImplementedError

    def get_travel_time(self, origin: str, destination: str) -> Optional[TravelResult]:
        raise NotImplementedError


class GoogleMapsTrafficProvider(TrafficProvider):
    name = "google_maps"

    def __init__(self, api_key: str | None = None, **kwargs):
        super().__init__(**kwargs)
        self.api_key = api_key if api_key is not None else settings.GOOGLE_MAPS_API_KEY

    def geocode(self, address: str) -> Optional[str]:
        if not self.api_key:
            logger.error("Google Maps API key is not configured (GOOGLE_MAPS_API_KEY)")
            return None
        try:
            with self._client() as client:
                resp = retry_request(
                    client.get, _GOOGLE_GEOCODE_URL,
                    params={"address": address, "key": self.api_key},
                )
            data = resp.json()
            if data.get("status") == "OK" and data.get("results"):
                loc = data["results"][0]["geometry"]["location"]
                coords = format_coordinates(float(loc["lat"]), float(loc["lng"]))
                logger.debug("Google geocoded %r -> %s", address, coords)
                return coords
            logger.warning("Google geocoding returned status %r for %r", data.get("status"), address)
            return None
        except _PROVIDER_ERRORS as exc:
            logger.error("Google geocoding failed for %r: %s", address, exc)
            return None

    def get_travel_time(self, origin: str, destination: str) -> Optional[TravelResult]:
        if not self.api_key:
            logger.error("Google Maps API key is not configured (GOOGLE_MAPS_API_KEY)")
            return None
        params = {
            "origins": origin,
            "destinations": destination,
            "departure_time": "now",
            "traffic_model": "best_guess",
            "key": self.api_key,
        }
        try:
            with self._client() as client:
                resp = retry_request(client.get, _GOOGLE_DISTANCE_MATRIX_URL, params=params)
            data = resp.json()
            rows = data.get("rows") or [{}]
            elements = rows[0].get("elements") or [{}]
            element = elements[0]
            if element.get("status") != "OK":
                logger.warning(
                    "Google Distance Matrix status %r for %s -> %s",
                    element.get("status") or data.get("status"), origin, destination,
                )
                return None
            # Prefer the traffic-aware duration when the API supplies one
            duration = (element.get("duration_in_traffic") or element["duration"])["value"]
            distance = element["distance"]["value"]
            logger.debug("Google: %s -> %s = %ss / %sm", origin, destination, duration, distance)
            return TravelResult(int(duration), int(distance), resp.text)
        except _PROVIDER_ERRORS as exc:
            logger.error("Google Distance Matrix failed for %s -> %s: %s", origin, destination, exc)
            return None


class OsrmTrafficProvider(TrafficProvider):
    """Nominatim geocoding + OSRM routing, used for ``tomtom`` routes."""

    name = "tomtom"

    def __init__(self, base_url: str | None = None, user_agent: str | None = None, **kwargs):
        super().__init__(**kwargs)
        self.base_url = (base_url or settings.OSRM_BASE_URL).rstrip("/")
        # Nominatim usage policy requires an identifying User-Agent
        self.user_agent = user_agent or settings.NOMINATIM_USER_AGENT

    def geocode(self, address: str) -> Optional[str]:
        try:
            with self._client(headers={"User-Agent": self.user_agent}) as client:
                resp = retry_request(
                    client.get, _NOMINATIM_URL,
                    params={"q": address, "format": "json", "limit": 1},
                )
            results = resp.json()
            if results:
                coords = format_coordinates(float(results[0]["lat"]), float(results[0]["lon"]))
                logger.debug("Nominatim geocoded %r -> %s", address, coords)
                return coords
            logger.warning("Nominatim returned no results for %r", address)
            return None
        except _PROVIDER_ERRORS as exc:
            logger.error("Nominatim geocoding failed for %r: %s", address, exc)
            return None

    def get_travel_time(self, origin: str, destination: str) -> Optional[TravelResult]:
        try:
            path = f"{to_lon_lat(origin)};{to_lon_lat(destination)}"
            url = f"{self.base_url}/route/v1/driving/{path}"
            with self._client(headers={"User-Agent": self.user_agent}) as client:
                resp = retry_request(
                    client.get, url, params={"overview": "false", "annotations": "false"},
                )
            data = resp.json()
            routes = data.get("routes") or []
            if data.get("code") != "Ok" or not routes:
                logger.warning("OSRM returned code %r for %s -> %s", data.get("code"), origin, destination)
                return None
            duration = round(float(routes[0]["duration"]))
            distance = round(float(routes[0]["distance"]))
            logger.debug("OSRM: %s -> %s = %ss / %sm", origin, destination, duration, distance)
            return TravelResult(duration, distance, resp.text)
        except _PROVIDER_ERRORS as exc:
            logger.error("OSRM routing failed for %s -> %s: %s", origin, destination, exc)
            return None


class MockTrafficProvider(TrafficProvider):
    """Synthetic provider: no network, no key, plausible numbers.

    Addresses starting with "Mock" geocode to downtown Los Angeles; anything
    else to Pasadena. Travel distance is the great-circle distance times a
    road factor (or 5–15 km when the points coincide), duration 15–45 min.
    """

    name = "mock"

    _MOCK_ORIGIN = (34.0522, -118.2437)
    _MOCK_OTHER = (34.1478, -118.1445)

    def __init__(self, seed: int | None = None, **kwargs):
        super().__init__(**kwargs)
        self._rng = random.Random(seed)

    def geocode(self, address: str) -> Optional[str]:
        lat, lon = self._MOCK_ORIGIN if address.lower().startswith("mock") else self._MOCK_OTHER
        return format_coordinates(lat, lon)

    def get_travel_time(self, origin: str, destination: str) -> Optional[TravelResult]:
        (lat1, lon1), (lat2, lon2) = parse_coordinates(origin), parse_coordinates(destination)
        straight = haversine_meters(lat1, lon1, lat2, lon2)
        if straight < 100:
            distance = self._rng.randint(5_000, 15_000)
        else:
            distance = int(straight * self._rng.uniform(1.25, 1.4))
        duration = self._rng.randint(900, 2_700)
        raw = json.dumps({"status": "OK", "mock": True})
        return TravelResult(duration, distance, raw)


def get_provider(provider: RouteProviderEnum | str) -> TrafficProvider:
    """Resolve a route's provider setting to a client instance."""
    if settings.USE_MOCK_PROVIDER:
        return MockTrafficProvider()
    key = RouteProviderEnum(provider)
    if key == RouteProviderEnum.GOOGLE_MAPS:
        return GoogleMapsTrafficProvider()
    if key == RouteProviderEnum.TOMTOM:
        return OsrmTrafficProvider()
    return MockTrafficProvider()
