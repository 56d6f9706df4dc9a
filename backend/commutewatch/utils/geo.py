"""Coordinate parsing and geodesic distance helpers.

Routes store coordinates as the ``"lat,lon"`` strings returned by geocoders;
these helpers are the only place that string format is interpreted.
"""
from __future__ import annotations

import math

_EARTH_RADIUS_M: float = 6_371_000.0  # Earth mean radius in metres


def parse_coordinates(coords: str) -> tuple[float, float]:
    """Parse ``"lat,lon"`` into floats. Raises ValueError on malformed input."""
    parts = [p.strip() for p in (coords or "").split(",")]
    if len(parts) != 2:
        raise ValueError(f"Expected 'lat,lon', got {coords!r}")
    lat, lon = float(parts[0]), float(parts[1])
    if not (-90.0 <= lat <= 90.0 and -180.0 <= lon <= 180.0):
        raise ValueError(f"Coordinates out of range: {coords!r}")
    return lat, lon


def format_coordinates(lat: float, lon: float) -> str:
    return f"{lat},{lon}"


def to_lon_lat(coords: str) -> str:
    """``"lat,lon"`` → ``"lon,lat"`` (OSRM path order)."""
    lat, lon = parse_coordinates(coords)
    return f"{lon},{lat}"


def haversine_meters(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Great-circle distance in metres between two WGS-84 coordinates."""
    phi1, phi2 = math.radians(lat1), math.radians(lat2)
    dphi = math.radians(lat2 - lat1)
    dlam = math.radians(lon2 - lon1)
    a = (
        math.sin(dphi / 2) ** 2
        + math.cos(phi1) * math.cos(phi2) * math.sin(dlam / 2) ** 2
    )
    return _EARTH_RADIUS_M * 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))
