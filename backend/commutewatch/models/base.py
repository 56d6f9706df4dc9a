"""Shared declarative base and enums for all models."""
from __future__ import annotations

import enum
from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    pass


class MonitoringStatusEnum(str, enum.Enum):
    ACTIVE = "active"
    PAUSED = "paused"
    # Soft-deleted: history is kept, any pending poll chain is cancelled.
    DELETED = "deleted"


class SessionStateEnum(str, enum.Enum):
    ACTIVE = "active"
    COMPLETED = "completed"


class RouteProviderEnum(str, enum.Enum):
    GOOGLE_MAPS = "google_maps"
    # TomTom routes are served by Nominatim geocoding + OSRM routing (no API key).
    TOMTOM = "tomtom"
    MOCK = "mock"
