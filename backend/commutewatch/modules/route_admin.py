"""Route and monitoring-window administration.

Addresses are resolved to "lat,lon" through the route's own provider when
a route is created or an address changes; polls never geocode.
"""
from __future__ import annotations

import logging
from datetime import time
from typing import Optional

from sqlalchemy.orm import Session

from commutewatch.models.base import MonitoringStatusEnum, RouteProviderEnum
from commutewatch.models.monitoring_window import MonitoringWindow
from commutewatch.models.route import Route
from commutewatch.modules.history import PagedResult
from commutewatch.modules.poll_executor import ProviderFactory
from commutewatch.modules.scheduler import SchedulerBackend
from commutewatch.modules.traffic_provider import get_provider

logger = logging.getLogger(__name__)

_ALL_DAYS_MASK = 0b1111111
MAX_ROUTE_PAGE_SIZE = 100


def create_route(
    db: Session,
    user_id: int,
    origin_address: str,
    destination_address: str,
    provider: RouteProviderEnum | str = RouteProviderEnum.GOOGLE_MAPS,
    provider_factory: ProviderFactory = get_provider,
) -> Route:
    """Geocode both ends and persist an active route.

    Raises ValueError when an address is blank or cannot be resolved, or when
    both ends resolve to the same point.
    """
    origin_address = (origin_address or "").strip()
    destination_address = (destination_address or "").strip()
    if not origin_address or not destination_address:
        raise ValueError("Origin and destination addresses are required")

    provider = RouteProviderEnum(provider)
    client = provider_factory(provider.value)

    origin = _geocode_or_raise(client, origin_address, "origin")
    destination = _geocode_or_raise(client, destination_address, "destination")
    if origin == destination:
        raise ValueError("Origin and destination resolve to the same coordinates")

    route = Route(
        user_id=user_id,
        origin_address=origin_address,
        origin_coordinates=origin,
        destination_address=destination_address,
        destination_coordinates=destination,
        provider=provider,
        monitoring_status=MonitoringStatusEnum.ACTIVE,
    )
    db.add(route)
    db.commit()
    db.refresh(route)
    logger.info("Route %d created for user %d via %s", route.route_id, user_id, provider.value)
    return route


def create_window(
    db: Session,
    route_id: int,
    user_id: int,
    start_time: time,
    end_time: time,
    days_of_week_mask: int = 0b0011111,
) -> Optional[MonitoringWindow]:
    """Add a window to an owned, live route. None when the route is not found."""
    if end_time <= start_time:
        raise ValueError("end_time must be after start_time")
    if not 1 <= days_of_week_mask <= _ALL_DAYS_MASK:
        raise ValueError("days_of_week_mask must select at least one day (1..127)")

    route = (
        db.query(Route)
        .filter(
            Route.route_id == route_id,
            Route.user_id == user_id,
            Route.monitoring_status != MonitoringStatusEnum.DELETED,
        )
        .first()
    )
    if route is None:
        return None

    window = MonitoringWindow(
        route_id=route_id,
        start_time=start_time,
        end_time=end_time,
        days_of_week_mask=days_of_week_mask,
        is_active=True,
    )
    db.add(window)
    db.commit()
    db.refresh(window)
    logger.info(
        "Window %d (%s-%s, %s) added to route %d",
        window.window_id, start_time.strftime("%H:%M"), end_time.strftime("%H:%M"),
        ",".join(window.day_names()), route_id,
    )
    return window


def list_routes(db: Session, user_id: int, page: int = 1, page_size: int = 20) -> PagedResult:
    """Live routes of a user, newest first. Out-of-range paging is clamped."""
    page = max(page, 1)
    page_size = min(max(page_size, 1), MAX_ROUTE_PAGE_SIZE)

    query = db.query(Route).filter(
        Route.user_id == user_id,
        Route.monitoring_status != MonitoringStatusEnum.DELETED,
    )
    total = query.count()
    routes = (
        query.order_by(Route.created_at.desc(), Route.route_id.desc())
        .offset((page - 1) * page_size)
        .limit(page_size)
        .all()
    )
    return PagedResult(page, page_size, total, routes)


def update_route(
    db: Session,
    route_id: int,
    user_id: int,
    backend: SchedulerBackend,
    origin_address: str | None = None,
    destination_address: str | None = None,
    provider: RouteProviderEnum | str | None = None,
    provider_factory: ProviderFactory = get_provider,
) -> Optional[Route]:
    """Change addresses and/or provider of an owned, live route.

    Only changed addresses are geocoded again. Switching provider cancels the
    route's running chain. Returns None when the route is not found; raises
    ValueError like ``create_route``.
    """
    route = (
        db.query(Route)
        .filter(
            Route.route_id == route_id,
            Route.user_id == user_id,
            Route.monitoring_status != MonitoringStatusEnum.DELETED,
        )
        .first()
    )
    if route is None:
        return None

    new_provider = RouteProviderEnum(provider) if provider is not None else RouteProviderEnum(route.provider)
    client = provider_factory(new_provider.value)

    origin = (route.origin_address, route.origin_coordinates)
    destination = (route.destination_address, route.destination_coordinates)
    if origin_address is not None:
        origin = (origin_address.strip(), _geocode_or_raise(client, origin_address, "origin"))
    if destination_address is not None:
        destination = (destination_address.strip(), _geocode_or_raise(client, destination_address, "destination"))
    if origin[1] == destination[1]:
        raise ValueError("Origin and destination resolve to the same coordinates")
    route.origin_address, route.origin_coordinates = origin
    route.destination_address, route.destination_coordinates = destination

    if new_provider != route.provider:
        if route.chain_handle is not None:
            backend.cancel(route.chain_handle)
            logger.info("Cancelled poll chain %s for route %d: provider changed", route.chain_handle, route_id)
            route.chain_handle = None
        route.provider = new_provider

    db.commit()
    db.refresh(route)
    logger.info("Route %d updated by user %d", route_id, user_id)
    return route


def delete_window(db: Session, window_id: int, user_id: int) -> bool:
    """Deactivate an owned window. False when missing, not owned or already inactive."""
    window = (
        db.query(MonitoringWindow)
        .join(Route, Route.route_id == MonitoringWindow.route_id)
        .filter(
            MonitoringWindow.window_id == window_id,
            MonitoringWindow.is_active == True,  # noqa: E712
            Route.user_id == user_id,
        )
        .first()
    )
    if window is None:
        return False

    window.is_active = False
    db.commit()
    logger.info("Window %d deactivated on route %d", window_id, window.route_id)
    return True


def _geocode_or_raise(client, address: str, which: str) -> str:
    address = address.strip()
    coords = client.geocode(address) if address else None
    if coords is None:
        logger.warning("Geocode failed for %s address %r", which, address)
        raise ValueError(f"Could not geocode {which} address: {address}")
    return coords
