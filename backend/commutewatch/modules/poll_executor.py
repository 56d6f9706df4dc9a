"""One sampling cycle for one route.

Steps:
  1. Load the route; missing or soft-deleted routes are skipped.
  2. Load today's active session; a route can hold a live chain without one
     (e.g. after the session was stopped) and simply skips.
  3. Ask the route's provider for the current travel time/distance. A raising
     provider and a provider returning None are treated alike: warning logged,
     cycle skipped, no retry inside the cycle (the next chain link tries again).
  4. Run the reroute detector against the session's prior samples.
  5. Append the sample and bump the session counters with a single SQL UPDATE
     so concurrent writers never lose an increment.

Every outcome is reported as a ``PollResult`` rather than an exception so the
chain driver can decide what to do without catching anything.
"""
from __future__ import annotations

import logging
from typing import Callable, NamedTuple, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from commutewatch.models.base import MonitoringStatusEnum, SessionStateEnum
from commutewatch.models.monitoring_session import MonitoringSession
from commutewatch.models.poll_record import PollRecord
from commutewatch.models.route import Route
from commutewatch.modules.reroute_detector import calculate_median, detect_reroute
from commutewatch.modules.system_config import reroute_threshold_pct
from commutewatch.modules.traffic_provider import TrafficProvider, TravelResult, get_provider
from commutewatch.utils.clock import Clock, system_clock

logger = logging.getLogger(__name__)

ProviderFactory = Callable[[str], TrafficProvider]

RECORDED = "recorded"
ROUTE_NOT_FOUND = "route_not_found"
NO_ACTIVE_SESSION = "no_active_session"
PROVIDER_ERROR = "provider_error"
PROVIDER_EMPTY = "provider_empty"
UNEXPECTED_ERROR = "unexpected_error"


class PollResult(NamedTuple):
    ok: bool
    reason: str
    poll_record_id: Optional[int] = None
    is_rerouted: bool = False

    def __bool__(self) -> bool:
        return self.ok


class CheckNowResult(NamedTuple):
    is_success: bool
    duration_seconds: Optional[int]
    distance_metres: Optional[int]
    error_code: Optional[str]


def execute_poll(
    db: Session,
    route_id: int,
    provider_factory: ProviderFactory = get_provider,
    clock: Clock = system_clock,
) -> PollResult:
    """Sample ``route_id`` once. Commits on success, touches nothing otherwise."""
    route = (
        db.query(Route)
        .filter(
            Route.route_id == route_id,
            Route.monitoring_status != MonitoringStatusEnum.DELETED,
        )
        .first()
    )
    if route is None:
        logger.warning("Poll: route %d not found or deleted", route_id)
        return PollResult(False, ROUTE_NOT_FOUND)

    today = clock.today()
    session = (
        db.query(MonitoringSession)
        .filter(
            MonitoringSession.route_id == route_id,
            MonitoringSession.session_date == today,
            MonitoringSession.state == SessionStateEnum.ACTIVE,
        )
        .first()
    )
    if session is None:
        logger.info("Poll: no active session for route %d on %s", route_id, today)
        return PollResult(False, NO_ACTIVE_SESSION)

    provider = provider_factory(route.provider)
    try:
        travel: Optional[TravelResult] = provider.get_travel_time(
            route.origin_coordinates, route.destination_coordinates
        )
    except Exception as exc:
        # Provider code is third-party territory; any failure only skips this cycle.
        logger.warning("Poll: provider %s failed for route %d, sample skipped: %s", provider.name, route_id, exc)
        return PollResult(False, PROVIDER_ERROR)

    if travel is None:
        logger.warning("Poll: provider %s returned nothing for route %d", provider.name, route_id)
        return PollResult(False, PROVIDER_EMPTY)

    polled_at = clock.now()

    # Newest first, then reversed: the detector wants oldest -> newest.
    prior_distances = [
        d for (d,) in (
            db.query(PollRecord.distance_metres)
            .filter(
                PollRecord.session_id == session.session_id,
                PollRecord.is_deleted == False,  # noqa: E712
            )
            .order_by(PollRecord.polled_at.desc(), PollRecord.poll_record_id.desc())
            .all()
        )
    ]
    prior_distances.reverse()

    threshold_pct = reroute_threshold_pct(db)
    is_rerouted = detect_reroute(prior_distances, travel.distance_metres, threshold_pct)
    if is_rerouted:
        logger.info(
            "Reroute detected for route %d: current=%dm, prior=%dm, median=%.0fm",
            route_id, travel.distance_metres, prior_distances[-1], calculate_median(prior_distances),
        )

    record = PollRecord(
        route_id=route_id,
        session_id=session.session_id,
        polled_at=polled_at,
        travel_duration_seconds=travel.duration_seconds,
        distance_metres=travel.distance_metres,
        is_rerouted=is_rerouted,
        raw_provider_response=travel.raw_json,
    )
    db.add(record)

    db.query(MonitoringSession).filter(
        MonitoringSession.session_id == session.session_id,
    ).update(
        {
            MonitoringSession.poll_count: MonitoringSession.poll_count + 1,
            MonitoringSession.last_poll_at: polled_at,
            MonitoringSession.first_poll_at: func.coalesce(MonitoringSession.first_poll_at, polled_at),
        },
        synchronize_session=False,
    )
    db.commit()

    logger.debug(
        "Poll: route %d recorded %ds / %dm (session %d)",
        route_id, travel.duration_seconds, travel.distance_metres, session.session_id,
    )
    return PollResult(True, RECORDED, record.poll_record_id, is_rerouted)


def check_now(
    db: Session,
    route_id: int,
    user_id: int,
    provider_factory: ProviderFactory = get_provider,
) -> CheckNowResult:
    """Live travel time for an owned route. Persists nothing, consumes no quota."""
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
        return CheckNowResult(False, None, None, "NOT_FOUND")

    provider = provider_factory(route.provider)
    try:
        travel = provider.get_travel_time(route.origin_coordinates, route.destination_coordinates)
    except Exception as exc:
        logger.warning("Check-now: provider %s failed for route %d: %s", provider.name, route_id, exc)
        travel = None

    if travel is None:
        return CheckNowResult(False, None, None, "PROVIDER_ERROR")
    return CheckNowResult(True, travel.duration_seconds, travel.distance_metres, None)
