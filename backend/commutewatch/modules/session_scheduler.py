"""Quota-gated monitoring session lifecycle.

start_session  — open today's session for a route and launch its poll chain
stop_session   — complete an active session and cancel the chain
delete_route   — soft-delete a route, cancelling any chain
get_quota      — today's session usage against the daily quota

Only two failure codes cross this boundary, as result values:
``NOT_FOUND`` (window/route/session missing or not owned) and
``QUOTA_EXCEEDED``. Scheduler or database failures propagate.

Invariant: a route holds at most one pending chain handle. A second start on
the same day returns the existing session without dispatching anything; a
start on a new day cancels any chain still running for the route before it
dispatches the new one.
"""
from __future__ import annotations

import logging
from datetime import date, datetime, time, timedelta
from typing import NamedTuple, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from commutewatch.models.base import MonitoringStatusEnum, SessionStateEnum
from commutewatch.models.monitoring_session import MonitoringSession
from commutewatch.models.monitoring_window import MonitoringWindow
from commutewatch.models.route import Route
from commutewatch.modules.scheduler import SchedulerBackend
from commutewatch.modules.system_config import daily_quota
from commutewatch.utils.clock import Clock, system_clock

logger = logging.getLogger(__name__)

NOT_FOUND = "NOT_FOUND"
QUOTA_EXCEEDED = "QUOTA_EXCEEDED"


class StartResult(NamedTuple):
    is_success: bool
    error_code: Optional[str]
    quota_remaining: int
    session_id: Optional[int]


class QuotaStatus(NamedTuple):
    daily_limit: int
    used_today: int
    remaining: int
    resets_at_utc: datetime


def count_user_sessions(db: Session, user_id: int, day: date) -> int:
    """Sessions dated ``day`` across all of the user's routes (deleted routes included)."""
    return (
        db.query(MonitoringSession)
        .join(Route, Route.route_id == MonitoringSession.route_id)
        .filter(Route.user_id == user_id, MonitoringSession.session_date == day)
        .count()
    )


def start_session(
    db: Session,
    route_id: int,
    window_id: int,
    user_id: int,
    backend: SchedulerBackend,
    clock: Clock = system_clock,
) -> StartResult:
    window = (
        db.query(MonitoringWindow)
        .join(Route, Route.route_id == MonitoringWindow.route_id)
        .filter(
            MonitoringWindow.window_id == window_id,
            MonitoringWindow.route_id == route_id,
            MonitoringWindow.is_active == True,  # noqa: E712
            Route.user_id == user_id,
            Route.monitoring_status != MonitoringStatusEnum.DELETED,
        )
        .first()
    )
    if window is None:
        return StartResult(False, NOT_FOUND, 0, None)

    today = clock.today()
    quota = daily_quota(db)

    existing = _session_for_day(db, route_id, today)
    if existing is not None:
        logger.info(
            "Start for window %d: session %d already exists for route %d today, returning it",
            window_id, existing.session_id, route_id,
        )
        used = count_user_sessions(db, user_id, today)
        return StartResult(True, None, max(0, quota - used), existing.session_id)

    used = count_user_sessions(db, user_id, today)
    if used >= quota:
        logger.info("Quota exceeded for user %d on %s (%d/%d)", user_id, today, used, quota)
        return StartResult(False, QUOTA_EXCEEDED, 0, None)

    session = MonitoringSession(
        route_id=route_id,
        session_date=today,
        state=SessionStateEnum.ACTIVE,
        poll_count=0,
        quota_consumed=0,
    )
    try:
        with db.begin_nested():
            db.add(session)
            db.flush()
    except IntegrityError:
        # A concurrent start for the same route won the (route, date) race.
        winner = _session_for_day(db, route_id, today)
        if winner is None:
            raise
        logger.info("Start for route %d lost a concurrent race, returning session %d", route_id, winner.session_id)
        used = count_user_sessions(db, user_id, today)
        return StartResult(True, None, max(0, quota - used), winner.session_id)

    # A chain left running from an earlier day's unstopped session is replaced.
    route = db.get(Route, route_id)
    _cancel_chain(route, backend)
    # Persist the handle before the job exists so the first link owns it.
    handle = backend.new_handle()
    route.chain_handle = handle
    db.commit()

    try:
        backend.enqueue(route_id, handle=handle)
    except Exception:
        logger.error("Failed to dispatch poll chain for route %d; clearing handle %s", route_id, handle)
        route.chain_handle = None
        db.commit()
        raise

    logger.info(
        "Monitoring started for window %d, route %d, session %d, chain %s",
        window_id, route_id, session.session_id, handle,
    )
    return StartResult(True, None, quota - used - 1, session.session_id)


def stop_session(
    db: Session,
    session_id: int,
    user_id: int,
    backend: SchedulerBackend,
) -> bool:
    """Complete an active session. False (no-op) when missing, not owned or already completed."""
    session = (
        db.query(MonitoringSession)
        .join(Route, Route.route_id == MonitoringSession.route_id)
        .filter(
            MonitoringSession.session_id == session_id,
            MonitoringSession.state == SessionStateEnum.ACTIVE,
            Route.user_id == user_id,
        )
        .first()
    )
    if session is None:
        return False

    session.state = SessionStateEnum.COMPLETED
    route = db.get(Route, session.route_id)
    _cancel_chain(route, backend)
    db.commit()

    logger.info("Session %d stopped for route %d", session_id, session.route_id)
    return True


def delete_route(
    db: Session,
    route_id: int,
    user_id: int,
    backend: SchedulerBackend,
) -> bool:
    """Soft-delete a route; samples and sessions are kept for history."""
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
        return False

    _cancel_chain(route, backend)
    route.monitoring_status = MonitoringStatusEnum.DELETED
    db.commit()

    logger.info("Route %d soft-deleted by user %d", route_id, user_id)
    return True


def get_quota(db: Session, user_id: int, clock: Clock = system_clock) -> QuotaStatus:
    today = clock.today()
    limit = daily_quota(db)
    used = count_user_sessions(db, user_id, today)
    resets_at = datetime.combine(today + timedelta(days=1), time.min)
    return QuotaStatus(limit, used, max(0, limit - used), resets_at)


def _session_for_day(db: Session, route_id: int, day: date) -> Optional[MonitoringSession]:
    return (
        db.query(MonitoringSession)
        .filter(MonitoringSession.route_id == route_id, MonitoringSession.session_date == day)
        .first()
    )


def _cancel_chain(route: Route | None, backend: SchedulerBackend) -> None:
    """Cancel the pending link and clear the handle (caller commits)."""
    if route is None or route.chain_handle is None:
        return
    backend.cancel(route.chain_handle)
    logger.info("Cancelled poll chain %s for route %d", route.chain_handle, route.route_id)
    route.chain_handle = None
