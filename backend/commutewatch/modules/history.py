"""Read-only history projections for a user's route: sessions and samples."""
from __future__ import annotations

from datetime import date, datetime
from typing import NamedTuple, Optional

from sqlalchemy.orm import Session

from commutewatch.models.monitoring_session import MonitoringSession
from commutewatch.models.poll_record import PollRecord
from commutewatch.models.route import Route

MAX_PAGE_SIZE = 500


class SessionSummary(NamedTuple):
    session_id: int
    route_id: int
    session_date: date
    state: str
    first_poll_at: Optional[datetime]
    last_poll_at: Optional[datetime]
    poll_count: int
    quota_consumed: int


class PollRecordView(NamedTuple):
    poll_record_id: int
    session_id: Optional[int]
    polled_at: datetime
    travel_duration_seconds: int
    distance_metres: int
    provider: str
    is_rerouted: bool


class PagedResult(NamedTuple):
    page: int
    page_size: int
    total: int
    items: list


def _owns_route(db: Session, route_id: int, user_id: int) -> bool:
    return db.query(Route.route_id).filter(
        Route.route_id == route_id, Route.user_id == user_id,
    ).first() is not None


def get_sessions(db: Session, route_id: int, user_id: int) -> list[SessionSummary]:
    """Sessions of an owned route, newest first. Empty for routes the user does not own."""
    rows = (
        db.query(MonitoringSession)
        .join(Route, Route.route_id == MonitoringSession.route_id)
        .filter(MonitoringSession.route_id == route_id, Route.user_id == user_id)
        .order_by(MonitoringSession.session_date.desc())
        .all()
    )
    return [
        SessionSummary(
            s.session_id, s.route_id, s.session_date, _enum_value(s.state),
            s.first_poll_at, s.last_poll_at, s.poll_count, s.quota_consumed,
        )
        for s in rows
    ]


def get_poll_history(
    db: Session,
    route_id: int,
    user_id: int,
    page: int = 1,
    page_size: int = 50,
) -> PagedResult:
    """Non-deleted samples of an owned route, newest first, 1-based pages."""
    if page < 1:
        raise ValueError("page must be >= 1")
    if not 1 <= page_size <= MAX_PAGE_SIZE:
        raise ValueError(f"page_size must be between 1 and {MAX_PAGE_SIZE}")

    if not _owns_route(db, route_id, user_id):
        return PagedResult(page, page_size, 0, [])

    query = (
        db.query(PollRecord, Route.provider)
        .join(Route, Route.route_id == PollRecord.route_id)
        .filter(PollRecord.route_id == route_id, PollRecord.is_deleted == False)  # noqa: E712
    )
    total = query.count()
    rows = (
        query.order_by(PollRecord.polled_at.desc(), PollRecord.poll_record_id.desc())
        .offset((page - 1) * page_size)
        .limit(page_size)
        .all()
    )
    items = [
        PollRecordView(
            r.poll_record_id, r.session_id, r.polled_at, r.travel_duration_seconds,
            r.distance_metres, _enum_value(provider), bool(r.is_rerouted),
        )
        for r, provider in rows
    ]
    return PagedResult(page, page_size, total, items)


def _enum_value(value) -> str:
    return value.value if hasattr(value, "value") else str(value)
