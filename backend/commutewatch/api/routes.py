from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Header, HTTPException, Query
from sqlalchemy.orm import Session

from commutewatch.database import get_db
from commutewatch.modules.poll_executor import ProviderFactory
from commutewatch.modules.scheduler import SchedulerBackend, get_backend
from commutewatch.modules.traffic_provider import get_provider
from commutewatch.schemas.history import (
    BaselineSlotRead,
    OptimalDepartureRead,
    PollHistoryPage,
    PollRecordRead,
)
from commutewatch.schemas.route import (
    RouteCreateRequest,
    RoutePage,
    RouteRead,
    RouteUpdateRequest,
    WindowCreateRequest,
    WindowRead,
)
from commutewatch.schemas.session import (
    CheckNowResponse,
    QuotaRead,
    SessionRead,
    StartSessionResponse,
    StopSessionResponse,
)
from commutewatch.utils.clock import Clock, system_clock

logger = logging.getLogger(__name__)

router = APIRouter()


# ---------------------------------------------------------------------------
# Dependencies (overridden in tests)
# ---------------------------------------------------------------------------

def get_scheduler_backend() -> SchedulerBackend:
    return get_backend()


def get_provider_factory() -> ProviderFactory:
    return get_provider


def get_clock() -> Clock:
    return system_clock


def get_current_user(x_user_id: int = Header(..., ge=1)) -> int:
    """Caller identity. Authentication proper sits in front of this service."""
    return x_user_id


def _window_read(window) -> WindowRead:
    return WindowRead(
        window_id=window.window_id,
        route_id=window.route_id,
        start_time=window.start_time,
        end_time=window.end_time,
        days_of_week_mask=window.days_of_week_mask,
        days_of_week=window.day_names(),
        is_active=window.is_active,
    )


# ---------------------------------------------------------------------------
# Routes & windows
# ---------------------------------------------------------------------------

@router.post("/routes", response_model=RouteRead, status_code=201, tags=["routes"])
def create_route(
    body: RouteCreateRequest,
    user_id: int = Depends(get_current_user),
    provider_factory: ProviderFactory = Depends(get_provider_factory),
    db: Session = Depends(get_db),
):
    """Geocode both addresses and register the route. 422 when an address cannot be resolved."""
    from commutewatch.modules.route_admin import create_route as _create_route

    return _create_route(
        db, user_id, body.origin_address, body.destination_address,
        provider=body.provider, provider_factory=provider_factory,
    )


@router.get("/routes", response_model=RoutePage, tags=["routes"])
def list_routes(
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
    user_id: int = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    from commutewatch.modules.route_admin import list_routes as _list_routes

    result = _list_routes(db, user_id, page=page, page_size=page_size)
    return RoutePage(
        page=result.page,
        page_size=result.page_size,
        total=result.total,
        items=[RouteRead.model_validate(r) for r in result.items],
    )


@router.patch("/routes/{route_id}", response_model=RouteRead, tags=["routes"])
def update_route(
    route_id: int,
    body: RouteUpdateRequest,
    user_id: int = Depends(get_current_user),
    backend: SchedulerBackend = Depends(get_scheduler_backend),
    provider_factory: ProviderFactory = Depends(get_provider_factory),
    db: Session = Depends(get_db),
):
    """Change addresses or provider. 422 when an address cannot be resolved."""
    from commutewatch.modules.route_admin import update_route as _update_route

    route = _update_route(
        db, route_id, user_id, backend,
        origin_address=body.origin_address,
        destination_address=body.destination_address,
        provider=body.provider,
        provider_factory=provider_factory,
    )
    if route is None:
        raise HTTPException(status_code=404, detail="Route not found")
    return route


@router.delete("/routes/{route_id}", status_code=204, tags=["routes"])
def delete_route(
    route_id: int,
    user_id: int = Depends(get_current_user),
    backend: SchedulerBackend = Depends(get_scheduler_backend),
    db: Session = Depends(get_db),
):
    from commutewatch.modules.session_scheduler import delete_route as _delete_route

    if not _delete_route(db, route_id, user_id, backend):
        raise HTTPException(status_code=404, detail="Route not found")


@router.post("/routes/{route_id}/windows", response_model=WindowRead, status_code=201, tags=["routes"])
def create_window(
    route_id: int,
    body: WindowCreateRequest,
    user_id: int = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    from commutewatch.modules.route_admin import create_window as _create_window

    window = _create_window(
        db, route_id, user_id, body.start_time, body.end_time, body.days_of_week_mask,
    )
    if window is None:
        raise HTTPException(status_code=404, detail="Route not found")
    return _window_read(window)


@router.delete("/windows/{window_id}", status_code=204, tags=["routes"])
def delete_window(
    window_id: int,
    user_id: int = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    from commutewatch.modules.route_admin import delete_window as _delete_window

    if not _delete_window(db, window_id, user_id):
        raise HTTPException(status_code=404, detail="Window not found")


@router.post("/routes/{route_id}/check-now", response_model=CheckNowResponse, tags=["routes"])
def check_now(
    route_id: int,
    user_id: int = Depends(get_current_user),
    provider_factory: ProviderFactory = Depends(get_provider_factory),
    db: Session = Depends(get_db),
):
    """Live travel time. Nothing is recorded and no quota is used."""
    from commutewatch.modules.poll_executor import check_now as _check_now

    result = _check_now(db, route_id, user_id, provider_factory=provider_factory)
    if result.error_code == "NOT_FOUND":
        raise HTTPException(status_code=404, detail="Route not found")
    if not result.is_success:
        raise HTTPException(status_code=502, detail="Traffic provider unavailable")
    return CheckNowResponse(duration_seconds=result.duration_seconds, distance_metres=result.distance_metres)


# ---------------------------------------------------------------------------
# Sessions
# ---------------------------------------------------------------------------

@router.post(
    "/routes/{route_id}/windows/{window_id}/start",
    response_model=StartSessionResponse,
    tags=["sessions"],
)
def start_window(
    route_id: int,
    window_id: int,
    user_id: int = Depends(get_current_user),
    backend: SchedulerBackend = Depends(get_scheduler_backend),
    clock: Clock = Depends(get_clock),
    db: Session = Depends(get_db),
):
    """Open today's session for the route and start polling it."""
    from commutewatch.modules.session_scheduler import NOT_FOUND, QUOTA_EXCEEDED, start_session

    result = start_session(db, route_id, window_id, user_id, backend, clock=clock)
    if result.error_code == NOT_FOUND:
        raise HTTPException(status_code=404, detail="Monitoring window not found")
    if result.error_code == QUOTA_EXCEEDED:
        raise HTTPException(status_code=429, detail="Daily session quota exceeded")
    return StartSessionResponse(session_id=result.session_id, quota_remaining=result.quota_remaining)


@router.post("/sessions/{session_id}/stop", response_model=StopSessionResponse, tags=["sessions"])
def stop_session(
    session_id: int,
    user_id: int = Depends(get_current_user),
    backend: SchedulerBackend = Depends(get_scheduler_backend),
    db: Session = Depends(get_db),
):
    from commutewatch.modules.session_scheduler import stop_session as _stop_session

    if not _stop_session(db, session_id, user_id, backend):
        raise HTTPException(status_code=404, detail="Active session not found")
    return StopSessionResponse(stopped=True)


@router.get("/quota", response_model=QuotaRead, tags=["sessions"])
def get_quota(
    user_id: int = Depends(get_current_user),
    clock: Clock = Depends(get_clock),
    db: Session = Depends(get_db),
):
    from commutewatch.modules.session_scheduler import get_quota as _get_quota

    return QuotaRead(**_get_quota(db, user_id, clock=clock)._asdict())


# ---------------------------------------------------------------------------
# History & statistics
# ---------------------------------------------------------------------------

@router.get("/routes/{route_id}/sessions", response_model=list[SessionRead], tags=["history"])
def list_sessions(
    route_id: int,
    user_id: int = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    from commutewatch.modules.history import get_sessions

    return [SessionRead(**s._asdict()) for s in get_sessions(db, route_id, user_id)]


@router.get("/routes/{route_id}/history", response_model=PollHistoryPage, tags=["history"])
def poll_history(
    route_id: int,
    page: int = Query(1, ge=1),
    page_size: int = Query(50, ge=1, le=500),
    user_id: int = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    from commutewatch.modules.history import get_poll_history

    result = get_poll_history(db, route_id, user_id, page=page, page_size=page_size)
    return PollHistoryPage(
        page=result.page,
        page_size=result.page_size,
        total=result.total,
        items=[PollRecordRead(**r._asdict()) for r in result.items],
    )


def _require_route(db: Session, route_id: int, user_id: int) -> None:
    from commutewatch.models.route import Route

    exists = db.query(Route.route_id).filter(
        Route.route_id == route_id, Route.user_id == user_id,
    ).first()
    if exists is None:
        raise HTTPException(status_code=404, detail="Route not found")


@router.get(
    "/routes/{route_id}/baseline/{day_of_week}",
    response_model=list[BaselineSlotRead],
    tags=["history"],
)
def get_baseline(
    route_id: int,
    day_of_week: str,
    user_id: int = Depends(get_current_user),
    clock: Clock = Depends(get_clock),
    db: Session = Depends(get_db),
):
    """Per-slot travel time statistics; 422 for an unknown day name."""
    from commutewatch.modules.baseline import get_baseline as _get_baseline

    _require_route(db, route_id, user_id)
    return [BaselineSlotRead(**s._asdict()) for s in _get_baseline(db, route_id, day_of_week, clock=clock)]


@router.get(
    "/routes/{route_id}/optimal-departure/{day_of_week}",
    response_model=OptimalDepartureRead,
    tags=["history"],
)
def get_optimal_departure(
    route_id: int,
    day_of_week: str,
    user_id: int = Depends(get_current_user),
    clock: Clock = Depends(get_clock),
    db: Session = Depends(get_db),
):
    from commutewatch.modules.optimal_departure import get_optimal_departure as _get_optimal

    _require_route(db, route_id, user_id)
    result = _get_optimal(db, route_id, day_of_week, clock=clock)
    if result is None:
        raise HTTPException(status_code=404, detail="Not enough history for this day")
    return OptimalDepartureRead(**result._asdict())
