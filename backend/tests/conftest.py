"""Shared test fixtures: in-memory database, fake scheduler, fixed clock, stub provider."""
import os

# Keep the app's own engine away from any real database file.
os.environ.setdefault("DATABASE_URL", "sqlite://")

from datetime import datetime, time, timedelta

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import sessionmaker

from commutewatch.database import create_db_engine, get_db
from commutewatch.models import Base
from commutewatch.models.base import MonitoringStatusEnum, RouteProviderEnum
from commutewatch.models.monitoring_window import MonitoringWindow
from commutewatch.models.route import Route
from commutewatch.modules.scheduler import SchedulerBackend
from commutewatch.modules.traffic_provider import TrafficProvider, TravelResult
from commutewatch.utils.clock import FixedClock

# Tuesday 2026-03-03 07:30 UTC
NOW = datetime(2026, 3, 3, 7, 30)


class FakeSchedulerBackend(SchedulerBackend):
    """Records dispatches instead of running them."""

    def __init__(self):
        self.scheduled: list[tuple[int, timedelta, str]] = []
        self.cancelled: list[str] = []
        self.pending: dict[str, int] = {}
        self.fail_dispatch = False

    def schedule(self, route_id, delay, handle=None):
        if self.fail_dispatch:
            raise ConnectionError("job store unavailable")
        handle = handle or self.new_handle()
        self.scheduled.append((route_id, delay, handle))
        self.pending[handle] = route_id
        return handle

    def cancel(self, handle):
        self.cancelled.append(handle)
        self.pending.pop(handle, None)

    def fire(self, handle):
        """Mark a pending job as run (APScheduler drops date jobs once fired)."""
        return self.pending.pop(handle)

    def pending_for(self, route_id):
        return [h for h, r in self.pending.items() if r == route_id]


class StubProvider(TrafficProvider):
    """Scripted provider: returns ``results`` in order, raises ``error`` if set."""

    name = "stub"

    def __init__(self, results=None, error=None, geocodes=None):
        super().__init__()
        self.results = list(results or [])
        self.error = error
        self.geocodes = geocodes or {}
        self.calls = 0

    def geocode(self, address):
        return self.geocodes.get(address)

    def get_travel_time(self, origin, destination):
        self.calls += 1
        if self.error is not None:
            raise self.error
        if not self.results:
            return TravelResult(1800, 12_000, '{"status": "OK"}')
        return self.results.pop(0)


@pytest.fixture
def engine():
    engine = create_db_engine("sqlite://")
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def db(engine):
    """In-memory SQLite session with all tables."""
    Session = sessionmaker(bind=engine, autocommit=False, autoflush=False)
    session = Session()
    yield session
    session.close()


@pytest.fixture
def backend():
    return FakeSchedulerBackend()


@pytest.fixture
def clock():
    return FixedClock(NOW)


@pytest.fixture
def stub_provider():
    return StubProvider()


@pytest.fixture
def make_provider():
    """Factory for scripted providers: ``make_provider(results=..., error=...)``."""
    return StubProvider


@pytest.fixture
def provider_factory(stub_provider):
    return lambda name: stub_provider


@pytest.fixture
def make_route(db):
    """Factory: an active route (and weekday 07:00-09:00 window) owned by ``user_id``."""
    counter = {"n": 0}

    def _make(user_id=1, status=MonitoringStatusEnum.ACTIVE):
        counter["n"] += 1
        route = Route(
            user_id=user_id,
            origin_address=f"{counter['n']} Origin St",
            origin_coordinates="34.052200,-118.243700",
            destination_address=f"{counter['n']} Destination Ave",
            destination_coordinates="34.147800,-118.144500",
            provider=RouteProviderEnum.MOCK,
            monitoring_status=status,
        )
        route.windows.append(MonitoringWindow(start_time=time(7, 0), end_time=time(9, 0)))
        db.add(route)
        db.commit()
        return route, route.windows[0]

    return _make


@pytest.fixture
def api_client(db, backend, clock, provider_factory):
    """TestClient with database, scheduler, clock and provider dependencies overridden."""
    from commutewatch.api.routes import get_clock, get_provider_factory, get_scheduler_backend
    from commutewatch.main import app

    def override_get_db():
        yield db

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_scheduler_backend] = lambda: backend
    app.dependency_overrides[get_clock] = lambda: clock
    app.dependency_overrides[get_provider_factory] = lambda: provider_factory
    with TestClient(app) as client:
        yield client
    app.dependency_overrides.clear()
