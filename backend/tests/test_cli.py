"""Tests for CommuteWatch CLI commands."""
from __future__ import annotations

from datetime import timedelta
from unittest.mock import patch

import pytest
from sqlalchemy.orm import sessionmaker
from typer.testing import CliRunner

from commutewatch.cli import _days_mask, app
from commutewatch.models.base import MonitoringStatusEnum, RouteProviderEnum, SessionStateEnum
from commutewatch.models.monitoring_session import MonitoringSession
from commutewatch.models.poll_record import PollRecord
from commutewatch.models.route import Route
from commutewatch.utils.clock import system_clock

runner = CliRunner()


@pytest.fixture
def session_factory(engine):
    """Point the CLI's SessionLocal at the in-memory test database."""
    factory = sessionmaker(bind=engine, autocommit=False, autoflush=False)
    with patch("commutewatch.database.SessionLocal", factory):
        yield factory


@pytest.fixture
def cli_backend(backend):
    with patch("commutewatch.modules.scheduler.get_backend", return_value=backend):
        yield backend

@pytest.fixture
def seeded(session_factory, db, make_route):
    route, window = make_route()
    return route.route_id, window.window_id


# ---------------------------------------------------------------------------
# Setup & routes
# ---------------------------------------------------------------------------


@patch("commutewatch.database.init_db")
def test_init_db(mock_init):
    result = runner.invoke(app, ["init-db"])
    assert result.exit_code == 0
    mock_init.assert_called_once()
    assert "Database initialised" in result.output


@patch("commutewatch.database.init_db")
def test_init_db_demo_loads_sample_data(mock_init, session_factory):
    with patch("scripts.generate_sample_data.load_sample_data",
               return_value={"routes": 1, "sessions": 20, "poll_records": 480}) as mock_load:
        result = runner.invoke(app, ["init-db", "--demo"])

    assert result.exit_code == 0
    mock_load.assert_called_once()
    assert "20 sessions" in result.output


def test_add_route_with_mock_provider(session_factory):
    result = runner.invoke(app, ["add-route", "Mock Home", "Office", "--provider", "mock"])

    assert result.exit_code == 0, result.output
    assert "created" in result.output
    db = session_factory()
    try:
        route = db.query(Route).one()
        assert route.provider == RouteProviderEnum.MOCK
        assert route.user_id == 1
    finally:
        db.close()


def test_add_route_same_point_fails(session_factory):
    # Both addresses resolve to the same mock coordinates
    result = runner.invoke(app, ["add-route", "Office", "Other Office", "--provider", "mock"])
    assert result.exit_code == 1
    assert "same coordinates" in result.output


def test_add_window(seeded, session_factory):
    route_id, _ = seeded
    result = runner.invoke(app, ["add-window", str(route_id), "--start", "16:30", "--end", "18:00", "--days", "sat,sun"])

    assert result.exit_code == 0, result.output
    assert "Saturday, Sunday" in result.output


def test_add_window_bad_time(seeded, session_factory):
    route_id, _ = seeded
    result = runner.invoke(app, ["add-window", str(route_id), "--start", "7am"])
    assert result.exit_code == 1
    assert "Invalid time" in result.output


def test_add_window_unknown_route(session_factory):
    result = runner.invoke(app, ["add-window", "999"])
    assert result.exit_code == 1
    assert "not found" in result.output


def test_days_mask():
    assert _days_mask("mon,tue,wed,thu,fri") == 0b0011111
    assert _days_mask("Sunday") == 0b1000000


def test_list_routes(seeded, session_factory, make_route):
    make_route(user_id=2)
    result = runner.invoke(app, ["list-routes"])

    assert result.exit_code == 0, result.output
    assert "1 total" in result.output
    assert "mock" in result.output


def test_list_routes_empty(session_factory):
    result = runner.invoke(app, ["list-routes", "--user", "7"])
    assert result.exit_code == 0
    assert "No routes" in result.output


def test_delete_window(seeded, session_factory, cli_backend):
    route_id, window_id = seeded

    result = runner.invoke(app, ["delete-window", str(window_id)])
    assert result.exit_code == 0, result.output

    again = runner.invoke(app, ["delete-window", str(window_id)])
    assert again.exit_code == 1
    assert "not found" in again.output

    start = runner.invoke(app, ["start", str(route_id), str(window_id)])
    assert start.exit_code == 1


def test_delete_route(seeded, session_factory, cli_backend):
    route_id, _ = seeded
    result = runner.invoke(app, ["delete-route", str(route_id)])

    assert result.exit_code == 0
    db = session_factory()
    try:
        assert db.get(Route, route_id).monitoring_status == MonitoringStatusEnum.DELETED
    finally:
        db.close()


# ---------------------------------------------------------------------------
# Sessions
# ---------------------------------------------------------------------------


def test_start_and_stop(seeded, session_factory, cli_backend):
    route_id, window_id = seeded

    result = runner.invoke(app, ["start", str(route_id), str(window_id)])
    assert result.exit_code == 0, result.output
    assert "9 sessions left today" in result.output
    assert len(cli_backend.pending_for(route_id)) == 1

    db = session_factory()
    try:
        session_id = db.query(MonitoringSession).one().session_id
    finally:
        db.close()

    result = runner.invoke(app, ["stop", str(session_id)])
    assert result.exit_code == 0
    assert cli_backend.pending_for(route_id) == []

    result = runner.invoke(app, ["stop", str(session_id)])
    assert result.exit_code == 1
    assert "not active" in result.output


def test_start_unknown_window(seeded, session_factory, cli_backend):
    route_id, _ = seeded
    result = runner.invoke(app, ["start", str(route_id), "999"])
    assert result.exit_code == 1
    assert "not found" in result.output


def test_quota(session_factory):
    result = runner.invoke(app, ["quota"])
    assert result.exit_code == 0
    assert "0/10" in result.output


# ---------------------------------------------------------------------------
# Statistics
# ---------------------------------------------------------------------------


def _seed_history(db, route_id):
    """Three completed sessions on the same weekday as today, previous weeks."""
    today = system_clock.today()
    now = system_clock.now().replace(hour=7, minute=40, second=0, microsecond=0)
    for weeks_back in (1, 2, 3):
        s = MonitoringSession(
            route_id=route_id, session_date=today - timedelta(weeks=weeks_back),
            state=SessionStateEnum.COMPLETED,
        )
        db.add(s)
        db.flush()
        for offset, duration in ((0, 1500), (5, 1900)):
            db.add(PollRecord(
                route_id=route_id, session_id=s.session_id,
                polled_at=now - timedelta(weeks=weeks_back) + timedelta(minutes=offset),
                travel_duration_seconds=duration, distance_metres=12_000,
            ))
    db.commit()
    return today.strftime("%A")


def test_baseline_table(seeded, session_factory, db):
    route_id, _ = seeded
    day = _seed_history(db, route_id)

    result = runner.invoke(app, ["baseline", str(route_id), day])

    assert result.exit_code == 0, result.output
    assert "07:40" in result.output
    assert "07:45" in result.output


def test_baseline_no_history(seeded, session_factory):
    route_id, _ = seeded
    result = runner.invoke(app, ["baseline", str(route_id), "Monday"])
    assert result.exit_code == 0
    assert "Not enough history" in result.output


def test_baseline_invalid_day(seeded, session_factory):
    route_id, _ = seeded
    result = runner.invoke(app, ["baseline", str(route_id), "Someday"])
    assert result.exit_code == 1


def test_optimal(seeded, session_factory, db):
    route_id, _ = seeded
    day = _seed_history(db, route_id)

    result = runner.invoke(app, ["optimal", str(route_id), day])

    assert result.exit_code == 0, result.output
    assert "07:40–07:45" in result.output


# ---------------------------------------------------------------------------
# Operations
# ---------------------------------------------------------------------------


def test_poll_once_without_session(seeded, session_factory):
    route_id, _ = seeded
    result = runner.invoke(app, ["poll-once", str(route_id)])
    assert result.exit_code == 1
    assert "No sample recorded" in result.output


@patch("commutewatch.modules.retention.prune_old_poll_records", return_value=42)
def test_prune(mock_prune, session_factory):
    result = runner.invoke(app, ["prune"])
    assert result.exit_code == 0
    assert "Pruned 42" in result.output
    mock_prune.assert_called_once()


def test_status_lists_routes(seeded, session_factory):
    result = runner.invoke(app, ["status"])
    assert result.exit_code == 0
    assert "Database" in result.output
    assert "idle" in result.output


def test_status_empty(session_factory):
    result = runner.invoke(app, ["status"])
    assert result.exit_code == 0
    assert "No routes yet" in result.output


@patch("uvicorn.run")
def test_serve(mock_run):
    result = runner.invoke(app, ["serve", "--port", "9000"])
    assert result.exit_code == 0
    mock_run.assert_called_once_with("commutewatch.main:app", host="127.0.0.1", port=9000)


@patch("commutewatch.modules.scheduler.shutdown_backend")
@patch("commutewatch.modules.scheduler.start_worker")
@patch("commutewatch.database.init_db")
def test_worker_stops_on_interrupt(mock_init, mock_start, mock_shutdown):
    with patch("time.sleep", side_effect=KeyboardInterrupt):
        result = runner.invoke(app, ["worker"])

    assert result.exit_code == 0
    mock_start.assert_called_once()
    mock_shutdown.assert_called_once()
