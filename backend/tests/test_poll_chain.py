"""Tests for the self-rescheduling poll chain."""
from __future__ import annotations

from datetime import timedelta
from unittest.mock import patch

import pytest

from commutewatch.models.monitoring_session import MonitoringSession
from commutewatch.models.poll_record import PollRecord
from commutewatch.models.route import Route
from commutewatch.modules.poll_chain import CHAIN_SUPERSEDED, ChainPolicy, poll_route_job, run_chain_link
from commutewatch.modules.poll_executor import PROVIDER_ERROR, RECORDED, UNEXPECTED_ERROR
from commutewatch.modules.session_scheduler import delete_route, start_session, stop_session
from commutewatch.modules.system_config import POLL_INTERVAL_KEY, set_config


@pytest.fixture
def started(db, make_route, backend, clock):
    route, window = make_route()
    result = start_session(db, route.route_id, window.window_id, 1, backend, clock=clock)
    db.refresh(route)
    first_handle = route.chain_handle
    backend.fire(first_handle)
    return route, result.session_id, first_handle


@pytest.fixture
def link(db, backend, clock, make_provider):
    """Run one chain link for a route with a scripted provider."""
    def _run(route, handle, provider=None, **kwargs):
        provider = provider or make_provider()
        return run_chain_link(db, route.route_id, handle, backend,
                              provider_factory=lambda name: provider, clock=clock, **kwargs)
    return _run


class TestChainLink:
    def test_success_reschedules_after_interval(self, db, started, backend, clock, link):
        route, _, handle = started

        outcome = link(route, handle)

        assert outcome.result.reason == RECORDED
        db.refresh(route)
        assert route.chain_handle == outcome.next_handle
        assert backend.pending_for(route.route_id) == [outcome.next_handle]
        assert backend.scheduled[-1] == (route.route_id, timedelta(minutes=5), outcome.next_handle)

    def test_provider_failure_still_reschedules(self, db, started, backend, clock, link, make_provider):
        route, session_id, handle = started

        outcome = link(route, handle, provider=make_provider(error=RuntimeError("down")))

        assert outcome.result.reason == PROVIDER_ERROR
        assert db.query(PollRecord).count() == 0
        assert db.get(MonitoringSession, session_id).poll_count == 0
        assert backend.pending_for(route.route_id) == [outcome.next_handle]

    def test_unexpected_executor_error_is_contained(self, db, started, backend, clock, link):
        route, _, handle = started

        with patch("commutewatch.modules.poll_chain.execute_poll", side_effect=RuntimeError("db hiccup")):
            outcome = link(route, handle)

        assert outcome.result.reason == UNEXPECTED_ERROR
        assert outcome.next_handle is not None

    def test_exactly_one_pending_link_across_many_ticks(self, db, started, backend, clock, link):
        route, _, handle = started
        for _ in range(5):
            outcome = link(route, handle)
            assert backend.pending_for(route.route_id) == [outcome.next_handle]
            handle = outcome.next_handle
            backend.fire(handle)
            clock.advance(minutes=5)
        assert db.query(PollRecord).count() == 5

    def test_stale_handle_does_not_reschedule(self, db, started, backend, clock, link):
        """A link whose handle was cleared while it ran (stop/delete) ends the chain."""
        route, session_id, handle = started
        stop_session(db, session_id, 1, backend)

        outcome = link(route, handle)

        assert outcome.next_handle is None
        db.refresh(route)
        assert route.chain_handle is None
        assert backend.pending_for(route.route_id) == []

    def test_link_from_previous_day_polls_nothing_after_restart(self, db, started, backend, clock, link, make_provider):
        route, _, handle = started
        stale = link(route, handle).next_handle
        clock.advance(days=1)
        restarted = start_session(db, route.route_id, route.windows[0].window_id, 1, backend, clock=clock)
        provider = make_provider()

        outcome = link(route, stale, provider=provider)

        assert outcome.result.reason == CHAIN_SUPERSEDED
        assert outcome.next_handle is None
        assert provider.calls == 0
        assert db.query(PollRecord).filter_by(session_id=restarted.session_id).count() == 0
        db.refresh(route)
        assert backend.pending_for(route.route_id) == [route.chain_handle]

    def test_deleted_route_ends_chain(self, db, started, backend, clock, link):
        route, _, handle = started
        delete_route(db, route.route_id, 1, backend)

        outcome = link(route, handle)

        assert outcome.next_handle is None
        assert backend.pending_for(route.route_id) == []

    def test_runtime_interval_override(self, db, started, backend, clock, link):
        route, _, handle = started
        set_config(db, POLL_INTERVAL_KEY, "2")
        db.commit()

        link(route, handle)

        assert backend.scheduled[-1][1] == timedelta(minutes=2)

    def test_policy_can_end_chain_on_failure(self, db, started, backend, clock, link, make_provider):
        route, _, handle = started
        policy = ChainPolicy(reschedule_on_failure=False)

        outcome = link(route, handle, provider=make_provider(error=RuntimeError("down")), policy=policy)

        assert outcome.next_handle is None
        db.refresh(route)
        assert route.chain_handle is None

    def test_schedule_failure_releases_handle(self, db, started, backend, clock, link):
        route, _, handle = started
        backend.fail_dispatch = True

        with pytest.raises(ConnectionError):
            link(route, handle)

        db.refresh(route)
        assert route.chain_handle is None


def test_default_policy_never_auto_retries():
    policy = ChainPolicy()
    assert policy.auto_retry is False
    assert policy.reschedule_on_failure is True


def test_poll_route_job_uses_own_session(engine, db, started, backend):
    from sqlalchemy.orm import sessionmaker

    route, _, handle = started
    TestSession = sessionmaker(bind=engine)
    with patch("commutewatch.database.SessionLocal", TestSession), \
            patch("commutewatch.modules.poll_chain.get_backend", return_value=backend):
        poll_route_job(route.route_id, handle)

    db.expire_all()
    assert db.get(Route, route.route_id).chain_handle != handle
    assert len(backend.pending_for(route.route_id)) == 1
