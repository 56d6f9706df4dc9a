"""Tests for session and poll-history projections."""
from __future__ import annotations

from datetime import timedelta

import pytest

from commutewatch.models.base import SessionStateEnum
from commutewatch.models.monitoring_session import MonitoringSession
from commutewatch.models.poll_record import PollRecord
from commutewatch.modules.history import MAX_PAGE_SIZE, get_poll_history, get_sessions


@pytest.fixture
def route_with_history(db, make_route, clock):
    """Route with 3 sessions (newest today) and 7 samples, one soft-deleted."""
    route, _ = make_route()
    sessions = []
    for days_ago in (2, 1, 0):
        s = MonitoringSession(
            route_id=route.route_id,
            session_date=clock.today() - timedelta(days=days_ago),
            state=SessionStateEnum.ACTIVE if days_ago == 0 else SessionStateEnum.COMPLETED,
        )
        db.add(s)
        sessions.append(s)
    db.flush()
    for i in range(7):
        db.add(PollRecord(
            route_id=route.route_id,
            session_id=sessions[-1].session_id,
            polled_at=clock.now() - timedelta(minutes=5 * (7 - i)),
            travel_duration_seconds=1500 + i,
            distance_metres=12_000,
            is_rerouted=(i == 3),
            is_deleted=(i == 0),
        ))
    db.commit()
    return route


class TestGetSessions:
    def test_newest_first(self, db, route_with_history, clock):
        result = get_sessions(db, route_with_history.route_id, 1)

        assert [s.session_date for s in result] == [
            clock.today(), clock.today() - timedelta(days=1), clock.today() - timedelta(days=2),
        ]
        assert result[0].state == "active"
        assert result[1].state == "completed"
        assert result[0].quota_consumed == 0

    def test_other_user_sees_nothing(self, db, route_with_history):
        assert get_sessions(db, route_with_history.route_id, 2) == []


class TestGetPollHistory:
    def test_newest_first_excluding_deleted(self, db, route_with_history):
        result = get_poll_history(db, route_with_history.route_id, 1)

        assert result.total == 6
        durations = [r.travel_duration_seconds for r in result.items]
        assert durations == [1506, 1505, 1504, 1503, 1502, 1501]
        assert [r.is_rerouted for r in result.items].count(True) == 1
        assert result.items[0].provider == "mock"

    def test_pagination(self, db, route_with_history):
        page1 = get_poll_history(db, route_with_history.route_id, 1, page=1, page_size=4)
        page2 = get_poll_history(db, route_with_history.route_id, 1, page=2, page_size=4)
        page3 = get_poll_history(db, route_with_history.route_id, 1, page=3, page_size=4)

        assert len(page1.items) == 4
        assert len(page2.items) == 2
        assert page3.items == []
        assert page1.total == page2.total == 6
        ids = {r.poll_record_id for r in page1.items} | {r.poll_record_id for r in page2.items}
        assert len(ids) == 6

    def test_not_owned_returns_empty_page(self, db, route_with_history):
        result = get_poll_history(db, route_with_history.route_id, 99)
        assert result.total == 0
        assert result.items == []

    @pytest.mark.parametrize("page,page_size", [(0, 10), (1, 0), (1, MAX_PAGE_SIZE + 1)])
    def test_invalid_paging_raises(self, db, route_with_history, page, page_size):
        with pytest.raises(ValueError):
            get_poll_history(db, route_with_history.route_id, 1, page=page, page_size=page_size)
