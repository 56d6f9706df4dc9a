"""Tests for per-slot baseline aggregation."""
from __future__ import annotations

from datetime import datetime, timedelta

import pytest

from commutewatch.models.base import SessionStateEnum
from commutewatch.models.monitoring_session import MonitoringSession
from commutewatch.models.poll_record import PollRecord
from commutewatch.modules.baseline import (
    format_bucket,
    get_baseline,
    normalize_day_of_week,
    time_slot_bucket,
)


@pytest.fixture
def route_with_session(db, make_route, clock):
    route, _ = make_route()
    session = MonitoringSession(
        route_id=route.route_id,
        session_date=clock.today() - timedelta(days=7),
        state=SessionStateEnum.COMPLETED,
    )
    db.add(session)
    db.commit()
    return route, session


def _add(db, route, session_id, polled_at, duration, deleted=False):
    db.add(PollRecord(
        route_id=route.route_id,
        session_id=session_id,
        polled_at=polled_at,
        travel_duration_seconds=duration,
        distance_metres=12_000,
        is_deleted=deleted,
    ))


def _tuesday(clock, weeks_back, hour=7, minute=40):
    return (clock.now() - timedelta(weeks=weeks_back)).replace(hour=hour, minute=minute, second=0)


class TestBucketing:
    @pytest.mark.parametrize("hour, minute, expected", [
        (0, 0, 0), (7, 40, 460), (7, 43, 460), (7, 44, 460), (7, 45, 465), (23, 59, 1435),
    ])
    def test_time_slot_bucket(self, hour, minute, expected):
        assert time_slot_bucket(datetime(2026, 3, 3, hour, minute)) == expected

    def test_format_bucket(self):
        assert format_bucket(460) == "07:40"


class TestNormalizeDay:
    def test_case_insensitive(self):
        assert normalize_day_of_week("tuesday") == "Tuesday"
        assert normalize_day_of_week(" SUNDAY ") == "Sunday"

    @pytest.mark.parametrize("bad", ["Tue", "Funday", "", "2"])
    def test_invalid_raises(self, bad):
        with pytest.raises(ValueError):
            normalize_day_of_week(bad)


class TestGetBaseline:
    def test_three_distinct_days_reported(self, db, route_with_session, clock):
        route, session = route_with_session
        for weeks_back, duration in ((1, 1200), (2, 1300), (3, 1400)):
            _add(db, route, session.session_id, _tuesday(clock, weeks_back), duration)
        db.commit()

        slots = get_baseline(db, route.route_id, "Tuesday", clock=clock)
        assert len(slots) == 1
        slot = slots[0]
        assert slot.day_of_week == "Tuesday"
        assert slot.time_slot_bucket == 460
        assert slot.mean_duration_seconds == pytest.approx(1300)
        assert slot.stddev_duration_seconds == pytest.approx(100)
        assert slot.session_count == 3

    def test_two_distinct_days_excluded_despite_many_samples(self, db, route_with_session, clock):
        route, session = route_with_session
        for weeks_back in (1, 2):
            for second in range(0, 50, 10):
                _add(db, route, session.session_id, _tuesday(clock, weeks_back).replace(second=second), 1200)
        db.commit()

        assert get_baseline(db, route.route_id, "Tuesday", clock=clock) == []

    def test_session_count_is_distinct_days(self, db, route_with_session, clock):
        route, session = route_with_session
        for weeks_back in (1, 2, 3):
            _add(db, route, session.session_id, _tuesday(clock, weeks_back, minute=40), 1200)
            _add(db, route, session.session_id, _tuesday(clock, weeks_back, minute=43), 1260)
        db.commit()

        (slot,) = get_baseline(db, route.route_id, "Tuesday", clock=clock)
        assert slot.session_count == 3
        assert slot.mean_duration_seconds == pytest.approx(1230)

    def test_ignores_deleted_unlinked_old_and_other_days(self, db, route_with_session, clock):
        route, session = route_with_session
        for weeks_back in (1, 2, 3):
            _add(db, route, session.session_id, _tuesday(clock, weeks_back), 1200)
        # Each of these alone would change the mean if counted
        _add(db, route, session.session_id, _tuesday(clock, 4), 9999, deleted=True)
        _add(db, route, None, _tuesday(clock, 5), 9999)
        _add(db, route, session.session_id, _tuesday(clock, 14), 9999)  # outside 90 days
        _add(db, route, session.session_id, _tuesday(clock, 1) + timedelta(days=1), 9999)  # Wednesday
        db.commit()

        (slot,) = get_baseline(db, route.route_id, "Tuesday", clock=clock)
        assert slot.mean_duration_seconds == pytest.approx(1200)
        assert slot.session_count == 3

    def test_single_sample_per_bucket_has_no_stddev(self, db, route_with_session, clock, monkeypatch):
        from commutewatch.config import settings

        monkeypatch.setattr(settings, "BASELINE_MIN_DISTINCT_DAYS", 1)
        route, session = route_with_session
        _add(db, route, session.session_id, _tuesday(clock, 1), 1200)
        db.commit()

        (slot,) = get_baseline(db, route.route_id, "Tuesday", clock=clock)
        assert slot.stddev_duration_seconds is None

    def test_sorted_by_bucket(self, db, route_with_session, clock):
        route, session = route_with_session
        for weeks_back in (1, 2, 3):
            for minute in (50, 10, 30):
                _add(db, route, session.session_id, _tuesday(clock, weeks_back, minute=minute), 1200)
        db.commit()

        buckets = [s.time_slot_bucket for s in get_baseline(db, route.route_id, "Tuesday", clock=clock)]
        assert buckets == [430, 450, 470]

    def test_invalid_day_raises(self, db, route_with_session, clock):
        route, _ = route_with_session
        with pytest.raises(ValueError):
            get_baseline(db, route.route_id, "Someday", clock=clock)
