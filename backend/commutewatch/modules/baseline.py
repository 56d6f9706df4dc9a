"""Historical travel-time baseline per day of week and 5-minute slot.

Aggregates a route's session-linked, non-deleted poll records from the
trailing lookback window (``BASELINE_LOOKBACK_DAYS``, default 90) that fall on
the requested day of week. Records are bucketed by minutes since midnight,
floored to 5 minutes (07:43 -> 460).

A slot is only reported once it has been observed on at least
``BASELINE_MIN_DISTINCT_DAYS`` distinct calendar days, so one unusual morning
cannot stand in for "typical Tuesday at 07:40". ``session_count`` reports that
distinct-day count.
"""
from __future__ import annotations

import logging
import statistics
from collections import defaultdict
from datetime import date, datetime, timedelta
from typing import NamedTuple, Optional

from sqlalchemy.orm import Session

from commutewatch.config import settings
from commutewatch.models.monitoring_window import DAY_NAMES
from commutewatch.models.poll_record import PollRecord
from commutewatch.utils.clock import Clock, system_clock

logger = logging.getLogger(__name__)

BUCKET_MINUTES = 5


class BaselineSlot(NamedTuple):
    day_of_week: str
    time_slot_bucket: int
    mean_duration_seconds: float
    stddev_duration_seconds: Optional[float]
    session_count: int


def normalize_day_of_week(day_of_week: str) -> str:
    """Return the canonical English day name; ``ValueError`` for anything else."""
    for name in DAY_NAMES:
        if name.lower() == (day_of_week or "").strip().lower():
            return name
    raise ValueError(f"Invalid day of week: {day_of_week!r} (expected one of {', '.join(DAY_NAMES)})")


def time_slot_bucket(moment: datetime) -> int:
    return moment.hour * 60 + (moment.minute // BUCKET_MINUTES) * BUCKET_MINUTES


def format_bucket(bucket: int) -> str:
    return f"{(bucket // 60) % 24:02d}:{bucket % 60:02d}"


def get_baseline(
    db: Session,
    route_id: int,
    day_of_week: str,
    clock: Clock = system_clock,
) -> list[BaselineSlot]:
    """Slot statistics for ``route_id`` on ``day_of_week``, sorted by bucket."""
    day_name = normalize_day_of_week(day_of_week)
    weekday = DAY_NAMES.index(day_name)
    cutoff = clock.now() - timedelta(days=settings.BASELINE_LOOKBACK_DAYS)

    rows = (
        db.query(PollRecord.polled_at, PollRecord.travel_duration_seconds)
        .filter(
            PollRecord.route_id == route_id,
            PollRecord.is_deleted == False,  # noqa: E712
            PollRecord.session_id.isnot(None),
            PollRecord.polled_at >= cutoff,
        )
        .all()
    )

    durations: dict[int, list[int]] = defaultdict(list)
    days: dict[int, set[date]] = defaultdict(set)
    for polled_at, duration in rows:
        if polled_at.weekday() != weekday:
            continue
        bucket = time_slot_bucket(polled_at)
        durations[bucket].append(duration)
        days[bucket].add(polled_at.date())

    slots = []
    for bucket in sorted(durations):
        distinct_days = len(days[bucket])
        if distinct_days < settings.BASELINE_MIN_DISTINCT_DAYS:
            continue
        values = durations[bucket]
        slots.append(BaselineSlot(
            day_of_week=day_name,
            time_slot_bucket=bucket,
            mean_duration_seconds=statistics.fmean(values),
            stddev_duration_seconds=statistics.stdev(values) if len(values) >= 2 else None,
            session_count=distinct_days,
        ))

    logger.debug(
        "Baseline for route %d on %s: %d samples, %d of %d slots reported",
        route_id, day_name, sum(len(v) for v in durations.values()), len(slots), len(durations),
    )
    return slots
