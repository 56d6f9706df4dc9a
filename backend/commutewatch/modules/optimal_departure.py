"""Best departure window from a route's baseline slots.

A slot "qualifies" when its mean travel time is within
``OPTIMAL_WINDOW_TOLERANCE`` (5%) of the fastest slot. The optimal window is
the longest run of qualifying slots whose buckets are exactly 5 minutes apart;
on equal-length runs the earliest one wins.
"""
from __future__ import annotations

import logging
from typing import Iterable, NamedTuple, Optional

from sqlalchemy.orm import Session

from commutewatch.config import settings
from commutewatch.modules.baseline import (
    BUCKET_MINUTES,
    BaselineSlot,
    format_bucket,
    get_baseline,
)
from commutewatch.utils.clock import Clock, system_clock

logger = logging.getLogger(__name__)


class OptimalWindow(NamedTuple):
    start_bucket: int
    end_bucket: int
    min_mean: float


class OptimalDeparture(NamedTuple):
    day_of_week: str
    start_bucket: int
    end_bucket: int
    predicted_duration_seconds: float
    lower_bound: float
    upper_bound: float
    label: str


def find_optimal_window(
    slots: Iterable[BaselineSlot],
    tolerance: float | None = None,
) -> OptimalWindow:
    slots = list(slots)
    if not slots:
        raise ValueError("find_optimal_window requires at least one slot")
    if tolerance is None:
        tolerance = settings.OPTIMAL_WINDOW_TOLERANCE

    min_mean = min(s.mean_duration_seconds for s in slots)
    threshold = min_mean * (1 + tolerance)
    qualifying = sorted(s.time_slot_bucket for s in slots if s.mean_duration_seconds <= threshold)

    if not qualifying:
        # Unreachable with a non-negative tolerance, kept for negative ones.
        best = min(slots, key=lambda s: s.mean_duration_seconds)
        return OptimalWindow(best.time_slot_bucket, best.time_slot_bucket, min_mean)

    best_start = best_end = cur_start = cur_end = qualifying[0]
    for prev, bucket in zip(qualifying, qualifying[1:]):
        if bucket == prev + BUCKET_MINUTES:
            cur_end = bucket
            continue
        if cur_end - cur_start > best_end - best_start:
            best_start, best_end = cur_start, cur_end
        cur_start = cur_end = bucket
    if cur_end - cur_start > best_end - best_start:
        best_start, best_end = cur_start, cur_end

    return OptimalWindow(best_start, best_end, min_mean)


def window_label(start_bucket: int, end_bucket: int) -> str:
    return f"{format_bucket(start_bucket)}–{format_bucket(end_bucket + BUCKET_MINUTES)}"


def get_optimal_departure(
    db: Session,
    route_id: int,
    day_of_week: str,
    clock: Clock = system_clock,
) -> Optional[OptimalDeparture]:
    """None when the route has no reportable baseline for that day."""
    slots = get_baseline(db, route_id, day_of_week, clock=clock)
    if not slots:
        logger.info("Optimal departure: no baseline for route %d on %s", route_id, day_of_week)
        return None

    window = find_optimal_window(slots)
    tolerance = settings.OPTIMAL_WINDOW_TOLERANCE
    return OptimalDeparture(
        day_of_week=slots[0].day_of_week,
        start_bucket=window.start_bucket,
        end_bucket=window.end_bucket,
        predicted_duration_seconds=window.min_mean,
        lower_bound=window.min_mean * (1 - tolerance),
        upper_bound=window.min_mean * (1 + tolerance),
        label=window_label(window.start_bucket, window.end_bucket),
    )
