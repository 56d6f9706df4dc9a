"""Pydantic schemas for baseline, optimal departure and poll history."""
from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel


class BaselineSlotRead(BaseModel):
    day_of_week: str
    time_slot_bucket: int
    mean_duration_seconds: float
    stddev_duration_seconds: Optional[float] = None
    session_count: int


class OptimalDepartureRead(BaseModel):
    day_of_week: str
    start_bucket: int
    end_bucket: int
    predicted_duration_seconds: float
    lower_bound: float
    upper_bound: float
    label: str


class PollRecordRead(BaseModel):
    poll_record_id: int
    session_id: Optional[int] = None
    polled_at: datetime
    travel_duration_seconds: int
    distance_metres: int
    provider: str
    is_rerouted: bool


class PollHistoryPage(BaseModel):
    page: int
    page_size: int
    total: int
    items: list[PollRecordRead]
