"""Pydantic schemas for session lifecycle, quota and live checks."""
from __future__ import annotations

from datetime import date, datetime
from typing import Optional

from pydantic import BaseModel


class StartSessionResponse(BaseModel):
    session_id: int
    quota_remaining: int


class StopSessionResponse(BaseModel):
    stopped: bool


class QuotaRead(BaseModel):
    daily_limit: int
    used_today: int
    remaining: int
    resets_at_utc: datetime


class SessionRead(BaseModel):
    session_id: int
    route_id: int
    session_date: date
    state: str
    first_poll_at: Optional[datetime] = None
    last_poll_at: Optional[datetime] = None
    poll_count: int
    quota_consumed: int


class CheckNowResponse(BaseModel):
    duration_seconds: int
    distance_metres: int
