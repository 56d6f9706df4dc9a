"""PollRecord entity — one provider response for a route.

Append-only evidence trail: rows are never updated except to soft-delete them
during retention pruning.
"""
from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy import Integer, Boolean, DateTime, ForeignKey, Text
from sqlalchemy.orm import Mapped, mapped_column
from commutewatch.models.base import Base


class PollRecord(Base):
    __tablename__ = "poll_records"

    poll_record_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    route_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("routes.route_id"), nullable=False, index=True
    )
    session_id: Mapped[Optional[int]] = mapped_column(
        Integer, ForeignKey("monitoring_sessions.session_id"), nullable=True, index=True
    )
    polled_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, index=True)
    travel_duration_seconds: Mapped[int] = mapped_column(Integer, nullable=False)
    distance_metres: Mapped[int] = mapped_column(Integer, nullable=False)
    is_rerouted: Mapped[bool] = mapped_column(Boolean, default=False)
    is_deleted: Mapped[bool] = mapped_column(Boolean, default=False, index=True)
    raw_provider_response: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
