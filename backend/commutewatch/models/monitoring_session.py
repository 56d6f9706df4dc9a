"""MonitoringSession entity — one calendar-day sampling run for a route.

The (route_id, session_date) unique constraint is the storage-level backstop
against two concurrent starts creating two sessions (and two poll chains) for
the same route on the same day.
"""
from __future__ import annotations

from datetime import date, datetime
from typing import Optional

from sqlalchemy import Integer, Date, DateTime, ForeignKey, UniqueConstraint, Enum as SAEnum
from sqlalchemy.orm import Mapped, mapped_column, relationship
from commutewatch.models.base import Base, SessionStateEnum


class MonitoringSession(Base):
    __tablename__ = "monitoring_sessions"
    __table_args__ = (
        UniqueConstraint("route_id", "session_date", name="uq_session_route_date"),
    )

    session_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    route_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("routes.route_id"), nullable=False, index=True
    )
    session_date: Mapped[date] = mapped_column(Date, nullable=False, index=True)
    state: Mapped[str] = mapped_column(
        SAEnum(SessionStateEnum), nullable=False, default=SessionStateEnum.ACTIVE
    )
    first_poll_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    last_poll_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    poll_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    quota_consumed: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    route = relationship("Route", back_populates="sessions")
