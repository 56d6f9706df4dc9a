"""MonitoringWindow entity — a route's configured sampling schedule."""
from __future__ import annotations

from datetime import datetime, time

from sqlalchemy import Integer, Boolean, DateTime, Time, ForeignKey, func
from sqlalchemy.orm import Mapped, mapped_column, relationship
from commutewatch.models.base import Base

DAY_NAMES = ("Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday", "Sunday")


class MonitoringWindow(Base):
    __tablename__ = "monitoring_windows"

    window_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    route_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("routes.route_id"), nullable=False, index=True
    )
    start_time: Mapped[time] = mapped_column(Time, nullable=False)
    end_time: Mapped[time] = mapped_column(Time, nullable=False)
    # Bitfield: bit 0 = Monday … bit 6 = Sunday
    days_of_week_mask: Mapped[int] = mapped_column(Integer, nullable=False, default=0b0011111)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=func.now())

    route = relationship("Route", back_populates="windows")

    def day_names(self) -> list[str]:
        return [name for bit, name in enumerate(DAY_NAMES) if self.days_of_week_mask & (1 << bit)]
