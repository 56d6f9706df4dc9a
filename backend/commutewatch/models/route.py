"""Route entity — a monitored origin/destination pair owned by one user."""
from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING, Optional

from sqlalchemy import Integer, String, DateTime, Enum as SAEnum, UniqueConstraint, func
from sqlalchemy.orm import Mapped, mapped_column, relationship
from commutewatch.models.base import Base, MonitoringStatusEnum, RouteProviderEnum

if TYPE_CHECKING:
    from commutewatch.models.monitoring_session import MonitoringSession
    from commutewatch.models.monitoring_window import MonitoringWindow


class Route(Base):
    __tablename__ = "routes"
    __table_args__ = (
        UniqueConstraint("user_id", "origin_address", "destination_address", name="uq_route_user_od"),
    )

    route_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    origin_address: Mapped[str] = mapped_column(String(500), nullable=False)
    # "lat,lon" as returned by the provider's geocoder
    origin_coordinates: Mapped[str] = mapped_column(String(64), nullable=False)
    destination_address: Mapped[str] = mapped_column(String(500), nullable=False)
    destination_coordinates: Mapped[str] = mapped_column(String(64), nullable=False)
    provider: Mapped[str] = mapped_column(
        SAEnum(RouteProviderEnum), nullable=False, default=RouteProviderEnum.GOOGLE_MAPS
    )
    monitoring_status: Mapped[str] = mapped_column(
        SAEnum(MonitoringStatusEnum), nullable=False, default=MonitoringStatusEnum.ACTIVE, index=True
    )
    # Scheduler handle of the pending poll-chain link; NULL when no chain is running.
    chain_handle: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=func.now())

    windows: Mapped[list["MonitoringWindow"]] = relationship(
        "MonitoringWindow", back_populates="route", cascade="all, delete-orphan"
    )
    sessions: Mapped[list["MonitoringSession"]] = relationship(
        "MonitoringSession", back_populates="route", cascade="all, delete-orphan"
    )
