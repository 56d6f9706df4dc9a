"""SystemConfiguration entity — runtime key/value overrides for tunables.

Known keys: ``quota.daily.default``, ``reroute.threshold.pct``,
``poll.interval.minutes``.
"""
from __future__ import annotations

from typing import Optional

from sqlalchemy import String, Text
from sqlalchemy.orm import Mapped, mapped_column
from commutewatch.models.base import Base


class SystemConfiguration(Base):
    __tablename__ = "system_configuration"

    key: Mapped[str] = mapped_column(String(100), primary_key=True)
    value: Mapped[str] = mapped_column(String(500), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
