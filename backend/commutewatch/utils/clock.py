"""Injectable time source.

All "now" and "today" decisions in the engine (session date, sample
timestamps, baseline lookback, retention cutoff) go through a Clock so tests
can pin time. Values are naive UTC to match the ``DateTime`` columns.
"""
from __future__ import annotations

from datetime import date, datetime, timedelta, timezone


class Clock:
    """Wall clock in UTC."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc).replace(tzinfo=None)

    def today(self) -> date:
        return self.now().date()


class FixedClock(Clock):
    """Clock pinned to a given instant; ``advance()`` moves it forward."""

    def __init__(self, instant: datetime):
        if instant.tzinfo is not None:
            instant = instant.astimezone(timezone.utc).replace(tzinfo=None)
        self._instant = instant

    def now(self) -> datetime:
        return self._instant

    def advance(self, **kwargs) -> None:
        self._instant += timedelta(**kwargs)


system_clock = Clock()
