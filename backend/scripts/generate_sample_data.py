"""Generate synthetic commute history for an end-to-end demo.

Creates one mock-provider route (user 1) with a weekday 07:00-09:00 window and
four weeks of completed sessions sampled every 5 minutes, so ``baseline`` and
``optimal`` have data without any API key:

  - travel time follows a morning peak centred on 08:10
  - 07:35-07:45 runs about four minutes below its neighbours
  - about one weekday in five carries a two-sample diversion (reroute flag)

Usage:
    python scripts/generate_sample_data.py
"""
from __future__ import annotations

import math
import random
from datetime import datetime, time, timedelta

from sqlalchemy.orm import Session

from commutewatch.models.base import MonitoringStatusEnum, RouteProviderEnum, SessionStateEnum
from commutewatch.models.monitoring_session import MonitoringSession
from commutewatch.models.monitoring_window import MonitoringWindow
from commutewatch.models.poll_record import PollRecord
from commutewatch.models.route import Route
from commutewatch.modules.reroute_detector import detect_reroute
from commutewatch.utils.clock import system_clock

ORIGIN = ("Mock Home, 1 Main St", "34.052200,-118.243700")
DESTINATION = ("Office Park, Pasadena", "34.147800,-118.144500")
BASE_DISTANCE = 18_400


def _duration_at(minute_of_day: int, rng: random.Random) -> int:
    peak = 35 * 60 * math.exp(-((minute_of_day - 490) / 25) ** 2)
    quiet = -4 * 60 if 455 <= minute_of_day <= 465 else 0
    return int(22 * 60 + peak + quiet + rng.gauss(0, 45))


def load_sample_data(db: Session, weeks: int = 4, seed: int = 42, now: datetime | None = None) -> dict:
    """Insert the demo route and its history. Returns counts of what was created."""
    rng = random.Random(seed)
    now = now or system_clock.now()

    route = db.query(Route).filter(
        Route.user_id == 1, Route.origin_address == ORIGIN[0], Route.destination_address == DESTINATION[0],
    ).first()
    if route is not None:
        return {"routes": 0, "sessions": 0, "poll_records": 0}

    route = Route(
        user_id=1,
        origin_address=ORIGIN[0],
        origin_coordinates=ORIGIN[1],
        destination_address=DESTINATION[0],
        destination_coordinates=DESTINATION[1],
        provider=RouteProviderEnum.MOCK,
        monitoring_status=MonitoringStatusEnum.ACTIVE,
    )
    route.windows.append(MonitoringWindow(start_time=time(7, 0), end_time=time(9, 0), days_of_week_mask=0b0011111))
    db.add(route)
    db.flush()

    sessions = records = 0
    for days_ago in range(weeks * 7, 0, -1):
        day = (now - timedelta(days=days_ago)).date()
        if day.weekday() >= 5:
            continue
        diversion_at = rng.randrange(420, 530, 5) if rng.random() < 0.2 else None

        session = MonitoringSession(route_id=route.route_id, session_date=day, state=SessionStateEnum.COMPLETED)
        db.add(session)
        db.flush()
        sessions += 1

        distances: list[int] = []
        stamps: list[datetime] = []
        for minute in range(420, 540, 5):
            polled_at = datetime.combine(day, time(minute // 60, minute % 60, rng.randint(0, 59)))
            distance = BASE_DISTANCE + rng.randint(-150, 150)
            if diversion_at is not None and diversion_at <= minute < diversion_at + 10:
                distance = int(distance * 1.3)
            db.add(PollRecord(
                route_id=route.route_id,
                session_id=session.session_id,
                polled_at=polled_at,
                travel_duration_seconds=_duration_at(minute, rng),
                distance_metres=distance,
                is_rerouted=detect_reroute(distances, distance),
            ))
            distances.append(distance)
            stamps.append(polled_at)
            records += 1

        session.poll_count = len(distances)
        session.first_poll_at = stamps[0]
        session.last_poll_at = stamps[-1]

    db.commit()
    return {"routes": 1, "sessions": sessions, "poll_records": records}


if __name__ == "__main__":
    from commutewatch.database import SessionLocal, init_db

    init_db()
    _db = SessionLocal()
    try:
        print(load_sample_data(_db))
    finally:
        _db.close()
