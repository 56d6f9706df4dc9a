"""Runtime overrides for engine tunables.

Defaults come from ``settings``; a row in ``system_configuration`` overrides
them without a redeploy. Unparseable values are ignored with a warning.
"""
from __future__ import annotations

import logging

from sqlalchemy.orm import Session

from commutewatch.config import settings
from commutewatch.models.system_configuration import SystemConfiguration

logger = logging.getLogger(__name__)

DAILY_QUOTA_KEY = "quota.daily.default"
REROUTE_THRESHOLD_KEY = "reroute.threshold.pct"
POLL_INTERVAL_KEY = "poll.interval.minutes"


def get_int_config(db: Session, key: str, default: int) -> int:
    row = db.query(SystemConfiguration).filter(SystemConfiguration.key == key).first()
    if row is None:
        return default
    try:
        value = int(row.value)
    except (TypeError, ValueError):
        logger.warning("system_configuration %s=%r is not an integer, using default %d", key, row.value, default)
        return default
    if value < 0:
        logger.warning("system_configuration %s=%d is negative, using default %d", key, value, default)
        return default
    return value


def set_config(db: Session, key: str, value: str, description: str | None = None) -> SystemConfiguration:
    """Upsert a configuration row. Flushes; the caller commits."""
    row = db.query(SystemConfiguration).filter(SystemConfiguration.key == key).first()
    if row is None:
        row = SystemConfiguration(key=key, value=str(value), description=description)
        db.add(row)
    else:
        row.value = str(value)
        if description is not None:
            row.description = description
    db.flush()
    return row


def daily_quota(db: Session) -> int:
    return get_int_config(db, DAILY_QUOTA_KEY, settings.DAILY_QUOTA)


def reroute_threshold_pct(db: Session) -> int:
    return get_int_config(db, REROUTE_THRESHOLD_KEY, settings.REROUTE_DISTANCE_THRESHOLD_PCT)


def poll_interval_minutes(db: Session) -> int:
    # A zero interval would spin the chain; fall back to the default.
    return get_int_config(db, POLL_INTERVAL_KEY, settings.POLL_INTERVAL_MINUTES) or settings.POLL_INTERVAL_MINUTES
