"""Nightly retention prune for poll records.

Records older than ``RETENTION_DAYS`` are soft-deleted (``is_deleted=True``)
and their raw provider payload is dropped; durations and distances stay for
audit. Baseline and history queries already ignore deleted rows.
"""
from __future__ import annotations

import logging
from datetime import timedelta

from sqlalchemy.orm import Session

from commutewatch.config import settings
from commutewatch.models.poll_record import PollRecord
from commutewatch.utils.clock import Clock, system_clock

logger = logging.getLogger(__name__)


def prune_old_poll_records(db: Session, clock: Clock = system_clock) -> int:
    """Soft-delete expired records; returns how many were pruned."""
    cutoff = clock.now() - timedelta(days=settings.RETENTION_DAYS)
    pruned = (
        db.query(PollRecord)
        .filter(PollRecord.is_deleted == False, PollRecord.polled_at < cutoff)  # noqa: E712
        .update(
            {PollRecord.is_deleted: True, PollRecord.raw_provider_response: None},
            synchronize_session=False,
        )
    )
    db.commit()
    if pruned:
        logger.info("Retention: soft-deleted %d poll records older than %s", pruned, cutoff)
    return pruned


def prune_job() -> None:
    """Scheduler entry point for the nightly cron job."""
    from commutewatch.database import SessionLocal

    db = SessionLocal()
    try:
        prune_old_poll_records(db)
    finally:
        db.close()
