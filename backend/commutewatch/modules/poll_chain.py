"""Self-rescheduling poll chain: one pending link per monitored route.

Each link:
  1. checks it still owns the route's handle; a superseded link polls nothing,
  2. runs the poll executor (whatever happens there is reduced to a
     ``PollResult``; nothing escapes to the scheduler),
  3. allocates its successor's handle and swaps it onto the route with a
     compare-and-set against its own handle,
  4. dispatches the successor ``poll_interval_minutes`` later.

The compare-and-set in step 3 is the chain's concurrency control; step 1
only keeps a superseded link from polling. A stop or a
route delete clears ``Route.chain_handle``; a link already in flight then
finds its own handle gone, dispatches nothing, and the chain ends. Because
the successor handle is written before the successor job exists, a stop
that lands between steps 3 and 4 still sees (and cancels) the right handle;
cancelling a handle whose job is not yet in the store is a no-op and the
late dispatch is then dropped by the next link's CAS.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import timedelta
from typing import NamedTuple, Optional

from sqlalchemy.orm import Session

from commutewatch.models.route import Route
from commutewatch.modules.poll_executor import (
    PollResult,
    ProviderFactory,
    UNEXPECTED_ERROR,
    execute_poll,
)
from commutewatch.modules.scheduler import SchedulerBackend, get_backend
from commutewatch.modules.system_config import poll_interval_minutes
from commutewatch.modules.traffic_provider import get_provider
from commutewatch.utils.clock import Clock, system_clock

logger = logging.getLogger(__name__)

# Reason reported by a link that no longer owns its route's chain
CHAIN_SUPERSEDED = "chain_superseded"


@dataclass(frozen=True)
class ChainPolicy:
    """How a link reacts to its own outcome.

    ``reschedule_on_failure``: a failed sample must not break the chain.
    ``auto_retry``: the scheduler never re-runs a link; a failed sample is
    simply retried by the next link. Kept as data so it is declared, not
    implied by exception handling.
    """

    reschedule_on_failure: bool = True
    auto_retry: bool = False
    interval_minutes: int | None = None  # None: read poll.interval.minutes / settings

    def should_reschedule(self, result: PollResult) -> bool:
        return result.ok or self.reschedule_on_failure


DEFAULT_POLICY = ChainPolicy()


class ChainLinkOutcome(NamedTuple):
    result: PollResult
    next_handle: Optional[str]


def run_chain_link(
    db: Session,
    route_id: int,
    handle: str,
    backend: SchedulerBackend,
    provider_factory: ProviderFactory = get_provider,
    clock: Clock = system_clock,
    policy: ChainPolicy = DEFAULT_POLICY,
) -> ChainLinkOutcome:
    """Execute one link of ``route_id``'s chain identified by ``handle``."""
    if not _owns_handle(db, route_id, handle):
        logger.info(
            "Poll chain link %s for route %d superseded (stopped, deleted or restarted); not polling",
            handle, route_id,
        )
        return ChainLinkOutcome(PollResult(False, CHAIN_SUPERSEDED), None)

    logger.info("Poll chain link %s executing for route %d", handle, route_id)

    try:
        result = execute_poll(db, route_id, provider_factory=provider_factory, clock=clock)
    except Exception:
        logger.exception("Poll chain: unexpected error polling route %d", route_id)
        db.rollback()
        result = PollResult(False, UNEXPECTED_ERROR)

    if not policy.should_reschedule(result):
        _release_handle(db, route_id, handle)
        logger.info("Poll chain for route %d ended by policy after %s", route_id, result.reason)
        return ChainLinkOutcome(result, None)

    interval = policy.interval_minutes or poll_interval_minutes(db)
    next_handle = backend.new_handle()
    claimed = (
        db.query(Route)
        .filter(Route.route_id == route_id, Route.chain_handle == handle)
        .update({Route.chain_handle: next_handle}, synchronize_session=False)
    )
    db.commit()

    if not claimed:
        logger.info(
            "Poll chain for route %d no longer owns handle %s (stopped or deleted); not rescheduling",
            route_id, handle,
        )
        return ChainLinkOutcome(result, None)

    try:
        backend.schedule(route_id, timedelta(minutes=interval), handle=next_handle)
    except Exception:
        _release_handle(db, route_id, next_handle)
        raise
    logger.info(
        "Poll chain: next poll for route %d in %d min as %s (%s)",
        route_id, interval, next_handle, result.reason,
    )
    return ChainLinkOutcome(result, next_handle)


def _owns_handle(db: Session, route_id: int, handle: str) -> bool:
    return db.query(Route.route_id).filter(
        Route.route_id == route_id, Route.chain_handle == handle,
    ).first() is not None


def _release_handle(db: Session, route_id: int, handle: str) -> None:
    db.query(Route).filter(
        Route.route_id == route_id, Route.chain_handle == handle,
    ).update({Route.chain_handle: None}, synchronize_session=False)
    db.commit()


def poll_route_job(route_id: int, handle: str) -> None:
    """Scheduler entry point; opens its own database session."""
    from commutewatch.database import SessionLocal

    db = SessionLocal()
    try:
        run_chain_link(db, route_id, handle, get_backend())
    finally:
        db.close()
