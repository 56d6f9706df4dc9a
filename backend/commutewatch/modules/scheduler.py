"""Durable timer backend for the per-route poll chain.

The engine needs exactly three primitives from a scheduler:

  enqueue(route_id, handle)         run the poll chain for a route now
  schedule(route_id, delay, handle) run it once after ``delay``
  cancel(handle)                    drop a pending run; unknown handles are a no-op

Handles are opaque strings allocated by ``new_handle()`` *before* dispatch so
callers can persist the handle on the route first and only then hand the job
to the scheduler (see poll_chain for why the order matters).

``APSchedulerBackend`` implements them with APScheduler one-shot ``date`` jobs
in a SQLAlchemy job store, so pending links survive process restarts and no
thread sleeps between samples. Processes that only dispatch (API, CLI) start
the scheduler paused: jobs are written to the store but executed only by the
``commutewatch worker`` process.
"""
from __future__ import annotations

import logging
import uuid
from datetime import datetime, timedelta, timezone

from apscheduler.executors.pool import ThreadPoolExecutor
from apscheduler.jobstores.base import JobLookupError
from apscheduler.jobstores.memory import MemoryJobStore
from apscheduler.jobstores.sqlalchemy import SQLAlchemyJobStore
from apscheduler.schedulers.background import BackgroundScheduler

from commutewatch.config import settings

logger = logging.getLogger(__name__)

# Textual reference so the job survives pickling into the persistent store
POLL_JOB_REF = "commutewatch.modules.poll_chain:poll_route_job"
PRUNE_JOB_REF = "commutewatch.modules.retention:prune_job"
_PRUNE_JOB_ID = "nightly-prune"
# Worker wakes at least this often to notice jobs added by other processes
_WAKEUP_SECONDS = 15


class SchedulerBackend:
    """Interface; see module docstring."""

    def new_handle(self) -> str:
        return uuid.uuid4().hex

    def enqueue(self, route_id: int, handle: str | None = None) -> str:
        return self.schedule(route_id, timedelta(0), handle)

    def schedule(self, route_id: int, delay: timedelta, handle: str | None = None) -> str:
        raise NotImplementedError

    def cancel(self, handle: str) -> None:
        raise NotImplementedError


class APSchedulerBackend(SchedulerBackend):

    def __init__(self, scheduler: BackgroundScheduler):
        self._scheduler = scheduler

    @property
    def scheduler(self) -> BackgroundScheduler:
        return self._scheduler

    def schedule(self, route_id: int, delay: timedelta, handle: str | None = None) -> str:
        handle = handle or self.new_handle()
        run_at = datetime.now(timezone.utc) + delay
        self._scheduler.add_job(
            POLL_JOB_REF,
            trigger="date",
            run_date=run_at,
            args=[route_id, handle],
            id=handle,
            name=f"poll-route-{route_id}",
            replace_existing=True,
        )
        logger.debug("Scheduled poll for route %d as %s at %s", route_id, handle, run_at.isoformat())
        return handle

    def cancel(self, handle: str) -> None:
        try:
            self._scheduler.remove_job(handle)
            logger.info("Cancelled poll job %s", handle)
        except JobLookupError:
            # Already fired or already cancelled
            logger.debug("Poll job %s not pending, nothing to cancel", handle)


def build_scheduler() -> BackgroundScheduler:
    """BackgroundScheduler with a persistent store for poll jobs.

    ``misfire_grace_time`` defaults to None so a link that became due while
    no worker was running still fires once the worker is back; otherwise the
    chain would silently end. ``max_instances=1`` keeps a route's link from
    overlapping itself. APScheduler never re-runs a job that raised.
    """
    jobstore_url = settings.SCHEDULER_JOBSTORE_URL or settings.DATABASE_URL
    return BackgroundScheduler(
        jobstores={
            "default": SQLAlchemyJobStore(url=jobstore_url, tablename="apscheduler_jobs"),
            "local": MemoryJobStore(),
        },
        executors={"default": ThreadPoolExecutor(settings.SCHEDULER_MAX_WORKERS)},
        job_defaults={
            "coalesce": True,
            "max_instances": 1,
            "misfire_grace_time": settings.SCHEDULER_MISFIRE_GRACE_SECONDS,
        },
        timezone=timezone.utc,
    )


_backend: SchedulerBackend | None = None


def get_backend() -> SchedulerBackend:
    """Process-wide backend; dispatch-only (paused) unless a worker started it."""
    global _backend
    if _backend is None:
        scheduler = build_scheduler()
        scheduler.start(paused=True)
        _backend = APSchedulerBackend(scheduler)
        logger.info("Scheduler backend started in dispatch-only mode")
    return _backend


def set_backend(backend: SchedulerBackend | None) -> None:
    global _backend
    _backend = backend


def start_worker() -> APSchedulerBackend:
    """Start a backend that executes poll jobs, plus the nightly retention prune."""
    scheduler = build_scheduler()
    scheduler.add_job(
        PRUNE_JOB_REF,
        trigger="cron",
        hour=3,
        minute=0,
        id=_PRUNE_JOB_ID,
        replace_existing=True,
    )
    scheduler.add_job(
        _wakeup,
        trigger="interval",
        seconds=_WAKEUP_SECONDS,
        id="wakeup",
        jobstore="local",
        replace_existing=True,
    )
    scheduler.start()
    backend = APSchedulerBackend(scheduler)
    set_backend(backend)
    logger.info("Scheduler worker started (%d threads)", settings.SCHEDULER_MAX_WORKERS)
    return backend


def shutdown_backend(wait: bool = True) -> None:
    global _backend
    if isinstance(_backend, APSchedulerBackend) and _backend.scheduler.running:
        _backend.scheduler.shutdown(wait=wait)
    _backend = None


def _wakeup() -> None:
    """No-op; its trigger makes the scheduler re-read the shared job store."""
