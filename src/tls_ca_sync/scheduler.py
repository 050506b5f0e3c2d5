"""
Scheduler — periodic full resync of every TLS Secret in scope.

APScheduler 3.x, driven by a standard 5-field cron expression.

The resync job never reconciles by itself: it lists TLS Secrets and puts a
trigger for each into the work queue, so resync and watch events share the
same de-duplication and per-key serialization. It covers events the watch
missed and namespaces whose TLSSecretWatcher appeared after their Secrets.
"""

from __future__ import annotations

import signal
import sys
from collections.abc import Callable

import structlog
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.schedulers.base import BaseScheduler
from apscheduler.schedulers.blocking import BlockingScheduler
from apscheduler.triggers.cron import CronTrigger
from railway import LoggingExecutionContext
from railway.result import Failure, Result, Success

from tls_ca_sync.domain.models import Trigger
from tls_ca_sync.domain.ports import RecordStore

log = structlog.get_logger()

RESYNC_JOB_ID = "tls_ca_sync_resync"


def resync(store: RecordStore, enqueue: Callable[[Trigger], None]) -> Result[int]:
    """List every TLS Secret in scope and enqueue it. Returns how many were queued."""

    def _enqueue_all(keys: list[Trigger]) -> None:
        for key in keys:
            enqueue(key)

    return store.list_credentials().peek(_enqueue_all).map(len)


def create_scheduler(
    resync_fn: Callable[[], Result[int]],
    cron: str = "*/10 * * * *",
    run_on_startup: bool = True,
    background: bool = False,
) -> BaseScheduler:
    """
    Build the scheduler with the resync job registered; the caller starts it.

    background=True returns a BackgroundScheduler for hosting inside the ASGI
    server, which owns signal handling. Otherwise a BlockingScheduler with its
    own SIGINT/SIGTERM handlers is returned. Overlapping runs are coalesced.
    """
    scheduler: BaseScheduler = BackgroundScheduler() if background else BlockingScheduler()
    ctx = LoggingExecutionContext(operation="Resync")

    def _job() -> None:
        match ctx.execute(resync_fn):
            case Success(queued):
                log.info("scheduler.resync_completed", queued=queued)
            case Failure(err):
                log.error("scheduler.resync_failed", failure=str(err))

    scheduler.add_job(
        _job,
        trigger=CronTrigger.from_crontab(cron),
        id=RESYNC_JOB_ID,
        name="TLS Secret resync",
        replace_existing=True,
        max_instances=1,
        coalesce=True,
    )

    if run_on_startup:
        log.info("scheduler.startup_run")
        _job()

    if not background:
        _register_shutdown_signals(scheduler)

    return scheduler


def _register_shutdown_signals(scheduler: BaseScheduler) -> None:
    def _shutdown(signum: int, frame: object) -> None:
        log.info("scheduler.shutdown_requested", signal=signal.Signals(signum).name)
        scheduler.shutdown(wait=False)
        sys.exit(0)

    for signum in (signal.SIGINT, signal.SIGTERM):
        signal.signal(signum, _shutdown)
