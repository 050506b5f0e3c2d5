"""
ASGI entry point — the controller as a FastAPI service.

Lifespan startup builds the Runtime (Secret and TLSSecretWatcher watch
threads + reconcile workers) and a BackgroundScheduler for the periodic
resync; shutdown stops the scheduler first so no resync enqueues into a
draining queue. If startup fails after the Runtime was built, it is stopped
before the error propagates.

Endpoints:
  GET  /health                     liveness: both watchers and every worker thread alive
  GET  /ready                      readiness: initial watch streams opened
  GET  /info                       version and runtime state
  POST /trigger/{namespace}/{name} reconcile one Secret now, outside the queue

    uvicorn tls_ca_sync.asgi:app --host 0.0.0.0 --port 8000
"""

from __future__ import annotations

import asyncio
import threading
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

import structlog
from apscheduler.schedulers.base import BaseScheduler
from fastapi import FastAPI
from fastapi.responses import JSONResponse

from tls_ca_sync import __version__
from tls_ca_sync.config import AppSettings
from tls_ca_sync.controller import ReconcileFn
from tls_ca_sync.domain.models import Converged, Skipped, Trigger
from tls_ca_sync.main import Runtime, configure_structlog, create_runtime
from tls_ca_sync.scheduler import create_scheduler

# Populated by lifespan(); read by the endpoints.
_runtime: Runtime | None = None
_scheduler: BaseScheduler | None = None
_error_message: str | None = None
_reconcile_fn: ReconcileFn | None = None
log = structlog.get_logger()


def _fail_startup(stage: str, exc: Exception) -> None:
    global _error_message
    _error_message = f"{stage}: {exc}"
    log.error("asgi.startup_failed", stage=stage, error=str(exc))


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    global _runtime, _scheduler, _reconcile_fn

    try:
        settings = AppSettings()
    except Exception as e:
        _fail_startup("Configuration error", e)
        raise

    configure_structlog(settings.log_level)
    log.info(
        "asgi.starting",
        version=__version__,
        namespace=settings.watch.namespace or "*",
        workers=settings.workers,
        cron=settings.scheduler.cron,
    )

    runtime: Runtime | None = None
    try:
        runtime = create_runtime(settings)
        runtime.start()
        scheduler = create_scheduler(
            resync_fn=runtime.resync,
            cron=settings.scheduler.cron,
            run_on_startup=settings.run_on_startup,
            background=True,
        )
        scheduler.start()
    except Exception as e:
        _fail_startup("Controller start failed", e)
        if runtime is not None:
            await asyncio.to_thread(runtime.stop)
        raise

    _runtime, _scheduler, _reconcile_fn = runtime, scheduler, runtime.reconcile_fn
    log.info("asgi.started")

    yield

    log.info("asgi.stopping")
    try:
        scheduler.shutdown(wait=True)
    except Exception as e:
        log.warning("asgi.scheduler_shutdown_error", error=str(e))
    _reconcile_fn = None
    await asyncio.to_thread(runtime.stop)
    log.info("asgi.stopped")


app = FastAPI(
    title="tls-ca-sync",
    description="Publishes the CA chain of annotated TLS Secrets as <secret>-ca ConfigMaps",
    version=__version__,
    lifespan=lifespan,
)


def _json(status_code: int, **content: Any) -> JSONResponse:
    return JSONResponse(status_code=status_code, content=content)


def _watches_open(runtime: Runtime) -> bool:
    return runtime.watcher.ready.is_set() and runtime.config_watcher.ready.is_set()


def _queue_depth() -> int:
    return len(_runtime.controller.queue) if _runtime is not None else 0


@app.get("/health")
async def health() -> JSONResponse:
    if _error_message:
        return _json(503, status="unhealthy", error=_error_message)
    if _runtime is None or not _runtime.running:
        return _json(503, status="unhealthy", reason="controller threads not running")
    return _json(200, status="healthy", controller_running=True)


@app.get("/ready")
async def ready() -> JSONResponse:
    """202 until both watch streams have opened, then 200."""
    if _error_message:
        return _json(503, status="error", error=_error_message)
    if _runtime is None or not _watches_open(_runtime):
        return _json(202, status="starting", controller_started=_runtime is not None)
    return _json(
        200, status="ready", controller_running=_runtime.running, queue_depth=_queue_depth()
    )


@app.get("/info")
async def info() -> dict[str, Any]:
    return {
        "name": "tls-ca-sync",
        "version": __version__,
        "controller_running": _runtime is not None and _runtime.running,
        "scheduler_running": _scheduler is not None and bool(_scheduler.running),
        "queue_depth": _queue_depth(),
        "has_error": _error_message is not None,
    }


def _outcome_body(outcome: Converged | Skipped) -> dict[str, Any]:
    match outcome:
        case Converged(target=target, operation=operation, certificates=count):
            return {
                "status": "converged",
                "configmap": str(target),
                "operation": operation.value,
                "certificates": count,
            }
        case Skipped(reason=reason):
            return {"status": "skipped", "reason": reason.value}
    raise TypeError("unreachable")  # pragma: no cover


@app.post("/trigger/{namespace}/{name}")
async def trigger(namespace: str, name: str) -> JSONResponse:
    """
    Reconcile one Secret immediately and return the outcome.

    Runs on a worker thread, bypassing the queue; safe alongside the workers
    because convergence is idempotent and updates carry the read
    resourceVersion. 200 on Converged/Skipped, 500 on failure, 503 before
    startup has finished.
    """
    if _reconcile_fn is None:
        return _json(503, status="unavailable", reason="Controller not initialized")

    key = Trigger(namespace=namespace, name=name)
    log.info("trigger.requested", key=str(key))

    try:
        result = await asyncio.to_thread(_reconcile_fn, key, threading.Event())
    except Exception as e:
        log.error("trigger.crashed", key=str(key), error=str(e))
        return _json(500, status="error", error=str(e))

    if result.is_success():
        body = _outcome_body(result.value())
        log.info("trigger.completed", key=str(key), **body)
        return JSONResponse(status_code=200, content=body)

    failure = result.error()
    log.error("trigger.failed", key=str(key), code=failure.code.value, error=failure.message)
    return _json(500, status="failed", error_code=failure.code.value, message=failure.message)
