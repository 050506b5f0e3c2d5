"""
Controller — worker pool that drains the work queue through the reconciler.

Infrastructure layer. Each worker thread repeatedly takes one trigger from the
WorkQueue, runs the wired reconcile function inside a LoggingExecutionContext
and settles the key:

  Success (Converged or Skipped) → forget retry history
  Failure, retryable code        → requeue with bounded exponential backoff
  Failure, permanent code        → drop until the next watch event or resync

The controller's stop event doubles as the reconcile cancel signal, so a
shutdown stops in-flight passes before their next store call.
"""

from __future__ import annotations

import threading
from collections.abc import Callable

import structlog
from railway import LoggingExecutionContext, Result

from tls_ca_sync.domain.models import ReconcileOutcome, Trigger
from tls_ca_sync.workqueue import WorkQueue

log = structlog.get_logger()

type ReconcileFn = Callable[[Trigger, threading.Event], Result[ReconcileOutcome]]


class Controller:
    """Runs `workers` threads pulling triggers from queue."""

    def __init__(
        self,
        reconcile_fn: ReconcileFn,
        queue: WorkQueue,
        workers: int = 2,
        poll_interval_seconds: float = 1.0,
    ) -> None:
        self._reconcile = reconcile_fn
        self._queue = queue
        self._workers = workers
        self._poll_interval = poll_interval_seconds
        self._stop = threading.Event()
        self._threads: list[threading.Thread] = []
        self._ctx = LoggingExecutionContext(operation="Reconcile")

    @property
    def queue(self) -> WorkQueue:
        return self._queue

    def enqueue(self, key: Trigger) -> None:
        self._queue.add(key)

    def process_next(self) -> bool:
        """
        Process at most one trigger. Returns False if none was available.

        Exposed for tests and for single-threaded drivers.
        """
        key = self._queue.get(timeout=self._poll_interval)
        if key is None:
            return False
        try:
            result = self._ctx.execute(
                lambda: self._reconcile(key, self._stop),
                namespace=key.namespace,
                name=key.name,
            )
            self._settle(key, result)
        finally:
            self._queue.done(key)
        return True

    def _settle(self, key: Trigger, result: Result[ReconcileOutcome]) -> None:
        if result.is_success():
            self._queue.forget(key)
            return
        err = result.error()
        if self._stop.is_set():
            return
        if err.code.is_retryable:
            self._queue.requeue_with_backoff(key)
        else:
            self._queue.forget(key)
            log.warning(
                "controller.not_retried",
                key=str(key),
                code=err.code.value,
                error=err.full_stack_trace(),
            )

    # ──────────────────────── Lifecycle ────────────────────────

    def _worker(self, index: int) -> None:
        log.debug("controller.worker_started", worker=index)
        while not self._stop.is_set() and not self._queue.is_shutting_down:
            self.process_next()
        log.debug("controller.worker_stopped", worker=index)

    def start(self) -> None:
        """Spawn the worker threads (daemon)."""
        for index in range(self._workers):
            thread = threading.Thread(
                target=self._worker, args=(index,), name=f"reconcile-worker-{index}", daemon=True
            )
            thread.start()
            self._threads.append(thread)
        log.info("controller.started", workers=self._workers)

    def stop(self, timeout_seconds: float = 5.0) -> None:
        """Signal workers (and in-flight reconciles) to stop, then join them."""
        self._stop.set()
        self._queue.shutdown()
        for thread in self._threads:
            thread.join(timeout=timeout_seconds)
            if thread.is_alive():
                log.warning("controller.worker_join_timeout", thread=thread.name)
        self._threads.clear()
        log.info("controller.stopped")

    @property
    def alive(self) -> bool:
        return bool(self._threads) and all(t.is_alive() for t in self._threads)
