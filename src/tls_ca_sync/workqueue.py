"""
Work queue — de-duplicating, per-key-serialized queue of reconcile triggers.

Infrastructure layer. Triggers arrive at-least-once from three sources (the
Secret watch, the periodic resync and the manual /trigger endpoint); this
queue collapses them so that:

  - a key waiting in the queue is never queued twice,
  - a key is never handed to two workers at once: if it is re-added while a
    worker holds it, it is parked and queued again when the worker calls done(),
  - failed keys come back after a bounded exponential delay
    (min(max_backoff, base * 2**(attempt-1))) until max_retries is exhausted.
"""

from __future__ import annotations

import threading
from collections import deque

import structlog

from tls_ca_sync.domain.models import Trigger

log = structlog.get_logger()


class WorkQueue:
    """Thread-safe trigger queue shared by the watcher, the scheduler and the workers."""

    def __init__(
        self,
        max_retries: int = 5,
        base_backoff_seconds: float = 1.0,
        max_backoff_seconds: float = 60.0,
    ) -> None:
        self._max_retries = max_retries
        self._base_backoff = base_backoff_seconds
        self._max_backoff = max_backoff_seconds

        self._cond = threading.Condition()
        self._queue: deque[Trigger] = deque()
        self._dirty: set[Trigger] = set()
        self._processing: set[Trigger] = set()
        self._attempts: dict[Trigger, int] = {}
        self._timers: dict[Trigger, threading.Timer] = {}
        self._shutting_down = False

    # ──────────────────────── Producers ────────────────────────

    def add(self, key: Trigger) -> None:
        """Queue key unless it is already pending."""
        with self._cond:
            if self._shutting_down or key in self._dirty:
                return
            self._dirty.add(key)
            if key in self._processing:
                return
            self._queue.append(key)
            self._cond.notify()

    def add_after(self, key: Trigger, delay_seconds: float) -> None:
        """Queue key once delay_seconds have elapsed. A later call replaces an earlier one."""
        if delay_seconds <= 0:
            self.add(key)
            return
        with self._cond:
            if self._shutting_down:
                return
            existing = self._timers.pop(key, None)
            if existing is not None:
                existing.cancel()
            timer = threading.Timer(delay_seconds, self._fire, args=(key,))
            timer.daemon = True
            self._timers[key] = timer
        timer.start()

    def _fire(self, key: Trigger) -> None:
        with self._cond:
            self._timers.pop(key, None)
        self.add(key)

    # ──────────────────────── Consumers ────────────────────────

    def get(self, timeout: float | None = None) -> Trigger | None:
        """
        Take the next key, blocking up to timeout seconds.

        Returns None on timeout or once the queue is shut down. The caller
        must call done(key) when finished with a returned key.
        """
        with self._cond:
            if not self._queue and not self._shutting_down:
                self._cond.wait(timeout)
            if self._shutting_down or not self._queue:
                return None
            key = self._queue.popleft()
            self._dirty.discard(key)
            self._processing.add(key)
            return key

    def done(self, key: Trigger) -> None:
        """Release key; re-queue it if it was added while being processed."""
        with self._cond:
            self._processing.discard(key)
            if key in self._dirty and not self._shutting_down:
                self._queue.append(key)
                self._cond.notify()

    # ──────────────────────── Retry bookkeeping ────────────────────────

    def backoff_for(self, attempt: int) -> float:
        return min(self._max_backoff, self._base_backoff * (2 ** (attempt - 1)))

    def requeue_with_backoff(self, key: Trigger) -> bool:
        """
        Schedule key again after its next backoff delay.

        Returns False (and forgets the key) once max_retries attempts have
        been spent; the key then waits for the next watch event or resync.
        """
        with self._cond:
            attempt = self._attempts.get(key, 0) + 1
            if attempt > self._max_retries:
                self._attempts.pop(key, None)
                give_up = True
            else:
                self._attempts[key] = attempt
                give_up = False

        if give_up:
            log.warning("workqueue.retries_exhausted", key=str(key), max_retries=self._max_retries)
            return False

        delay = self.backoff_for(attempt)
        log.info("workqueue.requeued", key=str(key), attempt=attempt, delay_seconds=delay)
        self.add_after(key, delay)
        return True

    def forget(self, key: Trigger) -> None:
        """Clear retry history for key after a successful pass."""
        with self._cond:
            self._attempts.pop(key, None)

    def attempts(self, key: Trigger) -> int:
        with self._cond:
            return self._attempts.get(key, 0)

    # ──────────────────────── Lifecycle ────────────────────────

    def __len__(self) -> int:
        with self._cond:
            return len(self._queue)

    @property
    def is_shutting_down(self) -> bool:
        with self._cond:
            return self._shutting_down

    def shutdown(self) -> None:
        """Stop handing out keys, cancel pending delayed adds and wake all waiters."""
        with self._cond:
            self._shutting_down = True
            timers = list(self._timers.values())
            self._timers.clear()
            self._cond.notify_all()
        for timer in timers:
            timer.cancel()
