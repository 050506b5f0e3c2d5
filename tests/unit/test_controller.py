"""
Unit tests for the controller worker pool.

process_next() is driven directly for deterministic single-step tests; the
threaded lifecycle is covered with a short-lived pool.
"""

from __future__ import annotations

import threading
from collections.abc import Iterator
from unittest.mock import MagicMock

import pytest
from railway import ErrorCode, Result

from tls_ca_sync.controller import Controller
from tls_ca_sync.domain.models import (
    Converged,
    ConvergeOperation,
    Skipped,
    SkipReason,
    Trigger,
)
from tls_ca_sync.workqueue import WorkQueue

KEY = Trigger("prod", "web-tls")
CONVERGED = Converged(Trigger("prod", "web-tls-ca"), ConvergeOperation.CREATED, 1)


@pytest.fixture()
def queue() -> Iterator[WorkQueue]:
    q = WorkQueue(max_retries=3, base_backoff_seconds=30.0)
    yield q
    q.shutdown()


class TestProcessNext:
    """One trigger in, one settled key out."""

    def test_returns_false_when_queue_is_empty(self, queue: WorkQueue) -> None:
        controller = Controller(MagicMock(), queue, poll_interval_seconds=0.01)
        assert controller.process_next() is False

    def test_success_forgets_retry_history(self, queue: WorkQueue) -> None:
        """
        GIVEN a key with one failed attempt on record
        WHEN the next reconcile succeeds
        THEN its attempt count is reset.
        """
        reconcile_fn = MagicMock(return_value=Result.success(CONVERGED))
        controller = Controller(reconcile_fn, queue, poll_interval_seconds=0.01)
        queue.requeue_with_backoff(KEY)
        controller.enqueue(KEY)

        assert controller.process_next() is True

        assert queue.attempts(KEY) == 0
        reconcile_fn.assert_called_once()
        assert reconcile_fn.call_args.args[0] == KEY
        assert isinstance(reconcile_fn.call_args.args[1], threading.Event)

    def test_skip_is_success(self, queue: WorkQueue) -> None:
        reconcile_fn = MagicMock(
            return_value=Result.success(Skipped(KEY, SkipReason.NO_MARKER))
        )
        controller = Controller(reconcile_fn, queue, poll_interval_seconds=0.01)
        controller.enqueue(KEY)

        controller.process_next()

        assert queue.attempts(KEY) == 0

    def test_retryable_failure_is_requeued_with_backoff(self, queue: WorkQueue) -> None:
        """
        GIVEN a reconcile that fails with CONFLICT
        WHEN processed
        THEN the key gets a retry attempt recorded.
        """
        reconcile_fn = MagicMock(return_value=Result.failure(ErrorCode.CONFLICT, "stale"))
        controller = Controller(reconcile_fn, queue, poll_interval_seconds=0.01)
        controller.enqueue(KEY)

        controller.process_next()

        assert queue.attempts(KEY) == 1

    def test_permanent_failure_is_not_retried(self, queue: WorkQueue) -> None:
        reconcile_fn = MagicMock(
            return_value=Result.failure(ErrorCode.CONFIGURATION_ERROR, "no watcher")
        )
        controller = Controller(reconcile_fn, queue, poll_interval_seconds=0.01)
        controller.enqueue(KEY)

        controller.process_next()

        assert queue.attempts(KEY) == 0
        assert len(queue) == 0

    def test_crash_becomes_technical_failure_and_is_retried(self, queue: WorkQueue) -> None:
        """
        GIVEN a reconcile function that raises
        WHEN processed
        THEN the execution context converts it into a retryable failure.
        """
        reconcile_fn = MagicMock(side_effect=RuntimeError("kaboom"))
        controller = Controller(reconcile_fn, queue, poll_interval_seconds=0.01)
        controller.enqueue(KEY)

        assert controller.process_next() is True

        assert queue.attempts(KEY) == 1

    def test_key_is_released_after_processing(self, queue: WorkQueue) -> None:
        reconcile_fn = MagicMock(return_value=Result.success(CONVERGED))
        controller = Controller(reconcile_fn, queue, poll_interval_seconds=0.01)
        controller.enqueue(KEY)
        controller.process_next()

        controller.enqueue(KEY)

        assert len(queue) == 1


class TestLifecycle:
    """Threaded start/stop."""

    def test_workers_drain_queue_and_stop(self) -> None:
        """
        GIVEN a pool of two workers
        WHEN three distinct keys are enqueued
        THEN each is reconciled once and stop() joins all threads.
        """
        queue = WorkQueue()
        seen: list[Trigger] = []
        all_done = threading.Event()

        def _reconcile(key: Trigger, cancel: threading.Event) -> Result[Converged]:
            seen.append(key)
            if len(seen) == 3:
                all_done.set()
            return Result.success(CONVERGED)

        controller = Controller(_reconcile, queue, workers=2, poll_interval_seconds=0.05)
        controller.start()
        for name in ("a", "b", "c"):
            controller.enqueue(Trigger("prod", name))

        assert all_done.wait(timeout=5.0)
        assert controller.alive

        controller.stop(timeout_seconds=2.0)

        assert sorted(k.name for k in seen) == ["a", "b", "c"]
        assert not controller.alive

    def test_stop_sets_cancel_for_in_flight_reconcile(self) -> None:
        queue = WorkQueue()
        started = threading.Event()
        observed: list[bool] = []

        def _reconcile(key: Trigger, cancel: threading.Event) -> Result[Converged]:
            started.set()
            observed.append(cancel.wait(timeout=5.0))
            return Result.failure(ErrorCode.CANCELLED, "stopped")

        controller = Controller(_reconcile, queue, workers=1, poll_interval_seconds=0.05)
        controller.start()
        controller.enqueue(KEY)
        assert started.wait(timeout=5.0)

        controller.stop(timeout_seconds=5.0)

        assert observed == [True]
