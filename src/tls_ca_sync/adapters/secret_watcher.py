"""
Watch adapters — turn Kubernetes watch streams into queued triggers.

Adapter layer — uses `kubernetes.watch.Watch` to stream two resource kinds:

  - SecretWatcher: TLS Secrets (type kubernetes.io/tls, filtered server-side).
    Every ADDED, MODIFIED and DELETED event queues a Trigger for that Secret.
    DELETED is queued too: the reconciler answers it with a quiet skip.
  - WatchConfigWatcher: TLSSecretWatcher custom objects. A change to the
    configured watcher object queues every TLS Secret of its namespace, since
    its checkCA flag decides what each of them publishes.

Stream interruptions are retried by tenacity with exponential backoff, for as
long as the watcher has not been asked to stop. A 410 Gone (resource version
expired) restarts the watch from a fresh list without backoff.
"""

from __future__ import annotations

import threading
from collections.abc import Callable
from typing import Any

import structlog
from kubernetes import watch
from kubernetes.client import ApiException, CoreV1Api, CustomObjectsApi
from railway import Failure, Success
from tenacity import (
    RetryCallState,
    RetryError,
    Retrying,
    retry_if_exception_type,
    wait_exponential,
)

from tls_ca_sync.domain.models import TLS_RECORD_TYPE, Trigger
from tls_ca_sync.domain.ports import RecordStore
from tls_ca_sync.workqueue import WorkQueue

log = structlog.get_logger()

_QUEUED_EVENT_TYPES = frozenset({"ADDED", "MODIFIED", "DELETED"})
_GONE = 410


class _ResourceWatcher:
    """
    Reconnecting watch loop shared by the concrete watchers.

    Subclasses name the list function, add their stream arguments and decide
    what a change event queues.
    """

    kind = "resource"

    def __init__(
        self,
        queue: WorkQueue,
        namespace: str | None,
        stream_timeout_seconds: int,
        watch_factory: Callable[[], watch.Watch],
    ) -> None:
        self._queue = queue
        self._namespace = namespace
        self._stream_timeout = stream_timeout_seconds
        self._watch_factory = watch_factory
        self._resource_version: str | None = None
        self._stop = threading.Event()
        self._active: watch.Watch | None = None
        self._lock = threading.Lock()
        self.ready = threading.Event()
        self._log = log.bind(kind=self.kind)

    # ──────────────────────── Lifecycle ────────────────────────

    def stop(self) -> None:
        """Ask run() to return and interrupt any open stream."""
        self._stop.set()
        with self._lock:
            active = self._active
        if active is not None:
            active.stop()

    @property
    def stopped(self) -> bool:
        return self._stop.is_set()

    def run(self) -> None:
        """Watch until stop() is called. Meant to be the target of a daemon thread."""
        self._log.info("watcher.started", namespace=self._namespace or "*")
        retrying = Retrying(
            stop=lambda state: self._stop.is_set(),
            wait=wait_exponential(multiplier=1, min=1, max=30),
            retry=retry_if_exception_type(Exception),
            sleep=self._stop.wait,
            before_sleep=self._log_reconnect,
            reraise=False,
        )
        while not self._stop.is_set():
            try:
                for attempt in retrying:
                    with attempt:
                        self.stream_once()
            except RetryError:
                break
        self._log.info("watcher.stopped")

    def _log_reconnect(self, state: RetryCallState) -> None:
        exc = state.outcome.exception() if state.outcome else None
        self._log.warning(
            "watcher.stream_failed",
            attempt=state.attempt_number,
            error=str(exc),
            retry_in_seconds=round(state.next_action.sleep, 1) if state.next_action else 0,
        )

    # ──────────────────────── Streaming ────────────────────────

    def _list_call(self) -> tuple[Callable[..., Any], tuple[Any, ...]]:
        """The list function to watch and its positional arguments."""
        raise NotImplementedError

    def _stream_kwargs(self) -> dict[str, Any]:
        return {}

    def _on_change(self, event_type: str, obj: Any) -> str | None:
        """Queue whatever the change affects; return the object's resourceVersion."""
        raise NotImplementedError

    def stream_once(self) -> None:
        """
        Consume one watch stream until it ends, fails or the watcher stops.

        Exceptions other than 410 Gone propagate so the caller can back off.
        """
        stream_watch = self._watch_factory()
        with self._lock:
            self._active = stream_watch

        list_fn, list_args = self._list_call()
        kwargs = {"timeout_seconds": self._stream_timeout, **self._stream_kwargs()}
        if self._resource_version:
            kwargs["resource_version"] = self._resource_version

        try:
            self.ready.set()
            for event in stream_watch.stream(list_fn, *list_args, **kwargs):
                if self._stop.is_set():
                    stream_watch.stop()
                    return
                self.handle_event(event)
        except ApiException as e:
            if e.status != _GONE:
                raise
            self._log.info("watcher.resource_version_expired")
            self._resource_version = None
        finally:
            with self._lock:
                self._active = None

    def handle_event(self, event: dict[str, Any]) -> None:
        """Queue triggers for a change event; track the resume resource version."""
        event_type = event.get("type")
        obj = event.get("object")

        if event_type == "ERROR":
            code = obj.get("code") if isinstance(obj, dict) else None
            if code == _GONE:
                self._log.info("watcher.resource_version_expired")
                self._resource_version = None
                return
            self._log.warning("watcher.error_event", status=obj)
            return

        if event_type not in _QUEUED_EVENT_TYPES or obj is None:
            return

        self._resource_version = self._on_change(event_type, obj) or self._resource_version


class SecretWatcher(_ResourceWatcher):
    """Streams TLS Secret events into a WorkQueue until stopped."""

    kind = "Secret"

    def __init__(
        self,
        core_api: CoreV1Api,
        queue: WorkQueue,
        namespace: str | None = None,
        stream_timeout_seconds: int = 300,
        watch_factory: Callable[[], watch.Watch] = watch.Watch,
    ) -> None:
        super().__init__(queue, namespace, stream_timeout_seconds, watch_factory)
        self._core = core_api

    def _list_call(self) -> tuple[Callable[..., Any], tuple[Any, ...]]:
        if self._namespace:
            return self._core.list_namespaced_secret, (self._namespace,)
        return self._core.list_secret_for_all_namespaces, ()

    def _stream_kwargs(self) -> dict[str, Any]:
        return {"field_selector": f"type={TLS_RECORD_TYPE}"}

    def _on_change(self, event_type: str, obj: Any) -> str | None:
        meta = obj.metadata
        key = Trigger(namespace=meta.namespace, name=meta.name)
        self._log.debug("watcher.event", type=event_type, key=str(key))
        self._queue.add(key)
        return meta.resource_version


class WatchConfigWatcher(_ResourceWatcher):
    """
    Streams TLSSecretWatcher events and re-queues the Secrets they govern.

    Custom objects arrive as plain dicts. Only objects named config_name are
    read by the reconciler, so changes to other names are ignored. A failed
    namespace listing is logged; the periodic resync picks those Secrets up.
    """

    kind = "TLSSecretWatcher"

    def __init__(
        self,
        custom_api: CustomObjectsApi,
        store: RecordStore,
        queue: WorkQueue,
        group: str,
        version: str,
        plural: str,
        config_name: str,
        namespace: str | None = None,
        stream_timeout_seconds: int = 300,
        watch_factory: Callable[[], watch.Watch] = watch.Watch,
    ) -> None:
        super().__init__(queue, namespace, stream_timeout_seconds, watch_factory)
        self._custom = custom_api
        self._store = store
        self._group = group
        self._version = version
        self._plural = plural
        self._config_name = config_name

    def _list_call(self) -> tuple[Callable[..., Any], tuple[Any, ...]]:
        if self._namespace:
            return self._custom.list_namespaced_custom_object, (
                self._group,
                self._version,
                self._namespace,
                self._plural,
            )
        return self._custom.list_cluster_custom_object, (self._group, self._version, self._plural)

    def _on_change(self, event_type: str, obj: Any) -> str | None:
        meta = obj.get("metadata") or {}
        namespace, name = meta.get("namespace"), meta.get("name")
        if name != self._config_name or not namespace:
            return meta.get("resourceVersion")

        self._log.info("watcher.config_changed", type=event_type, namespace=namespace, name=name)
        match self._store.list_credentials(namespace):
            case Success(keys):
                for key in keys:
                    self._queue.add(key)
                self._log.info("watcher.config_requeued", namespace=namespace, queued=len(keys))
            case Failure(err):
                self._log.warning(
                    "watcher.config_requeue_failed", namespace=namespace, failure=str(err)
                )
        return meta.get("resourceVersion")
