"""
Composition root: turns AppSettings into a running controller.

Concrete adapters are built here and nowhere else; the reconciler, the
controller and the scheduler only see the RecordStore and CertificateChainParser
ports. The Secret watcher, the TLSSecretWatcher watcher and the cron resync
all feed one WorkQueue, which the worker pool drains.

    tls-ca-sync                   # blocking: watchers + workers + cron resync
    uvicorn tls_ca_sync.asgi:app  # same runtime behind health endpoints
"""

from __future__ import annotations

import logging
import sys
import threading
from dataclasses import dataclass, field

import structlog
from kubernetes.client import CoreV1Api, CustomObjectsApi
from railway.result import Result

from tls_ca_sync import __version__
from tls_ca_sync.adapters.kube_store import KubeRecordStore, create_api_client
from tls_ca_sync.adapters.pem_parser import PemChainParser
from tls_ca_sync.adapters.secret_watcher import SecretWatcher, WatchConfigWatcher
from tls_ca_sync.config import AppSettings
from tls_ca_sync.controller import Controller, ReconcileFn
from tls_ca_sync.domain.models import ReconcileOutcome, Trigger
from tls_ca_sync.reconciler import reconcile
from tls_ca_sync.scheduler import create_scheduler, resync
from tls_ca_sync.workqueue import WorkQueue


def configure_structlog(log_level: str = "INFO") -> None:
    """
    Configure structlog for structured, key/value logging.

    Colored, human-readable console output; one line per event.
    """
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.StackInfoRenderer(),
            structlog.dev.set_exc_info,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.dev.ConsoleRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(
            getattr(logging, log_level.upper(), logging.INFO)
        ),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )


type _Adapters = tuple[KubeRecordStore, PemChainParser, CoreV1Api, CustomObjectsApi]


def _create_adapters(settings: AppSettings) -> _Adapters:
    """
    Instantiate all concrete adapters from application settings.

    One ApiClient is shared by the typed core API (Secrets, ConfigMaps,
    watch) and the custom objects API (TLSSecretWatcher).
    """
    api_client = create_api_client(
        in_cluster=settings.kube.in_cluster,
        config_file=settings.kube.config_file,
        context=settings.kube.context,
    )
    core_api = CoreV1Api(api_client)
    custom_api = CustomObjectsApi(api_client)
    store = KubeRecordStore(
        core_api=core_api,
        custom_api=custom_api,
        watch_group=settings.watch.config_group,
        watch_version=settings.watch.config_version,
        watch_plural=settings.watch.config_plural,
        request_timeout=settings.kube.request_timeout_seconds,
        namespace=settings.watch.namespace,
    )
    return store, PemChainParser(), core_api, custom_api


def bind_reconcile(
    settings: AppSettings, store: KubeRecordStore, parser: PemChainParser
) -> ReconcileFn:
    """Close the reconciler over its ports and watch settings."""

    def _reconcile(trigger: Trigger, cancel: threading.Event) -> Result[ReconcileOutcome]:
        return reconcile(
            trigger,
            store=store,
            parser=parser,
            marker_annotation=settings.watch.marker_annotation,
            watch_config_name=settings.watch.config_name,
            cancel=cancel,
        )

    return _reconcile


@dataclass
class Runtime:
    """The long-running parts of the service, wired and ready to start."""

    store: KubeRecordStore
    reconcile_fn: ReconcileFn
    controller: Controller
    watcher: SecretWatcher
    config_watcher: WatchConfigWatcher
    watcher_threads: list[threading.Thread] = field(default_factory=list, init=False)

    def start(self) -> None:
        self.controller.start()
        for name, target in (
            ("secret-watcher", self.watcher.run),
            ("config-watcher", self.config_watcher.run),
        ):
            thread = threading.Thread(target=target, name=name, daemon=True)
            thread.start()
            self.watcher_threads.append(thread)

    def stop(self, timeout_seconds: float = 5.0) -> None:
        self.watcher.stop()
        self.config_watcher.stop()
        self.controller.stop(timeout_seconds)
        for thread in self.watcher_threads:
            thread.join(timeout=timeout_seconds)

    @property
    def running(self) -> bool:
        return (
            self.controller.alive
            and bool(self.watcher_threads)
            and all(t.is_alive() for t in self.watcher_threads)
        )

    def resync(self) -> Result[int]:
        return resync(self.store, self.controller.enqueue)


def create_runtime(settings: AppSettings) -> Runtime:
    """Build adapters, queue, workers and watchers from settings (nothing started)."""
    store, parser, core_api, custom_api = _create_adapters(settings)
    queue = WorkQueue(
        max_retries=settings.max_retries,
        base_backoff_seconds=settings.retry_backoff_seconds,
        max_backoff_seconds=settings.max_backoff_seconds,
    )
    reconcile_fn = bind_reconcile(settings, store, parser)
    controller = Controller(reconcile_fn, queue, workers=settings.workers)
    watcher = SecretWatcher(
        core_api,
        queue,
        namespace=settings.watch.namespace,
        stream_timeout_seconds=settings.watch.stream_timeout_seconds,
    )
    config_watcher = WatchConfigWatcher(
        custom_api,
        store,
        queue,
        group=settings.watch.config_group,
        version=settings.watch.config_version,
        plural=settings.watch.config_plural,
        config_name=settings.watch.config_name,
        namespace=settings.watch.namespace,
        stream_timeout_seconds=settings.watch.stream_timeout_seconds,
    )
    return Runtime(
        store=store,
        reconcile_fn=reconcile_fn,
        controller=controller,
        watcher=watcher,
        config_watcher=config_watcher,
    )


def main() -> None:
    """Wire dependencies, start workers and watchers, and block on the resync scheduler."""
    try:
        settings = AppSettings()
    except Exception as e:
        print(f"FATAL: Configuration error: {e}", file=sys.stderr)  # noqa: T201
        sys.exit(1)

    configure_structlog(settings.log_level)
    log = structlog.get_logger()

    log.info(
        "app.starting",
        version=__version__,
        log_level=settings.log_level,
        namespace=settings.watch.namespace or "*",
        workers=settings.workers,
        cron=settings.scheduler.cron,
        run_on_startup=settings.run_on_startup,
    )

    try:
        runtime = create_runtime(settings)
    except Exception as e:
        log.error("app.fatal_error", stage="kubernetes client", error=str(e))
        sys.exit(1)

    runtime.start()
    scheduler = create_scheduler(
        resync_fn=runtime.resync,
        cron=settings.scheduler.cron,
        run_on_startup=settings.run_on_startup,
    )

    log.info("app.scheduler_starting", cron=settings.scheduler.cron)

    try:
        scheduler.start()
    except KeyboardInterrupt:
        log.info("app.shutdown", reason="signal received")
    except SystemExit:
        log.info("app.shutdown", reason="signal received")
        raise
    except Exception as e:
        log.error("app.fatal_error", error=str(e))
        sys.exit(1)
    finally:
        runtime.stop()


if __name__ == "__main__":
    main()
