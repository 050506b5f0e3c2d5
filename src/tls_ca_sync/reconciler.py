"""
Reconciler — the per-trigger pass that keeps <secret>-ca in sync with a TLS Secret.

Domain layer — no client code, no retries, no state between calls. All I/O
goes through the RecordStore port; parsing through the CertificateChainParser
port. Each call is a complete, independent pass, so replaying a trigger any
number of times (watch re-list, resync, manual trigger) cannot drift.

Flow for a trigger <ns>/<name>:

  get TLSSecretWatcher <ns>/default     (absent → Failure)
    → get Secret <ns>/<name>            (absent → Skipped)
      → type / marker / tls.crt filters (mismatch → Skipped)
        → parse → select by check_ca    (nothing kept → Skipped)
          → build ConfigMap <ns>/<name>-ca
            → converge (create, replace or leave unchanged)

Skipped and Converged are both on the success track: irrelevance is routine.
Only store failures and a missing watch config leave the railway.
"""

from __future__ import annotations

import threading
from collections.abc import Callable
from typing import TypeVar

import structlog
from railway import ErrorCode, Failure, FailureDescription, Result, Success

from tls_ca_sync.bundle import build_derived_record, derived_name_for, select_blocks
from tls_ca_sync.domain.models import (
    DEFAULT_WATCH_CONFIG_NAME,
    Converged,
    ConvergeOperation,
    CredentialRecord,
    DerivedRecord,
    ReconcileOutcome,
    Skipped,
    SkipReason,
    Trigger,
    WatchConfig,
)
from tls_ca_sync.domain.ports import CertificateChainParser, RecordStore

T = TypeVar("T")
log = structlog.get_logger()


def _checked(cancel: threading.Event | None, call: Callable[[], Result[T]]) -> Result[T]:
    """Run a store call unless the caller has already given up."""
    if cancel is not None and cancel.is_set():
        return Result.failure(ErrorCode.CANCELLED, "Reconcile cancelled before store call")
    return call()


def eligibility(record: CredentialRecord, marker_annotation: str) -> SkipReason | None:
    """Return why the Secret is out of scope, or None if it should be processed."""
    if not record.is_tls:
        return SkipReason.NOT_TLS
    if not record.has_marker(marker_annotation):
        return SkipReason.NO_MARKER
    if not record.certificate_chain:
        return SkipReason.NO_CERTIFICATE_PAYLOAD
    return None


# ─────────────────────── Convergence ───────────────────────


def _labels_match(existing: DerivedRecord, desired: DerivedRecord) -> bool:
    return all(existing.labels.get(k) == v for k, v in desired.labels.items())


def converge(
    store: RecordStore,
    desired: DerivedRecord,
    cancel: threading.Event | None = None,
) -> Result[ConvergeOperation]:
    """
    Make the stored derived record equal to desired.

    Absent → create. Present with different data → replace in full, guarded by
    the observed resource_version. Present and equal → no write.

    Losing a create race to another writer is success: the record exists,
    which is what we wanted. A CONFLICT on replace is a failure; the whole
    reconcile is safe to re-run.
    """
    match _checked(cancel, lambda: store.get_derived(desired.namespace, desired.name)):
        case Failure(err) if err.code is ErrorCode.NOT_FOUND:
            return (
                _checked(cancel, lambda: store.create_derived(desired))
                .map(lambda _: ConvergeOperation.CREATED)
                .recover_on(
                    ErrorCode.ALREADY_EXISTS,
                    lambda _: Result.success(ConvergeOperation.CONCURRENTLY_CREATED),
                )
            )
        case Failure(err):
            return Result.failure_from(err)
        case Success(existing):
            if existing.data == desired.data and _labels_match(existing, desired):
                return Result.success(ConvergeOperation.UNCHANGED)
            replacement = DerivedRecord(
                namespace=desired.namespace,
                name=desired.name,
                data=desired.data,
                labels={**existing.labels, **desired.labels},
                resource_version=existing.resource_version,
            )
            return _checked(cancel, lambda: store.update_derived(replacement)).map(
                lambda _: ConvergeOperation.UPDATED
            )
    raise TypeError("unreachable")  # pragma: no cover


# ─────────────────────── Reconcile ───────────────────────


def _skip(trigger: Trigger, reason: SkipReason) -> Result[ReconcileOutcome]:
    log.debug("reconcile.skipped", namespace=trigger.namespace, name=trigger.name, reason=reason.value)
    return Result.success(Skipped(trigger=trigger, reason=reason))


def _missing_config(trigger: Trigger, config_name: str, err: FailureDescription) -> FailureDescription:
    if err.code is not ErrorCode.NOT_FOUND:
        return err
    return FailureDescription(
        ErrorCode.CONFIGURATION_ERROR,
        f"TLSSecretWatcher {trigger.namespace}/{config_name} not found; "
        "it is required to reconcile secrets in this namespace",
        err.exception,
    )


def _process_record(
    trigger: Trigger,
    config: WatchConfig,
    record: CredentialRecord,
    store: RecordStore,
    parser: CertificateChainParser,
    marker_annotation: str,
    cancel: threading.Event | None,
) -> Result[ReconcileOutcome]:
    reason = eligibility(record, marker_annotation)
    if reason is not None:
        return _skip(trigger, reason)

    log.info("reconcile.secret_found", namespace=trigger.namespace, name=trigger.name)

    retained = select_blocks(parser.parse(record.certificate_chain), config.check_ca)
    if not retained:
        return _skip(trigger, SkipReason.NO_CA_CERTIFICATES)

    desired = build_derived_record(derived_name_for(trigger.name), trigger.namespace, retained)
    target = Trigger(namespace=desired.namespace, name=desired.name)
    return converge(store, desired, cancel).map(
        lambda operation: Converged(target=target, operation=operation, certificates=len(retained))
    )


def _fetch_and_process(
    trigger: Trigger,
    config: WatchConfig,
    store: RecordStore,
    parser: CertificateChainParser,
    marker_annotation: str,
    cancel: threading.Event | None,
) -> Result[ReconcileOutcome]:
    match _checked(cancel, lambda: store.get_credential(trigger.namespace, trigger.name)):
        case Failure(err) if err.code is ErrorCode.NOT_FOUND:
            return _skip(trigger, SkipReason.RECORD_NOT_FOUND)
        case Failure(err):
            return Result.failure_from(err)
        case Success(record):
            return _process_record(trigger, config, record, store, parser, marker_annotation, cancel)
    raise TypeError("unreachable")  # pragma: no cover


def _log_outcome(trigger: Trigger, result: Result[ReconcileOutcome]) -> None:
    match result:
        case Success(Converged(target=target, operation=operation, certificates=count)):
            log.info(
                "reconcile.converged",
                namespace=trigger.namespace,
                name=trigger.name,
                configmap=target.name,
                operation=operation.value,
                certificates=count,
            )
        case Failure(err):
            log.error(
                "reconcile.failed",
                namespace=trigger.namespace,
                name=trigger.name,
                code=err.code.value,
                error=err.message,
            )


def reconcile(
    trigger: Trigger,
    store: RecordStore,
    parser: CertificateChainParser,
    marker_annotation: str,
    watch_config_name: str = DEFAULT_WATCH_CONFIG_NAME,
    cancel: threading.Event | None = None,
) -> Result[ReconcileOutcome]:
    """
    Run one reconciliation pass for the Secret identified by trigger.

    Returns Success(Converged) when the <name>-ca ConfigMap matches the
    Secret's chain, Success(Skipped) when the Secret is out of scope, and a
    Failure when the watch config is missing or the store call failed. The
    caller decides whether to retry.

    cancel is checked before every store call; once set, the pass stops with
    a CANCELLED failure and performs no further writes.
    """
    log.debug("reconcile.triggered", namespace=trigger.namespace, name=trigger.name)
    result = (
        _checked(cancel, lambda: store.get_watch_config(trigger.namespace, watch_config_name))
        .map_failure(lambda err: _missing_config(trigger, watch_config_name, err))
        .flat_map(
            lambda config: _fetch_and_process(
                trigger, config, store, parser, marker_annotation, cancel
            )
        )
    )
    _log_outcome(trigger, result)
    return result
