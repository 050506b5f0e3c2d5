"""
Kubernetes record store adapter — Secrets, ConfigMaps and TLSSecretWatchers.

Adapter layer — implements the RecordStore port using the official
`kubernetes` Python client (CoreV1Api for Secrets/ConfigMaps,
CustomObjectsApi for the TLSSecretWatcher custom resource).

Error mapping at this boundary (no exception reaches the reconciler):

  ApiException 404                      → NOT_FOUND
  ApiException 409, reason AlreadyExists → ALREADY_EXISTS
  ApiException 409, any other reason    → CONFLICT
  ApiException 401 / 403                → AUTHENTICATION_ERROR / AUTHORIZATION_ERROR
  ApiException 408 / 504, urllib3 timeout → TIMEOUT_ERROR
  ApiException other status             → EXTERNAL_SERVICE_ERROR
  anything else (connection refused, …) → TECHNICAL_ERROR

Every request carries `_request_timeout` so a hung API server cannot block a
worker forever. No retries here: the reconciler's caller owns retry policy.
"""

from __future__ import annotations

import base64
import json
from collections.abc import Callable
from typing import Any, TypeVar

import structlog
import urllib3
from kubernetes import client as kube_client
from kubernetes import config as kube_config
from kubernetes.client import ApiException, CoreV1Api, CustomObjectsApi
from railway import ErrorCode
from railway.result import Result

from tls_ca_sync.domain.models import (
    TLS_RECORD_TYPE,
    CredentialRecord,
    DerivedRecord,
    Trigger,
    WatchConfig,
)

T = TypeVar("T")
log = structlog.get_logger()

_LIST_PAGE_SIZE = 500


# ─────────────────────── Client bootstrap ───────────────────────


def create_api_client(
    in_cluster: bool = False,
    config_file: str | None = None,
    context: str | None = None,
) -> kube_client.ApiClient:
    """
    Build an ApiClient from the pod's service account or a kubeconfig file.

    in_cluster wins when set; otherwise the kubeconfig at config_file (or the
    client's default ~/.kube/config / $KUBECONFIG) is loaded for context.
    """
    if in_cluster:
        kube_config.load_incluster_config()
        return kube_client.ApiClient()
    return kube_config.new_client_from_config(config_file=config_file, context=context)


# ─────────────────────── Error mapping ───────────────────────


def _api_reason(exc: ApiException) -> str | None:
    """Kubernetes Status.reason from the response body (e.g. 'AlreadyExists')."""
    if not exc.body:
        return None
    try:
        body = json.loads(exc.body)
    except (TypeError, ValueError):
        return None
    return body.get("reason") if isinstance(body, dict) else None


def error_code_for(exc: Exception) -> ErrorCode:
    """Classify a client exception into the ErrorCode the reconciler branches on."""
    if isinstance(exc, ApiException):
        match exc.status:
            case 404:
                return ErrorCode.NOT_FOUND
            case 409:
                if _api_reason(exc) == "AlreadyExists":
                    return ErrorCode.ALREADY_EXISTS
                return ErrorCode.CONFLICT
            case 401:
                return ErrorCode.AUTHENTICATION_ERROR
            case 403:
                return ErrorCode.AUTHORIZATION_ERROR
            case 408 | 504:
                return ErrorCode.TIMEOUT_ERROR
            case _:
                return ErrorCode.EXTERNAL_SERVICE_ERROR
    if isinstance(exc, urllib3.exceptions.TimeoutError):
        return ErrorCode.TIMEOUT_ERROR
    return ErrorCode.TECHNICAL_ERROR


def _call(computation: Callable[[], T], message: str) -> Result[T]:
    """Run one API call; any exception becomes a Failure classified by error_code_for."""
    try:
        return Result.success(computation())
    except Exception as e:
        code = error_code_for(e)
        if code is not ErrorCode.NOT_FOUND:
            log.warning("store.request_failed", operation=message, code=code.value, error=str(e))
        return Result.failure(code, f"{message}: {e}", e)


# ─────────────────────── Model conversion ───────────────────────


def _decode_secret_data(data: dict[str, str] | None) -> dict[str, bytes]:
    """Secret.data values arrive base64-encoded; undecodable entries are dropped."""
    decoded: dict[str, bytes] = {}
    for key, value in (data or {}).items():
        if value is None:
            continue
        try:
            decoded[key] = base64.b64decode(value)
        except ValueError:
            log.warning("store.secret_value_undecodable", key=key)
    return decoded


def secret_to_record(secret: kube_client.V1Secret) -> CredentialRecord:
    meta = secret.metadata
    return CredentialRecord(
        namespace=meta.namespace,
        name=meta.name,
        record_type=secret.type or "",
        annotations=dict(meta.annotations or {}),
        payload=_decode_secret_data(secret.data),
    )


def watcher_to_config(namespace: str, name: str, obj: dict[str, Any]) -> WatchConfig:
    spec = obj.get("spec") or {}
    return WatchConfig(namespace=namespace, name=name, check_ca=bool(spec.get("checkCA", False)))


def config_map_to_record(config_map: kube_client.V1ConfigMap) -> DerivedRecord:
    meta = config_map.metadata
    return DerivedRecord(
        namespace=meta.namespace,
        name=meta.name,
        data=dict(config_map.data or {}),
        labels=dict(meta.labels or {}),
        resource_version=meta.resource_version,
    )


def record_to_config_map(record: DerivedRecord) -> kube_client.V1ConfigMap:
    return kube_client.V1ConfigMap(
        api_version="v1",
        kind="ConfigMap",
        metadata=kube_client.V1ObjectMeta(
            name=record.name,
            namespace=record.namespace,
            labels=dict(record.labels) or None,
            resource_version=record.resource_version,
        ),
        data=dict(record.data),
    )


# ─────────────────────── Public Store Class ───────────────────────


class KubeRecordStore:
    """
    Read/write records through the Kubernetes API.

    Implements the RecordStore port. namespace=None means cluster-wide for
    list_credentials(); single-object calls always name their namespace.
    """

    def __init__(
        self,
        core_api: CoreV1Api,
        custom_api: CustomObjectsApi,
        watch_group: str,
        watch_version: str,
        watch_plural: str,
        request_timeout: int = 30,
        namespace: str | None = None,
    ) -> None:
        self._core = core_api
        self._custom = custom_api
        self._group = watch_group
        self._version = watch_version
        self._plural = watch_plural
        self._timeout = request_timeout
        self._namespace = namespace

    def get_watch_config(self, namespace: str, name: str) -> Result[WatchConfig]:
        return _call(
            lambda: self._custom.get_namespaced_custom_object(
                group=self._group,
                version=self._version,
                namespace=namespace,
                plural=self._plural,
                name=name,
                _request_timeout=self._timeout,
            ),
            f"Failed to read TLSSecretWatcher {namespace}/{name}",
        ).map(lambda obj: watcher_to_config(namespace, name, obj))

    def get_credential(self, namespace: str, name: str) -> Result[CredentialRecord]:
        return _call(
            lambda: self._core.read_namespaced_secret(
                name=name, namespace=namespace, _request_timeout=self._timeout
            ),
            f"Failed to read Secret {namespace}/{name}",
        ).map(secret_to_record)

    def get_derived(self, namespace: str, name: str) -> Result[DerivedRecord]:
        return _call(
            lambda: self._core.read_namespaced_config_map(
                name=name, namespace=namespace, _request_timeout=self._timeout
            ),
            f"Failed to read ConfigMap {namespace}/{name}",
        ).map(config_map_to_record)

    def create_derived(self, record: DerivedRecord) -> Result[DerivedRecord]:
        body = record_to_config_map(record.with_resource_version(None))
        return _call(
            lambda: self._core.create_namespaced_config_map(
                namespace=record.namespace, body=body, _request_timeout=self._timeout
            ),
            f"Failed to create ConfigMap {record.namespace}/{record.name}",
        ).map(config_map_to_record)

    def update_derived(self, record: DerivedRecord) -> Result[DerivedRecord]:
        return _call(
            lambda: self._core.replace_namespaced_config_map(
                name=record.name,
                namespace=record.namespace,
                body=record_to_config_map(record),
                _request_timeout=self._timeout,
            ),
            f"Failed to replace ConfigMap {record.namespace}/{record.name}",
        ).map(config_map_to_record)

    def list_credentials(self, namespace: str | None = None) -> Result[list[Trigger]]:
        scope = namespace or self._namespace
        return _call(
            lambda: self._list_tls_secret_keys(scope),
            f"Failed to list TLS Secrets in {scope or 'all namespaces'}",
        )

    def _list_tls_secret_keys(self, namespace: str | None) -> list[Trigger]:
        """Page through every kubernetes.io/tls Secret in one namespace, or all of them."""
        keys: list[Trigger] = []
        token: str | None = None
        while True:
            kwargs: dict[str, Any] = {
                "field_selector": f"type={TLS_RECORD_TYPE}",
                "limit": _LIST_PAGE_SIZE,
                "_request_timeout": self._timeout,
            }
            if token:
                kwargs["_continue"] = token
            if namespace:
                page = self._core.list_namespaced_secret(namespace, **kwargs)
            else:
                page = self._core.list_secret_for_all_namespaces(**kwargs)
            keys.extend(
                Trigger(namespace=item.metadata.namespace, name=item.metadata.name)
                for item in page.items
            )
            token = page.metadata._continue if page.metadata else None
            if not token:
                return keys
