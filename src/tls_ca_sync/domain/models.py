"""
Domain models — immutable records read from and written to the cluster.

These are pure value objects. The Kubernetes adapter converts API objects
into them on the way in (Secret → CredentialRecord, TLSSecretWatcher →
WatchConfig) and out of them on the way back (DerivedRecord → ConfigMap), so
the reconciler never touches a client model.

Reconcile outcomes live here too: Converged and Skipped travel on the success
track of a Result, a failed reconcile is the failure track itself.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum, unique

TLS_RECORD_TYPE = "kubernetes.io/tls"
CERTIFICATE_CHAIN_KEY = "tls.crt"
CA_BUNDLE_KEY = "ca.crt"
DERIVED_NAME_SUFFIX = "-ca"
DEFAULT_WATCH_CONFIG_NAME = "default"
MANAGED_BY_LABEL = "app.kubernetes.io/managed-by"
MANAGED_BY_VALUE = "tls-ca-sync"


@dataclass(frozen=True, slots=True, order=True)
class Trigger:
    """Namespace/name key of a Secret that may have changed."""

    namespace: str
    name: str

    def __str__(self) -> str:
        return f"{self.namespace}/{self.name}"


@dataclass(frozen=True, slots=True)
class WatchConfig:
    """
    Per-namespace policy, read from the TLSSecretWatcher custom resource.

    check_ca=True retains only certificates that assert the CA basic
    constraint; check_ca=False republishes every certificate in the chain.
    """

    namespace: str
    name: str = DEFAULT_WATCH_CONFIG_NAME
    check_ca: bool = False


@dataclass(frozen=True, slots=True)
class CredentialRecord:
    """A TLS Secret as seen by the reconciler. payload holds decoded bytes."""

    namespace: str
    name: str
    record_type: str
    annotations: dict[str, str] = field(default_factory=dict)
    payload: dict[str, bytes] = field(default_factory=dict, repr=False)

    @property
    def is_tls(self) -> bool:
        return self.record_type == TLS_RECORD_TYPE

    def has_marker(self, marker: str) -> bool:
        return marker in self.annotations

    @property
    def certificate_chain(self) -> bytes:
        return self.payload.get(CERTIFICATE_CHAIN_KEY) or b""


@dataclass(frozen=True, slots=True)
class DecodedBlock:
    """One certificate from a PEM chain, re-encoded canonically, plus its CA flag."""

    pem_text: str = field(repr=False)
    is_ca: bool = False


@dataclass(frozen=True, slots=True)
class DerivedRecord:
    """
    The ConfigMap published next to a marked TLS Secret.

    resource_version is only set on records read back from the cluster; it
    carries the optimistic-concurrency token for a subsequent replace.
    """

    namespace: str
    name: str
    data: dict[str, str] = field(default_factory=dict)
    labels: dict[str, str] = field(default_factory=dict)
    resource_version: str | None = None

    @property
    def ca_bundle(self) -> str:
        return self.data.get(CA_BUNDLE_KEY, "")

    def with_resource_version(self, resource_version: str | None) -> DerivedRecord:
        return DerivedRecord(
            namespace=self.namespace,
            name=self.name,
            data=self.data,
            labels=self.labels,
            resource_version=resource_version,
        )


# ─────────────────────── Reconcile outcomes ───────────────────────


@unique
class SkipReason(Enum):
    """Why a trigger was irrelevant. None of these are errors."""

    RECORD_NOT_FOUND = "record not found"
    NOT_TLS = "not a TLS record"
    NO_MARKER = "no marker"
    NO_CERTIFICATE_PAYLOAD = "no certificate payload"
    NO_CA_CERTIFICATES = "no CA certificates found"


@unique
class ConvergeOperation(Enum):
    """What convergence did to the derived record."""

    CREATED = "created"
    UPDATED = "updated"
    UNCHANGED = "unchanged"
    CONCURRENTLY_CREATED = "concurrently-created"


@dataclass(frozen=True, slots=True)
class Converged:
    """The derived record now matches the desired state."""

    target: Trigger
    operation: ConvergeOperation
    certificates: int = 0


@dataclass(frozen=True, slots=True)
class Skipped:
    """The trigger did not apply; nothing was written."""

    trigger: Trigger
    reason: SkipReason


type ReconcileOutcome = Converged | Skipped
