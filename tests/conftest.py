"""
Shared test fixtures and helpers for the tls-ca-sync test suite.

Provides:
  - X.509 certificate generation (root CA, intermediate, leaf, and a
    certificate without BasicConstraints) built with cryptography's
    CertificateBuilder, so no fixture files are needed
  - InMemoryRecordStore: a RecordStore fake with per-method failure injection
  - structlog reset between tests (configure_structlog caches loggers)
"""

from __future__ import annotations

import base64
import datetime
from collections.abc import Iterator
from dataclasses import dataclass, field

import pytest
import structlog
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.x509.oid import NameOID
from railway import ErrorCode, FailureDescription
from railway.result import Result

from tls_ca_sync.domain.models import (
    CERTIFICATE_CHAIN_KEY,
    TLS_RECORD_TYPE,
    CredentialRecord,
    DerivedRecord,
    Trigger,
    WatchConfig,
)

MARKER = "de.pottmeier.converter/createca"


@pytest.fixture(autouse=True)
def _reset_structlog() -> Iterator[None]:
    """Undo any structlog.configure() a test triggered."""
    yield
    structlog.reset_defaults()


# ─────────────────────── Certificates ───────────────────────


@dataclass(frozen=True)
class IssuedCert:
    certificate: x509.Certificate
    key: ec.EllipticCurvePrivateKey

    @property
    def pem(self) -> str:
        """Canonical PEM text (64-column body, no trailing newline)."""
        return self.certificate.public_bytes(serialization.Encoding.PEM).decode("ascii").strip()

    @property
    def der(self) -> bytes:
        return self.certificate.public_bytes(serialization.Encoding.DER)


def issue_cert(
    common_name: str,
    is_ca: bool | None,
    issuer: IssuedCert | None = None,
) -> IssuedCert:
    """
    Build a certificate signed by issuer (self-signed when issuer is None).

    is_ca=None omits the BasicConstraints extension entirely.
    """
    key = ec.generate_private_key(ec.SECP256R1())
    subject = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, common_name)])
    now = datetime.datetime.now(datetime.UTC)
    builder = (
        x509.CertificateBuilder()
        .subject_name(subject)
        .issuer_name(issuer.certificate.subject if issuer else subject)
        .public_key(key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now - datetime.timedelta(days=1))
        .not_valid_after(now + datetime.timedelta(days=30))
    )
    if is_ca is not None:
        builder = builder.add_extension(
            x509.BasicConstraints(ca=is_ca, path_length=None), critical=True
        )
    signing_key = issuer.key if issuer else key
    return IssuedCert(builder.sign(signing_key, hashes.SHA256()), key)


@dataclass(frozen=True)
class Chain:
    root: IssuedCert
    intermediate: IssuedCert
    leaf: IssuedCert
    no_constraints: IssuedCert


@pytest.fixture(scope="session")
def chain() -> Chain:
    """Root CA → intermediate CA → leaf, plus a CA-signed cert without BasicConstraints."""
    root = issue_cert("Test Root CA", is_ca=True)
    intermediate = issue_cert("Test Intermediate CA", is_ca=True, issuer=root)
    leaf = issue_cert("service.example.test", is_ca=False, issuer=intermediate)
    no_constraints = issue_cert("legacy.example.test", is_ca=None, issuer=intermediate)
    return Chain(root=root, intermediate=intermediate, leaf=leaf, no_constraints=no_constraints)


def pem_bundle(*pems: str, separator: str = "\n") -> bytes:
    """Concatenate PEM texts into a tls.crt payload."""
    return (separator.join(pems) + "\n").encode("ascii")


def pem_block(label: str, body: bytes) -> str:
    """Wrap arbitrary bytes in a PEM frame (for garbage-block tests)."""
    return f"-----BEGIN {label}-----\n{base64.b64encode(body).decode()}\n-----END {label}-----"


def tls_record(
    namespace: str = "default",
    name: str = "web-tls",
    chain_payload: bytes | None = b"",
    annotations: dict[str, str] | None = None,
    record_type: str = TLS_RECORD_TYPE,
) -> CredentialRecord:
    """A marked TLS Secret by default; pass annotations={} to drop the marker."""
    payload = {} if chain_payload is None else {CERTIFICATE_CHAIN_KEY: chain_payload}
    return CredentialRecord(
        namespace=namespace,
        name=name,
        record_type=record_type,
        annotations={MARKER: "true"} if annotations is None else annotations,
        payload=payload,
    )


# ─────────────────────── In-memory store ───────────────────────


@dataclass
class InMemoryRecordStore:
    """
    RecordStore fake backed by dicts.

    fail maps a method name to the FailureDescription its next call returns
    (consumed once). concurrent_writer, when set, is stored just before a
    create so that the create reports ALREADY_EXISTS.
    """

    configs: dict[tuple[str, str], WatchConfig] = field(default_factory=dict)
    credentials: dict[tuple[str, str], CredentialRecord] = field(default_factory=dict)
    derived: dict[tuple[str, str], DerivedRecord] = field(default_factory=dict)
    fail: dict[str, FailureDescription] = field(default_factory=dict)
    concurrent_writer: DerivedRecord | None = None
    calls: list[str] = field(default_factory=list)
    _version: int = 0

    # ─── seeding ───

    def add_config(self, namespace: str = "default", check_ca: bool = False) -> None:
        self.configs[(namespace, "default")] = WatchConfig(namespace=namespace, check_ca=check_ca)

    def add_credential(self, record: CredentialRecord) -> None:
        self.credentials[(record.namespace, record.name)] = record

    def put_derived(self, record: DerivedRecord) -> DerivedRecord:
        self._version += 1
        stored = record.with_resource_version(str(self._version))
        self.derived[(record.namespace, record.name)] = stored
        return stored

    @property
    def writes(self) -> list[str]:
        return [c for c in self.calls if c in ("create_derived", "update_derived")]

    def _injected(self, method: str) -> FailureDescription | None:
        self.calls.append(method)
        return self.fail.pop(method, None)

    # ─── RecordStore ───

    def get_watch_config(self, namespace: str, name: str) -> Result[WatchConfig]:
        if err := self._injected("get_watch_config"):
            return Result.failure_from(err)
        return Result.from_optional(
            self.configs.get((namespace, name)),
            f"TLSSecretWatcher {namespace}/{name} not found",
            ErrorCode.NOT_FOUND,
        )

    def get_credential(self, namespace: str, name: str) -> Result[CredentialRecord]:
        if err := self._injected("get_credential"):
            return Result.failure_from(err)
        return Result.from_optional(
            self.credentials.get((namespace, name)),
            f"Secret {namespace}/{name} not found",
            ErrorCode.NOT_FOUND,
        )

    def get_derived(self, namespace: str, name: str) -> Result[DerivedRecord]:
        if err := self._injected("get_derived"):
            return Result.failure_from(err)
        return Result.from_optional(
            self.derived.get((namespace, name)),
            f"ConfigMap {namespace}/{name} not found",
            ErrorCode.NOT_FOUND,
        )

    def create_derived(self, record: DerivedRecord) -> Result[DerivedRecord]:
        if err := self._injected("create_derived"):
            return Result.failure_from(err)
        if self.concurrent_writer is not None:
            self.put_derived(self.concurrent_writer)
            self.concurrent_writer = None
        if (record.namespace, record.name) in self.derived:
            return Result.failure(ErrorCode.ALREADY_EXISTS, f"ConfigMap {record.name} exists")
        return Result.success(self.put_derived(record))

    def update_derived(self, record: DerivedRecord) -> Result[DerivedRecord]:
        if err := self._injected("update_derived"):
            return Result.failure_from(err)
        current = self.derived.get((record.namespace, record.name))
        if current is None:
            return Result.failure(ErrorCode.NOT_FOUND, f"ConfigMap {record.name} not found")
        if current.resource_version != record.resource_version:
            return Result.failure(ErrorCode.CONFLICT, f"ConfigMap {record.name} was modified")
        return Result.success(self.put_derived(record))

    def list_credentials(self, namespace: str | None = None) -> Result[list[Trigger]]:
        if err := self._injected("list_credentials"):
            return Result.failure_from(err)
        return Result.success(
            sorted(
                Trigger(namespace=ns, name=name)
                for (ns, name), record in self.credentials.items()
                if record.is_tls and namespace in (None, ns)
            )
        )


@pytest.fixture()
def store() -> InMemoryRecordStore:
    """Empty store with a TLSSecretWatcher (check_ca=False) in namespace 'default'."""
    memory = InMemoryRecordStore()
    memory.add_config("default")
    return memory
