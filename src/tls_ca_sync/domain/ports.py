"""
Ports — Protocol-based interfaces for infrastructure adapters.

These define WHAT the reconciler needs without specifying HOW:

  Domain ← Ports (protocols) ← Adapters (implementations)

Each port is a Protocol (structural typing) so adapters satisfy the contract
simply by implementing the methods — no inheritance. Tests use an in-memory
RecordStore; production uses the Kubernetes API.
"""

from __future__ import annotations

from collections.abc import Iterator
from typing import Protocol, runtime_checkable

from railway.result import Result

from tls_ca_sync.domain.models import (
    CredentialRecord,
    DecodedBlock,
    DerivedRecord,
    Trigger,
    WatchConfig,
)


@runtime_checkable
class CertificateChainParser(Protocol):
    """
    Port: split a PEM chain into certificates and classify each as CA or not.

    Never fails: undecodable blocks are dropped, an empty or garbage payload
    yields nothing. The iterator is lazy and single-pass.
    """

    def parse(self, payload: bytes) -> Iterator[DecodedBlock]: ...


@runtime_checkable
class RecordStore(Protocol):
    """
    Port: read source records and read/write derived records.

    Every method returns a Result. Implementations map store responses onto
    error codes the reconciler branches on:
      - NOT_FOUND       → record absent (get_*)
      - ALREADY_EXISTS  → create lost a race against another writer
      - CONFLICT        → update carried a stale resource_version
    Anything else is an I/O failure the caller may retry.
    """

    def get_watch_config(self, namespace: str, name: str) -> Result[WatchConfig]: ...

    def get_credential(self, namespace: str, name: str) -> Result[CredentialRecord]: ...

    def get_derived(self, namespace: str, name: str) -> Result[DerivedRecord]: ...

    def create_derived(self, record: DerivedRecord) -> Result[DerivedRecord]: ...

    def update_derived(self, record: DerivedRecord) -> Result[DerivedRecord]:
        """
        Replace the derived record in full.

        record.resource_version must be the version last observed; the store
        refuses the write with CONFLICT if the record changed since.
        """
        ...

    def list_credentials(self, namespace: str | None = None) -> Result[list[Trigger]]:
        """
        Keys of every TLS Secret in scope, used for periodic resync.

        With a namespace, only that namespace is listed (a TLSSecretWatcher
        change re-queues the Secrets it governs).
        """
        ...
