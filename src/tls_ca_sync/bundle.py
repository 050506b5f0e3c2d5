"""
CA bundle assembly — which certificates to publish, and the record to publish them in.

Pure functions, no I/O. The reconciler calls select_blocks() on the parser
output and hands the retained PEM texts to build_derived_record().
"""

from __future__ import annotations

from collections.abc import Iterable

from tls_ca_sync.domain.models import (
    CA_BUNDLE_KEY,
    DERIVED_NAME_SUFFIX,
    MANAGED_BY_LABEL,
    MANAGED_BY_VALUE,
    DecodedBlock,
    DerivedRecord,
)


def select_blocks(blocks: Iterable[DecodedBlock], check_ca: bool) -> list[str]:
    """
    Keep a block if it is a CA, or if CA checking is off.

    Order is preserved and duplicates are kept.
    """
    return [block.pem_text for block in blocks if block.is_ca or not check_ca]


def derived_name_for(source_name: str) -> str:
    return source_name + DERIVED_NAME_SUFFIX


def build_derived_record(
    target_name: str,
    target_namespace: str,
    retained: Iterable[str],
) -> DerivedRecord:
    """
    Wrap the retained PEM texts into the ConfigMap record to converge.

    ca.crt is the texts joined by a single newline, with no trailing
    separator; no texts gives an empty bundle.
    """
    return DerivedRecord(
        namespace=target_namespace,
        name=target_name,
        data={CA_BUNDLE_KEY: "\n".join(retained)},
        labels={MANAGED_BY_LABEL: MANAGED_BY_VALUE},
    )
