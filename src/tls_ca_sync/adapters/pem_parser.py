"""
PEM chain parser adapter — PEM block scanning + X.509 CA classification.

Adapter layer — implements the CertificateChainParser port using:
  - re + base64: locate and decode PEM blocks in the raw Secret bytes
  - cryptography (PyCA): DER X.509 parsing and BasicConstraints lookup

Pipeline:
  tls.crt bytes
    → scan for -----BEGIN <label>----- … -----END <label>----- blocks
    → strip RFC 1421 headers, base64-decode the body
    → cryptography: x509.load_der_x509_certificate()
    → BasicConstraints.ca (absent extension → not a CA)
    → DecodedBlock(canonical PEM text, is_ca)

Anything that cannot be decoded is dropped at block granularity: a bad block
in the middle of a chain never hides the blocks after it.
"""

from __future__ import annotations

import base64
import binascii
import re
from collections.abc import Iterator

import structlog
from cryptography import x509
from cryptography.x509.extensions import ExtensionNotFound

from tls_ca_sync.domain.models import DecodedBlock

log = structlog.get_logger()

_PEM_BLOCK = re.compile(
    rb"-----BEGIN (?P<label>[^\r\n-]+)-----"
    rb"(?P<body>(?:(?!-----BEGIN ).)*?)"
    rb"-----END (?P=label)-----",
    re.DOTALL,
)
_PEM_LINE_WIDTH = 64

# InvalidVersion and DuplicateExtension do not derive from ValueError.
_PARSE_ERRORS = (
    ValueError,
    x509.InvalidVersion,
    x509.DuplicateExtension,
    x509.UnsupportedGeneralNameType,
)


# ─────────────────────── PEM framing ───────────────────────


def _strip_headers(body: bytes) -> bytes:
    """Drop 'Key: value' header lines that may precede the base64 body."""
    lines = body.strip().splitlines()
    if not lines or b":" not in lines[0]:
        return body
    for index, line in enumerate(lines):
        if not line.strip():
            return b"\n".join(lines[index + 1 :])
    return b""


def _iter_pem_blocks(payload: bytes) -> Iterator[tuple[str, bytes]]:
    """
    Yield (label, der_bytes) for every PEM block whose body is valid base64.

    Text outside of blocks is ignored. A block with a corrupt body is skipped
    and scanning resumes after its END line. A body never spans a BEGIN line,
    so a block truncated before its END cannot absorb the block that follows.
    """
    for match in _PEM_BLOCK.finditer(payload):
        label = match.group("label").decode("ascii", errors="replace")
        body = b"".join(_strip_headers(match.group("body")).split())
        try:
            der = base64.b64decode(body, validate=True)
        except (binascii.Error, ValueError):
            log.debug("pem.block_undecodable", label=label, offset=match.start())
            continue
        if der:
            yield label, der


def encode_pem(label: str, der: bytes) -> str:
    """Canonical PEM text: 64-column base64 body, no trailing newline."""
    b64 = base64.b64encode(der).decode("ascii")
    lines = [b64[i : i + _PEM_LINE_WIDTH] for i in range(0, len(b64), _PEM_LINE_WIDTH)]
    return "\n".join([f"-----BEGIN {label}-----", *lines, f"-----END {label}-----"])


# ─────────────────────── X.509 classification ───────────────────────


def _is_ca(cert: x509.Certificate) -> bool:
    """
    CA flag from the BasicConstraints extension.

    A certificate without BasicConstraints is not a CA. A malformed extension
    raises ValueError, which the caller treats like any other parse failure.
    """
    try:
        ext = cert.extensions.get_extension_for_class(x509.BasicConstraints)
    except ExtensionNotFound:
        return False
    return bool(ext.value.ca)


# ─────────────────────── Public Parser Class ───────────────────────


class PemChainParser:
    """
    Parse a concatenated PEM chain into DecodedBlocks, in source order.

    Implements the CertificateChainParser port. Pure: no I/O, no state.
    """

    def parse(self, payload: bytes) -> Iterator[DecodedBlock]:
        """
        Lazily decode every certificate in the payload.

        Blocks that are not valid base64, not DER X.509, or carry malformed
        extensions are skipped silently (debug log only).
        """
        for label, der in _iter_pem_blocks(payload):
            try:
                cert = x509.load_der_x509_certificate(der)
                is_ca = _is_ca(cert)
            except _PARSE_ERRORS as e:
                log.debug("pem.block_not_a_certificate", label=label, error=str(e))
                continue
            yield DecodedBlock(pem_text=encode_pem(label, der), is_ca=is_ca)
