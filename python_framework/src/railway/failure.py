"""
Failure description — structured error information for the failure track.

An ErrorCode enum classifies the failure; FailureDescription carries the code,
a human-readable message, the originating exception (if any) and a timestamp.

Codes are grouped by how a caller is expected to react:
  - Expected outcomes of a store call that the caller branches on
    (NOT_FOUND, ALREADY_EXISTS, CONFLICT)
  - Problems that will not fix themselves on retry
    (VALIDATION, AUTHENTICATION, AUTHORIZATION, CONFIGURATION)
  - Transient problems worth retrying
    (EXTERNAL_SERVICE, TIMEOUT, CANCELLED, TECHNICAL, UNKNOWN)
"""

from __future__ import annotations

import traceback
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum, unique


@unique
class ErrorCode(Enum):
    """Structured error codes for the failure track."""

    # --- Expected store outcomes ---
    NOT_FOUND = "NOT_FOUND"
    """Requested record does not exist (HTTP 404)."""

    ALREADY_EXISTS = "ALREADY_EXISTS"
    """Create refused because the record exists (HTTP 409, reason AlreadyExists)."""

    CONFLICT = "CONFLICT"
    """Update refused because the record changed underneath us (HTTP 409, reason Conflict)."""

    # --- Not retryable without operator action ---
    VALIDATION_ERROR = "VALIDATION_ERROR"
    """Malformed input or a record with an unexpected shape."""

    AUTHENTICATION_ERROR = "AUTHENTICATION_ERROR"
    """Invalid or expired credentials (HTTP 401)."""

    AUTHORIZATION_ERROR = "AUTHORIZATION_ERROR"
    """Insufficient RBAC permissions (HTTP 403)."""

    CONFIGURATION_ERROR = "CONFIGURATION_ERROR"
    """Mandatory configuration missing or invalid."""

    # --- Transient ---
    EXTERNAL_SERVICE_ERROR = "EXTERNAL_SERVICE_ERROR"
    """API server returned an unexpected error status."""

    TIMEOUT_ERROR = "TIMEOUT_ERROR"
    """Request exceeded its deadline."""

    CANCELLED = "CANCELLED"
    """Caller withdrew the request before it completed."""

    TECHNICAL_ERROR = "TECHNICAL_ERROR"
    """Infrastructure issues (connection refused, TLS failure, ...)."""

    UNKNOWN_ERROR = "UNKNOWN_ERROR"
    """Unexpected/unclassified failures."""

    @property
    def is_retryable(self) -> bool:
        """True when retrying the same call later can reasonably succeed."""
        return self in _RETRYABLE


_RETRYABLE = frozenset(
    {
        ErrorCode.CONFLICT,
        ErrorCode.EXTERNAL_SERVICE_ERROR,
        ErrorCode.TIMEOUT_ERROR,
        ErrorCode.CANCELLED,
        ErrorCode.TECHNICAL_ERROR,
        ErrorCode.UNKNOWN_ERROR,
    }
)


@dataclass(frozen=True, slots=True)
class FailureDescription:
    """
    Immutable failure descriptor carrying error code, message, optional exception, and timestamp.

    >>> desc = FailureDescription(ErrorCode.NOT_FOUND, "secret default/web not found")
    >>> desc.code
    <ErrorCode.NOT_FOUND: 'NOT_FOUND'>
    >>> desc.message
    'secret default/web not found'
    """

    code: ErrorCode
    message: str
    exception: BaseException | None = field(default=None, repr=False)
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))

    def full_stack_trace(self) -> str:
        """Message followed by the formatted exception chain, if any."""
        if self.exception is None:
            return self.message
        tb = "".join(
            traceback.format_exception(
                type(self.exception), self.exception, self.exception.__traceback__
            )
        )
        return f"{self.message}\n{tb}"

    def __str__(self) -> str:
        return f"{self.code.value}: {self.message}"
