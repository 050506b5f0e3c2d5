"""
Test assertions for Result values.

Each helper unwraps the expected track and returns its payload, so a test
can assert and continue in one line:

    error = ResultAssertions.assert_failure(store.get_credential("ops", "gone"), ErrorCode.NOT_FOUND)
"""

from __future__ import annotations

from typing import TypeVar

from railway.failure import ErrorCode, FailureDescription
from railway.result import Failure, Result, Success

T = TypeVar("T")


def _suffix(message: str) -> str:
    return f" ({message})" if message else ""


class ResultAssertions:
    """Assertion helpers with messages that show the unexpected track."""

    @staticmethod
    def assert_success(result: Result[T], message: str = "") -> T:
        match result:
            case Success(value):
                return value
            case Failure(err):
                raise AssertionError(f"expected Success, got Failure[{err}]{_suffix(message)}")
        raise TypeError("unreachable")  # pragma: no cover

    @staticmethod
    def assert_failure(
        result: Result[T],
        expected_code: ErrorCode | None = None,
        message: str = "",
    ) -> FailureDescription:
        """Unwrap a Failure; when expected_code is given the codes must match."""
        match result:
            case Success(value):
                raise AssertionError(f"expected Failure, got Success[{value!r}]{_suffix(message)}")
            case Failure(err) if expected_code is not None and err.code is not expected_code:
                raise AssertionError(
                    f"expected {expected_code.value}, got Failure[{err}]{_suffix(message)}"
                )
            case Failure(err):
                return err
        raise TypeError("unreachable")  # pragma: no cover

    @staticmethod
    def assert_failure_message_contains(result: Result[T], substring: str) -> None:
        """Case-insensitive substring check on the failure message."""
        err = ResultAssertions.assert_failure(result)
        if substring.lower() not in err.message.lower():
            raise AssertionError(f"{substring!r} not found in failure message {err.message!r}")
