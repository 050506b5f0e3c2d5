"""
Execution contexts — separate WHAT (pure logic) from HOW (side effects).

Pure functions describe WHAT should happen and return Result[T].
An ExecutionContext describes HOW it runs: timing, logging, guarding against
exceptions that escape an adapter boundary.

    ctx = LoggingExecutionContext(operation="Reconcile")
    result = ctx.execute(lambda: reconcile(trigger), namespace="ops", name="web")
"""

from __future__ import annotations

import time
from collections.abc import Callable
from typing import Any, Protocol, TypeVar, runtime_checkable

import structlog

from railway.failure import ErrorCode, FailureDescription
from railway.result import Failure, Result

T = TypeVar("T")
log = structlog.get_logger("railway.execution")


@runtime_checkable
class ExecutionContext(Protocol):
    """
    Protocol for execution contexts.

    Any class implementing execute(computation) satisfies this protocol
    via structural typing — no explicit inheritance needed.
    """

    def execute(self, computation: Callable[[], Result[T]], **context: Any) -> Result[T]:
        """Execute a Result-returning computation within this context."""
        ...


class NoOpExecutionContext:
    """
    Passthrough execution context — runs computation without any wrapper.

    Use for unit tests and for code paths that need no observability.
    """

    def execute(self, computation: Callable[[], Result[T]], **context: Any) -> Result[T]:
        return computation()


class LoggingExecutionContext:
    """
    Execution context that logs entry, exit, duration, and result state.

    Wraps another context (decorator pattern) to add observability. Extra
    keyword arguments given to execute() are bound to every log event of that
    execution. An exception escaping the computation is converted into a
    TECHNICAL_ERROR failure so callers always receive a Result.
    """

    def __init__(
        self,
        inner: ExecutionContext | None = None,
        operation: str = "unknown",
    ) -> None:
        self._inner = inner or NoOpExecutionContext()
        self._operation = operation

    def execute(self, computation: Callable[[], Result[T]], **context: Any) -> Result[T]:
        bound = log.bind(operation=self._operation, **context)
        bound.debug("execution.started")
        start = time.monotonic()

        try:
            result = self._inner.execute(computation, **context)
        except Exception as e:
            bound.error(
                "execution.crashed",
                elapsed_seconds=round(time.monotonic() - start, 3),
                error=str(e),
                exc_info=True,
            )
            return Failure(
                FailureDescription(ErrorCode.TECHNICAL_ERROR, f"Execution failed: {e}", e)
            )

        bound.debug(
            "execution.completed",
            elapsed_seconds=round(time.monotonic() - start, 3),
            state="SUCCESS" if result.is_success() else "FAILURE",
        )
        return result
