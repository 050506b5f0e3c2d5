"""
Railway-Oriented Programming (ROP) Framework for Python.

Explicit, composable, functional error handling — no exceptions in business logic.

    from railway import Result, ErrorCode

    def require_name(record: dict) -> Result[str]:
        name = record.get("name")
        if not name:
            return Result.failure(ErrorCode.VALIDATION_ERROR, "record has no name")
        return Result.success(name)

    result = (
        Result.success({"name": "web"})
        .flat_map(require_name)
        .map(lambda name: f"{name}-ca")
    )
"""

from railway.assertions import ResultAssertions
from railway.execution import (
    ExecutionContext,
    LoggingExecutionContext,
    NoOpExecutionContext,
)
from railway.failure import ErrorCode, FailureDescription
from railway.result import Failure, Result, Success

__all__ = [
    "Result",
    "Success",
    "Failure",
    "ErrorCode",
    "FailureDescription",
    "ExecutionContext",
    "NoOpExecutionContext",
    "LoggingExecutionContext",
    "ResultAssertions",
]

__version__ = "1.1.0"
