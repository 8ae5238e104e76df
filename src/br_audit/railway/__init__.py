"""
Railway-Oriented Programming helpers used at every I/O boundary.

    from br_audit.railway import ErrorCode, Result

    def load(path: Path) -> Result[bytes]:
        return Result.from_computation(path.read_bytes, ErrorCode.IO_ERROR, "read failed")
"""

from br_audit.railway.assertions import ResultAssertions
from br_audit.railway.execution import (
    ExecutionContext,
    LoggingExecutionContext,
    NoOpExecutionContext,
)
from br_audit.railway.failure import ErrorCode, FailureDescription
from br_audit.railway.result import Failure, Result, Success

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
