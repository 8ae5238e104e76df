"""
Test assertions for Result values.

    value = ResultAssertions.assert_success(result)
    ResultAssertions.assert_failure(result, ErrorCode.PARSE_ERROR)
"""

from __future__ import annotations

from typing import TypeVar

from br_audit.railway.failure import ErrorCode, FailureDescription
from br_audit.railway.result import Result

T = TypeVar("T")


class ResultAssertions:
    """Expressive assertions with readable failure messages."""

    @staticmethod
    def assert_success(result: Result[T], message: str = "") -> T:
        """Assert the Result is a Success and return its value."""
        context = f" — {message}" if message else ""
        assert result.is_success(), f"Expected Success but got {result!r}{context}"
        return result.value()

    @staticmethod
    def assert_failure(
        result: Result[T],
        expected_code: ErrorCode | None = None,
        message: str = "",
    ) -> FailureDescription:
        """Assert the Result is a Failure (optionally of a given code) and return it."""
        context = f" — {message}" if message else ""
        assert result.is_failure(), f"Expected Failure but got {result!r}{context}"
        error = result.error()
        if expected_code is not None:
            assert error.code == expected_code, (
                f"Expected error code {expected_code.value} "
                f"but got {error.code.value}{context}"
            )
        return error

    @staticmethod
    def assert_failure_message_contains(result: Result[T], fragment: str) -> None:
        error = ResultAssertions.assert_failure(result)
        assert fragment in error.message, (
            f"Expected failure message containing {fragment!r}, got {error.message!r}"
        )
