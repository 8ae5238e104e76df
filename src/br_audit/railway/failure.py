"""
Failure description — what travels on the failure track.

An ErrorCode names the class of problem (bad input file, unreadable
certificate, database outage, ...). FailureDescription pairs it with a
message, the originating exception and the moment it happened.
"""

from __future__ import annotations

import traceback
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum, unique


@unique
class ErrorCode(Enum):
    """Error classes raised at the adapter boundaries of an audit run."""

    PARSE_ERROR = "PARSE_ERROR"
    """CT entry or certificate bytes that cannot be decoded."""

    IO_ERROR = "IO_ERROR"
    """Input or output file could not be read or written."""

    DATABASE_ERROR = "DATABASE_ERROR"
    """Database connectivity or query failures."""

    TECHNICAL_ERROR = "TECHNICAL_ERROR"
    """Unexpected failure inside a pipeline stage."""


@dataclass(frozen=True, slots=True)
class FailureDescription:
    """
    Immutable failure descriptor.

    >>> desc = FailureDescription(ErrorCode.IO_ERROR, "ct_log not found")
    >>> desc.code
    <ErrorCode.IO_ERROR: 'IO_ERROR'>
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
        if self.exception is None:
            return f"{self.code.value}: {self.message}"
        return f"{self.code.value}: {self.message} ({self.exception})"
