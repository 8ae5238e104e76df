"""
Ports — Protocol interfaces for everything the audit core consumes or feeds.

  Domain ← Ports (protocols) ← Adapters (implementations)

Adapters satisfy a port structurally; nothing inherits from these classes.
Every I/O port returns Result[T] so failures travel on the railway
instead of as exceptions. PopularityOracle is the exception: a failed
lookup is indistinguishable from "unranked" and simply returns None.
"""

from __future__ import annotations

from collections.abc import Iterator
from typing import Protocol, runtime_checkable

from br_audit.domain.models import AuditReport, LogEntry, ParsedCertificate
from br_audit.railway import Result


@runtime_checkable
class LogEntrySource(Protocol):
    """
    Port: yield CT log entries in log order.

    `max_entries` of 0 means the whole log. The iterator is consumed by
    several worker threads through a single executor, never concurrently.
    """

    def entries(self, max_entries: int = 0) -> Result[Iterator[LogEntry]]: ...


@runtime_checkable
class CertificateDecoder(Protocol):
    """Port: decode one DER certificate into a ParsedCertificate."""

    def decode(self, der: bytes) -> Result[ParsedCertificate]: ...


@runtime_checkable
class PopularityOracle(Protocol):
    """
    Port: domain popularity lookup.

    Returns a score in [0, 1] (1 = most popular) or None when the name
    is unranked. Must be safe to call from many threads at once.
    """

    def lookup(self, name: str) -> float | None: ...


@runtime_checkable
class AuditReportSink(Protocol):
    """
    Port: persist a finished AuditReport.

    Returns Result[int] with the number of records written.
    """

    def store(self, report: AuditReport) -> Result[int]: ...
