"""
Pipeline — one audit run over a CT log, wired through ports.

The run is a railway of three stages:

  source.entries(max_entries)
    → audit every entry (thread pool: decode → filter → evaluate → aggregate)
      → finish_all() + examples → AuditReport
        → store the report in every sink

Each stage returns Result[T]; the first failure short-circuits the rest.
Per-entry problems (undecodable certificates, filtered entries, an
exception raised while auditing one certificate) are not failures: the
entry is counted as skipped and the run goes on.

Concurrency: entries are handed to a ThreadPoolExecutor with a bounded
number of futures in flight. The executor's `with` block has been left,
and so every worker has returned, before finish_all() runs.
"""

from __future__ import annotations

from collections import deque
from collections.abc import Iterable, Iterator, Sequence
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass
from datetime import UTC, datetime

import structlog

from br_audit.domain.compliance import evaluate_certificate
from br_audit.domain.models import AuditReport, CertSummary, LogEntry, ParsedCertificate
from br_audit.domain.ports import (
    AuditReportSink,
    CertificateDecoder,
    LogEntrySource,
    PopularityOracle,
)
from br_audit.domain.reputation import (
    ReputationAggregator,
    ReputationStateError,
    ViolationExampleTracker,
)
from br_audit.railway import ErrorCode, Result

log = structlog.get_logger()

DEFAULT_ISSUED_AFTER = datetime(2013, 1, 1, tzinfo=UTC)

# futures in flight per worker thread
_QUEUE_DEPTH = 4


@dataclass(frozen=True, slots=True)
class AuditOptions:
    """
    Knobs for one audit run.

    `issued_after`: certificates with an earlier notBefore are skipped
    (None disables the filter). `skip_expired`: certificates whose
    notAfter lies before `now` are skipped. `now` defaults to the time
    the run starts.
    """

    workers: int = 4
    max_entries: int = 0
    issued_after: datetime | None = DEFAULT_ISSUED_AFTER
    skip_expired: bool = True
    now: datetime | None = None


class _EntryAuditor:
    """Per-entry work executed on the pool threads."""

    def __init__(
        self,
        decoder: CertificateDecoder,
        trusted_issuers: frozenset[str],
        oracle: PopularityOracle | None,
        aggregator: ReputationAggregator,
        tracker: ViolationExampleTracker,
        options: AuditOptions,
        now: datetime,
    ) -> None:
        self._decoder = decoder
        self._trusted_issuers = trusted_issuers
        self._oracle = oracle
        self._aggregator = aggregator
        self._tracker = tracker
        self._options = options
        self._now = now

    def __call__(self, entry: LogEntry) -> CertSummary | None:
        """
        Audit one entry; None means it was skipped.

        An exception escaping a single entry skips that entry only.
        Aggregator misuse still propagates and fails the run.
        """
        try:
            return self._audit(entry)
        except ReputationStateError:
            raise
        except Exception as e:
            log.warning(
                "audit.entry_failed",
                index=entry.index,
                error_type=type(e).__name__,
                error=str(e),
            )
            return None

    def _audit(self, entry: LogEntry) -> CertSummary | None:
        decoded = self._decoder.decode(entry.certificate)
        if decoded.is_failure():
            log.debug("decoder.skipped", index=entry.index, error=str(decoded.error()))
            return None

        cert = decoded.value()
        if self._filtered_out(cert):
            return None

        summary = evaluate_certificate(
            cert,
            entry.timestamp,
            self._oracle,
            self._decode_chain(entry),
            self._trusted_issuers,
        )
        self._aggregator.update(summary)
        if summary.violates_br:
            self._tracker.record(summary, entry.certificate)
        return summary

    def _filtered_out(self, cert: ParsedCertificate) -> bool:
        issued_after = self._options.issued_after
        if issued_after is not None and cert.not_before < issued_after:
            return True
        return self._options.skip_expired and cert.not_after < self._now

    def _decode_chain(self, entry: LogEntry) -> list[ParsedCertificate]:
        chain: list[ParsedCertificate] = []
        for position, der in enumerate(entry.chain):
            decoded = self._decoder.decode(der)
            if decoded.is_success():
                chain.append(decoded.value())
            else:
                log.debug("decoder.chain_dropped", index=entry.index, position=position)
        return chain


def _bounded_map(
    executor: ThreadPoolExecutor,
    auditor: _EntryAuditor,
    entries: Iterator[LogEntry],
    window: int,
) -> Iterator[CertSummary | None]:
    """executor.map() that pulls from `entries` lazily, `window` futures at a time."""
    pending: deque[Future[CertSummary | None]] = deque()
    for entry in entries:
        pending.append(executor.submit(auditor, entry))
        if len(pending) >= window:
            yield pending.popleft().result()
    while pending:
        yield pending.popleft().result()


def _audit_entries(
    entries: Iterator[LogEntry],
    decoder: CertificateDecoder,
    trusted_issuers: frozenset[str],
    oracle: PopularityOracle | None,
    options: AuditOptions,
) -> AuditReport:
    aggregator = ReputationAggregator()
    tracker = ViolationExampleTracker()
    now = options.now or datetime.now(UTC)
    auditor = _EntryAuditor(decoder, trusted_issuers, oracle, aggregator, tracker, options, now)

    read = 0
    skipped = 0
    violating: list[CertSummary] = []
    with ThreadPoolExecutor(max_workers=options.workers, thread_name_prefix="br-audit") as pool:
        for summary in _bounded_map(pool, auditor, entries, options.workers * _QUEUE_DEPTH):
            read += 1
            if summary is None:
                skipped += 1
            elif summary.violates_br:
                violating.append(summary)

    report = AuditReport(
        violating_summaries=violating,
        reputations=aggregator.finish_all(),
        examples=tracker.examples(),
        entries_read=read,
        entries_skipped=skipped,
    )
    log.info(
        "audit.complete",
        entries_read=read,
        entries_skipped=skipped,
        certificates_audited=report.certificates_audited,
        violating=len(violating),
        issuer_buckets=len(report.reputations),
    )
    return report


def _store_all(report: AuditReport, sinks: Sequence[AuditReportSink]) -> Result[AuditReport]:
    """Offer the report to every sink; the first failure is returned."""
    results = [
        sink.store(report).peek_failure(
            lambda err, sink=sink: log.error(
                "audit.sink_failed", sink=type(sink).__name__, failure=str(err)
            )
        )
        for sink in sinks
    ]
    return Result.all_of(results).map(lambda _: report)


def run_audit(
    source: LogEntrySource,
    decoder: CertificateDecoder,
    trusted_issuers: frozenset[str],
    oracle: PopularityOracle | None,
    sinks: Iterable[AuditReportSink],
    options: AuditOptions | None = None,
) -> Result[AuditReport]:
    """
    Execute one full audit of `source` and store the report.

    Returns Result[AuditReport] on success, or the failure of the first
    stage that failed: opening the source, the audit itself (a crashed
    worker becomes TECHNICAL_ERROR) or any sink.
    """
    opts = options or AuditOptions()
    sink_list = list(sinks)
    return (
        source.entries(opts.max_entries)
        .flat_map(
            lambda entries: Result.from_computation(
                lambda: _audit_entries(entries, decoder, trusted_issuers, oracle, opts),
                ErrorCode.TECHNICAL_ERROR,
                "Audit run failed",
            )
        )
        .flat_map(lambda report: _store_all(report, sink_list))
    )
