"""
Unit tests for the audit pipeline — orchestrates one full run.

Uses mock ports (fake adapters) to test the pipeline in isolation:
  - source:  MagicMock returning a Result of an iterator of LogEntry
  - decoder: a dict-backed fake mapping DER bytes → ParsedCertificate
  - sinks:   MagicMocks returning Result[int]

Test categories:
  - Success track: entries audited, report assembled and stored
  - Skips: undecodable certificates, issuance-date and expiry filters
  - Failure track: source and sink failures; a crashing entry is only skipped
"""

from __future__ import annotations

from datetime import UTC, datetime
from unittest.mock import MagicMock

from br_audit.domain.models import (
    KEY_TOO_SHORT,
    BasicConstraints,
    DistinguishedName,
    LogEntry,
    ParsedCertificate,
    RsaPublicKey,
)
from br_audit.pipeline import AuditOptions, run_audit
from br_audit.railway import ErrorCode, Result, ResultAssertions
from tests.factories import make_parsed

TS = int(datetime(2014, 5, 13, tzinfo=UTC).timestamp()) * 1000
NOW = datetime(2020, 6, 1, tzinfo=UTC)
OPTIONS = AuditOptions(workers=2, issued_after=None, skip_expired=False, now=NOW)

GOOD = make_parsed(raw=b"good")
WEAK = make_parsed(raw=b"weak", public_key=RsaPublicKey(bit_length=1024, exponent=65537))
ROOT_NAME = DistinguishedName(organization=("Root Org",), common_name=("Root CA",))
INTERMEDIATE = make_parsed(raw=b"intermediate", cn="Example Issuing CA", issuer=ROOT_NAME)


# ─────────────────────── Mock Port Factories ───────────────────────


class _FakeDecoder:
    def __init__(self, certs: dict[bytes, ParsedCertificate]) -> None:
        self._certs = certs
        self.calls: list[bytes] = []

    def decode(self, der: bytes) -> Result[ParsedCertificate]:
        self.calls.append(der)
        cert = self._certs.get(der)
        if cert is None:
            return Result.failure(ErrorCode.PARSE_ERROR, "not a certificate")
        return Result.success(cert)


def _decoder(*certs: ParsedCertificate) -> _FakeDecoder:
    return _FakeDecoder({c.raw: c for c in certs})


def _entry(der: bytes, index: int = 0, chain: tuple[bytes, ...] = ()) -> LogEntry:
    return LogEntry(index=index, timestamp=TS + index, certificate=der, chain=chain)


def _make_source(entries: list[LogEntry]) -> MagicMock:
    mock = MagicMock()
    mock.entries.return_value = Result.success(iter(entries))
    return mock


def _make_sink(result: Result[int] | None = None) -> MagicMock:
    mock = MagicMock()
    mock.store.return_value = Result.success(1) if result is None else result
    return mock


# ─────────────────────── Success Track ───────────────────────


class TestPipelineSuccess:
    def test_audits_entries_and_stores_report(self) -> None:
        """
        GIVEN a compliant certificate, a weak-key certificate and garbage
        WHEN run_audit is called
        THEN the report holds one violating summary, one issuer bucket
             counting the two decodable certificates, and one skip.
        """
        source = _make_source([_entry(b"good", 0), _entry(b"weak", 1), _entry(b"garbage", 2)])
        sink = _make_sink()

        result = run_audit(source, _decoder(GOOD, WEAK), frozenset(), None, [sink], OPTIONS)

        report = ResultAssertions.assert_success(result)
        assert report.entries_read == 3
        assert report.entries_skipped == 1
        assert len(report.violating_summaries) == 1
        assert report.violating_summaries[0].violations[KEY_TOO_SHORT] is True
        (bucket,) = report.reputations
        assert bucket.raw_count == 2
        assert bucket.scores[KEY_TOO_SHORT].raw_score == 0.5
        sink.store.assert_called_once_with(report)

    def test_passes_max_entries_to_source(self) -> None:
        source = _make_source([])
        options = AuditOptions(max_entries=25, issued_after=None, skip_expired=False)

        run_audit(source, _decoder(), frozenset(), None, [_make_sink()], options)

        source.entries.assert_called_once_with(25)

    def test_records_examples_with_leaf_der(self) -> None:
        source = _make_source([_entry(b"weak", 3)])

        report = ResultAssertions.assert_success(
            run_audit(source, _decoder(WEAK), frozenset(), None, [_make_sink()], OPTIONS)
        )

        (example,) = report.examples
        assert example.rule == KEY_TOO_SHORT
        assert example.certificate == b"weak"
        assert example.last_seen == TS + 3

    def test_chain_is_decoded_for_trust_check(self) -> None:
        """
        GIVEN an entry whose chain holds an undecodable blob and an
              intermediate issued by a trusted root
        WHEN audited
        THEN the bad chain certificate is dropped and the issuer is trusted.
        """
        source = _make_source([_entry(b"good", chain=(b"junk", b"intermediate"))])
        decoder = _decoder(GOOD, INTERMEDIATE)

        report = ResultAssertions.assert_success(
            run_audit(
                source,
                decoder,
                frozenset({"O=Root Org, CN=Root CA"}),
                None,
                [_make_sink()],
                OPTIONS,
            )
        )

        assert report.reputations[0].issuer_in_mozilla_db is True
        assert b"junk" in decoder.calls

    def test_oracle_feeds_normalized_count(self) -> None:
        oracle = MagicMock()
        oracle.lookup.return_value = 0.5
        source = _make_source([_entry(b"good")])

        report = ResultAssertions.assert_success(
            run_audit(source, _decoder(GOOD), frozenset(), oracle, [_make_sink()], OPTIONS)
        )

        assert report.reputations[0].normalized_count == 1

    def test_many_entries_across_workers(self) -> None:
        entries = [_entry(b"weak" if i % 3 == 0 else b"good", i) for i in range(200)]
        source = _make_source(entries)
        options = AuditOptions(workers=4, issued_after=None, skip_expired=False, now=NOW)

        report = ResultAssertions.assert_success(
            run_audit(source, _decoder(GOOD, WEAK), frozenset(), None, [_make_sink()], options)
        )

        assert report.entries_read == 200
        assert report.certificates_audited == 200
        assert len(report.violating_summaries) == 67
        # summaries come back in log order
        timestamps = [s.timestamp for s in report.violating_summaries]
        assert timestamps == sorted(timestamps)

    def test_no_sinks_still_succeeds(self) -> None:
        result = run_audit(_make_source([]), _decoder(), frozenset(), None, [], OPTIONS)
        ResultAssertions.assert_success(result)


# ─────────────────────── Filters ───────────────────────


class TestFilters:
    def test_certificates_issued_before_cutoff_are_skipped(self) -> None:
        old = make_parsed(raw=b"old", not_before=datetime(2012, 6, 1, tzinfo=UTC))
        options = AuditOptions(
            workers=1, issued_after=datetime(2013, 1, 1, tzinfo=UTC), skip_expired=False
        )

        report = ResultAssertions.assert_success(
            run_audit(
                _make_source([_entry(b"old"), _entry(b"good", 1)]),
                _decoder(old, GOOD),
                frozenset(),
                None,
                [_make_sink()],
                options,
            )
        )

        assert report.entries_skipped == 1
        assert report.certificates_audited == 1

    def test_expired_certificates_are_skipped(self) -> None:
        """
        GIVEN "now" after the certificate's notAfter
        WHEN audited with skip_expired
        THEN the certificate is skipped and no bucket is created.
        """
        options = AuditOptions(
            workers=1, issued_after=None, skip_expired=True, now=datetime(2030, 1, 1, tzinfo=UTC)
        )

        report = ResultAssertions.assert_success(
            run_audit(
                _make_source([_entry(b"good")]),
                _decoder(GOOD),
                frozenset(),
                None,
                [_make_sink()],
                options,
            )
        )

        assert report.entries_skipped == 1
        assert report.reputations == []

    def test_unexpired_certificates_pass(self) -> None:
        options = AuditOptions(workers=1, issued_after=None, skip_expired=True, now=NOW)

        report = ResultAssertions.assert_success(
            run_audit(
                _make_source([_entry(b"good")]),
                _decoder(make_parsed(raw=b"good", not_after=datetime(2021, 1, 1, tzinfo=UTC))),
                frozenset(),
                None,
                [_make_sink()],
                options,
            )
        )

        assert report.entries_skipped == 0


# ─────────────────────── Failure Track ───────────────────────


class TestPipelineFailures:
    def test_source_failure_short_circuits(self) -> None:
        source = MagicMock()
        source.entries.return_value = Result.failure(ErrorCode.IO_ERROR, "no such file")
        decoder = _decoder(GOOD)
        sink = _make_sink()

        result = run_audit(source, decoder, frozenset(), None, [sink], OPTIONS)

        ResultAssertions.assert_failure(result, ErrorCode.IO_ERROR)
        assert decoder.calls == []
        sink.store.assert_not_called()

    def test_crashing_entry_is_skipped_and_run_goes_on(self) -> None:
        """
        GIVEN a decoder that raises on one entry and succeeds on the other
        WHEN run_audit is called
        THEN the crashing entry is counted as skipped
        AND the report is still built and stored.
        """
        fake = _decoder(GOOD)

        def decode(der: bytes) -> Result[ParsedCertificate]:
            if der == b"boom":
                raise ValueError("unexpected IP address length")
            return fake.decode(der)

        decoder = MagicMock()
        decoder.decode.side_effect = decode
        sink = _make_sink()

        result = run_audit(
            _make_source([_entry(b"boom", 0), _entry(b"good", 1)]),
            decoder,
            frozenset(),
            None,
            [sink],
            OPTIONS,
        )

        report = ResultAssertions.assert_success(result)
        assert report.entries_read == 2
        assert report.entries_skipped == 1
        assert report.certificates_audited == 1
        sink.store.assert_called_once_with(report)

    def test_validity_ending_in_year_9999_does_not_abort_run(self) -> None:
        far_future = make_parsed(
            raw=b"far",
            not_before=datetime(9994, 12, 30, tzinfo=UTC),
            not_after=datetime(9999, 12, 31, tzinfo=UTC),
            basic_constraints=BasicConstraints(ca=False),
        )

        report = ResultAssertions.assert_success(
            run_audit(
                _make_source([_entry(b"good", 0), _entry(b"far", 1)]),
                _decoder(GOOD, far_future),
                frozenset(),
                None,
                [_make_sink()],
                OPTIONS,
            )
        )

        assert report.entries_skipped == 0
        assert report.certificates_audited == 2

    def test_failing_source_iterator_is_technical_error(self) -> None:
        def entries():
            yield _entry(b"good")
            raise OSError("read error")

        source = MagicMock()
        source.entries.return_value = Result.success(entries())
        sink = _make_sink()

        result = run_audit(source, _decoder(GOOD), frozenset(), None, [sink], OPTIONS)

        ResultAssertions.assert_failure(result, ErrorCode.TECHNICAL_ERROR)
        sink.store.assert_not_called()

    def test_sink_failure_is_returned_and_other_sinks_still_run(self) -> None:
        """
        GIVEN a failing database sink followed by a working JSON sink
        WHEN the report is stored
        THEN the failure is returned but the JSON sink was still called.
        """
        failing = _make_sink(Result.failure(ErrorCode.DATABASE_ERROR, "connection refused"))
        working = _make_sink()

        result = run_audit(
            _make_source([_entry(b"good")]),
            _decoder(GOOD),
            frozenset(),
            None,
            [failing, working],
            OPTIONS,
        )

        ResultAssertions.assert_failure(result, ErrorCode.DATABASE_ERROR)
        working.store.assert_called_once()
