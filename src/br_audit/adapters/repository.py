"""
PostgreSQL repository adapter — audit report persistence.

Adapter layer — implements the AuditReportSink port using psycopg (v3)
with parameterized queries.

Uses TRANSACTIONAL REPLACE: every run stores a complete audit, so the
previous one is deleted and the new one inserted inside a single
transaction. A failure anywhere rolls back and leaves the old audit in
place.

Table mapping:
  CertSummary       → baseline_requirements (violating certificates only)
  IssuerReputation  → issuer_reputation (one row per issuer-month)
  ViolationExample  → violation_examples (one row per issuer and rule)

Opening the connection is retried with exponential backoff on
psycopg.OperationalError; anything else fails immediately.
"""

from __future__ import annotations

from typing import Any

import psycopg
import structlog
from psycopg.types.json import Jsonb
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from br_audit.domain.models import AuditReport, CertSummary, ViolationExample
from br_audit.domain.reputation import IssuerReputation
from br_audit.railway import ErrorCode, Result

log = structlog.get_logger()

TABLES = ("baseline_requirements", "issuer_reputation", "violation_examples")

SCHEMA = """
CREATE TABLE IF NOT EXISTS baseline_requirements (
    id                    BIGSERIAL PRIMARY KEY,
    cn                    TEXT NOT NULL,
    issuer                TEXT NOT NULL,
    sha256_fingerprint    TEXT NOT NULL,
    not_before            TEXT NOT NULL,
    not_after             TEXT NOT NULL,
    key_size              INTEGER,
    exponent              BIGINT,
    signature_algorithm   INTEGER NOT NULL,
    version               INTEGER NOT NULL,
    is_ca                 BOOLEAN NOT NULL,
    dns_names             TEXT[] NOT NULL,
    ip_addresses          TEXT[] NOT NULL,
    violations            JSONB NOT NULL,
    max_reputation        DOUBLE PRECISION,
    issuer_in_mozilla_db  BOOLEAN NOT NULL,
    log_timestamp         BIGINT NOT NULL
);

CREATE TABLE IF NOT EXISTS issuer_reputation (
    issuer                TEXT NOT NULL,
    begin_time            BIGINT NOT NULL,
    issuer_in_mozilla_db  BOOLEAN NOT NULL,
    is_ca                 INTEGER NOT NULL,
    normalized_score      DOUBLE PRECISION NOT NULL,
    raw_score             DOUBLE PRECISION NOT NULL,
    normalized_count      INTEGER NOT NULL,
    raw_count             INTEGER NOT NULL,
    scores                JSONB NOT NULL,
    PRIMARY KEY (issuer, begin_time)
);

CREATE TABLE IF NOT EXISTS violation_examples (
    issuer       TEXT NOT NULL,
    rule         TEXT NOT NULL,
    certificate  BYTEA NOT NULL,
    last_seen    BIGINT NOT NULL,
    PRIMARY KEY (issuer, rule)
);
"""

_INSERT_SUMMARY = """
INSERT INTO baseline_requirements (
    cn, issuer, sha256_fingerprint, not_before, not_after, key_size, exponent,
    signature_algorithm, version, is_ca, dns_names, ip_addresses, violations,
    max_reputation, issuer_in_mozilla_db, log_timestamp
) VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
"""

_INSERT_REPUTATION = """
INSERT INTO issuer_reputation (
    issuer, begin_time, issuer_in_mozilla_db, is_ca, normalized_score,
    raw_score, normalized_count, raw_count, scores
) VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s)
"""

_INSERT_EXAMPLE = """
INSERT INTO violation_examples (issuer, rule, certificate, last_seen)
VALUES (%s, %s, %s, %s)
"""


class PsycopgAuditRepository:
    """
    Persist audit reports to PostgreSQL using transactional replace.

    Implements the AuditReportSink port.
    All exceptions are caught at this adapter boundary via Result.from_computation().
    """

    def __init__(self, dsn: str, connect_attempts: int = 3) -> None:
        self._dsn = dsn
        self._connect = retry(
            stop=stop_after_attempt(connect_attempts),
            wait=wait_exponential(multiplier=1, min=0.1, max=30),
            retry=retry_if_exception_type(psycopg.OperationalError),
            reraise=True,
        )(self._open_connection)

    def store(self, report: AuditReport) -> Result[int]:
        """
        Atomically replace the stored audit with `report`.

        Returns Result[int] with total rows inserted on success.
        On failure, the previous audit remains intact (transaction rolled back).
        """
        return Result.from_computation(
            lambda: self._transactional_replace(report),
            ErrorCode.DATABASE_ERROR,
            "Failed to persist audit report to database",
        )

    def ensure_schema(self) -> Result[int]:
        """Create the audit tables if they do not exist yet; returns the table count."""

        def _create() -> int:
            with self._connect() as conn:
                conn.execute(SCHEMA)
            log.info("repository.schema_ready", tables=len(TABLES))
            return len(TABLES)

        return Result.from_computation(
            _create, ErrorCode.DATABASE_ERROR, "Failed to create audit schema"
        )

    def _open_connection(self) -> psycopg.Connection[Any]:
        return psycopg.connect(self._dsn)

    def _transactional_replace(self, report: AuditReport) -> int:
        """DELETE all → INSERT all in a single ACID transaction."""
        with self._connect() as conn, conn.transaction(), conn.cursor() as cur:
            self._delete_all(cur)
            rows = self._insert_summaries(cur, report.violating_summaries)
            rows += self._insert_reputations(cur, report.reputations)
            rows += self._insert_examples(cur, report.examples)
            log.info(
                "repository.stored",
                summaries=len(report.violating_summaries),
                reputations=len(report.reputations),
                examples=len(report.examples),
                total_rows=rows,
            )
            return rows

    def _delete_all(self, cur: psycopg.Cursor[Any]) -> None:
        for table in reversed(TABLES):
            cur.execute(f"DELETE FROM {table}")

    def _insert_summaries(self, cur: psycopg.Cursor[Any], summaries: list[CertSummary]) -> int:
        for s in summaries:
            cur.execute(
                _INSERT_SUMMARY,
                (
                    s.cn,
                    s.issuer,
                    s.sha256_fingerprint,
                    s.not_before,
                    s.not_after,
                    s.key_size,
                    s.exponent,
                    s.signature_algorithm,
                    s.version,
                    s.is_ca,
                    list(s.dns_names),
                    list(s.ip_addresses),
                    Jsonb(dict(s.violations)),
                    s.max_reputation,
                    s.issuer_in_mozilla_db,
                    s.timestamp,
                ),
            )
        return len(summaries)

    def _insert_reputations(
        self,
        cur: psycopg.Cursor[Any],
        reputations: list[IssuerReputation],
    ) -> int:
        for r in reputations:
            cur.execute(
                _INSERT_REPUTATION,
                (
                    r.issuer,
                    r.begin_time,
                    r.issuer_in_mozilla_db,
                    r.is_ca,
                    r.normalized_score,
                    r.raw_score,
                    r.normalized_count,
                    r.raw_count,
                    Jsonb({rule: score.to_json_dict() for rule, score in r.scores.items()}),
                ),
            )
        return len(reputations)

    def _insert_examples(self, cur: psycopg.Cursor[Any], examples: list[ViolationExample]) -> int:
        for e in examples:
            cur.execute(_INSERT_EXAMPLE, (e.issuer, e.rule, e.certificate, e.last_seen))
        return len(examples)
