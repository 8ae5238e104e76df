"""
JSON report adapter — writes an AuditReport to a file.

Output shape:

  {
    "Certs":    [<CertSummary>, ...],        violating certificates only
    "Issuers":  [<IssuerReputation>, ...],   one per issuer-month
    "Examples": [{"Issuer", "Rule", "Certificate" (PEM), "LastSeen"}, ...]
  }

The file is written to a sibling temporary path and renamed into place,
so a reader never sees a half-written report. A failed write removes the
temporary file and leaves any previous report untouched.
"""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any

import structlog

from br_audit.domain.models import AuditReport, ViolationExample
from br_audit.railway import ErrorCode, Result

log = structlog.get_logger()


def _example_to_json(example: ViolationExample) -> dict[str, Any]:
    return {
        "Issuer": example.issuer,
        "Rule": example.rule,
        "Certificate": example.certificate_pem,
        "LastSeen": example.last_seen,
    }


def report_to_json(report: AuditReport) -> dict[str, Any]:
    return {
        "Certs": [s.to_json_dict() for s in report.violating_summaries],
        "Issuers": [r.to_json_dict() for r in report.reputations],
        "Examples": [_example_to_json(e) for e in report.examples],
    }


class JsonReportWriter:
    """
    Persist audit reports as a JSON document.

    Implements the AuditReportSink port; the record count returned is the
    number of certificates plus issuer buckets plus examples written.
    """

    def __init__(self, path: Path, indent: int | None = 2) -> None:
        self._path = path
        self._indent = indent

    def store(self, report: AuditReport) -> Result[int]:
        return Result.from_computation(
            lambda: self._write(report),
            ErrorCode.IO_ERROR,
            f"Failed to write JSON report to {self._path}",
        )

    def _write(self, report: AuditReport) -> int:
        document = report_to_json(report)
        self._path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self._path.with_name(self._path.name + ".tmp")
        try:
            with tmp_path.open("w", encoding="utf-8") as handle:
                json.dump(document, handle, indent=self._indent)
                handle.write("\n")
            os.replace(tmp_path, self._path)
        except BaseException:
            tmp_path.unlink(missing_ok=True)
            raise

        records = len(document["Certs"]) + len(document["Issuers"]) + len(document["Examples"])
        log.info(
            "json_report.written",
            path=str(self._path),
            certs=len(document["Certs"]),
            issuers=len(document["Issuers"]),
            examples=len(document["Examples"]),
        )
        return records
