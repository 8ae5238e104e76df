"""
Issuer reputation — per (issuer, month) scoring of BR violations.

Two phases per bucket:

  1. accumulate: every CertSummary for the issuer-month adds to running
     sums (counts, popularity-weighted and raw violation sums per rule)
  2. finish:     running sums become violation rates, inverted so that
                 1.0 is a spotless record and 0.0 means every certificate
                 violated the rule

A bucket carries an explicit OPEN/FINALIZED state; finishing twice or
updating after finishing raises ReputationStateError instead of silently
re-dividing already normalized numbers.

ReputationAggregator owns all buckets behind one lock, so any number of
worker threads may call update() concurrently. ViolationExampleTracker
keeps one sample certificate per issuer and violated rule for reports.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

import structlog

from br_audit.domain.models import CertSummary, ViolationExample
from br_audit.domain.names import truncate_month

log = structlog.get_logger()


class ReputationStateError(RuntimeError):
    """A bucket or aggregator was used after it was finalized."""


class BucketState(Enum):
    OPEN = "open"
    FINALIZED = "finalized"


@dataclass(slots=True)
class IssuerReputationScore:
    """
    Score of one rule within one issuer-month.

    Until IssuerReputation.finish() runs, both fields are running sums:
    `normalized_score` sums the popularity of violating certificates,
    `raw_score` counts violating certificates. Afterwards both hold
    1 - rate, in [0, 1].
    """

    normalized_score: float = 0.0
    raw_score: float = 0.0

    def update(self, reputation: float) -> None:
        self.normalized_score += reputation
        self.raw_score += 1

    def finish(self, normalized_count: int, raw_count: int) -> None:
        normalized_rate = self.normalized_score / normalized_count if normalized_count else 0.0
        raw_rate = self.raw_score / raw_count if raw_count else 0.0
        # Low scores are bad, high scores are good, like the popularity ranking.
        self.normalized_score = 1.0 - normalized_rate
        self.raw_score = 1.0 - raw_rate

    def to_json_dict(self) -> dict[str, float]:
        return {"NormalizedScore": self.normalized_score, "RawScore": self.raw_score}


@dataclass(slots=True)
class IssuerReputation:
    """
    Accumulator for one (issuer, month) bucket.

    `normalized_count` only counts certificates whose names were found by
    the popularity oracle; `raw_count` counts all of them.
    `issuer_in_mozilla_db` is last-write-wins: all certificates of a bucket
    normally share one chain-trust status, and a bucket mixing statuses
    reports whichever observation was applied last.
    """

    issuer: str
    begin_time: int
    issuer_in_mozilla_db: bool = False
    scores: dict[str, IssuerReputationScore] = field(default_factory=dict)
    is_ca: int = 0
    normalized_score: float = 0.0
    raw_score: float = 0.0
    normalized_count: int = 0
    raw_count: int = 0
    state: BucketState = BucketState.OPEN

    @classmethod
    def for_observation(cls, issuer: str, timestamp: int) -> IssuerReputation:
        return cls(issuer=issuer, begin_time=truncate_month(timestamp))

    def update(self, summary: CertSummary) -> None:
        if self.state is BucketState.FINALIZED:
            raise ReputationStateError(
                f"update() on finalized bucket {self.issuer!r} @ {self.begin_time}"
            )
        self.raw_count += 1
        self.issuer_in_mozilla_db = summary.issuer_in_mozilla_db

        reputation = summary.max_reputation
        if reputation is not None:
            self.normalized_count += 1
        else:
            reputation = 0.0

        for rule, violated in summary.violations.items():
            score = self.scores.setdefault(rule, IssuerReputationScore())
            if violated:
                score.update(reputation)

        if summary.is_ca:
            self.is_ca += 1

    def finish(self) -> None:
        if self.state is BucketState.FINALIZED:
            raise ReputationStateError(
                f"finish() called twice on bucket {self.issuer!r} @ {self.begin_time}"
            )
        for score in self.scores.values():
            score.finish(self.normalized_count, self.raw_count)

        if self.scores:
            self.normalized_score = sum(s.normalized_score for s in self.scores.values()) / len(
                self.scores
            )
            self.raw_score = sum(s.raw_score for s in self.scores.values()) / len(self.scores)
        else:
            self.normalized_score = 1.0
            self.raw_score = 1.0
        self.state = BucketState.FINALIZED

    def to_json_dict(self) -> dict[str, Any]:
        return {
            "Issuer": self.issuer,
            "IssuerInMozillaDB": self.issuer_in_mozilla_db,
            "Scores": {rule: score.to_json_dict() for rule, score in sorted(self.scores.items())},
            "IsCA": self.is_ca,
            "NormalizedScore": self.normalized_score,
            "RawScore": self.raw_score,
            "NormalizedCount": self.normalized_count,
            "RawCount": self.raw_count,
            "BeginTime": self.begin_time,
        }


type BucketKey = tuple[str, int]


class ReputationAggregator:
    """
    Thread-safe map of (issuer, month start) → IssuerReputation.

    External contract: update() during the stream, finish_all() exactly
    once after every update has returned.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._buckets: dict[BucketKey, IssuerReputation] = {}
        self._state = BucketState.OPEN

    def update(self, summary: CertSummary) -> None:
        key = (summary.issuer, truncate_month(summary.timestamp))
        with self._lock:
            if self._state is BucketState.FINALIZED:
                raise ReputationStateError("update() after finish_all()")
            bucket = self._buckets.get(key)
            if bucket is None:
                bucket = IssuerReputation.for_observation(summary.issuer, summary.timestamp)
                self._buckets[key] = bucket
            bucket.update(summary)

    def finish_all(self) -> list[IssuerReputation]:
        """Finalize every bucket; returns them ordered by (issuer, begin_time)."""
        with self._lock:
            if self._state is BucketState.FINALIZED:
                raise ReputationStateError("finish_all() called twice")
            self._state = BucketState.FINALIZED
            for bucket in self._buckets.values():
                bucket.finish()
            finished = [self._buckets[key] for key in sorted(self._buckets)]

        log.info("reputation.finalized", buckets=len(finished))
        return finished

    def __len__(self) -> int:
        with self._lock:
            return len(self._buckets)


class ViolationExampleTracker:
    """
    Remember, per issuer and rule, the latest certificate violating it.

    "Latest" is by log timestamp so the outcome does not depend on which
    worker thread reported first.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._examples: dict[tuple[str, str], ViolationExample] = {}

    def record(self, summary: CertSummary, certificate: bytes) -> None:
        with self._lock:
            for rule, violated in summary.violations.items():
                if not violated:
                    continue
                key = (summary.issuer, rule)
                current = self._examples.get(key)
                if current is None or summary.timestamp >= current.last_seen:
                    self._examples[key] = ViolationExample(
                        issuer=summary.issuer,
                        rule=rule,
                        certificate=certificate,
                        last_seen=summary.timestamp,
                    )

    def examples(self) -> list[ViolationExample]:
        with self._lock:
            return [self._examples[key] for key in sorted(self._examples)]
