"""
Popularity adapter — domain ranking CSV → PopularityOracle.

Reads a top-sites list of `rank,domain` rows (rank 1 = most popular) and
scores a name as 1 - (rank - 1) / total, so the top site scores 1.0 and
the last one scores just above 0.

Lookups are case-insensitive, ignore a leading wildcard label and a
trailing root dot, and fall back to parent domains: www.shop.example.com
resolves to the score of example.com when only that is ranked.
"""

from __future__ import annotations

import csv
from collections.abc import Iterable, Mapping
from pathlib import Path
from types import MappingProxyType

import structlog

from br_audit.railway import ErrorCode, Result

log = structlog.get_logger()


def normalize_name(name: str) -> str:
    name = name.strip().lower().rstrip(".")
    if name.startswith("*."):
        name = name[2:]
    return name


class CsvPopularityRanker:
    """
    In-memory popularity ranking.

    Implements the PopularityOracle port. The table is read-only after
    construction, so lookups need no locking.
    """

    def __init__(self, ranks: Mapping[str, int]) -> None:
        self._total = len(ranks)
        self._ranks: Mapping[str, int] = MappingProxyType(
            {normalize_name(domain): rank for domain, rank in ranks.items()}
        )

    @classmethod
    def from_rows(cls, rows: Iterable[list[str]]) -> CsvPopularityRanker:
        """Build from csv rows; rows that are not `rank,domain` are skipped."""
        ranks: dict[str, int] = {}
        skipped = 0
        for row in rows:
            try:
                rank, domain = int(row[0]), row[1]
            except (IndexError, ValueError):
                skipped += 1
                continue
            if rank < 1 or not domain.strip():
                skipped += 1
                continue
            # keep the best rank for duplicated domains
            ranks[domain] = min(rank, ranks.get(domain, rank))
        if skipped:
            log.warning("popularity.rows_skipped", skipped=skipped)
        return cls(ranks)

    def __len__(self) -> int:
        return self._total

    def lookup(self, name: str) -> float | None:
        candidate = normalize_name(name)
        while candidate:
            rank = self._ranks.get(candidate)
            if rank is not None:
                return self._score(rank)
            _, dot, parent = candidate.partition(".")
            if not dot or "." not in parent:
                return None
            candidate = parent
        return None

    def _score(self, rank: int) -> float:
        # ranks beyond the row count (sparse lists) bottom out at 0
        return max(0.0, 1.0 - (rank - 1) / self._total)


def _read_ranking(path: Path) -> CsvPopularityRanker:
    with path.open(newline="", encoding="utf-8") as handle:
        ranker = CsvPopularityRanker.from_rows(csv.reader(handle))
    log.info("popularity.loaded", path=str(path), domains=len(ranker))
    return ranker


def load_popularity_ranking(path: Path) -> Result[CsvPopularityRanker]:
    """Load a `rank,domain` CSV file."""
    return Result.from_computation(
        lambda: _read_ranking(path),
        ErrorCode.IO_ERROR,
        f"Failed to load popularity ranking from {path}",
    )
