from __future__ import annotations

import statistics
from dataclasses import dataclass, field
from typing import Any

from .row_error import RowError

"""Result models for one import invocation.

BatchResult is the single value every import returns, even when nothing could
be committed. CommitProgress is the advisory snapshot handed to progress
callbacks between commit chunks.
"""

__all__ = [
    "BatchResult",
    "BatchStatsAccumulator",
    "CommitProgress",
]


@dataclass(frozen=True)
class BatchResult:
    """Aggregated outcome of an import (immutable, returned once).

    ``total`` counts the rows that entered validation minus the exact
    duplicates dropped, so ``succeeded + failed == total`` always holds.
    ``failed > 0`` means the import was partially applied; nothing is rolled
    back.
    """
    entity: str
    total: int  # 正規化後 - 完全重複
    succeeded: int
    failed: int
    errors: list[str]  # "Row N: ..." 表示用
    row_errors: list[RowError] = field(default_factory=list)
    skipped_rows: int = 0  # 必須列空欄でサイレントスキップ
    duplicate_rows: int = 0  # 完全重複でドロップ
    created_ids: list[Any] = field(default_factory=list)
    dry_run: bool = False
    elapsed_seconds: float = 0.0
    total_chunks: int = 0
    avg_chunk_seconds: float = 0.0
    p95_chunk_seconds: float = 0.0

    @property
    def partially_applied(self) -> bool:
        return self.failed > 0 and self.succeeded > 0

    @property
    def failed_rows(self) -> list[int]:
        return sorted({e.row_index for e in self.row_errors})


@dataclass(frozen=True)
class CommitProgress:
    """Progress snapshot published after each commit chunk."""
    chunk_index: int  # 1-based
    total_chunks: int
    attempted: int
    total: int
    succeeded: int
    failed: int

    @property
    def done(self) -> bool:
        return self.chunk_index >= self.total_chunks


class BatchStatsAccumulator:
    """Collects per-chunk commit timings and summarizes them."""

    def __init__(self) -> None:
        self.batch_times: list[float] = []

    def add_batch_time(self, elapsed_seconds: float) -> None:
        self.batch_times.append(elapsed_seconds)

    def get_stats(self) -> tuple[int, float, float]:
        """Calculate chunk statistics.

        Returns:
            tuple: (total_chunks, avg_chunk_seconds, p95_chunk_seconds)
        """
        if not self.batch_times:
            return (0, 0.0, 0.0)

        total = len(self.batch_times)
        avg = statistics.mean(self.batch_times)

        if total == 1:
            p95 = self.batch_times[0]
        else:
            # 19th of 20 inclusive quantiles == p95
            p95 = statistics.quantiles(self.batch_times, n=20, method="inclusive")[18]

        return (total, avg, p95)
