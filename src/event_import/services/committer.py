from __future__ import annotations

import logging
import time
from collections.abc import Callable, Sequence
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any, Generic, Protocol, TypeVar

from ..db.store import StoreError
from ..models.batch_result import BatchStatsAccumulator, CommitProgress
from ..models.config_models import DEFAULT_CHUNK_SIZE, DEFAULT_PAUSE_SECONDS
from ..models.row_error import ErrorKind, RowError

"""Batch committer (stage 5).

Issues one create call per surviving row:

- rows are cut into chunks of ``chunk_size``; chunks run one after another
- inside a chunk the creates run concurrently and are all joined before the
  next chunk starts, which bounds the load put on the store
- every call writes into its own slot of a pre-sized result list, so no
  locking is needed
- a failing create is recorded against its row and never aborts the batch
- between chunks the committer pauses briefly and reports CommitProgress

Nothing is transactional across rows: a failure leaves the batch partially
applied.
"""

__all__ = [
    "BatchCommitter",
    "CommitItemResult",
    "CommitOutcome",
]

logger = logging.getLogger(__name__)


class _HasRowIndex(Protocol):
    @property
    def row_index(self) -> int: ...


T = TypeVar("T", bound=_HasRowIndex)


@dataclass(frozen=True)
class CommitItemResult:
    row_index: int
    created_id: Any = None
    error: RowError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass(frozen=True)
class CommitOutcome:
    results: list[CommitItemResult] = field(default_factory=list)
    total_chunks: int = 0
    avg_chunk_seconds: float = 0.0
    p95_chunk_seconds: float = 0.0

    @property
    def succeeded(self) -> int:
        return sum(1 for r in self.results if r.ok)

    @property
    def failed(self) -> int:
        return sum(1 for r in self.results if not r.ok)

    @property
    def errors(self) -> list[RowError]:
        return [r.error for r in self.results if r.error is not None]

    @property
    def created_ids(self) -> list[Any]:
        return [r.created_id for r in self.results if r.ok]


def _default_error_message(error: StoreError) -> str:
    return error.message


class BatchCommitter(Generic[T]):
    def __init__(
        self,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        pause_seconds: float = DEFAULT_PAUSE_SECONDS,
        max_workers: int | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        if chunk_size < 1:
            raise ValueError("chunk_size must be >= 1")
        self.chunk_size = chunk_size
        self.pause_seconds = pause_seconds
        self.max_workers = max_workers or chunk_size
        self._sleep = sleep

    def chunks(self, records: Sequence[T]) -> list[Sequence[T]]:
        return [records[i : i + self.chunk_size] for i in range(0, len(records), self.chunk_size)]

    def _commit_one(
        self,
        record: T,
        create: Callable[[T], Any],
        error_message: Callable[[StoreError], str],
    ) -> CommitItemResult:
        try:
            created_id = create(record)
        except StoreError as e:
            logger.debug("row=%d create failed code=%s: %s", record.row_index, e.code, e.message)
            return CommitItemResult(
                row_index=record.row_index,
                error=RowError(record.row_index, ErrorKind.COMMIT_FAILURE, error_message(e)),
            )
        except Exception as e:
            logger.warning("row=%d unexpected create error: %s", record.row_index, e)
            return CommitItemResult(
                row_index=record.row_index,
                error=RowError(record.row_index, ErrorKind.COMMIT_FAILURE, str(e) or type(e).__name__),
            )
        return CommitItemResult(row_index=record.row_index, created_id=created_id)

    def commit(
        self,
        records: Sequence[T],
        create: Callable[[T], Any],
        *,
        error_message: Callable[[StoreError], str] = _default_error_message,
        on_progress: Callable[[CommitProgress], None] | None = None,
    ) -> CommitOutcome:
        """Create every record; returns per-row results in input order."""
        if not records:
            return CommitOutcome()

        chunks = self.chunks(records)
        results: list[CommitItemResult | None] = [None] * len(records)
        stats = BatchStatsAccumulator()
        succeeded = failed = offset = 0

        with ThreadPoolExecutor(max_workers=self.max_workers, thread_name_prefix="commit") as pool:
            for chunk_no, chunk in enumerate(chunks, start=1):
                started = time.perf_counter()
                futures = [pool.submit(self._commit_one, r, create, error_message) for r in chunk]
                for i, future in enumerate(futures):
                    item = future.result()
                    results[offset + i] = item
                    if item.ok:
                        succeeded += 1
                    else:
                        failed += 1
                stats.add_batch_time(time.perf_counter() - started)
                offset += len(chunk)
                logger.debug(
                    "chunk %d/%d committed size=%d succeeded=%d failed=%d",
                    chunk_no,
                    len(chunks),
                    len(chunk),
                    succeeded,
                    failed,
                )

                if on_progress is not None:
                    on_progress(
                        CommitProgress(
                            chunk_index=chunk_no,
                            total_chunks=len(chunks),
                            attempted=offset,
                            total=len(records),
                            succeeded=succeeded,
                            failed=failed,
                        )
                    )
                if chunk_no < len(chunks) and self.pause_seconds > 0:
                    self._sleep(self.pause_seconds)

        total_chunks, avg, p95 = stats.get_stats()
        return CommitOutcome(
            results=[r for r in results if r is not None],
            total_chunks=total_chunks,
            avg_chunk_seconds=avg,
            p95_chunk_seconds=p95,
        )
