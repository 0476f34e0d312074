from __future__ import annotations

import logging
import time
from collections.abc import Callable, Iterable
from typing import Any

from ..db.store import Store
from ..models.batch_result import BatchResult, CommitProgress
from ..models.import_stage import ImportStage
from ..models.row_data import RawRecord, ResolvedRecord
from ..models.row_error import RowError
from .committer import BatchCommitter
from .dedup import detect_duplicates
from .normalizer import normalize_rows
from .resolver import resolve_record
from .snapshot import ReferenceSnapshot, load_snapshot
from .strategies import EntityStrategy, UnknownEntityError, get_strategy
from .validator import validate_record

"""Import pipeline: normalizer -> resolver -> validator -> dedup -> committer.

One generic pipeline serves every entity; what differs per entity lives in
its EntityStrategy. The reference snapshot is loaded once, before any stage
runs. Row-level problems never raise: they are accumulated into the returned
BatchResult, ordered by row (stage order within a row). Only pipeline-level
faults raise (SnapshotLoadError from the snapshot load, ImportPipelineError
here).
"""

__all__ = [
    "ImportPipeline",
    "ImportPipelineError",
    "run_import",
]

logger = logging.getLogger(__name__)


class ImportPipelineError(Exception):
    """Pipeline-level fault (unknown entity, reused pipeline)."""


class ImportPipeline:
    """Runs one import of one entity. Instances are single-use."""

    def __init__(
        self,
        store: Store,
        strategy: EntityStrategy,
        committer: BatchCommitter[ResolvedRecord] | None = None,
        owner: str | None = None,
    ) -> None:
        self.store = store
        self.strategy = strategy
        self.committer = committer or BatchCommitter()
        self.owner = owner
        self._stage = ImportStage.IDLE

    @property
    def stage(self) -> ImportStage:
        return self._stage

    def _advance(self, target: ImportStage, **counts: int) -> None:
        self._stage = self._stage.advance(target)
        detail = " ".join(f"{k}={v}" for k, v in counts.items())
        logger.debug("entity=%s stage=%s %s", self.strategy.entity, target.value, detail)

    def _create(self, record: ResolvedRecord) -> Any:
        return self.strategy.create(self.store, self.strategy.build_payload(record), self.owner)

    def _warn_missing_columns(self, records: list[RawRecord]) -> None:
        if not records:
            return
        missing = [
            spec.header
            for spec in self.strategy.schema.required_columns
            if not any(spec.header in r.values for r in records)
        ]
        if missing:
            logger.warning(
                "entity=%s required columns not found in input: %s (every row will be skipped)",
                self.strategy.entity,
                ", ".join(missing),
            )

    def run(
        self,
        records: Iterable[RawRecord],
        *,
        dry_run: bool = False,
        on_progress: Callable[[CommitProgress], None] | None = None,
        snapshot: ReferenceSnapshot | None = None,
    ) -> BatchResult:
        """Run every stage over ``records`` and return the aggregated result.

        Args:
            records: Raw rows in input order (row_index is preserved end to end)
            dry_run: Stop after duplicate detection; nothing is written
            on_progress: Called after each commit chunk
            snapshot: Pre-loaded reference data (loaded from the store when None)

        Raises:
            SnapshotLoadError: Reference data could not be loaded
            ImportPipelineError: The pipeline was already used
        """
        if self._stage is not ImportStage.IDLE:
            raise ImportPipelineError(f"pipeline already used (stage={self._stage.value})")

        started = time.perf_counter()
        entity = self.strategy.entity
        if snapshot is None:
            snapshot = load_snapshot(self.store, self.owner)

        raw = list(records)
        self._warn_missing_columns(raw)
        normalized = normalize_rows(raw, self.strategy.schema)
        candidates = list(normalized)
        skipped = normalized.raw_count - len(candidates)
        self._advance(ImportStage.PARSED, rows=normalized.raw_count, skipped=skipped)

        resolutions = [resolve_record(c, snapshot, self.strategy.references) for c in candidates]
        self._advance(ImportStage.RESOLVED, unresolved=sum(1 for r in resolutions if not r.ok))

        validation_errors: list[RowError] = []
        valid: list[ResolvedRecord] = []
        for resolution in resolutions:
            outcome = validate_record(resolution, snapshot, self.strategy)
            if outcome.is_valid:
                valid.append(resolution.to_resolved())
            else:
                validation_errors.extend(outcome.errors)
        self._advance(ImportStage.VALIDATED, valid=len(valid), errors=len(validation_errors))

        dedup = detect_duplicates(valid, snapshot, self.strategy)
        self._advance(
            ImportStage.DEDUPLICATED,
            unique=len(dedup.unique),
            dropped=len(dedup.dropped),
            collisions=len(dedup.errors),
        )

        total = len(candidates) - len(dedup.dropped)
        row_errors = validation_errors + dedup.errors
        created_ids: list[Any] = []
        total_chunks = 0
        avg_chunk = p95_chunk = 0.0

        if dry_run:
            succeeded = len(dedup.unique)
            self._advance(ImportStage.DONE, would_create=succeeded)
        else:
            self._advance(ImportStage.COMMITTING)
            outcome = self.committer.commit(
                dedup.unique,
                self._create,
                error_message=self.strategy.commit_error_message,
                on_progress=on_progress,
            )
            succeeded = outcome.succeeded
            created_ids = outcome.created_ids
            row_errors = row_errors + outcome.errors
            total_chunks = outcome.total_chunks
            avg_chunk = outcome.avg_chunk_seconds
            p95_chunk = outcome.p95_chunk_seconds
            self._advance(ImportStage.DONE, succeeded=succeeded, failed=outcome.failed)

        # 行番号順 (同じ行内はステージ順)
        row_errors = sorted(row_errors, key=lambda e: e.row_index)
        result = BatchResult(
            entity=entity,
            total=total,
            succeeded=succeeded,
            failed=total - succeeded,
            errors=[str(e) for e in row_errors],
            row_errors=row_errors,
            skipped_rows=skipped,
            duplicate_rows=len(dedup.dropped),
            created_ids=created_ids,
            dry_run=dry_run,
            elapsed_seconds=time.perf_counter() - started,
            total_chunks=total_chunks,
            avg_chunk_seconds=avg_chunk,
            p95_chunk_seconds=p95_chunk,
        )
        logger.debug(
            "entity=%s done total=%d succeeded=%d failed=%d dry_run=%s",
            entity,
            result.total,
            result.succeeded,
            result.failed,
            dry_run,
        )
        return result


def run_import(
    store: Store,
    entity: str,
    records: Iterable[RawRecord],
    *,
    owner: str | None = None,
    committer: BatchCommitter[ResolvedRecord] | None = None,
    dry_run: bool = False,
    on_progress: Callable[[CommitProgress], None] | None = None,
) -> BatchResult:
    """Convenience entry point: look up the strategy by entity name and run."""
    try:
        strategy = get_strategy(entity)
    except UnknownEntityError as e:
        raise ImportPipelineError(str(e)) from e
    pipeline = ImportPipeline(store, strategy, committer=committer, owner=owner)
    return pipeline.run(records, dry_run=dry_run, on_progress=on_progress)
