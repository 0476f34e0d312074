from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from ..models.row_data import ResolvedRecord
from ..models.row_error import ErrorKind, RowError
from .snapshot import ReferenceSnapshot

if TYPE_CHECKING:
    from .strategies import EntityStrategy

"""Duplicate detector (stage 4).

Works on valid rows only, in two passes:

1. exact duplicates: a row whose full normalized payload equals an earlier
   row's is dropped without any error (re-uploaded / copy-pasted rows)
2. business key collisions: a row sharing its business key with an earlier
   batch row (different payload) or with an already persisted record is a
   hard error naming the human readable key; strategies with a batch
   identity (students' chest numbers) also reject a later row that gives an
   identity already held by a different holder in the batch
"""

__all__ = [
    "DedupResult",
    "detect_duplicates",
]

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DedupResult:
    unique: list[ResolvedRecord] = field(default_factory=list)
    dropped: list[ResolvedRecord] = field(default_factory=list)  # 完全重複
    errors: list[RowError] = field(default_factory=list)


def _sentence(text: str) -> str:
    return text[:1].upper() + text[1:]


def detect_duplicates(
    records: Sequence[ResolvedRecord],
    snapshot: ReferenceSnapshot,
    strategy: EntityStrategy,
) -> DedupResult:
    # pass 1: 完全一致行のドロップ
    seen_payloads: set[tuple[Any, ...]] = set()
    survivors: list[ResolvedRecord] = []
    dropped: list[ResolvedRecord] = []
    for record in records:
        payload = record.payload()
        if payload in seen_payloads:
            dropped.append(record)
            continue
        seen_payloads.add(payload)
        survivors.append(record)

    # pass 2: business key 衝突 (既存レコード / バッチ内先行行)
    persisted = strategy.persisted_keys(snapshot)
    first_seen: dict[tuple[Any, ...], ResolvedRecord] = {}
    holders: dict[Any, ResolvedRecord] = {}  # identity -> 最初に残った行
    unique: list[ResolvedRecord] = []
    errors: list[RowError] = []
    for record in survivors:
        key = strategy.business_key(record)
        description = strategy.describe(record)
        if key in persisted:
            errors.append(
                RowError(
                    record.row_index,
                    ErrorKind.PERSISTED_COLLISION,
                    f"{_sentence(description)} already exists",
                )
            )
            first_seen.setdefault(key, record)
            continue
        earlier = first_seen.get(key)
        if earlier is not None:
            errors.append(
                RowError(
                    record.row_index,
                    ErrorKind.DUPLICATE_IN_BATCH,
                    f"Duplicate {description} (first seen in row {earlier.row_index})",
                )
            )
            continue
        if strategy.batch_identity is not None:
            identity, holder = strategy.batch_identity(record)
            owner_record = holders.get(identity)
            if owner_record is not None and strategy.batch_identity(owner_record)[1] != holder:
                errors.append(
                    RowError(
                        record.row_index,
                        ErrorKind.DUPLICATE_IN_BATCH,
                        strategy.identity_conflict(record, owner_record),
                    )
                )
                continue
            holders.setdefault(identity, record)
        first_seen[key] = record
        unique.append(record)

    if dropped:
        logger.debug("dropped %d exact duplicate rows: %s", len(dropped), [r.row_index for r in dropped])
    return DedupResult(unique=unique, dropped=dropped, errors=errors)
