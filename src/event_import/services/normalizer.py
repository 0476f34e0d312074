from __future__ import annotations

import math
from collections.abc import Iterable, Iterator, Sequence
from dataclasses import dataclass
from enum import Enum
from typing import Any

import pandas as pd

from ..models.row_data import CandidateRecord, RawRecord

"""Row normalizer (stage 1).

Turns loosely typed spreadsheet rows into CandidateRecords:

- text fields are trimmed, code fields are additionally upper-cased
- integral floats coming out of the reader (413.0) become "413"
- a row missing any required value is skipped silently (blank trailing
  rows are normal in hand-edited spreadsheets)
- optional numbers that do not parse as a finite number are treated as absent;
  range checks are left to the validator
"""

__all__ = [
    "ColumnKind",
    "ColumnSpec",
    "EntitySchema",
    "NormalizedRows",
    "normalize_record",
    "normalize_rows",
]


class ColumnKind(Enum):
    TEXT = "text"
    CODE = "code"  # trim + upper
    NUMBER = "number"
    URL = "url"


@dataclass(frozen=True)
class ColumnSpec:
    header: str  # 完全一致 (大文字小文字区別)
    field: str
    required: bool = False
    kind: ColumnKind = ColumnKind.TEXT


@dataclass(frozen=True)
class EntitySchema:
    entity: str
    columns: tuple[ColumnSpec, ...]

    @property
    def required_columns(self) -> tuple[ColumnSpec, ...]:
        return tuple(c for c in self.columns if c.required)

    @property
    def headers(self) -> list[str]:
        return [c.header for c in self.columns]

    def column_for(self, field: str) -> ColumnSpec | None:
        for c in self.columns:
            if c.field == field:
                return c
        return None


def _is_missing(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return value.strip() == ""
    try:
        return bool(pd.isna(value))
    except (TypeError, ValueError):
        return False


def _to_text(value: Any) -> str | None:
    if _is_missing(value):
        return None
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    text = str(value).strip()
    return text or None


def _to_number(value: Any) -> float | None:
    if _is_missing(value) or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        number = float(value)
    else:
        try:
            number = float(str(value).strip())
        except ValueError:
            return None
    if not math.isfinite(number):
        return None
    return number


def _convert(spec: ColumnSpec, value: Any) -> Any:
    if spec.kind is ColumnKind.NUMBER:
        return _to_number(value)
    text = _to_text(value)
    if text is not None and spec.kind is ColumnKind.CODE:
        return text.upper()
    return text


def normalize_record(record: RawRecord, schema: EntitySchema) -> CandidateRecord | None:
    """Normalize one row, or return None when a required value is absent."""
    fields: dict[str, Any] = {}
    for spec in schema.columns:
        value = _convert(spec, record.get(spec.header))
        if value is None and spec.required:
            return None
        fields[spec.field] = value
    return CandidateRecord(entity=schema.entity, row_index=record.row_index, fields=fields)


class NormalizedRows:
    """Lazy, restartable sequence of CandidateRecords.

    Each iteration re-normalizes the underlying rows, so iterating twice
    yields equal candidates. ``skipped_count`` is the number of rows dropped
    for missing required values.
    """

    def __init__(self, records: Iterable[RawRecord], schema: EntitySchema) -> None:
        # 再イテレーション可能にするため一度だけ materialize
        self._records: Sequence[RawRecord] = (
            records if isinstance(records, Sequence) else list(records)
        )
        self.schema = schema

    def __iter__(self) -> Iterator[CandidateRecord]:
        for record in self._records:
            candidate = normalize_record(record, self.schema)
            if candidate is not None:
                yield candidate

    @property
    def raw_count(self) -> int:
        return len(self._records)

    @property
    def skipped_count(self) -> int:
        return sum(1 for r in self._records if normalize_record(r, self.schema) is None)


def normalize_rows(records: Iterable[RawRecord], schema: EntitySchema) -> NormalizedRows:
    return NormalizedRows(records, schema)
