from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

"""Row models for the event import pipeline.

A spreadsheet row moves through three shapes:

- RawRecord: header -> cell value, straight from the reader
- CandidateRecord: typed/normalized fields for one entity type
- ResolvedRecord: candidate plus the internal ids of every natural key it names

All three keep the original 1-based row index so that errors can always cite
the source row, even after earlier rows were dropped.
"""

__all__ = [
    "CellValue",
    "RawRecord",
    "CandidateRecord",
    "ResolvedRecord",
]

CellValue = str | int | float | None


@dataclass(frozen=True)
class RawRecord:
    """One uploaded row exactly as the spreadsheet reader produced it."""
    row_index: int  # 1-based position in the uploaded sequence
    values: dict[str, CellValue] = field(default_factory=dict)

    def get(self, header: str) -> CellValue:
        return self.values.get(header)


@dataclass(frozen=True)
class CandidateRecord:
    """Normalized row for a single entity type.

    ``fields`` is ordered as the entity schema declares its columns, which makes
    ``payload()`` stable for exact-duplicate comparison.
    """
    entity: str
    row_index: int
    fields: dict[str, Any]

    def get(self, name: str, default: Any = None) -> Any:
        return self.fields.get(name, default)

    def payload(self) -> tuple[tuple[str, Any], ...]:
        """Full normalized payload (every field, schema order)."""
        return tuple(self.fields.items())


@dataclass(frozen=True)
class ResolvedRecord:
    """Candidate whose natural-key references all resolved.

    Built by ``services.resolver.resolve_record`` only; ``refs`` maps the
    reference name (``section_id``, ``program_id``, ...) to the internal id.
    """
    candidate: CandidateRecord
    refs: dict[str, Any]

    @property
    def row_index(self) -> int:
        return self.candidate.row_index

    @property
    def entity(self) -> str:
        return self.candidate.entity

    def get(self, name: str, default: Any = None) -> Any:
        if name in self.refs:
            return self.refs[name]
        return self.candidate.get(name, default)

    def payload(self) -> tuple[tuple[str, Any], ...]:
        return self.candidate.payload()
