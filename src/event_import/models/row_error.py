from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

"""Per-row error model.

Every reported problem is a RowError carrying the source row index and its
classification. Structural drops (blank required cells) and exact duplicate
rows are never represented here: they are counted, not reported.
"""

__all__ = [
    "ErrorKind",
    "RowError",
]


class ErrorKind(Enum):
    """Classification of a reported row error.

    The value doubles as the ``error_type`` written to the JSON Lines error log.
    """
    REQUIRED = "REQUIRED_FIELD"
    FORMAT = "FORMAT_ERROR"
    REFERENCE = "REFERENCE_ERROR"
    DUPLICATE_IN_BATCH = "DUPLICATE_IN_BATCH"
    PERSISTED_COLLISION = "PERSISTED_COLLISION"
    COMMIT_FAILURE = "COMMIT_FAILURE"


@dataclass(frozen=True)
class RowError:
    row_index: int  # 1-based source row
    kind: ErrorKind
    message: str

    def __str__(self) -> str:
        return f"Row {self.row_index}: {self.message}"
