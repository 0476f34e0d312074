from __future__ import annotations

import json
from dataclasses import asdict, dataclass
from datetime import UTC, datetime

from .row_error import RowError

"""ErrorRecord model for the JSON Lines error log.

Supports row=-1 as a sentinel for file-level faults where no row applies
(unreadable spreadsheet, reference snapshot load failure).
"""

__all__ = [
    "ErrorRecord",
]


@dataclass(frozen=True)
class ErrorRecord:
    """Structured error record for JSON Lines logging.

    Attributes:
        timestamp: ISO8601 UTC timestamp with 'Z' suffix
        file: uploaded spreadsheet name
        entity: import entity (programs, prizes, students, ...)
        row: 1-based source row, -1 for file-level errors
        error_type: classification in UPPER_SNAKE_CASE
        message: human readable message
    """
    timestamp: str
    file: str
    entity: str
    row: int
    error_type: str
    message: str

    @staticmethod
    def create(file: str, entity: str, row: int, error_type: str, message: str) -> ErrorRecord:
        ts = datetime.now(UTC).isoformat().replace("+00:00", "Z")
        return ErrorRecord(
            timestamp=ts,
            file=file,
            entity=entity,
            row=row,
            error_type=error_type,
            message=message,
        )

    @staticmethod
    def from_row_error(file: str, entity: str, error: RowError) -> ErrorRecord:
        return ErrorRecord.create(
            file=file,
            entity=entity,
            row=error.row_index,
            error_type=error.kind.value,
            message=error.message,
        )

    def to_json_line(self) -> str:
        # 追加キー阻止: dataclass -> dict して json.dumps
        return json.dumps(asdict(self), ensure_ascii=False)
