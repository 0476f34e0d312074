from __future__ import annotations

from datetime import UTC, datetime
from pathlib import Path

from ..models.batch_result import BatchResult
from ..models.error_record import ErrorRecord

"""Error log buffering.

- JSON Lines with a fixed key set (see ErrorRecord)
- one ``errors-YYYYMMDD-HHMMSS.log`` (UTC) per run, created on first flush
- records are buffered and written once at the end of the run
"""

__all__ = [
    "DEFAULT_LOG_DIR",
    "ErrorLogBuffer",
    "ErrorRecord",
]

DEFAULT_LOG_DIR = Path("logs")
TIMESTAMP_FMT = "%Y%m%d-%H%M%S"


class ErrorLogBuffer:
    """In-memory buffer for error records. Flush writes JSON Lines.

    Single-threaded: only the CLI main thread appends.
    """

    def __init__(self, log_dir: str | Path = DEFAULT_LOG_DIR) -> None:
        self.log_dir = Path(log_dir)
        self._records: list[ErrorRecord] = []
        self._file_path: Path | None = None

    @property
    def file_path(self) -> Path:
        if self._file_path is None:
            stamp = datetime.now(UTC).strftime(TIMESTAMP_FMT)
            self._file_path = self.log_dir / f"errors-{stamp}.log"
        return self._file_path

    def append(self, record: ErrorRecord) -> None:
        self._records.append(record)

    def add_result(self, file: str, result: BatchResult) -> int:
        """Buffer every row error of ``result``; returns how many were added."""
        for error in result.row_errors:
            self.append(ErrorRecord.from_row_error(file, result.entity, error))
        return len(result.row_errors)

    def __len__(self) -> int:
        return len(self._records)

    def flush(self) -> Path | None:
        """Write buffered records; returns the file written, or None when empty."""
        if not self._records:
            return None
        fp = self.file_path
        fp.parent.mkdir(parents=True, exist_ok=True)
        with fp.open("a", encoding="utf-8") as f:
            for r in self._records:
                f.write(r.to_json_line() + "\n")
        self._records.clear()
        return fp
