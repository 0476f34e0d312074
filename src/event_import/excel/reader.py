from __future__ import annotations

import datetime as dt
import math
import zipfile
from pathlib import Path
from typing import Any

import pandas as pd

from ..models.row_data import CellValue, RawRecord
from ..services.strategies import EntityStrategy

"""Spreadsheet adapter for the CLI.

The import pipeline only sees ordered RawRecords; this module is the one
place that touches workbook files.

- row 1 is the header row, data starts at row 2
- RawRecord.row_index is the 1-based data row (spreadsheet row - 1)
- fully blank rows inside the data range are kept as empty records so row
  numbers in error messages match what the user sees
"""

__all__ = [
    "SAMPLE_ROWS",
    "SpreadsheetReadError",
    "read_records",
    "write_template",
]


class SpreadsheetReadError(Exception):
    """Raised when a workbook cannot be opened or the sheet does not exist."""


def _cell(value: Any) -> CellValue:
    if value is None:
        return None
    if isinstance(value, float) and math.isnan(value):
        return None
    if value is pd.NaT:
        return None
    if isinstance(value, (dt.datetime, dt.date, pd.Timestamp)):
        return value.isoformat()
    if isinstance(value, bool):
        return str(value).upper()
    if isinstance(value, (str, int, float)):
        return value
    # numpy スカラー等
    item = getattr(value, "item", None)
    if callable(item):
        return _cell(item())
    return str(value)


def read_records(path: Path, sheet_name: str | None = None) -> list[RawRecord]:
    """Read the first (or named) sheet of ``path`` as RawRecords.

    Raises:
        SpreadsheetReadError: The file is missing or unreadable, or the
            requested sheet does not exist.
    """
    try:
        xls = pd.ExcelFile(path)
    except (OSError, ValueError, zipfile.BadZipFile) as e:
        raise SpreadsheetReadError(f"cannot open workbook {path}: {e}") from e

    with xls:
        names = [str(n) for n in xls.sheet_names]
        if not names:
            raise SpreadsheetReadError(f"workbook {path} has no sheets")
        target = sheet_name if sheet_name is not None else names[0]
        if target not in names:
            raise SpreadsheetReadError(f"sheet '{target}' not found in {path} (sheets: {', '.join(names)})")

        # dtype=object: openpyxl のネイティブ型をそのまま受け取る
        df = xls.parse(target, header=None, dtype=object, keep_default_na=False, na_values=[""])
    if df.shape[0] == 0:
        return []

    headers = [None if _cell(h) is None else str(_cell(h)).strip() for h in df.iloc[0].tolist()]
    records: list[RawRecord] = []
    for offset, raw in enumerate(df.iloc[1:].itertuples(index=False), start=1):
        values: dict[str, CellValue] = {}
        for header, value in zip(headers, raw, strict=False):
            if not header:
                continue
            values[header] = _cell(value)
        records.append(RawRecord(row_index=offset, values=values))
    return records


# Sample rows written into generated templates.
SAMPLE_ROWS: dict[str, list[dict[str, CellValue]]] = {
    "programs": [
        {"Program Name": "BURDA", "Section Code": "JB"},
        {"Program Name": "HAND CRAFT", "Section Code": "JB"},
        {"Program Name": "HIFZ", "Section Code": "K1B"},
        {"Program Name": "PAINTING", "Section Code": "K1G"},
        {"Program Name": "STORY TELLING", "Section Code": "SG"},
        {"Program Name": "QURAN RECITATION", "Section Code": "SB"},
    ],
    "prizes": [
        {
            "Prize Name": "FIRST PRIZE TROPHY",
            "Image URL": "https://example.com/images/trophy1.jpg",
            "Category": "A",
            "Average Value": 150.0,
            "Description": "Gold trophy for first place winners",
        },
        {
            "Prize Name": "PARTICIPATION MEDAL",
            "Image URL": "https://example.com/images/participation.jpg",
            "Category": "B",
            "Average Value": 25.0,
            "Description": "Medal for all participants",
        },
        {
            "Prize Name": "ACHIEVEMENT CERTIFICATE",
            "Image URL": None,
            "Category": "C",
            "Average Value": None,
            "Description": "Certificate of achievement",
        },
    ],
    "students": [
        {"Chest No.": "CH001", "Student Name": "Ahmed Ali", "Section Code": "JB", "Program": "BURDA"},
        {"Chest No.": "CH002", "Student Name": "Fatima Hassan", "Section Code": "JB", "Program": "HAND CRAFT"},
        {"Chest No.": "CH005", "Student Name": "Omar Abdullah", "Section Code": "K1B", "Program": "HIFZ"},
    ],
    "program-winners": [
        {
            "Chest No.": "CH001",
            "Student Name": "Ahmed Ali",
            "Section Code": "JB",
            "Program": "BURDA",
            "Placement": "1st Place",
            "Notes": None,
        },
        {
            "Chest No.": "CH002",
            "Student Name": "Fatima Hassan",
            "Section Code": "JB",
            "Program": "HAND CRAFT",
            "Placement": "2nd Place",
            "Notes": None,
        },
    ],
    "prize-assignments": [
        {
            "Section Code": "JB",
            "Program Name": "BURDA",
            "Placement": "1st Place",
            "Prize Category": "A",
            "Quantity": 1,
            "Notes": None,
        },
        {
            "Section Code": "JB",
            "Program Name": "BURDA",
            "Placement": "Participation",
            "Prize Category": "C",
            "Quantity": 1,
            "Notes": None,
        },
    ],
}


def write_template(strategy: EntityStrategy, path: Path) -> Path:
    """Write a sample upload workbook (data sheet + Instructions sheet)."""
    headers = strategy.schema.headers
    samples = pd.DataFrame(SAMPLE_ROWS.get(strategy.entity, []), columns=headers)
    instructions = pd.DataFrame(
        [
            {
                "Field": spec.header,
                "Required": "Yes" if spec.required else "No",
                "Kind": spec.kind.value,
            }
            for spec in strategy.schema.columns
        ]
    )
    path.parent.mkdir(parents=True, exist_ok=True)
    with pd.ExcelWriter(path, engine="openpyxl") as writer:
        samples.to_excel(writer, sheet_name=strategy.entity[:31], index=False)
        instructions.to_excel(writer, sheet_name="Instructions", index=False)
    return path
