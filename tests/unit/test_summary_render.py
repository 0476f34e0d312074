from __future__ import annotations

import re

from event_import.models.batch_result import BatchResult
from event_import.services.summary import format_seconds, render_summary_line

SUMMARY_RE = re.compile(
    r"^SUMMARY entity=[a-z-]+ total=\d+ succeeded=\d+ failed=\d+ skipped=\d+ duplicates=\d+ elapsed_sec=[0-9.]+( dry_run=true)?$"
)


def test_render_summary_line():
    result = BatchResult(
        entity="prize-assignments",
        total=10,
        succeeded=8,
        failed=2,
        errors=[],
        skipped_rows=1,
        duplicate_rows=3,
        elapsed_seconds=2.0,
    )
    line = render_summary_line(result)
    assert line == (
        "SUMMARY entity=prize-assignments total=10 succeeded=8 failed=2 skipped=1 duplicates=3 elapsed_sec=2"
    )
    assert SUMMARY_RE.match(line)


def test_dry_run_flag():
    result = BatchResult(entity="programs", total=1, succeeded=1, failed=0, errors=[], dry_run=True, elapsed_seconds=0.25)
    line = render_summary_line(result)
    assert line.endswith("elapsed_sec=0.25 dry_run=true")
    assert SUMMARY_RE.match(line)


def test_format_seconds_avoids_scientific_notation():
    assert format_seconds(0) == "0"
    assert format_seconds(3.0) == "3"
    assert format_seconds(0.0000123) == "0.000012"
    assert format_seconds(1.23456) == "1.235"
