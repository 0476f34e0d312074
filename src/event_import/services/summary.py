from __future__ import annotations

from ..models.batch_result import BatchResult

"""SUMMARY line rendering.

Format:
SUMMARY entity={entity} total={total} succeeded={succeeded} failed={failed}
skipped={skipped} duplicates={duplicates} elapsed_sec={elapsed} [dry_run=true]
"""

__all__ = [
    "format_seconds",
    "render_summary_line",
]


def format_seconds(seconds: float) -> str:
    # 指数表記を避ける
    if seconds == 0:
        return "0"
    if seconds == int(seconds):
        return str(int(seconds))
    if seconds < 0.01:
        return f"{seconds:.6f}".rstrip("0").rstrip(".")
    return f"{seconds:.3f}".rstrip("0").rstrip(".")


def render_summary_line(result: BatchResult) -> str:
    """Render the one-line SUMMARY for a BatchResult.

    Examples:
        >>> r = BatchResult(entity="programs", total=3, succeeded=2, failed=1, errors=[], elapsed_seconds=1.5)
        >>> render_summary_line(r)
        'SUMMARY entity=programs total=3 succeeded=2 failed=1 skipped=0 duplicates=0 elapsed_sec=1.5'
    """
    line = (
        f"SUMMARY entity={result.entity} "
        f"total={result.total} "
        f"succeeded={result.succeeded} "
        f"failed={result.failed} "
        f"skipped={result.skipped_rows} "
        f"duplicates={result.duplicate_rows} "
        f"elapsed_sec={format_seconds(result.elapsed_seconds)}"
    )
    if result.dry_run:
        line += " dry_run=true"
    return line
