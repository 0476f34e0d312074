from __future__ import annotations

import sys
from typing import Any

from tqdm import tqdm
from tqdm.std import tqdm as TqdmType

from ..models.batch_result import CommitProgress

"""Commit progress display with tqdm (TTY only).

A single tqdm bar tracks attempted rows across commit chunks. In non-TTY
environments (CI, redirected output) the bar is disabled so logs stay free of
ANSI control sequences.
"""

__all__ = [
    "CommitProgressBar",
    "is_tty_enabled",
]


def is_tty_enabled() -> bool:
    """Check if TTY output is enabled.

    Returns:
        True if stdout is a TTY and progress should be displayed, False otherwise
    """
    return sys.stdout.isatty()


class CommitProgressBar:
    """Progress bar fed by the committer's ``on_progress`` callback.

    Usable directly as the callback::

        with CommitProgressBar(len(rows), description="programs") as bar:
            pipeline.run(rows, on_progress=bar)
    """

    def __init__(self, total_rows: int, *, description: str = "Committing", enabled: bool | None = None) -> None:
        self.total_rows = total_rows
        self.description = description
        self.attempted = 0
        self.enabled = is_tty_enabled() if enabled is None else enabled
        self.pbar: TqdmType[Any] | None
        if self.enabled:
            self.pbar = tqdm(
                total=total_rows,
                desc=description,
                unit="row",
                leave=True,
                position=0,
                ncols=80,
                ascii=True,
            )
        else:
            self.pbar = None

    def __call__(self, progress: CommitProgress) -> None:
        self.update(progress)

    def update(self, progress: CommitProgress) -> None:
        """Advance to ``progress.attempted`` and show chunk / failure stats."""
        delta = progress.attempted - self.attempted
        self.attempted = progress.attempted
        if self.pbar is None:
            return
        if self.pbar.total != progress.total:
            self.pbar.total = progress.total
        if delta > 0:
            self.pbar.update(delta)
        self.pbar.set_postfix(chunk=f"{progress.chunk_index}/{progress.total_chunks}", failed=progress.failed)

    def close(self) -> None:
        """Close the progress bar."""
        if self.pbar is not None:
            self.pbar.close()
            self.pbar = None

    def __enter__(self) -> CommitProgressBar:
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        self.close()
