from __future__ import annotations

from enum import Enum

"""ImportStage enum for the per-invocation import lifecycle.

State transitions (strictly linear):
idle -> parsed -> resolved -> validated -> deduplicated -> committing -> done

There is no aborted terminal state: an input without a single valid row still
ends in DONE with an all-failure BatchResult. A dry run goes from
DEDUPLICATED straight to DONE.
"""

__all__ = [
    "ImportStage",
    "InvalidStageTransition",
]


class InvalidStageTransition(Exception):
    """Raised when the pipeline tries to move backwards or skip a stage."""


class ImportStage(Enum):
    IDLE = "idle"
    PARSED = "parsed"
    RESOLVED = "resolved"
    VALIDATED = "validated"
    DEDUPLICATED = "deduplicated"
    COMMITTING = "committing"
    DONE = "done"

    def next_allowed(self) -> set[ImportStage]:
        order = list(ImportStage)
        idx = order.index(self)
        if self is ImportStage.DONE:
            return set()
        allowed = {order[idx + 1]}
        if self is ImportStage.DEDUPLICATED:
            allowed.add(ImportStage.DONE)  # dry run
        return allowed

    def advance(self, target: ImportStage) -> ImportStage:
        if target not in self.next_allowed():
            raise InvalidStageTransition(f"{self.value} -> {target.value}")
        return target
