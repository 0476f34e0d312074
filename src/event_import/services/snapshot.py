from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from types import MappingProxyType
from typing import Any

from ..db.store import Store

"""Reference snapshot: read-only index of persisted entities.

Loaded once per import, before any stage runs, and never re-queried or
mutated afterwards. Rows created by the import itself are therefore invisible
to resolution and collision checks within the same batch.
"""

__all__ = [
    "SnapshotLoadError",
    "SectionRef",
    "ProgramRef",
    "StudentRef",
    "PrizeRef",
    "WinnerRef",
    "AssignmentRef",
    "ReferenceSnapshot",
    "load_snapshot",
]

logger = logging.getLogger(__name__)


class SnapshotLoadError(Exception):
    """Reference data could not be loaded; the whole import is aborted."""


@dataclass(frozen=True)
class SectionRef:
    id: Any
    code: str
    name: str = ""


@dataclass(frozen=True)
class ProgramRef:
    id: Any
    name: str
    section_id: Any


@dataclass(frozen=True)
class StudentRef:
    """One student registration (a student row per program)."""
    id: Any
    chest_no: str
    name: str
    program_id: Any
    section_id: Any = None


@dataclass(frozen=True)
class PrizeRef:
    id: Any
    name: str
    category: str


@dataclass(frozen=True)
class WinnerRef:
    id: Any
    program_id: Any
    student_id: Any
    placement: str


@dataclass(frozen=True)
class AssignmentRef:
    id: Any
    program_id: Any
    prize_id: Any
    placement: str


def _fold(value: Any) -> str:
    return str(value).strip().casefold()


def _sort_key(value: Any) -> tuple[int, Any]:
    # id 型が混在しても比較できるように
    return (0, value) if isinstance(value, (int, float)) else (1, str(value))


def _group(items: tuple[Any, ...], key: Callable[[Any], Any]) -> Mapping[Any, tuple[Any, ...]]:
    grouped: dict[Any, list[Any]] = {}
    for item in items:
        grouped.setdefault(key(item), []).append(item)
    return MappingProxyType({k: tuple(v) for k, v in grouped.items()})


class ReferenceSnapshot:
    """Immutable lookup tables over persisted reference data."""

    def __init__(
        self,
        sections: list[SectionRef] | tuple[SectionRef, ...] = (),
        programs: list[ProgramRef] | tuple[ProgramRef, ...] = (),
        students: list[StudentRef] | tuple[StudentRef, ...] = (),
        prizes: list[PrizeRef] | tuple[PrizeRef, ...] = (),
        winners: list[WinnerRef] | tuple[WinnerRef, ...] = (),
        assignments: list[AssignmentRef] | tuple[AssignmentRef, ...] = (),
    ) -> None:
        self.sections = tuple(sections)
        self.programs = tuple(programs)
        self.students = tuple(students)
        self.prizes = tuple(prizes)
        self.winners = tuple(winners)
        self.assignments = tuple(assignments)

        self._sections_by_code = _group(self.sections, lambda s: _fold(s.code))
        self._sections_by_id = MappingProxyType({s.id: s for s in self.sections})
        self._programs_by_key = _group(self.programs, lambda p: (_fold(p.name), p.section_id))
        self._programs_by_id = MappingProxyType({p.id: p for p in self.programs})
        self._students_by_id = MappingProxyType({s.id: s for s in self.students})

        self._students_by_chest = _group(self.students, lambda s: _fold(s.chest_no))

        by_category: dict[str, list[PrizeRef]] = {}
        for p in self.prizes:
            by_category.setdefault(_fold(p.category), []).append(p)
        self._prizes_by_category = MappingProxyType(
            {
                k: tuple(sorted(v, key=lambda p: (_fold(p.name), _sort_key(p.id))))
                for k, v in by_category.items()
            }
        )

    @classmethod
    def from_rows(
        cls,
        sections: list[Mapping[str, Any]],
        programs: list[Mapping[str, Any]],
        students: list[Mapping[str, Any]],
        prizes: list[Mapping[str, Any]],
        winners: list[Mapping[str, Any]] | None = None,
        assignments: list[Mapping[str, Any]] | None = None,
    ) -> ReferenceSnapshot:
        """Build from the raw "list all" rows returned by the store."""
        return cls(
            sections=[SectionRef(r["id"], r["code"], r.get("name") or "") for r in sections],
            programs=[ProgramRef(r["id"], r["name"], r["section_id"]) for r in programs],
            students=[
                StudentRef(r["id"], str(r["chest_no"]), r["name"], r["program_id"], r.get("section_id"))
                for r in students
            ],
            prizes=[PrizeRef(r["id"], r["name"], r["category"]) for r in prizes],
            winners=[
                WinnerRef(r["id"], r["program_id"], r["student_id"], r["placement"])
                for r in (winners or [])
            ],
            assignments=[
                AssignmentRef(r["id"], r["program_id"], r["prize_id"], r["placement"])
                for r in (assignments or [])
            ],
        )

    def sections_with_code(self, code: str) -> tuple[SectionRef, ...]:
        """Every section whose code folds to ``code`` (more than one is ambiguous)."""
        return self._sections_by_code.get(_fold(code), ())

    def section_by_code(self, code: str) -> SectionRef | None:
        """The section with ``code``, or None when it is missing or ambiguous."""
        matches = self.sections_with_code(code)
        return matches[0] if len(matches) == 1 else None

    def section_by_id(self, section_id: Any) -> SectionRef | None:
        return self._sections_by_id.get(section_id)

    def programs_named(self, name: str, section_id: Any) -> tuple[ProgramRef, ...]:
        """Programs in a section whose names differ from ``name`` only by case."""
        return self._programs_by_key.get((_fold(name), section_id), ())

    def program_by_name(self, name: str, section_id: Any) -> ProgramRef | None:
        matches = self.programs_named(name, section_id)
        return matches[0] if len(matches) == 1 else None

    def program_by_id(self, program_id: Any) -> ProgramRef | None:
        return self._programs_by_id.get(program_id)

    def student_by_id(self, student_id: Any) -> StudentRef | None:
        return self._students_by_id.get(student_id)

    def registrations(self, chest_no: str) -> tuple[StudentRef, ...]:
        """All student rows sharing a chest number (one per program)."""
        return self._students_by_chest.get(_fold(chest_no), ())

    def prizes_in_category(self, category: str) -> tuple[PrizeRef, ...]:
        """Prizes of a category in stable (name, id) order."""
        return self._prizes_by_category.get(_fold(category), ())


def load_snapshot(store: Store, owner: str | None = None) -> ReferenceSnapshot:
    """Load every reference list once. Any failure aborts the import."""
    try:
        snapshot = ReferenceSnapshot.from_rows(
            sections=store.list_sections(owner),
            programs=store.list_programs(owner),
            students=store.list_students(owner),
            prizes=store.list_prizes(owner),
            winners=store.list_program_winners(owner),
            assignments=store.list_prize_assignments(owner),
        )
    except Exception as e:
        raise SnapshotLoadError(f"failed to load reference data: {e}") from e
    logger.debug(
        "snapshot sections=%d programs=%d students=%d prizes=%d winners=%d assignments=%d",
        len(snapshot.sections),
        len(snapshot.programs),
        len(snapshot.students),
        len(snapshot.prizes),
        len(snapshot.winners),
        len(snapshot.assignments),
    )
    return snapshot
