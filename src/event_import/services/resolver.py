from __future__ import annotations

from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from typing import Any

from ..models.row_data import CandidateRecord, ResolvedRecord
from .snapshot import ReferenceSnapshot

"""Reference resolver (stage 2).

Resolves the natural keys a row names (section code, program name, chest
number, prize category) into internal ids using the reference snapshot.

Resolution never raises. Every declared reference either contributes ids to
``refs`` or a field-naming failure message to ``failures``. A reference whose
parent failed is not attempted (an unknown section reports one error, not an
extra "program not found" on top of it).
"""

__all__ = [
    "REFERENCES",
    "ResolutionResult",
    "resolve_record",
]


@dataclass(frozen=True)
class ResolutionResult:
    candidate: CandidateRecord
    refs: dict[str, Any] = field(default_factory=dict)
    failures: tuple[str, ...] = ()

    @property
    def ok(self) -> bool:
        return not self.failures

    @property
    def row_index(self) -> int:
        return self.candidate.row_index

    def to_resolved(self) -> ResolvedRecord:
        if not self.ok:
            raise ValueError(f"row {self.row_index} has unresolved references: {self.failures}")
        return ResolvedRecord(candidate=self.candidate, refs=dict(self.refs))


# Resolver fn: (candidate, snapshot, refs so far) -> (new refs, failure message)
ResolverFn = Callable[
    [CandidateRecord, ReferenceSnapshot, dict[str, Any]],
    tuple[dict[str, Any], str | None],
]


def _resolve_section(
    candidate: CandidateRecord, snapshot: ReferenceSnapshot, refs: dict[str, Any]
) -> tuple[dict[str, Any], str | None]:
    code = candidate.get("section_code")
    sections = snapshot.sections_with_code(code)
    if not sections:
        return {}, f'Section code "{code}" does not exist'
    if len(sections) > 1:
        return {}, f'Section code "{code}" is ambiguous ({len(sections)} matches)'
    return {"section_id": sections[0].id}, None


def _resolve_program(
    candidate: CandidateRecord, snapshot: ReferenceSnapshot, refs: dict[str, Any]
) -> tuple[dict[str, Any], str | None]:
    name = candidate.get("program_name")
    section_code = candidate.get("section_code")
    programs = snapshot.programs_named(name, refs["section_id"])
    if not programs:
        return {}, f'Program "{name}" does not exist in section "{section_code}"'
    if len(programs) > 1:
        return {}, f'Program "{name}" is ambiguous in section "{section_code}" ({len(programs)} matches)'
    return {"program_id": programs[0].id}, None


def _resolve_student(
    candidate: CandidateRecord, snapshot: ReferenceSnapshot, refs: dict[str, Any]
) -> tuple[dict[str, Any], str | None]:
    chest_no = candidate.get("chest_no")
    name = candidate.get("student_name")
    registrations = snapshot.registrations(chest_no)
    if not registrations:
        return {}, f"Chest number {chest_no} does not exist"

    named = [r for r in registrations if r.name.strip().casefold() == str(name).casefold()]
    if not named:
        return {}, f'Chest number {chest_no} is registered to "{registrations[0].name}", not "{name}"'

    enrolled = [r for r in named if r.program_id == refs["program_id"]]
    if not enrolled:
        return {}, (
            f'Student "{named[0].name}" (chest number {chest_no}) is not registered '
            f'for program "{candidate.get("program_name")}"'
        )
    return {"student_id": enrolled[0].id}, None


def _resolve_prize_category(
    candidate: CandidateRecord, snapshot: ReferenceSnapshot, refs: dict[str, Any]
) -> tuple[dict[str, Any], str | None]:
    category = candidate.get("prize_category")
    prizes = snapshot.prizes_in_category(category)
    if not prizes:
        return {}, f'No prizes found in category "{category}"'
    # カテゴリ単位の割り当て: 安定順序の先頭を採用
    return {"prize_id": prizes[0].id}, None


# name -> (resolver, prerequisites)
REFERENCES: dict[str, tuple[ResolverFn, tuple[str, ...]]] = {
    "section": (_resolve_section, ()),
    "program": (_resolve_program, ("section",)),
    "student": (_resolve_student, ("program",)),
    "prize_category": (_resolve_prize_category, ()),
}


def resolve_record(
    candidate: CandidateRecord,
    snapshot: ReferenceSnapshot,
    references: Sequence[str],
) -> ResolutionResult:
    """Resolve every declared reference of ``candidate`` against ``snapshot``."""
    refs: dict[str, Any] = {}
    failures: list[str] = []
    resolved: set[str] = set()
    for name in references:
        resolver, prerequisites = REFERENCES[name]
        if any(p not in resolved for p in prerequisites):
            continue
        new_refs, failure = resolver(candidate, snapshot, refs)
        if failure is not None:
            failures.append(failure)
            continue
        refs.update(new_refs)
        resolved.add(name)
    return ResolutionResult(candidate=candidate, refs=refs, failures=tuple(failures))
