from __future__ import annotations

from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from typing import Any

from ..db.store import Store, StoreError
from ..models.row_data import CandidateRecord, ResolvedRecord
from ..models.row_error import ErrorKind
from .normalizer import ColumnKind, ColumnSpec, EntitySchema
from .placements import DEFAULT_PLACEMENT, canonical_placement, placement_order
from .snapshot import ReferenceSnapshot

"""Entity strategies: what differs between the five import features.

The pipeline, duplicate detector and committer are shared verbatim; each
strategy only supplies the column schema, the references to resolve, the
business key, extra validation rules and the payload handed to the store.
"""

__all__ = [
    "ENTITIES",
    "EntityStrategy",
    "UnknownEntityError",
    "get_strategy",
]

IMPORTED_DESCRIPTION = "Imported from Excel"
VALID_PRIZE_CATEGORIES = frozenset("ABCDEFGHIJ")

Check = tuple[ErrorKind, str]


class UnknownEntityError(LookupError):
    pass


def _fold(value: Any) -> str:
    return str(value).strip().casefold()


def _no_checks(candidate: CandidateRecord, snapshot: ReferenceSnapshot) -> list[Check]:
    return []


@dataclass(frozen=True)
class EntityStrategy:
    entity: str
    label: str  # 人間向け単数名 ("program")
    schema: EntitySchema
    references: tuple[str, ...]
    business_key: Callable[[ResolvedRecord], tuple[Any, ...]]
    persisted_keys: Callable[[ReferenceSnapshot], set[tuple[Any, ...]]]
    describe: Callable[[ResolvedRecord], str]
    build_payload: Callable[[ResolvedRecord], dict[str, Any]]
    create_method: str
    unique_violation: Callable[[StoreError], str]
    extra_checks: Callable[[CandidateRecord, ReferenceSnapshot], list[Check]] = field(default=_no_checks)
    # (identity key, holder) pairs: one key may belong to one holder per batch
    batch_identity: Callable[[ResolvedRecord], tuple[Any, Any]] | None = None
    identity_conflict: Callable[[ResolvedRecord, ResolvedRecord], str] | None = None

    def create(self, store: Store, values: Mapping[str, Any], owner: str | None) -> Any:
        return getattr(store, self.create_method)(values, owner)

    def commit_error_message(self, error: StoreError) -> str:
        if error.is_unique_violation:
            return self.unique_violation(error)
        return f"Failed to create {self.label}: {error.message}"


def _fixed(message: str) -> Callable[[StoreError], str]:
    return lambda error: message


# ---------------------------------------------------------------- programs

PROGRAM_SCHEMA = EntitySchema(
    entity="programs",
    columns=(
        ColumnSpec("Program Name", "program_name", required=True),
        ColumnSpec("Section Code", "section_code", required=True, kind=ColumnKind.CODE),
    ),
)

PROGRAMS = EntityStrategy(
    entity="programs",
    label="program",
    schema=PROGRAM_SCHEMA,
    references=("section",),
    business_key=lambda r: (_fold(r.get("program_name")), r.get("section_id")),
    persisted_keys=lambda s: {(_fold(p.name), p.section_id) for p in s.programs},
    describe=lambda r: f'program "{r.get("program_name")}" in section "{r.get("section_code")}"',
    build_payload=lambda r: {
        "name": r.get("program_name"),
        "section_id": r.get("section_id"),
        "description": IMPORTED_DESCRIPTION,
    },
    create_method="create_program",
    unique_violation=_fixed("A program with this name already exists in this section"),
)

# ------------------------------------------------------------------ prizes

PRIZE_SCHEMA = EntitySchema(
    entity="prizes",
    columns=(
        ColumnSpec("Prize Name", "prize_name", required=True),
        ColumnSpec("Image URL", "image_url", kind=ColumnKind.URL),
        ColumnSpec("Category", "category", required=True, kind=ColumnKind.CODE),
        ColumnSpec("Average Value", "average_value", kind=ColumnKind.NUMBER),
        ColumnSpec("Description", "description"),
    ),
)


def _prize_checks(candidate: CandidateRecord, snapshot: ReferenceSnapshot) -> list[Check]:
    category = candidate.get("category")
    if category and category not in VALID_PRIZE_CATEGORIES:
        return [(ErrorKind.FORMAT, f'Category must be a letter from A to J (got "{category}")')]
    return []


PRIZES = EntityStrategy(
    entity="prizes",
    label="prize",
    schema=PRIZE_SCHEMA,
    references=(),
    business_key=lambda r: (_fold(r.get("prize_name")), r.get("category")),
    persisted_keys=lambda s: {(_fold(p.name), str(p.category).strip().upper()) for p in s.prizes},
    describe=lambda r: f'prize "{r.get("prize_name")}" in category "{r.get("category")}"',
    build_payload=lambda r: {
        "name": r.get("prize_name"),
        "image_url": r.get("image_url"),
        "category": r.get("category"),
        "average_value": r.get("average_value"),
        "description": r.get("description") or IMPORTED_DESCRIPTION,
    },
    create_method="create_prize",
    unique_violation=_fixed("A prize with this name already exists in this category"),
    extra_checks=_prize_checks,
)

# ---------------------------------------------------------------- students

STUDENT_COLUMNS = (
    ColumnSpec("Chest No.", "chest_no", required=True, kind=ColumnKind.CODE),
    ColumnSpec("Student Name", "student_name", required=True),
    ColumnSpec("Section Code", "section_code", required=True, kind=ColumnKind.CODE),
    ColumnSpec("Program", "program_name", required=True),
)

STUDENT_SCHEMA = EntitySchema(entity="students", columns=STUDENT_COLUMNS)


def _student_checks(candidate: CandidateRecord, snapshot: ReferenceSnapshot) -> list[Check]:
    # 同一チェスト番号は同一人物 (プログラム毎に 1 行)
    registrations = snapshot.registrations(candidate.get("chest_no"))
    name = _fold(candidate.get("student_name"))
    others = [r for r in registrations if _fold(r.name) != name]
    if others:
        return [
            (
                ErrorKind.PERSISTED_COLLISION,
                f'Chest number {candidate.get("chest_no")} is already assigned to "{others[0].name}"',
            )
        ]
    return []


def _student_identity_conflict(record: ResolvedRecord, earlier: ResolvedRecord) -> str:
    return (
        f'Chest number {record.get("chest_no")} is already assigned to '
        f'"{earlier.get("student_name")}" (row {earlier.row_index})'
    )


def _student_unique_violation(error: StoreError) -> str:
    detail = f"{error.constraint or ''} {error.message}"
    if "students_chest_no_program_user_unique" in detail:
        return "This student is already registered for this program"
    return "A student with this chest number already exists"


STUDENTS = EntityStrategy(
    entity="students",
    label="student",
    schema=STUDENT_SCHEMA,
    references=("section", "program"),
    business_key=lambda r: (_fold(r.get("chest_no")), r.get("program_id")),
    persisted_keys=lambda s: {(_fold(st.chest_no), st.program_id) for st in s.students},
    describe=lambda r: f'chest number {r.get("chest_no")} in program "{r.get("program_name")}"',
    build_payload=lambda r: {
        "chest_no": r.get("chest_no"),
        "name": r.get("student_name"),
        "section_id": r.get("section_id"),
        "program_id": r.get("program_id"),
    },
    create_method="create_student",
    unique_violation=_student_unique_violation,
    extra_checks=_student_checks,
    batch_identity=lambda r: (_fold(r.get("chest_no")), _fold(r.get("student_name"))),
    identity_conflict=_student_identity_conflict,
)

# --------------------------------------------------------- program winners

WINNER_SCHEMA = EntitySchema(
    entity="program-winners",
    columns=STUDENT_COLUMNS
    + (
        ColumnSpec("Placement", "placement"),
        ColumnSpec("Notes", "notes"),
    ),
)


def _winner_payload(r: ResolvedRecord) -> dict[str, Any]:
    placement = canonical_placement(r.get("placement") or DEFAULT_PLACEMENT)
    return {
        "program_id": r.get("program_id"),
        "student_id": r.get("student_id"),
        "placement": placement,
        "placement_order": placement_order(placement),
        "notes": r.get("notes"),
    }


PROGRAM_WINNERS = EntityStrategy(
    entity="program-winners",
    label="program winner",
    schema=WINNER_SCHEMA,
    references=("section", "program", "student"),
    business_key=lambda r: (r.get("student_id"), r.get("program_id")),
    persisted_keys=lambda s: {(w.student_id, w.program_id) for w in s.winners},
    describe=lambda r: (
        f'winner "{r.get("student_name")}" (chest number {r.get("chest_no")}) '
        f'for program "{r.get("program_name")}"'
    ),
    build_payload=_winner_payload,
    create_method="create_program_winner",
    unique_violation=_fixed("This student is already assigned to this placement for this program"),
)

# ------------------------------------------------------- prize assignments

ASSIGNMENT_SCHEMA = EntitySchema(
    entity="prize-assignments",
    columns=(
        ColumnSpec("Section Code", "section_code", required=True, kind=ColumnKind.CODE),
        ColumnSpec("Program Name", "program_name", required=True),
        ColumnSpec("Placement", "placement", required=True),
        ColumnSpec("Prize Category", "prize_category", required=True, kind=ColumnKind.CODE),
        ColumnSpec("Quantity", "quantity", kind=ColumnKind.NUMBER),
        ColumnSpec("Notes", "notes"),
    ),
)


def _assignment_checks(candidate: CandidateRecord, snapshot: ReferenceSnapshot) -> list[Check]:
    quantity = candidate.get("quantity")
    # 負数は汎用 number チェックで報告済み
    if quantity is not None and quantity >= 0 and (quantity < 1 or not float(quantity).is_integer()):
        return [(ErrorKind.FORMAT, f"Quantity must be a whole number of at least 1 (got {quantity:g})")]
    return []


def _assignment_payload(r: ResolvedRecord) -> dict[str, Any]:
    placement = canonical_placement(r.get("placement"))
    quantity = r.get("quantity")
    return {
        "program_id": r.get("program_id"),
        "prize_id": r.get("prize_id"),
        "placement": placement,
        "placement_order": placement_order(placement),
        "quantity": int(quantity) if quantity is not None else 1,
        "notes": r.get("notes") or f"Auto-assigned from category {r.get('prize_category')}",
    }


PRIZE_ASSIGNMENTS = EntityStrategy(
    entity="prize-assignments",
    label="prize assignment",
    schema=ASSIGNMENT_SCHEMA,
    references=("section", "program", "prize_category"),
    business_key=lambda r: (r.get("program_id"), _fold(canonical_placement(r.get("placement")))),
    persisted_keys=lambda s: {(a.program_id, _fold(canonical_placement(a.placement))) for a in s.assignments},
    describe=lambda r: (
        f'placement "{r.get("placement")}" for program "{r.get("program_name")}" '
        f'in section "{r.get("section_code")}"'
    ),
    build_payload=_assignment_payload,
    create_method="create_prize_assignment",
    unique_violation=_fixed("This placement already has a prize assigned for this program"),
    extra_checks=_assignment_checks,
)

ENTITIES: dict[str, EntityStrategy] = {
    s.entity: s for s in (PROGRAMS, PRIZES, STUDENTS, PROGRAM_WINNERS, PRIZE_ASSIGNMENTS)
}


def get_strategy(entity: str) -> EntityStrategy:
    try:
        return ENTITIES[entity]
    except KeyError:
        raise UnknownEntityError(
            f"unknown entity '{entity}' (expected one of: {', '.join(ENTITIES)})"
        ) from None
