from __future__ import annotations

import pytest

from event_import.db.store import UNIQUE_VIOLATION, StoreError
from event_import.models.row_data import CandidateRecord, ResolvedRecord
from event_import.services.strategies import (
    ENTITIES,
    PRIZE_ASSIGNMENTS,
    PRIZES,
    PROGRAM_WINNERS,
    PROGRAMS,
    STUDENTS,
    UnknownEntityError,
    get_strategy,
)


def _resolved(entity, refs=None, **fields):
    return ResolvedRecord(
        candidate=CandidateRecord(entity=entity, row_index=1, fields=fields), refs=refs or {}
    )


def test_registry():
    assert list(ENTITIES) == ["programs", "prizes", "students", "program-winners", "prize-assignments"]
    assert get_strategy("prizes") is PRIZES
    with pytest.raises(UnknownEntityError):
        get_strategy("teachers")


def test_program_payload_gets_default_description():
    rec = _resolved("programs", {"section_id": 1}, program_name="PAINTING", section_code="JB")
    assert PROGRAMS.build_payload(rec) == {
        "name": "PAINTING",
        "section_id": 1,
        "description": "Imported from Excel",
    }


def test_prize_payload_keeps_optional_values():
    rec = _resolved(
        "prizes",
        prize_name="MEDAL",
        image_url="https://x.test/m.png",
        category="B",
        average_value=25.0,
        description=None,
    )
    payload = PRIZES.build_payload(rec)
    assert payload["description"] == "Imported from Excel"
    assert payload["average_value"] == 25.0
    assert payload["image_url"] == "https://x.test/m.png"


def test_student_payload():
    rec = _resolved(
        "students",
        {"section_id": 1, "program_id": 10},
        chest_no="CH001",
        student_name="Ahmed Ali",
        section_code="JB",
        program_name="BURDA",
    )
    assert STUDENTS.build_payload(rec) == {
        "chest_no": "CH001",
        "name": "Ahmed Ali",
        "section_id": 1,
        "program_id": 10,
    }


def test_winner_payload_defaults_to_participation():
    rec = _resolved(
        "program-winners",
        {"section_id": 1, "program_id": 10, "student_id": 100},
        chest_no="413",
        student_name="Ahmed Ali",
        section_code="JB",
        program_name="BURDA",
        placement=None,
        notes=None,
    )
    payload = PROGRAM_WINNERS.build_payload(rec)
    assert payload["placement"] == "Participation"
    assert payload["placement_order"] == 10
    assert payload["student_id"] == 100


def test_assignment_payload_defaults():
    rec = _resolved(
        "prize-assignments",
        {"section_id": 1, "program_id": 10, "prize_id": 201},
        section_code="JB",
        program_name="BURDA",
        placement="2nd place",
        prize_category="A",
        quantity=None,
        notes=None,
    )
    assert PRIZE_ASSIGNMENTS.build_payload(rec) == {
        "program_id": 10,
        "prize_id": 201,
        "placement": "2nd Place",
        "placement_order": 2,
        "quantity": 1,
        "notes": "Auto-assigned from category A",
    }


def test_commit_error_messages():
    dup = StoreError("duplicate key", code=UNIQUE_VIOLATION)
    other = StoreError("permission denied for table programs", code="42501")
    assert PROGRAMS.commit_error_message(dup) == "A program with this name already exists in this section"
    assert PRIZES.commit_error_message(dup) == "A prize with this name already exists in this category"
    assert PRIZE_ASSIGNMENTS.commit_error_message(dup) == (
        "This placement already has a prize assigned for this program"
    )
    assert PROGRAM_WINNERS.commit_error_message(dup) == (
        "This student is already assigned to this placement for this program"
    )
    assert PROGRAMS.commit_error_message(other) == (
        "Failed to create program: permission denied for table programs"
    )


def test_student_unique_violation_depends_on_constraint():
    per_program = StoreError("dup", code=UNIQUE_VIOLATION, constraint="students_chest_no_program_user_unique")
    global_chest = StoreError("dup", code=UNIQUE_VIOLATION, constraint="students_chest_no_user_id_key")
    assert STUDENTS.commit_error_message(per_program) == "This student is already registered for this program"
    assert STUDENTS.commit_error_message(global_chest) == "A student with this chest number already exists"


def test_create_dispatches_with_owner(store):
    new_id = PROGRAMS.create(store, {"name": "PAINTING", "section_id": 2}, "owner-1")
    assert store.create_calls == [("programs", {"name": "PAINTING", "section_id": 2}, "owner-1")]
    assert new_id == 1000
