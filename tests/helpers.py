"""Test doubles and row builders shared by unit and integration tests."""
from __future__ import annotations

import itertools
import threading
from collections.abc import Callable, Mapping
from typing import Any

from event_import.db.store import UNIQUE_VIOLATION, StoreError
from event_import.models.row_data import RawRecord

# 一意制約 (テーブル -> 列, 制約名)
_UNIQUE_KEYS: dict[str, tuple[tuple[str, ...], str]] = {
    "programs": (("name", "section_id"), "programs_name_section_user_unique"),
    "prizes": (("name", "category"), "prizes_name_category_user_unique"),
    "students": (("chest_no", "program_id"), "students_chest_no_program_user_unique"),
    "program_winners": (("program_id", "student_id", "placement"), "program_winners_unique"),
    "program_prize_assignments": (("program_id", "placement"), "program_prize_assignments_unique"),
}


class FakeStore:
    """In-memory Store double with PostgreSQL-like unique constraints.

    ``fail_when[table]`` may hold a predicate over the create values; when it
    returns a StoreError that error is raised instead of inserting.
    """

    def __init__(self) -> None:
        self.tables: dict[str, list[dict[str, Any]]] = {t: [] for t in _UNIQUE_KEYS}
        self.tables["sections"] = []
        self.fail_when: dict[str, Callable[[Mapping[str, Any]], StoreError | None]] = {}
        self.list_calls: list[tuple[str, Any]] = []
        self.create_calls: list[tuple[str, dict[str, Any], Any]] = []
        self.closed = False
        self._ids = itertools.count(1000)
        self._lock = threading.Lock()

    # --- seeding
    def seed(self, table: str, **row: Any) -> dict[str, Any]:
        row.setdefault("user_id", "owner-1")
        self.tables[table].append(row)
        return row

    # --- list
    def _list(self, table: str, owner: Any) -> list[dict[str, Any]]:
        self.list_calls.append((table, owner))
        return [dict(r) for r in self.tables[table] if owner is None or r.get("user_id") == owner]

    def list_sections(self, owner):
        return self._list("sections", owner)

    def list_programs(self, owner):
        return self._list("programs", owner)

    def list_students(self, owner):
        return self._list("students", owner)

    def list_prizes(self, owner):
        return self._list("prizes", owner)

    def list_program_winners(self, owner):
        return self._list("program_winners", owner)

    def list_prize_assignments(self, owner):
        return self._list("program_prize_assignments", owner)

    # --- create
    def _create(self, table: str, values: Mapping[str, Any], owner: Any) -> Any:
        hook = self.fail_when.get(table)
        if hook is not None:
            error = hook(values)
            if error is not None:
                raise error
        columns, constraint = _UNIQUE_KEYS[table]
        with self._lock:
            self.create_calls.append((table, dict(values), owner))
            key = tuple(values.get(c) for c in columns)
            for row in self.tables[table]:
                if row.get("user_id") == owner and tuple(row.get(c) for c in columns) == key:
                    raise StoreError(
                        f'duplicate key value violates unique constraint "{constraint}"',
                        code=UNIQUE_VIOLATION,
                        constraint=constraint,
                    )
            new_id = next(self._ids)
            self.tables[table].append({"id": new_id, "user_id": owner, **values})
        return new_id

    def create_program(self, values, owner):
        return self._create("programs", values, owner)

    def create_prize(self, values, owner):
        return self._create("prizes", values, owner)

    def create_student(self, values, owner):
        return self._create("students", values, owner)

    def create_program_winner(self, values, owner):
        return self._create("program_winners", values, owner)

    def create_prize_assignment(self, values, owner):
        return self._create("program_prize_assignments", values, owner)

    def close(self) -> None:
        self.closed = True


def seed_reference_data(store: FakeStore, owner: str = "owner-1") -> FakeStore:
    store.seed("sections", id=1, code="JB", name="JUNIOR BOYS", user_id=owner)
    store.seed("sections", id=2, code="K1B", name="KIDS 1 BOYS", user_id=owner)
    store.seed("programs", id=10, name="BURDA", section_id=1, user_id=owner)
    store.seed("programs", id=11, name="HAND CRAFT", section_id=1, user_id=owner)
    store.seed("programs", id=12, name="HIFZ", section_id=2, user_id=owner)
    store.seed("students", id=100, chest_no="413", name="Ahmed Ali", program_id=10, section_id=1, user_id=owner)
    store.seed("students", id=101, chest_no="414", name="Fatima Hassan", program_id=11, section_id=1, user_id=owner)
    store.seed("students", id=102, chest_no="413", name="Ahmed Ali", program_id=11, section_id=1, user_id=owner)
    store.seed("prizes", id=200, name="SECOND PRIZE MEDAL", category="A", user_id=owner)
    store.seed("prizes", id=201, name="FIRST PRIZE TROPHY", category="A", user_id=owner)
    store.seed("prizes", id=202, name="PARTICIPATION CERTIFICATE", category="C", user_id=owner)
    return store


def raw_rows(*rows: Mapping[str, Any]) -> list[RawRecord]:
    """RawRecords with 1-based row indexes in the given order."""
    return [RawRecord(row_index=i, values=dict(r)) for i, r in enumerate(rows, start=1)]


