from __future__ import annotations

import logging
from collections.abc import Iterator, Mapping
from contextlib import contextmanager
from typing import Any, Protocol

import psycopg2
from psycopg2 import errorcodes, sql
from psycopg2.extras import RealDictCursor
from psycopg2.pool import ThreadedConnectionPool

"""Persistent store access for the import pipeline.

The pipeline only needs two kinds of operations from the store:

- "list all" per reference entity, scoped to the acting owner, used once per
  import to build the reference snapshot
- "create" per importable entity, returning the new internal id

Store failures surface as StoreError carrying the PostgreSQL SQLSTATE so that
the committer can turn a uniqueness violation (23505) into a readable duplicate
message. PostgresStore talks to the schema of the admin application
(sections / programs / students / prizes / program_winners /
program_prize_assignments) with user_id as the owner column.
"""

__all__ = [
    "UNIQUE_VIOLATION",
    "Store",
    "StoreError",
    "PostgresStore",
]

logger = logging.getLogger(__name__)

UNIQUE_VIOLATION = errorcodes.UNIQUE_VIOLATION  # "23505"


class StoreError(Exception):
    """Store level failure (connection, constraint, permission...)."""

    def __init__(self, message: str, code: str | None = None, constraint: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.code = code
        self.constraint = constraint

    @property
    def is_unique_violation(self) -> bool:
        return self.code == UNIQUE_VIOLATION


class Store(Protocol):
    """Operations the import pipeline needs from the backing store."""

    def list_sections(self, owner: str | None) -> list[Mapping[str, Any]]: ...
    def list_programs(self, owner: str | None) -> list[Mapping[str, Any]]: ...
    def list_students(self, owner: str | None) -> list[Mapping[str, Any]]: ...
    def list_prizes(self, owner: str | None) -> list[Mapping[str, Any]]: ...
    def list_program_winners(self, owner: str | None) -> list[Mapping[str, Any]]: ...
    def list_prize_assignments(self, owner: str | None) -> list[Mapping[str, Any]]: ...

    def create_program(self, values: Mapping[str, Any], owner: str | None) -> Any: ...
    def create_prize(self, values: Mapping[str, Any], owner: str | None) -> Any: ...
    def create_student(self, values: Mapping[str, Any], owner: str | None) -> Any: ...
    def create_program_winner(self, values: Mapping[str, Any], owner: str | None) -> Any: ...
    def create_prize_assignment(self, values: Mapping[str, Any], owner: str | None) -> Any: ...


# テーブル -> 取得列 (list 用)
_LIST_COLUMNS: dict[str, tuple[str, ...]] = {
    "sections": ("id", "code", "name"),
    "programs": ("id", "name", "section_id"),
    "students": ("id", "chest_no", "name", "program_id", "section_id"),
    "prizes": ("id", "name", "category"),
    "program_winners": ("id", "program_id", "student_id", "placement"),
    "program_prize_assignments": ("id", "program_id", "prize_id", "placement"),
}


class PostgresStore:
    """psycopg2 implementation of the Store protocol.

    A ThreadedConnectionPool backs the store so the committer's concurrent
    per-row creates each get their own connection. Every create runs in its
    own transaction (``with conn``) so one failing row never rolls back another.
    """

    def __init__(self, pool: Any) -> None:
        self._pool = pool

    @classmethod
    def connect(cls, dsn: str, *, minconn: int = 1, maxconn: int = 10) -> PostgresStore:
        try:
            pool = ThreadedConnectionPool(minconn, maxconn, dsn)
        except psycopg2.Error as e:
            raise StoreError(f"connection failed: {e}".strip(), code=e.pgcode) from e
        return cls(pool)

    def close(self) -> None:
        self._pool.closeall()

    def __enter__(self) -> PostgresStore:
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        self.close()

    @contextmanager
    def _cursor(self) -> Iterator[Any]:
        conn = self._pool.getconn()
        try:
            # with conn: 成功で COMMIT / 例外で ROLLBACK
            with conn:
                with conn.cursor(cursor_factory=RealDictCursor) as cur:
                    yield cur
        except psycopg2.Error as e:
            message = (e.pgerror or str(e)).strip()
            constraint = getattr(getattr(e, "diag", None), "constraint_name", None)
            raise StoreError(message, code=e.pgcode, constraint=constraint) from e
        finally:
            self._pool.putconn(conn)

    def _list(self, table: str, owner: str | None) -> list[Mapping[str, Any]]:
        columns = _LIST_COLUMNS[table]
        query = sql.SQL("SELECT {cols} FROM {table}").format(
            cols=sql.SQL(", ").join(sql.Identifier(c) for c in columns),
            table=sql.Identifier(table),
        )
        params: tuple[Any, ...] = ()
        if owner is not None:
            query = query + sql.SQL(" WHERE user_id = %s")
            params = (owner,)
        query = query + sql.SQL(" ORDER BY id")
        with self._cursor() as cur:
            cur.execute(query, params)
            rows = [dict(r) for r in cur.fetchall()]
        logger.debug("list table=%s owner=%s rows=%d", table, owner, len(rows))
        return rows

    def _insert(self, table: str, values: Mapping[str, Any], owner: str | None) -> Any:
        data = {k: v for k, v in values.items() if v is not None}
        if owner is not None:
            data["user_id"] = owner
        query = sql.SQL("INSERT INTO {table} ({cols}) VALUES ({vals}) RETURNING id").format(
            table=sql.Identifier(table),
            cols=sql.SQL(", ").join(sql.Identifier(c) for c in data),
            vals=sql.SQL(", ").join(sql.Placeholder() for _ in data),
        )
        with self._cursor() as cur:
            cur.execute(query, tuple(data.values()))
            row = cur.fetchone()
        return row["id"] if row else None

    def list_sections(self, owner: str | None) -> list[Mapping[str, Any]]:
        return self._list("sections", owner)

    def list_programs(self, owner: str | None) -> list[Mapping[str, Any]]:
        return self._list("programs", owner)

    def list_students(self, owner: str | None) -> list[Mapping[str, Any]]:
        return self._list("students", owner)

    def list_prizes(self, owner: str | None) -> list[Mapping[str, Any]]:
        return self._list("prizes", owner)

    def list_program_winners(self, owner: str | None) -> list[Mapping[str, Any]]:
        return self._list("program_winners", owner)

    def list_prize_assignments(self, owner: str | None) -> list[Mapping[str, Any]]:
        return self._list("program_prize_assignments", owner)

    def create_program(self, values: Mapping[str, Any], owner: str | None) -> Any:
        return self._insert("programs", values, owner)

    def create_prize(self, values: Mapping[str, Any], owner: str | None) -> Any:
        return self._insert("prizes", values, owner)

    def create_student(self, values: Mapping[str, Any], owner: str | None) -> Any:
        return self._insert("students", values, owner)

    def create_program_winner(self, values: Mapping[str, Any], owner: str | None) -> Any:
        return self._insert("program_winners", values, owner)

    def create_prize_assignment(self, values: Mapping[str, Any], owner: str | None) -> Any:
        return self._insert("program_prize_assignments", values, owner)
