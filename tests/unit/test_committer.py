from __future__ import annotations

import threading
import time
from dataclasses import dataclass

import pytest

from event_import.db.store import UNIQUE_VIOLATION, StoreError
from event_import.models.row_error import ErrorKind
from event_import.services.committer import BatchCommitter


@dataclass(frozen=True)
class Item:
    row_index: int


def _items(n):
    return [Item(i) for i in range(1, n + 1)]


def test_chunks():
    committer = BatchCommitter(chunk_size=10)
    chunks = committer.chunks(_items(23))
    assert [len(c) for c in chunks] == [10, 10, 3]


def test_invalid_chunk_size():
    with pytest.raises(ValueError):
        BatchCommitter(chunk_size=0)


def test_results_in_input_order_with_partial_failure():
    def create(item):
        if item.row_index in (3, 7):
            raise StoreError("boom", code="XX000")
        return item.row_index * 100

    sleeps = []
    committer = BatchCommitter(chunk_size=4, pause_seconds=0.01, sleep=sleeps.append)
    outcome = committer.commit(_items(10), create)

    assert [r.row_index for r in outcome.results] == list(range(1, 11))
    assert outcome.succeeded == 8
    assert outcome.failed == 2
    assert [e.row_index for e in outcome.errors] == [3, 7]
    assert all(e.kind is ErrorKind.COMMIT_FAILURE for e in outcome.errors)
    assert outcome.created_ids == [100, 200, 400, 500, 600, 800, 900, 1000]
    # pause はチャンク間のみ
    assert sleeps == [0.01, 0.01]
    assert outcome.total_chunks == 3


def test_unique_violation_message_mapping():
    def create(item):
        raise StoreError("duplicate key", code=UNIQUE_VIOLATION)

    def message(error):
        return "friendly" if error.is_unique_violation else error.message

    outcome = BatchCommitter(chunk_size=2, pause_seconds=0).commit(_items(1), create, error_message=message)
    assert str(outcome.errors[0]) == "Row 1: friendly"


def test_unexpected_exception_is_attributed_to_the_row():
    def create(item):
        raise RuntimeError("socket closed")

    outcome = BatchCommitter(pause_seconds=0).commit(_items(2), create)
    assert [str(e) for e in outcome.errors] == ["Row 1: socket closed", "Row 2: socket closed"]


def test_progress_reported_after_each_chunk():
    seen = []
    committer = BatchCommitter(chunk_size=2, pause_seconds=0)
    committer.commit(_items(5), lambda item: item.row_index, on_progress=seen.append)
    assert [(p.chunk_index, p.total_chunks, p.attempted, p.total) for p in seen] == [
        (1, 3, 2, 5),
        (2, 3, 4, 5),
        (3, 3, 5, 5),
    ]
    assert seen[-1].done
    assert not seen[0].done


def test_creates_within_a_chunk_run_concurrently():
    barrier = threading.Barrier(3, timeout=5)

    def create(item):
        # 3 件が同時に走らないと timeout で BrokenBarrierError
        barrier.wait()
        return item.row_index

    outcome = BatchCommitter(chunk_size=3, pause_seconds=0).commit(_items(3), create)
    assert outcome.succeeded == 3


def test_chunks_are_joined_sequentially():
    events = []
    lock = threading.Lock()

    def create(item):
        with lock:
            events.append(("start", item.row_index))
        # 遅い create でもチャンクが重ならないこと
        time.sleep(0.02)
        with lock:
            events.append(("end", item.row_index))
        return item.row_index

    BatchCommitter(chunk_size=2, pause_seconds=0).commit(_items(6), create)

    position = {event: i for i, event in enumerate(events)}
    for previous, following in (((1, 2), (3, 4)), ((3, 4), (5, 6))):
        last_end = max(position[("end", r)] for r in previous)
        first_start = min(position[("start", r)] for r in following)
        assert last_end < first_start


def test_empty_input():
    outcome = BatchCommitter().commit([], lambda item: 1)
    assert outcome.results == []
    assert outcome.total_chunks == 0
