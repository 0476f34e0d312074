from __future__ import annotations

import json
from pathlib import Path

import pandas as pd
import pytest
from helpers import FakeStore, seed_reference_data

from event_import.cli.__main__ import EXIT_FATAL, EXIT_PARTIAL_FAILURE, EXIT_SUCCESS_ALL, main as cli_main
from event_import.db.store import StoreError

"""Exit code contract: 0 all rows succeeded, 2 any row failed, 1 fatal."""


def _make_excel(path: Path, rows: list[list[object]]) -> Path:
    with pd.ExcelWriter(path, engine="openpyxl") as writer:
        pd.DataFrame(rows).to_excel(writer, sheet_name="Sheet1", header=False, index=False)
    return path


@pytest.fixture()
def fake_store(monkeypatch) -> FakeStore:
    store = seed_reference_data(FakeStore())
    monkeypatch.setattr("event_import.cli.__main__._open_store", lambda dsn, cfg: store)
    return store


@pytest.fixture()
def programs_file(temp_workdir: Path) -> Path:
    return _make_excel(
        temp_workdir / "data" / "programs.xlsx",
        [["Program Name", "Section Code"], ["PAINTING", "JB"], ["ESSAY", "k1b"]],
    )


def test_all_success(write_config, fake_store, programs_file, capsys):
    code = cli_main(["import", "programs", str(programs_file)])
    out = capsys.readouterr().out
    assert code == EXIT_SUCCESS_ALL
    assert "SUMMARY entity=programs total=2 succeeded=2 failed=0" in out
    assert fake_store.closed
    assert {owner for _, _, owner in fake_store.create_calls} == {"owner-1"}
    assert list(Path("logs").iterdir()) == []


def test_partial_failure(write_config, fake_store, temp_workdir, capsys):
    path = _make_excel(
        temp_workdir / "data" / "programs.xlsx",
        [["Program Name", "Section Code"], ["PAINTING", "JB"], ["BURDA", "JB"], ["X", "NOPE"]],
    )
    code = cli_main(["import", "programs", str(path)])
    out = capsys.readouterr().out
    assert code == EXIT_PARTIAL_FAILURE
    assert 'ERROR Row 2: Program "BURDA" in section "JB" already exists' in out
    assert 'ERROR Row 3: Section code "NOPE" does not exist' in out
    assert "SUMMARY entity=programs total=3 succeeded=1 failed=2" in out
    logs = list(Path("logs").glob("errors-*.log"))
    assert len(logs) == 1
    lines = [json.loads(line) for line in logs[0].read_text(encoding="utf-8").splitlines()]
    assert [(r["row"], r["error_type"]) for r in lines] == [(2, "PERSISTED_COLLISION"), (3, "REFERENCE_ERROR")]
    assert {r["file"] for r in lines} == {"programs.xlsx"}


def test_dry_run_does_not_write(write_config, fake_store, programs_file, capsys):
    code = cli_main(["import", "programs", str(programs_file), "--dry-run"])
    out = capsys.readouterr().out
    assert code == EXIT_SUCCESS_ALL
    assert fake_store.create_calls == []
    assert "would be created" in out
    assert "dry_run=true" in out


def test_owner_flag_overrides_config(write_config, fake_store, programs_file, monkeypatch):
    monkeypatch.setenv("IMPORT_OWNER", "env-owner")
    cli_main(["import", "programs", str(programs_file), "--owner", "cli-owner"])
    assert {owner for _, owner in fake_store.list_calls} == {"cli-owner"}


def test_fatal_on_invalid_config(temp_workdir, fake_store, programs_file, capsys):
    (temp_workdir / "config" / "import.yml").write_text("unknown_key: 1\n", encoding="utf-8")
    code = cli_main(["import", "programs", str(programs_file)])
    assert code == EXIT_FATAL
    assert "ERROR config:" in capsys.readouterr().out


def test_fatal_on_missing_explicit_config(temp_workdir, fake_store, programs_file, capsys):
    code = cli_main(["import", "programs", str(programs_file), "--config", "nope.yml"])
    assert code == EXIT_FATAL


def test_fatal_without_connection_info(temp_workdir, fake_store, programs_file, capsys):
    code = cli_main(["import", "programs", str(programs_file)])
    assert code == EXIT_FATAL
    assert "database connection is not configured" in capsys.readouterr().out


def test_env_connection_without_config_file(temp_workdir, fake_store, programs_file, monkeypatch):
    monkeypatch.setenv("DATABASE_URL", "postgresql://localhost/app")
    monkeypatch.setenv("IMPORT_OWNER", "owner-1")
    assert cli_main(["import", "programs", str(programs_file)]) == EXIT_SUCCESS_ALL


def test_fatal_on_unreadable_file(write_config, fake_store, temp_workdir, capsys):
    bad = temp_workdir / "data" / "bad.xlsx"
    bad.write_bytes(b"garbage")
    code = cli_main(["import", "programs", str(bad)])
    assert code == EXIT_FATAL
    logs = list(Path("logs").glob("errors-*.log"))
    record = json.loads(logs[0].read_text(encoding="utf-8").splitlines()[0])
    assert record["row"] == -1
    assert record["error_type"] == "FILE_ERROR"


def test_fatal_on_snapshot_failure(write_config, fake_store, programs_file, capsys):
    def boom(owner):
        raise StoreError("relation \"sections\" does not exist", code="42P01")

    fake_store.list_sections = boom
    code = cli_main(["import", "programs", str(programs_file)])
    assert code == EXIT_FATAL
    assert "ERROR reference data:" in capsys.readouterr().out
    assert fake_store.create_calls == []


def test_fatal_on_connection_failure(write_config, programs_file, monkeypatch, capsys):
    def refuse(dsn, cfg):
        raise StoreError("connection failed: could not connect to server")

    monkeypatch.setattr("event_import.cli.__main__._open_store", refuse)
    assert cli_main(["import", "programs", str(programs_file)]) == EXIT_FATAL


def test_unknown_entity(write_config, fake_store, programs_file, capsys):
    assert cli_main(["import", "teachers", str(programs_file)]) == EXIT_FATAL
    assert "unknown entity 'teachers'" in capsys.readouterr().out
