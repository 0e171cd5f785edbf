from __future__ import annotations

import json
import sys
from pathlib import Path
from typing import Any, Dict, List

import pytest

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from sheetsync import cli
from sheetsync.errors import SheetsApiError
from sheetsync.history import SyncHistoryStore
from sheetsync.orchestrator import SyncOrchestrator


class _MemorySheets:
    def __init__(self) -> None:
        self.rows: Dict[str, List[List[str]]] = {
            "sheet": [["id", "name", "score"], ["1", "Ada", "91"], ["2", "Brian", "64"]],
        }

    def get_data(self, resource_id: str, range_spec: str) -> Dict[str, Any]:
        if resource_id not in self.rows:
            raise SheetsApiError("Sheets API values.get failed (404): Requested entity was not found.")
        return {"values": [list(row) for row in self.rows[resource_id]]}

    def clear_data(self, resource_id: str, range_spec: str) -> Dict[str, Any]:
        self.rows[resource_id] = []
        return {}

    def update_data(self, resource_id: str, range_spec: str, values) -> Dict[str, Any]:
        self.rows[resource_id] = [list(row) for row in values]
        return {"updatedRows": len(values)}

    def append_data(self, resource_id: str, range_spec: str, values) -> Dict[str, Any]:
        self.rows.setdefault(resource_id, []).extend(list(row) for row in values)
        return {"updatedRows": len(values)}


@pytest.fixture()
def sheets(monkeypatch: pytest.MonkeyPatch) -> _MemorySheets:
    client = _MemorySheets()
    orchestrator = SyncOrchestrator(client, history=SyncHistoryStore())
    monkeypatch.setattr(cli, "build_orchestrator", lambda settings: orchestrator)
    monkeypatch.setattr(cli, "configure_logging", lambda *args, **kwargs: None)
    return client


def _run(tmp_path: Path, *argv: str) -> int:
    return cli.main(["--settings", str(tmp_path / "sync_settings.json"), *argv])


def _write(tmp_path: Path, name: str, payload: Any) -> str:
    path = tmp_path / name
    path.write_text(json.dumps(payload), encoding="utf-8")
    return str(path)


def test_pull_prints_filtered_records(tmp_path: Path, sheets, capsys) -> None:
    code = _run(tmp_path, "pull", "--spreadsheet", "sheet", "--where", "score", ">", "70", "--order-by", "name:desc")

    captured = capsys.readouterr()
    assert code == 0
    records = json.loads(captured.out)
    assert [record["name"] for record in records] == ["Ada"]
    assert "Pulled 1 of 2 records." in captured.err


def test_pull_writes_output_file(tmp_path: Path, sheets) -> None:
    output = tmp_path / "out.json"

    assert _run(tmp_path, "pull", "--spreadsheet", "sheet", "--columns", "name", "--output", str(output)) == 0

    records = json.loads(output.read_text(encoding="utf-8"))
    assert [record["name"] for record in records] == ["Ada", "Brian"]
    assert "score" not in records[0]


def test_push_reports_record_count(tmp_path: Path, sheets, capsys) -> None:
    records = _write(tmp_path, "records.json", [{"id": 5, "name": "Eve", "active": True}])

    assert _run(tmp_path, "push", "--spreadsheet", "sheet", "--input", records) == 0

    assert "Pushed 1 records" in capsys.readouterr().out
    assert sheets.rows["sheet"] == [["id", "name", "active"], ["5", "Eve", "TRUE"]]


def test_push_validation_failure_exits_with_error(tmp_path: Path, sheets, capsys) -> None:
    records = _write(tmp_path, "records.json", [{"id": 5}])
    rules = _write(tmp_path, "rules.json", [{"field": "name", "required": True}])

    code = _run(tmp_path, "push", "--spreadsheet", "sheet", "--input", records, "--rules", rules)

    assert code == 1
    assert "Error: Validation failed: 1 invalid records" in capsys.readouterr().err
    assert sheets.rows["sheet"][1] == ["1", "Ada", "91"]


def test_append_adds_rows(tmp_path: Path, sheets) -> None:
    records = _write(tmp_path, "records.json", [{"id": 3, "name": "Cy", "score": 70}])

    assert _run(tmp_path, "append", "--spreadsheet", "sheet", "--input", records) == 0

    assert sheets.rows["sheet"][-1] == ["3", "Cy", "70"]


def test_sync_with_manual_strategy_warns_or_fails(tmp_path: Path, sheets, capsys) -> None:
    records = _write(tmp_path, "local.json", [{"id": 1, "name": "Ada L.", "score": 91}])

    assert _run(tmp_path, "sync", "--spreadsheet", "sheet", "--input", records, "--strategy", "manual") == 0
    assert "1 conflicts need manual review" in capsys.readouterr().err

    renamed = _write(tmp_path, "renamed.json", [{"id": 1, "name": "Ada Lovelace", "score": 91}])
    code = _run(
        tmp_path,
        "sync",
        "--spreadsheet",
        "sheet",
        "--input",
        renamed,
        "--strategy",
        "manual",
        "--fail-on-unresolved",
    )
    assert code == 1
    assert "Error: 1 conflicts need manual review" in capsys.readouterr().err


def test_batch_reports_each_item(tmp_path: Path, sheets, capsys) -> None:
    operations = _write(
        tmp_path,
        "batch.json",
        [
            {"type": "pull", "resource_id": "sheet", "range": "A:Z"},
            {"type": "pull", "resource_id": "missing", "range": "A:Z"},
        ],
    )

    code = _run(tmp_path, "batch", "--input", operations)

    output = capsys.readouterr().out
    assert code == 1
    assert "[0] pull: ok" in output
    assert "[1] pull: failed (Sheets API values.get failed (404)" in output
    assert "1 succeeded, 1 failed." in output


def test_history_and_clear_history(tmp_path: Path, sheets, capsys) -> None:
    _run(tmp_path, "pull", "--spreadsheet", "sheet")
    capsys.readouterr()

    assert _run(tmp_path, "history", "--spreadsheet", "sheet") == 0
    entries = json.loads(capsys.readouterr().out)
    assert [entry["operation"] for entry in entries] == ["pull"]

    assert _run(tmp_path, "history", "--all") == 0
    assert "sheet_Sheet1!A:Z" in json.loads(capsys.readouterr().out)

    assert _run(tmp_path, "clear-history", "--spreadsheet", "sheet") == 0
    assert "Removed 1 history entries." in capsys.readouterr().out


def test_missing_spreadsheet_id_is_an_error(tmp_path: Path, sheets, capsys, monkeypatch) -> None:
    monkeypatch.delenv("SHEETSYNC_SPREADSHEET_ID", raising=False)

    assert _run(tmp_path, "pull") == 1
    assert "No spreadsheet id given" in capsys.readouterr().err


def test_schedule_once_runs_configured_targets(tmp_path: Path, sheets, capsys) -> None:
    settings_path = tmp_path / "sync_settings.json"
    settings_path.write_text(
        json.dumps({"targets": [{"resource_id": "sheet", "range": "A:Z"}, {"resource_id": "missing"}]}),
        encoding="utf-8",
    )

    code = _run(tmp_path, "schedule", "--once")

    output = capsys.readouterr().out
    assert code == 1
    assert output.count("synced:") == 1
    assert output.count("error:") == 1


def test_schedule_without_targets(tmp_path: Path, sheets, capsys) -> None:
    assert _run(tmp_path, "schedule", "--once") == 0
    assert "No sync targets configured." in capsys.readouterr().out
