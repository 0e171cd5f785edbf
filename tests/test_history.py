from __future__ import annotations

import json
import sys
import threading
from datetime import date, datetime, timezone
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from sheetsync.history import HISTORY_LIMIT, SyncHistoryStore, history_key
from sheetsync.snapshots import SnapshotStore


def test_history_is_capped_per_key_and_evicts_oldest() -> None:
    store = SyncHistoryStore()
    for count in range(HISTORY_LIMIT + 5):
        store.append("sheet", "A:Z", "push", count)
    store.append("other", "A:Z", "pull", 1)

    entries = store.entries("sheet", "A:Z")

    assert len(entries) == HISTORY_LIMIT
    assert entries[0].record_count == 5
    assert entries[-1].record_count == HISTORY_LIMIT + 4
    assert len(store.entries("other", "A:Z")) == 1


def test_history_limit_returns_most_recent_entries() -> None:
    store = SyncHistoryStore(limit=10)
    for count in range(4):
        store.append("sheet", "A:Z", "pull", count)

    assert [entry.record_count for entry in store.entries("sheet", "A:Z", 2)] == [2, 3]
    assert store.entries("sheet", "A:Z", 0) == []


def test_history_all_groups_by_key_and_clear_removes_one_key(tmp_path: Path) -> None:
    store = SyncHistoryStore(tmp_path / "history.sqlite3")
    when = datetime(2024, 5, 1, 12, tzinfo=timezone.utc)
    store.append("sheet", "A:Z", "pull", 3, timestamp=when)
    store.append("sheet", "B:C", "append", 1, status="success")

    grouped = store.all()
    assert set(grouped) == {history_key("sheet", "A:Z"), history_key("sheet", "B:C")}
    assert grouped["sheet_A:Z"][0].timestamp == when
    assert grouped["sheet_A:Z"][0].to_dict()["timestamp"] == "2024-05-01T12:00:00+00:00"

    assert store.clear("sheet", "A:Z") == 1
    assert store.entries("sheet", "A:Z") == []
    assert len(store.entries("sheet", "B:C")) == 1
    store.close()


def test_history_persists_across_connections(tmp_path: Path) -> None:
    path = tmp_path / "nested" / "history.sqlite3"
    first = SyncHistoryStore(path)
    first.append("sheet", "A:Z", "push", 2)
    first.close()

    second = SyncHistoryStore(path)
    assert [entry.operation for entry in second.entries("sheet", "A:Z")] == ["push"]
    second.close()


def test_history_appends_from_many_threads_respect_the_cap() -> None:
    store = SyncHistoryStore(limit=20)

    def worker() -> None:
        for _ in range(10):
            store.append("sheet", "A:Z", "push", 1)

    threads = [threading.Thread(target=worker) for _ in range(5)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert len(store.entries("sheet", "A:Z")) == 20


def test_history_rejects_non_positive_limit() -> None:
    with pytest.raises(ValueError):
        SyncHistoryStore(limit=0)


def test_snapshot_round_trip(tmp_path: Path) -> None:
    snapshots = SnapshotStore(tmp_path / "storage")
    when = datetime(2024, 1, 2, 3, 4, 5, tzinfo=timezone.utc)
    records = [{"id": 1, "joined": date(2024, 1, 1), "_last_updated": when}]

    path = snapshots.save("sheet-1", "Class A!A:Z", records, timestamp=when)

    assert path.name == "sheet-1_Class_A_A_Z.json"
    payload = json.loads(path.read_text(encoding="utf-8"))
    assert payload == {
        "resourceId": "sheet-1",
        "range": "Class A!A:Z",
        "records": [{"id": 1, "joined": "2024-01-01", "_last_updated": "2024-01-02T03:04:05+00:00"}],
        "lastUpdated": "2024-01-02T03:04:05+00:00",
        "recordCount": 1,
    }
    assert snapshots.load("sheet-1", "Class A!A:Z") == payload
    assert snapshots.load("sheet-1", "B:C") is None
    assert list(path.parent.glob("*.tmp")) == []
