"""Bounded sync history keyed by ``(resource_id, range)``.

History lives in a SQLite table rather than module level state so the
orchestrator can be handed an isolated store (``":memory:"`` in tests, a
file in production).
"""
from __future__ import annotations

import logging
import sqlite3
import threading
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, List, Optional

logger = logging.getLogger(__name__)

HISTORY_LIMIT = 100

HISTORY_TABLE_SQL = """
CREATE TABLE IF NOT EXISTS sync_history (
    seq INTEGER PRIMARY KEY AUTOINCREMENT,
    resource_id TEXT NOT NULL,
    range_spec TEXT NOT NULL,
    operation TEXT NOT NULL,
    record_count INTEGER NOT NULL,
    timestamp TEXT NOT NULL,
    status TEXT NOT NULL
)
"""

HISTORY_INDEX_SQL = """
CREATE INDEX IF NOT EXISTS sync_history_key ON sync_history(resource_id, range_spec, seq)
"""


@dataclass(slots=True)
class HistoryEntry:
    operation: str
    record_count: int
    timestamp: datetime
    status: str = "success"

    def to_dict(self) -> Dict[str, object]:
        return {
            "operation": self.operation,
            "record_count": self.record_count,
            "timestamp": self.timestamp.isoformat(),
            "status": self.status,
        }


def history_key(resource_id: str, range_spec: str) -> str:
    return f"{resource_id}_{range_spec}"


class SyncHistoryStore:
    """Append-only history capped at :data:`HISTORY_LIMIT` entries per key."""

    def __init__(self, path: str | Path = ":memory:", *, limit: int = HISTORY_LIMIT) -> None:
        if limit < 1:
            raise ValueError("History limit must be positive")
        self._limit = limit
        self._lock = threading.Lock()
        if str(path) != ":memory:":
            Path(path).parent.mkdir(parents=True, exist_ok=True)
        self._conn = sqlite3.connect(str(path), check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        with self._conn:
            self._conn.execute(HISTORY_TABLE_SQL)
            self._conn.execute(HISTORY_INDEX_SQL)

    @property
    def limit(self) -> int:
        return self._limit

    def append(
        self,
        resource_id: str,
        range_spec: str,
        operation: str,
        record_count: int,
        *,
        status: str = "success",
        timestamp: Optional[datetime] = None,
    ) -> HistoryEntry:
        entry = HistoryEntry(
            operation=operation,
            record_count=record_count,
            timestamp=timestamp or datetime.now(timezone.utc),
            status=status,
        )
        with self._lock, self._conn:
            self._conn.execute(
                "INSERT INTO sync_history(resource_id, range_spec, operation, record_count, timestamp, status) "
                "VALUES(?, ?, ?, ?, ?, ?)",
                (resource_id, range_spec, operation, record_count, entry.timestamp.isoformat(), status),
            )
            # Evict from the head once the key exceeds the cap.
            self._conn.execute(
                "DELETE FROM sync_history WHERE resource_id = ? AND range_spec = ? AND seq NOT IN ("
                "SELECT seq FROM sync_history WHERE resource_id = ? AND range_spec = ? "
                "ORDER BY seq DESC LIMIT ?)",
                (resource_id, range_spec, resource_id, range_spec, self._limit),
            )
        logger.debug(
            "History %s: %s (%d records, %s)",
            history_key(resource_id, range_spec),
            operation,
            record_count,
            status,
        )
        return entry

    def entries(self, resource_id: str, range_spec: str, limit: Optional[int] = None) -> List[HistoryEntry]:
        """Return entries for the key, oldest first; ``limit`` keeps the most recent ones."""

        with self._lock:
            rows = self._conn.execute(
                "SELECT operation, record_count, timestamp, status FROM sync_history "
                "WHERE resource_id = ? AND range_spec = ? ORDER BY seq",
                (resource_id, range_spec),
            ).fetchall()
        entries = [_row_to_entry(row) for row in rows]
        if limit is not None:
            entries = entries[-limit:] if limit > 0 else []
        return entries

    def all(self) -> Dict[str, List[HistoryEntry]]:
        with self._lock:
            rows = self._conn.execute(
                "SELECT resource_id, range_spec, operation, record_count, timestamp, status "
                "FROM sync_history ORDER BY seq"
            ).fetchall()
        grouped: Dict[str, List[HistoryEntry]] = {}
        for row in rows:
            key = history_key(row["resource_id"], row["range_spec"])
            grouped.setdefault(key, []).append(_row_to_entry(row))
        return grouped

    def clear(self, resource_id: str, range_spec: str) -> int:
        with self._lock, self._conn:
            cursor = self._conn.execute(
                "DELETE FROM sync_history WHERE resource_id = ? AND range_spec = ?",
                (resource_id, range_spec),
            )
        return cursor.rowcount

    def close(self) -> None:
        with self._lock:
            self._conn.close()


def _row_to_entry(row: sqlite3.Row) -> HistoryEntry:
    return HistoryEntry(
        operation=row["operation"],
        record_count=int(row["record_count"]),
        timestamp=datetime.fromisoformat(row["timestamp"]),
        status=row["status"],
    )


__all__ = ["HISTORY_LIMIT", "HistoryEntry", "SyncHistoryStore", "history_key"]
