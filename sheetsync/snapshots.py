"""JSON snapshots of the last pulled record set per ``(resource_id, range)``."""
from __future__ import annotations

import json
import logging
import os
import tempfile
import threading
from datetime import date, datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional, Sequence

from sheetsync.ranges import storage_token

logger = logging.getLogger(__name__)


def _json_default(value: Any) -> str:
    if isinstance(value, (date, datetime)):
        return value.isoformat()
    return str(value)


class SnapshotStore:
    """Persist one JSON document per ``(resource_id, range)``."""

    def __init__(self, directory: Path) -> None:
        self._directory = Path(directory)
        self._lock = threading.Lock()

    @property
    def directory(self) -> Path:
        return self._directory

    def path_for(self, resource_id: str, range_spec: str) -> Path:
        return self._directory / f"{resource_id}_{storage_token(range_spec)}.json"

    def save(
        self,
        resource_id: str,
        range_spec: str,
        records: Sequence[Dict[str, Any]],
        *,
        timestamp: Optional[datetime] = None,
    ) -> Path:
        payload = {
            "resourceId": resource_id,
            "range": range_spec,
            "records": list(records),
            "lastUpdated": (timestamp or datetime.now(timezone.utc)).isoformat(),
            "recordCount": len(records),
        }
        target = self.path_for(resource_id, range_spec)
        serialised = json.dumps(payload, ensure_ascii=False, indent=2, default=_json_default)
        with self._lock:
            self._directory.mkdir(parents=True, exist_ok=True)
            # Write to a sibling file first so a crash never leaves half a snapshot.
            handle, temp_name = tempfile.mkstemp(dir=self._directory, suffix=".tmp")
            try:
                with os.fdopen(handle, "w", encoding="utf-8") as stream:
                    stream.write(serialised)
                os.replace(temp_name, target)
            except BaseException:
                Path(temp_name).unlink(missing_ok=True)
                raise
        logger.info("Snapshot saved to %s (%d records)", target, len(records))
        return target

    def load(self, resource_id: str, range_spec: str) -> Optional[Dict[str, Any]]:
        target = self.path_for(resource_id, range_spec)
        with self._lock:
            if not target.exists():
                return None
            with target.open("r", encoding="utf-8") as handle:
                return json.load(handle)


__all__ = ["SnapshotStore"]
