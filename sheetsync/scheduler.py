"""Background controller that resynchronises configured ranges on an interval."""
from __future__ import annotations

import json
import logging
import threading
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Dict, List, Optional, Sequence

from sheetsync.conflicts import ResolutionStrategy
from sheetsync.errors import describe
from sheetsync.orchestrator import SyncOrchestrator
from sheetsync.records import Record
from sheetsync.settings import SyncTargetConfig

logger = logging.getLogger(__name__)

MIN_INTERVAL_SECONDS = 10

StatusPayload = Dict[str, object]
StatusCallback = Callable[[str, StatusPayload], None]
RecordsProvider = Callable[[], Sequence[Record]]


@dataclass
class SyncTarget:
    """A range to keep in sync; with ``local_records`` the sync is bidirectional."""

    resource_id: str
    range: str
    target_label: str = "records"
    strategy: str = ResolutionStrategy.LOCAL.value
    local_records: Optional[RecordsProvider] = None

    @property
    def label(self) -> str:
        return f"{self.resource_id} {self.range}"


def json_records_provider(path: Path) -> RecordsProvider:
    """Return a provider reading a JSON list of records from ``path`` on every call."""

    def load() -> List[Record]:
        with Path(path).open("r", encoding="utf-8") as handle:
            payload = json.load(handle)
        if not isinstance(payload, list):
            raise ValueError(f"{path} must contain a JSON list of records")
        return [dict(record) for record in payload]

    return load


def targets_from_config(configs: Sequence[SyncTargetConfig]) -> List[SyncTarget]:
    return [
        SyncTarget(
            resource_id=config.resource_id,
            range=config.range,
            target_label=config.target_label,
            strategy=config.strategy,
            local_records=json_records_provider(Path(config.local_path)) if config.local_path else None,
        )
        for config in configs
    ]


class ScheduledResync:
    """Run :meth:`run_once` on a daemon thread every ``interval_seconds``."""

    def __init__(
        self,
        orchestrator: SyncOrchestrator,
        targets_provider: Callable[[], Sequence[SyncTarget]],
        *,
        interval_seconds: int = 1800,
        status_callback: Optional[StatusCallback] = None,
    ) -> None:
        self._orchestrator = orchestrator
        self._targets_provider = targets_provider
        self._interval = max(MIN_INTERVAL_SECONDS, interval_seconds)
        self._status_callback = status_callback
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @property
    def interval(self) -> int:
        return self._interval

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------
    def start(self) -> None:
        if self.running:
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._run, name="sheetsync-resync", daemon=True)
        self._thread.start()

    def stop(self, timeout: float = 2.0) -> None:
        self._stop_event.set()
        if self._thread:
            self._thread.join(timeout=timeout)
            self._thread = None

    def wait(self) -> None:
        """Block until :meth:`stop` is called from another thread."""

        while not self._stop_event.wait(1.0):
            pass

    # ------------------------------------------------------------------
    # Sync pass
    # ------------------------------------------------------------------
    def run_once(self) -> Dict[str, StatusPayload]:
        """Synchronise every target once and return a status payload per target."""

        targets = list(self._targets_provider())
        if not targets:
            self._notify_status("idle", {"reason": "no targets"})
            return {}

        outcome: Dict[str, StatusPayload] = {}
        for target in targets:
            try:
                if target.local_records is not None:
                    result = self._orchestrator.bidirectional(
                        target.resource_id,
                        target.range,
                        list(target.local_records()),
                        target.strategy,
                        target_label=target.target_label,
                    )
                    payload: StatusPayload = {
                        "operation": "bidirectional",
                        "record_count": result.push.record_count,
                        "conflicts": result.summary.total,
                        "unresolved": len(result.unresolved),
                    }
                else:
                    pulled = self._orchestrator.pull(target.resource_id, target.range, target.target_label)
                    payload = {"operation": "pull", "record_count": pulled.record_count}
            except Exception as exc:
                logger.warning("Scheduled sync of %s failed: %s", target.label, exc)
                payload = {"operation": "error", "error": describe(exc)}
                self._notify_status("error", {"target": target.label, **payload})
            else:
                self._notify_status("synced", {"target": target.label, **payload})
            outcome[target.label] = payload
        return outcome

    def _run(self) -> None:
        while not self._stop_event.is_set():
            start = time.monotonic()
            try:
                self.run_once()
            except Exception:  # pragma: no cover - keeps the thread alive
                logger.exception("Scheduled resync pass failed")
                self._notify_status("error", {"message": "unexpected failure"})
            elapsed = time.monotonic() - start
            self._stop_event.wait(max(0.0, self._interval - elapsed))

    def _notify_status(self, status: str, payload: StatusPayload) -> None:
        if self._status_callback:
            try:
                self._status_callback(status, payload)
            except Exception:  # pragma: no cover - callback guard
                logger.debug("Resync status callback failed", exc_info=True)


__all__ = [
    "MIN_INTERVAL_SECONDS",
    "ScheduledResync",
    "SyncTarget",
    "json_records_provider",
    "targets_from_config",
]
