"""Compose the puller, resolver and pusher into sync operations.

Every operation addressing the same ``(resource_id, range)`` runs under one
re-entrant lock, so a bidirectional sync cannot interleave with another
write between its pull and its push.  Operations on different keys do not
block each other.
"""
from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, Iterator, List, Mapping, Optional, Sequence, Tuple, TypeVar

from sheetsync import app_paths
from sheetsync.client import GoogleSheetsClient, RetryPolicy, SheetsClient
from sheetsync.conflicts import (
    ConflictLog,
    ConflictResolver,
    ConflictSummary,
    Resolution,
    ResolutionStrategy,
)
from sheetsync.errors import SyncError, describe
from sheetsync.history import HistoryEntry, SyncHistoryStore
from sheetsync.puller import Puller, PullResult
from sheetsync.pusher import Pusher, PushResult, RowUpdate
from sheetsync.records import Conflict, Record
from sheetsync.settings import SyncSettings
from sheetsync.snapshots import SnapshotStore

logger = logging.getLogger(__name__)

T = TypeVar("T")
Key = Tuple[str, str]


class KeyedLocks:
    """One re-entrant lock per ``(resource_id, range)`` key, created on demand."""

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: Dict[Key, threading.RLock] = {}

    def lock_for(self, resource_id: str, range_spec: str) -> threading.RLock:
        key = (resource_id, range_spec)
        with self._guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = threading.RLock()
                self._locks[key] = lock
            return lock

    @contextmanager
    def hold(self, resource_id: str, range_spec: str) -> Iterator[None]:
        lock = self.lock_for(resource_id, range_spec)
        with lock:
            yield


@dataclass(slots=True)
class BidirectionalResult:
    push: PushResult
    summary: ConflictSummary
    strategy: ResolutionStrategy
    remote_count: int
    unresolved: List[Conflict] = field(default_factory=list)


@dataclass(slots=True)
class SyncOperation:
    type: str
    resource_id: str
    range: str
    records: List[Record] = field(default_factory=list)
    target_label: str = "records"
    strategy: str = ResolutionStrategy.LOCAL.value
    updates: List[RowUpdate] = field(default_factory=list)

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "SyncOperation":
        missing = [name for name in ("type", "resource_id", "range") if not payload.get(name)]
        if missing:
            raise ValueError(f"Sync operation missing fields: {', '.join(missing)}")
        return cls(
            type=str(payload["type"]),
            resource_id=str(payload["resource_id"]),
            range=str(payload["range"]),
            records=[dict(record) for record in payload.get("records") or ()],
            target_label=str(payload.get("target_label") or "records"),
            strategy=str(payload.get("strategy") or ResolutionStrategy.LOCAL.value),
            updates=[RowUpdate.from_dict(update) for update in payload.get("updates") or ()],
        )


@dataclass(slots=True)
class BatchItemResult:
    index: int
    operation: str
    success: bool
    result: Any = None
    error: Optional[Dict[str, Any]] = None


@dataclass(slots=True)
class BatchResult:
    items: List[BatchItemResult] = field(default_factory=list)

    @property
    def succeeded(self) -> int:
        return sum(1 for item in self.items if item.success)

    @property
    def failed(self) -> int:
        return len(self.items) - self.succeeded


class SyncOrchestrator:
    """Entry point for pull, push, bidirectional and batch synchronisation."""

    def __init__(
        self,
        client: SheetsClient,
        *,
        history: Optional[SyncHistoryStore] = None,
        snapshots: Optional[SnapshotStore] = None,
        resolver: Optional[ConflictResolver] = None,
        default_strategy: ResolutionStrategy | str = ResolutionStrategy.LOCAL,
    ) -> None:
        self.history = history or SyncHistoryStore()
        self.resolver = resolver or ConflictResolver()
        self.default_strategy = ResolutionStrategy.parse(default_strategy)
        self._puller = Puller(client, self.history, snapshots)
        self._pusher = Pusher(client, self.history)
        self._locks = KeyedLocks()
        self._summaries: Dict[Key, ConflictSummary] = {}
        self._summary_lock = threading.Lock()

    @classmethod
    def from_settings(
        cls,
        settings: SyncSettings,
        *,
        client: Optional[SheetsClient] = None,
    ) -> "SyncOrchestrator":
        if client is None:
            retry = RetryPolicy(attempts=settings.max_retry_attempts, base=settings.backoff_base_seconds)
            client = GoogleSheetsClient.from_service_account(
                settings.credential_path,
                timeout=settings.request_timeout_seconds,
                retry=retry,
            )
        resolver = ConflictResolver(
            key_fields=settings.key_fields,
            timestamp_fields=settings.timestamp_fields,
            conflict_log=ConflictLog(app_paths.logs_path("conflicts.log")),
        )
        return cls(
            client,
            history=SyncHistoryStore(settings.history_path, limit=settings.history_limit),
            snapshots=SnapshotStore(Path(settings.snapshot_dir)),
            resolver=resolver,
            default_strategy=settings.default_strategy,
        )

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------
    def _run(self, operation: str, resource_id: str, range_spec: str, func: Callable[[], T]) -> T:
        with self._locks.hold(resource_id, range_spec):
            try:
                return func()
            except SyncError as exc:
                exc.add_context(resource_id=resource_id, range=range_spec, operation=operation)
                logger.error("%s failed: %s", operation, exc)
                raise

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------
    def pull(self, resource_id: str, range_spec: str, target_label: str = "records", **options: Any) -> PullResult:
        return self._run(
            "pull",
            resource_id,
            range_spec,
            lambda: self._puller.pull(resource_id, range_spec, target_label, **options),
        )

    def push(self, resource_id: str, range_spec: str, records: Sequence[Record], **options: Any) -> PushResult:
        return self._run(
            "push",
            resource_id,
            range_spec,
            lambda: self._pusher.push(resource_id, range_spec, records, **options),
        )

    def append(self, resource_id: str, range_spec: str, records: Sequence[Record], **options: Any) -> PushResult:
        return self._run(
            "append",
            resource_id,
            range_spec,
            lambda: self._pusher.append(resource_id, range_spec, records, **options),
        )

    def update_rows(
        self,
        resource_id: str,
        range_spec: str,
        updates: Sequence[RowUpdate | Mapping[str, Any]],
    ) -> PushResult:
        return self._run(
            "update_rows",
            resource_id,
            range_spec,
            lambda: self._pusher.update_rows(resource_id, range_spec, updates),
        )

    def bidirectional(
        self,
        resource_id: str,
        range_spec: str,
        local_records: Sequence[Record],
        strategy: ResolutionStrategy | str | None = None,
        *,
        target_label: str = "records",
    ) -> BidirectionalResult:
        """Pull the remote set, resolve it against ``local_records`` and push the result.

        There is no rollback: if the push fails after the pull the remote
        side keeps its pre-sync content and the caller retries.
        """

        chosen = ResolutionStrategy.parse(strategy or self.default_strategy)

        def sync() -> BidirectionalResult:
            remote = self._puller.pull(resource_id, range_spec, target_label)
            resolution: Resolution = self.resolver.resolve(
                local_records,
                remote.records,
                chosen,
                context={"resource_id": resource_id, "range": range_spec},
            )
            self.resolver.ensure_valid_resolution(resolution.resolved, local_records, remote.records)
            summary = resolution.summary
            with self._summary_lock:
                self._summaries[(resource_id, range_spec)] = summary

            pushed = self._pusher.push(resource_id, range_spec, resolution.resolved)
            unresolved = resolution.unresolved
            if unresolved:
                logger.warning(
                    "%d conflicts on %s %s left for manual review", len(unresolved), resource_id, range_spec
                )
            return BidirectionalResult(
                push=pushed,
                summary=summary,
                strategy=chosen,
                remote_count=remote.total_records,
                unresolved=unresolved,
            )

        return self._run("bidirectional", resource_id, range_spec, sync)

    def batch_sync(self, operations: Sequence[SyncOperation | Mapping[str, Any]]) -> BatchResult:
        """Run ``operations`` in order; a failing item never stops the ones after it."""

        batch = BatchResult()
        for index, raw in enumerate(operations):
            operation_name = str(raw.type if isinstance(raw, SyncOperation) else raw.get("type", ""))
            try:
                operation = raw if isinstance(raw, SyncOperation) else SyncOperation.from_dict(raw)
                result = self._dispatch(operation)
            except Exception as exc:
                logger.warning("Batch item %d (%s) failed: %s", index, operation_name, exc)
                batch.items.append(
                    BatchItemResult(index=index, operation=operation_name, success=False, error=describe(exc))
                )
                continue
            batch.items.append(BatchItemResult(index=index, operation=operation_name, success=True, result=result))
        logger.info("Batch finished: %d succeeded, %d failed", batch.succeeded, batch.failed)
        return batch

    def _dispatch(self, operation: SyncOperation) -> Any:
        kind = operation.type.strip().lower()
        if kind == "pull":
            return self.pull(operation.resource_id, operation.range, operation.target_label)
        if kind == "push":
            return self.push(operation.resource_id, operation.range, operation.records)
        if kind == "append":
            return self.append(operation.resource_id, operation.range, operation.records)
        if kind == "update_rows":
            return self.update_rows(operation.resource_id, operation.range, operation.updates)
        if kind in {"bidirectional", "sync"}:
            return self.bidirectional(
                operation.resource_id,
                operation.range,
                operation.records,
                operation.strategy,
                target_label=operation.target_label,
            )
        raise ValueError(f"Unknown sync operation type: {operation.type}")

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------
    def get_sync_history(self, resource_id: str, range_spec: str, limit: Optional[int] = None) -> List[HistoryEntry]:
        return self.history.entries(resource_id, range_spec, limit)

    def get_all_sync_history(self) -> Dict[str, List[HistoryEntry]]:
        return self.history.all()

    def clear_sync_history(self, resource_id: str, range_spec: str) -> int:
        with self._locks.hold(resource_id, range_spec):
            removed = self.history.clear(resource_id, range_spec)
        logger.info("Cleared %d history entries for %s %s", removed, resource_id, range_spec)
        return removed

    def get_conflict_summary(self, resource_id: str, range_spec: str) -> ConflictSummary:
        """Summary of the most recent resolution on the key; empty before any sync."""

        with self._summary_lock:
            summary = self._summaries.get((resource_id, range_spec))
        return summary if summary is not None else ConflictSummary()


__all__ = [
    "BatchItemResult",
    "BatchResult",
    "BidirectionalResult",
    "KeyedLocks",
    "SyncOperation",
    "SyncOrchestrator",
]
