"""Conflict detection and whole-record resolution strategies.

Conflicts are detected by keying both record sets and diffing every key
present on both sides.  Exactly one strategy is applied to the whole
conflict set; records present on one side only pass through unchanged.
"""
from __future__ import annotations

import json
import logging
import threading
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Deque, Dict, List, Mapping, Optional, Sequence

from sheetsync.cells import to_instant
from sheetsync.errors import ConflictUnresolvedError, DataLossError, DuplicateKeyError
from sheetsync.records import (
    DEFAULT_KEY_FIELDS,
    Conflict,
    Record,
    align_records,
    conflict_type_of,
    diff,
    index_by_key,
    is_provenance_field,
    key_of,
    sanitize_field_name,
)

logger = logging.getLogger(__name__)

DEFAULT_TIMESTAMP_FIELDS: Sequence[str] = (
    "updatedAt",
    "updated_at",
    "modifiedAt",
    "modified_at",
    "lastModified",
    "last_modified",
    "timestamp",
    "_last_updated",
)

MEDIUM_SEVERITY_THRESHOLD = 10
HIGH_SEVERITY_THRESHOLD = 50


class ResolutionStrategy(str, Enum):
    LOCAL = "local"
    REMOTE = "remote"
    MERGE = "merge"
    TIMESTAMP = "timestamp"
    MANUAL = "manual"

    @classmethod
    def parse(cls, value: "ResolutionStrategy | str") -> "ResolutionStrategy":
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            raise ValueError(f"Unknown conflict resolution strategy: {value}") from None


@dataclass(slots=True)
class ConflictSummary:
    total: int = 0
    by_type: Dict[str, int] = field(default_factory=dict)
    by_field: Dict[str, int] = field(default_factory=dict)
    severity: str = "low"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total": self.total,
            "by_type": dict(self.by_type),
            "by_field": dict(self.by_field),
            "severity": self.severity,
        }


def conflict_summary(conflicts: Sequence[Conflict]) -> ConflictSummary:
    summary = ConflictSummary(total=len(conflicts))
    for conflict in conflicts:
        type_name = conflict.conflict_type.value
        summary.by_type[type_name] = summary.by_type.get(type_name, 0) + 1
        for name in conflict.fields:
            summary.by_field[name] = summary.by_field.get(name, 0) + 1
    if summary.total > HIGH_SEVERITY_THRESHOLD:
        summary.severity = "high"
    elif summary.total >= MEDIUM_SEVERITY_THRESHOLD:
        summary.severity = "medium"
    return summary


@dataclass(slots=True)
class Resolution:
    resolved: List[Record]
    conflicts: List[Conflict]
    strategy: ResolutionStrategy
    resolved_at: datetime

    @property
    def summary(self) -> ConflictSummary:
        return conflict_summary(self.conflicts)

    @property
    def unresolved(self) -> List[Conflict]:
        if self.strategy is ResolutionStrategy.MANUAL:
            return list(self.conflicts)
        return []

    def raise_for_unresolved(self) -> None:
        pending = self.unresolved
        if pending:
            raise ConflictUnresolvedError(
                f"{len(pending)} conflicts require manual review",
                conflicts=pending,
            )


@dataclass(slots=True)
class ResolutionReport:
    is_valid: bool = True
    issues: List[str] = field(default_factory=list)
    lost_records: int = 0
    duplicate_keys: List[str] = field(default_factory=list)


# ---------------------------------------------------------------------------
# Strategies
# ---------------------------------------------------------------------------
class Strategy:
    """Map ``(local, remote, conflicts)`` to a resolved record list."""

    name: ResolutionStrategy

    def apply(
        self,
        resolver: "ConflictResolver",
        local: Sequence[Record],
        remote: Sequence[Record],
        conflicts: Sequence[Conflict],
    ) -> List[Record]:
        raise NotImplementedError


def _key_positions(records: Sequence[Record], key_fields: Sequence[str]) -> Dict[str, int]:
    """Map each key to the position of its last record, the one :func:`index_by_key` keeps."""

    positions: Dict[str, int] = {}
    for position, record in enumerate(records):
        key = key_of(record, key_fields)
        if key is not None:
            positions[key] = position
    return positions


class LocalStrategy(Strategy):
    name = ResolutionStrategy.LOCAL

    def apply(self, resolver, local, remote, conflicts):
        logger.info("Resolving %d conflicts using local data", len(conflicts))
        return [dict(record) for record in local]


class RemoteStrategy(Strategy):
    name = ResolutionStrategy.REMOTE

    def apply(self, resolver, local, remote, conflicts):
        logger.info("Resolving %d conflicts using remote data", len(conflicts))
        return [dict(record) for record in remote]


class MergeStrategy(Strategy):
    """Fill local gaps from the matching remote record.

    A local value that is present is never replaced, even when the remote
    value differs.  Remote records without a local counterpart are appended.
    """

    name = ResolutionStrategy.MERGE

    def apply(self, resolver, local, remote, conflicts):
        logger.info("Resolving %d conflicts by merging", len(conflicts))
        key_fields = resolver.key_fields
        merged = [dict(record) for record in local]
        positions = _key_positions(local, key_fields)
        for remote_record in remote:
            key = key_of(remote_record, key_fields)
            if key is not None and key in positions:
                position = positions[key]
                merged[position] = merge_records(merged[position], remote_record)
            else:
                merged.append(dict(remote_record))
        return merged


class TimestampStrategy(Strategy):
    """Keep whichever side of each conflict was modified last; ties keep local."""

    name = ResolutionStrategy.TIMESTAMP

    def apply(self, resolver, local, remote, conflicts):
        logger.info("Resolving %d conflicts using timestamp", len(conflicts))
        key_fields = resolver.key_fields
        now = datetime.now(timezone.utc)
        resolved = [dict(record) for record in local]
        positions = _key_positions(local, key_fields)
        for conflict in conflicts:
            local_time = resolver.record_timestamp(conflict.local_record, default=now)
            remote_time = resolver.record_timestamp(conflict.remote_record, default=now)
            if remote_time <= local_time:
                continue
            position = positions.get(conflict.key)
            if position is not None:
                resolved[position] = dict(conflict.remote_record)
        return resolved


class ManualStrategy(Strategy):
    """Keep local values and flag every conflicting record for human review."""

    name = ResolutionStrategy.MANUAL

    def apply(self, resolver, local, remote, conflicts):
        logger.warning("Manual resolution required for %d conflicts", len(conflicts))
        by_key = {conflict.key: conflict for conflict in conflicts}
        resolved: List[Record] = []
        for record in local:
            conflict = by_key.get(key_of(record, resolver.key_fields))
            if conflict is None:
                resolved.append(dict(record))
                continue
            annotated = dict(record)
            annotated["_has_conflict"] = True
            annotated["_conflict_id"] = conflict.key
            annotated["_conflict_type"] = conflict.conflict_type.value
            annotated["_conflict_fields"] = conflict.fields
            resolved.append(annotated)
        return resolved


STRATEGIES: Mapping[ResolutionStrategy, Strategy] = {
    strategy.name: strategy
    for strategy in (
        LocalStrategy(),
        RemoteStrategy(),
        MergeStrategy(),
        TimestampStrategy(),
        ManualStrategy(),
    )
}

_missing = set(ResolutionStrategy) - set(STRATEGIES)
if _missing:  # pragma: no cover - guards future enum additions
    raise RuntimeError(f"No implementation for strategies: {sorted(item.value for item in _missing)}")


def merge_records(local: Mapping[str, Any], remote: Mapping[str, Any]) -> Record:
    """Return ``local`` with every missing or ``None`` field copied from ``remote``."""

    merged = dict(local)
    for name, value in remote.items():
        if merged.get(name) is None:
            merged[name] = value
    return merged


# ---------------------------------------------------------------------------
# Conflict log
# ---------------------------------------------------------------------------
class ConflictLog:
    """Keep recent conflicts in memory and append each one to a JSON lines log."""

    def __init__(self, path: Optional[Path] = None, *, maxlen: int = 50) -> None:
        self._path = path
        self._entries: Deque[Dict[str, Any]] = deque(maxlen=maxlen)
        self._lock = threading.Lock()
        self._file_logger: Optional[logging.Logger] = None

    def _logger(self) -> Optional[logging.Logger]:
        if self._path is None:
            return None
        if self._file_logger is None:
            file_logger = logging.getLogger(f"sheetsync.conflicts.{self._path}")
            file_logger.propagate = False
            file_logger.setLevel(logging.INFO)
            if not file_logger.handlers:
                self._path.parent.mkdir(parents=True, exist_ok=True)
                handler = logging.FileHandler(self._path, encoding="utf-8")
                handler.setFormatter(logging.Formatter("%(asctime)s [%(levelname)s] %(message)s"))
                file_logger.addHandler(handler)
            self._file_logger = file_logger
        return self._file_logger

    def record(self, conflict: Conflict, *, strategy: str, context: Optional[Mapping[str, Any]] = None) -> None:
        payload: Dict[str, Any] = {
            "key": conflict.key,
            "type": conflict.conflict_type.value,
            "fields": {
                difference.field: [difference.local_value, difference.remote_value]
                for difference in conflict.differences
            },
            "strategy": strategy,
            "timestamp": datetime.now(timezone.utc).replace(microsecond=0).isoformat(),
        }
        if context:
            payload.update(dict(context))

        file_logger = self._logger()
        if file_logger is not None:
            file_logger.info("%s", json.dumps(payload, ensure_ascii=False, sort_keys=True, default=str))

        with self._lock:
            self._entries.appendleft(payload)

    def recent(self, limit: int = 10) -> List[Dict[str, Any]]:
        with self._lock:
            return list(self._entries)[:limit]

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()


def _field_value(record: Mapping[str, Any], name: str) -> Any:
    if name in record:
        return record[name]
    if is_provenance_field(name):
        return None
    wanted = sanitize_field_name(name)
    for field_name, value in record.items():
        if not is_provenance_field(field_name) and sanitize_field_name(field_name) == wanted:
            return value
    return None


# ---------------------------------------------------------------------------
# Resolver
# ---------------------------------------------------------------------------
class ConflictResolver:
    """Detect conflicts between two record sets and resolve them."""

    def __init__(
        self,
        *,
        key_fields: Sequence[str] = DEFAULT_KEY_FIELDS,
        timestamp_fields: Sequence[str] = DEFAULT_TIMESTAMP_FIELDS,
        conflict_log: Optional[ConflictLog] = None,
    ) -> None:
        self.key_fields = tuple(key_fields)
        self.timestamp_fields = tuple(timestamp_fields)
        self.conflict_log = conflict_log

    def key_of(self, record: Mapping[str, Any]) -> Optional[str]:
        return key_of(record, self.key_fields)

    def detect_conflicts(self, local: Sequence[Record], remote: Sequence[Record]) -> List[Conflict]:
        """Return one conflict per key present on both sides with differing fields.

        Remote field names are first aligned to the local spelling.
        """

        return self._conflicts_between(local, align_records(remote, local))

    def _conflicts_between(self, local: Sequence[Record], remote: Sequence[Record]) -> List[Conflict]:
        local_index = index_by_key(local, self.key_fields)
        remote_index = index_by_key(remote, self.key_fields)
        conflicts: List[Conflict] = []
        for key, local_record in local_index.items():
            remote_record = remote_index.get(key)
            if remote_record is None:
                continue
            differences = diff(local_record, remote_record)
            if differences:
                conflicts.append(
                    Conflict(
                        key=key,
                        local_record=local_record,
                        remote_record=remote_record,
                        differences=differences,
                        conflict_type=conflict_type_of(differences),
                    )
                )
        return conflicts

    def record_timestamp(self, record: Mapping[str, Any], *, default: datetime) -> datetime:
        for name in self.timestamp_fields:
            value = _field_value(record, name)
            if value is None or value == "":
                continue
            instant = to_instant(value)
            if instant is not None:
                return instant
        return default

    def resolve(
        self,
        local: Sequence[Record],
        remote: Sequence[Record],
        strategy: ResolutionStrategy | str = ResolutionStrategy.LOCAL,
        *,
        context: Optional[Mapping[str, Any]] = None,
    ) -> Resolution:
        chosen = ResolutionStrategy.parse(strategy)
        # resolved records keep the local field spelling
        remote = align_records(remote, local)
        conflicts = self._conflicts_between(local, remote)
        resolved_at = datetime.now(timezone.utc)

        if not conflicts:
            logger.debug("No conflicts between %d local and %d remote records", len(local), len(remote))
            return Resolution(
                resolved=[dict(record) for record in local],
                conflicts=[],
                strategy=chosen,
                resolved_at=resolved_at,
            )

        logger.info("Resolving %d conflicts using strategy %s", len(conflicts), chosen.value)
        if self.conflict_log is not None:
            for conflict in conflicts:
                self.conflict_log.record(conflict, strategy=chosen.value, context=context)

        resolved = STRATEGIES[chosen].apply(self, local, remote, conflicts)
        return Resolution(resolved=resolved, conflicts=conflicts, strategy=chosen, resolved_at=resolved_at)

    def validate_resolved_data(
        self,
        resolved: Sequence[Record],
        local: Sequence[Record],
        remote: Sequence[Record] = (),
    ) -> ResolutionReport:
        report = ResolutionReport()

        if len(resolved) < len(local):
            report.lost_records = len(local) - len(resolved)
            report.issues.append("Data loss detected: fewer records in resolved data")
            report.is_valid = False

        seen = set()
        for record in resolved:
            key = self.key_of(record)
            if key is None:
                continue
            if key in seen:
                report.duplicate_keys.append(key)
                report.issues.append(f"Duplicate key detected: {key}")
                report.is_valid = False
            seen.add(key)
        return report

    def ensure_valid_resolution(
        self,
        resolved: Sequence[Record],
        local: Sequence[Record],
        remote: Sequence[Record] = (),
    ) -> ResolutionReport:
        report = self.validate_resolved_data(resolved, local, remote)
        if report.lost_records:
            raise DataLossError(
                f"Resolved data holds {len(resolved)} records but {len(local)} were supplied locally",
                local_count=len(local),
                resolved_count=len(resolved),
            )
        if report.duplicate_keys:
            raise DuplicateKeyError(
                f"Resolved data contains duplicate keys: {', '.join(report.duplicate_keys)}",
                keys=report.duplicate_keys,
            )
        return report


__all__ = [
    "ConflictLog",
    "ConflictResolver",
    "ConflictSummary",
    "DEFAULT_TIMESTAMP_FIELDS",
    "Resolution",
    "ResolutionReport",
    "ResolutionStrategy",
    "STRATEGIES",
    "Strategy",
    "conflict_summary",
    "merge_records",
]
