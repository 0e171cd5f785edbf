"""Exception hierarchy shared by the synchronisation engine."""
from __future__ import annotations

from typing import Any, Dict, List, Optional, Sequence


class SyncError(Exception):
    """Base exception for synchronisation failures.

    ``resource_id``, ``range`` and ``operation`` are filled in by the
    orchestrator before an error propagates so callers know what to retry.
    """

    def __init__(
        self,
        message: str,
        *,
        resource_id: Optional[str] = None,
        range: Optional[str] = None,  # noqa: A002 - mirrors the API argument name
        operation: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.resource_id = resource_id
        self.range = range
        self.operation = operation

    def add_context(self, *, resource_id: str, range: str, operation: str) -> "SyncError":  # noqa: A002
        if self.resource_id is None:
            self.resource_id = resource_id
        if self.range is None:
            self.range = range
        if self.operation is None:
            self.operation = operation
        return self

    def __str__(self) -> str:
        context = [
            f"{name}={value}"
            for name, value in (
                ("operation", self.operation),
                ("resource", self.resource_id),
                ("range", self.range),
            )
            if value
        ]
        if not context:
            return self.message
        return f"{self.message} ({', '.join(context)})"


class TransientIOError(SyncError):
    """Raised when the remote API stays unreachable or rate limited after retries."""


class SheetsApiError(SyncError):
    """Raised when the Sheets API rejects a request with a non-retriable error."""


class ValidationError(SyncError):
    """Raised when records fail their declared validation rules."""

    def __init__(self, message: str, invalid_records: Sequence[Any] = (), **kwargs: Any) -> None:
        super().__init__(message, **kwargs)
        self.invalid_records: List[Any] = list(invalid_records)


class ConflictUnresolvedError(SyncError):
    """Raised on request when the manual strategy left conflicts for review."""

    def __init__(self, message: str, conflicts: Sequence[Any] = (), **kwargs: Any) -> None:
        super().__init__(message, **kwargs)
        self.conflicts: List[Any] = list(conflicts)


class DataLossError(SyncError):
    """Raised when a resolved set holds fewer records than the local input."""

    def __init__(self, message: str, *, local_count: int, resolved_count: int, **kwargs: Any) -> None:
        super().__init__(message, **kwargs)
        self.local_count = local_count
        self.resolved_count = resolved_count


class DuplicateKeyError(SyncError):
    """Raised when a resolved set contains two records with the same key."""

    def __init__(self, message: str, keys: Sequence[str] = (), **kwargs: Any) -> None:
        super().__init__(message, **kwargs)
        self.keys: List[str] = list(keys)


def describe(exc: BaseException) -> Dict[str, Any]:
    """Return a JSON friendly description of ``exc`` for batch reports."""

    payload: Dict[str, Any] = {"type": type(exc).__name__, "message": str(exc)}
    if isinstance(exc, SyncError):
        payload["message"] = exc.message
        for attribute in ("resource_id", "range", "operation"):
            value = getattr(exc, attribute)
            if value is not None:
                payload[attribute] = value
    return payload


__all__ = [
    "ConflictUnresolvedError",
    "DataLossError",
    "DuplicateKeyError",
    "SheetsApiError",
    "SyncError",
    "TransientIOError",
    "ValidationError",
    "describe",
]
