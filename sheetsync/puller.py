"""Pull tabular data from a spreadsheet range into typed records.

The first row of the range holds the headers.  Each header is sanitised into
a field name and every cell is run through
:func:`sheetsync.cells.parse_cell_value`.  Projection, filtering, ordering,
pagination and validation are options of a single :meth:`Puller.pull` call
rather than separate code paths.
"""
from __future__ import annotations

import functools
import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from enum import Enum
from typing import Any, Iterable, List, Mapping, Optional, Sequence

from sheetsync.cells import parse_cell_value, to_instant
from sheetsync.client import SheetsClient
from sheetsync.errors import SyncError
from sheetsync.history import SyncHistoryStore
from sheetsync.records import Record, sanitize_field_name
from sheetsync.snapshots import SnapshotStore
from sheetsync.validation import InvalidRecord, ValidationRule, validate_records

logger = logging.getLogger(__name__)

SOURCE_TAG = "google_sheets"
HEADER_ROWS = 1


class Operator(str, Enum):
    EQ = "="
    NE = "!="
    GT = ">"
    GE = ">="
    LT = "<"
    LE = "<="
    CONTAINS = "contains"
    STARTS_WITH = "startsWith"
    ENDS_WITH = "endsWith"


@dataclass(slots=True)
class Condition:
    field: str
    operator: Operator
    value: Any

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "Condition":
        try:
            operator = Operator(payload.get("operator", "="))
        except ValueError:
            raise ValueError(f"Unsupported filter operator: {payload.get('operator')}") from None
        return cls(field=str(payload["field"]), operator=operator, value=payload.get("value"))


@dataclass(slots=True)
class OrderBy:
    field: str
    descending: bool = False

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "OrderBy":
        direction = str(payload.get("direction", "ASC")).upper()
        if direction not in {"ASC", "DESC"}:
            raise ValueError(f"Unsupported sort direction: {payload.get('direction')}")
        return cls(field=str(payload["field"]), descending=direction == "DESC")


@dataclass(slots=True)
class PullResult:
    record_count: int
    records: List[Record]
    timestamp: datetime
    total_records: int = 0
    invalid_records: List[InvalidRecord] = field(default_factory=list)
    columns: Optional[List[str]] = None


def transform_sheet_data(
    values: Sequence[Sequence[Any]],
    target_label: str,
    *,
    fetched_at: Optional[datetime] = None,
) -> List[Record]:
    """Turn a row-major cell matrix whose first row holds headers into records."""

    if not values:
        return []
    fetched_at = fetched_at or datetime.now(timezone.utc)
    headers = list(values[0])
    fields = [sanitize_field_name(header) if header not in (None, "") else "" for header in headers]

    records: List[Record] = []
    for offset, row in enumerate(values[HEADER_ROWS:]):
        row_index = offset + HEADER_ROWS + 1
        record: Record = {
            "_id": f"{target_label}_{row_index}",
            "_source": SOURCE_TAG,
            "_row_index": row_index,
            "_last_updated": fetched_at,
        }
        for column, name in enumerate(fields):
            if not name or column >= len(row):
                continue
            record[name] = parse_cell_value(row[column])
        records.append(record)
    return records


def project_columns(values: Sequence[Sequence[Any]], columns: Sequence[str]) -> List[List[Any]]:
    """Keep only ``columns`` (matched against the raw header row), in the requested order."""

    if not values:
        return []
    headers = list(values[0])
    indices = [headers.index(column) for column in columns if column in headers]
    if not indices:
        raise SyncError(f"No matching columns found for {', '.join(columns)}")
    return [[row[index] if index < len(row) else None for index in indices] for row in values]


def _text(value: Any) -> str:
    if isinstance(value, (date, datetime)):
        return value.isoformat()
    return str(value).lower()


def _comparable(value: Any) -> Any:
    if isinstance(value, (date, datetime)):
        return to_instant(value)
    return value


def matches(record: Mapping[str, Any], condition: Condition) -> bool:
    value = record.get(condition.field)
    expected = condition.value
    operator = condition.operator

    if operator is Operator.EQ:
        return value == expected
    if operator is Operator.NE:
        return value != expected

    if operator in (Operator.CONTAINS, Operator.STARTS_WITH, Operator.ENDS_WITH):
        if value is None or value == "" or expected is None:
            return False
        haystack = _text(value)
        needle = str(expected).lower()
        if operator is Operator.CONTAINS:
            return needle in haystack
        if operator is Operator.STARTS_WITH:
            return haystack.startswith(needle)
        return haystack.endswith(needle)

    if value is None or expected is None:
        return False
    left, right = _comparable(value), _comparable(expected)
    try:
        if operator is Operator.GT:
            return left > right
        if operator is Operator.GE:
            return left >= right
        if operator is Operator.LT:
            return left < right
        if operator is Operator.LE:
            return left <= right
    except TypeError:
        return False
    raise ValueError(f"Unhandled operator: {operator}")


def apply_where(
    records: Iterable[Record],
    conditions: Sequence[Condition | Mapping[str, Any]],
) -> List[Record]:
    parsed = [item if isinstance(item, Condition) else Condition.from_dict(item) for item in conditions]
    return [record for record in records if all(matches(record, condition) for condition in parsed)]


def _compare_values(left: Any, right: Any) -> int:
    if left is None and right is None:
        return 0
    # None sorts after every value
    if left is None:
        return 1
    if right is None:
        return -1
    left, right = _comparable(left), _comparable(right)
    try:
        if left < right:
            return -1
        if left > right:
            return 1
    except TypeError:
        return 0
    return 0


def apply_order_by(records: Sequence[Record], order_by: Sequence[OrderBy | Mapping[str, Any]]) -> List[Record]:
    """Sort by several keys; records that tie on every key keep their order."""

    parsed = [item if isinstance(item, OrderBy) else OrderBy.from_dict(item) for item in order_by]

    def compare(left: Record, right: Record) -> int:
        for order in parsed:
            left_value, right_value = left.get(order.field), right.get(order.field)
            result = _compare_values(left_value, right_value)
            if not result:
                continue
            # missing values stay last in both directions
            if order.descending and left_value is not None and right_value is not None:
                return -result
            return result
        return 0

    return sorted(records, key=functools.cmp_to_key(compare))


def paginate(records: Sequence[Record], *, offset: int = 0, limit: Optional[int] = None) -> List[Record]:
    if offset < 0:
        raise ValueError("offset must be >= 0")
    if limit is not None and limit < 0:
        raise ValueError("limit must be >= 0")
    window = list(records[offset:])
    if limit is not None:
        window = window[:limit]
    return window


class Puller:
    """Fetch a range, transform it and record the pull."""

    def __init__(
        self,
        client: SheetsClient,
        history: SyncHistoryStore,
        snapshots: Optional[SnapshotStore] = None,
    ) -> None:
        self._client = client
        self._history = history
        self._snapshots = snapshots

    def pull(
        self,
        resource_id: str,
        range_spec: str,
        target_label: str = "records",
        *,
        columns: Optional[Sequence[str]] = None,
        where: Optional[Sequence[Condition | Mapping[str, Any]]] = None,
        order_by: Optional[Sequence[OrderBy | Mapping[str, Any]]] = None,
        offset: int = 0,
        limit: Optional[int] = None,
        rules: Optional[Sequence[ValidationRule | Mapping[str, Any]]] = None,
    ) -> PullResult:
        logger.info("Pulling data from sheet %s, range %s", resource_id, range_spec)
        sheet_data = self._client.get_data(resource_id, range_spec)
        values = sheet_data.get("values") or []

        if columns:
            values = project_columns(values, columns)

        fetched_at = datetime.now(timezone.utc)
        records = transform_sheet_data(values, target_label, fetched_at=fetched_at)

        if self._snapshots is not None:
            self._snapshots.save(resource_id, range_spec, records, timestamp=fetched_at)
        operation = "pull_columns" if columns else "pull"
        self._history.append(resource_id, range_spec, operation, len(records), timestamp=fetched_at)

        selected: List[Record] = records
        if where:
            selected = apply_where(selected, where)
        if order_by:
            selected = apply_order_by(selected, order_by)
        if offset or limit is not None:
            selected = paginate(selected, offset=offset, limit=limit)

        invalid: List[InvalidRecord] = []
        if rules:
            report = validate_records(selected, rules)
            selected = report.valid_records
            invalid = report.invalid_records
            if invalid:
                logger.warning(
                    "%d of %d pulled records failed validation (%s, %s)",
                    len(invalid),
                    report.total_records,
                    resource_id,
                    range_spec,
                )

        logger.info("Pulled %d records from %s %s", len(selected), resource_id, range_spec)
        return PullResult(
            record_count=len(selected),
            records=selected,
            timestamp=fetched_at,
            total_records=len(records),
            invalid_records=invalid,
            columns=list(columns) if columns else None,
        )


__all__ = [
    "Condition",
    "Operator",
    "OrderBy",
    "PullResult",
    "Puller",
    "apply_order_by",
    "apply_where",
    "matches",
    "paginate",
    "project_columns",
    "sanitize_field_name",
    "transform_sheet_data",
]
