"""Write typed records back to a spreadsheet range."""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

from sheetsync.cells import format_cell
from sheetsync.client import SheetsClient
from sheetsync.errors import ValidationError
from sheetsync.history import SyncHistoryStore
from sheetsync.ranges import is_whole_sheet_range, row_range
from sheetsync.records import Record, is_provenance_field
from sheetsync.validation import ValidationRule, validate_records

logger = logging.getLogger(__name__)

DEFAULT_SHEET_ID = 0


@dataclass(slots=True)
class RowUpdate:
    """Replace the whole of sheet row ``row`` (1-based) with ``values``."""

    row: int
    values: List[Any]

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "RowUpdate":
        return cls(row=int(payload["row"]), values=list(payload.get("values") or []))


@dataclass(slots=True)
class SheetValidationRule:
    """Spreadsheet side data validation, e.g. restrict a column to a list."""

    values: List[Any] = field(default_factory=list)
    type: str = "ONE_OF_LIST"
    start_row_index: int = 1
    end_row_index: int = 1000
    start_column_index: int = 0
    end_column_index: int = 26
    show_custom_ui: bool = True
    strict: bool = True
    sheet_id: int = DEFAULT_SHEET_ID

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "SheetValidationRule":
        def pick(*names: str, default: Any) -> Any:
            for name in names:
                if payload.get(name) is not None:
                    return payload[name]
            return default

        return cls(
            values=list(payload.get("values") or []),
            type=str(pick("type", default="ONE_OF_LIST")),
            start_row_index=int(pick("start_row_index", "startRowIndex", default=1)),
            end_row_index=int(pick("end_row_index", "endRowIndex", default=1000)),
            start_column_index=int(pick("start_column_index", "startColumnIndex", default=0)),
            end_column_index=int(pick("end_column_index", "endColumnIndex", default=26)),
            show_custom_ui=bool(pick("show_custom_ui", "showCustomUi", default=True)),
            strict=bool(pick("strict", default=True)),
            sheet_id=int(pick("sheet_id", "sheetId", default=DEFAULT_SHEET_ID)),
        )

    def to_request(self) -> Dict[str, Any]:
        return {
            "setDataValidation": {
                "range": {
                    "sheetId": self.sheet_id,
                    "startRowIndex": self.start_row_index,
                    "endRowIndex": self.end_row_index,
                    "startColumnIndex": self.start_column_index,
                    "endColumnIndex": self.end_column_index,
                },
                "rule": {
                    "condition": {
                        "type": self.type,
                        "values": [{"userEnteredValue": format_cell(value)} for value in self.values],
                    },
                    "showCustomUi": self.show_custom_ui,
                    "strict": self.strict,
                },
            }
        }


@dataclass(slots=True)
class PushResult:
    record_count: int
    result: Any
    timestamp: datetime
    provisioning_error: Optional[str] = None
    provisioned: List[Dict[str, Any]] = field(default_factory=list)


def derive_headers(records: Sequence[Mapping[str, Any]]) -> List[str]:
    """Union of non-provenance field names in first-seen order."""

    headers: Dict[str, None] = {}
    for record in records:
        for name in record:
            if not is_provenance_field(name):
                headers.setdefault(name, None)
    return list(headers)


def records_to_rows(records: Sequence[Mapping[str, Any]]) -> Tuple[List[str], List[List[str]]]:
    headers = derive_headers(records)
    rows = [[format_cell(record.get(name)) for name in headers] for record in records]
    return headers, rows


class Pusher:
    """Format records into rows and write them through the client."""

    def __init__(self, client: SheetsClient, history: SyncHistoryStore) -> None:
        self._client = client
        self._history = history

    def _check(
        self,
        records: Sequence[Record],
        rules: Optional[Sequence[ValidationRule | Mapping[str, Any]]],
    ) -> None:
        if not rules:
            return
        report = validate_records(records, rules)
        if report.is_valid:
            return
        details = "; ".join(
            f"record {item.index}: {', '.join(item.errors)}" for item in report.invalid_records
        )
        logger.warning("Rejecting push: %d invalid records (%s)", len(report.invalid_records), details)
        raise ValidationError(
            f"Validation failed: {len(report.invalid_records)} invalid records",
            invalid_records=report.invalid_records,
        )

    def push(
        self,
        resource_id: str,
        range_spec: str,
        records: Sequence[Record],
        *,
        rules: Optional[Sequence[ValidationRule | Mapping[str, Any]]] = None,
        formatting: Optional[Sequence[Mapping[str, Any]]] = None,
        sheet_validation: Optional[Sequence[SheetValidationRule | Mapping[str, Any]]] = None,
    ) -> PushResult:
        """Overwrite ``range_spec`` with a header row followed by ``records``.

        Validation happens before anything is written.  Formatting and
        sheet validation requests are sent after the data write; if they
        fail the data stays written and the failure is reported on the
        result.
        """

        self._check(records, rules)
        logger.info("Pushing %d records to sheet %s, range %s", len(records), resource_id, range_spec)

        headers, rows = records_to_rows(records)
        if is_whole_sheet_range(range_spec):
            self._client.clear_data(resource_id, range_spec)
        values = [headers, *rows] if headers else []
        result = self._client.update_data(resource_id, range_spec, values) if values else {}

        timestamp = datetime.now(timezone.utc)
        self._history.append(resource_id, range_spec, "push", len(records), timestamp=timestamp)
        push_result = PushResult(record_count=len(records), result=result, timestamp=timestamp)

        requests: List[Dict[str, Any]] = [dict(request) for request in formatting or ()]
        for rule in sheet_validation or ():
            if not isinstance(rule, SheetValidationRule):
                rule = SheetValidationRule.from_dict(rule)
            requests.append(rule.to_request())
        if requests:
            try:
                push_result.provisioned = self._client.format_cells(resource_id, requests)
            except Exception as exc:
                logger.error("Provisioning %d requests on %s failed: %s", len(requests), resource_id, exc)
                push_result.provisioning_error = str(exc)
        return push_result

    def append(
        self,
        resource_id: str,
        range_spec: str,
        records: Sequence[Record],
        *,
        rules: Optional[Sequence[ValidationRule | Mapping[str, Any]]] = None,
    ) -> PushResult:
        """Append ``records`` below the existing rows without a header row."""

        self._check(records, rules)
        logger.info("Appending %d records to sheet %s, range %s", len(records), resource_id, range_spec)
        _headers, rows = records_to_rows(records)
        result = self._client.append_data(resource_id, range_spec, rows) if rows else {}
        timestamp = datetime.now(timezone.utc)
        self._history.append(resource_id, range_spec, "append", len(records), timestamp=timestamp)
        return PushResult(record_count=len(records), result=result, timestamp=timestamp)

    def update_rows(
        self,
        resource_id: str,
        range_spec: str,
        updates: Sequence[RowUpdate | Mapping[str, Any]],
    ) -> PushResult:
        parsed = [item if isinstance(item, RowUpdate) else RowUpdate.from_dict(item) for item in updates]
        logger.info("Updating %d rows in sheet %s", len(parsed), resource_id)
        batch = [
            {
                "range": row_range(range_spec, update.row),
                "values": [[format_cell(value) for value in update.values]],
            }
            for update in parsed
        ]
        result = self._client.batch_update(resource_id, batch)
        timestamp = datetime.now(timezone.utc)
        self._history.append(resource_id, range_spec, "update_rows", len(parsed), timestamp=timestamp)
        return PushResult(record_count=len(parsed), result=result, timestamp=timestamp)


__all__ = [
    "DEFAULT_SHEET_ID",
    "PushResult",
    "Pusher",
    "RowUpdate",
    "SheetValidationRule",
    "derive_headers",
    "records_to_rows",
]
