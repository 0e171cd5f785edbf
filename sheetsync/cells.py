"""Cell value typing for the spreadsheet boundary.

Raw cells arrive from the Sheets API as strings.  They are classified into a
closed set of :class:`CellType` members when pulling and turned back into
strings when pushing.  Both tables dispatch on :func:`cell_type_of` so a new
member cannot silently fall through to a default branch.
"""
from __future__ import annotations

import json
import math
import re
from datetime import date, datetime, timezone
from enum import Enum
from typing import Any, List, Optional, Sequence


class CellType(Enum):
    NULL = "NULL"
    NUMBER = "NUMBER"
    BOOL = "BOOL"
    DATE = "DATE"
    STRING = "STRING"
    COMPOSITE = "COMPOSITE"


# Formats tried after ISO-8601 when inferring dates from user typed cells.
_DATE_FORMATS: Sequence[str] = (
    "%m/%d/%Y",
    "%m/%d/%Y %H:%M",
    "%m/%d/%Y %H:%M:%S",
    "%Y/%m/%d",
    "%d %b %Y",
    "%d %B %Y",
    "%b %d, %Y",
    "%B %d, %Y",
)

_TRUE = "true"
_FALSE = "false"


def cell_type_of(value: Any) -> CellType:
    """Classify an already parsed Python value."""

    if value is None:
        return CellType.NULL
    # bool is a subclass of int, so it has to be tested first
    if isinstance(value, bool):
        return CellType.BOOL
    if isinstance(value, (int, float)):
        return CellType.NUMBER
    if isinstance(value, (date, datetime)):
        return CellType.DATE
    if isinstance(value, str):
        return CellType.STRING
    if isinstance(value, (dict, list, tuple)):
        return CellType.COMPOSITE
    return CellType.STRING


# ASCII decimal notation only: no digit separators, no non-ASCII digits
_NUMBER_RE = re.compile(r"[+-]?(?:\d+(?:\.\d*)?|\.\d+)(?:[eE][+-]?\d+)?", re.ASCII)


def _parse_number(text: str) -> Optional[float | int]:
    if not _NUMBER_RE.fullmatch(text):
        return None
    try:
        number = float(text)
    except ValueError:
        return None
    if not math.isfinite(number):
        return None
    try:
        return int(text)
    except ValueError:
        return number


def parse_datetime(text: str) -> Optional[date | datetime]:
    """Return a ``date`` or ``datetime`` for ``text`` or ``None``.

    Pure calendar dates become :class:`~datetime.date`; anything with a time
    component becomes :class:`~datetime.datetime`.
    """

    candidate = text.strip()
    if not candidate:
        return None
    iso_candidate = candidate[:-1] + "+00:00" if candidate.endswith(("Z", "z")) else candidate
    try:
        parsed = datetime.fromisoformat(iso_candidate)
    except ValueError:
        parsed = None
    if parsed is not None:
        if len(candidate) == 10 and "T" not in candidate and " " not in candidate:
            return parsed.date()
        return parsed
    for fmt in _DATE_FORMATS:
        try:
            parsed = datetime.strptime(candidate, fmt)
        except ValueError:
            continue
        if "%H" in fmt:
            return parsed
        return parsed.date()
    return None


def parse_cell_value(raw: Any) -> Any:
    """Infer the typed value of a raw cell.

    The order is fixed: empty, number, boolean, date, string.
    """

    if raw is None:
        return None
    if not isinstance(raw, str):
        # The API can hand back numbers or booleans with UNFORMATTED_VALUE.
        if cell_type_of(raw) in (CellType.NUMBER, CellType.BOOL):
            return raw
        raw = str(raw)
    if raw == "":
        return None

    number = _parse_number(raw.strip()) if raw.strip() else None
    if number is not None:
        return number

    lowered = raw.strip().lower()
    if lowered == _TRUE:
        return True
    if lowered == _FALSE:
        return False

    parsed = parse_datetime(raw)
    if parsed is not None:
        return parsed

    return str(raw)


def _format_date(value: date | datetime) -> str:
    if isinstance(value, datetime):
        if value.tzinfo is not None:
            value = value.astimezone(timezone.utc)
        return value.date().isoformat()
    return value.isoformat()


def _json_default(value: Any) -> str:
    if isinstance(value, (date, datetime)):
        return value.isoformat()
    return str(value)


def format_cell(value: Any) -> str:
    """Format ``value`` for a RAW Sheets write."""

    cell_type = cell_type_of(value)
    if cell_type is CellType.NULL:
        return ""
    if cell_type is CellType.DATE:
        return _format_date(value)
    if cell_type is CellType.BOOL:
        return "TRUE" if value else "FALSE"
    if cell_type is CellType.COMPOSITE:
        return json.dumps(value, separators=(",", ":"), default=_json_default)
    if cell_type is CellType.NUMBER:
        return str(value)
    if cell_type is CellType.STRING:
        return str(value)
    raise ValueError(f"Unhandled cell type: {cell_type}")


def to_instant(value: Any) -> Optional[datetime]:
    """Return ``value`` as an aware UTC datetime, or ``None`` if it is not a time.

    Naive datetimes are taken as UTC, dates as midnight UTC and numbers as
    POSIX seconds.
    """

    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, datetime):
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day, tzinfo=timezone.utc)
    if isinstance(value, (int, float)):
        try:
            return datetime.fromtimestamp(value, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None
    if isinstance(value, str):
        parsed = parse_datetime(value)
        if parsed is None:
            return None
        return to_instant(parsed)
    return None


def column_letter(index: int) -> str:
    """Return the spreadsheet column letter for a 1-indexed column index."""

    if index < 1:
        raise ValueError("Column index must be >= 1")
    result = []
    while index > 0:
        index, remainder = divmod(index - 1, 26)
        result.append(chr(65 + remainder))
    return "".join(reversed(result))


def chunk_rows(rows: Sequence[Any], *, max_size: int) -> List[List[Any]]:
    """Split ``rows`` into lists holding at most ``max_size`` entries."""

    if max_size <= 0:
        raise ValueError("max_size must be positive")
    return [list(rows[index : index + max_size]) for index in range(0, len(rows), max_size)]


__all__ = [
    "CellType",
    "cell_type_of",
    "chunk_rows",
    "column_letter",
    "format_cell",
    "parse_cell_value",
    "parse_datetime",
    "to_instant",
]
