"""A1 range helpers.

Worksheet titles are quoted according to the Sheets A1 rules so that titles
containing spaces or apostrophes never produce "Unable to parse range"
errors.
"""
from __future__ import annotations

import re
from typing import Tuple

_SIMPLE_TITLE_RE = re.compile(r"^[A-Za-z0-9_]+$")
_COLUMN_SPAN_RE = re.compile(r"^[A-Za-z]+:[A-Za-z]+$")
_ROW_SPAN_RE = re.compile(r"^\d+:\d*$")
_CELL_SPAN_RE = re.compile(r"^[A-Za-z]{1,3}\d*:[A-Za-z]{0,3}\d*$")
_CELL_RE = re.compile(r"^[A-Za-z]{1,3}\d+$")


def strip_title_quotes(title: str) -> str:
    """Return ``title`` without wrapping single or double quotes."""

    cleaned = (title or "").strip()
    if len(cleaned) >= 2 and cleaned[0] == cleaned[-1] and cleaned[0] in {"'", '"'}:
        cleaned = cleaned[1:-1].replace("''", "'")
    return cleaned


def quote_title(title: str) -> str:
    """Return a worksheet title safely formatted for A1 notation."""

    normalised = strip_title_quotes(title)
    if not normalised:
        return "''"
    if _SIMPLE_TITLE_RE.fullmatch(normalised):
        return normalised
    escaped = normalised.replace("'", "''")
    return f"'{escaped}'"


def split_range(range_spec: str) -> Tuple[str, str]:
    """Split ``range_spec`` into ``(title, cells)``.

    A range without ``!`` is treated as a bare worksheet title when it does
    not look like a cell reference.
    """

    spec = (range_spec or "").strip()
    if "!" in spec:
        title, cells = spec.rsplit("!", 1)
        return strip_title_quotes(title), cells.strip()
    if _ROW_SPAN_RE.fullmatch(spec) or _CELL_SPAN_RE.fullmatch(spec) or _CELL_RE.fullmatch(spec):
        return "", spec
    return strip_title_quotes(spec), ""


def a1_range(title: str, cells: str) -> str:
    if not title:
        return cells
    if not cells:
        return quote_title(title)
    return f"{quote_title(title)}!{cells}"


def is_whole_sheet_range(range_spec: str) -> bool:
    """Return ``True`` when ``range_spec`` addresses whole columns or rows.

    Writes to such ranges replace the sheet content, so the destination is
    cleared first to remove rows left over from a longer previous write.
    """

    _title, cells = split_range(range_spec)
    if not cells:
        return True
    return bool(_COLUMN_SPAN_RE.fullmatch(cells) or _ROW_SPAN_RE.fullmatch(cells))


def row_range(range_spec: str, row_index: int) -> str:
    """Return the A1 range covering the whole of ``row_index`` on the sheet of ``range_spec``."""

    if row_index < 1:
        raise ValueError("Row index must be >= 1")
    title, _cells = split_range(range_spec)
    return a1_range(title, f"{row_index}:{row_index}")


def storage_token(value: str) -> str:
    """Return ``value`` with every non alphanumeric character replaced by ``_``."""

    return re.sub(r"[^A-Za-z0-9]", "_", value or "")


__all__ = [
    "a1_range",
    "is_whole_sheet_range",
    "quote_title",
    "row_range",
    "split_range",
    "storage_token",
    "strip_title_quotes",
]
