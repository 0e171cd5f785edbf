"""Record identity and field level difference detection.

A record is a plain ``dict`` describing one logical row.  Fields whose name
starts with :data:`PROVENANCE_PREFIX` carry bookkeeping (where the row came
from, when it was fetched, conflict annotations) and never take part in
identity, diffing or header derivation.
"""
from __future__ import annotations

import hashlib
import json
import re
from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence

from sheetsync.cells import to_instant

PROVENANCE_PREFIX = "_"

DEFAULT_KEY_FIELDS: Sequence[str] = ("id", "student_id", "roll_number", "email")

Record = Dict[str, Any]

_NON_ALNUM_RE = re.compile(r"[^a-z0-9]+")


class ChangeKind(str, Enum):
    ADDED = "added"
    REMOVED = "removed"
    MODIFIED = "modified"


class ConflictType(str, Enum):
    STRUCTURAL = "structural"
    DATA = "data"
    MIXED = "mixed"


@dataclass(slots=True)
class FieldDifference:
    """One field that differs between a local and a remote record."""

    field: str
    local_value: Any
    remote_value: Any
    change: ChangeKind


@dataclass(slots=True)
class Conflict:
    """A pair of same-keyed records with at least one field difference."""

    key: str
    local_record: Record
    remote_record: Record
    differences: List[FieldDifference] = field(default_factory=list)
    conflict_type: ConflictType = ConflictType.DATA

    @property
    def fields(self) -> List[str]:
        return [difference.field for difference in self.differences]


def is_provenance_field(name: str) -> bool:
    return name.startswith(PROVENANCE_PREFIX)


def strip_provenance(record: Mapping[str, Any]) -> Record:
    """Return a copy of ``record`` without provenance fields."""

    return {name: value for name, value in record.items() if not is_provenance_field(name)}


def _is_present(value: Any) -> bool:
    return value is not None and value != ""


def _normalise_key_value(value: Any) -> str:
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    if isinstance(value, (date, datetime)):
        return value.isoformat()
    return str(value)


def _hash_default(value: Any) -> str:
    if isinstance(value, (date, datetime)):
        return value.isoformat()
    return str(value)


def record_hash(record: Mapping[str, Any]) -> str:
    """Return a deterministic structural hash of the non-provenance fields."""

    payload = json.dumps(
        strip_provenance(record),
        sort_keys=True,
        separators=(",", ":"),
        default=_hash_default,
    )
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()[:16]


def key_of(record: Mapping[str, Any], key_fields: Sequence[str] = DEFAULT_KEY_FIELDS) -> Optional[str]:
    """Return the identity key of ``record``.

    The first present field of ``key_fields`` wins; otherwise the structural
    hash is used.  Records without any content field have no identity.
    """

    for name in key_fields:
        value = record.get(name)
        if _is_present(value):
            return f"{name}:{_normalise_key_value(value)}"
    if not any(not is_provenance_field(name) for name in record):
        return None
    return f"hash:{record_hash(record)}"


def sanitize_field_name(header: str) -> str:
    """Lower-case ``header`` and collapse every non alphanumeric run into ``_``."""

    return _NON_ALNUM_RE.sub("_", str(header).lower()).strip("_")


def align_field_names(record: Mapping[str, Any], reference_names: Iterable[str]) -> Record:
    """Rename fields of ``record`` to the spelling used by ``reference_names``.

    A field is renamed when it is not itself a reference name but sanitises to
    the same form as one, so ``updatedat`` read back from a sheet header lines
    up with a local ``updatedAt``.  Provenance fields are never renamed.
    """

    names = [name for name in reference_names if not is_provenance_field(name)]
    exact = set(names)
    spelling: Dict[str, str] = {}
    for name in names:
        spelling.setdefault(sanitize_field_name(name), name)

    aligned: Record = {}
    for name, value in record.items():
        target = name
        if not is_provenance_field(name) and name not in exact:
            target = spelling.get(sanitize_field_name(name), name)
            if target in record or target in aligned:
                target = name
        aligned[target] = value
    return aligned


def align_records(records: Iterable[Mapping[str, Any]], reference: Iterable[Mapping[str, Any]]) -> List[Record]:
    """Apply :func:`align_field_names` to every record using the field names seen in ``reference``."""

    names: Dict[str, None] = {}
    for record in reference:
        names.update(dict.fromkeys(record))
    return [align_field_names(record, names) for record in records]


def values_equal(left: Any, right: Any) -> bool:
    """Compare two field values, treating ``None`` as absent."""

    if left is None or right is None:
        return left is None and right is None

    if isinstance(left, bool) or isinstance(right, bool):
        return isinstance(left, bool) and isinstance(right, bool) and left == right

    left_is_time = isinstance(left, (date, datetime))
    right_is_time = isinstance(right, (date, datetime))
    if left_is_time or right_is_time:
        if type(left) is date and type(right) is date:
            return left == right
        # ISO text loaded from JSON compares equal to the parsed cell value
        if (left_is_time or isinstance(left, str)) and (right_is_time or isinstance(right, str)):
            left_instant = to_instant(left)
            return left_instant is not None and left_instant == to_instant(right)
        return False

    if isinstance(left, (dict, list, tuple)) or isinstance(right, (dict, list, tuple)):
        if isinstance(left, tuple):
            left = list(left)
        if isinstance(right, tuple):
            right = list(right)
        return type(left) is type(right) and left == right

    return left == right


def _change_kind(local_value: Any, remote_value: Any) -> ChangeKind:
    if local_value is None:
        return ChangeKind.ADDED
    if remote_value is None:
        return ChangeKind.REMOVED
    return ChangeKind.MODIFIED


def _field_union(local: Mapping[str, Any], remote: Mapping[str, Any]) -> Iterable[str]:
    seen: Dict[str, None] = dict.fromkeys(local)
    for name in remote:
        seen.setdefault(name, None)
    return seen.keys()


def diff(local: Mapping[str, Any], remote: Mapping[str, Any]) -> List[FieldDifference]:
    """Return the field differences between ``local`` and ``remote``.

    Remote field names are matched to local ones by their sanitised form, so
    a field whose header casing changed on the way through a sheet is
    compared with its local counterpart.
    """

    remote = align_field_names(remote, local.keys())
    differences: List[FieldDifference] = []
    for name in _field_union(local, remote):
        if is_provenance_field(name):
            continue
        local_value = local.get(name)
        remote_value = remote.get(name)
        if values_equal(local_value, remote_value):
            continue
        differences.append(
            FieldDifference(
                field=name,
                local_value=local_value,
                remote_value=remote_value,
                change=_change_kind(local_value, remote_value),
            )
        )
    return differences


def conflict_type_of(differences: Sequence[FieldDifference]) -> ConflictType:
    changes = {difference.change for difference in differences}
    if ChangeKind.ADDED in changes and ChangeKind.REMOVED in changes:
        return ConflictType.STRUCTURAL
    if changes and changes == {ChangeKind.MODIFIED}:
        return ConflictType.DATA
    return ConflictType.MIXED


def index_by_key(
    records: Iterable[Mapping[str, Any]],
    key_fields: Sequence[str] = DEFAULT_KEY_FIELDS,
) -> Dict[str, Record]:
    """Map each keyed record by its key; the last record wins for repeated keys."""

    index: Dict[str, Record] = {}
    for record in records:
        key = key_of(record, key_fields)
        if key is not None:
            index[key] = dict(record)
    return index


__all__ = [
    "ChangeKind",
    "Conflict",
    "ConflictType",
    "DEFAULT_KEY_FIELDS",
    "FieldDifference",
    "PROVENANCE_PREFIX",
    "Record",
    "align_field_names",
    "align_records",
    "conflict_type_of",
    "diff",
    "index_by_key",
    "is_provenance_field",
    "key_of",
    "record_hash",
    "sanitize_field_name",
    "strip_provenance",
    "values_equal",
]
