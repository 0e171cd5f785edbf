"""Declarative per-record validation rules.

The same rule shape is used when pulling (invalid rows are reported next to
the valid ones) and when pushing (any invalid row rejects the whole write).
"""
from __future__ import annotations

import math
import re
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence

_TYPES = {"string", "number", "boolean", "date"}


@dataclass(slots=True)
class ValidationRule:
    field: str
    type: Optional[str] = None
    required: bool = False
    min: Optional[float] = None
    max: Optional[float] = None
    pattern: Optional[str] = None
    values: Optional[List[Any]] = None

    def __post_init__(self) -> None:
        if self.type is not None and self.type not in _TYPES:
            raise ValueError(f"Unsupported rule type for '{self.field}': {self.type}")
        if self.pattern:
            re.compile(self.pattern)

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "ValidationRule":
        if "field" not in payload:
            raise ValueError("Validation rule requires a 'field'")
        values = payload.get("values")
        return cls(
            field=str(payload["field"]),
            type=payload.get("type"),
            required=bool(payload.get("required", False)),
            min=payload.get("min"),
            max=payload.get("max"),
            pattern=payload.get("pattern"),
            values=list(values) if values is not None else None,
        )


@dataclass(slots=True)
class InvalidRecord:
    index: int
    record: Dict[str, Any]
    errors: List[str] = field(default_factory=list)


@dataclass(slots=True)
class ValidationReport:
    valid_records: List[Dict[str, Any]] = field(default_factory=list)
    invalid_records: List[InvalidRecord] = field(default_factory=list)

    @property
    def total_records(self) -> int:
        return len(self.valid_records) + len(self.invalid_records)

    @property
    def is_valid(self) -> bool:
        return not self.invalid_records


def coerce_rules(rules: Iterable[ValidationRule | Mapping[str, Any]]) -> List[ValidationRule]:
    return [rule if isinstance(rule, ValidationRule) else ValidationRule.from_dict(rule) for rule in rules]


def _is_blank(value: Any) -> bool:
    return value is None or value == ""


def _type_matches(value: Any, expected: str) -> bool:
    if expected == "string":
        return isinstance(value, str)
    if expected == "number":
        return (
            isinstance(value, (int, float))
            and not isinstance(value, bool)
            and not (isinstance(value, float) and math.isnan(value))
        )
    if expected == "boolean":
        return isinstance(value, bool)
    if expected == "date":
        return isinstance(value, (date, datetime))
    return True


def check(record: Mapping[str, Any], rule: ValidationRule) -> Optional[str]:
    """Return the failure reason for ``rule`` or ``None`` when it passes."""

    name = rule.field
    value = record.get(name)

    if _is_blank(value):
        if rule.required:
            return f"Field '{name}' is required"
        return None

    if rule.type and not _type_matches(value, rule.type):
        return f"Field '{name}' must be of type {rule.type}"

    if rule.type == "number":
        if rule.min is not None and value < rule.min:
            return f"Field '{name}' must be at least {rule.min}"
        if rule.max is not None and value > rule.max:
            return f"Field '{name}' must be at most {rule.max}"

    if rule.type == "string" and rule.pattern and not re.search(rule.pattern, value):
        return f"Field '{name}' does not match required pattern"

    if rule.values is not None and value not in rule.values:
        allowed = ", ".join(str(option) for option in rule.values)
        return f"Field '{name}' must be one of: {allowed}"

    return None


def errors_for(record: Mapping[str, Any], rules: Sequence[ValidationRule]) -> List[str]:
    reasons = []
    for rule in rules:
        reason = check(record, rule)
        if reason:
            reasons.append(reason)
    return reasons


def validate_records(
    records: Iterable[Mapping[str, Any]],
    rules: Iterable[ValidationRule | Mapping[str, Any]],
) -> ValidationReport:
    """Partition ``records`` into valid and invalid ones."""

    rule_list = coerce_rules(rules)
    report = ValidationReport()
    for index, record in enumerate(records):
        reasons = errors_for(record, rule_list)
        if reasons:
            report.invalid_records.append(InvalidRecord(index=index, record=dict(record), errors=reasons))
        else:
            report.valid_records.append(dict(record))
    return report


__all__ = [
    "InvalidRecord",
    "ValidationReport",
    "ValidationRule",
    "check",
    "coerce_rules",
    "errors_for",
    "validate_records",
]
