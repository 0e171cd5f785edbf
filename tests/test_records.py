from __future__ import annotations

import sys
from datetime import date, datetime, timezone
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from sheetsync.records import (
    ChangeKind,
    ConflictType,
    align_field_names,
    conflict_type_of,
    diff,
    index_by_key,
    key_of,
    record_hash,
    sanitize_field_name,
    values_equal,
)


def test_key_uses_first_present_identity_field() -> None:
    record = {"id": "", "student_id": "S-1", "email": "a@example.com"}
    assert key_of(record) == "student_id:S-1"


def test_key_normalises_integral_floats() -> None:
    assert key_of({"id": 7.0}) == key_of({"id": 7}) == "id:7"


def test_key_falls_back_to_structural_hash_ignoring_field_order_and_provenance() -> None:
    left = {"name": "Ada", "grade": 5, "_row_index": 2}
    right = {"grade": 5, "name": "Ada", "_row_index": 9, "_source": "google_sheets"}

    assert key_of(left) == key_of(right)
    assert key_of(left).startswith("hash:")
    assert record_hash(left) == record_hash(right)


def test_key_is_none_without_content_fields() -> None:
    assert key_of({"_id": "records_2", "_row_index": 2}) is None


def test_diff_is_empty_for_identical_records() -> None:
    record = {"id": 1, "name": "Ada", "tags": ["a", "b"], "_last_updated": datetime.now(timezone.utc)}
    assert diff(record, dict(record, _last_updated=None)) == []


def test_diff_reports_added_removed_and_modified_fields() -> None:
    local = {"id": 1, "name": "Ada", "grade": None, "email": "ada@example.com"}
    remote = {"id": 1, "name": "Ada L.", "grade": 7}

    changes = {difference.field: difference.change for difference in diff(local, remote)}

    assert changes == {
        "name": ChangeKind.MODIFIED,
        "grade": ChangeKind.ADDED,
        "email": ChangeKind.REMOVED,
    }


def test_diff_keeps_field_order_of_local_then_remote() -> None:
    local = {"b": 1, "a": 1}
    remote = {"c": 1, "a": 2}
    assert [difference.field for difference in diff(local, remote)] == ["b", "a", "c"]

def test_diff_matches_field_names_by_sanitised_form() -> None:
    local = {"id": 1, "updatedAt": "x", "Full Name": "Ada"}
    pulled = {"id": 1, "updatedat": "x", "full_name": "Ada", "_id": "records_2"}

    assert diff(local, pulled) == []
    changed = diff(local, dict(pulled, updatedat="y"))
    assert [(item.field, item.change) for item in changed] == [("updatedAt", ChangeKind.MODIFIED)]


def test_align_field_names_keeps_exact_and_clashing_names() -> None:
    assert sanitize_field_name("updatedAt") == "updatedat"
    assert align_field_names({"updatedat": 1, "_row_index": 2}, ["updatedAt", "_row_index"]) == {
        "updatedAt": 1,
        "_row_index": 2,
    }
    # both spellings present: nothing is renamed over an existing field
    assert align_field_names({"updatedat": 1, "updatedAt": 2}, ["updatedAt"]) == {"updatedat": 1, "updatedAt": 2}
    assert align_field_names({"score": 1}, ["grade"]) == {"score": 1}



def test_values_equal_treats_booleans_and_numbers_as_different() -> None:
    assert not values_equal(True, 1)
    assert not values_equal(0, False)
    assert values_equal(True, True)


def test_values_equal_compares_dates_by_instant() -> None:
    assert values_equal(date(2024, 1, 5), datetime(2024, 1, 5, tzinfo=timezone.utc))
    assert values_equal(
        datetime(2024, 1, 5, 12, 0, tzinfo=timezone.utc),
        datetime(2024, 1, 5, 12, 0),
    )
    assert not values_equal(date(2024, 1, 5), date(2024, 1, 6))


def test_values_equal_compares_composites_deeply() -> None:
    assert values_equal({"a": [1, 2]}, {"a": [1, 2]})
    assert values_equal((1, 2), [1, 2])
    assert not values_equal({"a": 1}, [("a", 1)])


def test_conflict_type_classification() -> None:
    modified = diff({"id": 1, "name": "a"}, {"id": 1, "name": "b"})
    structural = diff({"id": 1, "x": 1}, {"id": 1, "y": 1})
    mixed = diff({"id": 1, "name": "a"}, {"id": 1, "name": "b", "y": 1})

    assert conflict_type_of(modified) is ConflictType.DATA
    assert conflict_type_of(structural) is ConflictType.STRUCTURAL
    assert conflict_type_of(mixed) is ConflictType.MIXED


def test_index_by_key_skips_unkeyed_records_and_copies() -> None:
    original = {"id": 1, "name": "Ada"}
    index = index_by_key([original, {"_id": "x"}])

    assert list(index) == ["id:1"]
    index["id:1"]["name"] = "changed"
    assert original["name"] == "Ada"
