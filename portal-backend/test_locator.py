from datetime import date

import pytest

from errors import NotFound, ValidationError
from locator import (
    RecordLocator,
    assignment_fields,
    course_path,
    daily_record_id,
    decode_batch_id,
    encode_batch_id,
    parse_iso_date,
    record_date,
)


def test_decode_batch_id_splits_on_last_separator():
    assert decode_batch_id("B-FD-25-A") == ("B-FD-25", "A")
    assert encode_batch_id("B-FD-25", "A") == "B-FD-25-A"


@pytest.mark.parametrize("batch_id", ["", "B-FD-25", "B--25-A", None])
def test_decode_batch_id_rejects_malformed(batch_id):
    with pytest.raises(ValidationError):
        decode_batch_id(batch_id)


def test_daily_record_id_round_trips_date():
    doc_id = daily_record_id(date(2025, 4, 10), "B-FD-25-A")
    assert doc_id == "10-04-25-B-FD-25-A"
    assert record_date(doc_id) == date(2025, 4, 10)


def test_record_date_rejects_garbage():
    with pytest.raises(ValidationError):
        record_date("not-a-date-id")


def test_parse_iso_date():
    assert parse_iso_date("2025-04-10") == date(2025, 4, 10)
    with pytest.raises(ValidationError, match="Expected YYYY-MM-DD"):
        parse_iso_date("10-04-2025")


def test_assignment_fields_skip_metadata():
    document = {
        "createdAt": "x",
        "updatedAt": "y",
        "batchId": "B-FD-25-A",
        "Quiz 1": {"submissions": []},
        "Quiz 2": {"submissions": []},
    }
    assert sorted(assignment_fields(document)) == ["Quiz 1", "Quiz 2"]


def test_course_path_rejects_dotted_ids():
    assert course_path("C1", "totalPresent") == "courses.C1.totalPresent"
    with pytest.raises(ValidationError):
        course_path("C.1")


def test_resolve_batch(seeded):
    resolved = RecordLocator(seeded).resolve_batch("B-FD-25-A")
    assert resolved.base_id == "B-FD-25"
    assert resolved.suffix == "A"
    assert resolved.key == "B-FD-0104-3006-A"
    assert resolved.batch_id == "B-FD-25-A"


def test_resolve_batch_missing(seeded):
    locator = RecordLocator(seeded)
    with pytest.raises(NotFound, match="Batch not found"):
        locator.resolve_batch("B-XX-25-A")
    with pytest.raises(NotFound, match="suffix"):
        locator.resolve_batch("B-FD-25-Z")


def test_is_first_for_date(seeded):
    locator = RecordLocator(seeded)
    day = date(2025, 4, 10)
    assert locator.is_first_for_date("B-FD-25-A", day)
    seeded.set("attendance", daily_record_id(day, "B-FD-25-A"), {"batchId": "B-FD-25-A"})
    assert not locator.is_first_for_date("B-FD-25-A", day)
    assert locator.is_first_for_date("B-FD-25-A", day, exclude_id="10-04-25-B-FD-25-A")
    assert locator.is_first_for_date("B-FD-25-A", date(2025, 4, 11))


def test_course_progress_lookup(seeded):
    locator = RecordLocator(seeded)
    assert locator.course_progress("u1", "C1")["batchId"] == "B-FD-25-A"
    assert locator.course_progress("u1", "C9") is None
    assert locator.course_progress("nobody", "C1") is None


def test_counting_record_skips_records_that_did_not_count(seeded):
    locator = RecordLocator(seeded)
    day = date(2025, 4, 10)
    assert locator.counting_record("B-FD-25-A", day) is None

    seeded.set("attendance", "10-04-25-B-FD-25-A-extra", {"batchId": "B-FD-25-A", "countedForDate": False})
    assert locator.counting_record("B-FD-25-A", day) is None

    seeded.set("attendance", daily_record_id(day, "B-FD-25-A"), {"batchId": "B-FD-25-A", "countedForDate": True})
    assert locator.counting_record("B-FD-25-A", day)["documentId"] == "10-04-25-B-FD-25-A"
    assert locator.counting_record("B-FD-25-A", date(2025, 4, 11)) is None
