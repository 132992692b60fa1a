"""Maps user-facing composite identifiers onto storage keys."""

from datetime import date, datetime
from typing import Any, Dict, List, NamedTuple, Optional, Tuple

from errors import NotFound, ValidationError

BATCHES = "batches"
TRAINEES = "trainees"
ATTENDANCE = "attendance"
ASSIGNMENTS = "assignments"
USERS = "users"
COURSES = "courses"

ID_SEPARATOR = "-"


class ResolvedBatch(NamedTuple):
    base_id: str
    suffix: str
    key: str
    entry: Dict[str, Any]
    document: Dict[str, Any]

    @property
    def batch_id(self) -> str:
        return encode_batch_id(self.base_id, self.suffix)


def encode_batch_id(base_id: str, suffix: str) -> str:
    return f"{base_id}{ID_SEPARATOR}{suffix}"


def decode_batch_id(batch_id: str) -> Tuple[str, str]:
    """'B-FD-25-A' -> ('B-FD-25', 'A')"""
    parts = (batch_id or "").split(ID_SEPARATOR)
    if len(parts) < 4 or not all(parts):
        raise ValidationError(f"Invalid batch id: {batch_id!r}")
    return ID_SEPARATOR.join(parts[:3]), parts[-1]


def daily_record_id(day: date, batch_id: str) -> str:
    return f"{day.strftime('%d-%m-%y')}{ID_SEPARATOR}{batch_id}"


def extract_date_part(doc_id: str) -> str:
    return ID_SEPARATOR.join(doc_id.split(ID_SEPARATOR)[:3])


def parse_date_part(part: str) -> date:
    """'10-04-25' -> date(2025, 4, 10)"""
    try:
        return datetime.strptime(part, "%d-%m-%y").date()
    except ValueError:
        raise ValidationError(f"Invalid record date: {part!r}")


def record_date(doc_id: str) -> date:
    return parse_date_part(extract_date_part(doc_id))


def parse_iso_date(value: str) -> date:
    """'2025-04-10' -> date(2025, 4, 10)"""
    try:
        return datetime.strptime(value, "%Y-%m-%d").date()
    except (TypeError, ValueError):
        raise ValidationError("Invalid date format. Expected YYYY-MM-DD")


ASSIGNMENT_METADATA = ("createdAt", "updatedAt", "batchId")


def assignment_fields(document: Dict[str, Any]) -> List[str]:
    """Names of the assignments stored in one date-batch document"""
    return [
        key for key, value in document.items()
        if key not in ASSIGNMENT_METADATA and isinstance(value, dict)
    ]


def assignment_id(document_id: str, assignment_name: str) -> str:
    return f"{document_id}{ID_SEPARATOR}{assignment_name}"


def course_path(course_id: str, field: Optional[str] = None) -> str:
    if not course_id or "." in course_id:
        raise ValidationError(f"Invalid course id: {course_id!r}")
    return f"courses.{course_id}" if field is None else f"courses.{course_id}.{field}"


class RecordLocator:
    """Resolves logical entities to documents in the store"""

    def __init__(self, store):
        self.store = store

    def resolve_batch(self, batch_id: str) -> ResolvedBatch:
        base_id, suffix = decode_batch_id(batch_id)
        document = self.store.get(BATCHES, base_id)
        if not document:
            raise NotFound("Batch not found")

        for entry in document.get("entries", []):
            if entry.get("suffix") == suffix:
                return ResolvedBatch(base_id, suffix, entry.get("key") or batch_id, entry, document)

        raise NotFound("Batch with this suffix not found")

    def is_first_for_date(self, batch_id: str, day: date, exclude_id: Optional[str] = None) -> bool:
        """True iff no other attendance record for the batch shares `day`."""
        target = day.strftime("%d-%m-%y")
        for record in self.store.query(ATTENDANCE, {"batchId": batch_id}):
            doc_id = record["documentId"]
            if doc_id != exclude_id and extract_date_part(doc_id) == target:
                return False
        return True

    def counting_record(self, batch_id: str, day: date) -> Optional[Dict[str, Any]]:
        """
        The attendance record whose marks the aggregates hold for `day`.

        Records stored with ``countedForDate: False`` never count. Among the
        rest the lowest document id wins, which is the same choice a rebuild
        makes when it replays the batch.
        """
        target = day.strftime("%d-%m-%y")
        for record in self.store.query(ATTENDANCE, {"batchId": batch_id}):
            if extract_date_part(record["documentId"]) == target and record.get("countedForDate") is not False:
                return record
        return None

    def roster(self, batch_id: str) -> Optional[Dict[str, Any]]:
        return self.store.get(TRAINEES, batch_id)

    def course_progress(self, user_id: str, course_id: str) -> Optional[Dict[str, Any]]:
        user = self.store.get(USERS, user_id)
        if not user:
            return None
        return (user.get("courses") or {}).get(course_id)
