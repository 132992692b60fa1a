"""
Derived aggregates kept on trainee records.

Two shapes are maintained here:

* the course progress aggregate stored at ``users/<userId>.courses.<courseId>``
  (attendance counters, attendance history, assignment history, averages)
* the roster entry stored in ``trainees/<batchId>.trainees[]`` (raw counters
  and the list of scores, no percentages)

Every function is pure: it takes the prior value, returns a new one and never
touches the input. Rates and averages are rounded half-up to an integer and a
zero denominator yields 0.
"""

import copy
import math
from datetime import date, datetime
from typing import Any, Dict, Iterable, List, Optional

PRESENT = "Present"
ABSENT = "Absent"

DEFAULT_THRESHOLDS = {
    "excellent": 95.0,
    "good": 90.0,
    "moderate": 85.0,
}


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def to_number(value: Any) -> float:
    """Numeric value of a stored score or mark; anything unusable counts as 0."""
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 0.0
    return number if math.isfinite(number) else 0.0


def normalize_status(status: Optional[str]) -> str:
    """Anything that is not an explicit Present counts as Absent."""
    return PRESENT if status == PRESENT else ABSENT


def date_key(value: Any) -> str:
    """Normalize a date/datetime/ISO string to YYYY-MM-DD."""
    if isinstance(value, datetime):
        return value.date().isoformat()
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, str) and len(value) >= 10:
        return value[:10]
    raise ValueError(f"Unrecognised attendance date: {value!r}")


# ==================== NUMERIC POLICY ====================

def attendance_rate(total_present: int, total_absent: int) -> int:
    total = total_present + total_absent
    if total <= 0:
        return 0
    return round_half_up(total_present / total * 100)


def average_score(history: Iterable[Dict[str, Any]]) -> int:
    """Mean percentage over entries with positive total marks."""
    percentages = []
    for entry in history:
        total_marks = to_number(entry.get("totalMarks"))
        if total_marks > 0:
            percentages.append(to_number(entry.get("score")) / total_marks * 100)
    if not percentages:
        return 0
    return round_half_up(sum(percentages) / len(percentages))


def attendance_standing(progress: Dict[str, Any], thresholds: Optional[Dict[str, float]] = None) -> str:
    thresholds = {**DEFAULT_THRESHOLDS, **(thresholds or {})}
    if progress.get("totalPresent", 0) + progress.get("totalAbsent", 0) == 0:
        return "no data"
    rate = progress.get("attendanceRate", 0)
    if rate >= thresholds["excellent"]:
        return "excellent"
    if rate >= thresholds["good"]:
        return "good"
    if rate >= thresholds["moderate"]:
        return "moderate"
    return "at risk"


# ==================== COURSE PROGRESS ====================

def new_course_progress(enrollment: Dict[str, Any]) -> Dict[str, Any]:
    """Zeroed aggregate seeded when a trainee is enrolled in a course."""
    return {
        "courseId": enrollment.get("courseId"),
        "batchId": enrollment.get("batchId"),
        "enrolledAt": enrollment.get("enrolledAt"),
        "status": enrollment.get("status", "active"),
        "progress": 0,
        "totalPresent": 0,
        "totalAbsent": 0,
        "attendanceRate": 0,
        "attendanceStanding": "no data",
        "attendanceHistory": [],
        "averageScore": 0,
        "assignmentHistory": [],
    }


def _progress_copy(prior: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    progress = copy.deepcopy(prior) if prior else {}
    progress["totalPresent"] = int(progress.get("totalPresent") or 0)
    progress["totalAbsent"] = int(progress.get("totalAbsent") or 0)
    progress["attendanceHistory"] = list(progress.get("attendanceHistory") or [])
    progress["assignmentHistory"] = list(progress.get("assignmentHistory") or [])
    return progress


def _bump(record: Dict[str, Any], status: str, delta: int):
    field = "totalPresent" if status == PRESENT else "totalAbsent"
    record[field] = max(0, int(record.get(field) or 0) + delta)


def _find_date(history: List[Dict[str, Any]], day: str) -> Optional[int]:
    for index, entry in enumerate(history):
        try:
            if date_key(entry.get("date")) == day:
                return index
        except ValueError:
            continue
    return None


def _refresh_attendance(progress: Dict[str, Any]) -> Dict[str, Any]:
    progress["attendanceRate"] = attendance_rate(progress["totalPresent"], progress["totalAbsent"])
    progress["attendanceStanding"] = attendance_standing(progress)
    return progress


def apply_attendance(prior: Optional[Dict[str, Any]], event: Dict[str, Any],
                     is_first_for_date: bool) -> Dict[str, Any]:
    """
    Fold one attendance mark into the aggregate.

    A date contributes at most one history entry. A first record for a date
    (or a date with no entry yet) adds an entry and one count; a later record
    for the same date moves one count between the counters if the status
    changed and does nothing otherwise.
    """
    progress = _progress_copy(prior)
    history = progress["attendanceHistory"]
    status = normalize_status(event.get("status"))
    day = date_key(event["date"])
    entry = {"date": day, "status": status, "batchId": event.get("batchId")}

    index = _find_date(history, day)
    if is_first_for_date or index is None:
        if index is None:
            history.append(entry)
        else:
            # the replaced entry takes its count with it
            _bump(progress, normalize_status(history[index].get("status")), -1)
            history[index] = entry
        _bump(progress, status, +1)
    else:
        previous = normalize_status(history[index].get("status"))
        if previous != status:
            history[index] = entry
            _bump(progress, previous, -1)
            _bump(progress, status, +1)

    return _refresh_attendance(progress)


def reverse_attendance(prior: Optional[Dict[str, Any]], entry: Dict[str, Any]) -> Dict[str, Any]:
    """Remove the history entry for the entry's date and the count it made."""
    progress = _progress_copy(prior)
    history = progress["attendanceHistory"]
    index = _find_date(history, date_key(entry["date"]))
    if index is not None:
        removed = history.pop(index)
        _bump(progress, normalize_status(removed.get("status")), -1)
    return _refresh_attendance(progress)


def sync_attendance(prior: Optional[Dict[str, Any]], day: Any, status: Optional[str],
                    batch_id: Optional[str] = None) -> Dict[str, Any]:
    """
    Make the history entry for `day` say `status`, or drop it when `status`
    is None. Applying the same state twice changes nothing.
    """
    if status is None:
        return reverse_attendance(prior, {"date": day})
    progress = _progress_copy(prior)
    is_new = _find_date(progress["attendanceHistory"], date_key(day)) is None
    return apply_attendance(progress, {"date": day, "status": status, "batchId": batch_id}, is_new)


def apply_assignment_score(prior: Optional[Dict[str, Any]], entry: Dict[str, Any]) -> Dict[str, Any]:
    """Upsert a score into the assignment history keyed by assignmentId."""
    progress = _progress_copy(prior)
    history = progress["assignmentHistory"]
    new_entry = copy.deepcopy(entry)
    for index, existing in enumerate(history):
        if existing.get("assignmentId") == entry["assignmentId"]:
            history[index] = new_entry
            break
    else:
        history.append(new_entry)
    progress["averageScore"] = average_score(history)
    return progress


def reverse_assignment_score(prior: Optional[Dict[str, Any]], assignment_id: str) -> Dict[str, Any]:
    progress = _progress_copy(prior)
    progress["assignmentHistory"] = [
        e for e in progress["assignmentHistory"] if e.get("assignmentId") != assignment_id
    ]
    progress["averageScore"] = average_score(progress["assignmentHistory"])
    return progress


def rebuild_course_progress(prior: Optional[Dict[str, Any]],
                            attendance_events: Iterable[Dict[str, Any]],
                            score_entries: Iterable[Dict[str, Any]]) -> Dict[str, Any]:
    """Recompute the aggregate from source records, keeping enrollment fields."""
    progress = _progress_copy(prior)
    progress["totalPresent"] = 0
    progress["totalAbsent"] = 0
    progress["attendanceHistory"] = []
    progress["assignmentHistory"] = []
    progress["averageScore"] = 0

    for event in sorted(attendance_events, key=lambda e: date_key(e["date"])):
        progress = apply_attendance(progress, event, is_first_for_date=False)
    for entry in score_entries:
        progress = apply_assignment_score(progress, entry)

    return _refresh_attendance(progress)


# ==================== ROSTER ====================

def new_roster_entry(user: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "userId": user.get("userId"),
        "name": user.get("name"),
        "email": user.get("email"),
        "scores": [],
        "totalPresent": 0,
        "totalAbsent": 0,
    }


def apply_roster_attendance(entry: Dict[str, Any], status: str,
                            previous_status: Optional[str] = None) -> Dict[str, Any]:
    """
    Count a mark on the roster. With `previous_status` the mark replaces an
    earlier one for the same record, so only a changed status moves a count.
    """
    updated = copy.deepcopy(entry)
    status = normalize_status(status)
    if previous_status is None:
        _bump(updated, status, +1)
    else:
        previous = normalize_status(previous_status)
        if previous != status:
            _bump(updated, previous, -1)
            _bump(updated, status, +1)
    updated.setdefault("totalPresent", 0)
    updated.setdefault("totalAbsent", 0)
    return updated


def reverse_roster_attendance(entry: Dict[str, Any], status: str) -> Dict[str, Any]:
    updated = copy.deepcopy(entry)
    _bump(updated, normalize_status(status), -1)
    updated.setdefault("totalPresent", 0)
    updated.setdefault("totalAbsent", 0)
    return updated


def apply_roster_score(entry: Dict[str, Any], score: Dict[str, Any]) -> Dict[str, Any]:
    updated = copy.deepcopy(entry)
    scores = [s for s in (updated.get("scores") or []) if s.get("assignmentId") != score["assignmentId"]]
    scores.append(copy.deepcopy(score))
    updated["scores"] = scores
    return updated


def reverse_roster_score(entry: Dict[str, Any], assignment_id: str) -> Dict[str, Any]:
    updated = copy.deepcopy(entry)
    updated["scores"] = [s for s in (updated.get("scores") or []) if s.get("assignmentId") != assignment_id]
    return updated
