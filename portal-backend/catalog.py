"""Catalog reads and writes that need no cross-document propagation."""

import copy
import json
import uuid
from typing import Any, Dict, List, Optional

from document_store import DELETE_FIELD, ArrayUnion, actor_stamp, utc_now
from errors import Conflict, NotFound, ValidationError
from locator import (
    ASSIGNMENT_METADATA,
    ASSIGNMENTS,
    ATTENDANCE,
    BATCHES,
    COURSES,
    ID_SEPARATOR,
    TRAINEES,
    RecordLocator,
    assignment_fields,
    assignment_id,
    daily_record_id,
    encode_batch_id,
    parse_iso_date,
)
from payments import ENROLLMENTS

ROLE_PERMISSIONS = "role_permissions"
ROLES_DOC = "roles"
ADMIN_ROLE = "Admin"

BATCH_DATE_FIELDS = ("trainingStartDate", "trainingEndDate", "internshipStartDate", "internshipEndDate")


def _check_field_name(name: str, what: str):
    if not name or "." in name or name in ASSIGNMENT_METADATA:
        raise ValidationError(f"Invalid {what}: {name!r}")


# ==================== BATCHES ====================

def batch_entry_view(base_id: str, document: Dict[str, Any], entry: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "batchId": encode_batch_id(base_id, entry["suffix"]),
        "batchName": entry.get("key"),
        "suffix": entry["suffix"],
        "enrollLimit": entry.get("enrollLimit") or 0,
        **{field: entry.get(field) for field in BATCH_DATE_FIELDS},
    }


def list_batches(store) -> List[Dict[str, Any]]:
    groups = []
    for document in store.query(BATCHES):
        base_id = document["documentId"]
        entries = sorted(document.get("entries", []), key=lambda e: e.get("suffix", ""))
        groups.append({
            "documentId": base_id,
            "batchName": base_id,
            "courseId": document.get("courseId"),
            "courseName": document.get("courseName"),
            "status": document.get("status"),
            "batches": [batch_entry_view(base_id, document, e) for e in entries],
            "createdAt": document.get("createdAt"),
            "updatedAt": document.get("updatedAt"),
        })
    return groups


def get_batch(store, batch_id: str) -> Dict[str, Any]:
    resolved = RecordLocator(store).resolve_batch(batch_id)
    document = resolved.document
    return {
        "documentId": resolved.base_id,
        "courseId": document.get("courseId", ""),
        "courseName": document.get("courseName", ""),
        "status": document.get("status", "Upcoming"),
        "completedLessons": resolved.entry.get("completedLessons", {}),
        "createdAt": document.get("createdAt"),
        "updatedAt": document.get("updatedAt"),
        **batch_entry_view(resolved.base_id, document, resolved.entry),
    }


def display_batch_key(base_id: str, suffix: str, batch_details: Dict[str, Any]) -> str:
    """B-<course>-<DDMM training start>-<DDMM internship end>-<suffix>"""
    course_abbr = base_id.split(ID_SEPARATOR)[1]
    start = parse_iso_date(batch_details.get("trainingStartDate"))
    end = parse_iso_date(batch_details.get("internshipEndDate"))
    return f"B-{course_abbr}-{start.strftime('%d%m')}-{end.strftime('%d%m')}-{suffix}"


def create_batch(store, base_id: str, suffix: str, batch_details: Dict[str, Any],
                 batch_data: Dict[str, Any]) -> Dict[str, Any]:
    if not base_id or not suffix or batch_details is None or batch_data is None:
        raise ValidationError("Missing required fields")
    if len(base_id.split(ID_SEPARATOR)) != 3 or ID_SEPARATOR in suffix:
        raise ValidationError("Batch document id must look like <prefix>-<code>-<year> with a plain suffix")
    for field in BATCH_DATE_FIELDS:
        parse_iso_date(batch_details.get(field))

    entry = {
        "key": display_batch_key(base_id, suffix, batch_details),
        "suffix": suffix,
        "enrollLimit": batch_details.get("enrollLimit") or 0,
        **{field: batch_details.get(field) for field in BATCH_DATE_FIELDS},
    }

    now = utc_now()
    document = store.get(BATCHES, base_id)
    if document:
        if any(e.get("suffix") == suffix for e in document.get("entries", [])):
            raise Conflict(f"Batch {encode_batch_id(base_id, suffix)} already exists")
        store.update(BATCHES, base_id, {"entries": ArrayUnion([entry]), "updatedAt": now})
    else:
        store.set(BATCHES, base_id, {
            "baseId": base_id,
            "courseId": batch_data.get("courseId"),
            "courseName": batch_data.get("courseName"),
            "status": batch_data.get("status") or "Upcoming",
            "entries": [entry],
            "createdAt": now,
            "updatedAt": now,
        })

    print(f"[BATCH] Created {encode_batch_id(base_id, suffix)} ({entry['key']})")
    return batch_entry_view(base_id, document or {}, entry)


def update_batch(store, base_id: str, suffix: str, changes: Dict[str, Any]) -> Dict[str, Any]:
    document = store.get(BATCHES, base_id)
    if not document:
        raise NotFound("Batch document not found")

    entries = document.get("entries", [])
    index = next((i for i, e in enumerate(entries) if e.get("suffix") == suffix), None)
    if index is None:
        raise NotFound("Batch with this suffix not found")

    entry = dict(entries[index])
    for field in BATCH_DATE_FIELDS:
        if changes.get(field):
            parse_iso_date(changes[field])
            entry[field] = changes[field]
    for field in ("enrollLimit", "completedLessons"):
        if changes.get(field) is not None:
            entry[field] = changes[field]
    entries = entries[:index] + [entry] + entries[index + 1:]

    update: Dict[str, Any] = {"entries": entries, "updatedAt": utc_now()}
    for field in ("courseId", "courseName", "status"):
        if changes.get(field):
            update[field] = changes[field]
    store.update(BATCHES, base_id, update)
    return batch_entry_view(base_id, document, entry)


def delete_batch(store, base_id: str, suffix: str):
    document = store.get(BATCHES, base_id)
    if not document:
        raise NotFound("Batch document not found")

    entries = document.get("entries", [])
    remaining = [e for e in entries if e.get("suffix") != suffix]
    if len(remaining) == len(entries):
        raise NotFound("Batch with this suffix not found")

    if remaining:
        store.update(BATCHES, base_id, {"entries": remaining, "updatedAt": utc_now()})
    else:
        store.delete(BATCHES, base_id)
    print(f"[BATCH] Deleted {encode_batch_id(base_id, suffix)}")


def batch_trainees(store, batch_id: str) -> List[Dict[str, Any]]:
    roster = store.get(TRAINEES, batch_id)
    if not roster:
        return []
    return [
        {"traineeId": t.get("userId"), "name": t.get("name"), "email": t.get("email")}
        for t in roster.get("trainees", [])
    ]


# ==================== COURSES ====================

def list_courses(store, status: Optional[str] = None, limit: Optional[int] = None) -> List[Dict[str, Any]]:
    where = {"courseStatus": status} if status else None
    return store.query(COURSES, where, limit=limit)


def get_course(store, course_id: str) -> Dict[str, Any]:
    course = store.get(COURSES, course_id)
    if not course:
        raise NotFound("Course not found")
    return {"courseId": course_id, **course}


def create_course(store, data: Dict[str, Any], actor: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    if not data.get("title"):
        raise ValidationError("Course title is required")
    course_id = data.get("courseId") or uuid.uuid4().hex[:20]
    _check_field_name(course_id, "course id")
    if store.get(COURSES, course_id):
        raise Conflict("A course with this id already exists")

    now = utc_now()
    course = {
        **{k: v for k, v in data.items() if k != "courseId" and v is not None},
        "courseStatus": data.get("courseStatus") or "Upcoming",
        "course_fee": data.get("course_fee") or 0,
        "createdAt": now,
        "updatedAt": now,
        "createdBy": actor_stamp(actor),
    }
    store.set(COURSES, course_id, course)
    return {"courseId": course_id, **course}


COURSE_PROTECTED = ("courseId", "documentId", "createdAt", "createdBy", "updatedAt", "updatedBy")

# value a section is reset to when it is cleared
COURSE_SECTIONS = {
    "description": "",
    "about": {"paragraphs": []},
    "outcomes": {"intro": "", "items": []},
    "courses": {"modules": []},
    "course_info": {"months": "", "weeklyHours": "", "schedule": "", "pace": "", "credential": ""},
    "modules": [],
}


def update_course(store, course_id: str, changes: Dict[str, Any],
                  actor: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    if not store.get(COURSES, course_id):
        raise NotFound("Course not found")
    update = {}
    for field, value in (changes or {}).items():
        if field in COURSE_PROTECTED or value is None:
            continue
        if not field or "." in field:
            raise ValidationError(f"Invalid course field: {field!r}")
        update[field] = value
    fee = update.get("course_fee")
    if fee is not None and (not isinstance(fee, (int, float)) or fee < 0):
        raise ValidationError("course_fee must be a non-negative number")

    update["updatedAt"] = utc_now()
    update["updatedBy"] = actor_stamp(actor)
    store.update(COURSES, course_id, update)
    print(f"[COURSE] Updated {course_id} ({', '.join(sorted(k for k in update if k not in COURSE_PROTECTED))})")
    return get_course(store, course_id)


def _section_value(section: str, data: Any) -> Any:
    if section not in COURSE_SECTIONS:
        raise ValidationError("Invalid section type")
    # an empty module list is a valid value, other empty payloads are not
    if data is None or (data in ("", {}, []) and section != "modules"):
        raise ValidationError("Section data is required")
    if isinstance(data, str) and section != "description":
        try:
            data = json.loads(data)
        except ValueError:
            raise ValidationError(f"Invalid {section} data format")
    if section == "modules" and not isinstance(data, list):
        raise ValidationError("Invalid modules data. Modules must be an array.")
    return data


def update_course_section(store, course_id: str, section: str, data: Any,
                          actor: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    value = _section_value(section, data)
    if not store.get(COURSES, course_id):
        raise NotFound("Course not found")
    store.update(COURSES, course_id, {section: value, "updatedAt": utc_now(), "updatedBy": actor_stamp(actor)})
    print(f"[COURSE] Updated {section} of {course_id}")
    return get_course(store, course_id)


def clear_course_section(store, course_id: str, section: str,
                         actor: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    if section not in COURSE_SECTIONS:
        raise ValidationError("Invalid section type")
    if not store.get(COURSES, course_id):
        raise NotFound("Course not found")
    store.update(COURSES, course_id, {
        section: copy.deepcopy(COURSE_SECTIONS[section]),
        "updatedAt": utc_now(),
        "updatedBy": actor_stamp(actor),
    })
    print(f"[COURSE] Cleared {section} of {course_id}")
    return get_course(store, course_id)


def course_modules(store, course_id: str) -> List[Any]:
    return get_course(store, course_id).get("modules") or []


def delete_course(store, course_id: str):
    if not store.get(COURSES, course_id):
        raise NotFound("Course not found")
    store.delete(COURSES, course_id)


def list_fees(store, status: Optional[str] = None, limit: int = 50) -> List[Dict[str, Any]]:
    return [
        {
            "courseId": course["documentId"],
            "title": course.get("title") or "Untitled Course",
            "fee": course.get("course_fee") or 0,
            "status": course.get("courseStatus") or "Unknown",
            "instructor": course.get("instructor") or "Unknown",
            "createdAt": course.get("createdAt"),
        }
        for course in list_courses(store, status, limit)
    ]


# ==================== ATTENDANCE READS ====================

def list_attendance(store, batch_id: Optional[str] = None) -> List[Dict[str, Any]]:
    return store.query(ATTENDANCE, {"batchId": batch_id} if batch_id else None)


def get_attendance(store, record_id: str) -> Dict[str, Any]:
    record = store.get(ATTENDANCE, record_id)
    if not record:
        raise NotFound("Attendance record not found")
    return {"documentId": record_id, **record}


# ==================== ASSIGNMENTS ====================

def _flatten_assignments(document: Dict[str, Any]) -> List[Dict[str, Any]]:
    doc_id = document["documentId"]
    flattened = []
    for name in assignment_fields({k: v for k, v in document.items() if k != "documentId"}):
        data = dict(document[name])
        data.setdefault("batchId", document.get("batchId"))
        flattened.append({
            "documentId": doc_id,
            "assignmentId": assignment_id(doc_id, name),
            "assignmentName": name,
            **data,
        })
    return flattened


def list_assignments(store, batch_id: Optional[str] = None) -> List[Dict[str, Any]]:
    assignments = []
    for document in store.query(ASSIGNMENTS, {"batchId": batch_id} if batch_id else None):
        for assignment in _flatten_assignments(document):
            if batch_id is None or assignment.get("batchId") == batch_id:
                assignments.append(assignment)
    return assignments


def get_assignment(store, document_id: str, assignment_name: str) -> Dict[str, Any]:
    document = store.get(ASSIGNMENTS, document_id)
    if not document:
        raise NotFound("Assignment document not found")
    if assignment_name not in assignment_fields(document):
        raise NotFound("Assignment not found in document")
    return {"documentId": document_id, "assignmentName": assignment_name, **document[assignment_name]}


def create_assignment(store, data: Dict[str, Any], actor: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    required = ("assignmentName", "courseId", "batchId", "questions", "assignmentDate")
    if any(not data.get(field) for field in required):
        raise ValidationError("Missing required fields")
    name = data["assignmentName"]
    _check_field_name(name, "assignment name")

    document_id = daily_record_id(parse_iso_date(data["assignmentDate"]), data["batchId"])
    now = utc_now()
    assignment = {
        "courseId": data["courseId"],
        "courseName": data.get("courseName"),
        "batchId": data["batchId"],
        "duration": data.get("duration"),
        "totalMarks": data.get("totalMarks"),
        "questions": data["questions"],
        "assignmentDate": data["assignmentDate"],
        "status": data.get("status") or "Upcoming",
        "submissions": [],
        "createdAt": now,
        "updatedAt": now,
        "createdBy": actor_stamp(actor),
    }

    document = store.get(ASSIGNMENTS, document_id)
    if document:
        if name in assignment_fields(document):
            raise Conflict("An assignment with this name already exists for this date and batch")
        update = {name: assignment, "updatedAt": now}
        if not document.get("batchId"):
            update["batchId"] = data["batchId"]
        store.update(ASSIGNMENTS, document_id, update)
    else:
        store.set(ASSIGNMENTS, document_id, {
            name: assignment,
            "batchId": data["batchId"],
            "createdAt": now,
            "updatedAt": now,
        })

    print(f"[ASSIGNMENT] Created {document_id}/{name}")
    return {"documentId": document_id, "assignmentName": name, **assignment}


ASSIGNMENT_EDITABLE = ("courseId", "courseName", "batchId", "duration", "totalMarks",
                       "questions", "assignmentDate", "status")


def update_assignment(store, document_id: str, assignment_name: str, changes: Dict[str, Any],
                      actor: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    current = get_assignment(store, document_id, assignment_name)
    if current.get("submissions"):
        # submissions already carry derived copies under the current course and batch
        for field in ("courseId", "batchId"):
            if changes.get(field) not in (None, "", current.get(field)):
                raise Conflict(f"Cannot change {field} of an assignment that has submissions")
    now = utc_now()
    update = {
        f"{assignment_name}.{field}": changes[field]
        for field in ASSIGNMENT_EDITABLE
        if changes.get(field) not in (None, "")
    }
    update[f"{assignment_name}.updatedAt"] = now
    update[f"{assignment_name}.updatedBy"] = actor_stamp(actor)
    update["updatedAt"] = now
    store.update(ASSIGNMENTS, document_id, update)
    return get_assignment(store, document_id, assignment_name)


# ==================== ENROLLMENT ====================

def check_enrollment(store, course_id: str, user_id: str) -> Dict[str, Any]:
    if not course_id or not user_id:
        raise ValidationError("Missing required parameters")

    found = store.query(ENROLLMENTS, {"courseId": course_id, "userId": user_id}, limit=1)
    if found:
        return {"enrolled": True, "data": {"enrollmentId": found[0]["documentId"], **found[0]}}

    for document in store.query(BATCHES, {"courseId": course_id}):
        for entry in document.get("entries", []):
            batch_id = encode_batch_id(document["documentId"], entry["suffix"])
            roster = store.get(TRAINEES, batch_id)
            if roster and any(t.get("userId") == user_id for t in roster.get("trainees", [])):
                return {"enrolled": True, "data": {"batchId": batch_id, "courseId": course_id}}

    return {"enrolled": False}


# ==================== ROLES ====================

def _roles(store) -> Dict[str, Any]:
    roles = store.get(ROLE_PERMISSIONS, ROLES_DOC)
    if roles is None:
        raise NotFound("Roles document not found")
    return roles


def list_roles(store) -> List[Dict[str, Any]]:
    roles = store.get(ROLE_PERMISSIONS, ROLES_DOC) or {}
    return [{"name": name, **role} for name, role in sorted(roles.items()) if isinstance(role, dict)]


def create_role(store, name: str, permissions: Dict[str, Any], active: bool = True,
                actor: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    _check_field_name(name, "role name")
    role = {
        "active": active,
        "permissions": permissions or {},
        "createdBy": (actor or {}).get("email") or "unknown",
        "createdAt": utc_now(),
    }
    roles = store.get(ROLE_PERMISSIONS, ROLES_DOC)
    if roles is None:
        store.set(ROLE_PERMISSIONS, ROLES_DOC, {name: role})
    elif name in roles:
        raise Conflict("Role already exists")
    else:
        store.update(ROLE_PERMISSIONS, ROLES_DOC, {name: role})
    return {"name": name, **role}


def update_role(store, role_name: str, name: Optional[str] = None, active: Optional[bool] = None,
                permissions: Optional[Dict[str, Any]] = None,
                actor: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    roles = _roles(store)
    if role_name not in roles:
        raise NotFound("Role not found")
    if role_name == ADMIN_ROLE and active is False:
        raise ValidationError("Cannot deactivate Admin role")

    current = roles[role_name]
    updated = {
        **current,
        "active": current.get("active") if active is None else active,
        "permissions": permissions or current.get("permissions", {}),
        "updatedBy": (actor or {}).get("email") or "unknown",
        "updatedAt": utc_now(),
    }

    if name and name != role_name:
        _check_field_name(name, "role name")
        if role_name == ADMIN_ROLE:
            raise ValidationError("Cannot rename Admin role")
        if name in roles:
            raise Conflict("A role with the new name already exists")
        batch = store.batch()
        batch.update(ROLE_PERMISSIONS, ROLES_DOC, {name: updated})
        batch.update(ROLE_PERMISSIONS, ROLES_DOC, {role_name: DELETE_FIELD})
        batch.commit()
        print(f"[ROLES] Renamed {role_name} -> {name}")
        return {"name": name, **updated}

    store.update(ROLE_PERMISSIONS, ROLES_DOC, {role_name: updated})
    return {"name": role_name, **updated}


def delete_role(store, role_name: str):
    if role_name == ADMIN_ROLE:
        raise ValidationError("Cannot delete Admin role")
    roles = _roles(store)
    if role_name not in roles:
        raise NotFound("Role not found")
    store.update(ROLE_PERMISSIONS, ROLES_DOC, {role_name: DELETE_FIELD})
