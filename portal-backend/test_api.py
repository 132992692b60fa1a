from datetime import timedelta

import pytest
from fastapi.testclient import TestClient

import main
from conftest import BATCH_ID, KEY_SECRET
from payments import sign_payment

RECORD_ID = "10-04-25-B-FD-25-A"


class FakeGateway:
    def create_order(self, amount_minor_units, currency, metadata, receipt=None):
        return {"orderId": "order_api", "status": "created"}


@pytest.fixture
def client(seeded, coordinator):
    main.app.dependency_overrides[main.get_store] = lambda: seeded
    main.app.dependency_overrides[main.get_coordinator] = lambda: coordinator
    main.app.dependency_overrides[main.get_gateway] = lambda: FakeGateway()
    yield TestClient(main.app)
    main.app.dependency_overrides.clear()


def auth(uid, role, email=None):
    token = main.create_access_token({"sub": email or f"{uid}@example.com", "uid": uid, "role": role})
    return {"Authorization": f"Bearer {token}"}


ADMIN = auth("admin1", "Admin")
TRAINER = auth("trainer1", "Trainer")
U1 = auth("u1", "Trainee")
U2 = auth("u2", "Trainee")


def test_root_and_stats_are_public(client):
    assert client.get("/").json()["status"] == "online"
    stats = client.get("/stats").json()
    assert stats["database"] == "file"
    assert stats["courses"] == 1


def test_missing_token_is_unauthenticated(client):
    response = client.get("/api/batches")
    assert response.status_code == 401
    assert response.json() == {"success": False, "message": "No token provided", "error": "UNAUTHENTICATED"}


def test_expired_token_is_unauthenticated(client):
    token = main.create_access_token({"sub": "u1@example.com", "uid": "u1"}, timedelta(seconds=-5))
    response = client.get("/api/batches", headers={"Authorization": f"Bearer {token}"})
    assert response.status_code == 401
    assert response.json()["message"] == "Token has expired"


def test_list_and_get_batches(client):
    groups = client.get("/api/batches", headers=U1).json()["data"]
    assert groups[0]["documentId"] == "B-FD-25"
    assert groups[0]["batches"][0]["batchId"] == BATCH_ID

    batch = client.get(f"/api/batches/{BATCH_ID}", headers=U1).json()["data"]
    assert batch["batchName"] == "B-FD-0104-3006-A"
    assert client.get("/api/batches/B-FD-25-Z", headers=U1).status_code == 404


def test_create_and_delete_batch(client, seeded):
    body = {
        "documentId": "B-DA-25",
        "suffix": "A",
        "batchDetails": {
            "trainingStartDate": "2025-04-01",
            "trainingEndDate": "2025-05-31",
            "internshipStartDate": "2025-06-01",
            "internshipEndDate": "2025-06-30",
            "enrollLimit": 25,
        },
        "batchData": {"courseId": "C1", "courseName": "Full-stack Development"},
    }
    response = client.post("/api/batches", json=body, headers=TRAINER)
    assert response.status_code == 201
    assert response.json()["data"]["batchName"] == "B-DA-0104-3006-A"

    assert client.post("/api/batches", json=body, headers=TRAINER).json()["error"] == "CONFLICT"
    assert client.post("/api/batches", json=body, headers=U1).status_code == 403

    assert client.delete("/api/batches/B-DA-25/A", headers=TRAINER).status_code == 200
    assert seeded.get("batches", "B-DA-25") is None


def test_attendance_flow(client):
    body = {
        "courseId": "C1",
        "batchId": BATCH_ID,
        "studentDetails": [
            {"studentId": "u1", "name": "Asha", "status": "Present"},
            {"studentId": "u2", "name": "Ravi", "status": "Absent"},
        ],
        "documentId": RECORD_ID,
    }
    response = client.post("/api/attendance", json=body, headers=TRAINER)
    assert response.status_code == 201
    assert response.json()["data"]["created"] is True

    progress = client.get("/api/progress/u1/C1", headers=U1).json()["data"]
    assert progress["totalPresent"] == 1
    assert progress["attendanceRate"] == 100

    assert client.get("/api/progress/u1/C1", headers=U2).status_code == 403
    assert client.get(f"/api/attendance/{RECORD_ID}", headers=U1).json()["data"]["presentStudents"] == 1
    trainees = client.get(f"/api/attendance/trainees/{BATCH_ID}", headers=U1).json()["data"]
    assert {t["traineeId"] for t in trainees} == {"u1", "u2"}

    assert client.delete(f"/api/attendance/{RECORD_ID}", headers=TRAINER).status_code == 200
    assert client.get("/api/progress/u1/C1", headers=U1).json()["data"]["totalPresent"] == 0


def test_attendance_for_non_roster_student(client):
    body = {
        "courseId": "C1",
        "batchId": BATCH_ID,
        "studentDetails": [{"studentId": "stranger", "status": "Present"}],
    }
    response = client.post("/api/attendance", json=body, headers=TRAINER)
    assert response.status_code == 400
    payload = response.json()
    assert payload["message"] == "Some students are not enrolled in this batch"
    assert payload["invalidStudents"] == [{"studentId": "stranger", "name": None}]


def test_request_validation_uses_error_envelope(client):
    response = client.post("/api/attendance", json={"courseId": "C1"}, headers=TRAINER)
    assert response.status_code == 400
    payload = response.json()
    assert payload["success"] is False
    assert payload["error"] == "VALIDATION_ERROR"
    assert {e["field"] for e in payload["errors"]} >= {"batchId", "studentDetails"}


def test_assignment_submission_and_rankings(client):
    body = {
        "assignmentName": "Quiz 1",
        "courseId": "C1",
        "batchId": BATCH_ID,
        "questions": [{"question": "2 + 2?"}],
        "assignmentDate": "2025-04-10",
        "totalMarks": 50,
    }
    created = client.post("/api/assignment", json=body, headers=TRAINER)
    assert created.status_code == 201
    assert created.json()["data"]["documentId"] == RECORD_ID

    bad = client.post("/api/assignment", json={**body, "assignmentName": "Quiz.1"}, headers=TRAINER)
    assert bad.status_code == 400

    url = f"/api/assignment/{RECORD_ID}/Quiz 1"
    assert client.post(f"{url}/submit", json={"score": 40}, headers=U1).status_code == 200
    assert client.post(f"{url}/submit", json={"score": 30}, headers=U2).status_code == 200
    duplicate = client.post(f"{url}/submit", json={"score": 50}, headers=U1)
    assert duplicate.status_code == 400
    assert duplicate.json()["error"] == "CONFLICT"

    impersonation = client.post(f"{url}/submit", json={"score": 50, "traineeId": "u2"}, headers=U1)
    assert impersonation.status_code == 403

    updated = client.put(url, json={"status": "Completed"}, headers=TRAINER).json()["data"]
    assert updated["status"] == "Completed"
    assert len(updated["submissions"]) == 2

    listed = client.get(f"/api/assignment/batch/{BATCH_ID}", headers=U1).json()["data"]
    assert [a["assignmentName"] for a in listed] == ["Quiz 1"]

    ranking = client.get(f"/api/ranking/batch/{BATCH_ID}", headers=U1).json()["data"]
    assert [r["traineeId"] for r in ranking] == ["u1", "u2"]
    assert ranking[0]["averageScore"] == 80
    assert ranking[1]["averageScore"] == 60

    by_assignment = client.get(f"/api/ranking/assignment/{RECORD_ID}/Quiz 1", headers=U1).json()["data"]
    assert [s["score"] for s in by_assignment] == [40, 30]

    assert client.get("/api/progress/u1/C1", headers=U1).json()["data"]["averageScore"] == 80
    assert client.delete(url, headers=TRAINER).status_code == 200
    assert client.get(url, headers=U1).status_code == 404


def test_roles_admin_only_and_rename_rules(client):
    for name in ("Admin", "Trainer", "Mentor"):
        response = client.post("/api/roles", json={"name": name, "permissions": {"attendance": True}}, headers=ADMIN)
        assert response.status_code == 201

    assert client.post("/api/roles", json={"name": "Coach"}, headers=TRAINER).status_code == 403
    assert client.post("/api/roles", json={"name": "Mentor"}, headers=ADMIN).json()["error"] == "CONFLICT"

    clash = client.put("/api/roles/Trainer", json={"name": "Mentor"}, headers=ADMIN)
    assert clash.status_code == 400
    assert clash.json()["error"] == "CONFLICT"

    renamed = client.put("/api/roles/Trainer", json={"name": "Coach"}, headers=ADMIN)
    assert renamed.status_code == 200
    names = [r["name"] for r in client.get("/api/roles", headers=U1).json()["data"]]
    assert names == ["Admin", "Coach", "Mentor"]

    assert client.put("/api/roles/Admin", json={"active": False}, headers=ADMIN).status_code == 400
    assert client.delete("/api/roles/Admin", headers=ADMIN).status_code == 400
    assert client.delete("/api/roles/Mentor", headers=ADMIN).status_code == 200
    assert client.delete("/api/roles/Mentor", headers=ADMIN).status_code == 404


def test_payment_and_enrollment(client, seeded):
    assert client.get("/api/enrollments/check/C1", headers=U1).json()["enrolled"] is True
    u3 = auth("u3", "Trainee")
    assert client.get("/api/enrollments/check/C1", headers=u3).json()["enrolled"] is False

    order = client.post("/api/payments/create-order", json={"courseId": "C1", "batchId": BATCH_ID}, headers=u3)
    assert order.json()["orderId"] == "order_api"
    assert order.json()["key_id"] == "rzp_test_key"

    forged = client.post("/api/payments/verify-payment", json={
        "razorpay_order_id": "order_api",
        "razorpay_payment_id": "pay_1",
        "razorpay_signature": "forged",
    })
    assert forged.status_code == 403

    verified = client.post("/api/payments/verify-payment", json={
        "razorpay_order_id": "order_api",
        "razorpay_payment_id": "pay_1",
        "razorpay_signature": sign_payment("order_api", "pay_1", KEY_SECRET),
    })
    assert verified.status_code == 200
    assert client.get("/api/payments/status/order_api", headers=u3).json()["status"] == "paid"
    assert client.get("/api/enrollments/check/C1", headers=u3).json()["enrolled"] is True

    fees = client.get("/api/payments/fees", headers=u3).json()["data"]
    assert fees == [{
        "courseId": "C1",
        "title": "Full-stack Development",
        "fee": 1499.5,
        "status": "Unknown",
        "instructor": "Unknown",
        "createdAt": None,
    }]


def test_drain_and_rebuild_need_admin(client):
    assert client.post("/api/propagation/drain", headers=TRAINER).status_code == 403
    assert client.post("/api/propagation/drain", headers=ADMIN).json()["data"]["retried"] == 0
    rebuilt = client.post("/api/progress/u1/C1/rebuild", headers=ADMIN)
    assert rebuilt.status_code == 200
    assert rebuilt.json()["data"]["totalPresent"] == 0


def test_course_editing_routes(client, seeded):
    updated = client.put("/api/courses/C1", json={"title": "Full-stack Web", "level": "Beginner"}, headers=TRAINER)
    assert updated.status_code == 200
    assert updated.json()["data"]["title"] == "Full-stack Web"
    assert updated.json()["data"]["level"] == "Beginner"
    assert client.put("/api/courses/C1", json={"course_fee": -1}, headers=TRAINER).status_code == 400
    assert client.put("/api/courses/C1", json={"title": "x"}, headers=U1).status_code == 403
    assert client.put("/api/courses/C9", json={"title": "x"}, headers=TRAINER).status_code == 404

    section = {"sectionType": "outcomes", "sectionData": {"intro": "After this course", "items": ["REST"]}}
    response = client.put("/api/courses/C1/sections", json=section, headers=TRAINER)
    assert response.json()["message"] == "Course outcomes updated successfully"
    assert seeded.get("courses", "C1")["outcomes"]["items"] == ["REST"]
    bad = client.put("/api/courses/C1/sections", json={"sectionType": "thumbnail", "sectionData": {}}, headers=TRAINER)
    assert bad.status_code == 400

    about = {"about": {"paragraphs": ["Hands-on"]}}
    assert client.put("/api/courses/C1/about", json=about, headers=TRAINER).status_code == 200
    modules = [{"title": "HTTP"}]
    assert client.put("/api/courses/C1/modules", json={"modules": modules}, headers=TRAINER).status_code == 200
    assert client.get("/api/courses/C1/modules", headers=U1).json()["data"] == modules

    assert client.delete("/api/courses/C1/sections/outcomes", headers=TRAINER).json()["data"]["outcomes"] == {
        "intro": "",
        "items": [],
    }
    assert client.delete("/api/courses/C1/modules", headers=TRAINER).status_code == 200
    assert client.get("/api/courses/C1/modules", headers=U1).json()["data"] == []
    assert client.delete("/api/courses/C1/about", headers=TRAINER).json()["data"]["about"] == {"paragraphs": []}


def test_attendance_document_id_from_another_batch(client, seeded):
    body = {
        "courseId": "C1",
        "batchId": BATCH_ID,
        "studentDetails": [{"studentId": "u1", "status": "Present"}],
        "documentId": "11-04-25-B-FD-25-Z",
    }
    response = client.post("/api/attendance", json=body, headers=TRAINER)
    assert response.status_code == 400
    assert response.json()["error"] == "VALIDATION_ERROR"
    assert seeded.query("attendance") == []


def test_non_finite_score_and_marks_update(client):
    body = {
        "assignmentName": "Quiz 1",
        "courseId": "C1",
        "batchId": BATCH_ID,
        "questions": [{"question": "2 + 2?"}],
        "assignmentDate": "2025-04-10",
        "totalMarks": 50,
    }
    client.post("/api/assignment", json=body, headers=TRAINER)
    url = f"/api/assignment/{RECORD_ID}/Quiz 1"

    nan = client.post(f"{url}/submit", json={"score": "NaN"}, headers=U1)
    assert nan.status_code == 400
    assert client.post(f"{url}/submit", json={"score": 40}, headers=U1).status_code == 200

    moved = client.put(url, json={"batchId": "B-FD-25-B"}, headers=TRAINER)
    assert moved.json()["error"] == "CONFLICT"
    remarked = client.put(url, json={"totalMarks": 80}, headers=TRAINER).json()
    assert remarked["propagation"] == {"applied": 2, "failed": 0}
    assert client.get("/api/progress/u1/C1", headers=U1).json()["data"]["averageScore"] == 50
    assert client.get(f"/api/ranking/batch/{BATCH_ID}", headers=U1).json()["data"][0]["averageScore"] == 50
