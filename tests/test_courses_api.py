import time

from campus_attendance.domain.entities import Role, RoleResolution
from campus_attendance.interfaces.http.authz import require_admin
from conftest import DEV_WALLET, STUDENT_1, as_wallet


def course_payload(name="Blockchain Basics", start=None, end=None):
    now = int(time.time())
    return {"name": name, "startTime": now if start is None else start,
            "endTime": now + 3600 if end is None else end}


def test_create_course(client):
    resp = client.post("/api/courses", json=course_payload(), headers=as_wallet(DEV_WALLET))
    assert resp.status_code == 201
    data = resp.json()
    assert data["courseId"] == 1
    assert data["course"]["name"] == "Blockchain Basics"
    assert data["course"]["isActive"] is True
    assert data["course"]["teacher"] == DEV_WALLET
    assert data["transactionHash"].startswith("0x")


def test_course_ids_are_sequential(client, open_course):
    assert [open_course(f"Course {i}") for i in range(3)] == [1, 2, 3]


def test_create_course_requires_admin(client):
    resp = client.post("/api/courses", json=course_payload(), headers=as_wallet(STUDENT_1))
    assert resp.status_code == 403
    assert resp.json()["error"] == "InsufficientPermission"


def test_create_course_by_promoted_admin(client):
    client.post("/api/users/add-admin", json={"adminAddress": STUDENT_1}, headers=as_wallet(DEV_WALLET))
    resp = client.post("/api/courses", json=course_payload(), headers=as_wallet(STUDENT_1))
    assert resp.status_code == 201


def test_create_course_start_after_end(client):
    resp = client.post("/api/courses", json=course_payload(start=2000, end=1000), headers=as_wallet(DEV_WALLET))
    assert resp.status_code == 400
    assert resp.json()["error"] == "InvalidCourseTime"


def test_create_course_equal_times_rejected(client):
    resp = client.post("/api/courses", json=course_payload(start=1000, end=1000), headers=as_wallet(DEV_WALLET))
    assert resp.status_code == 400


def test_create_course_missing_name(client):
    resp = client.post("/api/courses", json={"startTime": 1, "endTime": 2}, headers=as_wallet(DEV_WALLET))
    assert resp.status_code == 400
    assert resp.json()["error"] == "ValidationError"


def test_list_courses(client, open_course):
    open_course("Algorithms")
    open_course("Networks")
    data = client.get("/api/courses").json()
    assert data["total"] == 2
    assert [c["name"] for c in data["courses"]] == ["Algorithms", "Networks"]
    assert [c["id"] for c in data["courses"]] == [1, 2]


def test_list_courses_empty(client):
    assert client.get("/api/courses").json() == {"success": True, "total": 0, "courses": []}


def test_get_course(client, open_course):
    course_id = open_course("Compilers")
    data = client.get(f"/api/courses/{course_id}").json()
    assert data["course"]["name"] == "Compilers"


def test_get_missing_course(client):
    resp = client.get("/api/courses/42")
    assert resp.status_code == 404
    assert resp.json()["error"] == "CourseNotFound"


def test_deactivate_course(client, open_course):
    course_id = open_course()
    resp = client.post(f"/api/courses/{course_id}/deactivate", headers=as_wallet(DEV_WALLET))
    assert resp.status_code == 200
    assert client.get(f"/api/courses/{course_id}").json()["course"]["isActive"] is False


def test_deactivate_requires_admin(client, open_course):
    course_id = open_course()
    resp = client.post(f"/api/courses/{course_id}/deactivate", headers=as_wallet(STUDENT_1))
    assert resp.status_code == 403


def test_deactivate_missing_course(client):
    resp = client.post("/api/courses/7/deactivate", headers=as_wallet(DEV_WALLET))
    assert resp.status_code == 404


def test_admin_gate_can_be_overridden(app, client):
    """Гейт подменяется через dependency_overrides, контракт остаётся настоящим"""
    app.dependency_overrides[require_admin] = lambda: RoleResolution(STUDENT_1, role=Role.ADMIN, is_admin=True)
    try:
        resp = client.post("/api/courses", json=course_payload(), headers=as_wallet(STUDENT_1))
    finally:
        app.dependency_overrides.clear()
    assert resp.status_code == 201
