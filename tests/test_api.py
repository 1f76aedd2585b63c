import json

from fastapi.testclient import TestClient

import factories
import main


def _post(client, path, payload):
    response = client.post(f"/api/{path}", json=payload)
    assert response.status_code == 201, response.text
    return response.json()


def _enrolled(client):
    student = _post(client, "students", factories.student())
    klass = _post(client, "classes", factories.klass())
    _post(client, "class-enrollments", factories.enrollment(klass["id"], student["id"]))
    return student, klass


def test_root(client):
    assert client.get("/").json() == {"message": "School Records API is running"}


def test_health(client):
    body = client.get("/api/health").json()
    assert body["backend"] == "running"
    assert body["store"] == "memory"
    assert body["collections"]["students"] == 0


def test_schema_lists_entities(client):
    body = client.get("/api/schema").json()
    assert {"Student", "Teacher", "Class", "Attendance", "Grade", "Event"} <= set(body)
    assert "studentId" in body["Student"]["properties"]


def test_create_student_returns_camel_case_record(client):
    body = _post(client, "students", factories.student())
    assert body["id"] == 1
    assert body["firstName"] == "Sarah"
    assert body["dateOfBirth"] == "2007-05-15"
    assert client.get("/api/students/1").json() == body


def test_missing_student(client):
    response = client.get("/api/students/99")
    assert response.status_code == 404
    assert response.json() == {"error": "Student not found"}


def test_non_numeric_id_is_a_bad_request(client):
    response = client.get("/api/students/abc")
    assert response.status_code == 400
    assert "error" in response.json()


def test_invalid_body_is_rejected_without_side_effects(client, store):
    payload = factories.student()
    del payload["studentId"]
    response = client.post("/api/students", json=payload)
    assert response.status_code == 400
    assert "studentId" in response.json()["error"]["fields"]
    assert store.students.count() == 0
    assert client.get("/api/activities").json() == []


def test_duplicate_business_key(client):
    _post(client, "students", factories.student())
    response = client.post("/api/students", json=factories.student())
    assert response.status_code == 400
    assert response.json()["error"]["fields"]["studentId"] == ["Student with this studentId already exists"]


def test_update_merges_fields(client):
    created = _post(client, "students", factories.student())
    response = client.put(f"/api/students/{created['id']}", json={"section": "B"})
    assert response.status_code == 200
    assert response.json() == {**created, "section": "B"}


def test_update_errors(client):
    assert client.put("/api/students/5", json={"section": "B"}).status_code == 404
    created = _post(client, "students", factories.student())
    response = client.put(f"/api/students/{created['id']}", json={"gender": "X"})
    assert response.status_code == 400
    assert list(response.json()["error"]["fields"]) == ["gender"]


def test_delete_then_missing(client):
    created = _post(client, "events", factories.event())
    assert client.delete(f"/api/events/{created['id']}").status_code == 204
    assert client.delete(f"/api/events/{created['id']}").status_code == 404
    assert client.get(f"/api/events/{created['id']}").status_code == 404


def test_users_never_expose_password(client):
    created = _post(client, "users", factories.user())
    assert "password" not in created
    assert all("password" not in u for u in client.get("/api/users").json())


def test_login(client):
    _post(client, "users", factories.user())
    response = client.post("/api/auth/login", json={"username": "jcooper", "password": "s3cret"})
    assert response.status_code == 200
    body = response.json()
    assert body["fullName"] == "Jane Cooper"
    assert body["tokenType"] == "bearer"
    assert body["accessToken"]
    assert "password" not in body


def test_login_failures(client):
    _post(client, "users", factories.user())
    response = client.post("/api/auth/login", json={"username": "jcooper", "password": "nope"})
    assert response.status_code == 401
    assert response.json() == {"error": "Invalid username or password"}
    assert client.post("/api/auth/login", json={"username": "jcooper"}).status_code == 400


def test_bearer_token_sets_activity_actor(client):
    _post(client, "users", factories.user())
    _post(client, "users", factories.user(username="rfox", email="rfox@school.edu", role="teacher"))
    token = client.post("/api/auth/login", json={"username": "rfox", "password": "s3cret"}).json()["accessToken"]

    response = client.post("/api/events", json=factories.event(), headers={"Authorization": f"Bearer {token}"})
    assert response.status_code == 201
    feed = client.get("/api/activities").json()
    assert feed[0]["action"] == "Added Event"
    assert feed[0]["userId"] == 2
    assert feed[1]["userId"] == 1


def test_attendance_filters(client):
    student, klass = _enrolled(client)
    other = _post(client, "classes", factories.klass(classCode="BIO1", className="Biology"))
    _post(client, "attendance", factories.attendance(klass["id"], student["id"], date="2024-05-01"))
    _post(client, "attendance", factories.attendance(other["id"], student["id"], date="2024-05-02"))

    by_class = client.get("/api/attendance", params={"classId": other["id"]}).json()
    assert [a["classId"] for a in by_class] == [other["id"]]
    by_day = client.get("/api/attendance", params={"date": "2024-05-01T09:30:00"}).json()
    assert [a["date"] for a in by_day] == ["2024-05-01"]
    assert client.get("/api/attendance", params={"date": "yesterday"}).status_code == 400


def test_dashboard_scenario(client):
    student, klass = _enrolled(client)
    _post(client, "attendance", factories.attendance(klass["id"], student["id"], status="present"))
    _post(client, "attendance", factories.attendance(klass["id"], student["id"], status="absent"))
    assert client.get("/api/dashboard/stats").json() == {
        "totalStudents": 1,
        "totalTeachers": 0,
        "totalClasses": 1,
        "attendanceRate": 50.0,
    }


def test_activities_newest_first_with_limit(client):
    _enrolled(client)
    feed = client.get("/api/activities", params={"limit": 2}).json()
    assert [a["action"] for a in feed] == ["Enrolled Student", "Added Class"]
    assert client.get("/api/activities", params={"limit": 0}).status_code == 400


def test_student_summary(client):
    student, klass = _enrolled(client)
    _post(client, "grades", factories.grade(klass["id"], student["id"], score=19, max_score=20))
    body = client.get(f"/api/students/{student['id']}/summary").json()
    assert body["gradeCount"] == 1
    assert body["gpa"] == 4.0
    assert body["attendanceRate"] is None


def test_export_csv(client):
    student, klass = _enrolled(client)
    _post(client, "grades", factories.grade(klass["id"], student["id"], comments='He said, "great job"'))
    response = client.get("/api/export/grades", params={"fields": "assignmentName,comments"})
    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/csv")
    assert 'filename="grades.csv"' in response.headers["content-disposition"]
    assert response.text == 'assignmentName,comments\nQuiz 1,"He said, ""great job"""\n'


def test_export_of_hyphenated_collection(client):
    student, klass = _enrolled(client)
    lines = client.get("/api/export/class-enrollments").text.splitlines()
    assert lines[0].split(",")[:3] == ["id", "classId", "studentId"]
    assert lines[1].startswith(f"1,{klass['id']},{student['id']}")


def test_unexpected_error_is_a_500(app, monkeypatch):
    def broken():
        raise RuntimeError("boom")

    monkeypatch.setattr(app.state.service, "dashboard_stats", broken)
    client = TestClient(app, raise_server_exceptions=False)
    response = client.get("/api/dashboard/stats")
    assert response.status_code == 500
    assert response.json() == {"error": "Internal server error"}


def test_non_finite_score_is_rejected(client, store):
    student, klass = _enrolled(client)
    body = json.dumps(factories.grade(klass["id"], student["id"], max_score=float("inf")))
    response = client.post("/api/grades", content=body, headers={"Content-Type": "application/json"})
    assert response.status_code == 400
    assert "maxScore" in response.json()["error"]["fields"]
    assert store.grades.count() == 0


def test_boolean_foreign_keys_are_rejected(client, store):
    _enrolled(client)
    response = client.post("/api/attendance", json=factories.attendance(True, True))
    assert response.status_code == 400
    assert set(response.json()["error"]["fields"]) == {"classId", "studentId"}
    assert store.attendance.count() == 0


def test_importing_main_builds_no_app():
    assert not hasattr(main, "app")
