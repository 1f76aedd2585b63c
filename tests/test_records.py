import logging

import pytest

import factories
from errors import AuthenticationError, RecordNotFoundError, RecordValidationError
from records import RecordService


def _enrolled(service):
    student = service.create("students", factories.student())
    klass = service.create("classes", factories.klass())
    service.create("class_enrollments", factories.enrollment(klass.id, student.id))
    return student, klass


def test_create_missing_business_key_is_rejected(service, store):
    payload = factories.student()
    del payload["studentId"]
    with pytest.raises(RecordValidationError) as exc:
        service.create("students", payload)
    assert "studentId" in exc.value.fields
    assert store.students.count() == 0
    assert store.activities.count() == 0


def test_create_rejects_bad_enum(service, store):
    student, klass = _enrolled(service)
    with pytest.raises(RecordValidationError) as exc:
        service.create("attendance", factories.attendance(klass.id, student.id, status="sleeping"))
    assert list(exc.value.fields) == ["status"]
    assert store.attendance.count() == 0


def test_update_validates_supplied_fields(service):
    student, klass = _enrolled(service)
    grade = service.create("grades", factories.grade(klass.id, student.id))
    with pytest.raises(RecordValidationError) as exc:
        service.update("grades", grade.id, {"score": -1})
    assert "score" in exc.value.fields
    assert service.get("grades", grade.id).score == 18


def test_update_rejects_null_for_required_field(service):
    student = service.create("students", factories.student())
    with pytest.raises(RecordValidationError):
        service.update("students", student.id, {"firstName": None})


def test_update_can_clear_optional_field(service):
    student = service.create("students", factories.student(phone="555-0100"))
    updated = service.update("students", student.id, {"phone": None})
    assert updated.phone is None
    assert updated.first_name == "Sarah"


def test_update_missing_record(service):
    with pytest.raises(RecordNotFoundError):
        service.update("events", 9, {"title": "Moved"})


def test_get_missing_record(service):
    with pytest.raises(RecordNotFoundError) as exc:
        service.get("students", 1)
    assert str(exc.value) == "Student not found"


def test_delete_missing_record(service):
    with pytest.raises(RecordNotFoundError):
        service.delete("grades", 1)


def test_teacher_user_must_exist(service, store):
    with pytest.raises(RecordValidationError) as exc:
        service.create("teachers", factories.teacher(userId=99))
    assert exc.value.fields == {"userId": ["User 99 does not exist"]}
    assert store.teachers.count() == 0


def test_enrollment_references_must_exist(service):
    student = service.create("students", factories.student())
    with pytest.raises(RecordValidationError) as exc:
        service.create("class_enrollments", factories.enrollment(5, student.id))
    assert list(exc.value.fields) == ["classId"]


def test_duplicate_student_id_is_a_validation_error(service):
    service.create("students", factories.student())
    with pytest.raises(RecordValidationError) as exc:
        service.create("students", factories.student(firstName="Other"))
    assert exc.value.fields["studentId"] == ["Student with this studentId already exists"]


def test_duplicate_enrollment_is_rejected(service):
    student, klass = _enrolled(service)
    with pytest.raises(RecordValidationError) as exc:
        service.create("class_enrollments", factories.enrollment(klass.id, student.id))
    assert set(exc.value.fields) == {"classId", "studentId"}


def test_dashboard_stats_without_attendance(service):
    stats = service.dashboard_stats()
    assert stats.attendance_rate == 0
    assert stats.total_students == 0


def test_dashboard_stats_three_of_four(service):
    student, klass = _enrolled(service)
    for status in ("present", "late", "present", "absent"):
        service.create("attendance", factories.attendance(klass.id, student.id, status=status))
    assert service.dashboard_stats().attendance_rate == 75.0


def test_dashboard_scenario(service):
    student, klass = _enrolled(service)
    service.create("attendance", factories.attendance(klass.id, student.id, status="present"))
    service.create("attendance", factories.attendance(klass.id, student.id, status="absent"))

    stats = service.dashboard_stats()
    assert stats.total_students == 1
    assert stats.total_classes == 1
    assert stats.total_teachers == 0
    assert stats.attendance_rate == 50.0


def test_each_mutation_records_an_activity(service):
    student, klass = _enrolled(service)
    service.update("students", student.id, {"section": "B"})
    mark = service.create("attendance", factories.attendance(klass.id, student.id, status="late"))
    service.delete("attendance", mark.id)

    feed = service.activities()
    assert [a.action for a in feed] == [
        "Deleted Attendance",
        "Marked Attendance",
        "Updated Student",
        "Enrolled Student",
        "Added Class",
        "Added Student",
    ]
    details = {a.action: a.details for a in feed}
    assert details["Added Student"] == "Added Sarah Johnson to Grade 9-A"
    assert details["Enrolled Student"] == "Enrolled Sarah Johnson in Algebra"
    assert details["Marked Attendance"] == "Marked Sarah Johnson as late for Algebra"
    assert details["Added Class"] == "Added Algebra (MATH1) for Grade 9"


def test_activity_limit(service):
    for n in range(3):
        service.create("events", factories.event(title=f"Event {n}"))
    assert len(service.activities(limit=2)) == 2


def test_grade_activity_formats_scores(service):
    student, klass = _enrolled(service)
    service.create("grades", factories.grade(klass.id, student.id, score=19, max_score=20))
    assert service.activities()[0].details == "Added grade for Sarah Johnson in Algebra: 19/20"


def test_activity_actor(service):
    service.create("events", factories.event(), actor_id=7)
    service.create("events", factories.event())
    assert [a.user_id for a in service.activities()] == [1, 7]


def test_failed_activity_write_does_not_fail_mutation(service, store, monkeypatch, caplog):
    def broken(data):
        raise RuntimeError("activity log unavailable")

    monkeypatch.setattr(store.activities, "create", broken)
    with caplog.at_level(logging.ERROR, logger="records"):
        student = service.create("students", factories.student())

    assert store.students.get(student.id) == student
    assert "Failed to record activity" in caplog.text


def test_failed_validation_records_nothing(service, store):
    with pytest.raises(RecordValidationError):
        service.create("events", {"title": "No date"})
    assert store.activities.count() == 0


def test_deleting_student_removes_dependents(service, store):
    student, klass = _enrolled(service)
    service.create("attendance", factories.attendance(klass.id, student.id))
    service.delete("students", student.id)
    assert store.class_enrollments.count() == 0
    assert store.attendance.count() == 0
    assert service.activities()[0].details == "Deleted Sarah Johnson from the system"


def test_passwords_are_hashed(service, store):
    created = service.create("users", factories.user())
    assert store.users.get(created.id).password != "s3cret"


def test_login_returns_public_fields(service):
    created = service.create("users", factories.user())
    user = service.login("jcooper", "s3cret")
    assert user.id == created.id
    assert user.full_name == "Jane Cooper"
    assert user.role == "admin"
    assert "password" not in user.model_dump()


def test_login_after_password_change(service):
    created = service.create("users", factories.user())
    service.update("users", created.id, {"password": "changed"})
    with pytest.raises(AuthenticationError):
        service.login("jcooper", "s3cret")
    assert service.login("jcooper", "changed").id == created.id


@pytest.mark.parametrize("username, password", [("jcooper", "wrong"), ("nobody", "s3cret")])
def test_login_failures(service, username, password):
    service.create("users", factories.user())
    with pytest.raises(AuthenticationError):
        service.login(username, password)


def test_list_filters(service):
    student, klass = _enrolled(service)
    other = service.create("classes", factories.klass(classCode="BIO1", className="Biology"))
    service.create("attendance", factories.attendance(klass.id, student.id, date="2024-05-01"))
    service.create("attendance", factories.attendance(other.id, student.id, date="2024-05-02"))

    assert len(service.list("attendance")) == 2
    assert [a.class_id for a in service.list("attendance", class_id=other.id)] == [other.id]
    assert len(service.list("attendance", class_id=None, student_id=student.id)) == 2


def test_list_rejects_unknown_filter(service):
    with pytest.raises(RecordValidationError):
        service.list("events", class_id=1)


def test_student_summary(service):
    student, klass = _enrolled(service)
    service.create("grades", factories.grade(klass.id, student.id, score=19, max_score=20))
    service.create("grades", factories.grade(klass.id, student.id, score=75, max_score=100))
    service.create("attendance", factories.attendance(klass.id, student.id, status="present"))
    service.create("attendance", factories.attendance(klass.id, student.id, status="excused"))

    summary = service.student_summary(student.id)
    assert summary.grade_count == 2
    assert summary.average_percentage == 85.0
    assert summary.gpa == 3.5
    assert summary.attendance_rate == 50.0


def test_student_summary_without_records(service):
    student = service.create("students", factories.student())
    summary = service.student_summary(student.id)
    assert summary.gpa is None
    assert summary.attendance_rate is None


def test_export_csv_quotes_comments(service):
    student, klass = _enrolled(service)
    service.create("grades", factories.grade(klass.id, student.id, comments='He said, "great job"'))
    text = service.export_csv("grades", ["assignmentName", "comments"])
    assert text == 'assignmentName,comments\nQuiz 1,"He said, ""great job"""\n'


def test_export_csv_hides_passwords(service):
    service.create("users", factories.user())
    header = service.export_csv("users").splitlines()[0]
    assert header == "id,username,role,fullName,email,avatar"


def test_export_csv_unknown_field(service):
    with pytest.raises(RecordValidationError):
        service.export_csv("students", ["nope"])


def test_list_filters_coerce_values_on_every_store(any_store):
    service = RecordService(any_store)
    student, klass = _enrolled(service)
    service.create("attendance", factories.attendance(klass.id, student.id, date="2024-05-01"))

    assert len(service.list("attendance", date="2024-05-01")) == 1
    assert len(service.list("attendance", class_id=str(klass.id))) == 1
    assert service.list("attendance", date="2024-05-02") == []


def test_list_rejects_uncoercible_filter(service):
    with pytest.raises(RecordValidationError) as exc:
        service.list("grades", class_id="abc")
    assert list(exc.value.fields) == ["classId"]


def test_nan_score_is_rejected(service, store):
    student, klass = _enrolled(service)
    with pytest.raises(RecordValidationError) as exc:
        service.create("grades", factories.grade(klass.id, student.id, score=float("nan")))
    assert list(exc.value.fields) == ["score"]
    assert store.grades.count() == 0
