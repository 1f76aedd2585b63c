"""Demo data for a fresh store.

Loads one admin account and a small school: three teachers, five students,
three classes with enrollments, two days of attendance, a few grades, next
month's calendar and some feed entries. The store is passed in; nothing here
holds state.
"""

import datetime as dt

from security import hash_password

TEACHERS = [
    ("TCH1001", "Robert", "Fox", "robert.fox@school.edu", "M.Ed in Mathematics", dt.date(2020, 8, 1), ["Mathematics", "Physics"]),
    ("TCH1002", "Esther", "Howard", "esther.howard@school.edu", "Ph.D in Literature", dt.date(2019, 7, 15), ["English Literature", "Grammar"]),
    ("TCH1003", "Cameron", "Smith", "cameron.smith@school.edu", "M.Sc in Biology", dt.date(2021, 1, 10), ["Biology", "Chemistry"]),
]

STUDENTS = [
    ("STU10045", "Sarah", "Johnson", "F", dt.date(2007, 5, 15), "Michael Johnson", "10", "A", dt.date(2022, 9, 1)),
    ("STU10046", "Michael", "Brown", "M", dt.date(2006, 8, 22), "Patricia Brown", "11", "B", dt.date(2021, 9, 1)),
    ("STU10047", "Emma", "Wilson", "F", dt.date(2007, 3, 10), "David Wilson", "10", "A", dt.date(2022, 9, 1)),
    ("STU10048", "James", "Taylor", "M", dt.date(2008, 12, 5), "Mary Taylor", "9", "C", dt.date(2023, 9, 1)),
    ("STU10049", "Olivia", "Martin", "F", dt.date(2006, 6, 30), "Robert Martin", "11", "A", dt.date(2021, 9, 1)),
]

# (name, code, grade, section, description, teacher, schedule, room)
CLASSES = [
    ("Mathematics 101", "MATH101", "10", "A", "Basic algebra and geometry concepts", 0, "Mon, Wed, Fri 9:00-10:00", "101"),
    ("English Literature", "ENG201", "11", "B", "Study of classic literature works", 1, "Tue, Thu 10:00-11:30", "202"),
    ("Biology", "BIO101", "9", "C", "Introduction to biological concepts", 2, "Mon, Wed 1:00-2:30", "305"),
]

# (class, student) by list position
ENROLLMENTS = [(0, 0), (0, 2), (1, 1), (1, 4), (2, 3)]

# (class, student, days ago, status, notes)
ATTENDANCE = [
    (0, 0, 0, "present", ""),
    (0, 2, 0, "present", ""),
    (1, 1, 0, "late", "Arrived 10 minutes late"),
    (1, 4, 0, "present", ""),
    (2, 3, 0, "absent", "No notification received"),
    (0, 0, 1, "present", ""),
    (0, 2, 1, "present", ""),
]

GRADES = [
    (0, 0, "Algebra Quiz 1", "quiz", 20, 19, dt.date(2023, 9, 15), "Excellent work!"),
    (0, 2, "Algebra Quiz 1", "quiz", 20, 18, dt.date(2023, 9, 15), "Great job!"),
    (1, 1, "Essay on Shakespeare", "homework", 50, 45, dt.date(2023, 9, 20), "Well written, good analysis."),
    (1, 4, "Essay on Shakespeare", "homework", 50, 48, dt.date(2023, 9, 20), "Outstanding work, very insightful."),
    (2, 3, "Cell Structure Test", "exam", 100, 72, dt.date(2023, 9, 25), "Need improvement in understanding organelles."),
]

# (title, description, day of next month, start, end, all day, location, type)
EVENTS = [
    ("Final Exams - Grade 10", "End of semester examinations for all Grade 10 students", 2, "08:00", "12:00", False, "Examination Hall", "exam"),
    ("Parent-Teacher Meeting", "Semester review with parents", 5, "14:00", "17:00", False, "School Auditorium", "meeting"),
    ("School Sports Day", "Annual athletics competition", 10, "09:00", "16:00", True, "School Sports Ground", "activity"),
    ("Annual Science Fair", "Showcase of student science projects", 15, "10:00", "15:00", False, "School Hall", "activity"),
]

ACTIVITIES = [
    ("Added Student", "Added Sarah Johnson to Grade 10-A"),
    ("Updated Grade", "Updated Algebra Quiz 1 grades for Mathematics 101"),
    ("Marked Attendance", "Marked attendance for English Literature class"),
    ("Added Class", "Added Mathematics 101 for Grade 10-A"),
    ("Updated Teacher", "Updated contact information for Cameron Smith"),
]


def _next_month(today: dt.date) -> dt.date:
    if today.month == 12:
        return dt.date(today.year + 1, 1, 1)
    return dt.date(today.year, today.month + 1, 1)


def seed_sample_data(store, today=None):
    today = today or dt.date.today()
    admin = store.users.create({
        "username": "admin",
        "password": hash_password("admin123"),
        "role": "admin",
        "full_name": "Jane Cooper",
        "email": "admin@school.edu",
    })

    teachers = []
    for n, (code, first, last, email, qualification, joined, subjects) in enumerate(TEACHERS):
        teachers.append(store.teachers.create({
            "teacher_id": code,
            "first_name": first,
            "last_name": last,
            "email": email,
            "phone": f"+1-555-{123 + 111 * n}-{4567 + 1111 * n}",
            "qualification": qualification,
            "join_date": joined,
            "subjects": subjects,
            "user_id": admin.id if n == 0 else None,
        }))

    students = []
    for n, (code, first, last, gender, born, guardian, grade, section, enrolled) in enumerate(STUDENTS, 1):
        students.append(store.students.create({
            "student_id": code,
            "first_name": first,
            "last_name": last,
            "gender": gender,
            "date_of_birth": born,
            "email": f"{first.lower()}.{last[0].lower()}@example.com",
            "phone": f"+1 234-567-890{n}",
            "guardian_name": guardian,
            "guardian_phone": f"+1 234-567-89{n}0",
            "grade_level": grade,
            "section": section,
            "enrollment_date": enrolled,
        }))

    classes = []
    for name, code, grade, section, description, teacher, schedule, room in CLASSES:
        classes.append(store.classes.create({
            "class_name": name,
            "class_code": code,
            "grade_level": grade,
            "section": section,
            "description": description,
            "teacher_id": teachers[teacher].id,
            "schedule": schedule,
            "room_number": room,
            "academic_year": "2023-2024",
        }))

    for c, s in ENROLLMENTS:
        store.class_enrollments.create({
            "class_id": classes[c].id,
            "student_id": students[s].id,
            "enrollment_date": dt.date(2023, 9, 1),
        })

    for c, s, days_ago, status, notes in ATTENDANCE:
        store.attendance.create({
            "class_id": classes[c].id,
            "student_id": students[s].id,
            "date": today - dt.timedelta(days=days_ago),
            "status": status,
            "notes": notes,
        })

    for c, s, name, kind, max_score, score, graded, comments in GRADES:
        store.grades.create({
            "class_id": classes[c].id,
            "student_id": students[s].id,
            "assignment_name": name,
            "assignment_type": kind,
            "max_score": max_score,
            "score": score,
            "graded_date": graded,
            "comments": comments,
        })

    month = _next_month(today)
    for title, description, day, start, end, all_day, location, kind in EVENTS:
        on = month.replace(day=day)
        store.events.create({
            "title": title,
            "description": description,
            "start_date": on,
            "end_date": on,
            "start_time": start,
            "end_time": end,
            "all_day": all_day,
            "location": location,
            "type": kind,
        })

    for action, details in ACTIVITIES:
        store.activities.create({"user_id": admin.id, "action": action, "details": details})
