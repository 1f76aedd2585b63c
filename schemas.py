"""
Schemas for the School Records API

Each ``*Create`` model below is the validated input shape of one collection and
the source of truth for the application domain. The stored record type adds the
surrogate ``id`` (and server-assigned fields), and the ``*Update`` type is the
same schema with every field optional for partial updates.

Attributes are snake_case in Python and camelCase on the wire.
"""

import datetime as dt
from typing import Annotated, Any, Dict, List, Literal, Optional, Type

from pydantic import BaseModel, ConfigDict, Field, create_model
from pydantic.alias_generators import to_camel

Role = Literal["admin", "teacher", "staff"]
Gender = Literal["M", "F", "Other"]
AttendanceStatus = Literal["present", "absent", "late", "excused"]
AssignmentType = Literal["exam", "quiz", "homework", "project"]
EventType = Literal["exam", "meeting", "holiday", "activity"]


class Schema(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, allow_inf_nan=False)


def partial_model(model: Type[Schema], name: str) -> Type[Schema]:
    """Derive a model where every field of ``model`` is optional.

    Constraints are kept, so a supplied value is validated exactly as on
    create. Omitted fields default to None and are dropped with
    ``exclude_unset`` by the caller.
    """
    fields: Dict[str, Any] = {}
    for field_name, info in model.model_fields.items():
        annotation = info.annotation
        if info.metadata:
            annotation = Annotated[(annotation, *info.metadata)]
        fields[field_name] = (annotation, Field(None, description=info.description))
    return create_model(name, __base__=Schema, **fields)


# Accounts
class UserCreate(Schema):
    username: str = Field(..., min_length=1)
    password: str = Field(..., min_length=1)
    role: Role = "teacher"
    full_name: str = Field(..., min_length=1)
    email: str = Field(..., min_length=3)
    avatar: Optional[str] = None


class User(UserCreate):
    id: int


class UserOut(Schema):
    id: int
    username: str
    role: Role
    full_name: str
    email: str
    avatar: Optional[str] = None


# People
class StudentCreate(Schema):
    student_id: str = Field(..., min_length=1, description="Business key, e.g. STU10045")
    first_name: str = Field(..., min_length=1)
    last_name: str = Field(..., min_length=1)
    gender: Gender
    date_of_birth: dt.date
    email: str
    phone: Optional[str] = None
    address: Optional[str] = None
    guardian_name: Optional[str] = None
    guardian_phone: Optional[str] = None
    grade_level: str = Field(..., min_length=1, description="e.g. 9, 10, 11, 12")
    section: str = Field(..., min_length=1, description="e.g. A, B, C")
    enrollment_date: dt.date
    avatar: Optional[str] = None


class Student(StudentCreate):
    id: int


class TeacherCreate(Schema):
    teacher_id: str = Field(..., min_length=1, description="Business key, e.g. TCH1001")
    first_name: str = Field(..., min_length=1)
    last_name: str = Field(..., min_length=1)
    email: str
    phone: Optional[str] = None
    address: Optional[str] = None
    qualification: Optional[str] = None
    join_date: dt.date
    subjects: List[str] = Field(default_factory=list)
    avatar: Optional[str] = None
    user_id: Optional[int] = Field(None, strict=True, description="Linked login account")


class Teacher(TeacherCreate):
    id: int


# Academic structure
class ClassCreate(Schema):
    class_name: str = Field(..., min_length=1, description="e.g. Mathematics 101")
    class_code: str = Field(..., min_length=1, description="Business key, e.g. MATH101")
    grade_level: str = Field(..., min_length=1)
    section: Optional[str] = None
    description: Optional[str] = None
    teacher_id: Optional[int] = Field(None, strict=True, description="Teacher record id")
    schedule: Optional[str] = Field(None, description="e.g. Mon, Wed, Fri 9:00-10:00")
    room_number: Optional[str] = None
    academic_year: str = Field(..., min_length=1, description="e.g. 2023-2024")


class Class(ClassCreate):
    id: int


class ClassEnrollmentCreate(Schema):
    class_id: int = Field(..., strict=True)
    student_id: int = Field(..., strict=True)
    enrollment_date: dt.date


class ClassEnrollment(ClassEnrollmentCreate):
    id: int


# Attendance and performance
class AttendanceCreate(Schema):
    class_id: int = Field(..., strict=True)
    student_id: int = Field(..., strict=True)
    date: dt.date
    status: AttendanceStatus
    notes: Optional[str] = None


class Attendance(AttendanceCreate):
    id: int


class GradeCreate(Schema):
    class_id: int = Field(..., strict=True)
    student_id: int = Field(..., strict=True)
    assignment_name: str = Field(..., min_length=1)
    assignment_type: AssignmentType
    max_score: float = Field(..., ge=0)
    score: float = Field(..., ge=0)
    graded_date: dt.date
    comments: Optional[str] = None


class Grade(GradeCreate):
    id: int


# Calendar
class EventCreate(Schema):
    title: str = Field(..., min_length=1)
    description: Optional[str] = None
    start_date: dt.date
    end_date: Optional[dt.date] = None
    start_time: Optional[str] = Field(None, description="HH:MM")
    end_time: Optional[str] = Field(None, description="HH:MM")
    all_day: bool = False
    location: Optional[str] = None
    type: EventType


class Event(EventCreate):
    id: int


# Audit trail
class ActivityCreate(Schema):
    user_id: Optional[int] = None
    action: str = Field(..., min_length=1, description="e.g. Added Student")
    details: Optional[str] = None


class Activity(ActivityCreate):
    id: int
    timestamp: dt.datetime


UserUpdate = partial_model(UserCreate, "UserUpdate")
StudentUpdate = partial_model(StudentCreate, "StudentUpdate")
TeacherUpdate = partial_model(TeacherCreate, "TeacherUpdate")
ClassUpdate = partial_model(ClassCreate, "ClassUpdate")
ClassEnrollmentUpdate = partial_model(ClassEnrollmentCreate, "ClassEnrollmentUpdate")
AttendanceUpdate = partial_model(AttendanceCreate, "AttendanceUpdate")
GradeUpdate = partial_model(GradeCreate, "GradeUpdate")
EventUpdate = partial_model(EventCreate, "EventUpdate")


# Request / response payloads
class LoginPayload(Schema):
    username: str
    password: str


class LoginResponse(Schema):
    id: int
    username: str
    role: Role
    full_name: str
    avatar: Optional[str] = None
    access_token: Optional[str] = None
    token_type: str = "bearer"


class DashboardStats(Schema):
    total_students: int
    total_teachers: int
    total_classes: int
    attendance_rate: float


class StudentSummary(Schema):
    student_id: int
    grade_count: int
    attendance_count: int
    average_percentage: Optional[float] = None
    gpa: Optional[float] = None
    attendance_rate: Optional[float] = None
