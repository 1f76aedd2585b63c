"""
Record service: the API layer between transports and the store.

Every write is validated against the entity's schema before the store is
touched, and every successful write appends one Activity row to the feed.
The feed write is best effort: if it fails the error is logged and the
caller still sees the primary write succeed.
"""

import logging
from typing import Any, Dict, List, Mapping, NamedTuple, Optional, Sequence, Tuple, Type, Union

from pydantic import BaseModel, TypeAdapter, ValidationError
from pydantic.alias_generators import to_camel

from database import COLLECTIONS, Store, calendar_day
from errors import (
    AuthenticationError,
    DuplicateRecordError,
    RecordNotFoundError,
    RecordValidationError,
    field_errors,
)
from exporting import to_csv
from schemas import (
    AttendanceCreate, AttendanceUpdate,
    ClassCreate, ClassUpdate,
    ClassEnrollmentCreate, ClassEnrollmentUpdate,
    DashboardStats,
    EventCreate, EventUpdate,
    GradeCreate, GradeUpdate,
    LoginResponse,
    StudentCreate, StudentUpdate, StudentSummary,
    TeacherCreate, TeacherUpdate,
    UserCreate, UserUpdate,
)
from security import hash_password, verify_password
from stats import attendance_rate, average_percentage, percentage_to_gpa

logger = logging.getLogger(__name__)

Payload = Union[BaseModel, Mapping[str, Any]]


class Entity(NamedTuple):
    kind: str
    label: str
    create_model: Type[BaseModel]
    update_model: Type[BaseModel]
    # (foreign key, referenced collection)
    references: Tuple[Tuple[str, str], ...] = ()
    filters: Tuple[str, ...] = ()
    # verb -> (activity action, details template)
    messages: Dict[str, Tuple[str, str]] = {}


ENTITIES: Dict[str, Entity] = {
    e.kind: e
    for e in (
        Entity(
            "users", "User", UserCreate, UserUpdate,
            messages={
                "create": ("Added User", "Added user {username} with role {role}"),
                "update": ("Updated User", "Updated user {username}"),
                "delete": ("Deleted User", "Deleted user {username}"),
            },
        ),
        Entity(
            "students", "Student", StudentCreate, StudentUpdate,
            messages={
                "create": ("Added Student", "Added {name} to Grade {grade_level}-{section}"),
                "update": ("Updated Student", "Updated {name}'s information"),
                "delete": ("Deleted Student", "Deleted {name} from the system"),
            },
        ),
        Entity(
            "teachers", "Teacher", TeacherCreate, TeacherUpdate,
            references=(("user_id", "users"),),
            messages={
                "create": ("Added Teacher", "Added {name} to the faculty"),
                "update": ("Updated Teacher", "Updated {name}'s information"),
                "delete": ("Deleted Teacher", "Deleted {name} from the system"),
            },
        ),
        Entity(
            "classes", "Class", ClassCreate, ClassUpdate,
            references=(("teacher_id", "teachers"),),
            messages={
                "create": ("Added Class", "Added {class_name} ({class_code}) for Grade {grade_level}"),
                "update": ("Updated Class", "Updated {class_name} ({class_code}) information"),
                "delete": ("Deleted Class", "Deleted {class_name} ({class_code})"),
            },
        ),
        Entity(
            "class_enrollments", "Class enrollment", ClassEnrollmentCreate, ClassEnrollmentUpdate,
            references=(("class_id", "classes"), ("student_id", "students")),
            filters=("class_id", "student_id"),
            messages={
                "create": ("Enrolled Student", "Enrolled {student} in {class}"),
                "update": ("Updated Enrollment", "Updated enrollment of {student} in {class}"),
                "delete": ("Removed Student from Class", "Removed {student} from {class}"),
            },
        ),
        Entity(
            "attendance", "Attendance record", AttendanceCreate, AttendanceUpdate,
            references=(("class_id", "classes"), ("student_id", "students")),
            filters=("class_id", "student_id", "date"),
            messages={
                "create": ("Marked Attendance", "Marked {student} as {status} for {class}"),
                "update": ("Updated Attendance", "Updated attendance record to {status}"),
                "delete": ("Deleted Attendance", "Removed attendance record"),
            },
        ),
        Entity(
            "grades", "Grade", GradeCreate, GradeUpdate,
            references=(("class_id", "classes"), ("student_id", "students")),
            filters=("class_id", "student_id"),
            messages={
                "create": ("Added Grade", "Added grade for {student} in {class}: {score:g}/{max_score:g}"),
                "update": ("Updated Grade", "Updated grade to {score:g}/{max_score:g}"),
                "delete": ("Deleted Grade", "Removed grade record"),
            },
        ),
        Entity(
            "events", "Event", EventCreate, EventUpdate,
            messages={
                "create": ("Added Event", 'Added event "{title}" on {start_date}'),
                "update": ("Updated Event", 'Updated event "{title}"'),
                "delete": ("Deleted Event", 'Deleted event "{title}"'),
            },
        ),
    )
}

# context key a referenced record is known by in activity details
_REFERENCE_KEYS = {"students": "student", "classes": "class", "teachers": "teacher", "users": "user"}

# never leaves the service
_PRIVATE_FIELDS = {"password"}


def _display_name(collection: str, record) -> str:
    if collection in ("students", "teachers"):
        return f"{record.first_name} {record.last_name}"
    if collection == "classes":
        return record.class_name
    if collection == "users":
        return record.full_name
    return f"#{record.id}"


class RecordService:
    def __init__(self, store: Store, default_actor_id: Optional[int] = 1):
        self.store = store
        self.default_actor_id = default_actor_id

    # -------------------- helpers -------------------- #

    @staticmethod
    def entity(kind: str) -> Entity:
        try:
            return ENTITIES[kind]
        except KeyError:
            raise RecordNotFoundError(kind, 0) from None

    @staticmethod
    def _validate(model: Type[BaseModel], payload: Payload, entity: Entity) -> BaseModel:
        if isinstance(payload, BaseModel) and not isinstance(payload, model):
            payload = payload.model_dump(exclude_unset=True)
        try:
            validated = payload if isinstance(payload, model) else model.model_validate(payload)
        except ValidationError as exc:
            raise RecordValidationError(f"Invalid {entity.label.lower()}", field_errors(exc.errors())) from exc
        return validated

    def _check_references(self, entity: Entity, data: Mapping[str, Any]):
        problems: Dict[str, List[str]] = {}
        for field, collection in entity.references:
            value = data.get(field)
            if value is not None and self.store[collection].get(value) is None:
                label = ENTITIES[collection].label
                problems.setdefault(to_camel(field), []).append(f"{label} {value} does not exist")
        if problems:
            raise RecordValidationError(f"Invalid {entity.label.lower()}", problems)

    @staticmethod
    def _duplicate(entity: Entity, exc: DuplicateRecordError) -> RecordValidationError:
        names = [to_camel(f) for f in exc.fields]
        message = f"{entity.label} with this {' and '.join(names)} already exists"
        return RecordValidationError(f"Invalid {entity.label.lower()}", {n: [message] for n in names})

    def _context(self, entity: Entity, record) -> Dict[str, Any]:
        ctx = record.model_dump()
        if "first_name" in ctx:
            ctx["name"] = f"{record.first_name} {record.last_name}"
        for field, collection in entity.references:
            value = ctx.get(field)
            ref = self.store[collection].get(value) if value is not None else None
            key = _REFERENCE_KEYS[collection]
            ctx[key] = _display_name(collection, ref) if ref is not None else f"unknown {key}"
        return ctx

    def _record_activity(self, actor_id: Optional[int], entity: Entity, verb: str, record):
        action, template = entity.messages[verb]
        try:
            details = template.format_map(self._context(entity, record))
            self.store.activities.create({
                "user_id": actor_id if actor_id is not None else self.default_actor_id,
                "action": action,
                "details": details,
            })
        except Exception:
            logger.exception("Failed to record activity %r for %s %s", action, entity.kind, record.id)

    # -------------------- CRUD -------------------- #

    def list(self, kind: str, **filters) -> List[BaseModel]:
        entity = self.entity(kind)
        criteria = {k: v for k, v in filters.items() if v is not None}
        unknown = [k for k in criteria if k not in entity.filters]
        if unknown:
            raise RecordValidationError(
                f"Invalid {entity.label.lower()} filter",
                {to_camel(k): [f"Cannot filter {kind} by {to_camel(k)}"] for k in unknown},
            )
        criteria = self._coerce_filters(entity, criteria)
        collection = self.store[kind]
        return collection.find(**criteria) if criteria else collection.list()

    @staticmethod
    def _coerce_filters(entity: Entity, criteria: Mapping[str, Any]) -> Dict[str, Any]:
        """Convert filter values to the stored field types, dates to the calendar day."""
        fields = COLLECTIONS[entity.kind].record_model.model_fields
        coerced: Dict[str, Any] = {}
        problems: Dict[str, List[str]] = {}
        for name, value in criteria.items():
            try:
                coerced[name] = TypeAdapter(fields[name].annotation).validate_python(calendar_day(value))
            except ValidationError as exc:
                problems[to_camel(name)] = [e["msg"] for e in exc.errors()]
        if problems:
            raise RecordValidationError(f"Invalid {entity.label.lower()} filter", problems)
        return coerced

    def get(self, kind: str, record_id: int):
        entity = self.entity(kind)
        record = self.store[kind].get(record_id)
        if record is None:
            raise RecordNotFoundError(entity.label, record_id)
        return record

    def create(self, kind: str, payload: Payload, actor_id: Optional[int] = None):
        entity = self.entity(kind)
        data = self._validate(entity.create_model, payload, entity).model_dump()
        self._check_references(entity, data)
        if "password" in data:
            data["password"] = hash_password(data["password"])
        try:
            record = self.store[kind].create(data)
        except DuplicateRecordError as exc:
            raise self._duplicate(entity, exc) from exc
        logger.info("Created %s %s", kind, record.id)
        self._record_activity(actor_id, entity, "create", record)
        return record

    def update(self, kind: str, record_id: int, payload: Payload, actor_id: Optional[int] = None):
        entity = self.entity(kind)
        # only the fields the caller sent
        data = self._validate(entity.update_model, payload, entity).model_dump(exclude_unset=True)
        self._check_references(entity, data)
        if data.get("password") is not None:
            data["password"] = hash_password(data["password"])
        try:
            record = self.store[kind].update(record_id, data)
        except DuplicateRecordError as exc:
            raise self._duplicate(entity, exc) from exc
        if record is None:
            raise RecordNotFoundError(entity.label, record_id)
        logger.info("Updated %s %s: %s", kind, record_id, sorted(data))
        self._record_activity(actor_id, entity, "update", record)
        return record

    def delete(self, kind: str, record_id: int, actor_id: Optional[int] = None):
        entity = self.entity(kind)
        record = self.store[kind].get(record_id)
        if record is None or not self.store.delete(kind, record_id):
            raise RecordNotFoundError(entity.label, record_id)
        logger.info("Deleted %s %s", kind, record_id)
        self._record_activity(actor_id, entity, "delete", record)

    # -------------------- aggregate views -------------------- #

    def activities(self, limit: Optional[int] = None) -> List[BaseModel]:
        records = self.store.activities.list()
        return records if limit is None else records[:limit]

    def dashboard_stats(self) -> DashboardStats:
        return DashboardStats(
            total_students=self.store.students.count(),
            total_teachers=self.store.teachers.count(),
            total_classes=self.store.classes.count(),
            attendance_rate=attendance_rate(self.store.attendance.list()),
        )

    def student_summary(self, record_id: int) -> StudentSummary:
        student = self.get("students", record_id)
        grades = self.store.grades.find(student_id=student.id)
        attendance = self.store.attendance.find(student_id=student.id)
        average = average_percentage(grades)
        return StudentSummary(
            student_id=student.id,
            grade_count=len(grades),
            attendance_count=len(attendance),
            average_percentage=None if average is None else round(average, 1),
            gpa=None if average is None else percentage_to_gpa(average),
            attendance_rate=attendance_rate(attendance) if attendance else None,
        )

    # -------------------- auth -------------------- #

    def login(self, username: str, password: str) -> LoginResponse:
        """Check a username/password pair and return the public user fields.

        Issues no session; callers must not treat this as access control.
        """
        user = self.store.users.get_by("username", username)
        if user is None or not verify_password(password, user.password):
            logger.info("Failed login for %r", username)
            raise AuthenticationError("Invalid username or password")
        return LoginResponse(
            id=user.id,
            username=user.username,
            role=user.role,
            full_name=user.full_name,
            avatar=user.avatar,
        )

    # -------------------- export -------------------- #

    def export_csv(self, kind: str, fields: Optional[Sequence[str]] = None) -> str:
        if kind not in COLLECTIONS:
            raise RecordNotFoundError(kind, 0)
        model = COLLECTIONS[kind].record_model
        available = [
            info.alias or name
            for name, info in model.model_fields.items()
            if name not in _PRIVATE_FIELDS
        ]
        available.sort(key=lambda h: h != "id")
        headers = list(fields) if fields else available
        unknown = [h for h in headers if h not in available]
        if unknown:
            raise RecordValidationError(
                "Invalid export fields", {h: [f"Unknown field for {kind}"] for h in unknown}
            )
        rows = [r.model_dump(by_alias=True, exclude=_PRIVATE_FIELDS) for r in self.store[kind].list()]
        return to_csv(rows, headers)
