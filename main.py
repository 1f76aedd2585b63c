import datetime as dt
import logging
import time
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, FastAPI, Query, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, StreamingResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from config import Settings, get_settings
from database import Store, create_store
from errors import (
    AuthenticationError,
    RecordNotFoundError,
    RecordValidationError,
    field_errors,
)
from records import ENTITIES, RecordService
from schemas import (
    Activity,
    Attendance, AttendanceCreate, AttendanceUpdate,
    Class, ClassCreate, ClassUpdate,
    ClassEnrollment, ClassEnrollmentCreate, ClassEnrollmentUpdate,
    DashboardStats,
    Event, EventCreate, EventUpdate,
    Grade, GradeCreate, GradeUpdate,
    LoginPayload, LoginResponse,
    Student, StudentCreate, StudentSummary, StudentUpdate,
    Teacher, TeacherCreate, TeacherUpdate,
    UserCreate, UserOut, UserUpdate,
)
from security import create_access_token, decode_access_token

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api")


# -------------------- Dependencies -------------------- #

def get_service(request: Request) -> RecordService:
    return request.app.state.service


def get_current_user(request: Request) -> Optional[Dict[str, Any]]:
    """Return decoded JWT claims if a bearer token is present, else None. Does not enforce auth."""
    auth = request.headers.get("authorization")
    if not auth or not auth.lower().startswith("bearer "):
        return None
    settings: Settings = request.app.state.settings
    return decode_access_token(auth.split(" ", 1)[1], settings.jwt_secret, settings.jwt_algorithm)


def get_actor_id(user: Optional[Dict[str, Any]] = Depends(get_current_user)) -> Optional[int]:
    """User id recorded on activity rows; None falls back to the default actor."""
    if not user:
        return None
    try:
        return int(user["uid"])
    except (KeyError, TypeError, ValueError):
        return None


def parse_day(value: Optional[str]) -> Optional[dt.date]:
    """Parse a date or datetime query value down to its calendar day."""
    if value is None:
        return None
    try:
        return dt.datetime.fromisoformat(value).date()
    except ValueError:
        raise RecordValidationError("Invalid query", {"date": ["Expected an ISO date or datetime"]}) from None


# -------------------- Meta endpoints -------------------- #

@router.get("/health")
def health(service: RecordService = Depends(get_service)):
    return {
        "backend": "running",
        "store": service.store.kind,
        "collections": service.store.counts(),
    }


@router.get("/schema")
def get_schema():
    return {e.create_model.__name__.removesuffix("Create"): e.create_model.model_json_schema(by_alias=True) for e in ENTITIES.values()}


# -------------------- Dashboard & feed -------------------- #

@router.get("/dashboard/stats", response_model=DashboardStats)
def dashboard_stats(service: RecordService = Depends(get_service)):
    return service.dashboard_stats()


@router.get("/activities", response_model=List[Activity])
def list_activities(limit: Optional[int] = Query(None, ge=1), service: RecordService = Depends(get_service)):
    return service.activities(limit)


# -------------------- Auth -------------------- #

@router.post("/auth/login", response_model=LoginResponse)
def login(payload: LoginPayload, request: Request, service: RecordService = Depends(get_service)):
    user = service.login(payload.username, payload.password)
    settings: Settings = request.app.state.settings
    token = create_access_token(
        {"sub": user.username, "uid": user.id, "role": user.role},
        settings.jwt_secret,
        settings.access_token_expire_minutes,
        settings.jwt_algorithm,
    )
    return user.model_copy(update={"access_token": token})


# -------------------- Users -------------------- #

@router.get("/users", response_model=List[UserOut])
def list_users(service: RecordService = Depends(get_service)):
    return service.list("users")


@router.get("/users/{record_id}", response_model=UserOut)
def get_user(record_id: int, service: RecordService = Depends(get_service)):
    return service.get("users", record_id)


@router.post("/users", response_model=UserOut, status_code=201)
def create_user(payload: UserCreate, actor=Depends(get_actor_id), service: RecordService = Depends(get_service)):
    return service.create("users", payload, actor)


@router.put("/users/{record_id}", response_model=UserOut)
def update_user(record_id: int, payload: UserUpdate, actor=Depends(get_actor_id), service: RecordService = Depends(get_service)):
    return service.update("users", record_id, payload, actor)


@router.delete("/users/{record_id}", status_code=204)
def delete_user(record_id: int, actor=Depends(get_actor_id), service: RecordService = Depends(get_service)):
    service.delete("users", record_id, actor)
    return Response(status_code=204)


# -------------------- Students -------------------- #

@router.get("/students", response_model=List[Student])
def list_students(service: RecordService = Depends(get_service)):
    return service.list("students")


@router.get("/students/{record_id}", response_model=Student)
def get_student(record_id: int, service: RecordService = Depends(get_service)):
    return service.get("students", record_id)


@router.get("/students/{record_id}/summary", response_model=StudentSummary)
def student_summary(record_id: int, service: RecordService = Depends(get_service)):
    return service.student_summary(record_id)


@router.post("/students", response_model=Student, status_code=201)
def create_student(payload: StudentCreate, actor=Depends(get_actor_id), service: RecordService = Depends(get_service)):
    return service.create("students", payload, actor)


@router.put("/students/{record_id}", response_model=Student)
def update_student(record_id: int, payload: StudentUpdate, actor=Depends(get_actor_id), service: RecordService = Depends(get_service)):
    return service.update("students", record_id, payload, actor)


@router.delete("/students/{record_id}", status_code=204)
def delete_student(record_id: int, actor=Depends(get_actor_id), service: RecordService = Depends(get_service)):
    service.delete("students", record_id, actor)
    return Response(status_code=204)


# -------------------- Teachers -------------------- #

@router.get("/teachers", response_model=List[Teacher])
def list_teachers(service: RecordService = Depends(get_service)):
    return service.list("teachers")


@router.get("/teachers/{record_id}", response_model=Teacher)
def get_teacher(record_id: int, service: RecordService = Depends(get_service)):
    return service.get("teachers", record_id)


@router.post("/teachers", response_model=Teacher, status_code=201)
def create_teacher(payload: TeacherCreate, actor=Depends(get_actor_id), service: RecordService = Depends(get_service)):
    return service.create("teachers", payload, actor)


@router.put("/teachers/{record_id}", response_model=Teacher)
def update_teacher(record_id: int, payload: TeacherUpdate, actor=Depends(get_actor_id), service: RecordService = Depends(get_service)):
    return service.update("teachers", record_id, payload, actor)


@router.delete("/teachers/{record_id}", status_code=204)
def delete_teacher(record_id: int, actor=Depends(get_actor_id), service: RecordService = Depends(get_service)):
    service.delete("teachers", record_id, actor)
    return Response(status_code=204)


# -------------------- Classes -------------------- #

@router.get("/classes", response_model=List[Class])
def list_classes(service: RecordService = Depends(get_service)):
    return service.list("classes")


@router.get("/classes/{record_id}", response_model=Class)
def get_class(record_id: int, service: RecordService = Depends(get_service)):
    return service.get("classes", record_id)


@router.post("/classes", response_model=Class, status_code=201)
def create_class(payload: ClassCreate, actor=Depends(get_actor_id), service: RecordService = Depends(get_service)):
    return service.create("classes", payload, actor)


@router.put("/classes/{record_id}", response_model=Class)
def update_class(record_id: int, payload: ClassUpdate, actor=Depends(get_actor_id), service: RecordService = Depends(get_service)):
    return service.update("classes", record_id, payload, actor)


@router.delete("/classes/{record_id}", status_code=204)
def delete_class(record_id: int, actor=Depends(get_actor_id), service: RecordService = Depends(get_service)):
    service.delete("classes", record_id, actor)
    return Response(status_code=204)


# -------------------- Class enrollments -------------------- #

@router.get("/class-enrollments", response_model=List[ClassEnrollment])
def list_class_enrollments(
    class_id: Optional[int] = Query(None, alias="classId"),
    student_id: Optional[int] = Query(None, alias="studentId"),
    service: RecordService = Depends(get_service),
):
    return service.list("class_enrollments", class_id=class_id, student_id=student_id)


@router.get("/class-enrollments/{record_id}", response_model=ClassEnrollment)
def get_class_enrollment(record_id: int, service: RecordService = Depends(get_service)):
    return service.get("class_enrollments", record_id)


@router.post("/class-enrollments", response_model=ClassEnrollment, status_code=201)
def create_class_enrollment(payload: ClassEnrollmentCreate, actor=Depends(get_actor_id), service: RecordService = Depends(get_service)):
    return service.create("class_enrollments", payload, actor)


@router.put("/class-enrollments/{record_id}", response_model=ClassEnrollment)
def update_class_enrollment(record_id: int, payload: ClassEnrollmentUpdate, actor=Depends(get_actor_id), service: RecordService = Depends(get_service)):
    return service.update("class_enrollments", record_id, payload, actor)


@router.delete("/class-enrollments/{record_id}", status_code=204)
def delete_class_enrollment(record_id: int, actor=Depends(get_actor_id), service: RecordService = Depends(get_service)):
    service.delete("class_enrollments", record_id, actor)
    return Response(status_code=204)


# -------------------- Attendance -------------------- #

@router.get("/attendance", response_model=List[Attendance])
def list_attendance(
    class_id: Optional[int] = Query(None, alias="classId"),
    student_id: Optional[int] = Query(None, alias="studentId"),
    on: Optional[str] = Query(None, alias="date"),
    service: RecordService = Depends(get_service),
):
    return service.list("attendance", class_id=class_id, student_id=student_id, date=parse_day(on))


@router.get("/attendance/{record_id}", response_model=Attendance)
def get_attendance(record_id: int, service: RecordService = Depends(get_service)):
    return service.get("attendance", record_id)


@router.post("/attendance", response_model=Attendance, status_code=201)
def create_attendance(payload: AttendanceCreate, actor=Depends(get_actor_id), service: RecordService = Depends(get_service)):
    return service.create("attendance", payload, actor)


@router.put("/attendance/{record_id}", response_model=Attendance)
def update_attendance(record_id: int, payload: AttendanceUpdate, actor=Depends(get_actor_id), service: RecordService = Depends(get_service)):
    return service.update("attendance", record_id, payload, actor)


@router.delete("/attendance/{record_id}", status_code=204)
def delete_attendance(record_id: int, actor=Depends(get_actor_id), service: RecordService = Depends(get_service)):
    service.delete("attendance", record_id, actor)
    return Response(status_code=204)


# -------------------- Grades -------------------- #

@router.get("/grades", response_model=List[Grade])
def list_grades(
    class_id: Optional[int] = Query(None, alias="classId"),
    student_id: Optional[int] = Query(None, alias="studentId"),
    service: RecordService = Depends(get_service),
):
    return service.list("grades", class_id=class_id, student_id=student_id)


@router.get("/grades/{record_id}", response_model=Grade)
def get_grade(record_id: int, service: RecordService = Depends(get_service)):
    return service.get("grades", record_id)


@router.post("/grades", response_model=Grade, status_code=201)
def create_grade(payload: GradeCreate, actor=Depends(get_actor_id), service: RecordService = Depends(get_service)):
    return service.create("grades", payload, actor)


@router.put("/grades/{record_id}", response_model=Grade)
def update_grade(record_id: int, payload: GradeUpdate, actor=Depends(get_actor_id), service: RecordService = Depends(get_service)):
    return service.update("grades", record_id, payload, actor)


@router.delete("/grades/{record_id}", status_code=204)
def delete_grade(record_id: int, actor=Depends(get_actor_id), service: RecordService = Depends(get_service)):
    service.delete("grades", record_id, actor)
    return Response(status_code=204)


# -------------------- Events -------------------- #

@router.get("/events", response_model=List[Event])
def list_events(service: RecordService = Depends(get_service)):
    return service.list("events")


@router.get("/events/{record_id}", response_model=Event)
def get_event(record_id: int, service: RecordService = Depends(get_service)):
    return service.get("events", record_id)


@router.post("/events", response_model=Event, status_code=201)
def create_event(payload: EventCreate, actor=Depends(get_actor_id), service: RecordService = Depends(get_service)):
    return service.create("events", payload, actor)


@router.put("/events/{record_id}", response_model=Event)
def update_event(record_id: int, payload: EventUpdate, actor=Depends(get_actor_id), service: RecordService = Depends(get_service)):
    return service.update("events", record_id, payload, actor)


@router.delete("/events/{record_id}", status_code=204)
def delete_event(record_id: int, actor=Depends(get_actor_id), service: RecordService = Depends(get_service)):
    service.delete("events", record_id, actor)
    return Response(status_code=204)


# -------------------- CSV export -------------------- #

@router.get("/export/{collection}")
def export_collection(collection: str, fields: Optional[str] = None, service: RecordService = Depends(get_service)):
    kind = collection.replace("-", "_")
    columns = [f.strip() for f in fields.split(",") if f.strip()] if fields else None
    text = service.export_csv(kind, columns)
    return StreamingResponse(
        iter([text]),
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="{collection}.csv"'},
    )


# -------------------- Error handlers -------------------- #

def _error(status: int, error: Any) -> JSONResponse:
    return JSONResponse(status_code=status, content={"error": error})


async def validation_error_handler(request: Request, exc: RecordValidationError):
    return _error(400, exc.to_dict())


async def request_validation_handler(request: Request, exc: RequestValidationError):
    return _error(400, {"message": "Invalid request", "fields": field_errors(exc.errors())})


async def not_found_handler(request: Request, exc: RecordNotFoundError):
    return _error(404, str(exc))


async def authentication_handler(request: Request, exc: AuthenticationError):
    return _error(401, str(exc))


async def http_error_handler(request: Request, exc: StarletteHTTPException):
    return _error(exc.status_code, exc.detail)


async def internal_error_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return _error(500, "Internal server error")


# -------------------- Application -------------------- #

def create_app(store: Optional[Store] = None, settings: Optional[Settings] = None) -> FastAPI:
    settings = settings or get_settings()
    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    if store is None:
        store = create_store(settings)

    app = FastAPI(title="School Records API", version="1.0.0")
    app.state.settings = settings
    app.state.service = RecordService(store, default_actor_id=settings.default_actor_id)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def request_log_middleware(request: Request, call_next):
        start = time.perf_counter()
        response = await call_next(request)
        logger.info(
            "%s %s -> %s (%.1f ms)",
            request.method,
            request.url.path,
            response.status_code,
            (time.perf_counter() - start) * 1000,
        )
        return response

    app.add_exception_handler(RecordValidationError, validation_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
    app.add_exception_handler(RecordNotFoundError, not_found_handler)
    app.add_exception_handler(AuthenticationError, authentication_handler)
    app.add_exception_handler(StarletteHTTPException, http_error_handler)
    app.add_exception_handler(Exception, internal_error_handler)

    @app.get("/")
    def read_root():
        return {"message": "School Records API is running"}

    app.include_router(router)
    return app


# -------------------- Run -------------------- #

if __name__ == "__main__":
    import uvicorn
    settings = get_settings()
    uvicorn.run("main:create_app", factory=True, host=settings.host, port=settings.port)
