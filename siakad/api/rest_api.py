"""
REST API implementation for the SIAKAD platform using FastAPI.

Route handlers are plain ``def`` functions: the services block on locks and
database transactions, so FastAPI runs them in its worker threadpool.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from fastapi import FastAPI, Request, Response, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from .. import __version__
from ..core.enums import BookingStatus, DayOfWeek, EnrollmentStatus, StudentStatus, parse_enum
from ..core.exceptions import (
    CapacityExceededError, ConcurrencyError, ConflictError, NotFoundError,
    SiakadException, StorageError, ValidationError
)
from ..persistence.queries import (
    BookingFilter, CourseFilter, EnrollmentFilter, GradeFilter, LecturerFilter, StudentFilter
)
from ..services import CatalogService, EnrollmentService, SchedulerService

logger = logging.getLogger(__name__)

ERROR_STATUS = (
    (ValidationError, status.HTTP_400_BAD_REQUEST),
    (CapacityExceededError, status.HTTP_400_BAD_REQUEST),
    (NotFoundError, status.HTTP_404_NOT_FOUND),
    (ConflictError, status.HTTP_409_CONFLICT),
    (ConcurrencyError, status.HTTP_409_CONFLICT),
    (StorageError, status.HTTP_500_INTERNAL_SERVER_ERROR),
)


def status_for(exc: SiakadException) -> int:
    for error_type, status_code in ERROR_STATUS:
        if isinstance(exc, error_type):
            return status_code
    return status.HTTP_500_INTERNAL_SERVER_ERROR


# Pydantic models for API
class StudentCreate(BaseModel):
    nim: str = Field(..., max_length=20)
    name: str = Field(..., max_length=160)
    email: str = Field(..., pattern=r'^[^@]+@[^@]+\.[^@]+$')
    program: str = Field(..., max_length=120)
    semester: int = Field(1, ge=1, le=14)
    status: str = "ACTIVE"


class StudentUpdate(BaseModel):
    nim: Optional[str] = Field(None, max_length=20)
    name: Optional[str] = Field(None, max_length=160)
    email: Optional[str] = Field(None, pattern=r'^[^@]+@[^@]+\.[^@]+$')
    program: Optional[str] = Field(None, max_length=120)
    semester: Optional[int] = Field(None, ge=1, le=14)
    status: Optional[str] = None


class StudentResponse(BaseModel):
    id: str
    nim: str
    name: str
    email: str
    program: str
    semester: int
    status: str
    created_at: datetime
    updated_at: datetime
    version: int


class LecturerCreate(BaseModel):
    nidn: str = Field(..., max_length=20)
    name: str = Field(..., max_length=160)
    email: str = Field(..., pattern=r'^[^@]+@[^@]+\.[^@]+$')
    department: str = Field(..., max_length=120)
    position: str = ""


class LecturerUpdate(BaseModel):
    nidn: Optional[str] = Field(None, max_length=20)
    name: Optional[str] = Field(None, max_length=160)
    email: Optional[str] = Field(None, pattern=r'^[^@]+@[^@]+\.[^@]+$')
    department: Optional[str] = Field(None, max_length=120)
    position: Optional[str] = None


class LecturerResponse(BaseModel):
    id: str
    nidn: str
    name: str
    email: str
    department: str
    position: str
    created_at: datetime
    updated_at: datetime
    version: int


class CourseCreate(BaseModel):
    code: str = Field(..., max_length=20)
    name: str = Field(..., max_length=160)
    credits: int = Field(..., ge=1, le=24)
    semester: int = Field(1, ge=1, le=14)
    lecturer_id: Optional[str] = None
    description: str = ""


class CourseUpdate(BaseModel):
    code: Optional[str] = Field(None, max_length=20)
    name: Optional[str] = Field(None, max_length=160)
    credits: Optional[int] = Field(None, ge=1, le=24)
    semester: Optional[int] = Field(None, ge=1, le=14)
    lecturer_id: Optional[str] = None
    description: Optional[str] = None


class CourseResponse(BaseModel):
    id: str
    code: str
    name: str
    credits: int
    semester: int
    lecturer_id: Optional[str] = None
    description: str
    created_at: datetime
    updated_at: datetime
    version: int


class RoomCreate(BaseModel):
    code: str = Field(..., max_length=20)
    name: str = Field(..., max_length=120)
    capacity: int = Field(..., ge=1)
    room_type: str = "CLASSROOM"
    location: str = ""
    is_active: bool = True


class RoomUpdate(BaseModel):
    code: Optional[str] = Field(None, max_length=20)
    name: Optional[str] = Field(None, max_length=120)
    capacity: Optional[int] = Field(None, ge=1)
    room_type: Optional[str] = None
    location: Optional[str] = None
    is_active: Optional[bool] = None


class RoomResponse(BaseModel):
    id: str
    code: str
    name: str
    capacity: int
    room_type: str
    location: str
    is_active: bool
    created_at: datetime
    updated_at: datetime
    version: int


class EnrollmentCreate(BaseModel):
    student_id: str
    course_id: str
    semester: str
    year: int
    status: str = "PENDING"


class EnrollmentUpdate(BaseModel):
    student_id: Optional[str] = None
    course_id: Optional[str] = None
    semester: Optional[str] = None
    year: Optional[int] = None
    status: Optional[str] = None


class EnrollmentResponse(BaseModel):
    id: str
    student_id: str
    course_id: str
    semester: str
    year: int
    status: str
    created_at: datetime
    updated_at: datetime
    version: int


class CreditLoadResponse(BaseModel):
    student_id: str
    semester: str
    total_credits: int
    max_credits: int
    remaining_credits: int


class BookingCreate(BaseModel):
    course_id: str
    lecturer_id: str
    room_id: str
    day: str
    start_time: str
    end_time: str
    semester: int
    academic_year: str
    status: str = "ACTIVE"
    notes: Optional[str] = None


class BookingUpdate(BaseModel):
    course_id: Optional[str] = None
    lecturer_id: Optional[str] = None
    room_id: Optional[str] = None
    day: Optional[str] = None
    start_time: Optional[str] = None
    end_time: Optional[str] = None
    semester: Optional[int] = None
    academic_year: Optional[str] = None
    status: Optional[str] = None
    notes: Optional[str] = None


class BookingResponse(BaseModel):
    id: str
    course_id: str
    lecturer_id: str
    room_id: str
    day: str
    start_time: str
    end_time: str
    semester: int
    academic_year: str
    status: str
    notes: Optional[str] = None
    created_at: datetime
    updated_at: datetime
    version: int


class GradeCreate(BaseModel):
    student_id: str
    course_id: str
    semester: str
    year: int
    grade: str = Field(..., max_length=4)
    score: Optional[float] = None


class GradeResponse(BaseModel):
    id: str
    student_id: str
    course_id: str
    semester: str
    year: int
    grade: str
    score: Optional[float] = None
    created_at: datetime
    updated_at: datetime
    version: int


def _optional_enum(enum_cls, value: Optional[str], field_name: str):
    return parse_enum(enum_cls, value, field_name) if value else None


class SiakadRestAPI:
    """REST API implementation for the SIAKAD platform."""

    def __init__(self, catalog_service: CatalogService, enrollment_service: EnrollmentService,
                 scheduler_service: SchedulerService, cors_origins: Optional[List[str]] = None):
        self._catalog = catalog_service
        self._enrollment_service = enrollment_service
        self._scheduler_service = scheduler_service

        # Create FastAPI app
        self.app = FastAPI(
            title="SIAKAD API",
            description="Academic administration core: KRS admission control and room scheduling",
            version=__version__,
            docs_url="/docs",
            redoc_url="/redoc"
        )

        self.app.add_middleware(
            CORSMiddleware,
            allow_origins=cors_origins or ["*"],
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )

        self._setup_error_handlers()
        self._setup_routes()

    def _setup_error_handlers(self):
        """Map domain and request validation errors to JSON error bodies."""

        @self.app.exception_handler(SiakadException)
        async def handle_siakad_exception(request: Request, exc: SiakadException):
            status_code = status_for(exc)
            if status_code >= 500:
                logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
            return JSONResponse(
                status_code=status_code,
                content={"error": exc.message, "code": exc.error_code,
                         "details": jsonable_encoder(exc.details)}
            )

        @self.app.exception_handler(RequestValidationError)
        async def handle_request_validation(request: Request, exc: RequestValidationError):
            errors = [
                {"loc": [str(part) for part in error.get("loc", ())],
                 "msg": error.get("msg"), "type": error.get("type")}
                for error in exc.errors()
            ]
            return JSONResponse(
                status_code=status.HTTP_400_BAD_REQUEST,
                content={"error": "invalid request", "code": "validation_error",
                         "details": {"errors": errors}}
            )

    def _setup_routes(self):
        """Setup API routes."""

        @self.app.get("/", response_model=Dict[str, str])
        def root():
            """Root endpoint."""
            return {
                "message": "SIAKAD API",
                "version": __version__,
                "docs": "/docs"
            }

        @self.app.get("/health", response_model=Dict[str, str])
        def health_check():
            """Health check endpoint."""
            return {"status": "healthy", "timestamp": datetime.now(timezone.utc).isoformat()}

        @self.app.get("/statistics", response_model=Dict[str, Any])
        def statistics():
            return {
                "enrollment": self._enrollment_service.get_statistics(),
                "scheduling": self._scheduler_service.get_statistics(),
            }

        # Student endpoints
        @self.app.post("/students", response_model=StudentResponse,
                       status_code=status.HTTP_201_CREATED)
        def create_student(data: StudentCreate):
            return self._catalog.create_student(**data.model_dump()).to_dict()

        @self.app.get("/students", response_model=List[StudentResponse])
        def list_students(program: Optional[str] = None, status: Optional[str] = None):
            query_filter = StudentFilter(
                program=program, status=_optional_enum(StudentStatus, status, "status")
            )
            return [s.to_dict() for s in self._catalog.list_students(query_filter)]

        @self.app.get("/students/{student_id}", response_model=StudentResponse)
        def get_student(student_id: str):
            return self._catalog.get_student(student_id).to_dict()

        @self.app.put("/students/{student_id}", response_model=StudentResponse)
        def update_student(student_id: str, data: StudentUpdate):
            changes = data.model_dump(exclude_unset=True)
            return self._catalog.update_student(student_id, changes).to_dict()

        @self.app.delete("/students/{student_id}", status_code=status.HTTP_204_NO_CONTENT)
        def delete_student(student_id: str):
            self._catalog.delete_student(student_id)
            return Response(status_code=status.HTTP_204_NO_CONTENT)

        @self.app.get("/students/{student_id}/credit-load", response_model=CreditLoadResponse)
        def get_credit_load(student_id: str, semester: str):
            """Credits the student carries in a term against the ceiling."""
            self._catalog.get_student(student_id)
            total = self._enrollment_service.credit_load(student_id, semester)
            ceiling = self._enrollment_service.max_credits
            return {
                "student_id": student_id,
                "semester": semester,
                "total_credits": total,
                "max_credits": ceiling,
                "remaining_credits": max(ceiling - total, 0),
            }

        # Lecturer endpoints
        @self.app.post("/lecturers", response_model=LecturerResponse,
                       status_code=status.HTTP_201_CREATED)
        def create_lecturer(data: LecturerCreate):
            return self._catalog.create_lecturer(**data.model_dump()).to_dict()

        @self.app.get("/lecturers", response_model=List[LecturerResponse])
        def list_lecturers(department: Optional[str] = None):
            query_filter = LecturerFilter(department=department)
            return [lecturer.to_dict() for lecturer in self._catalog.list_lecturers(query_filter)]

        @self.app.get("/lecturers/{lecturer_id}", response_model=LecturerResponse)
        def get_lecturer(lecturer_id: str):
            return self._catalog.get_lecturer(lecturer_id).to_dict()

        @self.app.put("/lecturers/{lecturer_id}", response_model=LecturerResponse)
        def update_lecturer(lecturer_id: str, data: LecturerUpdate):
            changes = data.model_dump(exclude_unset=True)
            return self._catalog.update_lecturer(lecturer_id, changes).to_dict()

        @self.app.delete("/lecturers/{lecturer_id}", status_code=status.HTTP_204_NO_CONTENT)
        def delete_lecturer(lecturer_id: str):
            self._catalog.delete_lecturer(lecturer_id)
            return Response(status_code=status.HTTP_204_NO_CONTENT)

        # Course endpoints
        @self.app.post("/courses", response_model=CourseResponse,
                       status_code=status.HTTP_201_CREATED)
        def create_course(data: CourseCreate):
            return self._catalog.create_course(**data.model_dump()).to_dict()

        @self.app.get("/courses", response_model=List[CourseResponse])
        def list_courses(semester: Optional[int] = None, lecturer_id: Optional[str] = None):
            query_filter = CourseFilter(semester=semester, lecturer_id=lecturer_id)
            return [c.to_dict() for c in self._catalog.list_courses(query_filter)]

        @self.app.get("/courses/{course_id}", response_model=CourseResponse)
        def get_course(course_id: str):
            return self._catalog.get_course(course_id).to_dict()

        @self.app.put("/courses/{course_id}", response_model=CourseResponse)
        def update_course(course_id: str, data: CourseUpdate):
            changes = data.model_dump(exclude_unset=True)
            return self._catalog.update_course(course_id, changes).to_dict()

        @self.app.delete("/courses/{course_id}", status_code=status.HTTP_204_NO_CONTENT)
        def delete_course(course_id: str):
            self._catalog.delete_course(course_id)
            return Response(status_code=status.HTTP_204_NO_CONTENT)

        # Room endpoints
        @self.app.post("/rooms", response_model=RoomResponse,
                       status_code=status.HTTP_201_CREATED)
        def create_room(data: RoomCreate):
            return self._catalog.create_room(**data.model_dump()).to_dict()

        @self.app.get("/rooms", response_model=List[RoomResponse])
        def list_rooms(is_active: Optional[bool] = None, room_type: Optional[str] = None):
            return [r.to_dict() for r in self._catalog.list_rooms(is_active, room_type)]

        @self.app.get("/rooms/{room_id}", response_model=RoomResponse)
        def get_room(room_id: str):
            return self._catalog.get_room(room_id).to_dict()

        @self.app.put("/rooms/{room_id}", response_model=RoomResponse)
        def update_room(room_id: str, data: RoomUpdate):
            return self._catalog.update_room(room_id, data.model_dump(exclude_unset=True)).to_dict()

        @self.app.delete("/rooms/{room_id}", status_code=status.HTTP_204_NO_CONTENT)
        def delete_room(room_id: str):
            self._catalog.delete_room(room_id)
            return Response(status_code=status.HTTP_204_NO_CONTENT)

        @self.app.get("/rooms/{room_id}/timetable", response_model=List[BookingResponse])
        def room_timetable(room_id: str, day: Optional[str] = None):
            return [b.to_dict() for b in self._scheduler_service.room_timetable(room_id, day or None)]

        # KRS endpoints
        @self.app.post("/krs", response_model=EnrollmentResponse,
                       status_code=status.HTTP_201_CREATED)
        def create_enrollment(data: EnrollmentCreate):
            """Admit a KRS record (duplicate and credit-ceiling checked)."""
            return self._enrollment_service.propose_enroll(**data.model_dump()).to_dict()

        @self.app.get("/krs", response_model=List[EnrollmentResponse])
        def list_enrollments(student_id: Optional[str] = None, course_id: Optional[str] = None,
                             semester: Optional[str] = None, year: Optional[int] = None,
                             status: Optional[str] = None, search: Optional[str] = None):
            """KRS records, optionally matched by student name or NIM and course name or code."""
            query_filter = EnrollmentFilter(
                student_id=student_id, course_id=course_id, semester=semester, year=year,
                status=_optional_enum(EnrollmentStatus, status, "status"),
                search=(search or "").strip() or None
            )
            return [e.to_dict() for e in self._enrollment_service.list_enrollments(query_filter)]

        @self.app.get("/krs/{enrollment_id}", response_model=EnrollmentResponse)
        def get_enrollment(enrollment_id: str):
            return self._enrollment_service.get_enrollment(enrollment_id).to_dict()

        @self.app.put("/krs/{enrollment_id}", response_model=EnrollmentResponse)
        def update_enrollment(enrollment_id: str, data: EnrollmentUpdate):
            patch = data.model_dump(exclude_unset=True)
            return self._enrollment_service.propose_update(enrollment_id, patch).to_dict()

        @self.app.delete("/krs/{enrollment_id}", status_code=status.HTTP_204_NO_CONTENT)
        def delete_enrollment(enrollment_id: str):
            self._enrollment_service.propose_delete(enrollment_id)
            return Response(status_code=status.HTTP_204_NO_CONTENT)

        # Schedule endpoints
        @self.app.post("/schedules", response_model=BookingResponse,
                       status_code=status.HTTP_201_CREATED)
        def create_booking(data: BookingCreate):
            """Admit a room booking (room eligibility and overlap checked)."""
            return self._scheduler_service.propose_booking(**data.model_dump()).to_dict()

        @self.app.get("/schedules", response_model=List[BookingResponse])
        def list_bookings(room_id: Optional[str] = None, day: Optional[str] = None,
                          status: Optional[str] = None, course_id: Optional[str] = None,
                          lecturer_id: Optional[str] = None, semester: Optional[int] = None,
                          academic_year: Optional[str] = None):
            query_filter = BookingFilter(
                room_id=room_id,
                day=_optional_enum(DayOfWeek, day, "day"),
                status=_optional_enum(BookingStatus, status, "status"),
                course_id=course_id,
                lecturer_id=lecturer_id,
                semester=semester,
                academic_year=academic_year
            )
            return [b.to_dict() for b in self._scheduler_service.list_bookings(query_filter)]

        @self.app.get("/schedules/{booking_id}", response_model=BookingResponse)
        def get_booking(booking_id: str):
            return self._scheduler_service.get_booking(booking_id).to_dict()

        @self.app.put("/schedules/{booking_id}", response_model=BookingResponse)
        def update_booking(booking_id: str, data: BookingUpdate):
            patch = data.model_dump(exclude_unset=True)
            return self._scheduler_service.propose_update(booking_id, patch).to_dict()

        @self.app.post("/schedules/{booking_id}/cancel", response_model=BookingResponse)
        def cancel_booking(booking_id: str):
            return self._scheduler_service.cancel_booking(booking_id).to_dict()

        @self.app.delete("/schedules/{booking_id}", status_code=status.HTTP_204_NO_CONTENT)
        def delete_booking(booking_id: str):
            self._scheduler_service.propose_delete(booking_id)
            return Response(status_code=status.HTTP_204_NO_CONTENT)

        # Grade endpoints
        @self.app.post("/grades", response_model=GradeResponse,
                       status_code=status.HTTP_201_CREATED)
        def record_grade(data: GradeCreate):
            return self._catalog.record_grade(**data.model_dump()).to_dict()

        @self.app.get("/grades", response_model=List[GradeResponse])
        def list_grades(student_id: Optional[str] = None, course_id: Optional[str] = None,
                        semester: Optional[str] = None):
            query_filter = GradeFilter(student_id=student_id, course_id=course_id,
                                       semester=semester)
            return [g.to_dict() for g in self._catalog.list_grades(query_filter)]
