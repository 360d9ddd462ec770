"""
Repository pattern implementations for data access.
"""

from abc import abstractmethod
from datetime import datetime
from typing import Any, Dict, Generic, List, Optional, Sequence, TypeVar

from ..core.entities import (
    AbstractEntity, Booking, Course, Enrollment, Grade, Lecturer, Room, Student
)
from ..core.enums import BookingStatus, DayOfWeek, EnrollmentStatus, StudentStatus
from ..core.interfaces import Repository
from .database import DatabaseManager
from .queries import (
    BookingFilter, CourseFilter, EnrollmentFilter, GradeFilter, LecturerFilter,
    QueryFilter, RoomFilter, StudentFilter
)

T = TypeVar('T', bound=AbstractEntity)
F = TypeVar('F', bound=QueryFilter)


class BaseRepository(Repository[T, F], Generic[T, F]):
    """Table-backed repository; subclasses declare the table, columns and row mapping."""

    table: str = ""
    columns: Sequence[str] = ()
    order_by: str = "created_at DESC"

    def __init__(self, database: DatabaseManager):
        self._database = database

    @property
    def _all_columns(self) -> List[str]:
        return ["id", *self.columns, "created_at", "updated_at", "version"]

    def _row_for(self, entity: T) -> Dict[str, Any]:
        row = self._entity_to_row(entity)
        row.update({
            "id": entity.id,
            "created_at": entity.created_at.isoformat(),
            "updated_at": entity.updated_at.isoformat(),
            "version": entity.version,
        })
        return row

    @staticmethod
    def _audit_fields(row: Dict[str, Any]) -> Dict[str, Any]:
        return {
            "entity_id": row["id"],
            "created_at": datetime.fromisoformat(row["created_at"]),
            "updated_at": datetime.fromisoformat(row["updated_at"]),
            "version": row["version"],
        }

    def save(self, entity: T) -> T:
        """Insert a new entity or update the stored one with the same id."""
        row = self._row_for(entity)
        names = self._all_columns
        if self.exists(entity.id):
            assignments = ", ".join(f"{name} = ?" for name in names if name != "id")
            params = [row[name] for name in names if name != "id"]
            params.append(entity.id)
            self._database.execute_update(
                f"UPDATE {self.table} SET {assignments} WHERE id = ?", tuple(params)
            )
        else:
            placeholders = ", ".join("?" for _ in names)
            self._database.execute_update(
                f"INSERT INTO {self.table} ({', '.join(names)}) VALUES ({placeholders})",
                tuple(row[name] for name in names)
            )
        return entity

    def exists(self, entity_id: str) -> bool:
        results = self._database.execute_query(
            f"SELECT 1 AS found FROM {self.table} WHERE id = ?", (entity_id,)
        )
        return bool(results)

    def find_by_id(self, entity_id: str) -> Optional[T]:
        """Find entity by ID."""
        results = self._database.execute_query(
            f"SELECT * FROM {self.table} WHERE id = ?", (entity_id,)
        )
        return self._entity_from_row(results[0]) if results else None

    def find_all(self, query_filter: Optional[F] = None) -> List[T]:
        """Find all entities matching a typed filter."""
        where, params = query_filter.where() if query_filter else ("", [])
        results = self._database.execute_query(
            f"SELECT * FROM {self.table}{where} ORDER BY {self.order_by}", tuple(params)
        )
        return [self._entity_from_row(row) for row in results]

    def find_one(self, query_filter: F) -> Optional[T]:
        """Find the first entity matching a typed filter."""
        where, params = query_filter.where()
        results = self._database.execute_query(
            f"SELECT * FROM {self.table}{where} ORDER BY {self.order_by} LIMIT 1", tuple(params)
        )
        return self._entity_from_row(results[0]) if results else None

    def count(self, query_filter: Optional[F] = None) -> int:
        """Count entities matching a typed filter."""
        where, params = query_filter.where() if query_filter else ("", [])
        results = self._database.execute_query(
            f"SELECT COUNT(*) AS count FROM {self.table}{where}", tuple(params)
        )
        return results[0]["count"] if results else 0

    def delete(self, entity_id: str) -> bool:
        """Delete an entity by ID."""
        affected_rows = self._database.execute_update(
            f"DELETE FROM {self.table} WHERE id = ?", (entity_id,)
        )
        return affected_rows > 0

    @abstractmethod
    def _entity_to_row(self, entity: T) -> Dict[str, Any]:
        """Map the entity's own columns (everything but id and audit fields)."""
        pass

    @abstractmethod
    def _entity_from_row(self, row: Dict[str, Any]) -> T:
        """Convert a table row to an entity instance."""
        pass


class StudentRepository(BaseRepository[Student, StudentFilter]):
    """Repository for Student entities."""

    table = "students"
    columns = ("nim", "name", "email", "program", "semester", "status")
    order_by = "nim"

    def _entity_to_row(self, entity: Student) -> Dict[str, Any]:
        return {
            "nim": entity.nim,
            "name": entity.name,
            "email": entity.email,
            "program": entity.program,
            "semester": entity.semester,
            "status": entity.status.value,
        }

    def _entity_from_row(self, row: Dict[str, Any]) -> Student:
        return Student(
            nim=row["nim"],
            name=row["name"],
            email=row["email"],
            program=row["program"],
            semester=row["semester"],
            status=StudentStatus(row["status"]),
            **self._audit_fields(row)
        )

    def find_by_nim(self, nim: str) -> Optional[Student]:
        """Find student by NIM (student number)."""
        return self.find_one(StudentFilter(nim=nim))


class LecturerRepository(BaseRepository[Lecturer, LecturerFilter]):
    """Repository for Lecturer entities."""

    table = "lecturers"
    columns = ("nidn", "name", "email", "department", "position")
    order_by = "name"

    def _entity_to_row(self, entity: Lecturer) -> Dict[str, Any]:
        return {
            "nidn": entity.nidn,
            "name": entity.name,
            "email": entity.email,
            "department": entity.department,
            "position": entity.position,
        }

    def _entity_from_row(self, row: Dict[str, Any]) -> Lecturer:
        return Lecturer(
            nidn=row["nidn"],
            name=row["name"],
            email=row["email"],
            department=row["department"],
            position=row["position"],
            **self._audit_fields(row)
        )

    def find_by_nidn(self, nidn: str) -> Optional[Lecturer]:
        """Find lecturer by NIDN (national lecturer number)."""
        return self.find_one(LecturerFilter(nidn=nidn))


class CourseRepository(BaseRepository[Course, CourseFilter]):
    """Repository for Course entities."""

    table = "courses"
    columns = ("code", "name", "credits", "semester", "lecturer_id", "description")
    order_by = "semester, code"

    def _entity_to_row(self, entity: Course) -> Dict[str, Any]:
        return {
            "code": entity.code,
            "name": entity.name,
            "credits": entity.credits,
            "semester": entity.semester,
            "lecturer_id": entity.lecturer_id,
            "description": entity.description,
        }

    def _entity_from_row(self, row: Dict[str, Any]) -> Course:
        return Course(
            code=row["code"],
            name=row["name"],
            credits=row["credits"],
            semester=row["semester"],
            lecturer_id=row["lecturer_id"],
            description=row["description"],
            **self._audit_fields(row)
        )

    def find_by_code(self, code: str) -> Optional[Course]:
        """Find course by course code."""
        return self.find_one(CourseFilter(code=code))


class RoomRepository(BaseRepository[Room, RoomFilter]):
    """Repository for Room entities."""

    table = "rooms"
    columns = ("code", "name", "capacity", "room_type", "location", "is_active")
    order_by = "name"

    def _entity_to_row(self, entity: Room) -> Dict[str, Any]:
        return {
            "code": entity.code,
            "name": entity.name,
            "capacity": entity.capacity,
            "room_type": entity.room_type,
            "location": entity.location,
            "is_active": entity.is_active,
        }

    def _entity_from_row(self, row: Dict[str, Any]) -> Room:
        return Room(
            code=row["code"],
            name=row["name"],
            capacity=row["capacity"],
            room_type=row["room_type"],
            location=row["location"],
            is_active=bool(row["is_active"]),
            **self._audit_fields(row)
        )

    def find_by_code(self, code: str) -> Optional[Room]:
        """Find room by room code."""
        return self.find_one(RoomFilter(code=code))


class EnrollmentRepository(BaseRepository[Enrollment, EnrollmentFilter]):
    """Repository for KRS records."""

    table = "enrollments"
    columns = ("student_id", "course_id", "semester", "year", "status")
    order_by = "year DESC, semester DESC, created_at DESC"

    def _entity_to_row(self, entity: Enrollment) -> Dict[str, Any]:
        return {
            "student_id": entity.student_id,
            "course_id": entity.course_id,
            "semester": entity.semester,
            "year": entity.year,
            "status": entity.status.value,
        }

    def _entity_from_row(self, row: Dict[str, Any]) -> Enrollment:
        return Enrollment(
            student_id=row["student_id"],
            course_id=row["course_id"],
            semester=row["semester"],
            year=row["year"],
            status=EnrollmentStatus(row["status"]),
            **self._audit_fields(row)
        )

    def find_by_natural_key(self, student_id: str, course_id: str, semester: str,
                            exclude_id: Optional[str] = None) -> Optional[Enrollment]:
        """Find the enrollment for (student, course, term), optionally skipping one id."""
        return self.find_one(EnrollmentFilter(
            student_id=student_id, course_id=course_id, semester=semester, exclude_id=exclude_id
        ))

    def sum_credits(self, student_id: str, semester: str, exclude_id: Optional[str] = None) -> int:
        """Total course credits of a student's non-rejected enrollments in a term."""
        where, params = EnrollmentFilter(
            student_id=student_id,
            semester=semester,
            exclude_status=EnrollmentStatus.REJECTED,
            exclude_id=exclude_id
        ).where(prefix="e.")
        results = self._database.execute_query(
            "SELECT COALESCE(SUM(c.credits), 0) AS total "
            f"FROM enrollments e JOIN courses c ON c.id = e.course_id{where}",
            tuple(params)
        )
        return int(results[0]["total"]) if results else 0


_DAY_ORDER = "CASE day " + " ".join(
    f"WHEN '{day.value}' THEN {day.index}" for day in DayOfWeek
) + " END"


class BookingRepository(BaseRepository[Booking, BookingFilter]):
    """Repository for room bookings."""

    table = "bookings"
    columns = ("course_id", "lecturer_id", "room_id", "day", "start_time", "end_time",
               "semester", "academic_year", "status", "notes")
    order_by = f"{_DAY_ORDER}, start_time"

    def _entity_to_row(self, entity: Booking) -> Dict[str, Any]:
        return {
            "course_id": entity.course_id,
            "lecturer_id": entity.lecturer_id,
            "room_id": entity.room_id,
            "day": entity.day.value,
            "start_time": entity.start_time,
            "end_time": entity.end_time,
            "semester": entity.semester,
            "academic_year": entity.academic_year,
            "status": entity.status.value,
            "notes": entity.notes,
        }

    def _entity_from_row(self, row: Dict[str, Any]) -> Booking:
        return Booking(
            course_id=row["course_id"],
            lecturer_id=row["lecturer_id"],
            room_id=row["room_id"],
            day=DayOfWeek(row["day"]),
            start_time=row["start_time"],
            end_time=row["end_time"],
            semester=row["semester"],
            academic_year=row["academic_year"],
            status=BookingStatus(row["status"]),
            notes=row["notes"],
            **self._audit_fields(row)
        )

    def find_active_in_room(self, room_id: str, day: DayOfWeek,
                            exclude_id: Optional[str] = None) -> List[Booking]:
        """Active bookings of a room on a day, optionally skipping one id."""
        return self.find_all(BookingFilter(
            room_id=room_id, day=day, status=BookingStatus.ACTIVE, exclude_id=exclude_id
        ))


class GradeRepository(BaseRepository[Grade, GradeFilter]):
    """Repository for Grade entities."""

    table = "grades"
    columns = ("student_id", "course_id", "semester", "year", "grade", "score")
    order_by = "year DESC, semester DESC"

    def _entity_to_row(self, entity: Grade) -> Dict[str, Any]:
        return {
            "student_id": entity.student_id,
            "course_id": entity.course_id,
            "semester": entity.semester,
            "year": entity.year,
            "grade": entity.grade,
            "score": entity.score,
        }

    def _entity_from_row(self, row: Dict[str, Any]) -> Grade:
        return Grade(
            student_id=row["student_id"],
            course_id=row["course_id"],
            semester=row["semester"],
            year=row["year"],
            grade=row["grade"],
            score=row["score"],
            **self._audit_fields(row)
        )

    def count_for_enrollment(self, enrollment: Enrollment) -> int:
        """Number of grades recorded for the enrollment's (student, course, term)."""
        return self.count(GradeFilter(
            student_id=enrollment.student_id,
            course_id=enrollment.course_id,
            semester=enrollment.semester
        ))
