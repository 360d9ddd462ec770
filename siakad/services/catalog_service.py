"""
Catalog service for the reference records: students, lecturers, courses,
rooms and grades.
"""

import logging
from typing import Any, Dict, List, Optional, Set, Union

from ..core.entities import Course, Grade, Lecturer, Room, Student
from ..core.enums import BookingStatus, EnrollmentStatus, StudentStatus, parse_enum
from ..core.exceptions import ConflictError, NotFoundError, ValidationError
from ..persistence.database import DatabaseManager
from ..persistence.queries import (
    BookingFilter, CourseFilter, EnrollmentFilter, GradeFilter, LecturerFilter,
    RoomFilter, StudentFilter
)
from ..persistence.repositories import (
    BookingRepository, CourseRepository, EnrollmentRepository, GradeRepository,
    LecturerRepository, RoomRepository, StudentRepository
)

logger = logging.getLogger(__name__)

VALID_GRADES = ("A", "A-", "B+", "B", "B-", "C+", "C", "D", "E")


def _require(**values: Any) -> None:
    missing = [name for name, value in values.items() if value is None or value == ""]
    if missing:
        raise ValidationError("required fields missing", details={"missing": missing})


def _positive_int(name: str, value: Any) -> None:
    if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
        raise ValidationError(f"{name} must be a positive integer",
                              details={"field": name, "value": value})


def _known_changes(changes: Dict[str, Any], allowed: Set[str]) -> Dict[str, Any]:
    """Reject unknown fields and drop the ones left unset (``None``)."""
    unknown = sorted(set(changes) - allowed)
    if unknown:
        raise ValidationError(f"unknown fields: {', '.join(unknown)}",
                              details={"fields": unknown})
    return {key: value for key, value in changes.items() if value is not None}


class CatalogService:
    """Service for managing catalog records."""

    def __init__(self, database: DatabaseManager, students: StudentRepository,
                 lecturers: LecturerRepository, courses: CourseRepository,
                 rooms: RoomRepository, enrollments: EnrollmentRepository,
                 bookings: BookingRepository, grades: GradeRepository):
        self._database = database
        self._students = students
        self._lecturers = lecturers
        self._courses = courses
        self._rooms = rooms
        self._enrollments = enrollments
        self._bookings = bookings
        self._grades = grades

    # Students

    def create_student(self, nim: str, name: str, email: str, program: str,
                       semester: int = 1,
                       status: Union[StudentStatus, str] = StudentStatus.ACTIVE) -> Student:
        _require(nim=nim, name=name, email=email, program=program)
        _positive_int("semester", semester)
        student = Student(nim=nim, name=name, email=email, program=program, semester=semester,
                          status=parse_enum(StudentStatus, status, "status"))
        with self._database.transaction():
            self._check_student_unique(nim=nim, email=email)
            self._students.save(student)
        logger.info("Student %s registered (%s)", student.id, nim)
        return student

    def _check_student_unique(self, nim: Optional[str] = None, email: Optional[str] = None,
                              exclude_id: Optional[str] = None) -> None:
        if nim and self._students.find_one(StudentFilter(nim=nim, exclude_id=exclude_id)):
            raise ConflictError("NIM already registered", details={"nim": nim})
        if email and self._students.find_one(StudentFilter(email=email, exclude_id=exclude_id)):
            raise ConflictError("email already registered", details={"email": email})

    def get_student(self, student_id: str) -> Student:
        student = self._students.find_by_id(student_id)
        if student is None:
            raise NotFoundError("student", student_id)
        return student

    def list_students(self, query_filter: Optional[StudentFilter] = None) -> List[Student]:
        return self._students.find_all(query_filter)

    def update_student(self, student_id: str, changes: Dict[str, Any]) -> Student:
        """Update student attributes; NIM and email stay unique."""
        changes = _known_changes(changes, {"nim", "name", "email", "program", "semester",
                                           "status"})
        for name in ("nim", "name", "email", "program"):
            if name in changes:
                _require(**{name: changes[name]})
        if "semester" in changes:
            _positive_int("semester", changes["semester"])
        if "status" in changes:
            changes["status"] = parse_enum(StudentStatus, changes["status"], "status")

        with self._database.transaction():
            student = self.get_student(student_id)
            self._check_student_unique(
                nim=changes.get("nim") if changes.get("nim") != student.nim else None,
                email=changes.get("email") if changes.get("email") != student.email else None,
                exclude_id=student_id
            )
            if changes:
                student.update(**changes)
                self._students.save(student)
        logger.info("Student %s updated: %s", student_id, sorted(changes))
        return student

    def delete_student(self, student_id: str) -> None:
        """Delete a student that has no KRS records or grades."""
        with self._database.transaction():
            self.get_student(student_id)
            enrollment_count = self._enrollments.count(EnrollmentFilter(student_id=student_id))
            grade_count = self._grades.count(GradeFilter(student_id=student_id))
            if enrollment_count or grade_count:
                raise ConflictError(
                    "student has enrollments or grades",
                    details={"enrollments": enrollment_count, "grades": grade_count}
                )
            self._students.delete(student_id)
        logger.info("Student %s deleted", student_id)

    # Lecturers

    def create_lecturer(self, nidn: str, name: str, email: str, department: str,
                        position: str = "") -> Lecturer:
        _require(nidn=nidn, name=name, email=email, department=department)
        lecturer = Lecturer(nidn=nidn, name=name, email=email, department=department,
                            position=position or "")
        with self._database.transaction():
            self._check_lecturer_unique(nidn=nidn, email=email)
            self._lecturers.save(lecturer)
        logger.info("Lecturer %s registered (%s)", lecturer.id, nidn)
        return lecturer

    def _check_lecturer_unique(self, nidn: Optional[str] = None, email: Optional[str] = None,
                               exclude_id: Optional[str] = None) -> None:
        if nidn and self._lecturers.find_one(LecturerFilter(nidn=nidn, exclude_id=exclude_id)):
            raise ConflictError("NIDN already registered", details={"nidn": nidn})
        if email and self._lecturers.find_one(LecturerFilter(email=email, exclude_id=exclude_id)):
            raise ConflictError("email already registered", details={"email": email})

    def get_lecturer(self, lecturer_id: str) -> Lecturer:
        lecturer = self._lecturers.find_by_id(lecturer_id)
        if lecturer is None:
            raise NotFoundError("lecturer", lecturer_id)
        return lecturer

    def list_lecturers(self, query_filter: Optional[LecturerFilter] = None) -> List[Lecturer]:
        return self._lecturers.find_all(query_filter)

    def update_lecturer(self, lecturer_id: str, changes: Dict[str, Any]) -> Lecturer:
        """Update lecturer attributes; NIDN and email stay unique."""
        changes = _known_changes(changes, {"nidn", "name", "email", "department", "position"})
        for name in ("nidn", "name", "email", "department"):
            if name in changes:
                _require(**{name: changes[name]})

        with self._database.transaction():
            lecturer = self.get_lecturer(lecturer_id)
            self._check_lecturer_unique(
                nidn=changes.get("nidn") if changes.get("nidn") != lecturer.nidn else None,
                email=changes.get("email") if changes.get("email") != lecturer.email else None,
                exclude_id=lecturer_id
            )
            if changes:
                lecturer.update(**changes)
                self._lecturers.save(lecturer)
        logger.info("Lecturer %s updated: %s", lecturer_id, sorted(changes))
        return lecturer

    def delete_lecturer(self, lecturer_id: str) -> None:
        """Delete a lecturer who teaches no course and holds no booking."""
        with self._database.transaction():
            self.get_lecturer(lecturer_id)
            course_count = self._courses.count(CourseFilter(lecturer_id=lecturer_id))
            booking_count = self._bookings.count(BookingFilter(lecturer_id=lecturer_id))
            if course_count or booking_count:
                raise ConflictError(
                    "lecturer has courses or schedules",
                    details={"courses": course_count, "bookings": booking_count}
                )
            self._lecturers.delete(lecturer_id)
        logger.info("Lecturer %s deleted", lecturer_id)

    # Courses

    def create_course(self, code: str, name: str, credits: int, semester: int = 1,
                      lecturer_id: Optional[str] = None, description: str = "") -> Course:
        _require(code=code, name=name, credits=credits)
        _positive_int("credits", credits)
        _positive_int("semester", semester)
        course = Course(code=code, name=name, credits=credits, semester=semester,
                        lecturer_id=lecturer_id or None, description=description or "")
        with self._database.transaction():
            if self._courses.find_by_code(code) is not None:
                raise ConflictError("course code already exists", details={"code": code})
            if course.lecturer_id and self._lecturers.find_by_id(course.lecturer_id) is None:
                raise NotFoundError("lecturer", course.lecturer_id)
            self._courses.save(course)
        logger.info("Course %s created (%s, %d credits)", course.id, code, credits)
        return course

    def get_course(self, course_id: str) -> Course:
        course = self._courses.find_by_id(course_id)
        if course is None:
            raise NotFoundError("course", course_id)
        return course

    def list_courses(self, query_filter: Optional[CourseFilter] = None) -> List[Course]:
        return self._courses.find_all(query_filter)

    def update_course(self, course_id: str, changes: Dict[str, Any]) -> Course:
        """Update course attributes.

        The code stays unique and a new lecturer must exist. Credits cannot grow
        while non-rejected KRS records count them, since that would raise those
        students' loads without an admission check.
        """
        changes = _known_changes(changes, {"code", "name", "credits", "semester",
                                           "lecturer_id", "description"})
        for name in ("code", "name"):
            if name in changes:
                _require(**{name: changes[name]})
        for name in ("credits", "semester"):
            if name in changes:
                _positive_int(name, changes[name])

        with self._database.transaction():
            course = self.get_course(course_id)
            if "code" in changes and changes["code"] != course.code:
                clash = self._courses.find_one(CourseFilter(code=changes["code"],
                                                            exclude_id=course_id))
                if clash is not None:
                    raise ConflictError("course code already exists",
                                        details={"code": changes["code"]})
            if changes.get("lecturer_id") and changes["lecturer_id"] != course.lecturer_id:
                self.get_lecturer(changes["lecturer_id"])
            if changes.get("credits", course.credits) > course.credits:
                counted = self._enrollments.count(EnrollmentFilter(
                    course_id=course_id, exclude_status=EnrollmentStatus.REJECTED
                ))
                if counted:
                    raise ConflictError(
                        "course credits cannot increase while enrollments count them",
                        details={"enrollments": counted, "credits": course.credits}
                    )
            if changes:
                course.update(**changes)
                self._courses.save(course)
        logger.info("Course %s updated: %s", course_id, sorted(changes))
        return course

    def delete_course(self, course_id: str) -> None:
        """Delete a course that no enrollment, grade or active booking refers to.

        Its inactive and cancelled bookings are deleted with it.
        """
        with self._database.transaction():
            self.get_course(course_id)
            enrollment_count = self._enrollments.count(EnrollmentFilter(course_id=course_id))
            grade_count = self._grades.count(GradeFilter(course_id=course_id))
            if enrollment_count or grade_count:
                raise ConflictError(
                    "course is referenced by enrollments or grades",
                    details={"enrollments": enrollment_count, "grades": grade_count}
                )
            active = self._bookings.count(BookingFilter(course_id=course_id,
                                                        status=BookingStatus.ACTIVE))
            if active:
                raise ConflictError("course has active schedules",
                                    details={"active_bookings": active})
            self._courses.delete(course_id)
        logger.info("Course %s deleted", course_id)

    # Rooms

    def create_room(self, code: str, name: str, capacity: int, room_type: str = "CLASSROOM",
                    location: str = "", is_active: bool = True) -> Room:
        _require(code=code, name=name, capacity=capacity)
        _positive_int("capacity", capacity)
        room = Room(code=code, name=name, capacity=capacity,
                    room_type=(room_type or "CLASSROOM").upper(),
                    location=location or "", is_active=bool(is_active))
        with self._database.transaction():
            if self._rooms.find_by_code(code) is not None:
                raise ConflictError("room code already exists", details={"code": code})
            self._rooms.save(room)
        logger.info("Room %s created (%s)", room.id, code)
        return room

    def get_room(self, room_id: str) -> Room:
        room = self._rooms.find_by_id(room_id)
        if room is None:
            raise NotFoundError("room", room_id)
        return room

    def list_rooms(self, is_active: Optional[bool] = None,
                   room_type: Optional[str] = None) -> List[Room]:
        return self._rooms.find_all(RoomFilter(is_active=is_active,
                                               room_type=room_type.upper() if room_type else None))

    def update_room(self, room_id: str, changes: Dict[str, Any]) -> Room:
        """Update room attributes; deactivating a room keeps its existing bookings."""
        changes = _known_changes(changes, {"code", "name", "capacity", "room_type",
                                           "location", "is_active"})
        if "capacity" in changes:
            _positive_int("capacity", changes["capacity"])
        if "room_type" in changes:
            changes["room_type"] = changes["room_type"].upper()
        for name in ("code", "name"):
            if name in changes:
                _require(**{name: changes[name]})

        with self._database.transaction():
            room = self.get_room(room_id)
            if "code" in changes and changes["code"] != room.code:
                clash = self._rooms.find_one(RoomFilter(code=changes["code"], exclude_id=room_id))
                if clash is not None:
                    raise ConflictError("room code already exists",
                                        details={"code": changes["code"]})
            if changes:
                room.update(**changes)
                self._rooms.save(room)
        logger.info("Room %s updated: %s", room_id, sorted(changes))
        return room

    def delete_room(self, room_id: str) -> None:
        """Delete a room without active bookings; inactive bookings go with it."""
        with self._database.transaction():
            self.get_room(room_id)
            active = self._bookings.count(BookingFilter(room_id=room_id,
                                                        status=BookingStatus.ACTIVE))
            if active:
                raise ConflictError("room has active schedules",
                                    details={"active_bookings": active})
            self._rooms.delete(room_id)
        logger.info("Room %s deleted", room_id)

    # Grades

    def record_grade(self, student_id: str, course_id: str, semester: str, year: int,
                     grade: str, score: Optional[float] = None) -> Grade:
        _require(student_id=student_id, course_id=course_id, semester=semester, grade=grade)
        _positive_int("year", year)
        letter = grade.strip().upper()
        if letter not in VALID_GRADES:
            raise ValidationError(f"invalid grade: {grade!r}",
                                  details={"field": "grade", "allowed": ", ".join(VALID_GRADES)})
        if score is not None and not 0 <= score <= 100:
            raise ValidationError("score must be between 0 and 100",
                                  details={"field": "score", "value": score})
        record = Grade(student_id=student_id, course_id=course_id, semester=semester,
                       year=year, grade=letter, score=score)
        with self._database.transaction():
            self.get_student(student_id)
            self.get_course(course_id)
            self._grades.save(record)
        logger.info("Grade %s recorded for %s in %s (%s)", letter, student_id, course_id, semester)
        return record

    def list_grades(self, query_filter: Optional[GradeFilter] = None) -> List[Grade]:
        return self._grades.find_all(query_filter)
