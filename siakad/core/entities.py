"""
Core entities for the SIAKAD platform.
"""

import uuid
from abc import ABC
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from .enums import BookingStatus, DayOfWeek, EnrollmentStatus, StudentStatus


class AbstractEntity(ABC):
    """Base abstract entity with universal ID, lifecycle timestamps, and versioning."""

    def __init__(self, entity_id: Optional[str] = None, created_at: Optional[datetime] = None,
                 updated_at: Optional[datetime] = None, version: int = 1):
        self._id = entity_id or str(uuid.uuid4())
        self._created_at = created_at or datetime.now(timezone.utc)
        self._updated_at = updated_at or self._created_at
        self._version = version

    @property
    def id(self) -> str:
        """Get the entity ID."""
        return self._id

    @property
    def created_at(self) -> datetime:
        """Get creation timestamp."""
        return self._created_at

    @property
    def updated_at(self) -> datetime:
        """Get last update timestamp."""
        return self._updated_at

    @property
    def version(self) -> int:
        """Get current version."""
        return self._version

    def update(self, **kwargs) -> None:
        """Update entity with new data."""
        for key, value in kwargs.items():
            if hasattr(self, f"_{key}"):
                setattr(self, f"_{key}", value)
        self._updated_at = datetime.now(timezone.utc)
        self._version += 1

    def to_dict(self) -> Dict[str, Any]:
        """Convert entity to dictionary."""
        return {
            'id': self._id,
            'created_at': self._created_at.isoformat(),
            'updated_at': self._updated_at.isoformat(),
            'version': self._version,
        }

    def __str__(self) -> str:
        return f"{self.__class__.__name__}(id={self._id})"

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(id={self._id}, version={self._version})"


class Student(AbstractEntity):
    """Student (mahasiswa) record."""

    def __init__(self, nim: str, name: str, email: str, program: str, semester: int = 1,
                 status: StudentStatus = StudentStatus.ACTIVE, **kwargs):
        super().__init__(**kwargs)
        self._nim = nim
        self._name = name
        self._email = email
        self._program = program
        self._semester = semester
        self._status = status

    @property
    def nim(self) -> str:
        return self._nim

    @property
    def name(self) -> str:
        return self._name

    @property
    def email(self) -> str:
        return self._email

    @property
    def program(self) -> str:
        return self._program

    @property
    def semester(self) -> int:
        """Semester-in-program counter, not a term label."""
        return self._semester

    @property
    def status(self) -> StudentStatus:
        return self._status

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data.update({
            'nim': self._nim,
            'name': self._name,
            'email': self._email,
            'program': self._program,
            'semester': self._semester,
            'status': self._status.value,
        })
        return data


class Lecturer(AbstractEntity):
    """Lecturer (dosen) record."""

    def __init__(self, nidn: str, name: str, email: str, department: str,
                 position: str = "", **kwargs):
        super().__init__(**kwargs)
        self._nidn = nidn
        self._name = name
        self._email = email
        self._department = department
        self._position = position

    @property
    def nidn(self) -> str:
        return self._nidn

    @property
    def name(self) -> str:
        return self._name

    @property
    def email(self) -> str:
        return self._email

    @property
    def department(self) -> str:
        return self._department

    @property
    def position(self) -> str:
        return self._position

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data.update({
            'nidn': self._nidn,
            'name': self._name,
            'email': self._email,
            'department': self._department,
            'position': self._position,
        })
        return data


class Course(AbstractEntity):
    """Course (mata kuliah) in the catalog."""

    def __init__(self, code: str, name: str, credits: int, semester: int = 1,
                 lecturer_id: Optional[str] = None, description: str = "", **kwargs):
        super().__init__(**kwargs)
        self._code = code
        self._name = name
        self._credits = credits
        self._semester = semester
        self._lecturer_id = lecturer_id
        self._description = description

    @property
    def code(self) -> str:
        return self._code

    @property
    def name(self) -> str:
        return self._name

    @property
    def credits(self) -> int:
        """Credit weight (SKS)."""
        return self._credits

    @property
    def semester(self) -> int:
        return self._semester

    @property
    def lecturer_id(self) -> Optional[str]:
        return self._lecturer_id

    @property
    def description(self) -> str:
        return self._description

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data.update({
            'code': self._code,
            'name': self._name,
            'credits': self._credits,
            'semester': self._semester,
            'lecturer_id': self._lecturer_id,
            'description': self._description,
        })
        return data


class Room(AbstractEntity):
    """Bookable room."""

    def __init__(self, code: str, name: str, capacity: int, room_type: str = "CLASSROOM",
                 location: str = "", is_active: bool = True, **kwargs):
        super().__init__(**kwargs)
        self._code = code
        self._name = name
        self._capacity = capacity
        self._room_type = room_type
        self._location = location
        self._is_active = is_active

    @property
    def code(self) -> str:
        return self._code

    @property
    def name(self) -> str:
        return self._name

    @property
    def capacity(self) -> int:
        return self._capacity

    @property
    def room_type(self) -> str:
        return self._room_type

    @property
    def location(self) -> str:
        return self._location

    @property
    def is_active(self) -> bool:
        return self._is_active

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data.update({
            'code': self._code,
            'name': self._name,
            'capacity': self._capacity,
            'room_type': self._room_type,
            'location': self._location,
            'is_active': self._is_active,
        })
        return data


class Enrollment(AbstractEntity):
    """KRS record tying a student to a course for one term.

    ``semester`` holds the term label (e.g. ``"2025/2026-Ganjil"``); the natural
    key is (student_id, course_id, semester).
    """

    def __init__(self, student_id: str, course_id: str, semester: str, year: int,
                 status: EnrollmentStatus = EnrollmentStatus.PENDING, **kwargs):
        super().__init__(**kwargs)
        self._student_id = student_id
        self._course_id = course_id
        self._semester = semester
        self._year = year
        self._status = status

    @property
    def student_id(self) -> str:
        return self._student_id

    @property
    def course_id(self) -> str:
        return self._course_id

    @property
    def semester(self) -> str:
        return self._semester

    @property
    def year(self) -> int:
        return self._year

    @property
    def status(self) -> EnrollmentStatus:
        return self._status

    @property
    def natural_key(self):
        return (self._student_id, self._course_id, self._semester)

    @property
    def consumes_credits(self) -> bool:
        """Rejected enrollments stay on record but do not count toward the credit load."""
        return self._status != EnrollmentStatus.REJECTED

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data.update({
            'student_id': self._student_id,
            'course_id': self._course_id,
            'semester': self._semester,
            'year': self._year,
            'status': self._status.value,
        })
        return data


class Booking(AbstractEntity):
    """Room booking (jadwal) for a course session on a weekday."""

    def __init__(self, course_id: str, lecturer_id: str, room_id: str, day: DayOfWeek,
                 start_time: str, end_time: str, semester: int, academic_year: str,
                 status: BookingStatus = BookingStatus.ACTIVE, notes: Optional[str] = None,
                 **kwargs):
        super().__init__(**kwargs)
        self._course_id = course_id
        self._lecturer_id = lecturer_id
        self._room_id = room_id
        self._day = day
        self._start_time = start_time
        self._end_time = end_time
        self._semester = semester
        self._academic_year = academic_year
        self._status = status
        self._notes = notes

    @property
    def course_id(self) -> str:
        return self._course_id

    @property
    def lecturer_id(self) -> str:
        return self._lecturer_id

    @property
    def room_id(self) -> str:
        return self._room_id

    @property
    def day(self) -> DayOfWeek:
        return self._day

    @property
    def start_time(self) -> str:
        return self._start_time

    @property
    def end_time(self) -> str:
        return self._end_time

    @property
    def semester(self) -> int:
        return self._semester

    @property
    def academic_year(self) -> str:
        return self._academic_year

    @property
    def status(self) -> BookingStatus:
        return self._status

    @property
    def notes(self) -> Optional[str]:
        return self._notes

    @property
    def is_active(self) -> bool:
        return self._status == BookingStatus.ACTIVE

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data.update({
            'course_id': self._course_id,
            'lecturer_id': self._lecturer_id,
            'room_id': self._room_id,
            'day': self._day.value,
            'start_time': self._start_time,
            'end_time': self._end_time,
            'semester': self._semester,
            'academic_year': self._academic_year,
            'status': self._status.value,
            'notes': self._notes,
        })
        return data


class Grade(AbstractEntity):
    """Final grade for a student in a course for one term."""

    def __init__(self, student_id: str, course_id: str, semester: str, year: int,
                 grade: str, score: Optional[float] = None, **kwargs):
        super().__init__(**kwargs)
        self._student_id = student_id
        self._course_id = course_id
        self._semester = semester
        self._year = year
        self._grade = grade
        self._score = score

    @property
    def student_id(self) -> str:
        return self._student_id

    @property
    def course_id(self) -> str:
        return self._course_id

    @property
    def semester(self) -> str:
        return self._semester

    @property
    def year(self) -> int:
        return self._year

    @property
    def grade(self) -> str:
        return self._grade

    @property
    def score(self) -> Optional[float]:
        return self._score

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data.update({
            'student_id': self._student_id,
            'course_id': self._course_id,
            'semester': self._semester,
            'year': self._year,
            'grade': self._grade,
            'score': self._score,
        })
        return data
