"""
Typed query filters.

Each filter is a dataclass whose fields map to one column comparison. Unset
(``None``) fields are skipped, so a filter only narrows on what the caller set.
"""

from dataclasses import dataclass, field, fields
from enum import Enum
from typing import Any, List, Optional, Tuple

from ..core.enums import BookingStatus, DayOfWeek, EnrollmentStatus, StudentStatus


def column(name: Optional[str] = None, op: str = "="):
    """Declare a filter field bound to ``name`` compared with ``op``."""
    return field(default=None, metadata={"column": name, "op": op})


def contains(sql: str, arity: int = 1):
    """Declare a case-insensitive substring filter.

    ``sql`` holds ``arity`` placeholders, each bound to the lowercased value wrapped
    in ``%`` wildcards, and may use ``{prefix}`` for the filtered table's alias.
    """
    return field(default=None, metadata={"sql": sql, "arity": arity})


@dataclass
class QueryFilter:
    """Base class for typed filters."""

    def clauses(self, prefix: str = "") -> Tuple[List[str], List[Any]]:
        """Return SQL conditions and their parameters, in field order."""
        conditions: List[str] = []
        params: List[Any] = []
        for item in fields(self):
            value = getattr(self, item.name)
            if value is None:
                continue
            if "sql" in item.metadata:
                conditions.append("(" + item.metadata["sql"].format(prefix=prefix) + ")")
                params.extend([f"%{str(value).lower()}%"] * item.metadata["arity"])
                continue
            if isinstance(value, Enum):
                value = value.value
            name = item.metadata.get("column") or item.name
            conditions.append(f"{prefix}{name} {item.metadata.get('op', '=')} ?")
            params.append(value)
        return conditions, params

    def where(self, prefix: str = "") -> Tuple[str, List[Any]]:
        """Render a ``WHERE`` clause (empty string when nothing is set)."""
        conditions, params = self.clauses(prefix)
        if not conditions:
            return "", params
        return " WHERE " + " AND ".join(conditions), params


@dataclass
class StudentFilter(QueryFilter):
    nim: Optional[str] = column()
    email: Optional[str] = column()
    program: Optional[str] = column()
    status: Optional[StudentStatus] = column()
    exclude_id: Optional[str] = column("id", "<>")


@dataclass
class LecturerFilter(QueryFilter):
    nidn: Optional[str] = column()
    email: Optional[str] = column()
    department: Optional[str] = column()
    exclude_id: Optional[str] = column("id", "<>")


@dataclass
class CourseFilter(QueryFilter):
    code: Optional[str] = column()
    semester: Optional[int] = column()
    lecturer_id: Optional[str] = column()
    exclude_id: Optional[str] = column("id", "<>")


@dataclass
class RoomFilter(QueryFilter):
    code: Optional[str] = column()
    room_type: Optional[str] = column()
    is_active: Optional[bool] = column()
    exclude_id: Optional[str] = column("id", "<>")


@dataclass
class EnrollmentFilter(QueryFilter):
    student_id: Optional[str] = column()
    course_id: Optional[str] = column()
    semester: Optional[str] = column()
    year: Optional[int] = column()
    status: Optional[EnrollmentStatus] = column()
    exclude_status: Optional[EnrollmentStatus] = column("status", "<>")
    exclude_id: Optional[str] = column("id", "<>")
    search: Optional[str] = contains(
        "{prefix}student_id IN (SELECT id FROM students"
        " WHERE LOWER(name) LIKE ? OR LOWER(nim) LIKE ?)"
        " OR {prefix}course_id IN (SELECT id FROM courses"
        " WHERE LOWER(name) LIKE ? OR LOWER(code) LIKE ?)",
        arity=4
    )


@dataclass
class BookingFilter(QueryFilter):
    room_id: Optional[str] = column()
    day: Optional[DayOfWeek] = column()
    status: Optional[BookingStatus] = column()
    course_id: Optional[str] = column()
    lecturer_id: Optional[str] = column()
    semester: Optional[int] = column()
    academic_year: Optional[str] = column()
    exclude_id: Optional[str] = column("id", "<>")


@dataclass
class GradeFilter(QueryFilter):
    student_id: Optional[str] = column()
    course_id: Optional[str] = column()
    semester: Optional[str] = column()
