"""
Persistence module for relational storage, schema migrations and repositories.
"""

from .database import DatabaseManager, SQLiteDatabase, PostgreSQLDatabase, DatabaseFactory
from .migrations import MigrationManager, Migration, SCHEMA_MIGRATIONS
from .queries import (
    QueryFilter, StudentFilter, LecturerFilter, CourseFilter, RoomFilter,
    EnrollmentFilter, BookingFilter, GradeFilter
)
from .repositories import (
    BaseRepository, StudentRepository, LecturerRepository, CourseRepository,
    RoomRepository, EnrollmentRepository, BookingRepository, GradeRepository
)

__all__ = [
    "DatabaseManager",
    "SQLiteDatabase",
    "PostgreSQLDatabase",
    "DatabaseFactory",
    "MigrationManager",
    "Migration",
    "SCHEMA_MIGRATIONS",
    "QueryFilter",
    "StudentFilter",
    "LecturerFilter",
    "CourseFilter",
    "RoomFilter",
    "EnrollmentFilter",
    "BookingFilter",
    "GradeFilter",
    "BaseRepository",
    "StudentRepository",
    "LecturerRepository",
    "CourseRepository",
    "RoomRepository",
    "EnrollmentRepository",
    "BookingRepository",
    "GradeRepository",
]
