"""
Database migration system for schema versioning.
"""

import logging
import threading
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from ..core.exceptions import StorageError
from .database import DatabaseManager

logger = logging.getLogger(__name__)


@dataclass
class Migration:
    """Represents a database migration."""
    version: int
    name: str
    up_sql: str
    down_sql: str
    description: str = ""


def _split_statements(sql: str) -> List[str]:
    return [stmt.strip() for stmt in sql.split(";") if stmt.strip()]


SCHEMA_MIGRATIONS: List[Migration] = [
    Migration(
        version=1,
        name="create_people_tables",
        up_sql="""
            CREATE TABLE IF NOT EXISTS students (
                id VARCHAR(36) PRIMARY KEY,
                nim VARCHAR(20) NOT NULL UNIQUE,
                name VARCHAR(160) NOT NULL,
                email VARCHAR(160) NOT NULL,
                program VARCHAR(120) NOT NULL,
                semester INTEGER NOT NULL DEFAULT 1,
                status VARCHAR(20) NOT NULL DEFAULT 'ACTIVE',
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL,
                version INTEGER NOT NULL DEFAULT 1
            );
            CREATE TABLE IF NOT EXISTS lecturers (
                id VARCHAR(36) PRIMARY KEY,
                nidn VARCHAR(20) NOT NULL UNIQUE,
                name VARCHAR(160) NOT NULL,
                email VARCHAR(160) NOT NULL,
                department VARCHAR(120) NOT NULL,
                position VARCHAR(120) NOT NULL DEFAULT '',
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL,
                version INTEGER NOT NULL DEFAULT 1
            )
        """,
        down_sql="DROP TABLE IF EXISTS lecturers; DROP TABLE IF EXISTS students",
        description="Students and lecturers"
    ),
    Migration(
        version=2,
        name="create_catalog_tables",
        up_sql="""
            CREATE TABLE IF NOT EXISTS courses (
                id VARCHAR(36) PRIMARY KEY,
                code VARCHAR(20) NOT NULL UNIQUE,
                name VARCHAR(160) NOT NULL,
                credits INTEGER NOT NULL CHECK (credits > 0),
                semester INTEGER NOT NULL DEFAULT 1,
                lecturer_id VARCHAR(36) REFERENCES lecturers(id),
                description TEXT NOT NULL DEFAULT '',
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL,
                version INTEGER NOT NULL DEFAULT 1
            );
            CREATE TABLE IF NOT EXISTS rooms (
                id VARCHAR(36) PRIMARY KEY,
                code VARCHAR(20) NOT NULL UNIQUE,
                name VARCHAR(120) NOT NULL,
                capacity INTEGER NOT NULL,
                room_type VARCHAR(40) NOT NULL DEFAULT 'CLASSROOM',
                location VARCHAR(160) NOT NULL DEFAULT '',
                is_active BOOLEAN NOT NULL DEFAULT TRUE,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL,
                version INTEGER NOT NULL DEFAULT 1
            )
        """,
        down_sql="DROP TABLE IF EXISTS rooms; DROP TABLE IF EXISTS courses",
        description="Courses and rooms"
    ),
    Migration(
        version=3,
        name="create_enrollments_and_grades",
        up_sql="""
            CREATE TABLE IF NOT EXISTS enrollments (
                id VARCHAR(36) PRIMARY KEY,
                student_id VARCHAR(36) NOT NULL REFERENCES students(id),
                course_id VARCHAR(36) NOT NULL REFERENCES courses(id),
                semester VARCHAR(40) NOT NULL,
                year INTEGER NOT NULL,
                status VARCHAR(20) NOT NULL DEFAULT 'PENDING',
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL,
                version INTEGER NOT NULL DEFAULT 1,
                UNIQUE (student_id, course_id, semester)
            );
            CREATE INDEX IF NOT EXISTS idx_enrollments_student_term
                ON enrollments(student_id, semester);
            CREATE TABLE IF NOT EXISTS grades (
                id VARCHAR(36) PRIMARY KEY,
                student_id VARCHAR(36) NOT NULL REFERENCES students(id),
                course_id VARCHAR(36) NOT NULL REFERENCES courses(id),
                semester VARCHAR(40) NOT NULL,
                year INTEGER NOT NULL,
                grade VARCHAR(4) NOT NULL,
                score REAL,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL,
                version INTEGER NOT NULL DEFAULT 1
            );
            CREATE INDEX IF NOT EXISTS idx_grades_enrollment_key
                ON grades(student_id, course_id, semester)
        """,
        down_sql="DROP TABLE IF EXISTS grades; DROP TABLE IF EXISTS enrollments",
        description="KRS records and grades"
    ),
    Migration(
        version=4,
        name="create_bookings",
        up_sql="""
            CREATE TABLE IF NOT EXISTS bookings (
                id VARCHAR(36) PRIMARY KEY,
                course_id VARCHAR(36) NOT NULL REFERENCES courses(id) ON DELETE CASCADE,
                lecturer_id VARCHAR(36) NOT NULL REFERENCES lecturers(id),
                room_id VARCHAR(36) NOT NULL REFERENCES rooms(id) ON DELETE CASCADE,
                day VARCHAR(10) NOT NULL,
                start_time VARCHAR(5) NOT NULL,
                end_time VARCHAR(5) NOT NULL,
                semester INTEGER NOT NULL,
                academic_year VARCHAR(20) NOT NULL,
                status VARCHAR(20) NOT NULL DEFAULT 'ACTIVE',
                notes TEXT,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL,
                version INTEGER NOT NULL DEFAULT 1,
                CHECK (start_time < end_time)
            );
            CREATE INDEX IF NOT EXISTS idx_bookings_room_day
                ON bookings(room_id, day, status);
            CREATE UNIQUE INDEX IF NOT EXISTS ux_bookings_active_slot
                ON bookings(room_id, day, start_time) WHERE status = 'ACTIVE'
        """,
        down_sql="DROP TABLE IF EXISTS bookings",
        description="Room bookings"
    ),
]


class MigrationManager:
    """Manages database migrations and schema versioning."""

    def __init__(self, database: DatabaseManager, migrations: Optional[List[Migration]] = None):
        self._database = database
        self._migrations = sorted(migrations or SCHEMA_MIGRATIONS, key=lambda m: m.version)
        self._lock = threading.RLock()
        self._ensure_migrations_table()

    def _ensure_migrations_table(self) -> None:
        """Ensure the migrations table exists."""
        self._database.execute_update("""
            CREATE TABLE IF NOT EXISTS migrations (
                version INTEGER PRIMARY KEY,
                name VARCHAR(255) UNIQUE NOT NULL,
                applied_at TEXT NOT NULL,
                description TEXT
            )
        """)

    def _get_applied_versions(self) -> List[int]:
        results = self._database.execute_query("SELECT version FROM migrations ORDER BY version")
        return [row["version"] for row in results]

    def get_pending_migrations(self) -> List[Migration]:
        """Get migrations that haven't been applied yet."""
        with self._lock:
            applied = set(self._get_applied_versions())
            return [m for m in self._migrations if m.version not in applied]

    def apply_migration(self, migration: Migration) -> None:
        """Apply a migration and record it, atomically."""
        with self._lock:
            try:
                with self._database.transaction():
                    for statement in _split_statements(migration.up_sql):
                        self._database.execute_update(statement)
                    self._database.execute_update(
                        "INSERT INTO migrations (version, name, applied_at, description) VALUES (?, ?, ?, ?)",
                        (migration.version, migration.name,
                         datetime.now(timezone.utc).isoformat(), migration.description)
                    )
            except StorageError as e:
                raise StorageError(f"Failed to apply migration {migration.name}: {e.message}") from e
            logger.info("Applied migration %03d_%s", migration.version, migration.name)

    def rollback_migration(self, migration: Migration) -> None:
        """Rollback a migration."""
        with self._lock:
            with self._database.transaction():
                for statement in _split_statements(migration.down_sql):
                    self._database.execute_update(statement)
                self._database.execute_update(
                    "DELETE FROM migrations WHERE version = ?", (migration.version,)
                )
            logger.info("Rolled back migration %03d_%s", migration.version, migration.name)

    def migrate_up(self, target_version: Optional[int] = None) -> List[Migration]:
        """Apply pending migrations up to target version."""
        with self._lock:
            applied = []
            for migration in self.get_pending_migrations():
                if target_version is not None and migration.version > target_version:
                    break
                self.apply_migration(migration)
                applied.append(migration)
            return applied

    def migrate_down(self, target_version: int = 0) -> List[Migration]:
        """Rollback applied migrations down to (but not including) target version."""
        with self._lock:
            applied_versions = set(self._get_applied_versions())
            rolled_back = []
            for migration in reversed(self._migrations):
                if migration.version <= target_version:
                    break
                if migration.version in applied_versions:
                    self.rollback_migration(migration)
                    rolled_back.append(migration)
            return rolled_back

    def get_migration_status(self) -> Dict[str, Any]:
        """Get migration status information."""
        with self._lock:
            applied = self._get_applied_versions()
            return {
                "total_migrations": len(self._migrations),
                "applied_migrations": len(applied),
                "pending_migrations": len(self._migrations) - len(applied),
                "current_version": max(applied, default=0),
            }
