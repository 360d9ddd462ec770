"""
Main entry point for the SIAKAD platform.
"""

import json
import logging
import os
import sys
import tempfile
from typing import Any, Dict, Optional

from .api.rest_api import SiakadRestAPI
from .config import Settings
from .core.exceptions import SiakadException
from .persistence import DatabaseFactory, MigrationManager
from .persistence.repositories import (
    BookingRepository, CourseRepository, EnrollmentRepository, GradeRepository,
    LecturerRepository, RoomRepository, StudentRepository
)
from .services import CatalogService, ConcurrencyManager, EnrollmentService, SchedulerService

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s %(levelname)-7s %(name)s: %(message)s"


def configure_logging(level: str = "INFO") -> None:
    """Install one stream handler on the root logger."""
    logging.basicConfig(level=level.upper(), format=LOG_FORMAT, stream=sys.stderr, force=True)


class SiakadPlatform:
    """Main platform class wiring storage, services and the HTTP API."""

    def __init__(self, config: Optional[Dict[str, Any]] = None):
        self._settings = Settings(**(config or {}))
        self._initialize_platform()

    def _initialize_platform(self):
        """Initialize the platform with all services."""
        settings = self._settings
        logger.info("Initializing SIAKAD platform")

        self.database = DatabaseFactory.create_database(
            settings.database_type, **settings.database_kwargs()
        )
        self.migration_manager = MigrationManager(self.database)
        applied = self.migration_manager.migrate_up()
        logger.info("Schema at version %d (%d migration(s) applied)",
                    self.migration_manager.get_migration_status()["current_version"], len(applied))

        self.concurrency_manager = ConcurrencyManager(default_timeout=settings.lock_timeout)

        self.students = StudentRepository(self.database)
        self.lecturers = LecturerRepository(self.database)
        self.courses = CourseRepository(self.database)
        self.rooms = RoomRepository(self.database)
        self.enrollments = EnrollmentRepository(self.database)
        self.bookings = BookingRepository(self.database)
        self.grades = GradeRepository(self.database)

        self.catalog_service = CatalogService(
            self.database, self.students, self.lecturers, self.courses, self.rooms,
            self.enrollments, self.bookings, self.grades
        )
        self.enrollment_service = EnrollmentService(
            self.database, self.enrollments, self.students, self.courses, self.grades,
            self.concurrency_manager,
            max_credits=settings.max_credits_per_term,
            lock_timeout=settings.lock_timeout
        )
        self.scheduler_service = SchedulerService(
            self.database, self.bookings, self.courses, self.lecturers, self.rooms,
            self.concurrency_manager,
            lock_timeout=settings.lock_timeout
        )

        self.rest_api = SiakadRestAPI(
            self.catalog_service, self.enrollment_service, self.scheduler_service,
            cors_origins=settings.cors_origins
        )
        logger.info("SIAKAD platform initialized (credit ceiling %d)",
                    settings.max_credits_per_term)

    @property
    def settings(self) -> Settings:
        return self._settings

    @property
    def app(self):
        return self.rest_api.app

    def start_rest_server(self, host: Optional[str] = None, port: Optional[int] = None):
        """Serve the REST API with uvicorn; blocks until the server stops."""
        import uvicorn

        host = host or self._settings.rest_host
        port = port or self._settings.rest_port
        logger.info("REST API on http://%s:%d (docs at /docs)", host, port)
        uvicorn.run(self.app, host=host, port=port,
                    log_level=self._settings.log_level.lower())

    def create_sample_data(self) -> Dict[str, Any]:
        """Create a small catalog for demonstration."""
        catalog = self.catalog_service
        lecturer = catalog.create_lecturer("0012345678", "Dr. Siti Rahma", "siti@kampus.ac.id",
                                           "Informatika", "Lektor")
        room = catalog.create_room("R101", "Ruang 101", 40, location="Gedung A")
        lab = catalog.create_room("LAB1", "Lab Komputer 1", 30, room_type="LAB", is_active=False)
        courses = [
            catalog.create_course(code, name, credits, semester=1, lecturer_id=lecturer.id)
            for code, name, credits in (
                ("IF101", "Algoritma dan Pemrograman", 3),
                ("IF102", "Matematika Diskrit", 3),
                ("IF103", "Basis Data", 4),
            )
        ]
        student = catalog.create_student("2025001", "Budi Santoso", "budi@kampus.ac.id",
                                         "Teknik Informatika")
        logger.info("Sample data created")
        return {"lecturer": lecturer, "room": room, "lab": lab,
                "courses": courses, "student": student}

    def run_demo(self):
        """Walk through the admission rules on sample data."""
        data = self.create_sample_data()
        student, courses = data["student"], data["courses"]
        term = "2025/2026-Ganjil"

        for course in courses[:2]:
            self.enrollment_service.propose_enroll(student.id, course.id, term, 2025)
        logger.info("Credit load in %s: %d", term,
                    self.enrollment_service.credit_load(student.id, term))

        attempts = [
            ("duplicate KRS", lambda: self.enrollment_service.propose_enroll(
                student.id, courses[0].id, term, 2025)),
            ("booking R101 MONDAY 08:00-10:00", lambda: self.scheduler_service.propose_booking(
                courses[0].id, data["lecturer"].id, data["room"].id, "MONDAY",
                "08:00", "10:00", 1, "2025/2026")),
            ("booking R101 MONDAY 09:00-11:00", lambda: self.scheduler_service.propose_booking(
                courses[1].id, data["lecturer"].id, data["room"].id, "MONDAY",
                "09:00", "11:00", 1, "2025/2026")),
            ("booking R101 MONDAY 10:00-12:00", lambda: self.scheduler_service.propose_booking(
                courses[1].id, data["lecturer"].id, data["room"].id, "MONDAY",
                "10:00", "12:00", 1, "2025/2026")),
            ("booking inactive LAB1", lambda: self.scheduler_service.propose_booking(
                courses[2].id, data["lecturer"].id, data["lab"].id, "TUESDAY",
                "08:00", "10:00", 1, "2025/2026")),
        ]
        for label, attempt in attempts:
            try:
                attempt()
                logger.info("%s: accepted", label)
            except SiakadException as e:
                logger.info("%s: rejected (%s: %s)", label, e.error_code, e.message)

        logger.info("Enrollment statistics: %s", self.enrollment_service.get_statistics())
        logger.info("Scheduling statistics: %s", self.scheduler_service.get_statistics())


def main():
    """Main entry point."""
    import argparse

    parser = argparse.ArgumentParser(description="SIAKAD academic administration platform")
    parser.add_argument("--host", type=str, help="REST server host")
    parser.add_argument("--port", type=int, help="REST server port")
    parser.add_argument("--demo", action="store_true", help="Run demo mode")
    parser.add_argument("--config", type=str, help="Configuration file path (JSON)")

    args = parser.parse_args()

    config = {}
    if args.config:
        with open(args.config, 'r') as f:
            config = json.load(f)

    if args.demo:
        config.setdefault("database_path",
                          os.path.join(tempfile.mkdtemp(prefix="siakad-demo-"), "demo.db"))

    configure_logging(Settings(**config).log_level)
    platform = SiakadPlatform(config)

    if args.demo:
        platform.run_demo()
    else:
        try:
            platform.start_rest_server(args.host, args.port)
        except KeyboardInterrupt:
            logger.info("Shutting down")


if __name__ == "__main__":
    main()
