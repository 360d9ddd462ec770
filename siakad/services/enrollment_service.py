"""
Enrollment (KRS) admission control.

Every write runs its read-check-write sequence inside a critical section keyed
by ``enrollment:{student_id}:{semester}``, so two proposals for the same
student and term never interleave between the checks and the insert.
"""

import logging
from dataclasses import dataclass, fields
from typing import Any, Dict, List, Optional, Set, Union

from ..core.entities import Course, Enrollment
from ..core.enums import DEFAULT_MAX_CREDITS_PER_TERM, EnrollmentStatus, parse_enum
from ..core.exceptions import (
    CapacityExceededError, ConcurrencyError, ConflictError, NotFoundError, SiakadException,
    ValidationError
)
from ..core.interfaces import EnrollmentRule
from ..persistence.database import DatabaseManager
from ..persistence.queries import EnrollmentFilter
from ..persistence.repositories import (
    CourseRepository, EnrollmentRepository, GradeRepository, StudentRepository
)
from .concurrency_manager import ConcurrencyManager, critical_section

logger = logging.getLogger(__name__)


@dataclass
class EnrollmentPatch:
    """Partial update of a KRS record; ``None`` leaves a field unchanged."""
    student_id: Optional[str] = None
    course_id: Optional[str] = None
    semester: Optional[str] = None
    year: Optional[int] = None
    status: Optional[EnrollmentStatus] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'EnrollmentPatch':
        known = {item.name for item in fields(cls)}
        unknown = sorted(set(data) - known)
        if unknown:
            raise ValidationError(f"unknown fields: {', '.join(unknown)}",
                                  details={"fields": unknown})
        patch = cls(**data)
        if patch.status is not None:
            patch.status = parse_enum(EnrollmentStatus, patch.status, "status")
        return patch

    def changes(self) -> Dict[str, Any]:
        return {item.name: getattr(self, item.name) for item in fields(self)
                if getattr(self, item.name) is not None}


class DuplicateEnrollmentRule(EnrollmentRule):
    """A student takes a course at most once per term."""

    def __init__(self, enrollments: EnrollmentRepository):
        self._enrollments = enrollments

    def check(self, candidate: Enrollment, course: Course,
              exclude_id: Optional[str] = None) -> None:
        existing = self._enrollments.find_by_natural_key(
            candidate.student_id, candidate.course_id, candidate.semester, exclude_id=exclude_id
        )
        if existing is not None:
            raise ConflictError(
                "duplicate enrollment for this course in this term",
                details={
                    "student_id": candidate.student_id,
                    "course_id": candidate.course_id,
                    "semester": candidate.semester,
                    "existing_enrollment_id": existing.id,
                }
            )

    def get_rule_name(self) -> str:
        return "DuplicateEnrollmentRule"


class CreditLoadRule(EnrollmentRule):
    """Caps the credits a student carries in one term.

    Rejected enrollments do not count, so a candidate in REJECTED status is
    never checked, and re-activating a rejected record is checked again.
    """

    def __init__(self, enrollments: EnrollmentRepository,
                 max_credits: int = DEFAULT_MAX_CREDITS_PER_TERM):
        self._enrollments = enrollments
        self._max_credits = max_credits

    @property
    def max_credits(self) -> int:
        return self._max_credits

    def applies_to(self, candidate: Enrollment, previous: Optional[Enrollment] = None) -> bool:
        if not candidate.consumes_credits:
            return False
        if previous is None or not previous.consumes_credits:
            return True
        return candidate.natural_key != previous.natural_key

    def check(self, candidate: Enrollment, course: Course,
              exclude_id: Optional[str] = None) -> None:
        current_total = self._enrollments.sum_credits(
            candidate.student_id, candidate.semester, exclude_id=exclude_id
        )
        attempted_total = current_total + course.credits
        if attempted_total > self._max_credits:
            raise CapacityExceededError(
                "credit-load ceiling exceeded",
                attempted_total=attempted_total,
                ceiling=self._max_credits,
                details={
                    "current_total": current_total,
                    "course_credits": course.credits,
                    "student_id": candidate.student_id,
                    "semester": candidate.semester,
                }
            )

    def get_rule_name(self) -> str:
        return "CreditLoadRule"


class EnrollmentService:
    """Admission control for KRS records."""

    RELOCK_ATTEMPTS = 3

    def __init__(self, database: DatabaseManager, enrollments: EnrollmentRepository,
                 students: StudentRepository, courses: CourseRepository,
                 grades: GradeRepository, concurrency_manager: ConcurrencyManager,
                 max_credits: int = DEFAULT_MAX_CREDITS_PER_TERM,
                 lock_timeout: Optional[float] = None):
        self._database = database
        self._enrollments = enrollments
        self._students = students
        self._courses = courses
        self._grades = grades
        self._concurrency_manager = concurrency_manager
        self._lock_timeout = lock_timeout
        self._rules: List[EnrollmentRule] = [
            DuplicateEnrollmentRule(enrollments),
            CreditLoadRule(enrollments, max_credits),
        ]

    @property
    def max_credits(self) -> int:
        for rule in self._rules:
            if isinstance(rule, CreditLoadRule):
                return rule.max_credits
        return DEFAULT_MAX_CREDITS_PER_TERM

    def add_rule(self, rule: EnrollmentRule) -> None:
        """Append an admission rule; rules run in insertion order."""
        self._rules.append(rule)

    def remove_rule(self, rule_name: str) -> None:
        """Remove an admission rule by name."""
        self._rules = [r for r in self._rules if r.get_rule_name() != rule_name]

    @staticmethod
    def _lock_key(student_id: str, semester: str) -> str:
        return f"enrollment:{student_id}:{semester}"

    def _validate(self, student_id: Any, course_id: Any, semester: Any, year: Any) -> None:
        missing = [name for name, value in (("student_id", student_id),
                                            ("course_id", course_id),
                                            ("semester", semester)) if not value]
        if isinstance(year, bool) or not isinstance(year, int) or year <= 0:
            missing.append("year")
        if missing:
            raise ValidationError("required fields missing", details={"missing": missing})

    def _require_course(self, course_id: str) -> Course:
        course = self._courses.find_by_id(course_id)
        if course is None:
            raise NotFoundError("course", course_id)
        return course

    def _require_student(self, student_id: str) -> None:
        if self._students.find_by_id(student_id) is None:
            raise NotFoundError("student", student_id)

    def _run_rules(self, candidate: Enrollment, course: Course,
                   previous: Optional[Enrollment] = None) -> None:
        exclude_id = previous.id if previous is not None else None
        for rule in self._rules:
            if rule.applies_to(candidate, previous):
                rule.check(candidate, course, exclude_id=exclude_id)

    def propose_enroll(self, student_id: str, course_id: str, semester: str, year: int,
                       status: Union[EnrollmentStatus, str] = EnrollmentStatus.PENDING) -> Enrollment:
        """Admit a new KRS record or raise the first violated rule."""
        self._validate(student_id, course_id, semester, year)
        status = parse_enum(EnrollmentStatus, status, "status")

        try:
            with critical_section(self._database, self._concurrency_manager,
                                  [self._lock_key(student_id, semester)], self._lock_timeout):
                self._require_student(student_id)
                course = self._require_course(course_id)
                enrollment = Enrollment(student_id=student_id, course_id=course_id,
                                        semester=semester, year=year, status=status)
                self._run_rules(enrollment, course)
                self._enrollments.save(enrollment)
        except SiakadException as e:
            logger.info("Rejected enrollment of %s in %s for %s: %s",
                        student_id, course_id, semester, e.message)
            raise

        logger.info("Enrollment %s created (%s, %s, %s)",
                    enrollment.id, student_id, course_id, semester)
        return enrollment

    def _update_keys(self, record: Enrollment, changes: Dict[str, Any]) -> Set[str]:
        """Lock keys for moving ``record`` to the term the changes point at."""
        return {self._lock_key(record.student_id, record.semester),
                self._lock_key(changes.get("student_id", record.student_id),
                               changes.get("semester", record.semester))}

    def _apply_update(self, previous: Enrollment, changes: Dict[str, Any]) -> Enrollment:
        effective = {
            "student_id": changes.get("student_id", previous.student_id),
            "course_id": changes.get("course_id", previous.course_id),
            "semester": changes.get("semester", previous.semester),
            "year": changes.get("year", previous.year),
        }
        self._validate(**effective)
        if effective["student_id"] != previous.student_id:
            self._require_student(effective["student_id"])
        course = self._require_course(effective["course_id"])
        candidate = Enrollment(status=changes.get("status", previous.status),
                               entity_id=previous.id, **effective)
        self._run_rules(candidate, course, previous)
        previous.update(**changes)
        self._enrollments.save(previous)
        return previous

    def propose_update(self, enrollment_id: str,
                       patch: Union[EnrollmentPatch, Dict[str, Any]]) -> Enrollment:
        """Apply a partial update, re-checking only what the update can break.

        The record is re-read under the lock. If a concurrent update moved it to
        a term whose key is not held, the locks are dropped and taken again.
        """
        if isinstance(patch, dict):
            patch = EnrollmentPatch.from_dict(patch)
        changes = patch.changes()
        if "status" in changes:
            changes["status"] = parse_enum(EnrollmentStatus, changes["status"], "status")

        try:
            for _ in range(self.RELOCK_ATTEMPTS):
                stored = self.get_enrollment(enrollment_id)
                keys = self._update_keys(stored, changes)
                with critical_section(self._database, self._concurrency_manager,
                                      keys, self._lock_timeout):
                    previous = self.get_enrollment(enrollment_id)
                    if self._update_keys(previous, changes) <= keys:
                        updated = self._apply_update(previous, changes)
                        break
                logger.debug("Enrollment %s moved while locking, retrying", enrollment_id)
            else:
                raise ConcurrencyError(
                    "enrollment kept moving while its term was being locked",
                    details={"enrollment_id": enrollment_id, "attempts": self.RELOCK_ATTEMPTS}
                )
        except SiakadException as e:
            logger.info("Rejected update of enrollment %s: %s", enrollment_id, e.message)
            raise

        logger.info("Enrollment %s updated: %s", enrollment_id, sorted(changes))
        return updated

    def propose_delete(self, enrollment_id: str) -> None:
        """Delete a KRS record unless grades were already recorded for it."""
        stored = self.get_enrollment(enrollment_id)
        with critical_section(self._database, self._concurrency_manager,
                              [self._lock_key(stored.student_id, stored.semester)],
                              self._lock_timeout):
            enrollment = self.get_enrollment(enrollment_id)
            grade_count = self._grades.count_for_enrollment(enrollment)
            if grade_count > 0:
                logger.info("Refused to delete enrollment %s: %d grade(s) recorded",
                            enrollment_id, grade_count)
                raise ConflictError(
                    "grades exist for this enrollment",
                    details={"enrollment_id": enrollment_id, "grade_count": grade_count}
                )
            self._enrollments.delete(enrollment_id)

        logger.info("Enrollment %s deleted", enrollment_id)

    def get_enrollment(self, enrollment_id: str) -> Enrollment:
        enrollment = self._enrollments.find_by_id(enrollment_id)
        if enrollment is None:
            raise NotFoundError("enrollment", enrollment_id)
        return enrollment

    def list_enrollments(self, query_filter: Optional[EnrollmentFilter] = None) -> List[Enrollment]:
        return self._enrollments.find_all(query_filter)

    def credit_load(self, student_id: str, semester: str) -> int:
        """Credits a student currently carries in a term (rejected records excluded)."""
        return self._enrollments.sum_credits(student_id, semester)

    def get_statistics(self) -> Dict[str, Any]:
        """Get enrollment statistics."""
        return {
            "total_enrollments": self._enrollments.count(),
            "by_status": {
                status.value: self._enrollments.count(EnrollmentFilter(status=status))
                for status in EnrollmentStatus
            },
            "active_rules": [rule.get_rule_name() for rule in self._rules],
            "max_credits_per_term": self.max_credits,
        }
