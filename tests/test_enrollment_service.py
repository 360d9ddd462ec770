import threading

import pytest

from siakad.core import (
    CapacityExceededError, ConcurrencyError, ConflictError, EnrollmentStatus, NotFoundError,
    ValidationError
)
from siakad.persistence import EnrollmentFilter
from siakad.services import EnrollmentPatch
from siakad.services import enrollment_service as enrollment_module

TERM = "2025/2026-Ganjil"
NEXT_TERM = "2025/2026-Genap"


def fill_to(seed, enrollment_service, credit_list, term=TERM):
    records = []
    for credits in credit_list:
        course = seed.course(credits)
        records.append(enrollment_service.propose_enroll(seed.student.id, course.id, term, 2025))
    return records


def test_enroll_two_courses_sums_credits(seed, enrollment_service):
    a, b = seed.course(2), seed.course(4)

    first = enrollment_service.propose_enroll(seed.student.id, a.id, TERM, 2025)
    second = enrollment_service.propose_enroll(seed.student.id, b.id, TERM, 2025)

    assert first.status == EnrollmentStatus.PENDING
    assert second.status == EnrollmentStatus.PENDING
    assert enrollment_service.credit_load(seed.student.id, TERM) == 6
    assert len(enrollment_service.list_enrollments(EnrollmentFilter(student_id=seed.student.id))) == 2


def test_duplicate_enrollment_is_rejected(seed, enrollment_service):
    course = seed.course(3)
    first = enrollment_service.propose_enroll(seed.student.id, course.id, TERM, 2025)

    with pytest.raises(ConflictError) as excinfo:
        enrollment_service.propose_enroll(seed.student.id, course.id, TERM, 2025)

    assert excinfo.value.details["existing_enrollment_id"] == first.id
    assert len(enrollment_service.list_enrollments()) == 1


def test_same_course_in_another_term_is_allowed(seed, enrollment_service):
    course = seed.course(3)
    enrollment_service.propose_enroll(seed.student.id, course.id, TERM, 2025)
    enrollment_service.propose_enroll(seed.student.id, course.id, NEXT_TERM, 2025)

    assert len(enrollment_service.list_enrollments()) == 2


def test_credit_ceiling_is_enforced(seed, enrollment_service):
    fill_to(seed, enrollment_service, [4, 4, 4, 4, 3, 3])
    extra = seed.course(3)

    with pytest.raises(CapacityExceededError) as excinfo:
        enrollment_service.propose_enroll(seed.student.id, extra.id, TERM, 2025)

    assert excinfo.value.attempted_total == 25
    assert excinfo.value.ceiling == 24
    assert excinfo.value.details["current_total"] == 22
    assert enrollment_service.credit_load(seed.student.id, TERM) == 22
    assert len(enrollment_service.list_enrollments(EnrollmentFilter(course_id=extra.id))) == 0


def test_reaching_the_ceiling_exactly_is_allowed(seed, enrollment_service):
    fill_to(seed, enrollment_service, [4, 4, 4, 4, 3, 3, 2])

    assert enrollment_service.credit_load(seed.student.id, TERM) == 24


def test_rejected_enrollments_do_not_count(seed, enrollment_service):
    records = fill_to(seed, enrollment_service, [4, 4, 4, 4, 4, 4])
    enrollment_service.propose_update(records[0].id, {"status": "REJECTED"})

    assert enrollment_service.credit_load(seed.student.id, TERM) == 20
    enrollment_service.propose_enroll(seed.student.id, seed.course(4).id, TERM, 2025)
    assert enrollment_service.credit_load(seed.student.id, TERM) == 24


def test_rejected_candidate_skips_the_credit_check(seed, enrollment_service):
    fill_to(seed, enrollment_service, [4, 4, 4, 4, 4, 4])

    record = enrollment_service.propose_enroll(seed.student.id, seed.course(4).id, TERM, 2025,
                                               status="REJECTED")

    assert record.status == EnrollmentStatus.REJECTED
    assert enrollment_service.credit_load(seed.student.id, TERM) == 24


def test_ceiling_is_per_term(seed, enrollment_service):
    fill_to(seed, enrollment_service, [4, 4, 4, 4, 4, 4])
    enrollment_service.propose_enroll(seed.student.id, seed.course(4).id, NEXT_TERM, 2026)

    assert enrollment_service.credit_load(seed.student.id, NEXT_TERM) == 4


def test_configured_ceiling(make_platform):
    platform = make_platform(max_credits_per_term=6)
    catalog = platform.catalog_service
    student = catalog.create_student("2025009", "Ani", "ani@kampus.ac.id", "SI")
    a = catalog.create_course("SI101", "Pengantar SI", 4)
    b = catalog.create_course("SI102", "Statistika", 3)
    platform.enrollment_service.propose_enroll(student.id, a.id, TERM, 2025)

    with pytest.raises(CapacityExceededError) as excinfo:
        platform.enrollment_service.propose_enroll(student.id, b.id, TERM, 2025)
    assert excinfo.value.ceiling == 6


@pytest.mark.parametrize("kwargs", [
    {"student_id": "", "course_id": "c", "semester": TERM, "year": 2025},
    {"student_id": "s", "course_id": None, "semester": TERM, "year": 2025},
    {"student_id": "s", "course_id": "c", "semester": "", "year": 2025},
    {"student_id": "s", "course_id": "c", "semester": TERM, "year": 0},
])
def test_missing_fields_are_validation_errors(enrollment_service, kwargs):
    with pytest.raises(ValidationError):
        enrollment_service.propose_enroll(**kwargs)


def test_unknown_status_is_a_validation_error(seed, enrollment_service):
    with pytest.raises(ValidationError):
        enrollment_service.propose_enroll(seed.student.id, seed.course().id, TERM, 2025,
                                          status="WAITLISTED")


def test_missing_references_are_not_found(seed, enrollment_service):
    course = seed.course()
    with pytest.raises(NotFoundError) as excinfo:
        enrollment_service.propose_enroll("no-such-student", course.id, TERM, 2025)
    assert excinfo.value.entity == "student"

    with pytest.raises(NotFoundError) as excinfo:
        enrollment_service.propose_enroll(seed.student.id, "no-such-course", TERM, 2025)
    assert excinfo.value.entity == "course"


def test_status_only_update_at_full_load_succeeds(seed, enrollment_service):
    records = fill_to(seed, enrollment_service, [4, 4, 4, 4, 4, 4])

    updated = enrollment_service.propose_update(records[2].id, EnrollmentPatch(
        status=EnrollmentStatus.APPROVED))

    assert updated.status == EnrollmentStatus.APPROVED
    assert updated.version == 2
    assert enrollment_service.get_enrollment(records[2].id).status == EnrollmentStatus.APPROVED


def test_reactivating_rejected_enrollment_rechecks_capacity(seed, enrollment_service):
    records = fill_to(seed, enrollment_service, [4, 4, 4, 4, 4, 4])
    enrollment_service.propose_update(records[0].id, {"status": "REJECTED"})
    enrollment_service.propose_enroll(seed.student.id, seed.course(4).id, TERM, 2025)

    with pytest.raises(CapacityExceededError):
        enrollment_service.propose_update(records[0].id, {"status": "PENDING"})

    assert enrollment_service.get_enrollment(records[0].id).status == EnrollmentStatus.REJECTED


def test_changing_course_excludes_own_credits(seed, enrollment_service):
    records = fill_to(seed, enrollment_service, [4, 4, 4, 4, 4, 4])

    same_weight = seed.course(4)
    updated = enrollment_service.propose_update(records[0].id, {"course_id": same_weight.id})
    assert updated.course_id == same_weight.id

    heavier = seed.course(5)
    with pytest.raises(CapacityExceededError) as excinfo:
        enrollment_service.propose_update(records[0].id, {"course_id": heavier.id})
    assert excinfo.value.attempted_total == 25


def test_update_into_existing_triple_conflicts(seed, enrollment_service):
    a, b = seed.course(), seed.course()
    enrollment_service.propose_enroll(seed.student.id, a.id, TERM, 2025)
    second = enrollment_service.propose_enroll(seed.student.id, b.id, TERM, 2025)

    with pytest.raises(ConflictError):
        enrollment_service.propose_update(second.id, {"course_id": a.id})


def test_update_with_unchanged_triple_does_not_conflict_with_itself(seed, enrollment_service):
    record = enrollment_service.propose_enroll(seed.student.id, seed.course().id, TERM, 2025)

    updated = enrollment_service.propose_update(record.id, {"course_id": record.course_id,
                                                            "year": 2026})
    assert updated.year == 2026


def test_update_errors(seed, enrollment_service):
    record = enrollment_service.propose_enroll(seed.student.id, seed.course().id, TERM, 2025)

    with pytest.raises(NotFoundError):
        enrollment_service.propose_update("missing", {"status": "APPROVED"})
    with pytest.raises(NotFoundError) as excinfo:
        enrollment_service.propose_update(record.id, {"course_id": "missing"})
    assert excinfo.value.entity == "course"
    with pytest.raises(NotFoundError) as excinfo:
        enrollment_service.propose_update(record.id, {"student_id": "missing"})
    assert excinfo.value.entity == "student"
    with pytest.raises(ValidationError):
        enrollment_service.propose_update(record.id, {"grade": "A"})


def test_delete_is_blocked_by_grades(seed, catalog, enrollment_service):
    course = seed.course()
    record = enrollment_service.propose_enroll(seed.student.id, course.id, TERM, 2025)
    catalog.record_grade(seed.student.id, course.id, TERM, 2025, "A", 91.5)

    with pytest.raises(ConflictError) as excinfo:
        enrollment_service.propose_delete(record.id)

    assert excinfo.value.details["grade_count"] == 1
    assert enrollment_service.get_enrollment(record.id).id == record.id


def test_delete_without_grades(seed, catalog, enrollment_service):
    course = seed.course()
    record = enrollment_service.propose_enroll(seed.student.id, course.id, TERM, 2025)
    catalog.record_grade(seed.student.id, course.id, NEXT_TERM, 2026, "B")

    enrollment_service.propose_delete(record.id)

    with pytest.raises(NotFoundError):
        enrollment_service.get_enrollment(record.id)
    with pytest.raises(NotFoundError):
        enrollment_service.propose_delete(record.id)


def test_rules_can_be_removed(seed, enrollment_service):
    enrollment_service.remove_rule("CreditLoadRule")
    fill_to(seed, enrollment_service, [4, 4, 4, 4, 4, 4, 4])

    assert enrollment_service.credit_load(seed.student.id, TERM) == 28


def test_concurrent_enrollments_respect_ceiling(seed, enrollment_service):
    courses = [seed.course(3) for _ in range(12)]
    accepted, rejected = [], []
    barrier = threading.Barrier(len(courses))

    def attempt(course):
        barrier.wait()
        try:
            accepted.append(enrollment_service.propose_enroll(seed.student.id, course.id, TERM, 2025))
        except CapacityExceededError as e:
            rejected.append(e)

    threads = [threading.Thread(target=attempt, args=(course,)) for course in courses]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert len(accepted) == 8
    assert len(rejected) == 4
    assert enrollment_service.credit_load(seed.student.id, TERM) == 24


def test_concurrent_duplicates_admit_one(seed, enrollment_service):
    course = seed.course(3)
    accepted, conflicts = [], []
    barrier = threading.Barrier(6)

    def attempt():
        barrier.wait()
        try:
            accepted.append(enrollment_service.propose_enroll(seed.student.id, course.id, TERM, 2025))
        except ConflictError as e:
            conflicts.append(e)

    threads = [threading.Thread(target=attempt) for _ in range(6)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert len(accepted) == 1
    assert len(conflicts) == 5


def interleave(monkeypatch, action):
    """Run ``action`` each time an update is about to take its locks (not re-entrantly)."""
    original = enrollment_module.critical_section
    running = []

    def wrapped(*args, **kwargs):
        if not running:
            running.append(True)
            try:
                action()
            finally:
                running.pop()
        return original(*args, **kwargs)

    monkeypatch.setattr(enrollment_module, "critical_section", wrapped)


def test_update_rechecks_the_term_a_concurrent_move_landed_in(seed, enrollment_service, monkeypatch):
    fill_to(seed, enrollment_service, [4, 4, 4, 4, 3, 3])
    light, heavy = seed.course(1), seed.course(3)
    record = enrollment_service.propose_enroll(seed.student.id, light.id, NEXT_TERM, 2025)
    moved = []

    def move_once():
        if not moved:
            moved.append(enrollment_service.propose_update(record.id, {"semester": TERM}))

    interleave(monkeypatch, move_once)

    with pytest.raises(CapacityExceededError) as excinfo:
        enrollment_service.propose_update(record.id, {"course_id": heavy.id})

    assert excinfo.value.details["attempted_total"] == 25
    assert enrollment_service.get_enrollment(record.id).course_id == light.id
    assert enrollment_service.credit_load(seed.student.id, TERM) == 23


def test_update_gives_up_when_the_record_keeps_moving(seed, enrollment_service, monkeypatch):
    record = enrollment_service.propose_enroll(seed.student.id, seed.course(3).id, NEXT_TERM, 2025)

    def bounce():
        current = enrollment_service.get_enrollment(record.id)
        target = TERM if current.semester == NEXT_TERM else NEXT_TERM
        enrollment_service.propose_update(record.id, {"semester": target})

    interleave(monkeypatch, bounce)

    with pytest.raises(ConcurrencyError):
        enrollment_service.propose_update(record.id, {"year": 2026})
    assert enrollment_service.get_enrollment(record.id).year == 2025


def test_concurrent_term_moves_respect_ceiling(seed, enrollment_service):
    fill_to(seed, enrollment_service, [3] * 6)
    parked = fill_to(seed, enrollment_service, [3] * 4, term=NEXT_TERM)
    moved, rejected = [], []
    barrier = threading.Barrier(len(parked))

    def attempt(record):
        barrier.wait()
        try:
            moved.append(enrollment_service.propose_update(record.id, {"semester": TERM}))
        except CapacityExceededError as e:
            rejected.append(e)

    threads = [threading.Thread(target=attempt, args=(record,)) for record in parked]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert len(moved) == 2
    assert len(rejected) == 2
    assert enrollment_service.credit_load(seed.student.id, TERM) == 24
