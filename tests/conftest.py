import itertools
from types import SimpleNamespace

import pytest

from siakad.main import SiakadPlatform

TERM = "2025/2026-Ganjil"
YEAR = 2025


@pytest.fixture
def make_platform(tmp_path):
    counter = itertools.count()

    def factory(**overrides):
        config = {"database_path": str(tmp_path / f"siakad-{next(counter)}.db"),
                  "lock_timeout": 5.0}
        config.update(overrides)
        return SiakadPlatform(config)

    return factory


@pytest.fixture
def platform(make_platform):
    return make_platform()


@pytest.fixture
def catalog(platform):
    return platform.catalog_service


@pytest.fixture
def enrollment_service(platform):
    return platform.enrollment_service


@pytest.fixture
def scheduler(platform):
    return platform.scheduler_service


@pytest.fixture
def seed(catalog):
    """A lecturer, a student, an active room R101 and an inactive LAB1, plus a course factory."""
    codes = itertools.count(1)

    lecturer = catalog.create_lecturer("0012345678", "Dr. Siti Rahma", "siti@kampus.ac.id",
                                       "Informatika")
    student = catalog.create_student("2025001", "Budi Santoso", "budi@kampus.ac.id",
                                     "Teknik Informatika")
    room = catalog.create_room("R101", "Ruang 101", 40)
    lab = catalog.create_room("LAB1", "Lab Komputer 1", 30, room_type="LAB", is_active=False)

    def course(credits=3, code=None):
        code = code or f"IF{next(codes):03d}"
        return catalog.create_course(code, f"Mata Kuliah {code}", credits,
                                     lecturer_id=lecturer.id)

    return SimpleNamespace(lecturer=lecturer, student=student, room=room, lab=lab, course=course)
