import threading

import pytest

from siakad.core import (
    BookingStatus, ConcurrencyError, ConflictError, DayOfWeek, NotFoundError, ValidationError
)
from siakad.persistence import BookingFilter
from siakad.services import scheduler_service as scheduler_module

YEAR = "2025/2026"


@pytest.fixture
def book(seed, scheduler):
    course = seed.course()

    def factory(start, end, day="MONDAY", room=None, **kwargs):
        return scheduler.propose_booking(course.id, seed.lecturer.id, (room or seed.room).id,
                                         day, start, end, 1, YEAR, **kwargs)

    return factory


def test_overlapping_booking_is_rejected(book):
    first = book("08:00", "10:00")

    with pytest.raises(ConflictError) as excinfo:
        book("09:00", "11:00")

    assert excinfo.value.message == "room already booked in this interval"
    assert excinfo.value.details["conflicting_booking_id"] == first.id


def test_adjacent_booking_is_accepted(book, scheduler):
    book("08:00", "10:00")
    second = book("10:00", "12:00")

    assert second.status == BookingStatus.ACTIVE
    assert [b.start_time for b in scheduler.list_bookings()] == ["08:00", "10:00"]


def test_enclosing_booking_is_rejected(book):
    book("09:00", "10:00")
    with pytest.raises(ConflictError):
        book("08:00", "12:00")


def test_other_day_and_other_room_do_not_conflict(book, catalog):
    other_room = catalog.create_room("R102", "Ruang 102", 40)
    book("08:00", "10:00")
    book("08:00", "10:00", day="TUESDAY")
    book("08:00", "10:00", room=other_room)


def test_inactive_room_is_rejected(seed, scheduler):
    with pytest.raises(ConflictError) as excinfo:
        scheduler.propose_booking(seed.course().id, seed.lecturer.id, seed.lab.id,
                                  "MONDAY", "08:00", "10:00", 1, YEAR)
    assert excinfo.value.message == "room is inactive"
    assert scheduler.list_bookings() == []


@pytest.mark.parametrize("start,end", [
    ("10:00", "09:00"),
    ("09:00", "09:00"),
    ("25:00", "26:00"),
    ("08:60", "09:00"),
    ("eight", "09:00"),
    ("08:00", "24:00"),
])
def test_invalid_time_ranges(book, start, end):
    with pytest.raises(ValidationError) as excinfo:
        book(start, end)
    assert excinfo.value.message == "invalid time range"


def test_times_are_normalized(book):
    booking = book("8:00", "9:30")

    assert booking.start_time == "08:00"
    assert booking.end_time == "09:30"


def test_lexically_tricky_times_compare_numerically(book):
    book("9:00", "10:00")
    with pytest.raises(ConflictError):
        book("09:30", "11:00")


def test_unknown_day_and_missing_fields(seed, scheduler):
    course = seed.course()
    with pytest.raises(ValidationError):
        scheduler.propose_booking(course.id, seed.lecturer.id, seed.room.id,
                                  "FUNDAY", "08:00", "10:00", 1, YEAR)
    with pytest.raises(ValidationError) as excinfo:
        scheduler.propose_booking(course.id, seed.lecturer.id, "", "MONDAY",
                                  "08:00", "10:00", 1, "")
    assert excinfo.value.details["missing"] == ["room_id", "academic_year"]


def test_missing_references_are_not_found(seed, scheduler):
    course = seed.course()
    cases = [
        (("missing", seed.lecturer.id, seed.room.id), "course"),
        ((course.id, "missing", seed.room.id), "lecturer"),
        ((course.id, seed.lecturer.id, "missing"), "room"),
    ]
    for ids, entity in cases:
        with pytest.raises(NotFoundError) as excinfo:
            scheduler.propose_booking(*ids, "MONDAY", "08:00", "10:00", 1, YEAR)
        assert excinfo.value.entity == entity


def test_inactive_booking_does_not_block_slot(book):
    book("08:00", "10:00", status="INACTIVE")
    active = book("08:00", "10:00")

    assert active.is_active


def test_cancelled_booking_frees_slot(book, scheduler):
    first = book("08:00", "10:00")
    cancelled = scheduler.cancel_booking(first.id)

    assert cancelled.status == BookingStatus.CANCELLED
    book("09:00", "11:00")


def test_update_into_overlap_is_rejected(book, scheduler):
    book("08:00", "10:00")
    second = book("10:00", "12:00")

    with pytest.raises(ConflictError):
        scheduler.propose_update(second.id, {"start_time": "09:30"})
    assert scheduler.get_booking(second.id).start_time == "10:00"


def test_update_extending_own_slot_is_accepted(book, scheduler):
    booking = book("08:00", "10:00")

    updated = scheduler.propose_update(booking.id, {"end_time": "11:00"})

    assert updated.end_time == "11:00"
    assert updated.version == 2


def test_reactivating_into_overlap_is_rejected(book, scheduler):
    parked = book("08:00", "10:00", status="INACTIVE")
    book("09:00", "11:00")

    with pytest.raises(ConflictError):
        scheduler.propose_update(parked.id, {"status": "ACTIVE"})


def test_moving_to_inactive_room_is_rejected(book, seed, scheduler):
    booking = book("08:00", "10:00")

    with pytest.raises(ConflictError) as excinfo:
        scheduler.propose_update(booking.id, {"room_id": seed.lab.id})
    assert excinfo.value.message == "room is inactive"


def test_notes_update_after_room_deactivation(book, seed, catalog, scheduler):
    booking = book("08:00", "10:00")
    catalog.update_room(seed.room.id, {"is_active": False})

    updated = scheduler.propose_update(booking.id, {"notes": "bring projector"})

    assert updated.notes == "bring projector"


def test_update_and_delete_missing_booking(scheduler):
    with pytest.raises(NotFoundError):
        scheduler.propose_update("missing", {"notes": "x"})
    with pytest.raises(NotFoundError):
        scheduler.propose_delete("missing")


def test_delete_booking(book, scheduler):
    booking = book("08:00", "10:00")
    scheduler.propose_delete(booking.id)

    assert scheduler.list_bookings() == []
    book("08:00", "10:00")


def test_listing_orders_by_weekday_then_time(book, scheduler):
    book("13:00", "14:00", day="WEDNESDAY")
    book("10:00", "11:00", day="MONDAY")
    book("08:00", "09:00", day="WEDNESDAY")
    book("07:00", "08:00", day="TUESDAY")

    listed = [(b.day, b.start_time) for b in scheduler.list_bookings()]

    assert listed == [
        (DayOfWeek.MONDAY, "10:00"),
        (DayOfWeek.TUESDAY, "07:00"),
        (DayOfWeek.WEDNESDAY, "08:00"),
        (DayOfWeek.WEDNESDAY, "13:00"),
    ]


def test_room_timetable(book, seed, scheduler):
    book("08:00", "10:00")
    book("08:00", "10:00", day="FRIDAY")
    cancelled = book("10:00", "12:00")
    scheduler.cancel_booking(cancelled.id)

    assert len(scheduler.room_timetable(seed.room.id)) == 2
    assert len(scheduler.room_timetable(seed.room.id, "friday")) == 1
    with pytest.raises(NotFoundError):
        scheduler.room_timetable("missing")


def test_filter_by_status(book, scheduler):
    book("08:00", "10:00")
    book("10:00", "12:00", status="INACTIVE")

    inactive = scheduler.list_bookings(BookingFilter(status=BookingStatus.INACTIVE))
    assert [b.start_time for b in inactive] == ["10:00"]


def test_empty_notes_clear_them(book, scheduler):
    booking = book("08:00", "10:00", notes="bring projector")

    updated = scheduler.propose_update(booking.id, {"notes": ""})

    assert updated.notes is None
    assert scheduler.get_booking(booking.id).notes is None


def interleave(monkeypatch, action):
    """Run ``action`` each time an update is about to take its locks (not re-entrantly)."""
    original = scheduler_module.critical_section
    running = []

    def wrapped(*args, **kwargs):
        if not running:
            running.append(True)
            try:
                action()
            finally:
                running.pop()
        return original(*args, **kwargs)

    monkeypatch.setattr(scheduler_module, "critical_section", wrapped)


def test_update_rechecks_the_room_a_concurrent_move_landed_in(book, catalog, scheduler, monkeypatch):
    other = catalog.create_room("R202", "Ruang 202", 40)
    book("08:00", "10:00", room=other)
    booking = book("13:00", "14:00")
    moved = []

    def move_once():
        if not moved:
            moved.append(scheduler.propose_update(booking.id, {"room_id": other.id}))

    interleave(monkeypatch, move_once)

    with pytest.raises(ConflictError) as excinfo:
        scheduler.propose_update(booking.id, {"start_time": "09:00"})

    assert excinfo.value.message == "room already booked in this interval"
    slots = [(b.start_time, b.end_time) for b in scheduler.room_timetable(other.id, "MONDAY")]
    assert slots == [("08:00", "10:00"), ("13:00", "14:00")]


def test_update_gives_up_when_the_booking_keeps_moving(book, scheduler, monkeypatch):
    booking = book("08:00", "10:00")

    def bounce():
        current = scheduler.get_booking(booking.id)
        target = "TUESDAY" if current.day == DayOfWeek.MONDAY else "MONDAY"
        scheduler.propose_update(booking.id, {"day": target})

    interleave(monkeypatch, bounce)

    with pytest.raises(ConcurrencyError):
        scheduler.propose_update(booking.id, {"end_time": "11:00"})
    assert scheduler.get_booking(booking.id).end_time == "10:00"


def test_concurrent_moves_into_one_slot_admit_one(book, catalog, scheduler):
    rooms = [catalog.create_room(f"R30{i}", f"Ruang 30{i}", 30) for i in range(4)]
    bookings = [book("08:00", "10:00", room=room) for room in rooms]
    moved, conflicts = [], []
    barrier = threading.Barrier(len(bookings))

    def attempt(booking):
        barrier.wait()
        try:
            moved.append(scheduler.propose_update(booking.id, {"room_id": rooms[0].id,
                                                               "day": "FRIDAY"}))
        except ConflictError as e:
            conflicts.append(e)

    threads = [threading.Thread(target=attempt, args=(booking,)) for booking in bookings]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert len(moved) == 1
    assert len(conflicts) == 3
    assert len(scheduler.room_timetable(rooms[0].id, "FRIDAY")) == 1
