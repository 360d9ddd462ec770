"""
Scheduler service for room bookings and conflict detection.
"""

import logging
import re
from dataclasses import dataclass, fields
from typing import Any, Dict, List, Optional, Set, Union

from ..core.entities import Booking
from ..core.enums import BookingStatus, DayOfWeek, parse_enum
from ..core.exceptions import (
    ConcurrencyError, ConflictError, NotFoundError, SiakadException, ValidationError
)
from ..core.interfaces import Constraint
from ..persistence.database import DatabaseManager
from ..persistence.queries import BookingFilter
from ..persistence.repositories import (
    BookingRepository, CourseRepository, LecturerRepository, RoomRepository
)
from .concurrency_manager import ConcurrencyManager, critical_section

logger = logging.getLogger(__name__)

_CLOCK = re.compile(r"^(\d{1,2}):(\d{2})$")


def parse_clock(value: Any, field_name: str = "time") -> int:
    """Parse ``H:MM`` or ``HH:MM`` (24-hour) into minutes after midnight."""
    match = _CLOCK.match(str(value).strip()) if value is not None else None
    if match is None:
        raise ValidationError("invalid time range", details={"field": field_name, "value": value})
    hours, minutes = int(match.group(1)), int(match.group(2))
    if hours > 23 or minutes > 59:
        raise ValidationError("invalid time range", details={"field": field_name, "value": value})
    return hours * 60 + minutes


def format_clock(minutes: int) -> str:
    return f"{minutes // 60:02d}:{minutes % 60:02d}"


@dataclass(frozen=True)
class TimeSlot:
    """Half-open interval [start, end) in minutes on one weekday."""
    day: DayOfWeek
    start: int
    end: int

    @classmethod
    def parse(cls, day: DayOfWeek, start_time: Any, end_time: Any) -> 'TimeSlot':
        start = parse_clock(start_time, "start_time")
        end = parse_clock(end_time, "end_time")
        if start >= end:
            raise ValidationError(
                "invalid time range",
                details={"start_time": start_time, "end_time": end_time}
            )
        return cls(day=day, start=start, end=end)

    @classmethod
    def of(cls, booking: Booking) -> 'TimeSlot':
        return cls.parse(booking.day, booking.start_time, booking.end_time)

    @property
    def start_time(self) -> str:
        return format_clock(self.start)

    @property
    def end_time(self) -> str:
        return format_clock(self.end)

    def overlaps_with(self, other: 'TimeSlot') -> bool:
        """Check if this time slot overlaps with another; touching slots do not."""
        return (self.day == other.day and
                self.start < other.end and
                other.start < self.end)

    def duration_minutes(self) -> int:
        return self.end - self.start


@dataclass
class BookingPatch:
    """Partial update of a booking; ``None`` leaves a field unchanged.

    An empty ``notes`` string clears the notes.
    """
    course_id: Optional[str] = None
    lecturer_id: Optional[str] = None
    room_id: Optional[str] = None
    day: Optional[DayOfWeek] = None
    start_time: Optional[str] = None
    end_time: Optional[str] = None
    semester: Optional[int] = None
    academic_year: Optional[str] = None
    status: Optional[BookingStatus] = None
    notes: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'BookingPatch':
        known = {item.name for item in fields(cls)}
        unknown = sorted(set(data) - known)
        if unknown:
            raise ValidationError(f"unknown fields: {', '.join(unknown)}",
                                  details={"fields": unknown})
        return cls(**data)

    def changes(self) -> Dict[str, Any]:
        changes = {item.name: getattr(self, item.name) for item in fields(self)
                   if getattr(self, item.name) is not None}
        if "day" in changes:
            changes["day"] = parse_enum(DayOfWeek, changes["day"], "day")
        if "status" in changes:
            changes["status"] = parse_enum(BookingStatus, changes["status"], "status")
        if changes.get("notes") == "":
            changes["notes"] = None
        return changes


class RoomActiveConstraint(Constraint):
    """Bookings can only be placed in active rooms."""

    def __init__(self, rooms: RoomRepository):
        self._rooms = rooms

    def applies_to(self, booking: Booking, previous: Optional[Booking] = None) -> bool:
        return previous is None or booking.room_id != previous.room_id

    def check(self, booking: Booking, exclude_id: Optional[str] = None) -> None:
        room = self._rooms.find_by_id(booking.room_id)
        if room is None:
            raise NotFoundError("room", booking.room_id)
        if not room.is_active:
            raise ConflictError("room is inactive",
                                details={"room_id": room.id, "room_code": room.code})

    def get_constraint_name(self) -> str:
        return "RoomActiveConstraint"


class RoomOverlapConstraint(Constraint):
    """No two active bookings of a room overlap on the same day."""

    def __init__(self, bookings: BookingRepository):
        self._bookings = bookings

    def applies_to(self, booking: Booking, previous: Optional[Booking] = None) -> bool:
        if not booking.is_active:
            return False
        if previous is None or not previous.is_active:
            return True
        return ((booking.room_id, booking.day, booking.start_time, booking.end_time) !=
                (previous.room_id, previous.day, previous.start_time, previous.end_time))

    def check(self, booking: Booking, exclude_id: Optional[str] = None) -> None:
        slot = TimeSlot.of(booking)
        for existing in self._bookings.find_active_in_room(booking.room_id, booking.day,
                                                          exclude_id=exclude_id):
            if slot.overlaps_with(TimeSlot.of(existing)):
                raise ConflictError(
                    "room already booked in this interval",
                    details={
                        "conflicting_booking_id": existing.id,
                        "room_id": booking.room_id,
                        "day": booking.day.value,
                        "start_time": existing.start_time,
                        "end_time": existing.end_time,
                    }
                )

    def get_constraint_name(self) -> str:
        return "RoomOverlapConstraint"


class SchedulerService:
    """Admission of room bookings with per-room, per-day conflict detection."""

    REQUIRED_FIELDS = ("course_id", "lecturer_id", "room_id", "day",
                       "start_time", "end_time", "semester", "academic_year")
    RELOCK_ATTEMPTS = 3

    def __init__(self, database: DatabaseManager, bookings: BookingRepository,
                 courses: CourseRepository, lecturers: LecturerRepository,
                 rooms: RoomRepository, concurrency_manager: ConcurrencyManager,
                 lock_timeout: Optional[float] = None):
        self._database = database
        self._bookings = bookings
        self._courses = courses
        self._lecturers = lecturers
        self._rooms = rooms
        self._concurrency_manager = concurrency_manager
        self._lock_timeout = lock_timeout
        self._constraints: List[Constraint] = [
            RoomActiveConstraint(rooms),
            RoomOverlapConstraint(bookings),
        ]

    def add_constraint(self, constraint: Constraint) -> None:
        """Append a hard constraint; constraints run in insertion order."""
        self._constraints.append(constraint)

    def remove_constraint(self, constraint_name: str) -> None:
        self._constraints = [c for c in self._constraints
                             if c.get_constraint_name() != constraint_name]

    @staticmethod
    def _lock_key(room_id: str, day: DayOfWeek) -> str:
        return f"booking:{room_id}:{day.value}"

    def _validate(self, values: Dict[str, Any]) -> Dict[str, Any]:
        """Check required fields and normalize day, status and times in place."""
        missing = [name for name in self.REQUIRED_FIELDS
                   if values.get(name) is None or values.get(name) == ""]
        if missing:
            raise ValidationError("required fields missing", details={"missing": missing})
        semester = values["semester"]
        if isinstance(semester, bool) or not isinstance(semester, int) or semester <= 0:
            raise ValidationError("semester must be a positive integer",
                                  details={"field": "semester", "value": semester})

        values["day"] = parse_enum(DayOfWeek, values["day"], "day")
        values["status"] = parse_enum(BookingStatus, values["status"], "status")
        slot = TimeSlot.parse(values["day"], values["start_time"], values["end_time"])
        values["start_time"] = slot.start_time
        values["end_time"] = slot.end_time
        return values

    def _require_references(self, booking: Booking, previous: Optional[Booking] = None) -> None:
        if previous is None or booking.course_id != previous.course_id:
            if self._courses.find_by_id(booking.course_id) is None:
                raise NotFoundError("course", booking.course_id)
        if previous is None or booking.lecturer_id != previous.lecturer_id:
            if self._lecturers.find_by_id(booking.lecturer_id) is None:
                raise NotFoundError("lecturer", booking.lecturer_id)
        if previous is None or booking.room_id != previous.room_id:
            if self._rooms.find_by_id(booking.room_id) is None:
                raise NotFoundError("room", booking.room_id)

    def _check_constraints(self, booking: Booking, previous: Optional[Booking] = None) -> None:
        exclude_id = previous.id if previous is not None else None
        for constraint in self._constraints:
            if constraint.applies_to(booking, previous):
                constraint.check(booking, exclude_id=exclude_id)

    def propose_booking(self, course_id: str, lecturer_id: str, room_id: str,
                        day: Union[DayOfWeek, str], start_time: str, end_time: str,
                        semester: int, academic_year: str,
                        status: Union[BookingStatus, str] = BookingStatus.ACTIVE,
                        notes: Optional[str] = None) -> Booking:
        """Admit a new booking or raise the first violated constraint."""
        values = self._validate({
            "course_id": course_id, "lecturer_id": lecturer_id, "room_id": room_id,
            "day": day, "start_time": start_time, "end_time": end_time,
            "semester": semester, "academic_year": academic_year,
            "status": status, "notes": notes,
        })
        booking = Booking(**values)

        try:
            with critical_section(self._database, self._concurrency_manager,
                                  [self._lock_key(booking.room_id, booking.day)],
                                  self._lock_timeout):
                self._require_references(booking)
                self._check_constraints(booking)
                self._bookings.save(booking)
        except SiakadException as e:
            logger.info("Rejected booking of room %s on %s %s-%s: %s", booking.room_id,
                        booking.day.value, booking.start_time, booking.end_time, e.message)
            raise

        logger.info("Booking %s created: room %s %s %s-%s", booking.id, booking.room_id,
                    booking.day.value, booking.start_time, booking.end_time)
        return booking

    def _update_keys(self, record: Booking, changes: Dict[str, Any]) -> Set[str]:
        """Lock keys for moving ``record`` to the room and day the changes point at."""
        return {self._lock_key(record.room_id, record.day),
                self._lock_key(changes.get("room_id", record.room_id),
                               changes.get("day", record.day))}

    def _apply_update(self, previous: Booking, changes: Dict[str, Any]) -> List[str]:
        values = {name: getattr(previous, name) for name in self.REQUIRED_FIELDS}
        values.update(status=previous.status, notes=previous.notes)
        values.update(changes)
        values = self._validate(values)
        changed = {name: value for name, value in values.items()
                   if value != getattr(previous, name)}

        candidate = Booking(entity_id=previous.id, **values)
        self._require_references(candidate, previous)
        self._check_constraints(candidate, previous)
        if changed:
            previous.update(**changed)
            self._bookings.save(previous)
        return sorted(changed)

    def propose_update(self, booking_id: str,
                       patch: Union[BookingPatch, Dict[str, Any]]) -> Booking:
        """Apply a partial update, re-checking only what the update can break.

        The booking is re-read under the lock. If a concurrent update moved it to
        a room or day whose key is not held, the locks are dropped and taken again.
        """
        if isinstance(patch, dict):
            patch = BookingPatch.from_dict(patch)
        changes = patch.changes()

        try:
            for _ in range(self.RELOCK_ATTEMPTS):
                stored = self.get_booking(booking_id)
                keys = self._update_keys(stored, changes)
                with critical_section(self._database, self._concurrency_manager,
                                      keys, self._lock_timeout):
                    previous = self.get_booking(booking_id)
                    if self._update_keys(previous, changes) <= keys:
                        changed = self._apply_update(previous, changes)
                        break
                logger.debug("Booking %s moved while locking, retrying", booking_id)
            else:
                raise ConcurrencyError(
                    "booking kept moving while its room was being locked",
                    details={"booking_id": booking_id, "attempts": self.RELOCK_ATTEMPTS}
                )
        except SiakadException as e:
            logger.info("Rejected update of booking %s: %s", booking_id, e.message)
            raise

        logger.info("Booking %s updated: %s", booking_id, changed)
        return previous

    def propose_delete(self, booking_id: str) -> None:
        """Delete a booking; deleting never breaks an invariant."""
        stored = self.get_booking(booking_id)
        with critical_section(self._database, self._concurrency_manager,
                              [self._lock_key(stored.room_id, stored.day)], self._lock_timeout):
            if not self._bookings.delete(booking_id):
                raise NotFoundError("booking", booking_id)
        logger.info("Booking %s deleted", booking_id)

    def cancel_booking(self, booking_id: str) -> Booking:
        """Mark a booking CANCELLED, freeing its slot."""
        stored = self.get_booking(booking_id)
        with critical_section(self._database, self._concurrency_manager,
                              [self._lock_key(stored.room_id, stored.day)], self._lock_timeout):
            booking = self.get_booking(booking_id)
            if booking.status != BookingStatus.CANCELLED:
                booking.update(status=BookingStatus.CANCELLED)
                self._bookings.save(booking)
        logger.info("Booking %s cancelled", booking_id)
        return booking

    def get_booking(self, booking_id: str) -> Booking:
        booking = self._bookings.find_by_id(booking_id)
        if booking is None:
            raise NotFoundError("booking", booking_id)
        return booking

    def list_bookings(self, query_filter: Optional[BookingFilter] = None) -> List[Booking]:
        """Bookings matching the filter, ordered by weekday then start time."""
        return self._bookings.find_all(query_filter)

    def room_timetable(self, room_id: str,
                       day: Optional[Union[DayOfWeek, str]] = None) -> List[Booking]:
        """Active bookings of one room, optionally restricted to a weekday."""
        if self._rooms.find_by_id(room_id) is None:
            raise NotFoundError("room", room_id)
        if day is not None:
            day = parse_enum(DayOfWeek, day, "day")
        return self._bookings.find_all(BookingFilter(room_id=room_id, day=day,
                                                     status=BookingStatus.ACTIVE))

    def get_statistics(self) -> Dict[str, Any]:
        """Get scheduling statistics."""
        return {
            "total_bookings": self._bookings.count(),
            "by_status": {
                status.value: self._bookings.count(BookingFilter(status=status))
                for status in BookingStatus
            },
            "active_constraints": [c.get_constraint_name() for c in self._constraints],
        }
