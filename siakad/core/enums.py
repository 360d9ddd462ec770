"""
Enumerations and constants for the SIAKAD platform.
"""

from enum import Enum

from .exceptions import ValidationError


DEFAULT_MAX_CREDITS_PER_TERM = 24


class EnrollmentStatus(Enum):
    """Status of a KRS (course registration) record."""
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"


class BookingStatus(Enum):
    """Status of a room booking."""
    ACTIVE = "ACTIVE"
    INACTIVE = "INACTIVE"
    CANCELLED = "CANCELLED"


class StudentStatus(Enum):
    """Academic status of a student."""
    ACTIVE = "ACTIVE"
    INACTIVE = "INACTIVE"
    GRADUATED = "GRADUATED"
    DROPOUT = "DROPOUT"


class DayOfWeek(Enum):
    """Days a room can be booked on."""
    MONDAY = "MONDAY"
    TUESDAY = "TUESDAY"
    WEDNESDAY = "WEDNESDAY"
    THURSDAY = "THURSDAY"
    FRIDAY = "FRIDAY"
    SATURDAY = "SATURDAY"
    SUNDAY = "SUNDAY"

    @property
    def index(self) -> int:
        """0 for Monday through 6 for Sunday."""
        return list(DayOfWeek).index(self)


def parse_enum(enum_cls, value, field_name: str):
    """Coerce a raw value into ``enum_cls``; raises ValidationError on unknown values."""
    if isinstance(value, enum_cls):
        return value
    try:
        return enum_cls(str(value).upper())
    except ValueError:
        allowed = ", ".join(member.value for member in enum_cls)
        raise ValidationError(
            f"invalid {field_name}: {value!r}",
            details={"field": field_name, "allowed": allowed}
        )
