"""
Core module containing the domain model, interfaces, and exceptions.
"""

from .entities import *
from .interfaces import *
from .exceptions import *
from .enums import *

__all__ = [
    # Entities
    "AbstractEntity",
    "Student",
    "Lecturer",
    "Course",
    "Room",
    "Enrollment",
    "Booking",
    "Grade",

    # Interfaces
    "Repository",
    "EnrollmentRule",
    "Constraint",

    # Enums
    "EnrollmentStatus",
    "BookingStatus",
    "StudentStatus",
    "DayOfWeek",
    "DEFAULT_MAX_CREDITS_PER_TERM",
    "parse_enum",

    # Exceptions
    "SiakadException",
    "ValidationError",
    "NotFoundError",
    "ConflictError",
    "CapacityExceededError",
    "StorageError",
    "ConcurrencyError",
    "ConfigurationError",
]
