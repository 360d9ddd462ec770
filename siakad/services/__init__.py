"""
Services module containing the admission engines and the catalog service.
"""

from .catalog_service import CatalogService
from .concurrency_manager import ConcurrencyManager, critical_section
from .enrollment_service import (
    CreditLoadRule, DuplicateEnrollmentRule, EnrollmentPatch, EnrollmentService
)
from .scheduler_service import (
    BookingPatch, RoomActiveConstraint, RoomOverlapConstraint, SchedulerService, TimeSlot
)

__all__ = [
    "CatalogService",
    "ConcurrencyManager",
    "critical_section",
    "EnrollmentService",
    "EnrollmentPatch",
    "DuplicateEnrollmentRule",
    "CreditLoadRule",
    "SchedulerService",
    "BookingPatch",
    "TimeSlot",
    "RoomActiveConstraint",
    "RoomOverlapConstraint",
]
