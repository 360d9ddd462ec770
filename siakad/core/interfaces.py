"""
Core interfaces and abstract base classes for the SIAKAD platform.
"""

from abc import ABC, abstractmethod
from typing import Generic, List, Optional, TypeVar


T = TypeVar('T')
F = TypeVar('F')


class Repository(ABC, Generic[T, F]):
    """Abstract base class for repositories."""

    @abstractmethod
    def save(self, entity: T) -> T:
        """Insert or update an entity."""
        pass

    @abstractmethod
    def find_by_id(self, entity_id: str) -> Optional[T]:
        """Find entity by ID."""
        pass

    @abstractmethod
    def find_all(self, query_filter: Optional[F] = None) -> List[T]:
        """Find all entities matching a typed filter."""
        pass

    @abstractmethod
    def count(self, query_filter: Optional[F] = None) -> int:
        """Count entities matching a typed filter."""
        pass

    @abstractmethod
    def delete(self, entity_id: str) -> bool:
        """Delete an entity by ID."""
        pass


class EnrollmentRule(ABC):
    """Admission rule evaluated before a KRS record is written."""

    @abstractmethod
    def check(self, candidate: 'Enrollment', course: 'Course',
              exclude_id: Optional[str] = None) -> None:
        """Raise a SiakadException if ``candidate`` may not be stored."""
        pass

    def applies_to(self, candidate: 'Enrollment', previous: Optional['Enrollment'] = None) -> bool:
        """Whether the rule must run; ``previous`` is the stored record on updates."""
        return previous is None or candidate.natural_key != previous.natural_key

    @abstractmethod
    def get_rule_name(self) -> str:
        """Get the name of this rule."""
        pass


class Constraint(ABC):
    """Hard scheduling constraint evaluated before a booking is written."""

    @abstractmethod
    def check(self, booking: 'Booking', exclude_id: Optional[str] = None) -> None:
        """Raise a SiakadException if ``booking`` violates the constraint."""
        pass

    def applies_to(self, booking: 'Booking', previous: Optional['Booking'] = None) -> bool:
        """Whether the constraint must run; ``previous`` is the stored record on updates."""
        return True

    @abstractmethod
    def get_constraint_name(self) -> str:
        """Get the name of this constraint."""
        pass
