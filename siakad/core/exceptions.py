"""
Custom exceptions for the SIAKAD platform.
"""

from typing import Optional, Any, Dict


class SiakadException(Exception):
    """Base exception for all SIAKAD-related errors."""

    def __init__(self, message: str, error_code: Optional[str] = None, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.error_code = error_code
        self.details = details or {}


class ValidationError(SiakadException):
    """Raised when caller-supplied input is incomplete or malformed."""

    def __init__(self, message: str, error_code: Optional[str] = "validation_error",
                 details: Optional[Dict[str, Any]] = None):
        super().__init__(message, error_code, details)


class NotFoundError(SiakadException):
    """Raised when a referenced entity does not exist."""

    def __init__(self, entity: str, entity_id: Optional[str] = None,
                 message: Optional[str] = None):
        super().__init__(
            message or f"{entity} not found",
            error_code="not_found",
            details={"entity": entity, "id": entity_id}
        )
        self.entity = entity
        self.entity_id = entity_id


class ConflictError(SiakadException):
    """Raised when a request violates a uniqueness or business invariant."""

    def __init__(self, message: str, error_code: Optional[str] = "conflict",
                 details: Optional[Dict[str, Any]] = None):
        super().__init__(message, error_code, details)


class CapacityExceededError(SiakadException):
    """Raised when a quantitative ceiling would be exceeded."""

    def __init__(self, message: str, attempted_total: int, ceiling: int,
                 details: Optional[Dict[str, Any]] = None):
        merged = {"attempted_total": attempted_total, "ceiling": ceiling}
        merged.update(details or {})
        super().__init__(message, "capacity_exceeded", merged)
        self.attempted_total = attempted_total
        self.ceiling = ceiling


class StorageError(SiakadException):
    """Raised when the persistence layer fails."""

    def __init__(self, message: str, error_code: Optional[str] = "storage_error",
                 details: Optional[Dict[str, Any]] = None):
        super().__init__(message, error_code, details)


class ConcurrencyError(SiakadException):
    """Raised when a resource lock cannot be acquired in time."""

    def __init__(self, message: str, error_code: Optional[str] = "concurrency_error",
                 details: Optional[Dict[str, Any]] = None):
        super().__init__(message, error_code, details)


class ConfigurationError(SiakadException):
    """Raised when configuration is invalid."""
    pass
