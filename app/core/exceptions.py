"""Custom application exceptions."""

from typing import Any


class AppException(Exception):
    """Base application exception."""

    def __init__(
        self,
        message: str,
        status_code: int = 500,
        details: dict[str, Any] | None = None,
    ):
        """Initialize exception with message, status code and optional details."""
        self.message = message
        self.status_code = status_code
        self.details = details
        super().__init__(self.message)


class NotFoundException(AppException):
    """Resource not found exception."""

    def __init__(self, message: str = "Resource not found"):
        """Initialize with 404 status code."""
        super().__init__(message, status_code=404)


class UnauthorizedException(AppException):
    """Unauthorized access exception."""

    def __init__(self, message: str = "Unauthorized"):
        """Initialize with 401 status code."""
        super().__init__(message, status_code=401)


class BadRequestException(AppException):
    """Bad request exception."""

    def __init__(self, message: str = "Bad request"):
        """Initialize with 400 status code."""
        super().__init__(message, status_code=400)


class ConflictException(AppException):
    """Conflict exception."""

    def __init__(self, message: str = "Conflict", details: dict[str, Any] | None = None):
        """Initialize with 409 status code."""
        super().__init__(message, status_code=409, details=details)


class ValidationException(AppException):
    """Validation error exception."""

    def __init__(self, message: str = "Validation error", details: dict[str, Any] | None = None):
        """Initialize with 422 status code."""
        super().__init__(message, status_code=422, details=details)


class InvalidTransitionException(ValidationException):
    """Requested status is not reachable from the current status."""

    def __init__(
        self,
        current_status: str,
        requested_status: str,
        reason: str,
        allowed: list[str] | None = None,
    ):
        """Initialize with both states and the reachable targets in the details."""
        self.current_status = current_status
        self.requested_status = requested_status
        self.allowed = allowed or []
        super().__init__(
            reason,
            details={
                "current_status": current_status,
                "requested_status": requested_status,
                "allowed": self.allowed,
            },
        )


class StatusChangeNotAllowedException(ValidationException):
    """Status was sent through the general update path."""

    def __init__(
        self,
        message: str = "Status changes must go through the status transition endpoint",
    ):
        """Initialize with 422 status code."""
        super().__init__(message)


class ScheduleRuleViolationException(ValidationException):
    """Instant is not bookable under the clinic schedule."""


class CheckInWindowException(ValidationException):
    """Check-in attempted outside its window."""


class ActionWindowException(ValidationException):
    """Status change attempted outside the time the clinic allows for it."""


class SchedulingConflictException(ConflictException):
    """Doctor already has an active appointment at that instant."""

    def __init__(
        self,
        message: str = "The doctor already has an active appointment at that time",
        details: dict[str, Any] | None = None,
    ):
        """Initialize with 409 status code."""
        super().__init__(message, details=details)


class ConcurrentModificationException(ConflictException):
    """Appointment changed between validation and commit."""

    def __init__(
        self,
        message: str = "Appointment was modified by another request, refresh and retry",
    ):
        """Initialize with 409 status code."""
        super().__init__(message)


class PersistenceException(AppException):
    """Primary write failed; nothing was committed."""

    def __init__(self, message: str = "Failed to persist appointment"):
        """Initialize with 500 status code."""
        super().__init__(message, status_code=500)
