"""Custom application exceptions."""


class AppException(Exception):
    """Base application exception."""

    def __init__(self, message: str, status_code: int = 500):
        """Initialize exception with message and status code."""
        self.message = message
        self.status_code = status_code
        super().__init__(self.message)


class NotFoundException(AppException):
    """Resource not found exception."""

    def __init__(self, message: str = "Resource not found"):
        """Initialize with 404 status code."""
        super().__init__(message, status_code=404)


class ForbiddenException(AppException):
    """Forbidden access exception."""

    def __init__(self, message: str = "Forbidden"):
        """Initialize with 403 status code."""
        super().__init__(message, status_code=403)


class BadRequestException(AppException):
    """Bad request exception."""

    def __init__(self, message: str = "Bad request"):
        """Initialize with 400 status code."""
        super().__init__(message, status_code=400)


class ConflictException(AppException):
    """Conflict exception."""

    def __init__(self, message: str = "Conflict"):
        """Initialize with 409 status code."""
        super().__init__(message, status_code=409)


class ValidationException(AppException):
    """Validation error exception."""

    def __init__(self, message: str = "Validation error"):
        """Initialize with 422 status code."""
        super().__init__(message, status_code=422)


# Scheduling errors


class SlotConflict(ConflictException):
    """The requested slot is already taken; the caller should re-propose."""

    def __init__(self, message: str = "Slot is already booked"):
        """Initialize with 409 status code."""
        super().__init__(message)


class SlotUnavailable(ValidationException):
    """The requested time is not a slot the doctor offers."""

    def __init__(self, message: str = "Slot is not offered"):
        """Initialize with 422 status code."""
        super().__init__(message)


class InvalidTransition(ConflictException):
    """A lifecycle rule forbids the requested state change."""

    def __init__(self, message: str = "Invalid state transition"):
        """Initialize with 409 status code."""
        super().__init__(message)


class StaleState(ConflictException):
    """The stored state changed underneath the caller; refetch and retry."""

    def __init__(self, message: str = "Record was modified concurrently"):
        """Initialize with 409 status code."""
        super().__init__(message)


# Queue errors


class QueueEmpty(ConflictException):
    """No waiting entries to serve."""

    def __init__(self, message: str = "No patients waiting in queue"):
        """Initialize with 409 status code."""
        super().__init__(message)


class AlreadyQueued(ConflictException):
    """The appointment already holds a token for this date."""

    def __init__(self, message: str = "Appointment already has a queue token"):
        """Initialize with 409 status code."""
        super().__init__(message)


class QueuePaused(ConflictException):
    """The queue is paused and cannot be advanced."""

    def __init__(self, message: str = "Queue is paused"):
        """Initialize with 409 status code."""
        super().__init__(message)
