"""Domain errors for check-in and roster operations.

Every error a caller can see derives from RosterError and carries an
ErrorCode, a user-safe message, optional details, the HTTP status the
transport maps it to, and whether a blind retry is safe.
"""

from enum import Enum
from typing import Any, Optional


class ErrorCode(Enum):
    """Domain error codes."""

    NOT_FOUND = "NOT_FOUND"
    INVARIANT_VIOLATION = "INVARIANT_VIOLATION"
    NOT_CHECKED_IN = "NOT_CHECKED_IN"
    UNDO_WINDOW_EXPIRED = "UNDO_WINDOW_EXPIRED"
    VALIDATION_ERROR = "VALIDATION_ERROR"
    BULK_REJECTED = "BULK_REJECTED"
    STORAGE_UNAVAILABLE = "STORAGE_UNAVAILABLE"


class RosterError(Exception):
    """Base domain error with code and user-safe message."""

    status_code = 400
    retryable = False

    def __init__(self, code: ErrorCode, message: str, details: Optional[Any] = None) -> None:
        self.code = code
        self.message = message
        self.details = details
        super().__init__(message)

    def __str__(self) -> str:
        return f"{self.code.value}: {self.message}"


class NotFoundError(RosterError):
    """Raised when a referenced guest does not exist."""

    status_code = 404

    def __init__(self, guest_id: str) -> None:
        super().__init__(
            code=ErrorCode.NOT_FOUND,
            message=f"Guest '{guest_id}' not found",
            details={"guestId": guest_id},
        )
        self.guest_id = guest_id


class InvariantViolationError(RosterError):
    """Raised when a mutation would break a guest record invariant."""

    status_code = 409

    def __init__(
        self,
        message: str,
        details: Optional[Any] = None,
        code: ErrorCode = ErrorCode.INVARIANT_VIOLATION,
    ) -> None:
        super().__init__(code=code, message=message, details=details)


class UndoWindowExpiredError(InvariantViolationError):
    """Raised when an undo arrives after the allowed window."""

    def __init__(self, seconds_elapsed: int, window_seconds: int) -> None:
        super().__init__(
            message=(
                f"Cannot undo check-in after {window_seconds} seconds. "
                f"{seconds_elapsed} seconds have elapsed."
            ),
            details={"secondsElapsed": seconds_elapsed, "maxAllowedSeconds": window_seconds},
            code=ErrorCode.UNDO_WINDOW_EXPIRED,
        )


class InvalidInputError(RosterError):
    """Raised for malformed input, before storage is touched."""

    status_code = 422

    def __init__(self, message: str, field: Optional[str] = None, details: Optional[Any] = None) -> None:
        if details is None and field is not None:
            details = {"field": field}
        super().__init__(code=ErrorCode.VALIDATION_ERROR, message=message, details=details)


class BulkCheckInRejectedError(RosterError):
    """Raised when any entry of a bulk check-in fails; nothing was applied."""

    status_code = 409

    def __init__(self, failures: list[dict]) -> None:
        super().__init__(
            code=ErrorCode.BULK_REJECTED,
            message=f"{len(failures)} guest(s) could not be checked in. Nothing was applied.",
            details={"failed": failures},
        )
        self.failures = failures


class StorageUnavailableError(RosterError):
    """Transient backend failure; nothing was applied and the call may be retried."""

    status_code = 503
    retryable = True

    def __init__(self, message: str = "Storage is temporarily unavailable. Please retry.") -> None:
        super().__init__(code=ErrorCode.STORAGE_UNAVAILABLE, message=message)


class VersionConflictError(Exception):
    """A conditional update lost the race against a concurrent writer.

    Internal to the storage/service seam: the check-in service re-reads and
    re-validates, so callers never see it.
    """

    def __init__(self, guest_id: str) -> None:
        super().__init__(f"Guest '{guest_id}' was modified concurrently")
        self.guest_id = guest_id
