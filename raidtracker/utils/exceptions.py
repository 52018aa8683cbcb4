"""
Exceptions raised by the attendance and entitlement engine, with user-friendly messages.
"""

class AttendanceEngineError(Exception):
    """Base exception for attendance engine errors."""
    def __init__(self, message: str, user_message: str = None):
        super().__init__(message)
        self.user_message = user_message or message

class InvalidRequestError(AttendanceEngineError):
    """Raised when required identifiers or ticks are missing or malformed."""
    def __init__(self, reason: str):
        super().__init__(
            f"Invalid request: {reason}",
            f"❌ {reason}"
        )

class NotFoundError(AttendanceEngineError):
    """Raised when a record is missing or no longer in the expected state."""
    def __init__(self, entity: str, details: str = None):
        message = f"{entity} not found"
        if details:
            message = f"{message}: {details}"
        super().__init__(
            message,
            f"❌ {entity} not found or already handled."
        )

class UnauthorizedError(AttendanceEngineError):
    """Raised when the acting character lacks the required capability."""
    def __init__(self, action: str):
        super().__init__(
            f"Actor is not allowed to {action}",
            f"❌ You are not allowed to {action}."
        )

class RosterConflictError(AttendanceEngineError):
    """Raised when a roster change would break the main/box ownership graph."""
    def __init__(self, reason: str):
        super().__init__(
            f"Roster conflict: {reason}",
            f"❌ {reason}"
        )

class ExternalCollaboratorFailure(AttendanceEngineError):
    """Raised inside the recalculation client when the external call fails."""
    def __init__(self, url: str, details: str = None):
        super().__init__(
            f"Attendance recalculation call to {url} failed: {details}",
            "⚠️ Attendance percentages could not be refreshed, they will update on the next change."
        )
