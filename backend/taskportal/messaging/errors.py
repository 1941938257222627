"""Error taxonomy for the messaging core.

Every error carries the HTTP status the REST facade answers with. The
WebSocket path turns the same errors into ``error`` frames instead.
"""
from fastapi import HTTPException


class MessagingError(Exception):
    """Base exception for messaging errors."""
    def __init__(self, message: str, status_code: int = 500):
        self.message = message
        self.status_code = status_code
        super().__init__(message)


class AuthenticationError(MessagingError):
    """Raised when the caller has no valid identity."""
    def __init__(self, message: str = "Unauthorized"):
        super().__init__(message, status_code=401)


class ValidationError(MessagingError):
    """Raised when a payload is malformed (missing ids, blank body...)."""
    def __init__(self, message: str):
        super().__init__(message, status_code=400)


class PersistenceError(MessagingError):
    """Raised when the message store is unreachable or a query fails."""
    def __init__(self, message: str):
        super().__init__(message, status_code=500)


def handle_messaging_error(error: MessagingError) -> HTTPException:
    """Convert a MessagingError to an HTTPException.

    Args:
        error: The MessagingError to convert.

    Returns:
        HTTPException with appropriate status code and detail.
    """
    return HTTPException(
        status_code=error.status_code,
        detail=error.message,
    )
