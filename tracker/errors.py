"""
Error kinds raised by the stores, the position manager and the HTTP client.

Each carries the HTTP status the server answers with, so the Flask error
handler and the client can map in both directions.
"""


class TrackerError(Exception):
    """Base class for every tracker error."""
    http_status = 500
    default_message = "Internal server error"

    def __init__(self, message: str = ""):
        super().__init__(message or self.default_message)
        self.message = message or self.default_message


class Unauthenticated(TrackerError):
    """Raised when the request carries no valid caller identity."""
    http_status = 401
    default_message = "Unauthorized"


class Forbidden(TrackerError):
    """Raised when the caller does not own the resource being changed."""
    http_status = 403
    default_message = "Forbidden"


class NotFoundError(TrackerError):
    """Raised when a referenced container or item does not exist."""
    http_status = 404
    default_message = "Not found"


class ValidationError(TrackerError):
    """Raised when required fields are missing or malformed."""
    http_status = 400
    default_message = "Invalid request"


class StorageFailure(TrackerError):
    """Raised when an atomic write fails. Nothing in the write was applied."""
    http_status = 500
    default_message = "Storage failure"


_BY_STATUS = {
    401: Unauthenticated,
    403: Forbidden,
    404: NotFoundError,
    400: ValidationError,
}


def error_for_status(status: int, message: str = "") -> TrackerError:
    """Build the error matching an HTTP status code (used by the client)."""
    cls = _BY_STATUS.get(status)
    if cls is None:
        return StorageFailure(message) if status >= 500 else TrackerError(message)
    return cls(message)
