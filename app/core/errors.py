"""
Typed application errors.

Services raise these instead of HTTPException so the error kind travels as data.
The FastAPI handler registered in app.main maps the kind to a status code.
"""
import enum
from typing import Any, Dict, Optional


class ErrorKind(str, enum.Enum):
    """Stable error categories exposed to the request-handling layer."""
    NOT_FOUND = "not_found"
    CONFLICT = "conflict"
    VALIDATION = "validation"


class AppError(Exception):
    """Base class for errors raised by feature services."""
    kind: ErrorKind

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        return {"error": self.kind.value, "message": self.message, **self.details}


class NotFoundError(AppError):
    """A role, template, membership or resource does not exist in the organization."""
    kind = ErrorKind.NOT_FOUND


class ConflictError(AppError):
    """Duplicate names, in-use deletions and immutability violations."""
    kind = ErrorKind.CONFLICT


class InvalidDataError(AppError, ValueError):
    """
    Malformed input such as an unknown permission category or resource type.

    Also a ValueError so pydantic validators report it as a field error.
    """
    kind = ErrorKind.VALIDATION


ERROR_STATUS_CODES: Dict[ErrorKind, int] = {
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.CONFLICT: 409,
    ErrorKind.VALIDATION: 400,
}
