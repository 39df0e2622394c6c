"""Custom exception hierarchy.

Each error carries the HTTP status it is rendered with, so the exception
handlers in ``portal.main`` stay a single mapping.
"""

from typing import Optional


class AppError(Exception):
    """Base exception for application errors."""

    status_code: int = 500
    title: str = "Internal Server Error"

    def __init__(self, message: str, original_error: Optional[Exception] = None):
        super().__init__(message)
        self.message = message
        self.original_error = original_error


class UnauthorizedError(AppError):
    """Raised when no valid actor identity was presented."""

    status_code = 401
    title = "Unauthorized"


class ForbiddenError(AppError):
    """Raised when the actor lacks a role required for the operation."""

    status_code = 403
    title = "Forbidden"


class NotFoundError(AppError):
    """Raised when a transaction, policy or allocation request does not exist."""

    status_code = 404
    title = "Not Found"


class ConflictError(AppError):
    """Raised when a state precondition on a stored record is violated."""

    status_code = 409
    title = "Conflict"


class ValidationError(AppError):
    """Raised when input validation fails."""

    status_code = 400
    title = "Validation Error"


class StorageError(AppError):
    """Raised when evidence storage rejects or fails an operation."""

    status_code = 502
    title = "Storage Error"


class DatabaseError(AppError):
    """Raised when a database operation fails."""

    title = "Database Error"
