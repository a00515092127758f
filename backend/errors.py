"""
Domain error taxonomy.

Route handlers and services raise these instead of building HTTP responses;
`main.py` maps each one to a status code and a stable machine-readable kind.
"""

from fastapi import status


class TaskManagerError(Exception):
    """Base class for errors that are safe to show to the caller."""

    kind = "Error"
    status_code = status.HTTP_400_BAD_REQUEST

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class NotFound(TaskManagerError):
    """Referenced task, user or attachment does not exist."""

    kind = "NotFound"
    status_code = status.HTTP_404_NOT_FOUND


class Forbidden(TaskManagerError):
    """The principal is not allowed to perform the operation."""

    kind = "Forbidden"
    status_code = status.HTTP_403_FORBIDDEN


class ValidationError(TaskManagerError):
    """Malformed filter or body field, or an invalid assignment."""

    kind = "ValidationError"


class TooManyAttachments(TaskManagerError):
    kind = "TooManyAttachments"


class Conflict(TaskManagerError):
    """A unique field (e.g. email) is already taken."""

    kind = "Conflict"
