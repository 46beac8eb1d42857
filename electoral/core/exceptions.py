"""Domain errors raised by services and mapped to HTTP responses in main.py."""

from typing import Any

from fastapi import status


class ElectoralError(Exception):
    """Base class for errors with a stable client-facing message."""

    status_code: int = status.HTTP_400_BAD_REQUEST

    def __init__(self, message: str, errors: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        self.errors = errors


class NotFound(ElectoralError):
    """A territorial node, record or correction target does not exist."""

    status_code = status.HTTP_404_NOT_FOUND


class Forbidden(ElectoralError):
    status_code = status.HTTP_403_FORBIDDEN


class InvalidPayload(ElectoralError):
    """Missing or malformed fields, or a failed consistency bound."""

    status_code = status.HTTP_422_UNPROCESSABLE_ENTITY


class InvalidCorrection(ElectoralError):
    """Initial and corrected value sets do not have the expected shape."""

    status_code = status.HTTP_422_UNPROCESSABLE_ENTITY


class Conflict(ElectoralError):
    status_code = status.HTTP_409_CONFLICT


class StorageError(ElectoralError):
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
