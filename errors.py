"""
Error taxonomy for the Gallery Share API.

Operations raise these; the API layer turns them into HTTP responses using
``status_code`` and ``message``.
"""
from typing import Optional


class PlatformError(Exception):
    status_code = 500
    default_message = "Request failed"

    def __init__(self, message: Optional[str] = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class ValidationError(PlatformError):
    status_code = 400
    default_message = "Invalid input"


class AuthError(PlatformError):
    status_code = 401
    default_message = "Invalid credentials"


class NotFoundError(PlatformError):
    status_code = 404
    default_message = "Not found"


class ConflictError(PlatformError):
    status_code = 400
    default_message = "Already exists"


class InvalidStateError(PlatformError):
    status_code = 409
    default_message = "Invalid state"


class StorageError(PlatformError):
    status_code = 500
    default_message = "Storage unavailable"
