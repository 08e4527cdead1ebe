"""
Error taxonomy for backend failures

Errors are classified exactly once, by the HTTP client. Everything above it
passes them through unchanged.
"""

from enum import Enum
from typing import Any, Dict, Optional


class ErrorKind(str, Enum):
    VALIDATION = "validation"
    AUTH = "auth"
    FORBIDDEN = "forbidden"
    NOT_FOUND = "not_found"
    SERVER = "server"
    NETWORK = "network"
    REQUEST = "request"


class ApiError(Exception):
    """API exception with status code, message and kind"""

    kind = ErrorKind.REQUEST
    default_message = "Request failed"
    retryable = False

    def __init__(self, message: Optional[str] = None, status_code: int = 400,
                 details: Optional[Dict[str, Any]] = None):
        self.message = message or self.default_message
        self.status_code = status_code
        self.details = details or {}
        super().__init__(self.message)

    def __repr__(self):
        return f"{type(self).__name__}(kind={self.kind.value!r}, status={self.status_code}, message={self.message!r})"


class ValidationError(ApiError):
    """422 - field level validation failure"""

    kind = ErrorKind.VALIDATION
    default_message = "Validation failed"

    def __init__(self, message: Optional[str] = None, status_code: int = 422,
                 details: Optional[Dict[str, Any]] = None):
        super().__init__(message, status_code, details)

    @property
    def field_errors(self) -> Dict[str, Any]:
        errors = self.details.get('errors') or self.details.get('fields') or {}
        return errors if isinstance(errors, dict) else {}


class AuthError(ApiError):
    """401 - terminates the session"""

    kind = ErrorKind.AUTH
    default_message = "Session expired, please sign in again"

    def __init__(self, message: Optional[str] = None, status_code: int = 401,
                 details: Optional[Dict[str, Any]] = None):
        super().__init__(message, status_code, details)


class ForbiddenError(ApiError):
    kind = ErrorKind.FORBIDDEN
    default_message = "Access denied"

    def __init__(self, message: Optional[str] = None, status_code: int = 403,
                 details: Optional[Dict[str, Any]] = None):
        super().__init__(message, status_code, details)


class NotFoundError(ApiError):
    kind = ErrorKind.NOT_FOUND
    default_message = "Resource not found"

    def __init__(self, message: Optional[str] = None, status_code: int = 404,
                 details: Optional[Dict[str, Any]] = None):
        super().__init__(message, status_code, details)


class ServerError(ApiError):
    kind = ErrorKind.SERVER
    default_message = "Server error, please try again later"
    retryable = True

    def __init__(self, message: Optional[str] = None, status_code: int = 500,
                 details: Optional[Dict[str, Any]] = None):
        super().__init__(message, status_code, details)


class NetworkError(ApiError):
    """No response: connection failure or timeout"""

    kind = ErrorKind.NETWORK
    default_message = "Network error, please check your connection"
    retryable = True

    def __init__(self, message: Optional[str] = None, status_code: int = 0,
                 details: Optional[Dict[str, Any]] = None):
        super().__init__(message, status_code, details)


STATUS_ERRORS = {
    401: AuthError,
    403: ForbiddenError,
    404: NotFoundError,
    422: ValidationError,
}


def error_for_status(status: int, message: Optional[str] = None,
                     details: Optional[Dict[str, Any]] = None) -> ApiError:
    """Map an HTTP status to the matching ApiError subclass"""
    if status in STATUS_ERRORS:
        return STATUS_ERRORS[status](message, status, details)
    if status >= 500:
        return ServerError(message, status, details)
    return ApiError(message, status, details)
