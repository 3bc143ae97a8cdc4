from __future__ import annotations

from enum import Enum
from typing import Optional


class ErrorKind(str, Enum):
    """Closed set of failure kinds raised by the auth core.

    The mapping to transport status codes lives in ``wayfare.api.error_handling``.
    """

    VALIDATION = "validation_error"
    UNAUTHORIZED = "unauthorized"
    FORBIDDEN = "forbidden"
    NOT_FOUND = "not_found"
    CONFLICT = "conflict"
    SERVER = "server_error"


class ServiceError(Exception):
    """Base class for service-layer exceptions.

    ``kind`` is fixed per subclass. ``code`` is the stable machine-readable
    code callers branch on (``TOKEN_REVOKED``, ``INVALID_CREDENTIALS``, ...).
    """

    kind: ErrorKind = ErrorKind.VALIDATION
    default_code: str = "VALIDATION_ERROR"

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        *,
        detail: Optional[dict] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code or self.default_code
        self.detail = detail or {}

    def __repr__(self) -> str:
        return f"{type(self).__name__}(code={self.code!r}, message={self.message!r})"


class ValidationError(ServiceError):
    """Malformed or missing input."""
    kind = ErrorKind.VALIDATION
    default_code = "VALIDATION_ERROR"


class AuthenticationError(ServiceError):
    """Missing, invalid, expired or revoked credential."""
    kind = ErrorKind.UNAUTHORIZED
    default_code = "UNAUTHORIZED"


class TokenExpiredError(AuthenticationError):
    default_code = "TOKEN_EXPIRED"


class TokenInvalidError(AuthenticationError):
    default_code = "INVALID_TOKEN"


class ForbiddenError(ServiceError):
    """Authenticated but not privileged enough."""
    kind = ErrorKind.FORBIDDEN
    default_code = "FORBIDDEN"


class NotFoundError(ServiceError):
    kind = ErrorKind.NOT_FOUND
    default_code = "NOT_FOUND"


class ConflictError(ServiceError):
    kind = ErrorKind.CONFLICT
    default_code = "CONFLICT"


class ServerError(ServiceError):
    kind = ErrorKind.SERVER
    default_code = "SERVER_ERROR"


__all__ = [
    "ErrorKind",
    "ServiceError",
    "ValidationError",
    "AuthenticationError",
    "TokenExpiredError",
    "TokenInvalidError",
    "ForbiddenError",
    "NotFoundError",
    "ConflictError",
    "ServerError",
]
