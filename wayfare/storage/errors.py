from __future__ import annotations

from typing import Any, Dict, Optional


class ConstraintViolation(Exception):
    """Raised when an identity-store uniqueness constraint is violated."""

    def __init__(self, message: str, detail: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.detail = detail or {}


class SessionStoreUnavailable(Exception):
    """The session registry backend could not be reached.

    Refresh-token validity cannot be decided without the registry, so callers
    must fail the request rather than treat the token as live or revoked.
    """

    def __init__(self, operation: str, cause: Optional[BaseException] = None):
        super().__init__(f"session store unavailable during {operation}")
        self.operation = operation
        self.cause = cause


__all__ = ["ConstraintViolation", "SessionStoreUnavailable"]
