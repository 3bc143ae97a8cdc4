from __future__ import annotations

from typing import Any, Optional
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, field_validator

from wayfare.logging import get_correlation_id
from wayfare.service.errors import ErrorKind

_VALID_ERROR_KINDS = {kind.value for kind in ErrorKind}

# Credentials are bounded here; shape and strength checks stay in AuthService so
# every rejection carries the same codes regardless of the transport
MAX_PASSWORD_LENGTH = 128
MAX_EMAIL_LENGTH = 254


def _request_id() -> str:
    return get_correlation_id() or str(uuid4())


class ErrorBody(BaseModel):
    """Error envelope body: transport-neutral kind plus the stable machine code."""

    kind: str
    code: str
    message: str
    details: Optional[Any] = None

    @field_validator("kind")
    @classmethod
    def _validate_kind(cls, value: str) -> str:
        if value not in _VALID_ERROR_KINDS:
            raise ValueError(f"unknown error kind {value!r}")
        return value


class Envelope(BaseModel):
    status: str = Field(..., pattern="^(ok|error)$")
    data: Optional[Any] = None
    error: Optional[ErrorBody] = None
    request_id: str = Field(default_factory=_request_id)


class _Request(BaseModel):
    model_config = ConfigDict(extra="ignore")


class RegisterRequest(_Request):
    email: Optional[str] = Field(default=None, max_length=MAX_EMAIL_LENGTH)
    password: Optional[str] = Field(default=None, max_length=MAX_PASSWORD_LENGTH)
    first_name: Optional[str] = Field(default=None, max_length=100)
    last_name: Optional[str] = Field(default=None, max_length=100)
    role: Optional[str] = Field(default=None, max_length=32)
    tenant_id: Optional[str] = Field(default=None, max_length=128)


class LoginRequest(_Request):
    email: Optional[str] = Field(default=None, max_length=MAX_EMAIL_LENGTH)
    password: Optional[str] = Field(default=None, max_length=MAX_PASSWORD_LENGTH)
    tenant_id: Optional[str] = Field(default=None, max_length=128)


class VerifyEmailRequest(_Request):
    token: Optional[str] = Field(default=None, max_length=256)


class ForgotPasswordRequest(_Request):
    email: Optional[str] = Field(default=None, max_length=MAX_EMAIL_LENGTH)
    tenant_id: Optional[str] = Field(default=None, max_length=128)


class ResetPasswordRequest(_Request):
    token: Optional[str] = Field(default=None, max_length=256)
    new_password: Optional[str] = Field(default=None, max_length=MAX_PASSWORD_LENGTH)


class RefreshRequest(_Request):
    refresh_token: Optional[str] = Field(default=None, max_length=4096)


class LogoutRequest(_Request):
    refresh_token: Optional[str] = Field(default=None, max_length=4096)


class ChangePasswordRequest(_Request):
    current_password: Optional[str] = Field(default=None, max_length=MAX_PASSWORD_LENGTH)
    new_password: Optional[str] = Field(default=None, max_length=MAX_PASSWORD_LENGTH)
