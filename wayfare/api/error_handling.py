from __future__ import annotations

from http import HTTPStatus

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException

from wayfare.api.schemas import Envelope, ErrorBody
from wayfare.logging import get_logger
from wayfare.service.errors import ErrorKind, ServiceError
from wayfare.storage.errors import ConstraintViolation, SessionStoreUnavailable

logger = get_logger(__name__)

# The only place error kinds meet HTTP
_KIND_TO_STATUS = {
    ErrorKind.VALIDATION: 400,
    ErrorKind.UNAUTHORIZED: 401,
    ErrorKind.FORBIDDEN: 403,
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.CONFLICT: 409,
    ErrorKind.SERVER: 500,
}

_STATUS_TO_KIND = {status: kind for kind, status in _KIND_TO_STATUS.items()}


def status_for_kind(kind: ErrorKind) -> int:
    return _KIND_TO_STATUS.get(kind, 500)


def _kind_for_status(status_code: int) -> ErrorKind:
    if status_code in _STATUS_TO_KIND:
        return _STATUS_TO_KIND[status_code]
    return ErrorKind.SERVER if status_code >= 500 else ErrorKind.VALIDATION


def _code_for_status(status_code: int) -> str:
    """Stable code for framework errors: the kind's code when mapped, else the status name."""
    if status_code in _STATUS_TO_KIND:
        return _STATUS_TO_KIND[status_code].value.upper()
    try:
        return HTTPStatus(status_code).name
    except ValueError:
        return f"HTTP_{status_code}"


def _error_response(
    status_code: int,
    kind: ErrorKind,
    code: str,
    message: str,
    details: dict | list | None = None,
) -> JSONResponse:
    body = ErrorBody(kind=kind.value, code=code, message=message, details=details or None)
    envelope = Envelope(status="error", error=body)
    return JSONResponse(status_code=status_code, content=envelope.model_dump(mode="json"))


def register_exception_handlers(app: FastAPI) -> None:
    """Install envelope-producing handlers for domain, storage and framework errors."""

    @app.exception_handler(ServiceError)
    async def handle_service_error(request: Request, exc: ServiceError):
        status_code = status_for_kind(exc.kind)
        log_fn = logger.error if status_code >= 500 else logger.warning
        log_fn(
            "service_error",
            path=request.url.path,
            method=request.method,
            status_code=status_code,
            error_code=exc.code,
            message=exc.message,
        )
        return _error_response(status_code, exc.kind, exc.code, exc.message, exc.detail)

    @app.exception_handler(ConstraintViolation)
    async def handle_constraint_violation(request: Request, exc: ConstraintViolation):
        logger.warning(
            "constraint_violation",
            path=request.url.path,
            method=request.method,
            message=exc.message,
            detail=exc.detail,
        )
        return _error_response(409, ErrorKind.CONFLICT, "CONFLICT", exc.message, exc.detail)

    @app.exception_handler(SessionStoreUnavailable)
    async def handle_session_store_unavailable(
        request: Request, exc: SessionStoreUnavailable
    ):
        logger.error(
            "session_store_unavailable",
            path=request.url.path,
            method=request.method,
            operation=exc.operation,
        )
        return _error_response(
            503,
            ErrorKind.SERVER,
            "SESSION_STORE_UNAVAILABLE",
            "Session store temporarily unavailable",
        )

    @app.exception_handler(RequestValidationError)
    async def handle_request_validation(request: Request, exc: RequestValidationError):
        errors = [
            {"loc": list(err.get("loc", ())), "msg": err.get("msg"), "type": err.get("type")}
            for err in exc.errors()
        ]
        logger.warning(
            "request_validation_error",
            path=request.url.path,
            method=request.method,
            errors=errors,
        )
        return _error_response(
            400, ErrorKind.VALIDATION, "VALIDATION_ERROR", "Invalid request body", errors
        )

    @app.exception_handler(HTTPException)
    async def handle_http_exception(request: Request, exc: HTTPException):
        kind = _kind_for_status(exc.status_code)
        message = exc.detail if isinstance(exc.detail, str) else "http error"
        details = exc.detail if isinstance(exc.detail, dict) else None
        if exc.status_code >= 500:
            logger.error(
                "http_error",
                path=request.url.path,
                method=request.method,
                status_code=exc.status_code,
                message=message,
            )
        return _error_response(
            exc.status_code, kind, _code_for_status(exc.status_code), message, details
        )

    @app.exception_handler(Exception)
    async def handle_uncaught(request: Request, exc: Exception):
        logger.exception(
            "unhandled_exception",
            exc_info=exc,
            path=request.url.path,
            method=request.method,
            error_type=type(exc).__name__,
            error=str(exc),
        )
        return _error_response(
            500, ErrorKind.SERVER, "SERVER_ERROR", "internal server error"
        )
