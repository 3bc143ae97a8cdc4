from __future__ import annotations

import logging
import os
import re
import uuid
from contextvars import ContextVar
from typing import Any, Dict, Optional

import structlog

# Per-request correlation id, set by the HTTP middleware in wayfare.app
correlation_id_var: ContextVar[Optional[str]] = ContextVar("correlation_id", default=None)

# Log keys whose values are masked wherever they appear
_SENSITIVE_KEY_PARTS = ("password", "secret", "token", "authorization", "email")

# Compact JWTs and bearer credentials, wherever they show up in a value
_JWT_PATTERN = re.compile(r"eyJ[\w-]+\.[\w-]+\.[\w-]+")
_BEARER_PATTERN = re.compile(r"(?i)\bbearer\s+\S+")
_URL_PASSWORD_PATTERN = re.compile(r"(\w+://[^:/@\s]*:)[^@\s]+@")


def get_correlation_id() -> Optional[str]:
    """Get the current correlation ID for request tracing."""
    return correlation_id_var.get()


def set_correlation_id(correlation_id: Optional[str] = None) -> str:
    """Set or generate a correlation ID and clear identity left by a previous request."""
    cid = correlation_id or str(uuid.uuid4())
    correlation_id_var.set(cid)
    structlog.contextvars.clear_contextvars()
    return cid


def bind_request_identity(user_id: Optional[str], tenant_id: Optional[str]) -> None:
    """Attach the authenticated caller to every later log line of this request."""
    structlog.contextvars.bind_contextvars(user_id=user_id, tenant_id=tenant_id)


def _mask(value: str) -> str:
    if len(value) <= 4:
        return value
    return value[:2] + "***" + value[-2:]


def sanitize_error_message(message: str, *, replacement: str = "[redacted]") -> str:
    """Strip credentials (JWTs, bearer values, URL passwords) from free text."""
    if not message:
        return message
    cleaned = _BEARER_PATTERN.sub(f"Bearer {replacement}", message)
    cleaned = _JWT_PATTERN.sub(replacement, cleaned)
    return _URL_PASSWORD_PATTERN.sub(rf"\1{replacement}@", cleaned)


def _add_correlation_id(
    logger: Any, method_name: str, event_dict: Dict[str, Any]
) -> Dict[str, Any]:
    cid = get_correlation_id()
    if cid:
        event_dict["correlation_id"] = cid
    return event_dict


def _redact_pii(
    logger: Any, method_name: str, event_dict: Dict[str, Any]
) -> Dict[str, Any]:
    """Mask sensitive keys, then scrub token-shaped text from the remaining strings."""
    for key, value in list(event_dict.items()):
        if key == "event" or not isinstance(value, str):
            continue
        if any(part in key.lower() for part in _SENSITIVE_KEY_PARTS):
            event_dict[key] = _mask(value)
        else:
            event_dict[key] = sanitize_error_message(value)
    return event_dict


def configure_logging(
    log_level: str = "INFO",
    json_output: bool = True,
    development_mode: bool = False,
) -> None:
    """Configure structlog processors.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
        json_output: If True, output JSON; if False, output human-readable
        development_mode: If True, use pretty console output
    """
    shared_processors = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        _add_correlation_id,
        _redact_pii,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]

    if development_mode or not json_output:
        renderer: list = [structlog.dev.ConsoleRenderer(colors=True)]
    else:
        renderer = [structlog.processors.format_exc_info, structlog.processors.JSONRenderer()]

    structlog.configure(
        processors=shared_processors + renderer,
        wrapper_class=structlog.make_filtering_bound_logger(
            getattr(logging, log_level.upper(), logging.INFO)
        ),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        # Module-level loggers must pick up the settings applied by the Runtime
        cache_logger_on_first_use=False,
    )


def _env_flag(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() in {"1", "true", "yes", "on"}


# Import-time defaults until the Runtime applies Settings
configure_logging(
    log_level=os.getenv("LOG_LEVEL", "INFO"),
    json_output=_env_flag("LOG_JSON", "true"),
    development_mode=_env_flag("LOG_DEV_MODE", "false"),
)


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)
