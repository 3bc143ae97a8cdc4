from __future__ import annotations

import os
import re
from typing import Any

from dotenv import dotenv_values
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from wayfare.logging import get_logger

logger = get_logger(__name__)

_DURATION_PATTERN = re.compile(r"^(\d+)([smhd])$")
_UNIT_SECONDS = {"s": 1, "m": 60, "h": 3600, "d": 86400}
DEFAULT_DURATION_SECONDS = 3600


def parse_duration(value: str | int | None) -> int:
    """Convert ``15m`` / ``7d`` style durations to seconds.

    Bare integers are taken as seconds. Anything else falls back to one hour.
    """
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    if isinstance(value, str):
        match = _DURATION_PATTERN.match(value.strip())
        if match:
            amount, unit = match.groups()
            return int(amount) * _UNIT_SECONDS[unit]
    logger.warning("duration_unrecognized", value=str(value), fallback=DEFAULT_DURATION_SECONDS)
    return DEFAULT_DURATION_SECONDS


def env_field(default: Any, env: str, **kwargs):
    extra = kwargs.pop("json_schema_extra", {}) or {}
    extra = {**extra, "env": env}
    return Field(default, json_schema_extra=extra, **kwargs)


class Settings(BaseModel):
    """Runtime settings for the auth core and its HTTP boundary."""

    app_name: str = env_field(
        "travel-crm",
        "APP_NAME",
        description="Used as both JWT issuer and audience",
    )
    jwt_access_secret: str | None = env_field(None, "JWT_ACCESS_SECRET")
    jwt_refresh_secret: str | None = env_field(None, "JWT_REFRESH_SECRET")
    jwt_access_expiry: str = env_field("15m", "JWT_ACCESS_EXPIRY")
    jwt_refresh_expiry: str = env_field("7d", "JWT_REFRESH_EXPIRY")
    redis_url: str | None = env_field("redis://localhost:6379/0", "REDIS_URL")
    use_memory_store: bool = env_field(False, "USE_MEMORY_STORE")
    memory_store_path: str | None = env_field(
        None,
        "MEMORY_STORE_PATH",
        description="JSON file backing the in-process identity store; unset keeps it in memory",
    )
    allow_redis_fallback_dev: bool = env_field(False, "ALLOW_REDIS_FALLBACK_DEV")
    test_mode: bool = env_field(
        False,
        "TEST_MODE",
        description="Deterministic behaviour for CI and local test runs",
    )
    reset_email_best_effort: bool | None = env_field(
        None,
        "RESET_EMAIL_BEST_EFFORT",
        description=(
            "Swallow password-reset email delivery failures instead of raising; "
            "defaults to TEST_MODE"
        ),
    )
    password_min_length: int = env_field(8, "PASSWORD_MIN_LENGTH", ge=1)
    reset_token_ttl_minutes: int = env_field(60, "RESET_TOKEN_TTL_MINUTES", ge=1)
    smtp_host: str | None = env_field(None, "SMTP_HOST")
    smtp_port: int = env_field(587, "SMTP_PORT")
    smtp_user: str | None = env_field(None, "SMTP_USER")
    smtp_password: str | None = env_field(None, "SMTP_PASSWORD")
    smtp_use_tls: bool = env_field(True, "SMTP_USE_TLS")
    email_from_address: str | None = env_field(None, "EMAIL_FROM_ADDRESS")
    email_from_name: str = env_field("Travel CRM", "EMAIL_FROM_NAME")
    app_base_url: str = env_field("http://localhost:3000", "APP_BASE_URL")
    log_level: str = env_field("INFO", "LOG_LEVEL")
    log_json: bool = env_field(True, "LOG_JSON")
    log_dev_mode: bool = env_field(False, "LOG_DEV_MODE")

    model_config = ConfigDict(extra="ignore")

    @classmethod
    def from_env(cls) -> "Settings":
        env_file_values = dotenv_values(".env")
        merged: dict[str, str] = {}
        for name, field in cls.model_fields.items():
            extra = field.json_schema_extra or {}
            env_key = extra.get("env") if isinstance(extra, dict) else None
            env_name = env_key or name.upper()
            if env_name in os.environ:
                merged[name] = os.environ[env_name]
            elif env_name in env_file_values:
                merged[name] = env_file_values[env_name]
        return cls(**merged)

    @field_validator("jwt_access_expiry", "jwt_refresh_expiry")
    @classmethod
    def _strip_expiry(cls, value: str) -> str:
        return value.strip()

    @model_validator(mode="after")
    def _check_secrets(self) -> "Settings":
        if not self.jwt_access_secret or not self.jwt_refresh_secret:
            raise ValueError(
                "JWT_ACCESS_SECRET and JWT_REFRESH_SECRET must both be set"
            )
        if self.jwt_access_secret == self.jwt_refresh_secret:
            raise ValueError(
                "JWT_ACCESS_SECRET and JWT_REFRESH_SECRET must differ"
            )
        if self.reset_email_best_effort is None:
            self.reset_email_best_effort = self.test_mode
        return self

    @property
    def access_ttl_seconds(self) -> int:
        return parse_duration(self.jwt_access_expiry)

    @property
    def refresh_ttl_seconds(self) -> int:
        return parse_duration(self.jwt_refresh_expiry)


def get_settings() -> Settings:
    global _settings_cache
    if _settings_cache is None:
        _settings_cache = Settings.from_env()
    return _settings_cache


_settings_cache: Settings | None = None


def reset_settings_cache() -> None:
    """Clear cached settings so future calls re-read the environment."""

    global _settings_cache
    _settings_cache = None
