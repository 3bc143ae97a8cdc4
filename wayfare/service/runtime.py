from __future__ import annotations

import asyncio
import threading
from typing import Optional, Union
from urllib.parse import urlparse, urlunparse

from redis.exceptions import RedisError

from wayfare.config import Settings, get_settings, reset_settings_cache
from wayfare.logging import configure_logging, get_logger
from wayfare.service.auth import AuthService, AuthStore
from wayfare.service.authenticator import Authenticator
from wayfare.service.email import EmailService, NotificationSender
from wayfare.service.tokens import TokenCodec
from wayfare.storage.memory import MemorySessionRegistry, MemoryStore
from wayfare.storage.redis_cache import RedisSessionRegistry

logger = get_logger(__name__)

SessionBackend = Union[RedisSessionRegistry, MemorySessionRegistry]


def _mask_url_password(url: Optional[str]) -> Optional[str]:
    """Mask the password in a URL for safe logging.

    redis://:secret@localhost:6379 -> redis://:***@localhost:6379
    """
    if not url:
        return url
    try:
        parsed = urlparse(url)
        if not parsed.password:
            return url
        netloc = parsed.hostname or ""
        if parsed.port:
            netloc = f"{netloc}:{parsed.port}"
        netloc = f"{parsed.username or ''}:***@{netloc}"
        return urlunparse(
            (parsed.scheme, netloc, parsed.path, parsed.params, parsed.query, parsed.fragment)
        )
    except ValueError:
        return "***url_parse_error***"


def build_session_registry(settings: Settings) -> SessionBackend:
    """Connect the Redis registry, or fall back to memory where permitted."""
    if settings.use_memory_store:
        return MemorySessionRegistry()

    redis_error: Exception | None = None
    if settings.redis_url:
        registry = RedisSessionRegistry(settings.redis_url)
        try:
            registry.verify_connection()
            logger.info("session_registry_connected", redis_url=_mask_url_password(settings.redis_url))
            return registry
        except (RedisError, OSError) as exc:
            redis_error = exc

    if not settings.test_mode and not settings.allow_redis_fallback_dev:
        raise RuntimeError(
            "Redis is required for refresh-token sessions; start Redis or set "
            "TEST_MODE=true/ALLOW_REDIS_FALLBACK_DEV=true for local fallback."
        ) from redis_error

    fallback_mode = "TEST_MODE" if settings.test_mode else "ALLOW_REDIS_FALLBACK_DEV"
    logger.warning(
        "redis_disabled_fallback",
        redis_url=_mask_url_password(settings.redis_url),
        error=str(redis_error) if redis_error else "redis_url_missing",
        mode=fallback_mode,
        message=(
            f"Running without Redis under {fallback_mode}; sessions live in process "
            "memory and are lost on restart."
        ),
    )
    return MemorySessionRegistry()


class Runtime:
    """Holds singleton service instances for the FastAPI app."""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        *,
        store: Optional[AuthStore] = None,
        sessions: Optional[SessionBackend] = None,
        notifier: Optional[NotificationSender] = None,
    ) -> None:
        self.settings = settings or get_settings()
        configure_logging(
            log_level=self.settings.log_level,
            json_output=self.settings.log_json,
            development_mode=self.settings.log_dev_mode,
        )
        logger.info(
            "runtime_init_started",
            use_memory_store=self.settings.use_memory_store,
            test_mode=self.settings.test_mode,
        )
        # Hosts pass their document-backed identity store; otherwise MEMORY_STORE_PATH persists
        self.store = store if store is not None else MemoryStore(self.settings.memory_store_path)
        self.sessions = sessions if sessions is not None else build_session_registry(self.settings)
        self.email = notifier if notifier is not None else EmailService.from_settings(self.settings)
        self.tokens = TokenCodec.from_settings(self.settings)
        self.auth = AuthService(
            self.store, self.sessions, self.tokens, self.email, self.settings
        )
        self.authenticator = Authenticator(self.store, self.tokens)
        logger.info(
            "runtime_init_completed",
            store_type=type(self.store).__name__,
            session_registry=type(self.sessions).__name__,
        )

    async def close(self) -> None:
        await self.sessions.close()


runtime: Runtime | None = None
_runtime_lock = threading.Lock()
# Closes scheduled on a running loop; referenced until done so failures surface
_pending_closes: set[asyncio.Task] = set()


def _on_close_done(task: asyncio.Task) -> None:
    _pending_closes.discard(task)
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        logger.error("runtime_close_failed", error=str(exc), error_type=type(exc).__name__)


def get_runtime() -> Runtime:
    """Get or create the Runtime singleton with double-checked locking."""
    global runtime
    if runtime is not None:
        return runtime
    with _runtime_lock:
        if runtime is None:
            runtime = Runtime()
        return runtime


def reset_runtime_for_tests() -> Runtime:
    """Reinitialize the runtime singleton for isolated test runs."""
    global runtime

    with _runtime_lock:
        if runtime is not None and isinstance(runtime.sessions, RedisSessionRegistry):
            try:
                loop = asyncio.get_running_loop()
                task = loop.create_task(runtime.close())
                _pending_closes.add(task)
                task.add_done_callback(_on_close_done)
            except RuntimeError:
                asyncio.run(runtime.close())

        reset_settings_cache()
        settings = get_settings()
        if not settings.test_mode:
            raise RuntimeError("runtime reset is only allowed in TEST_MODE")
        runtime = Runtime(settings)
        return runtime
