import asyncio
import inspect
import os
import sys
from pathlib import Path
from unittest.mock import AsyncMock

# Configure the environment before any wayfare import reads settings
os.environ.setdefault("TEST_MODE", "true")
os.environ.setdefault("USE_MEMORY_STORE", "true")
os.environ.setdefault("JWT_ACCESS_SECRET", "test-access-secret-for-testing-only")
os.environ.setdefault("JWT_REFRESH_SECRET", "test-refresh-secret-for-testing-only")
os.environ.setdefault("LOG_LEVEL", "WARNING")
# Tests never share an identity store file
os.environ.pop("MEMORY_STORE_PATH", None)

import pytest  # noqa: E402
import structlog  # noqa: E402
from argon2 import PasswordHasher, Type  # noqa: E402

ROOT = Path(__file__).resolve().parent.parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from wayfare.config import Settings  # noqa: E402
from wayfare.logging import correlation_id_var  # noqa: E402
from wayfare.service.auth import AuthService  # noqa: E402
from wayfare.service.authenticator import Authenticator  # noqa: E402
from wayfare.service.runtime import reset_runtime_for_tests  # noqa: E402
from wayfare.service.tokens import TokenCodec  # noqa: E402
from wayfare.storage.memory import MemorySessionRegistry, MemoryStore  # noqa: E402

ACCESS_SECRET = "unit-access-secret-0123456789"
REFRESH_SECRET = "unit-refresh-secret-9876543210"


@pytest.fixture(autouse=True)
def reset_runtime_state():
    reset_runtime_for_tests()
    yield
    reset_runtime_for_tests()
    correlation_id_var.set(None)
    structlog.contextvars.clear_contextvars()


@pytest.fixture
def settings():
    return Settings(
        jwt_access_secret=ACCESS_SECRET,
        jwt_refresh_secret=REFRESH_SECRET,
        test_mode=True,
    )


@pytest.fixture
def store():
    return MemoryStore()


@pytest.fixture
def sessions():
    return MemorySessionRegistry()


@pytest.fixture
def tokens(settings):
    return TokenCodec.from_settings(settings)


@pytest.fixture
def notifier():
    sender = AsyncMock()
    sender.send_verification_email = AsyncMock(return_value=None)
    sender.send_password_reset_email = AsyncMock(return_value=None)
    return sender


@pytest.fixture
def fast_hasher():
    """Cheap argon2id parameters so credential tests stay quick."""
    return PasswordHasher(time_cost=1, memory_cost=1024, parallelism=1, type=Type.ID)


@pytest.fixture
def auth_service(store, sessions, tokens, notifier, settings, fast_hasher):
    return AuthService(
        store, sessions, tokens, notifier, settings, password_hasher=fast_hasher
    )


@pytest.fixture
def authenticator(store, tokens):
    return Authenticator(store, tokens)


@pytest.fixture
def tenant(store):
    return store.create_tenant("Acme Travels", slug="acme")


def pytest_pyfunc_call(pyfuncitem):
    if inspect.iscoroutinefunction(pyfuncitem.obj):
        call_kwargs = {
            name: pyfuncitem.funcargs[name]
            for name in pyfuncitem._fixtureinfo.argnames
            if name in pyfuncitem.funcargs
        }
        asyncio.run(pyfuncitem.obj(**call_kwargs))
        return True
    return None


def pytest_configure(config):
    config.addinivalue_line("markers", "asyncio: mark test as async")
