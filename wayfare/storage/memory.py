from __future__ import annotations

import json
import threading
import time
import uuid
from dataclasses import asdict
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple

from wayfare.storage.errors import ConstraintViolation
from wayfare.storage.models import (
    SessionEntry,
    SessionRecord,
    Tenant,
    TenantStatus,
    User,
    UserStatus,
    utcnow,
)
from wayfare.storage.redis_cache import session_key, session_prefix


_USER_DATETIME_FIELDS = (
    "reset_token_expiry",
    "last_login_at",
    "last_password_change",
    "created_at",
    "updated_at",
)


def _dump_datetime(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def _load_datetime(raw: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(raw) if raw else None


class MemoryStore:
    """In-process identity store for tests, local development and bootstrapping.

    When ``state_path`` is given, tenants and users are loaded from that JSON
    file on start and written back after every change, so accounts created by
    one process (``scripts/bootstrap_admin.py``) are seen by the next.
    """

    def __init__(self, state_path: str | Path | None = None) -> None:
        self.users: Dict[str, User] = {}
        self.tenants: Dict[str, Tenant] = {}
        # RLock so helpers can nest inside public methods
        self._data_lock = threading.RLock()
        self.state_path = Path(state_path) if state_path else None
        if self.state_path is not None and not self._load_state():
            self._persist_state()

    # persistence
    @staticmethod
    def _serialize_tenant(tenant: Tenant) -> Dict[str, Any]:
        data = asdict(tenant)
        data["created_at"] = _dump_datetime(tenant.created_at)
        return data

    @staticmethod
    def _deserialize_tenant(data: Dict[str, Any]) -> Tenant:
        return Tenant(**{**data, "created_at": _load_datetime(data.get("created_at"))})

    @staticmethod
    def _serialize_user(user: User) -> Dict[str, Any]:
        data = asdict(user)
        for name in _USER_DATETIME_FIELDS:
            data[name] = _dump_datetime(getattr(user, name))
        return data

    @staticmethod
    def _deserialize_user(data: Dict[str, Any]) -> User:
        dates = {name: _load_datetime(data.get(name)) for name in _USER_DATETIME_FIELDS}
        return User(**{**data, **dates})

    def _persist_state(self) -> None:
        if self.state_path is None:
            return
        with self._data_lock:
            state = {
                "tenants": [self._serialize_tenant(t) for t in self.tenants.values()],
                "users": [self._serialize_user(u) for u in self.users.values()],
            }
            tmp_path = self.state_path.with_suffix(self.state_path.suffix + ".tmp")
            try:
                self.state_path.parent.mkdir(parents=True, exist_ok=True)
                tmp_path.write_text(json.dumps(state, indent=2))
                tmp_path.replace(self.state_path)
            except OSError as exc:
                raise RuntimeError(f"failed to persist identity store state: {exc}") from exc

    def _load_state(self) -> bool:
        try:
            data = json.loads(self.state_path.read_text())
        except FileNotFoundError:
            return False
        with self._data_lock:
            self.tenants = {
                t["id"]: self._deserialize_tenant(t) for t in data.get("tenants", [])
            }
            self.users = {u["id"]: self._deserialize_user(u) for u in data.get("users", [])}
        return True

    # tenants
    def create_tenant(
        self,
        name: str,
        *,
        slug: Optional[str] = None,
        status: str = TenantStatus.ACTIVE.value,
        tenant_id: Optional[str] = None,
    ) -> Tenant:
        with self._data_lock:
            tenant_id = tenant_id or str(uuid.uuid4())
            if tenant_id in self.tenants:
                raise ConstraintViolation("tenant already exists", {"tenant_id": tenant_id})
            tenant = Tenant(id=tenant_id, name=name, slug=slug, status=status)
            self.tenants[tenant_id] = tenant
            self._persist_state()
            return tenant

    def find_tenant_by_id(self, tenant_id: str) -> Optional[Tenant]:
        with self._data_lock:
            return self.tenants.get(tenant_id)

    # users
    def _find_by_email(self, email: str, tenant_id: Optional[str]) -> Optional[User]:
        return next(
            (
                u
                for u in self.users.values()
                if u.email == email and u.tenant_id == tenant_id
            ),
            None,
        )

    def create_user(
        self,
        email: str,
        password_hash: str,
        *,
        first_name: str,
        last_name: str,
        tenant_id: Optional[str] = None,
        role: str = "customer",
        status: str = UserStatus.ACTIVE.value,
        email_verified: bool = False,
        verification_token: Optional[str] = None,
    ) -> User:
        with self._data_lock:
            if self._find_by_email(email, tenant_id) is not None:
                raise ConstraintViolation(
                    "email already exists", {"field": "email", "tenant_id": tenant_id}
                )
            user = User.new(
                email=email,
                first_name=first_name,
                last_name=last_name,
                password_hash=password_hash,
                tenant_id=tenant_id,
                role=role,
                status=status,
                email_verified=email_verified,
                verification_token=verification_token,
            )
            self.users[user.id] = user
            self._persist_state()
            return user

    def save_user(self, user: User) -> User:
        with self._data_lock:
            if user.id not in self.users:
                raise ConstraintViolation("user does not exist", {"user_id": user.id})
            clash = self._find_by_email(user.email, user.tenant_id)
            if clash is not None and clash.id != user.id:
                raise ConstraintViolation(
                    "email already exists", {"field": "email", "tenant_id": user.tenant_id}
                )
            user.updated_at = utcnow()
            self.users[user.id] = user
            self._persist_state()
            return user

    def find_user_by_id(self, user_id: str) -> Optional[User]:
        with self._data_lock:
            return self.users.get(user_id)

    def find_user_by_email_and_tenant(
        self, email: str, tenant_id: Optional[str]
    ) -> Optional[User]:
        """Exact ``(email, tenant)`` match; ``tenant_id=None`` only sees tenant-less accounts."""
        with self._data_lock:
            return self._find_by_email(email, tenant_id)

    def find_user_by_verification_token(self, token: str) -> Optional[User]:
        if not token:
            return None
        with self._data_lock:
            return next(
                (u for u in self.users.values() if u.verification_token == token), None
            )

    def find_user_by_reset_token(self, token: str, now: datetime) -> Optional[User]:
        if not token:
            return None
        with self._data_lock:
            return next(
                (
                    u
                    for u in self.users.values()
                    if u.reset_token == token
                    and u.reset_token_expiry is not None
                    and u.reset_token_expiry > now
                ),
                None,
            )


class MemorySessionRegistry:
    """Session registry kept in a dict with absolute expiry times.

    Mirrors :class:`~wayfare.storage.redis_cache.RedisSessionRegistry` key for
    key so tests exercise the same layout without a Redis server.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._entries: Dict[str, Tuple[SessionRecord, float]] = {}
        self._lock = threading.Lock()
        self._clock = clock

    def _live(self, key: str, now: float) -> Optional[Tuple[SessionRecord, float]]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        if entry[1] <= now:
            self._entries.pop(key, None)
            return None
        return entry

    async def put(
        self,
        user_id: str,
        refresh_token: str,
        record: SessionRecord,
        ttl_seconds: int,
    ) -> None:
        expires_at = self._clock() + max(1, int(ttl_seconds))
        with self._lock:
            self._entries[session_key(user_id, refresh_token)] = (record, expires_at)

    async def get(self, user_id: str, refresh_token: str) -> Optional[SessionRecord]:
        with self._lock:
            entry = self._live(session_key(user_id, refresh_token), self._clock())
        return entry[0] if entry else None

    async def delete(self, user_id: str, refresh_token: str) -> bool:
        with self._lock:
            return self._entries.pop(session_key(user_id, refresh_token), None) is not None

    async def delete_all_for_user(self, user_id: str) -> int:
        prefix = session_prefix(user_id)
        with self._lock:
            keys = [key for key in self._entries if key.startswith(prefix)]
            for key in keys:
                del self._entries[key]
        return len(keys)

    async def list_for_user(self, user_id: str) -> List[SessionEntry]:
        prefix = session_prefix(user_id)
        now = self._clock()
        entries: List[SessionEntry] = []
        with self._lock:
            for key in list(self._entries):
                if not key.startswith(prefix):
                    continue
                live = self._live(key, now)
                if live is None:
                    continue
                record, expires_at = live
                entries.append(
                    SessionEntry(
                        refresh_token=key[len(prefix):],
                        record=record,
                        ttl_seconds=int(expires_at - now),
                    )
                )
        return entries

    def verify_connection(self) -> None:
        return None

    async def close(self) -> None:
        with self._lock:
            self._entries.clear()
