from __future__ import annotations

import json
from contextlib import contextmanager
from typing import Iterator, List, Optional

import redis.asyncio as aioredis
from redis import Redis
from redis.exceptions import RedisError

from wayfare.logging import get_logger
from wayfare.storage.errors import SessionStoreUnavailable
from wayfare.storage.models import SessionEntry, SessionRecord

logger = get_logger(__name__)

SESSION_NAMESPACE = "refresh_token"


def session_key(user_id: str, refresh_token: str) -> str:
    return f"{SESSION_NAMESPACE}:{user_id}:{refresh_token}"


def session_prefix(user_id: str) -> str:
    return f"{SESSION_NAMESPACE}:{user_id}:"


def _load_record(raw: str, user_id: str) -> SessionRecord:
    try:
        return SessionRecord.from_dict(json.loads(raw))
    except (json.JSONDecodeError, TypeError, AttributeError):
        # A corrupted value still marks the token as live
        logger.warning("session_record_corrupt", user_id=user_id)
        return SessionRecord(user_id=user_id, tenant_id=None)


@contextmanager
def _redis_errors(operation: str) -> Iterator[None]:
    try:
        yield
    except RedisError as exc:
        logger.error("session_store_error", operation=operation, error=str(exc))
        raise SessionStoreUnavailable(operation, exc) from exc


class RedisSessionRegistry:
    """Refresh-token session records kept in Redis with a TTL.

    One key per issued refresh token, so a lookup by ``(user_id, token)`` is a
    single GET and revoking everything for a user is a prefix scan.
    """

    def __init__(
        self,
        redis_url: str,
        *,
        socket_timeout: float = 5.0,
        client: Optional[aioredis.Redis] = None,
    ):
        self.redis_url = redis_url
        self.client = client or aioredis.from_url(
            redis_url,
            decode_responses=True,
            socket_timeout=socket_timeout,
            socket_connect_timeout=socket_timeout,
        )

    def verify_connection(self) -> None:
        """Assert Redis connectivity before enabling dependent features."""
        # A short-lived sync client keeps the async one off a temporary loop
        sync_client = Redis.from_url(self.redis_url, decode_responses=True)
        try:
            sync_client.ping()
        finally:
            sync_client.close()

    async def put(
        self,
        user_id: str,
        refresh_token: str,
        record: SessionRecord,
        ttl_seconds: int,
    ) -> None:
        with _redis_errors("put"):
            await self.client.set(
                session_key(user_id, refresh_token),
                json.dumps(record.to_dict()),
                ex=max(1, int(ttl_seconds)),
            )

    async def get(self, user_id: str, refresh_token: str) -> Optional[SessionRecord]:
        with _redis_errors("get"):
            raw = await self.client.get(session_key(user_id, refresh_token))
        if raw is None:
            return None
        return _load_record(raw, user_id)

    async def delete(self, user_id: str, refresh_token: str) -> bool:
        with _redis_errors("delete"):
            return bool(await self.client.delete(session_key(user_id, refresh_token)))

    async def _scan_user_keys(self, user_id: str) -> List[str]:
        keys: List[str] = []
        async for key in self.client.scan_iter(match=f"{session_prefix(user_id)}*", count=100):
            keys.append(key)
        return keys

    async def delete_all_for_user(self, user_id: str) -> int:
        """Delete every session for ``user_id``.

        Not atomic: a session written after the scan survives.
        """
        with _redis_errors("delete_all_for_user"):
            keys = await self._scan_user_keys(user_id)
            if not keys:
                return 0
            deleted = await self.client.delete(*keys)
        logger.info("sessions_revoked_for_user", user_id=user_id, count=deleted)
        return int(deleted)

    async def list_for_user(self, user_id: str) -> List[SessionEntry]:
        prefix = session_prefix(user_id)
        entries: List[SessionEntry] = []
        with _redis_errors("list_for_user"):
            for key in await self._scan_user_keys(user_id):
                raw = await self.client.get(key)
                if raw is None:
                    continue
                ttl = await self.client.ttl(key)
                entries.append(
                    SessionEntry(
                        refresh_token=key[len(prefix):],
                        record=_load_record(raw, user_id),
                        ttl_seconds=ttl if ttl is not None and ttl >= 0 else None,
                    )
                )
        return entries

    async def close(self) -> None:
        await self.client.aclose()
