"""
Redis coordinator for multi-instance deployments.

Manifesto:
    Several pollers run the same schedules. The only thing that keeps them
    from triggering twice is one atomic primitive: ``SET key token NX EX
    ttl``. Release and renew must never touch a lock someone else now
    holds (ours may have expired), so both are Lua compare-then-act
    scripts keyed on the holder token.

Tags:
    filemover, coordination, redis, distributed-locks, TTL, async

Doc-Types:
    api-reference
"""

from __future__ import annotations

import json
import uuid
from collections.abc import Awaitable
from typing import Any, TypeVar

import redis.asyncio as aioredis
from redis.exceptions import RedisError

from filemover.core.errors import CoordinatorUnavailableError
from filemover.core.logging import get_logger
from filemover.core.models import LockLease
from filemover.core.timestamps import Clock, SystemClock

__all__ = ["RedisCoordinator"]

logger = get_logger(__name__)

T = TypeVar("T")

_RELEASE_SCRIPT = """
if redis.call('get', KEYS[1]) == ARGV[1] then
    return redis.call('del', KEYS[1])
end
return 0
"""

_RENEW_SCRIPT = """
if redis.call('get', KEYS[1]) == ARGV[1] then
    return redis.call('pexpire', KEYS[1], ARGV[2])
end
return 0
"""

# ARGV: payload, rank, ttl seconds (0 = no expiry)
_SET_RANKED_SCRIPT = """
local current = redis.call('get', KEYS[1])
if current then
    local ok, stored = pcall(cjson.decode, current)
    if ok and type(stored) == 'table' and stored['_rank'] and tonumber(stored['_rank']) > tonumber(ARGV[2]) then
        return 0
    end
end
if tonumber(ARGV[3]) > 0 then
    redis.call('set', KEYS[1], ARGV[1], 'EX', ARGV[3])
else
    redis.call('set', KEYS[1], ARGV[1])
end
return 1
"""


class RedisCoordinator:
    """Coordinator on a single Redis instance.

    Example::

        coordinator = RedisCoordinator.from_url("redis://localhost:6379/0")
        lease = await coordinator.acquire_lock("lock:nightly", ttl_seconds=300)
        if lease:
            try:
                ...
            finally:
                await coordinator.release_lock(lease)
    """

    name = "redis"

    def __init__(
        self,
        client: Any,
        *,
        key_prefix: str = "filemover",
        clock: Clock | None = None,
        default_status_ttl_seconds: int | None = 86_400,
    ) -> None:
        self._client = client
        self._prefix = key_prefix
        self.clock: Clock = clock or SystemClock()
        self._default_status_ttl = default_status_ttl_seconds

    @classmethod
    def from_url(
        cls,
        url: str,
        *,
        socket_timeout: float = 5.0,
        **kwargs: Any,
    ) -> RedisCoordinator:
        client = aioredis.from_url(
            url,
            decode_responses=True,
            socket_timeout=socket_timeout,
            socket_connect_timeout=socket_timeout,
        )
        return cls(client, **kwargs)

    def _key(self, key: str) -> str:
        return f"{self._prefix}:{key}"

    async def _call(self, operation: str, awaitable: Awaitable[T]) -> T:
        try:
            return await awaitable
        except (RedisError, OSError) as e:
            logger.warning("coordinator_call_failed", operation=operation, error=str(e))
            raise CoordinatorUnavailableError(
                f"Redis {operation} failed: {e}", cause=e
            ) from e

    # === Locks ===

    async def acquire_lock(self, key: str, ttl_seconds: int) -> LockLease | None:
        token = uuid.uuid4().hex
        acquired = await self._call(
            "acquire_lock",
            self._client.set(self._key(key), token, nx=True, ex=ttl_seconds),
        )
        if not acquired:
            return None
        return LockLease(
            key=key, token=token, acquired_at=self.clock.now(), ttl_seconds=ttl_seconds
        )

    async def renew_lock(self, lease: LockLease, ttl_seconds: int | None = None) -> bool:
        ttl = ttl_seconds if ttl_seconds is not None else lease.ttl_seconds
        result = await self._call(
            "renew_lock",
            self._client.eval(_RENEW_SCRIPT, 1, self._key(lease.key), lease.token, ttl * 1000),
        )
        return bool(result)

    async def release_lock(self, lease: LockLease) -> bool:
        result = await self._call(
            "release_lock",
            self._client.eval(_RELEASE_SCRIPT, 1, self._key(lease.key), lease.token),
        )
        return bool(result)

    # === Status ===

    async def set_status(
        self, key: str, value: dict[str, Any], ttl_seconds: int | None = None, *, rank: int | None = None
    ) -> bool:
        ttl = ttl_seconds if ttl_seconds is not None else self._default_status_ttl
        if rank is not None:
            payload = json.dumps({**value, "_rank": rank}, default=str)
            written = await self._call(
                "set_status",
                self._client.eval(_SET_RANKED_SCRIPT, 1, self._key(key), payload, rank, ttl or 0),
            )
            return bool(written)
        payload = json.dumps(value, default=str)
        if ttl:
            await self._call("set_status", self._client.set(self._key(key), payload, ex=ttl))
        else:
            await self._call("set_status", self._client.set(self._key(key), payload))
        return True

    async def get_status(self, key: str) -> dict[str, Any] | None:
        raw = await self._call("get_status", self._client.get(self._key(key)))
        if raw is None:
            return None
        value = json.loads(raw)
        value.pop("_rank", None)
        return value

    async def delete_status(self, key: str) -> None:
        await self._call("delete_status", self._client.delete(self._key(key)))

    async def ping(self) -> bool:
        try:
            return bool(await self._call("ping", self._client.ping()))
        except CoordinatorUnavailableError:
            return False

    async def close(self) -> None:
        await self._client.aclose()
