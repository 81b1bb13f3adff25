"""
In-process coordinator for tests and single-node deployments.

Expiry is evaluated lazily against the injected ``Clock`` so tests can
expire a lease by advancing a ``FixedClock``. Expired entries are also
swept from ``set_status`` at most once a minute, so a long single-process
run does not keep every finished job in memory.
"""

from __future__ import annotations

import asyncio
import copy
import uuid
from datetime import datetime, timedelta
from typing import Any

from filemover.core.models import LockLease
from filemover.core.timestamps import Clock, SystemClock

_SWEEP_INTERVAL = timedelta(seconds=60)


class InMemoryCoordinator:
    """Coordinator backed by dicts and one asyncio lock.

    Example:
        coordinator = InMemoryCoordinator(clock=FixedClock(now))
        lease = await coordinator.acquire_lock("lock:s1", ttl_seconds=300)
        assert await coordinator.acquire_lock("lock:s1", ttl_seconds=300) is None
    """

    name = "memory"

    def __init__(self, clock: Clock | None = None, default_status_ttl_seconds: int | None = None):
        self.clock: Clock = clock or SystemClock()
        self._default_status_ttl = default_status_ttl_seconds
        self._locks: dict[str, tuple[str, datetime]] = {}
        self._status: dict[str, tuple[dict[str, Any], datetime | None, int | None]] = {}
        self._mutex = asyncio.Lock()
        self._next_sweep: datetime | None = None

    def _expired(self, expires_at: datetime | None) -> bool:
        return expires_at is not None and self.clock.now() >= expires_at

    async def acquire_lock(self, key: str, ttl_seconds: int) -> LockLease | None:
        async with self._mutex:
            held = self._locks.get(key)
            if held is not None and not self._expired(held[1]):
                return None
            now = self.clock.now()
            token = uuid.uuid4().hex
            self._locks[key] = (token, now + timedelta(seconds=ttl_seconds))
            return LockLease(key=key, token=token, acquired_at=now, ttl_seconds=ttl_seconds)

    async def renew_lock(self, lease: LockLease, ttl_seconds: int | None = None) -> bool:
        async with self._mutex:
            held = self._locks.get(lease.key)
            if held is None or held[0] != lease.token or self._expired(held[1]):
                return False
            ttl = ttl_seconds if ttl_seconds is not None else lease.ttl_seconds
            self._locks[lease.key] = (lease.token, self.clock.now() + timedelta(seconds=ttl))
            return True

    async def release_lock(self, lease: LockLease) -> bool:
        async with self._mutex:
            held = self._locks.get(lease.key)
            if held is None or held[0] != lease.token:
                return False
            del self._locks[lease.key]
            return True

    def is_locked(self, key: str) -> bool:
        held = self._locks.get(key)
        return held is not None and not self._expired(held[1])

    @property
    def status_entries(self) -> int:
        """Stored status entries, expired ones not yet swept included."""
        return len(self._status)

    async def set_status(
        self, key: str, value: dict[str, Any], ttl_seconds: int | None = None, *, rank: int | None = None
    ) -> bool:
        ttl = ttl_seconds if ttl_seconds is not None else self._default_status_ttl
        async with self._mutex:
            self._sweep()
            now = self.clock.now()
            current = self._status.get(key)
            if (
                rank is not None
                and current is not None
                and not self._expired(current[1])
                and current[2] is not None
                and current[2] > rank
            ):
                return False
            expires_at = now + timedelta(seconds=ttl) if ttl else None
            self._status[key] = (copy.deepcopy(value), expires_at, rank)
            return True

    def _sweep(self) -> None:
        """Drop expired entries, at most once per sweep interval."""
        now = self.clock.now()
        if self._next_sweep is not None and now < self._next_sweep:
            return
        self._next_sweep = now + _SWEEP_INTERVAL
        for key in [k for k, entry in self._status.items() if self._expired(entry[1])]:
            del self._status[key]
        for key in [k for k, held in self._locks.items() if self._expired(held[1])]:
            del self._locks[key]

    async def get_status(self, key: str) -> dict[str, Any] | None:
        entry = self._status.get(key)
        if entry is None:
            return None
        value, expires_at, _ = entry
        if self._expired(expires_at):
            self._status.pop(key, None)
            return None
        return copy.deepcopy(value)

    async def delete_status(self, key: str) -> None:
        self._status.pop(key, None)

    async def ping(self) -> bool:
        return True

    async def close(self) -> None:
        self._locks.clear()
        self._status.clear()
