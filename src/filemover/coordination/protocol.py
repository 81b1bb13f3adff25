"""Coordinator protocol: distributed locks plus an ephemeral status store.

┌──────────────────────────────────────────────────────────────────────────────┐
│  COORDINATOR                                                                  │
│                                                                               │
│  Locks (one per schedule, ``lock:{schedule_id}``):                           │
│  ├── acquire_lock(key, ttl) → LockLease | None     atomic set-if-absent+TTL │
│  ├── renew_lock(lease, ttl) → bool                 only while token matches  │
│  └── release_lock(lease) → bool                    only while token matches  │
│                                                                               │
│  Status (read-through cache for the status surface):                         │
│  ├── set_status(key, value, ttl, rank)                                       │
│  ├── get_status(key) → dict | None                                           │
│  └── delete_status(key)                                                      │
│                                                                               │
│  Implementations:                                                             │
│  ├── InMemoryCoordinator   single process, tests                             │
│  └── RedisCoordinator      SET NX EX + Lua compare-and-delete                │
│                                                                               │
│  Every method raises CoordinatorUnavailableError when the store cannot be    │
│  reached. "Someone else holds the lock" is a None return, not an error.      │
└──────────────────────────────────────────────────────────────────────────────┘
"""

from __future__ import annotations

from typing import Any, Protocol, runtime_checkable

from filemover.core.models import LockLease


@runtime_checkable
class Coordinator(Protocol):
    """Protocol for the coordination store."""

    name: str

    async def acquire_lock(self, key: str, ttl_seconds: int) -> LockLease | None:
        """Atomically take ``key`` for ``ttl_seconds``; None when already held."""
        ...

    async def renew_lock(self, lease: LockLease, ttl_seconds: int | None = None) -> bool:
        ...

    async def release_lock(self, lease: LockLease) -> bool:
        ...

    async def set_status(
        self, key: str, value: dict[str, Any], ttl_seconds: int | None = None, *, rank: int | None = None
    ) -> bool:
        """Store ``value`` under ``key``; returns whether it was written.

        With ``rank`` the write is atomic against the stored value: it is
        skipped when the stored value carries a higher rank.
        """
        ...

    async def get_status(self, key: str) -> dict[str, Any] | None:
        ...

    async def delete_status(self, key: str) -> None:
        ...

    async def ping(self) -> bool:
        ...

    async def close(self) -> None:
        ...


def lock_key(schedule_id: str) -> str:
    return f"lock:{schedule_id}"


def job_status_key(job_id: str) -> str:
    return f"job:{job_id}"


def target_status_key(job_id: str, target_id: str) -> str:
    return f"job:{job_id}:target:{target_id}"
