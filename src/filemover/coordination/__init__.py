"""Distributed coordination: per-schedule locks and the ephemeral status store.

Backends:
    - ``InMemoryCoordinator``: single process (tests, local runs)
    - ``RedisCoordinator``: shared deployments (``FILEMOVER_REDIS_URL``)
"""

from filemover.coordination.memory import InMemoryCoordinator
from filemover.coordination.protocol import (
    Coordinator,
    job_status_key,
    lock_key,
    target_status_key,
)

__all__ = [
    "Coordinator",
    "InMemoryCoordinator",
    "job_status_key",
    "lock_key",
    "target_status_key",
]
