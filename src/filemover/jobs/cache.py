"""Ephemeral job/target status in the coordinator.

The durable tables are the authority; this cache only gives status readers
a cheap, TTL-bounded view. A coordinator outage is logged and ignored.

Writes from different workers can land out of order (a slow ``Sending``
publish after another worker already published ``Completed``). Every write
carries the rank of its status in the state machine and the coordinator
drops a write whose rank is lower than the stored one, so a terminal
status is never replaced by an earlier one.
"""

from __future__ import annotations

from typing import Any

from filemover.coordination.protocol import Coordinator, job_status_key, target_status_key
from filemover.core.errors import CoordinatorUnavailableError
from filemover.core.logging import get_logger
from filemover.core.models import Job, JobStatus, TargetOutcome, TargetStatus

logger = get_logger(__name__)

_TERMINAL_RANK = 100

JOB_STATUS_RANK: dict[JobStatus, int] = {
    JobStatus.PENDING: 0,
    JobStatus.GENERATING: 1,
    JobStatus.GENERATED: 2,
    JobStatus.SENDING: 3,
    JobStatus.COMPLETED: _TERMINAL_RANK,
    JobStatus.FAILED: _TERMINAL_RANK,
    JobStatus.CANCELLED: _TERMINAL_RANK,
}

TARGET_STATUS_RANK: dict[TargetStatus, int] = {
    TargetStatus.PENDING: 0,
    TargetStatus.SENDING: 1,
    TargetStatus.SENT: _TERMINAL_RANK,
    TargetStatus.FAILED: _TERMINAL_RANK,
}


class StatusCache:
    def __init__(self, coordinator: Coordinator | None, ttl_seconds: int = 86400):
        self.coordinator = coordinator
        self.ttl_seconds = ttl_seconds

    async def publish_job(self, job: Job) -> bool:
        return await self._set(
            job_status_key(job.id), job.to_dict(include_targets=False), JOB_STATUS_RANK[job.status]
        )

    async def publish_target(self, outcome: TargetOutcome) -> bool:
        return await self._set(
            target_status_key(outcome.job_id, outcome.target_id),
            outcome.to_dict(),
            TARGET_STATUS_RANK[outcome.status],
        )

    async def get_job(self, job_id: str) -> dict[str, Any] | None:
        return await self._get(job_status_key(job_id))

    async def get_target(self, job_id: str, target_id: str) -> dict[str, Any] | None:
        return await self._get(target_status_key(job_id, target_id))

    async def _set(self, key: str, value: dict[str, Any], rank: int) -> bool:
        if self.coordinator is None:
            return False
        try:
            written = await self.coordinator.set_status(key, value, self.ttl_seconds, rank=rank)
        except CoordinatorUnavailableError as e:
            logger.warning("status_cache_write_skipped", key=key, error=str(e))
            return False
        if not written:
            logger.debug("status_cache_stale_write_dropped", key=key, status=value.get("status"))
        return written

    async def _get(self, key: str) -> dict[str, Any] | None:
        if self.coordinator is None:
            return None
        try:
            return await self.coordinator.get_status(key)
        except CoordinatorUnavailableError as e:
            logger.warning("status_cache_read_skipped", key=key, error=str(e))
            return None
