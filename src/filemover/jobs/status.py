"""Read-only status queries plus the external cancel signal.

``StatusService`` is what the FastAPI router and the CLI call. Durable
tables answer every query; the coordinator cache is only consulted by
``cached_job_status`` for cheap polling clients.
"""

from __future__ import annotations

from datetime import timedelta
from typing import Any

from filemover.core.logging import get_logger
from filemover.core.models import AttemptRecord, DeadLetter, Job, Operation, Schedule, TargetOutcome
from filemover.core.timestamps import Clock, SystemClock
from filemover.execution.dlq import DeadLetterStore
from filemover.jobs.aggregator import JobAggregator
from filemover.jobs.cache import StatusCache
from filemover.jobs.repository import JobRepository
from filemover.scheduling.repository import ScheduleRepository

logger = get_logger(__name__)


def schedule_summary(schedule: Schedule) -> dict[str, Any]:
    return {
        "id": schedule.id,
        "name": schedule.name,
        "cron_expression": schedule.cron_expression,
        "timezone": schedule.timezone,
        "enabled": schedule.enabled,
        "targets": [t.target_id for t in schedule.targets],
        "last_run_utc": schedule.last_run_utc.isoformat() if schedule.last_run_utc else None,
        "next_run_utc": schedule.next_run_utc.isoformat() if schedule.next_run_utc else None,
    }


class StatusService:
    def __init__(
        self,
        jobs: JobRepository,
        schedules: ScheduleRepository,
        aggregator: JobAggregator,
        dead_letters: DeadLetterStore | None = None,
        cache: StatusCache | None = None,
        clock: Clock | None = None,
        alert_threshold_seconds: int = 3600,
    ) -> None:
        self.jobs = jobs
        self.schedules = schedules
        self.aggregator = aggregator
        self.dead_letters = dead_letters
        self.cache = cache or aggregator.cache
        self.clock: Clock = clock or SystemClock()
        self.alert_threshold_seconds = alert_threshold_seconds

    # === Jobs ===

    def get_job(self, job_id: str) -> Job | None:
        return self.jobs.get(job_id)

    def list_jobs(self, schedule_id: str | None = None, limit: int = 50) -> list[Job]:
        return self.jobs.list_jobs(schedule_id=schedule_id, limit=limit)

    def target_outcomes(self, job_id: str) -> list[TargetOutcome] | None:
        if self.jobs.get_status(job_id) is None:
            return None
        return self.jobs.list_outcomes(job_id)

    def attempt_history(
        self,
        job_id: str,
        target_id: str | None = None,
        operation: Operation | None = None,
    ) -> list[AttemptRecord] | None:
        if self.jobs.get_status(job_id) is None:
            return None
        return self.jobs.list_attempts(job_id, operation=operation, target_id=target_id)

    def stalled_jobs(self, threshold_seconds: int | None = None) -> list[Job]:
        """Non-terminal jobs that have not moved for longer than the threshold."""
        threshold = threshold_seconds or self.alert_threshold_seconds
        cutoff = self.clock.now() - timedelta(seconds=threshold)
        stalled = self.jobs.find_stalled(cutoff)
        if stalled:
            logger.warning("jobs_stalled", count=len(stalled), threshold_seconds=threshold)
        return stalled

    async def cached_job_status(self, job_id: str) -> dict[str, Any] | None:
        """Cache first, durable store on a miss."""
        cached = await self.cache.get_job(job_id)
        if cached is not None:
            return cached
        job = self.jobs.get(job_id, include_targets=False)
        return job.to_dict(include_targets=False) if job else None

    async def cancel(self, job_id: str) -> bool:
        return await self.aggregator.cancel(job_id)

    # === Schedules ===

    def schedule_runs(self, schedule_id: str) -> dict[str, Any] | None:
        schedule = self.schedules.get(schedule_id) or self.schedules.get_by_name(schedule_id)
        return schedule_summary(schedule) if schedule else None

    def list_schedules(self) -> list[dict[str, Any]]:
        return [schedule_summary(s) for s in self.schedules.list_all()]

    # === Dead letters ===

    def list_dead_letters(self, include_resolved: bool = False, limit: int = 100) -> list[DeadLetter]:
        if self.dead_letters is None:
            return []
        return self.dead_letters.list_all(include_resolved=include_resolved, limit=limit)
