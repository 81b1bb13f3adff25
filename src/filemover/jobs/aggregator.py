"""Job aggregator: fold per-target outcomes into one job status.

Manifesto:
    N transfer workers finish N targets in any order, possibly at the same
    instant. Nobody polls. Every outcome write calls ``on_outcome``; when
    all outcomes are terminal the caller tries ONE compare-and-set on the
    job (Generated/Sending → Completed or Failed). Concurrent "last
    writers" race on it and exactly one wins; the losers see ``False`` and
    do nothing.

Architecture:
    ::

        TransferStage ──record outcome──► fm_job_targets
              │
              └──on_outcome(job_id)──► JobAggregator
                                          │ all terminal?
                                          ▼
                          transition(Generated|Sending → Completed|Failed)
                                          │ won?
                                          ▼
                               StatusCache + telemetry

Guardrails:
    ❌ DON'T: Read the job status, decide, then write it back
    ✅ DO: Let the CAS in ``JobRepository.transition`` decide

    ❌ DON'T: Touch a terminal job, even if late outcomes arrive
    ✅ DO: Accept late outcome writes for audit; the job stays as it is

Tags:
    filemover, aggregator, fan-in, compare-and-set, jobs
"""

from __future__ import annotations

from filemover.core.errors import JobCancelledError
from filemover.core.logging import get_logger
from filemover.core.models import (
    ACTIVE_JOB_STATUSES,
    JobStatus,
    TargetOutcome,
    TargetStatus,
)
from filemover.jobs.cache import StatusCache
from filemover.jobs.repository import JobRepository
from filemover.observability.telemetry import NullTelemetry, Telemetry

logger = get_logger(__name__)

_FAN_IN_FROM = (JobStatus.GENERATED, JobStatus.SENDING)


class JobAggregator:
    """Derives and persists the terminal job status from target outcomes."""

    def __init__(
        self,
        jobs: JobRepository,
        cache: StatusCache | None = None,
        telemetry: Telemetry | None = None,
    ) -> None:
        self.jobs = jobs
        self.cache = cache or StatusCache(None)
        self.telemetry: Telemetry = telemetry or NullTelemetry()

    async def on_outcome(self, job_id: str, target_id: str | None = None) -> JobStatus | None:
        """React to a target outcome write.

        Returns the terminal status this call applied, or ``None`` when the
        job is still in progress or another caller already finished it.
        """
        outcomes = self.jobs.list_outcomes(job_id)
        if target_id is not None:
            for outcome in outcomes:
                if outcome.target_id == target_id:
                    await self.cache.publish_target(outcome)

        if not outcomes or any(not o.status.is_terminal for o in outcomes):
            return None

        failed = [o for o in outcomes if o.status is TargetStatus.FAILED]
        if failed:
            to_status = JobStatus.FAILED
            won = self.jobs.transition(
                job_id,
                _FAN_IN_FROM,
                to_status,
                reason=failed[0].reason or "TransferFailed",
                error=_summarize(failed),
            )
        else:
            to_status = JobStatus.COMPLETED
            won = self.jobs.transition(job_id, _FAN_IN_FROM, to_status)

        if not won:
            logger.debug("job_fan_in_lost", job_id=job_id)
            return None

        logger.info(
            "job_finished",
            job_id=job_id,
            status=to_status.value,
            targets=len(outcomes),
            failed_targets=len(failed),
        )
        self.telemetry.emit_metric("jobs_finished_total", 1, status=to_status.value)
        await self.publish(job_id)
        return to_status

    async def fail(
        self,
        job_id: str,
        reason: str,
        error: str | None = None,
        from_statuses: tuple[JobStatus, ...] | frozenset[JobStatus] = ACTIVE_JOB_STATUSES,
    ) -> bool:
        """Move a non-terminal job to Failed (generation / fan-out failures)."""
        won = self.jobs.transition(job_id, from_statuses, JobStatus.FAILED, reason=reason, error=error)
        if won:
            logger.warning("job_failed", job_id=job_id, reason=reason, error=error)
            self.telemetry.emit_metric("jobs_finished_total", 1, status=JobStatus.FAILED.value)
            await self.publish(job_id)
        return won

    async def cancel(self, job_id: str) -> bool:
        """Cancel a job from any non-terminal status.

        Running transfers are not interrupted; they stop before their next
        attempt.
        """
        won = self.jobs.transition(
            job_id, ACTIVE_JOB_STATUSES, JobStatus.CANCELLED, reason=JobCancelledError.code
        )
        if won:
            logger.info("job_cancelled", job_id=job_id)
            self.telemetry.emit_metric("jobs_finished_total", 1, status=JobStatus.CANCELLED.value)
            await self.publish(job_id)
        else:
            logger.info("job_cancel_ignored", job_id=job_id, status=_status_name(self.jobs.get_status(job_id)))
        return won

    async def publish(self, job_id: str) -> None:
        job = self.jobs.get(job_id, include_targets=False)
        if job is not None:
            await self.cache.publish_job(job)


def _summarize(failed: list[TargetOutcome]) -> str:
    return "; ".join(f"{o.target_id}: {o.reason or 'Failed'}" for o in failed)


def _status_name(status: JobStatus | None) -> str | None:
    return status.value if status else None
