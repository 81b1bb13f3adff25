"""FastAPI router for the read-only status surface.

ARCHITECTURE
────────────
::

    create_status_router(service) → APIRouter
      GET  /jobs                          ─ recent jobs (filter by schedule)
      GET  /jobs/stalled                  ─ non-terminal past the alert threshold
      GET  /jobs/{job_id}                 ─ job with target outcomes
      GET  /jobs/{job_id}/targets         ─ target outcomes only
      GET  /jobs/{job_id}/attempts        ─ attempt history
      POST /jobs/{job_id}/cancel          ─ cancellation signal
      GET  /schedules                     ─ last / next run per schedule
      GET  /schedules/{schedule_id}       ─ one schedule by id or name
      GET  /dlq                           ─ dead letters

    Depends on:
      StatusService ─ every endpoint delegates there
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from fastapi import APIRouter, HTTPException, Query
from pydantic import BaseModel, Field

from filemover.core.models import AttemptRecord, DeadLetter, Job, Operation, TargetOutcome
from filemover.jobs.status import StatusService

# === RESPONSE MODELS ===


class TargetOutcomeResponse(BaseModel):
    target_id: str
    host_ref: str
    destination_path: str
    status: str
    reason: str | None = None
    last_error: str | None = None
    content_hash: str | None = None
    attempts: int = 0
    completed_at: datetime | None = None

    @classmethod
    def from_outcome(cls, outcome: TargetOutcome) -> TargetOutcomeResponse:
        return cls(
            target_id=outcome.target_id,
            host_ref=outcome.host_ref,
            destination_path=outcome.destination_path,
            status=outcome.status.value,
            reason=outcome.reason,
            last_error=outcome.last_error,
            content_hash=outcome.content_hash,
            attempts=outcome.attempts,
            completed_at=outcome.completed_at,
        )


class JobSummaryResponse(BaseModel):
    job_id: str
    schedule_id: str
    status: str
    reason: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @classmethod
    def from_job(cls, job: Job) -> JobSummaryResponse:
        return cls(
            job_id=job.id,
            schedule_id=job.schedule_id,
            status=job.status.value,
            reason=job.reason,
            created_at=job.created_at,
            updated_at=job.updated_at,
        )


class JobResponse(JobSummaryResponse):
    error: str | None = None
    artifact_location: str | None = None
    artifact_size: int | None = None
    content_hash: str | None = None
    generation_attempts: int = 0
    started_at: datetime | None = None
    completed_at: datetime | None = None
    targets: list[TargetOutcomeResponse] = Field(default_factory=list)

    @classmethod
    def from_job(cls, job: Job) -> JobResponse:
        return cls(
            job_id=job.id,
            schedule_id=job.schedule_id,
            status=job.status.value,
            reason=job.reason,
            created_at=job.created_at,
            updated_at=job.updated_at,
            error=job.error,
            artifact_location=job.artifact_location,
            artifact_size=job.artifact_size,
            content_hash=job.content_hash,
            generation_attempts=job.generation_attempts,
            started_at=job.started_at,
            completed_at=job.completed_at,
            targets=[TargetOutcomeResponse.from_outcome(t) for t in job.targets],
        )


class AttemptResponse(BaseModel):
    operation: str
    target_id: str
    attempt: int
    started_at: datetime
    finished_at: datetime
    error_code: str | None = None
    error_message: str | None = None
    retryable: bool = False

    @classmethod
    def from_record(cls, record: AttemptRecord) -> AttemptResponse:
        return cls(
            operation=record.operation.value,
            target_id=record.target_id,
            attempt=record.attempt,
            started_at=record.started_at,
            finished_at=record.finished_at,
            error_code=record.error_code,
            error_message=record.error_message,
            retryable=record.retryable,
        )


class CancelResponse(BaseModel):
    job_id: str
    cancelled: bool
    status: str


class ScheduleRunsResponse(BaseModel):
    id: str
    name: str
    cron_expression: str
    timezone: str
    enabled: bool
    targets: list[str]
    last_run_utc: datetime | None = None
    next_run_utc: datetime | None = None


class DeadLetterResponse(BaseModel):
    id: str
    job_id: str
    target_id: str | None = None
    operation: str
    reason: str
    error: str | None = None
    attempts: int
    payload: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime | None = None
    resolved_at: datetime | None = None
    resolved_by: str | None = None

    @classmethod
    def from_entry(cls, entry: DeadLetter) -> DeadLetterResponse:
        return cls(
            id=entry.id,
            job_id=entry.job_id,
            target_id=entry.target_id,
            operation=entry.operation,
            reason=entry.reason,
            error=entry.error,
            attempts=entry.attempts,
            payload=entry.payload,
            created_at=entry.created_at,
            resolved_at=entry.resolved_at,
            resolved_by=entry.resolved_by,
        )


def create_status_router(
    service: StatusService,
    prefix: str = "/api/v1",
    tags: list[str] | None = None,
) -> APIRouter:
    """Create the status router.

    Example:
        >>> from fastapi import FastAPI
        >>> app = FastAPI()
        >>> app.include_router(create_status_router(runtime.status))
    """
    router = APIRouter(prefix=prefix, tags=tags or ["status"])

    @router.get("/jobs", response_model=list[JobSummaryResponse])
    async def list_jobs(
        schedule_id: str | None = None,
        limit: int = Query(50, ge=1, le=500),
    ):
        return [JobSummaryResponse.from_job(j) for j in service.list_jobs(schedule_id, limit)]

    @router.get("/jobs/stalled", response_model=list[JobSummaryResponse])
    async def stalled_jobs(threshold_seconds: int | None = Query(None, ge=1)):
        """Jobs still non-terminal after the alert threshold."""
        return [JobSummaryResponse.from_job(j) for j in service.stalled_jobs(threshold_seconds)]

    @router.get("/jobs/{job_id}", response_model=JobResponse)
    async def get_job(job_id: str):
        job = service.get_job(job_id)
        if job is None:
            raise HTTPException(404, f"Job {job_id} not found")
        return JobResponse.from_job(job)

    @router.get("/jobs/{job_id}/targets", response_model=list[TargetOutcomeResponse])
    async def get_targets(job_id: str):
        outcomes = service.target_outcomes(job_id)
        if outcomes is None:
            raise HTTPException(404, f"Job {job_id} not found")
        return [TargetOutcomeResponse.from_outcome(o) for o in outcomes]

    @router.get("/jobs/{job_id}/attempts", response_model=list[AttemptResponse])
    async def get_attempts(
        job_id: str,
        target_id: str | None = None,
        operation: str | None = None,
    ):
        op = None
        if operation:
            try:
                op = Operation(operation)
            except ValueError:
                raise HTTPException(400, f"Invalid operation: {operation}") from None
        records = service.attempt_history(job_id, target_id=target_id, operation=op)
        if records is None:
            raise HTTPException(404, f"Job {job_id} not found")
        return [AttemptResponse.from_record(r) for r in records]

    @router.post("/jobs/{job_id}/cancel", response_model=CancelResponse)
    async def cancel_job(job_id: str):
        """Cancel a non-terminal job. In-flight transfers finish their current attempt."""
        if service.get_job(job_id) is None:
            raise HTTPException(404, f"Job {job_id} not found")
        cancelled = await service.cancel(job_id)
        job = service.get_job(job_id)
        if not cancelled:
            raise HTTPException(409, f"Job {job_id} is already {job.status.value}")  # type: ignore[union-attr]
        return CancelResponse(job_id=job_id, cancelled=True, status=job.status.value)  # type: ignore[union-attr]

    @router.get("/schedules", response_model=list[ScheduleRunsResponse])
    async def list_schedules():
        return [ScheduleRunsResponse(**s) for s in service.list_schedules()]

    @router.get("/schedules/{schedule_id}", response_model=ScheduleRunsResponse)
    async def get_schedule(schedule_id: str):
        summary = service.schedule_runs(schedule_id)
        if summary is None:
            raise HTTPException(404, f"Schedule {schedule_id} not found")
        return ScheduleRunsResponse(**summary)

    @router.get("/dlq", response_model=list[DeadLetterResponse])
    async def list_dead_letters(
        include_resolved: bool = False,
        limit: int = Query(100, ge=1, le=500),
    ):
        entries = service.list_dead_letters(include_resolved=include_resolved, limit=limit)
        return [DeadLetterResponse.from_entry(e) for e in entries]

    return router
