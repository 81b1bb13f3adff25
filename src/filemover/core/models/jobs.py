"""Job, per-target outcome, attempt and dead-letter models.

Job lifecycle:
    ::

        Pending ──► Generating ──► Generated ──► Sending ──► Completed
           │            │              │            │
           └────────────┴──────────────┴────────────┴──► Failed
           └────────────┴──────────────┴────────────┴──► Cancelled

    Terminal statuses never change again. Every transition is a
    compare-and-set in ``JobRepository.transition``.

Tags:
    filemover, models, jobs, dataclasses, state-machine
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any


class JobStatus(str, Enum):
    PENDING = "Pending"
    GENERATING = "Generating"
    GENERATED = "Generated"
    SENDING = "Sending"
    COMPLETED = "Completed"
    FAILED = "Failed"
    CANCELLED = "Cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_JOB_STATUSES


TERMINAL_JOB_STATUSES = frozenset({JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.CANCELLED})
ACTIVE_JOB_STATUSES = frozenset(set(JobStatus) - TERMINAL_JOB_STATUSES)


class TargetStatus(str, Enum):
    PENDING = "Pending"
    SENDING = "Sending"
    SENT = "Sent"
    FAILED = "Failed"

    @property
    def is_terminal(self) -> bool:
        return self in (TargetStatus.SENT, TargetStatus.FAILED)


class Operation(str, Enum):
    """Retried operation kinds, as recorded on attempts and dead letters."""

    GENERATION = "generation"
    TRANSFER = "transfer"
    FAN_OUT = "fan_out"
    DELIVERY = "delivery"


@dataclass
class TargetOutcome:
    """Progress of one job on one target (``fm_job_targets``).

    ``attempts`` and ``last_error`` are reductions over the attempt records.
    """

    job_id: str
    target_id: str
    position: int = 0
    host_ref: str = ""
    destination_path: str = ""
    credential_reference: str = ""
    status: TargetStatus = TargetStatus.PENDING
    reason: str | None = None
    last_error: str | None = None
    content_hash: str | None = None
    attempts: int = 0
    updated_at: datetime | None = None
    completed_at: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "job_id": self.job_id,
            "target_id": self.target_id,
            "host_ref": self.host_ref,
            "destination_path": self.destination_path,
            "status": self.status.value,
            "reason": self.reason,
            "last_error": self.last_error,
            "content_hash": self.content_hash,
            "attempts": self.attempts,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
        }


@dataclass
class Job:
    """One triggered execution of a schedule (``fm_jobs``)."""

    id: str
    schedule_id: str
    status: JobStatus = JobStatus.PENDING
    reason: str | None = None
    error: str | None = None
    source_path: str = ""
    destination_path: str = ""
    artifact_location: str | None = None
    artifact_size: int | None = None
    content_hash: str | None = None
    generation_attempts: int = 0
    triggered_at: datetime | None = None
    started_at: datetime | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None
    completed_at: datetime | None = None
    targets: list[TargetOutcome] = field(default_factory=list)

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    def to_dict(self, include_targets: bool = True) -> dict[str, Any]:
        result: dict[str, Any] = {
            "id": self.id,
            "schedule_id": self.schedule_id,
            "status": self.status.value,
            "reason": self.reason,
            "error": self.error,
            "artifact_location": self.artifact_location,
            "artifact_size": self.artifact_size,
            "content_hash": self.content_hash,
            "generation_attempts": self.generation_attempts,
            "triggered_at": self.triggered_at.isoformat() if self.triggered_at else None,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
        }
        if include_targets:
            result["targets"] = [t.to_dict() for t in self.targets]
        return result


@dataclass(frozen=True)
class AttemptRecord:
    """One try of a retried operation (``fm_attempts``). Append-only."""

    job_id: str
    operation: Operation
    attempt: int
    started_at: datetime
    finished_at: datetime
    target_id: str = ""
    error_code: str | None = None
    error_message: str | None = None
    retryable: bool = False

    @property
    def succeeded(self) -> bool:
        return self.error_code is None

    def to_dict(self) -> dict[str, Any]:
        return {
            "job_id": self.job_id,
            "operation": self.operation.value,
            "target_id": self.target_id,
            "attempt": self.attempt,
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat(),
            "error_code": self.error_code,
            "error_message": self.error_message,
            "retryable": self.retryable,
        }


@dataclass
class DeadLetter:
    """An operation that exhausted its retries (``fm_dead_letters``)."""

    id: str
    job_id: str
    operation: str
    reason: str
    payload: dict[str, Any] = field(default_factory=dict)
    target_id: str | None = None
    error: str | None = None
    attempts: int = 0
    created_at: datetime | None = None
    resolved_at: datetime | None = None
    resolved_by: str | None = None

    @property
    def is_resolved(self) -> bool:
        return self.resolved_at is not None
