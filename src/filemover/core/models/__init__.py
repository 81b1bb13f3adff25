"""Dataclass models for the filemover tables.

Modules
-------
scheduling
    ``fm_schedules`` rows, target descriptors and lock leases.
jobs
    ``fm_jobs``, ``fm_job_targets``, ``fm_attempts`` and ``fm_dead_letters``.
"""

from filemover.core.models.jobs import (
    ACTIVE_JOB_STATUSES,
    TERMINAL_JOB_STATUSES,
    AttemptRecord,
    DeadLetter,
    Job,
    JobStatus,
    Operation,
    TargetOutcome,
    TargetStatus,
)
from filemover.core.models.scheduling import (
    LockLease,
    Schedule,
    TargetDescriptor,
    dump_targets,
    load_targets,
)

__all__ = [
    "ACTIVE_JOB_STATUSES",
    "TERMINAL_JOB_STATUSES",
    "AttemptRecord",
    "DeadLetter",
    "Job",
    "JobStatus",
    "LockLease",
    "Operation",
    "Schedule",
    "TargetDescriptor",
    "TargetOutcome",
    "TargetStatus",
    "dump_targets",
    "load_targets",
]
