"""Job repository: durable job history, per-target outcomes and attempts.

Manifesto:
    Two deliveries of the same generation request, two transfer workers
    finishing the last two targets at once, a cancel racing a completion:
    all of these resolve in SQL. Admission is insert-if-absent, every job
    transition is ``UPDATE ... WHERE status IN (...)`` and the caller reads
    ``rowcount`` to learn whether it won.

┌──────────────────────────────────────────────────────────────────────────────┐
│  JobRepository                                                                │
│  ├── admit(...) → (Job, created)          insert-if-absent job + outcomes    │
│  ├── get(job_id) → Job | None             with outcomes and attempt counts   │
│  ├── transition(job_id, from, to) → bool  compare-and-set on status          │
│  ├── get_outcome / list_outcomes                                              │
│  ├── update_outcome(job, target, to, from=None) → bool                       │
│  ├── record_attempt(record)               append-only                        │
│  ├── list_attempts / count_attempts                                           │
│  ├── list_jobs(schedule_id, status)                                          │
│  └── find_stalled(older_than) → list[Job]                                    │
└──────────────────────────────────────────────────────────────────────────────┘
"""

from __future__ import annotations

from collections.abc import Iterable
from datetime import datetime
from typing import Any

from filemover.core.dialect import Dialect, SQLiteDialect
from filemover.core.logging import get_logger
from filemover.core.models import (
    ACTIVE_JOB_STATUSES,
    TERMINAL_JOB_STATUSES,
    AttemptRecord,
    Job,
    JobStatus,
    Operation,
    TargetDescriptor,
    TargetOutcome,
    TargetStatus,
)
from filemover.core.protocols import Connection
from filemover.core.timestamps import Clock, SystemClock, from_iso8601, to_iso8601

logger = get_logger(__name__)

_JOB_COLUMNS = [
    "id",
    "schedule_id",
    "status",
    "reason",
    "error",
    "source_path",
    "destination_path",
    "artifact_location",
    "artifact_size",
    "content_hash",
    "triggered_at",
    "started_at",
    "created_at",
    "updated_at",
    "completed_at",
]

_TARGET_COLUMNS = [
    "job_id",
    "target_id",
    "position",
    "host_ref",
    "destination_path",
    "credential_reference",
    "status",
    "reason",
    "last_error",
    "content_hash",
    "updated_at",
    "completed_at",
]

_ATTEMPT_COLUMNS = [
    "job_id",
    "operation",
    "target_id",
    "attempt",
    "started_at",
    "finished_at",
    "error_code",
    "error_message",
    "retryable",
]

_JOB_FIELDS = {"reason", "error", "artifact_location", "artifact_size", "content_hash"}


class JobRepository:
    """Repository for jobs, target outcomes and attempt records."""

    def __init__(
        self,
        conn: Connection,
        dialect: Dialect | None = None,
        clock: Clock | None = None,
    ) -> None:
        self.conn = conn
        self.dialect: Dialect = dialect or SQLiteDialect()
        self.clock: Clock = clock or SystemClock()

    def _ph(self, count: int = 1) -> str:
        return self.dialect.placeholders(count)

    # === Admission ===

    def admit(
        self,
        job_id: str,
        schedule_id: str,
        source_path: str,
        destination_path: str,
        targets: Iterable[TargetDescriptor],
        triggered_at: datetime | None = None,
    ) -> tuple[Job, bool]:
        """Create the job (Pending) and one Pending outcome per target if absent.

        Returns the stored job and whether this call created it. A job that
        already exists keeps its original target snapshot.
        """
        now = to_iso8601(self.clock.now())
        cursor = self.conn.execute(
            self.dialect.insert_or_ignore(
                "fm_jobs",
                [
                    "id",
                    "schedule_id",
                    "status",
                    "source_path",
                    "destination_path",
                    "triggered_at",
                    "created_at",
                    "updated_at",
                ],
            ),
            (
                job_id,
                schedule_id,
                JobStatus.PENDING.value,
                source_path,
                destination_path,
                to_iso8601(triggered_at),
                now,
                now,
            ),
        )
        created = cursor.rowcount == 1

        if created:
            insert_target = self.dialect.insert_or_ignore(
                "fm_job_targets",
                [
                    "job_id",
                    "target_id",
                    "position",
                    "host_ref",
                    "destination_path",
                    "credential_reference",
                    "status",
                    "updated_at",
                ],
            )
            for position, target in enumerate(targets):
                self.conn.execute(
                    insert_target,
                    (
                        job_id,
                        target.target_id,
                        position,
                        target.host_ref,
                        target.destination_path or destination_path,
                        target.credential_reference,
                        TargetStatus.PENDING.value,
                        now,
                    ),
                )
        self.conn.commit()

        job = self.get(job_id)
        if created:
            logger.info("job_admitted", job_id=job_id, schedule_id=schedule_id, targets=len(job.targets))  # type: ignore[union-attr]
        return job, created  # type: ignore[return-value]

    # === Jobs ===

    def get(self, job_id: str, include_targets: bool = True) -> Job | None:
        cursor = self.conn.execute(
            f"SELECT {', '.join(_JOB_COLUMNS)} FROM fm_jobs WHERE id = {self._ph()}",
            (job_id,),
        )
        row = cursor.fetchone()
        if row is None:
            return None
        job = self._row_to_job(row)
        job.generation_attempts = self.count_attempts(job_id, Operation.GENERATION)
        if include_targets:
            job.targets = self.list_outcomes(job_id)
        return job

    def get_status(self, job_id: str) -> JobStatus | None:
        cursor = self.conn.execute(
            f"SELECT status FROM fm_jobs WHERE id = {self._ph()}", (job_id,)
        )
        row = cursor.fetchone()
        return JobStatus(row[0]) if row else None

    def transition(
        self,
        job_id: str,
        from_statuses: Iterable[JobStatus],
        to_status: JobStatus,
        **fields: Any,
    ) -> bool:
        """Compare-and-set the job status.

        Only succeeds while the stored status is one of ``from_statuses``.
        Extra ``fields`` (reason, error, artifact_location, artifact_size,
        content_hash) are written in the same statement.
        """
        allowed = [s.value for s in from_statuses]
        if not allowed:
            return False
        unknown = set(fields) - _JOB_FIELDS
        if unknown:
            raise ValueError(f"Unknown job fields: {sorted(unknown)}")

        now = to_iso8601(self.clock.now())
        set_parts = [f"status = {self._ph()}", f"updated_at = {self._ph()}"]
        params: list[Any] = [to_status.value, now]
        if to_status is JobStatus.GENERATING:
            set_parts.append(f"started_at = {self._ph()}")
            params.append(now)
        if to_status in TERMINAL_JOB_STATUSES:
            set_parts.append(f"completed_at = {self._ph()}")
            params.append(now)
        for column, value in fields.items():
            set_parts.append(f"{column} = {self._ph()}")
            params.append(value)

        params.append(job_id)
        params.extend(allowed)
        cursor = self.conn.execute(
            f"""
            UPDATE fm_jobs SET {', '.join(set_parts)}
            WHERE id = {self._ph()} AND status IN ({self._ph(len(allowed))})
            """,
            params,
        )
        self.conn.commit()
        won = cursor.rowcount == 1
        if won:
            logger.info(
                "job_transitioned",
                job_id=job_id,
                to_status=to_status.value,
                reason=fields.get("reason"),
            )
        return won

    def list_jobs(
        self,
        schedule_id: str | None = None,
        status: JobStatus | None = None,
        limit: int = 100,
    ) -> list[Job]:
        query = f"SELECT {', '.join(_JOB_COLUMNS)} FROM fm_jobs WHERE 1=1"
        params: list[Any] = []
        if schedule_id:
            query += f" AND schedule_id = {self._ph()}"
            params.append(schedule_id)
        if status:
            query += f" AND status = {self._ph()}"
            params.append(status.value)
        query += f" ORDER BY created_at DESC, id DESC LIMIT {self._ph()}"
        params.append(limit)
        cursor = self.conn.execute(query, params)
        return [self._row_to_job(row) for row in cursor.fetchall()]

    def find_stalled(self, older_than: datetime, limit: int = 100) -> list[Job]:
        """Non-terminal jobs whose last update is before ``older_than``."""
        active = sorted(s.value for s in ACTIVE_JOB_STATUSES)
        cursor = self.conn.execute(
            f"""
            SELECT {', '.join(_JOB_COLUMNS)} FROM fm_jobs
            WHERE status IN ({self._ph(len(active))}) AND updated_at < {self._ph()}
            ORDER BY updated_at
            LIMIT {self._ph()}
            """,
            (*active, to_iso8601(older_than), limit),
        )
        return [self._row_to_job(row) for row in cursor.fetchall()]

    # === Target outcomes ===

    def list_outcomes(self, job_id: str) -> list[TargetOutcome]:
        cursor = self.conn.execute(
            f"""
            SELECT {', '.join(_TARGET_COLUMNS)} FROM fm_job_targets
            WHERE job_id = {self._ph()} ORDER BY position
            """,
            (job_id,),
        )
        outcomes = [self._row_to_outcome(row) for row in cursor.fetchall()]
        counts = self._transfer_attempt_counts(job_id)
        for outcome in outcomes:
            outcome.attempts = counts.get(outcome.target_id, 0)
        return outcomes

    def get_outcome(self, job_id: str, target_id: str) -> TargetOutcome | None:
        cursor = self.conn.execute(
            f"""
            SELECT {', '.join(_TARGET_COLUMNS)} FROM fm_job_targets
            WHERE job_id = {self._ph()} AND target_id = {self._ph()}
            """,
            (job_id, target_id),
        )
        row = cursor.fetchone()
        if row is None:
            return None
        outcome = self._row_to_outcome(row)
        outcome.attempts = self.count_attempts(job_id, Operation.TRANSFER, target_id)
        return outcome

    def update_outcome(
        self,
        job_id: str,
        target_id: str,
        to_status: TargetStatus,
        from_statuses: Iterable[TargetStatus] | None = None,
        *,
        reason: str | None = None,
        last_error: str | None = None,
        content_hash: str | None = None,
    ) -> bool:
        """Write a target outcome; optionally only from ``from_statuses``.

        ``Sent`` outcomes are never overwritten.
        """
        now = to_iso8601(self.clock.now())
        set_parts = [
            f"status = {self._ph()}",
            f"reason = {self._ph()}",
            f"updated_at = {self._ph()}",
        ]
        params: list[Any] = [to_status.value, reason, now]
        if last_error is not None:
            set_parts.append(f"last_error = {self._ph()}")
            params.append(last_error)
        if content_hash is not None:
            set_parts.append(f"content_hash = {self._ph()}")
            params.append(content_hash)
        if to_status.is_terminal:
            set_parts.append(f"completed_at = {self._ph()}")
            params.append(now)

        allowed = (
            [s.value for s in from_statuses]
            if from_statuses is not None
            else [s.value for s in TargetStatus if s is not TargetStatus.SENT]
        )
        params.extend([job_id, target_id, *allowed])
        cursor = self.conn.execute(
            f"""
            UPDATE fm_job_targets SET {', '.join(set_parts)}
            WHERE job_id = {self._ph()} AND target_id = {self._ph()}
              AND status IN ({self._ph(len(allowed))})
            """,
            params,
        )
        self.conn.commit()
        return cursor.rowcount == 1

    # === Attempts ===

    def record_attempt(self, record: AttemptRecord) -> None:
        """Append one attempt. Re-recording the same attempt number is a no-op."""
        self.conn.execute(
            self.dialect.insert_or_ignore("fm_attempts", _ATTEMPT_COLUMNS),
            (
                record.job_id,
                record.operation.value,
                record.target_id,
                record.attempt,
                to_iso8601(record.started_at),
                to_iso8601(record.finished_at),
                record.error_code,
                record.error_message,
                1 if record.retryable else 0,
            ),
        )
        self.conn.commit()

    def list_attempts(
        self,
        job_id: str,
        operation: Operation | None = None,
        target_id: str | None = None,
    ) -> list[AttemptRecord]:
        query = f"SELECT {', '.join(_ATTEMPT_COLUMNS)} FROM fm_attempts WHERE job_id = {self._ph()}"
        params: list[Any] = [job_id]
        if operation is not None:
            query += f" AND operation = {self._ph()}"
            params.append(operation.value)
        if target_id is not None:
            query += f" AND target_id = {self._ph()}"
            params.append(target_id)
        query += " ORDER BY started_at, operation, target_id, attempt"
        cursor = self.conn.execute(query, params)
        return [self._row_to_attempt(row) for row in cursor.fetchall()]

    def count_attempts(self, job_id: str, operation: Operation, target_id: str = "") -> int:
        cursor = self.conn.execute(
            f"""
            SELECT COUNT(*) FROM fm_attempts
            WHERE job_id = {self._ph()} AND operation = {self._ph()} AND target_id = {self._ph()}
            """,
            (job_id, operation.value, target_id),
        )
        row = cursor.fetchone()
        return row[0] if row else 0

    def _transfer_attempt_counts(self, job_id: str) -> dict[str, int]:
        cursor = self.conn.execute(
            f"""
            SELECT target_id, COUNT(*) FROM fm_attempts
            WHERE job_id = {self._ph()} AND operation = {self._ph()}
            GROUP BY target_id
            """,
            (job_id, Operation.TRANSFER.value),
        )
        return {row[0]: row[1] for row in cursor.fetchall()}

    # === Private Helpers ===

    def _row_to_job(self, row: Any) -> Job:
        data = dict(zip(_JOB_COLUMNS, row, strict=False))
        return Job(
            id=data["id"],
            schedule_id=data["schedule_id"],
            status=JobStatus(data["status"]),
            reason=data["reason"],
            error=data["error"],
            source_path=data["source_path"] or "",
            destination_path=data["destination_path"] or "",
            artifact_location=data["artifact_location"],
            artifact_size=data["artifact_size"],
            content_hash=data["content_hash"],
            triggered_at=from_iso8601(data["triggered_at"]),
            started_at=from_iso8601(data["started_at"]),
            created_at=from_iso8601(data["created_at"]),
            updated_at=from_iso8601(data["updated_at"]),
            completed_at=from_iso8601(data["completed_at"]),
        )

    def _row_to_outcome(self, row: Any) -> TargetOutcome:
        data = dict(zip(_TARGET_COLUMNS, row, strict=False))
        return TargetOutcome(
            job_id=data["job_id"],
            target_id=data["target_id"],
            position=data["position"],
            host_ref=data["host_ref"] or "",
            destination_path=data["destination_path"] or "",
            credential_reference=data["credential_reference"] or "",
            status=TargetStatus(data["status"]),
            reason=data["reason"],
            last_error=data["last_error"],
            content_hash=data["content_hash"],
            updated_at=from_iso8601(data["updated_at"]),
            completed_at=from_iso8601(data["completed_at"]),
        )

    def _row_to_attempt(self, row: Any) -> AttemptRecord:
        data = dict(zip(_ATTEMPT_COLUMNS, row, strict=False))
        return AttemptRecord(
            job_id=data["job_id"],
            operation=Operation(data["operation"]),
            target_id=data["target_id"] or "",
            attempt=data["attempt"],
            started_at=from_iso8601(data["started_at"]),  # type: ignore[arg-type]
            finished_at=from_iso8601(data["finished_at"]),  # type: ignore[arg-type]
            error_code=data["error_code"],
            error_message=data["error_message"],
            retryable=bool(data["retryable"]),
        )
