"""Transfer stage: push one job's artifact to one target.

Manifesto:
    Each target is retried on its own budget and writes only its own
    outcome row. A replayed request for a target that is already ``Sent``
    with the same content hash does no network work and reports success
    again, which makes at-least-once delivery safe to replay.

Architecture:
    ::

        TransferRequest
              │
              ▼
        outcome Sent + same hash ──► skip, notify aggregator
        outcome Failed           ──► stop
        job terminal             ──► outcome Failed "Cancelled"
              │
              ▼
        outcome → Sending
              │
              ▼
        RetryCoordinator[transfer]  (job re-checked before every retry)
            resolve credential (timeout)
            stream artifact chunks → TransferClient.send (deadline), hashing
              │
              ▼
        outcome Sent (hash) | Failed (reason) ──► JobAggregator.on_outcome

Error classification:
    PermissionError                                  → TransferAuthFailed
    FileNotFoundError, NotADirectoryError,
    IsADirectoryError, FileExistsError               → TransferDestinationInvalid
    CredentialNotFound                               → terminal as raised
    ConnectionError, TimeoutError, CallTimeout,
    anything else                                    → TransferTransient

Tags:
    filemover, pipeline, transfer, retry, idempotency
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator

from filemover.core.errors import (
    FileMoverError,
    TransferAuthFailedError,
    TransferDestinationInvalidError,
    TransferError,
    TransferTransientError,
)
from filemover.core.hashing import StreamingHash
from filemover.core.logging import LogContext, get_logger
from filemover.core.models import AttemptRecord, JobStatus, Operation, TargetStatus
from filemover.execution.retry import RetryCoordinator
from filemover.execution.timeout import call_with_timeout, deadline, iter_with_timeout
from filemover.jobs.aggregator import JobAggregator
from filemover.jobs.repository import JobRepository
from filemover.messaging.channel import Delivery
from filemover.messaging.messages import TransferRequest
from filemover.observability.telemetry import NullTelemetry, Telemetry
from filemover.pipeline.artifacts import LocalArtifactStore
from filemover.pipeline.capabilities import CredentialResolver, TransferClient

logger = get_logger(__name__)

_DESTINATION_ERRORS = (FileNotFoundError, NotADirectoryError, IsADirectoryError, FileExistsError)


def classify_transfer_error(error: Exception) -> FileMoverError:
    """Map whatever a transfer client raised onto the transfer error taxonomy."""
    if isinstance(error, FileMoverError):
        return error
    if isinstance(error, PermissionError):
        return TransferAuthFailedError(str(error) or "Credentials rejected", cause=error)
    if isinstance(error, _DESTINATION_ERRORS):
        return TransferDestinationInvalidError(str(error) or "Invalid destination", cause=error)
    return TransferTransientError(f"{type(error).__name__}: {error}", cause=error)


class TransferStage:
    """Handler for the ``transfer`` channel."""

    def __init__(
        self,
        jobs: JobRepository,
        aggregator: JobAggregator,
        artifacts: LocalArtifactStore,
        credentials: CredentialResolver,
        client: TransferClient,
        retry: RetryCoordinator,
        *,
        concurrency: int = 8,
        call_timeout: float = 30.0,
        transfer_timeout: float = 600.0,
        telemetry: Telemetry | None = None,
    ) -> None:
        self.jobs = jobs
        self.aggregator = aggregator
        self.artifacts = artifacts
        self.credentials = credentials
        self.client = client
        self.retry = retry
        self.call_timeout = call_timeout
        self.transfer_timeout = transfer_timeout
        self.telemetry: Telemetry = telemetry or NullTelemetry()
        self._slots = asyncio.Semaphore(concurrency)

    async def handle(self, delivery: Delivery) -> None:
        request = TransferRequest.from_json(delivery.body)
        async with LogContext(job_id=request.job_id, target_id=request.target_id):
            async with self._slots:
                await self.process(request)

    async def process(self, request: TransferRequest) -> TargetStatus | None:
        job_id, target_id = request.job_id, request.target_id
        outcome = self.jobs.get_outcome(job_id, target_id)
        if outcome is None:
            logger.error("transfer_target_unknown")
            return None

        if outcome.status is TargetStatus.SENT:
            if outcome.content_hash != request.content_hash:
                logger.warning(
                    "transfer_sent_hash_differs",
                    stored_hash=outcome.content_hash,
                    request_hash=request.content_hash,
                )
            else:
                logger.info("transfer_already_sent")
            await self.aggregator.on_outcome(job_id, target_id)
            return TargetStatus.SENT

        if outcome.status is TargetStatus.FAILED:
            logger.info("transfer_already_failed", reason=outcome.reason)
            await self.aggregator.on_outcome(job_id, target_id)
            return TargetStatus.FAILED

        job_status = self.jobs.get_status(job_id)
        if job_status is None or job_status.is_terminal:
            self.jobs.update_outcome(
                job_id, target_id, TargetStatus.FAILED, reason="Cancelled", last_error=_name(job_status)
            )
            logger.info("transfer_skipped_job_terminal", job_status=_name(job_status))
            await self.aggregator.on_outcome(job_id, target_id)
            return TargetStatus.FAILED

        self.jobs.update_outcome(
            job_id, target_id, TargetStatus.SENDING, (TargetStatus.PENDING, TargetStatus.SENDING)
        )
        result = await self.retry.run(
            Operation.TRANSFER,
            lambda attempt: self._attempt(request),
            job_id=job_id,
            target_id=target_id,
            start_attempt=self.jobs.count_attempts(job_id, Operation.TRANSFER, target_id) + 1,
            payload=request.model_dump(mode="json", by_alias=True),
            on_attempt=self._on_attempt,
            should_continue=lambda: self._job_active(job_id),
            classify=lambda e: classify_transfer_error(e).retryable,
        )

        if result.ok:
            self.jobs.update_outcome(
                job_id, target_id, TargetStatus.SENT, content_hash=result.value
            )
            logger.info("transfer_sent", attempts=result.attempts)
            status = TargetStatus.SENT
        else:
            self.jobs.update_outcome(
                job_id,
                target_id,
                TargetStatus.FAILED,
                reason=result.reason,
                last_error=result.last_error,
            )
            logger.warning("transfer_failed", reason=result.reason, attempts=result.attempts)
            status = TargetStatus.FAILED

        await self.aggregator.on_outcome(job_id, target_id)
        return status

    async def _attempt(self, request: TransferRequest) -> str:
        """One try: credential, stream, verify. Returns the streamed hash."""
        if not await self.artifacts.exists(request.artifact_location):
            raise TransferError(f"Artifact missing: {request.artifact_location}")

        credential = await call_with_timeout(
            self.credentials.resolve(request.credential_reference),
            self.call_timeout,
            "credential.resolve",
        )
        digest = StreamingHash()

        async def chunks() -> AsyncIterator[bytes]:
            async for chunk in iter_with_timeout(
                self.artifacts.read(request.artifact_location), self.call_timeout, "artifact.read"
            ):
                digest.update(chunk)
                yield chunk

        try:
            async with deadline(self.transfer_timeout, f"transfer to {request.host_ref}"):
                await self.client.send(request.target(), credential, request.destination_path, chunks())
        except Exception as e:
            raise classify_transfer_error(e) from e

        streamed = digest.hexdigest()
        if request.content_hash and streamed != request.content_hash:
            raise TransferError(
                f"Artifact content changed: expected {request.content_hash}, streamed {streamed}"
            )
        return streamed

    def _on_attempt(self, record: AttemptRecord) -> None:
        self.jobs.record_attempt(record)
        self.telemetry.emit_metric(
            "transfer_attempts_total",
            1,
            outcome="success" if record.succeeded else "failure",
            code=record.error_code or "",
        )

    async def _job_active(self, job_id: str) -> bool:
        status = self.jobs.get_status(job_id)
        return status is not None and not status.is_terminal


def _name(status: JobStatus | None) -> str | None:
    return status.value if status else None
