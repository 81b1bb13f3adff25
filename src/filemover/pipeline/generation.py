"""Generation stage: admit a job, build its artifact, fan out transfers.

Manifesto:
    A generation request may be delivered more than once. Only the delivery
    that moves the job out of Pending does any work; every other delivery
    sees a non-Pending job and acks without touching state. Fan-out happens
    only after the artifact is durably stored and the job is Generated, so
    a failed generation never leaves half the targets with work to do.

Architecture:
    ::

        GenerationRequest
              │
              ▼
        admit (job + Pending outcomes, insert-if-absent)
              │ status != Pending ──► skip (duplicate delivery)
              ▼
        CAS Pending → Generating
              │
              ▼
        RetryCoordinator[generation]
            generator.generate(source) ─► LocalArtifactStore.write (size ceiling)
              │ ArtifactTooLarge / GenerationFailed / RetriesExhausted ──► Failed
              ▼
        CAS Generating → Generated (location, size, sha256)
              │ lost (cancelled) ──► stop
              ▼
        RetryCoordinator[fan_out]
            publish one TransferRequest per target
              │ RetriesExhausted ──► Failed
              ▼
        CAS Generated → Sending

Guardrails:
    ❌ DON'T: Raise terminal errors out of ``handle``
    ✅ DO: Record them on the job (reason = error code) and return

    ❌ DON'T: Re-read the schedule for targets
    ✅ DO: Fan out to the outcomes created at admission

Tags:
    filemover, pipeline, generation, fan-out, idempotency
"""

from __future__ import annotations

import time
from typing import Any

from filemover.core.errors import (
    ArtifactTooLargeError,
    FileMoverError,
    GenerationFailedError,
)
from filemover.core.logging import LogContext, get_logger
from filemover.core.models import Job, JobStatus, Operation
from filemover.core.timestamps import Clock, SystemClock
from filemover.execution.retry import RetryCoordinator
from filemover.execution.timeout import call_with_timeout, deadline, iter_with_timeout
from filemover.jobs.aggregator import JobAggregator
from filemover.jobs.repository import JobRepository
from filemover.messaging.channel import Channel, Delivery
from filemover.messaging.messages import GenerationRequest, TransferRequest
from filemover.observability.telemetry import NullTelemetry, Telemetry
from filemover.pipeline.artifacts import LocalArtifactStore, StoredArtifact
from filemover.pipeline.capabilities import ArtifactGenerator

logger = get_logger(__name__)


def classify_generation_error(error: Exception) -> bool:
    """True when another generation attempt could succeed.

    Errors the generator did not classify itself are treated as transient.
    """
    if isinstance(error, FileMoverError):
        return error.retryable
    return True


class GenerationStage:
    """Handler for the ``generation`` channel."""

    def __init__(
        self,
        jobs: JobRepository,
        aggregator: JobAggregator,
        generator: ArtifactGenerator,
        artifacts: LocalArtifactStore,
        transfer_channel: Channel,
        retry: RetryCoordinator,
        *,
        generation_timeout: float = 300.0,
        call_timeout: float = 30.0,
        telemetry: Telemetry | None = None,
        clock: Clock | None = None,
    ) -> None:
        self.jobs = jobs
        self.aggregator = aggregator
        self.generator = generator
        self.artifacts = artifacts
        self.transfer_channel = transfer_channel
        self.retry = retry
        self.generation_timeout = generation_timeout
        self.call_timeout = call_timeout
        self.telemetry: Telemetry = telemetry or NullTelemetry()
        self.clock: Clock = clock or SystemClock()

    async def handle(self, delivery: Delivery) -> None:
        """Worker entry point. Invalid bodies raise ``ValidationError``."""
        request = GenerationRequest.from_json(delivery.body)
        async with LogContext(job_id=request.job_id, schedule_id=request.schedule_id):
            await self.process(request)

    async def process(self, request: GenerationRequest) -> JobStatus | None:
        """Run one generation request; returns the job status it left behind."""
        job, created = self.jobs.admit(
            job_id=request.job_id,
            schedule_id=request.schedule_id,
            source_path=request.source_path,
            destination_path=request.destination_path,
            targets=[t.to_descriptor() for t in request.targets],
            triggered_at=request.timestamp,
        )
        if job.status is not JobStatus.PENDING:
            logger.info("generation_duplicate_skipped", status=job.status.value, created=created)
            return job.status

        if not self.jobs.transition(job.id, [JobStatus.PENDING], JobStatus.GENERATING):
            logger.info("generation_claim_lost")
            return self.jobs.get_status(job.id)
        await self.aggregator.publish(job.id)

        started = time.monotonic()
        outcome = await self.retry.run(
            Operation.GENERATION,
            lambda attempt: self._generate_once(request),
            job_id=job.id,
            start_attempt=self.jobs.count_attempts(job.id, Operation.GENERATION) + 1,
            payload=request.model_dump(mode="json", by_alias=True),
            on_attempt=self.jobs.record_attempt,
            should_continue=lambda: self._is_active(job.id),
            classify=classify_generation_error,
        )
        self.telemetry.emit_metric("generation_duration_seconds", time.monotonic() - started)

        if outcome.cancelled:
            await self.artifacts.delete(job.id)
            return self.jobs.get_status(job.id)
        if not outcome.ok:
            reason = self._failure_reason(outcome.error, outcome.exhausted)
            await self.aggregator.fail(
                job.id, reason, outcome.last_error, from_statuses=(JobStatus.GENERATING,)
            )
            self.telemetry.emit_trace("generation", job_id=job.id, status="failed", reason=reason)
            return self.jobs.get_status(job.id)

        artifact: StoredArtifact = outcome.value  # type: ignore[assignment]
        self.telemetry.emit_metric("artifact_bytes", artifact.size)
        generated = self.jobs.transition(
            job.id,
            [JobStatus.GENERATING],
            JobStatus.GENERATED,
            artifact_location=artifact.location,
            artifact_size=artifact.size,
            content_hash=artifact.content_hash,
        )
        if not generated:
            logger.info("generation_result_discarded", status=_name(self.jobs.get_status(job.id)))
            # Cancelled mid-generation, so no transfer will ever read this artifact.
            await self.artifacts.delete(job.id)
            return self.jobs.get_status(job.id)
        logger.info("artifact_generated", size=artifact.size, content_hash=artifact.content_hash)

        return await self._fan_out(request, artifact)

    async def _generate_once(self, request: GenerationRequest) -> StoredArtifact:
        chunks = iter_with_timeout(
            self.generator.generate(request.source_path), self.call_timeout, "generation.chunk"
        )
        async with deadline(self.generation_timeout, "generation"):
            return await self.artifacts.write(request.job_id, chunks)

    async def _fan_out(self, request: GenerationRequest, artifact: StoredArtifact) -> JobStatus | None:
        job: Job = self.jobs.get(request.job_id)  # type: ignore[assignment]
        messages = [
            TransferRequest(
                job_id=job.id,
                schedule_id=job.schedule_id,
                target_id=outcome.target_id,
                host_ref=outcome.host_ref,
                artifact_location=artifact.location,
                destination_path=outcome.destination_path,
                credential_reference=outcome.credential_reference,
                content_hash=artifact.content_hash,
                timestamp=self.clock.now(),
            ).to_json()
            for outcome in job.targets
        ]
        published: set[int] = set()

        async def publish_all(attempt: int) -> int:
            for index, body in enumerate(messages):
                if index in published:
                    continue
                await call_with_timeout(
                    self.transfer_channel.publish(body), self.call_timeout, "transfer.publish"
                )
                published.add(index)
            return len(published)

        outcome = await self.retry.run(
            Operation.FAN_OUT,
            publish_all,
            job_id=job.id,
            payload={"messages": messages},
            on_attempt=self.jobs.record_attempt,
            should_continue=lambda: self._is_active(job.id),
        )
        if outcome.cancelled:
            return self.jobs.get_status(job.id)
        if not outcome.ok:
            await self.aggregator.fail(
                job.id,
                self._failure_reason(outcome.error, outcome.exhausted),
                outcome.last_error,
                from_statuses=(JobStatus.GENERATED,),
            )
            return self.jobs.get_status(job.id)

        logger.info("transfers_fanned_out", targets=len(messages))
        self.jobs.transition(job.id, [JobStatus.GENERATED], JobStatus.SENDING)
        await self.aggregator.publish(job.id)
        # Fast targets may have finished before the job reached Sending.
        await self.aggregator.on_outcome(job.id)
        self.telemetry.emit_trace("generation", job_id=job.id, status="fanned_out", targets=len(messages))
        return self.jobs.get_status(job.id)

    async def _is_active(self, job_id: str) -> bool:
        status = self.jobs.get_status(job_id)
        return status is not None and not status.is_terminal

    @staticmethod
    def _failure_reason(error: Exception | None, exhausted: bool) -> str:
        if exhausted:
            return "RetriesExhausted"
        if isinstance(error, ArtifactTooLargeError):
            return ArtifactTooLargeError.code
        return GenerationFailedError.code


def _name(status: Any) -> str | None:
    return status.value if status else None
