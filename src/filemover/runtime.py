"""Runtime wiring: build every filemover component from settings.

``build_runtime(settings)`` is the single composition root used by the CLI,
the API app and the end-to-end tests. Any collaborator can be passed in to
replace the default (tests inject clocks, channels, fake sleeps and
transfer clients).

Backends:
    - ``redis_url`` set   → RedisCoordinator + RedisChannel per stage
    - ``redis_url`` unset → InMemoryCoordinator + InMemoryChannel
      (single process only)

Tags:
    filemover, runtime, wiring, composition-root
"""

from __future__ import annotations

import asyncio
import random
import sqlite3
import uuid
from dataclasses import dataclass, field
from datetime import timedelta
from pathlib import Path
from typing import Any

from filemover.coordination.memory import InMemoryCoordinator
from filemover.coordination.protocol import Coordinator
from filemover.coordination.redis import RedisCoordinator
from filemover.core.dialect import SQLiteDialect
from filemover.core.logging import get_logger
from filemover.core.schema import create_tables
from filemover.core.secrets import default_resolver
from filemover.core.settings import FileMoverSettings, get_settings
from filemover.core.timestamps import Clock, SystemClock
from filemover.execution.dlq import DeadLetterStore
from filemover.execution.retry import RetryCoordinator, RetryPolicy, SleepFn
from filemover.execution.worker import StageWorker
from filemover.jobs.aggregator import JobAggregator
from filemover.jobs.cache import StatusCache
from filemover.jobs.repository import JobRepository
from filemover.jobs.status import StatusService
from filemover.messaging.channel import GENERATION_CHANNEL, TRANSFER_CHANNEL, Channel
from filemover.messaging.memory import InMemoryChannel
from filemover.messaging.redis import RedisChannel
from filemover.observability.telemetry import LoggingTelemetry, Telemetry
from filemover.pipeline.artifacts import LocalArtifactStore
from filemover.pipeline.capabilities import (
    ArtifactGenerator,
    CredentialResolver,
    SecretsCredentialResolver,
    TransferClient,
)
from filemover.pipeline.generation import GenerationStage
from filemover.pipeline.local import FileSourceGenerator, LocalDirectoryTransferClient
from filemover.pipeline.transfer import TransferStage
from filemover.scheduling.cron import TimeZoneCronCalculator
from filemover.scheduling.poller import TriggerPoller
from filemover.scheduling.repository import ScheduleRepository

logger = get_logger(__name__)


def open_database(path: str | Path) -> sqlite3.Connection:
    """Open (creating if needed) the SQLite database and its tables."""
    if str(path) != ":memory:":
        Path(path).parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(str(path), check_same_thread=False)
    create_tables(conn)
    return conn


@dataclass
class Runtime:
    """Every wired component of one filemover process."""

    settings: FileMoverSettings
    conn: Any
    clock: Clock
    coordinator: Coordinator
    generation_channel: Channel
    transfer_channel: Channel
    schedules: ScheduleRepository
    jobs: JobRepository
    dead_letters: DeadLetterStore
    aggregator: JobAggregator
    status: StatusService
    retry: RetryCoordinator
    artifacts: LocalArtifactStore
    generation_stage: GenerationStage
    transfer_stage: TransferStage
    telemetry: Telemetry
    _stoppables: list[Any] = field(default_factory=list)

    def poller(self) -> TriggerPoller:
        poller = TriggerPoller(
            self.schedules,
            self.coordinator,
            self.generation_channel,
            clock=self.clock,
            interval_seconds=self.settings.poll_interval_seconds,
            lock_ttl_seconds=self.settings.lock_ttl_seconds,
            allow_degraded=self.settings.allow_degraded,
            publish_timeout=self.settings.call_timeout_seconds,
            telemetry=self.telemetry,
        )
        self._stoppables.append(poller)
        return poller

    def generation_worker(self) -> StageWorker:
        worker = StageWorker(
            self.generation_channel,
            self.generation_stage.handle,
            concurrency=self.settings.generation_concurrency,
            dead_letters=self.dead_letters,
            max_deliveries=self.settings.max_deliveries,
            heartbeat_interval=self.settings.consumer_lease_seconds / 3,
            name="generation",
            clock=self.clock,
        )
        self._stoppables.append(worker)
        return worker

    def transfer_worker(self) -> StageWorker:
        worker = StageWorker(
            self.transfer_channel,
            self.transfer_stage.handle,
            concurrency=self.settings.transfer_concurrency,
            dead_letters=self.dead_letters,
            max_deliveries=self.settings.max_deliveries,
            heartbeat_interval=self.settings.consumer_lease_seconds / 3,
            name="transfer",
            clock=self.clock,
        )
        self._stoppables.append(worker)
        return worker

    async def run_all(self) -> None:
        """Poller and both workers in this process until ``stop()``."""
        await self.recover_in_flight()
        await asyncio.gather(
            self.poller().run(),
            self.generation_worker().run(),
            self.transfer_worker().run(),
        )

    async def recover_in_flight(self) -> int:
        """Requeue messages held by crashed consumers (expired leases) on the Redis channels."""
        recovered = 0
        for channel in (self.generation_channel, self.transfer_channel):
            if isinstance(channel, RedisChannel):
                recovered += await channel.requeue_in_flight()
        if recovered:
            logger.warning("in_flight_messages_requeued", count=recovered)
        return recovered

    def stop(self) -> None:
        for component in self._stoppables:
            component.stop()

    async def aclose(self) -> None:
        self.stop()
        await self.generation_channel.close()
        await self.transfer_channel.close()
        await self.coordinator.close()
        self.conn.close()


def build_runtime(
    settings: FileMoverSettings | None = None,
    *,
    conn: Any | None = None,
    clock: Clock | None = None,
    coordinator: Coordinator | None = None,
    generation_channel: Channel | None = None,
    transfer_channel: Channel | None = None,
    generator: ArtifactGenerator | None = None,
    credentials: CredentialResolver | None = None,
    transfer_client: TransferClient | None = None,
    telemetry: Telemetry | None = None,
    sleep: SleepFn | None = None,
    rng: random.Random | None = None,
) -> Runtime:
    settings = settings or get_settings()
    clock = clock or SystemClock()
    telemetry = telemetry or LoggingTelemetry()
    conn = conn if conn is not None else open_database(settings.database_path)  # type: ignore[arg-type]
    dialect = SQLiteDialect()

    if coordinator is None:
        if settings.redis_url:
            coordinator = RedisCoordinator.from_url(
                settings.redis_url,
                key_prefix=settings.channel_prefix,
                clock=clock,
                default_status_ttl_seconds=settings.status_ttl_seconds,
            )
        else:
            coordinator = InMemoryCoordinator(clock, settings.status_ttl_seconds)

    generation_channel = generation_channel or _channel(settings, GENERATION_CHANNEL)
    transfer_channel = transfer_channel or _channel(settings, TRANSFER_CHANNEL)

    calculator = TimeZoneCronCalculator(horizon=timedelta(days=settings.cron_horizon_days))
    schedules = ScheduleRepository(conn, dialect, clock=clock, calculator=calculator)
    jobs = JobRepository(conn, dialect, clock=clock)
    dead_letters = DeadLetterStore(conn, dialect, clock=clock)
    cache = StatusCache(coordinator, settings.status_ttl_seconds)
    aggregator = JobAggregator(jobs, cache, telemetry)
    status = StatusService(
        jobs,
        schedules,
        aggregator,
        dead_letters=dead_letters,
        cache=cache,
        clock=clock,
        alert_threshold_seconds=settings.alert_threshold_seconds,
    )
    retry = RetryCoordinator(
        RetryPolicy.from_settings(settings), dead_letters, clock=clock, sleep=sleep, rng=rng
    )
    artifacts = LocalArtifactStore(
        settings.artifact_dir,  # type: ignore[arg-type]
        max_bytes=settings.max_artifact_bytes,
        chunk_size=settings.chunk_size,
    )

    generation_stage = GenerationStage(
        jobs,
        aggregator,
        generator or FileSourceGenerator(settings.source_root, settings.chunk_size),  # type: ignore[arg-type]
        artifacts,
        transfer_channel,
        retry,
        generation_timeout=settings.generation_timeout_seconds,
        call_timeout=settings.call_timeout_seconds,
        telemetry=telemetry,
        clock=clock,
    )
    transfer_stage = TransferStage(
        jobs,
        aggregator,
        artifacts,
        credentials or SecretsCredentialResolver(default_resolver(settings.secrets_dir)),
        transfer_client or LocalDirectoryTransferClient(settings.target_root),  # type: ignore[arg-type]
        retry,
        concurrency=settings.transfer_concurrency,
        call_timeout=settings.call_timeout_seconds,
        transfer_timeout=settings.transfer_timeout_seconds,
        telemetry=telemetry,
    )

    logger.debug(
        "runtime_built",
        backend="redis" if settings.redis_url else "memory",
        database=str(settings.database_path),
        instance_id=settings.instance_id,
    )
    return Runtime(
        settings=settings,
        conn=conn,
        clock=clock,
        coordinator=coordinator,
        generation_channel=generation_channel,
        transfer_channel=transfer_channel,
        schedules=schedules,
        jobs=jobs,
        dead_letters=dead_letters,
        aggregator=aggregator,
        status=status,
        retry=retry,
        artifacts=artifacts,
        generation_stage=generation_stage,
        transfer_stage=transfer_stage,
        telemetry=telemetry,
    )


def _channel(settings: FileMoverSettings, name: str) -> Channel:
    if settings.redis_url:
        return RedisChannel.from_url(
            settings.redis_url,
            name,
            key_prefix=settings.channel_prefix,
            consumer_id=f"{settings.instance_id}-{uuid.uuid4().hex[:8]}",
            lease_seconds=settings.consumer_lease_seconds,
        )
    return InMemoryChannel(name)
