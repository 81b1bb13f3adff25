"""Trigger poller: turn due schedules into generation requests.

Manifesto:
    Every instance runs the poller; at most one of them fires a given
    schedule occurrence. The lock keeps two pollers from working on the
    same schedule at once and the compare-and-set on ``next_run_utc``
    keeps a slow poller whose lock expired from firing the same occurrence
    twice.

Tags:
    filemover, scheduling, poller, distributed-lock, beat-as-poller

Doc-Types:
    api-reference, architecture-diagram


┌──────────────────────────────────────────────────────────────────────────────┐
│  poll_once()                                                                  │
│                                                                               │
│   get_due_schedules(now)                                                      │
│     for each due schedule:                                                    │
│       acquire lock:{schedule_id} (SET NX + TTL)                               │
│         ├── None ─────────────────────► skip (another instance has it)        │
│         ├── CoordinatorUnavailable ───► degraded path (allow_degraded)        │
│         └── lease                                                             │
│               re-read schedule, still due?                                    │
│               compute next run (unevaluable → park, next_run = NULL)          │
│               publish GenerationRequest ── fails ──► release, nothing moves   │
│               CAS advance next_run/last_run ── fails ──► lock left to expire  │
│               release lock                                                    │
│                                                                               │
│  Degraded path (no coordinator):                                              │
│       CAS advance first (claims the occurrence)                              │
│       publish ── fails ──► CAS roll back to the previous next/last run       │
│                                                                               │
│  Misfires coalesce: however many occurrences were missed, one request is     │
│  emitted and next_run_utc = next occurrence after now.                       │
└──────────────────────────────────────────────────────────────────────────────┘
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from filemover.coordination.protocol import Coordinator, lock_key
from filemover.core.errors import CoordinatorUnavailableError, SchedulingError
from filemover.core.logging import get_logger
from filemover.core.models import LockLease, Schedule
from filemover.core.timestamps import Clock, SystemClock, generate_ulid
from filemover.execution.timeout import call_with_timeout
from filemover.messaging.channel import Channel
from filemover.messaging.messages import GenerationRequest, TargetRef
from filemover.observability.telemetry import NullTelemetry, Telemetry
from filemover.scheduling.repository import ScheduleRepository

logger = get_logger(__name__)


@dataclass
class PollResult:
    """What happened to one due schedule in one cycle."""

    schedule_id: str
    action: str
    job_id: str | None = None
    next_run_utc: datetime | None = None
    error: str | None = None

    EMITTED = "emitted"
    LOCKED = "locked"
    NOT_DUE = "not_due"
    PARKED = "parked"
    EMIT_FAILED = "emit_failed"
    ADVANCE_FAILED = "advance_failed"
    CLAIM_LOST = "claim_lost"
    UNAVAILABLE = "coordinator_unavailable"

    def to_dict(self) -> dict[str, Any]:
        return {
            "schedule_id": self.schedule_id,
            "action": self.action,
            "job_id": self.job_id,
            "next_run_utc": self.next_run_utc.isoformat() if self.next_run_utc else None,
            "error": self.error,
        }


@dataclass
class PollCycle:
    started_at: datetime
    degraded: bool = False
    results: list[PollResult] = field(default_factory=list)

    @property
    def emitted(self) -> list[PollResult]:
        return [r for r in self.results if r.action == PollResult.EMITTED]


@dataclass
class PollerStats:
    cycles: int = 0
    emitted: int = 0
    skipped: int = 0
    failed: int = 0
    degraded_cycles: int = 0
    last_cycle_at: datetime | None = None
    last_error: str | None = None

    def record(self, cycle: PollCycle) -> None:
        self.cycles += 1
        self.last_cycle_at = cycle.started_at
        if cycle.degraded:
            self.degraded_cycles += 1
        for result in cycle.results:
            if result.action == PollResult.EMITTED:
                self.emitted += 1
            elif result.action in (PollResult.EMIT_FAILED, PollResult.ADVANCE_FAILED, PollResult.PARKED):
                self.failed += 1
                self.last_error = result.error
            else:
                self.skipped += 1

    def to_dict(self) -> dict[str, Any]:
        return {
            "cycles": self.cycles,
            "emitted": self.emitted,
            "skipped": self.skipped,
            "failed": self.failed,
            "degraded_cycles": self.degraded_cycles,
            "last_cycle_at": self.last_cycle_at.isoformat() if self.last_cycle_at else None,
            "last_error": self.last_error,
        }


class TriggerPoller:
    """Fixed-interval scan for due schedules.

    Example:
        >>> poller = TriggerPoller(repo, coordinator, generation_channel)
        >>> cycle = await poller.poll_once()
        >>> [r.job_id for r in cycle.emitted]
    """

    def __init__(
        self,
        schedules: ScheduleRepository,
        coordinator: Coordinator,
        channel: Channel,
        *,
        clock: Clock | None = None,
        interval_seconds: float = 30.0,
        lock_ttl_seconds: int = 300,
        allow_degraded: bool = True,
        publish_timeout: float = 30.0,
        telemetry: Telemetry | None = None,
    ) -> None:
        self.schedules = schedules
        self.coordinator = coordinator
        self.channel = channel
        self.clock: Clock = clock or SystemClock()
        self.interval = interval_seconds
        self.lock_ttl_seconds = lock_ttl_seconds
        self.allow_degraded = allow_degraded
        self.publish_timeout = publish_timeout
        self.telemetry: Telemetry = telemetry or NullTelemetry()
        self.stats = PollerStats()
        self._stopping = asyncio.Event()

    # === Lifecycle ===

    async def run(self) -> None:
        """Poll every ``interval`` seconds until ``stop()``."""
        logger.info("poller_started", interval_seconds=self.interval)
        while not self._stopping.is_set():
            try:
                await self.poll_once()
            except Exception as e:
                self.stats.last_error = str(e)
                logger.exception("poll_cycle_failed", error=str(e))
            try:
                await asyncio.wait_for(self._stopping.wait(), timeout=self.interval)
            except TimeoutError:
                pass
        logger.info("poller_stopped", **self.stats.to_dict())

    def stop(self) -> None:
        self._stopping.set()

    # === Cycle ===

    async def poll_once(self) -> PollCycle:
        cycle = PollCycle(started_at=self.clock.now())
        due = self.schedules.get_due_schedules(cycle.started_at)
        if due:
            logger.info("schedules_due", count=len(due))

        for schedule in due:
            try:
                lease = await self.coordinator.acquire_lock(lock_key(schedule.id), self.lock_ttl_seconds)
            except CoordinatorUnavailableError as e:
                if not self.allow_degraded:
                    logger.warning("poller_coordinator_unavailable", schedule_id=schedule.id, error=str(e))
                    cycle.results.append(PollResult(schedule.id, PollResult.UNAVAILABLE, error=str(e)))
                    continue
                if not cycle.degraded:
                    logger.warning("poller_degraded", error=str(e))
                cycle.degraded = True
                cycle.results.append(await self._trigger_degraded(schedule))
                continue

            if lease is None:
                logger.debug("schedule_locked_elsewhere", schedule_id=schedule.id)
                cycle.results.append(PollResult(schedule.id, PollResult.LOCKED))
                continue
            cycle.results.append(await self._trigger_locked(schedule.id, lease))

        self.stats.record(cycle)
        return cycle

    async def _trigger_locked(self, schedule_id: str, lease: LockLease) -> PollResult:
        release = True
        try:
            schedule = self.schedules.get(schedule_id)
            now = self.clock.now()
            if schedule is None or not schedule.is_due(now):
                return PollResult(schedule_id, PollResult.NOT_DUE)

            next_run, error = self._next_run(schedule, now)
            if error is not None:
                return self._park(schedule, error)

            job_id = generate_ulid()
            try:
                await self._emit(schedule, job_id, now)
            except Exception as e:
                logger.exception("generation_emit_failed", schedule_id=schedule.id, error=str(e))
                return PollResult(schedule.id, PollResult.EMIT_FAILED, job_id=job_id, error=str(e))

            if not self.schedules.advance(schedule.id, schedule.next_run_utc, now, next_run):
                release = False
                logger.error("schedule_advance_failed", schedule_id=schedule.id, job_id=job_id)
                return PollResult(
                    schedule.id, PollResult.ADVANCE_FAILED, job_id=job_id, error="next_run_utc moved"
                )
            return self._emitted(schedule, job_id, next_run)
        finally:
            if release:
                await self._release(lease)

    async def _trigger_degraded(self, due: Schedule) -> PollResult:
        now = self.clock.now()
        next_run, error = self._next_run(due, now)
        if error is not None:
            return self._park(due, error)

        if not self.schedules.advance(due.id, due.next_run_utc, now, next_run):
            return PollResult(due.id, PollResult.CLAIM_LOST)

        job_id = generate_ulid()
        try:
            await self._emit(due, job_id, now)
        except Exception as e:
            rolled_back = self.schedules.advance(due.id, next_run, due.last_run_utc, due.next_run_utc)
            logger.exception(
                "generation_emit_failed",
                schedule_id=due.id,
                degraded=True,
                rolled_back=rolled_back,
                error=str(e),
            )
            return PollResult(due.id, PollResult.EMIT_FAILED, job_id=job_id, error=str(e))
        return self._emitted(due, job_id, next_run)

    # === Private Helpers ===

    def _next_run(self, schedule: Schedule, now: datetime) -> tuple[datetime | None, SchedulingError | None]:
        try:
            return self.schedules.compute_next_run(schedule, now), None
        except SchedulingError as e:
            return None, e

    def _park(self, schedule: Schedule, error: SchedulingError) -> PollResult:
        self.schedules.clear_next_run(schedule.id, schedule.next_run_utc)
        logger.error("schedule_parked", schedule_id=schedule.id, **error.to_dict())
        return PollResult(schedule.id, PollResult.PARKED, error=error.code)

    async def _emit(self, schedule: Schedule, job_id: str, now: datetime) -> None:
        request = GenerationRequest(
            job_id=job_id,
            schedule_id=schedule.id,
            source_path=schedule.source_path,
            destination_path=schedule.destination_path,
            targets=tuple(TargetRef.from_descriptor(t) for t in schedule.targets),
            timestamp=now,
        )
        await call_with_timeout(
            self.channel.publish(request.to_json()), self.publish_timeout, "generation.publish"
        )

    def _emitted(self, schedule: Schedule, job_id: str, next_run: datetime | None) -> PollResult:
        logger.info(
            "generation_emitted",
            schedule_id=schedule.id,
            job_id=job_id,
            next_run_utc=next_run.isoformat() if next_run else None,
        )
        self.telemetry.emit_metric("poller_emitted_total", 1, schedule_id=schedule.id)
        return PollResult(schedule.id, PollResult.EMITTED, job_id=job_id, next_run_utc=next_run)

    async def _release(self, lease: LockLease) -> None:
        try:
            await self.coordinator.release_lock(lease)
        except CoordinatorUnavailableError as e:
            logger.warning("lock_release_failed", key=lease.key, error=str(e))
