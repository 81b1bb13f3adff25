"""Tests for TriggerPoller.

Covers the locked path, concurrent pollers, lock expiry, misfire
coalescing, parked schedules, emit failures and degraded mode.
"""

import asyncio
from datetime import UTC, datetime

import pytest

from filemover.coordination.memory import InMemoryCoordinator
from filemover.coordination.protocol import lock_key
from filemover.messaging.memory import InMemoryChannel
from filemover.messaging.messages import GenerationRequest
from filemover.scheduling.poller import PollResult, TriggerPoller
from tests._support.fakes import FlakyChannel, UnavailableCoordinator


def utc(*args) -> datetime:
    return datetime(*args, tzinfo=UTC)


FIRST_RUN = utc(2025, 11, 10, 9, 0)


# ── Fixtures ─────────────────────────────────────────────────────────────


@pytest.fixture
def schedule(make_schedule):
    return make_schedule()


@pytest.fixture
def poller(schedules, coordinator, generation_channel, clock, telemetry):
    return TriggerPoller(
        schedules, coordinator, generation_channel, clock=clock, lock_ttl_seconds=300, telemetry=telemetry
    )


def requests(channel: InMemoryChannel) -> list[GenerationRequest]:
    return [GenerationRequest.from_json(body) for body in channel.published]


# ── Locked path ──────────────────────────────────────────────────────────


class TestLockedPath:
    @pytest.mark.asyncio
    async def test_nothing_due(self, poller, schedule, generation_channel):
        cycle = await poller.poll_once()
        assert cycle.results == []
        assert generation_channel.published == []

    @pytest.mark.asyncio
    async def test_due_schedule_emits_once(self, poller, schedule, schedules, generation_channel, clock):
        clock.set(FIRST_RUN)

        cycle = await poller.poll_once()

        assert [r.action for r in cycle.results] == [PollResult.EMITTED]
        assert len(generation_channel.published) == 1
        stored = schedules.get(schedule.id)
        assert stored.last_run_utc == FIRST_RUN
        assert stored.next_run_utc == utc(2025, 11, 11, 9, 0)
        assert cycle.results[0].next_run_utc == utc(2025, 11, 11, 9, 0)

    @pytest.mark.asyncio
    async def test_request_carries_target_snapshot(self, poller, schedule, generation_channel, clock):
        clock.set(FIRST_RUN)
        cycle = await poller.poll_once()

        (request,) = requests(generation_channel)
        assert request.job_id == cycle.results[0].job_id
        assert request.schedule_id == schedule.id
        assert request.source_path == "exports/daily.csv"
        assert request.timestamp == FIRST_RUN
        assert [t.target_id for t in request.targets] == ["a", "b", "c"]

    @pytest.mark.asyncio
    async def test_lock_released_after_emit(self, poller, schedule, coordinator, clock):
        clock.set(FIRST_RUN)
        await poller.poll_once()
        assert coordinator.is_locked(lock_key(schedule.id)) is False

    @pytest.mark.asyncio
    async def test_second_cycle_does_not_refire(self, poller, schedule, generation_channel, clock):
        clock.set(FIRST_RUN)
        await poller.poll_once()
        clock.advance(seconds=30)
        cycle = await poller.poll_once()
        assert cycle.results == []
        assert len(generation_channel.published) == 1

    @pytest.mark.asyncio
    async def test_misfires_coalesce(self, poller, schedule, schedules, generation_channel, clock):
        clock.set(utc(2025, 11, 13, 12, 0))
        await poller.poll_once()
        assert len(generation_channel.published) == 1
        assert schedules.get(schedule.id).next_run_utc == utc(2025, 11, 14, 9, 0)

    @pytest.mark.asyncio
    async def test_stats_and_metric(self, poller, schedule, clock, telemetry):
        clock.set(FIRST_RUN)
        await poller.poll_once()
        assert poller.stats.cycles == 1
        assert poller.stats.emitted == 1
        assert telemetry.total("poller_emitted_total") == 1


# ── Multiple instances ───────────────────────────────────────────────────


class TestMultipleInstances:
    @pytest.mark.asyncio
    async def test_concurrent_pollers_emit_once(self, schedules, coordinator, generation_channel, clock, schedule):
        clock.set(FIRST_RUN)
        pollers = [
            TriggerPoller(schedules, coordinator, generation_channel, clock=clock) for _ in range(3)
        ]

        cycles = await asyncio.gather(*(p.poll_once() for p in pollers))

        assert sum(len(c.emitted) for c in cycles) == 1
        assert len(generation_channel.published) == 1

    @pytest.mark.asyncio
    async def test_held_lock_skips_schedule(self, poller, schedule, schedules, coordinator, generation_channel, clock):
        clock.set(FIRST_RUN)
        await coordinator.acquire_lock(lock_key(schedule.id), 300)

        cycle = await poller.poll_once()

        assert [r.action for r in cycle.results] == [PollResult.LOCKED]
        assert generation_channel.published == []
        assert schedules.get(schedule.id).next_run_utc == FIRST_RUN

    @pytest.mark.asyncio
    async def test_expired_lock_is_taken_over(self, poller, schedule, coordinator, generation_channel, clock):
        clock.set(FIRST_RUN)
        await coordinator.acquire_lock(lock_key(schedule.id), 300)
        clock.advance(seconds=301)

        cycle = await poller.poll_once()

        assert [r.action for r in cycle.results] == [PollResult.EMITTED]
        assert len(generation_channel.published) == 1

    @pytest.mark.asyncio
    async def test_advance_conflict_keeps_lock(self, schedule, schedules, coordinator, clock):
        """Another instance advanced the schedule while this one was emitting."""

        class RacingChannel(InMemoryChannel):
            async def publish(self, body: str) -> str:
                schedules.advance(schedule.id, FIRST_RUN, FIRST_RUN, utc(2025, 11, 11, 9, 0))
                return await super().publish(body)

        clock.set(FIRST_RUN)
        channel = RacingChannel("generation")
        poller = TriggerPoller(schedules, coordinator, channel, clock=clock)

        cycle = await poller.poll_once()

        assert [r.action for r in cycle.results] == [PollResult.ADVANCE_FAILED]
        assert coordinator.is_locked(lock_key(schedule.id)) is True


# ── Failures ─────────────────────────────────────────────────────────────


class TestFailures:
    @pytest.mark.asyncio
    async def test_emit_failure_leaves_schedule_due(self, schedule, schedules, coordinator, clock):
        clock.set(FIRST_RUN)
        channel = FlakyChannel("generation", always=True)
        poller = TriggerPoller(schedules, coordinator, channel, clock=clock)

        cycle = await poller.poll_once()

        assert [r.action for r in cycle.results] == [PollResult.EMIT_FAILED]
        assert schedules.get(schedule.id).next_run_utc == FIRST_RUN
        assert coordinator.is_locked(lock_key(schedule.id)) is False
        assert poller.stats.failed == 1

    @pytest.mark.asyncio
    async def test_emit_retried_next_cycle(self, schedule, schedules, coordinator, clock):
        clock.set(FIRST_RUN)
        channel = FlakyChannel("generation", failures=1)
        poller = TriggerPoller(schedules, coordinator, channel, clock=clock)

        await poller.poll_once()
        clock.advance(seconds=30)
        cycle = await poller.poll_once()

        assert [r.action for r in cycle.results] == [PollResult.EMITTED]
        assert len(channel.published) == 1

    @pytest.mark.asyncio
    async def test_unevaluable_schedule_is_parked(self, poller, schedule, schedules, conn, generation_channel, clock):
        conn.execute("UPDATE fm_schedules SET timezone = 'Mars/Olympus' WHERE id = ?", (schedule.id,))
        conn.commit()
        clock.set(FIRST_RUN)

        cycle = await poller.poll_once()

        assert cycle.results[0].action == PollResult.PARKED
        assert cycle.results[0].error == "UnknownTimeZone"
        assert schedules.get(schedule.id).next_run_utc is None
        assert generation_channel.published == []

        clock.advance(days=1)
        assert (await poller.poll_once()).results == []


# ── Degraded mode ────────────────────────────────────────────────────────


class TestDegradedMode:
    @pytest.mark.asyncio
    async def test_coordinator_down_still_emits(self, schedule, schedules, generation_channel, clock):
        clock.set(FIRST_RUN)
        poller = TriggerPoller(schedules, UnavailableCoordinator(), generation_channel, clock=clock)

        cycle = await poller.poll_once()

        assert cycle.degraded is True
        assert [r.action for r in cycle.results] == [PollResult.EMITTED]
        assert schedules.get(schedule.id).next_run_utc == utc(2025, 11, 11, 9, 0)
        assert poller.stats.degraded_cycles == 1

    @pytest.mark.asyncio
    async def test_degraded_pollers_fire_once(self, schedule, schedules, generation_channel, clock):
        clock.set(FIRST_RUN)
        pollers = [
            TriggerPoller(schedules, UnavailableCoordinator(), generation_channel, clock=clock)
            for _ in range(2)
        ]
        await asyncio.gather(*(p.poll_once() for p in pollers))
        assert len(generation_channel.published) == 1

    @pytest.mark.asyncio
    async def test_degraded_emit_failure_rolls_back(self, schedule, schedules, clock):
        clock.set(FIRST_RUN)
        channel = FlakyChannel("generation", always=True)
        poller = TriggerPoller(schedules, UnavailableCoordinator(), channel, clock=clock)

        cycle = await poller.poll_once()

        assert [r.action for r in cycle.results] == [PollResult.EMIT_FAILED]
        stored = schedules.get(schedule.id)
        assert stored.next_run_utc == FIRST_RUN
        assert stored.last_run_utc is None

    @pytest.mark.asyncio
    async def test_degraded_disabled_skips(self, schedule, schedules, generation_channel, clock):
        clock.set(FIRST_RUN)
        poller = TriggerPoller(
            schedules, UnavailableCoordinator(), generation_channel, clock=clock, allow_degraded=False
        )

        cycle = await poller.poll_once()

        assert [r.action for r in cycle.results] == [PollResult.UNAVAILABLE]
        assert generation_channel.published == []
        assert schedules.get(schedule.id).next_run_utc == FIRST_RUN


# ── Lifecycle ────────────────────────────────────────────────────────────


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_run_until_stop(self, schedules, schedule, generation_channel, clock):
        clock.set(FIRST_RUN)
        poller = TriggerPoller(
            schedules, InMemoryCoordinator(clock), generation_channel, clock=clock, interval_seconds=0.01
        )

        task = asyncio.create_task(poller.run())
        await asyncio.sleep(0.05)
        poller.stop()
        await asyncio.wait_for(task, timeout=1)

        assert poller.stats.cycles >= 1
        assert len(generation_channel.published) == 1
