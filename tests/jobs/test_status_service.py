"""Tests for StatusService queries and cancel."""

from datetime import timedelta

import pytest

from filemover.core.models import AttemptRecord, JobStatus, Operation
from filemover.jobs.status import StatusService


@pytest.fixture
def service(jobs, schedules, aggregator, dead_letters, clock):
    return StatusService(jobs, schedules, aggregator, dead_letters, clock=clock, alert_threshold_seconds=3600)


class TestJobQueries:
    def test_get_and_list(self, service, make_job):
        make_job("job-1")
        assert service.get_job("job-1").id == "job-1"
        assert service.get_job("missing") is None
        assert [j.id for j in service.list_jobs(schedule_id="sched-1")] == ["job-1"]

    def test_target_outcomes(self, service, make_job):
        make_job(targets=("a", "b"))
        assert [o.target_id for o in service.target_outcomes("job-1")] == ["a", "b"]
        assert service.target_outcomes("missing") is None

    def test_attempt_history(self, service, jobs, make_job, now):
        make_job()
        jobs.record_attempt(
            AttemptRecord(
                job_id="job-1",
                operation=Operation.TRANSFER,
                target_id="b",
                attempt=1,
                started_at=now,
                finished_at=now,
                error_code="TransferTransient",
                error_message="timeout",
                retryable=True,
            )
        )
        assert [r.target_id for r in service.attempt_history("job-1")] == ["b"]
        assert service.attempt_history("job-1", target_id="a") == []
        assert service.attempt_history("missing") is None

    def test_stalled_jobs(self, service, make_job, clock):
        make_job("job-1")
        clock.advance(minutes=30)
        assert service.stalled_jobs() == []
        clock.advance(minutes=31)
        assert [j.id for j in service.stalled_jobs()] == ["job-1"]
        assert [j.id for j in service.stalled_jobs(threshold_seconds=int(timedelta(hours=2).total_seconds()))] == []


class TestCachedStatus:
    @pytest.mark.asyncio
    async def test_falls_back_to_durable_store(self, service, make_job):
        make_job()
        status = await service.cached_job_status("job-1")
        assert status["status"] == "Pending"
        assert await service.cached_job_status("missing") is None

    @pytest.mark.asyncio
    async def test_prefers_cache(self, service, make_job):
        make_job()
        await service.cancel("job-1")
        assert (await service.cached_job_status("job-1"))["status"] == "Cancelled"


class TestCancel:
    @pytest.mark.asyncio
    async def test_cancel(self, service, jobs, make_job):
        make_job()
        assert await service.cancel("job-1") is True
        assert jobs.get_status("job-1") is JobStatus.CANCELLED
        assert await service.cancel("job-1") is False


class TestSchedulesAndDeadLetters:
    def test_schedule_runs_by_id_or_name(self, service, make_schedule):
        schedule = make_schedule()
        by_id = service.schedule_runs(schedule.id)
        by_name = service.schedule_runs("nightly-export")

        assert by_id == by_name
        assert by_id["next_run_utc"] == "2025-11-10T09:00:00+00:00"
        assert by_id["last_run_utc"] is None
        assert by_id["targets"] == ["a", "b", "c"]
        assert service.schedule_runs("missing") is None

    def test_list_schedules(self, service, make_schedule):
        make_schedule("one")
        make_schedule("two")
        assert sorted(s["name"] for s in service.list_schedules()) == ["one", "two"]

    def test_list_dead_letters(self, service, dead_letters):
        entry = dead_letters.add("job-1", "transfer", "RetriesExhausted", target_id="a")
        dead_letters.add("job-2", "transfer", "RetriesExhausted", target_id="a")
        dead_letters.resolve(entry.id)

        assert len(service.list_dead_letters()) == 1
        assert len(service.list_dead_letters(include_resolved=True)) == 2
