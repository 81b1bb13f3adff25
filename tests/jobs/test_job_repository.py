"""Tests for JobRepository."""

from datetime import timedelta

import pytest

from filemover.core.models import AttemptRecord, JobStatus, Operation, TargetStatus
from tests._support.fakes import target


class TestAdmit:
    def test_creates_pending_job_with_outcomes(self, jobs, now):
        job, created = jobs.admit(
            job_id="job-1",
            schedule_id="sched-1",
            source_path="exports/daily.csv",
            destination_path="inbox/daily.csv",
            targets=[target("a"), target("b", destination_path="drop/b.csv")],
            triggered_at=now,
        )

        assert created is True
        assert job.status is JobStatus.PENDING
        assert job.triggered_at == now
        assert [o.target_id for o in job.targets] == ["a", "b"]
        assert all(o.status is TargetStatus.PENDING for o in job.targets)
        assert job.targets[0].destination_path == "inbox/daily.csv"
        assert job.targets[1].destination_path == "drop/b.csv"
        assert job.targets[1].credential_reference == "b-password"

    def test_second_admit_keeps_snapshot(self, jobs, make_job):
        make_job(targets=("a", "b"))
        job, created = jobs.admit(
            job_id="job-1",
            schedule_id="sched-1",
            source_path="other.csv",
            destination_path="elsewhere.csv",
            targets=[target("z")],
        )
        assert created is False
        assert job.source_path == "exports/daily.csv"
        assert [o.target_id for o in job.targets] == ["a", "b"]

    def test_get_missing(self, jobs):
        assert jobs.get("nope") is None
        assert jobs.get_status("nope") is None


class TestTransition:
    def test_compare_and_set(self, jobs, make_job):
        make_job()
        assert jobs.transition("job-1", [JobStatus.PENDING], JobStatus.GENERATING) is True
        assert jobs.transition("job-1", [JobStatus.PENDING], JobStatus.GENERATING) is False
        assert jobs.get_status("job-1") is JobStatus.GENERATING

    def test_terminal_sets_completed_at_and_fields(self, jobs, make_job, now):
        make_job()
        jobs.transition("job-1", [JobStatus.PENDING], JobStatus.FAILED, reason="GenerationFailed", error="boom")
        job = jobs.get("job-1")
        assert job.completed_at == now
        assert job.reason == "GenerationFailed"
        assert job.error == "boom"

    def test_artifact_fields(self, jobs, make_job):
        make_job()
        jobs.transition(
            "job-1",
            [JobStatus.PENDING],
            JobStatus.GENERATED,
            artifact_location="/data/job-1/artifact",
            artifact_size=26,
            content_hash="abc",
        )
        job = jobs.get("job-1")
        assert (job.artifact_location, job.artifact_size, job.content_hash) == ("/data/job-1/artifact", 26, "abc")

    def test_generating_stamps_started_at(self, jobs, make_job, clock, now):
        make_job()
        assert jobs.get("job-1").started_at is None

        clock.advance(seconds=5)
        jobs.transition("job-1", [JobStatus.PENDING], JobStatus.GENERATING)
        clock.advance(seconds=30)
        jobs.transition("job-1", [JobStatus.GENERATING], JobStatus.GENERATED)

        job = jobs.get("job-1")
        assert job.started_at == now + timedelta(seconds=5)
        assert job.updated_at == now + timedelta(seconds=35)
        assert job.to_dict()["started_at"] == job.started_at.isoformat()
        assert job.completed_at is None

    def test_rejects_unknown_fields(self, jobs, make_job):
        make_job()
        with pytest.raises(ValueError):
            jobs.transition("job-1", [JobStatus.PENDING], JobStatus.GENERATING, status="Completed")

    def test_empty_from_statuses(self, jobs, make_job):
        make_job()
        assert jobs.transition("job-1", [], JobStatus.COMPLETED) is False


class TestOutcomes:
    def test_update_outcome(self, jobs, make_job):
        make_job()
        assert jobs.update_outcome("job-1", "a", TargetStatus.SENDING) is True
        assert jobs.update_outcome("job-1", "a", TargetStatus.SENT, content_hash="abc") is True

        outcome = jobs.get_outcome("job-1", "a")
        assert outcome.status is TargetStatus.SENT
        assert outcome.content_hash == "abc"
        assert outcome.completed_at is not None

    def test_sent_is_never_overwritten(self, jobs, make_job):
        make_job()
        jobs.update_outcome("job-1", "a", TargetStatus.SENT)
        assert jobs.update_outcome("job-1", "a", TargetStatus.FAILED, reason="Cancelled") is False
        assert jobs.get_outcome("job-1", "a").status is TargetStatus.SENT

    def test_from_statuses_guard(self, jobs, make_job):
        make_job()
        assert jobs.update_outcome("job-1", "a", TargetStatus.FAILED, [TargetStatus.SENDING]) is False
        assert jobs.get_outcome("job-1", "a").status is TargetStatus.PENDING

    def test_unknown_target(self, jobs, make_job):
        make_job()
        assert jobs.get_outcome("job-1", "zz") is None
        assert jobs.update_outcome("job-1", "zz", TargetStatus.SENT) is False


class TestAttempts:
    def _record(self, now, attempt, target_id="a", error_code="ConnectionError"):
        return AttemptRecord(
            job_id="job-1",
            operation=Operation.TRANSFER,
            target_id=target_id,
            attempt=attempt,
            started_at=now,
            finished_at=now,
            error_code=error_code,
            error_message="refused" if error_code else None,
            retryable=error_code is not None,
        )

    def test_record_and_count(self, jobs, make_job, now):
        make_job()
        jobs.record_attempt(self._record(now, 1))
        jobs.record_attempt(self._record(now, 2, error_code=None))
        jobs.record_attempt(self._record(now, 1, target_id="b"))

        assert jobs.count_attempts("job-1", Operation.TRANSFER, "a") == 2
        assert jobs.get_outcome("job-1", "a").attempts == 2
        assert [o.attempts for o in jobs.list_outcomes("job-1")] == [2, 1, 0]

        history = jobs.list_attempts("job-1", target_id="a")
        assert [(r.attempt, r.succeeded, r.retryable) for r in history] == [(1, False, True), (2, True, False)]

    def test_rerecording_is_ignored(self, jobs, make_job, now):
        make_job()
        jobs.record_attempt(self._record(now, 1))
        jobs.record_attempt(self._record(now, 1, error_code="TimeoutError"))
        (record,) = jobs.list_attempts("job-1")
        assert record.error_code == "ConnectionError"


class TestQueries:
    def test_list_jobs_newest_first(self, jobs, make_job, clock):
        make_job("job-1")
        clock.advance(minutes=1)
        make_job("job-2", schedule_id="sched-2")

        assert [j.id for j in jobs.list_jobs()] == ["job-2", "job-1"]
        assert [j.id for j in jobs.list_jobs(schedule_id="sched-1")] == ["job-1"]
        assert [j.id for j in jobs.list_jobs(status=JobStatus.PENDING, limit=1)] == ["job-2"]

    def test_find_stalled(self, jobs, make_job, clock):
        make_job("job-1")
        make_job("job-2")
        jobs.transition("job-2", [JobStatus.PENDING], JobStatus.CANCELLED)
        clock.advance(hours=2)
        make_job("job-3")

        stalled = jobs.find_stalled(clock.now() - timedelta(hours=1))
        assert [j.id for j in stalled] == ["job-1"]
