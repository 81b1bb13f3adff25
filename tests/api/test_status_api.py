"""Tests for the FastAPI status surface."""

import sqlite3

import pytest
from fastapi.testclient import TestClient

from filemover import __version__
from filemover.api.app import create_app
from filemover.core.models import AttemptRecord, JobStatus, Operation, TargetStatus
from filemover.core.schema import create_tables
from filemover.core.settings import FileMoverSettings
from filemover.runtime import build_runtime
from filemover.scheduling.repository import ScheduleCreate
from tests._support.fakes import UnavailableCoordinator, target


@pytest.fixture
def api_conn():
    # TestClient serves requests from a worker thread.
    connection = sqlite3.connect(":memory:", check_same_thread=False)
    create_tables(connection)
    yield connection
    connection.close()


@pytest.fixture
def runtime(api_conn, clock, tmp_path, telemetry):
    settings = FileMoverSettings(data_dir=tmp_path, instance_id="test-node")
    return build_runtime(settings, conn=api_conn, clock=clock, telemetry=telemetry)


@pytest.fixture
def client(runtime):
    return TestClient(create_app(runtime))


@pytest.fixture
def admitted(runtime, now):
    job, _ = runtime.jobs.admit(
        job_id="job-1",
        schedule_id="sched-1",
        source_path="exports/daily.csv",
        destination_path="inbox/daily.csv",
        targets=[target("a"), target("b")],
        triggered_at=now,
    )
    return job


class TestHealth:
    def test_ok(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json() == {"status": "ok", "coordinator": True, "instance_id": "test-node"}

    def test_degraded_without_coordinator(self, api_conn, clock, tmp_path):
        runtime = build_runtime(
            FileMoverSettings(data_dir=tmp_path),
            conn=api_conn,
            clock=clock,
            coordinator=UnavailableCoordinator(),
        )
        body = TestClient(create_app(runtime)).get("/health").json()
        assert body["status"] == "degraded"

    def test_openapi_version(self, client):
        assert client.get("/openapi.json").json()["info"]["version"] == __version__


class TestJobs:
    def test_get_job(self, client, admitted):
        response = client.get("/api/v1/jobs/job-1")
        assert response.status_code == 200
        body = response.json()
        assert body["job_id"] == "job-1"
        assert body["status"] == "Pending"
        assert [t["target_id"] for t in body["targets"]] == ["a", "b"]

    def test_missing_job(self, client):
        assert client.get("/api/v1/jobs/nope").status_code == 404
        assert client.get("/api/v1/jobs/nope/targets").status_code == 404
        assert client.get("/api/v1/jobs/nope/attempts").status_code == 404

    def test_list_jobs(self, client, admitted):
        body = client.get("/api/v1/jobs", params={"schedule_id": "sched-1"}).json()
        assert [j["job_id"] for j in body] == ["job-1"]
        assert client.get("/api/v1/jobs", params={"schedule_id": "other"}).json() == []

    def test_targets(self, client, runtime, admitted):
        runtime.jobs.update_outcome("job-1", "b", TargetStatus.FAILED, reason="TransferAuthFailed")
        body = client.get("/api/v1/jobs/job-1/targets").json()
        assert [(t["target_id"], t["status"], t["reason"]) for t in body] == [
            ("a", "Pending", None),
            ("b", "Failed", "TransferAuthFailed"),
        ]

    def test_attempts(self, client, runtime, admitted, now):
        runtime.jobs.record_attempt(
            AttemptRecord(
                job_id="job-1",
                operation=Operation.TRANSFER,
                target_id="a",
                attempt=1,
                started_at=now,
                finished_at=now,
                error_code="TransferTransient",
                error_message="connection reset",
                retryable=True,
            )
        )
        body = client.get("/api/v1/jobs/job-1/attempts", params={"operation": "transfer"}).json()
        assert [(a["target_id"], a["attempt"], a["error_code"]) for a in body] == [("a", 1, "TransferTransient")]
        assert client.get("/api/v1/jobs/job-1/attempts", params={"operation": "bogus"}).status_code == 400

    def test_stalled(self, client, admitted, clock):
        assert client.get("/api/v1/jobs/stalled").json() == []
        clock.advance(hours=2)
        assert [j["job_id"] for j in client.get("/api/v1/jobs/stalled").json()] == ["job-1"]


class TestCancel:
    def test_cancel(self, client, runtime, admitted):
        response = client.post("/api/v1/jobs/job-1/cancel")
        assert response.status_code == 200
        assert response.json() == {"job_id": "job-1", "cancelled": True, "status": "Cancelled"}
        assert runtime.jobs.get_status("job-1") is JobStatus.CANCELLED

    def test_cancel_terminal_conflict(self, client, admitted):
        client.post("/api/v1/jobs/job-1/cancel")
        response = client.post("/api/v1/jobs/job-1/cancel")
        assert response.status_code == 409
        assert "already Cancelled" in response.json()["detail"]

    def test_cancel_missing(self, client):
        assert client.post("/api/v1/jobs/nope/cancel").status_code == 404


class TestSchedulesAndDeadLetters:
    def test_schedules(self, client, runtime):
        schedule = runtime.schedules.create(
            ScheduleCreate(
                name="nightly-export",
                cron_expression="0 10 * * *",
                timezone="Europe/Warsaw",
                source_path="exports/daily.csv",
                destination_path="inbox/daily.csv",
                targets=[target("a")],
            )
        )
        (listed,) = client.get("/api/v1/schedules").json()
        assert listed["name"] == "nightly-export"
        assert listed["next_run_utc"].startswith("2025-11-10T09:00:00")

        assert client.get(f"/api/v1/schedules/{schedule.id}").json()["targets"] == ["a"]
        assert client.get("/api/v1/schedules/nightly-export").status_code == 200
        assert client.get("/api/v1/schedules/nope").status_code == 404

    def test_dead_letters(self, client, runtime):
        entry = runtime.dead_letters.add("job-1", "transfer", "RetriesExhausted", target_id="a", attempts=5)
        body = client.get("/api/v1/dlq").json()
        assert [(d["id"], d["attempts"]) for d in body] == [(entry.id, 5)]

        runtime.dead_letters.resolve(entry.id)
        assert client.get("/api/v1/dlq").json() == []
        assert len(client.get("/api/v1/dlq", params={"include_resolved": True}).json()) == 1
