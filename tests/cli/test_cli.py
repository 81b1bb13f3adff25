"""Tests for the Typer CLI."""

import importlib
import json
from datetime import UTC, datetime

import pytest
from typer.testing import CliRunner

from filemover import __version__
from filemover.cli.app import app
from filemover.core.timestamps import FixedClock
from filemover.execution.dlq import DeadLetterStore
from filemover.jobs.repository import JobRepository
from filemover.runtime import open_database
from filemover.scheduling.repository import ScheduleCreate, ScheduleRepository
from tests._support.fakes import target

runner = CliRunner()


@pytest.fixture(autouse=True)
def isolated_env(tmp_path, monkeypatch):
    monkeypatch.setenv("FILEMOVER_DATA_DIR", str(tmp_path / "data"))
    monkeypatch.delenv("FILEMOVER_REDIS_URL", raising=False)
    # Keep the test logging configuration; process commands would reconfigure it.
    monkeypatch.setattr(importlib.import_module("filemover.cli.app"), "setup_logging", lambda settings: None)
    monkeypatch.setattr("filemover.cli.worker.setup_logging", lambda settings: None)


@pytest.fixture
def db_path(tmp_path):
    return str(tmp_path / "filemover.db")


@pytest.fixture
def seeded(db_path):
    """A database holding one Pending job and one open dead letter."""
    conn = open_database(db_path)
    JobRepository(conn).admit(
        job_id="job-1",
        schedule_id="sched-1",
        source_path="exports/daily.csv",
        destination_path="inbox/daily.csv",
        targets=[target("a"), target("b")],
    )
    entry = DeadLetterStore(conn).add("job-1", "transfer", "RetriesExhausted", target_id="b", attempts=5)
    conn.close()
    return entry


def invoke(*args):
    return runner.invoke(app, [str(a) for a in args])


class TestRoot:
    def test_version(self):
        result = invoke("--version")
        assert result.exit_code == 0
        assert f"filemover {__version__}" in result.output

    def test_db_init(self, db_path):
        result = invoke("db", "init", "--database", db_path)
        assert result.exit_code == 0
        assert "Initialized" in result.output
        assert "tables)" in result.output


class TestJobCommands:
    def test_show(self, seeded, db_path):
        result = invoke("job", "show", "job-1", "--database", db_path)
        assert result.exit_code == 0
        assert "Pending" in result.output
        assert "Targets" in result.output

    def test_show_json(self, seeded, db_path):
        result = invoke("job", "show", "job-1", "--attempts", "--json", "--database", db_path)
        payload = json.loads(result.output)
        assert payload["id"] == "job-1"
        assert [t["target_id"] for t in payload["targets"]] == ["a", "b"]
        assert payload["attempts"] == []

    def test_show_missing(self, db_path):
        result = invoke("job", "show", "nope", "--database", db_path)
        assert result.exit_code == 1
        assert "not found" in result.output

    def test_list_json(self, seeded, db_path):
        result = invoke("job", "list", "--json", "--database", db_path)
        assert [j["id"] for j in json.loads(result.output)] == ["job-1"]

    def test_stalled_empty(self, seeded, db_path):
        result = invoke("job", "stalled", "--database", db_path)
        assert result.exit_code == 0
        assert "No items." in result.output

    def test_cancel(self, seeded, db_path):
        result = invoke("job", "cancel", "job-1", "--database", db_path)
        assert result.exit_code == 0
        assert "Cancelled job-1" in result.output

        again = invoke("job", "cancel", "job-1", "--database", db_path)
        assert again.exit_code == 1
        assert "Job job-1 is already Cancelled" in again.output


class TestDeadLetterCommands:
    def test_list_and_resolve(self, seeded, db_path):
        listed = invoke("dlq", "list", "--json", "--database", db_path)
        assert [d["id"] for d in json.loads(listed.output)] == [seeded.id]

        resolved = invoke("dlq", "resolve", seeded.id, "--by", "ops", "--database", db_path)
        assert resolved.exit_code == 0
        assert f"Resolved {seeded.id}" in resolved.output

        assert json.loads(invoke("dlq", "list", "--json", "--database", db_path).output) == []
        assert invoke("dlq", "resolve", seeded.id, "--database", db_path).exit_code == 1


class TestScheduleCommands:
    def test_preview(self):
        result = invoke(
            "schedule", "preview", "0 10 * * *", "--tz", "Europe/Warsaw", "--count", 2,
            "--from", "2025-11-10T08:00:00+00:00",
        )
        assert result.exit_code == 0
        assert "2025-11-10T09:00:00+00:00" in result.output
        assert "2025-11-10T10:00:00+01:00" in result.output
        assert "2025-11-11T09:00:00+00:00" in result.output

    def test_preview_invalid_cron(self):
        result = invoke("schedule", "preview", "61 * * * *", "--from", "2025-11-10T08:00:00+00:00")
        assert result.exit_code == 1
        assert "InvalidCron" in result.output

    def test_preview_unknown_zone(self):
        result = invoke("schedule", "preview", "0 10 * * *", "--tz", "Mars/Olympus")
        assert result.exit_code == 1
        assert "UnknownTimeZone" in result.output

    def test_list(self, db_path):
        conn = open_database(db_path)
        ScheduleRepository(conn).create(
            ScheduleCreate(
                name="nightly-export",
                cron_expression="0 10 * * *",
                timezone="Europe/Warsaw",
                source_path="exports/daily.csv",
                targets=[target("a")],
            )
        )
        conn.close()

        result = invoke("schedule", "list", "--json", "--database", db_path)
        (schedule,) = json.loads(result.output)
        assert schedule["name"] == "nightly-export"
        assert schedule["next_run_utc"] is not None


class TestProcessCommands:
    def test_poll_once_nothing_due(self, db_path):
        result = invoke("poll", "--once", "--database", db_path)
        assert result.exit_code == 0
        assert "No schedules due." in result.output

    def test_poll_once_emits(self, db_path):
        conn = open_database(db_path)
        past = FixedClock(datetime(2020, 1, 1, tzinfo=UTC))
        schedule = ScheduleRepository(conn, clock=past).create(
            ScheduleCreate(
                name="overdue",
                cron_expression="0 10 * * *",
                timezone="Europe/Warsaw",
                source_path="exports/daily.csv",
                targets=[target("a")],
            )
        )
        conn.close()

        result = invoke("poll", "--once", "--database", db_path)
        assert result.exit_code == 0
        assert "Poll cycle" in result.output

        conn = open_database(db_path)
        stored = ScheduleRepository(conn).get(schedule.id)
        conn.close()
        assert stored.last_run_utc is not None
        assert stored.next_run_utc > datetime.now(UTC)

    def test_worker_until_idle(self, db_path):
        result = invoke("worker", "transfer", "--until-idle", "--database", db_path)
        assert result.exit_code == 0
        assert "Processed 0 message(s)" in result.output
