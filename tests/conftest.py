"""
Shared pytest fixtures for filemover tests.

This module provides:
- An in-memory SQLite connection with every filemover table
- A FixedClock pinned to 2025-11-10T08:00Z (Europe/Warsaw winter time)
- Repositories, dead-letter store and a RetryCoordinator that never sleeps
- In-memory coordinator, channels and telemetry
- Factories for schedules and admitted jobs

Usage:
    Fixtures are auto-discovered by pytest::

        def test_something(jobs, aggregator, make_job):
            job = make_job(targets=("a", "b"))
            ...
"""

from __future__ import annotations

import sqlite3
from collections.abc import Callable, Generator
from datetime import UTC, datetime
from pathlib import Path

import pytest
import structlog

from filemover.coordination.memory import InMemoryCoordinator
from filemover.core.models import Job, TargetDescriptor
from filemover.core.schema import create_tables
from filemover.core.timestamps import FixedClock
from filemover.execution.dlq import DeadLetterStore
from filemover.execution.retry import RetryCoordinator, RetryPolicy
from filemover.jobs.aggregator import JobAggregator
from filemover.jobs.cache import StatusCache
from filemover.jobs.repository import JobRepository
from filemover.messaging.channel import GENERATION_CHANNEL, TRANSFER_CHANNEL
from filemover.messaging.memory import InMemoryChannel
from filemover.observability.telemetry import InMemoryTelemetry
from filemover.pipeline.artifacts import LocalArtifactStore
from filemover.scheduling.repository import ScheduleCreate, ScheduleRepository
from tests._support.fakes import RecordingSleep, target

# =============================================================================
# Test Markers Configuration
# =============================================================================


def pytest_configure(config: pytest.Config) -> None:
    """Route structlog through stdlib logging so pytest captures it."""
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.add_log_level,
            structlog.processors.format_exc_info,
            structlog.processors.KeyValueRenderer(key_order=["event"]),
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=False,
    )


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    """Auto-mark tests based on their location."""
    for item in items:
        test_path = Path(item.fspath).relative_to(Path(__file__).parent)
        if "integration" in str(test_path):
            item.add_marker(pytest.mark.integration)
        markers = {mark.name for mark in item.iter_markers()}
        if not markers.intersection({"unit", "integration"}):
            item.add_marker(pytest.mark.unit)


# =============================================================================
# Clock / Database
# =============================================================================

NOW = datetime(2025, 11, 10, 8, 0, tzinfo=UTC)


@pytest.fixture
def now() -> datetime:
    return NOW


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock(NOW)


@pytest.fixture
def conn() -> Generator[sqlite3.Connection, None, None]:
    """In-memory SQLite with every filemover table."""
    connection = sqlite3.connect(":memory:")
    create_tables(connection)
    yield connection
    connection.close()


# =============================================================================
# Repositories
# =============================================================================


@pytest.fixture
def schedules(conn, clock) -> ScheduleRepository:
    return ScheduleRepository(conn, clock=clock)


@pytest.fixture
def jobs(conn, clock) -> JobRepository:
    return JobRepository(conn, clock=clock)


@pytest.fixture
def dead_letters(conn, clock) -> DeadLetterStore:
    return DeadLetterStore(conn, clock=clock)


# =============================================================================
# Execution / coordination
# =============================================================================


@pytest.fixture
def sleep() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture
def policy() -> RetryPolicy:
    return RetryPolicy(max_attempts=5, base_delay=1.0, multiplier=2.0, max_delay=60.0, jitter=0.0)


@pytest.fixture
def retry(policy, dead_letters, clock, sleep) -> RetryCoordinator:
    return RetryCoordinator(policy, dead_letters, clock=clock, sleep=sleep)


@pytest.fixture
def coordinator(clock) -> InMemoryCoordinator:
    return InMemoryCoordinator(clock, default_status_ttl_seconds=3600)


@pytest.fixture
def telemetry() -> InMemoryTelemetry:
    return InMemoryTelemetry()


@pytest.fixture
def cache(coordinator) -> StatusCache:
    return StatusCache(coordinator, ttl_seconds=3600)


@pytest.fixture
def aggregator(jobs, cache, telemetry) -> JobAggregator:
    return JobAggregator(jobs, cache, telemetry)


@pytest.fixture
def generation_channel() -> InMemoryChannel:
    return InMemoryChannel(GENERATION_CHANNEL)


@pytest.fixture
def transfer_channel() -> InMemoryChannel:
    return InMemoryChannel(TRANSFER_CHANNEL)


@pytest.fixture
def artifacts(tmp_path) -> LocalArtifactStore:
    return LocalArtifactStore(tmp_path / "artifacts", max_bytes=1024 * 1024, chunk_size=16)


# =============================================================================
# Factories
# =============================================================================


@pytest.fixture
def make_schedule(schedules) -> Callable[..., object]:
    """Create a schedule; ``targets`` may be ids or descriptors."""

    def _make(
        name: str = "nightly-export",
        cron: str = "0 10 * * *",
        timezone: str = "Europe/Warsaw",
        targets: tuple = ("a", "b", "c"),
        **kwargs,
    ):
        descriptors = [t if isinstance(t, TargetDescriptor) else target(t) for t in targets]
        return schedules.create(
            ScheduleCreate(
                name=name,
                cron_expression=cron,
                timezone=timezone,
                source_path=kwargs.pop("source_path", "exports/daily.csv"),
                destination_path=kwargs.pop("destination_path", "inbox/daily.csv"),
                targets=descriptors,
                **kwargs,
            )
        )

    return _make


@pytest.fixture
def make_job(jobs, now) -> Callable[..., Job]:
    """Admit a Pending job with the given target ids."""

    def _make(job_id: str = "job-1", targets: tuple = ("a", "b", "c"), schedule_id: str = "sched-1") -> Job:
        job, _ = jobs.admit(
            job_id=job_id,
            schedule_id=schedule_id,
            source_path="exports/daily.csv",
            destination_path="inbox/daily.csv",
            targets=[target(t) for t in targets],
            triggered_at=now,
        )
        return job

    return _make
