"""Scheduling: timezone-correct cron evaluation, schedule storage, polling.

Components:
    - ``TimeZoneCronCalculator``: cron + IANA zone + instant → next UTC instant
    - ``ScheduleRepository``: CRUD and compare-and-set advance on ``fm_schedules``
    - ``TriggerPoller``: due scan, per-schedule lock, generation request emission

Example:
    >>> from filemover.scheduling import next_occurrence
    >>> from datetime import datetime, UTC
    >>> next_occurrence("0 10 * * *", "Europe/Warsaw", datetime(2025, 11, 10, 8, tzinfo=UTC))
    datetime.datetime(2025, 11, 10, 9, 0, tzinfo=datetime.timezone.utc)
"""

from .cron import (
    DEFAULT_HORIZON,
    TimeZoneCronCalculator,
    local_to_utc,
    next_occurrence,
    resolve_timezone,
    validate_cron,
)
from .poller import PollCycle, PollerStats, PollResult, TriggerPoller
from .repository import ScheduleCreate, ScheduleRepository, ScheduleUpdate

__all__ = [
    "DEFAULT_HORIZON",
    "PollCycle",
    "PollResult",
    "PollerStats",
    "ScheduleCreate",
    "ScheduleRepository",
    "ScheduleUpdate",
    "TimeZoneCronCalculator",
    "TriggerPoller",
    "local_to_utc",
    "next_occurrence",
    "resolve_timezone",
    "validate_cron",
]
