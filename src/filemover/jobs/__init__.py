"""Durable job history, fan-in and the status surface."""

from .aggregator import JobAggregator
from .cache import StatusCache
from .repository import JobRepository
from .status import StatusService, schedule_summary

__all__ = [
    "JobAggregator",
    "JobRepository",
    "StatusCache",
    "StatusService",
    "schedule_summary",
]
