"""Retry, dead letters, timeouts and the stage worker loop."""

from filemover.execution.dlq import DeadLetterStore
from filemover.execution.retry import RetryCoordinator, RetryOutcome, RetryPolicy
from filemover.execution.timeout import call_with_timeout, deadline, iter_with_timeout
from filemover.execution.worker import StageWorker, WorkerStats

__all__ = [
    "DeadLetterStore",
    "RetryCoordinator",
    "RetryOutcome",
    "RetryPolicy",
    "StageWorker",
    "WorkerStats",
    "call_with_timeout",
    "deadline",
    "iter_with_timeout",
]
