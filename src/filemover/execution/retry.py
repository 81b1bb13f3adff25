"""Retry policy and the coordinator that applies it.

Every retried operation in the pipeline (generating an artifact, publishing
the fan-out, pushing to one target) goes through ``RetryCoordinator.run``.
Counters are per operation instance, so one flaky target never spends
another target's budget.

Example:
    >>> policy = RetryPolicy(max_attempts=5, base_delay=1.0, jitter=0.0)
    >>> [policy.next_delay(n) for n in range(1, 5)]
    [1.0, 2.0, 4.0, 8.0]

Attempt numbering:
    ``max_attempts`` counts TOTAL attempts, first try included. With the
    default of 5 a target that always times out is tried five times, then
    its outcome is Failed ``RetriesExhausted`` and one dead letter exists.
"""

from __future__ import annotations

import asyncio
import random
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any, Generic, TypeVar

from filemover.core.errors import JobCancelledError, RetriesExhaustedError, error_code, is_retryable
from filemover.core.logging import get_logger
from filemover.core.models import AttemptRecord, Operation
from filemover.core.timestamps import Clock, SystemClock
from filemover.execution.dlq import DeadLetterStore

logger = get_logger(__name__)

T = TypeVar("T")

SleepFn = Callable[[float], Awaitable[None]]


@dataclass
class RetryPolicy:
    """Exponential backoff with symmetric jitter and a total-attempt cap.

    Delay before retry ``n`` (1-based, after attempt ``n`` failed):

        min(base_delay * multiplier ** (n - 1), max_delay) * (1 ± jitter)

    clamped to ``[0, max_delay]``.
    """

    max_attempts: int = 5
    base_delay: float = 1.0
    multiplier: float = 2.0
    max_delay: float = 60.0
    jitter: float = 0.2

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        if not 0 <= self.jitter < 1:
            raise ValueError("jitter must be in [0, 1)")

    def next_delay(self, attempt: int, rng: random.Random | None = None) -> float:
        """Delay after failed attempt number ``attempt``."""
        delay = min(self.base_delay * (self.multiplier ** (attempt - 1)), self.max_delay)
        if self.jitter:
            source = rng or random
            delay *= 1 + source.uniform(-self.jitter, self.jitter)
        return max(0.0, min(delay, self.max_delay))

    def should_retry(self, attempt: int, error: Exception | None = None) -> bool:
        if attempt >= self.max_attempts:
            return False
        return error is None or is_retryable(error)

    @classmethod
    def from_settings(cls, settings: Any) -> RetryPolicy:
        return cls(
            max_attempts=settings.retry_max_attempts,
            base_delay=settings.retry_base_delay_seconds,
            multiplier=settings.retry_multiplier,
            max_delay=settings.retry_max_delay_seconds,
            jitter=settings.retry_jitter,
        )


@dataclass
class RetryOutcome(Generic[T]):
    """Result of ``RetryCoordinator.run``.

    Exactly one of: ``ok`` (value set), a terminal ``error``, ``exhausted``
    (error is ``RetriesExhaustedError``) or ``cancelled``.
    """

    value: T | None = None
    error: Exception | None = None
    history: list[AttemptRecord] = field(default_factory=list)
    exhausted: bool = False
    cancelled: bool = False
    dead_letter_id: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None and not self.cancelled

    @property
    def attempts(self) -> int:
        return len(self.history)

    @property
    def reason(self) -> str | None:
        """Persisted failure reason (error code)."""
        if self.ok:
            return None
        if self.cancelled:
            return JobCancelledError.code
        return error_code(self.error)  # type: ignore[arg-type]

    @property
    def last_error(self) -> str | None:
        for record in reversed(self.history):
            if record.error_message is not None:
                return record.error_message
        return None


class RetryCoordinator:
    """Runs an async operation under a ``RetryPolicy``.

    ``sleep`` and ``rng`` are injectable so tests run instantly and
    deterministically::

        delays = []
        async def fake_sleep(seconds):
            delays.append(seconds)

        retry = RetryCoordinator(RetryPolicy(), dead_letters, sleep=fake_sleep,
                                 rng=random.Random(7))
    """

    def __init__(
        self,
        policy: RetryPolicy | None = None,
        dead_letters: DeadLetterStore | None = None,
        *,
        clock: Clock | None = None,
        sleep: SleepFn | None = None,
        rng: random.Random | None = None,
    ) -> None:
        self.policy = policy or RetryPolicy()
        self.dead_letters = dead_letters
        self.clock: Clock = clock or SystemClock()
        self._sleep: SleepFn = sleep or asyncio.sleep
        self._rng = rng or random.Random()

    async def run(
        self,
        operation: Operation,
        func: Callable[[int], Awaitable[T]],
        *,
        job_id: str,
        target_id: str = "",
        start_attempt: int = 1,
        payload: dict[str, Any] | None = None,
        on_attempt: Callable[[AttemptRecord], Any] | None = None,
        should_continue: Callable[[], Awaitable[bool]] | None = None,
        classify: Callable[[Exception], bool] = is_retryable,
    ) -> RetryOutcome[T]:
        """Call ``func(attempt_number)`` until it succeeds, fails terminally,
        runs out of attempts or ``should_continue`` says stop.

        Args:
            operation: What is being retried (recorded on attempts / DLQ)
            func: The operation; receives the 1-based attempt number
            start_attempt: Resume numbering after attempts already recorded
            payload: Stored with the dead letter when retries are exhausted
            on_attempt: Called with every AttemptRecord as it is produced
            should_continue: Checked before each retry (cancellation)
            classify: Decides whether an error is worth another attempt
        """
        outcome: RetryOutcome[T] = RetryOutcome()
        attempt = start_attempt

        if attempt > self.policy.max_attempts:
            # Budget was spent by an earlier delivery that died before recording the result.
            outcome.error = RetriesExhaustedError(attempt - 1)
            outcome.exhausted = True
            self._dead_letter(operation, outcome, job_id, target_id, payload, attempt - 1)
            return outcome

        while True:
            started = self.clock.now()
            try:
                value = await func(attempt)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                retryable = classify(e)
                record = AttemptRecord(
                    job_id=job_id,
                    operation=operation,
                    target_id=target_id,
                    attempt=attempt,
                    started_at=started,
                    finished_at=self.clock.now(),
                    error_code=error_code(e),
                    error_message=str(e) or type(e).__name__,
                    retryable=retryable,
                )
                outcome.history.append(record)
                if on_attempt is not None:
                    on_attempt(record)

                if not retryable:
                    logger.warning(
                        "operation_failed_terminal",
                        operation=operation.value,
                        job_id=job_id,
                        target_id=target_id or None,
                        attempt=attempt,
                        code=record.error_code,
                    )
                    outcome.error = e
                    return outcome

                if attempt >= self.policy.max_attempts:
                    outcome.error = RetriesExhaustedError(attempt, e)
                    outcome.exhausted = True
                    self._dead_letter(operation, outcome, job_id, target_id, payload, attempt)
                    return outcome

                if should_continue is not None and not await should_continue():
                    logger.info(
                        "retry_stopped_cancelled",
                        operation=operation.value,
                        job_id=job_id,
                        target_id=target_id or None,
                        attempt=attempt,
                    )
                    outcome.cancelled = True
                    outcome.error = JobCancelledError(f"Job {job_id} was cancelled")
                    return outcome

                delay = self.policy.next_delay(attempt, self._rng)
                logger.info(
                    "operation_retry_scheduled",
                    operation=operation.value,
                    job_id=job_id,
                    target_id=target_id or None,
                    attempt=attempt,
                    delay_seconds=round(delay, 3),
                    code=record.error_code,
                )
                await self._sleep(delay)
                attempt += 1
                continue

            record = AttemptRecord(
                job_id=job_id,
                operation=operation,
                target_id=target_id,
                attempt=attempt,
                started_at=started,
                finished_at=self.clock.now(),
            )
            outcome.history.append(record)
            if on_attempt is not None:
                on_attempt(record)
            outcome.value = value
            return outcome

    def _dead_letter(
        self,
        operation: Operation,
        outcome: RetryOutcome[Any],
        job_id: str,
        target_id: str,
        payload: dict[str, Any] | None,
        attempts: int,
    ) -> None:
        logger.error(
            "operation_retries_exhausted",
            operation=operation.value,
            job_id=job_id,
            target_id=target_id or None,
            attempts=attempts,
        )
        if self.dead_letters is None:
            return
        entry = self.dead_letters.add(
            job_id=job_id,
            operation=operation.value,
            target_id=target_id or None,
            reason=RetriesExhaustedError.code,
            error=outcome.last_error,
            attempts=attempts,
            payload=payload,
        )
        outcome.dead_letter_id = entry.id
