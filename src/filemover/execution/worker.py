"""Stage worker: consume a channel with a bounded pool of handler tasks.

The StageWorker bridges a work channel to a stage handler. It receives
deliveries, runs at most ``concurrency`` handlers at once and acks each
delivery after its handler returns.

Failure handling:
    - Handler returns normally → ack (terminal failures are recorded on the
      job by the stage itself and are not exceptions here)
    - Message body fails validation → dead letter, ack (poison message)
    - Handler raises → nack and redeliver; once ``delivery_count`` reaches
      ``max_deliveries`` → dead letter, ack

Usage::

    worker = StageWorker(transfer_channel, transfer_stage.handle,
                         concurrency=8, dead_letters=dlq, name="transfer")
    await worker.run()          # until worker.stop()
"""

from __future__ import annotations

import asyncio
import contextlib
import json
from collections.abc import AsyncIterator, Awaitable, Callable
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from pydantic import ValidationError

from filemover.core.errors import ChannelUnavailableError
from filemover.core.logging import LogContext, get_logger
from filemover.core.models import Operation
from filemover.core.timestamps import Clock, SystemClock
from filemover.execution.dlq import DeadLetterStore
from filemover.messaging.channel import Channel, Delivery

logger = get_logger(__name__)

Handler = Callable[[Delivery], Awaitable[None]]


@dataclass
class WorkerStats:
    """Aggregate statistics for a worker."""

    received: int = 0
    succeeded: int = 0
    failed: int = 0
    redelivered: int = 0
    dead_lettered: int = 0
    started_at: datetime | None = None
    last_receive_at: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "received": self.received,
            "succeeded": self.succeeded,
            "failed": self.failed,
            "redelivered": self.redelivered,
            "dead_lettered": self.dead_lettered,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "last_receive_at": self.last_receive_at.isoformat() if self.last_receive_at else None,
        }


def _job_id_of(body: str) -> str:
    try:
        data = json.loads(body)
    except ValueError:
        return "unknown"
    if isinstance(data, dict):
        return str(data.get("jobId") or data.get("job_id") or "unknown")
    return "unknown"


class StageWorker:
    """Consume loop with a bounded pool of concurrent handlers."""

    def __init__(
        self,
        channel: Channel,
        handler: Handler,
        *,
        concurrency: int = 1,
        dead_letters: DeadLetterStore | None = None,
        max_deliveries: int = 5,
        receive_timeout: float = 1.0,
        heartbeat_interval: float = 10.0,
        name: str | None = None,
        clock: Clock | None = None,
    ) -> None:
        if concurrency < 1:
            raise ValueError("concurrency must be >= 1")
        self.channel = channel
        self.handler = handler
        self.concurrency = concurrency
        self.dead_letters = dead_letters
        self.max_deliveries = max_deliveries
        self.receive_timeout = receive_timeout
        self.heartbeat_interval = heartbeat_interval
        self.name = name or channel.name
        self.clock: Clock = clock or SystemClock()
        self.stats = WorkerStats()
        self._slots = asyncio.Semaphore(concurrency)
        self._tasks: set[asyncio.Task[None]] = set()
        self._stopping = asyncio.Event()

    @property
    def in_flight(self) -> int:
        return len(self._tasks)

    def stop(self) -> None:
        self._stopping.set()

    async def run(self) -> None:
        """Receive and dispatch until ``stop()``; waits for in-flight handlers."""
        self.stats.started_at = self.clock.now()
        logger.info("worker_started", worker=self.name, concurrency=self.concurrency)
        async with self._heartbeats():
            try:
                await self._consume()
            finally:
                await self.drain()
                logger.info("worker_stopped", worker=self.name, **self.stats.to_dict())

    async def _consume(self) -> None:
        while not self._stopping.is_set():
            await self._slots.acquire()
            try:
                delivery = await self.channel.receive(timeout=self.receive_timeout)
            except ChannelUnavailableError:
                self._slots.release()
                logger.warning("worker_channel_unavailable", worker=self.name)
                await asyncio.sleep(self.receive_timeout)
                continue
            if delivery is None:
                self._slots.release()
                continue
            self._spawn(delivery)

    async def run_until_idle(self, max_messages: int | None = None) -> int:
        """Process deliveries until the channel is empty. Returns how many."""
        processed = 0
        async with self._heartbeats():
            while max_messages is None or processed < max_messages:
                await self._slots.acquire()
                delivery = await self.channel.receive(timeout=self.receive_timeout)
                if delivery is None:
                    self._slots.release()
                    break
                self._spawn(delivery)
                processed += 1
            await self.drain()
        return processed

    @contextlib.asynccontextmanager
    async def _heartbeats(self) -> AsyncIterator[None]:
        """Keep the channel lease alive while handlers hold deliveries.

        ``receive()`` is not called while every slot is busy, so a pool of
        long transfers would otherwise let the lease lapse.
        """
        task = asyncio.create_task(self._keepalive())
        try:
            yield
        finally:
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task

    async def _keepalive(self) -> None:
        while True:
            await asyncio.sleep(self.heartbeat_interval)
            try:
                await self.channel.heartbeat()
            except ChannelUnavailableError:
                logger.warning("worker_heartbeat_failed", worker=self.name)

    async def drain(self) -> None:
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def _spawn(self, delivery: Delivery) -> None:
        self.stats.received += 1
        self.stats.last_receive_at = self.clock.now()
        task = asyncio.create_task(self._process(delivery))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _process(self, delivery: Delivery) -> None:
        try:
            async with LogContext(worker=self.name, message_id=delivery.id):
                await self._handle(delivery)
        finally:
            self._slots.release()

    async def _handle(self, delivery: Delivery) -> None:
        try:
            await self.handler(delivery)
        except ValidationError as e:
            self.stats.failed += 1
            logger.error("worker_invalid_message", worker=self.name, error=str(e))
            self._dead_letter(delivery, "InvalidMessage", str(e))
            await self.channel.ack(delivery)
            return
        except Exception as e:
            self.stats.failed += 1
            logger.exception(
                "worker_handler_failed",
                worker=self.name,
                delivery_count=delivery.delivery_count,
                error=str(e),
            )
            if delivery.delivery_count >= self.max_deliveries:
                self._dead_letter(delivery, "DeliveryCapExceeded", f"{type(e).__name__}: {e}")
                await self.channel.ack(delivery)
            else:
                self.stats.redelivered += 1
                await self.channel.nack(delivery, requeue=True)
            return

        self.stats.succeeded += 1
        await self.channel.ack(delivery)

    def _dead_letter(self, delivery: Delivery, reason: str, error: str) -> None:
        self.stats.dead_lettered += 1
        if self.dead_letters is None:
            logger.error("worker_message_dropped", worker=self.name, reason=reason)
            return
        self.dead_letters.add(
            job_id=_job_id_of(delivery.body),
            operation=Operation.DELIVERY.value,
            target_id=None,
            reason=reason,
            error=error,
            attempts=delivery.delivery_count,
            payload={"channel": delivery.channel, "message_id": delivery.id, "body": delivery.body},
            dedupe=False,
        )
