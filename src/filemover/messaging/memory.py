"""In-process channel on an ``asyncio.Queue``."""

from __future__ import annotations

import asyncio
import uuid

from filemover.messaging.channel import Delivery


class InMemoryChannel:
    """Queue with ack/nack semantics for tests and single-process runs.

    ``published`` keeps every body ever accepted, which tests use to assert
    how many requests a stage emitted.
    """

    def __init__(self, name: str):
        self.name = name
        self._queue: asyncio.Queue[tuple[str, str, int]] = asyncio.Queue()
        self._in_flight: dict[str, Delivery] = {}
        self.published: list[str] = []
        self.acked: list[str] = []

    async def publish(self, body: str) -> str:
        message_id = uuid.uuid4().hex
        self.published.append(body)
        await self._queue.put((message_id, body, 0))
        return message_id

    async def receive(self, timeout: float = 1.0) -> Delivery | None:
        try:
            message_id, body, previous = await asyncio.wait_for(self._queue.get(), timeout)
        except TimeoutError:
            return None
        delivery = Delivery(
            id=message_id, channel=self.name, body=body, delivery_count=previous + 1
        )
        self._in_flight[message_id] = delivery
        return delivery

    async def ack(self, delivery: Delivery) -> None:
        if self._in_flight.pop(delivery.id, None) is not None:
            self.acked.append(delivery.id)

    async def nack(self, delivery: Delivery, requeue: bool = True) -> None:
        if self._in_flight.pop(delivery.id, None) is None:
            return
        if requeue:
            await self._queue.put((delivery.id, delivery.body, delivery.delivery_count))

    async def size(self) -> int:
        return self._queue.qsize()

    async def heartbeat(self) -> None:
        pass

    @property
    def in_flight(self) -> int:
        return len(self._in_flight)

    async def close(self) -> None:
        self._in_flight.clear()
