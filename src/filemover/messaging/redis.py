"""
Redis reliable-queue channel.

Architecture:
    ::

        publish ──LPUSH──► {prefix}:queue:{name}
                                 │
        receive ◄──BLMOVE────────┘──► {prefix}:processing:{name}:{consumer}
                                             │
        ack      LREM processing ◄───────────┘
        nack     LPUSH queue (deliveries + 1), then LREM processing

    Every consumer owns its processing list and keeps a lease key alive
    (``{prefix}:lease:{name}:{consumer}``, refreshed by ``heartbeat()``).
    Consumers register in ``{prefix}:consumers:{name}``. A consumer that
    dies between receive and ack leaves its messages in its own processing
    list; once its lease has expired ``requeue_in_flight()`` on any other
    consumer moves them back to the queue. Lists of live consumers are
    never touched.

Tags:
    filemover, messaging, redis, reliable-queue, at-least-once, leases
"""

from __future__ import annotations

import json
import time
import uuid
from collections.abc import Awaitable
from typing import Any, TypeVar

import redis.asyncio as aioredis
from redis.exceptions import RedisError

from filemover.core.errors import ChannelUnavailableError
from filemover.core.logging import get_logger
from filemover.messaging.channel import Delivery

__all__ = ["RedisChannel"]

logger = get_logger(__name__)

T = TypeVar("T")


class RedisChannel:
    """Reliable list queue on Redis.

    Example::

        channel = RedisChannel.from_url("redis://localhost:6379/0", "transfer", consumer_id="node-1-a1b2")
        await channel.publish(request.to_json())
        delivery = await channel.receive(timeout=5)
        ...
        await channel.ack(delivery)
    """

    def __init__(
        self,
        client: Any,
        name: str,
        *,
        key_prefix: str = "filemover",
        consumer_id: str | None = None,
        lease_seconds: int = 30,
    ) -> None:
        self._client = client
        self.name = name
        self.consumer_id = consumer_id or uuid.uuid4().hex
        self.lease_seconds = lease_seconds
        self._prefix = key_prefix
        self.queue_key = f"{key_prefix}:queue:{name}"
        self.consumers_key = f"{key_prefix}:consumers:{name}"
        self.processing_key = self.processing_key_for(self.consumer_id)
        self.lease_key = self.lease_key_for(self.consumer_id)
        self._last_heartbeat: float | None = None

    @classmethod
    def from_url(cls, url: str, name: str, **kwargs: Any) -> RedisChannel:
        # No socket read timeout: BLMOVE blocks for up to the receive timeout.
        client = aioredis.from_url(url, decode_responses=True, socket_connect_timeout=5.0)
        return cls(client, name, **kwargs)

    def processing_key_for(self, consumer_id: str) -> str:
        return f"{self._prefix}:processing:{self.name}:{consumer_id}"

    def lease_key_for(self, consumer_id: str) -> str:
        return f"{self._prefix}:lease:{self.name}:{consumer_id}"

    async def _call(self, operation: str, awaitable: Awaitable[T]) -> T:
        try:
            return await awaitable
        except (RedisError, OSError) as e:
            logger.warning("channel_call_failed", channel=self.name, operation=operation, error=str(e))
            raise ChannelUnavailableError(f"Redis {operation} on {self.name} failed: {e}", cause=e) from e

    @staticmethod
    def _envelope(message_id: str, body: str, deliveries: int) -> str:
        return json.dumps({"id": message_id, "body": body, "deliveries": deliveries})

    async def heartbeat(self) -> None:
        """Register this consumer and extend its lease."""
        await self._call("heartbeat", self._client.set(self.lease_key, "1", ex=self.lease_seconds))
        await self._call("heartbeat", self._client.sadd(self.consumers_key, self.consumer_id))
        self._last_heartbeat = time.monotonic()

    async def _ensure_lease(self) -> None:
        # The lease must be live before anything lands in our processing list.
        if self._last_heartbeat is None or time.monotonic() - self._last_heartbeat > self.lease_seconds / 3:
            await self.heartbeat()

    async def publish(self, body: str) -> str:
        message_id = uuid.uuid4().hex
        await self._call("publish", self._client.lpush(self.queue_key, self._envelope(message_id, body, 0)))
        return message_id

    async def receive(self, timeout: float = 1.0) -> Delivery | None:
        await self._ensure_lease()
        raw = await self._call(
            "receive",
            self._client.blmove(self.queue_key, self.processing_key, timeout, "RIGHT", "LEFT"),
        )
        if raw is None:
            return None
        envelope = json.loads(raw)
        return Delivery(
            id=envelope["id"],
            channel=self.name,
            body=envelope["body"],
            delivery_count=int(envelope.get("deliveries", 0)) + 1,
            receipt=raw,
        )

    async def ack(self, delivery: Delivery) -> None:
        await self._call("ack", self._client.lrem(self.processing_key, 1, delivery.receipt))

    async def nack(self, delivery: Delivery, requeue: bool = True) -> None:
        if requeue:
            envelope = self._envelope(delivery.id, delivery.body, delivery.delivery_count)
            await self._call("nack", self._client.lpush(self.queue_key, envelope))
        await self._call("nack", self._client.lrem(self.processing_key, 1, delivery.receipt))

    async def requeue_in_flight(self) -> int:
        """Move messages held by consumers whose lease expired back to the queue.

        Returns how many messages moved. Consumers with a live lease, this
        one included, keep their processing lists.
        """
        moved = 0
        members = await self._call("requeue", self._client.smembers(self.consumers_key))
        for consumer_id in sorted(members):
            if consumer_id == self.consumer_id:
                continue
            if await self._call("requeue", self._client.exists(self.lease_key_for(consumer_id))):
                continue
            source = self.processing_key_for(consumer_id)
            recovered = 0
            while True:
                raw = await self._call(
                    "requeue",
                    self._client.lmove(source, self.queue_key, "RIGHT", "LEFT"),
                )
                if raw is None:
                    break
                recovered += 1
            await self._call("requeue", self._client.srem(self.consumers_key, consumer_id))
            if recovered:
                logger.info(
                    "channel_requeued_in_flight",
                    channel=self.name,
                    consumer_id=consumer_id,
                    count=recovered,
                )
            moved += recovered
        return moved

    async def size(self) -> int:
        return int(await self._call("size", self._client.llen(self.queue_key)))

    async def close(self) -> None:
        try:
            # Registration stays so anything still in our processing list is recovered.
            if self._last_heartbeat is not None:
                await self._client.delete(self.lease_key)
        except (RedisError, OSError) as e:
            logger.warning("channel_close_failed", channel=self.name, error=str(e))
        finally:
            await self._client.aclose()
