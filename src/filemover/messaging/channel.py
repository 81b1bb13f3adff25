"""Work channel protocol.

A channel is a durable queue with explicit acknowledgement. A delivery
that is received but never acked (the worker crashed) comes back, so every
handler must be idempotent. ``delivery_count`` lets the worker dead-letter
a message that keeps failing.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Protocol, runtime_checkable

GENERATION_CHANNEL = "generation"
TRANSFER_CHANNEL = "transfer"


@dataclass(frozen=True)
class Delivery:
    """One received message awaiting ack or nack."""

    id: str
    channel: str
    body: str
    delivery_count: int = 1
    receipt: Any = None


@runtime_checkable
class Channel(Protocol):
    name: str

    async def publish(self, body: str) -> str:
        """Enqueue ``body``; returns the message id once it is durably accepted."""
        ...

    async def receive(self, timeout: float = 1.0) -> Delivery | None:
        """Next delivery, or None after ``timeout`` seconds."""
        ...

    async def ack(self, delivery: Delivery) -> None:
        ...

    async def nack(self, delivery: Delivery, requeue: bool = True) -> None:
        ...

    async def size(self) -> int:
        ...

    async def heartbeat(self) -> None:
        """Tell the backend this consumer is alive and still owns its in-flight messages."""
        ...

    async def close(self) -> None:
        ...
