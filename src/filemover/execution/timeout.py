"""Timeouts for every external call.

Coordinator round-trips, channel publishes, credential lookups, artifact
generation and transfers all run under a bound. An expired bound raises
``CallTimeoutError``, which is retryable.

Examples:
    >>> result = await call_with_timeout(client.fetch(), 10.0, operation="fetch")

    >>> async with deadline(300.0, operation="transfer"):
    ...     await client.send(...)

    >>> async for chunk in iter_with_timeout(generator.generate(path), 30.0, "generate"):
    ...     ...
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterable, AsyncIterator, Awaitable
from contextlib import asynccontextmanager
from typing import TypeVar

from filemover.core.errors import CallTimeoutError

T = TypeVar("T")


async def call_with_timeout(awaitable: Awaitable[T], seconds: float, operation: str = "call") -> T:
    """Await ``awaitable`` for at most ``seconds``.

    Raises:
        CallTimeoutError: The bound expired
    """
    if seconds <= 0:
        raise ValueError(f"Timeout must be positive, got {seconds}")
    try:
        return await asyncio.wait_for(awaitable, timeout=seconds)
    except TimeoutError as e:
        raise CallTimeoutError(operation, seconds) from e


@asynccontextmanager
async def deadline(seconds: float, operation: str = "operation"):
    """Bound the whole ``async with`` body to ``seconds``."""
    if seconds <= 0:
        raise ValueError(f"Timeout must be positive, got {seconds}")
    scope = asyncio.timeout(seconds)
    try:
        async with scope:
            yield
    except TimeoutError as e:
        # A TimeoutError raised by the body itself is not ours to rename.
        if not scope.expired():
            raise
        raise CallTimeoutError(operation, seconds) from e


async def iter_with_timeout(
    source: AsyncIterable[T], seconds: float, operation: str = "stream"
) -> AsyncIterator[T]:
    """Re-yield ``source``, bounding the wait for each item to ``seconds``.

    A stalled stream fails even when the overall deadline is far away.
    """
    iterator = source.__aiter__()

    async def _next() -> T:
        return await anext(iterator)

    while True:
        try:
            item = await asyncio.wait_for(_next(), timeout=seconds)
        except StopAsyncIteration:
            return
        except TimeoutError as e:
            raise CallTimeoutError(operation, seconds) from e
        yield item
