"""Tests for call_with_timeout, deadline and iter_with_timeout."""

import asyncio

import pytest

from filemover.core.errors import CallTimeoutError, is_retryable
from filemover.execution.timeout import call_with_timeout, deadline, iter_with_timeout


async def slow(value="late", seconds=1.0):
    await asyncio.sleep(seconds)
    return value


class TestCallWithTimeout:
    @pytest.mark.asyncio
    async def test_returns_value(self):
        assert await call_with_timeout(slow("ok", 0), 1.0) == "ok"

    @pytest.mark.asyncio
    async def test_expired_bound_raises_retryable(self):
        with pytest.raises(CallTimeoutError) as exc:
            await call_with_timeout(slow(), 0.01, "credential.resolve")
        assert "credential.resolve" in str(exc.value)
        assert is_retryable(exc.value)

    @pytest.mark.asyncio
    async def test_rejects_non_positive(self):
        coro = slow("ok", 0)
        with pytest.raises(ValueError):
            await call_with_timeout(coro, 0)
        coro.close()


class TestDeadline:
    @pytest.mark.asyncio
    async def test_body_within_deadline(self):
        async with deadline(1.0, "transfer"):
            await asyncio.sleep(0)

    @pytest.mark.asyncio
    async def test_body_past_deadline(self):
        with pytest.raises(CallTimeoutError):
            async with deadline(0.01, "transfer"):
                await asyncio.sleep(1)

    @pytest.mark.asyncio
    async def test_body_timeout_error_passes_through(self):
        with pytest.raises(TimeoutError) as exc:
            async with deadline(1.0, "transfer"):
                raise TimeoutError("remote read timed out")
        assert not isinstance(exc.value, CallTimeoutError)


class TestIterWithTimeout:
    @pytest.mark.asyncio
    async def test_passes_items_through(self):
        async def source():
            for i in range(3):
                yield i

        assert [i async for i in iter_with_timeout(source(), 1.0)] == [0, 1, 2]

    @pytest.mark.asyncio
    async def test_stalled_stream(self):
        async def stalls():
            yield b"first"
            await asyncio.sleep(1)
            yield b"never"

        received = []
        with pytest.raises(CallTimeoutError):
            async for chunk in iter_with_timeout(stalls(), 0.01, "generation.chunk"):
                received.append(chunk)
        assert received == [b"first"]

    @pytest.mark.asyncio
    async def test_source_errors_propagate(self):
        async def broken():
            yield b"first"
            raise OSError("disk gone")

        with pytest.raises(OSError):
            async for _ in iter_with_timeout(broken(), 1.0):
                pass
