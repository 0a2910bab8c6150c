"""
Unit tests for ResultStream.

Tests verify:
- Errors raised by the stream reach the release callback
- The consumer's own errors do not mark the connection as broken
- An abandoned stream closes its batches and finishes a release that suspends
"""

import asyncio
import gc

import pytest

from mssql_datasource.core import result_stream
from mssql_datasource.core.result_stream import ResultStream
from mssql_datasource.domain.errors import TransientConnectionError


class SlowRelease:
    """Release callback that yields to the loop a few times before finishing."""

    def __init__(self):
        self.calls = []
        self.finished = asyncio.Event()

    async def __call__(self, error):
        self.calls.append(error)
        for _ in range(3):
            await asyncio.sleep(0)
        self.finished.set()


async def two_batches(events, error=None):
    try:
        yield [(1,), (2,)]
        if error is not None:
            raise error
        yield [(3,)]
    finally:
        events.append("batches closed")


def pending_on_this_loop():
    loop = asyncio.get_running_loop()
    return [task for task in result_stream._pending_releases if task.get_loop() is loop and not task.done()]


class TestRelease:

    @pytest.mark.asyncio
    async def test_stream_error_reaches_release(self):
        events, release = [], SlowRelease()
        error = TransientConnectionError("Connection lost")
        stream = ResultStream(two_batches(events, error), [], None, on_close=release)

        await stream.__anext__()
        with pytest.raises(TransientConnectionError):
            await stream.__anext__()

        assert release.calls == [error]
        assert stream.closed is True

    @pytest.mark.asyncio
    async def test_consumer_error_does_not_discard_connection(self):
        """An exception raised in the `async with` body is not a connection failure."""
        events, release = [], SlowRelease()

        with pytest.raises(ValueError):
            async with ResultStream(two_batches(events), [], None, on_close=release) as stream:
                await stream.__anext__()
                raise ValueError("Timeout while rendering the report")

        assert release.calls == [None]
        assert events == ["batches closed"]


class TestAbandonedStream:

    @pytest.mark.asyncio
    async def test_release_is_held_until_it_finishes(self):
        events, release = [], SlowRelease()
        stream = ResultStream(two_batches(events), [], None, on_close=release)
        await stream.__anext__()

        del stream
        gc.collect()
        await asyncio.sleep(0)

        assert len(pending_on_this_loop()) == 1
        await asyncio.wait_for(release.finished.wait(), 1)
        assert release.calls == [None]
        assert events == ["batches closed"]

    @pytest.mark.asyncio
    async def test_closed_stream_schedules_nothing(self):
        events, release = [], SlowRelease()
        stream = ResultStream(two_batches(events), [], None, on_close=release)
        await stream.aclose()

        del stream
        gc.collect()
        await asyncio.sleep(0)

        assert pending_on_this_loop() == []
        assert release.calls == [None]
