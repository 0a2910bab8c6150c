"""
Lazy batch stream handed to the host.

A ResultStream owns the connection lease of its query. The lease is released
exactly once, by whichever comes first:

    - the last batch has been consumed
    - a fetch fails
    - the consumer calls aclose() or leaves `async with`
    - the stream is garbage collected without having been closed
"""

import asyncio
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, List, Optional, Set

from mssql_datasource.domain.types import ColumnDescriptor
from mssql_datasource.infrastructure.logging import get_logger
from mssql_datasource.ports.outbound.driver import Row

logger = get_logger(__name__)

CloseCallback = Callable[[Optional[BaseException]], Awaitable[None]]

# asyncio only keeps weak references to tasks: releases of abandoned streams
# are held here until they finish
_pending_releases: Set[asyncio.Task] = set()


class ResultStream:
    """
    Async iterator of row batches plus the metadata known before the first batch.

    Example usage:
        async with await executor.execute(query, config) as stream:
            print(stream.column_types, stream.expected_row_count)
            async for batch in stream:
                handle(batch)
    """

    def __init__(
        self,
        batches: AsyncIterator[List[Row]],
        column_types: List[ColumnDescriptor],
        expected_row_count: Optional[int],
        on_close: CloseCallback
    ):
        self._batches = batches
        self.column_types = column_types
        self.expected_row_count = expected_row_count
        self._on_close = on_close
        self._closed = False
        self._loop = asyncio.get_running_loop()

    @property
    def closed(self) -> bool:
        return self._closed

    def column_types_for_host(self) -> List[Dict[str, Any]]:
        """Column descriptors in the host's wire shape."""
        return [column.to_host() for column in self.column_types]

    def __aiter__(self) -> "ResultStream":
        return self

    async def __anext__(self) -> List[Row]:
        if self._closed:
            raise StopAsyncIteration
        try:
            return await self._batches.__anext__()
        except StopAsyncIteration:
            await self._close()
            raise
        except BaseException as e:
            await self._close(e)
            raise

    async def aclose(self) -> None:
        """Stop the stream early and release its connection."""
        await self._close()

    async def _close(self, error: Optional[BaseException] = None) -> None:
        if self._closed:
            return
        self._closed = True
        try:
            aclose = getattr(self._batches, "aclose", None)
            if aclose is not None:
                await aclose()
        finally:
            await self._on_close(error)

    async def __aenter__(self) -> "ResultStream":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        # Errors raised by the stream already released the lease in __anext__;
        # anything else is the consumer's and says nothing about the connection
        await self._close()

    def __del__(self):
        loop = getattr(self, "_loop", None)
        if getattr(self, "_closed", True) or loop is None or loop.is_closed():
            return
        self._closed = True
        logger.warning("ResultStream was not closed, releasing its connection")
        loop.call_soon_threadsafe(_schedule_release, loop, self._batches, self._on_close)


def _schedule_release(loop: asyncio.AbstractEventLoop, batches: AsyncIterator[List[Row]], on_close: CloseCallback) -> None:
    task = loop.create_task(_release_abandoned(batches, on_close))
    _pending_releases.add(task)
    task.add_done_callback(_pending_releases.discard)


async def _release_abandoned(batches: AsyncIterator[List[Row]], on_close: CloseCallback) -> None:
    try:
        aclose = getattr(batches, "aclose", None)
        if aclose is not None:
            await aclose()
    except Exception as e:
        logger.error(f"Error closing abandoned result stream: {e}")
    finally:
        await on_close(None)
