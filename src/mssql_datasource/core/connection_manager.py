# src/mssql_datasource/core/connection_manager.py
"""
Connection acquisition and release.

Two strategies behind one interface:

    PerQueryConnectionManager   a fresh connection for every query, closed
                                when the query's stream ends
    SharedConnectionManager     one pool created lazily on first use and
                                shared by every query of the datasource

Every acquisition runs under the connection retry policy and returns a
ConnectionLease. The lease owns the cursors opened on it and releases them
together with the connection exactly once, whatever path ends the query.
"""

import asyncio
import random
from abc import ABC, abstractmethod
from enum import Enum
from typing import Awaitable, Callable, List, Optional

from mssql_datasource.core.retry import RetryPolicy, Sleep
from mssql_datasource.domain.credentials import ConnectionConfig, ConnectionMode
from mssql_datasource.domain.errors import (
    DatasourceError,
    FatalQueryError,
    ResourceCleanupError,
    is_transient,
    normalize_error,
)
from mssql_datasource.infrastructure.logging import get_logger
from mssql_datasource.ports.outbound.driver import (
    AbstractConnection,
    AbstractConnectionPool,
    AbstractCursor,
    AbstractDatabaseDriver,
)

logger = get_logger(__name__)

ReleaseCallback = Callable[[AbstractConnection, bool], Awaitable[None]]


class ConnectionLease:
    """
    A connection handed out to one query.

    release() is idempotent: the first call closes the cursors and gives the
    connection back through the manager's callback, later calls do nothing.
    Close failures are logged as ResourceCleanupError and never raised.
    """

    def __init__(self, connection: AbstractConnection, on_release: ReleaseCallback):
        self._connection = connection
        self._on_release = on_release
        self._cursors: List[AbstractCursor] = []
        self._released = False

    @property
    def connection(self) -> AbstractConnection:
        return self._connection

    @property
    def released(self) -> bool:
        return self._released

    async def cursor(self) -> AbstractCursor:
        """Open a cursor tracked by this lease."""
        if self._released:
            raise FatalQueryError("Connection lease already released")
        cursor = await self._connection.cursor()
        self._cursors.append(cursor)
        return cursor

    async def release(self, error: Optional[BaseException] = None) -> None:
        """
        Release the connection.

        Args:
            error: The failure that ended the query, if any. A transient
                   error marks the connection as broken so it is discarded
                   instead of reused.
        """
        if self._released:
            return
        self._released = True

        cursors, self._cursors = self._cursors, []
        for cursor in cursors:
            try:
                await cursor.close()
            except Exception as e:
                _log_cleanup_failure("cursor", e)

        discard = error is not None and is_transient(error)
        try:
            await self._on_release(self._connection, discard)
        except Exception as e:
            _log_cleanup_failure("connection", e)
        logger.debug(f"Connection lease released (discard={discard})")


def _log_cleanup_failure(resource: str, error: BaseException) -> ResourceCleanupError:
    cleanup_error = ResourceCleanupError(f"Error closing {resource}: {normalize_error(error)}")
    logger.error(str(cleanup_error))
    return cleanup_error


class ConnectionManager(ABC):
    """Hands out ConnectionLeases for a ConnectionConfig"""

    def __init__(
        self,
        driver: AbstractDatabaseDriver,
        sleep: Sleep = asyncio.sleep,
        rng: Callable[[], float] = random.random
    ):
        self._driver = driver
        self._sleep = sleep
        self._rng = rng

    async def acquire(self, config: ConnectionConfig) -> ConnectionLease:
        """Acquire a connection, retrying transient failures with the connection retry options."""
        policy = RetryPolicy(
            config.effective_connection_retry_options,
            sleep=self._sleep,
            rng=self._rng,
            operation="Connection attempt",
        )
        lease = await policy.run(self._acquire_once, config)
        logger.debug(f"Connection lease acquired for {config.server}/{config.database}")
        return lease

    @abstractmethod
    async def _acquire_once(self, config: ConnectionConfig) -> ConnectionLease:
        pass

    @abstractmethod
    async def close(self) -> None:
        """Release every resource the manager still holds."""
        pass


class PerQueryConnectionManager(ConnectionManager):
    """One connection per query, closed on release"""

    async def _acquire_once(self, config: ConnectionConfig) -> ConnectionLease:
        connection = await self._driver.connect(config)
        return ConnectionLease(connection, self._close_connection)

    @staticmethod
    async def _close_connection(connection: AbstractConnection, discard: bool) -> None:
        if not connection.closed:
            await connection.close()
            logger.debug("Connection closed")

    async def close(self) -> None:
        # Nothing is held between queries
        return None


class HandleState(str, Enum):
    UNINITIALIZED = "uninitialized"
    CONNECTING = "connecting"
    READY = "ready"
    CLOSED = "closed"


class SharedConnectionManager(ConnectionManager):
    """
    One pool shared by every query.

    The pool is created on first use. Concurrent first callers wait on the
    same lock, so exactly one pool is ever created for them. A connection
    released after a transient failure tears the pool down; the next
    acquisition builds a new one. A different ConnectionConfig also replaces
    the pool.

    A replaced pool is detached under the lock and closed outside it. Closing
    does not wait for connections other queries still hold: the pool closes
    them as their leases give them back.
    """

    def __init__(
        self,
        driver: AbstractDatabaseDriver,
        sleep: Sleep = asyncio.sleep,
        rng: Callable[[], float] = random.random
    ):
        super().__init__(driver, sleep, rng)
        self._pool: Optional[AbstractConnectionPool] = None
        self._config: Optional[ConnectionConfig] = None
        self._state = HandleState.UNINITIALIZED
        self._lock = asyncio.Lock()

    @property
    def state(self) -> HandleState:
        return self._state

    async def _get_pool(self, config: ConnectionConfig) -> AbstractConnectionPool:
        pool = self._pool
        if pool is not None and self._config == config:
            return pool

        stale = None
        try:
            async with self._lock:
                if self._state == HandleState.CLOSED:
                    raise FatalQueryError("Connection manager is closed")

                if self._pool is not None and self._config != config:
                    logger.info("Connection configuration changed, replacing shared pool")
                    stale = self._detach()

                if self._pool is None:
                    self._state = HandleState.CONNECTING
                    try:
                        self._pool = await self._driver.create_pool(config)
                    except BaseException:
                        self._state = HandleState.UNINITIALIZED
                        raise
                    self._config = config
                    self._state = HandleState.READY
                    logger.debug("Shared connection pool initialized")

                return self._pool
        finally:
            await _close_pool(stale)

    async def _acquire_once(self, config: ConnectionConfig) -> ConnectionLease:
        pool = await self._get_pool(config)
        try:
            connection = await pool.acquire()
        except DatasourceError as e:
            if is_transient(e):
                await self.invalidate(pool)
            raise

        async def give_back(conn: AbstractConnection, discard: bool) -> None:
            if discard:
                # Stop lending from the broken pool before returning the connection
                await self.invalidate(pool)
            await pool.release(conn, discard=discard)

        return ConnectionLease(connection, give_back)

    async def invalidate(self, pool: Optional[AbstractConnectionPool] = None) -> None:
        """
        Drop the shared pool so the next caller re-establishes it.

        Args:
            pool: Only drop the pool if it is still this one. A pool created
                  after the failure is left alone.
        """
        async with self._lock:
            if self._pool is None or (pool is not None and self._pool is not pool):
                return
            logger.warning("Discarding shared connection pool after connection failure")
            stale = self._detach()
            if self._state != HandleState.CLOSED:
                self._state = HandleState.UNINITIALIZED
        await _close_pool(stale)

    def _detach(self) -> Optional[AbstractConnectionPool]:
        pool, self._pool, self._config = self._pool, None, None
        return pool

    async def close(self) -> None:
        async with self._lock:
            stale = self._detach()
            self._state = HandleState.CLOSED
        await _close_pool(stale)
        logger.debug("Shared connection manager closed")


async def _close_pool(pool: Optional[AbstractConnectionPool]) -> None:
    if pool is None:
        return
    try:
        await pool.close()
    except Exception as e:
        _log_cleanup_failure("connection pool", e)


def create_connection_manager(
    mode: ConnectionMode,
    driver: AbstractDatabaseDriver,
    sleep: Sleep = asyncio.sleep,
    rng: Callable[[], float] = random.random
) -> ConnectionManager:
    """Pick the manager implementation for a connection mode."""
    if mode == ConnectionMode.SHARED:
        return SharedConnectionManager(driver, sleep=sleep, rng=rng)
    return PerQueryConnectionManager(driver, sleep=sleep, rng=rng)
