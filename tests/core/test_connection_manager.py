"""
Unit tests for connection acquisition and release.

Tests verify:
- Leases release exactly once and never raise on close failures
- Per-query connections are closed on release
- The shared pool is created once, even for concurrent first callers
- A transient failure discards the shared pool
- Acquisition retries transient failures
- Discarding a pool never waits on connections other queries still hold
"""

import asyncio

import pytest
from loguru import logger

from mssql_datasource.core.connection_manager import (
    ConnectionLease,
    HandleState,
    PerQueryConnectionManager,
    SharedConnectionManager,
    create_connection_manager,
)
from mssql_datasource.domain.credentials import ConnectionMode, build_connection_config
from mssql_datasource.domain.errors import (
    ConfigurationError,
    FatalQueryError,
    TransientConnectionError,
)


@pytest.fixture
def config(sql_login_options):
    return build_connection_config(sql_login_options)


class TestConnectionLease:
    """Test lease release semantics."""

    @pytest.mark.asyncio
    async def test_release_is_idempotent(self, driver_factory):
        driver = driver_factory()
        connection = await driver.connect(None)
        calls = []

        async def on_release(conn, discard):
            calls.append((conn, discard))

        lease = ConnectionLease(connection, on_release)
        await lease.release()
        await lease.release()
        await lease.release(TransientConnectionError("late"))

        assert calls == [(connection, False)]
        assert lease.released is True

    @pytest.mark.asyncio
    async def test_release_closes_tracked_cursors(self, driver_factory):
        driver = driver_factory()
        connection = await driver.connect(None)

        async def on_release(conn, discard):
            pass

        lease = ConnectionLease(connection, on_release)
        cursors = [await lease.cursor(), await lease.cursor()]
        await lease.release()

        assert [c.close_calls for c in cursors] == [1, 1]

    @pytest.mark.asyncio
    async def test_transient_error_discards_connection(self, driver_factory):
        driver = driver_factory()
        connection = await driver.connect(None)
        calls = []

        async def on_release(conn, discard):
            calls.append(discard)

        await ConnectionLease(connection, on_release).release(TransientConnectionError("Connection lost"))
        await ConnectionLease(connection, on_release).release(FatalQueryError("syntax"))

        assert calls == [True, False]

    @pytest.mark.asyncio
    async def test_close_failure_is_logged_not_raised(self, driver_factory):
        driver = driver_factory()
        connection = await driver.connect(None)

        async def on_release(conn, discard):
            raise RuntimeError("socket already closed")

        lease = ConnectionLease(connection, on_release)
        await lease.release(FatalQueryError("original failure"))

        assert lease.released is True

    @pytest.mark.asyncio
    async def test_no_cursor_after_release(self, driver_factory):
        driver = driver_factory()
        connection = await driver.connect(None)

        async def on_release(conn, discard):
            pass

        lease = ConnectionLease(connection, on_release)
        await lease.release()

        with pytest.raises(FatalQueryError):
            await lease.cursor()

    @pytest.mark.asyncio
    async def test_acquire_and_release_are_logged(self, driver_factory, config, fake_sleep):
        messages = []
        handler_id = logger.add(lambda message: messages.append(message.record["message"]), level="DEBUG")
        try:
            lease = await PerQueryConnectionManager(driver_factory(), sleep=fake_sleep).acquire(config)
            await lease.release()
        finally:
            logger.remove(handler_id)

        assert "Connection lease acquired for sql.example.com/warehouse" in messages
        assert "Connection lease released (discard=False)" in messages


class TestPerQueryConnectionManager:
    """Test the one-connection-per-query strategy."""

    @pytest.mark.asyncio
    async def test_fresh_connection_each_time(self, driver_factory, config, fake_sleep):
        driver = driver_factory()
        manager = PerQueryConnectionManager(driver, sleep=fake_sleep)

        first = await manager.acquire(config)
        second = await manager.acquire(config)

        assert first.connection is not second.connection
        assert driver.connect_calls == 2

    @pytest.mark.asyncio
    async def test_release_closes_connection_once(self, driver_factory, config, fake_sleep):
        driver = driver_factory()
        manager = PerQueryConnectionManager(driver, sleep=fake_sleep)

        lease = await manager.acquire(config)
        await lease.release()
        await lease.release()

        assert driver.connections[0].close_calls == 1

    @pytest.mark.asyncio
    async def test_close_error_does_not_escape(self, driver_factory, config, fake_sleep):
        driver = driver_factory(close_error=RuntimeError("close failed"))
        manager = PerQueryConnectionManager(driver, sleep=fake_sleep)

        lease = await manager.acquire(config)
        await lease.release()

        assert driver.connections[0].close_calls == 1

    @pytest.mark.asyncio
    async def test_acquire_retries_transient_failures(self, driver_factory, config, fake_sleep):
        driver = driver_factory(connect_errors=[
            TransientConnectionError("Failed to connect"),
            TransientConnectionError("ECONNREFUSED"),
        ])
        manager = PerQueryConnectionManager(driver, sleep=fake_sleep)

        lease = await manager.acquire(config)

        assert lease.connection is driver.connections[0]
        assert driver.connect_calls == 3
        assert len(fake_sleep.delays) == 2

    @pytest.mark.asyncio
    async def test_acquire_uses_connection_retry_options(self, driver_factory, sql_login_options, fake_sleep):
        config = build_connection_config({
            **sql_login_options,
            "connectionRetryOptions": {"maxRetries": 2, "baseDelay": 1, "maxDelay": 1},
        })
        driver = driver_factory(connect_errors=[TransientConnectionError("ETIMEOUT")] * 5)
        manager = PerQueryConnectionManager(driver, sleep=fake_sleep)

        with pytest.raises(TransientConnectionError):
            await manager.acquire(config)

        assert driver.connect_calls == 2

    @pytest.mark.asyncio
    async def test_acquire_does_not_retry_fatal_failures(self, driver_factory, config, fake_sleep):
        driver = driver_factory(connect_errors=[FatalQueryError("Login failed for user 'reporter'.")])
        manager = PerQueryConnectionManager(driver, sleep=fake_sleep)

        with pytest.raises(FatalQueryError):
            await manager.acquire(config)

        assert driver.connect_calls == 1

    @pytest.mark.asyncio
    async def test_connection_retry_jitter_uses_injected_rng(self, driver_factory, config, fake_sleep):
        driver = driver_factory(connect_errors=[TransientConnectionError("ECONNRESET")])
        manager = PerQueryConnectionManager(driver, sleep=fake_sleep, rng=lambda: 1.0)

        await manager.acquire(config)

        # baseDelay 10 ms, full 20% jitter
        assert fake_sleep.delays == [pytest.approx(0.012)]


class TestSharedConnectionManager:
    """Test the shared pool strategy."""

    @pytest.mark.asyncio
    async def test_pool_created_lazily_and_reused(self, driver_factory, config, fake_sleep):
        driver = driver_factory()
        manager = SharedConnectionManager(driver, sleep=fake_sleep)
        assert manager.state == HandleState.UNINITIALIZED

        first = await manager.acquire(config)
        await first.release()
        second = await manager.acquire(config)
        await second.release()

        assert driver.create_pool_calls == 1
        assert manager.state == HandleState.READY
        pool = driver.pools[0]
        assert [discard for _, discard in pool.released] == [False, False]
        # Returned to the pool, not closed
        assert all(conn.close_calls == 0 for conn in pool.acquired)

    @pytest.mark.asyncio
    async def test_concurrent_first_use_creates_one_pool(self, driver_factory, config, fake_sleep):
        driver = driver_factory(pool_delay=0.01)
        manager = SharedConnectionManager(driver, sleep=fake_sleep)

        leases = await asyncio.gather(*[manager.acquire(config) for _ in range(5)])

        assert driver.create_pool_calls == 1
        assert len(driver.pools[0].acquired) == 5
        assert len({id(lease.connection) for lease in leases}) == 5

    @pytest.mark.asyncio
    async def test_transient_release_discards_pool(self, driver_factory, config, fake_sleep):
        driver = driver_factory()
        manager = SharedConnectionManager(driver, sleep=fake_sleep)

        lease = await manager.acquire(config)
        await lease.release(TransientConnectionError("Connection lost"))

        assert driver.pools[0].close_calls == 1
        assert driver.pools[0].released[0][1] is True
        assert manager.state == HandleState.UNINITIALIZED

        await manager.acquire(config)
        assert driver.create_pool_calls == 2

    @pytest.mark.asyncio
    async def test_transient_acquire_failure_rebuilds_pool(self, driver_factory, config, fake_sleep):
        driver = driver_factory(acquire_errors=[TransientConnectionError("ECONNRESET")])
        manager = SharedConnectionManager(driver, sleep=fake_sleep)

        lease = await manager.acquire(config)

        assert driver.create_pool_calls == 2
        assert driver.pools[0].close_calls == 1
        assert lease.connection is driver.pools[1].acquired[0]

    @pytest.mark.asyncio
    async def test_stale_invalidate_keeps_new_pool(self, driver_factory, config, fake_sleep):
        driver = driver_factory()
        manager = SharedConnectionManager(driver, sleep=fake_sleep)
        await manager.acquire(config)
        old_pool = driver.pools[0]
        await manager.invalidate(old_pool)
        await manager.acquire(config)

        await manager.invalidate(old_pool)

        assert driver.pools[1].close_calls == 0
        assert manager.state == HandleState.READY

    @pytest.mark.asyncio
    async def test_config_change_replaces_pool(self, driver_factory, sql_login_options, fake_sleep):
        driver = driver_factory()
        manager = SharedConnectionManager(driver, sleep=fake_sleep)

        await manager.acquire(build_connection_config(sql_login_options))
        await manager.acquire(build_connection_config({**sql_login_options, "database": "archive"}))

        assert driver.create_pool_calls == 2
        assert driver.pools[0].close_calls == 1

    @pytest.mark.asyncio
    async def test_close(self, driver_factory, config, fake_sleep):
        driver = driver_factory()
        manager = SharedConnectionManager(driver, sleep=fake_sleep)
        await manager.acquire(config)

        await manager.close()

        assert driver.pools[0].close_calls == 1
        assert manager.state == HandleState.CLOSED
        with pytest.raises(FatalQueryError):
            await manager.acquire(config)

    @pytest.mark.asyncio
    async def test_discarded_pool_does_not_wait_for_borrowed_connections(self, driver_factory, config, fake_sleep):
        driver = driver_factory()
        manager = SharedConnectionManager(driver, sleep=fake_sleep)
        streaming = await manager.acquire(config)
        failing = await manager.acquire(config)
        old_pool = driver.pools[0]

        await asyncio.wait_for(failing.release(TransientConnectionError("Connection lost")), 1)

        assert old_pool.closing is True
        assert old_pool.in_use == [streaming.connection]
        assert streaming.connection.close_calls == 0

        fresh = await asyncio.wait_for(manager.acquire(config), 1)
        assert fresh.connection is driver.pools[1].acquired[0]

        await streaming.release()
        assert streaming.connection.close_calls == 1
        assert old_pool.in_use == []

    @pytest.mark.asyncio
    async def test_pool_is_closed_outside_the_lock(self, driver_factory, config, fake_sleep):
        driver = driver_factory()
        manager = SharedConnectionManager(driver, sleep=fake_sleep)
        await manager.acquire(config)
        old_pool = driver.pools[0]
        closing, finish_close = asyncio.Event(), asyncio.Event()

        async def slow_close():
            closing.set()
            await finish_close.wait()

        old_pool.close = slow_close
        invalidation = asyncio.create_task(manager.invalidate(old_pool))
        await closing.wait()

        lease = await asyncio.wait_for(manager.acquire(config), 1)

        assert lease.connection is driver.pools[1].acquired[0]
        assert not invalidation.done()
        finish_close.set()
        await invalidation


class TestCreateConnectionManager:

    def test_mode_selects_strategy(self, driver_factory):
        driver = driver_factory()

        assert isinstance(create_connection_manager(ConnectionMode.PER_QUERY, driver), PerQueryConnectionManager)
        assert isinstance(create_connection_manager(ConnectionMode.SHARED, driver), SharedConnectionManager)

    def test_unknown_mode_is_rejected_by_config(self, sql_login_options):
        with pytest.raises(ConfigurationError):
            build_connection_config({**sql_login_options, "connectionMode": "pooled"})
