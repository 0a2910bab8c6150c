# src/mssql_datasource/core/executor.py
"""
Streaming query executor.

execute() turns (query, option values, batch size) into a ResultStream:

    1. validate the options into a ConnectionConfig
    2. under the query retry policy, per attempt:
         acquire a lease (connection retry policy)
         estimate the row count once (lenient)
         send the statement and wait for the result set schema
    3. hand back a lazy stream of batches that owns the lease

A transient failure during step 2 releases the lease and restarts from a
fresh acquisition. Whatever escapes is re-raised as a QueryExecutionError
with a single-line message.
"""

import asyncio
import random
from typing import Any, AsyncIterator, Callable, Dict, List, Optional

from mssql_datasource.core.batching import (
    DEFAULT_BATCH_SIZE,
    batch_rows,
    count_query,
    iterate_rows,
)
from mssql_datasource.core.connection_manager import (
    ConnectionLease,
    ConnectionManager,
    create_connection_manager,
)
from mssql_datasource.core.result_stream import ResultStream
from mssql_datasource.core.retry import RetryPolicy, Sleep
from mssql_datasource.domain.credentials import (
    ConnectionConfig,
    ConnectionMode,
    build_connection_config,
)
from mssql_datasource.domain.errors import (
    ConfigurationError,
    QueryExecutionError,
    normalize_error,
    to_query_execution_error,
)
from mssql_datasource.domain.type_mapper import map_column_types
from mssql_datasource.domain.types import NativeColumn
from mssql_datasource.infrastructure.logging import get_logger, truncate_sql
from mssql_datasource.ports.outbound.driver import AbstractCursor, AbstractDatabaseDriver, Row

logger = get_logger(__name__)


def default_driver() -> AbstractDatabaseDriver:
    """The aioodbc driver, imported on first use so pyodbc is only loaded when needed."""
    from mssql_datasource.adapters.outbound.odbc import OdbcDriver
    return OdbcDriver()


class _RowCountEstimate:
    """Row count computed once per execute() call, shared across retry attempts"""

    def __init__(self):
        self.done = False
        self.value: Optional[int] = None


class StreamingQueryExecutor:
    """
    Runs queries and streams their rows in batches.

    Owns one ConnectionManager per connection mode, created on first use;
    close() releases them.

    Example usage:
        executor = StreamingQueryExecutor()
        stream = await executor.execute("SELECT * FROM sales", options, batch_size=5000)
        async with stream:
            async for batch in stream:
                ...
        await executor.close()
    """

    def __init__(
        self,
        driver: Optional[AbstractDatabaseDriver] = None,
        sleep: Sleep = asyncio.sleep,
        rng: Callable[[], float] = random.random
    ):
        self._driver = driver
        self._sleep = sleep
        self._rng = rng
        self._managers: Dict[ConnectionMode, ConnectionManager] = {}

    @property
    def driver(self) -> AbstractDatabaseDriver:
        if self._driver is None:
            self._driver = default_driver()
        return self._driver

    def connection_manager(self, mode: ConnectionMode) -> ConnectionManager:
        manager = self._managers.get(mode)
        if manager is None:
            manager = create_connection_manager(mode, self.driver, sleep=self._sleep, rng=self._rng)
            self._managers[mode] = manager
        return manager

    def _retry_policy(self, config: ConnectionConfig, operation: str) -> RetryPolicy:
        return RetryPolicy(
            config.retry_options,
            sleep=self._sleep,
            rng=self._rng,
            operation=operation,
        )

    async def execute(
        self,
        query: str,
        config: Any,
        batch_size: int = DEFAULT_BATCH_SIZE
    ) -> ResultStream:
        """
        Execute a query and return a lazy stream of row batches.

        Args:
            query: SQL text, sent unmodified
            config: Host option values (mapping) or a ConnectionConfig
            batch_size: Rows per batch (last batch may be shorter)

        Returns:
            ResultStream with column_types and expected_row_count set

        Raises:
            QueryExecutionError: For any failure, after retries
        """
        try:
            descriptor = build_connection_config(config)
            if isinstance(batch_size, bool) or not isinstance(batch_size, int) or batch_size < 1:
                raise ConfigurationError(f"batch_size must be a positive integer, got {batch_size!r}")
            if not isinstance(query, str) or not query.strip():
                raise ConfigurationError("Query must be a non-empty string")

            logger.debug(f"Executing query: {truncate_sql(query)}")
            estimate = _RowCountEstimate()
            policy = self._retry_policy(descriptor, "Database operation")
            return await policy.run(self._attempt, descriptor, query, batch_size, estimate)
        except QueryExecutionError:
            raise
        except Exception as e:
            raise to_query_execution_error(e) from e

    async def _attempt(
        self,
        config: ConnectionConfig,
        query: str,
        batch_size: int,
        estimate: _RowCountEstimate
    ) -> ResultStream:
        lease = await self.connection_manager(config.connection_mode).acquire(config)
        try:
            if not estimate.done:
                estimate.value = await self._estimate_row_count(lease, query, config)
                estimate.done = True
            cursor = await lease.cursor()
            columns = await self._wait_for_schema(cursor, query)
        except BaseException as e:
            await lease.release(e)
            raise

        return ResultStream(
            self._batches(cursor, batch_size, columns is not None),
            column_types=map_column_types(columns or []),
            expected_row_count=estimate.value,
            on_close=lease.release,
        )

    async def _estimate_row_count(
        self,
        lease: ConnectionLease,
        query: str,
        config: ConnectionConfig
    ) -> Optional[int]:
        """Count the query's rows. Any failure yields None, the estimate is advisory."""
        sql = count_query(query)
        logger.debug(f"Estimating row count: {truncate_sql(sql)}")
        try:
            policy = self._retry_policy(config, "Row count estimate")
            return await policy.run(self._fetch_scalar, lease, sql)
        except Exception as e:
            logger.debug(f"Row count estimate unavailable: {normalize_error(e)}")
            return None

    @staticmethod
    async def _fetch_scalar(lease: ConnectionLease, sql: str) -> Optional[int]:
        cursor = await lease.connection.cursor()
        try:
            await cursor.execute(sql)
            rows = await cursor.fetchmany(1)
        finally:
            await cursor.close()
        if not rows or rows[0][0] is None:
            return None
        return int(rows[0][0])

    async def _wait_for_schema(self, cursor: AbstractCursor, query: str) -> Optional[List[NativeColumn]]:
        """
        Send the statement and wait until its result set is described.

        The statement task resolves `schema_ready` exactly once, with the
        column metadata or with the execution error.
        """
        schema_ready: asyncio.Future = asyncio.get_running_loop().create_future()
        statement = asyncio.ensure_future(self._run_statement(cursor, query, schema_ready))
        try:
            return await schema_ready
        finally:
            if not statement.done():
                statement.cancel()

    @staticmethod
    async def _run_statement(cursor: AbstractCursor, query: str, schema_ready: asyncio.Future) -> None:
        try:
            await cursor.execute(query)
        except Exception as e:
            if not schema_ready.done():
                schema_ready.set_exception(e)
            return
        if not schema_ready.done():
            schema_ready.set_result(cursor.columns)

    @staticmethod
    async def _batches(cursor: AbstractCursor, batch_size: int, has_result_set: bool) -> AsyncIterator[List[Row]]:
        # Statements without a result set (DDL, UPDATE...) stream nothing
        if not has_result_set:
            return
        rows_seen = 0
        try:
            async for batch in batch_rows(iterate_rows(cursor, batch_size), batch_size):
                rows_seen += len(batch)
                yield batch
        except Exception as e:
            raise to_query_execution_error(e) from e
        logger.info(f"Query stream exhausted after {rows_seen} rows")

    async def close(self) -> None:
        """Close every connection manager (shared pools included)."""
        managers, self._managers = list(self._managers.values()), {}
        for manager in managers:
            await manager.close()
