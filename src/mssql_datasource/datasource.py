# src/mssql_datasource/datasource.py
"""
Host-facing entry points.

Two ways to use the connector:

    - module functions execute_query() / test_connection(), backed by a
      lazily created default executor (call shutdown() when done)
    - MssqlDatasource, an explicit owner of one configuration, its driver
      and its connection managers, for hosts that want the shared pool and
      a defined shutdown point
"""

import asyncio
from typing import Any, Dict, Optional, Union

from mssql_datasource.core.batching import DEFAULT_BATCH_SIZE, exhaust_stream
from mssql_datasource.core.executor import StreamingQueryExecutor
from mssql_datasource.core.result_stream import ResultStream
from mssql_datasource.core.retry import Sleep
from mssql_datasource.domain.credentials import ConnectionConfig, build_connection_config
from mssql_datasource.domain.errors import normalize_error
from mssql_datasource.infrastructure.logging import get_logger
from mssql_datasource.ports.outbound.driver import AbstractDatabaseDriver

logger = get_logger(__name__)

TEST_QUERY = "SELECT 1 AS TEST;"
INVALID_CREDENTIALS = "Invalid Credentials"

ConnectionTestResult = Union[bool, Dict[str, str]]

_default_executor: Optional[StreamingQueryExecutor] = None


def get_default_executor() -> StreamingQueryExecutor:
    """Executor used by the module-level functions, created on first call."""
    global _default_executor
    if _default_executor is None:
        _default_executor = StreamingQueryExecutor()
    return _default_executor


async def shutdown() -> None:
    """Close the default executor and its shared pools."""
    global _default_executor
    executor, _default_executor = _default_executor, None
    if executor is not None:
        await executor.close()


async def execute_query(
    query: str,
    config: Any,
    batch_size: int = DEFAULT_BATCH_SIZE,
    executor: Optional[StreamingQueryExecutor] = None
) -> ResultStream:
    """
    Run a query and return its lazy batch stream.

    Raises:
        QueryExecutionError: For any failure, after retries
    """
    executor = executor or get_default_executor()
    return await executor.execute(query, config, batch_size)


async def test_connection(
    config: Any,
    executor: Optional[StreamingQueryExecutor] = None
) -> ConnectionTestResult:
    """
    Check that the configuration can connect and run a trivial query.

    Never raises for connection or query problems.

    Returns:
        True on success, otherwise {"reason": <single-line message>}
    """
    executor = executor or get_default_executor()
    try:
        stream = await executor.execute(TEST_QUERY, config)
        await exhaust_stream(stream)
    except Exception as e:
        reason = normalize_error(e).strip()
        logger.info(f"Connection test failed: {reason or INVALID_CREDENTIALS}")
        return {"reason": reason or INVALID_CREDENTIALS}
    return True


class MssqlDatasource:
    """
    One configured SQL Server datasource.

    Example usage:
        async with MssqlDatasource(options) as datasource:
            if await datasource.test_connection() is True:
                stream = await datasource.execute_query("SELECT * FROM sales")
                async with stream:
                    async for batch in stream:
                        ...
    """

    def __init__(
        self,
        config: Any,
        driver: Optional[AbstractDatabaseDriver] = None,
        sleep: Sleep = asyncio.sleep
    ):
        """
        Args:
            config: Host option values or a ConnectionConfig

        Raises:
            ConfigurationError: If the configuration is invalid
        """
        self.config: ConnectionConfig = build_connection_config(config)
        self._executor = StreamingQueryExecutor(driver, sleep=sleep)

    @property
    def executor(self) -> StreamingQueryExecutor:
        return self._executor

    async def execute_query(self, query: str, batch_size: int = DEFAULT_BATCH_SIZE) -> ResultStream:
        return await execute_query(query, self.config, batch_size, executor=self._executor)

    async def test_connection(self) -> ConnectionTestResult:
        return await test_connection(self.config, executor=self._executor)

    async def close(self) -> None:
        await self._executor.close()

    async def __aenter__(self) -> "MssqlDatasource":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()
