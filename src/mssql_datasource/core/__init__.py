"""
Core - retry policy, connection management and streaming execution.
"""

from mssql_datasource.core.batching import DEFAULT_BATCH_SIZE, clean_query, count_query, exhaust_stream
from mssql_datasource.core.connection_manager import (
    ConnectionLease,
    ConnectionManager,
    PerQueryConnectionManager,
    SharedConnectionManager,
    create_connection_manager,
)
from mssql_datasource.core.executor import StreamingQueryExecutor
from mssql_datasource.core.result_stream import ResultStream
from mssql_datasource.core.retry import RetryPolicy, with_retry

__all__ = [
    "DEFAULT_BATCH_SIZE",
    "clean_query",
    "count_query",
    "exhaust_stream",
    "ConnectionLease",
    "ConnectionManager",
    "PerQueryConnectionManager",
    "SharedConnectionManager",
    "create_connection_manager",
    "StreamingQueryExecutor",
    "ResultStream",
    "RetryPolicy",
    "with_retry",
]
