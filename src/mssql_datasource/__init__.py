"""
mssql_datasource - resilient streaming SQL Server connector.

Runs SQL text against SQL Server and hands the rows back as a lazy stream
of fixed-size batches, annotated with portable column types, retrying
transient connection and query failures with exponential backoff.
"""

from mssql_datasource.core import (
    DEFAULT_BATCH_SIZE,
    ResultStream,
    RetryPolicy,
    StreamingQueryExecutor,
    exhaust_stream,
)
from mssql_datasource.datasource import (
    MssqlDatasource,
    execute_query,
    shutdown,
    test_connection,
)
from mssql_datasource.domain import (
    OPTIONS,
    AuthenticationType,
    ColumnDescriptor,
    ConfigurationError,
    ConnectionConfig,
    DatasourceError,
    EvidenceType,
    QueryExecutionError,
    RetryOptions,
    TypeFidelity,
    build_connection_config,
    get_options_schema,
    map_column_types,
    normalize_error,
)
from mssql_datasource.runner import get_runner, process_source

__version__ = "0.1.0"

__all__ = [
    "DEFAULT_BATCH_SIZE",
    "ResultStream",
    "RetryPolicy",
    "StreamingQueryExecutor",
    "exhaust_stream",
    "MssqlDatasource",
    "execute_query",
    "shutdown",
    "test_connection",
    "OPTIONS",
    "AuthenticationType",
    "ColumnDescriptor",
    "ConfigurationError",
    "ConnectionConfig",
    "DatasourceError",
    "EvidenceType",
    "QueryExecutionError",
    "RetryOptions",
    "TypeFidelity",
    "build_connection_config",
    "get_options_schema",
    "map_column_types",
    "normalize_error",
    "get_runner",
    "process_source",
]
