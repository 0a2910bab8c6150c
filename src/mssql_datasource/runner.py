"""
Glue for hosts that drive datasources by source files.

Only `.sql` files are queries; anything else in a source directory
(connection.yaml, notes...) is skipped by returning None.
"""

from typing import Any, Awaitable, Callable, Mapping, Optional

from mssql_datasource.core.batching import DEFAULT_BATCH_SIZE
from mssql_datasource.core.executor import StreamingQueryExecutor
from mssql_datasource.core.result_stream import ResultStream
from mssql_datasource.datasource import execute_query

QueryRunner = Callable[[str, str, int], Awaitable[Optional[ResultStream]]]


def is_query_file(query_path: str) -> bool:
    return str(query_path).endswith(".sql")


def get_runner(opts: Any, executor: Optional[StreamingQueryExecutor] = None) -> QueryRunner:
    """Bind option values into a runner(query_content, query_path, batch_size)."""

    async def runner(query_content: str, query_path: str, batch_size: int = DEFAULT_BATCH_SIZE) -> Optional[ResultStream]:
        if not is_query_file(query_path):
            return None
        return await execute_query(query_content, opts, batch_size, executor=executor)

    return runner


async def process_source(
    source_config: Mapping[str, Any],
    query_content: str,
    query_path: str,
    executor: Optional[StreamingQueryExecutor] = None
) -> Optional[ResultStream]:
    """Run one source file; the batch size comes from source_config["batchSize"]."""
    if not is_query_file(query_path):
        return None
    batch_size = source_config.get("batchSize") or DEFAULT_BATCH_SIZE
    return await execute_query(query_content, source_config, batch_size, executor=executor)
