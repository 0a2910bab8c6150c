"""
Row streaming helpers: cursor -> rows -> fixed-size batches.

Everything here is lazy. Rows are only fetched from the driver when the
consumer asks for the next batch.
"""

from typing import AsyncIterable, AsyncIterator, List

from mssql_datasource.ports.outbound.driver import AbstractCursor, Row

DEFAULT_BATCH_SIZE = 100000


def clean_query(query: str) -> str:
    """Trim whitespace and trailing semicolons so the query can be used as a subquery."""
    cleaned = query.strip()
    while cleaned.endswith(";"):
        cleaned = cleaned[:-1].rstrip()
    return cleaned


def count_query(query: str) -> str:
    """Best-effort row count: wrap the cleaned query as a derived table."""
    return f"SELECT COUNT(*) AS expected_row_count FROM ({clean_query(query)}) AS subquery"


async def iterate_rows(cursor: AbstractCursor, fetch_size: int) -> AsyncIterator[Row]:
    """Yield rows from a cursor, fetching `fetch_size` at a time."""
    while True:
        rows = await cursor.fetchmany(fetch_size)
        if not rows:
            return
        for row in rows:
            yield row


async def batch_rows(rows: AsyncIterable[Row], batch_size: int) -> AsyncIterator[List[Row]]:
    """
    Group a row stream into lists of `batch_size` rows.

    Every batch but the last has exactly `batch_size` rows; order is kept.
    """
    if batch_size < 1:
        raise ValueError(f"batch_size must be a positive integer, got {batch_size}")

    batch: List[Row] = []
    try:
        async for row in rows:
            batch.append(row)
            if len(batch) >= batch_size:
                yield batch
                batch = []
    finally:
        aclose = getattr(rows, "aclose", None)
        if aclose is not None:
            await aclose()
    if batch:
        yield batch


async def exhaust_stream(stream: AsyncIterable) -> int:
    """Consume a batch stream completely. Returns the number of batches seen."""
    batches = 0
    async for _ in stream:
        batches += 1
    return batches
