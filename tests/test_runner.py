"""
Unit tests for the source file runner glue.
"""

import pytest

from mssql_datasource.core.executor import StreamingQueryExecutor
from mssql_datasource.core.result_stream import ResultStream
from mssql_datasource.runner import get_runner, process_source


class TestGetRunner:
    """Test the runner bound to option values."""

    @pytest.mark.asyncio
    async def test_skips_non_sql_files(self, driver_factory, sql_login_options, fake_sleep):
        driver = driver_factory()
        runner = get_runner(sql_login_options, executor=StreamingQueryExecutor(driver, sleep=fake_sleep))

        assert await runner("SELECT 1", "sources/warehouse/connection.yaml", 10) is None
        assert driver.connect_calls == 0

    @pytest.mark.asyncio
    async def test_runs_sql_files(self, driver_factory, sql_login_options, fake_sleep):
        driver = driver_factory()
        runner = get_runner(sql_login_options, executor=StreamingQueryExecutor(driver, sleep=fake_sleep))

        stream = await runner("SELECT * FROM sales", "sources/warehouse/sales.sql", 4)

        assert isinstance(stream, ResultStream)
        assert [len(b) async for b in stream] == [4, 4, 2]


class TestProcessSource:
    """Test processing of one source file."""

    @pytest.mark.asyncio
    async def test_skips_non_sql_files(self, driver_factory, sql_login_options, fake_sleep):
        executor = StreamingQueryExecutor(driver_factory(), sleep=fake_sleep)

        assert await process_source(sql_login_options, "x", "notes.md", executor=executor) is None

    @pytest.mark.asyncio
    async def test_batch_size_from_source_config(self, driver_factory, sql_login_options, fake_sleep):
        driver = driver_factory()
        executor = StreamingQueryExecutor(driver, sleep=fake_sleep)

        stream = await process_source({**sql_login_options, "batchSize": 3}, "SELECT * FROM sales", "sales.sql", executor=executor)

        assert [len(b) async for b in stream] == [3, 3, 3, 1]

    @pytest.mark.asyncio
    async def test_default_batch_size(self, driver_factory, sql_login_options, fake_sleep):
        driver = driver_factory()
        executor = StreamingQueryExecutor(driver, sleep=fake_sleep)

        stream = await process_source(sql_login_options, "SELECT * FROM sales", "sales.sql", executor=executor)
        batches = [b async for b in stream]

        assert len(batches) == 1
        assert driver.fetch_sizes[0] == 100000
