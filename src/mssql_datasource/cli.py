# src/mssql_datasource/cli.py
"""
Command line entry point.

    mssql-datasource test  --config connection.yaml [--source warehouse]
    mssql-datasource query --config connection.yaml [--source warehouse] "SELECT * FROM sales"
    mssql-datasource query --config connection.yaml --file report.sql --batch-size 500

The config file holds the host option values, either at the top level or
under `datasources.<name>`. `${VAR}` placeholders are read from the
environment (and `.env`).
"""

import argparse
import asyncio
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

from tabulate import tabulate

from mssql_datasource.core.batching import DEFAULT_BATCH_SIZE
from mssql_datasource.core.executor import StreamingQueryExecutor
from mssql_datasource.datasource import execute_query, test_connection
from mssql_datasource.domain.errors import DatasourceError
from mssql_datasource.infrastructure.logging import get_logger, setup_logging
from mssql_datasource.infrastructure.yaml_config import YamlConfig

logger = get_logger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="mssql-datasource",
        description="Query SQL Server with retries and batched streaming",
    )
    parser.add_argument("--config", "-c", required=True, help="YAML file with the connection options")
    parser.add_argument("--source", "-s", help="Name under `datasources:` (default: the only one, or the top level)")
    parser.add_argument("--log-level", default="WARNING", help="Console log level (default: WARNING)")

    commands = parser.add_subparsers(dest="command", required=True)

    commands.add_parser("test", help="Check that the connection options work")

    query = commands.add_parser("query", help="Run a query and print its batches")
    query.add_argument("sql", nargs="?", help="SQL text (or use --file)")
    query.add_argument("--file", "-f", help="Read the SQL from a file")
    query.add_argument("--batch-size", "-b", type=int, default=DEFAULT_BATCH_SIZE, help="Rows per batch")
    query.add_argument("--max-rows", type=int, default=None, help="Stop printing after this many rows")

    return parser


def load_source_options(config_path: str, source: Optional[str] = None) -> Dict[str, Any]:
    """
    Pick the option mapping for one datasource out of the YAML file.

    Raises:
        KeyError: If the named source does not exist
        ValueError: If the file has several sources and none was named
    """
    config = YamlConfig(config_path)
    if source:
        return config.get(f"datasources.{source}")

    datasources = config.data.get("datasources")
    if datasources is None:
        return config.data
    if isinstance(datasources, dict) and len(datasources) == 1:
        return next(iter(datasources.values()))
    names = ", ".join(datasources) if isinstance(datasources, dict) else ""
    raise ValueError(f"Several datasources in {config_path} ({names}), choose one with --source")


def read_query(args: argparse.Namespace) -> str:
    if args.file:
        return Path(args.file).read_text(encoding="utf-8")
    if args.sql:
        return args.sql
    raise ValueError("No query given: pass the SQL text or --file")


async def run_test(options: Dict[str, Any]) -> int:
    executor = StreamingQueryExecutor()
    try:
        result = await test_connection(options, executor=executor)
    finally:
        await executor.close()

    if result is True:
        print("Connection OK")
        return 0
    print(f"Connection failed: {result['reason']}")
    return 1


async def run_query(options: Dict[str, Any], query: str, batch_size: int, max_rows: Optional[int]) -> int:
    executor = StreamingQueryExecutor()
    try:
        stream = await execute_query(query, options, batch_size, executor=executor)
        async with stream:
            columns = stream.column_types_for_host()
            print(tabulate(
                [[c["name"], c["evidenceType"], c["typeFidelity"]] for c in columns],
                headers=["column", "type", "fidelity"],
            ))
            if stream.expected_row_count is not None:
                print(f"\nExpected rows: {stream.expected_row_count}")

            headers: List[str] = [c["name"] for c in columns]
            printed = 0
            batch_number = 0
            async for batch in stream:
                batch_number += 1
                rows = batch if max_rows is None else batch[:max(0, max_rows - printed)]
                if rows:
                    print(f"\n-- batch {batch_number} ({len(batch)} rows)")
                    print(tabulate(rows, headers=headers))
                    printed += len(rows)
                if max_rows is not None and printed >= max_rows:
                    break
            print(f"\n{printed} rows printed")
    except DatasourceError as e:
        print(f"Query failed: {e.message}", file=sys.stderr)
        return 1
    finally:
        await executor.close()
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    setup_logging(console_level=args.log_level.upper())

    try:
        options = load_source_options(args.config, args.source)
        if args.command == "test":
            return asyncio.run(run_test(options))
        return asyncio.run(run_query(options, read_query(args), args.batch_size, args.max_rows))
    except (FileNotFoundError, KeyError, ValueError) as e:
        logger.error(str(e))
        print(f"Error: {e}", file=sys.stderr)
        return 2


if __name__ == "__main__":
    sys.exit(main())
