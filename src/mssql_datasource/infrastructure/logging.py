# src/mssql_datasource/infrastructure/logging.py
"""
Logging configuration module for the SQL Server datasource.

Uses Loguru as backend. This module provides two main functions:
- setup_logging(): configures the logger at application startup
- get_logger(name): gets a logger "bound" with the module name

=============================================================================
WHAT GETS LOGGED WHERE
=============================================================================

DEBUG:
    - SQL text before execution (main query and row-count estimate)
    - Row-count estimate failures (the estimate is advisory)
    - Lease acquire/release

    logger.debug(f"Executing query: {query}")

INFO:
    - Connection established / pool created
    - Query stream exhausted

    logger.info(f"Connected to {server}:{port}/{database}")

WARNING:
    - Automatic retries (attempt, delay, error)

    logger.warning(f"Database operation failed (attempt 1/3). Retrying in 1043ms. Error: ...")

ERROR:
    - Failures while closing a connection after another error

    logger.error(f"Error closing connection after failure: {e}")

Nothing in the library calls setup_logging(): the host decides. Without it,
Loguru's default stderr handler is used.
"""

from loguru import logger
from pathlib import Path
import sys


# Flag to prevent multiple setups
_is_configured = False


def setup_logging(
    level: str = "INFO",
    console_level: str = "WARNING",
    log_dir: str | None = None,
    log_filename: str = "mssql_datasource.log"
) -> None:
    """
    Configure logging for the application.

    Call this function ONCE at app startup (the CLI does it in main()).
    Subsequent calls are ignored.

    Args:
        level: Minimum level for FILE. Default: "INFO"
        console_level: Minimum level for CONSOLE. Default: "WARNING"
                       Values: "TRACE", "DEBUG", "INFO", "SUCCESS",
                       "WARNING", "ERROR", "CRITICAL"
        log_dir: Directory for log files. Created if it doesn't exist.
                 Default: None (no file handler)
        log_filename: Name of log file. Default: "mssql_datasource.log"

    Behavior:
        - Removes Loguru's default handler
        - Adds FILE handler when log_dir is given (50 MB rotation)
        - Adds CONSOLE handler on stderr, with colors
    """
    global _is_configured

    if _is_configured:
        return

    # Remove default handler (stderr)
    logger.remove()

    if log_dir is not None:
        log_path = Path(log_dir)
        log_path.mkdir(parents=True, exist_ok=True)

        # Log format: timestamp | level | module:function:line | message
        # {name} comes from bind() that we do in get_logger()
        log_format = (
            "{time:YYYY-MM-DD HH:mm:ss.SSS} | "
            "{level:<8} | "
            "{extra[name]}:{function}:{line} | "
            "{message}"
        )

        logger.add(
            sink=log_path / log_filename,
            level=level,
            format=log_format,
            rotation="50 MB",
            retention="7 days",
            encoding="utf-8",
        )

    # Console format: more compact, no full timestamp
    console_format = (
        "<level>{level:<8}</level> | "
        "<cyan>{extra[name]}</cyan>:<cyan>{function}</cyan> | "
        "{message}"
    )

    logger.add(
        sink=sys.stderr,
        level=console_level,
        format=console_format,
        colorize=True,
    )

    _is_configured = True

    logger.bind(name="logging_config").debug(
        f"Logging configured - file={level if log_dir else 'off'}, console={console_level}"
    )


def get_logger(name: str):
    """
    Get a logger with the module name bound.

    Args:
        name: Module name. Always use __name__ for consistency.

    Returns:
        Loguru logger with bound name.

    Example:
        from mssql_datasource.infrastructure.logging import get_logger

        logger = get_logger(__name__)
        logger.debug("Acquired lease")
    """
    return logger.bind(name=name)


def truncate_sql(query: str, max_chars: int = 500) -> str:
    """Collapse whitespace in a SQL string and truncate it for DEBUG output."""
    flattened = " ".join(query.split())
    if len(flattened) > max_chars:
        truncate_marker = " ... [TRUNCATED]"
        flattened = flattened[:max_chars - len(truncate_marker)] + truncate_marker
    return flattened
