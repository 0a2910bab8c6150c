"""
Error taxonomy for the SQL Server datasource.

Every failure coming out of the driver is classified exactly once, at the
adapter boundary, into a DatasourceError subclass carrying an ErrorKind.
The retry policy and the executor only look at the kind; the host only ever
sees the single-line message produced by normalize_error().
"""

import asyncio
import re
from enum import Enum
from typing import Any, Optional, Union


class ErrorKind(str, Enum):
    """Classification of a datasource failure"""
    CONFIGURATION = "configuration"        # Malformed/incomplete config, never retried
    TRANSIENT = "transient"                # Network/timeout/deadlock, retried
    FATAL_QUERY = "fatal_query"            # SQL errors, permissions..., never retried
    RESOURCE_CLEANUP = "resource_cleanup"  # Close failures, logged only


class DatasourceError(Exception):
    """Base class for all errors raised by this package"""

    kind: ErrorKind = ErrorKind.FATAL_QUERY

    def __init__(self, message: str, sqlstate: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.sqlstate = sqlstate

    def __str__(self) -> str:
        return self.message


class ConfigurationError(DatasourceError):
    """Raised when the connection configuration is missing or invalid"""
    kind = ErrorKind.CONFIGURATION


class TransientConnectionError(DatasourceError):
    """Raised for failures that may succeed when retried"""
    kind = ErrorKind.TRANSIENT


class FatalQueryError(DatasourceError):
    """Raised for failures that will not go away by retrying"""
    kind = ErrorKind.FATAL_QUERY


class ResourceCleanupError(DatasourceError):
    """Raised when closing a connection fails"""
    kind = ErrorKind.RESOURCE_CLEANUP


class QueryExecutionError(DatasourceError):
    """
    The only error the host receives.

    Its message is already normalized to a single line. `kind` keeps the
    classification of the failure it was built from.
    """

    def __init__(self, message: str, kind: ErrorKind = ErrorKind.FATAL_QUERY, sqlstate: Optional[str] = None):
        super().__init__(message, sqlstate=sqlstate)
        self.kind = kind


# Substrings that mark an error message as transient (case-insensitive)
TRANSIENT_ERROR_SIGNATURES = (
    'ETIMEOUT',
    'ECONNRESET',
    'ECONNREFUSED',
    'ESOCKET',
    'PROTOCOL_SEQUENCE_TIMEOUT',
    'EALREADYCONNECTED',
    'EALREADYCONNECTING',
    'Failed to connect',
    'Connection lost',
    'Timeout',
    'Socket hang up',
    'Network error',
    'Request failed',
    'Deadlock',
    'The connection has been lost',
    'The server has reset the connection',
)

# ODBC SQLSTATEs: 08xxx connection exceptions, HYT00/HYT01 timeouts, 40001 deadlock victim
TRANSIENT_SQLSTATE_PREFIXES = ("08",)
TRANSIENT_SQLSTATES = frozenset({"HYT00", "HYT01", "40001"})

_SQLSTATE_PATTERN = re.compile(r"^[0-9A-Z]{5}$")


def matches_transient_signature(message: str) -> bool:
    """True if the message contains one of the transient error signatures."""
    lowered = message.lower()
    return any(signature.lower() in lowered for signature in TRANSIENT_ERROR_SIGNATURES)


def is_transient_sqlstate(sqlstate: Optional[str]) -> bool:
    if not sqlstate:
        return False
    return sqlstate in TRANSIENT_SQLSTATES or sqlstate.startswith(TRANSIENT_SQLSTATE_PREFIXES)


def _extract_message_and_sqlstate(err: Any) -> tuple[str, Optional[str]]:
    """Pull (message, sqlstate) out of a string, a pyodbc-style error or any exception."""
    if isinstance(err, str):
        return err, None

    message = getattr(err, "message", None)
    if isinstance(message, str) and message:
        return message, getattr(err, "sqlstate", None)

    # pyodbc errors carry (sqlstate, message) in args
    args = getattr(err, "args", ())
    if (
        len(args) >= 2
        and isinstance(args[0], str)
        and _SQLSTATE_PATTERN.match(args[0])
    ):
        return str(args[1]), args[0]

    text = str(err)
    if not text and isinstance(err, (asyncio.TimeoutError, TimeoutError)):
        text = "Timeout: operation did not complete in time"
    return text or type(err).__name__, None


def is_transient(err: Union[BaseException, str, None]) -> bool:
    """
    Decide whether an error is worth retrying.

    Already-classified errors answer with their kind; raw errors and strings
    are matched against the transient signatures and SQLSTATEs.
    """
    if err is None:
        return False
    if isinstance(err, DatasourceError):
        return err.kind == ErrorKind.TRANSIENT
    if isinstance(err, (asyncio.TimeoutError, TimeoutError, ConnectionError)):
        return True
    message, sqlstate = _extract_message_and_sqlstate(err)
    return is_transient_sqlstate(sqlstate) or matches_transient_signature(message)


def classify_error(err: Union[BaseException, str]) -> DatasourceError:
    """
    Convert a raw driver error (or string) into a DatasourceError with a kind.

    Already-classified errors are returned unchanged.
    """
    if isinstance(err, DatasourceError):
        return err

    message, sqlstate = _extract_message_and_sqlstate(err)
    if is_transient(err):
        return TransientConnectionError(message, sqlstate=sqlstate)
    return FatalQueryError(message, sqlstate=sqlstate)


def normalize_error(err: Union[BaseException, str, None]) -> str:
    """
    Flatten any error value to the single-line string the host expects.

    Uses `.message` when the error has one, otherwise its string form, and
    replaces every newline and carriage return with a space.
    """
    if isinstance(err, str):
        text = err
    else:
        message = getattr(err, "message", None)
        text = message if isinstance(message, str) and message else str(err)
    return re.sub(r"\n|\r", " ", text)


def to_query_execution_error(err: Union[BaseException, str]) -> QueryExecutionError:
    """Build the host-facing error for any failure escaping the executor."""
    if isinstance(err, QueryExecutionError):
        return err
    classified = classify_error(err)
    return QueryExecutionError(
        normalize_error(classified),
        kind=classified.kind,
        sqlstate=classified.sqlstate,
    )
