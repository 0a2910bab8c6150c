# src/mssql_datasource/adapters/outbound/odbc/driver.py
"""
SQL Server driver adapter on top of aioodbc (async pyodbc).

Requirements:
    pip install aioodbc
    Microsoft ODBC Driver 17/18 for SQL Server installed on the host

Authentication is delegated to the ODBC driver:
    default                                          -> UID / PWD
    azure-active-directory-default                   -> Authentication=ActiveDirectoryDefault
    azure-active-directory-access-token              -> SQL_COPT_SS_ACCESS_TOKEN pre-connect attribute
    azure-active-directory-password                  -> Authentication=ActiveDirectoryPassword
    azure-active-directory-service-principal-secret  -> Authentication=ActiveDirectoryServicePrincipal
"""

import asyncio
import datetime
import decimal
import math
import struct
import uuid
from contextlib import contextmanager
from typing import Any, Callable, Dict, List, Optional, Sequence

from mssql_datasource.domain.credentials import (
    AadAccessTokenAuthentication,
    AadDefaultAuthentication,
    AadPasswordAuthentication,
    AadServicePrincipalSecretAuthentication,
    ConnectionConfig,
    SqlLoginAuthentication,
)
from mssql_datasource.domain.errors import (
    DatasourceError,
    TransientConnectionError,
    classify_error,
)
from mssql_datasource.domain.types import NativeColumn
from mssql_datasource.infrastructure.logging import get_logger
from mssql_datasource.ports.outbound.driver import (
    AbstractConnection,
    AbstractConnectionPool,
    AbstractCursor,
    AbstractDatabaseDriver,
    Row,
)

try:
    import aioodbc
    import pyodbc
except ImportError:
    raise ImportError(
        "aioodbc package not found. Install with: pip install aioodbc"
    )

logger = get_logger(__name__)

# msodbcsql.h: pre-connect attribute carrying an Entra ID access token
SQL_COPT_SS_ACCESS_TOKEN = 1256

# msodbcsql.h: SQL Server types pyodbc cannot fetch without an output converter
SQL_SS_VARIANT = -150
SQL_SS_UDT = -151
SQL_SS_TIMESTAMPOFFSET = -155

# Result set metadata with the server's own type names (nvarchar(50), uniqueidentifier...)
DESCRIBE_RESULT_SET = "EXEC sp_describe_first_result_set @tsql = ?"

# Fallback when the server cannot describe the statement up front (temp tables,
# dynamic SQL): pyodbc only reports Python types, so the names are approximate
PYTHON_TYPE_TO_NATIVE = {
    bool: "bit",
    int: "int",
    float: "float",
    decimal.Decimal: "decimal",
    str: "nvarchar",
    datetime.datetime: "datetime2",
    datetime.date: "date",
    datetime.time: "time",
    bytes: "varbinary",
    bytearray: "varbinary",
    uuid.UUID: "uniqueidentifier",
}


def decode_datetimeoffset(value: Optional[bytes]) -> Optional[datetime.datetime]:
    """Unpack a SQL_SS_TIMESTAMPOFFSET_STRUCT into an aware datetime."""
    if value is None:
        return None
    year, month, day, hour, minute, second, fraction, tz_hour, tz_minute = struct.unpack("<6hI2h", value)
    offset = datetime.timezone(datetime.timedelta(hours=tz_hour, minutes=tz_minute))
    return datetime.datetime(year, month, day, hour, minute, second, fraction // 1000, tzinfo=offset)


def _raw_bytes(value: Optional[bytes]) -> Optional[bytes]:
    return value


# Registered on every connection. sql_variant and CLR types (geography,
# geometry, hierarchyid) come back as their raw bytes
OUTPUT_CONVERTERS: Dict[int, Callable[[Optional[bytes]], Any]] = {
    SQL_SS_TIMESTAMPOFFSET: decode_datetimeoffset,
    SQL_SS_VARIANT: _raw_bytes,
    SQL_SS_UDT: _raw_bytes,
}


def native_columns_from_description(
    description: Optional[Sequence[Sequence[Any]]],
    type_names: Optional[Sequence[Optional[str]]] = None
) -> Optional[List[NativeColumn]]:
    """
    Convert a DB-API cursor.description to NativeColumns.

    Args:
        description: cursor.description after execute
        type_names: Server type names per column (sp_describe_first_result_set).
                    Used instead of the Python types when they line up with
                    the description.

    Returns None when the statement produced no result set.
    """
    if description is None:
        return None
    if type_names is not None and len(type_names) != len(description):
        type_names = None
    columns = []
    for index, entry in enumerate(description):
        name, type_code = entry[0], entry[1]
        type_name = type_names[index] if type_names is not None else PYTHON_TYPE_TO_NATIVE.get(type_code)
        precision = entry[4] if len(entry) > 4 else None
        scale = entry[5] if len(entry) > 5 else None
        nullable = entry[6] if len(entry) > 6 else None
        columns.append(NativeColumn(
            name=name,
            type_name=type_name,
            precision=precision,
            scale=scale,
            nullable=nullable,
        ))
    return columns


def _odbc_value(value: Any) -> str:
    """Brace-quote a connection string value when it contains separators."""
    text = str(value)
    if any(ch in text for ch in ";{}=") or text != text.strip():
        return "{" + text.replace("}", "}}") + "}"
    return text


def _yes_no(flag: bool) -> str:
    return "yes" if flag else "no"


def build_connection_string(config: ConnectionConfig) -> str:
    """
    Render the ODBC connection string for a ConnectionConfig.

    The access token variant is not part of the string: it travels as a
    pre-connect attribute (see build_attrs_before).
    """
    parts: Dict[str, str] = {
        "Driver": "{" + config.odbc_driver.replace("}", "}}") + "}",
        "Server": _odbc_value(f"tcp:{config.server},{config.port}"),
        "Database": _odbc_value(config.database),
        "Encrypt": _yes_no(config.options.encrypt),
        "TrustServerCertificate": _yes_no(config.options.trust_server_certificate),
    }

    auth = config.authentication
    if isinstance(auth, SqlLoginAuthentication):
        parts["UID"] = _odbc_value(auth.user)
        parts["PWD"] = _odbc_value(auth.password)
    elif isinstance(auth, AadDefaultAuthentication):
        parts["Authentication"] = "ActiveDirectoryDefault"
    elif isinstance(auth, AadPasswordAuthentication):
        parts["Authentication"] = "ActiveDirectoryPassword"
        parts["UID"] = _odbc_value(auth.user_name)
        parts["PWD"] = _odbc_value(auth.password)
    elif isinstance(auth, AadServicePrincipalSecretAuthentication):
        parts["Authentication"] = "ActiveDirectoryServicePrincipal"
        parts["UID"] = _odbc_value(auth.client_id)
        parts["PWD"] = _odbc_value(auth.client_secret)
    # AadAccessTokenAuthentication adds nothing here

    return ";".join(f"{key}={value}" for key, value in parts.items()) + ";"


def encode_access_token(token: str) -> bytes:
    """Pack a token the way msodbcsql expects it: UTF-16-LE bytes prefixed by their length."""
    raw = token.encode("utf-16-le")
    return struct.pack(f"<I{len(raw)}s", len(raw), raw)


def build_attrs_before(config: ConnectionConfig) -> Optional[Dict[int, bytes]]:
    if isinstance(config.authentication, AadAccessTokenAuthentication):
        return {SQL_COPT_SS_ACCESS_TOKEN: encode_access_token(config.authentication.token)}
    return None


def _whole_seconds(milliseconds: int) -> int:
    """ms -> whole seconds, rounded up. 0 keeps meaning no limit."""
    return math.ceil(milliseconds / 1000) if milliseconds else 0


def connection_setup(config: ConnectionConfig):
    """
    Build the aioodbc `after_created` hook for a ConnectionConfig.

    The hook runs on the raw pyodbc connection: it sets the query timeout
    (SQL_ATTR_QUERY_TIMEOUT, enforced by the driver itself) and registers
    the output converters.
    """
    query_timeout = _whole_seconds(config.request_timeout)

    async def after_created(raw_connection) -> None:
        raw_connection.timeout = query_timeout
        for sql_type, converter in OUTPUT_CONVERTERS.items():
            raw_connection.add_output_converter(sql_type, converter)

    return after_created


def connect_kwargs(config: ConnectionConfig) -> Dict[str, Any]:
    """Keyword arguments for aioodbc.connect / aioodbc.create_pool."""
    kwargs: Dict[str, Any] = {
        "dsn": build_connection_string(config),
        "autocommit": True,
        # pyodbc login timeout is whole seconds, 0 = driver default
        "timeout": _whole_seconds(config.connection_timeout),
        "after_created": connection_setup(config),
    }
    attrs_before = build_attrs_before(config)
    if attrs_before:
        kwargs["attrs_before"] = attrs_before
    return kwargs


@contextmanager
def translate_driver_errors(operation: str):
    """Classify every driver failure raised inside the block."""
    try:
        yield
    except DatasourceError:
        raise
    except (asyncio.TimeoutError, TimeoutError) as e:
        raise TransientConnectionError(f"Timeout: {operation} did not complete in time") from e
    except (pyodbc.Error, OSError) as e:
        raise classify_error(e) from e


class OdbcCursor(AbstractCursor):
    """
    aioodbc cursor.

    The request timeout is the connection's query timeout, so a statement
    that runs too long is cancelled by the driver and fails with HYT00.
    """

    def __init__(self, cursor):
        self._cursor = cursor
        self._columns: Optional[List[NativeColumn]] = None

    async def execute(self, query: str) -> None:
        with translate_driver_errors("query execution"):
            type_names = await self._describe(query)
            await self._cursor.execute(query)
        self._columns = native_columns_from_description(self._cursor.description, type_names)

    async def _describe(self, query: str) -> Optional[List[str]]:
        """Server type names of the first result set, None when the server cannot tell up front."""
        describe = await self._cursor.connection.cursor()
        try:
            await describe.execute(DESCRIBE_RESULT_SET, query)
            rows = await describe.fetchall()
        except pyodbc.Error as e:
            logger.debug(f"Result set not described up front: {e}")
            return None
        finally:
            await describe.close()
        return [row.system_type_name for row in rows if not row.is_hidden]

    @property
    def columns(self) -> Optional[List[NativeColumn]]:
        return self._columns

    async def fetchmany(self, size: int) -> Sequence[Row]:
        with translate_driver_errors("row fetch"):
            rows = await self._cursor.fetchmany(size)
        return [tuple(row) for row in rows]

    async def close(self) -> None:
        with translate_driver_errors("cursor close"):
            await self._cursor.close()


class OdbcConnection(AbstractConnection):
    """Wrapper around an aioodbc connection"""

    def __init__(self, connection):
        self._connection = connection

    @property
    def raw(self):
        return self._connection

    async def cursor(self) -> AbstractCursor:
        with translate_driver_errors("cursor creation"):
            cursor = await self._connection.cursor()
        return OdbcCursor(cursor)

    async def close(self) -> None:
        if self._connection.closed:
            return
        with translate_driver_errors("connection close"):
            await self._connection.close()

    @property
    def closed(self) -> bool:
        return self._connection.closed


class OdbcConnectionPool(AbstractConnectionPool):
    """
    Wrapper around an aioodbc pool.

    close() marks the pool as closing and closes its idle connections. It
    never waits on aioodbc's wait_closed(): borrowed connections are closed
    by the pool when their leases release them.
    """

    def __init__(self, pool):
        self._pool = pool
        self._closing = False

    async def acquire(self) -> AbstractConnection:
        with translate_driver_errors("pool acquire"):
            connection = await self._pool.acquire()
        return OdbcConnection(connection)

    async def release(self, connection: AbstractConnection, discard: bool = False) -> None:
        raw = connection.raw if isinstance(connection, OdbcConnection) else connection
        with translate_driver_errors("pool release"):
            # A closing pool closes what it gets back
            if discard and not self._closing and not raw.closed:
                await raw.close()
            await self._pool.release(raw)

    async def close(self) -> None:
        self._closing = True
        with translate_driver_errors("pool close"):
            self._pool.close()
            await self._pool.clear()


class OdbcDriver(AbstractDatabaseDriver):
    """
    AbstractDatabaseDriver implementation for SQL Server through aioodbc.

    Example usage:
        driver = OdbcDriver()
        connection = await driver.connect(config)
        cursor = await connection.cursor()
        await cursor.execute("SELECT 1 AS TEST")
    """

    def __init__(self, pool_min_size: int = 1, pool_max_size: int = 10):
        self._pool_min_size = pool_min_size
        self._pool_max_size = pool_max_size

    async def connect(self, config: ConnectionConfig) -> AbstractConnection:
        logger.debug(f"Connecting to {config.server}:{config.port}/{config.database} ({config.authentication.type})")
        with translate_driver_errors("connection"):
            connection = await aioodbc.connect(**connect_kwargs(config))
        logger.info(f"Connected to {config.server}:{config.port}/{config.database}")
        return OdbcConnection(connection)

    async def create_pool(self, config: ConnectionConfig) -> AbstractConnectionPool:
        logger.debug(f"Creating pool for {config.server}:{config.port}/{config.database} ({config.authentication.type})")
        with translate_driver_errors("pool creation"):
            pool = await aioodbc.create_pool(
                minsize=self._pool_min_size,
                maxsize=self._pool_max_size,
                **connect_kwargs(config),
            )
        logger.info(
            f"Connection pool ready for {config.server}:{config.port}/{config.database} "
            f"(min={self._pool_min_size}, max={self._pool_max_size})"
        )
        return OdbcConnectionPool(pool)
