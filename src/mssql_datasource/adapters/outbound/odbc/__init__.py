from mssql_datasource.adapters.outbound.odbc.driver import (
    OdbcDriver,
    build_connection_string,
    native_columns_from_description,
)

__all__ = [
    "OdbcDriver",
    "build_connection_string",
    "native_columns_from_description",
]
