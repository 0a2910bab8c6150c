"""
Domain - configuration, column types and the error taxonomy.
"""

from mssql_datasource.domain.credentials import (
    AuthenticationType,
    ConnectionConfig,
    ConnectionMode,
    RetryOptions,
    build_connection_config,
)
from mssql_datasource.domain.errors import (
    ConfigurationError,
    DatasourceError,
    ErrorKind,
    FatalQueryError,
    QueryExecutionError,
    ResourceCleanupError,
    TransientConnectionError,
    classify_error,
    is_transient,
    normalize_error,
)
from mssql_datasource.domain.types import (
    ColumnDescriptor,
    EvidenceType,
    NativeColumn,
    TypeFidelity,
)
from mssql_datasource.domain.type_mapper import map_column_types, native_type_to_evidence_type
from mssql_datasource.domain.options import OPTIONS, get_options_schema

__all__ = [
    "AuthenticationType",
    "ConnectionConfig",
    "ConnectionMode",
    "RetryOptions",
    "build_connection_config",
    "ConfigurationError",
    "DatasourceError",
    "ErrorKind",
    "FatalQueryError",
    "QueryExecutionError",
    "ResourceCleanupError",
    "TransientConnectionError",
    "classify_error",
    "is_transient",
    "normalize_error",
    "ColumnDescriptor",
    "EvidenceType",
    "NativeColumn",
    "TypeFidelity",
    "map_column_types",
    "native_type_to_evidence_type",
    "OPTIONS",
    "get_options_schema",
]
