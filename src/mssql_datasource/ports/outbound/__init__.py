"""
Outbound ports - Abstract interfaces for external dependencies.
"""

from mssql_datasource.ports.outbound.driver import (
    AbstractConnection,
    AbstractConnectionPool,
    AbstractCursor,
    AbstractDatabaseDriver,
    Row,
)

__all__ = [
    "AbstractConnection",
    "AbstractConnectionPool",
    "AbstractCursor",
    "AbstractDatabaseDriver",
    "Row",
]
