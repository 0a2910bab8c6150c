"""
Outbound port for the database driver.

The executor and the connection managers only talk to these interfaces.
Adapters (adapters/outbound/odbc) translate them to a real driver and must
raise DatasourceError subclasses, already classified, from every method.
"""

from abc import ABC, abstractmethod
from typing import Any, List, Optional, Sequence, Tuple

from mssql_datasource.domain.credentials import ConnectionConfig
from mssql_datasource.domain.types import NativeColumn

Row = Tuple[Any, ...]


class AbstractCursor(ABC):
    """A single statement execution on a connection"""

    @abstractmethod
    async def execute(self, query: str) -> None:
        """Send the statement. Returns once the first result set is described."""
        pass

    @property
    @abstractmethod
    def columns(self) -> Optional[List[NativeColumn]]:
        """Column metadata of the current result set, None for non-tabular results."""
        pass

    @abstractmethod
    async def fetchmany(self, size: int) -> Sequence[Row]:
        """Fetch up to `size` rows. An empty sequence means the result set is exhausted."""
        pass

    @abstractmethod
    async def close(self) -> None:
        pass


class AbstractConnection(ABC):
    """An open database session"""

    @abstractmethod
    async def cursor(self) -> AbstractCursor:
        pass

    @abstractmethod
    async def close(self) -> None:
        pass

    @property
    @abstractmethod
    def closed(self) -> bool:
        pass


class AbstractConnectionPool(ABC):
    """A pool of sessions against one server/database"""

    @abstractmethod
    async def acquire(self) -> AbstractConnection:
        pass

    @abstractmethod
    async def release(self, connection: AbstractConnection, discard: bool = False) -> None:
        """Give a connection back. `discard=True` closes it instead of reusing it."""
        pass

    @abstractmethod
    async def close(self) -> None:
        """
        Stop lending connections and close the idle ones.

        Must not wait for borrowed connections: those are closed when they
        are released.
        """
        pass


class AbstractDatabaseDriver(ABC):
    """Factory for connections and pools"""

    @abstractmethod
    async def connect(self, config: ConnectionConfig) -> AbstractConnection:
        """Open one connection. Raises a classified DatasourceError on failure."""
        pass

    @abstractmethod
    async def create_pool(self, config: ConnectionConfig) -> AbstractConnectionPool:
        """Create a connection pool. Raises a classified DatasourceError on failure."""
        pass
