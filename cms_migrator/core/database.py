"""UAT file storage database access.

The database keeps one ``ContainerInfo`` row per customer container. The
migration only ever deletes rows of non-platform customers.
"""

import asyncio
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any, AsyncGenerator, Dict, Iterable, Tuple

import aiosqlite

from cms_migrator.core.paths import PLATFORM_CUSTOMER_IDS
from cms_migrator.logging import get_logger
from cms_migrator.utils.errors import ErrorType, TransportError

SQLITE_PREFIX = "sqlite:///"

CONTAINER_INFO_TABLE = "ContainerInfo"

# ADO.NET connection string keywords understood by pymssql.connect
_MSSQL_KEYWORDS = {
    "server": "server",
    "data source": "server",
    "address": "server",
    "addr": "server",
    "database": "database",
    "initial catalog": "database",
    "user id": "user",
    "uid": "user",
    "user": "user",
    "password": "password",
    "pwd": "password",
    "connect timeout": "login_timeout",
    "connection timeout": "login_timeout",
}


def parse_mssql_connection_string(connection_string: str) -> Dict[str, Any]:
    """Translate an ADO.NET SQL Server connection string into pymssql arguments.

    Args:
        connection_string: ``Server=host,port;Database=db;User Id=u;Password=p``

    Returns:
        Keyword arguments for ``pymssql.connect``

    Raises:
        ValueError: If no server is given
    """
    params: Dict[str, Any] = {}

    for part in connection_string.split(";"):
        if "=" not in part:
            continue
        key, value = part.split("=", 1)
        target = _MSSQL_KEYWORDS.get(key.strip().lower())
        if target:
            params[target] = value.strip()

    server = params.get("server")
    if not server:
        raise ValueError("SQL Server connection string has no Server")

    if server.lower().startswith("tcp:"):
        server = server[4:]
    if "," in server:
        server, port = server.split(",", 1)
        params["port"] = port.strip()
    params["server"] = server.strip()

    if "login_timeout" in params:
        params["login_timeout"] = int(params["login_timeout"])

    return params


def _connect_mssql(params: Dict[str, Any]) -> Any:
    import pymssql

    return pymssql.connect(**params)


class ContainerInfoDatabase:
    """Deletes container metadata rows in the UAT file storage database."""

    def __init__(self, connection_string: str, timeout: int = 30) -> None:
        """Initialize database access.

        Args:
            connection_string: ``sqlite:///path`` or a SQL Server connection string
            timeout: Connection timeout in seconds
        """
        self.connection_string = connection_string
        self.timeout = timeout
        self.logger = get_logger("database")

    @property
    def is_sqlite(self) -> bool:
        """Whether the store is a SQLite file."""
        return self.connection_string.startswith(SQLITE_PREFIX)

    @asynccontextmanager
    async def _get_connection(self) -> AsyncGenerator[aiosqlite.Connection, None]:
        """Get SQLite connection.

        Yields:
            Database connection
        """
        conn = await aiosqlite.connect(
            Path(self.connection_string[len(SQLITE_PREFIX):]),
            timeout=self.timeout,
        )
        try:
            yield conn
        finally:
            await conn.close()

    async def delete_non_platform_records(
        self,
        reserved_ids: Iterable[int] = PLATFORM_CUSTOMER_IDS,
    ) -> int:
        """Delete every ContainerInfo row of a non-reserved customer.

        One statement on one connection.

        Args:
            reserved_ids: Customer ids whose rows are kept

        Returns:
            Number of rows deleted

        Raises:
            TransportError: If the statement fails
        """
        reserved = tuple(sorted(reserved_ids))

        try:
            if self.is_sqlite:
                deleted = await self._delete_sqlite(reserved)
            else:
                deleted = await asyncio.to_thread(self._delete_mssql, reserved)
        except Exception as e:
            raise TransportError(
                f"Deleting {CONTAINER_INFO_TABLE} rows failed: {e}",
                error_type=ErrorType.DATABASE,
                context={"table": CONTAINER_INFO_TABLE},
            ) from e

        self.logger.info(
            "container_info_deleted",
            table=CONTAINER_INFO_TABLE,
            rows=deleted,
            reserved_ids=list(reserved),
        )
        return deleted

    async def _delete_sqlite(self, reserved: Tuple[int, ...]) -> int:
        placeholders = ", ".join("?" for _ in reserved)
        async with self._get_connection() as conn:
            cursor = await conn.execute(
                f"DELETE FROM [{CONTAINER_INFO_TABLE}] WHERE [CustomerId] NOT IN ({placeholders})",
                reserved,
            )
            await conn.commit()
            return cursor.rowcount

    def _delete_mssql(self, reserved: Tuple[int, ...]) -> int:
        params = parse_mssql_connection_string(self.connection_string)
        params.setdefault("login_timeout", self.timeout)
        placeholders = ", ".join("%s" for _ in reserved)

        conn = _connect_mssql(params)
        try:
            cursor = conn.cursor()
            cursor.execute(
                f"DELETE FROM [{CONTAINER_INFO_TABLE}] WHERE [CustomerId] NOT IN ({placeholders})",
                reserved,
            )
            deleted = cursor.rowcount
            conn.commit()
            return deleted
        finally:
            conn.close()
