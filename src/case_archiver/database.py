"""Database connection and query management using asyncpg."""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import Any, Optional

import asyncpg
from structlog import BoundLogger

from case_archiver.config import DatabaseConfig
from case_archiver.exceptions import DatabaseError
from utils.logging import get_logger


class DatabaseManager:
    """Manages the PostgreSQL connection pool of the history database."""

    def __init__(
        self,
        config: DatabaseConfig,
        logger: Optional[BoundLogger] = None,
    ) -> None:
        """Initialize database manager.

        Args:
            config: Database configuration
            logger: Optional logger instance
        """
        self.config = config
        self.pool_size = config.pool_size
        self.logger = logger or get_logger("database")
        self.pool: Optional[asyncpg.Pool] = None
        self._dsn: Optional[str] = None

    @property
    def dsn(self) -> str:
        """Get database connection DSN."""
        if self._dsn is None:
            try:
                password = self.config.get_password()
            except ValueError as e:
                raise DatabaseError(str(e), context={"database": self.config.name}) from e

            self._dsn = (
                f"postgresql://{self.config.user}:{password}@"
                f"{self.config.host}:{self.config.port}/{self.config.name}"
            )
        return self._dsn

    async def connect(self) -> None:
        """Create connection pool."""
        if self.pool is not None:
            return

        try:
            self.logger.debug(
                "Creating connection pool",
                database=self.config.name,
                host=self.config.host,
                pool_size=self.pool_size,
            )
            self.pool = await asyncpg.create_pool(
                self.dsn,
                min_size=1,
                max_size=self.pool_size,
                command_timeout=60,
                server_settings={"application_name": "case_archiver"},
            )
        except Exception as e:
            raise DatabaseError(
                f"Failed to create connection pool: {e}",
                context={"database": self.config.name, "host": self.config.host},
            ) from e

    async def disconnect(self) -> None:
        """Close connection pool."""
        if self.pool:
            self.logger.debug("Closing connection pool", database=self.config.name)
            await self.pool.close()
            self.pool = None

    @asynccontextmanager
    async def acquire_connection(self) -> AsyncGenerator[asyncpg.Connection, None]:
        """Acquire a connection from the pool.

        Yields:
            Database connection

        Raises:
            DatabaseError: If pool is not initialized
        """
        if not self.pool:
            raise DatabaseError(
                "Connection pool not initialized. Call connect() first.",
                context={"database": self.config.name},
            )

        conn = await self.pool.acquire()
        try:
            yield conn
        finally:
            await self.pool.release(conn)

    async def _run(self, method: str, query: str, args: tuple[Any, ...]) -> Any:
        try:
            async with self.acquire_connection() as conn:
                return await getattr(conn, method)(query, *args)
        except DatabaseError:
            raise
        except Exception as e:
            raise DatabaseError(
                f"Query execution failed: {e}",
                context={"database": self.config.name, "query": query[:100]},
            ) from e

    async def execute(self, query: str, *args: Any) -> str:
        """Execute a statement and return its command tag (e.g. "DELETE 3").

        Raises:
            DatabaseError: If execution fails
        """
        return await self._run("execute", query, args)

    async def fetch(self, query: str, *args: Any) -> list[asyncpg.Record]:
        return await self._run("fetch", query, args)

    async def fetchrow(self, query: str, *args: Any) -> Optional[asyncpg.Record]:
        return await self._run("fetchrow", query, args)

    async def fetchval(self, query: str, *args: Any) -> Any:
        return await self._run("fetchval", query, args)
