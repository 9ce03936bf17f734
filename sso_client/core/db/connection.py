"""Database connection management and write serialization."""

import asyncio
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any, AsyncIterator, Iterable, Optional

import aiosqlite
import structlog

from .exceptions import DatabaseConnectionError, TransactionError

logger = structlog.get_logger(__name__)


class DatabaseConnection:
    """
    One shared aiosqlite connection plus the lock that guards its writes.

    The connection runs in autocommit mode, so an open ``BEGIN`` belongs to
    the whole connection, not to the task that issued it. Every write goes
    through ``transaction()`` or ``execute_write()``: the task holding the
    write lock owns the open transaction, and writes from any other task
    wait until it commits or rolls back.
    """

    def __init__(
        self,
        db_path: Path,
        enable_wal: bool = True,
        timeout: int = 30,
    ):
        """
        Initialize database connection manager.

        Args:
            db_path: Path to SQLite database file
            enable_wal: Enable Write-Ahead Logging mode
            timeout: Connection timeout in seconds
        """
        self.db_path = db_path
        self.enable_wal = enable_wal
        self.timeout = timeout
        self._connection: Optional[aiosqlite.Connection] = None
        self._write_lock = asyncio.Lock()
        self._owner: Optional["asyncio.Task[Any]"] = None

    @property
    def connection(self) -> Optional[aiosqlite.Connection]:
        return self._connection

    async def connect(self) -> aiosqlite.Connection:
        """
        Open the connection, or return the one already open.

        Raises:
            DatabaseConnectionError: If connection fails
        """
        if self._connection is not None:
            return self._connection

        try:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)

            # isolation_level=None: BEGIN/COMMIT are issued by transaction()
            self._connection = await aiosqlite.connect(
                str(self.db_path),
                timeout=self.timeout,
                isolation_level=None,
            )
            self._connection.row_factory = aiosqlite.Row

            await self._connection.execute("PRAGMA foreign_keys = ON")
            if self.enable_wal:
                await self._connection.execute("PRAGMA journal_mode = WAL")

            logger.info(
                "database_connected",
                db_path=str(self.db_path),
                wal_mode=self.enable_wal,
            )
            return self._connection

        except (aiosqlite.Error, OSError) as e:
            logger.error(
                "database_connection_failed",
                db_path=str(self.db_path),
                error=str(e),
            )
            raise DatabaseConnectionError(
                f"Failed to connect to database: {e}",
                path=self.db_path,
            ) from e

    async def close(self) -> None:
        """Close database connection."""
        if self._connection is not None:
            await self._connection.close()
            self._connection = None
            logger.info("database_closed", db_path=str(self.db_path))

    def owns_transaction(self) -> bool:
        """Whether the current task holds the open transaction."""
        return self._owner is not None and self._owner is asyncio.current_task()

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[aiosqlite.Connection]:
        """
        Hold the write lock and run the block in one transaction.

        Raises:
            TransactionError: Without a connection, or when the current task
                already owns a transaction
        """
        if self._connection is None:
            raise TransactionError("No active connection", operation="begin")
        if self.owns_transaction():
            raise TransactionError("Nested transactions are not supported", operation="begin")

        async with self._write_lock:
            conn = self._connection
            await conn.execute("BEGIN")
            self._owner = asyncio.current_task()
            logger.debug("transaction_started")
            try:
                yield conn
            except BaseException as e:
                await conn.rollback()
                logger.warning("transaction_rolled_back", error=str(e))
                raise
            else:
                await conn.commit()
                logger.debug("transaction_committed")
            finally:
                self._owner = None

    @asynccontextmanager
    async def write(self) -> AsyncIterator[aiosqlite.Connection]:
        """Join the current task's transaction, or open one of its own."""
        if self.owns_transaction():
            assert self._connection is not None
            yield self._connection
            return
        async with self.transaction() as conn:
            yield conn

    async def execute_write(self, sql: str, params: Iterable[Any] = ()) -> aiosqlite.Cursor:
        """Run a single write statement under the write lock."""
        async with self.write() as conn:
            return await conn.execute(sql, params)

    async def __aenter__(self) -> aiosqlite.Connection:
        return await self.connect()

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()
