"""
Connection lifecycle for the music store.

A `ConnectionManager` owns exactly one aiosqlite connection to
`MusicDatabase.db3`. The connection is opened lazily by `get_connection()`;
`reopen()` throws it away so the next call runs the full open sequence again
(file preparation, pragmas, schema creation, version check).
"""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import TYPE_CHECKING

import aiosqlite

from musicstore.core import DatabaseOpenError
from musicstore.core.db.schema import (
    DATABASE_FILE_NAME,
    PRAGMAS,
    check_version,
    create_schema,
    prepare_database_file,
)

if TYPE_CHECKING:
    from musicstore.config import LibrarySettings

logger = logging.getLogger(__name__)


class ConnectionManager:
    """
    Single shared connection to the database file.

    Usage:
        manager = ConnectionManager("/var/lib/music")
        conn = await manager.get_connection()
        ...
        await manager.close()

    Notes:
    - The get-or-open check runs under one lock, so concurrent callers never
      open two handles.
    - Connections use `isolation_level=None`; transactions are bracketed
      explicitly by `TransactionController`.
    """

    def __init__(self, db_dir: str | Path, settings: LibrarySettings | None = None) -> None:
        self._db_dir = Path(db_dir)
        self._settings = settings
        self._conn: aiosqlite.Connection | None = None
        self._is_open = False
        self._lock = asyncio.Lock()

    @property
    def db_path(self) -> Path:
        return self._db_dir / DATABASE_FILE_NAME

    @property
    def is_open(self) -> bool:
        return self._is_open and self._conn is not None

    @property
    def connection(self) -> aiosqlite.Connection | None:
        """The current handle, or None if not open. Does not open."""
        return self._conn if self._is_open else None

    async def get_connection(self) -> aiosqlite.Connection:
        """
        Return an open connection, opening (and creating) the database if needed.

        Raises:
            DatabaseOpenError: the file could not be created, opened or validated.
        """
        async with self._lock:
            if self._conn is not None and self._is_open:
                return self._conn
            await self._dispose()
            self._conn = await self._open()
            self._is_open = True
            return self._conn

    async def reopen(self) -> None:
        """Dispose the current handle; the next `get_connection()` reopens."""
        async with self._lock:
            logger.info("Reopening database %s", self.db_path)
            await self._dispose()

    async def close(self) -> None:
        async with self._lock:
            await self._dispose()

    async def _dispose(self) -> None:
        conn = self._conn
        self._conn = None
        self._is_open = False
        if conn is None:
            return
        try:
            await conn.close()
        except Exception as e:
            logger.warning("Error closing database connection: %s", e)

    async def _open(self) -> aiosqlite.Connection:
        logger.info("Opening database %s", self.db_path)

        try:
            created = prepare_database_file(self._db_dir, self._settings)
        except OSError as e:
            raise DatabaseOpenError(f"Cannot prepare database file {self.db_path}: {e}") from e

        try:
            conn = await aiosqlite.connect(str(self.db_path), isolation_level=None)
        except aiosqlite.Error as e:
            raise DatabaseOpenError(f"Cannot open database {self.db_path}: {e}") from e

        try:
            for pragma in PRAGMAS:
                await conn.execute(pragma)

            if created and not await create_schema(conn):
                raise DatabaseOpenError(f"Cannot create schema in {self.db_path}")

            await check_version(conn)
        except DatabaseOpenError:
            await conn.close()
            raise
        except aiosqlite.Error as e:
            await conn.close()
            raise DatabaseOpenError(f"Cannot initialize database {self.db_path}: {e}") from e

        logger.info("Database opened")
        return conn
