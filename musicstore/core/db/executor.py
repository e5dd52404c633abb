"""
Query execution against the managed connection.

Both entry points acquire the connection from `ConnectionManager` on every
call and never raise: failures are logged with the SQL text and returned as
an explicit error value.

- `execute_query()` returns a `ResultSet` whose cells are all text. Callers
  re-parse integers and dates themselves.
- `execute_nonquery()` returns a `WriteResult` which is truthy on success.

`ResultSet.status` tells "no rows" apart from "query failed".
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Iterator, Mapping, Sequence

from musicstore.core import DatabaseOpenError
from musicstore.core.db.connection import ConnectionManager

logger = logging.getLogger(__name__)

Params = Sequence[Any] | Mapping[str, Any]


class ErrorKind(Enum):
    """Where a store operation failed."""

    OPEN = "open"
    QUERY = "query"
    WRITE = "write"
    TRANSACTION = "transaction"


class ResultStatus(Enum):
    OK = "ok"
    EMPTY = "empty"
    ERROR = "error"


@dataclass(frozen=True, slots=True)
class StoreFault:
    """A logged failure, carried back to the caller instead of an exception."""

    kind: ErrorKind
    message: str
    sql: str = ""


@dataclass(slots=True)
class ResultSet:
    """Ordered column names plus ordered rows of text cells."""

    columns: list[str] = field(default_factory=list)
    rows: list[list[str]] = field(default_factory=list)
    last_command: str = ""
    error: StoreFault | None = None

    @property
    def status(self) -> ResultStatus:
        if self.error is not None:
            return ResultStatus.ERROR
        return ResultStatus.OK if self.rows else ResultStatus.EMPTY

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def is_empty(self) -> bool:
        return not self.rows

    def __len__(self) -> int:
        return len(self.rows)

    def __iter__(self) -> Iterator[list[str]]:
        return iter(self.rows)

    def column_index(self, name: str) -> int:
        """Index of `name` (case-insensitive). Raises KeyError if absent."""
        lowered = name.lower()
        for i, column in enumerate(self.columns):
            if column.lower() == lowered:
                return i
        raise KeyError(name)

    def get(self, row: int, column: str | int, default: str = "") -> str:
        """Return one cell as text, or `default` if the row/column is absent."""
        if row < 0 or row >= len(self.rows):
            return default
        try:
            index = column if isinstance(column, int) else self.column_index(column)
            return self.rows[row][index]
        except (KeyError, IndexError):
            return default


@dataclass(frozen=True, slots=True)
class WriteResult:
    """Outcome of a write/DDL statement. Truthy on success."""

    error: StoreFault | None = None
    rows_affected: int = 0
    last_row_id: int | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def __bool__(self) -> bool:
        return self.error is None


def to_text(value: Any) -> str:
    """Coerce a SQLite cell value to its text form."""
    if value is None:
        return ""
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    return str(value)


def _one_line(sql: str) -> str:
    return " ".join(sql.split())


class QueryExecutor:
    """Runs SQL through the managed connection."""

    def __init__(self, connections: ConnectionManager) -> None:
        self._connections = connections

    @property
    def connections(self) -> ConnectionManager:
        return self._connections

    def _fault(self, kind: ErrorKind, sql: str, exc: BaseException) -> StoreFault:
        logger.error("Exception executing: %s\n%s", _one_line(sql), exc)
        return StoreFault(kind=kind, message=str(exc), sql=sql)

    async def execute_query(self, sql: str, params: Params = ()) -> ResultSet:
        """Run a read query. Never raises; check `status` for failures."""
        try:
            conn = await self._connections.get_connection()
        except DatabaseOpenError as e:
            return ResultSet(last_command=sql, error=self._fault(ErrorKind.OPEN, sql, e))

        try:
            async with conn.execute(sql, params) as cursor:
                columns = [str(d[0]) for d in cursor.description or ()]
                rows = [[to_text(v) for v in row] async for row in cursor]
        except Exception as e:
            return ResultSet(last_command=sql, error=self._fault(ErrorKind.QUERY, sql, e))

        return ResultSet(columns=columns, rows=rows, last_command=sql)

    async def execute_nonquery(self, sql: str, params: Params = ()) -> WriteResult:
        """Run a write/DDL statement. Never raises; the result is falsy on failure."""
        try:
            conn = await self._connections.get_connection()
        except DatabaseOpenError as e:
            return WriteResult(error=self._fault(ErrorKind.OPEN, sql, e))

        try:
            cursor = await conn.execute(sql, params)
            rows_affected = max(cursor.rowcount, 0)
            last_row_id = cursor.lastrowid
            await cursor.close()
        except Exception as e:
            return WriteResult(error=self._fault(ErrorKind.WRITE, sql, e))

        return WriteResult(rows_affected=rows_affected, last_row_id=last_row_id)
