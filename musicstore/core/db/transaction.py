"""
Explicit transaction bracketing on the shared connection.

States: IDLE -> IN_TRANSACTION -> (committed | rolled back) -> IDLE.

A failed COMMIT or ROLLBACK is not retried: the connection is reopened, which
discards whatever the engine still holds for the failed transaction.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import replace
from enum import Enum

from musicstore.core import TransactionError
from musicstore.core.db.executor import ErrorKind, QueryExecutor, StoreFault, WriteResult

logger = logging.getLogger(__name__)


class TransactionState(Enum):
    IDLE = "idle"
    IN_TRANSACTION = "in_transaction"


def _as_transaction_failure(result: WriteResult) -> WriteResult:
    if result.error is None or result.error.kind is ErrorKind.OPEN:
        return result
    return replace(result, error=replace(result.error, kind=ErrorKind.TRANSACTION))


def _refused(sql: str, message: str) -> WriteResult:
    return WriteResult(error=StoreFault(kind=ErrorKind.TRANSACTION, message=message, sql=sql))


class TransactionController:
    """
    Begin/commit/rollback with reconnect-on-failure recovery.

    Only one transaction may be open at a time. Calls that do not match the
    current state are refused with a warning instead of reaching SQLite.
    """

    def __init__(self, executor: QueryExecutor) -> None:
        self._executor = executor
        self._state = TransactionState.IDLE
        self._changes_at_begin = 0

    @property
    def state(self) -> TransactionState:
        return self._state

    @property
    def in_transaction(self) -> bool:
        return self._state is TransactionState.IN_TRANSACTION

    def _changes_since_begin(self) -> int:
        conn = self._executor.connections.connection
        if conn is None:
            return 0
        return conn.total_changes - self._changes_at_begin

    async def begin(self) -> WriteResult:
        if self.in_transaction:
            logger.warning("BeginTransaction: a transaction is already open; ignoring nested begin")
            return _refused("BEGIN;", "transaction already open")

        result = _as_transaction_failure(await self._executor.execute_nonquery("BEGIN;"))
        if not result:
            logger.error("BeginTransaction: begin transaction failed: %s", result.error.message)
            return result

        self._state = TransactionState.IN_TRANSACTION
        conn = self._executor.connections.connection
        self._changes_at_begin = conn.total_changes if conn is not None else 0
        return result

    async def commit(self) -> WriteResult:
        if not self.in_transaction:
            logger.warning("CommitTransaction: no transaction is open")
            return _refused("COMMIT;", "no transaction open")

        logger.debug("Commit will affect %d rows", self._changes_since_begin())
        result = _as_transaction_failure(await self._executor.execute_nonquery("COMMIT;"))
        self._state = TransactionState.IDLE
        if not result:
            logger.error("Commit failed: %s", result.error.message)
            await self._executor.connections.reopen()
        return result

    async def rollback(self) -> WriteResult:
        if not self.in_transaction:
            logger.warning("RollbackTransaction: no transaction is open")
            return _refused("ROLLBACK;", "no transaction open")

        logger.debug(
            "Rolling back transaction. Affecting %d rows", self._changes_since_begin()
        )
        result = _as_transaction_failure(await self._executor.execute_nonquery("ROLLBACK;"))
        self._state = TransactionState.IDLE
        if not result:
            logger.error("Rollback failed: %s", result.error.message)
            await self._executor.connections.reopen()
        return result

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[TransactionController]:
        """
        Bracket a block of writes.

        Commits when the block finishes and rolls back (then re-raises) if it
        raises. Raises TransactionError if BEGIN or COMMIT fails.
        """
        begun = await self.begin()
        if not begun:
            raise TransactionError(f"Cannot begin transaction: {begun.error.message}", begun.error)
        try:
            yield self
        except BaseException:
            await self.rollback()
            raise
        committed = await self.commit()
        if not committed:
            raise TransactionError(
                f"Cannot commit transaction: {committed.error.message}", committed.error
            )

