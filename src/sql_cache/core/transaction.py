"""Transaction lifecycle over a borrowed connection.

idle -> open on begin; open -> committed on commit; open -> rolled_back on
rollback or on a failed commit. Entering either terminal state releases
the connection exactly once.
"""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

import structlog

from sql_cache.core.exceptions import SqlCacheError, TransactionError
from sql_cache.core.models import QueryResult
from sql_cache.core.pool import TransactionState

if TYPE_CHECKING:
    from sql_cache.core.pool import ConnectionHandle, ConnectionProvider


class TransactionManager:
    def __init__(self, connections: ConnectionProvider) -> None:
        self.connections = connections

    async def open(self, db: str) -> QueryResult:
        """Borrow a connection from pool db and begin a transaction.

        On success the handle is the result payload. If begin fails the
        connection is handed back to the pool before the error is returned.
        """
        log = structlog.get_logger()
        try:
            handle = await self.connections.acquire(db)
        except SqlCacheError as e:
            return QueryResult.failure(e)

        try:
            await handle.begin()
        except SqlCacheError as e:
            log.error("transaction begin failed", pool=db, error=e.message)
            await handle.release()
            return QueryResult.failure(e)

        log.debug("transaction opened", pool=db)
        return QueryResult(payload=handle)

    async def commit(self, handle: ConnectionHandle | None) -> QueryResult:
        """Commit and release; a failed commit is rolled back automatically.

        The error returned is always the commit error, never a rollback one.
        """
        if handle is None:
            return QueryResult.failure(
                TransactionError("Cannot commit a transaction without a connection")
            )

        log = structlog.get_logger()
        try:
            await handle.commit()
        except SqlCacheError as e:
            log.error("transaction commit failed", pool=handle.pool_name, error=e.message)
            await self.rollback(handle)
            return QueryResult.failure(e)

        await handle.release()
        log.debug("transaction committed", pool=handle.pool_name)
        return QueryResult()

    async def rollback(self, handle: ConnectionHandle | None) -> None:
        """Roll back and release. Never raises."""
        if handle is None:
            return
        try:
            await handle.rollback()
        except Exception as e:  # noqa: BLE001
            structlog.get_logger().warning(
                "transaction rollback failed", pool=handle.pool_name, error=str(e)
            )
        finally:
            handle.state = TransactionState.ROLLED_BACK
            await handle.release()

    @asynccontextmanager
    async def transaction(self, db: str) -> AsyncIterator[ConnectionHandle]:
        """Open a transaction, commit on normal exit, roll back on error."""
        handle: ConnectionHandle = (await self.open(db)).raise_for_error().payload
        try:
            yield handle
        except BaseException:
            await self.rollback(handle)
            raise
        (await self.commit(handle)).raise_for_error()
