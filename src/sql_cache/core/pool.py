"""Connection provider for sql-cache.

Resolves a logical database name to a connection borrowed from a named
pool. Pool backends only need to satisfy ``PoolBackend``; the bundled
``MysqlPoolCluster`` builds one aiomysql pool per configured profile.
Driver errors are mapped to the SqlCacheError hierarchy at this boundary.
"""

from __future__ import annotations

import asyncio
from enum import StrEnum
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

import aiomysql
import pymysql.err
import structlog
from pymysql.constants import CLIENT

from sql_cache.core.exceptions import (
    ArgumentError,
    ConnectionError,
    QueryError,
    TransactionError,
)
from sql_cache.core.formatter import ParameterFormatter
from sql_cache.core.models import WriteAck

if TYPE_CHECKING:
    from sql_cache.core.config import AppConfig, PoolProfile

# One statement yields rows or a write acknowledgement; multi-statement
# SQL yields a list with one entry per statement.
Payload = Any


@runtime_checkable
class DriverConnection(Protocol):
    """A single borrowed connection as seen by this layer.

    ``query`` receives fully formatted SQL. Implementations raise
    QueryError for rejected SQL and TransactionError for failed
    begin/commit; ``rollback`` and ``release`` do not fail.
    """

    def escape(self, value: Any) -> str: ...

    async def query(self, sql: str) -> Payload: ...

    async def begin(self) -> None: ...

    async def commit(self) -> None: ...

    async def rollback(self) -> None: ...

    async def release(self) -> None: ...


@runtime_checkable
class PoolBackend(Protocol):
    """Hands out connections by pool name; raises ConnectionError on failure."""

    async def acquire(self, name: str) -> DriverConnection: ...


class TransactionState(StrEnum):
    IDLE = "idle"
    OPEN = "open"
    COMMITTED = "committed"
    ROLLED_BACK = "rolled_back"


class ConnectionHandle:
    """Exclusive borrow of one pooled connection.

    The handle carries the formatter bound to its connection's escaping
    primitive. It is released at most once; afterwards every operation
    raises ConnectionError.
    """

    def __init__(self, driver: DriverConnection, pool_name: str | None = None) -> None:
        self._driver = driver
        self.pool_name = pool_name
        self.formatter = ParameterFormatter(driver.escape)
        self.state = TransactionState.IDLE
        self.released = False

    def __repr__(self) -> str:
        return (
            f"ConnectionHandle(pool={self.pool_name!r}, state={self.state.value}, "
            f"released={self.released})"
        )

    @property
    def in_transaction(self) -> bool:
        return self.state is TransactionState.OPEN and not self.released

    def _ensure_usable(self) -> None:
        if self.released:
            msg = f"Connection from pool '{self.pool_name}' was already released"
            raise ConnectionError(msg)

    def format(self, sql: str, params: Any = None) -> str:
        return self.formatter(sql, params)

    async def query(self, sql: str, params: Any = None) -> Payload:
        self._ensure_usable()
        try:
            formatted = self.format(sql, params)
        except (TypeError, ValueError) as e:
            msg = f"Cannot bind parameters: {e}"
            raise ArgumentError(msg) from e
        return await self._driver.query(formatted)

    async def begin(self) -> None:
        self._ensure_usable()
        await self._driver.begin()
        self.state = TransactionState.OPEN

    async def commit(self) -> None:
        self._ensure_usable()
        await self._driver.commit()
        self.state = TransactionState.COMMITTED

    async def rollback(self) -> None:
        self._ensure_usable()
        await self._driver.rollback()
        self.state = TransactionState.ROLLED_BACK

    async def release(self) -> bool:
        """Return the connection to its pool. False if already released."""
        if self.released:
            return False
        self.released = True
        await self._driver.release()
        return True


class ConnectionProvider:
    """Borrows connections from a PoolBackend and wraps them in handles."""

    def __init__(self, backend: PoolBackend) -> None:
        self.backend = backend
        self.acquisitions = 0

    async def acquire(self, name: str) -> ConnectionHandle:
        log = structlog.get_logger()
        try:
            driver = await self.backend.acquire(name)
        except ConnectionError as e:
            log.error("connection failed", pool=name, error=e.message)
            raise
        self.acquisitions += 1
        log.debug("connection acquired", pool=name)
        return ConnectionHandle(driver, pool_name=name)


def _driver_message(exc: BaseException) -> tuple[str, int | None]:
    args = getattr(exc, "args", ())
    if len(args) >= 2 and isinstance(args[0], int):
        return str(args[1]), args[0]
    return str(exc), None


class MysqlConnection:
    """DriverConnection over a raw aiomysql connection."""

    def __init__(self, conn: aiomysql.Connection, pool: aiomysql.Pool) -> None:
        self._conn = conn
        self._pool = pool

    def escape(self, value: Any) -> str:
        return self._conn.escape(value)

    @staticmethod
    async def _collect(cur: aiomysql.DictCursor) -> Payload:
        if cur.description:
            return list(await cur.fetchall())
        return WriteAck(affected_rows=max(cur.rowcount, 0), insert_id=cur.lastrowid or None)

    async def query(self, sql: str) -> Payload:
        try:
            async with self._conn.cursor(aiomysql.DictCursor) as cur:
                await cur.execute(sql)
                results = [await self._collect(cur)]
                while await cur.nextset():
                    results.append(await self._collect(cur))
        except pymysql.err.MySQLError as e:
            message, code = _driver_message(e)
            raise QueryError(message, driver_code=code) from e
        if len(results) == 1:
            return results[0]
        return results

    async def begin(self) -> None:
        try:
            await self._conn.begin()
        except pymysql.err.MySQLError as e:
            raise TransactionError(_driver_message(e)[0]) from e

    async def commit(self) -> None:
        try:
            await self._conn.commit()
        except pymysql.err.MySQLError as e:
            raise TransactionError(_driver_message(e)[0]) from e

    async def rollback(self) -> None:
        try:
            await self._conn.rollback()
        except pymysql.err.MySQLError as e:
            structlog.get_logger().warning("rollback failed", error=str(e))

    async def release(self) -> None:
        self._pool.release(self._conn)


class MysqlPoolCluster:
    """PoolBackend holding one aiomysql pool per configured profile.

    Pools are created on first use. Creation is tracked as a shared task so
    concurrent first requests for the same name wait on one pool.
    """

    def __init__(self, profiles: dict[str, PoolProfile]) -> None:
        self.profiles = dict(profiles)
        self._pools: dict[str, asyncio.Future[aiomysql.Pool]] = {}

    @classmethod
    def from_config(cls, config: AppConfig) -> MysqlPoolCluster:
        return cls(config.pools)

    async def _create_pool(self, name: str) -> aiomysql.Pool:
        profile = self.profiles[name]
        try:
            return await aiomysql.create_pool(
                host=profile.host,
                port=profile.port,
                user=profile.user,
                password=profile.password or "",
                db=profile.database,
                charset=profile.charset,
                minsize=profile.minsize,
                maxsize=profile.maxsize,
                connect_timeout=profile.connect_timeout,
                autocommit=True,
                client_flag=CLIENT.MULTI_STATEMENTS,
            )
        except (pymysql.err.MySQLError, OSError) as e:
            msg = (
                f"Connection failed to {profile.host}:{profile.port} "
                f"pool '{name}': {_driver_message(e)[0]}"
            )
            raise ConnectionError(msg) from e

    async def _pool(self, name: str) -> aiomysql.Pool:
        if name not in self.profiles:
            available = ", ".join(sorted(self.profiles)) if self.profiles else "none"
            msg = f"Unknown pool: '{name}'. Available pools: {available}"
            raise ConnectionError(msg)
        future = self._pools.get(name)
        if future is None:
            future = asyncio.ensure_future(self._create_pool(name))
            self._pools[name] = future
        try:
            return await asyncio.shield(future)
        except ConnectionError:
            if self._pools.get(name) is future:
                del self._pools[name]
            raise

    async def acquire(self, name: str) -> MysqlConnection:
        pool = await self._pool(name)
        timeout = self.profiles[name].acquire_timeout
        try:
            conn = await asyncio.wait_for(pool.acquire(), timeout=timeout)
        except TimeoutError as e:
            msg = f"Pool '{name}' exhausted: no connection within {timeout}s"
            raise ConnectionError(msg) from e
        except (pymysql.err.MySQLError, OSError) as e:
            msg = f"Connection failed for pool '{name}': {_driver_message(e)[0]}"
            raise ConnectionError(msg) from e
        return MysqlConnection(conn, pool)

    async def close(self) -> None:
        pools, self._pools = self._pools, {}
        for future in pools.values():
            if not future.done() or future.cancelled() or future.exception():
                continue
            pool = future.result()
            pool.close()
            await pool.wait_closed()
