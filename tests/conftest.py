"""Shared test fixtures for sql-cache.

FakePool and FakeRedis stand in for the MySQL pool cluster and the Redis
client. They record every call so tests can assert on acquisition and
release counts, executed SQL and cache contents.
"""

from __future__ import annotations

from collections.abc import Callable
from typing import Any

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError
from typer.testing import CliRunner

from sql_cache.core.cache import CacheStore
from sql_cache.core.exceptions import ConnectionError, QueryError, TransactionError
from sql_cache.core.executor import QueryExecutor
from sql_cache.core.models import WriteAck


def fake_escape(value: Any) -> str:
    if value is None:
        return "NULL"
    if isinstance(value, bool):
        return "1" if value else "0"
    if isinstance(value, (int, float)):
        return str(value)
    return "'" + str(value).replace("\\", "\\\\").replace("'", "\\'") + "'"


class FakeConnection:
    def __init__(self, pool: FakePool, name: str) -> None:
        self.pool = pool
        self.name = name
        self.release_count = 0
        self.begun = False
        self.committed = False
        self.rolled_back = False

    def escape(self, value: Any) -> str:
        return fake_escape(value)

    async def query(self, sql: str) -> Any:
        self.pool.executed.append(sql)
        return self.pool.handler(sql)

    async def begin(self) -> None:
        if self.pool.fail_begin:
            raise TransactionError("begin failed")
        self.begun = True

    async def commit(self) -> None:
        if self.pool.fail_commit:
            raise TransactionError("commit failed: deadlock")
        self.committed = True

    async def rollback(self) -> None:
        if self.pool.fail_rollback:
            raise RuntimeError("rollback failed")
        self.rolled_back = True

    async def release(self) -> None:
        self.release_count += 1


class FakePool:
    """PoolBackend serving one logical pool per name in ``names``."""

    def __init__(self, names: tuple[str, ...] = ("db1", "db2")) -> None:
        self.names = names
        self.acquisitions = 0
        self.connections: list[FakeConnection] = []
        self.executed: list[str] = []
        self.handler: Callable[[str], Any] = lambda sql: []
        self.fail_begin = False
        self.fail_commit = False
        self.fail_rollback = False

    def respond(self, payload: Any) -> None:
        self.handler = lambda sql: payload

    def fail_query(self, message: str = "You have an error in your SQL syntax") -> None:
        def handler(sql: str) -> Any:
            raise QueryError(message, driver_code=1064)

        self.handler = handler

    async def acquire(self, name: str) -> FakeConnection:
        if name not in self.names:
            msg = f"Unknown pool: '{name}'"
            raise ConnectionError(msg)
        self.acquisitions += 1
        conn = FakeConnection(self, name)
        self.connections.append(conn)
        return conn

    @property
    def releases(self) -> int:
        return sum(conn.release_count for conn in self.connections)


class FakeRedis:
    """The subset of redis.asyncio.Redis used by CacheStore."""

    def __init__(self) -> None:
        self.store: dict[str, str] = {}
        self.ttls: dict[str, int] = {}
        self.deleted: list[str] = []
        self.fail = False
        self.closed = False

    def _check(self) -> None:
        if self.fail:
            raise RedisConnectionError("redis unavailable")

    async def get(self, key: str) -> str | None:
        self._check()
        return self.store.get(key)

    async def set(self, key: str, value: str, ex: int | None = None) -> bool:
        self._check()
        self.store[key] = value
        self.ttls[key] = ex
        return True

    async def delete(self, key: str) -> int:
        self._check()
        self.deleted.append(key)
        return 1 if self.store.pop(key, None) is not None else 0

    async def flushdb(self) -> bool:
        self._check()
        self.store.clear()
        return True

    async def aclose(self) -> None:
        self.closed = True


ROWS = [{"id": 1, "name": "alpha"}, {"id": 2, "name": "beta"}]


@pytest.fixture
def pool():
    return FakePool()


@pytest.fixture
def fake_redis():
    return FakeRedis()


@pytest.fixture
def cache_store(fake_redis):
    return CacheStore(fake_redis)


@pytest.fixture
def executor(pool, cache_store):
    return QueryExecutor(pool, cache_store)


@pytest.fixture
def uncached_executor(pool):
    return QueryExecutor(pool)


@pytest.fixture
def write_ack():
    def make(affected_rows: int = 1, insert_id: int | None = None) -> WriteAck:
        return WriteAck(affected_rows=affected_rows, insert_id=insert_id)

    return make


@pytest.fixture
def runner():
    """Typer CLI test runner."""
    return CliRunner()
