"""Tests for connection handles and the aiomysql pool cluster."""

import asyncio
from unittest.mock import AsyncMock, MagicMock, patch

import pymysql.err
import pytest
from pymysql.converters import escape_item

from sql_cache.core.config import AppConfig, PoolProfile
from sql_cache.core.exceptions import (
    ArgumentError,
    ConnectionError,
    QueryError,
    TransactionError,
)
from sql_cache.core.models import WriteAck
from sql_cache.core.pool import (
    ConnectionHandle,
    ConnectionProvider,
    DriverConnection,
    MysqlConnection,
    MysqlPoolCluster,
    PoolBackend,
    TransactionState,
)
from tests.conftest import FakeConnection, FakePool


@pytest.mark.unit
class TestConnectionHandle:
    @pytest.mark.asyncio
    async def test_release_at_most_once(self, pool):
        conn = FakeConnection(pool, "db1")
        handle = ConnectionHandle(conn, "db1")
        assert await handle.release() is True
        assert await handle.release() is False
        assert conn.release_count == 1

    @pytest.mark.asyncio
    async def test_released_handle_refuses_work(self, pool):
        handle = ConnectionHandle(FakeConnection(pool, "db1"), "db1")
        await handle.release()
        with pytest.raises(ConnectionError, match="already released"):
            await handle.query("SELECT 1")
        with pytest.raises(ConnectionError):
            await handle.begin()
        with pytest.raises(ConnectionError):
            await handle.commit()

    @pytest.mark.asyncio
    async def test_unescapable_parameter_is_argument_error(self, pool, monkeypatch):
        monkeypatch.setattr(
            FakeConnection, "escape", lambda self, value: escape_item(value, "utf8mb4")
        )
        handle = ConnectionHandle(FakeConnection(pool, "db1"), "db1")
        with pytest.raises(ArgumentError, match="Cannot bind parameters"):
            await handle.query("SELECT * FROM t WHERE id = :id", {"id": {"a": 1}})
        assert pool.executed == []

    @pytest.mark.asyncio
    async def test_state_transitions(self, pool):
        handle = ConnectionHandle(FakeConnection(pool, "db1"), "db1")
        assert handle.state is TransactionState.IDLE
        await handle.begin()
        assert handle.in_transaction
        await handle.commit()
        assert handle.state is TransactionState.COMMITTED
        assert not handle.in_transaction

    def test_formatter_uses_connection_escape(self, pool):
        handle = ConnectionHandle(FakeConnection(pool, "db1"), "db1")
        assert handle.format("SELECT :name", {"name": "x"}) == "SELECT 'x'"

    def test_repr(self, pool):
        handle = ConnectionHandle(FakeConnection(pool, "db1"), "db1")
        assert "db1" in repr(handle)

    def test_fakes_satisfy_protocols(self, pool):
        assert isinstance(pool, PoolBackend)
        assert isinstance(FakeConnection(pool, "db1"), DriverConnection)


@pytest.mark.unit
class TestConnectionProvider:
    @pytest.mark.asyncio
    async def test_counts_acquisitions(self):
        provider = ConnectionProvider(FakePool())
        handle = await provider.acquire("db1")
        assert provider.acquisitions == 1
        assert handle.pool_name == "db1"

    @pytest.mark.asyncio
    async def test_failure_not_counted(self):
        provider = ConnectionProvider(FakePool())
        with pytest.raises(ConnectionError):
            await provider.acquire("missing")
        assert provider.acquisitions == 0


def _mock_cursor(description=None, rows=None, rowcount=0, lastrowid=None, nextsets=()):
    cur = MagicMock()
    cur.execute = AsyncMock()
    cur.description = description
    cur.fetchall = AsyncMock(return_value=rows or [])
    cur.rowcount = rowcount
    cur.lastrowid = lastrowid
    cur.nextset = AsyncMock(side_effect=[*nextsets, None])
    return cur


def _mock_connection(cur):
    raw = MagicMock()
    raw.cursor.return_value.__aenter__.return_value = cur
    raw.escape.side_effect = lambda value: f"'{value}'"
    raw.begin = AsyncMock()
    raw.commit = AsyncMock()
    raw.rollback = AsyncMock()
    return raw


@pytest.mark.unit
class TestMysqlConnection:
    @pytest.mark.asyncio
    async def test_rows(self):
        cur = _mock_cursor(description=[("id",)], rows=({"id": 1},))
        conn = MysqlConnection(_mock_connection(cur), MagicMock())
        assert await conn.query("SELECT id FROM t") == [{"id": 1}]
        cur.execute.assert_awaited_once_with("SELECT id FROM t")

    @pytest.mark.asyncio
    async def test_write_ack(self):
        cur = _mock_cursor(rowcount=1, lastrowid=42)
        conn = MysqlConnection(_mock_connection(cur), MagicMock())
        ack = await conn.query("INSERT INTO t VALUES (1)")
        assert ack == WriteAck(affected_rows=1, insert_id=42)

    @pytest.mark.asyncio
    async def test_write_without_generated_id(self):
        cur = _mock_cursor(rowcount=3, lastrowid=0)
        conn = MysqlConnection(_mock_connection(cur), MagicMock())
        ack = await conn.query("UPDATE t SET a = 1")
        assert ack.insert_id is None
        assert ack.affected_rows == 3

    @pytest.mark.asyncio
    async def test_multi_statement(self):
        cur = _mock_cursor(rowcount=1, lastrowid=5, nextsets=(True,))
        conn = MysqlConnection(_mock_connection(cur), MagicMock())
        result = await conn.query("INSERT ...; INSERT ...")
        assert isinstance(result, list)
        assert len(result) == 2

    @pytest.mark.asyncio
    async def test_driver_error_mapped(self):
        cur = _mock_cursor()
        cur.execute.side_effect = pymysql.err.ProgrammingError(
            1064, "You have an error in your SQL syntax"
        )
        conn = MysqlConnection(_mock_connection(cur), MagicMock())
        with pytest.raises(QueryError, match="SQL syntax") as exc_info:
            await conn.query("SELEC 1")
        assert exc_info.value.driver_code == 1064

    @pytest.mark.asyncio
    async def test_commit_error_mapped(self):
        raw = _mock_connection(_mock_cursor())
        raw.commit.side_effect = pymysql.err.OperationalError(1213, "Deadlock found")
        conn = MysqlConnection(raw, MagicMock())
        with pytest.raises(TransactionError, match="Deadlock"):
            await conn.commit()

    @pytest.mark.asyncio
    async def test_rollback_error_swallowed(self):
        raw = _mock_connection(_mock_cursor())
        raw.rollback.side_effect = pymysql.err.OperationalError(2013, "Lost connection")
        await MysqlConnection(raw, MagicMock()).rollback()

    @pytest.mark.asyncio
    async def test_release_returns_to_pool(self):
        raw = _mock_connection(_mock_cursor())
        pool = MagicMock()
        await MysqlConnection(raw, pool).release()
        pool.release.assert_called_once_with(raw)

    def test_escape_delegates(self):
        raw = _mock_connection(_mock_cursor())
        assert MysqlConnection(raw, MagicMock()).escape("x") == "'x'"


@pytest.mark.unit
class TestMysqlPoolCluster:
    @pytest.mark.asyncio
    async def test_unknown_pool(self):
        cluster = MysqlPoolCluster({"main": PoolProfile()})
        with pytest.raises(ConnectionError, match="Unknown pool: 'other'"):
            await cluster.acquire("other")

    @pytest.mark.asyncio
    async def test_pool_created_once(self):
        raw_pool = MagicMock()
        raw_pool.acquire = AsyncMock(return_value=MagicMock())
        create = AsyncMock(return_value=raw_pool)
        cluster = MysqlPoolCluster.from_config(AppConfig(pools={"main": PoolProfile(user="app")}))
        with patch("sql_cache.core.pool.aiomysql.create_pool", create):
            await asyncio.gather(cluster.acquire("main"), cluster.acquire("main"))
        create.assert_awaited_once()
        assert create.call_args.kwargs["autocommit"] is True
        assert create.call_args.kwargs["user"] == "app"

    @pytest.mark.asyncio
    async def test_handshake_failure(self):
        create = AsyncMock(side_effect=pymysql.err.OperationalError(1045, "Access denied"))
        cluster = MysqlPoolCluster({"main": PoolProfile()})
        with patch("sql_cache.core.pool.aiomysql.create_pool", create):
            with pytest.raises(ConnectionError, match="Access denied"):
                await cluster.acquire("main")
            with pytest.raises(ConnectionError):
                await cluster.acquire("main")
        assert create.await_count == 2

    @pytest.mark.asyncio
    async def test_exhausted_pool(self):
        async def never():
            await asyncio.sleep(10)

        raw_pool = MagicMock()
        raw_pool.acquire = never
        cluster = MysqlPoolCluster({"main": PoolProfile(acquire_timeout=0.01)})
        with patch("sql_cache.core.pool.aiomysql.create_pool", AsyncMock(return_value=raw_pool)):
            with pytest.raises(ConnectionError, match="exhausted"):
                await cluster.acquire("main")

    @pytest.mark.asyncio
    async def test_close(self):
        raw_pool = MagicMock()
        raw_pool.acquire = AsyncMock(return_value=MagicMock())
        raw_pool.wait_closed = AsyncMock()
        cluster = MysqlPoolCluster({"main": PoolProfile()})
        with patch("sql_cache.core.pool.aiomysql.create_pool", AsyncMock(return_value=raw_pool)):
            await cluster.acquire("main")
        await cluster.close()
        raw_pool.close.assert_called_once()
        raw_pool.wait_closed.assert_awaited_once()
