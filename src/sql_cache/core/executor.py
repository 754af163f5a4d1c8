"""Cache-aware query execution.

QueryExecutor ties together the connection provider, the parameter
formatter, the result cache and the transaction manager. A target is
either a pooled database name or an open transaction handle; only pooled
reads ever touch the cache.

Every public coroutine returns a QueryResult. Expected failures are
captured on the result instead of being raised.
"""

from __future__ import annotations

import time
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

import sentry_sdk
import structlog

from sql_cache.core import pagination
from sql_cache.core.cache import CacheStore
from sql_cache.core.exceptions import (
    ArgumentError,
    QueryError,
    ShapeError,
    SqlCacheError,
)
from sql_cache.core.models import (
    CacheDirective,
    CacheMode,
    Invalidation,
    PageDescriptor,
    QueryResult,
    WriteAck,
)
from sql_cache.core.pool import ConnectionHandle, ConnectionProvider, MysqlPoolCluster
from sql_cache.core.statements import build_delete, build_insert, build_update, merge_params
from sql_cache.core.transaction import TransactionManager

if TYPE_CHECKING:
    from contextlib import AbstractAsyncContextManager

    from sql_cache.core.config import AppConfig
    from sql_cache.core.pool import Payload, PoolBackend


@dataclass(frozen=True)
class PooledDatabase:
    """Run on a connection borrowed from the named pool."""

    name: str


@dataclass(frozen=True)
class ActiveTransaction:
    """Run on the connection of an open transaction."""

    handle: ConnectionHandle


Target = PooledDatabase | ActiveTransaction
TargetLike = Target | str | ConnectionHandle
CacheLike = CacheDirective | bool | int | None


def resolve_target(target: TargetLike) -> Target:
    if isinstance(target, (PooledDatabase, ActiveTransaction)):
        return target
    if isinstance(target, str):
        return PooledDatabase(target)
    if isinstance(target, ConnectionHandle):
        return ActiveTransaction(target)
    msg = f"Unsupported query target: {type(target).__name__}"
    raise ArgumentError(msg)


def _is_row_set(payload: Any) -> bool:
    return isinstance(payload, list) and all(isinstance(row, Mapping) for row in payload)


def _as_ack(item: Any) -> WriteAck | None:
    if isinstance(item, WriteAck):
        return item
    if isinstance(item, Mapping) and "affected_rows" in item and "insert_id" in item:
        return WriteAck(affected_rows=item["affected_rows"], insert_id=item["insert_id"])
    return None


def _describe(payload: Any) -> str:
    if isinstance(payload, list):
        return f"list of {len(payload)}"
    return type(payload).__name__


class QueryExecutor:
    """Executes SQL against named pools or open transactions with a result cache.

    Build one per process and share it; there is no module-level state.
    """

    def __init__(
        self,
        pools: PoolBackend,
        cache: CacheStore | None = None,
        *,
        clear_cache_on_start: bool = False,
    ) -> None:
        self.connections = ConnectionProvider(pools)
        self.cache = cache if cache is not None else CacheStore()
        self.transactions = TransactionManager(self.connections)
        self.clear_cache_on_start = clear_cache_on_start

    @classmethod
    def from_config(cls, config: AppConfig) -> QueryExecutor:
        return cls(
            MysqlPoolCluster.from_config(config),
            CacheStore.from_settings(config.cache),
            clear_cache_on_start=config.cache.clear_on_start,
        )

    async def start(self) -> QueryExecutor:
        if self.clear_cache_on_start:
            await self.cache.clear()
        return self

    async def close(self) -> None:
        close_pools = getattr(self.connections.backend, "close", None)
        if close_pools is not None:
            await close_pools()
        await self.cache.close()

    async def __aenter__(self) -> QueryExecutor:
        return await self.start()

    async def __aexit__(self, *exc: object) -> None:
        await self.close()

    # -- core --

    async def _query(self, handle: ConnectionHandle, sql: str, params: Any) -> Payload:
        log = structlog.get_logger()
        sql_normalized = " ".join(sql.split())
        log.debug("executing query", sql=sql_normalized, pool=handle.pool_name)
        with sentry_sdk.start_span(op="db.query", description=sql_normalized[:100]) as span:
            start_time = time.monotonic()
            try:
                payload = await handle.query(sql, params)
            except QueryError as e:
                span.set_status("invalid_argument")
                log.error("query error", sql=sql_normalized, params=params, error=e.message)
                raise
            duration_ms = (time.monotonic() - start_time) * 1000
            span.set_data("duration_ms", duration_ms)
            log.debug("query complete", duration_ms=f"{duration_ms:.1f}")
            return payload

    async def _run(self, target: Target, sql: str, params: Any) -> Payload:
        if isinstance(target, ActiveTransaction):
            return await self._query(target.handle, sql, params)

        handle = await self.connections.acquire(target.name)
        try:
            return await self._query(handle, sql, params)
        finally:
            await handle.release()

    async def execute(
        self,
        target: TargetLike,
        sql: str,
        params: Any = None,
        cache: CacheLike = None,
    ) -> QueryResult:
        """Run sql and return its raw payload, consulting the cache for pooled reads."""
        try:
            resolved = resolve_target(target)
        except ArgumentError as e:
            return QueryResult.failure(e)
        directive = CacheDirective.coerce(cache)
        db = resolved.name if isinstance(resolved, PooledDatabase) else None

        if db is not None and self.cache.enabled:
            if not directive.enabled:
                await self.cache.remove(db, sql, params)
            elif directive.mode is CacheMode.READ_THROUGH:
                cached = await self.cache.get(db, sql, params)
                if cached:
                    structlog.get_logger().debug("cache hit", pool=db)
                    return QueryResult(payload=cached, from_cache=True)

        try:
            payload = await self._run(resolved, sql, params)
        except SqlCacheError as e:
            return QueryResult.failure(e)

        if db is not None and directive.enabled and payload and _is_row_set(payload):
            await self.cache.put(db, sql, params, payload, directive.expire_minutes)
        return QueryResult(payload=payload)

    # -- result shapes --

    async def execute_table(
        self,
        target: TargetLike,
        sql: str,
        params: Any = None,
        cache: CacheLike = None,
    ) -> QueryResult:
        """Rows as a list of dicts; anything else is a ShapeError."""
        result = await self.execute(target, sql, params, cache)
        if result.has_error:
            return result
        if not _is_row_set(result.payload):
            msg = f"Expected a row set, got {_describe(result.payload)}"
            return QueryResult.failure(ShapeError(msg))
        return result

    async def execute_table_cache(
        self,
        target: TargetLike,
        sql: str,
        params: Any = None,
        cache: CacheLike = None,
    ) -> QueryResult:
        return await self.execute_table(target, sql, params, cache or True)

    async def execute_row(
        self,
        target: TargetLike,
        sql: str,
        params: Any = None,
        cache: CacheLike = None,
    ) -> QueryResult:
        """First row only, or None when nothing matched."""
        result = await self.execute_table(target, sql, params, cache)
        if not result.has_error:
            result.payload = result.payload[0] if result.payload else None
        return result

    async def execute_row_cache(
        self,
        target: TargetLike,
        sql: str,
        params: Any = None,
        cache: CacheLike = None,
    ) -> QueryResult:
        return await self.execute_row(target, sql, params, cache or True)

    async def execute_non_query(
        self,
        target: TargetLike,
        sql: str,
        params: Any = None,
        invalidate: Invalidation | Iterable[Invalidation] | None = None,
        cache_db: str | None = None,
    ) -> QueryResult:
        """Affected row count as payload, generated id(s) under ``insert_id``.

        A single statement reports its id or None. Multi-statement SQL sums
        the affected rows and always reports a list of the generated ids.
        On success the given invalidations are dispatched with those ids.
        """
        result = await self.execute(target, sql, params, CacheDirective.disabled())
        if result.has_error:
            return result

        payload = result.payload
        single = _as_ack(payload)
        if single is not None:
            affected = single.affected_rows
            insert_id: Any = single.insert_id
        elif isinstance(payload, list) and payload:
            acks = [_as_ack(item) for item in payload]
            if any(ack is None for ack in acks):
                msg = "Every statement must report affected rows and insert id"
                return QueryResult.failure(ShapeError(msg))
            affected = sum(ack.affected_rows for ack in acks)
            insert_id = [ack.insert_id for ack in acks if ack.insert_id is not None]
        else:
            msg = f"Expected a write acknowledgement, got {_describe(payload)}"
            return QueryResult.failure(ShapeError(msg))

        if invalidate:
            await self.cache.remove_list(invalidate, db=cache_db, identifiers=insert_id)

        result.payload = affected
        result.put_value("insert_id", insert_id)
        return result

    # -- write helpers --

    async def insert(
        self,
        target: TargetLike,
        table: str,
        columns: Mapping[str, Any],
        invalidate: Invalidation | Iterable[Invalidation] | None = None,
        cache_db: str | None = None,
    ) -> QueryResult:
        try:
            sql, params = build_insert(table, columns)
        except ArgumentError as e:
            return QueryResult.failure(e)
        return await self.execute_non_query(target, sql, params, invalidate, cache_db)

    async def update(
        self,
        target: TargetLike,
        table: str,
        columns: Mapping[str, Any],
        condition: str,
        params: Mapping[str, Any] | None = None,
        invalidate: Invalidation | Iterable[Invalidation] | None = None,
        cache_db: str | None = None,
    ) -> QueryResult:
        try:
            sql, column_params = build_update(table, columns, condition)
            merged = merge_params(column_params, params)
        except ArgumentError as e:
            return QueryResult.failure(e)
        return await self.execute_non_query(target, sql, merged, invalidate, cache_db)

    async def delete(
        self,
        target: TargetLike,
        table: str,
        condition: str,
        params: Mapping[str, Any] | None = None,
        invalidate: Invalidation | Iterable[Invalidation] | None = None,
        cache_db: str | None = None,
    ) -> QueryResult:
        try:
            sql = build_delete(table, condition)
        except ArgumentError as e:
            return QueryResult.failure(e)
        return await self.execute_non_query(target, sql, params, invalidate, cache_db)

    # -- transactions --

    async def tran_open(self, db: str) -> QueryResult:
        return await self.transactions.open(db)

    async def tran_commit(self, handle: ConnectionHandle | None) -> QueryResult:
        return await self.transactions.commit(handle)

    async def tran_rollback(self, handle: ConnectionHandle | None) -> None:
        await self.transactions.rollback(handle)

    def transaction(self, db: str) -> AbstractAsyncContextManager[ConnectionHandle]:
        return self.transactions.transaction(db)

    # -- pagination --

    async def page_info(
        self, target: TargetLike, descriptor: PageDescriptor, params: Any = None
    ) -> QueryResult:
        return await pagination.page_info(self, target, descriptor, params)

    async def page_list(
        self, target: TargetLike, descriptor: PageDescriptor, params: Any = None
    ) -> QueryResult:
        return await pagination.page_list(self, target, descriptor, params)

    async def page(
        self, target: TargetLike, descriptor: PageDescriptor, params: Any = None
    ) -> QueryResult:
        return await pagination.page(self, target, descriptor, params)

    # -- cache maintenance --

    async def cache_remove(self, db: str, sql: str, params: Any = None) -> bool:
        return await self.cache.remove(db, sql, params)

    async def cache_remove_list(
        self,
        invalidate: Invalidation | Iterable[Invalidation],
        db: str | None = None,
        identifiers: Any = None,
    ) -> int:
        return await self.cache.remove_list(invalidate, db=db, identifiers=identifiers)

    async def cache_clear(self) -> bool:
        return await self.cache.clear()
