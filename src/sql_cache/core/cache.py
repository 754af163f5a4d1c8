"""Query result cache backed by Redis.

Entries are addressed by an MD5 digest of (database name, raw SQL
template, canonical JSON of the parameters) and stored as JSON text.
Cache I/O is best-effort: without a configured client every call is a
no-op, and backend failures are logged and treated as misses.
"""

from __future__ import annotations

import hashlib
import json
from collections.abc import Iterable
from typing import TYPE_CHECKING, Any

import redis.asyncio as redis
import sentry_sdk
import structlog
from redis.exceptions import RedisError

from sql_cache.core.config import DEFAULT_EXPIRE_MINUTES
from sql_cache.core.models import DerivedInvalidation, Invalidation, StaticInvalidation

if TYPE_CHECKING:
    from sql_cache.core.config import CacheSettings


def canonical_params(params: Any) -> str:
    """Serialize params so structurally equal values give identical text."""
    return json.dumps(params, sort_keys=True, separators=(",", ":"), default=str)


def cache_key(db: str | None, sql: str, params: Any = None) -> str:
    raw = ("" if db is None else str(db)) + (sql or "") + canonical_params(params)
    return hashlib.md5(raw.encode("utf-8")).hexdigest()  # noqa: S324


def _identifiers(value: Any) -> list[Any]:
    if value is None:
        return []
    if isinstance(value, (list, tuple)):
        return list(value)
    return [value]


class CacheStore:
    """get / put / remove / clear against an optional redis.asyncio client."""

    def __init__(
        self,
        client: redis.Redis | None = None,
        default_expire_minutes: int = DEFAULT_EXPIRE_MINUTES,
    ) -> None:
        self.client = client
        self.default_expire_minutes = default_expire_minutes

    @classmethod
    def from_settings(cls, settings: CacheSettings) -> CacheStore:
        client = None
        if settings.url:
            client = redis.Redis.from_url(settings.url, decode_responses=True)
        return cls(client, default_expire_minutes=settings.default_expire_minutes)

    @property
    def enabled(self) -> bool:
        return self.client is not None

    async def get(self, db: str | None, sql: str, params: Any = None) -> Any:
        """Return the stored payload, or None on miss, corrupt value or error."""
        if self.client is None:
            return None
        log = structlog.get_logger()
        key = cache_key(db, sql, params)
        with sentry_sdk.start_span(op="cache.get", description=key) as span:
            try:
                raw = await self.client.get(key)
            except RedisError as e:
                span.set_status("unavailable")
                log.warning("cache get failed", key=key, error=str(e))
                return None
            span.set_data("cache.hit", raw is not None)
        if not raw:
            return None
        try:
            return json.loads(raw)
        except ValueError:
            log.warning("corrupt cache entry", key=key)
            return None

    async def put(
        self,
        db: str | None,
        sql: str,
        params: Any,
        payload: Any,
        expire_minutes: int | None = None,
    ) -> bool:
        if self.client is None or not payload:
            return False
        if expire_minutes is None or expire_minutes <= 0:
            expire_minutes = self.default_expire_minutes
        key = cache_key(db, sql, params)
        try:
            await self.client.set(key, json.dumps(payload, default=str), ex=expire_minutes * 60)
        except RedisError as e:
            structlog.get_logger().warning("cache put failed", key=key, error=str(e))
            return False
        return True

    async def remove(self, db: str | None, sql: str, params: Any = None) -> bool:
        if self.client is None:
            return False
        key = cache_key(db, sql, params)
        try:
            await self.client.delete(key)
        except RedisError as e:
            structlog.get_logger().warning("cache remove failed", key=key, error=str(e))
            return False
        return True

    async def remove_list(
        self,
        invalidations: Invalidation | Iterable[Invalidation],
        db: str | None = None,
        identifiers: Any = None,
    ) -> int:
        """Drop every cache entry named by invalidations.

        ``db`` overrides each descriptor's own database. Derived descriptors
        are resolved once per identifier. Failures are logged and skipped so
        invalidation never fails the write it follows. Returns the number of
        deletions issued.
        """
        if self.client is None:
            return 0
        if isinstance(invalidations, (StaticInvalidation, DerivedInvalidation)):
            invalidations = [invalidations]

        log = structlog.get_logger()
        removed = 0
        for item in invalidations:
            try:
                if isinstance(item, DerivedInvalidation):
                    targets = [item.resolve(ident) for ident in _identifiers(identifiers)]
                else:
                    targets = [item]
                for target in targets:
                    if await self.remove(db or target.db, target.sql, target.params):
                        removed += 1
            except Exception as e:  # noqa: BLE001
                log.warning("cache invalidation failed", error=str(e))
        return removed

    async def clear(self) -> bool:
        """Flush the whole cache database. Use with care."""
        if self.client is None:
            return False
        try:
            await self.client.flushdb()
        except RedisError as e:
            structlog.get_logger().warning("cache clear failed", error=str(e))
            return False
        structlog.get_logger().info("cache cleared")
        return True

    async def close(self) -> None:
        if self.client is not None:
            await self.client.aclose()
