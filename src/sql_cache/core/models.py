"""Request and result models for sql-cache.

Pydantic models for cache directives, page descriptors, cache invalidation
descriptors, write acknowledgements and the QueryResult returned by every
public executor operation.
"""

from __future__ import annotations

from collections.abc import Callable
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict

from sql_cache.core.exceptions import SqlCacheError


class CacheMode(StrEnum):
    DISABLED = "disabled"
    REFRESH = "refresh"
    READ_THROUGH = "read_through"


class CacheDirective(BaseModel):
    """How a read interacts with the cache.

    ``disabled`` deletes any stored entry for the query and never stores.
    ``refresh`` skips the lookup but stores the fresh result.
    ``read_through`` serves a stored entry, or queries and stores on a miss.
    """

    model_config = ConfigDict(frozen=True)

    mode: CacheMode = CacheMode.DISABLED
    expire_minutes: int | None = None

    @classmethod
    def disabled(cls) -> CacheDirective:
        return cls(mode=CacheMode.DISABLED)

    @classmethod
    def read_through(cls, expire_minutes: int | None = None) -> CacheDirective:
        return cls(mode=CacheMode.READ_THROUGH, expire_minutes=expire_minutes)

    @classmethod
    def refresh(cls, expire_minutes: int | None = None) -> CacheDirective:
        return cls(mode=CacheMode.REFRESH, expire_minutes=expire_minutes)

    @classmethod
    def coerce(cls, value: CacheDirective | bool | int | None) -> CacheDirective:
        """Accept a directive, a flag or a number of minutes.

        None, False and 0 disable caching; True reads through with the
        default expiry; a positive int N reads through for N minutes and a
        negative int reads through with the default expiry.
        """
        if isinstance(value, CacheDirective):
            return value
        if value is None or value is False:
            return cls.disabled()
        if value is True:
            return cls.read_through()
        if isinstance(value, int) and value != 0:
            return cls.read_through(value if value > 0 else None)
        return cls.disabled()

    @property
    def enabled(self) -> bool:
        return self.mode is not CacheMode.DISABLED


class WriteAck(BaseModel):
    """Acknowledgement of one write statement."""

    affected_rows: int = 0
    insert_id: int | None = None


class StaticInvalidation(BaseModel):
    """Identifies a previously cached read by its (db, sql, params) signature."""

    db: str | None = None
    sql: str
    params: Any = None


class DerivedInvalidation(BaseModel):
    """Builds a StaticInvalidation from an identifier produced by a write.

    Used when the cache entry to drop is only known after an insert
    generates a row id.
    """

    model_config = ConfigDict(arbitrary_types_allowed=True)

    build: Callable[[Any], StaticInvalidation]

    def resolve(self, identifier: Any) -> StaticInvalidation:
        return self.build(identifier)


Invalidation = StaticInvalidation | DerivedInvalidation


class PageDescriptor(BaseModel):
    """Describes one page of a paged listing.

    ``column_list``, ``table_list`` and ``condition`` are raw SQL fragments
    supplied by the caller; ``column_pk``, ``column_max`` and ``order_name``
    are sanitized before use.
    """

    get_page_info: bool = True
    column_pk: str = ""
    column_max: str = ""
    column_list: str = ""
    table_list: str = ""
    condition: str = ""
    order_name: str = ""
    start: int = 1
    length: int = 0


class QueryResult(BaseModel):
    """Outcome of an executor operation.

    ``payload`` holds a list of row dicts, a single row dict (or None), or an
    affected-row count depending on the operation. ``values`` is a free-form
    bag for auxiliary data such as ``insert_id`` or ``page_info``.
    """

    model_config = ConfigDict(arbitrary_types_allowed=True)

    has_error: bool = False
    message: str = ""
    error_code: str | None = None
    values: dict[str, Any] = {}
    payload: Any = None
    from_cache: bool = False
    error: SqlCacheError | None = None

    @classmethod
    def failure(cls, exc: SqlCacheError) -> QueryResult:
        return cls(has_error=True, message=exc.message, error_code=exc.code, error=exc)

    def put_value(self, key: str, value: Any) -> None:
        self.values[key] = value

    def get_value(self, key: str, default: Any = None) -> Any:
        return self.values.get(key, default)

    def raise_for_error(self) -> QueryResult:
        """Re-raise the captured error, if any; otherwise return self."""
        if not self.has_error:
            return self
        if self.error is not None:
            raise self.error
        raise SqlCacheError(self.message or "query failed")
