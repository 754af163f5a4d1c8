"""sql-cache: cache-aware async SQL execution over pooled MySQL connections."""

from sql_cache.__about__ import __version__
from sql_cache.core.executor import QueryExecutor
from sql_cache.core.models import (
    CacheDirective,
    DerivedInvalidation,
    PageDescriptor,
    QueryResult,
    StaticInvalidation,
)

__all__ = [
    "CacheDirective",
    "DerivedInvalidation",
    "PageDescriptor",
    "QueryExecutor",
    "QueryResult",
    "StaticInvalidation",
    "__version__",
]
