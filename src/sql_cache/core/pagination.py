"""Paged listings: a bounded list query plus optional count/max metadata."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

import structlog

from sql_cache.core.models import QueryResult
from sql_cache.core.statements import to_db_str

if TYPE_CHECKING:
    from sql_cache.core.executor import QueryExecutor, TargetLike
    from sql_cache.core.models import PageDescriptor

EMPTY_PAGE_INFO: dict[str, Any] = {"RecordCount": 0, "MaxCode": ""}


def _where(condition: str) -> str:
    return f" WHERE {condition}" if condition else ""


def page_info_sql(descriptor: PageDescriptor) -> str:
    return (
        f"SELECT COUNT({to_db_str(descriptor.column_pk)}) AS `RecordCount`, "
        f"MAX({to_db_str(descriptor.column_max)}) AS `MaxCode`"
        f" FROM {descriptor.table_list}"
        f"{_where(descriptor.condition)}"
    )


def page_list_sql(descriptor: PageDescriptor) -> str:
    order = f" ORDER BY {to_db_str(descriptor.order_name)}" if descriptor.order_name else ""
    return (
        f"SELECT {descriptor.column_list}"
        f" FROM {descriptor.table_list}"
        f"{_where(descriptor.condition)}"
        f"{order}"
        f" LIMIT {int(descriptor.start)}, {int(descriptor.length)}"
    )


async def page_info(
    executor: QueryExecutor,
    target: TargetLike,
    descriptor: PageDescriptor,
    params: Any = None,
) -> QueryResult:
    """Record count and max code; a failed query yields zeroed metadata."""
    result = await executor.execute_row(target, page_info_sql(descriptor), params)
    if result.has_error:
        structlog.get_logger().warning("page info suppressed", error=result.message)
        return QueryResult(payload=dict(EMPTY_PAGE_INFO), values=result.values)
    return result


async def page_list(
    executor: QueryExecutor,
    target: TargetLike,
    descriptor: PageDescriptor,
    params: Any = None,
) -> QueryResult:
    return await executor.execute_table(target, page_list_sql(descriptor), params)


async def page(
    executor: QueryExecutor,
    target: TargetLike,
    descriptor: PageDescriptor,
    params: Any = None,
) -> QueryResult:
    result = await page_list(executor, target, descriptor, params)
    if not descriptor.get_page_info or result.has_error:
        return result
    info = await page_info(executor, target, descriptor, params)
    result.put_value("page_info", info.payload)
    return result
