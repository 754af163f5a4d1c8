"""SQL text builders for write helpers and condition composition.

Column names are sanitized with to_db_str(); table names and condition
fragments are trusted raw SQL owned by the caller.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from sql_cache.core.exceptions import ArgumentError


def to_db_str(value: Any) -> str:
    """Sanitize an identifier: double single quotes, blank out backticks."""
    text = "" if value is None else str(value)
    return text.replace("'", "''").replace("`", " ")


def add_to_where(where_sql: str | None, add_sql: str, op: str = "AND") -> str:
    """Append ``(add_sql)`` to a where clause, joined with op."""
    where_sql = (where_sql or "").strip()
    if where_sql:
        where_sql = f"{where_sql} {op} ({add_sql}) "
    else:
        where_sql = f" ({add_sql}) "
    return where_sql.strip()


def _require_table(table: str | None) -> str:
    table = (table or "").strip()
    if not table:
        raise ArgumentError("Table name is required")
    return table


def _require_columns(columns: Mapping[str, Any] | None) -> list[str]:
    if not columns:
        raise ArgumentError("At least one column value is required")
    names = [to_db_str(name).strip() for name in columns]
    if not all(names):
        raise ArgumentError("Column names must not be empty")
    return names


def _require_condition(condition: str | None) -> str:
    condition = (condition or "").strip()
    if not condition:
        raise ArgumentError("A condition is required; refusing unconditional write")
    return condition


def build_insert(table: str, columns: Mapping[str, Any]) -> tuple[str, dict[str, Any]]:
    """``INSERT INTO t (`a`, `b`) VALUES (:a, :b);`` plus its params."""
    table = _require_table(table)
    names = _require_columns(columns)
    column_sql = ", ".join(f"`{name}`" for name in names)
    value_sql = ", ".join(f":{name}" for name in names)
    sql = f"INSERT INTO {table} ({column_sql}) VALUES ({value_sql});"
    return sql, dict(zip(names, columns.values(), strict=True))


def build_update(
    table: str,
    columns: Mapping[str, Any],
    condition: str,
) -> tuple[str, dict[str, Any]]:
    """``UPDATE t SET `a` = :a WHERE <condition>;`` plus the column params."""
    table = _require_table(table)
    names = _require_columns(columns)
    condition = _require_condition(condition)
    set_sql = ", ".join(f"`{name}` = :{name}" for name in names)
    sql = f"UPDATE {table} SET {set_sql} WHERE {condition};"
    return sql, dict(zip(names, columns.values(), strict=True))


def build_delete(table: str, condition: str) -> str:
    table = _require_table(table)
    condition = _require_condition(condition)
    return f"DELETE FROM {table} WHERE {condition};"


def merge_params(
    columns: Mapping[str, Any], condition_params: Mapping[str, Any] | None
) -> dict[str, Any]:
    """Combine column values with condition params; conflicting names fail."""
    merged = dict(condition_params or {})
    for name, value in columns.items():
        if name in merged and merged[name] != value:
            msg = f"Parameter '{name}' is both a column value and a condition parameter"
            raise ArgumentError(msg)
        merged[name] = value
    return merged
