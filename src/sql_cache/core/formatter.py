"""Parameter formatting for SQL templates.

Named parameters use ``:name`` placeholders and are substituted from a
mapping; sequences and scalars fill ``?`` placeholders left to right.
Every substituted value goes through the connection's escaping primitive.
"""

from __future__ import annotations

import re
from collections.abc import Callable, Mapping
from typing import Any

Escape = Callable[[Any], str]

_NAMED_PLACEHOLDER = re.compile(r":(\w+)")
_POSITIONAL_PLACEHOLDER = re.compile(r"\?")


def _format_positional(sql: str, values: list[Any] | tuple[Any, ...], escape: Escape) -> str:
    remaining = iter(values)

    def replace(match: re.Match[str]) -> str:
        try:
            value = next(remaining)
        except StopIteration:
            return match.group(0)
        return escape(value)

    return _POSITIONAL_PLACEHOLDER.sub(replace, sql)


def _format_named(sql: str, values: Mapping[str, Any], escape: Escape) -> str:
    def replace(match: re.Match[str]) -> str:
        key = match.group(1)
        if key in values:
            return escape(values[key])
        # Placeholders without a supplied value are literal text.
        return match.group(0)

    return _NAMED_PLACEHOLDER.sub(replace, sql)


def format_sql(sql: str, params: Any, escape: Escape) -> str:
    """Substitute params into sql in a single left-to-right pass."""
    if params is None:
        return sql
    if isinstance(params, Mapping):
        if not params:
            return sql
        return _format_named(sql, params, escape)
    if isinstance(params, (list, tuple)):
        if not params:
            return sql
        return _format_positional(sql, params, escape)
    return _format_positional(sql, [params], escape)


class ParameterFormatter:
    """format_sql bound to one connection's escaping primitive."""

    def __init__(self, escape: Escape) -> None:
        self.escape = escape

    def __call__(self, sql: str, params: Any = None) -> str:
        return format_sql(sql, params, self.escape)
