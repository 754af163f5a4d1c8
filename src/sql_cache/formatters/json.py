"""JSON formatter for QueryResult output."""

from __future__ import annotations

import json
from typing import TYPE_CHECKING

from sql_cache.formatters.base import registry, result_rows

if TYPE_CHECKING:
    from collections.abc import Iterator

    from sql_cache.core.models import QueryResult


class JSONFormatter:
    def __init__(self, compact: bool = False) -> None:
        self.compact = compact

    def format(self, result: QueryResult) -> Iterator[str]:
        rows = result_rows(result)
        if self.compact:
            yield json.dumps(rows, default=str)
        else:
            yield json.dumps(rows, indent=2, default=str)


registry.register("json", JSONFormatter)
