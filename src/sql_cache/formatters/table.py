"""Rich table formatter for QueryResult output."""

from __future__ import annotations

import shutil
from io import StringIO
from typing import TYPE_CHECKING

from rich.console import Console
from rich.table import Table

from sql_cache.formatters.base import registry, result_rows

if TYPE_CHECKING:
    from collections.abc import Iterator

    from sql_cache.core.models import QueryResult

_NO_RESULTS = "No results"


def _truncate(value: str, width: int) -> str:
    if len(value) <= width:
        return value
    return value[: width - 1] + "…"


class TableFormatter:
    def __init__(self, width: int = 40) -> None:
        self.width = width

    def format(self, result: QueryResult) -> Iterator[str]:
        rows = result_rows(result)
        if not rows:
            yield _NO_RESULTS
            return

        columns = list(rows[0])
        table = Table(show_edge=True, pad_edge=True)
        for name in columns:
            table.add_column(name, no_wrap=True)

        for row in rows:
            table.add_row(
                *(
                    _truncate(str(row.get(name)) if row.get(name) is not None else "", self.width)
                    for name in columns
                )
            )

        buf = StringIO()
        term_width = shutil.get_terminal_size((120, 24)).columns
        console = Console(file=buf, force_terminal=True, width=term_width)
        console.print(table)
        yield buf.getvalue().rstrip("\n")


registry.register("table", TableFormatter)
