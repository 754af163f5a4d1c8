"""Formatter protocol and registry for output formatting."""

from __future__ import annotations

from collections.abc import Mapping
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

if TYPE_CHECKING:
    from collections.abc import Iterator

    from sql_cache.core.models import QueryResult


def result_rows(result: QueryResult) -> list[dict[str, Any]]:
    """Normalize a payload (row list, single row, count) into a list of rows."""
    payload = result.payload
    if payload is None:
        return []
    if isinstance(payload, list):
        return [dict(row) for row in payload]
    if isinstance(payload, Mapping):
        return [dict(payload)]
    row: dict[str, Any] = {"affected_rows": payload}
    if "insert_id" in result.values:
        row["insert_id"] = result.values["insert_id"]
    return [row]


@runtime_checkable
class Formatter(Protocol):
    """Protocol for output formatters.

    Each formatter transforms a QueryResult into lines of formatted text.
    """

    def format(self, result: QueryResult) -> Iterator[str]:
        """Transform a QueryResult into formatted output lines."""
        ...


class FormatterRegistry:
    """Registry for looking up formatters by name."""

    def __init__(self) -> None:
        self._formatters: dict[str, type[Formatter]] = {}

    def register(self, name: str, formatter_class: type[Formatter]) -> None:
        self._formatters[name] = formatter_class

    def get(self, name: str, **kwargs: object) -> Formatter:
        """Return a formatter instance by name.

        Raises KeyError if the format name is not registered.
        """
        if name not in self._formatters:
            available = ", ".join(sorted(self._formatters))
            msg = f"Unknown format {name!r}. Available: {available}"
            raise KeyError(msg)
        return self._formatters[name](**kwargs)

    @property
    def available(self) -> list[str]:
        return sorted(self._formatters)


# Global registry instance populated by formatter modules.
registry = FormatterRegistry()
