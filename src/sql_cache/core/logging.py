"""structlog setup for sql-cache.

Everything is written to stderr; stdout carries query output only. Long
SQL text in the ``sql`` event field is shortened before rendering.
"""

import logging
import sys
from typing import Any

import structlog

MAX_LOGGED_SQL = 500

_LOG_LEVELS: dict[str, int] = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warning": logging.WARNING,
    "error": logging.ERROR,
}


class _LazyStderrFactory:
    """Look up sys.stderr per logger so CliRunner and capsys swaps are seen."""

    def __call__(self, *args: Any, **kwargs: Any) -> structlog.PrintLogger:
        return structlog.PrintLogger(file=sys.stderr)


def shorten_sql(logger: Any, method_name: str, event_dict: dict[str, Any]) -> dict[str, Any]:
    sql = event_dict.get("sql")
    if isinstance(sql, str) and len(sql) > MAX_LOGGED_SQL:
        event_dict["sql"] = sql[:MAX_LOGGED_SQL] + f"... ({len(sql)} chars)"
    return event_dict


def setup_logging(verbose: bool = False, level: str | None = None) -> None:
    """Configure structlog.

    ``level`` (debug, info, warning, error) wins over ``verbose``; without
    either the level is info.
    """
    if level is None:
        level = "debug" if verbose else "info"
    if level not in _LOG_LEVELS:
        msg = f"Unknown log level: {level!r}"
        raise ValueError(msg)

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            shorten_sql,
            structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty()),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(_LOG_LEVELS[level]),
        context_class=dict,
        logger_factory=_LazyStderrFactory(),
        cache_logger_on_first_use=False,
    )

