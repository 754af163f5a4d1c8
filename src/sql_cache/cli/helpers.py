"""Shared CLI helpers."""

from __future__ import annotations

import json
from typing import Any

from sql_cache.core.exceptions import ArgumentError


def parse_value(raw: str) -> Any:
    """JSON literals (numbers, true, null, quoted strings) or the raw text."""
    try:
        return json.loads(raw)
    except ValueError:
        return raw


def parse_params(pairs: list[str] | None) -> dict[str, Any] | None:
    """Turn repeated ``key=value`` options into a named parameter mapping."""
    if not pairs:
        return None
    params: dict[str, Any] = {}
    for pair in pairs:
        key, sep, raw = pair.partition("=")
        key = key.strip()
        if not sep or not key:
            msg = f"Invalid parameter '{pair}'. Expected key=value"
            raise ArgumentError(msg)
        params[key] = parse_value(raw)
    return params
