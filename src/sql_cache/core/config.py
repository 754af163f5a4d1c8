"""Configuration management for sql-cache.

Handles the TOML config file, named connection pools, the cache backend
and environment variable overrides.

Precedence order (highest to lowest):
1. Environment variables (SQL_CACHE_REDIS_URL, SQL_CACHE_SENTRY_DSN)
2. Config file values
3. Built-in defaults
"""

from __future__ import annotations

import os
import tomllib
from pathlib import Path
from typing import Any
from urllib.parse import parse_qs, unquote, urlparse

from pydantic import BaseModel, field_validator, model_validator

from sql_cache.core.exceptions import ConfigError

DEFAULT_CONFIG_PATH = Path.home() / ".config" / "sql-cache" / "config.toml"

DEFAULT_EXPIRE_MINUTES = 3

_ENV_OVERRIDES: dict[str, tuple[str, str]] = {
    "SQL_CACHE_REDIS_URL": ("cache", "url"),
    "SQL_CACHE_SENTRY_DSN": ("", "sentry_dsn"),
}


def parse_dsn(dsn: str) -> dict[str, Any]:
    """Supports mysql:// and mysql+aiomysql:// schemes with query params."""
    parsed = urlparse(dsn)
    if parsed.scheme not in ("mysql", "mysql+aiomysql"):
        msg = f"Invalid DSN scheme: '{parsed.scheme}'. Expected 'mysql'"
        raise ConfigError(msg)

    result: dict[str, Any] = {}
    if parsed.hostname:
        result["host"] = parsed.hostname
    if parsed.port:
        result["port"] = parsed.port
    if parsed.path and parsed.path.strip("/"):
        result["database"] = parsed.path.strip("/")
    if parsed.username:
        result["user"] = unquote(parsed.username)
    if parsed.password:
        result["password"] = unquote(parsed.password)
    query_params = parse_qs(parsed.query)
    if "charset" in query_params:
        result["charset"] = query_params["charset"][0]
    if "connect_timeout" in query_params:
        result["connect_timeout"] = int(query_params["connect_timeout"][0])
    return result


class PoolProfile(BaseModel):
    """One named connection pool."""

    dsn: str | None = None
    host: str = "localhost"
    port: int = 3306
    user: str | None = None
    password: str | None = None
    database: str | None = None
    charset: str = "utf8mb4"
    minsize: int = 1
    maxsize: int = 10
    connect_timeout: int = 10
    acquire_timeout: float = 10.0

    @model_validator(mode="before")
    @classmethod
    def parse_dsn_into_components(cls, data: Any) -> Any:
        if isinstance(data, dict) and data.get("dsn"):
            dsn_fields = parse_dsn(data["dsn"])
            for key, value in dsn_fields.items():
                if key not in data:
                    data[key] = value
        return data

    @field_validator("port")
    @classmethod
    def validate_port(cls, v: int) -> int:
        if not (1 <= v <= 65535):
            msg = f"Invalid port: {v}. Must be 1-65535"
            raise ValueError(msg)
        return v

    @model_validator(mode="after")
    def validate_pool_size(self) -> PoolProfile:
        if self.minsize < 0 or self.maxsize < 1 or self.minsize > self.maxsize:
            msg = (
                f"Invalid pool size: minsize={self.minsize}, maxsize={self.maxsize}"
            )
            raise ValueError(msg)
        return self


class CacheSettings(BaseModel):
    """Cache backend settings. ``url`` of None disables caching entirely."""

    url: str | None = None
    default_expire_minutes: int = DEFAULT_EXPIRE_MINUTES
    clear_on_start: bool = False

    @field_validator("default_expire_minutes")
    @classmethod
    def validate_expire(cls, v: int) -> int:
        if v <= 0:
            msg = f"Invalid default_expire_minutes: {v}. Must be positive"
            raise ValueError(msg)
        return v


class AppConfig(BaseModel):
    pools: dict[str, PoolProfile] = {}
    cache: CacheSettings = CacheSettings()
    sentry_dsn: str | None = None
    environment: str = "local"


def load_config(config_path: Path | None = None) -> AppConfig:
    """Load configuration from TOML file.

    Returns default AppConfig if file doesn't exist.
    Raises ConfigError on malformed TOML or invalid config.
    """
    if config_path is None:
        config_path = DEFAULT_CONFIG_PATH

    if not config_path.exists():
        return AppConfig()

    try:
        with open(config_path, "rb") as f:
            data = tomllib.load(f)
    except tomllib.TOMLDecodeError as e:
        msg = f"Malformed TOML in {config_path}: {e}"
        raise ConfigError(msg) from e

    try:
        return AppConfig.model_validate(data)
    except ConfigError:
        raise
    except Exception as e:
        msg = f"Invalid configuration in {config_path}: {e}"
        raise ConfigError(msg) from e


def apply_env_overrides(config: AppConfig) -> AppConfig:
    """Return a copy of config with environment variable overrides applied."""
    updates: dict[str, Any] = {}
    cache_updates: dict[str, Any] = {}
    for env_var, (section, field_name) in _ENV_OVERRIDES.items():
        value = os.environ.get(env_var)
        if value is None:
            continue
        if section == "cache":
            cache_updates[field_name] = value
        else:
            updates[field_name] = value

    if cache_updates:
        updates["cache"] = config.cache.model_copy(update=cache_updates)
    if not updates:
        return config
    return config.model_copy(update=updates)
