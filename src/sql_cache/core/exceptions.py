"""Exception hierarchy for sql-cache.

All exceptions carry an exit_code for CLI return value mapping and a
short ``code`` string copied into ``QueryResult.error_code``.
"""

from sql_cache.core.exit_codes import ExitCode


class SqlCacheError(Exception):
    """Base exception for all sql-cache errors."""

    exit_code: int = ExitCode.GENERAL_ERROR
    code: str = "error"

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)


class ConnectionError(SqlCacheError):
    """Unknown pool, pool exhausted, handshake failure, released handle."""

    exit_code: int = ExitCode.CONNECTION_ERROR
    code: str = "connection_error"


class QueryError(SqlCacheError):
    """The driver rejected the SQL."""

    exit_code: int = ExitCode.QUERY_ERROR
    code: str = "query_error"

    def __init__(self, message: str, driver_code: int | None = None) -> None:
        super().__init__(message)
        self.driver_code = driver_code


class ShapeError(SqlCacheError):
    """Result shape did not match the requested operation."""

    exit_code: int = ExitCode.SHAPE_ERROR
    code: str = "shape_error"


class TransactionError(SqlCacheError):
    """Begin/commit failure or misuse such as committing an absent handle."""

    exit_code: int = ExitCode.TRANSACTION_ERROR
    code: str = "transaction_error"


class ArgumentError(SqlCacheError):
    """Malformed write-helper arguments."""

    exit_code: int = ExitCode.USAGE_ERROR
    code: str = "argument_error"


class ConfigError(SqlCacheError):
    """Malformed config, unknown pool profile."""

    exit_code: int = ExitCode.CONFIG_ERROR
    code: str = "config_error"
