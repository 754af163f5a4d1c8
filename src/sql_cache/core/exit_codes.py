"""Standard exit codes for sql-cache.

Exit codes follow Unix conventions.
"""

from enum import IntEnum


class ExitCode(IntEnum):
    """Exit codes for sql-cache commands."""

    SUCCESS = 0
    GENERAL_ERROR = 1
    USAGE_ERROR = 2
    QUERY_ERROR = 3
    SHAPE_ERROR = 4
    CONNECTION_ERROR = 5
    TRANSACTION_ERROR = 6
    CONFIG_ERROR = 7
