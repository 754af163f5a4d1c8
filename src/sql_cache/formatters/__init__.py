"""Output formatters for sql-cache."""

from sql_cache.formatters.base import Formatter, FormatterRegistry, registry
from sql_cache.formatters.json import JSONFormatter
from sql_cache.formatters.table import TableFormatter
