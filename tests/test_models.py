"""Tests for cache directive coercion and QueryResult helpers."""

import pytest

from sql_cache.core.exceptions import QueryError
from sql_cache.core.models import CacheDirective, CacheMode, QueryResult


@pytest.mark.unit
class TestCacheDirectiveCoerce:
    @pytest.mark.parametrize("value", [None, False, 0])
    def test_falsy_values_disable(self, value):
        assert CacheDirective.coerce(value).mode is CacheMode.DISABLED

    def test_true_reads_through_with_default_expiry(self):
        directive = CacheDirective.coerce(True)
        assert directive.mode is CacheMode.READ_THROUGH
        assert directive.expire_minutes is None

    def test_positive_minutes(self):
        assert CacheDirective.coerce(7) == CacheDirective.read_through(7)

    def test_negative_minutes_fall_back_to_default_expiry(self):
        assert CacheDirective.coerce(-1) == CacheDirective.read_through()

    def test_directive_passes_through(self):
        directive = CacheDirective.refresh(2)
        assert CacheDirective.coerce(directive) is directive


@pytest.mark.unit
class TestQueryResult:
    def test_raise_for_error_returns_self_on_success(self):
        result = QueryResult(payload=[])
        assert result.raise_for_error() is result

    def test_raise_for_error_reraises_captured_error(self):
        result = QueryResult.failure(QueryError("bad sql", driver_code=1064))
        assert result.error_code == "query_error"
        with pytest.raises(QueryError, match="bad sql"):
            result.raise_for_error()
