"""Tests for paged listings."""

import pytest

from sql_cache.core.exceptions import QueryError
from sql_cache.core.models import PageDescriptor
from sql_cache.core.pagination import EMPTY_PAGE_INFO, page_info_sql, page_list_sql
from tests.conftest import ROWS


@pytest.fixture
def descriptor():
    return PageDescriptor(
        column_pk="id",
        column_max="code",
        column_list="id, name",
        table_list="t",
        condition="active = :active",
        order_name="id DESC",
        start=1,
        length=10,
    )


@pytest.mark.unit
class TestPageSql:
    def test_info_sql(self, descriptor):
        assert page_info_sql(descriptor) == (
            "SELECT COUNT(id) AS `RecordCount`, MAX(code) AS `MaxCode`"
            " FROM t WHERE active = :active"
        )

    def test_list_sql(self, descriptor):
        assert page_list_sql(descriptor) == (
            "SELECT id, name FROM t WHERE active = :active ORDER BY id DESC LIMIT 1, 10"
        )

    def test_without_condition_or_order(self, descriptor):
        bare = descriptor.model_copy(update={"condition": "", "order_name": ""})
        assert page_list_sql(bare) == "SELECT id, name FROM t LIMIT 1, 10"
        assert page_info_sql(bare).endswith("FROM t")

    def test_identifiers_sanitized(self, descriptor):
        hostile = descriptor.model_copy(
            update={"column_pk": "id`) FROM x; --", "order_name": "name'"}
        )
        assert "`)" not in page_info_sql(hostile)
        assert page_list_sql(hostile).endswith("ORDER BY name'' LIMIT 1, 10")

    def test_descriptor_defaults(self):
        page = PageDescriptor()
        assert page.get_page_info is True
        assert page.start == 1
        assert page.length == 0


@pytest.mark.unit
class TestPage:
    @pytest.mark.asyncio
    async def test_page_without_info_skips_count(self, executor, pool, descriptor):
        pool.respond(ROWS)
        page = descriptor.model_copy(update={"get_page_info": False})
        result = await executor.page("db1", page, {"active": 1})
        assert result.payload == ROWS
        assert "page_info" not in result.values
        assert len(pool.executed) == 1
        assert not any("COUNT(" in sql for sql in pool.executed)

    @pytest.mark.asyncio
    async def test_page_with_info(self, executor, pool, descriptor):
        def handler(sql):
            if sql.startswith("SELECT COUNT("):
                return [{"RecordCount": 2, "MaxCode": "B"}]
            return ROWS

        pool.handler = handler
        result = await executor.page("db1", descriptor, {"active": 1})
        assert result.payload == ROWS
        assert result.get_value("page_info") == {"RecordCount": 2, "MaxCode": "B"}
        assert pool.executed[0].endswith("LIMIT 1, 10")
        assert pool.executed[1].endswith("WHERE active = 1")

    @pytest.mark.asyncio
    async def test_page_info_failure_is_suppressed(self, executor, pool, descriptor):
        def handler(sql):
            if sql.startswith("SELECT COUNT("):
                raise QueryError("no such column")
            return ROWS

        pool.handler = handler
        result = await executor.page("db1", descriptor, {"active": 1})
        assert not result.has_error
        assert result.get_value("page_info") == EMPTY_PAGE_INFO

    @pytest.mark.asyncio
    async def test_page_list_failure_skips_info(self, executor, pool, descriptor):
        pool.fail_query()
        result = await executor.page("db1", descriptor, {"active": 1})
        assert result.has_error
        assert len(pool.executed) == 1

    @pytest.mark.asyncio
    async def test_page_info_direct(self, executor, pool, descriptor):
        pool.fail_query()
        result = await executor.page_info("db1", descriptor, {"active": 1})
        assert not result.has_error
        assert result.payload == EMPTY_PAGE_INFO

    @pytest.mark.asyncio
    async def test_page_list_direct(self, executor, pool, descriptor):
        pool.respond(ROWS)
        result = await executor.page_list("db1", descriptor, {"active": 1})
        assert result.payload == ROWS
