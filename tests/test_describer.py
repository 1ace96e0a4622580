"""Tests for statement description and provenance attribution.

Uses in-memory catalog and preparer fakes; no database needed.
"""
import asyncio

import asyncpg
import pytest

from fakes import INT4, INT8, NUMERIC, TEXT, FakeCatalogSource, FakePreparer, prepared
from pg_typegen.errors import CatalogIntrospectionError, DatabaseConnectionError, DescribeError
from pg_typegen.introspect.catalog import CatalogIntrospector
from pg_typegen.inference import HostTypeResolver, InferenceEngine
from pg_typegen.introspect.describer import StatementDescriber, build_description
from pg_typegen.models import ExpressionKind, QueryRecord, TagKind


def sources(description):
    return [c.source for c in description.columns]


def record(sql):
    return QueryRecord(
        file_path="app/q.py", start_offset=0, end_offset=len(sql), line=1, column=1, sql=sql, tag_kind=TagKind.INLINE
    )


# =============================================================================
# Provenance attribution
# =============================================================================

class TestProvenance:
    """Columns are traced to physical columns only when provable."""

    def test_simple_select(self, catalog):
        description = build_description(
            "select a, b from t", prepared(("a", INT4), ("b", INT4)), catalog
        )

        assert sources(description) == ["public.t.a", "public.t.b"]
        assert description.source_tables == ("t",)

    def test_star_expansion(self, catalog):
        description = build_description(
            "select * from test_table", prepared(("foo", INT4), ("bar", TEXT)), catalog
        )
        assert sources(description) == ["public.test_table.foo", "public.test_table.bar"]

    def test_aliased_column_keeps_provenance(self, catalog):
        description = build_description(
            "select foo as f from test_table", prepared(("f", INT4)), catalog
        )
        assert sources(description) == ["public.test_table.foo"]

    def test_join_with_aliases(self, catalog):
        description = build_description(
            "select u.name, o.total from users u join orders o on o.user_id = u.id",
            prepared(("name", TEXT), ("total", NUMERIC)),
            catalog,
        )

        assert sources(description) == ["public.users.name", "public.orders.total"]
        assert description.source_tables == ("users", "orders")

    def test_outer_joined_side_has_no_provenance(self, catalog):
        description = build_description(
            "select u.name, o.id from users u left join orders o on o.user_id = u.id",
            prepared(("name", TEXT), ("id", INT8)),
            catalog,
        )
        assert sources(description) == ["public.users.name", None]

    def test_ambiguous_unqualified_column(self, catalog):
        """``id`` exists in both tables, so it can't be attributed."""
        description = build_description(
            "select id from users join orders on orders.user_id = users.id",
            prepared(("id", INT8)),
            catalog,
        )
        assert sources(description) == [None]

    def test_type_mismatch_drops_provenance(self, catalog):
        description = build_description(
            "select a from t", prepared(("a", TEXT)), catalog
        )
        assert sources(description) == [None]

    def test_computed_columns(self, catalog):
        description = build_description(
            "select 1 as x, sum(a) as s, a + 1 as y from t",
            prepared(("x", INT4), ("s", INT8), ("y", INT4)),
            catalog,
        )

        assert sources(description) == [None, None, None]
        assert [c.expression_kind for c in description.columns] == [
            ExpressionKind.LITERAL,
            ExpressionKind.AGGREGATE,
            ExpressionKind.EXPRESSION,
        ]

    def test_cte_has_no_provenance(self, catalog):
        description = build_description(
            "with x as (select a from t) select a from x", prepared(("a", INT4)), catalog
        )
        assert sources(description) == [None]
        assert description.source_tables == ()

    def test_set_operation_has_no_provenance_or_literals(self, catalog):
        description = build_description(
            "select a from t union select 1",
            prepared(("a", INT4)),
            catalog,
        )
        assert sources(description) == [None]
        assert description.columns[0].expression_kind == ExpressionKind.EXPRESSION

    @pytest.mark.parametrize("group_by", ["rollup(a)", "cube (a, b)", "grouping sets ((a), ())"])
    def test_grouping_sets_have_no_provenance(self, catalog, group_by):
        """Super-aggregate rows return NULL for the grouped columns."""
        description = build_description(
            f"select a, count(*) as n from t group by {group_by}",
            prepared(("a", INT4), ("n", INT8)),
            catalog,
        )

        assert sources(description) == [None, None]
        assert description.source_tables == ("t",)

        (a, n) = InferenceEngine(catalog, HostTypeResolver(catalog)).infer(record(description.sql), description).columns
        assert not a.not_null
        assert not n.not_null

    def test_plain_group_by_keeps_provenance(self, catalog):
        description = build_description(
            "select a, count(*) as n from t group by a", prepared(("a", INT4), ("n", INT8)), catalog
        )
        assert sources(description) == ["public.t.a", None]

    def test_count_mismatch_gives_up(self, catalog):
        """Star over an unknown relation can't be expanded."""
        description = build_description(
            "select * from missing_table", prepared(("x", INT4)), catalog
        )
        assert sources(description) == [None]

    def test_returning(self, catalog):
        description = build_description(
            "insert into t (a, b) values (1, 2) returning a, b",
            prepared(("a", INT4), ("b", INT4), params=()),
            catalog,
        )
        assert sources(description) == ["public.t.a", "public.t.b"]

    def test_parameters_are_kept(self, catalog):
        description = build_description(
            "select a from t where a = $1 and b = $2",
            prepared(("a", INT4), params=(INT4, INT4)),
            catalog,
        )
        assert description.param_type_oids == (INT4, INT4)


# =============================================================================
# StatementDescriber
# =============================================================================

class TestStatementDescriber:
    """Deduplication, concurrency and error classification."""

    @pytest.mark.asyncio
    async def test_describes_each_text_once(self, catalog):
        preparer = FakePreparer({"select a from t": prepared(("a", INT4))})
        describer = StatementDescriber(preparer, catalog, concurrency=2)

        results = await describer.describe_all(["select a from t", "select a from t"])

        assert list(results) == ["select a from t"]
        assert preparer.calls == ["select a from t"]

    @pytest.mark.asyncio
    async def test_cache_is_reused(self, catalog):
        preparer = FakePreparer({"select a from t": prepared(("a", INT4))})
        cache = {}
        describer = StatementDescriber(preparer, catalog, cache=cache)

        await describer.describe("select a from t")
        await describer.describe("select a from t")

        assert len(preparer.calls) == 1
        assert "select a from t" in cache

    @pytest.mark.asyncio
    async def test_sql_error_is_per_query(self, catalog):
        preparer = FakePreparer({"select a from t": prepared(("a", INT4))})
        describer = StatementDescriber(preparer, catalog)

        results = await describer.describe_all(["select a from t", "selec broken"])

        assert not isinstance(results["select a from t"], DescribeError)
        error = results["selec broken"]
        assert isinstance(error, DescribeError)
        assert error.sql == "selec broken"

    @pytest.mark.asyncio
    async def test_timeout_is_per_query(self, catalog):
        preparer = FakePreparer({"select pg_sleep(10)": asyncio.TimeoutError()})
        describer = StatementDescriber(preparer, catalog)

        results = await describer.describe_all(["select pg_sleep(10)"])

        assert isinstance(results["select pg_sleep(10)"], DescribeError)

    @pytest.mark.asyncio
    async def test_connection_loss_is_fatal(self, catalog):
        preparer = FakePreparer({
            "select a from t": ConnectionResetError("connection reset"),
            "select b from t": prepared(("b", INT4)),
        })
        describer = StatementDescriber(preparer, catalog)

        with pytest.raises(DatabaseConnectionError):
            await describer.describe_all(["select a from t", "select b from t"])

    @pytest.mark.asyncio
    async def test_interface_error_is_fatal(self, catalog):
        preparer = FakePreparer({"select a from t": asyncpg.InterfaceError("connection is closed")})
        describer = StatementDescriber(preparer, catalog)

        with pytest.raises(DatabaseConnectionError):
            await describer.describe("select a from t")

    @pytest.mark.asyncio
    async def test_empty_input(self, catalog):
        describer = StatementDescriber(FakePreparer({}), catalog)
        assert await describer.describe_all([]) == {}


# =============================================================================
# CatalogIntrospector
# =============================================================================

class TestCatalogIntrospector:
    """Catalog loading and lookups."""

    @pytest.mark.asyncio
    async def test_load(self, catalog_source):
        catalog = await CatalogIntrospector.load(catalog_source)

        info = catalog.column_info("test_table", "foo")
        assert info.not_null
        assert info.type_oid == INT4
        assert catalog.column_info("test_table", "bar").not_null is False
        assert catalog.type_name(INT4) == "integer"
        assert catalog.resolve_table("t") == ("public", "t")
        assert [c.column_name for c in catalog.table_columns("users")] == ["id", "name", "email", "created"]

    def test_unknown_lookups(self, catalog):
        assert catalog.column_info("nope", "x") is None
        assert catalog.resolve_table("t", schema="other") is None
        assert catalog.type_name(123456) == "oid:123456"

    @pytest.mark.asyncio
    async def test_load_failure_is_fatal(self):
        class BrokenSource(FakeCatalogSource):
            async def fetch_types(self):
                raise ConnectionRefusedError("refused")

        with pytest.raises(CatalogIntrospectionError):
            await CatalogIntrospector.load(BrokenSource())

    @pytest.mark.asyncio
    async def test_load_timeout_is_fatal(self):
        class SlowSource(FakeCatalogSource):
            async def fetch_columns(self):
                await asyncio.sleep(5)
                return []

        with pytest.raises(CatalogIntrospectionError, match="timed out"):
            await CatalogIntrospector.load(SlowSource(), timeout=0.05)
