"""Tests for shallow SQL statement analysis."""
import pytest

from pg_typegen.introspect.analysis import analyze_statement, normalize_identifier
from pg_typegen.models import ExpressionKind


def kinds(analysis):
    return [p.kind for p in analysis.projections]


# =============================================================================
# Projections
# =============================================================================

class TestProjections:
    """Classification of SELECT list items."""

    def test_plain_columns(self):
        analysis = analyze_statement("select a, b from t")

        assert analysis.statement_type == "SELECT"
        assert kinds(analysis) == [ExpressionKind.COLUMN, ExpressionKind.COLUMN]
        assert [p.column for p in analysis.projections] == ["a", "b"]
        assert [p.table_ref for p in analysis.projections] == [None, None]

    def test_qualified_and_aliased_columns(self):
        analysis = analyze_statement("select foo as f, x.bar from test_table x")

        first, second = analysis.projections
        assert first.kind == ExpressionKind.COLUMN
        assert first.column == "foo"
        assert first.alias == "f"
        assert first.output_name == "f"
        assert second.table_ref == "x"
        assert second.column == "bar"
        assert second.output_name == "bar"

    def test_literals_nulls_and_aggregates(self):
        analysis = analyze_statement(
            "select 1 as a, null::integer as b, sum(a) as s, 'x' as c from t"
        )

        assert kinds(analysis) == [
            ExpressionKind.LITERAL,
            ExpressionKind.NULL,
            ExpressionKind.AGGREGATE,
            ExpressionKind.LITERAL,
        ]
        assert [p.alias for p in analysis.projections] == ["a", "b", "s", "c"]

    def test_cast_literal_is_literal(self):
        analysis = analyze_statement("select '2020-01-01'::date as d")
        assert kinds(analysis) == [ExpressionKind.LITERAL]

    def test_boolean_literal(self):
        analysis = analyze_statement("select true as flag")
        assert kinds(analysis) == [ExpressionKind.LITERAL]

    def test_function_call(self):
        analysis = analyze_statement("select lower(name) as n from users")

        (proj,) = analysis.projections
        assert proj.kind == ExpressionKind.FUNCTION
        assert proj.function == "lower"
        assert proj.alias == "n"

    def test_comparison_is_expression(self):
        analysis = analyze_statement("select 2 > 1 as a")
        assert kinds(analysis) == [ExpressionKind.EXPRESSION]

    def test_stars(self):
        assert kinds(analyze_statement("select * from t")) == [ExpressionKind.STAR]

        (proj,) = analyze_statement("select u.* from users u").projections
        assert proj.kind == ExpressionKind.STAR
        assert proj.table_ref == "u"

    def test_distinct_is_skipped(self):
        analysis = analyze_statement("select distinct a from t")
        assert [p.column for p in analysis.projections] == ["a"]

    def test_quoted_identifiers_keep_case(self):
        analysis = analyze_statement('select "Foo" from t')
        assert analysis.projections[0].column == "Foo"


# =============================================================================
# FROM clause
# =============================================================================

class TestRelations:
    """Relations named in FROM/JOIN."""

    def test_single_table(self):
        analysis = analyze_statement("select a from t where a = $1")

        (rel,) = analysis.relations
        assert rel.name == "t"
        assert rel.physical
        assert not rel.nullable
        assert [r.name for r in analysis.relations if r.physical] == ["t"]

    def test_schema_qualified_with_aliases(self):
        analysis = analyze_statement(
            "select p.proname, l.lanname from pg_catalog.pg_proc p "
            "join pg_catalog.pg_language l on l.oid = p.prolang"
        )

        assert [(r.schema, r.name, r.alias) for r in analysis.relations] == [
            ("pg_catalog", "pg_proc", "p"),
            ("pg_catalog", "pg_language", "l"),
        ]
        assert analysis.find_relation("l").name == "pg_language"

    def test_left_join_marks_right_side_nullable(self):
        analysis = analyze_statement(
            "select u.id, o.total from users u left join orders o on o.user_id = u.id"
        )

        users, orders = analysis.relations
        assert not users.nullable
        assert orders.nullable

    def test_full_join_marks_both_sides_nullable(self):
        analysis = analyze_statement(
            "select u.id, o.total from users u full outer join orders o on o.user_id = u.id"
        )
        assert all(r.nullable for r in analysis.relations)

    def test_subquery_is_not_physical(self):
        analysis = analyze_statement("select s.a from (select a from t) s")

        (rel,) = analysis.relations
        assert rel.name == "s"
        assert not rel.physical
        assert not any(r.physical for r in analysis.relations)

    def test_cte_reference_is_not_physical(self):
        analysis = analyze_statement("with x as (select a from t) select a from x")

        assert "x" in analysis.cte_names
        (rel,) = analysis.relations
        assert rel.name == "x"
        assert not rel.physical

    def test_set_operation(self):
        analysis = analyze_statement("select a from t union all select b from t")
        assert analysis.set_operation

    @pytest.mark.parametrize("group_by", [
        "rollup (a, b)",
        "CUBE(a)",
        "grouping sets ((a), (b), ())",
        "a, rollup(b)",
    ])
    def test_grouping_sets(self, group_by):
        analysis = analyze_statement(f"select a, b, count(*) from t group by {group_by}")
        assert analysis.grouping_sets

    def test_plain_group_by(self):
        analysis = analyze_statement("select a, count(*) from t where b > 1 group by a order by a")
        assert not analysis.grouping_sets


# =============================================================================
# INSERT / UPDATE / DELETE ... RETURNING
# =============================================================================

class TestReturning:
    """RETURNING lists are treated as the projection."""

    def test_insert_returning(self):
        analysis = analyze_statement("insert into t (a, b) values (1, 2) returning a, b")

        assert analysis.statement_type == "INSERT"
        assert [r.name for r in analysis.relations] == ["t"]
        assert [p.column for p in analysis.projections] == ["a", "b"]

    def test_update_returning(self):
        analysis = analyze_statement("update t set b = 2 where a = 1 returning a, b")

        assert analysis.statement_type == "UPDATE"
        assert [r.name for r in analysis.relations] == ["t"]
        assert [p.column for p in analysis.projections] == ["a", "b"]

    def test_delete_returning_star(self):
        analysis = analyze_statement("delete from t where a = 1 returning *")

        assert [r.name for r in analysis.relations] == ["t"]
        assert kinds(analysis) == [ExpressionKind.STAR]

    def test_insert_without_returning(self):
        analysis = analyze_statement("insert into t (a) values (1)")
        assert analysis.projections == []


# =============================================================================
# Degenerate input
# =============================================================================

def test_empty_input():
    analysis = analyze_statement("   ")
    assert analysis.statement_type == "UNKNOWN"
    assert analysis.projections == []


def test_non_dml_statement():
    analysis = analyze_statement("create table foo (id int)")
    assert analysis.projections == []
    assert analysis.relations == []


def test_normalize_identifier():
    assert normalize_identifier("Foo") == "foo"
    assert normalize_identifier('"Foo"') == "Foo"
    assert normalize_identifier('"a""b"') == 'a"b'
