"""In-memory stand-ins for the database collaborators."""
import asyncpg

from pg_typegen.introspect.catalog import CatalogColumn, CatalogIntrospector, PgType
from pg_typegen.introspect.describer import PreparedStatementInfo

BOOL, INT8, INT4, TEXT, NUMERIC, DATE, TIMESTAMPTZ, POINT = 16, 20, 23, 25, 1700, 1082, 1184, 600
INT4_ARRAY, TEXT_ARRAY = 1007, 1009
MOOD, POSINT = 90001, 90002

# A slice of pg_type as a stock server reports it, plus one enum and one domain
PG_TYPES = [
    PgType(BOOL, "bool", "boolean", "b", "B"),
    PgType(INT8, "int8", "bigint", "b", "N"),
    PgType(INT4, "int4", "integer", "b", "N"),
    PgType(TEXT, "text", "text", "b", "S"),
    PgType(NUMERIC, "numeric", "numeric", "b", "N"),
    PgType(DATE, "date", "date", "b", "D"),
    PgType(TIMESTAMPTZ, "timestamptz", "timestamp with time zone", "b", "D"),
    PgType(POINT, "point", "point", "b", "G"),
    PgType(INT4_ARRAY, "_int4", "integer[]", "b", "A", elem_oid=INT4),
    PgType(TEXT_ARRAY, "_text", "text[]", "b", "A", elem_oid=TEXT),
    PgType(MOOD, "mood", "mood", "e", "E"),
    PgType(POSINT, "posint", "posint", "d", "N", base_oid=INT4),
]

# table -> [(column, type oid, not null)]
TABLES = {
    "test_table": [("foo", INT4, True), ("bar", TEXT, False)],
    "t": [("a", INT4, True), ("b", INT4, False)],
    "users": [("id", INT8, True), ("name", TEXT, True), ("email", TEXT, False), ("created", DATE, False)],
    "orders": [("id", INT8, True), ("user_id", INT8, True), ("total", NUMERIC, False)],
}


class FakeCatalogSource:
    """In-memory CatalogSource over TABLES and PG_TYPES."""

    def __init__(self, tables=None, types=None, schema="public"):
        self.tables = TABLES if tables is None else tables
        self.types = PG_TYPES if types is None else types
        self.schema = schema
        self.calls = 0

    async def fetch_columns(self):
        self.calls += 1
        return [
            CatalogColumn(self.schema, table, name, attnum, not_null, oid)
            for table, cols in self.tables.items()
            for attnum, (name, oid, not_null) in enumerate(cols, start=1)
        ]

    async def fetch_types(self):
        return list(self.types)

    async def fetch_search_path(self):
        return ["pg_catalog", self.schema]


class FakePreparer:
    """StatementPreparer answering from a dict of sql -> PreparedStatementInfo or exception."""

    def __init__(self, statements):
        self.statements = dict(statements)
        self.calls = []

    async def prepare(self, sql):
        self.calls.append(sql)
        result = self.statements.get(sql)
        if result is None:
            raise asyncpg.PostgresSyntaxError(f"syntax error in {sql!r}")
        if isinstance(result, BaseException):
            raise result
        return result


def prepared(*columns, params=()):
    """PreparedStatementInfo from (name, oid) pairs."""
    return PreparedStatementInfo(columns=tuple(columns), param_type_oids=tuple(params))


def build_catalog(tables=None, types=None):
    """CatalogIntrospector built straight from TABLES/PG_TYPES, no event loop needed."""
    tables = TABLES if tables is None else tables
    columns = [
        CatalogColumn("public", table, name, attnum, not_null, oid)
        for table, cols in tables.items()
        for attnum, (name, oid, not_null) in enumerate(cols, start=1)
    ]
    return CatalogIntrospector(columns, PG_TYPES if types is None else types, ["pg_catalog", "public"])
