"""Postgres system catalog introspection.

Reads column nullability and type metadata for every relation, plus the
``pg_type`` table, once per run. Results are held in memory only; catalogs can
change between runs so nothing is written to disk.
"""
from __future__ import annotations
import asyncio
import logging
from dataclasses import dataclass
from typing import Protocol

import asyncpg

from pg_typegen.errors import CatalogIntrospectionError

logger = logging.getLogger(__name__)

COLUMNS_QUERY = """
    SELECT
        n.nspname AS schema_name,
        c.relname AS table_name,
        a.attname AS column_name,
        a.attnum AS attnum,
        a.attnotnull AS not_null,
        a.atttypid AS type_oid
    FROM pg_catalog.pg_attribute a
    JOIN pg_catalog.pg_class c ON c.oid = a.attrelid
    JOIN pg_catalog.pg_namespace n ON n.oid = c.relnamespace
    WHERE a.attnum > 0
    AND NOT a.attisdropped
    AND c.relkind IN ('r', 'v', 'm', 'p', 'f')
    ORDER BY n.nspname, c.relname, a.attnum
"""

TYPES_QUERY = """
    SELECT
        t.oid AS oid,
        t.typname AS typname,
        pg_catalog.format_type(t.oid, NULL) AS regtype,
        t.typtype::text AS typtype,
        t.typcategory::text AS category,
        t.typelem AS elem_oid,
        t.typbasetype AS base_oid
    FROM pg_catalog.pg_type t
"""

SEARCH_PATH_QUERY = "SELECT unnest(pg_catalog.current_schemas(true)) AS schema_name"


@dataclass(frozen=True)
class CatalogColumn:
    """A physical column of a table, view or materialized view."""
    schema_name: str
    table_name: str
    column_name: str
    attnum: int
    not_null: bool
    type_oid: int


@dataclass(frozen=True)
class PgType:
    """A row of pg_type."""
    oid: int
    typname: str
    regtype: str
    typtype: str  # b=base, c=composite, d=domain, e=enum, p=pseudo, r=range
    category: str  # A=array, E=enum, ...
    elem_oid: int = 0
    base_oid: int = 0


class CatalogSource(Protocol):
    """Read access to the system catalogs."""

    async def fetch_columns(self) -> list[CatalogColumn]: ...

    async def fetch_types(self) -> list[PgType]: ...

    async def fetch_search_path(self) -> list[str]: ...


class AsyncpgCatalogSource:
    """CatalogSource backed by an asyncpg pool."""

    def __init__(self, pool: asyncpg.Pool, timeout: float = 30.0):
        self.pool = pool
        self.timeout = timeout

    async def fetch_columns(self) -> list[CatalogColumn]:
        async with self.pool.acquire() as conn:
            rows = await conn.fetch(COLUMNS_QUERY, timeout=self.timeout)
        return [
            CatalogColumn(
                schema_name=r["schema_name"],
                table_name=r["table_name"],
                column_name=r["column_name"],
                attnum=r["attnum"],
                not_null=r["not_null"],
                type_oid=r["type_oid"],
            )
            for r in rows
        ]

    async def fetch_types(self) -> list[PgType]:
        async with self.pool.acquire() as conn:
            rows = await conn.fetch(TYPES_QUERY, timeout=self.timeout)
        return [
            PgType(
                oid=r["oid"],
                typname=r["typname"],
                regtype=r["regtype"],
                typtype=r["typtype"],
                category=r["category"],
                elem_oid=r["elem_oid"],
                base_oid=r["base_oid"],
            )
            for r in rows
        ]

    async def fetch_search_path(self) -> list[str]:
        async with self.pool.acquire() as conn:
            rows = await conn.fetch(SEARCH_PATH_QUERY, timeout=self.timeout)
        return [r["schema_name"] for r in rows]


class CatalogIntrospector:
    """In-memory view of the catalogs, keyed by (schema, table, column) and type OID."""

    def __init__(
        self,
        columns: list[CatalogColumn],
        types: list[PgType],
        search_path: list[str],
    ):
        self.search_path = list(search_path)
        self._tables: dict[tuple[str, str], list[CatalogColumn]] = {}
        for col in columns:
            self._tables.setdefault((col.schema_name, col.table_name), []).append(col)
        for cols in self._tables.values():
            cols.sort(key=lambda c: c.attnum)
        self._types = {t.oid: t for t in types}

    @classmethod
    async def load(cls, source: CatalogSource, timeout: float = 30.0) -> CatalogIntrospector:
        """Run the catalog queries once.

        Raises:
            CatalogIntrospectionError: On any failure, including timeouts
        """
        try:
            columns, types, search_path = await asyncio.wait_for(
                asyncio.gather(
                    source.fetch_columns(),
                    source.fetch_types(),
                    source.fetch_search_path(),
                ),
                timeout=timeout,
            )
        except asyncio.TimeoutError as e:
            raise CatalogIntrospectionError(f"Catalog introspection timed out after {timeout}s") from e
        except (asyncpg.PostgresError, asyncpg.InterfaceError, OSError) as e:
            raise CatalogIntrospectionError(f"Catalog introspection failed: {e}") from e

        logger.debug(
            f"Loaded catalog: {len(columns)} columns, {len(types)} types, "
            f"search path {search_path}"
        )
        return cls(columns, types, search_path)

    def resolve_table(self, table: str, schema: str | None = None) -> tuple[str, str] | None:
        """Find (schema, table), following the search path for unqualified names."""
        if schema is not None:
            return (schema, table) if (schema, table) in self._tables else None
        for candidate in self.search_path:
            if (candidate, table) in self._tables:
                return (candidate, table)
        return None

    def table_columns(self, table: str, schema: str | None = None) -> list[CatalogColumn]:
        """Columns of a relation in attnum order (empty if unknown)."""
        key = self.resolve_table(table, schema)
        if key is None:
            return []
        return list(self._tables[key])

    def column_info(self, table: str, column: str, schema: str | None = None) -> CatalogColumn | None:
        """Not-null flag and type of one physical column."""
        for col in self.table_columns(table, schema):
            if col.column_name == column:
                return col
        return None

    def pg_type(self, oid: int) -> PgType | None:
        return self._types.get(oid)

    def type_name(self, oid: int) -> str:
        """Display name of a type (``integer``, ``text[]``...)."""
        pg_type = self._types.get(oid)
        if pg_type is None:
            return f"oid:{oid}"
        return pg_type.regtype
