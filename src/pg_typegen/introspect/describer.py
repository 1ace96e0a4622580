"""Prepare-only statement description.

Each distinct SQL text is prepared once against the database (never bound or
executed). The server reports result column names and type OIDs plus the
parameter types; provenance back to physical table columns is recovered by
matching a shallow analysis of the statement against the catalog.
"""
from __future__ import annotations
import asyncio
import logging
from dataclasses import dataclass
from typing import Iterable, Protocol

import asyncpg

from pg_typegen.errors import DatabaseConnectionError, DescribeError
from pg_typegen.introspect.analysis import Projection, StatementAnalysis, analyze_statement
from pg_typegen.introspect.catalog import CatalogIntrospector
from pg_typegen.models import ColumnDescriptor, ExpressionKind, StatementDescription

logger = logging.getLogger(__name__)

CONNECTION_ERRORS = (
    asyncpg.exceptions.PostgresConnectionError,
    asyncpg.InterfaceError,
    ConnectionError,
    OSError,
)


@dataclass(frozen=True)
class PreparedStatementInfo:
    """What the server says about a prepared statement."""
    columns: tuple[tuple[str, int], ...]  # (name, type oid) in result order
    param_type_oids: tuple[int, ...] = ()


class StatementPreparer(Protocol):
    """Prepare-only access to the database."""

    async def prepare(self, sql: str) -> PreparedStatementInfo: ...


class AsyncpgPreparer:
    """StatementPreparer backed by an asyncpg pool.

    Raises asyncpg errors unchanged; classification happens in StatementDescriber.
    """

    def __init__(self, pool: asyncpg.Pool, timeout: float = 30.0):
        self.pool = pool
        self.timeout = timeout

    async def prepare(self, sql: str) -> PreparedStatementInfo:
        async with self.pool.acquire(timeout=self.timeout) as conn:
            stmt = await conn.prepare(sql, timeout=self.timeout)
            return PreparedStatementInfo(
                columns=tuple((attr.name, attr.type.oid) for attr in stmt.get_attributes()),
                param_type_oids=tuple(param.oid for param in stmt.get_parameters()),
            )


class StatementDescriber:
    """Describes SQL texts, deduplicated and with bounded concurrency.

    Args:
        preparer: Prepare-only database access
        catalog: Loaded catalog, used for star expansion and provenance
        concurrency: Max describe round trips in flight
        cache: Per-run cache of descriptions keyed by exact SQL text. Owned by
            the caller so it can be cleared between runs.
    """

    def __init__(
        self,
        preparer: StatementPreparer,
        catalog: CatalogIntrospector,
        concurrency: int = 4,
        cache: dict[str, StatementDescription] | None = None,
    ):
        self.preparer = preparer
        self.catalog = catalog
        self.concurrency = concurrency
        self.cache = cache if cache is not None else {}

    async def describe(self, sql: str) -> StatementDescription:
        """Describe one SQL text.

        Raises:
            DescribeError: The server rejected the statement or the prepare timed out
            DatabaseConnectionError: The connection was lost
        """
        cached = self.cache.get(sql)
        if cached is not None:
            return cached

        try:
            info = await self.preparer.prepare(sql)
        except asyncio.TimeoutError as e:
            raise DescribeError("Timed out preparing statement", sql=sql) from e
        except CONNECTION_ERRORS as e:
            raise DatabaseConnectionError(f"Lost connection while describing statement: {e}") from e
        except asyncpg.PostgresError as e:
            raise DescribeError(f"Error preparing statement: {e}", sql=sql) from e

        description = build_description(sql, info, self.catalog)
        self.cache[sql] = description
        return description

    async def describe_all(
        self, sqls: Iterable[str]
    ) -> dict[str, StatementDescription | DescribeError]:
        """Describe every distinct text concurrently.

        Per-query failures come back as DescribeError values. A fatal error
        cancels the outstanding describes and propagates.
        """
        unique = list(dict.fromkeys(sqls))
        if not unique:
            return {}

        semaphore = asyncio.Semaphore(self.concurrency)

        async def describe_one(sql: str) -> StatementDescription | DescribeError:
            async with semaphore:
                try:
                    return await self.describe(sql)
                except DescribeError as e:
                    logger.debug(f"Describe failed: {e}")
                    return e

        tasks = {asyncio.ensure_future(describe_one(sql)): sql for sql in unique}
        try:
            done, pending = await asyncio.wait(list(tasks), return_when=asyncio.FIRST_EXCEPTION)
            for task in pending:
                task.cancel()
            if pending:
                await asyncio.gather(*pending, return_exceptions=True)
            for task in done:
                if task.exception() is not None:
                    raise task.exception()
        except asyncio.CancelledError:
            for task in tasks:
                task.cancel()
            raise

        logger.debug(f"Described {len(unique)} distinct statements")
        return {tasks[task]: task.result() for task in tasks}


def build_description(
    sql: str, info: PreparedStatementInfo, catalog: CatalogIntrospector
) -> StatementDescription:
    analysis = analyze_statement(sql)
    columns = attribute_columns(analysis, info.columns, catalog)
    tables = tuple(
        rel.name for rel in analysis.relations
        if rel.physical and catalog.resolve_table(rel.name, rel.schema) is not None
    )
    return StatementDescription(
        sql=sql,
        columns=columns,
        param_type_oids=tuple(info.param_type_oids),
        source_tables=tuple(dict.fromkeys(tables)),
    )


def attribute_columns(
    analysis: StatementAnalysis,
    described: tuple[tuple[str, int], ...],
    catalog: CatalogIntrospector,
) -> tuple[ColumnDescriptor, ...]:
    """Pair described columns with projections and attach provenance where provable.

    Set operations and ROLLUP/CUBE/GROUPING SETS get none: either can produce
    rows where a NOT NULL column is NULL.
    """
    plain = tuple(ColumnDescriptor(name=name, type_oid=oid) for name, oid in described)
    if analysis.set_operation or analysis.grouping_sets:
        return plain

    projections = expand_stars(analysis, catalog)
    if projections is None or len(projections) != len(described):
        if projections is not None:
            logger.debug(
                f"Projection count {len(projections)} does not match "
                f"described count {len(described)}"
            )
        return plain

    return tuple(
        _attribute(proj, name, oid, analysis, catalog)
        for proj, (name, oid) in zip(projections, described)
    )


def expand_stars(analysis: StatementAnalysis, catalog: CatalogIntrospector) -> list[Projection] | None:
    """Replace ``*`` and ``t.*`` with one column projection per catalog column.

    Returns None when a star covers something the catalog can't describe
    (subqueries, CTEs, functions, unknown tables).
    """
    expanded: list[Projection] = []
    for proj in analysis.projections:
        if proj.kind != ExpressionKind.STAR:
            expanded.append(proj)
            continue

        if proj.table_ref is None:
            relations = analysis.relations
        else:
            rel = analysis.find_relation(proj.table_ref)
            relations = [rel] if rel is not None else []
        if not relations:
            return None

        for rel in relations:
            if not rel.physical:
                return None
            cols = catalog.table_columns(rel.name, rel.schema)
            if not cols:
                return None
            expanded.extend(
                Projection(kind=ExpressionKind.COLUMN, table_ref=rel.ref_name, column=c.column_name)
                for c in cols
            )
    return expanded


def _attribute(
    proj: Projection,
    name: str,
    oid: int,
    analysis: StatementAnalysis,
    catalog: CatalogIntrospector,
) -> ColumnDescriptor:
    plain = ColumnDescriptor(name=name, type_oid=oid, expression_kind=proj.kind)

    if proj.kind == ExpressionKind.LITERAL:
        if proj.alias is not None and proj.alias != name:
            return ColumnDescriptor(name=name, type_oid=oid)
        return plain

    if proj.kind != ExpressionKind.COLUMN or proj.column is None:
        return plain
    if proj.output_name != name:
        return plain

    if proj.table_ref is not None:
        rel = analysis.find_relation(proj.table_ref)
        if rel is None:
            return plain
    else:
        if any(not r.physical for r in analysis.relations):
            return plain
        owners = [
            r for r in analysis.relations
            if catalog.column_info(r.name, proj.column, r.schema) is not None
        ]
        if len(owners) != 1:
            return plain
        rel = owners[0]

    if not rel.physical or rel.nullable:
        return plain

    key = catalog.resolve_table(rel.name, rel.schema)
    info = catalog.column_info(rel.name, proj.column, rel.schema)
    if key is None or info is None or info.type_oid != oid:
        return plain

    return ColumnDescriptor(
        name=name,
        type_oid=oid,
        source_schema=key[0],
        source_table=key[1],
        source_column=info.column_name,
        expression_kind=ExpressionKind.COLUMN,
    )
