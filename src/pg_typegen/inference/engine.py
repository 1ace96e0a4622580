"""Nullability and host type inference for described statements."""
from __future__ import annotations
import logging
from typing import Callable

from pg_typegen.config import ErrorPolicy
from pg_typegen.errors import UnresolvedTypeError
from pg_typegen.inference.host_types import HostTypeResolver
from pg_typegen.introspect.catalog import CatalogIntrospector
from pg_typegen.introspect.type_samples import UNKNOWN_HOST_TYPE
from pg_typegen.models import (
    ColumnDescriptor,
    ExpressionKind,
    InferredColumn,
    InferredQuery,
    QueryRecord,
    StatementDescription,
)

logger = logging.getLogger(__name__)


class InferenceEngine:
    """Turns a StatementDescription into InferredColumns.

    Nullability is conservative. A column is not null only when it is traced
    to a NOT NULL physical column, or when it is a non-null literal. Every
    other expression (aggregates, functions, comparisons, outer joins, set
    operations) is nullable.
    """

    def __init__(
        self,
        catalog: CatalogIntrospector,
        host_types: HostTypeResolver,
        policy: ErrorPolicy = ErrorPolicy.STRICT,
        default_type: str = "typing.Any",
        on_warning: Callable[[str], None] | None = None,
    ):
        self.catalog = catalog
        self.host_types = host_types
        self.policy = policy
        self.default_type = default_type
        self.on_warning = on_warning or logger.warning

    def infer(self, record: QueryRecord, description: StatementDescription) -> InferredQuery:
        """Infer one query.

        Raises:
            UnresolvedTypeError: A type has no host mapping under the strict policy
        """
        columns = tuple(self.infer_column(col, record) for col in description.columns)
        params = tuple(
            self._host_type(oid, f"parameter ${i}", record)
            for i, oid in enumerate(description.param_type_oids, start=1)
        )

        if record.param_count is not None and record.param_count != len(params):
            self.on_warning(
                f"{record.file_path}:{record.line}: query has {record.param_count} "
                f"interpolated values but the server expects {len(params)} parameters"
            )

        return InferredQuery(
            record=record,
            columns=columns,
            param_host_types=params,
            source_tables=description.source_tables,
        )

    def infer_column(self, column: ColumnDescriptor, record: QueryRecord) -> InferredColumn:
        return InferredColumn(
            name=column.name,
            not_null=self.not_null(column),
            pg_type_name=self.catalog.type_name(column.type_oid),
            host_type=self._host_type(column.type_oid, f"column {column.name!r}", record),
            source=column.source,
        )

    def not_null(self, column: ColumnDescriptor) -> bool:
        if column.has_provenance:
            info = self.catalog.column_info(
                column.source_table, column.source_column, column.source_schema
            )
            return bool(info and info.not_null)
        return column.expression_kind == ExpressionKind.LITERAL

    def _host_type(self, oid: int, what: str, record: QueryRecord) -> str:
        host_type = self.host_types.resolve(oid)
        if host_type != UNKNOWN_HOST_TYPE:
            return host_type

        type_name = self.catalog.type_name(oid)
        message = f"No host type for {what} of type {type_name!r}"
        if self.policy == ErrorPolicy.STRICT:
            raise UnresolvedTypeError(
                f"{message}. Register a type parser or set lazy to degrade to {self.default_type}",
                file_path=record.file_path,
                sql=record.sql,
            )
        self.on_warning(f"{record.file_path}: {message}, using {self.default_type}")
        return self.default_type
