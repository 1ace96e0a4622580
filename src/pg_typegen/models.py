"""Data model shared by the extraction, description, inference and writing stages.

Records are frozen: each stage produces new values and never mutates the
output of an earlier stage.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum


class TagKind(str, Enum):
    """Where a query came from."""
    INLINE = "inline"
    SQL_FILE = "sql_file"


class ExpressionKind(str, Enum):
    """Shallow classification of a projected expression."""
    COLUMN = "column"
    LITERAL = "literal"
    NULL = "null"
    AGGREGATE = "aggregate"
    FUNCTION = "function"
    STAR = "star"
    EXPRESSION = "expression"


@dataclass(frozen=True)
class QueryRecord:
    """A query found in a source file."""
    file_path: str
    start_offset: int  # byte offsets into the UTF-8 file content
    end_offset: int
    line: int
    column: int
    sql: str
    tag_kind: TagKind
    annotation: str | None = None
    annotation_span: tuple[int, int] | None = None
    insert_offset: int | None = None  # where a missing annotation goes
    param_count: int | None = None


@dataclass(frozen=True)
class ColumnDescriptor:
    """A result column as described by the server."""
    name: str
    type_oid: int
    source_schema: str | None = None
    source_table: str | None = None
    source_column: str | None = None
    expression_kind: ExpressionKind = ExpressionKind.EXPRESSION

    @property
    def has_provenance(self) -> bool:
        return self.source_table is not None and self.source_column is not None

    @property
    def source(self) -> str | None:
        if not self.has_provenance:
            return None
        return f"{self.source_schema}.{self.source_table}.{self.source_column}"


@dataclass(frozen=True)
class StatementDescription:
    """Prepare-only description of one distinct SQL text."""
    sql: str
    columns: tuple[ColumnDescriptor, ...]
    param_type_oids: tuple[int, ...] = ()
    source_tables: tuple[str, ...] = ()  # physical relations in FROM order


@dataclass(frozen=True)
class InferredColumn:
    """Output column with resolved nullability and host type."""
    name: str
    not_null: bool
    pg_type_name: str
    host_type: str
    source: str | None = None

    @property
    def annotation(self) -> str:
        return self.host_type if self.not_null else f"{self.host_type} | None"


Shape = tuple[tuple[str, bool, str], ...]


def shape_of(columns: tuple[InferredColumn, ...]) -> Shape:
    """Structural key used to group queries: (name, not_null, host_type) in order."""
    return tuple((c.name, c.not_null, c.host_type) for c in columns)


@dataclass(frozen=True)
class InferredQuery:
    """A query record together with its inferred output columns."""
    record: QueryRecord
    columns: tuple[InferredColumn, ...]
    param_host_types: tuple[str, ...] = ()
    source_tables: tuple[str, ...] = ()

    @property
    def shape(self) -> Shape:
        return shape_of(self.columns)


@dataclass(frozen=True)
class NamedShape:
    """A shape with its declaration name and every query that produces it."""
    name: str
    shape: Shape
    columns: tuple[InferredColumn, ...]
    queries: tuple[InferredQuery, ...]

    @property
    def contributing_queries(self) -> tuple[QueryRecord, ...]:
        return tuple(q.record for q in self.queries)


@dataclass(frozen=True)
class AnnotationEdit:
    """Replace bytes [start, end) with replacement."""
    start: int
    end: int
    replacement: bytes


@dataclass(frozen=True)
class FileEdit:
    """Full new content for one file, plus the edits that produced it."""
    file_path: str
    original: bytes | None  # None when the file does not exist yet
    content: bytes
    edits: tuple[AnnotationEdit, ...] = ()

    @property
    def changed(self) -> bool:
        return self.original != self.content


@dataclass(frozen=True)
class ReportedError:
    """A non-fatal error surfaced in the run report."""
    kind: str  # "query" or "file"
    message: str
    file_path: str | None = None
    sql: str | None = None

    def __str__(self) -> str:
        location = self.file_path or "<unknown file>"
        if self.sql:
            return f"{location}: {self.message}\n  query: {self.sql}"
        return f"{location}: {self.message}"


@dataclass
class GenerateReport:
    """Outcome of one generation run."""
    files_scanned: int = 0
    files_changed: list[str] = field(default_factory=list)
    files_unchanged: list[str] = field(default_factory=list)
    files_errored: list[str] = field(default_factory=list)
    queries_found: int = 0
    queries_generated: int = 0
    queries_errored: int = 0
    errors: list[ReportedError] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.errors

    def summary(self) -> str:
        return (
            f"Scanned {self.files_scanned} files: "
            f"{len(self.files_changed)} changed, "
            f"{len(self.files_unchanged)} unchanged, "
            f"{len(self.files_errored)} errored. "
            f"Queries: {self.queries_found} found, "
            f"{self.queries_generated} generated, "
            f"{self.queries_errored} errored."
        )
