"""Error types for pg-typegen.

Three tiers:
- Fatal: abort the whole run (database unreachable, catalog unreadable,
  dirty working tree).
- Per-query: a single query is skipped (fails to prepare, unresolved type).
- Per-file: a single file is skipped (unparsable source, write conflict).
"""
from __future__ import annotations


class TypegenError(Exception):
    """Base class for all pg-typegen errors."""


class FatalError(TypegenError):
    """Aborts the run."""


class DatabaseConnectionError(FatalError):
    """The database could not be reached, or the connection was lost."""


class CatalogIntrospectionError(FatalError):
    """Reading the system catalogs failed."""


class DirtyWorkingTreeError(FatalError):
    """The working tree had uncommitted changes at a checked point."""

    def __init__(self, point: str, status: str):
        self.point = point
        self.status = status
        super().__init__(
            f"Working tree is dirty ({point} check). Commit or stash changes first:\n{status}"
        )


class QueryError(TypegenError):
    """A single query could not be typed."""

    def __init__(self, message: str, file_path: str | None = None, sql: str | None = None):
        self.file_path = file_path
        self.sql = sql
        super().__init__(message)

    def located(self, file_path: str) -> "QueryError":
        """Copy of this error attributed to a file."""
        return type(self)(str(self), file_path=file_path, sql=self.sql)


class DescribeError(QueryError):
    """The server refused to prepare the statement, or the prepare timed out."""


class UnresolvedTypeError(QueryError):
    """A column type has no host type mapping and the error policy is strict."""


class FileError(TypegenError):
    """A single file could not be processed."""

    def __init__(self, message: str, file_path: str):
        self.file_path = file_path
        super().__init__(message)


class ExtractionError(FileError):
    """Source file could not be read or parsed."""


class WriteConflictError(FileError):
    """The file changed on disk while the run was in progress."""
