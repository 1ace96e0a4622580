"""Query extraction: discovery plus per-file record building."""
from __future__ import annotations
import logging
from dataclasses import dataclass
from pathlib import Path

from pg_typegen.errors import ExtractionError
from pg_typegen.extract.git import changed_files
from pg_typegen.extract.python_calls import CALLEE_NAME, find_sql_calls
from pg_typegen.extract.scanner import scan_sources
from pg_typegen.models import QueryRecord, TagKind

logger = logging.getLogger(__name__)

SQL_SUFFIX = ".sql"
PYTHON_SUFFIXES = (".py", ".pyi")


@dataclass(frozen=True)
class ExtractedFile:
    """A scanned file: its exact bytes and the queries found in it."""
    path: Path
    content: bytes
    records: tuple[QueryRecord, ...]

    @property
    def is_sql_file(self) -> bool:
        return self.path.suffix == SQL_SUFFIX


def discover_files(
    root_dir: Path,
    include: list[str],
    exclude: list[str],
    since: str | None = None,
) -> list[Path]:
    """Files to scan, in sorted path order.

    Raises:
        FileNotFoundError: root_dir doesn't exist
        GitError: ``since`` was given but git could not list changed files
    """
    only = changed_files(since, root_dir) if since else None
    files = [
        path for path in scan_sources(root_dir, include, exclude, only=only)
        if path.suffix == SQL_SUFFIX or path.suffix in PYTHON_SUFFIXES
    ]
    logger.debug(f"Discovered {len(files)} files under {root_dir}")
    return files


def extract_file(path: Path) -> ExtractedFile:
    """Read one file and find its queries.

    Raises:
        ExtractionError: The file can't be read, isn't UTF-8, or isn't valid Python
    """
    try:
        content = path.read_bytes()
    except OSError as e:
        raise ExtractionError(f"Could not read file: {e}", file_path=str(path)) from e

    if path.suffix == SQL_SUFFIX:
        return ExtractedFile(path, content, tuple(_sql_file_records(path, content)))

    # cheap pre-filter, most files never mention the callee
    if CALLEE_NAME.encode() not in content:
        return ExtractedFile(path, content, ())

    try:
        records = find_sql_calls(str(path), content)
    except SyntaxError as e:
        raise ExtractionError(f"Syntax error at line {e.lineno}: {e.msg}", file_path=str(path)) from e
    except (UnicodeDecodeError, ValueError) as e:
        raise ExtractionError(f"Could not parse file: {e}", file_path=str(path)) from e

    return ExtractedFile(path, content, tuple(records))


def _sql_file_records(path: Path, content: bytes) -> list[QueryRecord]:
    try:
        sql = content.decode("utf-8")
    except UnicodeDecodeError as e:
        raise ExtractionError(f"Could not decode file: {e}", file_path=str(path)) from e

    if not sql.strip():
        return []

    return [QueryRecord(
        file_path=str(path),
        start_offset=0,
        end_offset=len(content),
        line=1,
        column=1,
        sql=sql,
        tag_kind=TagKind.SQL_FILE,
    )]
