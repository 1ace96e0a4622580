"""Query discovery and extraction from Python and .sql files."""
from .extractor import ExtractedFile, discover_files, extract_file
from .git import GitError, changed_files, working_tree_status
from .python_calls import find_sql_calls
from .scanner import scan_sources

__all__ = [
    "ExtractedFile",
    "GitError",
    "changed_files",
    "discover_files",
    "extract_file",
    "find_sql_calls",
    "scan_sources",
    "working_tree_status",
]
