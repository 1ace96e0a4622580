"""Source discovery with include/exclude glob patterns.

Walks the root directory in sorted order and yields files whose path relative
to the root matches an include pattern and no exclude pattern. Patterns use
gitignore syntax (``**/*.py``, ``**/__sql__/**``).
"""
from __future__ import annotations
from pathlib import Path
from typing import Iterable, Iterator

import pathspec

SKIPPED_DIRECTORIES = {"__pycache__"}


def build_spec(patterns: Iterable[str]) -> pathspec.PathSpec:
    return pathspec.PathSpec.from_lines("gitwildmatch", list(patterns))


def scan_sources(
    root_dir: Path | str,
    include: Iterable[str],
    exclude: Iterable[str] = (),
    only: Iterable[Path] | None = None,
) -> Iterator[Path]:
    """Yield matching files under ``root_dir`` in sorted path order.

    Args:
        root_dir: Directory to walk
        include: Patterns a file must match
        exclude: Patterns that remove a file
        only: If given, restrict to these files (e.g. changed since a revision)

    Yields:
        Absolute file paths
    """
    root_dir = Path(root_dir).resolve()

    if not root_dir.exists():
        raise FileNotFoundError(f"Root directory not found: {root_dir}")

    if not root_dir.is_dir():
        raise NotADirectoryError(f"Root path is not a directory: {root_dir}")

    include_spec = build_spec(include)
    exclude_spec = build_spec(exclude)
    allowed = {Path(p).resolve() for p in only} if only is not None else None

    for file_path in _walk_directory(root_dir):
        rel_path = file_path.relative_to(root_dir).as_posix()
        if not include_spec.match_file(rel_path):
            continue
        if exclude_spec.match_file(rel_path):
            continue
        if allowed is not None and file_path not in allowed:
            continue
        yield file_path


def _walk_directory(directory: Path) -> Iterator[Path]:
    try:
        entries = sorted(directory.iterdir())
    except PermissionError:
        # Skip directories we can't read
        return

    for entry in entries:
        # Skip hidden files/directories
        if entry.name.startswith("."):
            continue

        if entry.is_dir():
            if entry.name in SKIPPED_DIRECTORIES:
                continue
            yield from _walk_directory(entry)
        elif entry.is_file():
            yield entry
