"""All-or-nothing file writes."""
from __future__ import annotations
import logging
import os
import shutil
import tempfile
from pathlib import Path

from pg_typegen.errors import WriteConflictError
from pg_typegen.models import FileEdit

logger = logging.getLogger(__name__)


def read_bytes(path: str | Path) -> bytes | None:
    """File content, or None if the file does not exist."""
    try:
        with open(path, "rb") as f:
            return f.read()
    except FileNotFoundError:
        return None


def write_file_edit(edit: FileEdit) -> bool:
    """Write ``edit.content`` if it differs from what was read.

    The file is re-read first; if it no longer matches ``edit.original`` it
    was changed by someone else mid-run and nothing is written. The write goes
    through a temporary file in the same directory and ``os.replace``, so
    readers never see a partial file.

    Returns:
        True if the file was written, False if it was already up to date

    Raises:
        WriteConflictError: The file changed on disk since it was read
    """
    if not edit.changed:
        return False

    path = Path(edit.file_path)
    current = read_bytes(path)
    if current != edit.original:
        raise WriteConflictError("File changed on disk during generation, skipped", file_path=str(path))

    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_path = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(edit.content)
        if current is not None:
            shutil.copymode(path, tmp_path)
        os.replace(tmp_path, path)
    except BaseException:
        if os.path.exists(tmp_path):
            os.unlink(tmp_path)
        raise

    logger.debug(f"Wrote {path} ({len(edit.content)} bytes)")
    return True
