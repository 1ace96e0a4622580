"""Git helpers: changed files since a revision and working-tree status."""
from __future__ import annotations
import logging
import subprocess
from pathlib import Path

logger = logging.getLogger(__name__)


class GitError(Exception):
    """A git command failed (not a repository, unknown revision...)."""


def _git(args: list[str], cwd: Path) -> str:
    try:
        result = subprocess.run(
            ["git", *args],
            cwd=str(cwd),
            capture_output=True,
            text=True,
            check=True,
        )
    except FileNotFoundError as e:
        raise GitError("git executable not found") from e
    except subprocess.CalledProcessError as e:
        raise GitError(f"git {' '.join(args)} failed: {e.stderr.strip()}") from e
    return result.stdout


def repo_root(cwd: Path) -> Path:
    return Path(_git(["rev-parse", "--show-toplevel"], cwd).strip())


def changed_files(since: str, cwd: Path) -> list[Path]:
    """Files changed since ``since`` (committed or not) plus untracked files.

    Returns:
        Absolute paths of files that still exist
    """
    top = repo_root(cwd)
    changed = _git(["diff", "--name-only", since], cwd).splitlines()
    untracked = _git(["ls-files", "--others", "--exclude-standard", "--full-name"], cwd).splitlines()

    paths = []
    for name in dict.fromkeys(changed + untracked):
        if not name.strip():
            continue
        path = (top / name).resolve()
        if path.exists():
            paths.append(path)

    logger.debug(f"{len(paths)} files changed since {since}")
    return paths


def working_tree_status(cwd: Path) -> str:
    """``git status --porcelain`` output; empty when the tree is clean."""
    return _git(["status", "--porcelain"], cwd).strip()
