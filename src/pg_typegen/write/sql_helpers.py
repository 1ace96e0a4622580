"""Companion modules for free-standing ``.sql`` files.

``queries/get-user.sql`` gets ``queries/__sql__/get_user.py`` holding the row
TypedDict, a parameter TypedDict keyed ``"$1"``, ``"$2"``..., and accessors
that read the ``.sql`` file lazily (once per process, keyed by absolute path)
and return the SQL with its positional values.
"""
from __future__ import annotations
import re
from pathlib import Path

from pg_typegen.inference.host_types import required_imports
from pg_typegen.models import FileEdit, InferredQuery, NamedShape
from pg_typegen.write.inline import INDENT, render_typed_dict

COMPANION_DIR = "__sql__"
COMPANION_HEADER = "# Generated by pg-typegen from {source}. Do not edit by hand."

RESERVED_NAMES = {"Query", "Path", "SQL_PATH"}

_NON_IDENTIFIER = re.compile(r"\W+")
_CAMEL_BOUNDARY = re.compile(r"(?<=[a-z0-9])(?=[A-Z])")


def companion_path(sql_path: str | Path) -> Path:
    """Where the companion module of a ``.sql`` file lives."""
    sql_path = Path(sql_path)
    stem = _NON_IDENTIFIER.sub("_", sql_path.stem).strip("_") or "query"
    if stem[0].isdigit():
        stem = f"_{stem}"
    return sql_path.parent / COMPANION_DIR / f"{stem}.py"


def to_snake_case(name: str) -> str:
    """``TestTable1`` -> ``test_table1``."""
    return _CAMEL_BOUNDARY.sub("_", name).replace("__", "_").lower().strip("_")


def render_companion(sql_file_name: str, shape: NamedShape, query: InferredQuery) -> str:
    name = shape.name
    if name in RESERVED_NAMES:
        name = f"{name}Row"
    snake = to_snake_case(name)
    params_name = f"Get{name}QueryParams"
    param_types = list(query.param_host_types)

    modules = set(required_imports(
        [c.annotation for c in shape.columns] + param_types
    )) | {"asyncio", "typing"}

    lines = [COMPANION_HEADER.format(source=sql_file_name)]
    lines += [f"import {module}" for module in sorted(modules)]
    lines += ["from pathlib import Path", "", ""]

    lines += render_typed_dict(name, shape.columns, shape.contributing_queries)
    lines += ["", ""]

    if param_types:
        fields = ", ".join(f'"${i}": {t}' for i, t in enumerate(param_types, start=1))
        lines.append(f'{params_name} = typing.TypedDict("{params_name}", {{{fields}}})')
        lines += ["", ""]

    lines += [
        "class Query(typing.NamedTuple):",
        f'{INDENT}"""SQL text and positional values, ready for ``conn.fetch(query.sql, *query.values)``."""',
        "",
        f"{INDENT}sql: str",
        f"{INDENT}values: list[typing.Any]",
        "",
        "",
        f"SQL_PATH = Path(__file__).resolve().parent.parent / {sql_file_name!r}",
        "",
        "_query_cache: dict[str, str] = {}",
        "",
        "",
        "def default_read_file_sync(path: Path) -> str:",
        f'{INDENT}return path.read_text(encoding="utf-8")',
        "",
        "",
        "async def default_read_file_async(path: Path) -> str:",
        f"{INDENT}return await asyncio.to_thread(default_read_file_sync, path)",
        "",
        "",
    ]

    values = "[" + ", ".join(f'params["${i}"]' for i in range(1, len(param_types) + 1)) + "]"
    params_arg = f"params: {params_name}, " if param_types else ""

    lines += [
        f"def get_{snake}_query_sync({params_arg}read_file_sync=default_read_file_sync) -> Query:",
        f"{INDENT}key = str(SQL_PATH)",
        f"{INDENT}if key not in _query_cache:",
        f"{INDENT * 2}_query_cache[key] = read_file_sync(SQL_PATH)",
        f"{INDENT}return Query(sql=_query_cache[key], values={values})",
        "",
        "",
        f"async def get_{snake}_query_async({params_arg}read_file=default_read_file_async) -> Query:",
        f"{INDENT}key = str(SQL_PATH)",
        f"{INDENT}if key not in _query_cache:",
        f"{INDENT * 2}_query_cache[key] = await read_file(SQL_PATH)",
        f"{INDENT}return Query(sql=_query_cache[key], values={values})",
    ]
    return "\n".join(lines) + "\n"


def build_companion_edit(sql_path: str, original: bytes | None, shape: NamedShape) -> FileEdit:
    """FileEdit for the companion module; ``original`` is its current content, if any."""
    query = shape.queries[0]
    target = companion_path(sql_path)
    content = render_companion(Path(sql_path).name, shape, query).encode("utf-8")
    return FileEdit(file_path=str(target), original=original, content=content)
