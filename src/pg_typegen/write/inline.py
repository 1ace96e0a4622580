"""Rewriting Python files that contain inline ``sql(...)`` queries.

Two kinds of edits are made, and nothing else in the file is touched:
the annotation slot of each query (``sql["queries.Name"](...)``) and the
generated block at the end of the file, delimited by region markers.
"""
from __future__ import annotations
import ast
import keyword
import logging
import re
from typing import Iterable

from pg_typegen.inference.host_types import IMPORTABLE_MODULES, required_imports
from pg_typegen.models import AnnotationEdit, FileEdit, InferredColumn, NamedShape, QueryRecord
from pg_typegen.write.annotations import GENERATED_NAMESPACE, generated_name, merge_annotation, quote_annotation

logger = logging.getLogger(__name__)

BLOCK_START = "# region pg-typegen"
BLOCK_END = "# endregion pg-typegen"
GENERATED_HEADER = "# Generated by pg-typegen. Do not edit this block by hand."

MAX_DOC_SQL_LENGTH = 300
INDENT = "    "

_MODULE_PREFIX = re.compile(r"\b(" + "|".join(IMPORTABLE_MODULES) + r")\.")
_PRIVATE_MODULE = re.compile(r"\b_(" + "|".join(IMPORTABLE_MODULES) + r")\.")


def private_modules(host_type: str) -> str:
    """``datetime.date`` -> ``_datetime.date``.

    Imports in the generated block are aliased so they never rebind names the
    rest of the module uses (``from datetime import datetime`` is common).
    """
    return _MODULE_PREFIX.sub(r"_\1.", host_type)


def _identity(host_type: str) -> str:
    return host_type


def sql_excerpt(sql: str) -> str:
    """Single-line SQL safe to embed in a docstring or comment."""
    text = " ".join(sql.split())
    if len(text) > MAX_DOC_SQL_LENGTH:
        keep = MAX_DOC_SQL_LENGTH // 2
        text = f"{text[:keep]} ... [truncated] ... {text[-keep:]}"
    return text.replace("\\", "\\\\").replace('"""', '\\"\\"\\"')


def column_comment(column: InferredColumn) -> str:
    parts = []
    if column.source:
        parts.append(f"column: `{column.source}`")
    if column.not_null:
        parts.append("not null: `true`")
    parts.append(f"regtype: `{column.pg_type_name}`")
    return ", ".join(parts)


def _excerpts(queries: Iterable[QueryRecord]) -> list[str]:
    return list(dict.fromkeys(sql_excerpt(q.sql) for q in queries))


def query_docstring(queries: Iterable[QueryRecord], indent: str) -> list[str]:
    excerpts = _excerpts(queries)
    if len(excerpts) == 1:
        return [f'{indent}"""- query: `{excerpts[0]}`"""']
    lines = [f'{indent}"""']
    lines += [f"{indent}- query: `{e}`" for e in excerpts]
    lines.append(f'{indent}"""')
    return lines


def render_typed_dict(
    name: str,
    columns: tuple[InferredColumn, ...],
    queries: Iterable[QueryRecord],
    indent: str = "",
    typing_module: str = "typing",
    qualify=_identity,
) -> list[str]:
    """Lines declaring one row TypedDict.

    Uses the functional syntax when a column name is not a valid identifier
    (``?column?``) or is a keyword.
    """
    inner = indent + INDENT
    queries = list(queries)

    if all(c.name.isidentifier() and not keyword.iskeyword(c.name) for c in columns):
        lines = [f"{indent}class {name}({typing_module}.TypedDict):"]
        lines += query_docstring(queries, inner)
        for column in columns:
            lines.append("")
            lines.append(f"{inner}# {column_comment(column)}")
            lines.append(f"{inner}{column.name}: {qualify(column.annotation)}")
        return lines

    # the functional form has no body to hold a docstring
    lines = [f"{indent}# - query: `{e}`" for e in _excerpts(queries)]
    lines.append(f'{indent}{name} = {typing_module}.TypedDict("{name}", {{')
    for column in columns:
        lines.append(f"{inner}# {column_comment(column)}")
        lines.append(f"{inner}{column.name!r}: {qualify(column.annotation)},")
    lines.append(f"{indent}}})")
    return lines


def render_block(shapes: list[NamedShape], retained: Iterable[list[str]] = ()) -> str:
    """The generated region: aliased imports and ``class queries`` with one TypedDict per shape.

    ``retained`` holds declarations copied verbatim from the previous block,
    already indented for the ``queries`` namespace. They follow the shapes.
    """
    retained = list(retained)
    host_types = [c.annotation for shape in shapes for c in shape.columns]
    modules = set(required_imports(host_types)) | {"typing"}
    modules.update(m for declaration in retained for line in declaration for m in _PRIVATE_MODULE.findall(line))

    declarations = [
        render_typed_dict(
            shape.name,
            shape.columns,
            shape.contributing_queries,
            indent=INDENT,
            typing_module="_typing",
            qualify=private_modules,
        )
        for shape in shapes
    ]
    declarations += retained

    lines = [BLOCK_START, GENERATED_HEADER]
    lines += [f"import {module} as _{module}" for module in sorted(modules)]
    lines += ["", "", f"class {GENERATED_NAMESPACE}:"]
    for i, declaration in enumerate(declarations):
        if i:
            lines.append("")
        lines += declaration
    lines.append(BLOCK_END)
    return "\n".join(lines) + "\n"


def annotation_edits(original: bytes, shapes: list[NamedShape]) -> list[AnnotationEdit]:
    """Edits bringing every query's annotation slot in line with its shape name."""
    edits = []
    for shape in shapes:
        for record in shape.contributing_queries:
            literal = quote_annotation(merge_annotation(record.annotation, shape.name)).encode("utf-8")
            if record.annotation_span is not None:
                start, end = record.annotation_span
                if original[start:end] != literal:
                    edits.append(AnnotationEdit(start, end, literal))
            elif record.insert_offset is not None:
                edits.append(AnnotationEdit(record.insert_offset, record.insert_offset, b"[" + literal + b"]"))
    return sorted(edits, key=lambda e: (e.start, e.end))


def apply_edits(content: bytes, edits: list[AnnotationEdit]) -> bytes:
    """Apply non-overlapping edits, last first so earlier offsets stay valid."""
    previous_start = len(content) + 1
    for edit in sorted(edits, key=lambda e: e.start, reverse=True):
        if edit.end > previous_start:
            raise ValueError(f"Overlapping edits at byte {edit.start}")
        content = content[:edit.start] + edit.replacement + content[edit.end:]
        previous_start = edit.start
    return content


def replace_block(content: bytes, block: str) -> bytes:
    """Replace the generated region in place, or append it."""
    newline = "\r\n" if b"\r\n" in content else "\n"
    block_bytes = block.replace("\n", newline).encode("utf-8")

    start = _find_line(content, BLOCK_START.encode("utf-8"))
    if start != -1:
        end = content.find(BLOCK_END.encode("utf-8"), start)
        if end != -1:
            line_end = content.find(b"\n", end)
            end = len(content) if line_end == -1 else line_end + 1
            return content[:start] + block_bytes + content[end:]

    nl = newline.encode("utf-8")
    if content and not content.endswith(b"\n"):
        content += nl
    separator = nl * 2 if content else b""
    return content + separator + block_bytes


def _find_line(content: bytes, marker: bytes) -> int:
    """Offset of ``marker`` at the start of a line, or -1."""
    pos = content.find(marker)
    while pos != -1:
        if pos == 0 or content[pos - 1:pos] == b"\n":
            return pos
        pos = content.find(marker, pos + 1)
    return -1


def _declared_name(node: ast.stmt) -> str | None:
    if isinstance(node, ast.ClassDef):
        return node.name
    if isinstance(node, ast.Assign) and len(node.targets) == 1 and isinstance(node.targets[0], ast.Name):
        return node.targets[0].id
    return None


def existing_declarations(content: bytes) -> dict[str, list[str]]:
    """Source lines of each declaration in the current block's ``class queries``.

    Leading ``#`` comment lines belong to the declaration below them.
    """
    start = _find_line(content, BLOCK_START.encode("utf-8"))
    if start == -1:
        return {}
    end = content.find(BLOCK_END.encode("utf-8"), start)
    if end == -1:
        return {}

    lines = content[start:end].decode("utf-8").splitlines()
    try:
        tree = ast.parse("\n".join(lines))
    except SyntaxError as e:
        logger.warning(f"Existing generated block is not valid Python, not reusing it: {e}")
        return {}

    declarations = {}
    for node in tree.body:
        if not (isinstance(node, ast.ClassDef) and node.name == GENERATED_NAMESPACE):
            continue
        previous_end = node.lineno
        for member in node.body:
            first = member.lineno - 1
            while first > previous_end and lines[first - 1].lstrip().startswith("#"):
                first -= 1
            name = _declared_name(member)
            if name is not None:
                declarations[name] = lines[first:member.end_lineno]
            previous_end = member.end_lineno
    return declarations


def retained_declarations(
    original: bytes, shapes: list[NamedShape], failed: Iterable[QueryRecord]
) -> list[list[str]]:
    """Previous declarations still named by the annotations of failed queries."""
    generated = {shape.name for shape in shapes}
    wanted = [
        name for name in dict.fromkeys(generated_name(record.annotation) for record in failed)
        if name is not None and name not in generated
    ]
    if not wanted:
        return []
    existing = existing_declarations(original)
    return [existing[name] for name in wanted if name in existing]


def build_inline_edit(
    file_path: str,
    original: bytes,
    shapes: list[NamedShape],
    failed: Iterable[QueryRecord] = (),
) -> FileEdit:
    """Annotate every inferred query and rebuild the generated block.

    Queries in ``failed`` keep their annotations untouched, so the
    declarations those annotations name are carried over from the old block.
    """
    edits = annotation_edits(original, shapes)
    content = apply_edits(original, edits)
    block = render_block(shapes, retained_declarations(original, shapes, failed))
    content = replace_block(content, block)
    return FileEdit(file_path=file_path, original=original, content=content, edits=tuple(edits))
