"""Finding ``sql(...)`` calls in Python source.

A deliberately shallow structural scan over the ``ast``, bounded to one call
pattern:

    sql("select ...")
    sql["queries.Foo & Extra"]("select ...")
    db.sql(f"select ... where id = {user_id}")

The callee is the name ``sql`` or any attribute named ``sql``, optionally
subscripted with a type annotation. The first positional argument must be a
string literal or an f-string; interpolations in an f-string become the
positional parameters ``$1``, ``$2``... in order. Anything else (variables,
``%`` formatting, concatenation with names) is not recognised.
"""
from __future__ import annotations
import ast
from dataclasses import dataclass

from pg_typegen.models import QueryRecord, TagKind

CALLEE_NAME = "sql"


@dataclass(frozen=True)
class SqlCall:
    """Raw match, before it is turned into a QueryRecord."""
    call: ast.Call
    callee: ast.expr  # the ``sql`` / ``x.sql`` expression, without subscript
    annotation: ast.expr | None
    argument: ast.expr


class _LineOffsets:
    """Converts ast (line, byte column) positions to absolute byte offsets."""

    def __init__(self, content: bytes):
        self.starts = [0]
        for i, byte in enumerate(content):
            if byte == 0x0A:
                self.starts.append(i + 1)

    def offset(self, lineno: int, col_offset: int) -> int:
        return self.starts[lineno - 1] + col_offset

    def span(self, node: ast.AST) -> tuple[int, int]:
        return (
            self.offset(node.lineno, node.col_offset),
            self.offset(node.end_lineno, node.end_col_offset),
        )


def _is_sql_callee(node: ast.expr) -> bool:
    if isinstance(node, ast.Name):
        return node.id == CALLEE_NAME
    if isinstance(node, ast.Attribute):
        return node.attr == CALLEE_NAME
    return False


def match_sql_call(node: ast.AST) -> SqlCall | None:
    if not isinstance(node, ast.Call) or not node.args:
        return None

    func = node.func
    annotation = None
    if isinstance(func, ast.Subscript):
        annotation = func.slice
        func = func.value
    if not _is_sql_callee(func):
        return None

    argument = node.args[0]
    if isinstance(argument, ast.Constant) and isinstance(argument.value, str):
        return SqlCall(node, func, annotation, argument)
    if isinstance(argument, ast.JoinedStr):
        return SqlCall(node, func, annotation, argument)
    return None


def sql_text(argument: ast.expr) -> tuple[str, int | None]:
    """SQL text of the argument and its interpolation count.

    Plain strings report None: their parameters, if any, are written as
    ``$n`` by hand and passed separately.
    """
    if isinstance(argument, ast.Constant):
        return argument.value, None

    parts = []
    count = 0
    for value in argument.values:
        if isinstance(value, ast.Constant):
            parts.append(value.value)
        else:
            count += 1
            parts.append(f"${count}")
    return "".join(parts), count


def find_sql_calls(file_path: str, content: bytes, tree: ast.Module | None = None) -> list[QueryRecord]:
    """QueryRecords for every recognised call, in source order.

    Raises:
        SyntaxError: The file is not valid Python
        UnicodeDecodeError: The file is not UTF-8
    """
    source = content.decode("utf-8")
    if tree is None:
        tree = ast.parse(source, filename=file_path)
    offsets = _LineOffsets(content)

    matches = [m for m in (match_sql_call(node) for node in ast.walk(tree)) if m is not None]
    matches.sort(key=lambda m: (m.call.lineno, m.call.col_offset))

    records = []
    for match in matches:
        sql, param_count = sql_text(match.argument)
        start, end = offsets.span(match.call)

        annotation_text = None
        annotation_span = None
        insert_offset = None
        if match.annotation is not None:
            annotation_span = offsets.span(match.annotation)
            if isinstance(match.annotation, ast.Constant) and isinstance(match.annotation.value, str):
                annotation_text = match.annotation.value
            else:
                annotation_text = ast.get_source_segment(source, match.annotation)
        else:
            insert_offset = offsets.span(match.callee)[1]

        records.append(QueryRecord(
            file_path=file_path,
            start_offset=start,
            end_offset=end,
            line=match.call.lineno,
            column=match.call.col_offset + 1,
            sql=sql,
            tag_kind=TagKind.INLINE,
            annotation=annotation_text,
            annotation_span=annotation_span,
            insert_offset=insert_offset,
            param_count=param_count,
        ))
    return records
