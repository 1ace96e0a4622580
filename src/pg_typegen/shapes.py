"""Group inferred queries by shape and give each shape a stable name."""
from __future__ import annotations
import logging
import re
from pathlib import Path

from pg_typegen.models import InferredQuery, NamedShape, Shape, TagKind

logger = logging.getLogger(__name__)

FALLBACK_NAME = "Column"

_WORD_SPLIT = re.compile(r"[^0-9A-Za-z]+")


def to_pascal_case(text: str) -> str:
    """``test_table`` -> ``TestTable``, ``test-table1`` -> ``TestTable1``."""
    words = [w for w in _WORD_SPLIT.split(text) if w]
    name = "".join(w[0].upper() + w[1:] for w in words)
    if not name:
        return FALLBACK_NAME
    if name[0].isdigit():
        name = f"_{name}"
    return name


def usable_column_name(name: str) -> bool:
    """Whether a column name can contribute to a declaration name (``?column?`` can't)."""
    return name.isidentifier()


def base_name(query: InferredQuery) -> str:
    """Name derived from source tables, falling back to the sole column name."""
    if query.record.tag_kind == TagKind.SQL_FILE:
        return to_pascal_case(Path(query.record.file_path).stem)

    usable = [c.name for c in query.columns if usable_column_name(c.name)]
    sole_column = usable[0] if len(usable) == 1 else None

    if query.source_tables:
        name = "_".join(to_pascal_case(t) for t in query.source_tables)
        if sole_column and not any(c.source for c in query.columns):
            name = f"{name}_{sole_column}"
        return name

    if sole_column:
        return to_pascal_case(sole_column)
    return FALLBACK_NAME


def group_shapes(queries: list[InferredQuery]) -> list[NamedShape]:
    """Group one file's queries by structural shape, in source order.

    Colliding names get the line of their first query appended, then the
    column as well if the name is still taken.
    """
    groups: dict[Shape, list[InferredQuery]] = {}
    for query in sorted(queries, key=lambda q: q.record.start_offset):
        groups.setdefault(query.shape, []).append(query)

    taken: set[str] = set()
    named: list[NamedShape] = []
    for shape, members in groups.items():
        first = members[0]
        name = base_name(first)
        if name in taken:
            name = f"{name}_{first.record.line}"
        if name in taken:
            name = f"{name}_{first.record.column}"
        taken.add(name)
        named.append(NamedShape(name=name, shape=shape, columns=first.columns, queries=tuple(members)))

    if len(named) < len(queries):
        logger.debug(f"Grouped {len(queries)} queries into {len(named)} shapes")
    return named
