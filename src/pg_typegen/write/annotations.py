"""Merging generated names into existing ``sql[...]`` annotations.

Rules:
- no annotation: insert ``queries.Name``
- no top-level ``&``: replace the whole annotation
- ``A & B [& C ...]``: replace ``A`` only and keep the rest verbatim

The first member of an intersection is always replaced, even when it is not a
generated name, because a hand-written first member looks the same as a stale
generated one. ``{"col": str} & Other`` becomes ``queries.Name & Other``.
"""
from __future__ import annotations

GENERATED_NAMESPACE = "queries"

_OPENERS = {"(": ")", "[": "]", "{": "}"}
_CLOSERS = set(_OPENERS.values())


def generated_reference(name: str) -> str:
    return f"{GENERATED_NAMESPACE}.{name}"


def intersection_offsets(annotation: str) -> list[int]:
    """Indices of ``&`` characters outside brackets and string literals."""
    offsets = []
    depth = 0
    quote: str | None = None
    escaped = False
    for i, ch in enumerate(annotation):
        if quote:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == quote:
                quote = None
            continue
        if ch in ("'", '"'):
            quote = ch
        elif ch in _OPENERS:
            depth += 1
        elif ch in _CLOSERS:
            depth = max(depth - 1, 0)
        elif ch == "&" and depth == 0:
            offsets.append(i)
    return offsets


def generated_name(annotation: str | None) -> str | None:
    """``queries.Name & Other`` -> ``Name``; None when the first member isn't generated."""
    if not annotation:
        return None
    offsets = intersection_offsets(annotation)
    head = (annotation[:offsets[0]] if offsets else annotation).strip()
    prefix = f"{GENERATED_NAMESPACE}."
    if not head.startswith(prefix):
        return None
    name = head[len(prefix):]
    return name if name.isidentifier() else None


def merge_annotation(existing: str | None, name: str) -> str:
    """New annotation text for a query whose shape is called ``name``."""
    reference = generated_reference(name)
    if existing is None or not existing.strip():
        return reference

    offsets = intersection_offsets(existing)
    if not offsets:
        return reference
    return f"{reference} {existing[offsets[0]:]}"


def quote_annotation(text: str) -> str:
    """Python string literal for an annotation, preferring double quotes."""
    if "\\" not in text and "\n" not in text:
        if '"' not in text:
            return f'"{text}"'
        if "'" not in text:
            return f"'{text}'"
    return repr(text)
