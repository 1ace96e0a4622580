"""Shallow structural analysis of a single SQL statement using sqlparse.

This is deliberately not a SQL parser. It recognises the projection list of a
SELECT (or the RETURNING list of INSERT/UPDATE/DELETE), the relations named in
FROM/JOIN with their aliases and outer-join sides, CTE names and set
operations. Anything it cannot recognise is reported as a plain expression,
which downstream code treats as "no provenance, nullable".
"""
from __future__ import annotations
import logging
from dataclasses import dataclass, field

import sqlparse
from sqlparse import sql as S
from sqlparse import tokens as T

from pg_typegen.models import ExpressionKind

logger = logging.getLogger(__name__)

AGGREGATE_FUNCTIONS = {
    "sum", "avg", "min", "max", "count", "array_agg", "string_agg", "json_agg",
    "jsonb_agg", "json_object_agg", "jsonb_object_agg", "bool_and", "bool_or",
    "every", "bit_and", "bit_or", "stddev", "variance", "xmlagg",
}

# Keywords that end a FROM clause or a projection list
CLAUSE_TERMINATORS = (
    "GROUP BY", "ORDER BY", "LIMIT", "OFFSET", "HAVING", "FOR", "WINDOW",
    "FETCH", "RETURNING", "INTO", "UNION", "UNION ALL", "INTERSECT", "EXCEPT",
)

SET_OPERATIONS = ("UNION", "UNION ALL", "INTERSECT", "EXCEPT")

# GROUP BY forms whose super-aggregate rows return NULL for grouped columns
GROUPING_SET_KEYWORDS = ("ROLLUP", "CUBE", "GROUPING SETS")

NAME_TTYPES = (T.Name, T.Literal.String.Symbol)


@dataclass(frozen=True)
class Relation:
    """A FROM/JOIN item."""
    name: str  # table name, or alias for derived tables
    schema: str | None = None
    alias: str | None = None
    physical: bool = True  # False for subqueries, functions and CTE references
    nullable: bool = False  # on the nullable side of an outer join

    @property
    def ref_name(self) -> str:
        return self.alias or self.name


@dataclass(frozen=True)
class Projection:
    """One item of the projection (or RETURNING) list."""
    kind: ExpressionKind
    alias: str | None = None
    table_ref: str | None = None  # qualifier of a column reference or t.*
    column: str | None = None
    function: str | None = None

    @property
    def output_name(self) -> str | None:
        return self.alias or self.column


@dataclass
class StatementAnalysis:
    statement_type: str = "UNKNOWN"
    relations: list[Relation] = field(default_factory=list)
    projections: list[Projection] = field(default_factory=list)
    cte_names: set[str] = field(default_factory=set)
    set_operation: bool = False
    grouping_sets: bool = False

    def find_relation(self, ref: str) -> Relation | None:
        for rel in self.relations:
            if rel.ref_name == ref:
                return rel
        for rel in self.relations:
            if rel.alias is None and rel.name == ref:
                return rel
        return None


def normalize_identifier(raw: str) -> str:
    """Postgres folding: unquoted names are lower-cased, quoted names kept."""
    if len(raw) >= 2 and raw.startswith('"') and raw.endswith('"'):
        return raw[1:-1].replace('""', '"')
    return raw.lower()


def analyze_statement(sql_text: str) -> StatementAnalysis:
    """Analyse the first statement in ``sql_text``.

    Never raises: unparsable input yields an empty analysis.
    """
    try:
        statements = [s for s in sqlparse.parse(sql_text) if str(s).strip()]
    except Exception as e:
        logger.debug(f"sqlparse failed: {e}")
        return StatementAnalysis()

    if not statements:
        return StatementAnalysis()

    stmt = statements[0]
    tokens = _meaningful(stmt.tokens)
    analysis = StatementAnalysis()

    dml_index = _collect_ctes(tokens, analysis)
    if dml_index is None:
        return analysis

    analysis.statement_type = tokens[dml_index].normalized
    body = tokens[dml_index + 1:]
    analysis.set_operation = any(
        tok.ttype in T.Keyword and tok.normalized in SET_OPERATIONS for tok in body
    )

    if analysis.statement_type == "SELECT":
        _analyze_select(body, analysis)
    elif analysis.statement_type in ("INSERT", "UPDATE", "DELETE"):
        _analyze_returning(analysis.statement_type, body, analysis)

    return analysis


def _meaningful(tokens) -> list:
    return [t for t in tokens if not t.is_whitespace and t.ttype not in T.Comment and not isinstance(t, S.Comment)]


def _collect_ctes(tokens: list, analysis: StatementAnalysis) -> int | None:
    """Record CTE names and return the index of the main DML keyword."""
    in_with = False
    for i, tok in enumerate(tokens):
        if tok.ttype in T.Keyword.CTE:
            in_with = True
            continue
        if tok.ttype in T.Keyword.DML:
            return i
        if in_with:
            for item in _expand_lists([tok]):
                if isinstance(item, S.Identifier):
                    first = _name_tokens(list(item.flatten()))
                    if first:
                        analysis.cte_names.add(normalize_identifier(first[0]))
    return None


def _expand_lists(tokens) -> list:
    """Inline IdentifierList children so commas appear at one level."""
    out = []
    for tok in tokens:
        if isinstance(tok, S.IdentifierList):
            out.extend(_expand_lists(_meaningful(tok.tokens)))
        else:
            out.append(tok)
    return out


def _split_on_commas(tokens) -> list[list]:
    items: list[list] = [[]]
    for tok in _expand_lists(tokens):
        if tok.ttype in T.Punctuation and tok.value == ",":
            items.append([])
        else:
            items[-1].append(tok)
    return [item for item in items if item]


def _is_terminator(tok) -> bool:
    if isinstance(tok, S.Where):
        return True
    if tok.ttype in T.Punctuation and tok.value == ";":
        return True
    return tok.ttype in T.Keyword and tok.normalized in CLAUSE_TERMINATORS


def _analyze_select(body: list, analysis: StatementAnalysis) -> None:
    projection_tokens = []
    rest: list = []
    for i, tok in enumerate(body):
        if tok.ttype in T.Keyword and tok.normalized == "FROM":
            rest = body[i + 1:]
            break
        if _is_terminator(tok):
            break
        projection_tokens.append(tok)

    projection_tokens = _strip_distinct(projection_tokens)
    analysis.projections = [_classify_projection(item) for item in _split_on_commas(projection_tokens)]
    analysis.relations = _parse_from(rest, analysis.cte_names)
    analysis.grouping_sets = _uses_grouping_sets(rest)


def _uses_grouping_sets(tokens: list) -> bool:
    """True when a GROUP BY clause uses ROLLUP, CUBE or GROUPING SETS."""
    words = [
        " ".join(leaf.value.upper().split())
        for tok in tokens
        for leaf in (tok.flatten() if tok.is_group else [tok])
        if not leaf.is_whitespace and leaf.ttype not in T.Comment
    ]
    if "GROUP BY" not in words:
        return False
    grouped = words[words.index("GROUP BY") + 1:]
    pairs = [f"{a} {b}" for a, b in zip(grouped, grouped[1:])]
    return any(word in GROUPING_SET_KEYWORDS for word in grouped + pairs)


def _strip_distinct(tokens: list) -> list:
    if tokens and tokens[0].ttype in T.Keyword and tokens[0].normalized in ("ALL", "DISTINCT"):
        distinct = tokens[0].normalized == "DISTINCT"
        tokens = tokens[1:]
        if distinct and tokens and tokens[0].ttype in T.Keyword and tokens[0].normalized == "ON":
            tokens = tokens[1:]
            if tokens and isinstance(tokens[0], S.Parenthesis):
                tokens = tokens[1:]
    return tokens


def _analyze_returning(statement_type: str, body: list, analysis: StatementAnalysis) -> None:
    target = None
    returning: list | None = None

    for i, tok in enumerate(body):
        if tok.ttype in T.Keyword and tok.normalized == "RETURNING":
            returning = body[i + 1:]
            break
        if isinstance(tok, S.Where):
            inner = _meaningful(tok.tokens)
            for j, sub in enumerate(inner):
                if sub.ttype in T.Keyword and sub.normalized == "RETURNING":
                    returning = inner[j + 1:]
                    break
            if returning is not None:
                break

    keyword = {"INSERT": "INTO", "DELETE": "FROM"}.get(statement_type)
    for i, tok in enumerate(body):
        if keyword is None or (tok.ttype in T.Keyword and tok.normalized == keyword):
            candidates = body[i:] if keyword is None else body[i + 1:]
            for cand in candidates:
                if isinstance(cand, (S.Identifier, S.Function)) or cand.ttype in NAME_TTYPES:
                    target = _target_relation(cand)
                    break
            break

    if target is not None:
        analysis.relations = [target]
    if returning is not None:
        items = [t for t in returning if not _is_terminator(t)]
        analysis.projections = [_classify_projection(item) for item in _split_on_commas(items)]


def _parse_from(tokens: list, cte_names: set[str]) -> list[Relation]:
    relations: list[Relation] = []
    expecting = True
    pending_side: str | None = None

    for tok in tokens:
        if _is_terminator(tok):
            break
        if tok.ttype in T.Keyword:
            word = tok.normalized
            if word.endswith("JOIN"):
                expecting = True
                pending_side = word
                continue
            if word in ("ON", "USING"):
                expecting = False
                continue
            if word in ("LATERAL", "ONLY"):
                continue
        if tok.ttype in T.Punctuation and tok.value == ",":
            expecting = True
            pending_side = None
            continue
        if not expecting:
            continue

        for item in _split_on_commas([tok]):
            relation = _relation_from_tokens(item, cte_names)
            if relation is None:
                continue
            if pending_side and ("RIGHT" in pending_side or "FULL" in pending_side):
                relations = [_as_nullable(r) for r in relations]
            if pending_side and ("LEFT" in pending_side or "FULL" in pending_side):
                relation = _as_nullable(relation)
            relations.append(relation)
        expecting = False
        pending_side = None

    return relations


def _as_nullable(rel: Relation) -> Relation:
    return Relation(name=rel.name, schema=rel.schema, alias=rel.alias, physical=rel.physical, nullable=True)


def _relation_from_tokens(item: list, cte_names: set[str]) -> Relation | None:
    if len(item) == 1:
        return _relation_from_token(item[0], cte_names)
    # Ungrouped "name alias" or "(subquery) alias"
    flat = [t for tok in item for t in (tok.flatten() if tok.is_group else [tok])]
    return _relation_from_flat(flat, item, cte_names)


def _relation_from_token(tok, cte_names: set[str]) -> Relation | None:
    flat = list(tok.flatten()) if tok.is_group else [tok]
    return _relation_from_flat(flat, [tok], cte_names)


def _relation_from_flat(flat: list, groups: list, cte_names: set[str]) -> Relation | None:
    derived = any(_contains_group(g, (S.Parenthesis, S.Function)) for g in groups)
    expr, alias = _split_alias(flat)
    alias_name = normalize_identifier(alias) if alias else None

    if derived:
        if alias_name is None:
            return None
        return Relation(name=alias_name, alias=alias_name, physical=False)

    parts = _qualified_name(expr)
    if parts is None:
        return None
    schema, name = (parts[-2], parts[-1]) if len(parts) >= 2 else (None, parts[0])
    physical = not (schema is None and name in cte_names)
    return Relation(name=name, schema=schema, alias=alias_name, physical=physical)


def _contains_group(tok, classes) -> bool:
    if isinstance(tok, classes):
        return True
    if tok.is_group:
        return any(_contains_group(child, classes) for child in tok.tokens)
    return False


def _name_tokens(flat: list) -> list[str]:
    return [t.value for t in flat if t.ttype in NAME_TTYPES or (t.ttype in T.Keyword and not t.is_whitespace)]


def _significant(flat: list) -> list:
    return [t for t in flat if not t.is_whitespace and t.ttype not in T.Comment]


def _is_name(tok) -> bool:
    if tok.ttype in NAME_TTYPES:
        return True
    # Unreserved keywords are valid column names (e.g. "name", "type", "value")
    return tok.ttype in T.Keyword and tok.normalized not in ("NULL", "TRUE", "FALSE", "AS")


def _split_alias(flat: list) -> tuple[list, str | None]:
    """Split trailing ``[AS] alias`` off a flattened token list."""
    sig = _significant(flat)
    if len(sig) >= 3 and sig[-2].ttype in T.Keyword and sig[-2].normalized == "AS" and _is_name(sig[-1]):
        return sig[:-2], sig[-1].value
    if len(sig) >= 2 and _is_name(sig[-1]):
        prev = sig[-2]
        # implicit alias: "expr alias", never after an operator or punctuation
        separated = any(t.is_whitespace for t in flat[flat.index(prev):flat.index(sig[-1])])
        if separated and (prev.ttype in NAME_TTYPES or prev.ttype in T.Literal or
                          (prev.ttype in T.Punctuation and prev.value in (")", "]"))):
            return sig[:-1], sig[-1].value
    return sig, None


def _qualified_name(sig: list) -> list[str] | None:
    """``a`` / ``a.b`` / ``a.b.c`` as normalized parts, else None."""
    if not sig or len(sig) % 2 == 0:
        return None
    parts = []
    for i, tok in enumerate(sig):
        if i % 2 == 0:
            if not _is_name(tok):
                return None
            parts.append(normalize_identifier(tok.value))
        elif not (tok.ttype in T.Punctuation and tok.value == "."):
            return None
    return parts


def _is_literal(tok) -> bool:
    if tok.ttype in T.Literal.Number or tok.ttype in T.Literal.String.Single:
        return True
    return tok.ttype in T.Keyword and tok.normalized in ("TRUE", "FALSE")


def _is_null(tok) -> bool:
    return tok.ttype in T.Keyword and tok.normalized == "NULL"


def _strip_cast(sig: list) -> tuple[list, bool]:
    """Remove a trailing ``::type`` (with optional ``[]``) cast."""
    for i, tok in enumerate(sig):
        if tok.ttype in T.Punctuation and tok.value == "::":
            type_tokens = sig[i + 1:]
            if type_tokens and all(
                _is_name(t) or t.ttype in T.Name.Builtin or (t.ttype in T.Punctuation and t.value in "[]")
                for t in type_tokens
            ):
                return sig[:i], True
            return sig, False
    return sig, False


def _classify_projection(item: list) -> Projection:
    flat = [t for tok in item for t in (tok.flatten() if tok.is_group else [tok])]
    expr, alias = _split_alias(flat)
    alias_name = normalize_identifier(alias) if alias else None

    if len(expr) == 1 and expr[0].ttype in T.Wildcard:
        return Projection(kind=ExpressionKind.STAR)
    if len(expr) == 3 and expr[2].ttype in T.Wildcard and expr[1].value == ".":
        if _is_name(expr[0]):
            return Projection(kind=ExpressionKind.STAR, table_ref=normalize_identifier(expr[0].value))

    uncast, cast = _strip_cast(expr)
    if len(uncast) == 2 and uncast[0].ttype in T.Operator and uncast[0].value in "+-" \
            and uncast[1].ttype in T.Literal.Number:
        uncast = uncast[1:]
    if len(uncast) == 1 and _is_literal(uncast[0]):
        return Projection(kind=ExpressionKind.LITERAL, alias=alias_name)
    if len(uncast) == 1 and _is_null(uncast[0]):
        return Projection(kind=ExpressionKind.NULL, alias=alias_name)

    if not cast:
        parts = _qualified_name(expr)
        if parts is not None and len(parts) <= 3:
            table_ref = parts[-2] if len(parts) >= 2 else None
            return Projection(
                kind=ExpressionKind.COLUMN,
                alias=alias_name,
                table_ref=table_ref,
                column=parts[-1],
            )

    if len(expr) >= 3 and _is_name(expr[0]) and expr[1].ttype in T.Punctuation and expr[1].value == "(" \
            and expr[-1].ttype in T.Punctuation and expr[-1].value == ")":
        function = normalize_identifier(expr[0].value)
        kind = ExpressionKind.AGGREGATE if function in AGGREGATE_FUNCTIONS else ExpressionKind.FUNCTION
        return Projection(kind=kind, alias=alias_name, function=function)

    return Projection(kind=ExpressionKind.EXPRESSION, alias=alias_name)


def _target_relation(tok) -> Relation | None:
    """The table of ``INSERT INTO t (a, b)`` / ``UPDATE t`` / ``DELETE FROM t``."""
    flat = list(tok.flatten()) if tok.is_group else [tok]
    head = []
    for t in flat:
        if t.ttype in T.Punctuation and t.value == "(":
            break
        head.append(t)
    expr, alias = _split_alias(head)
    parts = _qualified_name(expr)
    if parts is None:
        return None
    schema, name = (parts[-2], parts[-1]) if len(parts) >= 2 else (None, parts[0])
    return Relation(name=name, schema=schema, alias=normalize_identifier(alias) if alias else None)
