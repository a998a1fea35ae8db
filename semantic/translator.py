"""
Query translation: SQL text rewriting, spec validation and hierarchy completion.

The text path is deliberately narrow. It understands a single SELECT with
single-level aggregation calls and simple trailing clauses, which is what
users type into the pivot report box. It is not a SQL parser.
"""

import re
import logging
from typing import List, Mapping, Optional, Sequence, Tuple

from semantic.errors import ValidationError
from semantic.schema import DEFAULT_HIERARCHIES, SchemaModel, SchemaRegistry
from semantic.types import QuerySpec, RewriteResult, TranslatedQuery

logger = logging.getLogger(__name__)

AGGREGATIONS = ("SUM", "AVG", "COUNT", "MAX", "MIN", "ANY_VALUE")

_SELECT_RE = re.compile(r"\bSELECT\s+", re.IGNORECASE)
_FROM_RE = re.compile(r"\bFROM\b", re.IGNORECASE)
_FROM_TABLE_RE = re.compile(r"\bFROM\s+([A-Za-z_][\w.]*)", re.IGNORECASE)
_GROUP_BY_RE = re.compile(r"\bGROUP\s+BY\b", re.IGNORECASE)
_GROUP_BY_END_RE = re.compile(r"\bORDER\s+BY\b|\bLIMIT\b|;", re.IGNORECASE)
_ORDER_BY_RE = re.compile(r"\bORDER\s+BY\b", re.IGNORECASE)
_ORDER_BY_END_RE = re.compile(r"\bLIMIT\b|;", re.IGNORECASE)
_LIMIT_RE = re.compile(r"\bLIMIT\s+\d+(?:\s+OFFSET\s+\d+)?", re.IGNORECASE)
_ALIAS_RE = re.compile(r"\s+AS\s+(\w+|\"[^\"]+\")$", re.IGNORECASE)
_AGG_WRAPPER_RE = re.compile(r"^(?:%s)\s*\((.*)\)$" % "|".join(AGGREGATIONS), re.IGNORECASE | re.DOTALL)
_AGG_CALL_RE = re.compile(r"\b(?:%s)\s*\(" % "|".join(AGGREGATIONS), re.IGNORECASE)
_DISTINCT_RE = re.compile(r"^DISTINCT\s+", re.IGNORECASE)
_TABLE_PREFIX_RE = re.compile(r"^[A-Za-z_]\w*\.([A-Za-z_]\w*)$")

WARN_GROUP_BY = "Removed GROUP BY - the pivot handles grouping"
WARN_LIMIT = "Removed LIMIT - fetching all data"
WARN_AGGREGATIONS = "Removed aggregations - the pivot handles aggregation"
WARN_ORDER_BY = "Removed ORDER BY - it referenced aggregated columns"


def _top_level_mask(text: str) -> List[bool]:
    """For each character, True when it sits outside parentheses and quotes."""
    mask = []
    depth = 0
    quote = None
    for ch in text:
        if quote:
            mask.append(False)
            if ch == quote:
                quote = None
            continue
        if ch in ("'", '"'):
            quote = ch
            mask.append(False)
            continue
        if ch == "(":
            mask.append(depth == 0)
            depth += 1
            continue
        if ch == ")":
            depth = max(depth - 1, 0)
        mask.append(depth == 0)
    return mask


def _find_top_level(pattern: re.Pattern, text: str, start: int = 0,
                    mask: Optional[List[bool]] = None) -> Optional[re.Match]:
    mask = mask if mask is not None else _top_level_mask(text)
    for match in pattern.finditer(text, start):
        if mask[match.start()]:
            return match
    return None


def _select_span(sql: str) -> Optional[Tuple[int, int]]:
    """Character span of the outer SELECT list, or None."""
    mask = _top_level_mask(sql)
    select = _find_top_level(_SELECT_RE, sql, mask=mask)
    if not select:
        return None
    from_match = _find_top_level(_FROM_RE, sql, select.end(), mask=mask)
    if not from_match:
        return None
    return select.end(), from_match.start()


def split_top_level(clause: str) -> List[str]:
    """Split on commas that are not inside parentheses or quotes."""
    parts = []
    mask = _top_level_mask(clause)
    current = []
    for ch, top in zip(clause, mask):
        if ch == "," and top:
            parts.append("".join(current))
            current = []
        else:
            current.append(ch)
    parts.append("".join(current))
    return [p.strip() for p in parts if p.strip()]


def _strip_alias(expr: str) -> Tuple[str, Optional[str]]:
    match = _ALIAS_RE.search(expr)
    if not match:
        return expr, None
    return expr[:match.start()].strip(), match.group(1).strip('"')


def _strip_aggregation(expr: str) -> str:
    match = _AGG_WRAPPER_RE.match(expr)
    if not match:
        return expr
    inner = match.group(1)
    depth = 0
    for ch in inner:
        depth += (ch == "(") - (ch == ")")
        if depth < 0:
            # SUM(a) + SUM(b): the outer parens are not one call
            return expr
    return _DISTINCT_RE.sub("", inner.strip())


def _cut(sql: str, start: int, end: int) -> str:
    head = sql[:start].rstrip()
    tail = sql[end:].lstrip()
    if not tail:
        return head
    if tail.startswith(";"):
        return head + tail
    return head + " " + tail


def extract_columns(sql: str) -> List[str]:
    """
    Raw column references from the outer SELECT list.

    Aliases, a leading DISTINCT, one wrapping aggregation call and table
    prefixes are stripped; `*` is dropped.

    >>> extract_columns("SELECT SUM(revenue) AS total_rev, country FROM t")
    ['revenue', 'country']
    """
    span = _select_span(sql)
    if not span:
        return []

    select_list = _DISTINCT_RE.sub("", sql[span[0]:span[1]].strip())
    columns = []
    for item in split_top_level(select_list):
        expr, _ = _strip_alias(item)
        expr = _strip_aggregation(expr.strip())
        prefixed = _TABLE_PREFIX_RE.match(expr)
        if prefixed:
            expr = prefixed.group(1)
        if expr and expr != "*":
            columns.append(expr)
    return columns


def rewrite_for_presentation(sql: str) -> RewriteResult:
    """
    Remove the parts of a query the pivot re-does itself.

    GROUP BY (with any HAVING) and LIMIT are cut, aggregation wrappers and
    aliases are stripped from the SELECT list, and an ORDER BY that refers
    to a stripped alias or aggregate is dropped. One warning per kind of
    removal. Running it on its own output is a no-op.
    """
    columns = extract_columns(sql)
    warnings: List[str] = []
    result = sql.strip()

    group_by = _find_top_level(_GROUP_BY_RE, result)
    if group_by:
        end_match = _find_top_level(_GROUP_BY_END_RE, result, group_by.end())
        end = end_match.start() if end_match else len(result)
        result = _cut(result, group_by.start(), end)
        warnings.append(WARN_GROUP_BY)

    limit = _find_top_level(_LIMIT_RE, result)
    if limit:
        result = _cut(result, limit.start(), limit.end())
        warnings.append(WARN_LIMIT)

    span = _select_span(result)
    if span and _AGG_CALL_RE.search(result[span[0]:span[1]]):
        removed_aliases = []
        cleaned = []
        stripped = False
        for item in split_top_level(result[span[0]:span[1]]):
            expr, alias = _strip_alias(item)
            if alias:
                removed_aliases.append(alias)
            bare = _strip_aggregation(expr.strip())
            stripped = stripped or bare != expr.strip()
            cleaned.append(bare)
        # COUNT(*) leaves a bare star that would widen the SELECT
        kept = [c for c in cleaned if c != "*"] or ["*"]
        if kept != split_top_level(result[span[0]:span[1]]):
            result = result[:span[0]] + ", ".join(kept) + " " + result[span[1]:].lstrip()
            if stripped:
                warnings.append(WARN_AGGREGATIONS)

        order_by = _find_top_level(_ORDER_BY_RE, result)
        if order_by:
            end_match = _find_top_level(_ORDER_BY_END_RE, result, order_by.end())
            end = end_match.start() if end_match else len(result)
            clause = result[order_by.end():end]
            refers_alias = any(re.search(r"\b%s\b" % re.escape(a), clause) for a in removed_aliases)
            if refers_alias or _AGG_CALL_RE.search(clause):
                result = _cut(result, order_by.start(), end)
                warnings.append(WARN_ORDER_BY)

    return RewriteResult(sql=result.strip(), warnings=warnings, columns=columns)


def complete_hierarchies(fields: Sequence[str],
                         hierarchies: Optional[Mapping[str, Sequence[str]]] = None
                         ) -> Tuple[List[str], List[str]]:
    """
    Append the missing members of every hierarchy group that is partly present.

    Returns the completed field list (original order, additions at the end in
    group order) and one warning per added field.
    """
    groups = hierarchies if hierarchies is not None else DEFAULT_HIERARCHIES
    result = list(fields)
    warnings = []
    for group_name, members in groups.items():
        if not any(member in fields for member in members):
            continue
        for member in members:
            if member not in result:
                result.append(member)
                warnings.append(f"Auto-added hierarchy field: {member} ({group_name})")
                logger.debug(f"Auto-added hierarchy field {member} ({group_name})")
    return result, warnings


def validate(spec: QuerySpec, model: SchemaModel) -> None:
    """Raise ValidationError unless every named field exists in `model`."""
    if not spec.measures:
        raise ValidationError(
            "measures", "measure", model.measure_names(), unknown=[],
            message=f"A query on '{model.key}' needs at least one measure. "
                    f"Available measures: {', '.join(model.measure_names())}",
        )

    unknown_dims = [d for d in spec.dimensions if d not in model.dimensions]
    unknown_measures = [m for m in spec.measures if m not in model.measures]
    if not unknown_dims and not unknown_measures:
        return

    if unknown_dims and not unknown_measures:
        kind, allowed = "dimension", model.dimension_names()
    elif unknown_measures and not unknown_dims:
        kind, allowed = "measure", model.measure_names()
    else:
        kind, allowed = "field", model.dimension_names() + model.measure_names()

    unknown = unknown_dims + unknown_measures
    if len(unknown) == 1:
        message = None
    else:
        described = [f"dimension '{d}'" for d in unknown_dims] + [f"measure '{m}'" for m in unknown_measures]
        message = (f"Unknown fields for '{model.key}': {', '.join(described)}. "
                   f"Available dimensions: {', '.join(model.dimension_names())}. "
                   f"Available measures: {', '.join(model.measure_names())}")
    raise ValidationError(unknown[0], kind, allowed, unknown=unknown, message=message)


def validate_columns(columns: Sequence[str], model: SchemaModel) -> Tuple[List[str], List[str]]:
    valid, invalid = [], []
    for column in columns:
        (valid if model.field_for_column(column) else invalid).append(column)
    return valid, invalid


class QueryTranslator:
    """Turns SQL text or a structured spec into executable, pivot-ready SQL."""

    def __init__(self, registry: SchemaRegistry,
                 hierarchies: Optional[Mapping[str, Sequence[str]]] = None):
        self.registry = registry
        self.hierarchies: Mapping[str, Sequence[str]] = (
            hierarchies if hierarchies is not None else registry.hierarchies
        )

    def validate(self, spec: QuerySpec) -> SchemaModel:
        """Resolve the spec's model and check every name against it."""
        model = self.registry.get(spec.table)
        validate(spec, model)
        return model

    def table_for_sql(self, sql: str) -> Optional[str]:
        """Name of the first table after the outer FROM, without schema prefix."""
        span = _select_span(sql)
        match = _FROM_TABLE_RE.search(sql, span[1] if span else 0)
        if not match:
            return None
        return match.group(1).split(".")[-1]

    def model_for_sql(self, sql: str) -> Optional[SchemaModel]:
        table = self.table_for_sql(sql)
        return self.registry.find_by_table(table) if table else None

    def translate_sql(self, sql: str) -> TranslatedQuery:
        columns = extract_columns(sql)
        if not columns:
            raise ValueError("No columns found in query")

        rewrite = rewrite_for_presentation(sql)
        completed, hierarchy_warnings = complete_hierarchies(columns, self.hierarchies)
        added = completed[len(columns):]

        result_sql = rewrite.sql
        if added:
            span = _select_span(result_sql)
            if span:
                select_list = result_sql[span[0]:span[1]].rstrip()
                result_sql = (result_sql[:span[0]] + select_list + ", " + ", ".join(added)
                              + " " + result_sql[span[1]:].lstrip())

        model = self.model_for_sql(sql)
        if model is not None:
            _, invalid = validate_columns(completed, model)
            if invalid:
                logger.warning(f"Columns not described by model '{model.key}': {', '.join(invalid)}")

        return TranslatedQuery(
            sql=result_sql.strip(),
            columns=completed,
            warnings=rewrite.warnings + hierarchy_warnings,
        )

    def translate_spec(self, spec: QuerySpec, limit: Optional[int] = None) -> TranslatedQuery:
        model = self.validate(spec)

        completed, hierarchy_warnings = complete_hierarchies(spec.dimensions, self.hierarchies)
        dimensions = list(spec.dimensions)
        warnings = []
        for name, warning in zip(completed[len(spec.dimensions):], hierarchy_warnings):
            if name in model.dimensions:
                dimensions.append(name)
                warnings.append(warning)
            else:
                warnings.append(f"Hierarchy field {name} is not part of '{model.key}'; drill-down is incomplete")

        completed_spec = QuerySpec(
            table=spec.table,
            measures=list(spec.measures),
            dimensions=dimensions,
            filters=list(spec.filters),
            explanation=spec.explanation,
        )
        return TranslatedQuery(
            sql=model.build_sql(completed_spec, limit=limit),
            columns=dimensions + list(spec.measures),
            warnings=warnings,
            spec=completed_spec,
        )
