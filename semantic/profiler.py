"""
Column profiling for tables the user loads.

A profile is one `SUMMARIZE` pass over the table plus a best-effort
frequency query for low-cardinality columns. The profiler does not store
anything; callers hand the result to the metadata cache.
"""

import logging
from typing import Any, Dict, List, Optional

from semantic.sanitizer import sanitize_value
from semantic.types import ColumnMetadata

logger = logging.getLogger(__name__)

NUMERIC_TYPES = ("INTEGER", "BIGINT", "DOUBLE", "DECIMAL", "FLOAT",
                 "HUGEINT", "SMALLINT", "TINYINT", "REAL")
DATE_TYPES = ("DATE", "TIMESTAMP")


def quote_identifier(name: str) -> str:
    return '"' + str(name).replace('"', '""') + '"'


def classify_type(column_type: Optional[str]) -> str:
    """Map an engine type string to numeric, date, boolean or string."""
    upper = (column_type or "").upper()
    if "BOOLEAN" in upper:
        return "boolean"
    if any(t in upper for t in DATE_TYPES):
        return "date"
    if any(t in upper for t in NUMERIC_TYPES):
        return "numeric"
    return "string"


def _to_float(value: Any) -> Optional[float]:
    if value is None:
        return None
    if isinstance(value, str):
        value = value.strip().rstrip("%")
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


class TableProfiler:
    def __init__(self, top_values_max_distinct: int = 20, top_values_limit: int = 10):
        self.top_values_max_distinct = top_values_max_distinct
        self.top_values_limit = top_values_limit

    def profile(self, source, table_name: str) -> List[ColumnMetadata]:
        """
        Profile every column of `table_name`.

        `source` is anything with `fetch_rows(sql) -> list[dict]`. A failing
        summary query propagates; failing top-value queries are logged and
        the column is kept without them.
        """
        summary = source.fetch_rows(f"SUMMARIZE SELECT * FROM {quote_identifier(table_name)}")

        columns = []
        for row in summary:
            columns.append(self._profile_column(source, table_name, row))
        logger.info(f"Profiled {len(columns)} columns of {table_name}")
        return columns

    def _profile_column(self, source, table_name: str, row: Dict[str, Any]) -> ColumnMetadata:
        column_type = row.get("column_type") or ""
        type_class = classify_type(column_type)

        approx_unique = row.get("approx_unique")
        null_pct = _to_float(row.get("null_percentage"))

        col = ColumnMetadata(
            table_name=table_name,
            column_name=row["column_name"],
            column_type=column_type,
            type_class=type_class,
            is_numeric=type_class == "numeric",
            is_date=type_class == "date",
            is_boolean=type_class == "boolean",
            approx_distinct=int(approx_unique) if approx_unique is not None else None,
            null_ratio=(null_pct / 100.0) if null_pct is not None else 0.0,
        )

        if col.is_numeric and row.get("min") is not None and row.get("max") is not None:
            col.min = _to_float(row["min"])
            col.max = _to_float(row["max"])
            col.mean = _to_float(row.get("avg"))

        if col.approx_distinct and col.approx_distinct <= self.top_values_max_distinct:
            col.top_values = self._top_values(source, table_name, col.column_name)

        return col

    def _top_values(self, source, table_name: str, column_name: str) -> Optional[List[Dict[str, Any]]]:
        column = quote_identifier(column_name)
        sql = (
            f"SELECT {column} AS value, COUNT(*) AS count\n"
            f"FROM {quote_identifier(table_name)}\n"
            f"WHERE {column} IS NOT NULL\n"
            f"GROUP BY {column}\n"
            f"ORDER BY count DESC\n"
            f"LIMIT {int(self.top_values_limit)}"
        )
        try:
            rows = source.fetch_rows(sql)
        except Exception as e:
            logger.warning(f"Failed to get top values for {table_name}.{column_name}: {e}")
            return None
        return [
            {"value": sanitize_value(r["value"]), "count": sanitize_value(r["count"])}
            for r in rows
        ]
