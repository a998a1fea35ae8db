import re
import math
import logging
from typing import Any, Dict, List, Optional

from semantic.chart_detector import detect_chart_type, is_time_like
from semantic.sanitizer import sanitize_rows
from semantic.schema import SchemaModel
from semantic.types import ChartConfig, ChartOptions, QuerySpec

logger = logging.getLogger(__name__)

COLOR_PALETTE = [
    "#8884d8", "#82ca9d", "#ffc658", "#ff7c7c",
    "#8dd1e1", "#a4de6c", "#d0ed57", "#ffa07a",
]
INDEX_KEY = "index"
DEFAULT_FORMAT = {"type": "number", "decimals": 0}


def format_label(text: str) -> str:
    """'avg_ltv_30d' -> 'Avg LTV (30d)'"""
    label = text.replace("_", " ")
    label = re.sub(r"\b\w", lambda m: m.group(0).upper(), label)
    return label.replace("Ltv", "LTV").replace("30d", "(30d)")


def format_value(value: Any, fmt: Optional[Dict[str, Any]] = None) -> str:
    """Render a cell value the way the chart tooltips show it."""
    if value is None:
        return "N/A"
    if isinstance(value, str):
        try:
            number = float(value)
        except ValueError:
            return value
    else:
        number = value
    if not isinstance(number, (int, float)) or (isinstance(number, float) and math.isnan(number)):
        return str(value)

    if not fmt:
        if isinstance(number, int):
            return f"{number:,}"
        return f"{number:,.3f}".rstrip("0").rstrip(".")

    decimals = int(fmt.get("decimals") or 0)
    kind = fmt.get("type", "number")
    if kind == "currency":
        return f"${number:,.{decimals}f}"
    if kind == "percentage":
        return f"{number:.{decimals}f}%"
    return f"{number:,.{decimals}f}"


def chart_title(spec: QuerySpec) -> str:
    measures = " & ".join(format_label(m) for m in spec.measures)
    if spec.dimensions:
        return f"{measures} by {' by '.join(format_label(d) for d in spec.dimensions)}"
    return measures


def _series_key(value: Any) -> str:
    return "null" if value is None else str(value)


class ChartGenerator:
    """Builds widget-ready chart configs from a spec and its result rows."""

    def __init__(self, palette: Optional[List[str]] = None):
        self.palette = palette or COLOR_PALETTE

    def _pivot(self, rows: List[Dict[str, Any]], x_key: str, group_key: str, measure: str):
        series: List[str] = []
        buckets: Dict[Any, Dict[str, Any]] = {}
        for row in rows:
            x_value = row.get(x_key)
            group = _series_key(row.get(group_key))
            if group not in series:
                series.append(group)
            bucket = buckets.setdefault(x_value, {x_key: x_value})
            bucket[group] = row.get(measure)
        return list(buckets.values()), series

    def _totals(self, data, y_keys, formats) -> Dict[str, str]:
        """Series sums rendered for the legend."""
        totals = {}
        for key in y_keys:
            values = [row[key] for row in data
                      if isinstance(row.get(key), (int, float)) and not isinstance(row.get(key), bool)]
            totals[key] = format_value(sum(values), formats.get(key)) if values else format_value(None)
        return totals

    def generate(self, spec: QuerySpec, rows: List[Dict[str, Any]],
                 model: Optional[SchemaModel] = None, title: Optional[str] = None) -> ChartConfig:
        if not spec.measures:
            raise ValueError("A chart needs at least one measure")
        data = sanitize_rows(rows)
        detection = detect_chart_type(spec, model, data)

        dims = list(spec.dimensions)
        measures = list(spec.measures)
        formats: Dict[str, Dict[str, Any]] = {}

        if len(measures) == 1 and len(dims) >= 2:
            x_key = dims[0]
            data, y_keys = self._pivot(data, x_key, dims[1], measures[0])
            if not y_keys:
                y_keys = [measures[0]]
            measure_format = (model.measure_format(measures[0]) if model else None) or DEFAULT_FORMAT
            for key in y_keys:
                formats[key] = dict(measure_format)
        else:
            if dims:
                x_key = dims[0]
            else:
                x_key = INDEX_KEY
                data = [dict(row, **{INDEX_KEY: i}) for i, row in enumerate(data)]
            y_keys = measures
            for measure in y_keys:
                formats[measure] = (model.measure_format(measure) if model else None) or dict(DEFAULT_FORMAT)

        options = ChartOptions(
            colors=[self.palette[i % len(self.palette)] for i in range(len(y_keys))],
            stacked=detection.stacked,
            show_legend=len(y_keys) > 1,
            orientation=detection.orientation,
            is_time_series=x_key != INDEX_KEY and is_time_like(x_key, model),
            format=formats,
            totals=self._totals(data, y_keys, formats),
        )
        logger.debug(f"Chart {detection.type} for {spec.table}: {detection.reason}")
        return ChartConfig(
            type=detection.type,
            title=title or chart_title(spec),
            x_key=x_key,
            y_keys=list(y_keys),
            data=data,
            options=options,
        )
