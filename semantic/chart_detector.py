"""
Pick a chart kind from the shape of a query.

Rules are evaluated top to bottom and the first match wins. Multi-dimension
queries with one measure always stay in the bar family because the
generator pivots them into one series per group.
"""

from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence

from semantic.schema import SchemaModel
from semantic.types import QuerySpec

FUNNEL_STAGES = ("awareness", "consideration", "trial", "activation", "retention")
NET_METRIC_TOKENS = ("net_", "change", "delta", "growth")
LOW_CARDINALITY_MAX = 6
HORIZONTAL_BAR_MIN = 12


@dataclass
class ChartDetection:
    type: str
    reason: str
    stacked: bool = False
    orientation: str = "vertical"
    grouped: bool = False


def is_time_like(name: str, model: Optional[SchemaModel] = None) -> bool:
    if "date" in name or "time" in name:
        return True
    return bool(model and model.is_time_dimension(name))


def _is_funnel_dimension(name: str, model: Optional[SchemaModel]) -> bool:
    if "lifecycle" in name or "stage" in name:
        return True
    dim = model.dimensions.get(name) if model else None
    return bool(dim and any(str(v).lower() in FUNNEL_STAGES for v in dim.values))


def _distinct(rows: Sequence[Dict[str, Any]], key: str) -> int:
    return len({row.get(key) for row in rows})


def _is_low_cardinality(name: str, model: Optional[SchemaModel], rows: Sequence[Dict[str, Any]]) -> bool:
    dim = model.dimensions.get(name) if model else None
    if dim is not None:
        if dim.cardinality == "low":
            return True
        if dim.values:
            return len(dim.values) <= LOW_CARDINALITY_MAX
    return bool(rows) and _distinct(rows, name) <= LOW_CARDINALITY_MAX


def _swings_sign(rows: Sequence[Dict[str, Any]], measure: str) -> bool:
    values = []
    for row in rows:
        try:
            values.append(float(row.get(measure)))
        except (TypeError, ValueError):
            continue
    return any(v > 0 for v in values) and any(v < 0 for v in values)


def detect_chart_type(spec: QuerySpec, model: Optional[SchemaModel] = None,
                      rows: Optional[List[Dict[str, Any]]] = None) -> ChartDetection:
    rows = rows or []
    dims = list(spec.dimensions)
    measures = list(spec.measures)
    n_dims, n_measures = len(dims), len(measures)

    if n_dims == 0:
        return ChartDetection("kpi", "Aggregate measures without a dimension - KPI card")

    if n_dims >= 2 and n_measures == 1:
        if _is_low_cardinality(dims[1], model, rows):
            return ChartDetection("stacked-bar", f"{n_dims} dimensions with a low-cardinality group - stacked comparison",
                                  stacked=True, grouped=True)
        return ChartDetection("bar", f"{n_dims} dimensions - grouped comparison", grouped=True)

    if is_time_like(dims[0], model):
        if n_measures == 1:
            measure = measures[0].lower()
            is_net = measure.startswith("net") or any(t in measure for t in NET_METRIC_TOKENS)
            if is_net or _swings_sign(rows, measures[0]):
                return ChartDetection("area-fill-by-value",
                                      "Time series with values on both sides of zero")
        return ChartDetection("line", "Time series data detected (date dimension with measures)")

    if n_measures == 1 and any(_is_funnel_dimension(d, model) for d in dims):
        return ChartDetection("funnel", "Lifecycle or conversion stages detected")

    if n_dims >= 2:
        return ChartDetection("heatmap", f"{n_dims} dimensions with {n_measures} measures - matrix view")

    if n_measures == 2:
        return ChartDetection("biaxial-bar", "Two measures with different scales - biaxial comparison")

    if n_measures > 2:
        formats = [model.measures[m].format for m in measures if model and m in model.measures]
        same_format = bool(formats) and len(formats) == n_measures and len(set(formats)) == 1
        if same_format:
            return ChartDetection("stacked-bar", "Multiple measures with the same unit - compositional view",
                                  stacked=True)
        return ChartDetection("bar", "Single dimension with multiple measures - comparing metrics")

    if _distinct(rows, dims[0]) > HORIZONTAL_BAR_MIN:
        return ChartDetection("bar", "Many categories - horizontal bars", orientation="horizontal")
    return ChartDetection("bar", "Single categorical dimension with one measure")
