import logging
from typing import Any, Dict, List, Mapping, Optional, Sequence

from semantic.schema import DEFAULT_HIERARCHIES, SchemaModel
from semantic.types import ColumnMetadata

logger = logging.getLogger(__name__)

MEASURES_FIELD = {"uniqueName": "Measures"}


class SliceGenerator:
    """
    Lays query columns out on a pivot grid.

    Sequences (time and ordered stage fields) go to columns, other dimensions
    and boolean flags to rows, everything else is a measure. Identifier
    fields are counted distinctly.
    """

    def __init__(self, hierarchies: Optional[Mapping[str, Sequence[str]]] = None):
        self.hierarchies = hierarchies if hierarchies is not None else DEFAULT_HIERARCHIES

    def _hierarchy_fields(self) -> set:
        return {f for members in self.hierarchies.values() for f in members}

    def categorize(self, columns: Sequence[str], model: Optional[SchemaModel] = None,
                   profile: Optional[Sequence[ColumnMetadata]] = None) -> Dict[str, List[str]]:
        profiled = {c.column_name: c for c in (profile or [])}
        groups: Dict[str, List[str]] = {
            "sequences": [], "dimensions": [], "flags": [], "measures": [], "ids": [],
        }
        for column in columns:
            found = model.field_for_column(column) if model else None
            if found and found[0] == "dimension":
                dim = found[1]
                if dim.type == "identifier":
                    groups["ids"].append(column)
                elif dim.type == "boolean":
                    groups["flags"].append(column)
                elif dim.sort or model.is_time_dimension(dim.name):
                    groups["sequences"].append(column)
                else:
                    groups["dimensions"].append(column)
            elif found:
                groups["measures"].append(column)
            elif column in profiled:
                meta = profiled[column]
                if meta.is_boolean:
                    groups["flags"].append(column)
                elif meta.is_date:
                    groups["sequences"].append(column)
                elif meta.is_numeric:
                    groups["measures"].append(column)
                else:
                    groups["dimensions"].append(column)
            else:
                # unknown fields are counted, not grouped
                groups["measures"].append(column)
        return groups

    def _field(self, name: str, model: Optional[SchemaModel]) -> Dict[str, Any]:
        field = {"uniqueName": name}
        dim = model.dimensions.get(name) if model else None
        if dim is not None and (dim.sort or dim.is_time_dimension):
            field["sort"] = "asc"
        return field

    def _measure(self, name: str, is_id: bool = False) -> Dict[str, Any]:
        return {"uniqueName": name, "aggregation": "distinctcount" if is_id else "sum"}

    def build(self, columns: Sequence[str], model: Optional[SchemaModel] = None,
              profile: Optional[Sequence[ColumnMetadata]] = None) -> Dict[str, Any]:
        groups = self.categorize(columns, model, profile)
        logger.debug(f"Slice layout: {groups}")

        # empty rows/columns stay in place, the widget needs them to apply the report
        slice_obj: Dict[str, Any] = {
            "rows": [self._field(n, model) for n in groups["dimensions"] + groups["flags"]],
            "columns": [self._field(n, model) for n in groups["sequences"]] + [dict(MEASURES_FIELD)],
            "measures": [self._measure(n) for n in groups["measures"]]
                        + [self._measure(n, is_id=True) for n in groups["ids"]],
        }
        if self._hierarchy_fields() & set(columns):
            slice_obj["drills"] = {"drillAll": True}
            slice_obj["expands"] = {"expandAll": True}
        return slice_obj

    def build_custom(self, measures: Sequence[str], rows: Sequence[str] = (),
                     columns: Sequence[str] = (), report_filters: Sequence[str] = (),
                     model: Optional[SchemaModel] = None,
                     include_hierarchy_options: bool = True) -> Dict[str, Any]:
        """Explicit placement, for callers that already know the layout."""
        slice_obj: Dict[str, Any] = {
            "rows": [self._field(n, model) for n in rows],
            "columns": [self._field(n, model) for n in columns] + [dict(MEASURES_FIELD)],
            "measures": [self._measure(n) for n in measures],
        }
        if report_filters:
            slice_obj["reportFilters"] = [{"uniqueName": n} for n in report_filters]
        placed = set(rows) | set(columns) | set(report_filters)
        if include_hierarchy_options and self._hierarchy_fields() & placed:
            slice_obj["drills"] = {"drillAll": True}
            slice_obj["expands"] = {"expandAll": True}
        return slice_obj
