"""
Semantic layer registry.

Loads the semantic layer document (one model per analytical table) and
exposes read-only dimension/measure definitions to the translators and the
chart generator.
"""

import json
import logging
import re
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Dict, List, Mapping, Optional, Tuple

from semantic.errors import ValidationError
from semantic.types import QuerySpec

logger = logging.getLogger(__name__)

TABLE_PLACEHOLDER = re.compile(r"\b_\.")

DEFAULT_HIERARCHIES: Dict[str, Tuple[str, ...]] = {
    "first_touch": ("first_touch_utm_medium", "first_touch_utm_source"),
    "last_touch": ("last_touch_utm_medium", "last_touch_utm_source"),
}


@dataclass(frozen=True)
class DimensionDef:
    name: str
    type: str = "string"
    column: Optional[str] = None
    sql: Optional[str] = None
    description: str = ""
    is_time_dimension: bool = False
    cardinality: Optional[str] = None
    values: Tuple[str, ...] = ()
    sort: Optional[str] = None

    @property
    def source_column(self) -> str:
        """Bare column name without the table placeholder."""
        expr = self.column or self.name
        return TABLE_PLACEHOLDER.sub("", expr)


@dataclass(frozen=True)
class MeasureDef:
    name: str
    aggregation: str
    format: str = "number"
    decimals: int = 0
    description: str = ""


@dataclass(frozen=True)
class SchemaModel:
    key: str
    table: str
    description: str = ""
    dimensions: Mapping[str, DimensionDef] = field(default_factory=dict)
    measures: Mapping[str, MeasureDef] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, key: str, data: Dict[str, Any]) -> "SchemaModel":
        dimensions: Dict[str, DimensionDef] = {}
        for name, spec in (data.get("dimensions") or {}).items():
            dimensions[name] = DimensionDef(
                name=name,
                type=spec.get("type", "string"),
                column=spec.get("column"),
                sql=spec.get("sql"),
                description=spec.get("description", ""),
                is_time_dimension=bool(spec.get("is_time_dimension", False)),
                cardinality=spec.get("cardinality"),
                values=tuple(spec.get("values") or ()),
                sort=spec.get("sort"),
            )

        measures: Dict[str, MeasureDef] = {}
        for name, spec in (data.get("measures") or {}).items():
            if name in dimensions:
                raise ValueError(f"Model '{key}' defines '{name}' as both dimension and measure")
            measures[name] = MeasureDef(
                name=name,
                aggregation=spec["aggregation"],
                format=spec.get("format", "number"),
                decimals=int(spec.get("decimals", 0) or 0),
                description=spec.get("description", ""),
            )

        return cls(
            key=key,
            table=data.get("table", key),
            description=data.get("description", ""),
            dimensions=MappingProxyType(dimensions),
            measures=MappingProxyType(measures),
        )

    def dimension_names(self) -> List[str]:
        return list(self.dimensions.keys())

    def measure_names(self) -> List[str]:
        return list(self.measures.keys())

    def is_time_dimension(self, name: str) -> bool:
        dim = self.dimensions.get(name)
        return bool(dim and (dim.is_time_dimension or dim.type in ("date", "timestamp")))

    def measure_format(self, name: str) -> Optional[Dict[str, Any]]:
        measure = self.measures.get(name)
        if measure is None:
            return None
        return {"type": measure.format, "decimals": measure.decimals}

    def field_for_column(self, column: str) -> Optional[Tuple[str, Any]]:
        """Map a raw column (or field name) to ('dimension'|'measure', definition)."""
        if column in self.dimensions:
            return "dimension", self.dimensions[column]
        if column in self.measures:
            return "measure", self.measures[column]
        for dim in self.dimensions.values():
            if dim.column and dim.source_column == column:
                return "dimension", dim
        return None

    def _qualify(self, expr: str) -> str:
        return TABLE_PLACEHOLDER.sub(f"{self.table}.", expr)

    def dimension_sql(self, name: str) -> str:
        dim = self.dimensions[name]
        if dim.sql:
            return f"({self._qualify(dim.sql)}) AS {name}"
        return f"{self._qualify(dim.column or name)} AS {name}"

    def measure_sql(self, name: str) -> str:
        return f"({self._qualify(self.measures[name].aggregation)}) AS {name}"

    def build_sql(self, spec: QuerySpec, limit: Optional[int] = None) -> str:
        """Render a validated spec as an aggregate SELECT over this model's table."""
        select_cols = [self.dimension_sql(d) for d in spec.dimensions]
        select_cols += [self.measure_sql(m) for m in spec.measures]

        parts = [f"SELECT {', '.join(select_cols)}", f"FROM {self.table}"]
        filters = [self._qualify(f) for f in spec.filters if f and f.strip()]
        if filters:
            parts.append("WHERE " + " AND ".join(filters))
        if spec.dimensions:
            parts.append("GROUP BY " + ", ".join(str(i + 1) for i in range(len(spec.dimensions))))
        if limit:
            parts.append(f"LIMIT {int(limit)}")
        return "\n".join(parts)


def _reject_duplicate_keys(pairs: List[Tuple[str, Any]]) -> Dict[str, Any]:
    data: Dict[str, Any] = {}
    for key, value in pairs:
        if key in data:
            raise ValueError(f"Duplicate name in semantic layer document: {key}")
        data[key] = value
    return data


class SchemaRegistry:
    """Read-only collection of semantic models keyed by table key."""

    def __init__(self, models: Dict[str, SchemaModel],
                 hierarchies: Optional[Dict[str, Tuple[str, ...]]] = None,
                 version: int = 1):
        self._models = MappingProxyType(dict(models))
        self.hierarchies = MappingProxyType(
            dict(hierarchies) if hierarchies is not None else dict(DEFAULT_HIERARCHIES)
        )
        self.version = version

    @classmethod
    def from_dict(cls, document: Dict[str, Any]) -> "SchemaRegistry":
        models = {}
        hierarchies = None
        version = int(document.get("version", 1))
        for key, value in document.items():
            if key == "hierarchies":
                hierarchies = {name: tuple(levels) for name, levels in value.items()}
            elif isinstance(value, dict) and ("dimensions" in value or "measures" in value):
                models[key] = SchemaModel.from_dict(key, value)
        if not models:
            raise ValueError("Semantic layer document defines no models")
        return cls(models, hierarchies, version)

    @classmethod
    def from_file(cls, path: str) -> "SchemaRegistry":
        with open(path, "r", encoding="utf-8") as f:
            document = json.load(f, object_pairs_hook=_reject_duplicate_keys)
        registry = cls.from_dict(document)
        logger.info(f"Loaded semantic layer v{registry.version} with models: {', '.join(registry.keys())}")
        return registry

    def keys(self) -> List[str]:
        return list(self._models.keys())

    def models(self) -> List[SchemaModel]:
        return list(self._models.values())

    def get(self, key: str) -> SchemaModel:
        model = self._models.get(key)
        if model is None:
            raise ValidationError(key, "table", self.keys())
        return model

    def find_by_table(self, table_name: str) -> Optional[SchemaModel]:
        """Resolve either a model key or a physical table name."""
        if table_name in self._models:
            return self._models[table_name]
        for model in self._models.values():
            if model.table == table_name:
                return model
        return None

    def __contains__(self, key: str) -> bool:
        return key in self._models
