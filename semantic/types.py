import uuid
import time
from dataclasses import dataclass, field, asdict
from typing import Any, Dict, List, Optional

import pandas as pd


@dataclass
class QuerySpec:
	table: str
	measures: List[str]
	dimensions: List[str] = field(default_factory=list)
	filters: List[str] = field(default_factory=list)
	explanation: str = ""

	@classmethod
	def from_dict(cls, data: Dict[str, Any]) -> "QuerySpec":
		return cls(
			table=data["table"],
			measures=list(data.get("measures") or []),
			dimensions=list(data.get("dimensions") or []),
			filters=list(data.get("filters") or []),
			explanation=data.get("explanation") or "",
		)

	def to_dict(self) -> Dict[str, Any]:
		return asdict(self)


@dataclass
class ColumnMetadata:
	table_name: str
	column_name: str
	column_type: str
	type_class: str
	is_numeric: bool = False
	is_date: bool = False
	is_boolean: bool = False
	min: Optional[float] = None
	max: Optional[float] = None
	mean: Optional[float] = None
	approx_distinct: Optional[int] = None
	null_ratio: Optional[float] = None
	top_values: Optional[List[Dict[str, Any]]] = None

	@classmethod
	def from_dict(cls, data: Dict[str, Any]) -> "ColumnMetadata":
		known = cls.__dataclass_fields__.keys()
		return cls(**{k: v for k, v in data.items() if k in known})

	def to_dict(self) -> Dict[str, Any]:
		return asdict(self)


@dataclass
class TableProfile:
	table_name: str
	columns: List[ColumnMetadata]
	created_at: float

	def to_dict(self) -> Dict[str, Any]:
		return {
			"table_name": self.table_name,
			"columns": [c.to_dict() for c in self.columns],
			"created_at": self.created_at,
		}

	@classmethod
	def from_dict(cls, data: Dict[str, Any]) -> "TableProfile":
		return cls(
			table_name=data["table_name"],
			columns=[ColumnMetadata.from_dict(c) for c in data["columns"]],
			created_at=data["created_at"],
		)


@dataclass
class CacheStatus:
	count: int
	limit: int
	is_at_limit: bool
	tables: List[Dict[str, Any]] = field(default_factory=list)

	def to_dict(self) -> Dict[str, Any]:
		return asdict(self)


@dataclass
class PinnedItem:
	id: str
	table_name: str
	sql: str
	prompt: str
	explanation: str
	chart_config: Dict[str, Any]
	timestamp: float
	spec: Optional[Dict[str, Any]] = None

	@classmethod
	def create(cls, table_name: str, sql: str, prompt: str = "", explanation: str = "",
			   chart_config: Optional[Dict[str, Any]] = None,
			   spec: Optional[Dict[str, Any]] = None) -> "PinnedItem":
		return cls(
			id=uuid.uuid4().hex,
			table_name=table_name,
			sql=sql,
			prompt=prompt,
			explanation=explanation,
			chart_config=chart_config or {},
			timestamp=time.time(),
			spec=spec,
		)

	def to_dict(self) -> Dict[str, Any]:
		return asdict(self)


@dataclass
class ChartOptions:
	colors: List[str] = field(default_factory=list)
	stacked: bool = False
	show_legend: bool = False
	orientation: str = "vertical"
	is_time_series: bool = False
	format: Dict[str, Dict[str, Any]] = field(default_factory=dict)
	totals: Dict[str, str] = field(default_factory=dict)

	def to_dict(self) -> Dict[str, Any]:
		return {
			"colors": self.colors,
			"stacked": self.stacked,
			"showLegend": self.show_legend,
			"orientation": self.orientation,
			"isTimeSeries": self.is_time_series,
			"format": self.format,
			"totals": self.totals,
		}


@dataclass
class ChartConfig:
	type: str
	title: str
	x_key: str
	y_keys: List[str]
	data: List[Dict[str, Any]]
	options: ChartOptions = field(default_factory=ChartOptions)

	def to_dict(self) -> Dict[str, Any]:
		return {
			"type": self.type,
			"title": self.title,
			"xKey": self.x_key,
			"yKeys": list(self.y_keys),
			"data": self.data,
			"options": self.options.to_dict(),
		}


@dataclass
class RewriteResult:
	sql: str
	warnings: List[str] = field(default_factory=list)
	columns: List[str] = field(default_factory=list)


@dataclass
class TranslatedQuery:
	sql: str
	columns: List[str]
	warnings: List[str] = field(default_factory=list)
	spec: Optional[QuerySpec] = None


@dataclass
class QueryResult:
	data: pd.DataFrame
	sql_query: str
	execution_time: float
	row_count: int
	memory_usage_mb: float = 0.0


@dataclass
class ProfileOutcome:
	status: str  # cached | profiled | at_limit
	table_name: str
	columns: List[ColumnMetadata] = field(default_factory=list)
	cache_status: Optional[CacheStatus] = None


@dataclass
class AnalysisResult:
	sql: str
	rows: List[Dict[str, Any]]
	chart: ChartConfig
	slice: Dict[str, Any]
	warnings: List[str] = field(default_factory=list)
	spec: Optional[QuerySpec] = None
	prompt: str = ""
	execution_time: float = 0.0
	pinned_id: Optional[str] = None

	def to_dict(self) -> Dict[str, Any]:
		return {
			"sql": self.sql,
			"row_count": len(self.rows),
			"rows": self.rows,
			"chart": self.chart.to_dict(),
			"slice": self.slice,
			"warnings": self.warnings,
			"spec": self.spec.to_dict() if self.spec else None,
			"prompt": self.prompt,
			"execution_time": self.execution_time,
			"pinned_id": self.pinned_id,
		}


@dataclass
class PerformanceMetrics:
	query_count: int = 0
	total_execution_time: float = 0.0
	errors: int = 0
	limit_errors: int = 0
	validation_errors: int = 0
	profiles_run: int = 0
	memory_peak_mb: float = 0.0
