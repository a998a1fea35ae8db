from .errors import (SemanticLayerError, ValidationError, MalformedModelOutput, CapacityExceeded,
                     EmptyMetadata, MissingKey, ExecutionLimitExceeded, ProfilingInProgress)
from .types import QuerySpec, ColumnMetadata, ChartConfig, PinnedItem, AnalysisResult
from .schema import SchemaRegistry, SchemaModel
from .memory import MemoryMonitor, memory_monitor

__all__ = [
	"SemanticLayerError",
	"ValidationError",
	"MalformedModelOutput",
	"CapacityExceeded",
	"EmptyMetadata",
	"MissingKey",
	"ExecutionLimitExceeded",
	"ProfilingInProgress",
	"QuerySpec",
	"ColumnMetadata",
	"ChartConfig",
	"PinnedItem",
	"AnalysisResult",
	"SchemaRegistry",
	"SchemaModel",
	"MemoryMonitor",
	"memory_monitor",
]
