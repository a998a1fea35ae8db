"""Exception types raised by the semantic analytics layer."""

from typing import Any, Dict, List, Optional


class SemanticLayerError(Exception):
    """Base class for all semantic layer failures."""

    remedy: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error": type(self).__name__,
            "message": str(self),
            "remedy": self.remedy,
        }


class ValidationError(SemanticLayerError):
    """A dimension, measure or table name is not part of the schema."""

    def __init__(self, field: str, kind: str, allowed: List[str],
                 unknown: Optional[List[str]] = None, message: Optional[str] = None):
        self.field = field
        self.kind = kind
        self.allowed = list(allowed)
        self.unknown = list(unknown) if unknown is not None else [field]
        self.remedy = f"Use one of: {', '.join(self.allowed)}"
        super().__init__(message or f"Unknown {kind} '{field}'. Available {kind}s: {', '.join(self.allowed)}")

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data.update({"field": self.field, "kind": self.kind,
                     "unknown": self.unknown, "allowed": self.allowed})
        return data


class MalformedModelOutput(SemanticLayerError):
    """The language model reply is not a usable query spec."""

    def __init__(self, raw_text: str, reason: str):
        self.raw_text = raw_text
        self.reason = reason
        self.remedy = "Rephrase the question or name the measure you want explicitly."
        super().__init__(f"Malformed model output ({reason}): {raw_text[:200]!r}")

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data.update({"reason": self.reason, "raw_text": self.raw_text})
        return data


class CapacityExceeded(SemanticLayerError):
    """The metadata cache is full and the table is not already cached."""

    def __init__(self, status):
        self.status = status
        names = ", ".join(t["name"] for t in status.tables)
        self.remedy = "Delete one or more cached tables before profiling a new one."
        super().__init__(
            f"Maximum {status.limit} tables cached. Current tables: {names}"
        )


class EmptyMetadata(SemanticLayerError, ValueError):
    """Refusing to cache a profile without columns."""


class MissingKey(SemanticLayerError, ValueError):
    """A cache entry needs a table name."""


class ExecutionLimitExceeded(SemanticLayerError):
    """The engine refused a query because its result is too large."""

    def __init__(self, message: str, limit: Optional[int] = None):
        self.limit = limit
        self.remedy = ("Add a date filter or a LIMIT clause to reduce the data size, "
                       "or select fewer dimensions.")
        super().__init__(message)


class ProfilingInProgress(SemanticLayerError):
    """A profile for this table is already running."""

    def __init__(self, table_name: str):
        self.table_name = table_name
        self.remedy = "Wait for the running profile to finish."
        super().__init__(f"Table '{table_name}' is already being profiled")
