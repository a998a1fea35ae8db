"""
Normalize engine-native values into JSON-portable numbers and strings.

Integers wider than 2**53 are converted to float and lose precision. This is
a known boundary kept for compatibility with the pivot widget, which only
handles double-precision numbers.

Only floats above the epoch-millisecond threshold are read as timestamps.
Integer totals such as BIGINT sums always stay numbers.
"""

import math
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Mapping

import numpy as np
import pandas as pd

MAX_SAFE_INTEGER = 2 ** 53
EPOCH_MS_THRESHOLD = 1_000_000_000_000
EPOCH = date(1970, 1, 1)


def _iso_date(value: date) -> str:
    if isinstance(value, datetime):
        value = value.date()
    return value.isoformat()


def _from_buffer(buffer) -> int:
    # DuckDB hands small fixed-width integers over as raw little-endian bytes
    raw = bytes(buffer)[:8]
    return int.from_bytes(raw, byteorder="little", signed=False)


def _from_epoch_ms(value: float):
    try:
        stamp = datetime.fromtimestamp(value / 1000.0, tz=timezone.utc)
    except (OverflowError, OSError, ValueError):
        # beyond datetime range, keep the number
        return value
    return stamp.date().isoformat()


def sanitize_value(value: Any) -> Any:
    """Convert a single field value to a portable form."""
    if value is None:
        return None

    if isinstance(value, (bool, np.bool_)):
        return 1 if value else 0

    if isinstance(value, np.generic):
        value = value.item()
        if isinstance(value, bool):
            return 1 if value else 0

    if value is pd.NaT:
        return None

    if isinstance(value, (datetime, date)):
        return _iso_date(value)

    if isinstance(value, np.datetime64):
        if np.isnat(value):
            return None
        return _iso_date(pd.Timestamp(value).to_pydatetime())

    if isinstance(value, (bytes, bytearray, memoryview)):
        return _from_buffer(value)

    if isinstance(value, Mapping) and "days" in value:
        return (EPOCH + timedelta(days=int(value["days"]))).isoformat()

    if isinstance(value, Decimal):
        if not value.is_finite():
            return None
        value = int(value) if value == value.to_integral_value() else float(value)

    if isinstance(value, int):
        if abs(value) > MAX_SAFE_INTEGER:
            return float(value)
        return value

    if isinstance(value, float):
        if math.isnan(value) or math.isinf(value):
            return None
        if value > EPOCH_MS_THRESHOLD:
            return _from_epoch_ms(value)
        return value

    return value


def sanitize_row(row: Mapping[str, Any]) -> Dict[str, Any]:
    return {key: sanitize_value(value) for key, value in row.items()}


def sanitize_rows(rows: Iterable[Mapping[str, Any]]) -> List[Dict[str, Any]]:
    return [sanitize_row(row) for row in rows]


def frame_to_rows(df: pd.DataFrame) -> List[Dict[str, Any]]:
    """Convert a result frame into sanitized records."""
    if df is None or df.empty:
        return []
    return sanitize_rows(df.to_dict("records"))
