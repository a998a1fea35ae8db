"""Feature flag lookups backed by configuration defaults and the environment."""

import os
import logging
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)


class FLAGS:
    QUERY_PERSISTENCE = "query-persistence"
    DATA_LIMIT = "data-limit"
    MODEL_TIER = "smarter-model-tier"


def _env_name(key: str) -> str:
    return "FLAG_" + key.upper().replace("-", "_")


def _coerce(raw: str, default: Any) -> Any:
    if isinstance(default, bool):
        return raw.strip().lower() in ("1", "true", "yes", "on")
    if isinstance(default, int):
        try:
            return int(raw)
        except ValueError:
            logger.warning(f"Ignoring non-integer flag value {raw!r}")
            return default
    return raw


class FlagOracle:
    """
    Read-only flag lookup. Values are resolved on every call, so an
    environment change or a `set()` takes effect immediately.
    """

    def __init__(self, defaults: Optional[Dict[str, Any]] = None):
        self._defaults = dict(defaults or {})
        self._overrides: Dict[str, Any] = {}

    def variation(self, key: str, default: Any = None) -> Any:
        if key in self._overrides:
            return self._overrides[key]
        fallback = self._defaults.get(key, default)
        raw = os.getenv(_env_name(key))
        if raw is not None:
            return _coerce(raw, fallback)
        return fallback

    def set(self, key: str, value: Any) -> None:
        self._overrides[key] = value

    def can_persist(self) -> bool:
        return bool(self.variation(FLAGS.QUERY_PERSISTENCE, False))
