import itertools
from typing import Any, Dict, List

import pandas as pd
import pytest

from config import Config, DatabaseConfig, config
from semantic.db import DatabaseManager
from semantic.entitlements import FlagOracle
from semantic.metadata_cache import MetadataCache
from semantic.persistence import DurableStore, QueryPersistence, TransientStore
from semantic.schema import SchemaRegistry
from semantic.system import SemanticSystem


class FakeSource:
    """Answers fetch_rows from a list of (sql fragment, rows or exception) pairs."""

    def __init__(self, answers):
        self.answers = list(answers)
        self.queries: List[str] = []

    def fetch_rows(self, sql: str) -> List[Dict[str, Any]]:
        self.queries.append(sql)
        for fragment, answer in self.answers:
            if fragment in sql:
                if isinstance(answer, Exception):
                    raise answer
                return answer
        return []


class FakeLLM:
    """Returns queued replies in order and records every prompt."""

    def __init__(self, replies=()):
        self.replies = list(replies)
        self.calls: List[Dict[str, Any]] = []

    def queue(self, *replies):
        self.replies.extend(replies)

    def complete(self, system_prompt, user_prompt, temperature=None, max_tokens=None):
        self.calls.append({
            "system": system_prompt,
            "user": user_prompt,
            "temperature": temperature,
            "max_tokens": max_tokens,
        })
        return self.replies.pop(0)


SESSION_ROWS = pd.DataFrame({
    "session_date": pd.to_datetime(["2024-01-01", "2024-01-01", "2024-01-02",
                                    "2024-01-02", "2024-01-03", "2024-01-03"]),
    "session_start_time": pd.to_datetime(["2024-01-01 09:00", "2024-01-01 13:30", "2024-01-02 08:15",
                                          "2024-01-02 21:00", "2024-01-03 10:45", "2024-01-03 11:00"]),
    "traffic_source": ["paid", "organic", "paid", "email", "organic", "paid"],
    "utm_source": ["google", None, "google", "newsletter", None, "bing"],
    "utm_medium": ["cpc", None, "cpc", "email", None, "cpc"],
    "utm_campaign": ["winter", None, "winter", "jan", None, "brand"],
    "device_type": ["desktop", "mobile", "desktop", "tablet", "mobile", "desktop"],
    "plan_tier": ["free", "free", "starter", "free", "smarter", "starter"],
    "max_lifecycle_stage": ["awareness", "interest", "trial", "awareness", "activation", "trial"],
    "is_conversion_session": [False, False, True, False, True, False],
    "cookie_id": ["c1", "c2", "c1", "c3", "c4", "c2"],
    "revenue": [0.0, 0.0, 25.5, 0.0, 99.0, 12.0],
    "event_count": [3, 5, 8, 2, 12, 6],
    "duration_seconds": [30.0, 120.5, 300.0, 12.0, 640.0, 75.0],
    "interest_events": [0, 1, 1, 0, 2, 1],
    "trial_events": [0, 0, 1, 0, 1, 1],
    "activation_events": [0, 0, 0, 0, 1, 0],
})

USER_ROWS = pd.DataFrame({
    "user_key": ["u1", "u2", "u3", "u4"],
    "first_event_date": pd.to_datetime(["2023-12-01", "2023-12-15", "2024-01-02", "2024-01-03"]),
    "last_event_date": pd.to_datetime(["2024-01-03", "2024-01-01", "2024-01-02", "2024-01-03"]),
    "first_touch_utm_source": ["google", "newsletter", "google", "bing"],
    "first_touch_utm_medium": ["cpc", "email", "cpc", "cpc"],
    "first_touch_utm_campaign": ["winter", "dec", "winter", "brand"],
    "last_touch_utm_source": ["google", "newsletter", "google", "bing"],
    "last_touch_utm_medium": ["cpc", "email", "cpc", "cpc"],
    "last_touch_utm_campaign": ["winter", "jan", "winter", "brand"],
    "current_plan_tier": ["smarter", "free", "starter", "free"],
    "current_lifecycle_stage": ["retention", "interest", "activation", "awareness"],
    "is_paying_customer": [True, False, True, False],
    "is_active_30d": [True, True, True, False],
    "has_activated": [True, False, True, False],
    "lifetime_value": [480.0, 0.0, 120.0, 0.0],
    "session_count": [14, 3, 5, 1],
})


@pytest.fixture
def registry():
    return SchemaRegistry.from_file(config.semantic.layer_path)


@pytest.fixture
def sessions_model(registry):
    return registry.get("sessions")


@pytest.fixture
def users_model(registry):
    return registry.get("users")


@pytest.fixture
def db_manager():
    manager = DatabaseManager(DatabaseConfig(db_path=":memory:", memory_limit="1GB", threads=1))
    manager.load_frame(SESSION_ROWS, "session_facts")
    manager.load_frame(USER_ROWS, "user_facts")
    yield manager
    manager.close_all()


@pytest.fixture
def clock():
    """Deterministic, strictly increasing clock for cache timestamps."""
    ticks = itertools.count(1_700_000_000)
    return lambda: next(ticks)


@pytest.fixture
def flags():
    return FlagOracle({"query-persistence": False, "data-limit": 500000, "smarter-model-tier": "3b"})


@pytest.fixture
def fake_llm():
    return FakeLLM()


@pytest.fixture
def settings():
    return Config(auto_configure=False)


@pytest.fixture
def system(tmp_path, settings, registry, db_manager, flags, fake_llm, clock):
    semantic_system = SemanticSystem(
        settings=settings,
        registry=registry,
        db_manager=db_manager,
        llm_manager=fake_llm,
        metadata_cache=MetadataCache(str(tmp_path / "profiles.json"), clock=clock),
        persistence=QueryPersistence(
            flags.can_persist,
            TransientStore(10),
            DurableStore(str(tmp_path / "pins.json")),
        ),
        flags=flags,
    )
    yield semantic_system
    semantic_system.close()
