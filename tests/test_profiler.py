import duckdb
import pytest

from semantic.profiler import TableProfiler, classify_type
from tests.conftest import FakeSource


@pytest.mark.parametrize("column_type,expected", [
    ("BIGINT", "numeric"),
    ("DECIMAL(18,3)", "numeric"),
    ("DATE", "date"),
    ("TIMESTAMP WITH TIME ZONE", "date"),
    ("BOOLEAN", "boolean"),
    ("VARCHAR", "string"),
    (None, "string"),
])
def test_classify_type(column_type, expected):
    assert classify_type(column_type) == expected


SUMMARY = [
    {"column_name": "amount", "column_type": "DOUBLE", "min": "1.5", "max": "99.0", "avg": "20.25",
     "approx_unique": 40, "null_percentage": "12.5%"},
    {"column_name": "country", "column_type": "VARCHAR", "min": "AR", "max": "US", "avg": None,
     "approx_unique": 3, "null_percentage": 0},
]


def test_profile_from_summary():
    source = FakeSource([
        ("SUMMARIZE", SUMMARY),
        ("GROUP BY", [{"value": "US", "count": 7}, {"value": "AR", "count": 2}]),
    ])
    amount, country = TableProfiler().profile(source, "orders")

    assert amount.is_numeric and amount.type_class == "numeric"
    assert (amount.min, amount.max, amount.mean) == (1.5, 99.0, 20.25)
    assert amount.null_ratio == 0.125
    assert amount.top_values is None

    assert country.type_class == "string"
    assert country.min is None
    assert country.top_values == [{"value": "US", "count": 7}, {"value": "AR", "count": 2}]
    assert 'FROM "orders"' in source.queries[-1]


def test_failed_top_values_query_keeps_the_column():
    source = FakeSource([
        ("SUMMARIZE", SUMMARY[1:]),
        ("GROUP BY", RuntimeError("boom")),
    ])
    (country,) = TableProfiler().profile(source, "orders")
    assert country.top_values is None
    assert country.column_name == "country"


def test_failed_summary_propagates():
    source = FakeSource([("SUMMARIZE", duckdb.CatalogException("no such table"))])
    with pytest.raises(duckdb.CatalogException):
        TableProfiler().profile(source, "missing")


def test_profile_real_table(db_manager):
    columns = {c.column_name: c for c in TableProfiler().profile(db_manager, "session_facts")}

    assert columns["revenue"].is_numeric
    assert columns["revenue"].max == 99.0
    assert columns["session_date"].is_date
    assert columns["is_conversion_session"].is_boolean
    assert columns["utm_source"].null_ratio > 0
    top = {v["value"]: v["count"] for v in columns["traffic_source"].top_values}
    assert top == {"paid": 3, "organic": 2, "email": 1}
