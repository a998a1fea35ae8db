import pytest

from semantic.errors import ValidationError
from semantic.translator import (WARN_AGGREGATIONS, WARN_GROUP_BY, WARN_LIMIT, WARN_ORDER_BY,
                                 QueryTranslator, complete_hierarchies, extract_columns,
                                 rewrite_for_presentation, split_top_level, validate,
                                 validate_columns)
from semantic.types import QuerySpec


def test_extract_columns_strips_aggregation_and_alias():
    assert extract_columns("SELECT SUM(revenue) AS total_rev, country FROM t") == ["revenue", "country"]


def test_extract_columns_handles_prefixes_distinct_and_star():
    sql = "SELECT s.country, COUNT(DISTINCT s.cookie_id) AS visitors, COUNT(*) FROM sessions s"
    assert extract_columns(sql) == ["country", "cookie_id"]


def test_extract_columns_without_select():
    assert extract_columns("DELETE FROM t") == []


def test_split_top_level_respects_parentheses_and_quotes():
    assert split_top_level("a, COALESCE(b, 0), 'x,y'") == ["a", "COALESCE(b, 0)", "'x,y'"]


def test_rewrite_removes_group_by_and_limit():
    result = rewrite_for_presentation("SELECT country, city FROM t GROUP BY country, city LIMIT 10")
    assert result.sql == "SELECT country, city FROM t"
    assert result.warnings == [WARN_GROUP_BY, WARN_LIMIT]


def test_rewrite_is_idempotent():
    first = rewrite_for_presentation("SELECT country, city FROM t GROUP BY country, city LIMIT 10")
    second = rewrite_for_presentation(first.sql)
    assert second.sql == first.sql
    assert second.warnings == []


def test_rewrite_strips_aggregations_and_dependent_order_by():
    result = rewrite_for_presentation(
        "SELECT country, SUM(revenue) AS rev FROM t GROUP BY country ORDER BY rev DESC LIMIT 5"
    )
    assert result.sql == "SELECT country, revenue FROM t"
    assert result.warnings == [WARN_GROUP_BY, WARN_LIMIT, WARN_AGGREGATIONS, WARN_ORDER_BY]
    assert rewrite_for_presentation(result.sql).warnings == []


def test_rewrite_keeps_unrelated_order_by():
    result = rewrite_for_presentation("SELECT country, SUM(revenue) FROM t GROUP BY country ORDER BY country")
    assert result.sql == "SELECT country, revenue FROM t ORDER BY country"
    assert WARN_ORDER_BY not in result.warnings


def test_rewrite_leaves_plain_query_alone():
    result = rewrite_for_presentation("SELECT country FROM t WHERE revenue > 0")
    assert result.sql == "SELECT country FROM t WHERE revenue > 0"
    assert result.warnings == []


def test_rewrite_ignores_clauses_inside_subqueries():
    sql = "SELECT country FROM (SELECT country FROM t LIMIT 3) x"
    assert rewrite_for_presentation(sql).sql == sql


def test_rewrite_count_star_only():
    result = rewrite_for_presentation("SELECT COUNT(*) FROM t")
    assert result.sql == "SELECT * FROM t"
    assert result.warnings == [WARN_AGGREGATIONS]


def test_complete_hierarchies_adds_missing_members():
    fields, warnings = complete_hierarchies(["first_touch_utm_medium", "user_count"])
    assert fields == ["first_touch_utm_medium", "user_count", "first_touch_utm_source"]
    assert warnings == ["Auto-added hierarchy field: first_touch_utm_source (first_touch)"]


def test_complete_hierarchies_untouched_when_no_member_present():
    fields, warnings = complete_hierarchies(["country"])
    assert fields == ["country"]
    assert warnings == []


def test_validate_accepts_known_names(sessions_model):
    validate(QuerySpec(table="sessions", measures=["session_count"], dimensions=["device_type"]), sessions_model)


def test_validate_rejects_unknown_dimension(sessions_model):
    with pytest.raises(ValidationError) as exc:
        validate(QuerySpec(table="sessions", measures=["session_count"], dimensions=["country"]), sessions_model)
    assert exc.value.kind == "dimension"
    assert exc.value.unknown == ["country"]
    assert "traffic_source" in exc.value.allowed


def test_validate_reports_every_unknown_name(sessions_model):
    spec = QuerySpec(table="sessions", measures=["profit"], dimensions=["country"])
    with pytest.raises(ValidationError) as exc:
        validate(spec, sessions_model)
    assert exc.value.kind == "field"
    assert exc.value.unknown == ["country", "profit"]
    assert "country" in str(exc.value) and "profit" in str(exc.value)


def test_validate_requires_a_measure(sessions_model):
    with pytest.raises(ValidationError) as exc:
        validate(QuerySpec(table="sessions", measures=[]), sessions_model)
    assert exc.value.kind == "measure"
    assert exc.value.unknown == []


def test_validate_columns(sessions_model):
    valid, invalid = validate_columns(["traffic_source", "session_count", "revenue"], sessions_model)
    assert valid == ["traffic_source", "session_count"]
    assert invalid == ["revenue"]


def test_translate_sql_appends_hierarchy_fields(registry):
    translator = QueryTranslator(registry)
    translated = translator.translate_sql(
        "SELECT first_touch_utm_medium, SUM(lifetime_value) AS ltv FROM user_facts GROUP BY 1"
    )
    assert translated.sql == (
        "SELECT first_touch_utm_medium, lifetime_value, first_touch_utm_source FROM user_facts"
    )
    assert translated.columns == ["first_touch_utm_medium", "lifetime_value", "first_touch_utm_source"]
    assert translated.warnings == [
        WARN_GROUP_BY,
        WARN_AGGREGATIONS,
        "Auto-added hierarchy field: first_touch_utm_source (first_touch)",
    ]


def test_translate_sql_without_columns(registry):
    with pytest.raises(ValueError):
        QueryTranslator(registry).translate_sql("SELECT COUNT(*) FROM t")


def test_table_and_model_for_sql(registry):
    translator = QueryTranslator(registry)
    assert translator.table_for_sql("SELECT a FROM main.session_facts WHERE x IN (SELECT 1 FROM y)") == "session_facts"
    assert translator.model_for_sql("SELECT a FROM session_facts").key == "sessions"
    assert translator.model_for_sql("SELECT a FROM other") is None


def test_translate_spec_completes_hierarchy(registry):
    spec = QuerySpec(table="users", measures=["user_count"], dimensions=["last_touch_utm_source"])
    translated = QueryTranslator(registry).translate_spec(spec)
    assert translated.spec.dimensions == ["last_touch_utm_source", "last_touch_utm_medium"]
    assert translated.columns == ["last_touch_utm_source", "last_touch_utm_medium", "user_count"]
    assert "GROUP BY 1, 2" in translated.sql
    assert translated.warnings == ["Auto-added hierarchy field: last_touch_utm_medium (last_touch)"]


def test_translate_spec_validates_first(registry):
    with pytest.raises(ValidationError):
        QueryTranslator(registry).translate_spec(QuerySpec(table="sessions", measures=["ltv"]))


def test_complete_hierarchies_from_source_member():
    fields, warnings = complete_hierarchies(["first_touch_utm_source"])
    assert "first_touch_utm_medium" in fields
    assert warnings == ["Auto-added hierarchy field: first_touch_utm_medium (first_touch)"]


def test_extract_columns_drops_select_distinct():
    assert extract_columns("SELECT DISTINCT country, city FROM t") == ["country", "city"]


def test_rewrite_alias_only_change_is_not_an_aggregation_removal():
    result = rewrite_for_presentation("SELECT SUM(a) + SUM(b) AS t FROM x")
    assert result.sql == "SELECT SUM(a) + SUM(b) FROM x"
    assert result.warnings == []
