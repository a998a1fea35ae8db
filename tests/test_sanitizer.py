from datetime import date, datetime
from decimal import Decimal

import duckdb
import numpy as np
import pandas as pd

from semantic.sanitizer import MAX_SAFE_INTEGER, frame_to_rows, sanitize_row, sanitize_value


def test_booleans_become_integers():
    assert sanitize_value(True) == 1
    assert sanitize_value(False) == 0
    assert sanitize_value(np.bool_(True)) == 1


def test_little_endian_buffer_becomes_integer():
    assert sanitize_value((300).to_bytes(8, "little")) == 300
    assert sanitize_value(bytearray((7).to_bytes(8, "little"))) == 7


def test_day_count_becomes_iso_date():
    assert sanitize_value({"days": 19000}) == "2022-01-08"
    assert sanitize_value({"days": 0}) == "1970-01-01"


def test_dates_become_iso_strings():
    assert sanitize_value(date(2024, 3, 1)) == "2024-03-01"
    assert sanitize_value(datetime(2024, 3, 1, 17, 30)) == "2024-03-01"
    assert sanitize_value(pd.Timestamp("2024-03-01 12:00")) == "2024-03-01"
    assert sanitize_value(np.datetime64("2024-03-01")) == "2024-03-01"


def test_epoch_milliseconds_become_dates():
    assert sanitize_value(1704067200000.0) == "2024-01-01"
    assert sanitize_value(np.float64(1704067200000.0)) == "2024-01-01"


def test_large_integer_totals_stay_numbers():
    assert sanitize_value(1500000000000) == 1500000000000
    assert sanitize_value(np.int64(1704067200000)) == 1704067200000
    assert sanitize_value(Decimal("1704067200000")) == 1704067200000


def test_bigint_sum_from_engine_stays_a_number():
    total = duckdb.connect().execute("SELECT SUM(x) FROM (VALUES (1500000000000)) t(x)").fetchone()[0]
    assert sanitize_value(total) == 1500000000000


def test_missing_values_become_none():
    assert sanitize_value(None) is None
    assert sanitize_value(float("nan")) is None
    assert sanitize_value(pd.NaT) is None
    assert sanitize_value(np.datetime64("NaT")) is None


def test_numpy_scalars_unwrap():
    value = sanitize_value(np.int64(42))
    assert value == 42 and type(value) is int
    assert sanitize_value(np.float64(1.5)) == 1.5


def test_decimals_become_numbers():
    assert sanitize_value(Decimal("12")) == 12
    assert sanitize_value(Decimal("12.5")) == 12.5


def test_huge_integers_fall_back_to_float():
    value = sanitize_value(-(MAX_SAFE_INTEGER + 2))
    assert isinstance(value, float)


def test_plain_values_pass_through():
    assert sanitize_value("paid") == "paid"
    assert sanitize_value(17) == 17
    assert sanitize_row({"a": True, "b": "x"}) == {"a": 1, "b": "x"}


def test_frame_to_rows():
    df = pd.DataFrame({"day": pd.to_datetime(["2024-01-01"]), "n": [3], "flag": [True]})
    assert frame_to_rows(df) == [{"day": "2024-01-01", "n": 3, "flag": 1}]
    assert frame_to_rows(pd.DataFrame()) == []
