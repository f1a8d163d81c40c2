"""
Unit Tests - Window and Ratio Helpers
"""
import pytest
import polars as pl

from sales_bi import windows
from sales_bi.windows import (
    month_index,
    price_bucket_labels,
    safe_divide,
    surrogate_key,
    surrogate_key_expr,
    with_ntile,
    with_row_number,
)


class TestSafeDivide:
    """Tests for safe_divide"""

    def test_zero_and_null_denominators(self):
        df = pl.DataFrame({"num": [10, 10, 10], "den": [4, 0, None]})

        result = df.select(safe_divide(pl.col("num"), pl.col("den")).alias("ratio"))

        assert result["ratio"].to_list() == [2.5, None, None]


class TestWindows:
    """Tests for ROW_NUMBER / NTILE equivalents"""

    def test_row_number_partitioned(self):
        df = pl.DataFrame({"g": ["a", "b", "a", "a"], "v": [3, 1, 1, 2]})

        result = with_row_number(df, "rn", order_by=["v"], partition_by=["g"])

        # Input order is preserved
        assert result["v"].to_list() == [3, 1, 1, 2]
        assert result["rn"].to_list() == [3, 1, 1, 2]

    def test_row_number_descending(self):
        df = pl.DataFrame({"v": [1, 3, 2]})

        result = with_row_number(df, "rn", order_by=["v"], descending=[True])

        assert result["rn"].to_list() == [3, 1, 2]

    def test_ntile_sizes(self):
        """NTILE(3) over 10 rows gives buckets of 4, 3 and 3"""
        df = pl.DataFrame({"v": list(range(10))})

        result = with_ntile(df, "tile", 3, order_by=["v"])

        assert result["tile"].to_list() == [1, 1, 1, 1, 2, 2, 2, 3, 3, 3]

    def test_ntile_more_buckets_than_rows(self):
        df = pl.DataFrame({"v": [5, 6]})

        result = with_ntile(df, "tile", 5, order_by=["v"])

        assert result["tile"].to_list() == [1, 2]


class TestSurrogateKeys:
    """Tests for hash surrogate keys"""

    def test_deterministic_and_non_negative(self):
        key = surrogate_key("a@x.com")

        assert key == surrogate_key("a@x.com")
        assert key != surrogate_key("b@x.com")
        assert 0 <= key < 2 ** 63

    def test_none(self):
        assert surrogate_key(None) is None

    def test_expression(self):
        df = pl.DataFrame({"k": ["a@x.com", "b@x.com"]})

        result = df.select(surrogate_key_expr(pl.col("k")).alias("sk"))

        assert result["sk"].dtype == pl.Int64
        assert result["sk"].to_list() == [surrogate_key("a@x.com"), surrogate_key("b@x.com")]

    def test_expression_hashes_each_distinct_key_once(self, monkeypatch):
        calls = []

        def counting_key(value):
            calls.append(value)
            return surrogate_key(value)

        monkeypatch.setattr(windows, "surrogate_key", counting_key)
        df = pl.DataFrame({"k": ["a@x.com", "b@x.com", "a@x.com", None, "a@x.com"]})

        result = df.select(surrogate_key_expr(pl.col("k")).alias("sk"))

        assert sorted(calls) == ["a@x.com", "b@x.com"]
        a, b = surrogate_key("a@x.com"), surrogate_key("b@x.com")
        assert result["sk"].to_list() == [a, b, a, None, a]

    def test_expression_all_null(self):
        df = pl.DataFrame({"k": [None, None]}, schema={"k": pl.Utf8})

        result = df.select(surrogate_key_expr(pl.col("k")).alias("sk"))

        assert result["sk"].dtype == pl.Int64
        assert result["sk"].to_list() == [None, None]


class TestCalendarHelpers:
    """Tests for month arithmetic and bucket labels"""

    def test_month_index_difference(self):
        from datetime import date

        df = pl.DataFrame({"a": [date(2020, 11, 30)], "b": [date(2021, 2, 1)]})

        result = df.select((month_index(pl.col("b")) - month_index(pl.col("a"))).alias("diff"))

        assert result["diff"].to_list() == [3]

    def test_bucket_labels(self):
        labels = price_bucket_labels((20.0, 50.0, 100.0))

        assert len(labels) == 4
        assert labels[0] == "Under 20"
        assert labels[1].startswith("20") and labels[1].endswith("49.99")
        assert labels[2].startswith("50") and labels[2].endswith("99.99")
        assert labels[3] == "100+"
