"""
Unit Tests - Data Quality
"""
import pytest
import polars as pl

from sales_bi.quality.profiling import RawValidator, profile_raw
from sales_bi.quality.validators import (
    DataValidator,
    ValidationSeverity,
    ValidationStatus,
    count_orphans,
)
from sales_bi.schemas import RAW_CUSTOMERS, RAW_ORDERS


class TestDataValidator:
    """Tests for DataValidator"""

    def test_not_null_check_passes(self):
        """Test not null check with valid data"""
        df = pl.DataFrame({"id": [1, 2, 3], "name": ["a", "b", "c"]})

        validator = DataValidator()
        validator.add_not_null_check("id")

        result = validator.validate(df)

        assert result.status == ValidationStatus.PASSED
        assert result.passed_checks == 1

    def test_not_null_check_fails(self):
        """Test not null check with null values"""
        df = pl.DataFrame({"id": [1, None, 3], "name": ["a", "b", "c"]})

        result = DataValidator().add_not_null_check("id").validate(df)

        assert result.status == ValidationStatus.FAILED
        assert result.failed_checks == 1
        assert result.get("not_null_id").failed_rows == 1

    def test_unique_check_on_composite_key(self):
        """Duplicates are counted on the full key"""
        df = pl.DataFrame({"a": [1, 1, 2], "b": ["x", "y", "x"]})

        assert DataValidator().add_unique_check(["a", "b"]).validate(df).passed
        result = DataValidator().add_unique_check("a").validate(df)
        assert not result.passed
        assert result.get("unique_a").failed_rows == 1

    def test_range_check(self):
        """Test inclusive range check"""
        df = pl.DataFrame({"weekday": [1, 4, 7, 8]})

        result = DataValidator().add_range_check("weekday", min_value=1, max_value=7).validate(df)

        assert result.status == ValidationStatus.FAILED
        assert result.get("range_weekday").failed_rows == 1

    def test_positive_check_allow_zero(self):
        """Zero only fails when allow_zero is False"""
        df = pl.DataFrame({"quantity": [0, 1, 2]})

        assert DataValidator().add_positive_check("quantity").validate(df).passed
        assert not DataValidator().add_positive_check("quantity", allow_zero=False).validate(df).passed

    def test_enum_check(self):
        """Test allowed values"""
        df = pl.DataFrame({"bucket": ["Under 20", "100+", "bogus"]})

        result = DataValidator().add_enum_check("bucket", ["Under 20", "100+"]).validate(df)

        assert result.get("enum_bucket").failed_rows == 1

    def test_pattern_check(self):
        """Nulls are ignored by pattern checks"""
        df = pl.DataFrame({"email": ["a@x.com", None, "broken"]})

        result = DataValidator().add_pattern_check("email", r"^[^@]+@[^@]+$").validate(df)

        assert result.get("pattern_email").failed_rows == 1

    def test_missing_column_fails(self):
        """A check on an absent column fails instead of raising"""
        result = DataValidator().add_not_null_check("nope").validate(pl.DataFrame({"id": [1]}))

        assert not result.passed
        assert "not found" in result.get("not_null_nope").message

    def test_warning_severity_is_partial(self):
        """Warnings alone do not fail a suite"""
        df = pl.DataFrame({"id": [1, None]})

        result = DataValidator().add_not_null_check("id", severity=ValidationSeverity.WARNING).validate(df)

        assert result.status == ValidationStatus.PARTIAL
        assert result.passed
        assert result.warning_count == 1

    def test_equality_check_tolerance(self):
        """Numeric reconciliation within tolerance"""
        df = pl.DataFrame({"x": [1.0]})

        ok = DataValidator().add_equality_check("close", lambda d: 1.0, lambda d: 1.0005, tolerance=0.001)
        bad = DataValidator().add_equality_check("far", lambda d: 1.0, lambda d: 1.01, tolerance=0.001)

        assert ok.validate(df).passed
        assert not bad.validate(df).passed

    def test_count_check(self):
        """Count checks pass on zero offending rows"""
        df = pl.DataFrame({"q": [1, -1, 2]})

        result = DataValidator().add_count_check(
            "negative_q", lambda d: d.filter(pl.col("q") < 0).height, "Negative quantities"
        ).validate(df)

        assert result.get("negative_q").failed_rows == 1
        assert "Negative quantities: 1" == result.get("negative_q").message

    def test_to_frame(self):
        """Check suite materializes as one row per check"""
        df = pl.DataFrame({"id": [1, 2]})
        result = DataValidator("demo").add_not_null_check("id").add_unique_check("id").validate(df)

        frame = result.to_frame()

        assert frame.height == 2
        assert frame["suite"].to_list() == ["demo", "demo"]
        assert frame["passed"].all()

    def test_count_orphans_includes_null_keys(self):
        """Left-join-then-null semantics"""
        child = pl.DataFrame({"fk": [1, 2, None, 4]})
        parent = pl.DataFrame({"pk": [1, 2, 3]})

        assert count_orphans(child, "fk", parent, "pk") == 2


class TestRawValidator:
    """Tests for raw profiling"""

    def test_row_counts(self, raw_relations, pipeline_settings):
        profile = RawValidator(pipeline_settings).profile(raw_relations)

        counts = dict(zip(profile.row_counts["relation"], profile.row_counts["n_rows"]))
        assert counts[RAW_CUSTOMERS] == 5
        assert counts[RAW_ORDERS] == 10

    def test_duplicate_keys(self, raw_relations, pipeline_settings):
        """Every raw relation carries exactly one repeated key"""
        profile = RawValidator(pipeline_settings).profile(raw_relations)

        assert profile.duplicate_keys["duplicate_keys"].to_list() == [1, 1, 1, 1]

    def test_orphans(self, raw_relations, pipeline_settings):
        profile = RawValidator(pipeline_settings).profile(raw_relations)

        orphans = dict(zip(profile.orphans["relationship"], profile.orphans["orphan_rows"]))
        assert orphans == {
            "orders->customers": 1,
            "orders->products": 1,
            "products->categories": 0,
        }

    def test_format_violations(self, raw_relations, pipeline_settings):
        profile = RawValidator(pipeline_settings).profile(raw_relations)

        violations = {
            row["check"]: row["violations"] for row in profile.format_violations.iter_rows(named=True)
        }
        assert violations["city_whitespace"] == 1
        assert violations["customer_id_not_castable"] == 1
        assert violations["price_not_castable"] == 1
        assert violations["quantity_not_positive"] == 1
        assert violations["date_not_parseable"] == 1

    def test_coverage_and_gaps(self, raw_relations, pipeline_settings):
        profile = RawValidator(pipeline_settings).profile(raw_relations)

        coverage = profile.coverage.row(0, named=True)
        assert coverage["products_never_ordered"] == 1
        assert coverage["categories_without_products"] == 0
        assert profile.order_id_gaps.is_empty()

    def test_order_id_gaps(self, raw_orders_df, pipeline_settings):
        """Missing ids inside min..max are listed in order"""
        orders = raw_orders_df.filter(~pl.col("OrderID").is_in(["3", "5"]))

        gaps = RawValidator(pipeline_settings).order_id_gaps(orders)

        assert gaps["missing_order_id"].to_list() == [3, 5]

    def test_checks_are_warnings(self, raw_relations, pipeline_settings):
        """Dirty raw data never fails the profiling stage"""
        profile = profile_raw(raw_relations, pipeline_settings)

        assert profile.validation.passed
        assert profile.validation.status == ValidationStatus.PARTIAL
        assert not profile.validation.get("raw_customers.city_whitespace").passed

    def test_input_untouched(self, raw_relations, pipeline_settings):
        """Profiling is read-only"""
        before = {name: df.clone() for name, df in raw_relations.items()}

        RawValidator(pipeline_settings).profile(raw_relations)

        for name, df in raw_relations.items():
            assert df.equals(before[name])

    def test_missing_relation_profiled_as_empty(self, raw_relations, pipeline_settings):
        partial = {k: v for k, v in raw_relations.items() if k != RAW_CUSTOMERS}

        profile = RawValidator(pipeline_settings).profile(partial)

        counts = dict(zip(profile.row_counts["relation"], profile.row_counts["n_rows"]))
        assert counts[RAW_CUSTOMERS] == 0
        assert set(profile.to_relations()) >= {"qa_raw_summary", "qa_raw_checks"}
