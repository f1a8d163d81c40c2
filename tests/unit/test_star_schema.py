"""
Unit Tests - Star Schema
"""
from datetime import date

import pytest
import polars as pl

from sales_bi.config import PipelineSettings
from sales_bi.modeling.star_schema import FACT_COLUMNS, StarSchemaBuilder
from sales_bi.windows import surrogate_key


class TestDimDate:
    """Tests for the calendar dimension"""

    def test_configured_range(self, pipeline_settings):
        dim_date = StarSchemaBuilder(pipeline_settings).build_dim_date()

        # 2020 is a leap year
        assert dim_date.height == 731
        assert dim_date["date_key"][0] == 20200101
        assert dim_date["date_key"][-1] == 20211231
        assert dim_date["date_key"].is_unique().all()

    def test_attributes(self, pipeline_settings):
        dim_date = StarSchemaBuilder(pipeline_settings).build_dim_date(date(2020, 1, 4), date(2020, 1, 6))

        assert dim_date["day_of_week_num"].to_list() == [7, 1, 2]
        assert dim_date["day_of_week_name"].to_list() == ["Sat", "Sun", "Mon"]
        assert dim_date["is_weekend"].to_list() == [True, True, False]
        assert dim_date["month_name_short"].to_list() == ["Jan"] * 3
        assert dim_date["quarter"].to_list() == [1, 1, 1]


class TestDimCustomer:
    """Tests for the customer dimension"""

    def test_one_row_per_email(self, star_report):
        dim_customer = star_report.dim_customer

        assert dim_customer["customer_email"].to_list() == ["a@x.com", "bob@y.com", "cy@z.com"]
        assert dim_customer["customer_sk"][0] == surrogate_key("a@x.com")
        assert dim_customer["city"].to_list() == ["Springfield", "Salem", "Salem"]

    def test_city_from_latest_line(self, pipeline_settings):
        """Most recent line wins; a same-day tie goes to the greatest city name"""
        master = pl.DataFrame({
            "customer_email": ["A@x.com ", "a@x.com", "a@x.com"],
            "customer_city": ["Zurich", "Austin", "Boston"],
            "order_date": [date(2020, 1, 1), date(2020, 6, 1), date(2020, 6, 1)],
        })

        dim_customer = StarSchemaBuilder(pipeline_settings).build_dim_customer(master)

        assert dim_customer.height == 1
        assert dim_customer["city"].to_list() == ["Boston"]


class TestDimProduct:
    """Tests for the product dimension"""

    def test_normalized_business_key(self, pipeline_settings):
        master = pl.DataFrame({
            "product_name": ["Jersey", "jersey ", "Jersey"],
            "category_name": ["Clothing", "CLOTHING", "Outlet"],
        })

        dim_product = StarSchemaBuilder(pipeline_settings).build_dim_product(master)

        assert dim_product.height == 2
        assert dim_product["product_sk"].is_unique().all()
        assert surrogate_key("JERSEY|CLOTHING") in dim_product["product_sk"].to_list()

    def test_master_products(self, star_report):
        assert star_report.dim_product.height == 3


class TestFactSales:
    """Tests for the fact table and parity guardrails"""

    def test_fact_rows(self, master_df, star_report):
        fact = star_report.fact_sales

        assert fact.columns == FACT_COLUMNS
        assert fact.height == master_df.height
        assert fact["date_key"].to_list() == [20200105, 20200120, 20200215, 20200301, 20200215]

    def test_totals_match_master(self, master_df, star_report):
        fact = star_report.fact_sales

        assert fact["line_revenue"].cast(pl.Float64).sum() == pytest.approx(259.96)
        assert fact["quantity"].sum() == master_df["quantity"].sum()

    def test_guardrails_pass(self, star_report):
        assert star_report.validation.passed
        assert star_report.monthly_parity["revenue_diff"].max() == pytest.approx(0.0)
        assert star_report.monthly_parity["quantity_diff"].max() == 0

    def test_narrow_date_range_fails_guardrails(self, master_df):
        """Lines outside dim_date drop out of the fact and are caught"""
        settings = PipelineSettings(date_dim_start=date(2020, 1, 1), date_dim_end=date(2020, 1, 31))

        report = StarSchemaBuilder(settings).build(master_df)

        failed = {c.name for c in report.validation.failures()}
        assert report.fact_sales.height == 2
        assert not report.validation.passed
        assert {"fact_rows_equal_master_rows", "master_dates_within_dim_date", "monthly_revenue_parity"} <= failed

    def test_relations(self, star_report):
        assert set(star_report.to_relations()) == {
            "dim_date",
            "dim_customer",
            "dim_product",
            "fact_sales",
            "qa_star_monthly_parity",
            "qa_star_checks",
        }

    def test_deterministic_keys(self, master_df, pipeline_settings):
        first = StarSchemaBuilder(pipeline_settings).build(master_df).fact_sales
        second = StarSchemaBuilder(pipeline_settings).build(master_df).fact_sales

        assert first.equals(second)
