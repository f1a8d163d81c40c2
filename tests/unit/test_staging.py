"""
Unit Tests - Staging
"""
from datetime import date
from decimal import Decimal

import pytest
import polars as pl

from sales_bi.schemas import STG_CATEGORIES, STG_CUSTOMERS, STG_ORDERS, STG_PRODUCTS, parse_date_expr
from sales_bi.transformation.cleaners import DataCleaner, StagingBuilder, schema_catalog
from sales_bi.transformation.consolidation import MasterConsolidator
from sales_bi.transformation.enrichers import enrich_master
from sales_bi.windows import price_bucket_labels


class TestDataCleaner:
    """Tests for DataCleaner"""

    def test_trim_strings(self):
        """Test string trimming"""
        cleaner = DataCleaner()
        df = pl.DataFrame({
            "name": ["  John  ", "Jane", "  Bob"],
            "email": [" test@example.com ", "user@test.com", "admin@site.com "],
        })

        result = cleaner.apply(df, "trim_strings")

        assert result["name"].to_list() == ["John", "Jane", "Bob"]
        assert result["email"].to_list() == ["test@example.com", "user@test.com", "admin@site.com"]

    def test_remove_duplicates_first_wins(self):
        """The first row seen for a key survives and input order is kept"""
        cleaner = DataCleaner()
        df = pl.DataFrame({
            "id": [2, 1, 2, 3],
            "value": ["a", "b", "c", "d"],
        })

        result = cleaner.apply(df, "remove_duplicates", ["id"])

        assert result["id"].to_list() == [2, 1, 3]
        assert result["value"].to_list() == ["a", "b", "d"]

    def test_clean_email(self):
        """Fragments and mailto prefixes are stripped, case is folded"""
        cleaner = DataCleaner()
        df = pl.DataFrame({"email": ["  A@X.com ", "mailto:BOB@Y.COM", "cy@z.com#home", "MailTo:d@e.org", None]})

        result = cleaner.apply(df, "clean_email", "email")

        assert result["email"].to_list() == ["a@x.com", "bob@y.com", "cy@z.com", "d@e.org", None]

    def test_clean_phone(self):
        """Test phone cleaning keeps digits only"""
        cleaner = DataCleaner()
        df = pl.DataFrame({"phone": ["(555) 123-4567", "+1 555.000.1111"]})

        result = cleaner.apply(df, "clean_phone", "phone")

        assert result["phone"].to_list() == ["5551234567", "15550001111"]

    def test_register_rule(self):
        cleaner = DataCleaner()
        cleaner.register_rule("drop_all", lambda df: df.clear())

        assert cleaner.apply(pl.DataFrame({"x": [1, 2]}), "drop_all").is_empty()


class TestDateParsing:
    """Tests for tolerant order date parsing"""

    def test_formats_in_priority_order(self, pipeline_settings):
        df = pl.DataFrame({"d": ["2020-01-05", "01/20/2020", "15/02/2020", " 2020-03-01 ", "not a date", None]})

        result = df.select(parse_date_expr("d", pipeline_settings.date_formats).alias("d"))

        assert result["d"].to_list() == [
            date(2020, 1, 5),
            date(2020, 1, 20),
            date(2020, 2, 15),
            date(2020, 3, 1),
            None,
            None,
        ]

    def test_ambiguous_date_prefers_us(self, pipeline_settings):
        """03/04/2020 is March 4th, not April 3rd"""
        df = pl.DataFrame({"d": ["03/04/2020"]})

        result = df.select(parse_date_expr("d", pipeline_settings.date_formats).alias("d"))

        assert result["d"].to_list() == [date(2020, 3, 4)]


class TestStagingBuilder:
    """Tests for StagingBuilder"""

    def test_customers(self, staging_report):
        customers = staging_report.relations[STG_CUSTOMERS]

        assert customers["customer_id"].to_list() == [1, 2, 3]
        assert customers["customer_email"].to_list() == ["a@x.com", "bob@y.com", "cy@z.com"]
        assert customers["customer_city"].to_list() == ["Springfield", "Salem", "Salem"]
        assert customers["customer_state"].to_list() == ["IL", "OR", "MA"]
        assert customers["customer_phone"].to_list() == ["5551234567", "5550001111", None]
        assert customers["customer_name"][0] == "Ann Lee"

    def test_customer_stats(self, staging_report):
        stats = staging_report.stats[STG_CUSTOMERS]

        assert stats.total_rows == 5
        assert stats.null_key_dropped == 1
        assert stats.duplicates_removed == 1
        assert stats.rows_dropped == 2

    def test_categories(self, staging_report):
        categories = staging_report.relations[STG_CATEGORIES]

        assert categories["category_id"].to_list() == [1, 2]
        assert categories["category_name"].to_list() == ["Bikes", "Clothing"]
        assert categories["category_abbreviation"].to_list() == ["BK", "CL"]

    def test_products(self, staging_report):
        products = staging_report.relations[STG_PRODUCTS]
        stats = staging_report.stats[STG_PRODUCTS]

        assert products["product_number"].to_list() == ["P1", "P2", "P3"]
        # First-seen P1 wins over the later duplicate
        assert products["product_name"].to_list() == ["Road Bike", "Jersey", "Socks"]
        assert products["price"].cast(pl.Float64).to_list() == pytest.approx([120.0, 20.0, 19.99])
        assert stats.duplicates_removed == 1
        assert stats.invalid_dropped == 1

    def test_orders(self, staging_report):
        orders = staging_report.relations[STG_ORDERS]

        assert orders["order_id"].to_list() == [1, 2, 3, 4, 9]
        assert orders["order_date"].to_list() == [
            date(2020, 1, 5),
            date(2020, 1, 20),
            date(2020, 2, 15),
            date(2020, 3, 1),
            date(2020, 2, 15),
        ]
        assert orders["order_year_month"].to_list() == ["2020-01", "2020-01", "2020-02", "2020-03", "2020-02"]
        assert orders["quantity"].min() > 0

    def test_order_drop_accounting(self, staging_report):
        stats = staging_report.stats[STG_ORDERS]

        assert stats.total_rows == 10
        assert stats.duplicates_removed == 1
        assert stats.invalid_dropped == 2
        assert stats.orphans_dropped == 2
        assert stats.rows_after_cleaning == 5

        drops = staging_report.drops
        assert drops.height == 16
        orphan_row = drops.filter((pl.col("relation") == STG_ORDERS) & (pl.col("reason") == "orphan"))
        assert orphan_row["rows_dropped"].to_list() == [2]

    def test_orphans_before_and_after(self, staging_report):
        assert staging_report.orphans_pre == {"orders_missing_customer": 1, "orders_missing_product": 1}
        assert staging_report.orphans_post == {"orders_missing_customer": 0, "orders_missing_product": 0}

    def test_validation_passes(self, staging_report):
        assert staging_report.validation.passed
        assert staging_report.validation.get("stg_orders.ref_integrity_customer_id").passed

    def test_rowcounts(self, staging_report):
        counts = dict(zip(staging_report.rowcounts["name"], staging_report.rowcounts["n"]))

        assert counts["raw_orders"] == 10
        assert counts[STG_ORDERS] == 5
        assert counts[STG_CUSTOMERS] == 3

    def test_schema_catalog(self, staging_report):
        catalog = schema_catalog(staging_report.relations)

        orders = catalog.filter(pl.col("table_name") == STG_ORDERS)
        assert set(orders["column_name"]) == {
            "order_id", "order_date", "customer_id", "product_number", "quantity", "order_year_month",
        }
        assert not orders.filter(pl.col("column_name") == "order_id")["is_nullable"][0]

    def test_empty_extracts(self, pipeline_settings):
        """Empty inputs produce empty, well-formed staging relations"""
        from sales_bi.schemas import RAW_COLUMNS, empty_raw_frame

        report = StagingBuilder(pipeline_settings).build({name: empty_raw_frame(name) for name in RAW_COLUMNS})

        assert all(df.is_empty() for df in report.relations.values())
        assert "order_date" in report.relations[STG_ORDERS].columns

    def test_deterministic(self, raw_relations, pipeline_settings):
        builder = StagingBuilder(pipeline_settings)

        first = builder.build(raw_relations).relations
        second = builder.build(raw_relations).relations

        for name in first:
            assert first[name].equals(second[name])


class TestSubCentPrices:
    """Prices keep their full scale through staging and line revenue"""

    @pytest.fixture
    def sub_cent_raw(self, raw_relations) -> dict:
        raw = dict(raw_relations)
        raw["raw_products"] = raw["raw_products"].with_columns(
            pl.Series("Price", ["120.00", "19.999", "0.004", "n/a", "5.00"])
        )
        return raw

    def test_prices_not_rounded(self, sub_cent_raw, pipeline_settings):
        products = StagingBuilder(pipeline_settings).build(sub_cent_raw).relations[STG_PRODUCTS]

        assert products["product_number"].to_list() == ["P1", "P2", "P3"]
        assert products["price"].to_list() == [Decimal("120"), Decimal("19.999"), Decimal("0.004")]

    def test_line_revenue_and_bucket(self, sub_cent_raw, pipeline_settings):
        staged = StagingBuilder(pipeline_settings).build(sub_cent_raw).relations
        master = MasterConsolidator(pipeline_settings).build(staged).master
        enriched = enrich_master(master, pipeline_settings)
        labels = price_bucket_labels(pipeline_settings.price_bucket_bounds)

        jersey = enriched.filter(pl.col("customer_email") == "a@x.com", pl.col("product_name") == "Jersey").row(0, named=True)
        socks = enriched.filter(pl.col("customer_email") == "bob@y.com").row(0, named=True)

        assert jersey["line_revenue"] == Decimal("39.998")
        assert jersey["price_bucket"] == labels[0]
        assert socks["line_revenue"] == Decimal("0.012")
        assert socks["price_bucket"] == labels[0]
