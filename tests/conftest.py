"""
Test Suite Configuration

A small hand-built raw dataset whose surviving lines are known exactly:

    order  date        customer   product    qty  line_revenue
    1      2020-01-05  a@x.com    Road Bike  1    120.00
    2      2020-01-20  a@x.com    Jersey     2     40.00
    3      2020-02-15  bob@y.com  Socks      3     59.97
    4      2020-03-01  cy@z.com   Jersey     1     20.00
    9      2020-02-15  a@x.com    Socks      1     19.99

Orders 5-8 and the repeated order 2 are dropped during staging.
"""
from datetime import date

import pytest
import polars as pl

from sales_bi.config import PipelineSettings, Settings
from sales_bi.metrics.views import MetricViewLayer
from sales_bi.modeling.star_schema import StarSchemaBuilder
from sales_bi.schemas import RAW_CATEGORIES, RAW_CUSTOMERS, RAW_ORDERS, RAW_PRODUCTS
from sales_bi.transformation.cleaners import StagingBuilder
from sales_bi.transformation.consolidation import MasterConsolidator


def _strings(data: dict) -> pl.DataFrame:
    return pl.DataFrame(data, schema={k: pl.Utf8 for k in data})


@pytest.fixture
def pipeline_settings() -> PipelineSettings:
    """Pipeline settings with the default 2020-2021 calendar"""
    return PipelineSettings(
        date_dim_start=date(2020, 1, 1),
        date_dim_end=date(2021, 12, 31),
        tier_count=3,
        tiers_per_year=False,
        fail_on_guardrail=True,
    )


@pytest.fixture
def test_settings(pipeline_settings) -> Settings:
    """Create test settings"""
    return Settings(pipeline=pipeline_settings)


@pytest.fixture
def raw_customers_df() -> pl.DataFrame:
    return _strings({
        "CustomerID": ["1", "2", "3", "x4", "2"],
        "FirstName": [" Ann ", "Bob", "Cy", "Dan", "Robert"],
        "LastName": ["Lee", "Ray", "Dee", "Fox", "Ray"],
        "CustomerEmail": ["  A@X.com ", "mailto:BOB@Y.COM", "cy@z.com#home", "dan@w.com", "other@y.com"],
        "CustomerPhone": ["(555) 123-4567", "555.000.1111", None, "555", "555"],
        "CustomerAddress": ["1 Main St", "2 Oak Ave", "3 Elm Rd", "4 Pine Ct", "9 Nowhere"],
        "CustomerCity": [" Springfield ", "Salem", "Salem", "Madison", "Other"],
        "CustomerState": ["il", "OR", "ma", "wi", "xx"],
        "CustomerZip": ["62701", "97301", "01970", "53703", "00000"],
    })


@pytest.fixture
def raw_categories_df() -> pl.DataFrame:
    return _strings({
        "CategoryID": ["1", "2", "2"],
        "CategoryName": ["Bikes", " Clothing ", "Duplicate"],
        "CategoryAbbreviation": ["bk", "cl", "dp"],
    })


@pytest.fixture
def raw_products_df() -> pl.DataFrame:
    return _strings({
        "ProdNumber": ["P1", " P2 ", "P3", "P4", "P1"],
        "ProdName": ["Road Bike", "Jersey", "Socks", "Broken", "Shadow"],
        "Category": ["1", "2", "2", "2", "1"],
        "Price": ["120.00", "20.00", "19.99", "n/a", "5.00"],
    })


@pytest.fixture
def raw_orders_df() -> pl.DataFrame:
    return _strings({
        "OrderID": ["1", "2", "3", "4", "5", "6", "7", "8", "2", "9"],
        "Date": [
            "2020-01-05",
            "01/20/2020",
            "15/02/2020",
            "2020-03-01",
            "2020-03-01",
            "2020-03-02",
            "not a date",
            "2020-03-03",
            "2020-12-31",
            "2020-02-15",
        ],
        "CustomerID": ["1", "1", "2", "3", "99", "1", "1", "2", "3", "1"],
        "ProdNumber": ["P1", "P2", "P3", "P2", "P1", "P9", "P1", "P1", "P3", "P3"],
        "Quantity": ["1", "2", "3", "1", "1", "1", "1", "0", "5", "1"],
    })


@pytest.fixture
def raw_relations(raw_customers_df, raw_categories_df, raw_products_df, raw_orders_df) -> dict:
    return {
        RAW_CUSTOMERS: raw_customers_df,
        RAW_CATEGORIES: raw_categories_df,
        RAW_PRODUCTS: raw_products_df,
        RAW_ORDERS: raw_orders_df,
    }


@pytest.fixture
def staging_report(raw_relations, pipeline_settings):
    return StagingBuilder(pipeline_settings).build(raw_relations)


@pytest.fixture
def master_df(staging_report, pipeline_settings) -> pl.DataFrame:
    return MasterConsolidator(pipeline_settings).build(staging_report.relations).master


@pytest.fixture
def star_report(master_df, pipeline_settings):
    return StarSchemaBuilder(pipeline_settings).build(master_df)


@pytest.fixture
def metric_views(star_report, pipeline_settings) -> dict:
    """v_base_sales plus every metric view"""
    return MetricViewLayer(pipeline_settings).build(star_report.to_relations())


@pytest.fixture
def monthly_base_df() -> pl.DataFrame:
    """Minimal base view with monthly sales of 100, 150 and 120"""
    return pl.DataFrame({
        "order_ym": ["2021-01", "2021-02", "2021-03"],
        "line_revenue": [100.0, 150.0, 120.0],
        "quantity": [10, 15, 12],
        "customer_sk": [1, 2, 1],
    })
