"""
Relation names and raw extract layouts shared across stages.
"""

from typing import Dict, List, Sequence

import polars as pl

# Raw inputs (owned by the ingestion collaborator)
RAW_CUSTOMERS = "raw_customers"
RAW_CATEGORIES = "raw_product_category"
RAW_PRODUCTS = "raw_products"
RAW_ORDERS = "raw_orders"

RAW_COLUMNS: Dict[str, List[str]] = {
    RAW_CUSTOMERS: [
        "CustomerID",
        "FirstName",
        "LastName",
        "CustomerEmail",
        "CustomerPhone",
        "CustomerAddress",
        "CustomerCity",
        "CustomerState",
        "CustomerZip",
    ],
    RAW_CATEGORIES: ["CategoryID", "CategoryName", "CategoryAbbreviation"],
    RAW_PRODUCTS: ["ProdNumber", "ProdName", "Category", "Price"],
    RAW_ORDERS: ["OrderID", "Date", "CustomerID", "ProdNumber", "Quantity"],
}

# Staging
STG_CUSTOMERS = "stg_customers"
STG_CATEGORIES = "stg_product_category"
STG_PRODUCTS = "stg_products"
STG_ORDERS = "stg_orders"

# Consolidation / enrichment
MASTER_SALES = "master_sales"
MASTER_SALES_EXT = "master_sales_ext"

# Star schema
DIM_DATE = "dim_date"
DIM_CUSTOMER = "dim_customer"
DIM_PRODUCT = "dim_product"
FACT_SALES = "fact_sales"

# Semantic layer
BASE_VIEW = "v_base_sales"

# Scale 9 like SAFE_CAST(... AS NUMERIC); sub-cent prices stay exact
NUMERIC = pl.Decimal(38, 9)


def empty_raw_frame(relation: str) -> pl.DataFrame:
    """Zero-row raw relation with the expected string columns"""
    return pl.DataFrame(schema={c: pl.Utf8 for c in RAW_COLUMNS[relation]})


def coerce_raw_frame(relation: str, df: pl.DataFrame) -> pl.DataFrame:
    """
    Present a raw relation as loosely typed strings.

    Missing expected columns are added as nulls so profiling and staging never
    fail on a partial extract.
    """
    exprs = []
    for column in RAW_COLUMNS[relation]:
        if column in df.columns:
            exprs.append(pl.col(column).cast(pl.Utf8).alias(column))
        else:
            exprs.append(pl.lit(None, dtype=pl.Utf8).alias(column))
    return df.select(exprs)


def trimmed(column: str) -> pl.Expr:
    return pl.col(column).cast(pl.Utf8).str.strip_chars()


def safe_int(column: str) -> pl.Expr:
    """SAFE_CAST(... AS INT64)"""
    return trimmed(column).cast(pl.Int64, strict=False)


def safe_numeric(column: str) -> pl.Expr:
    """SAFE_CAST(... AS NUMERIC)"""
    return trimmed(column).cast(NUMERIC, strict=False)


def parse_date_expr(column: str, formats: Sequence[str]) -> pl.Expr:
    """Try each format in priority order and keep the first successful parse"""
    value = trimmed(column)
    return pl.coalesce(
        [value.str.strptime(pl.Date, fmt, strict=False, exact=True) for fmt in formats]
    )
