"""
Raw Profiling Module

Read-only diagnostic pass over the raw extracts. Every figure is a
descriptive count or statistic; nothing here filters, rewrites or raises.

Features:
- Row counts and null/blank counts for critical columns
- Duplicate primary keys
- Foreign-key orphans (left-join-then-null)
- Format violations (email regex, non-castable numerics, polluted strings)
- Numeric distribution statistics
- Top-N frequency breakdowns, coverage and order id gaps
"""

from dataclasses import dataclass
from typing import Dict, List, Optional

import polars as pl
import structlog

from sales_bi.config import PipelineSettings, get_settings
from sales_bi.quality.validators import (
    ValidationCheck,
    ValidationResult,
    ValidationSeverity,
    count_orphans,
    summarize_checks,
)
from sales_bi.schemas import (
    RAW_CATEGORIES,
    RAW_COLUMNS,
    RAW_CUSTOMERS,
    RAW_ORDERS,
    RAW_PRODUCTS,
    coerce_raw_frame,
    empty_raw_frame,
    parse_date_expr,
    safe_int,
    trimmed,
)

logger = structlog.get_logger(__name__)

EMAIL_PATTERN = r"^[^@\s]+@[^@\s]+\.[^@\s]+$"

CRITICAL_COLUMNS: Dict[str, List[str]] = {
    RAW_CUSTOMERS: ["CustomerID", "CustomerEmail", "CustomerCity"],
    RAW_CATEGORIES: ["CategoryID", "CategoryName"],
    RAW_PRODUCTS: ["ProdNumber", "Category", "Price"],
    RAW_ORDERS: ["OrderID", "Date", "CustomerID", "ProdNumber", "Quantity"],
}

PRIMARY_KEYS: Dict[str, str] = {
    RAW_CUSTOMERS: "CustomerID",
    RAW_CATEGORIES: "CategoryID",
    RAW_PRODUCTS: "ProdNumber",
    RAW_ORDERS: "OrderID",
}

# Scanning an absurd id span would cost more than it tells
MAX_GAP_SPAN = 10_000_000


def _blank(column: str) -> pl.Expr:
    return pl.col(column).is_null() | (pl.col(column).str.strip_chars() == "")


def _not_castable(column: str, dtype: pl.DataType = pl.Int64) -> pl.Expr:
    """Present and non-blank, but fails a safe cast"""
    return ~_blank(column) & pl.col(column).str.strip_chars().cast(dtype, strict=False).is_null()


@dataclass
class RawProfile:
    """Diagnostic relations produced by one profiling pass"""
    row_counts: pl.DataFrame
    null_counts: pl.DataFrame
    duplicate_keys: pl.DataFrame
    orphans: pl.DataFrame
    format_violations: pl.DataFrame
    numeric_profile: pl.DataFrame
    top_cities: pl.DataFrame
    top_products: pl.DataFrame
    coverage: pl.DataFrame
    order_id_gaps: pl.DataFrame
    summary: pl.DataFrame
    validation: ValidationResult

    def to_relations(self) -> Dict[str, pl.DataFrame]:
        return {
            "qa_raw_row_counts": self.row_counts,
            "qa_raw_null_counts": self.null_counts,
            "qa_raw_duplicate_keys": self.duplicate_keys,
            "qa_raw_orphans": self.orphans,
            "qa_raw_format_violations": self.format_violations,
            "qa_raw_numeric_profile": self.numeric_profile,
            "qa_raw_top_cities": self.top_cities,
            "qa_raw_top_products": self.top_products,
            "qa_raw_coverage": self.coverage,
            "qa_raw_order_id_gaps": self.order_id_gaps,
            "qa_raw_summary": self.summary,
            "qa_raw_checks": self.validation.to_frame(),
        }


class RawValidator:
    """
    Profiles the four raw relations.

    Example:
        profile = RawValidator().profile(raw_relations)
        profile.orphans
    """

    def __init__(self, settings: Optional[PipelineSettings] = None):
        self.settings = settings or get_settings().pipeline

    def profile(self, raw_relations: Dict[str, pl.DataFrame]) -> RawProfile:
        """Run every diagnostic; absent relations are profiled as empty"""
        raw = {
            name: coerce_raw_frame(name, raw_relations[name]) if name in raw_relations else empty_raw_frame(name)
            for name in RAW_COLUMNS
        }

        row_counts = self.row_counts(raw)
        duplicate_keys = self.duplicate_keys(raw)
        orphans = self.orphans(raw)
        format_violations = self.format_violations(raw)

        profile = RawProfile(
            row_counts=row_counts,
            null_counts=self.null_counts(raw),
            duplicate_keys=duplicate_keys,
            orphans=orphans,
            format_violations=format_violations,
            numeric_profile=self.numeric_profile(raw),
            top_cities=self.top_cities(raw[RAW_CUSTOMERS]),
            top_products=self.top_products(raw[RAW_ORDERS]),
            coverage=self.coverage(raw),
            order_id_gaps=self.order_id_gaps(raw[RAW_ORDERS]),
            summary=self.summary(raw, duplicate_keys, orphans, format_violations),
            validation=self._checks(duplicate_keys, orphans, format_violations),
        )

        logger.info(
            "Raw profiling complete",
            relations=dict(zip(row_counts["relation"].to_list(), row_counts["n_rows"].to_list())),
            duplicate_keys=int(duplicate_keys["duplicate_keys"].sum()),
            orphan_rows=int(orphans["orphan_rows"].sum()),
            format_violations=int(format_violations["violations"].sum()),
        )
        return profile

    def row_counts(self, raw: Dict[str, pl.DataFrame]) -> pl.DataFrame:
        return pl.DataFrame(
            {"relation": list(raw), "n_rows": [df.height for df in raw.values()]},
            schema={"relation": pl.Utf8, "n_rows": pl.Int64},
        )

    def null_counts(self, raw: Dict[str, pl.DataFrame]) -> pl.DataFrame:
        """Null or whitespace-only values per critical column"""
        rows = []
        for relation, columns in CRITICAL_COLUMNS.items():
            df = raw[relation]
            for column in columns:
                rows.append(
                    {
                        "relation": relation,
                        "column": column,
                        "null_or_blank": df.filter(_blank(column)).height,
                    }
                )
        return pl.DataFrame(rows, schema={"relation": pl.Utf8, "column": pl.Utf8, "null_or_blank": pl.Int64})

    def duplicate_keys(self, raw: Dict[str, pl.DataFrame]) -> pl.DataFrame:
        """Number of key values that appear more than once"""
        rows = []
        for relation, key in PRIMARY_KEYS.items():
            dupes = (
                raw[relation]
                .group_by(trimmed(key).alias(key))
                .agg(pl.len().alias("n"))
                .filter(pl.col("n") > 1)
                .height
            )
            rows.append({"relation": relation, "key": key, "duplicate_keys": dupes})
        return pl.DataFrame(rows, schema={"relation": pl.Utf8, "key": pl.Utf8, "duplicate_keys": pl.Int64})

    def orphans(self, raw: Dict[str, pl.DataFrame]) -> pl.DataFrame:
        """Left-join-then-null orphan counts for each foreign key"""
        orders = raw[RAW_ORDERS]
        customers = raw[RAW_CUSTOMERS].select(safe_int("CustomerID").alias("id"))
        products = raw[RAW_PRODUCTS].select(trimmed("ProdNumber").alias("id"))
        categories = raw[RAW_CATEGORIES].select(safe_int("CategoryID").alias("id"))

        counts = {
            "orders->customers": count_orphans(
                orders.select(safe_int("CustomerID").alias("id")), "id", customers, "id"
            ),
            "orders->products": count_orphans(
                orders.select(trimmed("ProdNumber").alias("id")), "id", products, "id"
            ),
            "products->categories": count_orphans(
                raw[RAW_PRODUCTS].select(safe_int("Category").alias("id")), "id", categories, "id"
            ),
        }
        return pl.DataFrame(
            {"relationship": list(counts), "orphan_rows": list(counts.values())},
            schema={"relationship": pl.Utf8, "orphan_rows": pl.Int64},
        )

    def format_violations(self, raw: Dict[str, pl.DataFrame]) -> pl.DataFrame:
        customers = raw[RAW_CUSTOMERS]
        products = raw[RAW_PRODUCTS]
        orders = raw[RAW_ORDERS]

        checks = [
            (RAW_CUSTOMERS, "bad_email", customers,
             ~_blank("CustomerEmail") & ~pl.col("CustomerEmail").str.strip_chars().str.contains(EMAIL_PATTERN)),
            (RAW_CUSTOMERS, "city_whitespace", customers,
             pl.col("CustomerCity").is_not_null() & (pl.col("CustomerCity") != pl.col("CustomerCity").str.strip_chars())),
            (RAW_CUSTOMERS, "customer_id_not_castable", customers, _not_castable("CustomerID")),
            (RAW_PRODUCTS, "empty_prod_number", products, _blank("ProdNumber")),
            (RAW_PRODUCTS, "category_not_castable", products, _not_castable("Category")),
            (RAW_PRODUCTS, "price_not_castable", products, _not_castable("Price", pl.Float64)),
            (RAW_PRODUCTS, "price_not_positive", products,
             pl.col("Price").str.strip_chars().cast(pl.Float64, strict=False) <= 0),
            (RAW_ORDERS, "quantity_not_castable", orders, _not_castable("Quantity")),
            (RAW_ORDERS, "quantity_not_positive", orders,
             pl.col("Quantity").str.strip_chars().cast(pl.Int64, strict=False) <= 0),
            (RAW_ORDERS, "date_not_parseable", orders,
             ~_blank("Date") & parse_date_expr("Date", self.settings.date_formats).is_null()),
        ]
        rows = [
            {"relation": relation, "check": name, "violations": df.filter(condition).height}
            for relation, name, df, condition in checks
        ]
        return pl.DataFrame(rows, schema={"relation": pl.Utf8, "check": pl.Utf8, "violations": pl.Int64})

    def numeric_profile(self, raw: Dict[str, pl.DataFrame]) -> pl.DataFrame:
        """min/quartiles/max/mean/population std over castable values"""
        targets = [(RAW_ORDERS, "Quantity"), (RAW_PRODUCTS, "Price")]
        frames = []
        for relation, column in targets:
            value = pl.col(column).str.strip_chars().cast(pl.Float64, strict=False)
            frames.append(
                raw[relation].select(
                    pl.lit(relation).alias("relation"),
                    pl.lit(column).alias("column"),
                    value.count().cast(pl.Int64).alias("n_valid"),
                    value.min().alias("min"),
                    value.quantile(0.25).alias("q1"),
                    value.median().alias("median"),
                    value.quantile(0.75).alias("q3"),
                    value.max().alias("max"),
                    value.mean().alias("mean"),
                    value.std(ddof=0).alias("std"),
                )
            )
        return pl.concat(frames, how="vertical_relaxed")

    def top_cities(self, customers: pl.DataFrame) -> pl.DataFrame:
        return (
            customers.filter(~_blank("CustomerCity"))
            .group_by(trimmed("CustomerCity").alias("city"))
            .agg(pl.len().cast(pl.Int64).alias("customers"))
            .sort(["customers", "city"], descending=[True, False])
            .head(self.settings.top_n)
        )

    def top_products(self, orders: pl.DataFrame) -> pl.DataFrame:
        return (
            orders.filter(~_blank("ProdNumber"))
            .group_by(trimmed("ProdNumber").alias("product_number"))
            .agg(safe_int("Quantity").sum().alias("quantity"))
            .sort(["quantity", "product_number"], descending=[True, False])
            .head(self.settings.top_n)
        )

    def coverage(self, raw: Dict[str, pl.DataFrame]) -> pl.DataFrame:
        """Date span of orders and how much of the catalog they touch"""
        orders = raw[RAW_ORDERS].select(
            parse_date_expr("Date", self.settings.date_formats).alias("order_date"),
            safe_int("CustomerID").alias("customer_id"),
            trimmed("ProdNumber").alias("product_number"),
        )
        products = raw[RAW_PRODUCTS].select(
            trimmed("ProdNumber").alias("product_number"),
            safe_int("Category").alias("category_id"),
        )
        categories = raw[RAW_CATEGORIES].select(safe_int("CategoryID").alias("category_id"))

        ordered = orders.select(pl.col("product_number").drop_nulls().unique())
        used_categories = products.select(pl.col("category_id").drop_nulls().unique())

        return pl.DataFrame(
            {
                "min_order_date": [orders["order_date"].min()],
                "max_order_date": [orders["order_date"].max()],
                "distinct_customers_in_orders": [orders["customer_id"].drop_nulls().n_unique()],
                "distinct_products_in_orders": [ordered.height],
                "products_never_ordered": [
                    products.select(pl.col("product_number").drop_nulls().unique())
                    .join(ordered, on="product_number", how="anti")
                    .height
                ],
                "categories_without_products": [
                    categories.drop_nulls().unique().join(used_categories, on="category_id", how="anti").height
                ],
            },
            schema={
                "min_order_date": pl.Date,
                "max_order_date": pl.Date,
                "distinct_customers_in_orders": pl.Int64,
                "distinct_products_in_orders": pl.Int64,
                "products_never_ordered": pl.Int64,
                "categories_without_products": pl.Int64,
            },
        )

    def order_id_gaps(self, orders: pl.DataFrame, limit: Optional[int] = None) -> pl.DataFrame:
        """First missing ids in the min..max order id sequence"""
        limit = limit or self.settings.top_n * 5
        ids = orders.select(safe_int("OrderID").alias("order_id")).drop_nulls().unique()
        empty = pl.DataFrame(schema={"missing_order_id": pl.Int64})

        if ids.is_empty():
            return empty

        low, high = ids["order_id"].min(), ids["order_id"].max()
        if high - low > MAX_GAP_SPAN:
            logger.warning("Order id span too wide to scan for gaps", min_id=low, max_id=high)
            return empty

        expected = pl.DataFrame({"order_id": pl.int_range(low, high + 1, dtype=pl.Int64, eager=True)})
        return (
            expected.join(ids, on="order_id", how="anti")
            .sort("order_id")
            .head(limit)
            .rename({"order_id": "missing_order_id"})
        )

    def summary(
        self,
        raw: Dict[str, pl.DataFrame],
        duplicate_keys: pl.DataFrame,
        orphans: pl.DataFrame,
        format_violations: pl.DataFrame,
    ) -> pl.DataFrame:
        """One-row executive snapshot"""
        return pl.DataFrame(
            {
                "customers": [raw[RAW_CUSTOMERS].height],
                "categories": [raw[RAW_CATEGORIES].height],
                "products": [raw[RAW_PRODUCTS].height],
                "orders": [raw[RAW_ORDERS].height],
                "duplicate_keys": [int(duplicate_keys["duplicate_keys"].sum())],
                "orphan_rows": [int(orphans["orphan_rows"].sum())],
                "format_violations": [int(format_violations["violations"].sum())],
            },
            schema={
                "customers": pl.Int64,
                "categories": pl.Int64,
                "products": pl.Int64,
                "orders": pl.Int64,
                "duplicate_keys": pl.Int64,
                "orphan_rows": pl.Int64,
                "format_violations": pl.Int64,
            },
        )

    def _checks(
        self,
        duplicate_keys: pl.DataFrame,
        orphans: pl.DataFrame,
        format_violations: pl.DataFrame,
    ) -> ValidationResult:
        """Warning-level view of the diagnostics; raw data is expected to be dirty"""
        checks: List[ValidationCheck] = []

        def add(name: str, count: int, what: str) -> None:
            checks.append(
                ValidationCheck(
                    name=name,
                    passed=count == 0,
                    severity=ValidationSeverity.WARNING,
                    message=f"{count} {what}" if count else "Check passed",
                    failed_rows=count,
                )
            )

        for row in duplicate_keys.iter_rows(named=True):
            add(f"{row['relation']}.duplicate_{row['key']}", row["duplicate_keys"], "duplicated key values")
        for row in orphans.iter_rows(named=True):
            add(f"orphans.{row['relationship']}", row["orphan_rows"], "orphan rows")
        for row in format_violations.iter_rows(named=True):
            add(f"{row['relation']}.{row['check']}", row["violations"], "format violations")

        return summarize_checks(checks, suite="raw")


def profile_raw(raw_relations: Dict[str, pl.DataFrame], settings: Optional[PipelineSettings] = None) -> RawProfile:
    """Convenience function for a one-off profiling pass"""
    return RawValidator(settings).profile(raw_relations)
