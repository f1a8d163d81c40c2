"""
Master Consolidation

Joins staged orders with customers, products and categories into
master_sales: one row per surviving order line with an exact decimal
line_revenue.
"""

from dataclasses import dataclass
from datetime import date
from typing import Dict, Optional

import polars as pl
import structlog

from sales_bi.config import PipelineSettings, get_settings
from sales_bi.exceptions import SanityGateError
from sales_bi.quality.validators import DataValidator, ValidationResult, ValidationSeverity
from sales_bi.schemas import (
    MASTER_SALES,
    NUMERIC,
    STG_CATEGORIES,
    STG_CUSTOMERS,
    STG_ORDERS,
    STG_PRODUCTS,
)
from sales_bi.windows import safe_divide

logger = structlog.get_logger(__name__)

MASTER_COLUMNS = [
    "customer_email",
    "customer_city",
    "order_date",
    "quantity",
    "product_name",
    "unit_price",
    "category_name",
    "line_revenue",
]

REQUIRED_COLUMNS = ["order_date", "quantity", "product_name", "unit_price", "category_name", "line_revenue"]


@dataclass
class ConsolidationReport:
    """master_sales plus its QA relations"""
    master: pl.DataFrame
    expected_rows: int
    monthly: pl.DataFrame
    categories: pl.DataFrame
    sample: pl.DataFrame
    missing_months: int
    validation: ValidationResult

    def to_relations(self) -> Dict[str, pl.DataFrame]:
        return {
            MASTER_SALES: self.master,
            "qa_master_monthly": self.monthly,
            "qa_master_categories": self.categories,
            "qa_master_sample": self.sample,
            "qa_master_checks": self.validation.to_frame(),
        }


def join_cardinality(
    orders: pl.DataFrame,
    customers: pl.DataFrame,
    products: pl.DataFrame,
    categories: pl.DataFrame,
) -> int:
    """Row count of the master join computed from keys alone"""
    return (
        orders.select("customer_id", "product_number")
        .join(customers.select("customer_id"), on="customer_id", how="inner")
        .join(products.select("product_number", "category_id"), on="product_number", how="inner")
        .join(categories.select("category_id"), on="category_id", how="inner")
        .height
    )


def missing_months(months: pl.Series) -> pl.DataFrame:
    """Calendar months absent between the first and last observed month"""
    observed = months.drop_nulls()
    if observed.is_empty():
        return pl.DataFrame(schema={"month": pl.Date})

    first, last = observed.min(), observed.max()
    expected = pl.DataFrame(
        {"month": pl.date_range(date(first.year, first.month, 1), date(last.year, last.month, 1), "1mo", eager=True)}
    )
    return expected.join(observed.unique().to_frame("month"), on="month", how="anti").sort("month")


class MasterConsolidator:
    """
    Builds master_sales from the staging relations.

    Example:
        report = MasterConsolidator().build(staged)
        report.master
    """

    def __init__(self, settings: Optional[PipelineSettings] = None):
        self.settings = settings or get_settings().pipeline

    def consolidate(self, staged: Dict[str, pl.DataFrame]) -> pl.DataFrame:
        """Inner-join orders -> customers -> products -> categories"""
        orders = staged[STG_ORDERS]
        customers = staged[STG_CUSTOMERS].select("customer_id", "customer_email", "customer_city")
        products = staged[STG_PRODUCTS].select(
            "product_number", "product_name", "category_id", pl.col("price").alias("unit_price")
        )
        categories = staged[STG_CATEGORIES].select("category_id", "category_name")

        return (
            orders.with_row_index("__pos")
            .join(customers, on="customer_id", how="inner")
            .join(products, on="product_number", how="inner")
            .join(categories, on="category_id", how="inner")
            .sort("__pos")
            .with_columns(
                (pl.col("quantity").cast(pl.Decimal(18, 0)) * pl.col("unit_price"))
                .cast(NUMERIC)
                .alias("line_revenue")
            )
            .select(MASTER_COLUMNS)
        )

    def build(self, staged: Dict[str, pl.DataFrame]) -> ConsolidationReport:
        """
        Materialize master_sales behind the pre-flight count gate.

        Raises:
            SanityGateError: materialized rows disagree with the key-only join
                cardinality or with the configured expectation
        """
        expected = join_cardinality(
            staged[STG_ORDERS], staged[STG_CUSTOMERS], staged[STG_PRODUCTS], staged[STG_CATEGORIES]
        )
        master = self.consolidate(staged)

        if master.height != expected:
            raise SanityGateError(
                "master_sales row count does not match join cardinality",
                expected=expected,
                actual=master.height,
            )
        if self.settings.expected_master_rows is not None and master.height != self.settings.expected_master_rows:
            raise SanityGateError(
                "master_sales row count does not match configured expectation",
                expected=self.settings.expected_master_rows,
                actual=master.height,
            )

        monthly = self.monthly_rollup(master)
        gaps = missing_months(monthly["month"])

        report = ConsolidationReport(
            master=master,
            expected_rows=expected,
            monthly=monthly,
            categories=self.category_distribution(master),
            sample=self.recent_sample(master),
            missing_months=gaps.height,
            validation=self._validate(master, gaps),
        )

        logger.info(
            "Master consolidated",
            rows=master.height,
            orders=staged[STG_ORDERS].height,
            missing_months=gaps.height,
            date_min=master["order_date"].min(),
            date_max=master["order_date"].max(),
        )
        return report

    def monthly_rollup(self, master: pl.DataFrame) -> pl.DataFrame:
        return (
            master.group_by(pl.col("order_date").dt.truncate("1mo").alias("month"))
            .agg(
                pl.len().cast(pl.Int64).alias("lines"),
                pl.col("quantity").sum().alias("quantity"),
                pl.col("line_revenue").cast(pl.Float64).sum().alias("revenue"),
            )
            .sort("month")
        )

    def category_distribution(self, master: pl.DataFrame) -> pl.DataFrame:
        total = master["line_revenue"].cast(pl.Float64).sum()
        return (
            master.group_by("category_name")
            .agg(
                pl.len().cast(pl.Int64).alias("lines"),
                pl.col("quantity").sum().alias("quantity"),
                pl.col("line_revenue").cast(pl.Float64).sum().alias("revenue"),
            )
            .with_columns(safe_divide(pl.col("revenue"), pl.lit(total)).alias("revenue_share"))
            .sort(["revenue", "category_name"], descending=[True, False])
        )

    def recent_sample(self, master: pl.DataFrame) -> pl.DataFrame:
        """Most recent lines first, for eyeballing"""
        return master.sort(
            ["order_date", "customer_email", "product_name"],
            descending=[True, False, False],
            nulls_last=True,
        ).head(self.settings.top_n)

    def _validate(self, master: pl.DataFrame, gaps: pl.DataFrame) -> ValidationResult:
        validator = DataValidator("master")
        for column in REQUIRED_COLUMNS:
            validator.add_not_null_check(column)

        validator.add_positive_check("quantity", allow_zero=False)
        validator.add_positive_check("unit_price", allow_zero=False)
        validator.add_count_check(
            "line_revenue_identity",
            lambda df: df.filter(
                pl.col("line_revenue")
                != (pl.col("quantity").cast(pl.Decimal(18, 0)) * pl.col("unit_price")).cast(NUMERIC)
            ).height,
            "Lines where line_revenue != quantity * unit_price",
        )
        validator.add_count_check(
            "monthly_continuity",
            lambda df: gaps.height,
            "Months missing between first and last order month",
            severity=ValidationSeverity.WARNING,
        )
        return validator.validate(master)
