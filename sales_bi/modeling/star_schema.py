"""
Star Schema Builder

Conformed dimensions and the sales fact built from master_sales.

Surrogate keys are deterministic hashes of normalized business keys, so the
fact computes them independently and joins to the dimensions instead of
looking keys up:
- customer: lower(trim(email))
- product:  upper(trim(product_name)) || '|' || upper(trim(category_name))
- date:     YYYYMMDD integer
"""

from dataclasses import dataclass
from datetime import date
from typing import Dict, Optional

import polars as pl
import structlog

from sales_bi.config import PipelineSettings, get_settings
from sales_bi.quality.validators import DataValidator, ValidationResult
from sales_bi.schemas import DIM_CUSTOMER, DIM_DATE, DIM_PRODUCT, FACT_SALES
from sales_bi.windows import surrogate_key_expr, with_row_number

logger = structlog.get_logger(__name__)

FACT_COLUMNS = ["date_key", "customer_sk", "product_sk", "quantity", "line_revenue", "unit_price"]


def date_key_expr(expr: pl.Expr) -> pl.Expr:
    return (
        expr.dt.year().cast(pl.Int64) * 10000
        + expr.dt.month().cast(pl.Int64) * 100
        + expr.dt.day().cast(pl.Int64)
    )


def customer_key_expr(email: pl.Expr) -> pl.Expr:
    """Normalized customer business key"""
    return email.fill_null("").str.strip_chars().str.to_lowercase()


def product_key_expr(product_name: pl.Expr, category_name: pl.Expr) -> pl.Expr:
    """Normalized product business key"""
    return pl.concat_str(
        [
            product_name.fill_null("").str.strip_chars().str.to_uppercase(),
            category_name.fill_null("").str.strip_chars().str.to_uppercase(),
        ],
        separator="|",
    )


@dataclass
class StarSchemaReport:
    """Dimensions, fact and the parity guardrails that vouch for them"""
    dim_date: pl.DataFrame
    dim_customer: pl.DataFrame
    dim_product: pl.DataFrame
    fact_sales: pl.DataFrame
    monthly_parity: pl.DataFrame
    validation: ValidationResult

    def to_relations(self) -> Dict[str, pl.DataFrame]:
        return {
            DIM_DATE: self.dim_date,
            DIM_CUSTOMER: self.dim_customer,
            DIM_PRODUCT: self.dim_product,
            FACT_SALES: self.fact_sales,
            "qa_star_monthly_parity": self.monthly_parity,
            "qa_star_checks": self.validation.to_frame(),
        }


class StarSchemaBuilder:
    """
    Builds dim_date, dim_customer, dim_product and fact_sales.

    Example:
        report = StarSchemaBuilder().build(master)
        if not report.validation.passed:
            ...
    """

    def __init__(self, settings: Optional[PipelineSettings] = None):
        self.settings = settings or get_settings().pipeline

    def build_dim_date(self, start: Optional[date] = None, end: Optional[date] = None) -> pl.DataFrame:
        """One row per day of the configured range; needs no input data"""
        start = start or self.settings.date_dim_start
        end = end or self.settings.date_dim_end

        day = pl.col("date")
        dow = day.dt.weekday().cast(pl.Int64) % 7 + 1
        return pl.DataFrame({"date": pl.date_range(start, end, "1d", eager=True)}).select(
            date_key_expr(day).alias("date_key"),
            day,
            day.dt.year().cast(pl.Int64).alias("year"),
            day.dt.quarter().cast(pl.Int64).alias("quarter"),
            day.dt.month().cast(pl.Int64).alias("month"),
            day.dt.strftime("%b").alias("month_name_short"),
            day.dt.day().cast(pl.Int64).alias("day_of_month"),
            dow.alias("day_of_week_num"),
            day.dt.strftime("%a").alias("day_of_week_name"),
            day.dt.strftime("%U").cast(pl.Int64).alias("week_of_year"),
            dow.is_in([1, 7]).alias("is_weekend"),
        )

    def build_dim_customer(self, master: pl.DataFrame) -> pl.DataFrame:
        """
        One row per normalized email (Type 1).

        The city is taken from the customer's most recent order line; on a
        same-day tie the greatest city name wins.
        """
        lines = master.select(
            customer_key_expr(pl.col("customer_email")).alias("customer_email"),
            pl.col("customer_city").alias("city"),
            "order_date",
        )
        latest = with_row_number(
            lines,
            "__recency",
            order_by=["order_date", "city"],
            partition_by=["customer_email"],
            descending=[True, True],
        ).filter(pl.col("__recency") == 1)

        return latest.select(
            surrogate_key_expr(pl.col("customer_email")).alias("customer_sk"),
            "customer_email",
            "city",
        ).sort("customer_email")

    def build_dim_product(self, master: pl.DataFrame) -> pl.DataFrame:
        """One row per distinct (product_name, category_name) business key"""
        pairs = (
            master.select("product_name", "category_name")
            .with_columns(product_key_expr(pl.col("product_name"), pl.col("category_name")).alias("__key"))
            .sort(["__key", "product_name", "category_name"], nulls_last=True)
            .unique(subset=["__key"], keep="first", maintain_order=True)
        )
        return pairs.select(
            surrogate_key_expr(pl.col("__key")).alias("product_sk"),
            "product_name",
            "category_name",
        )

    def build_fact_sales(
        self,
        master: pl.DataFrame,
        dim_date: pl.DataFrame,
        dim_customer: pl.DataFrame,
        dim_product: pl.DataFrame,
    ) -> pl.DataFrame:
        """
        Recompute every key from master_sales, then inner-join all three
        dimensions. Lines without a matching dimension row are dropped here
        and caught by the parity guardrails.
        """
        return (
            master.with_row_index("__pos")
            .select(
                "__pos",
                date_key_expr(pl.col("order_date")).alias("date_key"),
                surrogate_key_expr(customer_key_expr(pl.col("customer_email"))).alias("customer_sk"),
                surrogate_key_expr(product_key_expr(pl.col("product_name"), pl.col("category_name"))).alias("product_sk"),
                "quantity",
                "line_revenue",
                "unit_price",
            )
            .join(dim_date.select("date_key"), on="date_key", how="inner")
            .join(dim_customer.select("customer_sk"), on="customer_sk", how="inner")
            .join(dim_product.select("product_sk"), on="product_sk", how="inner")
            .sort("__pos")
            .select(FACT_COLUMNS)
        )

    def build(self, master: pl.DataFrame) -> StarSchemaReport:
        dim_date = self.build_dim_date()
        dim_customer = self.build_dim_customer(master)
        dim_product = self.build_dim_product(master)
        fact = self.build_fact_sales(master, dim_date, dim_customer, dim_product)

        monthly_parity = self.monthly_parity(master, fact, dim_date)
        report = StarSchemaReport(
            dim_date=dim_date,
            dim_customer=dim_customer,
            dim_product=dim_product,
            fact_sales=fact,
            monthly_parity=monthly_parity,
            validation=self._validate(master, fact, dim_date, monthly_parity),
        )

        logger.info(
            "Star schema built",
            dim_date=dim_date.height,
            dim_customer=dim_customer.height,
            dim_product=dim_product.height,
            fact_sales=fact.height,
            master_rows=master.height,
        )
        return report

    def monthly_parity(self, master: pl.DataFrame, fact: pl.DataFrame, dim_date: pl.DataFrame) -> pl.DataFrame:
        """Monthly revenue/quantity from master vs fact joined to dim_date"""
        from_master = master.group_by(
            pl.col("order_date").dt.year().cast(pl.Int64).alias("year"),
            pl.col("order_date").dt.month().cast(pl.Int64).alias("month"),
        ).agg(
            pl.col("line_revenue").cast(pl.Float64).sum().alias("master_revenue"),
            pl.col("quantity").sum().alias("master_quantity"),
        )
        from_fact = (
            fact.join(dim_date.select("date_key", "year", "month"), on="date_key", how="inner")
            .group_by("year", "month")
            .agg(
                pl.col("line_revenue").cast(pl.Float64).sum().alias("fact_revenue"),
                pl.col("quantity").sum().alias("fact_quantity"),
            )
        )
        return (
            from_master.join(from_fact, on=["year", "month"], how="full", coalesce=True)
            .with_columns(
                pl.col("master_revenue").fill_null(0.0),
                pl.col("fact_revenue").fill_null(0.0),
                pl.col("master_quantity").fill_null(0),
                pl.col("fact_quantity").fill_null(0),
            )
            .with_columns(
                (pl.col("master_revenue") - pl.col("fact_revenue")).abs().alias("revenue_diff"),
                (pl.col("master_quantity") - pl.col("fact_quantity")).abs().alias("quantity_diff"),
            )
            .sort("year", "month")
        )

    def _validate(
        self,
        master: pl.DataFrame,
        fact: pl.DataFrame,
        dim_date: pl.DataFrame,
        monthly_parity: pl.DataFrame,
    ) -> ValidationResult:
        tolerance = self.settings.reconciliation_tolerance
        start, end = self.settings.date_dim_start, self.settings.date_dim_end

        def fact_dates(df: pl.DataFrame) -> pl.DataFrame:
            return df.join(dim_date.select("date_key", "date"), on="date_key", how="inner")

        return (
            DataValidator("star_schema")
            .add_equality_check("fact_rows_equal_master_rows", lambda df: df.height, lambda df: master.height)
            .add_not_null_check("date_key")
            .add_not_null_check("customer_sk")
            .add_not_null_check("product_sk")
            .add_equality_check(
                "fact_date_range_equals_master",
                lambda df: (str(fact_dates(df)["date"].min()), str(fact_dates(df)["date"].max())),
                lambda df: (str(master["order_date"].min()), str(master["order_date"].max())),
            )
            .add_count_check(
                "monthly_revenue_parity",
                lambda df: monthly_parity.filter(pl.col("revenue_diff") > tolerance).height,
                "Months where fact revenue differs from master",
            )
            .add_count_check(
                "monthly_quantity_parity",
                lambda df: monthly_parity.filter(pl.col("quantity_diff") != 0).height,
                "Months where fact quantity differs from master",
            )
            .add_count_check(
                "master_dates_within_dim_date",
                lambda df: master.filter(
                    (pl.col("order_date") < start) | (pl.col("order_date") > end)
                ).height,
                f"Master lines outside dim_date range {start}..{end}",
            )
            .validate(fact)
        )
