"""
Behavioral Analytics Views

Customer and product analytics built from v_base_sales:
- RFM segmentation (view_rfm)
- Monthly cohort retention (view_monthly_cohort)
- Pareto product concentration (view_pareto_products)
- Simple customer lifetime value (view_clv_simple)
"""

from typing import Callable, Dict, Optional

import polars as pl
import structlog

from sales_bi.config import PipelineSettings, get_settings
from sales_bi.windows import month_index, safe_divide, with_ntile

logger = structlog.get_logger(__name__)


def rfm_segment_expr(r: pl.Expr, f: pl.Expr, m: pl.Expr) -> pl.Expr:
    """First matching rule wins"""
    return (
        pl.when((r >= 4) & (f >= 4) & (m >= 4)).then(pl.lit("Champions"))
        .when((r >= 3) & (f >= 4)).then(pl.lit("Loyal"))
        .when((r >= 4) & (f <= 2) & (m <= 2)).then(pl.lit("New Customers"))
        .when((r <= 2) & (f >= 3)).then(pl.lit("At Risk"))
        .when((r == 1) & (f <= 2)).then(pl.lit("Lost"))
        .otherwise(pl.lit("Regulars"))
    )


def rfm(base: pl.DataFrame, settings: Optional[PipelineSettings] = None) -> pl.DataFrame:
    """
    Recency, frequency and monetary scores per customer.

    Recency is measured against the latest order date in the data, frequency
    counts distinct order days. Each measure is split into equal-count
    quantiles; the recency quantile is inverted so the most recent customers
    score highest.
    """
    settings = settings or get_settings().pipeline
    q = settings.rfm_quantiles
    reference_date = base["order_date"].max()

    customers = (
        base.group_by("customer_sk", "customer_email")
        .agg(
            pl.col("order_date").max().alias("last_purchase"),
            pl.col("date_key").n_unique().cast(pl.Int64).alias("frequency_orders"),
            pl.col("line_revenue").sum().alias("monetary_value"),
        )
        .with_columns(
            (pl.lit(reference_date, dtype=pl.Date) - pl.col("last_purchase"))
            .dt.total_days()
            .cast(pl.Int64)
            .alias("recency_days")
        )
        .sort("customer_sk")
    )

    scored = with_ntile(customers, "__r_tile", q, order_by=["recency_days", "customer_sk"])
    scored = with_ntile(scored, "f_score", q, order_by=["frequency_orders", "customer_sk"])
    scored = with_ntile(scored, "m_score", q, order_by=["monetary_value", "customer_sk"])

    return (
        scored.with_columns((q + 1 - pl.col("__r_tile")).alias("r_score"))
        .with_columns(
            pl.concat_str([pl.col("r_score"), pl.col("f_score"), pl.col("m_score")]).alias("rfm_code"),
            rfm_segment_expr(pl.col("r_score"), pl.col("f_score"), pl.col("m_score")).alias("rfm_segment"),
        )
        .select(
            "customer_sk",
            "customer_email",
            "last_purchase",
            "recency_days",
            "frequency_orders",
            "monetary_value",
            "r_score",
            "f_score",
            "m_score",
            "rfm_code",
            "rfm_segment",
        )
    )


def monthly_cohort(base: pl.DataFrame, settings: Optional[PipelineSettings] = None) -> pl.DataFrame:
    """
    Retention by first-purchase month.

    retention_rate at months_since_first = k is the share of the cohort
    active k calendar months after its first month; k = 0 is 1.0.
    """
    activity = base.select(
        "customer_sk",
        month_index(pl.col("order_date")).alias("month_idx"),
    ).unique()

    activity = activity.with_columns(
        pl.col("month_idx").min().over("customer_sk").alias("cohort_idx"),
    ).with_columns(
        (pl.col("month_idx") - pl.col("cohort_idx")).alias("months_since_first"),
    )

    counts = activity.group_by("cohort_idx", "months_since_first").agg(
        pl.col("customer_sk").n_unique().cast(pl.Int64).alias("active_customers")
    )
    sizes = counts.filter(pl.col("months_since_first") == 0).select(
        "cohort_idx", pl.col("active_customers").alias("cohort_size")
    )

    return (
        counts.join(sizes, on="cohort_idx", how="left")
        .with_columns(
            # month_idx is year * 12 + month, so (idx - 1) // 12 recovers the year
            pl.format(
                "{}-{}",
                ((pl.col("cohort_idx") - 1) // 12).cast(pl.Utf8),
                ((pl.col("cohort_idx") - 1) % 12 + 1).cast(pl.Utf8).str.zfill(2),
            ).alias("cohort_ym"),
            safe_divide(pl.col("active_customers"), pl.col("cohort_size")).alias("retention_rate"),
        )
        .select("cohort_ym", "months_since_first", "active_customers", "cohort_size", "retention_rate")
        .sort("cohort_ym", "months_since_first")
    )


def pareto_products(base: pl.DataFrame, settings: Optional[PipelineSettings] = None) -> pl.DataFrame:
    """Products by descending revenue with running cumulative share"""
    settings = settings or get_settings().pipeline
    products = (
        base.group_by("product_sk", "product_name", "category_name")
        .agg(pl.col("line_revenue").sum().alias("sales"))
        .sort(["sales", "product_name", "product_sk"], descending=[True, False, False], nulls_last=True)
    )
    total = products["sales"].sum()

    return products.with_columns(
        pl.col("sales").rank("dense", descending=True).cast(pl.Int64).alias("sales_rank"),
        safe_divide(pl.col("sales"), pl.lit(total)).alias("sales_share"),
        safe_divide(pl.col("sales").cum_sum(), pl.lit(total)).alias("cumulative_share"),
    ).with_columns(
        (pl.col("cumulative_share") <= settings.pareto_threshold).fill_null(False).alias("is_top_80_percent"),
    )


def clv_simple(base: pl.DataFrame, settings: Optional[PipelineSettings] = None) -> pl.DataFrame:
    """Observed revenue times a fixed margin rate"""
    settings = settings or get_settings().pipeline
    margin_rate = settings.clv_margin_rate

    return (
        base.group_by("customer_sk", "customer_email")
        .agg(
            pl.col("order_date").min().alias("first_purchase"),
            pl.col("order_date").max().alias("last_purchase"),
            pl.col("date_key").n_unique().cast(pl.Int64).alias("orders_proxy"),
            pl.col("line_revenue").sum().alias("revenue_total"),
        )
        .with_columns(
            (month_index(pl.col("last_purchase")) - month_index(pl.col("first_purchase"))).alias("tenure_months"),
            safe_divide(pl.col("revenue_total"), pl.col("orders_proxy")).alias("aov_proxy"),
            pl.lit(margin_rate, dtype=pl.Float64).alias("margin_rate"),
            (pl.col("revenue_total") * margin_rate).alias("clv_margin_estimate"),
        )
        .select(
            "customer_sk",
            "customer_email",
            "first_purchase",
            "last_purchase",
            "tenure_months",
            "orders_proxy",
            "aov_proxy",
            "revenue_total",
            "margin_rate",
            "clv_margin_estimate",
        )
        .sort("customer_sk")
    )


ANALYTIC_BUILDERS: Dict[str, Callable[[pl.DataFrame, Optional[PipelineSettings]], pl.DataFrame]] = {
    "view_rfm": rfm,
    "view_monthly_cohort": monthly_cohort,
    "view_pareto_products": pareto_products,
    "view_clv_simple": clv_simple,
}
