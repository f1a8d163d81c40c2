"""
Metric Guardrails

Re-runnable reconciliation between the metric views and independent
recomputations from v_base_sales. Results are a ValidationResult and are
persisted as qa_metric_guardrails.
"""

from typing import Dict, Optional

import polars as pl
import structlog

from sales_bi.config import PipelineSettings, get_settings
from sales_bi.quality.validators import DataValidator, ValidationResult
from sales_bi.schemas import BASE_VIEW

logger = structlog.get_logger(__name__)


def _max_abs_diff(left: pl.DataFrame, right: pl.DataFrame, on, column: str) -> float:
    """Largest absolute difference of `column` after a full join on `on` (missing rows count as 0)"""
    # Null group keys must still pair up across the two sides
    keys = [pl.col(k).cast(pl.Utf8).fill_null("\u0000") for k in on]
    joined = left.select(*keys, pl.col(column).alias("__l")).join(
        right.select(*keys, pl.col(column).alias("__r")),
        on=on,
        how="full",
        coalesce=True,
    )
    if joined.is_empty():
        return 0.0
    diff = (pl.col("__l").cast(pl.Float64).fill_null(0.0) - pl.col("__r").cast(pl.Float64).fill_null(0.0)).abs()
    return float(joined.select(diff.max()).item())


def _group_totals(base: pl.DataFrame, keys) -> pl.DataFrame:
    return base.group_by(keys).agg(
        pl.col("line_revenue").sum().alias("sales"),
        pl.col("quantity").sum().alias("qty"),
    )


def _expected_months(start, end) -> pl.Series:
    return pl.date_range(start, end, "1mo", eager=True).dt.strftime("%Y-%m")


def run_guardrails(
    views: Dict[str, pl.DataFrame],
    dim_date: pl.DataFrame,
    settings: Optional[PipelineSettings] = None,
) -> ValidationResult:
    """
    Check every metric view against the base view.

    Args:
        views: v_base_sales plus every view built from it
        dim_date: date dimension, for month continuity

    Returns:
        ValidationResult with one check per guardrail
    """
    settings = settings or get_settings().pipeline
    tol = settings.reconciliation_tolerance
    base = views[BASE_VIEW]

    monthly = views["v_sales_monthly"]
    base_monthly = _group_totals(base, ["order_ym"])

    # Recompute AOV directly from base lines
    base_aov = (
        base.group_by("order_ym", "customer_sk", "date_key")
        .agg(pl.col("line_revenue").sum().alias("sales"))
        .group_by("order_ym")
        .agg(pl.col("sales").sum(), pl.len().alias("orders"))
        .select("order_ym", (pl.col("sales") / pl.col("orders")).alias("aov_proxy"))
    )

    first_month = base["order_date"].min()
    last_month = base["order_date"].max()

    def month_gaps(df: pl.DataFrame) -> int:
        """Months inside the observed span (and dim_date) with no monthly row"""
        if first_month is None:
            return 0
        lo = max(first_month, dim_date["date"].min()).replace(day=1)
        hi = min(last_month, dim_date["date"].max()).replace(day=1)
        if lo > hi:
            return 0
        expected = set(_expected_months(lo, hi).to_list())
        return len(expected - set(df["order_ym"].to_list()))

    mix = views["v_mix_share_monthly"]
    mix_recomputed = (
        _group_totals(base, ["order_ym", "category_name"])
        .with_columns((pl.col("sales") / pl.col("sales").sum().over("order_ym")).alias("share"))
    )

    kpi = views["v_kpi_overview_monthly"]
    rfm = views["view_rfm"]
    cohort = views["view_monthly_cohort"]
    pareto = views["view_pareto_products"]
    clv = views["view_clv_simple"]

    validator = (
        DataValidator("metric_guardrails")
        # Monthly views vs base recomputation
        .add_equality_check(
            "monthly_sales_vs_base",
            lambda df: _max_abs_diff(monthly, base_monthly, ["order_ym"], "sales"), lambda df: 0.0, tol,
        )
        .add_equality_check(
            "monthly_qty_vs_base",
            lambda df: _max_abs_diff(monthly, base_monthly, ["order_ym"], "qty"), lambda df: 0.0, tol,
        )
        .add_equality_check(
            "aov_vs_base",
            lambda df: _max_abs_diff(views["v_aov_monthly"], base_aov, ["order_ym"], "aov_proxy"),
            lambda df: 0.0,
            tol,
        )
        .add_count_check("month_continuity", lambda df: month_gaps(monthly), "Months missing from v_sales_monthly")
        # Totals parity
        .add_equality_check(
            "category_totals_vs_base",
            lambda df: float(views["v_category_performance"]["sales"].sum()),
            lambda df: float(df["line_revenue"].sum()),
            tol,
        )
        .add_equality_check(
            "city_totals_vs_base",
            lambda df: float(views["v_city_performance"]["sales"].sum()),
            lambda df: float(df["line_revenue"].sum()),
            tol,
        )
        .add_equality_check(
            "product_totals_vs_base",
            lambda df: float(views["v_top_products"]["sales"].sum()),
            lambda df: float(df["line_revenue"].sum()),
            tol,
        )
        .add_equality_check(
            "mix_share_vs_base",
            lambda df: _max_abs_diff(mix, mix_recomputed, ["order_ym", "category_name"], "share"),
            lambda df: 0.0,
            tol,
        )
        # Base row health
        .add_not_null_check("date_key")
        .add_not_null_check("customer_sk")
        .add_not_null_check("product_sk")
        .add_positive_check("quantity", allow_zero=False)
        .add_positive_check("line_revenue", allow_zero=False)
        # KPI semantics
        .add_count_check(
            "kpi_asp_valid",
            lambda df: kpi.filter(pl.col("asp").is_null() | (pl.col("asp") < 0)).height,
            "Months with null or negative ASP",
        )
        # RFM
        .add_equality_check(
            "rfm_one_row_per_customer",
            lambda df: rfm.height,
            lambda df: df["customer_sk"].n_unique(),
        )
        .add_count_check(
            "rfm_scores_not_null",
            lambda df: rfm.filter(
                pl.col("r_score").is_null() | pl.col("f_score").is_null() | pl.col("m_score").is_null()
            ).height,
            "Customers with a null R/F/M score",
        )
        # Cohort
        .add_count_check(
            "cohort_month0_is_one",
            lambda df: cohort.filter(
                (pl.col("months_since_first") == 0) & ((pl.col("retention_rate") - 1.0).abs() > 1e-12)
            ).height,
            "Cohorts whose month-0 retention is not 1.0",
        )
        .add_count_check(
            "cohort_no_negative_offsets",
            lambda df: cohort.filter(pl.col("months_since_first") < 0).height,
            "Cohort rows with negative months_since_first",
        )
        # Pareto
        .add_count_check(
            "pareto_monotonic",
            lambda df: pareto.filter(pl.col("cumulative_share").diff() < -tol).height,
            "Pareto rows where cumulative share decreases",
        )
        .add_equality_check(
            "pareto_tail_is_one",
            lambda df: float(pareto["cumulative_share"].max() or 0.0) if pareto.height else 1.0,
            lambda df: 1.0,
            tol,
        )
        # CLV
        .add_equality_check(
            "clv_revenue_vs_base",
            lambda df: float(clv["revenue_total"].sum()),
            lambda df: float(df["line_revenue"].sum()),
            tol,
        )
    )

    result = validator.validate(base)
    logger.info(
        "Metric guardrails evaluated",
        status=result.status.value,
        passed=result.passed_checks,
        total=result.total_checks,
    )
    return result
