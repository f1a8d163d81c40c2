"""
Metric View Layer

A single base view (fact joined to every dimension) and the rollup and
time-series views built from it. No view re-derives the fact/dimension join
on its own.

Ratios go through safe_divide: a zero or null denominator yields null.
"""

from typing import Callable, Dict, Optional

import polars as pl
import structlog

from sales_bi.config import PipelineSettings, get_settings
from sales_bi.metrics.analytics import ANALYTIC_BUILDERS
from sales_bi.schemas import BASE_VIEW, DIM_CUSTOMER, DIM_DATE, DIM_PRODUCT, FACT_SALES
from sales_bi.windows import price_bucket_expr, safe_divide

logger = structlog.get_logger(__name__)

BASE_COLUMNS = [
    "date_key",
    "order_date",
    "year",
    "month",
    "quarter",
    "order_ym",
    "day_of_week_num",
    "day_of_week_name",
    "customer_sk",
    "customer_email",
    "city",
    "product_sk",
    "product_name",
    "category_name",
    "quantity",
    "line_revenue",
    "unit_price",
    "price_bucket",
]

# Aggregations shared by every rollup
SALES = pl.col("line_revenue").sum().alias("sales")
QTY = pl.col("quantity").sum().alias("qty")
ACTIVE_CUSTOMERS = pl.col("customer_sk").n_unique().cast(pl.Int64).alias("active_customers")
# No order id exists: one customer on one day stands in for an order
ORDERS_PROXY = (
    pl.concat_str([pl.col("customer_sk"), pl.col("date_key")], separator="|")
    .n_unique()
    .cast(pl.Int64)
    .alias("orders_proxy")
)

ASP = safe_divide(pl.col("sales"), pl.col("qty")).alias("asp")
AOV = safe_divide(pl.col("sales"), pl.col("orders_proxy")).alias("aov_proxy")


def build_base_view(
    fact: pl.DataFrame,
    dim_date: pl.DataFrame,
    dim_customer: pl.DataFrame,
    dim_product: pl.DataFrame,
    settings: Optional[PipelineSettings] = None,
) -> pl.DataFrame:
    """fact_sales joined to dim_date, dim_customer and dim_product"""
    settings = settings or get_settings().pipeline
    return (
        fact.with_row_index("__pos")
        .join(
            dim_date.select(
                "date_key",
                pl.col("date").alias("order_date"),
                "year",
                "month",
                "quarter",
                pl.col("date").dt.strftime("%Y-%m").alias("order_ym"),
                "day_of_week_num",
                "day_of_week_name",
            ),
            on="date_key",
            how="inner",
        )
        .join(dim_customer, on="customer_sk", how="inner")
        .join(dim_product, on="product_sk", how="inner")
        .sort("__pos")
        .with_columns(
            pl.col("line_revenue").cast(pl.Float64),
            price_bucket_expr(pl.col("unit_price"), settings.price_bucket_bounds).alias("price_bucket"),
        )
        .select(BASE_COLUMNS)
    )


def sales_daily(base: pl.DataFrame) -> pl.DataFrame:
    return (
        base.group_by("date_key", "order_date")
        .agg(SALES, QTY, ACTIVE_CUSTOMERS, ORDERS_PROXY)
        .with_columns(ASP, AOV)
        .sort("date_key")
    )


def sales_daily_min(base: pl.DataFrame) -> pl.DataFrame:
    """Date, sales and quantity only, for sparkline-style charts"""
    return base.group_by("order_date").agg(SALES, QTY).sort("order_date")


def sales_monthly(base: pl.DataFrame) -> pl.DataFrame:
    return (
        base.group_by("order_ym", "year", "month")
        .agg(
            pl.col("order_date").min().dt.month_start().alias("month_start"),
            pl.col("order_date").min().dt.month_end().alias("month_end"),
            SALES,
            QTY,
            ACTIVE_CUSTOMERS,
        )
        .with_columns(ASP)
        .sort("order_ym")
    )


def aov_monthly(base: pl.DataFrame) -> pl.DataFrame:
    return base.group_by("order_ym").agg(SALES, ORDERS_PROXY).with_columns(AOV).sort("order_ym")


def kpi_overview_monthly(base: pl.DataFrame) -> pl.DataFrame:
    """Headline KPIs per month"""
    return (
        base.group_by("order_ym")
        .agg(
            SALES,
            QTY,
            pl.len().cast(pl.Int64).alias("lines"),
            ACTIVE_CUSTOMERS,
            ORDERS_PROXY,
        )
        .with_columns(ASP, AOV)
        .sort("order_ym")
    )


def sales_by_dow(base: pl.DataFrame) -> pl.DataFrame:
    return (
        base.group_by("day_of_week_num", "day_of_week_name")
        .agg(SALES, QTY, ORDERS_PROXY)
        .with_columns(ASP, AOV)
        .sort("day_of_week_num")
    )


def category_performance(base: pl.DataFrame) -> pl.DataFrame:
    total = base["line_revenue"].sum()
    return (
        base.group_by("category_name")
        .agg(
            SALES,
            QTY,
            ACTIVE_CUSTOMERS,
            pl.col("product_sk").n_unique().cast(pl.Int64).alias("products"),
        )
        .with_columns(ASP, safe_divide(pl.col("sales"), pl.lit(total)).alias("sales_share"))
        .sort(["sales", "category_name"], descending=[True, False])
    )


def top_products(base: pl.DataFrame) -> pl.DataFrame:
    """Products by revenue; tied revenue shares a dense rank"""
    return (
        base.group_by("product_sk", "product_name", "category_name")
        .agg(SALES, QTY)
        .with_columns(
            ASP,
            pl.col("sales").rank("dense", descending=True).cast(pl.Int64).alias("sales_rank"),
        )
        .sort(["sales_rank", "product_name", "product_sk"])
    )


def mix_share_monthly(base: pl.DataFrame) -> pl.DataFrame:
    """Category share of each month's revenue"""
    return (
        base.group_by("order_ym", "category_name")
        .agg(SALES)
        .with_columns(pl.col("sales").sum().over("order_ym").alias("month_sales"))
        .with_columns(safe_divide(pl.col("sales"), pl.col("month_sales")).alias("share"))
        .sort("order_ym", "category_name")
    )


def city_performance(base: pl.DataFrame) -> pl.DataFrame:
    return (
        base.group_by("city")
        .agg(SALES, QTY, pl.col("customer_sk").n_unique().cast(pl.Int64).alias("unique_customers"))
        .with_columns(ASP)
        .sort(["sales", "city"], descending=[True, False], nulls_last=True)
    )


def city_category_monthly(base: pl.DataFrame) -> pl.DataFrame:
    return (
        base.group_by("order_ym", "city", "category_name")
        .agg(SALES, QTY)
        .sort("order_ym", "city", "category_name", nulls_last=True)
    )


def price_bucket_distribution(base: pl.DataFrame) -> pl.DataFrame:
    total = base["line_revenue"].sum()
    return (
        base.group_by("price_bucket")
        .agg(pl.len().cast(pl.Int64).alias("line_count"), QTY, SALES)
        .with_columns(safe_divide(pl.col("sales"), pl.lit(total)).alias("sales_share"))
        .sort("price_bucket")
    )


def customer_activity(base: pl.DataFrame) -> pl.DataFrame:
    return (
        base.group_by("customer_sk", "customer_email", "city")
        .agg(
            pl.col("order_date").min().alias("first_purchase"),
            pl.col("order_date").max().alias("last_purchase"),
            pl.len().cast(pl.Int64).alias("line_count"),
            pl.col("order_ym").n_unique().cast(pl.Int64).alias("active_months"),
            QTY,
            SALES,
        )
        .with_columns(ASP)
        .sort("customer_email")
    )


def aov_category_monthly(base: pl.DataFrame) -> pl.DataFrame:
    return (
        base.group_by("order_ym", "category_name")
        .agg(SALES, ORDERS_PROXY)
        .with_columns(AOV)
        .sort("order_ym", "category_name")
    )


def asp_category_monthly(base: pl.DataFrame) -> pl.DataFrame:
    return (
        base.group_by("order_ym", "category_name")
        .agg(SALES, QTY)
        .with_columns(ASP)
        .sort("order_ym", "category_name")
    )


def aov_city_monthly(base: pl.DataFrame) -> pl.DataFrame:
    return (
        base.group_by("order_ym", "city")
        .agg(SALES, ORDERS_PROXY)
        .with_columns(AOV)
        .sort("order_ym", "city", nulls_last=True)
    )


def _monthly_series(base: pl.DataFrame) -> pl.DataFrame:
    """Monthly sales and quantity ordered by month; lags below are positional"""
    return base.group_by("order_ym").agg(SALES, QTY).sort("order_ym")


def _monthly_kpis(base: pl.DataFrame) -> pl.DataFrame:
    return base.group_by("order_ym").agg(SALES, QTY, ACTIVE_CUSTOMERS).with_columns(ASP).sort("order_ym")


def _pct_change(current: str, previous: str) -> pl.Expr:
    return safe_divide(pl.col(current) - pl.col(previous), pl.col(previous))


def sales_monthly_yoy(base: pl.DataFrame) -> pl.DataFrame:
    return (
        _monthly_kpis(base)
        .with_columns(
            pl.col("sales").shift(12).alias("sales_last_year"),
            pl.col("qty").shift(12).alias("qty_last_year"),
        )
        .with_columns(
            _pct_change("sales", "sales_last_year").alias("sales_yoy_pct"),
            _pct_change("qty", "qty_last_year").alias("qty_yoy_pct"),
        )
    )


def sales_monthly_mom(base: pl.DataFrame) -> pl.DataFrame:
    return (
        _monthly_series(base)
        .with_columns(
            pl.col("sales").shift(1).alias("sales_prev_month"),
            pl.col("qty").shift(1).alias("qty_prev_month"),
        )
        .with_columns(
            _pct_change("sales", "sales_prev_month").alias("sales_mom_pct"),
            _pct_change("qty", "qty_prev_month").alias("qty_mom_pct"),
        )
    )


def sales_monthly_index(base: pl.DataFrame) -> pl.DataFrame:
    """Each month relative to the first month"""
    return _monthly_series(base).with_columns(
        safe_divide(pl.col("sales"), pl.col("sales").first()).alias("sales_index"),
        safe_divide(pl.col("qty"), pl.col("qty").first()).alias("qty_index"),
    )


def sales_monthly_rolling3(base: pl.DataFrame) -> pl.DataFrame:
    """Trailing mean of the current and up to two preceding months"""
    return _monthly_series(base).with_columns(
        pl.mean_horizontal(pl.col("sales"), pl.col("sales").shift(1), pl.col("sales").shift(2)).alias("sales_ma3"),
        pl.mean_horizontal(
            pl.col("qty").cast(pl.Float64),
            pl.col("qty").shift(1).cast(pl.Float64),
            pl.col("qty").shift(2).cast(pl.Float64),
        ).alias("qty_ma3"),
    )


def sales_trend(base: pl.DataFrame) -> pl.DataFrame:
    """MoM, YoY, index and moving average side by side"""
    mom = sales_monthly_mom(base).select("order_ym", "sales_prev_month", "sales_mom_pct")
    yoy = sales_monthly_yoy(base).select(
        "order_ym", "sales", "qty", "active_customers", "asp", "sales_last_year", "sales_yoy_pct"
    )
    index = sales_monthly_index(base).select("order_ym", "sales_index")
    rolling = sales_monthly_rolling3(base).select("order_ym", "sales_ma3")
    return (
        yoy.join(mom, on="order_ym", how="left")
        .join(index, on="order_ym", how="left")
        .join(rolling, on="order_ym", how="left")
        .sort("order_ym")
    )


VIEW_BUILDERS: Dict[str, Callable[[pl.DataFrame], pl.DataFrame]] = {
    "v_sales_daily": sales_daily,
    "v_sales_daily_min": sales_daily_min,
    "v_sales_monthly": sales_monthly,
    "v_aov_monthly": aov_monthly,
    "v_kpi_overview_monthly": kpi_overview_monthly,
    "v_sales_by_dow": sales_by_dow,
    "v_category_performance": category_performance,
    "v_top_products": top_products,
    "v_mix_share_monthly": mix_share_monthly,
    "v_city_performance": city_performance,
    "v_city_category_monthly": city_category_monthly,
    "v_price_bucket_distribution": price_bucket_distribution,
    "v_customer_activity": customer_activity,
    "v_aov_category_monthly": aov_category_monthly,
    "v_asp_category_monthly": asp_category_monthly,
    "v_aov_city_monthly": aov_city_monthly,
    "v_sales_monthly_yoy": sales_monthly_yoy,
    "v_sales_monthly_mom": sales_monthly_mom,
    "v_sales_monthly_index": sales_monthly_index,
    "v_sales_monthly_rolling3": sales_monthly_rolling3,
    "view_sales_trend": sales_trend,
}


class MetricViewLayer:
    """
    Builds v_base_sales and every metric view on top of it.

    Example:
        layer = MetricViewLayer()
        views = layer.build(star_relations)
        views["v_sales_monthly"]
    """

    def __init__(self, settings: Optional[PipelineSettings] = None):
        self.settings = settings or get_settings().pipeline

    def base_view(self, star: Dict[str, pl.DataFrame]) -> pl.DataFrame:
        return build_base_view(
            star[FACT_SALES], star[DIM_DATE], star[DIM_CUSTOMER], star[DIM_PRODUCT], self.settings
        )

    def build_views(self, base: pl.DataFrame) -> Dict[str, pl.DataFrame]:
        """Every rollup, time-series and behavioral view, from the base view only"""
        views = {name: builder(base) for name, builder in VIEW_BUILDERS.items()}
        for name, builder in ANALYTIC_BUILDERS.items():
            views[name] = builder(base, self.settings)
        return views

    def build(self, star: Dict[str, pl.DataFrame]) -> Dict[str, pl.DataFrame]:
        base = self.base_view(star)
        views = {BASE_VIEW: base}
        views.update(self.build_views(base))

        logger.info(
            "Metric views built",
            base_rows=base.height,
            views=len(views),
            months=views["v_sales_monthly"].height,
        )
        return views
