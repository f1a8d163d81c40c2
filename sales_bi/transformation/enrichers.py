"""
Data Enrichment Module

Derives behavioral and descriptive attributes on top of master_sales.
Includes:
- Calendar decomposition (weekday 1 = Sunday .. 7 = Saturday)
- Price bucketing
- Customer lifecycle features (first order, sequence, repeat flag)
- Customer lifetime aggregates
- City and category revenue tiers, all-time or per year
"""

from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence

import polars as pl
import structlog

from sales_bi.config import PipelineSettings, get_settings
from sales_bi.quality.validators import DataValidator, ValidationResult
from sales_bi.schemas import MASTER_SALES_EXT, NUMERIC
from sales_bi.transformation.consolidation import MASTER_COLUMNS
from sales_bi.windows import (
    ntile_expr,
    price_bucket_expr,
    price_bucket_labels,
    safe_divide,
    with_row_number,
)

logger = structlog.get_logger(__name__)

# Null entities must still join back to their own tier row
_NULL_ENTITY = "\u0000"

SEQUENCE_ORDER = [
    "order_date",
    "product_name",
    "category_name",
    "__unit_price",
    "__line_revenue",
    "customer_email",
]

EXT_COLUMNS = MASTER_COLUMNS + [
    "order_year",
    "order_month",
    "order_quarter",
    "order_year_month",
    "weekday_name",
    "weekday_num",
    "week_of_year",
    "price_bucket",
    "first_order_date",
    "days_since_first",
    "order_sequence_number",
    "is_repeat_customer",
    "customer_lifetime_revenue",
    "customer_line_count",
    "customer_avg_line_value",
    "city_tier",
    "city_revenue_total",
    "category_tier",
    "category_revenue_total",
]


@dataclass(frozen=True)
class TierSpec:
    """How one entity column is tiered"""
    entity: str
    tier_column: str
    total_column: str
    top_label: str
    bottom_suffix: str


CITY_TIERS = TierSpec("customer_city", "city_tier", "city_revenue_total", "Tier 1 (Top)", "(Emerging)")
CATEGORY_TIERS = TierSpec(
    "category_name", "category_tier", "category_revenue_total", "Tier 1 (Core)", "(Long tail)"
)


@dataclass
class EnrichmentReport:
    """master_sales_ext plus its QA relations"""
    enriched: pl.DataFrame
    repeat_distribution: pl.DataFrame
    price_buckets: pl.DataFrame
    monthly_tiers: pl.DataFrame
    validation: ValidationResult

    def to_relations(self) -> Dict[str, pl.DataFrame]:
        return {
            MASTER_SALES_EXT: self.enriched,
            "qa_ext_repeat_distribution": self.repeat_distribution,
            "qa_ext_price_buckets": self.price_buckets,
            "qa_ext_monthly_tiers": self.monthly_tiers,
            "qa_ext_checks": self.validation.to_frame(),
        }


def tier_label_expr(tier: pl.Expr, k: int, top_label: str, bottom_suffix: str) -> pl.Expr:
    """1 -> top label, k -> 'Tier k <suffix>', anything between -> 'Tier n'"""
    middle = pl.lit("Tier ") + tier.cast(pl.Utf8)
    if k == 1:
        return pl.lit(top_label)
    return (
        pl.when(tier == 1).then(pl.lit(top_label))
        .when(tier == k).then(pl.lit(f"Tier {k} {bottom_suffix}"))
        .otherwise(middle)
    )


def assign_tiers(
    df: pl.DataFrame,
    spec: TierSpec,
    group_keys: Sequence[str] = (),
    k: int = 3,
) -> pl.DataFrame:
    """
    Rank entities by revenue into k equal-count buckets and attach the result.

    Args:
        df: line-level frame with spec.entity and line_revenue
        spec: entity and output column names
        group_keys: [] for all-time tiers, ["order_year"] for per-year tiers
        k: number of buckets (bucket 1 = highest revenue)

    Returns:
        df with spec.tier_column and spec.total_column added
    """
    keys = list(group_keys)
    entity_key = pl.col(spec.entity).cast(pl.Utf8).fill_null(_NULL_ENTITY).alias("__entity")

    totals = (
        df.with_columns(entity_key)
        .group_by(keys + ["__entity"])
        .agg(pl.col("line_revenue").sum().cast(NUMERIC).alias(spec.total_column))
        .with_columns(pl.col(spec.total_column).cast(pl.Float64).alias("__revenue"))
    )

    # Bucket boundaries follow SQL NTILE: the first n mod k buckets get one extra entity
    ranked = with_row_number(
        totals,
        "__rank",
        order_by=["__revenue", "__entity"],
        partition_by=keys,
        descending=[True, False],
    )
    n = pl.len().cast(pl.Int64)
    if keys:
        n = n.over(keys)
    ranked = ranked.with_columns(
        tier_label_expr(ntile_expr(pl.col("__rank") - 1, n, k), k, spec.top_label, spec.bottom_suffix)
        .alias(spec.tier_column)
    ).select(keys + ["__entity", spec.tier_column, spec.total_column])

    return (
        df.with_row_index("__pos")
        .with_columns(entity_key)
        .join(ranked, on=keys + ["__entity"], how="left")
        .sort("__pos")
        .drop("__pos", "__entity")
    )


class EnrichmentEngine:
    """
    Builds master_sales_ext.

    Tier granularity is chosen once from settings.tiers_per_year and applied
    through the same tiering function for cities and categories.

    Example:
        engine = EnrichmentEngine()
        report = engine.build(master)
    """

    def __init__(self, settings: Optional[PipelineSettings] = None):
        self.settings = settings or get_settings().pipeline

    @property
    def tier_keys(self) -> List[str]:
        return ["order_year"] if self.settings.tiers_per_year else []

    def add_calendar_features(self, df: pl.DataFrame) -> pl.DataFrame:
        """Time-part decomposition of order_date"""
        order_date = pl.col("order_date")
        return df.with_columns(
            order_date.dt.year().cast(pl.Int64).alias("order_year"),
            order_date.dt.month().cast(pl.Int64).alias("order_month"),
            order_date.dt.quarter().cast(pl.Int64).alias("order_quarter"),
            order_date.dt.strftime("%Y-%m").alias("order_year_month"),
            order_date.dt.strftime("%a").alias("weekday_name"),
            # polars weekday is ISO (Mon=1..Sun=7); shift so Sunday = 1
            (order_date.dt.weekday().cast(pl.Int64) % 7 + 1).alias("weekday_num"),
            order_date.dt.strftime("%U").cast(pl.Int64).alias("week_of_year"),
        )

    def add_price_bucket(self, df: pl.DataFrame) -> pl.DataFrame:
        return df.with_columns(
            price_bucket_expr(pl.col("unit_price"), self.settings.price_bucket_bounds).alias("price_bucket")
        )

    def add_lifecycle_features(self, df: pl.DataFrame) -> pl.DataFrame:
        """
        Per-customer window features, partitioned by customer_email.

        order_sequence_number uses the full composite ordering so same-day
        lines always number the same way.
        """
        df = df.with_columns(
            pl.col("unit_price").cast(pl.Float64).alias("__unit_price"),
            pl.col("line_revenue").cast(pl.Float64).alias("__line_revenue"),
        )
        df = with_row_number(df, "order_sequence_number", order_by=SEQUENCE_ORDER, partition_by=["customer_email"])

        return df.with_columns(
            pl.col("order_date").min().over("customer_email").alias("first_order_date"),
        ).with_columns(
            (pl.col("order_date") - pl.col("first_order_date")).dt.total_days().cast(pl.Int64).alias("days_since_first"),
            (pl.col("order_sequence_number") > 1).alias("is_repeat_customer"),
            pl.col("line_revenue").sum().over("customer_email").cast(NUMERIC).alias("customer_lifetime_revenue"),
            pl.len().over("customer_email").cast(pl.Int64).alias("customer_line_count"),
        ).with_columns(
            safe_divide(pl.col("customer_lifetime_revenue"), pl.col("customer_line_count"))
            .alias("customer_avg_line_value"),
        ).drop("__unit_price", "__line_revenue")

    def add_tiers(self, df: pl.DataFrame) -> pl.DataFrame:
        k = self.settings.tier_count
        df = assign_tiers(df, CITY_TIERS, self.tier_keys, k)
        return assign_tiers(df, CATEGORY_TIERS, self.tier_keys, k)

    def enrich(self, master: pl.DataFrame) -> pl.DataFrame:
        """Apply every enrichment step; row count and order are preserved"""
        df = self.add_calendar_features(master)
        df = self.add_price_bucket(df)
        df = self.add_lifecycle_features(df)
        df = self.add_tiers(df)
        return df.select(EXT_COLUMNS)

    def build(self, master: pl.DataFrame) -> EnrichmentReport:
        enriched = self.enrich(master)

        report = EnrichmentReport(
            enriched=enriched,
            repeat_distribution=self.repeat_distribution(enriched),
            price_buckets=self.price_bucket_distribution(enriched),
            monthly_tiers=self.monthly_tier_rollup(enriched),
            validation=self._validate(enriched, master),
        )

        logger.info(
            "Master enriched",
            rows=enriched.height,
            customers=enriched["customer_email"].n_unique(),
            repeat_lines=int(enriched["is_repeat_customer"].sum()),
            tiers_per_year=self.settings.tiers_per_year,
        )
        return report

    def repeat_distribution(self, enriched: pl.DataFrame) -> pl.DataFrame:
        return (
            enriched.group_by("is_repeat_customer")
            .agg(
                pl.len().cast(pl.Int64).alias("lines"),
                pl.col("customer_email").n_unique().cast(pl.Int64).alias("customers"),
                pl.col("line_revenue").cast(pl.Float64).sum().alias("revenue"),
            )
            .sort("is_repeat_customer")
        )

    def price_bucket_distribution(self, enriched: pl.DataFrame) -> pl.DataFrame:
        labels = price_bucket_labels(self.settings.price_bucket_bounds)
        total = enriched["line_revenue"].cast(pl.Float64).sum()
        return (
            enriched.group_by("price_bucket")
            .agg(
                pl.len().cast(pl.Int64).alias("lines"),
                pl.col("quantity").sum().alias("quantity"),
                pl.col("line_revenue").cast(pl.Float64).sum().alias("revenue"),
            )
            .with_columns(
                safe_divide(pl.col("revenue"), pl.lit(total)).alias("revenue_share"),
                pl.col("price_bucket").replace_strict(labels, list(range(len(labels))), default=len(labels)).alias("__order"),
            )
            .sort("__order")
            .drop("__order")
        )

    def monthly_tier_rollup(self, enriched: pl.DataFrame) -> pl.DataFrame:
        return (
            enriched.group_by("order_year_month", "city_tier", "category_tier")
            .agg(
                pl.len().cast(pl.Int64).alias("lines"),
                pl.col("line_revenue").cast(pl.Float64).sum().alias("revenue"),
            )
            .sort("order_year_month", "city_tier", "category_tier")
        )

    def _validate(self, enriched: pl.DataFrame, master: pl.DataFrame) -> ValidationResult:
        return (
            DataValidator("enrichment")
            .add_not_null_check("price_bucket")
            .add_not_null_check("first_order_date")
            .add_not_null_check("city_tier")
            .add_not_null_check("category_tier")
            .add_enum_check("price_bucket", price_bucket_labels(self.settings.price_bucket_bounds))
            .add_range_check("weekday_num", min_value=1, max_value=7)
            .add_range_check("days_since_first", min_value=0)
            .add_equality_check("row_parity_with_master", lambda df: df.height, lambda df: master.height)
            .add_count_check(
                "repeat_flag_consistency",
                lambda df: df.filter(pl.col("is_repeat_customer") != (pl.col("order_sequence_number") > 1)).height,
                "Lines whose repeat flag disagrees with their sequence number",
            )
            .validate(enriched)
        )


def enrich_master(master: pl.DataFrame, settings: Optional[PipelineSettings] = None) -> pl.DataFrame:
    """Convenience function for enriching master_sales"""
    return EnrichmentEngine(settings).enrich(master)
