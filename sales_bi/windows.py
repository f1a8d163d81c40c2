"""
Window and Ratio Helpers

Polars equivalents of the SQL window primitives the pipeline relies on:
ROW_NUMBER, NTILE, SAFE_DIVIDE and deterministic hash surrogate keys.
"""

import hashlib
from typing import List, Optional, Sequence

import polars as pl

_INT63_MASK = 0x7FFFFFFFFFFFFFFF


def safe_divide(numerator: pl.Expr, denominator: pl.Expr) -> pl.Expr:
    """Division that yields null (never an error, NaN or inf) when the denominator is null or zero"""
    return (
        pl.when(denominator.is_null() | (denominator == 0))
        .then(pl.lit(None, dtype=pl.Float64))
        .otherwise(numerator.cast(pl.Float64) / denominator.cast(pl.Float64))
    )


def ntile_expr(rn: pl.Expr, n: pl.Expr, k: int) -> pl.Expr:
    """
    SQL NTILE(k) for a 0-based row number within a partition of size n.

    The first (n mod k) buckets hold one extra row.
    """
    small = n // k
    rem = n % k
    big = small + 1
    threshold = rem * big
    return (
        pl.when(rn < threshold)
        .then(rn // big + 1)
        .otherwise((rn - threshold) // pl.max_horizontal(small, pl.lit(1, dtype=pl.Int64)) + rem + 1)
        .cast(pl.Int64)
    )


def _sorted_with_position(
    df: pl.DataFrame,
    order_by: Sequence[str],
    descending: Optional[Sequence[bool]],
    partition_by: Sequence[str],
) -> pl.DataFrame:
    descending = list(descending) if descending is not None else [False] * len(order_by)
    return df.with_row_index("__pos").sort(
        list(partition_by) + list(order_by),
        descending=[False] * len(partition_by) + descending,
        nulls_last=True,
        maintain_order=True,
    )


def with_row_number(
    df: pl.DataFrame,
    alias: str,
    order_by: Sequence[str],
    partition_by: Sequence[str] = (),
    descending: Optional[Sequence[bool]] = None,
) -> pl.DataFrame:
    """ROW_NUMBER() OVER (PARTITION BY ... ORDER BY ...), 1-based; input row order is preserved"""
    partition_by = list(partition_by)
    ordered = _sorted_with_position(df, order_by, descending, partition_by)
    rn = pl.int_range(1, pl.len() + 1, dtype=pl.Int64)
    if partition_by:
        rn = rn.over(partition_by)
    return ordered.with_columns(rn.alias(alias)).sort("__pos").drop("__pos")


def with_ntile(
    df: pl.DataFrame,
    alias: str,
    k: int,
    order_by: Sequence[str],
    partition_by: Sequence[str] = (),
    descending: Optional[Sequence[bool]] = None,
) -> pl.DataFrame:
    """NTILE(k) OVER (PARTITION BY ... ORDER BY ...); input row order is preserved"""
    partition_by = list(partition_by)
    ordered = _sorted_with_position(df, order_by, descending, partition_by)
    rn = pl.int_range(0, pl.len(), dtype=pl.Int64)
    n = pl.len().cast(pl.Int64)
    if partition_by:
        rn = rn.over(partition_by)
        n = n.over(partition_by)
    return ordered.with_columns(ntile_expr(rn, n, k).alias(alias)).sort("__pos").drop("__pos")


def surrogate_key(value: Optional[str]) -> Optional[int]:
    """
    Deterministic 63-bit surrogate key for a normalized business key.

    First 8 bytes of BLAKE2b over the UTF-8 string, big-endian, sign bit cleared.
    """
    if value is None:
        return None
    digest = hashlib.blake2b(value.encode("utf-8"), digest_size=8).digest()
    return int.from_bytes(digest, "big") & _INT63_MASK


def _hash_distinct(values: pl.Series) -> pl.Series:
    """Hash each distinct key once and map the result back onto every row"""
    mapping = {v: surrogate_key(v) for v in values.drop_nulls().unique().to_list()}
    if not mapping:
        return pl.Series(values.name, [None] * values.len(), dtype=pl.Int64)
    return values.replace_strict(mapping, default=None, return_dtype=pl.Int64)


def surrogate_key_expr(expr: pl.Expr) -> pl.Expr:
    return expr.cast(pl.Utf8).map_batches(_hash_distinct, return_dtype=pl.Int64)


def month_index(expr: pl.Expr) -> pl.Expr:
    """Absolute month number (year * 12 + month) for calendar month differences"""
    return expr.dt.year().cast(pl.Int64) * 12 + expr.dt.month().cast(pl.Int64)


def _format_bound(value: float) -> str:
    return f"{value:g}"


def price_bucket_labels(bounds: Sequence[float]) -> List[str]:
    """Labels for the four left-inclusive/right-exclusive price ranges"""
    low, mid, high = bounds
    return [
        f"Under {_format_bound(low)}",
        f"{_format_bound(low)}–{_format_bound(round(mid - 0.01, 2))}",
        f"{_format_bound(mid)}–{_format_bound(round(high - 0.01, 2))}",
        f"{_format_bound(high)}+",
    ]


def price_bucket_expr(price: pl.Expr, bounds: Sequence[float]) -> pl.Expr:
    """Map a unit price to one of four fixed, non-overlapping buckets"""
    low, mid, high = bounds
    labels = price_bucket_labels(bounds)
    value = price.cast(pl.Float64)
    return (
        pl.when(value < low).then(pl.lit(labels[0]))
        .when(value < mid).then(pl.lit(labels[1]))
        .when(value < high).then(pl.lit(labels[2]))
        .otherwise(pl.lit(labels[3]))
    )
