"""
Staging Module

Turns loosely typed raw extracts into typed, cleaned staging relations.
Handles:
- Defensive type casting (failed casts become null, never raise)
- Whitespace trimming and case normalization
- Email and phone normalization
- Deterministic first-wins deduplication by business key
- Tolerant multi-format date parsing
- Referential integrity enforcement between staged orders and their parents
"""

from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

import polars as pl
import structlog

from sales_bi.config import PipelineSettings, get_settings
from sales_bi.quality.validators import (
    DataValidator,
    ValidationResult,
    count_orphans,
    summarize_checks,
)
from sales_bi.schemas import (
    RAW_CATEGORIES,
    RAW_CUSTOMERS,
    RAW_ORDERS,
    RAW_PRODUCTS,
    STG_CATEGORIES,
    STG_CUSTOMERS,
    STG_ORDERS,
    STG_PRODUCTS,
    coerce_raw_frame,
    parse_date_expr,
    safe_int,
    safe_numeric,
    trimmed,
)

logger = structlog.get_logger(__name__)

EMAIL_FRAGMENT_PATTERN = r"^[^#\s]+"
MAILTO_PATTERN = r"(?i)^mailto:"

DROP_REASONS = ("null_key", "duplicate_key", "invalid_value", "orphan")


@dataclass
class CleaningStats:
    """Row accounting for one staged relation"""
    relation: str
    total_rows: int
    rows_after_cleaning: int
    null_key_dropped: int = 0
    duplicates_removed: int = 0
    invalid_dropped: int = 0
    orphans_dropped: int = 0

    @property
    def rows_dropped(self) -> int:
        return self.total_rows - self.rows_after_cleaning


@dataclass
class StagingReport:
    """Outcome of a staging build"""
    relations: Dict[str, pl.DataFrame]
    stats: Dict[str, CleaningStats]
    rowcounts: pl.DataFrame
    schema_catalog: pl.DataFrame
    drops: pl.DataFrame
    orphans_pre: Dict[str, int] = field(default_factory=dict)
    orphans_post: Dict[str, int] = field(default_factory=dict)
    validation: Optional[ValidationResult] = None


class DataCleaner:
    """
    Column-level cleaning rules shared by the staging builders.

    Rules are registered by name so callers can extend them.

    Example:
        cleaner = DataCleaner()
        df = cleaner.apply(df, "trim_strings")
    """

    def __init__(self):
        self._cleaning_rules = {}
        self._register_default_rules()

    def _register_default_rules(self) -> None:
        """Register default cleaning rules"""
        self._cleaning_rules = {
            "trim_strings": self._trim_strings,
            "normalize_case": self._normalize_case,
            "remove_duplicates": self._remove_duplicates,
            "clean_email": self._clean_email,
            "clean_phone": self._clean_phone,
        }

    def register_rule(self, name: str, func) -> None:
        """Register a custom cleaning rule"""
        self._cleaning_rules[name] = func

    def apply(self, df: pl.DataFrame, rule: str, *args, **kwargs) -> pl.DataFrame:
        return self._cleaning_rules[rule](df, *args, **kwargs)

    def _trim_strings(self, df: pl.DataFrame, columns: Optional[List[str]] = None) -> pl.DataFrame:
        """Trim whitespace from string columns"""
        string_cols = columns or [
            col for col, dtype in zip(df.columns, df.dtypes)
            if dtype == pl.Utf8
        ]

        return df.with_columns(
            [pl.col(col).str.strip_chars().alias(col) for col in string_cols if col in df.columns]
        )

    def _normalize_case(
        self,
        df: pl.DataFrame,
        columns: List[str],
        case: str = "lower",
    ) -> pl.DataFrame:
        """Normalize string case"""
        for col in columns:
            if col in df.columns:
                if case == "lower":
                    df = df.with_columns(pl.col(col).str.to_lowercase().alias(col))
                elif case == "upper":
                    df = df.with_columns(pl.col(col).str.to_uppercase().alias(col))

        return df

    def _remove_duplicates(
        self,
        df: pl.DataFrame,
        subset: List[str],
    ) -> pl.DataFrame:
        """
        ROW_NUMBER() OVER (PARTITION BY key ORDER BY key) = 1.

        The sort is stable, so rows sharing a key keep their input order and
        the first-seen row wins on every run.
        """
        return (
            df.with_row_index("__pos")
            .sort(subset + ["__pos"], nulls_last=True)
            .unique(subset=subset, keep="first", maintain_order=True)
            .sort("__pos")
            .drop("__pos")
        )

    def _clean_email(self, df: pl.DataFrame, email_column: str = "email") -> pl.DataFrame:
        """Strip '#fragment' tails and 'mailto:' prefixes, then lowercase"""
        if email_column not in df.columns:
            return df

        return df.with_columns(
            pl.col(email_column)
            .str.strip_chars()
            .str.extract(EMAIL_FRAGMENT_PATTERN, 0)
            .str.replace(MAILTO_PATTERN, "")
            .str.to_lowercase()
            .alias(email_column)
        )

    def _clean_phone(
        self,
        df: pl.DataFrame,
        phone_column: str = "phone",
    ) -> pl.DataFrame:
        """Clean phone numbers - keep only digits"""
        if phone_column not in df.columns:
            return df

        return df.with_columns(
            pl.col(phone_column)
            .str.replace_all(r"[^\d]", "")
            .alias(phone_column)
        )


class StagingBuilder:
    """
    Builds stg_customers, stg_product_category, stg_products and stg_orders.

    Example:
        builder = StagingBuilder()
        report = builder.build(raw_relations)
        report.relations["stg_orders"]
    """

    def __init__(self, settings: Optional[PipelineSettings] = None):
        self.settings = settings or get_settings().pipeline
        self.cleaner = DataCleaner()

    def _dedup(self, df: pl.DataFrame, key: str) -> Tuple[pl.DataFrame, int, int]:
        """Drop null keys and keep the first row per key; returns (df, null_dropped, dup_dropped)"""
        before = df.height
        non_null = df.filter(pl.col(key).is_not_null())
        null_dropped = before - non_null.height
        deduped = self.cleaner.apply(non_null, "remove_duplicates", [key])
        return deduped, null_dropped, non_null.height - deduped.height

    def build_customers(self, raw: pl.DataFrame) -> Tuple[pl.DataFrame, CleaningStats]:
        """Normalize customer text fields and enforce PK uniqueness"""
        raw = coerce_raw_frame(RAW_CUSTOMERS, raw)

        df = raw.select(
            safe_int("CustomerID").alias("customer_id"),
            trimmed("FirstName").alias("first_name"),
            trimmed("LastName").alias("last_name"),
            pl.concat_str(
                [trimmed("FirstName").fill_null(""), trimmed("LastName").fill_null("")],
                separator=" ",
            ).str.strip_chars().alias("customer_name"),
            pl.col("CustomerEmail").alias("customer_email"),
            pl.col("CustomerPhone").alias("customer_phone"),
            trimmed("CustomerAddress").alias("customer_address"),
            trimmed("CustomerCity").alias("customer_city"),
            trimmed("CustomerState").alias("customer_state"),
            trimmed("CustomerZip").alias("customer_zip"),
        )
        df = self.cleaner.apply(df, "clean_email", "customer_email")
        df = self.cleaner.apply(df, "clean_phone", "customer_phone")
        df = self.cleaner.apply(df, "normalize_case", ["customer_state"], "upper")

        df, null_dropped, dup_dropped = self._dedup(df, "customer_id")

        stats = CleaningStats(
            relation=STG_CUSTOMERS,
            total_rows=raw.height,
            rows_after_cleaning=df.height,
            null_key_dropped=null_dropped,
            duplicates_removed=dup_dropped,
        )
        return df, stats

    def build_categories(self, raw: pl.DataFrame) -> Tuple[pl.DataFrame, CleaningStats]:
        """Standardize category labels and enforce PK uniqueness"""
        raw = coerce_raw_frame(RAW_CATEGORIES, raw)

        df = raw.select(
            safe_int("CategoryID").alias("category_id"),
            trimmed("CategoryName").alias("category_name"),
            trimmed("CategoryAbbreviation").alias("category_abbreviation"),
        )
        df = self.cleaner.apply(df, "normalize_case", ["category_abbreviation"], "upper")

        df, null_dropped, dup_dropped = self._dedup(df, "category_id")

        stats = CleaningStats(
            relation=STG_CATEGORIES,
            total_rows=raw.height,
            rows_after_cleaning=df.height,
            null_key_dropped=null_dropped,
            duplicates_removed=dup_dropped,
        )
        return df, stats

    def build_products(self, raw: pl.DataFrame) -> Tuple[pl.DataFrame, CleaningStats]:
        """Clean the product catalog; require a category reference and a positive price"""
        raw = coerce_raw_frame(RAW_PRODUCTS, raw)

        df = raw.select(
            trimmed("ProdNumber").alias("product_number"),
            trimmed("ProdName").alias("product_name"),
            safe_int("Category").alias("category_id"),
            safe_numeric("Price").alias("price"),
        )
        # An empty product code is not a key
        df = df.with_columns(
            pl.when(pl.col("product_number") == "").then(None).otherwise(pl.col("product_number")).alias("product_number")
        )

        df, null_dropped, dup_dropped = self._dedup(df, "product_number")

        before = df.height
        df = df.filter(
            pl.col("category_id").is_not_null()
            & pl.col("price").is_not_null()
            & (pl.col("price").cast(pl.Float64) > 0)
        )

        stats = CleaningStats(
            relation=STG_PRODUCTS,
            total_rows=raw.height,
            rows_after_cleaning=df.height,
            null_key_dropped=null_dropped,
            duplicates_removed=dup_dropped,
            invalid_dropped=before - df.height,
        )
        return df, stats

    def build_orders(
        self,
        raw: pl.DataFrame,
        customers: pl.DataFrame,
        products: pl.DataFrame,
    ) -> Tuple[pl.DataFrame, CleaningStats]:
        """Parse dates, require positive quantities and resolve both parents"""
        raw = coerce_raw_frame(RAW_ORDERS, raw)

        df = raw.select(
            safe_int("OrderID").alias("order_id"),
            parse_date_expr("Date", self.settings.date_formats).alias("order_date"),
            safe_int("CustomerID").alias("customer_id"),
            trimmed("ProdNumber").alias("product_number"),
            safe_int("Quantity").alias("quantity"),
        )

        df, null_dropped, dup_dropped = self._dedup(df, "order_id")

        before = df.height
        df = df.filter(
            pl.col("order_date").is_not_null()
            & pl.col("customer_id").is_not_null()
            & pl.col("product_number").is_not_null()
            & (pl.col("product_number") != "")
            & (pl.col("quantity") > 0)
        )
        invalid_dropped = before - df.height

        # Inner-join semantics: unresolved parents are dropped, not flagged
        before = df.height
        df = (
            df.with_row_index("__pos")
            .join(customers.select("customer_id"), on="customer_id", how="inner")
            .join(products.select("product_number"), on="product_number", how="inner")
            .sort("__pos")
            .drop("__pos")
            .with_columns(pl.col("order_date").dt.strftime("%Y-%m").alias("order_year_month"))
        )

        stats = CleaningStats(
            relation=STG_ORDERS,
            total_rows=raw.height,
            rows_after_cleaning=df.height,
            null_key_dropped=null_dropped,
            duplicates_removed=dup_dropped,
            invalid_dropped=invalid_dropped,
            orphans_dropped=before - df.height,
        )
        return df, stats

    def build(self, raw_relations: Dict[str, pl.DataFrame]) -> StagingReport:
        """
        Build every staging relation in dependency order.

        Args:
            raw_relations: raw_customers, raw_product_category, raw_products, raw_orders

        Returns:
            StagingReport with relations, drop accounting and QA relations
        """
        customers, customer_stats = self.build_customers(raw_relations[RAW_CUSTOMERS])
        categories, category_stats = self.build_categories(raw_relations[RAW_CATEGORIES])
        products, product_stats = self.build_products(raw_relations[RAW_PRODUCTS])

        raw_orders = coerce_raw_frame(RAW_ORDERS, raw_relations[RAW_ORDERS])
        orphans_pre = {
            "orders_missing_customer": count_orphans(
                raw_orders.select(safe_int("CustomerID").alias("customer_id")),
                "customer_id", customers, "customer_id",
            ),
            "orders_missing_product": count_orphans(
                raw_orders.select(trimmed("ProdNumber").alias("product_number")),
                "product_number", products, "product_number",
            ),
        }

        orders, order_stats = self.build_orders(raw_orders, customers, products)

        orphans_post = {
            "orders_missing_customer": count_orphans(orders, "customer_id", customers, "customer_id"),
            "orders_missing_product": count_orphans(orders, "product_number", products, "product_number"),
        }

        relations = {
            STG_CUSTOMERS: customers,
            STG_CATEGORIES: categories,
            STG_PRODUCTS: products,
            STG_ORDERS: orders,
        }
        stats = {
            STG_CUSTOMERS: customer_stats,
            STG_CATEGORIES: category_stats,
            STG_PRODUCTS: product_stats,
            STG_ORDERS: order_stats,
        }

        for name, s in stats.items():
            logger.info(
                "Staged relation",
                relation=name,
                raw_rows=s.total_rows,
                staged_rows=s.rows_after_cleaning,
                null_key_dropped=s.null_key_dropped,
                duplicates_removed=s.duplicates_removed,
                invalid_dropped=s.invalid_dropped,
                orphans_dropped=s.orphans_dropped,
            )

        return StagingReport(
            relations=relations,
            stats=stats,
            rowcounts=self._rowcounts(raw_relations, relations),
            schema_catalog=schema_catalog(relations),
            drops=self._drops_frame(stats),
            orphans_pre=orphans_pre,
            orphans_post=orphans_post,
            validation=self._validate(relations, orphans_pre, orphans_post),
        )

    def _rowcounts(
        self,
        raw_relations: Dict[str, pl.DataFrame],
        relations: Dict[str, pl.DataFrame],
    ) -> pl.DataFrame:
        """Raw vs staged row counts (v_stg_rowcounts)"""
        pairs = [
            (RAW_CUSTOMERS, STG_CUSTOMERS),
            (RAW_CATEGORIES, STG_CATEGORIES),
            (RAW_PRODUCTS, STG_PRODUCTS),
            (RAW_ORDERS, STG_ORDERS),
        ]
        names, counts = [], []
        for raw_name, stg_name in pairs:
            names += [raw_name, stg_name]
            counts += [raw_relations[raw_name].height, relations[stg_name].height]
        return pl.DataFrame({"name": names, "n": counts}, schema={"name": pl.Utf8, "n": pl.Int64})

    def _drops_frame(self, stats: Dict[str, CleaningStats]) -> pl.DataFrame:
        rows = []
        for name, s in stats.items():
            for reason, count in zip(
                DROP_REASONS,
                (s.null_key_dropped, s.duplicates_removed, s.invalid_dropped, s.orphans_dropped),
            ):
                rows.append({"relation": name, "reason": reason, "rows_dropped": count})
        return pl.DataFrame(rows, schema={"relation": pl.Utf8, "reason": pl.Utf8, "rows_dropped": pl.Int64})

    def _validate(
        self,
        relations: Dict[str, pl.DataFrame],
        orphans_pre: Dict[str, int],
        orphans_post: Dict[str, int],
    ) -> ValidationResult:
        """Post-build guarantees: unique non-null PKs and fully resolved FKs"""
        keys = {
            STG_CUSTOMERS: "customer_id",
            STG_CATEGORIES: "category_id",
            STG_PRODUCTS: "product_number",
            STG_ORDERS: "order_id",
        }
        checks = []
        for name, key in keys.items():
            result = (
                DataValidator(name)
                .add_not_null_check(key)
                .add_unique_check(key)
                .validate(relations[name])
            )
            for check in result.checks:
                check.name = f"{name}.{check.name}"
                checks.append(check)

        orders = relations[STG_ORDERS]
        fk_result = (
            DataValidator(STG_ORDERS)
            .add_referential_integrity_check("customer_id", relations[STG_CUSTOMERS], "customer_id")
            .add_referential_integrity_check("product_number", relations[STG_PRODUCTS], "product_number")
            .add_positive_check("quantity", allow_zero=False)
            .add_not_null_check("order_date")
            .validate(orders)
        )
        for check in fk_result.checks:
            check.name = f"{STG_ORDERS}.{check.name}"
            check.details = dict(check.details or {}, orphans_pre=orphans_pre, orphans_post=orphans_post)
            checks.append(check)

        return summarize_checks(checks, suite="staging")


def schema_catalog(relations: Dict[str, pl.DataFrame]) -> pl.DataFrame:
    """Column-level metadata (table, column, type, nullability) for documentation"""
    rows = []
    for table_name in sorted(relations):
        df = relations[table_name]
        for column_name, dtype in zip(df.columns, df.dtypes):
            rows.append(
                {
                    "table_name": table_name,
                    "column_name": column_name,
                    "data_type": str(dtype),
                    "is_nullable": df[column_name].null_count() > 0,
                }
            )
    return pl.DataFrame(
        rows,
        schema={"table_name": pl.Utf8, "column_name": pl.Utf8, "data_type": pl.Utf8, "is_nullable": pl.Boolean},
    ).sort(["table_name", "column_name"])
