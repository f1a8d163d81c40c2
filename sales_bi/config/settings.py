"""
Sales BI Pipeline
Centralized Configuration Management

This module provides configuration management using Pydantic settings with
environment variable support, validation, and type safety.
"""

from datetime import date
from functools import lru_cache
from typing import List, Optional, Tuple

from pydantic import Field, ValidationError, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from sales_bi.exceptions import ConfigError


class PipelineSettings(BaseSettings):
    """Transformation pipeline configuration"""

    model_config = SettingsConfigDict(env_prefix="PIPELINE_")

    # Tiering granularity: False = all-time ranking, True = ranking per order year
    tiers_per_year: bool = Field(default=False, description="Compute city/category tiers per year")
    tier_count: int = Field(default=3, description="Number of revenue tiers")

    # Date dimension bounds (never inferred from data)
    date_dim_start: date = Field(default=date(2020, 1, 1), description="First day of dim_date")
    date_dim_end: date = Field(default=date(2021, 12, 31), description="Last day of dim_date")

    # Order date parse priority: ISO, US, day-first
    date_formats: List[str] = Field(
        default=["%Y-%m-%d", "%m/%d/%Y", "%d/%m/%Y"],
        description="Order date formats tried in order",
    )

    # Business constants
    clv_margin_rate: float = Field(default=0.30, description="Gross margin assumption for CLV")
    price_bucket_bounds: Tuple[float, float, float] = Field(
        default=(20.0, 50.0, 100.0),
        description="Price bucket boundaries (left-inclusive)",
    )
    rfm_quantiles: int = Field(default=5, description="Quantile count for R/F/M scores")
    pareto_threshold: float = Field(default=0.80, description="Cumulative share cut-off for Pareto flag")

    # QA
    reconciliation_tolerance: float = Field(default=0.001, description="Absolute tolerance for metric parity")
    expected_master_rows: Optional[int] = Field(default=None, description="Optional literal master row expectation")
    top_n: int = Field(default=10, description="Size of top-N breakdowns and spot samples")
    fail_on_guardrail: bool = Field(default=True, description="Raise when a fatal guardrail fails")

    @field_validator("price_bucket_bounds")
    @classmethod
    def validate_bounds(cls, v: Tuple[float, float, float]) -> Tuple[float, float, float]:
        """Bucket bounds must be positive and strictly increasing"""
        if v[0] <= 0 or not (v[0] < v[1] < v[2]):
            raise ValueError(f"Price bucket bounds must be positive and strictly increasing: {v}")
        return v

    @field_validator("tier_count", "rfm_quantiles")
    @classmethod
    def validate_positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError("Quantile counts must be >= 1")
        return v

    @model_validator(mode="after")
    def validate_date_range(self) -> "PipelineSettings":
        """Date dimension range must not be inverted"""
        if self.date_dim_start > self.date_dim_end:
            raise ValueError(
                f"date_dim_start ({self.date_dim_start}) is after date_dim_end ({self.date_dim_end})"
            )
        return self


class DataLakeSettings(BaseSettings):
    """Raw input and output storage configuration"""

    model_config = SettingsConfigDict(env_prefix="DATA_")

    raw_path: str = Field(default="./data/raw", description="Directory holding raw CSV extracts")
    output_path: Optional[str] = Field(default="./data/curated", description="Directory for rebuilt relations")

    # Raw file names
    customers_file: str = Field(default="customers.csv", description="Raw customers extract")
    products_file: str = Field(default="products.csv", description="Raw products extract")
    categories_file: str = Field(default="product_category.csv", description="Raw categories extract")
    orders_file: str = Field(default="orders.csv", description="Raw orders extract")


class MonitoringSettings(BaseSettings):
    """Logging Configuration"""

    model_config = SettingsConfigDict(env_prefix="")

    log_level: str = Field(default="INFO", alias="LOG_LEVEL", description="Logging level")
    log_format: str = Field(default="json", description="Log format: json or text")


class Settings(BaseSettings):
    """
    Main Application Settings

    Aggregates all configuration sections and provides a single entry point
    for accessing application configuration.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    app_name: str = Field(default="sales-bi-pipeline", alias="APP_NAME", description="Application name")
    app_env: str = Field(default="development", alias="APP_ENV", description="Environment")

    # Version
    version: str = Field(default="1.0.0", description="Application version")

    # Subsystem configurations
    pipeline: PipelineSettings = Field(default_factory=PipelineSettings)
    data_lake: DataLakeSettings = Field(default_factory=DataLakeSettings)
    monitoring: MonitoringSettings = Field(default_factory=MonitoringSettings)

    @field_validator("app_env")
    @classmethod
    def validate_env(cls, v: str) -> str:
        """Validate environment value"""
        allowed = ["development", "staging", "production", "testing"]
        if v.lower() not in allowed:
            raise ValueError(f"Environment must be one of: {allowed}")
        return v.lower()

    @property
    def is_production(self) -> bool:
        """Check if running in production"""
        return self.app_env == "production"


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached application settings.

    Uses LRU cache to ensure settings are only loaded once.

    Returns:
        Settings: Application settings instance

    Raises:
        ConfigError: an environment value fails validation
    """
    try:
        return Settings()
    except ValidationError as e:
        raise ConfigError(f"Invalid configuration: {e}") from e
