"""
Sales BI Pipeline

Full-rebuild orchestrator: raw extracts -> profiling -> staging -> master ->
enrichment -> star schema -> metric views -> guardrails. Each stage replaces
its relations in the RelationStore before the next one starts.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Dict, List, Optional, Union

import polars as pl
import structlog

from sales_bi.config import Settings, get_settings
from sales_bi.exceptions import GuardrailError, MissingRelationError
from sales_bi.ingestion.raw_loader import load_raw_relations
from sales_bi.metrics.guardrails import run_guardrails
from sales_bi.metrics.views import MetricViewLayer
from sales_bi.modeling.star_schema import FACT_COLUMNS, StarSchemaBuilder
from sales_bi.quality.profiling import RawValidator
from sales_bi.quality.validators import ValidationResult
from sales_bi.schemas import (
    BASE_VIEW,
    DIM_CUSTOMER,
    DIM_DATE,
    DIM_PRODUCT,
    FACT_SALES,
    MASTER_SALES,
    RAW_COLUMNS,
    RAW_ORDERS,
    STG_CATEGORIES,
    STG_CUSTOMERS,
    STG_ORDERS,
    STG_PRODUCTS,
)
from sales_bi.storage import RelationStore
from sales_bi.transformation.cleaners import StagingBuilder
from sales_bi.transformation.consolidation import MASTER_COLUMNS, MasterConsolidator
from sales_bi.transformation.enrichers import EnrichmentEngine

logger = structlog.get_logger(__name__)


class Stage(str, Enum):
    """Pipeline stages in execution order"""
    RAW_VALIDATION = "raw_validation"
    STAGING = "staging"
    MASTER = "master"
    ENRICHMENT = "enrichment"
    STAR_SCHEMA = "star_schema"
    METRIC_VIEWS = "metric_views"


@dataclass
class StageResult:
    """Result of one pipeline stage"""
    stage: Stage
    input_rows: int
    output_rows: int
    rows_dropped: int
    started_at: datetime
    completed_at: datetime
    duration_seconds: float
    relations: List[str] = field(default_factory=list)
    validation: Optional[ValidationResult] = None


@dataclass
class PipelineResult:
    """Outcome of a full rebuild"""
    stages: Dict[Stage, StageResult]
    store: RelationStore

    @property
    def passed(self) -> bool:
        return all(r.validation is None or r.validation.passed for r in self.stages.values())

    def summary(self) -> pl.DataFrame:
        """One row per stage, queryable alongside the data"""
        results = list(self.stages.values())
        return pl.DataFrame(
            {
                "stage": [r.stage.value for r in results],
                "input_rows": [r.input_rows for r in results],
                "output_rows": [r.output_rows for r in results],
                "rows_dropped": [r.rows_dropped for r in results],
                "duration_seconds": [r.duration_seconds for r in results],
                "status": [r.validation.status.value if r.validation else None for r in results],
            },
            schema={
                "stage": pl.Utf8,
                "input_rows": pl.Int64,
                "output_rows": pl.Int64,
                "rows_dropped": pl.Int64,
                "duration_seconds": pl.Float64,
                "status": pl.Utf8,
            },
        )


class SalesBIPipeline:
    """
    Runs every stage in dependency order as a full rebuild.

    Example:
        pipeline = SalesBIPipeline()
        result = pipeline.run(raw_relations)
        result.store.get("view_rfm")
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        store: Optional[RelationStore] = None,
        output_path: Optional[Union[str, Path]] = None,
    ):
        self.settings = settings or get_settings()
        self.store = store or RelationStore(output_path)
        pipeline_settings = self.settings.pipeline

        self.raw_validator = RawValidator(pipeline_settings)
        self.staging_builder = StagingBuilder(pipeline_settings)
        self.consolidator = MasterConsolidator(pipeline_settings)
        self.enrichment_engine = EnrichmentEngine(pipeline_settings)
        self.star_builder = StarSchemaBuilder(pipeline_settings)
        self.metric_layer = MetricViewLayer(pipeline_settings)

    def _record(
        self,
        stage: Stage,
        started_at: datetime,
        input_rows: int,
        output_rows: int,
        relations: Dict[str, pl.DataFrame],
        validation: Optional[ValidationResult],
    ) -> StageResult:
        self.store.replace_many(relations)
        completed_at = datetime.utcnow()
        result = StageResult(
            stage=stage,
            input_rows=input_rows,
            output_rows=output_rows,
            rows_dropped=max(input_rows - output_rows, 0),
            started_at=started_at,
            completed_at=completed_at,
            duration_seconds=(completed_at - started_at).total_seconds(),
            relations=sorted(relations),
            validation=validation,
        )
        logger.info(
            f"Stage {stage.value} complete",
            input_rows=input_rows,
            output_rows=output_rows,
            relations=len(relations),
            status=validation.status.value if validation else None,
            duration_seconds=round(result.duration_seconds, 3),
        )
        return result

    def validate_raw(self) -> StageResult:
        started_at = datetime.utcnow()
        raw = {name: self.store.get(name) for name in RAW_COLUMNS}
        profile = self.raw_validator.profile(raw)
        rows = sum(df.height for df in raw.values())
        return self._record(Stage.RAW_VALIDATION, started_at, rows, rows, profile.to_relations(), profile.validation)

    def build_staging(self) -> StageResult:
        started_at = datetime.utcnow()
        raw = {name: self.store.get(name) for name in RAW_COLUMNS}
        report = self.staging_builder.build(raw)

        relations = dict(report.relations)
        relations["v_stg_rowcounts"] = report.rowcounts
        relations["v_stg_schema_catalog"] = report.schema_catalog
        relations["qa_stg_drops"] = report.drops
        relations["qa_stg_checks"] = report.validation.to_frame()

        return self._record(
            Stage.STAGING,
            started_at,
            raw[RAW_ORDERS].height,
            report.relations[STG_ORDERS].height,
            relations,
            report.validation,
        )

    def build_master(self) -> StageResult:
        started_at = datetime.utcnow()
        staged = {
            name: self.store.get(name)
            for name in (STG_CUSTOMERS, STG_CATEGORIES, STG_PRODUCTS, STG_ORDERS)
        }
        report = self.consolidator.build(staged)
        return self._record(
            Stage.MASTER,
            started_at,
            staged[STG_ORDERS].height,
            report.master.height,
            report.to_relations(),
            report.validation,
        )

    def build_enrichment(self) -> StageResult:
        started_at = datetime.utcnow()
        master = self.store.get(MASTER_SALES, MASTER_COLUMNS)
        report = self.enrichment_engine.build(master)
        return self._record(
            Stage.ENRICHMENT,
            started_at,
            master.height,
            report.enriched.height,
            report.to_relations(),
            report.validation,
        )

    def build_star_schema(self) -> StageResult:
        """
        Build dimensions and fact, then enforce the parity guardrails.

        Raises:
            GuardrailError: fact rows do not reconcile with master_sales and
                fail_on_guardrail is set (usually dim_date range too narrow)
        """
        started_at = datetime.utcnow()
        master = self.store.get(MASTER_SALES, MASTER_COLUMNS)
        report = self.star_builder.build(master)

        result = self._record(
            Stage.STAR_SCHEMA,
            started_at,
            master.height,
            report.fact_sales.height,
            report.to_relations(),
            report.validation,
        )

        if not report.validation.passed and self.settings.pipeline.fail_on_guardrail:
            failed = [c.name for c in report.validation.failures()]
            logger.error("Star schema guardrails failed", failed_checks=failed)
            raise GuardrailError(f"Star schema guardrails failed: {failed}", result=report.validation)
        return result

    def build_metric_views(self) -> StageResult:
        started_at = datetime.utcnow()
        star = {name: self.store.get(name) for name in (DIM_DATE, DIM_CUSTOMER, DIM_PRODUCT)}
        star[FACT_SALES] = self.store.get(FACT_SALES, FACT_COLUMNS)
        views = self.metric_layer.build(star)
        validation = run_guardrails(views, star[DIM_DATE], self.settings.pipeline)

        relations = dict(views)
        relations["qa_metric_guardrails"] = validation.to_frame()

        if not validation.passed:
            logger.warning(
                "Metric guardrails failed",
                failed_checks=[c.name for c in validation.failures()],
            )

        return self._record(
            Stage.METRIC_VIEWS,
            started_at,
            star[FACT_SALES].height,
            views[BASE_VIEW].height,
            relations,
            validation,
        )

    def run(self, raw_relations: Optional[Dict[str, pl.DataFrame]] = None) -> PipelineResult:
        """
        Full rebuild from raw relations.

        Args:
            raw_relations: the four raw relations; loaded from DATA_RAW_PATH when omitted

        Returns:
            PipelineResult with one StageResult per stage
        """
        if raw_relations is None:
            raw_relations = load_raw_relations(data_lake=self.settings.data_lake)

        missing = [name for name in RAW_COLUMNS if name not in raw_relations]
        if missing:
            raise MissingRelationError(f"Raw relations missing: {missing}")

        logger.info("Starting full rebuild", raw_rows={k: v.height for k, v in raw_relations.items()})

        self.store.drop_all()
        self.store.replace_many({name: raw_relations[name] for name in RAW_COLUMNS})

        stages = {}
        for step in (
            self.validate_raw,
            self.build_staging,
            self.build_master,
            self.build_enrichment,
            self.build_star_schema,
            self.build_metric_views,
        ):
            result = step()
            stages[result.stage] = result

        total_duration = sum(r.duration_seconds for r in stages.values())
        logger.info(
            f"Full rebuild complete: {len(self.store)} relations, duration: {total_duration:.2f}s",
            fact_rows=stages[Stage.STAR_SCHEMA].output_rows,
        )
        return PipelineResult(stages=stages, store=self.store)


def run_pipeline(
    raw_relations: Optional[Dict[str, pl.DataFrame]] = None,
    settings: Optional[Settings] = None,
    output_path: Optional[Union[str, Path]] = None,
) -> PipelineResult:
    """Convenience function for a one-off full rebuild"""
    return SalesBIPipeline(settings=settings, output_path=output_path).run(raw_relations)
