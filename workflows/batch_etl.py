"""
Prefect Workflow Orchestration - Sales BI Full Rebuild

Workflow for the batch transformation pipeline with:
- One task per stage, run strictly in dependency order
- Retries only where I/O is involved (loading raw extracts)
- Fatal guardrail failures surfaced as flow failures
- A standalone, re-runnable metric guardrail check
"""

from pathlib import Path
from typing import Dict, Optional

import polars as pl
from prefect import flow, task, get_run_logger

from sales_bi.config import get_settings
from sales_bi.ingestion.raw_loader import load_raw_relations
from sales_bi.metrics.guardrails import run_guardrails
from sales_bi.pipeline import SalesBIPipeline, StageResult
from sales_bi.schemas import DIM_DATE, RAW_COLUMNS

settings = get_settings()


def _stage_summary(result: StageResult) -> dict:
    validation = result.validation
    return {
        "stage": result.stage.value,
        "input_rows": result.input_rows,
        "output_rows": result.output_rows,
        "rows_dropped": result.rows_dropped,
        "duration_seconds": result.duration_seconds,
        "relations": result.relations,
        "status": validation.status.value if validation else None,
        "failed_checks": [c.name for c in validation.failures()] if validation else [],
    }


# =============================================================================
# TASKS
# =============================================================================

@task(
    name="load_raw_extracts",
    description="Load the four raw CSV extracts as string-typed relations",
    retries=2,
    retry_delay_seconds=30,
)
def load_raw_extracts(raw_path: Optional[str] = None) -> Dict[str, pl.DataFrame]:
    """Load raw extracts from the raw zone"""
    logger = get_run_logger()
    relations = load_raw_relations(raw_path, settings.data_lake)
    logger.info(f"Loaded raw extracts: { {k: v.height for k, v in relations.items()} }")
    return relations


@task(name="seed_store", description="Drop every relation and register the raw inputs")
def seed_store(pipeline: SalesBIPipeline, raw: Dict[str, pl.DataFrame]) -> int:
    pipeline.store.drop_all()
    pipeline.store.replace_many({name: raw[name] for name in RAW_COLUMNS})
    return len(pipeline.store)


@task(name="validate_raw", description="Profile raw relations (read-only)")
def validate_raw(pipeline: SalesBIPipeline) -> dict:
    return _stage_summary(pipeline.validate_raw())


@task(name="build_staging", description="Clean, type and deduplicate raw relations")
def build_staging(pipeline: SalesBIPipeline) -> dict:
    return _stage_summary(pipeline.build_staging())


@task(name="build_master", description="Consolidate master_sales behind the row count gate")
def build_master(pipeline: SalesBIPipeline) -> dict:
    return _stage_summary(pipeline.build_master())


@task(name="build_enrichment", description="Derive master_sales_ext")
def build_enrichment(pipeline: SalesBIPipeline) -> dict:
    return _stage_summary(pipeline.build_enrichment())


@task(name="build_star_schema", description="Build dimensions and fact with parity guardrails")
def build_star_schema(pipeline: SalesBIPipeline) -> dict:
    return _stage_summary(pipeline.build_star_schema())


@task(name="build_metric_views", description="Build the base view, metric views and guardrails")
def build_metric_views(pipeline: SalesBIPipeline) -> dict:
    return _stage_summary(pipeline.build_metric_views())


@task(name="send_alert", description="Send alert notification")
def send_alert(alert_type: str, message: str, severity: str = "info") -> None:
    """Send alert notification"""
    logger = get_run_logger()
    logger.warning(f"[{severity.upper()}] {alert_type}: {message}")


# =============================================================================
# FLOWS
# =============================================================================

@flow(
    name="sales_bi_full_rebuild",
    description="Full rebuild of staging, master, star schema and metric views",
)
def sales_bi_full_rebuild(
    raw_path: Optional[str] = None,
    output_path: Optional[str] = None,
) -> dict:
    """
    Full rebuild pipeline.

    Steps:
    1. Load raw extracts
    2. Profile raw relations
    3. Staging
    4. Master consolidation
    5. Enrichment
    6. Star schema (fatal guardrails)
    7. Metric views and guardrails
    """
    logger = get_run_logger()
    pipeline = SalesBIPipeline(settings, output_path=output_path or settings.data_lake.output_path)

    results = {"steps": {}}

    try:
        raw = load_raw_extracts(raw_path)
        seed_store(pipeline, raw)

        for step in (
            validate_raw,
            build_staging,
            build_master,
            build_enrichment,
            build_star_schema,
            build_metric_views,
        ):
            summary = step(pipeline)
            results["steps"][summary["stage"]] = summary
            if summary["failed_checks"]:
                send_alert(
                    alert_type=f"QA findings in {summary['stage']}",
                    message=", ".join(summary["failed_checks"]),
                    severity="warning",
                )

        results["status"] = "success"

    except Exception as e:
        logger.error(f"Full rebuild failed: {e}")
        send_alert(alert_type="Rebuild Failed", message=str(e), severity="critical")
        raise

    return results


@flow(
    name="metric_guardrail_check",
    description="Re-run metric guardrails against persisted relations",
)
def metric_guardrail_check(output_path: Optional[str] = None) -> dict:
    """
    Standalone guardrail flow.

    Reads the Parquet relations written by the last rebuild and reconciles
    every metric view against v_base_sales again.
    """
    logger = get_run_logger()
    root = Path(output_path or settings.data_lake.output_path)

    relations = {path.stem: pl.read_parquet(path) for path in sorted(root.glob("*.parquet"))}
    result = run_guardrails(relations, relations[DIM_DATE], settings.pipeline)

    if not result.passed:
        send_alert(
            alert_type="Metric guardrails failed",
            message=", ".join(c.name for c in result.failures()),
            severity="critical",
        )

    logger.info(f"Guardrails {result.status.value}: {result.passed_checks}/{result.total_checks} passed")
    return {
        "status": result.status.value,
        "total_checks": result.total_checks,
        "passed_checks": result.passed_checks,
        "success_rate": result.success_rate,
    }


# =============================================================================
# DEPLOYMENT CONFIGURATION
# =============================================================================

if __name__ == "__main__":
    sales_bi_full_rebuild()
