"""
Sales BI Pipeline - command line entry point.

    sales-bi generate --out data/raw
    sales-bi run --raw-path data/raw --output-path data/curated
"""

import argparse
import sys
from typing import List, Optional

import structlog

from sales_bi.config import get_settings
from sales_bi.config.logging import configure_logging
from sales_bi.data.generators import generate_raw_dataset
from sales_bi.exceptions import ConfigError, PipelineError
from sales_bi.ingestion.raw_loader import load_raw_relations, write_raw_relations
from sales_bi.pipeline import SalesBIPipeline

logger = structlog.get_logger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="sales-bi", description="Sales BI transformation pipeline")
    parser.add_argument("--log-level", default=None, help="DEBUG, INFO, WARNING or ERROR")
    sub = parser.add_subparsers(dest="command", required=True)

    run = sub.add_parser("run", help="Full rebuild from the raw extracts")
    run.add_argument("--raw-path", default=None, help="Directory with raw CSV extracts")
    run.add_argument("--output-path", default=None, help="Directory for Parquet outputs")

    gen = sub.add_parser("generate", help="Write a synthetic messy raw dataset")
    gen.add_argument("--out", default=None, help="Target directory (defaults to DATA_RAW_PATH)")
    gen.add_argument("--customers", type=int, default=500)
    gen.add_argument("--orders", type=int, default=5000)
    gen.add_argument("--seed", type=int, default=42)

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    try:
        settings = get_settings()
    except ConfigError as e:
        logger.error("Configuration rejected", error=str(e))
        return 1
    configure_logging(args.log_level)

    if args.command == "generate":
        raw = generate_raw_dataset(n_customers=args.customers, n_orders=args.orders, seed=args.seed)
        write_raw_relations(raw, args.out or settings.data_lake.raw_path)
        return 0

    try:
        raw = load_raw_relations(args.raw_path, settings.data_lake)
        pipeline = SalesBIPipeline(settings, output_path=args.output_path or settings.data_lake.output_path)
        result = pipeline.run(raw)
    except PipelineError as e:
        logger.error("Pipeline failed", error=str(e), error_type=type(e).__name__)
        return 1

    print(result.summary())
    return 0 if result.passed else 2


if __name__ == "__main__":
    sys.exit(main())
