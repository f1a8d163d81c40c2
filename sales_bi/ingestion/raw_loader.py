"""
Raw Extract Loader

Reads the four raw CSV extracts as loosely typed relations: every column is
kept as a string so that casting and validation happen downstream, where
failures are counted instead of aborting the load.
"""

import hashlib
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Optional, Union

import polars as pl
import structlog

from sales_bi.config import DataLakeSettings, get_settings
from sales_bi.exceptions import MissingRelationError
from sales_bi.schemas import RAW_CATEGORIES, RAW_CUSTOMERS, RAW_ORDERS, RAW_PRODUCTS, coerce_raw_frame

logger = structlog.get_logger(__name__)


@dataclass
class RawLoadResult:
    """Audit record for one loaded extract"""
    relation: str
    file_path: str
    rows_loaded: int
    file_hash: str


def _compute_file_hash(file_path: Path) -> str:
    """Compute MD5 hash of file for the audit trail"""
    hash_md5 = hashlib.md5()
    with open(file_path, "rb") as f:
        for chunk in iter(lambda: f.read(4096), b""):
            hash_md5.update(chunk)
    return hash_md5.hexdigest()


def raw_file_map(data_lake: Optional[DataLakeSettings] = None) -> Dict[str, str]:
    data_lake = data_lake or get_settings().data_lake
    return {
        RAW_CUSTOMERS: data_lake.customers_file,
        RAW_CATEGORIES: data_lake.categories_file,
        RAW_PRODUCTS: data_lake.products_file,
        RAW_ORDERS: data_lake.orders_file,
    }


def read_raw_csv(file_path: Union[str, Path], relation: str) -> pl.DataFrame:
    """Read one extract with every column as Utf8"""
    df = pl.read_csv(file_path, infer_schema_length=0)
    return coerce_raw_frame(relation, df)


def load_raw_relations(
    path: Optional[Union[str, Path]] = None,
    data_lake: Optional[DataLakeSettings] = None,
) -> Dict[str, pl.DataFrame]:
    """
    Load raw_customers, raw_product_category, raw_products and raw_orders.

    Args:
        path: Directory holding the extracts (defaults to DATA_RAW_PATH)
        data_lake: File name configuration

    Returns:
        Mapping of raw relation name to DataFrame

    Raises:
        MissingRelationError: an extract file does not exist
    """
    data_lake = data_lake or get_settings().data_lake
    root = Path(path or data_lake.raw_path)

    relations = {}
    for relation, file_name in raw_file_map(data_lake).items():
        file_path = root / file_name
        if not file_path.exists():
            raise MissingRelationError(f"Raw extract for '{relation}' not found: {file_path}")

        df = read_raw_csv(file_path, relation)
        result = RawLoadResult(
            relation=relation,
            file_path=str(file_path),
            rows_loaded=df.height,
            file_hash=_compute_file_hash(file_path),
        )
        logger.info(
            "Raw extract loaded",
            relation=result.relation,
            file=result.file_path,
            rows=result.rows_loaded,
            file_hash=result.file_hash,
        )
        relations[relation] = df

    return relations


def write_raw_relations(relations: Dict[str, pl.DataFrame], path: Union[str, Path]) -> Dict[str, str]:
    """Write raw relations as CSV under the configured file names"""
    root = Path(path)
    root.mkdir(parents=True, exist_ok=True)

    written = {}
    for relation, file_name in raw_file_map().items():
        file_path = root / file_name
        relations[relation].write_csv(file_path)
        written[relation] = str(file_path)
        logger.info(f"Written {relations[relation].height} rows to {file_path}")
    return written
