"""
Relation Store

Named-relation catalog standing in for the relational engine's tables and
views. Every write is a create-or-replace: the new relation is fully built
before it becomes visible, so readers see either the previous or the rebuilt
relation, never an intermediate state.

When bound to an output directory each relation is also persisted as
Parquet using write-to-temp-then-rename.
"""

import os
from pathlib import Path
from typing import Dict, Iterable, Optional, Union

import polars as pl
import structlog

from sales_bi.exceptions import MissingRelationError

logger = structlog.get_logger(__name__)


class RelationStore:
    """
    In-memory catalog of polars relations with optional Parquet persistence.

    Example:
        store = RelationStore(output_path="data/curated")
        store.replace("stg_orders", df)
        orders = store.get("stg_orders")
    """

    def __init__(self, output_path: Optional[Union[str, Path]] = None):
        self._relations: Dict[str, pl.DataFrame] = {}
        self.output_path = Path(output_path) if output_path else None

        if self.output_path is not None:
            self.output_path.mkdir(parents=True, exist_ok=True)

    def __contains__(self, name: str) -> bool:
        return name in self._relations

    def __len__(self) -> int:
        return len(self._relations)

    def get(self, name: str, required_columns: Iterable[str] = ()) -> pl.DataFrame:
        """Fetch a relation, failing loudly if it or any required column is missing"""
        if name not in self._relations:
            raise MissingRelationError(f"Relation '{name}' does not exist")

        df = self._relations[name]
        missing = [c for c in required_columns if c not in df.columns]
        if missing:
            raise MissingRelationError(f"Relation '{name}' is missing columns: {missing}")
        return df

    def replace(self, name: str, df: pl.DataFrame) -> pl.DataFrame:
        """CREATE OR REPLACE semantics: swap the whole relation at once"""
        if self.output_path is not None:
            self._write_output(df, name)

        self._relations[name] = df
        logger.debug("Relation replaced", relation=name, rows=df.height, columns=df.width)
        return df

    def replace_many(self, relations: Dict[str, pl.DataFrame]) -> None:
        for name, df in relations.items():
            self.replace(name, df)

    def drop_all(self) -> None:
        """Forget every relation (full rebuild starts from raw inputs only)"""
        self._relations.clear()

    def _write_output(self, df: pl.DataFrame, name: str) -> str:
        """Persist a relation atomically to the output directory"""
        output_file = self.output_path / f"{name}.parquet"
        tmp_file = self.output_path / f".{name}.parquet.tmp"

        df.write_parquet(tmp_file)
        os.replace(tmp_file, output_file)
        logger.debug(f"Written {len(df)} rows to {output_file}")

        return str(output_file)
