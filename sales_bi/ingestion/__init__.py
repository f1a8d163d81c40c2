"""
Raw Ingestion Module
"""
from .raw_loader import load_raw_relations, write_raw_relations

__all__ = ["load_raw_relations", "write_raw_relations"]
