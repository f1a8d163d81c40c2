"""
Data Transformation Module
"""
from .cleaners import DataCleaner, StagingBuilder, StagingReport
from .consolidation import ConsolidationReport, MasterConsolidator
from .enrichers import EnrichmentEngine, EnrichmentReport, enrich_master

__all__ = [
    "DataCleaner",
    "StagingBuilder",
    "StagingReport",
    "MasterConsolidator",
    "ConsolidationReport",
    "EnrichmentEngine",
    "EnrichmentReport",
    "enrich_master",
]
