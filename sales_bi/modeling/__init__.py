"""
Dimensional Modeling Module
"""
from .star_schema import StarSchemaBuilder, StarSchemaReport

__all__ = ["StarSchemaBuilder", "StarSchemaReport"]
