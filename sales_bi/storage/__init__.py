"""
Relation Storage Module
"""
from .relation_store import RelationStore

__all__ = ["RelationStore"]
