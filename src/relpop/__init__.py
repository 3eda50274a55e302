"""Relationship population for a document store: depth-bounded, access-filtered reads."""

from relpop.access import AccessEvaluator
from relpop.models import AccessDecision, CollectionConfig, FieldConfig, Identity
from relpop.populator import PopulationReport, Populator
from relpop.registry import CollectionRegistry
from relpop.resolver import UNRESOLVED, ReferenceResolver
from relpop.service import DocumentService
from relpop.store import MemoryDocumentStore, SqliteDocumentStore

__all__ = [
    "AccessDecision",
    "AccessEvaluator",
    "CollectionConfig",
    "CollectionRegistry",
    "DocumentService",
    "FieldConfig",
    "Identity",
    "MemoryDocumentStore",
    "PopulationReport",
    "Populator",
    "ReferenceResolver",
    "SqliteDocumentStore",
    "UNRESOLVED",
]
