# mcp_ledger/memory/__init__.py
from .models import (
    Importance, EntityType, MemoryEntity, MemoryObservation, MemoryRelation,
    EntityWithObservations, KnowledgeGraph, SearchResult, UserEdit, MemorySummary,
)
from .search import AbstractSearchStrategy, LexicalSearchStrategy
from .storage_interfaces import AbstractMemoryStore
from .sqlite_memory_store import SQLiteMemoryStore, get_sqlite_memory_store

__all__ = [
    "Importance",
    "EntityType",
    "MemoryEntity",
    "MemoryObservation",
    "MemoryRelation",
    "EntityWithObservations",
    "KnowledgeGraph",
    "SearchResult",
    "UserEdit",
    "MemorySummary",
    "AbstractSearchStrategy",
    "LexicalSearchStrategy",
    "AbstractMemoryStore",
    "SQLiteMemoryStore",
    "get_sqlite_memory_store",
]
