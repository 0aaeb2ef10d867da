# mcp_ledger/memory/storage_interfaces.py
from abc import ABC, abstractmethod
from typing import List, Optional, Sequence

from .models import (
    EntityType, Importance, KnowledgeGraph, MemoryEntity, MemoryObservation,
    MemoryRelation, MemorySummary, SearchResult, UserEdit,
)


class AbstractMemoryStore(ABC):
    """Per-user knowledge graph: entities, observations and typed relations."""

    @abstractmethod
    async def create_entity(
        self, user_id: str, name: str, entity_type: EntityType, project_id: Optional[str] = None
    ) -> MemoryEntity:
        """
        Create the entity, or return the existing one with the same name
        (case-insensitive) in the same project. A name held by another project
        raises ValidationError.
        """
        pass

    @abstractmethod
    async def get_entity(self, user_id: str, entity_id: str) -> Optional[MemoryEntity]:
        pass

    @abstractmethod
    async def get_entity_by_name(
        self, user_id: str, name: str, scope: Optional[Sequence[Optional[str]]] = None
    ) -> Optional[MemoryEntity]:
        """Look an entity up by name; `scope` limits the match to those projects."""
        pass

    @abstractmethod
    async def add_observation(
        self,
        entity_id: str,
        text: str,
        importance: Importance = Importance.NORMAL,
        is_user_edit: bool = False,
    ) -> Optional[MemoryObservation]:
        """Attach an observation; returns None when the same text is already recorded."""
        pass

    @abstractmethod
    async def create_relation(
        self, user_id: str, from_entity_id: str, to_entity_id: str, relation_type: str
    ) -> MemoryRelation:
        pass

    @abstractmethod
    async def search_entities(
        self,
        user_id: str,
        query: str,
        project_ids: Optional[Sequence[str]] = None,
        project_id: Optional[str] = None,
        limit: int = 10,
    ) -> List[SearchResult]:
        pass

    @abstractmethod
    async def read_graph(
        self, user_id: str, project_id: Optional[str] = None, project_ids: Optional[Sequence[str]] = None
    ) -> KnowledgeGraph:
        pass

    @abstractmethod
    async def open_nodes(
        self,
        user_id: str,
        names: Sequence[str],
        project_id: Optional[str] = None,
        project_ids: Optional[Sequence[str]] = None,
    ) -> KnowledgeGraph:
        pass

    @abstractmethod
    async def delete_observation(self, user_id: str, observation_id: str) -> bool:
        pass

    @abstractmethod
    async def delete_observations_matching(self, user_id: str, entity_id: str, texts: Sequence[str]) -> List[str]:
        pass

    @abstractmethod
    async def delete_entity(self, user_id: str, entity_id: str) -> bool:
        """Delete the entity together with its observations and every relation touching it."""
        pass

    @abstractmethod
    async def delete_relation(
        self, user_id: str, from_entity_id: str, to_entity_id: str, relation_type: str
    ) -> bool:
        pass

    @abstractmethod
    async def list_user_edits(
        self, user_id: str, project_id: Optional[str] = None, project_ids: Optional[Sequence[str]] = None
    ) -> List[UserEdit]:
        pass

    @abstractmethod
    async def delete_user_edit(self, user_id: str, observation_id: str) -> bool:
        pass

    @abstractmethod
    async def delete_all_user_edits(self, user_id: str, project_id: Optional[str] = None) -> int:
        pass

    @abstractmethod
    async def save_summary(self, user_id: str, summary: str, project_id: Optional[str] = None) -> MemorySummary:
        pass

    @abstractmethod
    async def get_summary(self, user_id: str, project_id: Optional[str] = None) -> Optional[MemorySummary]:
        pass

    @abstractmethod
    async def initialize(self) -> None:
        pass

    @abstractmethod
    async def teardown(self) -> None:
        pass
