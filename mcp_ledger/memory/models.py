# mcp_ledger/memory/models.py
from datetime import datetime, timezone
from enum import Enum
from typing import List, Optional, Sequence

from pydantic import BaseModel, Field


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Importance(str, Enum):
    CRITICAL = "critical"
    IMPORTANT = "important"
    NORMAL = "normal"
    TEMPORARY = "temporary"


class EntityType(str, Enum):
    PERSON = "person"
    BUSINESS = "business"
    CONCEPT = "concept"
    EVENT = "event"
    OTHER = "other"


class MemoryEntity(BaseModel):
    id: str
    user_id: str
    project_id: Optional[str] = None
    name: str
    entity_type: EntityType
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)


class MemoryObservation(BaseModel):
    id: str
    entity_id: str
    text: str
    importance: Importance = Importance.NORMAL
    is_user_edit: bool = False
    created_at: datetime = Field(default_factory=_utcnow)


class MemoryRelation(BaseModel):
    id: str
    user_id: str
    from_entity_id: str
    to_entity_id: str
    relation_type: str
    created_at: datetime = Field(default_factory=_utcnow)


class EntityWithObservations(MemoryEntity):
    observations: List[MemoryObservation] = Field(default_factory=list)


class RelationView(BaseModel):
    """A relation rendered with entity names, as the LLM sees it."""
    id: str
    from_entity: str
    to_entity: str
    relation_type: str
    created_at: datetime


class KnowledgeGraph(BaseModel):
    entities: List[EntityWithObservations] = Field(default_factory=list)
    relations: List[RelationView] = Field(default_factory=list)


class SearchResult(BaseModel):
    """
    One search hit. `score` counts the query terms that matched; it is
    informational only and does not drive the ordering.
    """
    entity: MemoryEntity
    observation: Optional[MemoryObservation] = None
    score: int = 0


class UserEdit(BaseModel):
    observation_id: str
    entity_id: str
    entity_name: str
    text: str
    importance: Importance
    created_at: datetime


class MemorySummary(BaseModel):
    user_id: str
    project_id: Optional[str] = None
    summary: str
    entity_count: int
    observation_count: int
    generated_at: datetime = Field(default_factory=_utcnow)


def resolve_scope(
    project_id: Optional[str] = None, project_ids: Optional[Sequence[str]] = None
) -> List[Optional[str]]:
    """
    The project scopes a memory call may see.

    The caller's own project (None meaning the global scope) is always in
    scope; `project_ids` explicitly pulls further projects in.
    """
    scope: List[Optional[str]] = [project_id]
    for extra in project_ids or ():
        if extra not in scope:
            scope.append(extra)
    return scope
