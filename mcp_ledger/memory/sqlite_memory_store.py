# mcp_ledger/memory/sqlite_memory_store.py
import logging
import sqlite3
import uuid
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from .models import (
    EntityType, EntityWithObservations, Importance, KnowledgeGraph, MemoryEntity,
    MemoryObservation, MemoryRelation, MemorySummary, RelationView, SearchResult,
    UserEdit, resolve_scope,
)
from .search import AbstractSearchStrategy, LexicalSearchStrategy
from .storage_interfaces import AbstractMemoryStore
from ..core.errors import NotFoundError, ValidationError
from ..storage.sqlite_store import SQLiteStoreMixin

logger = logging.getLogger(__name__)

# Key used for the global scope where a NULL project id cannot take part in a primary key
GLOBAL_PROJECT_KEY = ""


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _scope_clause(scope: List[Optional[str]], column: str = "project_id") -> Tuple[str, tuple]:
    projects = [p for p in scope if p is not None]
    parts = []
    if None in scope:
        parts.append(f"{column} IS NULL")
    if projects:
        parts.append(f"{column} IN ({', '.join('?' for _ in projects)})")
    return f"({' OR '.join(parts)})", tuple(projects)


def _row_to_entity(row: sqlite3.Row) -> MemoryEntity:
    return MemoryEntity(
        id=row["id"],
        user_id=row["user_id"],
        project_id=row["project_id"],
        name=row["name"],
        entity_type=EntityType(row["entity_type"]),
        created_at=datetime.fromisoformat(row["created_at"]),
        updated_at=datetime.fromisoformat(row["updated_at"]),
    )


def _row_to_observation(row: sqlite3.Row) -> MemoryObservation:
    return MemoryObservation(
        id=row["id"],
        entity_id=row["entity_id"],
        text=row["text"],
        importance=Importance(row["importance"]),
        is_user_edit=bool(row["is_user_edit"]),
        created_at=datetime.fromisoformat(row["created_at"]),
    )


class SQLiteMemoryStore(SQLiteStoreMixin, AbstractMemoryStore):
    """
    SQLite knowledge graph. Observations and relations disappear with their
    entity through ON DELETE CASCADE (foreign keys are switched on by the
    shared connection).
    """

    store_name = "SQLiteMemoryStore"

    def __init__(
        self,
        search_strategy: Optional[AbstractSearchStrategy] = None,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.search_strategy = search_strategy or LexicalSearchStrategy()
        self._clock = clock

    def _now(self) -> str:
        return self._clock().isoformat()

    # Entities

    async def create_entity(
        self, user_id: str, name: str, entity_type: EntityType, project_id: Optional[str] = None
    ) -> MemoryEntity:
        clean_name = name.strip()
        if not clean_name:
            raise ValidationError("Entity name must not be empty.", fields=[{"field": "name", "message": "Required."}])
        existing = await self.get_entity_by_name(user_id, clean_name)
        if existing:
            return self._same_scope_or_raise(existing, project_id)

        now = self._now()
        entity_id = str(uuid.uuid4())
        try:
            await self._execute_query(
                '''
                INSERT INTO memory_entities (id, user_id, project_id, name, entity_type, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                ''',
                (entity_id, user_id, project_id, clean_name, EntityType(entity_type).value, now, now),
            )
        except sqlite3.IntegrityError:
            # Lost a race with a concurrent create of the same name
            existing = await self.get_entity_by_name(user_id, clean_name)
            if existing:
                return self._same_scope_or_raise(existing, project_id)
            raise
        logger.debug(f"Created memory entity '{clean_name}' for user {user_id} (project={project_id}).")
        return MemoryEntity(
            id=entity_id, user_id=user_id, project_id=project_id, name=clean_name,
            entity_type=EntityType(entity_type),
            created_at=datetime.fromisoformat(now), updated_at=datetime.fromisoformat(now),
        )

    @staticmethod
    def _same_scope_or_raise(existing: MemoryEntity, project_id: Optional[str]) -> MemoryEntity:
        # Names are unique per user, so a name held by another project cannot be reused here
        if existing.project_id == project_id:
            return existing
        owner = f"project '{existing.project_id}'" if existing.project_id else "the global scope"
        raise ValidationError(
            f"An entity named '{existing.name}' is already remembered in {owner}.",
            fields=[{"field": "name", "message": f"Already used in {owner}."}],
            action="Choose a different name, or work with the entity from that project.",
        )

    async def get_entity(self, user_id: str, entity_id: str) -> Optional[MemoryEntity]:
        row = await self._fetchone(
            "SELECT * FROM memory_entities WHERE id = ? AND user_id = ?", (entity_id, user_id)
        )
        return _row_to_entity(row) if row else None

    async def get_entity_by_name(
        self, user_id: str, name: str, scope: Optional[Sequence[Optional[str]]] = None
    ) -> Optional[MemoryEntity]:
        # name has COLLATE NOCASE, so equality is case-insensitive
        query = "SELECT * FROM memory_entities WHERE user_id = ? AND name = ?"
        params: tuple = (user_id, name.strip())
        if scope is not None:
            clause, scope_params = _scope_clause(list(scope))
            query += f" AND {clause}"
            params += scope_params
        row = await self._fetchone(query, params)
        return _row_to_entity(row) if row else None

    async def delete_entity(self, user_id: str, entity_id: str) -> bool:
        cursor = await self._execute_query(
            "DELETE FROM memory_entities WHERE id = ? AND user_id = ?", (entity_id, user_id)
        )
        return cursor.rowcount > 0

    # Observations

    async def add_observation(
        self,
        entity_id: str,
        text: str,
        importance: Importance = Importance.NORMAL,
        is_user_edit: bool = False,
    ) -> Optional[MemoryObservation]:
        clean_text = text.strip()
        if not clean_text:
            raise ValidationError("Observation text must not be empty.", fields=[{"field": "text", "message": "Required."}])
        entity_row = await self._fetchone("SELECT id FROM memory_entities WHERE id = ?", (entity_id,))
        if not entity_row:
            raise NotFoundError(f"Memory entity {entity_id} does not exist.")

        duplicate = await self._fetchone(
            "SELECT id FROM memory_observations WHERE entity_id = ? AND LOWER(text) = LOWER(?)",
            (entity_id, clean_text),
        )
        if duplicate:
            return None

        now = self._now()
        observation = MemoryObservation(
            id=str(uuid.uuid4()),
            entity_id=entity_id,
            text=clean_text,
            importance=Importance(importance),
            is_user_edit=is_user_edit,
            created_at=datetime.fromisoformat(now),
        )
        await self._execute_query(
            '''
            INSERT INTO memory_observations (id, entity_id, text, importance, is_user_edit, created_at)
            VALUES (?, ?, ?, ?, ?, ?)
            ''',
            (observation.id, entity_id, clean_text, observation.importance.value, int(is_user_edit), now),
        )
        await self._execute_query("UPDATE memory_entities SET updated_at = ? WHERE id = ?", (now, entity_id))
        return observation

    async def delete_observation(self, user_id: str, observation_id: str) -> bool:
        cursor = await self._execute_query(
            '''
            DELETE FROM memory_observations
            WHERE id = ? AND entity_id IN (SELECT id FROM memory_entities WHERE user_id = ?)
            ''',
            (observation_id, user_id),
        )
        return cursor.rowcount > 0

    async def delete_observations_matching(self, user_id: str, entity_id: str, texts: Sequence[str]) -> List[str]:
        if not await self.get_entity(user_id, entity_id):
            raise NotFoundError(f"Memory entity {entity_id} does not exist.")
        deleted = []
        for text in texts:
            cursor = await self._execute_query(
                "DELETE FROM memory_observations WHERE entity_id = ? AND LOWER(text) = LOWER(?)",
                (entity_id, text.strip()),
            )
            if cursor.rowcount > 0:
                deleted.append(text)
        return deleted

    # Relations

    async def create_relation(
        self, user_id: str, from_entity_id: str, to_entity_id: str, relation_type: str
    ) -> MemoryRelation:
        clean_type = relation_type.strip()
        if not clean_type:
            raise ValidationError(
                "Relation type must not be empty.", fields=[{"field": "relation_type", "message": "Required."}]
            )
        for entity_id in (from_entity_id, to_entity_id):
            if not await self.get_entity(user_id, entity_id):
                raise NotFoundError(f"Memory entity {entity_id} does not exist for this user.")

        existing = await self._fetchone(
            '''
            SELECT * FROM memory_relations
            WHERE user_id = ? AND from_entity_id = ? AND to_entity_id = ? AND LOWER(relation_type) = LOWER(?)
            ''',
            (user_id, from_entity_id, to_entity_id, clean_type),
        )
        if existing:
            return MemoryRelation(
                id=existing["id"], user_id=user_id, from_entity_id=from_entity_id,
                to_entity_id=to_entity_id, relation_type=existing["relation_type"],
                created_at=datetime.fromisoformat(existing["created_at"]),
            )

        now = self._now()
        relation = MemoryRelation(
            id=str(uuid.uuid4()), user_id=user_id, from_entity_id=from_entity_id,
            to_entity_id=to_entity_id, relation_type=clean_type, created_at=datetime.fromisoformat(now),
        )
        await self._execute_query(
            '''
            INSERT INTO memory_relations (id, user_id, from_entity_id, to_entity_id, relation_type, created_at)
            VALUES (?, ?, ?, ?, ?, ?)
            ''',
            (relation.id, user_id, from_entity_id, to_entity_id, clean_type, now),
        )
        return relation

    async def delete_relation(
        self, user_id: str, from_entity_id: str, to_entity_id: str, relation_type: str
    ) -> bool:
        cursor = await self._execute_query(
            '''
            DELETE FROM memory_relations
            WHERE user_id = ? AND from_entity_id = ? AND to_entity_id = ? AND LOWER(relation_type) = LOWER(?)
            ''',
            (user_id, from_entity_id, to_entity_id, relation_type.strip()),
        )
        return cursor.rowcount > 0

    # Reads

    async def _load_entities(
        self, user_id: str, scope: List[Optional[str]], names: Optional[Sequence[str]] = None
    ) -> List[EntityWithObservations]:
        clause, scope_params = _scope_clause(scope)
        query = f"SELECT * FROM memory_entities WHERE user_id = ? AND {clause}"
        params: tuple = (user_id,) + scope_params
        if names is not None:
            if not names:
                return []
            query += f" AND name IN ({', '.join('?' for _ in names)})"
            params += tuple(n.strip() for n in names)
        query += " ORDER BY created_at DESC"
        entity_rows = await self._fetchall(query, params)
        if not entity_rows:
            return []

        entities: Dict[str, EntityWithObservations] = {}
        for row in entity_rows:
            entities[row["id"]] = EntityWithObservations(**_row_to_entity(row).model_dump())

        ids = list(entities.keys())
        obs_rows = await self._fetchall(
            f"SELECT * FROM memory_observations WHERE entity_id IN ({', '.join('?' for _ in ids)}) "
            "ORDER BY created_at",
            tuple(ids),
        )
        for row in obs_rows:
            entities[row["entity_id"]].observations.append(_row_to_observation(row))
        return list(entities.values())

    async def _load_relations(self, user_id: str, entity_ids: Sequence[str]) -> List[RelationView]:
        if not entity_ids:
            return []
        placeholders = ", ".join("?" for _ in entity_ids)
        rows = await self._fetchall(
            f'''
            SELECT r.id, r.relation_type, r.created_at, e1.name AS from_name, e2.name AS to_name
            FROM memory_relations r
            JOIN memory_entities e1 ON r.from_entity_id = e1.id
            JOIN memory_entities e2 ON r.to_entity_id = e2.id
            WHERE r.user_id = ? AND r.from_entity_id IN ({placeholders}) AND r.to_entity_id IN ({placeholders})
            ORDER BY r.created_at DESC
            ''',
            (user_id,) + tuple(entity_ids) + tuple(entity_ids),
        )
        return [
            RelationView(
                id=row["id"], from_entity=row["from_name"], to_entity=row["to_name"],
                relation_type=row["relation_type"], created_at=datetime.fromisoformat(row["created_at"]),
            )
            for row in rows
        ]

    async def read_graph(
        self, user_id: str, project_id: Optional[str] = None, project_ids: Optional[Sequence[str]] = None
    ) -> KnowledgeGraph:
        entities = await self._load_entities(user_id, resolve_scope(project_id, project_ids))
        relations = await self._load_relations(user_id, [e.id for e in entities])
        return KnowledgeGraph(entities=entities, relations=relations)

    async def open_nodes(
        self,
        user_id: str,
        names: Sequence[str],
        project_id: Optional[str] = None,
        project_ids: Optional[Sequence[str]] = None,
    ) -> KnowledgeGraph:
        entities = await self._load_entities(user_id, resolve_scope(project_id, project_ids), names=names)
        relations = await self._load_relations(user_id, [e.id for e in entities])
        return KnowledgeGraph(entities=entities, relations=relations)

    async def search_entities(
        self,
        user_id: str,
        query: str,
        project_ids: Optional[Sequence[str]] = None,
        project_id: Optional[str] = None,
        limit: int = 10,
    ) -> List[SearchResult]:
        candidates = await self._load_entities(user_id, resolve_scope(project_id, project_ids))
        return await self.search_strategy.search(candidates, query, limit)

    # User edits

    async def list_user_edits(
        self, user_id: str, project_id: Optional[str] = None, project_ids: Optional[Sequence[str]] = None
    ) -> List[UserEdit]:
        clause, scope_params = _scope_clause(resolve_scope(project_id, project_ids), "e.project_id")
        rows = await self._fetchall(
            f'''
            SELECT o.id AS observation_id, o.entity_id, e.name AS entity_name, o.text, o.importance, o.created_at
            FROM memory_observations o
            JOIN memory_entities e ON o.entity_id = e.id
            WHERE e.user_id = ? AND o.is_user_edit = 1 AND {clause}
            ORDER BY o.created_at DESC
            ''',
            (user_id,) + scope_params,
        )
        return [
            UserEdit(
                observation_id=row["observation_id"], entity_id=row["entity_id"],
                entity_name=row["entity_name"], text=row["text"],
                importance=Importance(row["importance"]),
                created_at=datetime.fromisoformat(row["created_at"]),
            )
            for row in rows
        ]

    async def delete_user_edit(self, user_id: str, observation_id: str) -> bool:
        cursor = await self._execute_query(
            '''
            DELETE FROM memory_observations
            WHERE id = ? AND is_user_edit = 1
              AND entity_id IN (SELECT id FROM memory_entities WHERE user_id = ?)
            ''',
            (observation_id, user_id),
        )
        return cursor.rowcount > 0

    async def delete_all_user_edits(self, user_id: str, project_id: Optional[str] = None) -> int:
        clause, scope_params = _scope_clause([project_id])
        cursor = await self._execute_query(
            f'''
            DELETE FROM memory_observations
            WHERE is_user_edit = 1
              AND entity_id IN (SELECT id FROM memory_entities WHERE user_id = ? AND {clause})
            ''',
            (user_id,) + scope_params,
        )
        logger.info(f"Deleted {cursor.rowcount} user edits for user {user_id} (project={project_id}).")
        return cursor.rowcount

    # Summaries

    async def save_summary(self, user_id: str, summary: str, project_id: Optional[str] = None) -> MemorySummary:
        clause, scope_params = _scope_clause([project_id])
        entity_count = (await self._fetchone(
            f"SELECT COUNT(*) AS n FROM memory_entities WHERE user_id = ? AND {clause}",
            (user_id,) + scope_params,
        ))["n"]
        observation_count = (await self._fetchone(
            f'''
            SELECT COUNT(*) AS n FROM memory_observations
            WHERE entity_id IN (SELECT id FROM memory_entities WHERE user_id = ? AND {clause})
            ''',
            (user_id,) + scope_params,
        ))["n"]

        record = MemorySummary(
            user_id=user_id, project_id=project_id, summary=summary.strip(),
            entity_count=entity_count, observation_count=observation_count,
            generated_at=self._clock(),
        )
        await self._execute_query(
            '''
            INSERT INTO memory_summaries (user_id, project_key, summary, entity_count, observation_count, generated_at)
            VALUES (?, ?, ?, ?, ?, ?)
            ON CONFLICT(user_id, project_key) DO UPDATE SET
                summary=excluded.summary,
                entity_count=excluded.entity_count,
                observation_count=excluded.observation_count,
                generated_at=excluded.generated_at
            ''',
            (
                user_id, project_id or GLOBAL_PROJECT_KEY, record.summary, entity_count,
                observation_count, record.generated_at.isoformat(),
            ),
        )
        return record

    async def get_summary(self, user_id: str, project_id: Optional[str] = None) -> Optional[MemorySummary]:
        row = await self._fetchone(
            "SELECT * FROM memory_summaries WHERE user_id = ? AND project_key = ?",
            (user_id, project_id or GLOBAL_PROJECT_KEY),
        )
        if not row:
            return None
        return MemorySummary(
            user_id=user_id, project_id=project_id, summary=row["summary"],
            entity_count=row["entity_count"], observation_count=row["observation_count"],
            generated_at=datetime.fromisoformat(row["generated_at"]),
        )


_sqlite_memory_store_instance: Optional[SQLiteMemoryStore] = None


async def get_sqlite_memory_store() -> SQLiteMemoryStore:
    """Get or create the singleton SQLiteMemoryStore instance."""
    global _sqlite_memory_store_instance
    if _sqlite_memory_store_instance is None:
        _sqlite_memory_store_instance = SQLiteMemoryStore()
        await _sqlite_memory_store_instance.initialize()
    return _sqlite_memory_store_instance
