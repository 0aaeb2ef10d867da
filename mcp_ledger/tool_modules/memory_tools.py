# mcp_ledger/tool_modules/memory_tools.py
import logging
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from ..core.dispatcher import OperationContext
from ..core.errors import NotFoundError
from ..core.global_registry import REGISTRY_BUILDER
from ..memory.models import EntityType, Importance, MemoryEntity, resolve_scope

logger = logging.getLogger(__name__)

MEMORY_CATEGORY = "memory"


class ScopedInput(BaseModel):
    project_ids: Optional[List[str]] = Field(
        default=None,
        description="Extra projects to include. The current project is always in scope.",
    )


class NewEntity(BaseModel):
    name: str = Field(min_length=1, max_length=200)
    entity_type: EntityType = EntityType.OTHER
    observations: List[str] = Field(default_factory=list)
    importance: Importance = Importance.NORMAL


class CreateEntitiesInput(BaseModel):
    entities: List[NewEntity] = Field(min_length=1)


class ObservationBatch(BaseModel):
    entity_name: str = Field(min_length=1)
    contents: List[str] = Field(min_length=1)
    importance: Importance = Importance.NORMAL
    is_user_edit: bool = Field(
        default=False, description="True when the user explicitly asked for this to be remembered."
    )


class AddObservationsInput(BaseModel):
    observations: List[ObservationBatch] = Field(min_length=1)


class RelationSpec(BaseModel):
    from_entity: str = Field(min_length=1)
    to_entity: str = Field(min_length=1)
    relation_type: str = Field(min_length=1, max_length=100, description="Active voice, e.g. 'works_at'.")


class RelationsInput(BaseModel):
    relations: List[RelationSpec] = Field(min_length=1)


class SearchInput(ScopedInput):
    query: str = Field(min_length=1, max_length=500)
    limit: int = Field(default=10, ge=1, le=50)


class OpenNodesInput(ScopedInput):
    names: List[str] = Field(min_length=1)


class DeleteEntitiesInput(BaseModel):
    names: List[str] = Field(min_length=1)


class ObservationDeletion(BaseModel):
    entity_name: str = Field(min_length=1)
    observations: List[str] = Field(min_length=1)


class DeleteObservationsInput(BaseModel):
    deletions: List[ObservationDeletion] = Field(min_length=1)


class NoArguments(BaseModel):
    pass


class SaveSummaryInput(BaseModel):
    summary: str = Field(min_length=1, max_length=20000)


async def _entity_named(ctx: OperationContext, name: str) -> MemoryEntity:
    entity = await ctx.memory.get_entity_by_name(ctx.user_id, name, scope=resolve_scope(ctx.project_id))
    if entity is None:
        raise NotFoundError(
            f"No memory entity named '{name}'.",
            action="Create it with memory_create_entities first, or check the spelling with memory_search.",
        )
    return entity


@REGISTRY_BUILDER.operation(
    name="memory_create_entities",
    category=MEMORY_CATEGORY,
    summary="Remember people, businesses, concepts or events, with optional initial observations.",
    input_model=CreateEntitiesInput,
)
async def memory_create_entities(ctx: OperationContext, args: CreateEntitiesInput) -> Dict[str, Any]:
    created = []
    for item in args.entities:
        entity = await ctx.memory.create_entity(ctx.user_id, item.name, item.entity_type, project_id=ctx.project_id)
        added = 0
        for text in item.observations:
            if await ctx.memory.add_observation(entity.id, text, importance=item.importance):
                added += 1
        created.append({"id": entity.id, "name": entity.name, "entity_type": entity.entity_type, "observations_added": added})
    return {"entities": created}


@REGISTRY_BUILDER.operation(
    name="memory_add_observations",
    category=MEMORY_CATEGORY,
    summary="Add facts to existing entities. Duplicate facts are skipped.",
    input_model=AddObservationsInput,
)
async def memory_add_observations(ctx: OperationContext, args: AddObservationsInput) -> Dict[str, Any]:
    results = []
    for batch in args.observations:
        entity = await _entity_named(ctx, batch.entity_name)
        added: List[str] = []
        skipped: List[str] = []
        for text in batch.contents:
            observation = await ctx.memory.add_observation(
                entity.id, text, importance=batch.importance, is_user_edit=batch.is_user_edit
            )
            (added if observation else skipped).append(text)
        results.append({"entity_name": entity.name, "added": added, "skipped_duplicates": skipped})
    return {"results": results}


@REGISTRY_BUILDER.operation(
    name="memory_create_relations",
    category=MEMORY_CATEGORY,
    summary="Link two remembered entities with a typed relation.",
    input_model=RelationsInput,
)
async def memory_create_relations(ctx: OperationContext, args: RelationsInput) -> Dict[str, Any]:
    created = []
    for item in args.relations:
        source = await _entity_named(ctx, item.from_entity)
        target = await _entity_named(ctx, item.to_entity)
        relation = await ctx.memory.create_relation(ctx.user_id, source.id, target.id, item.relation_type)
        created.append({
            "id": relation.id,
            "from_entity": source.name,
            "to_entity": target.name,
            "relation_type": relation.relation_type,
        })
    return {"relations": created}


@REGISTRY_BUILDER.operation(
    name="memory_search",
    category=MEMORY_CATEGORY,
    summary="Search remembered entities and facts by keyword, most recent first.",
    input_model=SearchInput,
)
async def memory_search(ctx: OperationContext, args: SearchInput) -> Dict[str, Any]:
    results = await ctx.memory.search_entities(
        ctx.user_id, args.query, project_ids=args.project_ids, project_id=ctx.project_id, limit=args.limit
    )
    return {"query": args.query, "results": [r.model_dump(mode="json") for r in results]}


@REGISTRY_BUILDER.operation(
    name="memory_read_graph",
    category=MEMORY_CATEGORY,
    summary="Everything remembered in the current scope: entities, facts and relations.",
    input_model=ScopedInput,
)
async def memory_read_graph(ctx: OperationContext, args: ScopedInput) -> Dict[str, Any]:
    graph = await ctx.memory.read_graph(ctx.user_id, project_id=ctx.project_id, project_ids=args.project_ids)
    return graph.model_dump(mode="json")


@REGISTRY_BUILDER.operation(
    name="memory_open_nodes",
    category=MEMORY_CATEGORY,
    summary="Fetch specific entities by name, with their facts and the relations between them.",
    input_model=OpenNodesInput,
)
async def memory_open_nodes(ctx: OperationContext, args: OpenNodesInput) -> Dict[str, Any]:
    graph = await ctx.memory.open_nodes(
        ctx.user_id, args.names, project_id=ctx.project_id, project_ids=args.project_ids
    )
    return graph.model_dump(mode="json")


@REGISTRY_BUILDER.operation(
    name="memory_delete_entities",
    category=MEMORY_CATEGORY,
    summary="Forget entities, together with their facts and relations.",
    input_model=DeleteEntitiesInput,
)
async def memory_delete_entities(ctx: OperationContext, args: DeleteEntitiesInput) -> Dict[str, Any]:
    scope = resolve_scope(ctx.project_id)
    deleted: List[str] = []
    missing: List[str] = []
    for name in args.names:
        entity = await ctx.memory.get_entity_by_name(ctx.user_id, name, scope=scope)
        if entity and await ctx.memory.delete_entity(ctx.user_id, entity.id):
            deleted.append(entity.name)
        else:
            missing.append(name)
    return {"deleted": deleted, "not_found": missing}


@REGISTRY_BUILDER.operation(
    name="memory_delete_observations",
    category=MEMORY_CATEGORY,
    summary="Forget specific facts about an entity (exact text, case-insensitive).",
    input_model=DeleteObservationsInput,
)
async def memory_delete_observations(ctx: OperationContext, args: DeleteObservationsInput) -> Dict[str, Any]:
    results = []
    for deletion in args.deletions:
        entity = await _entity_named(ctx, deletion.entity_name)
        removed = await ctx.memory.delete_observations_matching(ctx.user_id, entity.id, deletion.observations)
        results.append({"entity_name": entity.name, "deleted_count": len(removed)})
    return {"results": results}


@REGISTRY_BUILDER.operation(
    name="memory_delete_relations",
    category=MEMORY_CATEGORY,
    summary="Remove relations between remembered entities.",
    input_model=RelationsInput,
)
async def memory_delete_relations(ctx: OperationContext, args: RelationsInput) -> Dict[str, Any]:
    deleted = 0
    scope = resolve_scope(ctx.project_id)
    for item in args.relations:
        source = await ctx.memory.get_entity_by_name(ctx.user_id, item.from_entity, scope=scope)
        target = await ctx.memory.get_entity_by_name(ctx.user_id, item.to_entity, scope=scope)
        if source and target and await ctx.memory.delete_relation(
            ctx.user_id, source.id, target.id, item.relation_type
        ):
            deleted += 1
    return {"deleted": deleted}


@REGISTRY_BUILDER.operation(
    name="memory_get_summary",
    category=MEMORY_CATEGORY,
    summary="The saved summary of what is remembered for the current project, if any.",
    input_model=NoArguments,
)
async def memory_get_summary(ctx: OperationContext, args: NoArguments) -> Dict[str, Any]:
    summary = await ctx.memory.get_summary(ctx.user_id, project_id=ctx.project_id)
    if summary is None:
        return {"summary": None}
    return summary.model_dump(mode="json")


@REGISTRY_BUILDER.operation(
    name="memory_save_summary",
    category=MEMORY_CATEGORY,
    summary="Save a short prose summary of the current project's memory for quick recall next time.",
    input_model=SaveSummaryInput,
)
async def memory_save_summary(ctx: OperationContext, args: SaveSummaryInput) -> Dict[str, Any]:
    summary = await ctx.memory.save_summary(ctx.user_id, args.summary, project_id=ctx.project_id)
    return summary.model_dump(mode="json")


logger.info("Memory operations registered.")
