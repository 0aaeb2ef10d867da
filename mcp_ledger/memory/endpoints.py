# mcp_ledger/memory/endpoints.py
import logging
from typing import Annotated, List, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel

from .models import UserEdit
from .sqlite_memory_store import get_sqlite_memory_store
from .storage_interfaces import AbstractMemoryStore
from ..core.errors import NotFoundError
from ..gateway_auth.dependencies import get_current_principal
from ..gateway_auth.models import AuthenticatedPrincipal

logger = logging.getLogger(__name__)
memory_router = APIRouter(prefix="/memory", tags=["Memory"])


class DeleteUserEditRequest(BaseModel):
    observation_id: str


async def get_memory_store_dependency() -> AbstractMemoryStore:
    return await get_sqlite_memory_store()


@memory_router.get("/edits", response_model=List[UserEdit])
async def list_user_edits(
    principal: Annotated[AuthenticatedPrincipal, Depends(get_current_principal)],
    store: Annotated[AbstractMemoryStore, Depends(get_memory_store_dependency)],
    project_id: Annotated[Optional[str], Query()] = None,
):
    """Facts the user asked the assistant to remember, newest first."""
    return await store.list_user_edits(principal.user_id, project_id=project_id)


@memory_router.delete("/edits")
async def delete_user_edit(
    request_data: DeleteUserEditRequest,
    principal: Annotated[AuthenticatedPrincipal, Depends(get_current_principal)],
    store: Annotated[AbstractMemoryStore, Depends(get_memory_store_dependency)],
):
    if not await store.delete_user_edit(principal.user_id, request_data.observation_id):
        raise NotFoundError(
            "That remembered fact does not exist.", action="List your edits with GET /memory/edits."
        )
    logger.info(f"User {principal.user_id} deleted remembered fact {request_data.observation_id}.")
    return {"deleted": 1}


@memory_router.delete("/edits/all")
async def delete_all_user_edits(
    principal: Annotated[AuthenticatedPrincipal, Depends(get_current_principal)],
    store: Annotated[AbstractMemoryStore, Depends(get_memory_store_dependency)],
    project_id: Annotated[Optional[str], Query()] = None,
):
    deleted = await store.delete_all_user_edits(principal.user_id, project_id=project_id)
    logger.info(f"User {principal.user_id} deleted {deleted} remembered facts.")
    return {"deleted": deleted}
