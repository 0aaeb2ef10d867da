# mcp_ledger/admin/endpoints.py
import logging
import secrets
from datetime import datetime, timedelta, timezone
from typing import Annotated, List

from fastapi import APIRouter, Depends, Path, Query, status

from ..core.errors import NotFoundError
from ..credentials.models import AppUserPublic, InviteCode, InviteCodeCreate
from ..credentials.sqlite_account_store import get_sqlite_account_store
from ..credentials.storage_interfaces import AbstractAccountStore
from ..dependencies import get_admin_api_key
from ..permissions.models import (
    OperationSnapshot, PermissionView, SetLevelRequest, SetOverrideRequest, VacationRequest,
)
from ..permissions.service import PermissionService, get_permission_service

logger = logging.getLogger(__name__)

# Admin routers - every route requires the X-Admin-API-Key header
invites_admin_router = APIRouter(
    prefix="/admin/invites",
    tags=["Admin - Invites"],
    dependencies=[Depends(get_admin_api_key)],
)
users_admin_router = APIRouter(
    prefix="/admin/users",
    tags=["Admin - Users"],
    dependencies=[Depends(get_admin_api_key)],
)
permissions_admin_router = APIRouter(
    prefix="/admin/permissions",
    tags=["Admin - Permissions"],
    dependencies=[Depends(get_admin_api_key)],
)
snapshots_admin_router = APIRouter(
    prefix="/admin/snapshots",
    tags=["Admin - Snapshots"],
    dependencies=[Depends(get_admin_api_key)],
)


async def get_account_store_dependency() -> AbstractAccountStore:
    return await get_sqlite_account_store()


UserIdPath = Annotated[str, Path(description="The gateway user id.")]


@invites_admin_router.post("/", response_model=InviteCode, status_code=status.HTTP_201_CREATED)
@invites_admin_router.post("", response_model=InviteCode, status_code=status.HTTP_201_CREATED, include_in_schema=False)
async def create_invite_endpoint(
    invite_create: InviteCodeCreate,
    store: Annotated[AbstractAccountStore, Depends(get_account_store_dependency)],
):
    expires_at = None
    if invite_create.expires_in_days:
        expires_at = datetime.now(timezone.utc) + timedelta(days=invite_create.expires_in_days)
    invite = InviteCode(
        code=secrets.token_urlsafe(12),
        created_by=invite_create.created_by,
        max_uses=invite_create.max_uses,
        expires_at=expires_at,
    )
    created = await store.create_invite(invite)
    logger.info(f"Admin API: created invite code (max_uses={created.max_uses}, expires_at={created.expires_at}).")
    return created


@invites_admin_router.get("/", response_model=List[InviteCode])
@invites_admin_router.get("", response_model=List[InviteCode], include_in_schema=False)
async def list_invites_endpoint(store: Annotated[AbstractAccountStore, Depends(get_account_store_dependency)]):
    return await store.list_invites()


@users_admin_router.get("/", response_model=List[AppUserPublic])
@users_admin_router.get("", response_model=List[AppUserPublic], include_in_schema=False)
async def list_users_endpoint(store: Annotated[AbstractAccountStore, Depends(get_account_store_dependency)]):
    return [AppUserPublic.from_user(user) for user in await store.list_users()]


async def _require_user(store: AbstractAccountStore, user_id: str) -> None:
    if await store.get_user(user_id) is None:
        raise NotFoundError(f"User '{user_id}' does not exist.", action="List users with GET /admin/users.")


@permissions_admin_router.get("/{user_id}", response_model=PermissionView)
async def get_permissions_endpoint(
    user_id: UserIdPath,
    service: Annotated[PermissionService, Depends(get_permission_service)],
    store: Annotated[AbstractAccountStore, Depends(get_account_store_dependency)],
):
    await _require_user(store, user_id)
    return await service.describe(user_id)


@permissions_admin_router.put("/{user_id}/level", response_model=PermissionView)
async def set_level_endpoint(
    user_id: UserIdPath,
    request_data: SetLevelRequest,
    service: Annotated[PermissionService, Depends(get_permission_service)],
    store: Annotated[AbstractAccountStore, Depends(get_account_store_dependency)],
):
    await _require_user(store, user_id)
    await service.permission_store.set_level(user_id, int(request_data.permission_level))
    logger.info(f"Admin API: set permission level {int(request_data.permission_level)} for user {user_id}.")
    return await service.describe(user_id)


@permissions_admin_router.put("/{user_id}/overrides", response_model=PermissionView)
async def set_override_endpoint(
    user_id: UserIdPath,
    request_data: SetOverrideRequest,
    service: Annotated[PermissionService, Depends(get_permission_service)],
    store: Annotated[AbstractAccountStore, Depends(get_account_store_dependency)],
):
    """An override can only narrow the global level; the effective tier is the lower of the two."""
    await _require_user(store, user_id)
    await service.permission_store.set_override(
        user_id, request_data.capability_group, int(request_data.permission_level)
    )
    logger.info(
        f"Admin API: override '{request_data.capability_group}'={int(request_data.permission_level)} for user {user_id}."
    )
    return await service.describe(user_id)


@permissions_admin_router.delete("/{user_id}/overrides/{capability_group}", response_model=PermissionView)
async def clear_override_endpoint(
    user_id: UserIdPath,
    capability_group: Annotated[str, Path()],
    service: Annotated[PermissionService, Depends(get_permission_service)],
):
    if not await service.permission_store.clear_override(user_id, capability_group):
        raise NotFoundError(f"No override for '{capability_group}' on user '{user_id}'.")
    logger.info(f"Admin API: cleared override '{capability_group}' for user {user_id}.")
    return await service.describe(user_id)


@permissions_admin_router.put("/{user_id}/vacation", response_model=PermissionView)
async def set_vacation_endpoint(
    user_id: UserIdPath,
    request_data: VacationRequest,
    service: Annotated[PermissionService, Depends(get_permission_service)],
    store: Annotated[AbstractAccountStore, Depends(get_account_store_dependency)],
):
    await _require_user(store, user_id)
    await service.permission_store.set_vacation_mode(user_id, request_data.until)
    logger.info(f"Admin API: vacation mode for user {user_id} until {request_data.until}.")
    return await service.describe(user_id)


@snapshots_admin_router.get("/{user_id}", response_model=List[OperationSnapshot])
async def list_snapshots_endpoint(
    user_id: UserIdPath,
    service: Annotated[PermissionService, Depends(get_permission_service)],
    limit: Annotated[int, Query(ge=1, le=500, description="Maximum number of snapshots to return.")] = 50,
):
    """Most recent operation snapshots for a user, newest first."""
    return await service.list_snapshots(user_id, limit=limit)
