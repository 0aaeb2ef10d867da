# mcp_ledger/permissions/service.py
import asyncio
import logging
import sqlite3
import uuid
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional

from pydantic import BaseModel

from .models import (
    PERMISSION_LEVEL_NAMES, AuthorizationDecision, OperationSnapshot, PermissionLevel,
    PermissionView, SnapshotStatus,
)
from .storage_interfaces import AbstractPermissionStore, AbstractSnapshotStore
from .sqlite_permission_store import get_sqlite_permission_store, get_sqlite_snapshot_store
from ..core.errors import AuthorizationError, GatewayError, ValidationError

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def insufficient_permission_reason(required_level: int, current_level: int) -> str:
    return (
        f"Insufficient permission: required level {required_level}, current level {current_level}. "
        f"Ask an administrator to raise your level to {required_level}."
    )


def _as_state(value: Any) -> Optional[Dict[str, Any]]:
    if value is None:
        return None
    if isinstance(value, BaseModel):
        return value.model_dump(mode="json")
    if isinstance(value, dict):
        return value
    return {"result": value}


class PermissionService:
    """
    Tiered permission checks plus the audit trail for write-tier operations.

    Level 0 calls are authorized without a snapshot. Every call at level 1
    or above goes through `run_audited`, which leaves exactly one snapshot
    in a terminal status whatever the outcome.
    """

    def __init__(
        self,
        permission_store: AbstractPermissionStore,
        snapshot_store: AbstractSnapshotStore,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.permission_store = permission_store
        self.snapshot_store = snapshot_store
        self._clock = clock

    async def get_effective_level(self, user_id: str, capability_group: str) -> int:
        settings = await self.permission_store.get_settings(user_id)
        if settings.vacation_active(self._clock()):
            return int(PermissionLevel.READ_ONLY)
        level = int(settings.permission_level)
        override = await self.permission_store.get_override(user_id, capability_group)
        if override is not None:
            level = min(level, int(override.permission_level))
        return level

    async def authorize(self, user_id: str, capability_group: str, required_level: int) -> AuthorizationDecision:
        settings = await self.permission_store.get_settings(user_id)
        now = self._clock()
        if settings.vacation_active(now) and required_level > 0:
            until = settings.vacation_mode_until.strftime("%Y-%m-%d %H:%M UTC")
            return AuthorizationDecision(
                allowed=False,
                required_level=required_level,
                current_level=0,
                reason=(
                    f"Vacation mode is active until {until}. Only read-only operations are allowed "
                    f"(required level {required_level}, current level 0)."
                ),
                vacation_mode=True,
            )

        current_level = await self.get_effective_level(user_id, capability_group)
        if current_level >= required_level:
            return AuthorizationDecision(allowed=True, required_level=required_level, current_level=current_level)
        return AuthorizationDecision(
            allowed=False,
            required_level=required_level,
            current_level=current_level,
            reason=insufficient_permission_reason(required_level, current_level),
        )

    async def describe(self, user_id: str) -> PermissionView:
        settings = await self.permission_store.get_settings(user_id)
        overrides = await self.permission_store.list_overrides(user_id)
        return PermissionView(
            user_id=user_id,
            permission_level=int(settings.permission_level),
            level_name=PERMISSION_LEVEL_NAMES[settings.permission_level],
            vacation_mode_until=settings.vacation_mode_until,
            vacation_active=settings.vacation_active(self._clock()),
            overrides={o.capability_group: int(o.permission_level) for o in overrides},
        )

    async def list_snapshots(self, user_id: str, limit: int = 50) -> List[OperationSnapshot]:
        return await self.snapshot_store.list_snapshots(user_id, limit)

    async def _finish(self, snapshot_id: str, status: SnapshotStatus, **fields: Any) -> None:
        try:
            await self.snapshot_store.transition(snapshot_id, status, **fields)
        except sqlite3.Error:
            logger.error(f"Could not record status '{status.value}' on snapshot {snapshot_id}.", exc_info=True)

    async def run_audited(
        self,
        *,
        user_id: str,
        operation_name: str,
        capability_group: str,
        required_level: int,
        entity_type: str,
        arguments: Dict[str, Any],
        validate: Callable[[Dict[str, Any]], BaseModel],
        execute: Callable[[BaseModel], Awaitable[Any]],
        load_before_state: Optional[Callable[[BaseModel], Awaitable[Optional[Dict[str, Any]]]]] = None,
        entity_id_of: Optional[Callable[[BaseModel], Optional[str]]] = None,
        result_entity_id: Optional[Callable[[Any], Optional[str]]] = None,
        requested_by: Optional[str] = None,
    ) -> Any:
        """
        Authorize, validate and execute one write-tier call under a snapshot.

        The snapshot is written as `pending` before anything else happens and
        is always moved to `executed`, `failed` or `cancelled` before this
        method returns or raises.

        Raises:
            AuthorizationError: the caller's effective level is too low (snapshot cancelled)
            ValidationError: the arguments do not match the input model (snapshot failed)
        """
        snapshot = await self.snapshot_store.create_snapshot(
            OperationSnapshot(
                id=str(uuid.uuid4()),
                user_id=user_id,
                operation_name=operation_name,
                required_level=required_level,
                capability_group=capability_group,
                entity_type=entity_type,
                arguments=arguments,
                requested_by=requested_by or user_id,
                status=SnapshotStatus.PENDING,
                created_at=self._clock(),
            )
        )
        try:
            decision = await self.authorize(user_id, capability_group, required_level)
            if not decision.allowed:
                await self._finish(snapshot.id, SnapshotStatus.CANCELLED, error_message=decision.reason)
                logger.info(f"Denied '{operation_name}' for user {user_id}: {decision.reason}")
                raise AuthorizationError(
                    decision.reason,
                    required_level=decision.required_level,
                    current_level=decision.current_level,
                    action=f"Ask an administrator to raise your level to {required_level}.",
                )

            try:
                validated = validate(arguments)
            except ValidationError as e:
                await self._finish(
                    snapshot.id, SnapshotStatus.FAILED,
                    error_message=f"{e.message} Fields: {e.fields}",
                )
                raise

            await self.snapshot_store.transition(snapshot.id, SnapshotStatus.CONFIRMED)
            entity_id = entity_id_of(validated) if entity_id_of else None
            if load_before_state is not None:
                before_state = await load_before_state(validated)
                await self.snapshot_store.record_before_state(snapshot.id, entity_id, before_state)

            result = await execute(validated)

            after_state = _as_state(result)
            if entity_id is None and result_entity_id is not None:
                entity_id = result_entity_id(result)
            await self._finish(snapshot.id, SnapshotStatus.EXECUTED, after_state=after_state, entity_id=entity_id)
            logger.info(f"Executed '{operation_name}' for user {user_id} (snapshot {snapshot.id}).")
            return result

        except asyncio.CancelledError:
            await self._finish(snapshot.id, SnapshotStatus.CANCELLED, error_message="Request was cancelled.")
            raise
        except GatewayError as e:
            # No-op when the denial or validation branch already closed the snapshot
            await self._finish(snapshot.id, SnapshotStatus.FAILED, error_message=e.message)
            raise
        except Exception as e:
            await self._finish(snapshot.id, SnapshotStatus.FAILED, error_message=f"{type(e).__name__}: {e}")
            logger.error(f"Operation '{operation_name}' failed for user {user_id}", exc_info=True)
            raise


async def get_permission_service() -> PermissionService:
    return PermissionService(await get_sqlite_permission_store(), await get_sqlite_snapshot_store())
