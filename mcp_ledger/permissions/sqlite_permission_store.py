# mcp_ledger/permissions/sqlite_permission_store.py
import json
import logging
import sqlite3
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from .models import (
    OperationSnapshot, PermissionLevel, PermissionOverride, PermissionSettings,
    SnapshotStatus,
)
from .storage_interfaces import AbstractPermissionStore, AbstractSnapshotStore
from ..storage.sqlite_store import SQLiteStoreMixin

logger = logging.getLogger(__name__)

# Statuses a snapshot may move out of, per target status
_ALLOWED_FROM = {
    SnapshotStatus.CONFIRMED: (SnapshotStatus.PENDING,),
    SnapshotStatus.EXECUTED: (SnapshotStatus.PENDING, SnapshotStatus.CONFIRMED),
    SnapshotStatus.FAILED: (SnapshotStatus.PENDING, SnapshotStatus.CONFIRMED),
    SnapshotStatus.CANCELLED: (SnapshotStatus.PENDING, SnapshotStatus.CONFIRMED),
}


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _parse_dt(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


def _loads(value: Optional[str]) -> Optional[Any]:
    return json.loads(value) if value else None


class SQLitePermissionStore(SQLiteStoreMixin, AbstractPermissionStore):
    store_name = "SQLitePermissionStore"

    async def get_settings(self, user_id: str) -> PermissionSettings:
        row = await self._fetchone("SELECT * FROM permission_settings WHERE user_id = ?", (user_id,))
        if not row:
            return PermissionSettings(user_id=user_id)
        return PermissionSettings(
            user_id=user_id,
            permission_level=PermissionLevel(row["permission_level"]),
            vacation_mode_until=_parse_dt(row["vacation_mode_until"]),
            updated_at=datetime.fromisoformat(row["updated_at"]),
        )

    async def set_level(self, user_id: str, level: int) -> PermissionSettings:
        level = PermissionLevel(level)
        await self._execute_query(
            '''
            INSERT INTO permission_settings (user_id, permission_level, updated_at) VALUES (?, ?, ?)
            ON CONFLICT(user_id) DO UPDATE SET
                permission_level=excluded.permission_level, updated_at=excluded.updated_at
            ''',
            (user_id, int(level), _now_iso()),
        )
        logger.info(f"Permission level for user {user_id} set to {int(level)}.")
        return await self.get_settings(user_id)

    async def set_vacation_mode(self, user_id: str, until: Optional[datetime]) -> PermissionSettings:
        await self._execute_query(
            '''
            INSERT INTO permission_settings (user_id, permission_level, vacation_mode_until, updated_at)
            VALUES (?, 0, ?, ?)
            ON CONFLICT(user_id) DO UPDATE SET
                vacation_mode_until=excluded.vacation_mode_until, updated_at=excluded.updated_at
            ''',
            (user_id, until.isoformat() if until else None, _now_iso()),
        )
        logger.info(f"Vacation mode for user {user_id} set until {until}.")
        return await self.get_settings(user_id)

    async def get_override(self, user_id: str, capability_group: str) -> Optional[PermissionOverride]:
        row = await self._fetchone(
            "SELECT * FROM permission_overrides WHERE user_id = ? AND capability_group = ?",
            (user_id, capability_group),
        )
        if not row:
            return None
        return PermissionOverride(
            user_id=user_id,
            capability_group=row["capability_group"],
            permission_level=PermissionLevel(row["permission_level"]),
            updated_at=datetime.fromisoformat(row["updated_at"]),
        )

    async def list_overrides(self, user_id: str) -> List[PermissionOverride]:
        rows = await self._fetchall(
            "SELECT * FROM permission_overrides WHERE user_id = ? ORDER BY capability_group", (user_id,)
        )
        return [
            PermissionOverride(
                user_id=user_id,
                capability_group=row["capability_group"],
                permission_level=PermissionLevel(row["permission_level"]),
                updated_at=datetime.fromisoformat(row["updated_at"]),
            )
            for row in rows
        ]

    async def set_override(self, user_id: str, capability_group: str, level: int) -> PermissionOverride:
        override = PermissionOverride(
            user_id=user_id, capability_group=capability_group, permission_level=PermissionLevel(level)
        )
        await self._execute_query(
            '''
            INSERT INTO permission_overrides (user_id, capability_group, permission_level, updated_at)
            VALUES (?, ?, ?, ?)
            ON CONFLICT(user_id, capability_group) DO UPDATE SET
                permission_level=excluded.permission_level, updated_at=excluded.updated_at
            ''',
            (user_id, capability_group, int(override.permission_level), override.updated_at.isoformat()),
        )
        logger.info(f"Override for user {user_id} on '{capability_group}' set to {int(level)}.")
        return override

    async def clear_override(self, user_id: str, capability_group: str) -> bool:
        cursor = await self._execute_query(
            "DELETE FROM permission_overrides WHERE user_id = ? AND capability_group = ?",
            (user_id, capability_group),
        )
        return cursor.rowcount > 0


def _row_to_snapshot(row: sqlite3.Row) -> OperationSnapshot:
    return OperationSnapshot(
        id=row["id"],
        user_id=row["user_id"],
        operation_name=row["operation_name"],
        required_level=row["required_level"],
        capability_group=row["capability_group"],
        entity_type=row["entity_type"],
        entity_id=row["entity_id"],
        arguments=_loads(row["arguments"]) or {},
        before_state=_loads(row["before_state"]),
        after_state=_loads(row["after_state"]),
        requested_by=row["requested_by"],
        status=SnapshotStatus(row["status"]),
        error_message=row["error_message"],
        created_at=datetime.fromisoformat(row["created_at"]),
        executed_at=_parse_dt(row["executed_at"]),
    )


class SQLiteSnapshotStore(SQLiteStoreMixin, AbstractSnapshotStore):
    """
    Operation snapshots. Every status change is an UPDATE guarded by the
    current status, so a snapshot that reached a terminal status can never
    be rewritten.
    """

    store_name = "SQLiteSnapshotStore"

    async def create_snapshot(self, snapshot: OperationSnapshot) -> OperationSnapshot:
        await self._execute_query(
            '''
            INSERT INTO operation_snapshots (
                id, user_id, operation_name, required_level, capability_group, entity_type,
                entity_id, arguments, before_state, after_state, requested_by, status,
                error_message, created_at, executed_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, NULL, NULL, ?, ?, NULL, ?, NULL)
            ''',
            (
                snapshot.id, snapshot.user_id, snapshot.operation_name, snapshot.required_level,
                snapshot.capability_group, snapshot.entity_type, snapshot.entity_id,
                json.dumps(snapshot.arguments, default=str), snapshot.requested_by,
                snapshot.status.value, snapshot.created_at.isoformat(),
            ),
        )
        return snapshot

    async def get_snapshot(self, snapshot_id: str) -> Optional[OperationSnapshot]:
        row = await self._fetchone("SELECT * FROM operation_snapshots WHERE id = ?", (snapshot_id,))
        return _row_to_snapshot(row) if row else None

    async def list_snapshots(self, user_id: str, limit: int = 50) -> List[OperationSnapshot]:
        rows = await self._fetchall(
            "SELECT * FROM operation_snapshots WHERE user_id = ? ORDER BY created_at DESC LIMIT ?",
            (user_id, limit),
        )
        return [_row_to_snapshot(row) for row in rows]

    async def record_before_state(
        self, snapshot_id: str, entity_id: Optional[str], before_state: Optional[Dict[str, Any]]
    ) -> bool:
        cursor = await self._execute_query(
            '''
            UPDATE operation_snapshots
            SET before_state = ?, entity_id = COALESCE(?, entity_id)
            WHERE id = ? AND status IN ('pending', 'confirmed')
            ''',
            (json.dumps(before_state, default=str) if before_state is not None else None, entity_id, snapshot_id),
        )
        return cursor.rowcount == 1

    async def transition(
        self,
        snapshot_id: str,
        new_status: SnapshotStatus,
        *,
        after_state: Optional[Dict[str, Any]] = None,
        error_message: Optional[str] = None,
        entity_id: Optional[str] = None,
    ) -> bool:
        allowed_from = _ALLOWED_FROM.get(new_status)
        if not allowed_from:
            raise ValueError(f"Snapshots cannot move to status '{new_status.value}'.")
        placeholders = ", ".join("?" for _ in allowed_from)
        executed_at = _now_iso() if new_status == SnapshotStatus.EXECUTED else None
        cursor = await self._execute_query(
            f'''
            UPDATE operation_snapshots
            SET status = ?,
                after_state = COALESCE(?, after_state),
                error_message = COALESCE(?, error_message),
                entity_id = COALESCE(?, entity_id),
                executed_at = COALESCE(?, executed_at)
            WHERE id = ? AND status IN ({placeholders})
            ''',
            (
                new_status.value,
                json.dumps(after_state, default=str) if after_state is not None else None,
                error_message,
                entity_id,
                executed_at,
                snapshot_id,
            ) + tuple(s.value for s in allowed_from),
        )
        if cursor.rowcount != 1:
            logger.debug(f"Snapshot {snapshot_id} not moved to '{new_status.value}': status already terminal.")
            return False
        return True


_sqlite_permission_store_instance: Optional[SQLitePermissionStore] = None
_sqlite_snapshot_store_instance: Optional[SQLiteSnapshotStore] = None


async def get_sqlite_permission_store() -> SQLitePermissionStore:
    """Get or create the singleton SQLitePermissionStore instance."""
    global _sqlite_permission_store_instance
    if _sqlite_permission_store_instance is None:
        _sqlite_permission_store_instance = SQLitePermissionStore()
        await _sqlite_permission_store_instance.initialize()
    return _sqlite_permission_store_instance


async def get_sqlite_snapshot_store() -> SQLiteSnapshotStore:
    """Get or create the singleton SQLiteSnapshotStore instance."""
    global _sqlite_snapshot_store_instance
    if _sqlite_snapshot_store_instance is None:
        _sqlite_snapshot_store_instance = SQLiteSnapshotStore()
        await _sqlite_snapshot_store_instance.initialize()
    return _sqlite_snapshot_store_instance
