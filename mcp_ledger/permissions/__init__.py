# mcp_ledger/permissions/__init__.py
from .models import (
    PermissionLevel, PERMISSION_LEVEL_NAMES, SnapshotStatus, TERMINAL_STATUSES,
    PermissionSettings, PermissionOverride, AuthorizationDecision, OperationSnapshot, PermissionView,
)
from .storage_interfaces import AbstractPermissionStore, AbstractSnapshotStore
from .sqlite_permission_store import (
    SQLitePermissionStore, SQLiteSnapshotStore,
    get_sqlite_permission_store, get_sqlite_snapshot_store,
)
from .service import PermissionService, insufficient_permission_reason, get_permission_service

__all__ = [
    "PermissionLevel",
    "PERMISSION_LEVEL_NAMES",
    "SnapshotStatus",
    "TERMINAL_STATUSES",
    "PermissionSettings",
    "PermissionOverride",
    "AuthorizationDecision",
    "OperationSnapshot",
    "PermissionView",
    "AbstractPermissionStore",
    "AbstractSnapshotStore",
    "SQLitePermissionStore",
    "SQLiteSnapshotStore",
    "get_sqlite_permission_store",
    "get_sqlite_snapshot_store",
    "PermissionService",
    "insufficient_permission_reason",
    "get_permission_service",
]
