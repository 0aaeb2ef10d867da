# mcp_ledger/permissions/models.py
from datetime import datetime, timezone
from enum import Enum, IntEnum
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class PermissionLevel(IntEnum):
    READ_ONLY = 0
    CREATE_DRAFTS = 1
    APPROVE_UPDATE = 2
    DELETE_VOID = 3


PERMISSION_LEVEL_NAMES = {
    PermissionLevel.READ_ONLY: "Read-only",
    PermissionLevel.CREATE_DRAFTS: "Create drafts",
    PermissionLevel.APPROVE_UPDATE: "Approve and update",
    PermissionLevel.DELETE_VOID: "Delete and void",
}


class SnapshotStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    EXECUTED = "executed"
    FAILED = "failed"
    CANCELLED = "cancelled"


TERMINAL_STATUSES = frozenset({SnapshotStatus.EXECUTED, SnapshotStatus.FAILED, SnapshotStatus.CANCELLED})


class PermissionSettings(BaseModel):
    user_id: str
    permission_level: PermissionLevel = PermissionLevel.READ_ONLY
    vacation_mode_until: Optional[datetime] = None
    updated_at: datetime = Field(default_factory=_utcnow)

    def vacation_active(self, now: Optional[datetime] = None) -> bool:
        return self.vacation_mode_until is not None and self.vacation_mode_until > (now or _utcnow())


class PermissionOverride(BaseModel):
    user_id: str
    capability_group: str
    permission_level: PermissionLevel
    updated_at: datetime = Field(default_factory=_utcnow)


class AuthorizationDecision(BaseModel):
    allowed: bool
    required_level: int
    current_level: int
    reason: Optional[str] = None
    vacation_mode: bool = False


class OperationSnapshot(BaseModel):
    """Audit record of one write-tier call. Immutable once its status is terminal."""
    id: str
    user_id: str
    operation_name: str
    required_level: int
    capability_group: str
    entity_type: str
    entity_id: Optional[str] = None
    arguments: Dict[str, Any] = Field(default_factory=dict)
    before_state: Optional[Dict[str, Any]] = None
    after_state: Optional[Dict[str, Any]] = None
    requested_by: str
    status: SnapshotStatus = SnapshotStatus.PENDING
    error_message: Optional[str] = None
    created_at: datetime = Field(default_factory=_utcnow)
    executed_at: Optional[datetime] = None


class PermissionView(BaseModel):
    """Admin-facing summary of one user's permission configuration."""
    user_id: str
    permission_level: int
    level_name: str
    vacation_mode_until: Optional[datetime] = None
    vacation_active: bool = False
    overrides: Dict[str, int] = Field(default_factory=dict)


class SetLevelRequest(BaseModel):
    permission_level: PermissionLevel


class SetOverrideRequest(BaseModel):
    capability_group: str = Field(min_length=1)
    permission_level: PermissionLevel


class VacationRequest(BaseModel):
    until: Optional[datetime] = Field(default=None, description="End of vacation mode; null clears it.")
