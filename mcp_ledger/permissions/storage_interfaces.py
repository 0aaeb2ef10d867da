# mcp_ledger/permissions/storage_interfaces.py
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Dict, List, Optional

from .models import OperationSnapshot, PermissionOverride, PermissionSettings, SnapshotStatus


class AbstractPermissionStore(ABC):

    @abstractmethod
    async def get_settings(self, user_id: str) -> PermissionSettings:
        """Stored settings, or read-only defaults for users never configured."""
        pass

    @abstractmethod
    async def set_level(self, user_id: str, level: int) -> PermissionSettings:
        pass

    @abstractmethod
    async def set_vacation_mode(self, user_id: str, until: Optional[datetime]) -> PermissionSettings:
        pass

    @abstractmethod
    async def get_override(self, user_id: str, capability_group: str) -> Optional[PermissionOverride]:
        pass

    @abstractmethod
    async def list_overrides(self, user_id: str) -> List[PermissionOverride]:
        pass

    @abstractmethod
    async def set_override(self, user_id: str, capability_group: str, level: int) -> PermissionOverride:
        pass

    @abstractmethod
    async def clear_override(self, user_id: str, capability_group: str) -> bool:
        pass

    @abstractmethod
    async def initialize(self) -> None:
        pass

    @abstractmethod
    async def teardown(self) -> None:
        pass


class AbstractSnapshotStore(ABC):

    @abstractmethod
    async def create_snapshot(self, snapshot: OperationSnapshot) -> OperationSnapshot:
        pass

    @abstractmethod
    async def get_snapshot(self, snapshot_id: str) -> Optional[OperationSnapshot]:
        pass

    @abstractmethod
    async def list_snapshots(self, user_id: str, limit: int = 50) -> List[OperationSnapshot]:
        pass

    @abstractmethod
    async def record_before_state(
        self, snapshot_id: str, entity_id: Optional[str], before_state: Optional[Dict[str, Any]]
    ) -> bool:
        pass

    @abstractmethod
    async def transition(
        self,
        snapshot_id: str,
        new_status: SnapshotStatus,
        *,
        after_state: Optional[Dict[str, Any]] = None,
        error_message: Optional[str] = None,
        entity_id: Optional[str] = None,
    ) -> bool:
        """Compare-and-set move out of a non-terminal status; False when already terminal."""
        pass

    @abstractmethod
    async def initialize(self) -> None:
        pass

    @abstractmethod
    async def teardown(self) -> None:
        pass
