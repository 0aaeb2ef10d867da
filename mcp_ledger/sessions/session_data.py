# mcp_ledger/sessions/session_data.py
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TransportState(str, Enum):
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"


class SessionData(BaseModel):
    """
    One authenticated gateway session.

    A session outlives individual transport connections: when the last
    connection closes it becomes `disconnected` and can be resumed with the
    same credential until the grace window elapses.
    """

    model_config = ConfigDict(validate_assignment=True)

    session_id: str = Field(description="Stable identifier returned to the client.")
    user_id: str
    auth_method: str = Field(description="'bearer' or 'oauth'.")
    credential_fingerprint: str = Field(description="SHA-256 of the raw credential; never the credential itself.")

    established_at: datetime = Field(default_factory=_utcnow)
    last_activity_at: datetime = Field(default_factory=_utcnow)

    transport_state: TransportState = TransportState.CONNECTED
    active_connections: int = 0
    disconnected_at: Optional[datetime] = None

    data: Dict[str, Any] = Field(default_factory=dict)

    def touch(self, now: Optional[datetime] = None) -> None:
        """Record activity on the session."""
        self.last_activity_at = now or _utcnow()

    def within_grace(self, grace_seconds: float, now: datetime) -> bool:
        """Connected sessions, or disconnected ones whose grace window is still open."""
        if self.transport_state == TransportState.CONNECTED:
            return True
        if self.disconnected_at is None:
            return False
        return (now - self.disconnected_at).total_seconds() < grace_seconds
