# mcp_ledger/oauth/models.py
import secrets
from datetime import datetime, timezone
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def generate_flow_id() -> str:
    """Server-issued, single-use identifier for one authorization attempt."""
    return secrets.token_urlsafe(32)


class FlowStatus(str, Enum):
    INITIATED = "initiated"
    CODE_RECEIVED = "code_received"
    TOKEN_EXCHANGED = "token_exchanged"
    BOUND_TO_SESSION = "bound_to_session"


class OAuthAuthorizationFlow(BaseModel):
    """
    One authorization-code grant, from the authorize request to the MCP
    session that first used the resulting token.

    Status only moves forward:
    initiated -> code_received -> token_exchanged -> bound_to_session.
    """
    flow_id: str = Field(default_factory=generate_flow_id)
    client_id: str
    redirect_uri: str
    client_state: Optional[str] = None
    scope: Optional[str] = None
    code_challenge: Optional[str] = None
    code_challenge_method: Optional[str] = None
    status: FlowStatus = FlowStatus.INITIATED
    user_id: Optional[str] = None
    code: Optional[str] = None
    access_token_hash: Optional[str] = None
    session_id: Optional[str] = None
    created_at: datetime = Field(default_factory=_utcnow)
    expires_at: datetime
    token_expires_at: Optional[datetime] = None

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        return (now or _utcnow()) >= self.expires_at

    def token_valid(self, now: Optional[datetime] = None) -> bool:
        if self.status not in (FlowStatus.TOKEN_EXCHANGED, FlowStatus.BOUND_TO_SESSION):
            return False
        return self.token_expires_at is not None and (now or _utcnow()) < self.token_expires_at


class TokenResponse(BaseModel):
    """OAuth token response structure as per RFC 6749."""
    access_token: str
    token_type: str = "Bearer"
    expires_in: int
    scope: Optional[str] = None


class AuthorizationServerMetadata(BaseModel):
    """RFC 8414 authorization server metadata."""
    issuer: str
    authorization_endpoint: str
    token_endpoint: str
    response_types_supported: List[str] = ["code"]
    grant_types_supported: List[str] = ["authorization_code"]
    code_challenge_methods_supported: List[str] = ["S256"]
    token_endpoint_auth_methods_supported: List[str] = ["client_secret_post", "client_secret_basic"]


class ProtectedResourceMetadata(BaseModel):
    """RFC 9728 protected resource metadata for the MCP endpoint."""
    resource: str
    authorization_servers: List[str]
    bearer_methods_supported: List[str] = ["header", "query"]
