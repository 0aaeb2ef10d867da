# mcp_ledger/gateway_auth/models.py
from typing import Literal, Optional

from pydantic import BaseModel, Field


class AuthenticatedPrincipal(BaseModel):
    """Who is on the other end of a connection, and how they proved it."""
    user_id: str
    auth_method: Literal["bearer", "oauth"]
    credential_fingerprint: str = Field(description="SHA-256 of the raw credential.")
    email: Optional[str] = None
    grant_id: Optional[str] = Field(default=None, description="OAuth flow id when auth_method is oauth.")


class LoginRequest(BaseModel):
    email: str = Field(min_length=3, max_length=320)
    password: str = Field(min_length=1, max_length=256)


class RegisterRequest(BaseModel):
    email: str = Field(min_length=3, max_length=320)
    password: str = Field(min_length=8, max_length=128)
    invite_code: str = Field(min_length=1)
    display_name: Optional[str] = Field(default=None, max_length=120)


class BearerTokenResponse(BaseModel):
    access_token: str
    token_type: str = "Bearer"
    expires_in: int
    connection_url: str
    user_id: str
