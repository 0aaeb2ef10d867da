# mcp_ledger/credentials/models.py
from pydantic import BaseModel, Field
from typing import Optional, List
from datetime import datetime, timedelta, timezone


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ProviderCredential(BaseModel):
    """OAuth credential held on behalf of a user for an upstream accounting provider."""
    user_id: str
    provider: str = "xero"
    access_token: str
    refresh_token: Optional[str] = None
    token_type: str = "Bearer"
    expires_at: datetime
    scopes: List[str] = Field(default_factory=list)
    tenant_id: Optional[str] = Field(default=None, description="Xero organisation (tenant) identifier.")
    tenant_name: Optional[str] = None
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)

    def expires_within(self, seconds: float, now: Optional[datetime] = None) -> bool:
        """True when the access token expires in less than `seconds` from `now`."""
        current = now or _utcnow()
        return self.expires_at - current < timedelta(seconds=seconds)


class AppUser(BaseModel):
    """A gateway account. Passwords are only ever held as argon2 hashes."""
    user_id: str
    email: str
    password_hash: str
    display_name: Optional[str] = None
    is_admin: bool = False
    created_at: datetime = Field(default_factory=_utcnow)
    last_login_at: Optional[datetime] = None


class AppUserPublic(BaseModel):
    user_id: str
    email: str
    display_name: Optional[str] = None
    is_admin: bool = False
    created_at: datetime
    last_login_at: Optional[datetime] = None

    @classmethod
    def from_user(cls, user: AppUser) -> "AppUserPublic":
        return cls(**user.model_dump(exclude={"password_hash"}))


class InviteCode(BaseModel):
    code: str
    created_by: Optional[str] = None
    max_uses: int = 1
    use_count: int = 0
    expires_at: Optional[datetime] = None
    created_at: datetime = Field(default_factory=_utcnow)

    def is_redeemable(self, now: Optional[datetime] = None) -> bool:
        current = now or _utcnow()
        if self.use_count >= self.max_uses:
            return False
        return self.expires_at is None or self.expires_at > current


class InviteCodeCreate(BaseModel):
    max_uses: int = Field(default=1, ge=1)
    expires_in_days: Optional[int] = Field(default=None, ge=1)
    created_by: Optional[str] = None
