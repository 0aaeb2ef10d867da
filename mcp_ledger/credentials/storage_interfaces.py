# mcp_ledger/credentials/storage_interfaces.py
import logging
from abc import ABC, abstractmethod
from typing import Optional, List

from .models import ProviderCredential, AppUser, InviteCode

logger = logging.getLogger(__name__)


class AbstractCredentialStore(ABC):
    """Persistence for per-user upstream provider credentials."""

    @abstractmethod
    async def get_credential(self, user_id: str, provider: str = "xero") -> Optional[ProviderCredential]:
        pass

    @abstractmethod
    async def save_credential(self, credential: ProviderCredential) -> None:
        """Insert or replace the single credential held for (user, provider)."""
        pass

    @abstractmethod
    async def delete_credential(self, user_id: str, provider: str = "xero") -> bool:
        pass

    @abstractmethod
    async def save_connect_state(self, state: str, user_id: str, provider: str, ttl_seconds: int) -> None:
        pass

    @abstractmethod
    async def consume_connect_state(self, state: str, provider: str) -> Optional[str]:
        """Return the user id bound to `state` and delete it; None when unknown or expired."""
        pass

    @abstractmethod
    async def delete_expired_connect_states(self) -> int:
        pass

    @abstractmethod
    async def initialize(self) -> None:
        pass

    @abstractmethod
    async def teardown(self) -> None:
        pass


class AbstractAccountStore(ABC):
    """Persistence for gateway accounts and invite codes."""

    @abstractmethod
    async def create_user(self, user: AppUser) -> AppUser:
        pass

    @abstractmethod
    async def get_user_by_email(self, email: str) -> Optional[AppUser]:
        pass

    @abstractmethod
    async def get_user(self, user_id: str) -> Optional[AppUser]:
        pass

    @abstractmethod
    async def list_users(self) -> List[AppUser]:
        pass

    @abstractmethod
    async def record_login(self, user_id: str) -> None:
        pass

    @abstractmethod
    async def update_password_hash(self, user_id: str, password_hash: str) -> None:
        pass

    @abstractmethod
    async def create_invite(self, invite: InviteCode) -> InviteCode:
        pass

    @abstractmethod
    async def list_invites(self) -> List[InviteCode]:
        pass

    @abstractmethod
    async def redeem_invite(self, code: str) -> bool:
        """Atomically consume one use of `code`; False when it is not redeemable."""
        pass

    @abstractmethod
    async def initialize(self) -> None:
        pass

    @abstractmethod
    async def teardown(self) -> None:
        pass
