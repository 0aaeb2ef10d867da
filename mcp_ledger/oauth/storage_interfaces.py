# mcp_ledger/oauth/storage_interfaces.py
from abc import ABC, abstractmethod
from typing import Optional

from .models import FlowStatus, OAuthAuthorizationFlow


class AbstractAuthorizationFlowStore(ABC):
    """Persistence for authorization-code flows."""

    @abstractmethod
    async def initialize(self) -> None:
        pass

    @abstractmethod
    async def teardown(self) -> None:
        pass

    @abstractmethod
    async def create_flow(self, flow: OAuthAuthorizationFlow) -> None:
        pass

    @abstractmethod
    async def get_flow(self, flow_id: str) -> Optional[OAuthAuthorizationFlow]:
        pass

    @abstractmethod
    async def get_flow_by_code(self, code: str) -> Optional[OAuthAuthorizationFlow]:
        pass

    @abstractmethod
    async def get_flow_by_token_hash(self, access_token_hash: str) -> Optional[OAuthAuthorizationFlow]:
        pass

    @abstractmethod
    async def transition(self, flow: OAuthAuthorizationFlow, expected_status: FlowStatus) -> bool:
        """
        Persist `flow` only if the stored row is still in `expected_status`.

        Returns False when another request already moved the flow on, which is
        how single use of flow ids and codes is enforced.
        """
        pass

    @abstractmethod
    async def delete_expired(self) -> int:
        pass
