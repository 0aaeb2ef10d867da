# mcp_ledger/gateway_auth/dependencies.py
import logging
from typing import Annotated, Optional

from fastapi import Depends, Request

from .accounts import AccountService
from .bearer import BearerTokenManager
from .gateway import AuthGateway
from .models import AuthenticatedPrincipal
from ..credentials.sqlite_account_store import get_sqlite_account_store
from ..oauth.provider import GatewayOAuthProvider
from ..oauth.sqlite_flow_store import get_sqlite_flow_store
from ..settings import settings

logger = logging.getLogger(__name__)


def get_bearer_token_manager() -> BearerTokenManager:
    """Built per request from the current settings."""
    return BearerTokenManager(
        signing_secret=settings.bearer_signing_secret,
        algorithm=settings.bearer_token_algorithm,
        lifetime_days=settings.bearer_token_lifetime_days,
    )


async def get_account_service() -> AccountService:
    return AccountService(await get_sqlite_account_store())


async def get_oauth_provider() -> GatewayOAuthProvider:
    return GatewayOAuthProvider(flow_store=await get_sqlite_flow_store())


async def get_auth_gateway() -> AuthGateway:
    return AuthGateway(get_bearer_token_manager(), await get_oauth_provider())


def extract_credential(request: Request) -> Optional[str]:
    """`Authorization: Bearer <token>` first, then the `?token=` query parameter."""
    auth_header = request.headers.get("authorization")
    if auth_header:
        scheme, _, value = auth_header.partition(" ")
        if scheme.lower() == "bearer" and value.strip():
            return value.strip()
    token = request.query_params.get("token")
    return token.strip() if token else None


async def get_current_principal(
    request: Request,
    gateway: Annotated[AuthGateway, Depends(get_auth_gateway)],
) -> AuthenticatedPrincipal:
    """Authenticate an HTTP route caller with the same credentials the MCP endpoint accepts."""
    return await gateway.authenticate(extract_credential(request))


def connection_url_for(token: str) -> str:
    return f"{settings.public_base_url.rstrip('/')}/mcp?token={token}"
