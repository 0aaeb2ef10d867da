# mcp_ledger/upstream/endpoints.py
import logging
import secrets
from typing import Annotated, Optional
from urllib.parse import urlencode

from fastapi import APIRouter, Depends, Query
from fastapi.responses import HTMLResponse, RedirectResponse
from pydantic import BaseModel

from .adapter import PROVIDER_NAME, UpstreamClientAdapter, get_upstream_adapter
from ..core.errors import GatewayError, UpstreamError
from ..credentials.sqlite_credential_store import get_sqlite_credential_store
from ..credentials.storage_interfaces import AbstractCredentialStore
from ..gateway_auth.dependencies import get_current_principal
from ..gateway_auth.models import AuthenticatedPrincipal
from ..gateway_auth.pages import message_page
from ..settings import settings

logger = logging.getLogger(__name__)
upstream_router = APIRouter(prefix="/connect/xero", tags=["Upstream Connection"])


class ConnectionStatus(BaseModel):
    provider: str = PROVIDER_NAME
    connected: bool
    tenant_id: Optional[str] = None
    tenant_name: Optional[str] = None
    expires_at: Optional[str] = None
    scopes: list = []


def xero_callback_url() -> str:
    return f"{settings.public_base_url.rstrip('/')}/connect/xero/callback"


async def get_credential_store_dependency() -> AbstractCredentialStore:
    return await get_sqlite_credential_store()


@upstream_router.get("")
async def connect_xero(
    principal: Annotated[AuthenticatedPrincipal, Depends(get_current_principal)],
    credential_store: Annotated[AbstractCredentialStore, Depends(get_credential_store_dependency)],
):
    """Send the signed-in user to Xero's consent screen."""
    if not settings.xero_client_id:
        raise UpstreamError("Xero is not configured on this gateway.", status_code=503)
    state = secrets.token_urlsafe(32)
    await credential_store.save_connect_state(
        state, principal.user_id, PROVIDER_NAME, ttl_seconds=settings.oauth_state_ttl_seconds
    )
    params = {
        "response_type": "code",
        "client_id": settings.xero_client_id,
        "redirect_uri": xero_callback_url(),
        "scope": settings.xero_scopes,
        "state": state,
    }
    logger.info(f"Starting Xero connect flow for user {principal.user_id}.")
    return RedirectResponse(url=f"{settings.xero_authorize_url}?{urlencode(params)}", status_code=302)


@upstream_router.get("/callback", response_class=HTMLResponse)
async def connect_xero_callback(
    credential_store: Annotated[AbstractCredentialStore, Depends(get_credential_store_dependency)],
    adapter: Annotated[UpstreamClientAdapter, Depends(get_upstream_adapter)],
    code: Annotated[Optional[str], Query()] = None,
    state: Annotated[Optional[str], Query()] = None,
    error: Annotated[Optional[str], Query()] = None,
    error_description: Annotated[Optional[str], Query()] = None,
):
    if error:
        logger.warning(f"Xero connect flow returned error '{error}': {error_description}")
        return HTMLResponse(
            message_page("Xero connection cancelled", error_description or f"Xero reported: {error}."),
            status_code=400,
        )
    if not code or not state:
        return HTMLResponse(message_page("Xero connection failed", "The callback is missing code or state."), status_code=400)

    user_id = await credential_store.consume_connect_state(state, PROVIDER_NAME)
    if user_id is None:
        logger.warning("Xero callback with unknown, reused or expired state.")
        return HTMLResponse(
            message_page("Xero connection failed", "This connection link is invalid or has expired. Start again."),
            status_code=400,
        )

    try:
        credential = await adapter.exchange_authorization_code(user_id, code, xero_callback_url())
    except GatewayError as e:
        logger.warning(f"Xero code exchange failed for user {user_id}: {e.message}")
        return HTMLResponse(message_page("Xero connection failed", e.message), status_code=e.status_code)

    return HTMLResponse(
        message_page(
            "Xero connected",
            f"Connected to '{credential.tenant_name or credential.tenant_id}'. You can close this window.",
        )
    )


@upstream_router.post("/disconnect")
async def disconnect_xero(
    principal: Annotated[AuthenticatedPrincipal, Depends(get_current_principal)],
    adapter: Annotated[UpstreamClientAdapter, Depends(get_upstream_adapter)],
):
    removed = await adapter.disconnect(principal.user_id)
    logger.info(f"User {principal.user_id} disconnected Xero (credential removed: {removed}).")
    return {"provider": PROVIDER_NAME, "disconnected": removed}


@upstream_router.get("/status", response_model=ConnectionStatus)
async def xero_status(
    principal: Annotated[AuthenticatedPrincipal, Depends(get_current_principal)],
    credential_store: Annotated[AbstractCredentialStore, Depends(get_credential_store_dependency)],
):
    credential = await credential_store.get_credential(principal.user_id, PROVIDER_NAME)
    if credential is None:
        return ConnectionStatus(connected=False)
    return ConnectionStatus(
        connected=True,
        tenant_id=credential.tenant_id,
        tenant_name=credential.tenant_name,
        expires_at=credential.expires_at.isoformat(),
        scopes=credential.scopes,
    )
