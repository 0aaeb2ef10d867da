# mcp_ledger/oauth/endpoints.py
import base64
import binascii
import logging
from typing import Annotated, Optional, Tuple
from urllib.parse import unquote

from fastapi import APIRouter, Depends, Form, Query, Request
from fastapi.responses import HTMLResponse, JSONResponse, RedirectResponse

from .errors import InvalidClientError, OAuthError
from .models import AuthorizationServerMetadata, ProtectedResourceMetadata, TokenResponse
from .provider import GatewayOAuthProvider
from ..core.errors import AuthenticationError
from ..gateway_auth.accounts import AccountService
from ..gateway_auth.dependencies import get_account_service, get_oauth_provider
from ..gateway_auth.pages import login_form_page, message_page
from ..settings import settings

logger = logging.getLogger(__name__)
oauth_router = APIRouter()


def _base_url() -> str:
    return settings.public_base_url.rstrip("/")


def _client_credentials_from_basic(request: Request) -> Tuple[Optional[str], Optional[str]]:
    """Decode `Authorization: Basic` client credentials (RFC 6749 - Section 2.3.1)."""
    header = request.headers.get("authorization")
    if not header or not header.lower().startswith("basic "):
        return None, None
    try:
        decoded = base64.b64decode(header[6:].strip(), validate=True).decode("utf-8")
    except (binascii.Error, UnicodeDecodeError):
        raise InvalidClientError("Malformed Basic authorization header.")
    client_id, sep, client_secret = decoded.partition(":")
    if not sep:
        raise InvalidClientError("Malformed Basic authorization header.")
    return unquote(client_id), unquote(client_secret)


@oauth_router.get("/oauth/authorize", response_class=HTMLResponse, tags=["OAuth"])
async def authorize_get(
    provider: Annotated[GatewayOAuthProvider, Depends(get_oauth_provider)],
    response_type: Annotated[Optional[str], Query()] = None,
    client_id: Annotated[Optional[str], Query()] = None,
    redirect_uri: Annotated[Optional[str], Query()] = None,
    state: Annotated[Optional[str], Query()] = None,
    scope: Annotated[Optional[str], Query()] = None,
    code_challenge: Annotated[Optional[str], Query()] = None,
    code_challenge_method: Annotated[Optional[str], Query()] = None,
):
    """
    Validate the authorization request and show the sign-in form.

    Validation errors are rendered here rather than redirected: until the
    redirect_uri is known to be registered, redirecting to it is unsafe.
    """
    try:
        flow = await provider.start_authorization(
            response_type=response_type,
            client_id=client_id,
            redirect_uri=redirect_uri,
            state=state,
            scope=scope,
            code_challenge=code_challenge,
            code_challenge_method=code_challenge_method,
        )
    except OAuthError as e:
        logger.warning(f"Rejected authorize request: {e.error} ({e.error_description})")
        return HTMLResponse(
            message_page("Authorization error", e.error_description or e.error), status_code=e.status_code
        )

    return HTMLResponse(
        login_form_page(
            action="/oauth/authorize",
            heading=f"Sign in to connect {settings.app_name}",
            hidden_fields={"flow_id": flow.flow_id},
        )
    )


@oauth_router.post("/oauth/authorize", tags=["OAuth"])
async def authorize_post(
    flow_id: Annotated[str, Form()],
    email: Annotated[str, Form()],
    password: Annotated[str, Form()],
    provider: Annotated[GatewayOAuthProvider, Depends(get_oauth_provider)],
    accounts: Annotated[AccountService, Depends(get_account_service)],
):
    """Authenticate the user and redirect back to the client with a code."""
    try:
        await provider.get_pending_flow(flow_id)
    except OAuthError as e:
        return HTMLResponse(message_page("Authorization error", e.error_description or e.error), status_code=400)

    try:
        user = await accounts.authenticate(email, password)
    except AuthenticationError as e:
        # The flow stays in `initiated` so the user can retry until it expires
        return HTMLResponse(
            login_form_page(
                action="/oauth/authorize",
                heading=f"Sign in to connect {settings.app_name}",
                error=e.message,
                hidden_fields={"flow_id": flow_id},
                email=email,
            ),
            status_code=401,
        )

    try:
        redirect_to = await provider.issue_code(flow_id, user.user_id)
    except OAuthError as e:
        return HTMLResponse(message_page("Authorization error", e.error_description or e.error), status_code=400)
    return RedirectResponse(url=redirect_to, status_code=302)


@oauth_router.post("/oauth/token", response_model=TokenResponse, tags=["OAuth"])
async def token_endpoint(
    request: Request,
    provider: Annotated[GatewayOAuthProvider, Depends(get_oauth_provider)],
    grant_type: Annotated[Optional[str], Form()] = None,
    code: Annotated[Optional[str], Form()] = None,
    redirect_uri: Annotated[Optional[str], Form()] = None,
    client_id: Annotated[Optional[str], Form()] = None,
    client_secret: Annotated[Optional[str], Form()] = None,
    code_verifier: Annotated[Optional[str], Form()] = None,
):
    basic_id, basic_secret = _client_credentials_from_basic(request)
    if basic_id is not None:
        if client_id and client_id != basic_id:
            raise InvalidClientError("client_id does not match the Basic credentials.")
        client_id, client_secret = basic_id, basic_secret

    token_response = await provider.exchange_code(
        grant_type=grant_type,
        code=code,
        redirect_uri=redirect_uri,
        client_id=client_id,
        client_secret=client_secret,
        code_verifier=code_verifier,
    )
    return JSONResponse(
        content=token_response.model_dump(exclude_none=True),
        headers={"Cache-Control": "no-store", "Pragma": "no-cache"},
    )


@oauth_router.get(
    "/.well-known/oauth-authorization-server",
    response_model=AuthorizationServerMetadata,
    tags=["OAuth"],
)
async def authorization_server_metadata():
    base = _base_url()
    return AuthorizationServerMetadata(
        issuer=base,
        authorization_endpoint=f"{base}/oauth/authorize",
        token_endpoint=f"{base}/oauth/token",
    )


@oauth_router.get(
    "/.well-known/oauth-protected-resource",
    response_model=ProtectedResourceMetadata,
    tags=["OAuth"],
)
async def protected_resource_metadata():
    base = _base_url()
    return ProtectedResourceMetadata(resource=f"{base}/mcp", authorization_servers=[base])
