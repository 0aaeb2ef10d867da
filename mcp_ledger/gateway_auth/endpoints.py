# mcp_ledger/gateway_auth/endpoints.py
import logging
from typing import Annotated

from fastapi import APIRouter, Depends, Form
from fastapi.responses import HTMLResponse

from .accounts import AccountService
from .bearer import BearerTokenManager
from .dependencies import connection_url_for, get_account_service, get_bearer_token_manager
from .models import BearerTokenResponse, LoginRequest, RegisterRequest
from .pages import connection_url_page, login_form_page
from ..core.errors import AuthenticationError
from ..settings import settings

logger = logging.getLogger(__name__)
gateway_auth_router = APIRouter()


def _token_response(token_manager: BearerTokenManager, user_id: str, email: str) -> BearerTokenResponse:
    token = token_manager.issue(user_id, email)
    return BearerTokenResponse(
        access_token=token,
        expires_in=token_manager.lifetime_seconds,
        connection_url=connection_url_for(token),
        user_id=user_id,
    )


@gateway_auth_router.get("/login", response_class=HTMLResponse, tags=["Gateway Authentication"])
async def login_page():
    return HTMLResponse(login_form_page(action="/login"))


@gateway_auth_router.post("/login", response_class=HTMLResponse, tags=["Gateway Authentication"])
async def login_submit(
    email: Annotated[str, Form()],
    password: Annotated[str, Form()],
    accounts: Annotated[AccountService, Depends(get_account_service)],
    token_manager: Annotated[BearerTokenManager, Depends(get_bearer_token_manager)],
):
    """Sign in with the HTML form and show a ready-to-use connection URL."""
    try:
        user = await accounts.authenticate(email, password)
    except AuthenticationError as e:
        return HTMLResponse(login_form_page(action="/login", error=e.message, email=email), status_code=401)

    issued = _token_response(token_manager, user.user_id, user.email)
    logger.info(f"Issued bearer token via login page for user {user.user_id}.")
    return HTMLResponse(connection_url_page(issued.connection_url, settings.bearer_token_lifetime_days))


@gateway_auth_router.post(
    "/auth/token",
    response_model=BearerTokenResponse,
    summary="Exchange email and password for a bearer session token",
    tags=["Gateway Authentication"],
)
async def issue_token(
    request_data: LoginRequest,
    accounts: Annotated[AccountService, Depends(get_account_service)],
    token_manager: Annotated[BearerTokenManager, Depends(get_bearer_token_manager)],
):
    user = await accounts.authenticate(request_data.email, request_data.password)
    logger.info(f"Issued bearer token via API for user {user.user_id}.")
    return _token_response(token_manager, user.user_id, user.email)


@gateway_auth_router.post(
    "/auth/register",
    response_model=BearerTokenResponse,
    status_code=201,
    summary="Create an account with an invite code",
    tags=["Gateway Authentication"],
)
async def register(
    request_data: RegisterRequest,
    accounts: Annotated[AccountService, Depends(get_account_service)],
    token_manager: Annotated[BearerTokenManager, Depends(get_bearer_token_manager)],
):
    """
    Redeems the invite code, creates the account and returns a bearer token so
    the new user can connect straight away.
    """
    user = await accounts.register(
        email=request_data.email,
        password=request_data.password,
        invite_code=request_data.invite_code,
        display_name=request_data.display_name,
    )
    logger.info(f"Registered new user {user.user_id}.")
    return _token_response(token_manager, user.user_id, user.email)
