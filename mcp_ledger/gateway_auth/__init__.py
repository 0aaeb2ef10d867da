# mcp_ledger/gateway_auth/__init__.py
from .models import AuthenticatedPrincipal, LoginRequest, RegisterRequest, BearerTokenResponse
from .bearer import BearerTokenManager, looks_like_jwt
from .passwords import hash_password, verify_password
from .accounts import AccountService
from .gateway import AuthGateway
from .dependencies import (
    get_bearer_token_manager,
    get_account_service,
    get_auth_gateway,
    get_current_principal,
    extract_credential,
)
from .endpoints import gateway_auth_router

__all__ = [
    "AuthenticatedPrincipal",
    "LoginRequest",
    "RegisterRequest",
    "BearerTokenResponse",
    "BearerTokenManager",
    "looks_like_jwt",
    "hash_password",
    "verify_password",
    "AccountService",
    "AuthGateway",
    "get_bearer_token_manager",
    "get_account_service",
    "get_auth_gateway",
    "get_current_principal",
    "extract_credential",
    "gateway_auth_router",
]
