# mcp_ledger/oauth/__init__.py
# The router lives in .endpoints and is imported by main.py directly, since it
# depends on gateway_auth which in turn depends on this package.
from .errors import (
    OAuthError,
    InvalidRequestError,
    InvalidClientError,
    InvalidGrantError,
    UnsupportedGrantTypeError,
    ServerError,
)
from .models import FlowStatus, OAuthAuthorizationFlow, TokenResponse
from .pkce import generate_pkce_code_verifier, generate_pkce_code_challenge, verify_pkce
from .storage_interfaces import AbstractAuthorizationFlowStore
from .sqlite_flow_store import SQLiteAuthorizationFlowStore, get_sqlite_flow_store
from .provider import GatewayOAuthProvider

__all__ = [
    "OAuthError",
    "InvalidRequestError",
    "InvalidClientError",
    "InvalidGrantError",
    "UnsupportedGrantTypeError",
    "ServerError",
    "FlowStatus",
    "OAuthAuthorizationFlow",
    "TokenResponse",
    "generate_pkce_code_verifier",
    "generate_pkce_code_challenge",
    "verify_pkce",
    "AbstractAuthorizationFlowStore",
    "SQLiteAuthorizationFlowStore",
    "get_sqlite_flow_store",
    "GatewayOAuthProvider",
]
