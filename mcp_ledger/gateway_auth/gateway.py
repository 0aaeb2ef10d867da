# mcp_ledger/gateway_auth/gateway.py
import logging
from typing import Optional

from ..core.errors import AuthenticationError
from ..oauth.provider import GatewayOAuthProvider
from ..utils.security import fingerprint_secret
from .bearer import SIGN_IN_ACTION, BearerTokenManager, looks_like_jwt
from .models import AuthenticatedPrincipal

logger = logging.getLogger(__name__)


class AuthGateway:
    """
    Turns a raw connection credential into an AuthenticatedPrincipal.

    JWT-shaped tokens go to the bearer verifier, anything else is looked up as
    an OAuth access token. Neither path falls back to the other.
    """

    def __init__(self, bearer_manager: BearerTokenManager, oauth_provider: GatewayOAuthProvider):
        self.bearer_manager = bearer_manager
        self.oauth_provider = oauth_provider

    async def authenticate(self, token: Optional[str]) -> AuthenticatedPrincipal:
        if not token or not token.strip():
            raise AuthenticationError(
                "No credential was supplied.",
                action="Send 'Authorization: Bearer <token>' or use the connection URL from /login.",
            )
        token = token.strip()
        fingerprint = fingerprint_secret(token)

        if looks_like_jwt(token):
            claims = self.bearer_manager.verify(token)
            return AuthenticatedPrincipal(
                user_id=claims["sub"],
                auth_method="bearer",
                credential_fingerprint=fingerprint,
                email=claims.get("email"),
            )

        flow = await self.oauth_provider.resolve_access_token(token)
        if flow is None or not flow.user_id:
            logger.info("Rejected unknown or expired OAuth access token.")
            raise AuthenticationError("The access token is not valid or has expired.", action=SIGN_IN_ACTION)
        return AuthenticatedPrincipal(
            user_id=flow.user_id,
            auth_method="oauth",
            credential_fingerprint=fingerprint,
            grant_id=flow.flow_id,
        )

    async def on_session_bound(self, principal: AuthenticatedPrincipal, session_id: str) -> None:
        """Record the first session an OAuth token was used for."""
        if principal.auth_method != "oauth" or not principal.grant_id:
            return
        flow = await self.oauth_provider.flow_store.get_flow(principal.grant_id)
        if flow is not None and await self.oauth_provider.bind_session(flow, session_id):
            logger.info(f"OAuth grant for user {principal.user_id} bound to session {session_id}.")
