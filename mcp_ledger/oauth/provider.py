# mcp_ledger/oauth/provider.py
import logging
import secrets
from datetime import datetime, timedelta, timezone
from typing import Callable, List, Optional
from urllib.parse import urlencode, urlsplit, urlunsplit

from .errors import (
    InvalidClientError,
    InvalidGrantError,
    InvalidRequestError,
    ServerError,
    UnsupportedGrantTypeError,
)
from .models import FlowStatus, OAuthAuthorizationFlow, TokenResponse
from .pkce import SUPPORTED_CHALLENGE_METHODS, verify_pkce
from .storage_interfaces import AbstractAuthorizationFlowStore
from ..settings import settings
from ..utils.security import fingerprint_secret

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def append_query(uri: str, params: dict) -> str:
    """Add `params` to `uri`, keeping any query string it already has."""
    parts = list(urlsplit(uri))
    query = urlencode({k: v for k, v in params.items() if v is not None})
    parts[3] = f"{parts[3]}&{query}" if parts[3] else query
    return urlunsplit(parts)


class GatewayOAuthProvider:
    """
    Authorization server for the gateway's single pre-registered client.

    Every step is a compare-and-set on the flow's status, so a flow id can be
    used for one login and a code for one token exchange.
    """

    def __init__(
        self,
        flow_store: AbstractAuthorizationFlowStore,
        client_id: Optional[str] = None,
        client_secret: Optional[str] = None,
        redirect_uris: Optional[List[str]] = None,
        state_ttl_seconds: Optional[int] = None,
        token_lifetime_days: Optional[int] = None,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.flow_store = flow_store
        self.client_id = client_id if client_id is not None else settings.oauth_client_id
        self.client_secret = client_secret if client_secret is not None else settings.oauth_client_secret
        self.redirect_uris = redirect_uris if redirect_uris is not None else settings.registered_redirect_uris
        self.state_ttl = timedelta(
            seconds=state_ttl_seconds if state_ttl_seconds is not None else settings.oauth_state_ttl_seconds
        )
        self.token_lifetime = timedelta(
            days=token_lifetime_days if token_lifetime_days is not None else settings.oauth_access_token_lifetime_days
        )
        self.clock = clock

    def _check_client_id(self, client_id: Optional[str]) -> None:
        if not self.client_id:
            logger.error("OAuth client is not configured (OAUTH_CLIENT_ID missing).")
            raise ServerError("OAuth is not configured on this gateway.")
        if not client_id or not secrets.compare_digest(client_id.encode("utf-8"), self.client_id.encode("utf-8")):
            raise InvalidClientError("Unknown client_id.")

    async def start_authorization(
        self,
        response_type: Optional[str],
        client_id: Optional[str],
        redirect_uri: Optional[str],
        state: Optional[str] = None,
        scope: Optional[str] = None,
        code_challenge: Optional[str] = None,
        code_challenge_method: Optional[str] = None,
    ) -> OAuthAuthorizationFlow:
        """Validate an authorize request and record it in `initiated`."""
        if response_type != "code":
            raise InvalidRequestError("response_type must be 'code'.")
        self._check_client_id(client_id)
        if not redirect_uri or redirect_uri not in self.redirect_uris:
            logger.warning(f"Rejected unregistered redirect_uri '{redirect_uri}'.")
            raise InvalidRequestError("redirect_uri is not registered for this client.")
        if code_challenge:
            code_challenge_method = code_challenge_method or "S256"
            if code_challenge_method not in SUPPORTED_CHALLENGE_METHODS:
                raise InvalidRequestError("code_challenge_method must be 'S256'.")
        elif code_challenge_method:
            raise InvalidRequestError("code_challenge_method given without code_challenge.")

        now = self.clock()
        flow = OAuthAuthorizationFlow(
            client_id=client_id,
            redirect_uri=redirect_uri,
            client_state=state,
            scope=scope,
            code_challenge=code_challenge,
            code_challenge_method=code_challenge_method if code_challenge else None,
            created_at=now,
            expires_at=now + self.state_ttl,
        )
        await self.flow_store.create_flow(flow)
        logger.info(f"OAuth authorization started for client '{client_id}' (pkce={bool(code_challenge)}).")
        return flow

    async def get_pending_flow(self, flow_id: str) -> OAuthAuthorizationFlow:
        flow = await self.flow_store.get_flow(flow_id)
        if flow is None or flow.status != FlowStatus.INITIATED:
            raise InvalidRequestError("This sign-in link is invalid or was already used. Start again.")
        if flow.is_expired(self.clock()):
            raise InvalidRequestError("This sign-in link has expired. Start again.")
        return flow

    async def issue_code(self, flow_id: str, user_id: str) -> str:
        """
        Move `initiated -> code_received` for an authenticated user.

        Returns:
            The client redirect URI carrying `code` and the client's `state`.
        """
        flow = await self.get_pending_flow(flow_id)
        now = self.clock()
        updated = flow.model_copy(update={
            "status": FlowStatus.CODE_RECEIVED,
            "user_id": user_id,
            "code": secrets.token_urlsafe(32),
            "expires_at": now + self.state_ttl,
        })
        if not await self.flow_store.transition(updated, FlowStatus.INITIATED):
            raise InvalidRequestError("This sign-in link was already used. Start again.")
        logger.info(f"Issued authorization code for user {user_id}.")
        return append_query(flow.redirect_uri, {"code": updated.code, "state": flow.client_state})

    def error_redirect(self, flow: OAuthAuthorizationFlow, error: str, description: Optional[str] = None) -> str:
        return append_query(
            flow.redirect_uri,
            {"error": error, "error_description": description, "state": flow.client_state},
        )

    async def exchange_code(
        self,
        grant_type: Optional[str],
        code: Optional[str],
        redirect_uri: Optional[str],
        client_id: Optional[str],
        client_secret: Optional[str],
        code_verifier: Optional[str] = None,
    ) -> TokenResponse:
        """Move `code_received -> token_exchanged` and mint an opaque access token."""
        if grant_type != "authorization_code":
            raise UnsupportedGrantTypeError(f"Grant type '{grant_type}' is not supported.")
        if not code:
            raise InvalidRequestError("code is required.")
        self._check_client_id(client_id)
        if not self.client_secret or not client_secret or not secrets.compare_digest(
            client_secret.encode("utf-8"), self.client_secret.encode("utf-8")
        ):
            logger.warning(f"Token request with bad client secret for client '{client_id}'.")
            raise InvalidClientError()

        flow = await self.flow_store.get_flow_by_code(code)
        if flow is None or flow.status != FlowStatus.CODE_RECEIVED:
            raise InvalidGrantError("Authorization code is invalid or was already used.")
        if flow.client_id != client_id:
            raise InvalidGrantError("Authorization code was issued to another client.")
        if not redirect_uri or redirect_uri != flow.redirect_uri:
            raise InvalidGrantError("redirect_uri does not match the authorization request.")
        now = self.clock()
        if flow.is_expired(now):
            raise InvalidGrantError("Authorization code has expired.")
        if flow.code_challenge:
            if not code_verifier:
                raise InvalidGrantError("code_verifier is required.")
            if not verify_pkce(code_verifier, flow.code_challenge, flow.code_challenge_method or "S256"):
                raise InvalidGrantError("PKCE verification failed.")

        access_token = secrets.token_urlsafe(48)
        updated = flow.model_copy(update={
            "status": FlowStatus.TOKEN_EXCHANGED,
            "access_token_hash": fingerprint_secret(access_token),
            "token_expires_at": now + self.token_lifetime,
        })
        if not await self.flow_store.transition(updated, FlowStatus.CODE_RECEIVED):
            raise InvalidGrantError("Authorization code is invalid or was already used.")
        logger.info(f"Exchanged authorization code for an access token (user {flow.user_id}).")
        return TokenResponse(
            access_token=access_token,
            expires_in=int(self.token_lifetime.total_seconds()),
            scope=flow.scope,
        )

    async def resolve_access_token(self, token: str) -> Optional[OAuthAuthorizationFlow]:
        """Return the flow behind a live access token, or None."""
        flow = await self.flow_store.get_flow_by_token_hash(fingerprint_secret(token))
        if flow is None or not flow.token_valid(self.clock()):
            return None
        return flow

    async def bind_session(self, flow: OAuthAuthorizationFlow, session_id: str) -> bool:
        """
        Move `token_exchanged -> bound_to_session` on the first MCP connection.

        Later connections with the same token find the flow already bound and
        leave it unchanged.
        """
        if flow.status != FlowStatus.TOKEN_EXCHANGED:
            return False
        updated = flow.model_copy(update={"status": FlowStatus.BOUND_TO_SESSION, "session_id": session_id})
        return await self.flow_store.transition(updated, FlowStatus.TOKEN_EXCHANGED)
