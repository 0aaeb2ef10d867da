# mcp_ledger/upstream/adapter.py
import asyncio
import logging
import weakref
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Optional

import httpx

from ..core.errors import ReconnectRequiredError, UpstreamError
from ..credentials.models import ProviderCredential
from ..credentials.storage_interfaces import AbstractCredentialStore
from ..credentials.sqlite_credential_store import get_sqlite_credential_store
from ..settings import settings
from .retry import Sleep, send_with_retries
from .xero_client import XeroApiClient, extract_xero_error

logger = logging.getLogger(__name__)

PROVIDER_NAME = "xero"

Clock = Callable[[], datetime]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class UpstreamClientAdapter:
    """
    Hands out ready-to-use XeroApiClient instances for a user.

    Access tokens that expire within TOKEN_REFRESH_MARGIN_SECONDS are
    refreshed (and persisted) before the client is returned. Refreshes are
    serialized per user: concurrent callers wait on the same lock and
    re-read the credential, so a burst of calls costs one token exchange.
    """

    def __init__(
        self,
        credential_store: AbstractCredentialStore,
        *,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        sleep: Sleep = asyncio.sleep,
        clock: Clock = _utcnow,
    ):
        self.credential_store = credential_store
        self._transport = transport
        self._sleep = sleep
        self._clock = clock
        # Entries disappear once no caller holds or waits on the lock
        self._refresh_locks: "weakref.WeakValueDictionary[str, asyncio.Lock]" = weakref.WeakValueDictionary()

    def _lock_for(self, user_id: str) -> asyncio.Lock:
        lock = self._refresh_locks.get(user_id)
        if lock is None:
            lock = asyncio.Lock()
            self._refresh_locks[user_id] = lock
        return lock

    def _needs_refresh(self, credential: ProviderCredential) -> bool:
        return credential.expires_within(settings.token_refresh_margin_seconds, now=self._clock())

    async def get_client(self, user_id: str) -> XeroApiClient:
        """
        Return a client whose access token is valid for at least the refresh margin.

        Raises:
            ReconnectRequiredError: no credential on file or the refresh grant was refused
            UpstreamRetryableError: the token endpoint stayed unreachable after retries
        """
        credential = await self._load_credential(user_id)
        if self._needs_refresh(credential):
            async with self._lock_for(user_id):
                # Another caller may have refreshed while we waited
                credential = await self._load_credential(user_id)
                if self._needs_refresh(credential):
                    credential = await self._refresh(credential)

        if not credential.tenant_id:
            raise ReconnectRequiredError("Your Xero connection has no organisation selected.")
        return XeroApiClient(
            credential.access_token,
            credential.tenant_id,
            transport=self._transport,
            sleep=self._sleep,
        )

    async def _load_credential(self, user_id: str) -> ProviderCredential:
        credential = await self.credential_store.get_credential(user_id, PROVIDER_NAME)
        if credential is None:
            raise ReconnectRequiredError("Xero is not connected for your account.")
        return credential

    async def _post_token_endpoint(self, data: Dict[str, str], description: str) -> httpx.Response:
        async with httpx.AsyncClient(
            transport=self._transport, timeout=settings.upstream_timeout_seconds
        ) as http:
            async def send() -> httpx.Response:
                return await http.post(
                    settings.xero_token_url,
                    data=data,
                    auth=(settings.xero_client_id or "", settings.xero_client_secret or ""),
                    headers={"Accept": "application/json"},
                )

            return await send_with_retries(
                send,
                description=description,
                max_retries=settings.upstream_max_retries,
                backoff_base=settings.upstream_backoff_base_seconds,
                sleep=self._sleep,
            )

    def _apply_token_response(self, credential: ProviderCredential, payload: Dict[str, Any]) -> ProviderCredential:
        expires_in = int(payload.get("expires_in", 1800))
        updates: Dict[str, Any] = {
            "access_token": payload["access_token"],
            "token_type": payload.get("token_type", "Bearer"),
            "expires_at": self._clock() + timedelta(seconds=expires_in),
            # Xero rotates refresh tokens; keep the old one if none came back
            "refresh_token": payload.get("refresh_token") or credential.refresh_token,
        }
        if payload.get("scope"):
            updates["scopes"] = payload["scope"].split()
        return credential.model_copy(update=updates)

    async def _refresh(self, credential: ProviderCredential) -> ProviderCredential:
        if not credential.refresh_token:
            raise ReconnectRequiredError("Your Xero session expired and cannot be renewed.")

        logger.info(f"Refreshing Xero access token for user {credential.user_id}.")
        response = await self._post_token_endpoint(
            {"grant_type": "refresh_token", "refresh_token": credential.refresh_token},
            description="Xero token refresh",
        )
        if response.status_code >= 400:
            logger.warning(
                f"Xero token refresh for user {credential.user_id} refused: "
                f"HTTP {response.status_code} {extract_xero_error(response)}"
            )
            raise ReconnectRequiredError("Xero refused to renew your connection.")

        refreshed = self._apply_token_response(credential, response.json())
        await self.credential_store.save_credential(refreshed)
        logger.info(f"Xero token refreshed for user {credential.user_id}; new expiry {refreshed.expires_at.isoformat()}.")
        return refreshed

    async def exchange_authorization_code(self, user_id: str, code: str, redirect_uri: str) -> ProviderCredential:
        """Complete the connect flow: swap the code for tokens and pick the first organisation."""
        response = await self._post_token_endpoint(
            {"grant_type": "authorization_code", "code": code, "redirect_uri": redirect_uri},
            description="Xero code exchange",
        )
        if response.status_code >= 400:
            raise UpstreamError(
                f"Xero did not accept the authorization code: {extract_xero_error(response)}",
                status_code=400,
                action="Start the Xero connection again.",
            )
        placeholder = ProviderCredential(
            user_id=user_id, provider=PROVIDER_NAME, access_token="", expires_at=self._clock()
        )
        credential = self._apply_token_response(placeholder, response.json())

        connections = await self._fetch_connections(credential.access_token)
        if not connections:
            raise UpstreamError(
                "No Xero organisation was authorised for this connection.",
                status_code=400,
                action="Select an organisation when connecting Xero.",
            )
        tenant = connections[0]
        credential = credential.model_copy(
            update={"tenant_id": tenant.get("tenantId"), "tenant_name": tenant.get("tenantName")}
        )
        await self.credential_store.save_credential(credential)
        logger.info(f"Stored Xero credential for user {user_id}, tenant '{credential.tenant_name}'.")
        return credential

    async def _fetch_connections(self, access_token: str) -> list:
        async with httpx.AsyncClient(
            transport=self._transport, timeout=settings.upstream_timeout_seconds
        ) as http:
            async def send() -> httpx.Response:
                return await http.get(
                    settings.xero_connections_url,
                    headers={"Authorization": f"Bearer {access_token}", "Accept": "application/json"},
                )

            response = await send_with_retries(
                send,
                description="Xero connections lookup",
                max_retries=settings.upstream_max_retries,
                backoff_base=settings.upstream_backoff_base_seconds,
                sleep=self._sleep,
            )
        if response.status_code >= 400:
            raise UpstreamError(f"Could not list Xero organisations: {extract_xero_error(response)}")
        return response.json()

    async def disconnect(self, user_id: str) -> bool:
        # Waits out an in-flight refresh so it cannot re-save the credential
        async with self._lock_for(user_id):
            return await self.credential_store.delete_credential(user_id, PROVIDER_NAME)


_upstream_adapter_instance: Optional[UpstreamClientAdapter] = None


async def get_upstream_adapter() -> UpstreamClientAdapter:
    """Process-wide adapter, so the per-user refresh locks are shared by every request."""
    global _upstream_adapter_instance
    if _upstream_adapter_instance is None:
        _upstream_adapter_instance = UpstreamClientAdapter(await get_sqlite_credential_store())
    return _upstream_adapter_instance
