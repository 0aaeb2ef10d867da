# tests/conftest.py
import asyncio
import uuid
from datetime import datetime, timedelta, timezone

import httpx
import pytest

from mcp_ledger.credentials import sqlite_account_store, sqlite_credential_store
from mcp_ledger.credentials.models import AppUser, ProviderCredential
from mcp_ledger.gateway_auth.passwords import hash_password
from mcp_ledger.memory import sqlite_memory_store
from mcp_ledger.oauth import sqlite_flow_store
from mcp_ledger.permissions import sqlite_permission_store
from mcp_ledger.settings import settings
from mcp_ledger.storage.sqlite_base import close_sqlite_db_connection
from mcp_ledger.upstream import adapter as adapter_module

TEST_SECRETS = {
    "xero_client_id": "xero-test-client",
    "xero_client_secret": "xero-test-secret",
    "bearer_signing_secret": "test-signing-secret-that-is-long-enough-for-hs256",
    "oauth_client_id": "ledger-test-client",
    "oauth_client_secret": "ledger-test-client-secret",
    "admin_api_key": "test-admin-key",
}
OAUTH_REDIRECT_URI = "http://localhost:8080/callback"
XERO_TOKEN_URL = "https://identity.xero.test/connect/token"
XERO_API_BASE = "https://api.xero.test/api.xro/2.0"


@pytest.fixture(autouse=True)
def isolated_settings(tmp_path, monkeypatch):
    """Fresh SQLite file, known secrets and no leftover singletons for every test."""
    monkeypatch.setattr(settings, "sqlite_db_path", str(tmp_path / "ledger.sqlite3"))
    for name, value in TEST_SECRETS.items():
        monkeypatch.setattr(settings, name, value)
    monkeypatch.setattr(settings, "public_base_url", "http://testserver")
    monkeypatch.setattr(settings, "oauth_redirect_uris", OAUTH_REDIRECT_URI)
    monkeypatch.setattr(settings, "session_backend", "memory")
    monkeypatch.setattr(settings, "credential_encryption_key", None)
    monkeypatch.setattr(settings, "xero_token_url", XERO_TOKEN_URL)
    monkeypatch.setattr(settings, "xero_api_base_url", XERO_API_BASE)
    monkeypatch.setattr(settings, "upstream_backoff_base_seconds", 0.0)

    monkeypatch.setattr(sqlite_account_store, "_sqlite_account_store_instance", None)
    monkeypatch.setattr(sqlite_credential_store, "_sqlite_credential_store_instance", None)
    monkeypatch.setattr(sqlite_flow_store, "_sqlite_flow_store_instance", None)
    monkeypatch.setattr(sqlite_permission_store, "_sqlite_permission_store_instance", None)
    monkeypatch.setattr(sqlite_permission_store, "_sqlite_snapshot_store_instance", None)
    monkeypatch.setattr(sqlite_memory_store, "_sqlite_memory_store_instance", None)
    monkeypatch.setattr(adapter_module, "_upstream_adapter_instance", None)

    asyncio.run(close_sqlite_db_connection())
    yield settings
    asyncio.run(close_sqlite_db_connection())


def create_user(email: str = "owner@example.com", password: str = "correct horse battery", level: int = 0) -> AppUser:
    """Insert a user directly and give it a permission level."""

    async def _create() -> AppUser:
        accounts = await sqlite_account_store.get_sqlite_account_store()
        user = await accounts.create_user(
            AppUser(user_id=str(uuid.uuid4()), email=email, password_hash=hash_password(password))
        )
        permissions = await sqlite_permission_store.get_sqlite_permission_store()
        await permissions.set_level(user.user_id, level)
        return user

    return asyncio.run(_create())


def save_xero_credential(user_id: str, expires_in: timedelta = timedelta(minutes=30), **overrides) -> ProviderCredential:
    values = {
        "user_id": user_id,
        "access_token": "xero-access-token",
        "refresh_token": "xero-refresh-token",
        "expires_at": datetime.now(timezone.utc) + expires_in,
        "tenant_id": "tenant-1",
        "tenant_name": "Demo Company",
    }
    values.update(overrides)
    credential = ProviderCredential(**values)

    async def _save() -> None:
        store = await sqlite_credential_store.get_sqlite_credential_store()
        await store.save_credential(credential)

    asyncio.run(_save())
    return credential


class RecordingXero:
    """httpx.MockTransport handler that records requests and answers from a route table."""

    def __init__(self, routes=None):
        self.routes = dict(routes or {})
        self.requests = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        key = (request.method, request.url.path)
        responder = self.routes.get(key)
        if responder is None:
            return httpx.Response(404, json={"Message": f"No route for {key}"})
        if callable(responder):
            return responder(request)
        return responder

    def calls(self, method: str, path: str):
        return [r for r in self.requests if r.method == method and r.url.path == path]

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self)


@pytest.fixture
def user():
    return create_user()


@pytest.fixture
def bearer_token(user):
    from mcp_ledger.gateway_auth.dependencies import get_bearer_token_manager
    return get_bearer_token_manager().issue(user.user_id, user.email)


@pytest.fixture
def make_user():
    return create_user


@pytest.fixture
def store_xero_credential():
    return save_xero_credential
