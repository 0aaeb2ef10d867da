# tests/test_upstream_connect.py
import asyncio
from urllib.parse import parse_qs, urlsplit

import httpx
import pytest
from fastapi.testclient import TestClient

from conftest import RecordingXero
from mcp_ledger.credentials.sqlite_credential_store import SQLiteCredentialStore, get_sqlite_credential_store
from mcp_ledger.credentials.models import ProviderCredential
from mcp_ledger.main import app
from mcp_ledger.upstream.adapter import UpstreamClientAdapter, get_upstream_adapter
from mcp_ledger.utils.security import FernetEncryptor, generate_fernet_key


@pytest.fixture
def xero():
    recorder = RecordingXero({
        ("POST", "/connect/token"): httpx.Response(
            200, json={"access_token": "new-access", "refresh_token": "new-refresh", "expires_in": 1800,
                       "scope": "openid accounting.transactions"},
        ),
        ("GET", "/connections"): httpx.Response(
            200, json=[{"tenantId": "tenant-9", "tenantName": "Demo Company (UK)"}]
        ),
    })

    async def adapter_override():
        return UpstreamClientAdapter(await get_sqlite_credential_store(), transport=recorder.transport)

    app.dependency_overrides[get_upstream_adapter] = adapter_override
    yield recorder
    app.dependency_overrides.pop(get_upstream_adapter, None)


def test_connect_flow_stores_the_credential(user, bearer_token, xero):
    client = TestClient(app)
    headers = {"Authorization": f"Bearer {bearer_token}"}

    response = client.get("/connect/xero", headers=headers, follow_redirects=False)
    assert response.status_code == 302
    query = parse_qs(urlsplit(response.headers["location"]).query)
    assert query["client_id"] == ["xero-test-client"]
    assert query["redirect_uri"] == ["http://testserver/connect/xero/callback"]
    state = query["state"][0]

    response = client.get("/connect/xero/callback", params={"code": "xero-code", "state": state})
    assert response.status_code == 200
    assert "Demo Company (UK)" in response.text

    status = client.get("/connect/xero/status", headers=headers).json()
    assert status["connected"] is True
    assert status["tenant_id"] == "tenant-9"
    assert status["scopes"] == ["openid", "accounting.transactions"]

    # The state is single use
    response = client.get("/connect/xero/callback", params={"code": "xero-code", "state": state})
    assert response.status_code == 400


def test_callback_reports_cancelled_consent(xero):
    client = TestClient(app)
    response = client.get("/connect/xero/callback", params={"error": "access_denied"})
    assert response.status_code == 400
    assert "access_denied" in response.text
    assert xero.requests == []


def test_disconnect_removes_the_credential(user, bearer_token, store_xero_credential, xero):
    store_xero_credential(user.user_id)
    client = TestClient(app)
    headers = {"Authorization": f"Bearer {bearer_token}"}

    assert client.post("/connect/xero/disconnect", headers=headers).json() == {"provider": "xero", "disconnected": True}
    assert client.get("/connect/xero/status", headers=headers).json()["connected"] is False


def test_credentials_are_encrypted_at_rest(user):
    key = generate_fernet_key()
    credential = ProviderCredential(
        user_id=user.user_id, access_token="secret-access", refresh_token="secret-refresh",
        expires_at="2030-01-01T00:00:00+00:00", tenant_id="tenant-1",
    )

    async def scenario():
        store = SQLiteCredentialStore(encryptor=FernetEncryptor(key))
        await store.save_credential(credential)
        raw = await store._fetchone(
            "SELECT credential_data, is_encrypted FROM provider_credentials WHERE user_id = ?", (user.user_id,)
        )
        loaded = await store.get_credential(user.user_id)
        wrong_key = await SQLiteCredentialStore(encryptor=FernetEncryptor(generate_fernet_key())).get_credential(
            user.user_id
        )
        return raw, loaded, wrong_key

    raw, loaded, wrong_key = asyncio.run(scenario())
    assert raw["is_encrypted"] == 1
    assert "secret-access" not in raw["credential_data"]
    assert loaded.refresh_token == "secret-refresh"
    assert wrong_key is None


def test_invalid_encryption_key_is_reported():
    assert FernetEncryptor("not-a-key").key_valid is False
    assert FernetEncryptor(None).encrypt("data") is None


def test_expired_connect_states_are_purged(user):
    async def scenario():
        store = await get_sqlite_credential_store()
        await store.save_connect_state("stale-state", user.user_id, "xero", ttl_seconds=-60)
        await store.save_connect_state("live-state", user.user_id, "xero", ttl_seconds=600)
        removed = await store.delete_expired_connect_states()
        return removed, await store.consume_connect_state("live-state", "xero")

    removed, live_owner = asyncio.run(scenario())
    assert removed == 1
    assert live_owner == user.user_id
