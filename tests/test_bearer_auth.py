# tests/test_bearer_auth.py
import asyncio
from datetime import datetime, timedelta, timezone

import jwt
import pytest
from fastapi.testclient import TestClient

from conftest import TEST_SECRETS
from mcp_ledger.core.errors import AuthenticationError, ConfigurationError
from mcp_ledger.credentials.models import InviteCode
from mcp_ledger.credentials.sqlite_account_store import get_sqlite_account_store
from mcp_ledger.gateway_auth.bearer import BearerTokenManager, looks_like_jwt
from mcp_ledger.gateway_auth.dependencies import get_auth_gateway
from mcp_ledger.main import app

SECRET = TEST_SECRETS["bearer_signing_secret"]


def test_token_is_valid_for_thirty_days():
    manager = BearerTokenManager(SECRET, lifetime_days=30)
    now = datetime.now(timezone.utc)

    recent = manager.issue("user-1", "owner@example.com", issued_at=now - timedelta(days=29))
    assert manager.verify(recent)["sub"] == "user-1"

    stale = manager.issue("user-1", "owner@example.com", issued_at=now - timedelta(days=31))
    with pytest.raises(AuthenticationError) as excinfo:
        manager.verify(stale)
    assert "expired" in excinfo.value.message


def test_token_signed_with_another_secret_is_rejected():
    forged = BearerTokenManager("some-other-secret-of-a-reasonable-length").issue("user-1", "x@example.com")
    with pytest.raises(AuthenticationError):
        BearerTokenManager(SECRET).verify(forged)


def test_token_of_another_type_is_rejected():
    now = datetime.now(timezone.utc)
    other = jwt.encode(
        {"sub": "user-1", "type": "refresh", "iat": int(now.timestamp()), "exp": int((now + timedelta(days=1)).timestamp())},
        SECRET,
        algorithm="HS256",
    )
    with pytest.raises(AuthenticationError):
        BearerTokenManager(SECRET).verify(other)


def test_missing_signing_secret_is_a_configuration_error():
    with pytest.raises(ConfigurationError):
        BearerTokenManager(None).issue("user-1", "x@example.com")


def test_gateway_routes_jwt_and_opaque_tokens(user, bearer_token):
    async def scenario():
        gateway = await get_auth_gateway()
        principal = await gateway.authenticate(bearer_token)
        with pytest.raises(AuthenticationError):
            await gateway.authenticate("opaque-token-nobody-issued")
        with pytest.raises(AuthenticationError):
            await gateway.authenticate("   ")
        return principal

    principal = asyncio.run(scenario())
    assert principal.user_id == user.user_id
    assert principal.auth_method == "bearer"
    assert principal.credential_fingerprint != bearer_token
    assert looks_like_jwt(bearer_token)
    assert not looks_like_jwt("opaque-token-nobody-issued")


def test_token_endpoint_issues_a_connection_url(user):
    client = TestClient(app)
    response = client.post("/auth/token", json={"email": user.email, "password": "correct horse battery"})
    assert response.status_code == 200
    body = response.json()
    assert body["user_id"] == user.user_id
    assert body["expires_in"] == 30 * 24 * 3600
    assert body["connection_url"] == f"http://testserver/mcp?token={body['access_token']}"


def test_token_endpoint_rejects_wrong_password(user):
    client = TestClient(app)
    response = client.post("/auth/token", json={"email": user.email, "password": "nope"})
    assert response.status_code == 401
    assert response.json()["detail"]["error"] == "authentication_failed"


def test_login_form_shows_connection_url(user):
    client = TestClient(app)
    assert client.get("/login").status_code == 200

    response = client.post("/login", data={"email": user.email, "password": "correct horse battery"})
    assert response.status_code == 200
    assert "http://testserver/mcp?token=" in response.text

    response = client.post("/login", data={"email": user.email, "password": "wrong password"})
    assert response.status_code == 401
    assert "incorrect" in response.text


def _create_invite(code: str, max_uses: int = 1) -> None:
    async def scenario():
        store = await get_sqlite_account_store()
        await store.create_invite(InviteCode(code=code, max_uses=max_uses))

    asyncio.run(scenario())


def test_register_redeems_an_invite_once():
    _create_invite("WELCOME-1")
    client = TestClient(app)
    payload = {"email": "New@Example.com", "password": "long enough password", "invite_code": "WELCOME-1"}

    response = client.post("/auth/register", json=payload)
    assert response.status_code == 201
    token = response.json()["access_token"]
    assert BearerTokenManager(SECRET).verify(token)["email"] == "new@example.com"

    response = client.post("/auth/register", json={**payload, "email": "second@example.com"})
    assert response.status_code == 422
    fields = [f["field"] for f in response.json()["detail"]["fields"]]
    assert fields == ["invite_code"]


def test_register_refuses_duplicate_email(user):
    _create_invite("WELCOME-2")
    client = TestClient(app)
    response = client.post(
        "/auth/register",
        json={"email": user.email, "password": "long enough password", "invite_code": "WELCOME-2"},
    )
    assert response.status_code == 422
    assert response.json()["detail"]["fields"][0]["field"] == "email"
