# tests/test_oauth_flow.py
import asyncio
import base64
import re
from datetime import datetime, timedelta, timezone
from urllib.parse import parse_qs, urlsplit

from fastapi.testclient import TestClient

from conftest import OAUTH_REDIRECT_URI, TEST_SECRETS
from mcp_ledger.gateway_auth.dependencies import get_auth_gateway, get_oauth_provider
from mcp_ledger.main import app
from mcp_ledger.oauth.models import FlowStatus, OAuthAuthorizationFlow
from mcp_ledger.oauth.pkce import generate_pkce_code_challenge, generate_pkce_code_verifier, verify_pkce
from mcp_ledger.oauth.provider import GatewayOAuthProvider, append_query
from mcp_ledger.oauth.sqlite_flow_store import get_sqlite_flow_store

CLIENT_ID = TEST_SECRETS["oauth_client_id"]
CLIENT_SECRET = TEST_SECRETS["oauth_client_secret"]
FLOW_ID_PATTERN = re.compile(r'name="flow_id" value="([^"]+)"')


def _authorize_params(**overrides):
    params = {
        "response_type": "code",
        "client_id": CLIENT_ID,
        "redirect_uri": OAUTH_REDIRECT_URI,
        "state": "client-state-123",
    }
    params.update(overrides)
    return params


def _sign_in(client: TestClient, user, **authorize_overrides):
    """Run the authorize form and return the query of the redirect back to the client."""
    page = client.get("/oauth/authorize", params=_authorize_params(**authorize_overrides))
    assert page.status_code == 200
    flow_id = FLOW_ID_PATTERN.search(page.text).group(1)
    response = client.post(
        "/oauth/authorize",
        data={"flow_id": flow_id, "email": user.email, "password": "correct horse battery"},
        follow_redirects=False,
    )
    assert response.status_code == 302
    location = response.headers["location"]
    assert location.startswith(OAUTH_REDIRECT_URI)
    return parse_qs(urlsplit(location).query)


def _token_request(client: TestClient, code: str, **overrides):
    data = {
        "grant_type": "authorization_code",
        "code": code,
        "redirect_uri": OAUTH_REDIRECT_URI,
        "client_id": CLIENT_ID,
        "client_secret": CLIENT_SECRET,
    }
    data.update(overrides)
    return client.post("/oauth/token", data={k: v for k, v in data.items() if v is not None})


def test_full_authorization_code_flow_with_pkce(user):
    client = TestClient(app)
    verifier = generate_pkce_code_verifier()
    query = _sign_in(
        client, user, code_challenge=generate_pkce_code_challenge(verifier), code_challenge_method="S256"
    )
    assert query["state"] == ["client-state-123"]

    response = _token_request(client, query["code"][0], code_verifier=verifier)
    assert response.status_code == 200
    assert response.headers["cache-control"] == "no-store"
    token = response.json()
    assert token["token_type"] == "Bearer"
    assert token["expires_in"] == 30 * 24 * 3600

    async def connect():
        gateway = await get_auth_gateway()
        principal = await gateway.authenticate(token["access_token"])
        await gateway.on_session_bound(principal, "session-1")
        # A second connection with the same token leaves the binding alone
        await gateway.on_session_bound(principal, "session-2")
        store = await get_sqlite_flow_store()
        return principal, await store.get_flow(principal.grant_id)

    principal, flow = asyncio.run(connect())
    assert principal.user_id == user.user_id
    assert principal.auth_method == "oauth"
    assert flow.status == FlowStatus.BOUND_TO_SESSION
    assert flow.session_id == "session-1"
    assert flow.access_token_hash != token["access_token"]


def test_code_cannot_be_exchanged_twice(user):
    client = TestClient(app)
    code = _sign_in(client, user)["code"][0]
    assert _token_request(client, code).status_code == 200

    response = _token_request(client, code)
    assert response.status_code == 400
    assert response.json()["error"] == "invalid_grant"


def test_pkce_mismatch_is_rejected(user):
    client = TestClient(app)
    challenge = generate_pkce_code_challenge(generate_pkce_code_verifier())
    code = _sign_in(client, user, code_challenge=challenge)["code"][0]

    response = _token_request(client, code, code_verifier=generate_pkce_code_verifier())
    assert response.status_code == 400
    assert response.json() == {"error": "invalid_grant", "error_description": "PKCE verification failed."}


def test_token_redirect_uri_must_match(user):
    client = TestClient(app)
    code = _sign_in(client, user)["code"][0]
    response = _token_request(client, code, redirect_uri="http://localhost:9999/elsewhere")
    assert response.status_code == 400
    assert response.json()["error"] == "invalid_grant"


def test_client_secret_via_basic_auth(user):
    client = TestClient(app)
    code = _sign_in(client, user)["code"][0]
    basic = base64.b64encode(f"{CLIENT_ID}:{CLIENT_SECRET}".encode()).decode()
    response = client.post(
        "/oauth/token",
        data={"grant_type": "authorization_code", "code": code, "redirect_uri": OAUTH_REDIRECT_URI},
        headers={"Authorization": f"Basic {basic}"},
    )
    assert response.status_code == 200


def test_wrong_client_secret_is_invalid_client(user):
    client = TestClient(app)
    code = _sign_in(client, user)["code"][0]
    response = _token_request(client, code, client_secret="wrong")
    assert response.status_code == 401
    assert response.json()["error"] == "invalid_client"


def test_non_ascii_client_id_is_invalid_client(user):
    client = TestClient(app)
    code = _sign_in(client, user)["code"][0]
    response = _token_request(client, code, client_id="cl\u00efent")
    assert response.status_code == 401
    assert response.json()["error"] == "invalid_client"


def test_unsupported_grant_type():
    client = TestClient(app)
    response = _token_request(client, "anything", grant_type="password")
    assert response.status_code == 400
    assert response.json()["error"] == "unsupported_grant_type"


def test_unregistered_redirect_uri_is_not_followed():
    client = TestClient(app)
    response = client.get(
        "/oauth/authorize", params=_authorize_params(redirect_uri="https://evil.example/cb"), follow_redirects=False
    )
    assert response.status_code == 400
    assert "not registered" in response.text


def test_failed_login_keeps_the_flow_open(user):
    client = TestClient(app)
    page = client.get("/oauth/authorize", params=_authorize_params())
    flow_id = FLOW_ID_PATTERN.search(page.text).group(1)

    response = client.post(
        "/oauth/authorize", data={"flow_id": flow_id, "email": user.email, "password": "wrong"}, follow_redirects=False
    )
    assert response.status_code == 401
    assert flow_id in response.text

    response = client.post(
        "/oauth/authorize",
        data={"flow_id": flow_id, "email": user.email, "password": "correct horse battery"},
        follow_redirects=False,
    )
    assert response.status_code == 302

    # The flow id is single use
    response = client.post(
        "/oauth/authorize",
        data={"flow_id": flow_id, "email": user.email, "password": "correct horse battery"},
        follow_redirects=False,
    )
    assert response.status_code == 400


def test_expired_access_token_is_not_resolved(user):
    clock_now = [datetime.now(timezone.utc)]

    async def scenario():
        provider = GatewayOAuthProvider(flow_store=await get_sqlite_flow_store(), clock=lambda: clock_now[0])
        flow = await provider.start_authorization("code", CLIENT_ID, OAUTH_REDIRECT_URI)
        redirect = await provider.issue_code(flow.flow_id, user.user_id)
        code = parse_qs(urlsplit(redirect).query)["code"][0]
        token = await provider.exchange_code("authorization_code", code, OAUTH_REDIRECT_URI, CLIENT_ID, CLIENT_SECRET)
        live = await provider.resolve_access_token(token.access_token)
        clock_now[0] += timedelta(days=31)
        expired = await provider.resolve_access_token(token.access_token)
        return live, expired

    live, expired = asyncio.run(scenario())
    assert live is not None
    assert expired is None


def test_metadata_documents():
    client = TestClient(app)
    server = client.get("/.well-known/oauth-authorization-server").json()
    assert server["issuer"] == "http://testserver"
    assert server["token_endpoint"] == "http://testserver/oauth/token"
    assert server["code_challenge_methods_supported"] == ["S256"]

    resource = client.get("/.well-known/oauth-protected-resource").json()
    assert resource["resource"] == "http://testserver/mcp"
    assert resource["authorization_servers"] == ["http://testserver"]


def test_pkce_and_redirect_helpers():
    verifier = generate_pkce_code_verifier()
    assert verify_pkce(verifier, generate_pkce_code_challenge(verifier))
    assert not verify_pkce("short", generate_pkce_code_challenge("short"))
    assert not verify_pkce(generate_pkce_code_verifier(), "d\u00e9fi")
    assert append_query("http://localhost/cb?x=1", {"code": "abc", "state": None}) == "http://localhost/cb?x=1&code=abc"


def test_oauth_provider_dependency_uses_settings():
    provider = asyncio.run(get_oauth_provider())
    assert provider.client_id == CLIENT_ID
    assert provider.redirect_uris == [OAUTH_REDIRECT_URI]


def test_expired_flows_are_purged():
    async def scenario():
        store = await get_sqlite_flow_store()
        now = datetime.now(timezone.utc)
        stale = OAuthAuthorizationFlow(
            client_id=CLIENT_ID, redirect_uri=OAUTH_REDIRECT_URI, expires_at=now - timedelta(minutes=1)
        )
        pending = OAuthAuthorizationFlow(
            client_id=CLIENT_ID, redirect_uri=OAUTH_REDIRECT_URI, expires_at=now + timedelta(minutes=10)
        )
        await store.create_flow(stale)
        await store.create_flow(pending)
        removed = await store.delete_expired()
        return removed, await store.get_flow(stale.flow_id), await store.get_flow(pending.flow_id)

    removed, stale, pending = asyncio.run(scenario())
    assert removed == 1
    assert stale is None
    assert pending is not None
