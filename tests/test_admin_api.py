# tests/test_admin_api.py
import asyncio
from datetime import datetime, timedelta, timezone

import pytest
from fastapi.testclient import TestClient

from mcp_ledger.core.errors import AuthorizationError
from mcp_ledger.main import app
from mcp_ledger.permissions.service import get_permission_service

ADMIN_HEADERS = {"X-Admin-API-Key": "test-admin-key"}


@pytest.fixture
def client():
    return TestClient(app)


def test_admin_routes_require_the_key(client):
    response = client.get("/admin/users")
    assert response.status_code == 401

    response = client.get("/admin/users", headers={"X-Admin-API-Key": "not-the-key"})
    assert response.status_code == 403


def test_admin_routes_disabled_without_configured_key(client, monkeypatch):
    from mcp_ledger.settings import settings
    monkeypatch.setattr(settings, "admin_api_key", None)
    response = client.get("/admin/users", headers=ADMIN_HEADERS)
    assert response.status_code == 503


def test_create_and_list_invites(client):
    response = client.post("/admin/invites", json={"max_uses": 3, "expires_in_days": 7}, headers=ADMIN_HEADERS)
    assert response.status_code == 201
    invite = response.json()
    assert invite["max_uses"] == 3
    assert invite["use_count"] == 0
    assert invite["expires_at"] is not None

    listed = client.get("/admin/invites", headers=ADMIN_HEADERS).json()
    assert [i["code"] for i in listed] == [invite["code"]]


def test_list_users_hides_password_hashes(client, user):
    users = client.get("/admin/users", headers=ADMIN_HEADERS).json()
    assert [u["email"] for u in users] == [user.email]
    assert "password_hash" not in users[0]


def test_permission_level_and_overrides(client, user):
    base = f"/admin/permissions/{user.user_id}"

    view = client.get(base, headers=ADMIN_HEADERS).json()
    assert view["permission_level"] == 0
    assert view["level_name"] == "Read-only"

    view = client.put(f"{base}/level", json={"permission_level": 3}, headers=ADMIN_HEADERS).json()
    assert view["permission_level"] == 3

    response = client.put(
        f"{base}/overrides", json={"capability_group": "invoices", "permission_level": 1}, headers=ADMIN_HEADERS
    )
    assert response.json()["overrides"] == {"invoices": 1}

    async def effective():
        service = await get_permission_service()
        return (
            await service.get_effective_level(user.user_id, "invoices"),
            await service.get_effective_level(user.user_id, "contacts"),
        )

    assert asyncio.run(effective()) == (1, 3)

    response = client.delete(f"{base}/overrides/invoices", headers=ADMIN_HEADERS)
    assert response.json()["overrides"] == {}
    response = client.delete(f"{base}/overrides/invoices", headers=ADMIN_HEADERS)
    assert response.status_code == 404


def test_invalid_level_is_rejected(client, user):
    response = client.put(
        f"/admin/permissions/{user.user_id}/level", json={"permission_level": 7}, headers=ADMIN_HEADERS
    )
    assert response.status_code == 422


def test_unknown_user_is_not_found(client):
    response = client.get("/admin/permissions/nobody", headers=ADMIN_HEADERS)
    assert response.status_code == 404
    assert response.json()["detail"]["error"] == "not_found"


def test_vacation_mode_round_trip(client, user):
    until = (datetime.now(timezone.utc) + timedelta(days=5)).isoformat()
    view = client.put(
        f"/admin/permissions/{user.user_id}/vacation", json={"until": until}, headers=ADMIN_HEADERS
    ).json()
    assert view["vacation_active"] is True

    view = client.put(
        f"/admin/permissions/{user.user_id}/vacation", json={"until": None}, headers=ADMIN_HEADERS
    ).json()
    assert view["vacation_active"] is False
    assert view["vacation_mode_until"] is None


def test_snapshots_are_listed_newest_first(client, make_user):
    user = make_user(level=0)

    async def denied_calls():
        service = await get_permission_service()
        for name in ("approve_invoice", "void_invoice"):
            with pytest.raises(AuthorizationError):
                await service.run_audited(
                    user_id=user.user_id,
                    operation_name=name,
                    capability_group="invoices",
                    required_level=2,
                    entity_type="invoice",
                    arguments={"invoice_id": "inv-1"},
                    validate=lambda args: args,
                    execute=lambda args: asyncio.sleep(0),
                )

    asyncio.run(denied_calls())
    response = client.get(f"/admin/snapshots/{user.user_id}", params={"limit": 10}, headers=ADMIN_HEADERS)
    assert response.status_code == 200
    snapshots = response.json()
    assert [s["operation_name"] for s in snapshots] == ["void_invoice", "approve_invoice"]
    assert {s["status"] for s in snapshots} == {"cancelled"}
