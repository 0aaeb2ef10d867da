# tests/test_upstream_adapter.py
import asyncio
from datetime import timedelta

import httpx
import pytest

from conftest import RecordingXero
from mcp_ledger.core.errors import ReconnectRequiredError, UpstreamRetryableError
from mcp_ledger.credentials.sqlite_credential_store import get_sqlite_credential_store
from mcp_ledger.upstream.adapter import UpstreamClientAdapter
from mcp_ledger.upstream.xero_client import XeroApiClient, extract_xero_error

TOKEN_PATH = "/connect/token"
API = "/api.xro/2.0"


def _token_reply(access_token: str = "fresh-access-token", refresh_token: str = "rotated-refresh-token"):
    return httpx.Response(
        200,
        json={
            "access_token": access_token,
            "refresh_token": refresh_token,
            "expires_in": 1800,
            "token_type": "Bearer",
        },
    )


async def _adapter(xero: RecordingXero, sleeps=None) -> UpstreamClientAdapter:
    async def record_sleep(delay: float) -> None:
        if sleeps is not None:
            sleeps.append(delay)

    return UpstreamClientAdapter(await get_sqlite_credential_store(), transport=xero.transport, sleep=record_sleep)


def test_fresh_credential_is_used_without_refresh(user, store_xero_credential):
    store_xero_credential(user.user_id, expires_in=timedelta(minutes=30))
    xero = RecordingXero()

    async def scenario():
        adapter = await _adapter(xero)
        return await adapter.get_client(user.user_id)

    client = asyncio.run(scenario())
    assert client.access_token == "xero-access-token"
    assert client.tenant_id == "tenant-1"
    assert xero.requests == []


def test_credential_near_expiry_is_refreshed_and_persisted(user, store_xero_credential):
    store_xero_credential(user.user_id, expires_in=timedelta(minutes=2))
    xero = RecordingXero({("POST", TOKEN_PATH): _token_reply()})

    async def scenario():
        adapter = await _adapter(xero)
        first = await adapter.get_client(user.user_id)
        second = await adapter.get_client(user.user_id)
        stored = await adapter.credential_store.get_credential(user.user_id, "xero")
        return first, second, stored

    first, second, stored = asyncio.run(scenario())
    assert first.access_token == "fresh-access-token"
    assert second.access_token == "fresh-access-token"
    assert stored.refresh_token == "rotated-refresh-token"
    assert len(xero.calls("POST", TOKEN_PATH)) == 1
    body = xero.requests[0].content.decode()
    assert "grant_type=refresh_token" in body
    assert "refresh_token=xero-refresh-token" in body


def test_concurrent_callers_share_one_refresh(user, store_xero_credential):
    store_xero_credential(user.user_id, expires_in=timedelta(seconds=30))

    async def slow_token_endpoint(request):
        # Yield mid-exchange so the other callers reach the adapter while this refresh is in flight
        await asyncio.sleep(0.05)
        return _token_reply()

    xero = RecordingXero({("POST", TOKEN_PATH): slow_token_endpoint})

    async def scenario():
        adapter = await _adapter(xero)
        return await asyncio.gather(*(adapter.get_client(user.user_id) for _ in range(5)))

    clients = asyncio.run(scenario())
    assert {c.access_token for c in clients} == {"fresh-access-token"}
    assert len(xero.calls("POST", TOKEN_PATH)) == 1


def test_refresh_locks_are_released_once_idle(user, store_xero_credential):
    store_xero_credential(user.user_id, expires_in=timedelta(seconds=30))
    xero = RecordingXero({("POST", TOKEN_PATH): _token_reply()})

    async def scenario():
        adapter = await _adapter(xero)
        await adapter.get_client(user.user_id)
        return len(adapter._refresh_locks)

    assert asyncio.run(scenario()) == 0


def test_disconnect_waits_for_an_in_flight_refresh(user, store_xero_credential):
    store_xero_credential(user.user_id, expires_in=timedelta(seconds=30))

    async def slow_token_endpoint(request):
        await asyncio.sleep(0.2)
        return _token_reply()

    xero = RecordingXero({("POST", TOKEN_PATH): slow_token_endpoint})

    async def scenario():
        adapter = await _adapter(xero)
        refreshing = asyncio.create_task(adapter.get_client(user.user_id))
        await asyncio.sleep(0.05)
        removed = await adapter.disconnect(user.user_id)
        await refreshing
        return removed, await adapter.credential_store.get_credential(user.user_id, "xero")

    removed, stored = asyncio.run(scenario())
    assert removed is True
    assert stored is None


def test_refresh_keeps_old_refresh_token_when_none_returned(user, store_xero_credential):
    store_xero_credential(user.user_id, expires_in=timedelta(minutes=1))
    xero = RecordingXero({
        ("POST", TOKEN_PATH): httpx.Response(200, json={"access_token": "fresh", "expires_in": 1800}),
    })

    async def scenario():
        adapter = await _adapter(xero)
        await adapter.get_client(user.user_id)
        return await adapter.credential_store.get_credential(user.user_id, "xero")

    stored = asyncio.run(scenario())
    assert stored.access_token == "fresh"
    assert stored.refresh_token == "xero-refresh-token"


def test_missing_credential_requires_reconnect(user):
    async def scenario():
        adapter = await _adapter(RecordingXero())
        await adapter.get_client(user.user_id)

    with pytest.raises(ReconnectRequiredError) as excinfo:
        asyncio.run(scenario())
    assert excinfo.value.detail["error"] == "reconnect_required"


def test_refused_refresh_requires_reconnect(user, store_xero_credential):
    store_xero_credential(user.user_id, expires_in=timedelta(minutes=-5))
    xero = RecordingXero({("POST", TOKEN_PATH): httpx.Response(400, json={"error": "invalid_grant"})})

    async def scenario():
        adapter = await _adapter(xero)
        await adapter.get_client(user.user_id)

    with pytest.raises(ReconnectRequiredError):
        asyncio.run(scenario())
    # Refused grants are not retried
    assert len(xero.calls("POST", TOKEN_PATH)) == 1


def test_credential_without_refresh_token_requires_reconnect(user, store_xero_credential):
    store_xero_credential(user.user_id, expires_in=timedelta(minutes=-5), refresh_token=None)

    async def scenario():
        adapter = await _adapter(RecordingXero())
        await adapter.get_client(user.user_id)

    with pytest.raises(ReconnectRequiredError):
        asyncio.run(scenario())


def test_transient_failures_are_retried_with_backoff():
    replies = [httpx.Response(503), httpx.Response(503), httpx.Response(200, json={"Invoices": []})]
    xero = RecordingXero({("GET", f"{API}/Invoices"): lambda request: replies.pop(0)})
    sleeps = []

    async def record_sleep(delay: float) -> None:
        sleeps.append(delay)

    async def scenario():
        client = XeroApiClient("tok", "tenant-1", transport=xero.transport, sleep=record_sleep)
        return await client.get_invoices()

    assert asyncio.run(scenario()) == []
    assert len(xero.requests) == 3
    assert len(sleeps) == 2


def test_retry_after_header_sets_the_delay():
    replies = [httpx.Response(429, headers={"Retry-After": "7"}), httpx.Response(200, json={"Contacts": []})]
    xero = RecordingXero({("GET", f"{API}/Contacts"): lambda request: replies.pop(0)})
    sleeps = []

    async def record_sleep(delay: float) -> None:
        sleeps.append(delay)

    async def scenario():
        client = XeroApiClient("tok", "tenant-1", transport=xero.transport, sleep=record_sleep)
        return await client.get_contacts()

    assert asyncio.run(scenario()) == []
    assert sleeps == [7.0]


def test_persistent_failure_is_reported_as_retryable():
    xero = RecordingXero({("GET", f"{API}/Organisation"): httpx.Response(502)})

    async def scenario():
        client = XeroApiClient("tok", "tenant-1", transport=xero.transport, sleep=lambda _: asyncio.sleep(0))
        await client.get_organisation()

    with pytest.raises(UpstreamRetryableError) as excinfo:
        asyncio.run(scenario())
    assert excinfo.value.detail["retryable"] is True
    assert len(xero.requests) == 4


def test_expired_access_token_requires_reconnect_without_retry():
    xero = RecordingXero({("GET", f"{API}/Invoices"): httpx.Response(401)})

    async def scenario():
        client = XeroApiClient("tok", "tenant-1", transport=xero.transport)
        await client.get_invoices()

    with pytest.raises(ReconnectRequiredError):
        asyncio.run(scenario())
    assert len(xero.requests) == 1


def test_xero_validation_messages_are_extracted():
    response = httpx.Response(
        400,
        json={
            "Message": "A validation exception occurred",
            "Elements": [{"ValidationErrors": [{"Message": "Contact is required"}, {"Message": "Date is invalid"}]}],
        },
    )
    assert extract_xero_error(response) == "Contact is required; Date is invalid"
    assert extract_xero_error(httpx.Response(400, json={"Message": "Bad"})) == "Bad"


def test_retried_writes_reuse_one_idempotency_key():
    attempts = []

    def flaky_create(request):
        attempts.append(request)
        if len(attempts) == 1:
            raise httpx.ReadTimeout("reply lost", request=request)
        return httpx.Response(200, json={"Invoices": [{"InvoiceID": "inv-9", "Status": "DRAFT"}]})

    xero = RecordingXero({("PUT", f"{API}/Invoices"): flaky_create})

    async def scenario():
        client = XeroApiClient("tok", "tenant-1", transport=xero.transport, sleep=lambda _: asyncio.sleep(0))
        first = await client.create_invoice({"Type": "ACCREC", "Contact": {"ContactID": "c-1"}})
        await client.create_invoice({"Type": "ACCREC", "Contact": {"ContactID": "c-2"}})
        return first

    created = asyncio.run(scenario())
    assert created["InvoiceID"] == "inv-9"
    keys = [r.headers.get("Idempotency-Key") for r in xero.calls("PUT", f"{API}/Invoices")]
    assert len(keys) == 3
    assert keys[0] is not None
    assert keys[0] == keys[1]
    assert keys[2] != keys[0]


def test_reads_carry_no_idempotency_key():
    xero = RecordingXero({("GET", f"{API}/Organisation"): httpx.Response(200, json={"Organisations": [{}]})})

    async def scenario():
        client = XeroApiClient("tok", "tenant-1", transport=xero.transport)
        await client.get_organisation()

    asyncio.run(scenario())
    assert "Idempotency-Key" not in xero.requests[0].headers
