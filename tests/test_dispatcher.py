# tests/test_dispatcher.py
import asyncio

import httpx
import pytest

from conftest import RecordingXero
from mcp_ledger.core.dispatcher import GatewayDispatcher
from mcp_ledger.core.errors import AuthorizationError, NotFoundError, ValidationError
from mcp_ledger.core.global_registry import get_tool_registry
from mcp_ledger.credentials.sqlite_credential_store import get_sqlite_credential_store
from mcp_ledger.memory.sqlite_memory_store import get_sqlite_memory_store
from mcp_ledger.permissions.models import SnapshotStatus
from mcp_ledger.permissions.service import get_permission_service
from mcp_ledger.upstream.adapter import UpstreamClientAdapter

API = "/api.xro/2.0"

DRAFT_INVOICE = {
    "InvoiceID": "inv-1",
    "InvoiceNumber": "INV-0001",
    "Type": "ACCREC",
    "Status": "DRAFT",
    "Contact": {"ContactID": "c-1", "Name": "Acme Ltd"},
    "DateString": "2024-05-01T00:00:00",
    "DueDateString": "2024-05-31T00:00:00",
    "Total": 120.0,
    "AmountDue": 120.0,
    "AmountPaid": 0.0,
    "CurrencyCode": "GBP",
}


async def _dispatcher(xero: RecordingXero) -> GatewayDispatcher:
    adapter = UpstreamClientAdapter(await get_sqlite_credential_store(), transport=xero.transport)
    return GatewayDispatcher(
        get_tool_registry(), await get_permission_service(), adapter, await get_sqlite_memory_store()
    )


def test_every_category_is_registered():
    registry = get_tool_registry()
    assert registry.categories == [
        "accounts", "banking", "contacts", "invoices", "memory", "organisation", "payments", "reports",
    ]
    assert registry.get("void_invoice").required_level == 3
    assert registry.get("get_invoices").capability_group == "invoices"


@pytest.mark.parametrize("level,expected_max", [(0, 0), (1, 1), (2, 2), (3, 3)])
def test_listing_never_exceeds_effective_level(make_user, level, expected_max):
    user = make_user(level=level)

    async def scenario():
        dispatcher = await _dispatcher(RecordingXero())
        return await dispatcher.list_operations_in_category(user.user_id, "invoices")

    listing = asyncio.run(scenario())
    levels = [op["required_level"] for op in listing["operations"]]
    assert listing["category"] == "invoices"
    assert max(levels) == expected_max
    assert all("input_schema" in op for op in listing["operations"])


def test_listing_respects_capability_override(make_user):
    user = make_user(level=3)

    async def scenario():
        dispatcher = await _dispatcher(RecordingXero())
        await dispatcher.permission_service.permission_store.set_override(user.user_id, "invoices", 0)
        invoices = await dispatcher.list_operations_in_category(user.user_id, "invoices")
        contacts = await dispatcher.list_operations_in_category(user.user_id, "contacts")
        return invoices, contacts

    invoices, contacts = asyncio.run(scenario())
    assert {op["required_level"] for op in invoices["operations"]} == {0}
    assert "delete_contact" in {op["name"] for op in contacts["operations"]}


def test_unknown_category_lists_known_ones(make_user):
    user = make_user()

    async def scenario():
        dispatcher = await _dispatcher(RecordingXero())
        await dispatcher.list_operations_in_category(user.user_id, "payroll")

    with pytest.raises(NotFoundError) as excinfo:
        asyncio.run(scenario())
    assert "invoices" in excinfo.value.detail["categories"]


def test_unknown_operation_is_not_found(make_user):
    user = make_user()

    async def scenario():
        dispatcher = await _dispatcher(RecordingXero())
        await dispatcher.execute_operation(user_id=user.user_id, name="launch_rocket", arguments={})

    with pytest.raises(NotFoundError):
        asyncio.run(scenario())


def test_read_operation_returns_summaries(make_user, store_xero_credential):
    user = make_user()
    store_xero_credential(user.user_id)
    xero = RecordingXero({("GET", f"{API}/Invoices"): httpx.Response(200, json={"Invoices": [DRAFT_INVOICE]})})

    async def scenario():
        dispatcher = await _dispatcher(xero)
        return await dispatcher.execute_operation(
            user_id=user.user_id, name="get_invoices", arguments={"status": "DRAFT"}
        )

    response = asyncio.run(scenario())
    assert response["operation"] == "get_invoices"
    assert response["status"] == "ok"
    invoice = response["result"]["invoices"][0]
    assert invoice["invoice_number"] == "INV-0001"
    assert invoice["due_date"] == "2024-05-31"
    request = xero.requests[0]
    assert request.headers["xero-tenant-id"] == "tenant-1"
    assert request.url.params["Statuses"] == "DRAFT"


def test_chart_of_accounts_is_grouped_and_filtered(make_user, store_xero_credential):
    user = make_user()
    store_xero_credential(user.user_id)
    accounts = [
        {"AccountID": "a-1", "Code": "400", "Name": "Advertising", "Type": "EXPENSE"},
        {"AccountID": "a-2", "Code": "090", "Name": "Business Bank", "Type": "BANK"},
        {"AccountID": "a-3", "Code": "200", "Name": "Sales", "Type": "REVENUE"},
    ]
    xero = RecordingXero({("GET", f"{API}/Accounts"): lambda request: httpx.Response(200, json={"Accounts": accounts})})

    async def scenario():
        dispatcher = await _dispatcher(xero)
        everything = await dispatcher.execute_operation(
            user_id=user.user_id, name="list_accounts", arguments={}
        )
        expenses = await dispatcher.execute_operation(
            user_id=user.user_id, name="list_accounts", arguments={"account_type": "expense"}
        )
        return everything, expenses

    everything, expenses = asyncio.run(scenario())
    assert everything["result"]["count"] == 3
    assert [g["type"] for g in everything["result"]["groups"]] == ["BANK", "EXPENSE", "REVENUE"]
    assert "where" not in xero.requests[0].url.params
    assert expenses["result"]["account_type"] == "EXPENSE"
    assert [a["code"] for g in expenses["result"]["groups"] for a in g["accounts"]] == ["400"]
    assert xero.requests[1].url.params["where"] == 'Type=="EXPENSE"'


def test_validation_error_lists_every_bad_field(make_user):
    user = make_user()

    async def scenario():
        dispatcher = await _dispatcher(RecordingXero())
        await dispatcher.execute_operation(
            user_id=user.user_id, name="get_invoices", arguments={"status": "LOST", "limit": 0}
        )

    with pytest.raises(ValidationError) as excinfo:
        asyncio.run(scenario())
    fields = {f["field"] for f in excinfo.value.detail["fields"]}
    assert fields == {"status", "limit"}


def test_write_operation_below_level_is_denied_with_one_snapshot(make_user, store_xero_credential):
    user = make_user(level=0)
    store_xero_credential(user.user_id)
    xero = RecordingXero()

    async def scenario():
        dispatcher = await _dispatcher(xero)
        with pytest.raises(AuthorizationError) as excinfo:
            await dispatcher.execute_operation(
                user_id=user.user_id, name="approve_invoice", arguments={"invoice_id": "inv-1"}
            )
        snapshots = await dispatcher.permission_service.list_snapshots(user.user_id)
        return excinfo.value, snapshots

    error, snapshots = asyncio.run(scenario())
    assert "required level 2, current level 0" in error.message
    assert len(snapshots) == 1
    assert snapshots[0].status == SnapshotStatus.CANCELLED
    assert snapshots[0].after_state is None
    # Nothing reached Xero, not even the before-state lookup
    assert xero.requests == []


def test_write_operation_records_before_and_after_state(make_user, store_xero_credential):
    user = make_user(level=2)
    store_xero_credential(user.user_id)
    approved = {**DRAFT_INVOICE, "Status": "AUTHORISED"}
    xero = RecordingXero({
        ("GET", f"{API}/Invoices/inv-1"): httpx.Response(200, json={"Invoices": [DRAFT_INVOICE]}),
        ("POST", f"{API}/Invoices/inv-1"): httpx.Response(200, json={"Invoices": [approved]}),
    })

    async def scenario():
        dispatcher = await _dispatcher(xero)
        response = await dispatcher.execute_operation(
            user_id=user.user_id, name="approve_invoice", arguments={"invoice_id": "inv-1"}
        )
        snapshots = await dispatcher.permission_service.list_snapshots(user.user_id)
        return response, snapshots

    response, snapshots = asyncio.run(scenario())
    assert response["result"]["Status"] == "AUTHORISED"
    assert len(snapshots) == 1
    snapshot = snapshots[0]
    assert snapshot.status == SnapshotStatus.EXECUTED
    assert snapshot.entity_id == "inv-1"
    assert snapshot.before_state["Status"] == "DRAFT"
    assert snapshot.after_state["Status"] == "AUTHORISED"
    sent = xero.calls("POST", f"{API}/Invoices/inv-1")[0]
    assert b'"AUTHORISED"' in sent.content


def test_invalid_write_arguments_fail_one_snapshot(make_user):
    user = make_user(level=3)

    async def scenario():
        dispatcher = await _dispatcher(RecordingXero())
        with pytest.raises(ValidationError):
            await dispatcher.execute_operation(user_id=user.user_id, name="void_invoice", arguments={})
        return await dispatcher.permission_service.list_snapshots(user.user_id)

    snapshots = asyncio.run(scenario())
    assert [s.status for s in snapshots] == [SnapshotStatus.FAILED]


def test_delete_refuses_approved_invoice(make_user, store_xero_credential):
    user = make_user(level=3)
    store_xero_credential(user.user_id)
    approved = {**DRAFT_INVOICE, "Status": "AUTHORISED"}
    xero = RecordingXero({
        ("GET", f"{API}/Invoices/inv-1"): httpx.Response(200, json={"Invoices": [approved]}),
    })

    async def scenario():
        dispatcher = await _dispatcher(xero)
        with pytest.raises(ValidationError) as excinfo:
            await dispatcher.execute_operation(
                user_id=user.user_id, name="delete_draft_invoice", arguments={"invoice_id": "inv-1"}
            )
        snapshots = await dispatcher.permission_service.list_snapshots(user.user_id)
        return excinfo.value, snapshots

    error, snapshots = asyncio.run(scenario())
    assert "void_invoice" in error.detail["action"]
    assert snapshots[0].status == SnapshotStatus.FAILED
    assert xero.calls("POST", f"{API}/Invoices/inv-1") == []


def test_memory_operations_use_the_caller_project(make_user):
    user = make_user()

    async def scenario():
        dispatcher = await _dispatcher(RecordingXero())
        await dispatcher.execute_operation(
            user_id=user.user_id,
            name="memory_create_entities",
            arguments={"entities": [{"name": "Acme Ltd", "entity_type": "business", "observations": ["Pays late"]}]},
            project_id="books-2024",
        )
        in_project = await dispatcher.execute_operation(
            user_id=user.user_id, name="memory_read_graph", arguments={}, project_id="books-2024"
        )
        elsewhere = await dispatcher.execute_operation(
            user_id=user.user_id, name="memory_read_graph", arguments={}, project_id="other"
        )
        snapshots = await dispatcher.permission_service.list_snapshots(user.user_id)
        return in_project, elsewhere, snapshots

    in_project, elsewhere, snapshots = asyncio.run(scenario())
    assert [e["name"] for e in in_project["result"]["entities"]] == ["Acme Ltd"]
    assert elsewhere["result"]["entities"] == []
    assert snapshots == []


def test_memory_names_from_another_project_are_not_reused(make_user):
    user = make_user()

    async def scenario():
        dispatcher = await _dispatcher(RecordingXero())
        await dispatcher.execute_operation(
            user_id=user.user_id,
            name="memory_create_entities",
            arguments={"entities": [{"name": "Alice", "entity_type": "person", "observations": ["Runs payroll"]}]},
            project_id="proj-a",
        )
        with pytest.raises(ValidationError) as excinfo:
            await dispatcher.execute_operation(
                user_id=user.user_id,
                name="memory_create_entities",
                arguments={"entities": [{"name": "alice", "observations": ["Approves bills"]}]},
                project_id="proj-b",
            )
        graph_a = await dispatcher.execute_operation(
            user_id=user.user_id, name="memory_read_graph", arguments={}, project_id="proj-a"
        )
        return excinfo.value, graph_a

    error, graph_a = asyncio.run(scenario())
    assert "proj-a" in error.message
    assert error.detail["fields"][0]["field"] == "name"
    entities = graph_a["result"]["entities"]
    assert [o["text"] for o in entities[0]["observations"]] == ["Runs payroll"]


def test_memory_writes_only_resolve_names_in_the_caller_project(make_user):
    user = make_user()

    async def scenario():
        dispatcher = await _dispatcher(RecordingXero())
        await dispatcher.execute_operation(
            user_id=user.user_id,
            name="memory_create_entities",
            arguments={"entities": [{"name": "Bob"}, {"name": "Globex"}]},
            project_id="proj-a",
        )
        deleted = await dispatcher.execute_operation(
            user_id=user.user_id, name="memory_delete_entities", arguments={"names": ["Bob"]}, project_id="proj-b"
        )
        with pytest.raises(NotFoundError):
            await dispatcher.execute_operation(
                user_id=user.user_id,
                name="memory_add_observations",
                arguments={"observations": [{"entity_name": "Bob", "contents": ["Left the company"]}]},
                project_id="proj-b",
            )
        with pytest.raises(NotFoundError):
            await dispatcher.execute_operation(
                user_id=user.user_id,
                name="memory_create_relations",
                arguments={"relations": [{"from_entity": "Bob", "to_entity": "Globex", "relation_type": "works_at"}]},
                project_id="proj-b",
            )
        graph_a = await dispatcher.execute_operation(
            user_id=user.user_id, name="memory_read_graph", arguments={}, project_id="proj-a"
        )
        return deleted, graph_a

    deleted, graph_a = asyncio.run(scenario())
    assert deleted["result"] == {"deleted": [], "not_found": ["Bob"]}
    bob = next(e for e in graph_a["result"]["entities"] if e["name"] == "Bob")
    assert bob["observations"] == []
    assert graph_a["result"]["relations"] == []
