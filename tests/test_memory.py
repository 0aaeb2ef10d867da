# tests/test_memory.py
import asyncio

from fastapi.testclient import TestClient

from mcp_ledger.main import app
from mcp_ledger.memory.models import EntityType, Importance
from mcp_ledger.memory.sqlite_memory_store import get_sqlite_memory_store


def test_entities_are_scoped_to_their_project(user):
    async def scenario():
        store = await get_sqlite_memory_store()
        await store.create_entity(user.user_id, "Acme Ltd", EntityType.BUSINESS, project_id="alpha")
        await store.create_entity(user.user_id, "Jane Doe", EntityType.PERSON, project_id="beta")
        await store.create_entity(user.user_id, "VAT quarter", EntityType.CONCEPT)
        return (
            await store.read_graph(user.user_id, project_id="alpha"),
            await store.read_graph(user.user_id, project_id="alpha", project_ids=["beta"]),
            await store.read_graph(user.user_id),
        )

    alpha, alpha_and_beta, global_scope = asyncio.run(scenario())
    assert [e.name for e in alpha.entities] == ["Acme Ltd"]
    assert {e.name for e in alpha_and_beta.entities} == {"Acme Ltd", "Jane Doe"}
    assert [e.name for e in global_scope.entities] == ["VAT quarter"]


def test_users_never_see_each_other(make_user):
    owner = make_user(email="owner@example.com")
    other = make_user(email="other@example.com")

    async def scenario():
        store = await get_sqlite_memory_store()
        await store.create_entity(owner.user_id, "Acme Ltd", EntityType.BUSINESS)
        return (
            await store.read_graph(other.user_id),
            await store.search_entities(other.user_id, "acme"),
            await store.get_entity_by_name(other.user_id, "Acme Ltd"),
        )

    graph, hits, entity = asyncio.run(scenario())
    assert graph.entities == []
    assert hits == []
    assert entity is None


def test_observation_round_trip_keeps_flags(user):
    async def scenario():
        store = await get_sqlite_memory_store()
        entity = await store.create_entity(user.user_id, "Acme Ltd", EntityType.BUSINESS)
        await store.add_observation(entity.id, "Always pays on day 45", importance=Importance.IMPORTANT, is_user_edit=True)
        return await store.open_nodes(user.user_id, ["acme ltd"])

    graph = asyncio.run(scenario())
    observation = graph.entities[0].observations[0]
    assert observation.text == "Always pays on day 45"
    assert observation.importance == Importance.IMPORTANT
    assert observation.is_user_edit is True


def test_duplicate_observations_are_skipped(user):
    async def scenario():
        store = await get_sqlite_memory_store()
        entity = await store.create_entity(user.user_id, "Acme Ltd", EntityType.BUSINESS)
        first = await store.add_observation(entity.id, "Prefers email")
        second = await store.add_observation(entity.id, "  PREFERS EMAIL ")
        graph = await store.read_graph(user.user_id)
        return first, second, graph

    first, second, graph = asyncio.run(scenario())
    assert first is not None
    assert second is None
    assert len(graph.entities[0].observations) == 1


def test_entity_names_are_unique_ignoring_case(user):
    async def scenario():
        store = await get_sqlite_memory_store()
        first = await store.create_entity(user.user_id, "Acme Ltd", EntityType.BUSINESS)
        second = await store.create_entity(user.user_id, "ACME LTD", EntityType.OTHER)
        return first, second, await store.read_graph(user.user_id)

    first, second, graph = asyncio.run(scenario())
    assert second.id == first.id
    assert len(graph.entities) == 1


def test_deleting_an_entity_removes_its_facts_and_relations(user):
    async def scenario():
        store = await get_sqlite_memory_store()
        acme = await store.create_entity(user.user_id, "Acme Ltd", EntityType.BUSINESS)
        jane = await store.create_entity(user.user_id, "Jane Doe", EntityType.PERSON)
        await store.add_observation(acme.id, "Pays late", is_user_edit=True)
        await store.create_relation(user.user_id, jane.id, acme.id, "works_at")
        before = await store.read_graph(user.user_id)
        await store.delete_entity(user.user_id, acme.id)
        after = await store.read_graph(user.user_id)
        edits = await store.list_user_edits(user.user_id)
        return before, after, edits

    before, after, edits = asyncio.run(scenario())
    assert len(before.relations) == 1
    assert before.relations[0].from_entity == "Jane Doe"
    assert [e.name for e in after.entities] == ["Jane Doe"]
    assert after.relations == []
    assert edits == []


def test_search_matches_names_and_facts(user):
    async def scenario():
        store = await get_sqlite_memory_store()
        acme = await store.create_entity(user.user_id, "Acme Ltd", EntityType.BUSINESS)
        await store.create_entity(user.user_id, "Globex", EntityType.BUSINESS)
        await store.add_observation(acme.id, "Main contact is the finance director")
        by_name = await store.search_entities(user.user_id, "acme")
        by_fact = await store.search_entities(user.user_id, "finance director")
        nothing = await store.search_entities(user.user_id, "payroll")
        return by_name, by_fact, nothing

    by_name, by_fact, nothing = asyncio.run(scenario())
    assert [r.entity.name for r in by_name] == ["Acme Ltd"]
    assert by_fact[0].observation.text == "Main contact is the finance director"
    assert nothing == []


def test_summary_is_saved_per_project(user):
    async def scenario():
        store = await get_sqlite_memory_store()
        entity = await store.create_entity(user.user_id, "Acme Ltd", EntityType.BUSINESS, project_id="alpha")
        await store.add_observation(entity.id, "Pays late")
        await store.save_summary(user.user_id, "Acme is a slow payer.", project_id="alpha")
        return (
            await store.get_summary(user.user_id, project_id="alpha"),
            await store.get_summary(user.user_id),
        )

    alpha, global_summary = asyncio.run(scenario())
    assert alpha.summary == "Acme is a slow payer."
    assert alpha.entity_count == 1
    assert alpha.observation_count == 1
    assert global_summary is None


def _remember(user_id: str):
    async def scenario():
        store = await get_sqlite_memory_store()
        entity = await store.create_entity(user_id, "Acme Ltd", EntityType.BUSINESS)
        kept = await store.add_observation(entity.id, "Invoice on the 1st", is_user_edit=True)
        await store.add_observation(entity.id, "Uses GBP")
        return kept

    return asyncio.run(scenario())


def test_user_edits_endpoints(user, bearer_token):
    edit = _remember(user.user_id)
    client = TestClient(app)
    headers = {"Authorization": f"Bearer {bearer_token}"}

    response = client.get("/memory/edits", headers=headers)
    assert response.status_code == 200
    edits = response.json()
    assert [e["text"] for e in edits] == ["Invoice on the 1st"]
    assert edits[0]["entity_name"] == "Acme Ltd"

    response = client.request("DELETE", "/memory/edits", json={"observation_id": edit.id}, headers=headers)
    assert response.status_code == 200
    assert response.json() == {"deleted": 1}

    response = client.request("DELETE", "/memory/edits", json={"observation_id": edit.id}, headers=headers)
    assert response.status_code == 404
    assert client.get("/memory/edits", headers=headers).json() == []


def test_delete_all_user_edits_endpoint(user, bearer_token):
    _remember(user.user_id)
    client = TestClient(app)

    response = client.delete("/memory/edits/all", headers={"Authorization": f"Bearer {bearer_token}"})
    assert response.status_code == 200
    assert response.json() == {"deleted": 1}


def test_user_edits_endpoint_requires_a_token():
    client = TestClient(app)
    response = client.get("/memory/edits")
    assert response.status_code == 401
    assert response.json()["detail"]["error"] == "authentication_failed"


def test_name_lookup_can_be_limited_to_a_scope(user):
    async def scenario():
        store = await get_sqlite_memory_store()
        await store.create_entity(user.user_id, "Acme Ltd", EntityType.BUSINESS, project_id="alpha")
        return (
            await store.get_entity_by_name(user.user_id, "acme ltd", scope=["alpha"]),
            await store.get_entity_by_name(user.user_id, "acme ltd", scope=["beta"]),
            await store.get_entity_by_name(user.user_id, "acme ltd", scope=[None]),
        )

    in_alpha, in_beta, in_global = asyncio.run(scenario())
    assert in_alpha is not None and in_alpha.project_id == "alpha"
    assert in_beta is None
    assert in_global is None
