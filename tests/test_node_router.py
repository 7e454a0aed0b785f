import asyncio
from datetime import datetime, timedelta

from actionflow.domain.context.memory.cache_memory_store import CacheMemoryStore
from actionflow.domain.models.action_state import ExecutionRequest, NodeInfo, NodeStatus
from actionflow.domain.node.node_registry import NodeRegistry, collection_variants
from actionflow.domain.node.node_router import NodeRouter, split_entity_class


def make_router(store=None):
    registry = NodeRegistry(
        "master",
        [
            NodeInfo(slug="crm", name="Sales CRM", url="http://crm.local", collections=["contacts"]),
            NodeInfo(slug="hr", name="HR", url="http://hr.local", status=NodeStatus.INACTIVE),
        ],
        ownership={"invoices": "master"}
    )
    return NodeRouter(registry, store or CacheMemoryStore(), session_pin_ttl=60)


def test_split_entity_class():
    assert split_entity_class("crm:Contact") == ("crm", "Contact")
    assert split_entity_class("Contact") == (None, "Contact")
    assert split_entity_class(None) == (None, None)


def test_composite_identifier_routes_and_strips_routing_params():
    router = make_router()
    request = ExecutionRequest(
        executor="model.dynamic", entity_class="crm:Contact",
        params={"name": "Ada", "source_node": "", "node_slug": None}
    )

    route = router.should_route_remote(request)

    assert route.node_slug == "crm"
    assert route.entity_class == "Contact"
    assert route.reason == "composite_class"
    assert route.params == {"name": "Ada"}


def test_explicit_node_beats_ownership():
    router = make_router()
    request = ExecutionRequest(executor="model.dynamic", entity_class="Contact", node="Sales CRM")

    route = router.should_route_remote(request)

    assert route.node_slug == "crm" and route.reason == "explicit"


def test_ownership_routes_singular_entity_names():
    router = make_router()
    route = router.should_route_remote(ExecutionRequest(executor="model.dynamic", entity_class="Contact"))
    assert route.node_slug == "crm" and route.reason == "ownership"


def test_local_owner_and_unknown_nodes_stay_local():
    router = make_router()

    assert router.should_route_remote(ExecutionRequest(executor="model.dynamic", entity_class="Invoice")) is None
    assert router.should_route_remote(ExecutionRequest(executor="model.dynamic", entity_class="master:Contact")) is None
    assert router.should_route_remote(ExecutionRequest(executor="task.create", params={"node": "hr"})) is None


def test_forwarded_requests_never_routed():
    router = make_router()
    request = ExecutionRequest(executor="model.dynamic", entity_class="crm:Contact", forwarded=True)
    assert router.should_route_remote(request) is None


def test_session_pin_expires():
    now = [datetime(2024, 1, 1)]
    router = make_router(CacheMemoryStore(lambda: now[0]))

    async def run():
        await router.pin_session("s1", "crm")
        pinned = await router.get_pinned_node("s1")
        now[0] += timedelta(seconds=61)
        return pinned, await router.get_pinned_node("s1")

    pinned, expired = asyncio.run(run())

    assert pinned == "crm"
    assert expired is None


def test_unpin_session():
    router = make_router()

    async def run():
        await router.pin_session("s1", "crm")
        removed = await router.unpin_session("s1")
        return removed, await router.get_pinned_node("s1"), await router.unpin_session("s1")

    assert asyncio.run(run()) == (True, None, False)


def test_registry_lookups():
    registry = make_router().registry

    assert registry.find_node("sales-crm").slug == "crm"
    assert registry.get_node("hr") is None
    assert [node.slug for node in registry.active_nodes()] == ["crm"]
    assert registry.find_node_for_collection("Contact") == "crm"
    assert "category" in collection_variants("categories")
