import asyncio
from datetime import datetime, timedelta

from actionflow.domain.action.action_catalog import ActionCatalog
from actionflow.domain.context.memory.cache_memory_store import CacheMemoryStore
from actionflow.domain.context.state.pending_action_store import PendingActionStore, disambiguate_prefixes
from actionflow.domain.entity.capability import EntityRegistry
from actionflow.domain.models.action_state import (
    ActionDefinition, FieldSchema, FieldType, PendingAction, PendingActionStatus
)


class FakeClock:
    def __init__(self):
        self.now = datetime(2024, 1, 1, 12, 0, 0)

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += timedelta(seconds=seconds)


def make_store(invoice_capability, clock=None, ttl=86400):
    registry = EntityRegistry()
    registry.register(invoice_capability)
    catalog = ActionCatalog(registry)
    asyncio.run(catalog.discover())
    cache = CacheMemoryStore(clock) if clock else CacheMemoryStore()
    return PendingActionStore(cache, catalog, ttl)


def invoice_action(params=None):
    return PendingAction(
        id="a1", action_id="create_invoice", label="Create Invoice",
        executor="model.dynamic", entity_class="Invoice", data={"params": params or {}}
    )


def test_store_and_get_round_trip(invoice_capability):
    store = make_store(invoice_capability)

    async def run():
        stored = await store.store("s1", invoice_action(), user_id="u1")
        return stored, await store.get("s1")

    stored, loaded = asyncio.run(run())

    assert stored.missing_fields == ["customer_id", "items"]
    assert stored.status == PendingActionStatus.INCOMPLETE
    assert loaded.id == "a1" and loaded.user_id == "u1"
    assert loaded.missing_fields == stored.missing_fields
    assert loaded.expires_at is not None


def test_missing_fields_shrink_and_params_accumulate(invoice_capability):
    store = make_store(invoice_capability)

    async def run():
        await store.store("s1", invoice_action())
        first = await store.update_params("s1", {"customer_id": 4})
        second = await store.update_params("s1", {"customer_id": None, "item_1_product": "widget",
                                                  "item_1_quantity": 2, "item_1_price": 5})
        return first, second

    first, second = asyncio.run(run())

    assert first.missing_fields == ["items"]
    assert second.missing_fields == []
    assert second.ready_to_execute and second.status == PendingActionStatus.READY
    assert second.params == {"customer_id": 4, "items": [{"product": "widget", "quantity": 2, "price": 5}]}


def test_bare_field_rekeyed_onto_prefixed_missing_field(invoice_capability):
    store = make_store(invoice_capability)

    async def run():
        action = invoice_action()
        await store.store("s1", action)
        stored = await store.get("s1")
        stored.missing_fields = ["customer_name", "items"]
        await store._save("s1", stored)
        return await store.update_params("s1", {"name": "John"})

    updated = asyncio.run(run())

    assert updated.params["customer_name"] == "John"
    assert "name" not in updated.params
    assert updated.missing_fields == ["items"]


def test_disambiguate_prefixes():
    rekeyed = disambiguate_prefixes({"name": "John", "notes": "rush"}, ["customer_name", "items"])
    assert rekeyed == {"customer_name": "John", "notes": "rush"}


def test_executed_and_canceled_actions_are_gone(invoice_capability):
    store = make_store(invoice_capability)

    async def run():
        await store.store("s1", invoice_action())
        canceled = await store.mark_canceled("s1")
        after_cancel = await store.has("s1")
        await store.store("s2", invoice_action({"customer_id": 1}))
        executed = await store.mark_executed("s2")
        return canceled, after_cancel, executed, await store.get("s2")

    canceled, after_cancel, executed, remaining = asyncio.run(run())

    assert canceled.status == PendingActionStatus.CANCELED
    assert after_cancel is False
    assert executed.status == PendingActionStatus.EXECUTED
    assert remaining is None


def test_new_action_replaces_previous(invoice_capability):
    store = make_store(invoice_capability)

    async def run():
        await store.store("s1", invoice_action())
        replacement = PendingAction(
            id="a2", action_id="create_task", label="Create Task", executor="task.create",
            data={"params": {"title": "Call John"}}
        )
        await store.store("s1", replacement)
        return await store.get("s1")

    current = asyncio.run(run())

    assert current.id == "a2"
    assert current.ready_to_execute


def test_expired_actions_disappear(invoice_capability):
    clock = FakeClock()
    store = make_store(invoice_capability, clock, ttl=60)

    async def run():
        await store.store("s1", invoice_action())
        await store.store("s2", invoice_action())
        clock.advance(30)
        alive = await store.has("s1")
        clock.advance(31)
        removed = await store.cleanup_expired()
        return alive, removed, await store.get("s1")

    alive, removed, expired = asyncio.run(run())

    assert alive
    assert removed == 2
    assert expired is None


def test_update_without_pending_action_returns_none(invoice_capability):
    store = make_store(invoice_capability)
    assert asyncio.run(store.update_params("missing", {"customer_id": 1})) is None


def test_alternative_group_satisfies_array_field_after_folding():
    catalog = ActionCatalog(EntityRegistry())
    catalog.register(ActionDefinition(
        id="create_order", label="Create Order", executor="order.create",
        fields=[FieldSchema(
            name="items", type=FieldType.ARRAY, required=True,
            alternative_fields=["product_name", "unit_price"],
            item_schema=[FieldSchema(name="product", required=True), FieldSchema(name="price", required=True)]
        )]
    ))
    store = PendingActionStore(CacheMemoryStore(), catalog, 86400)
    action = PendingAction(id="o1", action_id="create_order", label="Create Order", executor="order.create")

    async def run():
        await store.store("s1", action)
        return await store.update_params("s1", {"product_name": "widget", "unit_price": 5})

    updated = asyncio.run(run())

    assert updated.missing_fields == []
    assert updated.ready_to_execute
    assert updated.params["items"] == [{"product_name": "widget", "unit_price": 5}]
