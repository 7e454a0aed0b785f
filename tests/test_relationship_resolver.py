import asyncio
from typing import Any, Dict, List, Optional

from actionflow.domain.action.action_catalog import definition_for_capability
from actionflow.domain.entity.capability import EntityRegistry, RepositoryCapability
from actionflow.domain.extraction.relationship_resolver import (
    DEFERRED_KEY, RelationshipResolver, SemanticSearch
)
from actionflow.domain.models.action_state import FieldSchema, FieldType, NodeInfo, RelationshipConfig
from actionflow.domain.node.node_registry import NodeRegistry

from conftest import CUSTOMER_FIELDS


class FixedSemanticSearch(SemanticSearch):
    def __init__(self, matches: List[Dict[str, Any]]):
        self.matches = matches

    async def find_similar(self, entity: str, text: str, user_id: Optional[str] = None, limit: int = 5):
        return self.matches


def make_resolver(repository, *capabilities, **kwargs):
    registry = EntityRegistry()
    for capability in capabilities:
        registry.register(capability)
    return RelationshipResolver(repository, registry, **kwargs)


def test_existing_record_found_by_name(repository, customer_capability, invoice_capability):
    resolver = make_resolver(repository, customer_capability, invoice_capability)
    definition = definition_for_capability(invoice_capability)

    async def run():
        john = await repository.create("Customer", {"name": "John Smith"}, "u1")
        resolved = await resolver.resolve(definition, {"customer_id": "john smith"}, "u1")
        return john, resolved

    john, resolved = asyncio.run(run())

    assert resolved["customer_id"] == john["id"]


def test_email_lookup_takes_priority(repository, customer_capability, invoice_capability):
    resolver = make_resolver(repository, customer_capability, invoice_capability)
    definition = definition_for_capability(invoice_capability)

    async def run():
        await repository.create("Customer", {"name": "ann@example.com"}, "u1")
        ann = await repository.create("Customer", {"name": "Ann", "email": "ann@example.com"}, "u1")
        resolved = await resolver.resolve(definition, {"customer_email": "ann@example.com"}, "u1")
        return ann, resolved

    ann, resolved = asyncio.run(run())

    assert resolved == {"customer_id": ann["id"]}


def test_missing_record_created_with_prefixed_extras(repository, customer_capability, invoice_capability):
    resolver = make_resolver(repository, customer_capability, invoice_capability)
    definition = definition_for_capability(invoice_capability)

    async def run():
        resolved = await resolver.resolve(
            definition, {"customer_name": "Jane", "customer_email": "jane@example.com", "notes": "rush"}, "u1"
        )
        created = await repository.find_by_id("Customer", resolved["customer_id"], "u1")
        return resolved, created

    resolved, created = asyncio.run(run())

    assert resolved == {"customer_id": created["id"], "notes": "rush"}
    assert created["name"] == "Jane"
    assert created["email"] == "jane@example.com"


def test_unresolved_text_kept_when_creation_not_allowed(repository, customer_capability):
    vendor = RepositoryCapability("Bill", [
        FieldSchema(name="vendor_id", type=FieldType.RELATIONSHIP, required=True,
                    relationship=RelationshipConfig(entity="Customer")),
    ], repository)
    resolver = make_resolver(repository, customer_capability, vendor)

    resolved = asyncio.run(resolver.resolve(definition_for_capability(vendor), {"vendor": "Acme"}, "u1"))

    assert resolved["vendor_id"] == "Acme"


def test_semantic_match_above_threshold(repository, customer_capability, invoice_capability):
    search = FixedSemanticSearch([{"id": 77, "name": "Jonathan", "relevance": 0.91}])
    resolver = make_resolver(repository, customer_capability, invoice_capability, semantic_search=search)

    resolved = asyncio.run(resolver.resolve(definition_for_capability(invoice_capability), {"customer_id": "Jon"}))

    assert resolved["customer_id"] == 77


def test_semantic_match_below_threshold_ignored(repository, customer_capability, invoice_capability):
    search = FixedSemanticSearch([{"id": 77, "name": "Jonathan", "relevance": 0.4}])
    resolver = make_resolver(repository, customer_capability, invoice_capability, semantic_search=search)

    async def run():
        existing = await repository.create("Customer", {"name": "Jon"})
        resolved = await resolver.resolve(definition_for_capability(invoice_capability), {"customer_id": "Jon"})
        return existing, resolved

    existing, resolved = asyncio.run(run())

    assert resolved["customer_id"] == existing["id"]


def test_nested_dict_with_id_used_directly(repository, customer_capability, invoice_capability):
    resolver = make_resolver(repository, customer_capability, invoice_capability)

    resolved = asyncio.run(resolver.resolve(
        definition_for_capability(invoice_capability), {"customer_id": {"id": 12, "name": "Zed"}}
    ))

    assert resolved["customer_id"] == 12


def test_remote_relationship_deferred(repository, customer_capability, invoice_capability):
    nodes = NodeRegistry("master", [
        NodeInfo(slug="crm", name="CRM", url="http://crm.local", collections=["customers"])
    ])
    resolver = make_resolver(repository, customer_capability, invoice_capability, node_registry=nodes)

    resolved = asyncio.run(resolver.resolve(definition_for_capability(invoice_capability), {"customer_name": "John"}))

    assert resolved["customer_id"] == "John"
    assert resolved[DEFERRED_KEY] == {"customer_id": "John"}


def test_relationships_inside_array_items(repository, customer_capability):
    product = RepositoryCapability("Product", [FieldSchema(name="name", required=True)], repository)
    order = RepositoryCapability("Order", [
        FieldSchema(name="lines", type=FieldType.ARRAY, required=True, item_schema=[
            FieldSchema(name="product", type=FieldType.RELATIONSHIP,
                        relationship=RelationshipConfig(entity="Product", create_if_missing=True)),
            FieldSchema(name="quantity", type=FieldType.INTEGER),
        ]),
    ], repository)
    resolver = make_resolver(repository, customer_capability, product, order)

    async def run():
        widget = await repository.create("Product", {"name": "Widget"})
        resolved = await resolver.resolve(definition_for_capability(order), {
            "lines": [{"product": "widget", "quantity": 2}, {"product": "Gizmo", "quantity": 1}]
        })
        return widget, resolved

    widget, resolved = asyncio.run(run())

    first, second = resolved["lines"]
    assert first == {"product": widget["id"], "quantity": 2}
    assert isinstance(second["product"], int) and second["product"] != widget["id"]
