import asyncio

import httpx

from actionflow.domain.action.action_catalog import ActionCatalog, definition_for_remote
from actionflow.domain.action.action_ranker import ActionRanker
from actionflow.domain.entity.capability import EntityRegistry
from actionflow.domain.models.action_state import (
    ActionDefinition, IntentAnalysis, IntentType, NodeInfo
)
from actionflow.domain.node.node_registry import NodeRegistry
from actionflow.infrastructure.http.node_client import NodeClient, FORWARDED_HEADER

PEER_COLLECTIONS = {
    "collections": [
        {
            "class": "Ticket",
            "label": "Ticket",
            "methods": ["describe_fields", "create_from_fields"],
            "format": {
                "fields": [
                    {"name": "title", "type": "string", "required": True},
                    {"name": "reporter_id", "type": "relationship",
                     "relationship": {"entity": "Contact"}},
                ],
                "required": ["title"],
                "critical_fields": ["reporter_id"],
                "strict": False,
            },
        },
        {"class": "Invoice", "methods": ["describe_fields", "create_from_fields"], "format": {"fields": []}},
        {"class": "Secret", "methods": ["describe_fields"]},
    ]
}


def peer_catalog(registry, seen_headers=None, status_code=200):
    def handler(request: httpx.Request) -> httpx.Response:
        if seen_headers is not None:
            seen_headers.append(dict(request.headers))
        return httpx.Response(status_code, json=PEER_COLLECTIONS)

    node_registry = NodeRegistry("master", [
        NodeInfo(slug="support", name="Support Desk", url="http://support.local", api_token="s3cret")
    ])
    client = NodeClient("master", transport=httpx.MockTransport(handler))
    return ActionCatalog(registry, node_registry, client)


def intent(kind=IntentType.NEW_REQUEST, confidence=0.9, **kwargs):
    return IntentAnalysis(intent=kind, confidence=confidence, **kwargs)


def test_discover_is_idempotent(customer_capability, invoice_capability):
    registry = EntityRegistry()
    registry.register(customer_capability)
    registry.register(invoice_capability)
    catalog = ActionCatalog(registry)

    async def run():
        await catalog.discover()
        first = [a.id for a in catalog.all()]
        await catalog.discover()
        return first, [a.id for a in catalog.all()]

    first, second = asyncio.run(run())

    assert first == second
    assert second.count("create_invoice") == 1
    assert catalog.statistics()["by_source"]["local"] == 2


def test_remote_discovery_synthesizes_actions(invoice_capability):
    registry = EntityRegistry()
    registry.register(invoice_capability)
    headers = []
    catalog = peer_catalog(registry, headers)

    asyncio.run(catalog.discover())

    ticket = catalog.get("create_ticket")
    assert ticket.is_remote and ticket.executor == "model.remote"
    assert ticket.entity_class == "support:Ticket"
    assert ticket.required_fields == ["title", "reporter_id"]
    assert ticket.get_field("reporter_id").relationship.node_slug == "support"

    assert catalog.get("create_invoice").source == "local"
    assert catalog.get("support_create_invoice").node_slug == "support"
    assert catalog.get("create_secret") is None

    assert headers[0][FORWARDED_HEADER.lower()] == "master"
    assert headers[0]["authorization"] == "Bearer s3cret"


def test_unreachable_peer_is_skipped(invoice_capability):
    registry = EntityRegistry()
    registry.register(invoice_capability)
    catalog = peer_catalog(registry, status_code=503)

    asyncio.run(catalog.discover())

    assert catalog.get("create_invoice") is not None
    assert catalog.statistics()["remote"] == 0


def test_static_action_shadows_entity_action(invoice_capability):
    registry = EntityRegistry()
    registry.register(invoice_capability)
    catalog = ActionCatalog(registry)
    catalog.register(ActionDefinition(
        id="create_invoice", label="Create Invoice", executor="billing.invoice", triggers=["bill"]
    ))

    asyncio.run(catalog.discover())

    assert catalog.get("create_invoice").executor == "billing.invoice"


def test_entity_actions_need_confident_creation_intent(invoice_capability):
    registry = EntityRegistry()
    registry.register(invoice_capability)
    catalog = ActionCatalog(registry)
    asyncio.run(catalog.discover())

    assert catalog.match("create invoice", intent()) == ["create_invoice"]
    assert catalog.match("create invoice", intent(confidence=0.5)) == []
    assert catalog.match("create invoice", intent(IntentType.QUESTION)) == []
    assert catalog.match("make one", intent()) == []
    assert catalog.match("make one", intent(suggested_action_id="create_invoice")) == ["create_invoice"]


def test_builtins_match_on_triggers():
    catalog = ActionCatalog()

    ranked = catalog.match("please summarize this thread", intent(IntentType.QUESTION, 0.3))

    assert ranked == ["summarize_content"]
    assert catalog.find_by_trigger("translate this")[0].id == "translate_content"


def test_suggested_action_wins_then_confidence(customer_capability, invoice_capability):
    registry = EntityRegistry()
    registry.register(customer_capability)
    registry.register(invoice_capability)
    catalog = ActionCatalog(registry)
    asyncio.run(catalog.discover())

    message = "new customer and invoice"
    assert catalog.match(message, intent()) == ["create_customer", "create_invoice"]
    assert catalog.match(message, intent(suggested_action_id="create_invoice"))[0] == "create_invoice"
    assert catalog.match(message, intent(), confidences={"create_invoice": 0.9})[0] == "create_invoice"


def test_register_unregister_and_lookup():
    catalog = ActionCatalog()
    custom = ActionDefinition(
        id="create_note", label="Create Note", executor="notes.create", entity_class="Note"
    )
    catalog.register_batch([custom])

    assert catalog.find_by_entity("crm:note").id == "create_note"
    assert catalog.unregister("create_note")
    assert not catalog.unregister("create_note")
    assert catalog.get("create_note") is None


def test_remote_definition_requires_both_methods():
    assert definition_for_remote({"class": "Thing", "methods": ["create_from_fields"]}, "peer") is None


def test_ranker_prefers_named_entity_and_falls_back_to_first_actions():
    task = ActionDefinition(id="create_task", label="Create Task", executor="task.create", triggers=["task"])
    invoice = ActionDefinition(
        id="create_invoice", label="Create Invoice", executor="model.dynamic", triggers=["invoice"]
    )
    translate = ActionDefinition(id="translate_content", label="Translate", executor="ai.translate")
    ranker = ActionRanker()
    actions = [task, invoice, translate]

    assert ranker.score("create an invoice please", invoice) == 116
    assert [a.id for a in ranker.top_relevant("create an invoice please", actions)] == [
        "create_invoice", "create_task"
    ]
    assert ranker.top_relevant("hmm", actions, limit=2) == [task, invoice]
