"""Shared fixtures: a scripted text generator and invoice/customer entities."""
import json
from typing import Any, Dict, List, Optional

import pytest

from actionflow.application.container import ActionFlowContainer
from actionflow.domain.entity.capability import RepositoryCapability
from actionflow.domain.entity.repository import InMemoryEntityRepository
from actionflow.domain.models.action_state import FieldSchema, FieldType, RelationshipConfig
from actionflow.infrastructure.ai.text_generation import GenerationRequest, GenerationResult, TextGenerator
from actionflow.infrastructure.config.settings import Settings

DEFAULT_CONTENT = {
    "chat": "Happy to help with that.",
    "executor": "Generated text.",
}


class FakeTextGenerator(TextGenerator):
    """Replays queued responses per request purpose"""

    def __init__(self, responses: Optional[Dict[str, List[Any]]] = None):
        self.responses = {purpose: list(items) for purpose, items in (responses or {}).items()}
        self.requests: List[GenerationRequest] = []

    def queue(self, purpose: str, *items: Any):
        self.responses.setdefault(purpose, []).extend(items)

    async def generate(self, request: GenerationRequest) -> GenerationResult:
        self.requests.append(request)
        queue = self.responses.get(request.purpose)
        if not queue:
            return GenerationResult(content=DEFAULT_CONTENT.get(request.purpose, "{}"))

        item = queue.pop(0)
        if isinstance(item, GenerationResult):
            return item
        if isinstance(item, Exception):
            raise item
        if isinstance(item, dict):
            return GenerationResult(content=json.dumps(item))
        return GenerationResult(content=item)

    def purposes(self) -> List[str]:
        return [request.purpose for request in self.requests]


CUSTOMER_FIELDS = [
    FieldSchema(name="name", required=True, description="Customer name"),
    FieldSchema(name="email", type=FieldType.EMAIL, description="Contact email"),
]

INVOICE_FIELDS = [
    FieldSchema(
        name="customer_id",
        type=FieldType.RELATIONSHIP,
        required=True,
        description="Customer being billed",
        relationship=RelationshipConfig(entity="Customer", create_if_missing=True),
    ),
    FieldSchema(
        name="items",
        type=FieldType.ARRAY,
        required=True,
        description="Line items",
        item_schema=[
            FieldSchema(name="product", required=True),
            FieldSchema(name="quantity", type=FieldType.INTEGER, required=True),
            FieldSchema(name="price", type=FieldType.NUMBER, required=True),
        ],
    ),
    FieldSchema(name="notes", type=FieldType.TEXT),
]


@pytest.fixture
def settings():
    return Settings(node_slug="master", node_name="Master Node")


@pytest.fixture
def generator():
    return FakeTextGenerator()


@pytest.fixture
def repository():
    repo = InMemoryEntityRepository()
    repo.declare("Customer", [f.name for f in CUSTOMER_FIELDS])
    repo.declare("Invoice", [f.name for f in INVOICE_FIELDS])
    return repo


@pytest.fixture
def customer_capability(repository):
    return RepositoryCapability("Customer", CUSTOMER_FIELDS, repository)


@pytest.fixture
def invoice_capability(repository):
    return RepositoryCapability("Invoice", INVOICE_FIELDS, repository)


@pytest.fixture
def container(generator, settings, repository, customer_capability, invoice_capability):
    built = ActionFlowContainer(generator, settings, repository)
    built.register_entity(customer_capability)
    built.register_entity(invoice_capability)
    return built
