from fastapi.testclient import TestClient

from actionflow.application.api.api_server import create_app
from actionflow.application.container import ActionFlowContainer
from actionflow.infrastructure.config.settings import Settings
from actionflow.infrastructure.security.token_validator import NodeTokenValidator, bearer_token

from conftest import FakeTextGenerator


def make_client(repository, customer_capability, invoice_capability, token=None):
    container = ActionFlowContainer(FakeTextGenerator(), Settings(node_token=token), repository)
    container.register_entity(customer_capability)
    container.register_entity(invoice_capability)
    return TestClient(create_app(container)), container


def test_health(repository, customer_capability, invoice_capability):
    client, _ = make_client(repository, customer_capability, invoice_capability)

    response = client.get("/health")

    assert response.json() == {"status": "ok", "node": "master"}
    assert response.headers["X-Trace-ID"]


def test_chat_endpoint(repository, customer_capability, invoice_capability):
    client, _ = make_client(repository, customer_capability, invoice_capability)

    response = client.post("/chat", json={"message": "hello", "session_id": "s1"})

    assert response.status_code == 200
    body = response.json()
    assert body["content"] == "Hello! How can I help you today?"
    assert body["success"] is True
    assert body["metadata"]["node"] == "master"


def test_forwarded_chat_ignores_node_option(repository, customer_capability, invoice_capability):
    client, container = make_client(repository, customer_capability, invoice_capability)

    response = client.post(
        "/chat",
        json={"message": "hi", "session_id": "s1", "options": {"node": "elsewhere"}},
        headers={"X-Forwarded-From-Node": "crm"}
    )

    assert response.json()["content"] == "Hello! How can I help you today?"


def test_collections_describe_entities(repository, customer_capability, invoice_capability):
    client, _ = make_client(repository, customer_capability, invoice_capability)

    body = client.get("/collections").json()

    assert body["node"] == "master"
    assert [c["class"] for c in body["collections"]] == ["Customer", "Invoice"]
    invoice = body["collections"][1]
    assert invoice["methods"] == ["describe_fields", "create_from_fields"]
    assert invoice["format"]["required"] == ["customer_id", "items"]


def test_execute_requires_node_token(repository, customer_capability, invoice_capability):
    client, _ = make_client(repository, customer_capability, invoice_capability, token="s3cret")

    assert client.post("/execute", json={"executor": "task.create"}).status_code == 401
    assert client.get("/collections", headers={"Authorization": "Bearer wrong"}).status_code == 401


def test_execute_creates_entity_for_peer(repository, customer_capability, invoice_capability):
    client, _ = make_client(repository, customer_capability, invoice_capability, token="s3cret")

    response = client.post(
        "/execute",
        json={
            "executor": "model.dynamic",
            "action_type": "create_invoice",
            "params": {
                "entity_class": "Invoice",
                "customer_id": "John",
                "items": [{"product": "widget", "quantity": 2, "price": 5}],
            },
            "user_id": "u1",
        },
        headers={"Authorization": "Bearer s3cret", "X-Forwarded-From-Node": "crm"}
    )

    body = response.json()
    assert body["success"] is True
    assert body["node"] == "master"
    record = body["data"]["record"]
    assert isinstance(record["customer_id"], int)
    assert repository.records["Customer"][record["customer_id"]]["name"] == "John"


def test_execute_unknown_executor(repository, customer_capability, invoice_capability):
    client, _ = make_client(repository, customer_capability, invoice_capability)

    body = client.post("/execute", json={"executor": "nope"}).json()

    assert body["success"] is False
    assert "nope" in body["error"]


def test_token_validator():
    assert bearer_token("Bearer abc") == "abc"
    assert bearer_token("Basic abc") is None
    assert NodeTokenValidator().validate(None)
    assert not NodeTokenValidator("abc").validate("Bearer abd")
    assert NodeTokenValidator("abc").validate("Bearer abc")
