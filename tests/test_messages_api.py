"""Tests for the agent reply and note endpoints."""

import pytest
from fastapi.testclient import TestClient

from omnidesk.api.dependencies import get_graph_client, get_store_scope
from omnidesk.infra.errors import ProviderError
from omnidesk.main import app
from fakes import FakeGraphClient, RecordingStoreScope


@pytest.fixture
def store_scope(store):
    return RecordingStoreScope(store)


@pytest.fixture
def client(store_scope, graph_client):
    app.dependency_overrides[get_store_scope] = lambda: store_scope
    app.dependency_overrides[get_graph_client] = lambda: graph_client
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def whatsapp_conversation(store, whatsapp_inbox):
    contact = store.insert_contact(whatsapp_inbox.organization_id, "wa_id", "923001234567", name="Ali")
    return store.add_conversation(whatsapp_inbox, contact, "open")


def _request(conversation, organization_id, text="On its way"):
    return {
        "conversation_id": conversation.id,
        "message_text": text,
        "agent_id": "agent-1",
        "agent_name": "Sara",
        "organization_id": organization_id,
    }


class TestSendMessage:

    def test_success(self, client, store, graph_client, whatsapp_conversation, organization_id):
        response = client.post("/messages/send", json=_request(whatsapp_conversation, organization_id))

        assert response.status_code == 200
        data = response.json()
        assert data["success"] is True
        assert data["message_id"] == store.messages[0].id
        assert data["channel_message_id"] == "m_provider_1"
        assert len(graph_client.calls) == 1

    def test_store_is_scoped_to_request_organization(self, client, store_scope, whatsapp_conversation, organization_id):
        client.post("/messages/send", json=_request(whatsapp_conversation, organization_id))
        client.post("/messages/notes", json=_request(whatsapp_conversation, organization_id, "VIP"))

        assert store_scope.organization_ids == [organization_id, organization_id]

    def test_missing_configuration_is_400(self, client, store, whatsapp_inbox, organization_id):
        contact = store.insert_contact(organization_id, "email", "x@example.com")
        conversation = store.add_conversation(whatsapp_inbox, contact, "open")

        response = client.post("/messages/send", json=_request(conversation, organization_id))

        assert response.status_code == 400
        assert response.json()["category"] == "configuration"
        assert "wa_id" in response.json()["error"]
        assert store.messages == []

    def test_unknown_conversation_is_404(self, client, organization_id, whatsapp_inbox):
        response = client.post("/messages/send", json={
            "conversation_id": "00000000-0000-0000-0000-000000000000",
            "message_text": "hi",
            "organization_id": organization_id,
        })
        assert response.status_code == 404
        assert response.json()["error"] == "Conversation not found"

    def test_provider_failure_is_502(self, store, store_scope, whatsapp_conversation, organization_id):
        app.dependency_overrides[get_store_scope] = lambda: store_scope
        app.dependency_overrides[get_graph_client] = lambda: FakeGraphClient(
            error=ProviderError("Re-engagement message", provider="whatsapp", provider_status=400, provider_code=131047)
        )
        try:
            response = TestClient(app).post("/messages/send", json=_request(whatsapp_conversation, organization_id))
        finally:
            app.dependency_overrides.clear()

        assert response.status_code == 502
        assert response.json()["error"] == "Re-engagement message"
        assert store.messages == []

    def test_missing_required_field_is_422(self, client):
        response = client.post("/messages/send", json={"message_text": "hi"})
        assert response.status_code == 422


class TestAddNote:

    def test_note_is_stored_privately(self, client, store, graph_client, whatsapp_conversation, organization_id):
        response = client.post("/messages/notes", json=_request(whatsapp_conversation, organization_id, "VIP"))

        assert response.status_code == 200
        assert response.json()["success"] is True
        assert store.messages[0].is_private is True
        assert graph_client.calls == []


class TestMalformedIds:

    @pytest.mark.parametrize("path", ["/messages/send", "/messages/notes"])
    def test_non_uuid_conversation_is_404(self, client, store, graph_client, organization_id, path):
        response = client.post(path, json={
            "conversation_id": "abc",
            "message_text": "hi",
            "organization_id": organization_id,
        })

        assert response.status_code == 404
        assert response.json()["error"] == "Conversation not found"
        assert graph_client.calls == []
        assert store.messages == []

    def test_non_uuid_organization_is_404(self, client, whatsapp_conversation):
        response = client.post("/messages/send", json=_request(whatsapp_conversation, "acme"))

        assert response.status_code == 404
