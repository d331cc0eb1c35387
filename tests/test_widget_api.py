"""Tests for the web widget chat endpoint."""

import pytest
from fastapi.testclient import TestClient

from omnidesk.api.dependencies import get_store
from omnidesk.main import app
from omnidesk.services.conversation_router import ConversationRouter
from omnidesk.services.dispatcher import OutboundDispatcher


@pytest.fixture
def client(store):
    app.dependency_overrides[get_store] = lambda: store
    yield TestClient(app)
    app.dependency_overrides.clear()


def _start(client, message="My invoice is wrong", email="jane@example.com"):
    response = client.post("/widget/chat", json={
        "action": "create_conversation",
        "token": "wt_123",
        "name": "Jane",
        "email": email,
        "message": message,
    })
    assert response.status_code == 200
    return response.json()


class TestWidgetInfo:

    def test_returns_organization_and_inbox_names(self, client, widget_inbox):
        response = client.post("/widget/chat", json={"action": "get_widget_info", "token": "wt_123"})
        assert response.status_code == 200
        assert response.json() == {"org_name": "Acme Support", "inbox_name": "Website chat"}

    def test_bad_token_is_404(self, client, widget_inbox):
        response = client.post("/widget/chat", json={"action": "get_widget_info", "token": "nope"})
        assert response.status_code == 404
        assert response.json()["error"] == "Invalid widget token"

    def test_missing_token_is_400(self, client, widget_inbox):
        response = client.post("/widget/chat", json={"action": "get_widget_info"})
        assert response.status_code == 400


class TestCreateConversation:

    def test_creates_contact_conversation_and_first_message(self, client, store, widget_inbox):
        data = _start(client, message="x" * 120)

        contact = store.contacts[0]
        conversation = store.conversations[0]
        assert data == {"conversation_id": conversation.id, "visitor_id": contact.id}
        assert contact.email == "jane@example.com"
        assert contact.name == "Jane"
        assert conversation.subject == "x" * 80
        assert conversation.latest_message_sender == "Jane"
        assert store.messages[0].sender_type == "contact"

    def test_returning_visitor_reuses_contact_and_open_conversation(self, client, store, widget_inbox):
        first = _start(client)
        second = _start(client, message="Still waiting")

        assert second == first
        assert len(store.contacts) == 1
        assert len(store.conversations) == 1
        assert len(store.messages) == 2

    def test_missing_fields_is_400(self, client, widget_inbox):
        response = client.post("/widget/chat", json={
            "action": "create_conversation", "token": "wt_123", "name": "Jane",
        })
        assert response.status_code == 400
        assert response.json()["error"] == "Missing fields"

    def test_bad_token_is_404(self, client, widget_inbox):
        response = client.post("/widget/chat", json={
            "action": "create_conversation", "token": "bad", "name": "Jane",
            "email": "jane@example.com", "message": "hi",
        })
        assert response.status_code == 404


class TestSendAndGetMessages:

    def test_visitor_can_send_and_poll(self, client, store, widget_inbox):
        ids = _start(client)

        sent = client.post("/widget/chat", json={"action": "send_message", "content": "hello?", **ids})
        assert sent.status_code == 200
        assert sent.json()["message_id"] == store.messages[1].id

        polled = client.post("/widget/chat", json={"action": "get_messages", **ids})
        assert polled.status_code == 200
        messages = polled.json()["messages"]
        assert [m["content"] for m in messages] == ["My invoice is wrong", "hello?"]
        assert all(m["is_visitor"] for m in messages)

    def test_agent_replies_are_not_visitor_messages_and_notes_are_hidden(self, client, store, widget_inbox):
        ids = _start(client)
        conversation = store.conversations[0]
        OutboundDispatcher(store).add_note(conversation.id, "internal", "agent-1", "Sara", conversation.organization_id)
        ConversationRouter(store).append_message(conversation, "agent", "Hi Jane", sender_name="Sara")

        messages = client.post("/widget/chat", json={"action": "get_messages", **ids}).json()["messages"]

        assert [(m["content"], m["is_visitor"]) for m in messages] == [
            ("My invoice is wrong", True),
            ("Hi Jane", False),
        ]

    def test_after_filters_older_messages(self, client, store, widget_inbox):
        ids = _start(client)
        cutoff = store.messages[0].created_at.isoformat()
        client.post("/widget/chat", json={"action": "send_message", "content": "newer", **ids})

        response = client.post("/widget/chat", json={"action": "get_messages", "after": cutoff, **ids})

        assert [m["content"] for m in response.json()["messages"]] == ["newer"]

    def test_invalid_after_is_400(self, client, store, widget_inbox):
        ids = _start(client)
        response = client.post("/widget/chat", json={"action": "get_messages", "after": "yesterday", **ids})
        assert response.status_code == 400

    def test_send_reopens_resolved_conversation(self, client, store, widget_inbox):
        ids = _start(client)
        store.conversations[0].status = "resolved"

        client.post("/widget/chat", json={"action": "send_message", "content": "it broke again", **ids})

        assert store.conversations[0].status == "open"

    def test_foreign_visitor_is_403(self, client, store, widget_inbox):
        ids = _start(client)
        other = _start(client, email="mallory@example.com")

        send = client.post("/widget/chat", json={
            "action": "send_message",
            "conversation_id": ids["conversation_id"],
            "visitor_id": other["visitor_id"],
            "content": "let me in",
        })
        read = client.post("/widget/chat", json={
            "action": "get_messages",
            "conversation_id": ids["conversation_id"],
            "visitor_id": other["visitor_id"],
        })

        assert send.status_code == 403
        assert read.status_code == 403
        assert "messages" not in read.json()


class TestUnknownAction:

    def test_unknown_action_is_400(self, client, widget_inbox):
        response = client.post("/widget/chat", json={"action": "delete_everything"})
        assert response.status_code == 400
        assert response.json()["error"] == "Unknown action"

    def test_missing_action_is_400(self, client, widget_inbox):
        assert client.post("/widget/chat", json={"token": "wt_123"}).status_code == 400


class TestMalformedIds:

    @pytest.mark.parametrize("action,extra", [
        ("get_messages", {}),
        ("send_message", {"content": "hello?"}),
    ])
    def test_non_uuid_conversation_is_403(self, client, store, widget_inbox, action, extra):
        ids = _start(client)

        response = client.post("/widget/chat", json={
            "action": action, "conversation_id": "abc", "visitor_id": ids["visitor_id"], **extra,
        })

        assert response.status_code == 403
        assert response.json()["error"] == "Unauthorized"
        assert len(store.messages) == 1

    def test_non_uuid_visitor_is_403(self, client, widget_inbox):
        ids = _start(client)

        response = client.post("/widget/chat", json={
            "action": "get_messages", "conversation_id": ids["conversation_id"], "visitor_id": "x",
        })

        assert response.status_code == 403
