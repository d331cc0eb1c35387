"""Tests for conversation routing and message append."""

import threading
from concurrent.futures import ThreadPoolExecutor
from unittest.mock import patch

import pytest

from omnidesk.services.conversation_router import WIDGET_REOPEN_STATUSES, ConversationRouter
from fakes import InMemoryHelpdeskStore


def _contact(store, organization_id, psid="PSID_1", name="Jane"):
    return store.insert_contact(organization_id, "fb_psid", psid, name=name)


class TestResolveOrOpen:

    def test_opens_conversation_when_none_active(self, store, facebook_inbox, organization_id):
        contact = _contact(store, organization_id)
        conversation = ConversationRouter(store).resolve_or_open(facebook_inbox, contact, "m_1")

        assert conversation.status == "open"
        assert conversation.channel_conversation_id == "m_1"
        assert conversation.inbox_id == facebook_inbox.id
        assert conversation.contact_id == contact.id

    def test_reuses_open_conversation(self, store, facebook_inbox, organization_id):
        contact = _contact(store, organization_id)
        router = ConversationRouter(store)

        first = router.resolve_or_open(facebook_inbox, contact, "m_1")
        second = router.resolve_or_open(facebook_inbox, contact, "m_2")

        assert second.id == first.id
        assert len(store.conversations) == 1

    def test_reuses_pending_conversation(self, store, facebook_inbox, organization_id):
        contact = _contact(store, organization_id)
        pending = store.add_conversation(facebook_inbox, contact, "pending")

        assert ConversationRouter(store).resolve_or_open(facebook_inbox, contact).id == pending.id

    def test_resolved_and_in_progress_conversations_are_not_reused(self, store, facebook_inbox, organization_id):
        contact = _contact(store, organization_id)
        resolved = store.add_conversation(facebook_inbox, contact, "resolved")
        in_progress = store.add_conversation(facebook_inbox, contact, "in_progress")

        conversation = ConversationRouter(store).resolve_or_open(facebook_inbox, contact)

        assert conversation.id not in (resolved.id, in_progress.id)
        assert conversation.status == "open"

    def test_conversations_are_per_inbox(self, store, facebook_inbox, instagram_inbox, organization_id):
        contact = _contact(store, organization_id)
        router = ConversationRouter(store)

        a = router.resolve_or_open(facebook_inbox, contact)
        b = router.resolve_or_open(instagram_inbox, contact)

        assert a.id != b.id

    def test_concurrent_first_messages_share_one_conversation(self, facebook_inbox, organization_id):
        parties = 6
        store = InMemoryHelpdeskStore()
        store.inboxes.append(facebook_inbox)
        contact = _contact(store, organization_id)
        barrier = threading.Barrier(parties, timeout=5)
        real_find = store.find_active_conversation
        local = threading.local()

        def find_then_wait(*args):
            result = real_find(*args)
            if not getattr(local, "waited", False):
                local.waited = True
                barrier.wait()
            return result

        store.find_active_conversation = find_then_wait
        router = ConversationRouter(store)

        def deliver(index):
            conversation = router.resolve_or_open(facebook_inbox, contact, f"m_{index}")
            router.append_message(conversation, "contact", f"msg {index}", sender_name="Jane")
            return conversation.id

        with ThreadPoolExecutor(max_workers=parties) as pool:
            ids = set(pool.map(deliver, range(parties)))

        assert len(store.conversations) == 1
        assert ids == {store.conversations[0].id}
        assert store.conversations[0].status == "open"
        assert len(store.messages) == parties


class TestAppendMessage:

    def test_inbound_message_updates_preview_and_unread(self, store, facebook_inbox, organization_id):
        contact = _contact(store, organization_id)
        router = ConversationRouter(store)
        conversation = router.resolve_or_open(facebook_inbox, contact)

        message = router.append_message(
            conversation, "contact", "Where is my order?", sender_id=contact.id, sender_name="Jane"
        )

        stored = store.get_conversation(conversation.id)
        assert message.is_read is False
        assert message.is_private is False
        assert stored.latest_message == "Where is my order?"
        assert stored.latest_message_sender == "Jane"
        assert stored.latest_message_at == message.created_at
        assert stored.unread_count == 1

    def test_inbound_message_reopens_pending(self, store, facebook_inbox, organization_id):
        contact = _contact(store, organization_id)
        pending = store.add_conversation(facebook_inbox, contact, "pending")

        ConversationRouter(store).append_message(pending, "contact", "hello?", sender_name="Jane")

        assert store.get_conversation(pending.id).status == "open"

    def test_agent_message_never_reopens_or_counts_unread(self, store, facebook_inbox, organization_id):
        contact = _contact(store, organization_id)
        pending = store.add_conversation(facebook_inbox, contact, "pending")

        message = ConversationRouter(store).append_message(pending, "agent", "We're on it", sender_name="Sara")

        stored = store.get_conversation(pending.id)
        assert message.is_read is True
        assert stored.status == "pending"
        assert stored.unread_count == 0
        assert stored.latest_message_sender == "Sara"

    def test_webhook_path_leaves_resolved_conversation_alone(self, store, facebook_inbox, organization_id):
        contact = _contact(store, organization_id)
        resolved = store.add_conversation(facebook_inbox, contact, "resolved")

        ConversationRouter(store).append_message(resolved, "contact", "late reply", sender_name="Jane")

        assert store.get_conversation(resolved.id).status == "resolved"

    def test_resolved_conversation_reopened_by_contact_is_reused(self, store, widget_inbox, organization_id):
        """Once reopened, the conversation is the active one for later inbound events."""
        contact = store.insert_contact(organization_id, "email", "jane@example.com", name="Jane")
        resolved = store.add_conversation(widget_inbox, contact, "resolved")
        router = ConversationRouter(store)

        router.append_message(
            resolved, "contact", "it broke again", sender_name="Jane", reopen_from=WIDGET_REOPEN_STATUSES
        )

        assert store.get_conversation(resolved.id).status == "open"
        assert router.resolve_or_open(widget_inbox, contact).id == resolved.id
        assert len(store.conversations) == 1

    def test_resolved_conversation_stays_resolved_when_another_is_active(
        self, store, widget_inbox, organization_id
    ):
        contact = store.insert_contact(organization_id, "email", "jane@example.com", name="Jane")
        resolved = store.add_conversation(widget_inbox, contact, "resolved")
        store.add_conversation(widget_inbox, contact, "open")

        ConversationRouter(store).append_message(
            resolved, "contact", "old thread", sender_name="Jane", reopen_from=WIDGET_REOPEN_STATUSES
        )

        assert store.get_conversation(resolved.id).status == "resolved"

    def test_duplicate_provider_id_skipped_when_dedup_enabled(self, store, facebook_inbox, organization_id):
        contact = _contact(store, organization_id)
        router = ConversationRouter(store, dedup_enabled=True)
        conversation = router.resolve_or_open(facebook_inbox, contact)

        first = router.append_message(conversation, "contact", "hi", channel_message_id="m_1")
        second = router.append_message(conversation, "contact", "hi", channel_message_id="m_1")

        assert first is not None
        assert second is None
        assert len(store.messages) == 1

    def test_duplicate_provider_id_stored_when_dedup_disabled(self, store, facebook_inbox, organization_id):
        contact = _contact(store, organization_id)
        router = ConversationRouter(store, dedup_enabled=False)
        conversation = router.resolve_or_open(facebook_inbox, contact)

        router.append_message(conversation, "contact", "hi", channel_message_id="m_1")
        router.append_message(conversation, "contact", "hi", channel_message_id="m_1")

        assert len(store.messages) == 2

    def test_failed_preview_update_rolls_back_the_message(self, store, facebook_inbox, organization_id):
        contact = _contact(store, organization_id)
        router = ConversationRouter(store)
        conversation = router.resolve_or_open(facebook_inbox, contact)

        with patch.object(
            store, "update_conversation_latest",
            side_effect=RuntimeError('duplicate key value violates unique constraint "uq_conversations_active"'),
        ):
            with pytest.raises(RuntimeError):
                router.append_message(conversation, "contact", "hi", sender_id=contact.id)

        assert store.messages == []
        assert store.get_conversation(conversation.id).unread_count == 0
