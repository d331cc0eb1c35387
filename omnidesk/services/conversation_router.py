"""Conversation router: (contact, inbox) to the active conversation, plus message append."""

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence, Tuple

from omnidesk.infra.config import config
from omnidesk.infra.errors import NotFoundError
from omnidesk.infra.logging import get_logger
from omnidesk.models.entities import (
    Contact,
    Conversation,
    ConversationStatus,
    Inbox,
    Message,
    MessageType,
    NewMessage,
    SenderType,
)
from omnidesk.models.events import InboundEvent
from omnidesk.store.base import HelpdeskStore

logger = get_logger(__name__)

UNKNOWN_SENDER_NAME = "Unknown"

# Inbound contact messages pull a pending conversation back to open
WEBHOOK_REOPEN_STATUSES = (ConversationStatus.PENDING.value,)
# A widget visitor writes into a specific conversation, which may already be resolved
WIDGET_REOPEN_STATUSES = (ConversationStatus.PENDING.value, ConversationStatus.RESOLVED.value)


class ConversationRouter:
    """Keeps one open/pending conversation per contact and inbox, and appends messages to it."""

    def __init__(self, store: HelpdeskStore, dedup_enabled: Optional[bool] = None):
        self.store = store
        self.dedup_enabled = config.MESSAGE_DEDUP_ENABLED if dedup_enabled is None else dedup_enabled

    def resolve_or_open(
        self,
        inbox: Inbox,
        contact: Contact,
        provider_message_id: Optional[str] = None,
        subject: Optional[str] = None,
    ) -> Conversation:
        """
        Reuse the newest open or pending conversation, however old, or open a new one.

        Resolved conversations never count. Concurrent first messages race on
        the partial unique index; the loser reads back the winner's conversation.
        """
        existing = self.store.find_active_conversation(inbox.organization_id, inbox.id, contact.id)
        if existing:
            return existing

        created = self.store.insert_conversation(
            inbox.organization_id,
            inbox.id,
            contact.id,
            channel_conversation_id=provider_message_id,
            subject=subject,
        )
        if created:
            logger.info(
                "Opened conversation",
                extra={
                    "organization_id": inbox.organization_id,
                    "conversation_id": created.id,
                    "inbox_id": inbox.id,
                    "contact_id": contact.id,
                },
            )
            return created

        winner = self.store.find_active_conversation(inbox.organization_id, inbox.id, contact.id)
        if winner is None:
            raise NotFoundError("Conversation insert conflicted but no active conversation could be read back")
        return winner

    def append_message(
        self,
        conversation: Conversation,
        sender_type: str,
        content: Optional[str],
        sender_id: Optional[str] = None,
        sender_name: Optional[str] = None,
        message_type: str = MessageType.TEXT.value,
        attachment_urls: Optional[List[str]] = None,
        attachment_meta: Optional[Dict[str, Any]] = None,
        channel_message_id: Optional[str] = None,
        occurred_at: Optional[datetime] = None,
        reopen_from: Sequence[str] = WEBHOOK_REOPEN_STATUSES,
    ) -> Optional[Message]:
        """
        Persist a message and refresh the conversation's latest-message fields.

        Only contact messages bump unread_count and reopen the conversation;
        agent, bot and system messages leave the status alone. Returns None when
        de-duplication is enabled and the provider id is already stored.
        """
        if self.dedup_enabled and channel_message_id:
            if self.store.message_exists(conversation.id, channel_message_id):
                logger.info(
                    "Skipping duplicate inbound message",
                    extra={"conversation_id": conversation.id, "channel_message_id": channel_message_id},
                )
                return None

        is_inbound = sender_type == SenderType.CONTACT.value
        with self.store.transaction():
            message = self.store.insert_message(
                NewMessage(
                    conversation_id=conversation.id,
                    organization_id=conversation.organization_id,
                    sender_type=sender_type,
                    sender_id=sender_id,
                    sender_name=sender_name,
                    message_type=message_type,
                    content=content,
                    attachment_urls=attachment_urls or None,
                    attachment_meta=attachment_meta or None,
                    channel_message_id=channel_message_id,
                    # Agent-authored messages are read by definition
                    is_read=not is_inbound,
                    is_private=False,
                )
            )

            self.store.update_conversation_latest(
                conversation.id,
                content=content,
                at=message.created_at or occurred_at or datetime.now(timezone.utc),
                sender=sender_name,
                increment_unread=is_inbound,
                reopen_from=reopen_from if is_inbound else (),
            )
        return message

    def route_inbound_event(
        self,
        inbox: Inbox,
        contact: Contact,
        event: InboundEvent,
    ) -> Tuple[Conversation, Optional[Message]]:
        """Attach a normalized inbound event to the contact's active conversation."""
        conversation = self.resolve_or_open(inbox, contact, event.provider_message_id)
        message = self.append_message(
            conversation,
            sender_type=SenderType.CONTACT.value,
            content=event.text,
            sender_id=contact.id,
            sender_name=contact.name or UNKNOWN_SENDER_NAME,
            message_type=event.message_type,
            attachment_urls=event.attachment_urls,
            attachment_meta=event.attachment_meta,
            channel_message_id=event.provider_message_id,
            occurred_at=event.occurred_at,
        )
        return conversation, message
