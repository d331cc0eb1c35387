"""Outbound dispatcher: agent replies to the conversation's channel, then to the store."""

from dataclasses import dataclass
from typing import List, Optional

from omnidesk.adapters.meta_graph_client import MetaGraphClient
from omnidesk.infra.errors import ConfigurationError, NotFoundError, ProviderError, ValidationError
from omnidesk.infra.logging import get_logger
from omnidesk.infra.metrics import outbound_messages_total
from omnidesk.logging.event_logger import log_event
from omnidesk.models.entities import (
    ChannelType,
    ConversationThread,
    Message,
    MessageType,
    NewMessage,
    SenderType,
    coerce_uuid,
)
from omnidesk.services.conversation_router import ConversationRouter
from omnidesk.store.base import HelpdeskStore

logger = get_logger(__name__)

# Channels whose replies go out through a provider API; everything else is stored only
NETWORK_CHANNELS = (
    ChannelType.WHATSAPP.value,
    ChannelType.FACEBOOK.value,
    ChannelType.INSTAGRAM.value,
)


@dataclass
class SendResult:
    message_id: str
    channel: str
    channel_message_id: Optional[str] = None
    delivered: bool = False  # True when a provider API accepted the message


def _require(**values: Optional[str]) -> None:
    missing: List[str] = [name for name, value in values.items() if not value]
    if missing:
        raise ConfigurationError(
            f"Missing configuration: {', '.join(missing)}",
            missing=missing,
        )


class OutboundDispatcher:
    """
    Sends agent replies to WhatsApp, Messenger or Instagram.

    Preconditions are checked before any network call. A provider failure
    persists nothing and is not retried; the caller owns any rollback of its
    optimistic state.
    """

    def __init__(
        self,
        store: HelpdeskStore,
        graph_client: Optional[MetaGraphClient] = None,
        router: Optional[ConversationRouter] = None,
    ):
        self.store = store
        self.graph_client = graph_client or MetaGraphClient()
        self.router = router or ConversationRouter(store)

    def _load_thread(self, conversation_id: str, organization_id: str) -> ConversationThread:
        try:
            conversation_id, organization_id = coerce_uuid(conversation_id), coerce_uuid(organization_id)
        except ValueError:
            raise NotFoundError("Conversation not found")
        thread = self.store.get_conversation_thread(conversation_id, organization_id)
        if thread is None:
            raise NotFoundError("Conversation not found")
        return thread

    async def send(
        self,
        conversation_id: str,
        text: str,
        agent_id: Optional[str],
        agent_name: Optional[str],
        organization_id: str,
    ) -> SendResult:
        if not text or not text.strip():
            raise ValidationError("Message text is required")
        text = text.strip()

        thread = self._load_thread(conversation_id, organization_id)
        channel = thread.inbox.channel_type

        try:
            channel_message_id = await self._deliver(thread, text)
        except ConfigurationError as e:
            outbound_messages_total.labels(channel=channel, status="configuration_error").inc()
            log_event(
                self.store,
                organization_id,
                "outbound_dispatch_failed",
                status="failure",
                payload={"channel": channel, "reason": "configuration", "missing": e.missing},
                conversation_id=conversation_id,
            )
            raise
        except ProviderError as e:
            outbound_messages_total.labels(channel=channel, status="provider_error").inc()
            log_event(
                self.store,
                organization_id,
                "outbound_dispatch_failed",
                status="failure",
                payload={
                    "channel": channel,
                    "reason": "provider",
                    "error": e.message,
                    "provider_status": e.provider_status,
                    "provider_code": e.provider_code,
                },
                conversation_id=conversation_id,
            )
            raise

        delivered = channel in NETWORK_CHANNELS
        message = self.router.append_message(
            thread.conversation,
            sender_type=SenderType.AGENT.value,
            content=text,
            sender_id=agent_id,
            sender_name=agent_name,
            message_type=MessageType.TEXT.value,
            channel_message_id=channel_message_id,
        )
        outbound_messages_total.labels(channel=channel, status="sent" if delivered else "stored").inc()

        logger.info(
            "Agent reply dispatched",
            extra={
                "organization_id": organization_id,
                "conversation_id": conversation_id,
                "channel": channel,
                "message_id": message.id,
                "delivered": delivered,
            },
        )
        return SendResult(
            message_id=message.id,
            channel=channel,
            channel_message_id=channel_message_id,
            delivered=delivered,
        )

    async def _deliver(self, thread: ConversationThread, text: str) -> Optional[str]:
        """Call the provider API for the thread's channel; returns the provider message id."""
        inbox, contact = thread.inbox, thread.contact
        channel = inbox.channel_type

        if channel == ChannelType.WHATSAPP.value:
            _require(
                wa_id=contact.wa_id,
                wa_phone_number_id=inbox.wa_phone_number_id,
                wa_access_token=inbox.wa_access_token,
            )
            return await self.graph_client.send_whatsapp_text(
                inbox.wa_phone_number_id, inbox.wa_access_token, contact.wa_id, text
            )

        if channel == ChannelType.FACEBOOK.value:
            _require(fb_psid=contact.fb_psid, fb_access_token=inbox.fb_access_token)
            return await self.graph_client.send_page_message(
                inbox.fb_access_token, contact.fb_psid, text, provider="facebook"
            )

        if channel == ChannelType.INSTAGRAM.value:
            # Instagram messaging uses the linked Facebook Page token
            _require(ig_id=contact.ig_id, fb_access_token=inbox.fb_access_token)
            return await self.graph_client.send_page_message(
                inbox.fb_access_token, contact.ig_id, text, provider="instagram"
            )

        # Widget and email: the client picks the message up from the store
        return None

    def add_note(
        self,
        conversation_id: str,
        text: str,
        agent_id: Optional[str],
        agent_name: Optional[str],
        organization_id: str,
    ) -> Message:
        """Persist an internal note. Notes never reach a channel or the conversation preview."""
        if not text or not text.strip():
            raise ValidationError("Note text is required")

        thread = self._load_thread(conversation_id, organization_id)
        note = self.store.insert_message(
            NewMessage(
                conversation_id=thread.conversation.id,
                organization_id=thread.conversation.organization_id,
                sender_type=SenderType.AGENT.value,
                sender_id=agent_id,
                sender_name=agent_name,
                message_type=MessageType.TEXT.value,
                content=text.strip(),
                is_read=True,
                is_private=True,
            )
        )
        logger.info(
            "Internal note added",
            extra={
                "organization_id": organization_id,
                "conversation_id": conversation_id,
                "message_id": note.id,
            },
        )
        return note
