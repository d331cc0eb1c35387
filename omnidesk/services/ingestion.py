"""Inbound webhook ingestion: normalized events to contacts, conversations and messages."""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from omnidesk.infra.errors import NotFoundError
from omnidesk.infra.logging import get_logger
from omnidesk.infra.metrics import inbound_events_total
from omnidesk.logging.event_logger import log_event
from omnidesk.models import InboundEvent, Inbox, Message
from omnidesk.services.conversation_router import ConversationRouter
from omnidesk.services.identity_resolver import IdentityResolver
from omnidesk.services.normalizer import normalize_payload
from omnidesk.store.base import HelpdeskStore

logger = get_logger(__name__)


class InboxNotFoundError(NotFoundError):
    """No active inbox is connected to the page or phone number an event was sent to."""


@dataclass
class IngestionSummary:
    """Outcome counts for one webhook delivery."""
    received: int = 0
    stored: int = 0
    duplicates: int = 0
    dropped: int = 0
    failed: int = 0
    message_ids: List[str] = field(default_factory=list)


class WebhookIngestor:
    """
    Runs every event of a webhook payload through identity resolution and routing.

    Events are handled in delivery order, each in isolation: an error is
    rolled back, logged and recorded, and the next event still runs. Nothing
    is retried; the provider redelivers anything it never saw acknowledged.
    """

    def __init__(
        self,
        store: HelpdeskStore,
        resolver: Optional[IdentityResolver] = None,
        router: Optional[ConversationRouter] = None,
    ):
        self.store = store
        self.resolver = resolver or IdentityResolver(store)
        self.router = router or ConversationRouter(store)

    def process_payload(self, payload: Dict[str, Any]) -> IngestionSummary:
        summary = IngestionSummary()
        inboxes: Dict[Tuple[str, str], Optional[Inbox]] = {}

        for event in normalize_payload(payload):
            summary.received += 1
            try:
                message = self.process_event(event, inboxes)
            except InboxNotFoundError as e:
                summary.dropped += 1
                inbound_events_total.labels(channel=event.channel, outcome="no_inbox").inc()
                log_event(
                    self.store,
                    None,
                    "webhook_inbox_not_found",
                    status="failure",
                    payload={
                        "channel": event.channel,
                        "address": event.provider_page_or_number_id,
                        "error": e.message,
                    },
                )
                continue
            except Exception as e:
                summary.failed += 1
                self.store.rollback()
                inbound_events_total.labels(channel=event.channel, outcome="failed").inc()
                logger.error(
                    "Failed to process inbound event",
                    extra={
                        "channel": event.channel,
                        "provider_message_id": event.provider_message_id,
                        "error": str(e),
                    },
                    exc_info=True,
                )
                inbox = inboxes.get((event.channel, event.provider_page_or_number_id))
                log_event(
                    self.store,
                    inbox.organization_id if inbox else None,
                    "webhook_event_failed",
                    status="failure",
                    payload={
                        "channel": event.channel,
                        "provider_message_id": event.provider_message_id,
                        "error": str(e),
                    },
                )
                continue

            if message is None:
                summary.duplicates += 1
                inbound_events_total.labels(channel=event.channel, outcome="duplicate").inc()
            else:
                summary.stored += 1
                summary.message_ids.append(message.id)
                inbound_events_total.labels(channel=event.channel, outcome="stored").inc()

        return summary

    def process_event(
        self,
        event: InboundEvent,
        inboxes: Optional[Dict[Tuple[str, str], Optional[Inbox]]] = None,
    ) -> Optional[Message]:
        """Store one inbound event; raises InboxNotFoundError when no active inbox owns its address."""
        inbox = self._inbox_for(event, inboxes if inboxes is not None else {})
        if inbox is None:
            raise InboxNotFoundError(
                f"No active {event.channel} inbox for {event.provider_page_or_number_id}"
            )

        contact = self.resolver.resolve_or_create(
            inbox.organization_id,
            event.channel_key_field,
            event.sender_external_id,
            display_name=event.display_name,
            phone=event.phone,
        )
        conversation, message = self.router.route_inbound_event(inbox, contact, event)

        logger.info(
            "Stored inbound message",
            extra={
                "organization_id": inbox.organization_id,
                "channel": event.channel,
                "conversation_id": conversation.id,
                "message_id": message.id if message else None,
            },
        )
        return message

    def _inbox_for(
        self,
        event: InboundEvent,
        inboxes: Dict[Tuple[str, str], Optional[Inbox]],
    ) -> Optional[Inbox]:
        key = (event.channel, event.provider_page_or_number_id)
        if key not in inboxes:
            inboxes[key] = self.store.get_inbox_by_address(*key)
        return inboxes[key]
