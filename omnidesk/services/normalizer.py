"""Channel normalizer: Meta webhook envelopes to canonical InboundEvents.

Provider shapes stop here. Each channel has one pure decoding function that
returns an InboundEvent, or None for events that must never become a message
(echoes, delivery receipts, read confirmations, unsupported types).
"""

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from omnidesk.infra.logging import get_logger
from omnidesk.infra.metrics import inbound_events_total
from omnidesk.models.entities import ChannelType, MessageType
from omnidesk.models.events import InboundEvent

logger = get_logger(__name__)

# Webhook "object" value to channel
PROVIDER_CHANNELS = {
    "page": ChannelType.FACEBOOK.value,
    "instagram": ChannelType.INSTAGRAM.value,
    "whatsapp_business_account": ChannelType.WHATSAPP.value,
}

ATTACHMENT_PLACEHOLDER = "[Attachment]"

# WhatsApp message types that become messages, with the stored message type
WHATSAPP_MESSAGE_TYPES = {
    "text": MessageType.TEXT.value,
    "image": MessageType.IMAGE.value,
    "audio": MessageType.AUDIO.value,
    "video": MessageType.VIDEO.value,
    "document": MessageType.FILE.value,
}


def channel_for_object(object_type: Optional[str]) -> Optional[str]:
    return PROVIDER_CHANNELS.get(object_type or "")


def _from_epoch(value: Any, millis: bool) -> datetime:
    if value in (None, ""):
        return datetime.now(timezone.utc)
    seconds = float(value) / 1000.0 if millis else float(value)
    return datetime.fromtimestamp(seconds, tz=timezone.utc)


def normalize_messaging_event(
    event: Dict[str, Any],
    channel: str,
    page_id: str,
) -> Optional[InboundEvent]:
    """
    Decode one Messenger or Instagram `messaging` item.

    Delivery receipts, read confirmations and postbacks carry no `message`
    object; echoes of our own sends carry `is_echo`. None of them produce an event.
    """
    message = event.get("message")
    if not message or message.get("is_echo"):
        return None

    sender_id = (event.get("sender") or {}).get("id")
    if not sender_id:
        return None

    if not page_id:
        raise ValueError(f"{channel} entry has no id")

    text = message.get("text") or ""
    attachments = message.get("attachments") or []
    attachment_urls = [
        attachment["payload"]["url"]
        for attachment in attachments
        if (attachment.get("payload") or {}).get("url")
    ]

    if not text and not attachments:
        return None

    if not text and attachments:
        text = ATTACHMENT_PLACEHOLDER
        message_type = MessageType.IMAGE.value
    else:
        message_type = MessageType.TEXT.value

    return InboundEvent(
        channel=channel,
        provider_page_or_number_id=str(page_id),
        sender_external_id=str(sender_id),
        text=text,
        message_type=message_type,
        attachment_urls=attachment_urls,
        provider_message_id=message.get("mid"),
        occurred_at=_from_epoch(event.get("timestamp"), millis=True),
    )


def normalize_whatsapp_message(
    message: Dict[str, Any],
    value: Dict[str, Any],
) -> Optional[InboundEvent]:
    """Decode one item of a WhatsApp Cloud API `value.messages` array."""
    message_type = message.get("type")
    if message_type not in WHATSAPP_MESSAGE_TYPES:
        return None

    sender = message.get("from")
    if not sender:
        return None
    sender = str(sender)

    phone_number_id = (value.get("metadata") or {}).get("phone_number_id")
    if not phone_number_id:
        raise ValueError("WhatsApp change has no metadata.phone_number_id")

    display_name = sender
    for contact in value.get("contacts") or []:
        if str(contact.get("wa_id")) == sender:
            display_name = (contact.get("profile") or {}).get("name") or sender
            break

    attachment_urls: List[str] = []
    attachment_meta: Dict[str, Any] = {}
    if message_type == "text":
        text = (message.get("text") or {}).get("body") or ""
    else:
        media = message.get(message_type) or {}
        text = media.get("caption") or ATTACHMENT_PLACEHOLDER
        # Cloud API sends a media id; the URL has to be fetched from the Graph API later
        attachment_meta = {
            key: media[key]
            for key in ("id", "mime_type", "sha256", "filename")
            if media.get(key)
        }
        if media.get("link"):
            attachment_urls.append(media["link"])

    return InboundEvent(
        channel=ChannelType.WHATSAPP.value,
        provider_page_or_number_id=str(phone_number_id),
        sender_external_id=sender,
        display_name=display_name,
        phone=sender if sender.startswith("+") else f"+{sender}",
        text=text,
        message_type=WHATSAPP_MESSAGE_TYPES[message_type],
        attachment_urls=attachment_urls,
        attachment_meta=attachment_meta,
        provider_message_id=message.get("id"),
        occurred_at=_from_epoch(message.get("timestamp"), millis=False),
    )


def _skip_malformed(channel: str, part: str, item: Any) -> None:
    inbound_events_total.labels(channel=channel, outcome="invalid").inc()
    logger.warning(
        "Skipping malformed webhook %s",
        part,
        extra={"channel": channel, "type": type(item).__name__},
    )


def _list_at(container: Dict[str, Any], key: str, channel: str) -> List[Any]:
    items = container.get(key) or []
    if not isinstance(items, list):
        _skip_malformed(channel, key, items)
        return []
    return items


def _raw_items(payload: Dict[str, Any], channel: str):
    """Yield (raw event, decoder kwargs) for every event in every entry, in delivery order."""
    for entry in _list_at(payload, "entry", channel):
        if not isinstance(entry, dict):
            _skip_malformed(channel, "entry", entry)
            continue
        if channel == ChannelType.WHATSAPP.value:
            for change in _list_at(entry, "changes", channel):
                if not isinstance(change, dict):
                    _skip_malformed(channel, "change", change)
                    continue
                if change.get("field", "messages") != "messages":
                    continue
                value = change.get("value") or {}
                if not isinstance(value, dict):
                    _skip_malformed(channel, "change value", value)
                    continue
                # value.statuses holds delivery/read receipts and is ignored
                for message in _list_at(value, "messages", channel):
                    yield message, {"value": value}
        else:
            page_id = entry.get("id")
            for event in _list_at(entry, "messaging", channel):
                yield event, {"page_id": page_id}


def normalize_payload(payload: Dict[str, Any]) -> List[InboundEvent]:
    """
    Turn a decoded webhook envelope into canonical events.

    A malformed event is logged and skipped; its siblings are still returned.
    Unknown `object` values yield nothing.
    """
    channel = channel_for_object(payload.get("object"))
    if channel is None:
        logger.info("Ignoring webhook for unsupported object", extra={"object": payload.get("object")})
        return []

    events: List[InboundEvent] = []
    for raw, context in _raw_items(payload, channel):
        try:
            if channel == ChannelType.WHATSAPP.value:
                event = normalize_whatsapp_message(raw, context["value"])
            else:
                event = normalize_messaging_event(raw, channel, context["page_id"])
        except Exception as e:
            inbound_events_total.labels(channel=channel, outcome="invalid").inc()
            logger.warning(
                "Failed to normalize inbound event",
                extra={"channel": channel, "error": str(e)},
                exc_info=True,
            )
            continue

        if event is None:
            inbound_events_total.labels(channel=channel, outcome="skipped").inc()
            continue
        events.append(event)

    return events
