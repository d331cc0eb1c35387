from .entities import (
    ChannelType,
    ConversationStatus,
    SenderType,
    MessageType,
    Inbox,
    Contact,
    Conversation,
    Message,
    NewMessage,
    ConversationThread,
)
from .events import InboundEvent, CHANNEL_KEY_FIELDS

__all__ = [
    "ChannelType",
    "ConversationStatus",
    "SenderType",
    "MessageType",
    "Inbox",
    "Contact",
    "Conversation",
    "Message",
    "NewMessage",
    "ConversationThread",
    "InboundEvent",
    "CHANNEL_KEY_FIELDS",
]
