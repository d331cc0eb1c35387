"""Helpdesk entities as stored in the relational backend."""

import uuid
from dataclasses import dataclass, fields
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional


class ChannelType(str, Enum):
    WHATSAPP = "whatsapp"
    FACEBOOK = "facebook"
    INSTAGRAM = "instagram"
    WIDGET = "widget"
    EMAIL = "email"


class ConversationStatus(str, Enum):
    OPEN = "open"
    IN_PROGRESS = "in_progress"
    PENDING = "pending"
    RESOLVED = "resolved"
    SNOOZED = "snoozed"  # present in the type model, never set by the routing engine


# Statuses that count as the single active conversation of a contact in an inbox
ACTIVE_CONVERSATION_STATUSES = (ConversationStatus.OPEN.value, ConversationStatus.PENDING.value)


class SenderType(str, Enum):
    CONTACT = "contact"
    AGENT = "agent"
    BOT = "bot"
    SYSTEM = "system"


class MessageType(str, Enum):
    TEXT = "text"
    IMAGE = "image"
    VIDEO = "video"
    AUDIO = "audio"
    FILE = "file"
    LOCATION = "location"
    TEMPLATE = "template"
    ACTIVITY = "activity"


# Contact columns that identify an external sender, one per channel
CONTACT_IDENTIFIER_FIELDS = ("fb_psid", "ig_id", "wa_id", "email")


def coerce_uuid(value: Any) -> str:
    """Canonical string form of a UUID id; raises ValueError for anything else."""
    if isinstance(value, uuid.UUID):
        return str(value)
    return str(uuid.UUID(str(value)))


class _Row:
    """Build a dataclass from a database row or mapping, ignoring unknown columns."""

    @classmethod
    def from_row(cls, row: Any):
        if row is None:
            return None
        data = dict(row._mapping) if hasattr(row, "_mapping") else dict(row)
        names = {f.name for f in fields(cls)}
        kwargs = {}
        for key, value in data.items():
            if key not in names:
                continue
            # UUID columns come back as uuid.UUID from psycopg2
            if isinstance(value, uuid.UUID):
                value = str(value)
            kwargs[key] = value
        return cls(**kwargs)


@dataclass
class Inbox(_Row):
    """A configured channel endpoint owned by an organization."""
    id: str
    organization_id: str
    name: str
    channel_type: str
    is_active: bool = True
    # WhatsApp
    wa_phone_number: Optional[str] = None
    wa_phone_number_id: Optional[str] = None
    wa_access_token: Optional[str] = None
    # Facebook / Instagram
    fb_page_id: Optional[str] = None
    fb_access_token: Optional[str] = None
    ig_account_id: Optional[str] = None
    # Widget
    widget_token: Optional[str] = None
    organization_name: Optional[str] = None


@dataclass
class Contact(_Row):
    id: str
    organization_id: str
    name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    wa_id: Optional[str] = None
    fb_psid: Optional[str] = None
    ig_id: Optional[str] = None
    is_blocked: bool = False
    created_at: Optional[datetime] = None


@dataclass
class Conversation(_Row):
    id: str
    organization_id: str
    inbox_id: str
    contact_id: str
    status: str = ConversationStatus.OPEN.value
    assigned_agent_id: Optional[str] = None
    subject: Optional[str] = None
    channel_conversation_id: Optional[str] = None
    latest_message: Optional[str] = None
    latest_message_at: Optional[datetime] = None
    latest_message_sender: Optional[str] = None
    unread_count: int = 0
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_CONVERSATION_STATUSES


@dataclass
class Message(_Row):
    id: str
    conversation_id: str
    organization_id: str
    sender_type: str
    content: Optional[str] = None
    message_type: str = MessageType.TEXT.value
    sender_id: Optional[str] = None
    sender_name: Optional[str] = None
    attachment_urls: Optional[List[str]] = None
    attachment_meta: Optional[Dict[str, Any]] = None
    channel_message_id: Optional[str] = None
    is_read: bool = False
    is_private: bool = False
    is_deleted: bool = False
    created_at: Optional[datetime] = None


@dataclass
class NewMessage:
    """Values for a message that has not been persisted yet."""
    conversation_id: str
    organization_id: str
    sender_type: str
    content: Optional[str]
    message_type: str = MessageType.TEXT.value
    sender_id: Optional[str] = None
    sender_name: Optional[str] = None
    attachment_urls: Optional[List[str]] = None
    attachment_meta: Optional[Dict[str, Any]] = None
    channel_message_id: Optional[str] = None
    is_read: bool = False
    is_private: bool = False


@dataclass
class ConversationThread:
    """A conversation loaded together with its inbox and contact."""
    conversation: Conversation
    inbox: Inbox
    contact: Contact
