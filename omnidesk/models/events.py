"""Canonical inbound event normalized from all Meta channels."""

from datetime import datetime
from pydantic import BaseModel, Field
from typing import Optional, Dict, Any, List

from omnidesk.models.entities import ChannelType, MessageType


# Contact column that carries the sender id for each channel
CHANNEL_KEY_FIELDS = {
    ChannelType.FACEBOOK.value: "fb_psid",
    ChannelType.INSTAGRAM.value: "ig_id",
    ChannelType.WHATSAPP.value: "wa_id",
    ChannelType.WIDGET.value: "email",
}


class InboundEvent(BaseModel):
    """A single inbound contact message, free of any provider-specific shape."""
    channel: str = Field(..., description="'facebook' | 'instagram' | 'whatsapp'")
    provider_page_or_number_id: str = Field(
        ..., description="Page / Instagram account id, or WhatsApp phone_number_id the event was sent to"
    )
    sender_external_id: str = Field(..., description="PSID, Instagram-scoped id, or WhatsApp wa_id")
    display_name: Optional[str] = None
    phone: Optional[str] = Field(None, description="E.164 phone number when the channel exposes one")
    text: str = Field(default="", description="Message text or placeholder")
    message_type: str = Field(default=MessageType.TEXT.value)
    attachment_urls: List[str] = Field(default_factory=list)
    attachment_meta: Dict[str, Any] = Field(default_factory=dict)
    provider_message_id: Optional[str] = Field(None, description="mid / wamid from the provider")
    occurred_at: datetime

    @property
    def channel_key_field(self) -> str:
        return CHANNEL_KEY_FIELDS[self.channel]
