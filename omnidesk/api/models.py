"""API request/response models."""

from typing import Any, Dict, Optional
from pydantic import BaseModel, Field


# ============================================================================
# Messages Models
# ============================================================================

class SendMessageRequest(BaseModel):
    """Agent reply (or internal note) for a conversation."""
    conversation_id: str = Field(..., description="Conversation to reply to")
    message_text: str = Field(..., description="Reply text")
    agent_id: Optional[str] = Field(None, description="Sending agent's user id")
    agent_name: Optional[str] = Field(None, example="Sara")
    organization_id: str = Field(..., description="Organization owning the conversation")


class SendMessageResponse(BaseModel):
    """Response model for a dispatched agent reply."""
    success: bool = Field(..., example=True)
    message_id: str = Field(..., description="Id of the persisted message")
    channel_message_id: Optional[str] = Field(None, description="Provider message id (mid / wamid)")
    delivered: bool = Field(False, description="True when a provider API accepted the message")


class NoteResponse(BaseModel):
    """Response model for an internal note."""
    success: bool = Field(..., example=True)
    message_id: str


class ErrorResponse(BaseModel):
    """Error body returned by every endpoint on failure."""
    error: str = Field(..., example="Missing configuration: wa_id")
    category: Optional[str] = Field(None, example="configuration")


# ============================================================================
# Widget Models
# ============================================================================

class WidgetChatRequest(BaseModel):
    """
    Widget action envelope.

    Field requirements depend on the action and are checked by the widget
    service, so that missing fields produce a 400 rather than a 422.
    """
    action: Optional[str] = Field(None, example="create_conversation")
    token: Optional[str] = None
    name: Optional[str] = None
    email: Optional[str] = None
    message: Optional[str] = None
    conversation_id: Optional[str] = None
    visitor_id: Optional[str] = None
    content: Optional[str] = None
    after: Optional[str] = Field(None, description="ISO timestamp; only newer messages are returned")

    def action_body(self) -> Dict[str, Any]:
        return self.model_dump(exclude={"action"}, exclude_none=True)
