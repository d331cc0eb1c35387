"""Store interface consumed by the ingestion and dispatch components."""

from datetime import datetime
from typing import Any, ContextManager, Dict, List, Optional, Protocol, Sequence

from omnidesk.models.entities import (
    Contact,
    Conversation,
    ConversationThread,
    Inbox,
    Message,
    NewMessage,
)


class HelpdeskStore(Protocol):
    """
    Gateway to the relational backend.

    Every cross-request guarantee (one contact per identifier, one active
    conversation per contact and inbox) is enforced here through unique
    constraints; insert_* methods return None when the constraint rejected the
    row so the caller can re-read the winner.
    """

    # Inboxes
    def get_inbox_by_address(self, channel_type: str, address: str) -> Optional[Inbox]:
        """Active inbox of channel_type reachable at a page id, IG account id or WhatsApp phone_number_id."""

    def get_inbox_by_widget_token(self, token: str) -> Optional[Inbox]:
        """Active widget inbox for token, with organization_name populated."""

    # Contacts
    def find_contact(self, organization_id: str, field: str, value: str) -> Optional[Contact]:
        ...

    def insert_contact(
        self,
        organization_id: str,
        field: str,
        value: str,
        name: Optional[str] = None,
        phone: Optional[str] = None,
    ) -> Optional[Contact]:
        ...

    # Conversations
    def find_active_conversation(
        self, organization_id: str, inbox_id: str, contact_id: str
    ) -> Optional[Conversation]:
        """Newest open or pending conversation for the contact in the inbox."""

    def insert_conversation(
        self,
        organization_id: str,
        inbox_id: str,
        contact_id: str,
        channel_conversation_id: Optional[str] = None,
        subject: Optional[str] = None,
    ) -> Optional[Conversation]:
        ...

    def get_conversation_thread(
        self, conversation_id: str, organization_id: str
    ) -> Optional[ConversationThread]:
        ...

    def get_conversation_for_contact(
        self, conversation_id: str, contact_id: str
    ) -> Optional[Conversation]:
        ...

    def update_conversation_latest(
        self,
        conversation_id: str,
        content: Optional[str],
        at: datetime,
        sender: Optional[str],
        increment_unread: bool = False,
        reopen_from: Sequence[str] = (),
    ) -> Optional[Conversation]:
        """
        Refresh the denormalized latest-message fields.

        Statuses listed in reopen_from move to open, unless another active
        conversation already exists for the same contact and inbox.
        """

    # Messages
    def insert_message(self, message: NewMessage) -> Message:
        ...

    def message_exists(self, conversation_id: str, channel_message_id: str) -> bool:
        ...

    def list_messages(
        self,
        conversation_id: str,
        after: Optional[datetime] = None,
        include_private: bool = False,
        limit: int = 500,
    ) -> List[Message]:
        """Messages oldest first, optionally only those created after a timestamp."""

    def transaction(self) -> ContextManager[None]:
        """Group several writes into one commit; any failure inside rolls all of them back."""

    def rollback(self) -> None:
        """Discard a failed transaction so the next unit of work can run."""

    # Operational events
    def record_event(
        self,
        organization_id: Optional[str],
        event_type: str,
        status: str = "success",
        payload: Optional[Dict[str, Any]] = None,
        conversation_id: Optional[str] = None,
        message_id: Optional[str] = None,
    ) -> None:
        ...
