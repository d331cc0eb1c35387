"""Web widget chat: visitor-facing actions served by the same routing core."""

from datetime import datetime
from typing import Any, Callable, Dict, Optional

from omnidesk.infra.errors import NotFoundError, UnauthorizedError, ValidationError
from omnidesk.infra.logging import get_logger
from omnidesk.models.entities import Conversation, Inbox, MessageType, SenderType, coerce_uuid
from omnidesk.services.conversation_router import WIDGET_REOPEN_STATUSES, ConversationRouter
from omnidesk.services.identity_resolver import IdentityResolver
from omnidesk.store.base import HelpdeskStore

logger = get_logger(__name__)

SUBJECT_MAX_LENGTH = 80


def _require_fields(body: Dict[str, Any], *names: str) -> None:
    missing = [name for name in names if not body.get(name)]
    if missing:
        raise ValidationError("Missing fields", details={"missing": missing})


def _parse_after(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    try:
        # Browsers send a trailing Z, which fromisoformat rejects before 3.11
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        raise ValidationError("Invalid 'after' timestamp", details={"after": value})


class WidgetChatService:
    """
    Handles widget actions.

    The visitor is identified by the contact id returned from
    create_conversation; ownership of a conversation is the only
    authorization check.
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
        self._actions: Dict[str, Callable[[Dict[str, Any]], Dict[str, Any]]] = {
            "get_widget_info": self.get_widget_info,
            "create_conversation": self.create_conversation,
            "send_message": self.send_message,
            "get_messages": self.get_messages,
        }

    def handle(self, action: Optional[str], body: Dict[str, Any]) -> Dict[str, Any]:
        handler = self._actions.get(action or "")
        if handler is None:
            raise ValidationError("Unknown action", details={"action": action})
        return handler(body)

    def _inbox_for_token(self, token: str) -> Inbox:
        inbox = self.store.get_inbox_by_widget_token(token)
        if inbox is None:
            raise NotFoundError("Invalid widget token")
        return inbox

    def _owned_conversation(self, conversation_id: str, visitor_id: str) -> Conversation:
        try:
            conversation_id, visitor_id = coerce_uuid(conversation_id), coerce_uuid(visitor_id)
        except ValueError:
            raise UnauthorizedError("Unauthorized")
        conversation = self.store.get_conversation_for_contact(conversation_id, visitor_id)
        if conversation is None:
            raise UnauthorizedError("Unauthorized")
        return conversation

    def get_widget_info(self, body: Dict[str, Any]) -> Dict[str, Any]:
        if not body.get("token"):
            raise ValidationError("Missing token")
        inbox = self._inbox_for_token(body["token"])
        return {
            "org_name": inbox.organization_name or inbox.name,
            "inbox_name": inbox.name,
        }

    def create_conversation(self, body: Dict[str, Any]) -> Dict[str, Any]:
        _require_fields(body, "token", "name", "email", "message")
        inbox = self._inbox_for_token(body["token"])
        name, message_text = body["name"], body["message"]

        contact = self.resolver.resolve_or_create(
            inbox.organization_id,
            "email",
            body["email"],
            display_name=name,
        )
        conversation = self.router.resolve_or_open(
            inbox, contact, subject=message_text[:SUBJECT_MAX_LENGTH]
        )
        self.router.append_message(
            conversation,
            sender_type=SenderType.CONTACT.value,
            content=message_text,
            sender_id=contact.id,
            sender_name=name,
            message_type=MessageType.TEXT.value,
            reopen_from=WIDGET_REOPEN_STATUSES,
        )

        logger.info(
            "Widget conversation started",
            extra={
                "organization_id": inbox.organization_id,
                "conversation_id": conversation.id,
                "contact_id": contact.id,
            },
        )
        return {"conversation_id": conversation.id, "visitor_id": contact.id}

    def send_message(self, body: Dict[str, Any]) -> Dict[str, Any]:
        _require_fields(body, "conversation_id", "visitor_id", "content")
        conversation = self._owned_conversation(body["conversation_id"], body["visitor_id"])

        message = self.router.append_message(
            conversation,
            sender_type=SenderType.CONTACT.value,
            content=body["content"],
            sender_id=conversation.contact_id,
            message_type=MessageType.TEXT.value,
            reopen_from=WIDGET_REOPEN_STATUSES,
        )
        return {"message_id": message.id if message else None}

    def get_messages(self, body: Dict[str, Any]) -> Dict[str, Any]:
        _require_fields(body, "conversation_id", "visitor_id")
        after = _parse_after(body.get("after"))
        conversation = self._owned_conversation(body["conversation_id"], body["visitor_id"])

        messages = self.store.list_messages(conversation.id, after=after, include_private=False)
        return {
            "messages": [
                {
                    "id": m.id,
                    "content": m.content,
                    "is_visitor": m.sender_type == SenderType.CONTACT.value,
                    "sender_name": m.sender_name,
                    "created_at": m.created_at.isoformat() if m.created_at else None,
                }
                for m in messages
            ]
        }
