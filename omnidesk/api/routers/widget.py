"""Web widget chat API router."""

from fastapi import APIRouter, Depends

from omnidesk.api.dependencies import get_store
from omnidesk.api.models import ErrorResponse, WidgetChatRequest
from omnidesk.services.widget_service import WidgetChatService
from omnidesk.store.sql_store import SqlHelpdeskStore

router = APIRouter()


@router.post(
    "/widget/chat",
    tags=["Widget"],
    responses={
        400: {"model": ErrorResponse, "description": "Missing fields or unknown action"},
        403: {"model": ErrorResponse, "description": "Visitor does not own the conversation"},
        404: {"model": ErrorResponse, "description": "Invalid widget token"},
    },
)
async def widget_chat(
    request: WidgetChatRequest,
    store: SqlHelpdeskStore = Depends(get_store),
):
    """
    Single entry point for the embeddable chat widget.

    **Actions:**
    - `get_widget_info(token)` -> `{org_name, inbox_name}`
    - `create_conversation(token, name, email, message)` -> `{conversation_id, visitor_id}`
    - `send_message(conversation_id, visitor_id, content)` -> `{message_id}`
    - `get_messages(conversation_id, visitor_id, after?)` -> `{messages: [...]}`

    The visitor_id returned by create_conversation is the visitor's identity;
    every later call must present it for the conversation it owns.
    """
    return WidgetChatService(store).handle(request.action, request.action_body())
