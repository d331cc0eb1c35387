"""Messages API router: agent replies and internal notes."""

from fastapi import APIRouter, Depends

from omnidesk.adapters.meta_graph_client import MetaGraphClient
from omnidesk.api.dependencies import StoreScope, get_graph_client, get_store_scope
from omnidesk.api.models import ErrorResponse, NoteResponse, SendMessageRequest, SendMessageResponse
from omnidesk.services.dispatcher import OutboundDispatcher

router = APIRouter()

ERROR_RESPONSES = {
    400: {"model": ErrorResponse, "description": "Missing channel configuration or invalid request"},
    404: {"model": ErrorResponse, "description": "Conversation not found in the organization"},
    502: {"model": ErrorResponse, "description": "Channel provider rejected the message"},
}


@router.post(
    "/messages/send",
    tags=["Messages"],
    response_model=SendMessageResponse,
    responses=ERROR_RESPONSES,
)
async def send_message(
    request: SendMessageRequest,
    open_store: StoreScope = Depends(get_store_scope),
    graph_client: MetaGraphClient = Depends(get_graph_client),
):
    """
    Send an agent reply to the conversation's channel.

    WhatsApp, Messenger and Instagram replies go through the Graph API first
    and are only stored once the provider accepted them. Widget replies are
    stored directly and picked up by the widget's polling.

    **Example Request:**
    ```json
    {
        "conversation_id": "uuid",
        "message_text": "Thanks, we're on it",
        "agent_id": "uuid",
        "agent_name": "Sara",
        "organization_id": "uuid"
    }
    ```

    Failures return `{"error": ...}` with 400 (configuration), 404 (not found)
    or 502 (provider). Nothing is retried.
    """
    with open_store(request.organization_id) as store:
        dispatcher = OutboundDispatcher(store, graph_client=graph_client)
        result = await dispatcher.send(
            request.conversation_id,
            request.message_text,
            request.agent_id,
            request.agent_name,
            request.organization_id,
        )
    return SendMessageResponse(
        success=True,
        message_id=result.message_id,
        channel_message_id=result.channel_message_id,
        delivered=result.delivered,
    )


@router.post(
    "/messages/notes",
    tags=["Messages"],
    response_model=NoteResponse,
    responses={k: ERROR_RESPONSES[k] for k in (400, 404)},
)
async def add_note(
    request: SendMessageRequest,
    open_store: StoreScope = Depends(get_store_scope),
):
    """Add an internal note. Notes are never sent to the contact's channel."""
    with open_store(request.organization_id) as store:
        note = OutboundDispatcher(store).add_note(
            request.conversation_id,
            request.message_text,
            request.agent_id,
            request.agent_name,
            request.organization_id,
        )
    return NoteResponse(success=True, message_id=note.id)
