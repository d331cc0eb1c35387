"""Operational event logging."""

import logging
from typing import Optional, Dict, Any

from omnidesk.store.base import HelpdeskStore

logger = logging.getLogger("omnidesk.events")


def log_event(
    store: HelpdeskStore,
    organization_id: Optional[str],
    event_type: str,
    status: str = "success",
    payload: Optional[Dict[str, Any]] = None,
    conversation_id: Optional[str] = None,
    message_id: Optional[str] = None,
) -> None:
    """
    Log an event to the application log and the event_logs table.

    Args:
        store: Store used to persist the event
        organization_id: Owning organization, None when it could not be resolved
        event_type: e.g. 'webhook_event_failed', 'webhook_inbox_not_found', 'outbound_dispatch_failed'
        status: 'success' | 'failure'
        payload: Additional payload (stored as JSONB)
        conversation_id: Optional conversation ID
        message_id: Optional message ID
    """
    log = logger.info if status == "success" else logger.warning
    log(
        event_type,
        extra={
            "organization_id": organization_id,
            "event_type": event_type,
            "status": status,
            "conversation_id": conversation_id,
            "message_id": message_id,
            "payload": payload or {},
        },
    )

    try:
        store.record_event(
            organization_id,
            event_type,
            status=status,
            payload=payload,
            conversation_id=conversation_id,
            message_id=message_id,
        )
    except Exception as e:
        # The event is already in the application log
        logger.warning(f"Failed to record {event_type} in event_logs: {e}")
