"""Worker function for processing acknowledged webhook deliveries."""

from dataclasses import asdict
from typing import Any, Dict

from omnidesk.infra.database import get_db_session
from omnidesk.infra.logging import get_logger
from omnidesk.services.ingestion import WebhookIngestor
from omnidesk.store.sql_store import SqlHelpdeskStore

logger = get_logger(__name__)


def process_webhook_job(payload: Dict[str, Any]) -> Dict[str, Any]:
    """
    Process a webhook payload (called by a FastAPI background task or an RQ worker).

    Runs after the delivery was acknowledged, so it opens its own database
    session. Failures are logged and never re-raised into the queue: the
    provider redelivers on its own schedule and RQ must not retry.

    Args:
        payload: Verified Meta webhook envelope

    Returns:
        Summary dict with per-outcome event counts
    """
    try:
        with get_db_session() as session:
            summary = WebhookIngestor(SqlHelpdeskStore(session)).process_payload(payload)
    except Exception as e:
        logger.error(
            "Webhook processing failed",
            extra={"object": payload.get("object"), "error": str(e)},
            exc_info=True,
        )
        return {"status": "failed", "error": str(e)}

    result = {"status": "processed", **asdict(summary)}
    logger.info(
        "Webhook processed",
        extra={"object": payload.get("object"), **{k: v for k, v in result.items() if k != "message_ids"}},
    )
    return result
