"""Meta webhooks API router (Messenger, Instagram, WhatsApp)."""

import json

from fastapi import APIRouter, BackgroundTasks, Query, Request
from fastapi.responses import JSONResponse, PlainTextResponse

from omnidesk.infra.config import config
from omnidesk.infra.errors import AuthenticationError
from omnidesk.infra.logging import get_logger
from omnidesk.infra.metrics import webhook_deliveries_total
from omnidesk.infra.queue import enqueue_webhook_processing, get_job_status
from omnidesk.services.normalizer import channel_for_object
from omnidesk.services.signature import verify_signature, verify_subscription
from omnidesk.workers.webhook_processor import process_webhook_job

logger = get_logger(__name__)

router = APIRouter()

SIGNATURE_HEADER = "X-Hub-Signature-256"


@router.get("/webhooks/meta", tags=["Webhooks"], response_class=PlainTextResponse)
async def verify_meta_webhook(
    hub_mode: str = Query(None, alias="hub.mode"),
    hub_verify_token: str = Query(None, alias="hub.verify_token"),
    hub_challenge: str = Query(None, alias="hub.challenge"),
):
    """Subscription handshake: echo the challenge when the verify token matches."""
    if verify_subscription(hub_mode, hub_verify_token, config.META_WEBHOOK_VERIFY_TOKEN):
        logger.info("Webhook subscription verified")
        return PlainTextResponse(hub_challenge or "", status_code=200)

    logger.warning("Webhook subscription verification failed", extra={"mode": hub_mode})
    return PlainTextResponse("Forbidden", status_code=403)


@router.post("/webhooks/meta", tags=["Webhooks"], response_class=PlainTextResponse)
async def receive_meta_webhook(request: Request, background_tasks: BackgroundTasks):
    """
    Receive a Meta webhook delivery.

    The signature is checked over the exact raw body before anything else.
    Once it passes, the delivery is acknowledged and its events are processed
    after the response, either in-process or on the RQ queue depending on
    WEBHOOK_PROCESSING_MODE.

    **Responses:**
    - 200 `OK`: signature valid, processing scheduled
    - 401: missing or invalid `X-Hub-Signature-256`
    - 400: body is not a JSON object
    - 403: `object` is not page, instagram or whatsapp_business_account
    - 413: body larger than MAX_WEBHOOK_BODY_BYTES
    """
    raw_body = await request.body()
    if len(raw_body) > config.MAX_WEBHOOK_BODY_BYTES:
        webhook_deliveries_total.labels(object="unknown", outcome="too_large").inc()
        return JSONResponse(status_code=413, content={"error": "Payload too large"})

    if not verify_signature(raw_body, request.headers.get(SIGNATURE_HEADER), config.META_APP_SECRET):
        webhook_deliveries_total.labels(object="unknown", outcome="invalid_signature").inc()
        logger.warning(
            "Rejected webhook with invalid signature",
            extra={"request_id": getattr(request.state, "request_id", None)},
        )
        error = AuthenticationError("Invalid signature")
        return JSONResponse(status_code=error.status_code, content=error.to_dict())

    try:
        payload = json.loads(raw_body)
    except ValueError:
        webhook_deliveries_total.labels(object="unknown", outcome="bad_payload").inc()
        return JSONResponse(status_code=400, content={"error": "Invalid JSON"})
    if not isinstance(payload, dict):
        webhook_deliveries_total.labels(object="unknown", outcome="bad_payload").inc()
        return JSONResponse(status_code=400, content={"error": "Invalid JSON"})

    object_type = payload.get("object")
    if channel_for_object(object_type) is None:
        webhook_deliveries_total.labels(object=str(object_type), outcome="unsupported_object").inc()
        return JSONResponse(status_code=403, content={"error": "Unsupported object"})

    if config.WEBHOOK_PROCESSING_MODE == "queue":
        job_id = enqueue_webhook_processing(payload)
        logger.info("Webhook queued", extra={"object": object_type, "job_id": job_id})
    else:
        background_tasks.add_task(process_webhook_job, payload)

    webhook_deliveries_total.labels(object=object_type, outcome="accepted").inc()
    return PlainTextResponse("OK", status_code=200)


@router.get("/webhooks/meta/jobs/{job_id}", tags=["Webhooks"])
async def get_webhook_job_status(job_id: str):
    """Status of a webhook delivery queued with WEBHOOK_PROCESSING_MODE=queue."""
    status_info = get_job_status(job_id)
    if status_info["status"] == "not_found":
        return JSONResponse(status_code=404, content={"error": "Job not found"})
    return status_info
