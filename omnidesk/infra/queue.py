"""Webhook queue for processing deliveries in an RQ worker."""

from typing import Any, Dict

from redis import Redis
from rq import Queue
from rq.job import Job

from omnidesk.infra.config import config

WEBHOOK_QUEUE_NAME = "webhooks"

# Connections are opened lazily on first use
redis_conn = Redis.from_url(config.REDIS_URL)

webhook_queue = Queue(WEBHOOK_QUEUE_NAME, connection=redis_conn)


def enqueue_webhook_processing(payload: Dict[str, Any]) -> str:
    """
    Enqueue a verified webhook payload for processing.

    Args:
        payload: Meta webhook envelope

    Returns:
        Job ID for tracking
    """
    from omnidesk.workers.webhook_processor import process_webhook_job

    job = webhook_queue.enqueue(
        process_webhook_job,
        payload,
        job_timeout=300,  # 5 minutes timeout
        result_ttl=3600,  # Keep result for 1 hour
    )
    return job.id


def get_job_status(job_id: str) -> Dict[str, Any]:
    """Status of a queued webhook job, with its summary once finished."""
    try:
        job = Job.fetch(job_id, connection=redis_conn)
    except Exception as e:
        return {"job_id": job_id, "status": "not_found", "error": str(e)}

    status_info = {
        "job_id": job_id,
        "status": job.get_status(),
        "created_at": job.created_at.isoformat() if job.created_at else None,
    }
    if job.is_finished:
        status_info["result"] = job.result
    elif job.is_failed:
        status_info["error"] = str(job.exc_info) if job.exc_info else "Unknown error"
    return status_info
