"""Webhook signature and subscription handshake verification."""

import hashlib
import hmac
from typing import Optional

from omnidesk.infra.logging import get_logger

logger = get_logger(__name__)

SIGNATURE_PREFIX = "sha256="


def compute_signature(raw_body: bytes, app_secret: str) -> str:
    """Hex HMAC-SHA256 of the raw body, as Meta sends it in X-Hub-Signature-256."""
    return hmac.new(app_secret.encode("utf-8"), raw_body, hashlib.sha256).hexdigest()


def verify_signature(
    raw_body: bytes,
    signature_header: Optional[str],
    app_secret: Optional[str],
) -> bool:
    """
    Check an X-Hub-Signature-256 header against the exact request bytes.

    Fails closed: a missing secret, a missing header or a header that is not
    hex after the prefix all count as invalid.
    """
    if not app_secret:
        logger.error("Webhook signature cannot be verified: app secret is not configured")
        return False

    if not signature_header:
        return False

    received = signature_header.strip()
    if received.lower().startswith(SIGNATURE_PREFIX):
        received = received[len(SIGNATURE_PREFIX):]

    if not received:
        return False

    try:
        bytes.fromhex(received)
    except ValueError:
        return False

    expected = compute_signature(raw_body, app_secret)
    return hmac.compare_digest(expected, received.lower())


def verify_subscription(
    mode: Optional[str],
    token: Optional[str],
    expected_token: Optional[str],
) -> bool:
    """Meta GET handshake: mode must be 'subscribe' and the token must match."""
    if mode != "subscribe" or not token or not expected_token:
        return False
    return hmac.compare_digest(token.encode("utf-8"), expected_token.encode("utf-8"))
