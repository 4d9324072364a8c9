"""Payment gateway signature validation and webhook payload parsing.

Purpose:
- Verify the client-side checkout signature: HMAC-SHA256 hex over
  "<order_id>|<payment_id>" keyed with the API key secret.
- Verify webhook deliveries: HMAC-SHA256 hex over the raw request body
  keyed with the webhook secret. The body must be the exact bytes
  received; re-serialized JSON will not match.
- Extract minimal data needed for routing (no full event).
- Never log payload or signature.
"""

from __future__ import annotations

import hashlib
import hmac
import json
import logging
import os
from dataclasses import dataclass
from typing import Any

from stayza.errors import InvalidInput, InvalidSignature

logger = logging.getLogger(__name__)

EVENT_PAYMENT_CAPTURED = "payment.captured"
EVENT_PAYMENT_FAILED = "payment.failed"


def _get_secret(env_var: str) -> bytes:
    secret = os.environ.get(env_var, "")
    if not secret:
        raise RuntimeError(f"{env_var} not configured")
    return secret.encode()


def get_key_secret() -> bytes:
    """Gateway API key secret (signs client checkout confirmations)."""
    return _get_secret("GATEWAY_KEY_SECRET")


def get_webhook_secret() -> bytes:
    """Gateway webhook secret (signs webhook deliveries)."""
    return _get_secret("GATEWAY_WEBHOOK_SECRET")


def sign(secret: bytes, message: bytes) -> str:
    """HMAC-SHA256 hex digest."""
    return hmac.new(secret, message, hashlib.sha256).hexdigest()


def _matches(expected: str, signature: str | None) -> bool:
    """Constant-time compare; header values may carry non-ASCII characters."""
    if not signature:
        return False
    return hmac.compare_digest(
        expected.encode(), signature.encode("utf-8", "surrogateescape")
    )


def verify_payment_signature(
    order_id: str,
    payment_id: str,
    signature: str,
    secret: bytes,
) -> None:
    """Check a client-side checkout signature.

    Raises:
        InvalidSignature: If the signature does not match.
    """
    expected = sign(secret, f"{order_id}|{payment_id}".encode())
    if not _matches(expected, signature):
        logger.warning("payment signature verification failed")
        raise InvalidSignature("Invalid payment signature")


def verify_webhook_signature(
    payload_bytes: bytes,
    signature_header: str | None,
    secret: bytes,
) -> None:
    """Check a webhook signature over the raw body.

    Raises:
        InvalidSignature: If the header is missing or does not match.
    """
    expected = sign(secret, payload_bytes)
    if not _matches(expected, signature_header):
        # Do NOT log signature or payload
        logger.warning("webhook signature verification failed")
        raise InvalidSignature("Invalid webhook signature")


@dataclass
class GatewayWebhookEvent:
    """Minimal extracted data from a gateway webhook event."""

    event_type: str
    order_id: str | None
    payment_id: str | None


def parse_webhook_event(payload_bytes: bytes) -> GatewayWebhookEvent:
    """Extract event type and payment entity ids from a verified payload.

    Expected shape:
        {"event": "payment.captured",
         "payload": {"payment": {"entity": {"id": ..., "order_id": ...}}}}

    Raises:
        InvalidInput: If the payload is not JSON or has no event type.
    """
    try:
        event: dict[str, Any] = json.loads(payload_bytes)
    except (ValueError, UnicodeDecodeError) as e:
        logger.warning("webhook payload parsing failed")
        raise InvalidInput("Invalid webhook payload") from e

    if not isinstance(event, dict) or not event.get("event"):
        raise InvalidInput("Missing webhook event type")

    entity: Any = event.get("payload")
    for key in ("payment", "entity"):
        entity = entity.get(key) if isinstance(entity, dict) else None
    if not isinstance(entity, dict):
        entity = {}

    return GatewayWebhookEvent(
        event_type=event["event"],
        order_id=entity.get("order_id"),
        payment_id=entity.get("id"),
    )
