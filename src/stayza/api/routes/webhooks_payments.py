"""Payment gateway webhook - public endpoint for payment events.

Security rules:
- Validate X-Razorpay-Signature against the exact raw body.
- Never log payload or signature header.
- Return 5xx only when a retry could succeed (storage trouble), so the
  gateway redelivers; everything already decided is acknowledged 200.
"""

from __future__ import annotations

from fastapi import APIRouter, Request, Response
from fastapi.responses import JSONResponse

from stayza.domain.reconciliation import handle_webhook
from stayza.errors import (
    ConflictingTransition,
    InvalidInput,
    InvalidSignature,
    ReservationNotFound,
)
from stayza.gateway.signatures import get_webhook_secret
from stayza.observability.correlation import get_correlation_id
from stayza.observability.logging import get_logger
from stayza.observability.redaction import id_prefix, safe_log_context

router = APIRouter(tags=["webhooks"])

logger = get_logger(__name__)

SIGNATURE_HEADER = "X-Razorpay-Signature"
EVENT_ID_HEADER = "X-Razorpay-Event-Id"


@router.post("/webhooks/payments")
async def payments_webhook(request: Request) -> Response:
    """Receive gateway payment events.

    Returns:
        200 with the reconciliation result (including "duplicate",
            "ignored" and "refund_required").
        400 if the signature or payload is invalid.
        500 if the secret is missing or processing failed (gateway retries).
    """
    correlation_id = get_correlation_id()
    signature = request.headers.get(SIGNATURE_HEADER)
    event_id = request.headers.get(EVENT_ID_HEADER)

    try:
        get_webhook_secret()
    except RuntimeError:
        logger.error(
            "webhook secret not configured",
            extra={"extra_fields": safe_log_context(correlationId=correlation_id)},
        )
        return Response(status_code=500, content="server configuration error")

    try:
        payload_bytes = await request.body()
    except Exception:
        logger.warning(
            "failed to read request body",
            extra={"extra_fields": safe_log_context(correlationId=correlation_id)},
        )
        return Response(status_code=400, content="invalid body")

    try:
        result = handle_webhook(payload_bytes, signature, event_id=event_id)
    except InvalidSignature:
        return Response(status_code=400, content="invalid signature")
    except InvalidInput:
        logger.warning(
            "payment webhook payload invalid",
            extra={"extra_fields": safe_log_context(correlationId=correlation_id)},
        )
        return Response(status_code=400, content="invalid payload")
    except ReservationNotFound:
        # Not one of our orders; redelivery cannot change that
        logger.warning(
            "payment webhook for unknown order",
            extra={"extra_fields": safe_log_context(correlationId=correlation_id)},
        )
        return JSONResponse(status_code=200, content={"ok": True, "status": "unknown_order"})
    except ConflictingTransition as e:
        logger.warning(
            "payment webhook conflicts with reservation state",
            extra={
                "extra_fields": safe_log_context(
                    correlationId=correlation_id,
                    current_status=e.current_status,
                )
            },
        )
        return JSONResponse(status_code=200, content={"ok": True, "status": "conflict"})
    except Exception:
        logger.exception(
            "payment webhook processing failed",
            extra={"extra_fields": safe_log_context(correlationId=correlation_id)},
        )
        return Response(status_code=500, content="processing failed")

    logger.info(
        "payment webhook processed",
        extra={
            "extra_fields": safe_log_context(
                correlationId=correlation_id,
                event_id_prefix=id_prefix(event_id),
                status=result["status"],
            )
        },
    )
    return JSONResponse(status_code=200, content={"ok": True, **result})
