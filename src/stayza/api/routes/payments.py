"""Guest payment endpoints.

POST /payments/orders/{reservation_id}   create (or reuse) the gateway order
POST /payments/verify                    client-side checkout confirmation
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Path
from pydantic import BaseModel

from stayza.api.auth import CurrentUser, get_current_user
from stayza.domain.payments import create_gateway_order
from stayza.domain.reconciliation import verify_client_signal
from stayza.gateway.client import GatewayClient
from stayza.observability.correlation import get_correlation_id
from stayza.observability.logging import get_logger
from stayza.observability.redaction import id_prefix, safe_log_context

router = APIRouter(prefix="/payments", tags=["payments"])

logger = get_logger(__name__)

# Module-level gateway client (lazy init, can be overridden for tests)
_gateway_client: GatewayClient | None = None


def _get_gateway_client() -> GatewayClient:
    """Get gateway client (allows override in tests)."""
    global _gateway_client
    if _gateway_client is None:
        _gateway_client = GatewayClient()
    return _gateway_client


class VerifyPaymentRequest(BaseModel):
    """Checkout callback fields, as returned by the gateway widget."""

    order_id: str
    payment_id: str
    signature: str


@router.post("/orders/{reservation_id}")
def create_order(
    reservation_id: str = Path(..., description="Reservation UUID"),
    user: CurrentUser = Depends(get_current_user),
) -> dict:
    correlation_id = get_correlation_id()
    order = create_gateway_order(
        reservation_id,
        user_id=user.id,
        gateway_client=_get_gateway_client(),
        correlation_id=correlation_id,
    )

    logger.info(
        "payment order ready",
        extra={
            "extra_fields": safe_log_context(
                correlationId=correlation_id,
                reservation_id_prefix=id_prefix(reservation_id),
                order_id_prefix=id_prefix(order["order_id"]),
            )
        },
    )
    return {"ok": True, **order}


@router.post("/verify")
def verify_payment(
    body: VerifyPaymentRequest,
    user: CurrentUser = Depends(get_current_user),
) -> dict:
    """Confirm a reservation from the checkout callback.

    The signature is never logged. Repeats (or a webhook that got there
    first) return status "already_confirmed".
    """
    result = verify_client_signal(
        body.order_id,
        body.payment_id,
        body.signature,
        user_id=user.id,
    )

    logger.info(
        "client payment verification processed",
        extra={
            "extra_fields": safe_log_context(
                correlationId=get_correlation_id(),
                order_id_prefix=id_prefix(body.order_id),
                status=result["status"],
            )
        },
    )
    return {"ok": True, **result}
