"""Payment domain logic.

Handles creating idempotent gateway orders tied to LOCKED reservations.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from stayza.domain.transitions import LOCKED
from stayza.errors import (
    ConflictingTransition,
    NotReservationOwner,
    ReservationNotFound,
)
from stayza.infra.db import txn
from stayza.infra.repositories.reservations_repository import (
    get_reservation,
    set_gateway_order,
)

if TYPE_CHECKING:
    from stayza.gateway.client import GatewayClient

logger = logging.getLogger(__name__)


def _get_idempotency_key(reservation_id: str) -> str:
    """Deterministic idempotency key for a reservation's order."""
    return f"reservation:{reservation_id}:order"


def receipt_for(reservation_id: str) -> str:
    """Receipt token for the gateway (always shorter than 40 chars)."""
    return f"rcpt_{reservation_id.replace('-', '')[-10:]}"


def amount_minor_for(reservation: dict) -> int:
    """Charge amount in minor currency units (subtotal x 100)."""
    return int(reservation["subtotal"]) * 100


def create_gateway_order(
    reservation_id: str,
    *,
    user_id: str,
    gateway_client: GatewayClient,
    correlation_id: str | None = None,
) -> dict[str, Any]:
    """Create an idempotent gateway order for a LOCKED reservation.

    If the reservation already has an order, returns it without calling
    the gateway again.

    Args:
        reservation_id: Reservation UUID.
        user_id: Authenticated caller; must own the reservation.
        gateway_client: Gateway client instance.
        correlation_id: Optional correlation ID for tracing.

    Returns:
        Dict with order_id, amount_minor, currency, receipt, key_id.

    Raises:
        ReservationNotFound: If reservation does not exist.
        NotReservationOwner: If it belongs to another user.
        ConflictingTransition: If it is no longer LOCKED.
        GatewayError: If the gateway call fails.
    """
    with txn() as cur:
        # 1. Lock reservation so concurrent calls create one order
        reservation = get_reservation(cur, reservation_id, for_update=True)
        if reservation is None:
            raise ReservationNotFound(f"Reservation not found: {reservation_id}")

        if reservation["user_id"] != user_id:
            raise NotReservationOwner("Unauthorized payment attempt")

        if reservation["status"] != LOCKED:
            raise ConflictingTransition(
                f"Reservation is {reservation['status']}, cannot create payment order",
                current_status=reservation["status"],
                target_status=LOCKED,
            )

        amount_minor = amount_minor_for(reservation)
        receipt = receipt_for(reservation_id)

        # 2. Reuse existing order
        if reservation["gateway_order_id"]:
            logger.info(
                "gateway_order_reused",
                extra={
                    "reservation_id": reservation_id,
                    "order_id": reservation["gateway_order_id"],
                    "correlation_id": correlation_id,
                },
            )
            return {
                "order_id": reservation["gateway_order_id"],
                "amount_minor": amount_minor,
                "currency": reservation["currency"],
                "receipt": receipt,
                "key_id": gateway_client.key_id,
            }

        # 3. Create new gateway order
        order = gateway_client.create_order(
            amount_minor=amount_minor,
            currency=reservation["currency"],
            receipt=receipt,
            idempotency_key=_get_idempotency_key(reservation_id),
            notes={"reservation_id": reservation_id},
            correlation_id=correlation_id,
        )

        # 4. Persist order id
        set_gateway_order(
            cur,
            reservation_id=reservation_id,
            gateway_order_id=order["order_id"],
        )

        logger.info(
            "gateway_order_created",
            extra={
                "reservation_id": reservation_id,
                "order_id": order["order_id"],
                "correlation_id": correlation_id,
            },
        )

        return {
            "order_id": order["order_id"],
            "amount_minor": amount_minor,
            "currency": reservation["currency"],
            "receipt": receipt,
            "key_id": gateway_client.key_id,
        }
