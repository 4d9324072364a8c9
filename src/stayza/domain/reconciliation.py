"""Payment reconciliation - exactly-once confirmation from two signals.

Two untrusted entry points drive the same transition:
- verify_client_signal(): checkout confirmation posted by the client
- handle_webhook(): gateway webhook delivery (raw body + signature)

Both authenticate the signal, find the reservation by gateway order id
and, under a row lock, apply LOCKED -> CONFIRMED. Whichever signal
arrives first confirms; later ones (any order, any number) are no-ops
and never touch inventory or the payout ledger again.

A capture for a reservation that the reaper already EXPIRED cannot be
confirmed (its rooms are gone): a late_capture pending refund is
recorded and the condition is logged as an error for manual handling.
"""

from __future__ import annotations

import logging
from datetime import datetime

from psycopg2.extensions import cursor as PgCursor

from stayza.domain.payouts import record_payout
from stayza.domain.reaper import expire_lock
from stayza.domain.transitions import (
    CONFIRMED,
    EXPIRED,
    LOCKED,
    PAYMENT_PAID,
    PAYMENT_REFUNDED,
    transition,
)
from stayza.errors import (
    ConflictingTransition,
    InvalidInput,
    NotReservationOwner,
    ReservationNotFound,
)
from stayza.gateway.signatures import (
    EVENT_PAYMENT_CAPTURED,
    EVENT_PAYMENT_FAILED,
    get_key_secret,
    get_webhook_secret,
    parse_webhook_event,
    verify_payment_signature,
    verify_webhook_signature,
)
from stayza.infra.db import run_in_txn
from stayza.infra.repositories.hotels_repository import record_confirmed_booking
from stayza.infra.repositories.pending_refunds_repository import (
    REASON_LATE_CAPTURE,
    insert_pending_refund,
)
from stayza.infra.repositories.processed_events_repository import (
    record_processed_event,
)
from stayza.infra.repositories.reservations_repository import get_reservation_by_order
from stayza.infra.time import utc_now

logger = logging.getLogger(__name__)

# processed_events source for webhook receipt dedupe
WEBHOOK_SOURCE = "gateway.webhook"

SOURCE_CLIENT = "client"
SOURCE_WEBHOOK = "webhook"

STATUS_CONFIRMED = "confirmed"
STATUS_ALREADY_CONFIRMED = "already_confirmed"
STATUS_REFUND_REQUIRED = "refund_required"
STATUS_DUPLICATE = "duplicate"


def confirm_payment(
    *,
    order_id: str,
    payment_id: str,
    source: str,
    signature: str | None = None,
    user_id: str | None = None,
    event_id: str | None = None,
    now: datetime | None = None,
) -> dict:
    """Confirm the reservation behind a gateway order, exactly once.

    Callers must have authenticated the signal already.

    This function, in one transaction:
    1. Records the webhook event id (if any); a repeat returns "duplicate"
    2. Locks the reservation by gateway order id
    3. If EXPIRED: records a late_capture pending refund ("refund_required";
       a repeat returns the same refund id, even once it was paid back)
    4. If payment is already PAID or REFUNDED: no-op ("already_confirmed")
    5. If LOCKED: LOCKED -> CONFIRMED with payment PAID, lock cleared,
       hotel counters bumped, one payout ledger entry written

    Returns:
        Dict with "status" and "reservation_id" (plus "payout_entry_id"
        when confirmed).

    Raises:
        ReservationNotFound: If no reservation has this order id.
        NotReservationOwner: If user_id is given and does not own it.
        ConflictingTransition: If the reservation is in a state that
            cannot be confirmed and was never paid.
    """
    now = now or utc_now()

    def _do(cur: PgCursor) -> dict:
        if event_id and not record_processed_event(
            cur, source=WEBHOOK_SOURCE, external_id=event_id
        ):
            return {"status": STATUS_DUPLICATE}

        reservation = get_reservation_by_order(cur, order_id, for_update=True)
        if reservation is None:
            raise ReservationNotFound(f"No reservation for order {order_id}")
        if user_id is not None and reservation["user_id"] != user_id:
            raise NotReservationOwner("Unauthorized verification attempt")

        reservation_id = reservation["id"]

        if reservation["status"] == EXPIRED:
            refund_id, _ = insert_pending_refund(
                cur,
                reservation_id=reservation_id,
                hotel_id=reservation["hotel_id"],
                reason=REASON_LATE_CAPTURE,
                amount_minor=int(reservation["subtotal"]) * 100,
                gateway_payment_id=payment_id,
            )
            return {
                "status": STATUS_REFUND_REQUIRED,
                "reservation_id": reservation_id,
                "refund_id": refund_id,
            }

        if reservation["payment_status"] in (PAYMENT_PAID, PAYMENT_REFUNDED):
            return {"status": STATUS_ALREADY_CONFIRMED, "reservation_id": reservation_id}

        if reservation["status"] != LOCKED:
            raise ConflictingTransition(
                f"Reservation is {reservation['status']}, cannot confirm",
                current_status=reservation["status"],
                target_status=CONFIRMED,
            )

        applied = transition(
            cur,
            reservation_id,
            LOCKED,
            CONFIRMED,
            payment_status=PAYMENT_PAID,
            gateway_payment_id=payment_id,
            gateway_signature=signature,
            paid_at=now,
            lock_expires_at=None,
        )
        if not applied:
            return {"status": STATUS_ALREADY_CONFIRMED, "reservation_id": reservation_id}

        record_confirmed_booking(
            cur,
            hotel_id=reservation["hotel_id"],
            amount=int(reservation["subtotal"]),
        )
        entry_id = record_payout(cur, reservation)

        return {
            "status": STATUS_CONFIRMED,
            "reservation_id": reservation_id,
            "payout_entry_id": entry_id,
        }

    result = run_in_txn(_do)

    if result["status"] == STATUS_REFUND_REQUIRED:
        # Money moved but the rooms were already released
        logger.error(
            "payment captured for expired reservation, refund required",
            extra={
                "reservation_id": result["reservation_id"],
                "refund_id": result["refund_id"],
                "source": source,
            },
        )
    else:
        logger.info(
            "payment confirmation processed",
            extra={
                "reservation_id": result.get("reservation_id"),
                "status": result["status"],
                "source": source,
            },
        )
    return result


def fail_payment(
    *,
    order_id: str,
    payment_id: str | None = None,
    event_id: str | None = None,
) -> dict:
    """Handle a gateway payment failure for a reservation.

    A still-LOCKED reservation is expired with payment FAILED and its
    rooms released (same path as the reaper). Any other state is left
    untouched.

    Returns:
        Dict with "status": "expired" | "noop" | "unknown_order" | "duplicate".
    """

    def _do(cur: PgCursor) -> dict:
        if event_id and not record_processed_event(
            cur, source=WEBHOOK_SOURCE, external_id=event_id
        ):
            return {"status": STATUS_DUPLICATE}

        reservation = get_reservation_by_order(cur, order_id, for_update=True)
        if reservation is None:
            return {"status": "unknown_order"}
        if reservation["status"] != LOCKED:
            return {"status": "noop", "reservation_id": reservation["id"]}

        expire_lock(cur, reservation, gateway_payment_id=payment_id)
        return {"status": "expired", "reservation_id": reservation["id"]}

    result = run_in_txn(_do)
    logger.info(
        "payment failure processed",
        extra={"reservation_id": result.get("reservation_id"), "status": result["status"]},
    )
    return result


def verify_client_signal(
    order_id: str,
    payment_id: str,
    signature: str,
    *,
    user_id: str | None = None,
) -> dict:
    """Confirm a payment from the client-side checkout callback.

    Raises:
        InvalidInput: If any field is missing.
        InvalidSignature: If the HMAC over "order_id|payment_id" does not match.
        ReservationNotFound: If no reservation has this order id.
        NotReservationOwner: If user_id does not own the reservation.
        ConflictingTransition: If the reservation can no longer be confirmed
            (including a capture after expiry; a refund is recorded first).
    """
    if not order_id or not payment_id or not signature:
        raise InvalidInput("Payment data missing")

    verify_payment_signature(order_id, payment_id, signature, get_key_secret())

    result = confirm_payment(
        order_id=order_id,
        payment_id=payment_id,
        signature=signature,
        source=SOURCE_CLIENT,
        user_id=user_id,
    )
    if result["status"] == STATUS_REFUND_REQUIRED:
        raise ConflictingTransition(
            "Reservation expired before payment; refund scheduled",
            current_status=EXPIRED,
            target_status=CONFIRMED,
        )
    return result


def handle_webhook(
    raw_body: bytes,
    signature_header: str | None,
    *,
    event_id: str | None = None,
) -> dict:
    """Process a gateway webhook delivery.

    Args:
        raw_body: Exact request body bytes (signature is over these bytes).
        signature_header: Signature header value.
        event_id: Gateway event id header, used for receipt dedupe.

    Returns:
        Result dict; status "ignored" for event types other than
        payment.captured / payment.failed.

    Raises:
        InvalidSignature: If the signature does not match.
        InvalidInput: If the payload is malformed.
        ReservationNotFound: If a capture references an unknown order.
        ConflictingTransition: If a capture hits a non-confirmable state.
    """
    verify_webhook_signature(raw_body, signature_header, get_webhook_secret())
    event = parse_webhook_event(raw_body)

    if event.event_type == EVENT_PAYMENT_CAPTURED:
        if not event.order_id or not event.payment_id:
            raise InvalidInput("Captured payment is missing order or payment id")
        return confirm_payment(
            order_id=event.order_id,
            payment_id=event.payment_id,
            source=SOURCE_WEBHOOK,
            event_id=event_id,
        )

    if event.event_type == EVENT_PAYMENT_FAILED:
        if not event.order_id:
            raise InvalidInput("Failed payment is missing order id")
        return fail_payment(
            order_id=event.order_id,
            payment_id=event.payment_id,
            event_id=event_id,
        )

    logger.info("webhook event ignored", extra={"event_type": event.event_type})
    return {"status": "ignored", "event_type": event.event_type}
