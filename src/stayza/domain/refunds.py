"""Refund execution - pays back pending refunds through the gateway.

Refund rows are written by cancellation and by late captures on expired
reservations. Each is sent to the gateway at most once per attempt under
a row lock; the idempotency key "refund:<id>" makes a retried attempt
return the refund the gateway already created.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import TYPE_CHECKING

from psycopg2.extensions import cursor as PgCursor

from stayza.domain.transitions import PAYMENT_REFUNDED
from stayza.errors import GatewayError, ReservationError
from stayza.infra.db import txn
from stayza.infra.repositories.pending_refunds_repository import (
    REFUND_PENDING,
    REFUND_PROCESSED,
    get_pending_refund,
    list_refund_ids_by_status,
    mark_refund_failed,
    mark_refund_processed,
)
from stayza.infra.repositories.reservations_repository import set_payment_status
from stayza.infra.time import utc_now

if TYPE_CHECKING:
    from stayza.gateway.client import GatewayClient

logger = logging.getLogger(__name__)

DEFAULT_BATCH_SIZE = 50


class RefundNotFound(ReservationError):
    """Refund record not found."""

    kind = "refund_not_found"
    http_status = 404


def _get_idempotency_key(refund_id: str) -> str:
    return f"refund:{refund_id}"


def process_refund(
    refund_id: str,
    *,
    gateway_client: GatewayClient,
    correlation_id: str | None = None,
    now: datetime | None = None,
) -> dict:
    """Send one refund to the gateway and record the outcome.

    Pending and previously failed refunds are attempted; a processed
    refund is left alone. On success the reservation's payment_status
    becomes REFUNDED. A gateway failure is recorded on the refund row
    (status "failed") instead of being raised, so the attempt is kept.

    Returns:
        {"status": "processed" | "already_processed" | "failed",
         "refund_id": str, ...}

    Raises:
        RefundNotFound: If the refund does not exist.
    """
    now = now or utc_now()

    with txn() as cur:
        refund = get_pending_refund(cur, refund_id, for_update=True)
        if refund is None:
            raise RefundNotFound(f"Refund not found: {refund_id}")

        if refund["status"] == REFUND_PROCESSED:
            return {
                "status": "already_processed",
                "refund_id": refund_id,
                "gateway_refund_id": refund["gateway_refund_id"],
            }

        if not refund["gateway_payment_id"]:
            result = _record_failure(cur, refund, "no gateway payment to refund")
        else:
            try:
                gateway_refund = gateway_client.refund_payment(
                    payment_id=refund["gateway_payment_id"],
                    amount_minor=int(refund["amount_minor"]),
                    idempotency_key=_get_idempotency_key(refund_id),
                    correlation_id=correlation_id,
                )
            except GatewayError as e:
                result = _record_failure(cur, refund, e.message)
            else:
                result = _record_success(cur, refund, gateway_refund["refund_id"], now)

    if result["status"] == "failed":
        logger.error(
            "refund failed",
            extra={"refund_id": refund_id, "reservation_id": refund["reservation_id"]},
        )
    else:
        logger.info(
            "refund processed",
            extra={
                "refund_id": refund_id,
                "reservation_id": refund["reservation_id"],
                "gateway_refund_id": result["gateway_refund_id"],
            },
        )
    return result


def _record_success(cur: PgCursor, refund: dict, gateway_refund_id: str, now: datetime) -> dict:
    mark_refund_processed(
        cur,
        refund_id=refund["id"],
        gateway_refund_id=gateway_refund_id,
        processed_at=now,
    )
    set_payment_status(
        cur,
        reservation_id=refund["reservation_id"],
        payment_status=PAYMENT_REFUNDED,
    )
    return {
        "status": "processed",
        "refund_id": refund["id"],
        "reservation_id": refund["reservation_id"],
        "gateway_refund_id": gateway_refund_id,
    }


def _record_failure(cur: PgCursor, refund: dict, reason: str) -> dict:
    mark_refund_failed(cur, refund_id=refund["id"], failure_reason=reason)
    return {
        "status": "failed",
        "refund_id": refund["id"],
        "reservation_id": refund["reservation_id"],
        "failure_reason": reason,
    }


def process_pending_refunds(
    *,
    gateway_client: GatewayClient,
    batch_size: int = DEFAULT_BATCH_SIZE,
) -> dict:
    """Attempt every pending refund once, oldest first.

    Failed refunds are not picked up again here; they are retried one at
    a time through process_refund.

    Returns:
        Counters: {"found", "processed", "failed", "skipped"}.
    """
    with txn() as cur:
        refund_ids = list_refund_ids_by_status(cur, status=REFUND_PENDING, limit=batch_size)

    summary = {"found": len(refund_ids), "processed": 0, "failed": 0, "skipped": 0}

    for refund_id in refund_ids:
        try:
            result = process_refund(refund_id, gateway_client=gateway_client)
        except Exception:
            summary["failed"] += 1
            logger.exception("failed to process refund", extra={"refund_id": refund_id})
            continue

        if result["status"] == "processed":
            summary["processed"] += 1
        elif result["status"] == "failed":
            summary["failed"] += 1
        else:
            summary["skipped"] += 1

    if summary["found"]:
        logger.info("refund sweep finished", extra=summary)

    return summary
