"""Payout ledger - commission/owner split recorded once per confirmed reservation."""

from __future__ import annotations

import logging
import os
from datetime import datetime
from decimal import Decimal

from psycopg2.extensions import cursor as PgCursor

from stayza.domain.pricing import round_half_up
from stayza.errors import ConflictingTransition, InvalidInput, ReservationError
from stayza.infra.db import run_in_txn
from stayza.infra.repositories.payouts_repository import (
    get_payout_entry,
    insert_payout_entry,
    mark_entry_paid,
)
from stayza.infra.time import utc_now

logger = logging.getLogger(__name__)

PAYOUT_UNPAID = "UNPAID"
PAYOUT_PAID = "PAID"


class PayoutEntryNotFound(ReservationError):
    """Payout ledger entry not found."""

    kind = "payout_entry_not_found"
    http_status = 404


def gateway_fee_percent() -> Decimal:
    """Gateway fee percent from GATEWAY_FEE_PERCENT (default 0)."""
    return Decimal(os.environ.get("GATEWAY_FEE_PERCENT", "0"))


def compute_split(reservation: dict, fee_percent: Decimal | None = None) -> dict:
    """Derive the ledger amounts from a reservation's price snapshot.

    The gateway fee is borne by the platform: the owner payout stays
    exactly as quoted at reservation time.
    """
    if fee_percent is None:
        fee_percent = gateway_fee_percent()
    total = int(reservation["subtotal"])
    return {
        "total_amount": total,
        "commission_amount": int(reservation["commission_amount"]),
        "gateway_fee": round_half_up(Decimal(total) * fee_percent / 100),
        "owner_payout_amount": int(reservation["owner_payout_amount"]),
    }


def record_payout(cur: PgCursor, reservation: dict) -> str | None:
    """Write the ledger entry for a reservation that was just confirmed.

    A second call for the same reservation does not write anything.

    Args:
        cur: Database cursor (same transaction as the confirmation).
        reservation: Reservation dict (price snapshot).

    Returns:
        The new entry id, or None if an entry already existed.
    """
    entry_id, created = insert_payout_entry(
        cur,
        reservation_id=reservation["id"],
        hotel_id=reservation["hotel_id"],
        currency=reservation["currency"],
        **compute_split(reservation),
    )
    if not created:
        logger.warning(
            "payout entry already recorded",
            extra={"reservation_id": reservation["id"], "entry_id": entry_id},
        )
        return None
    return entry_id


def mark_payout_paid(
    entry_id: str,
    *,
    payout_reference: str,
    paid_at: datetime | None = None,
) -> dict:
    """Record that the external payout process has paid the hotel owner.

    Repeating the call with the same reference is a no-op.

    Returns:
        {"status": "paid" | "already_paid", "entry_id": str}

    Raises:
        InvalidInput: If payout_reference is empty.
        PayoutEntryNotFound: If the entry does not exist.
        ConflictingTransition: If already paid under another reference.
    """
    if not payout_reference:
        raise InvalidInput("payout_reference is required")

    def _do(cur: PgCursor) -> dict:
        entry = get_payout_entry(cur, entry_id, for_update=True)
        if entry is None:
            raise PayoutEntryNotFound(f"Payout entry not found: {entry_id}")

        if entry["payout_status"] == PAYOUT_PAID:
            if entry["payout_reference"] == payout_reference:
                return {"status": "already_paid", "entry_id": entry_id}
            raise ConflictingTransition(
                "Payout entry already paid under another reference",
                current_status=PAYOUT_PAID,
                target_status=PAYOUT_PAID,
            )

        mark_entry_paid(
            cur,
            entry_id=entry_id,
            payout_reference=payout_reference,
            paid_at=paid_at or utc_now(),
        )
        return {"status": "paid", "entry_id": entry_id}

    result = run_in_txn(_do)
    logger.info("payout marked paid", extra={"entry_id": entry_id, "status": result["status"]})
    return result
