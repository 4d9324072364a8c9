"""Expired-lock reaper - transactional release of abandoned reservations.

Each sweep finds LOCKED reservations whose lock deadline has passed and
expires them one by one, each in its own transaction:
- Locks the reservation row with FOR UPDATE
- Re-checks status == LOCKED and lock_expires_at < now
  (a confirmation that won the race leaves nothing to do)
- Moves LOCKED -> EXPIRED (payment FAILED, lock cleared)
- Returns the rooms to the hotel

A failure on one reservation is logged and does not stop the sweep.
Overlapping sweeps are safe: the row lock plus the status guard means a
reservation is expired, and its rooms released, exactly once.
"""

from __future__ import annotations

import logging
from datetime import datetime

from psycopg2.extensions import cursor as PgCursor

from stayza.domain.inventory import release_rooms
from stayza.domain.transitions import EXPIRED, LOCKED, PAYMENT_FAILED, transition
from stayza.infra.db import run_in_txn, txn
from stayza.infra.repositories.reservations_repository import (
    get_reservation,
    list_expired_lock_ids,
)
from stayza.infra.time import utc_now

logger = logging.getLogger(__name__)

DEFAULT_BATCH_SIZE = 200


def expire_lock(
    cur: PgCursor,
    reservation: dict,
    *,
    gateway_payment_id: str | None = None,
) -> bool:
    """Expire a LOCKED reservation and release its rooms.

    Shared by the reaper and by gateway payment-failure handling.

    Args:
        cur: Database cursor (within transaction, reservation row locked).
        reservation: Reservation dict.
        gateway_payment_id: Failed gateway payment, if known.

    Returns:
        True if this call expired the reservation, False if it was
        already EXPIRED.

    Raises:
        ConflictingTransition: If the reservation left LOCKED for another state.
        InventoryConsistencyError: If the rooms cannot be released.
    """
    fields: dict = {"payment_status": PAYMENT_FAILED, "lock_expires_at": None}
    if gateway_payment_id:
        fields["gateway_payment_id"] = gateway_payment_id

    if not transition(cur, reservation["id"], LOCKED, EXPIRED, **fields):
        return False

    release_rooms(cur, reservation)
    return True


def expire_reservation(reservation_id: str, *, now: datetime | None = None) -> dict:
    """Expire one reservation if its lock has lapsed.

    Returns:
        Dict with result status:
        - {"status": "noop"} - not found, or no longer LOCKED
        - {"status": "not_expired_yet"} - lock deadline not reached
        - {"status": "expired", "reservation_id": str, "rooms_released": int}
    """
    now = now or utc_now()

    def _do(cur: PgCursor) -> dict:
        reservation = get_reservation(cur, reservation_id, for_update=True)
        if reservation is None or reservation["status"] != LOCKED:
            return {"status": "noop"}

        expires_at = reservation["lock_expires_at"]
        if expires_at is None or expires_at >= now:
            return {"status": "not_expired_yet"}

        if not expire_lock(cur, reservation):
            return {"status": "noop"}

        return {
            "status": "expired",
            "reservation_id": reservation_id,
            "rooms_released": reservation["rooms"],
        }

    return run_in_txn(_do)


def sweep_expired_locks(
    *,
    now: datetime | None = None,
    batch_size: int = DEFAULT_BATCH_SIZE,
) -> dict:
    """Run one reaper sweep.

    Args:
        now: Reference time (default: current UTC time).
        batch_size: Maximum reservations examined per sweep.

    Returns:
        Counters: {"found", "expired", "skipped", "failed"}.
    """
    now = now or utc_now()

    with txn() as cur:
        candidate_ids = list_expired_lock_ids(cur, now=now, limit=batch_size)

    summary = {"found": len(candidate_ids), "expired": 0, "skipped": 0, "failed": 0}

    for reservation_id in candidate_ids:
        try:
            result = expire_reservation(reservation_id, now=now)
        except Exception:
            summary["failed"] += 1
            logger.exception(
                "failed to expire reservation",
                extra={"reservation_id": reservation_id},
            )
            continue

        if result["status"] == "expired":
            summary["expired"] += 1
        else:
            summary["skipped"] += 1

    if summary["found"]:
        logger.info("reaper sweep finished", extra=summary)

    return summary
