"""Pending refunds repository - refunds owed to guests and their gateway outcome.

Uses raw SQL with psycopg2 (no ORM).
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from psycopg2.extensions import cursor as PgCursor

REASON_LATE_CAPTURE = "late_capture"
REASON_CANCELLED = "cancelled"

REFUND_PENDING = "pending"
REFUND_PROCESSED = "processed"
REFUND_FAILED = "failed"

_REFUND_COLUMNS = (
    "id",
    "reservation_id",
    "hotel_id",
    "reason",
    "amount_minor",
    "gateway_payment_id",
    "status",
    "gateway_refund_id",
    "failure_reason",
    "processed_at",
    "created_at",
)

_SELECT = f"SELECT {', '.join(_REFUND_COLUMNS)} FROM pending_refunds"


def _row_to_refund(row: tuple) -> dict[str, Any]:
    refund = dict(zip(_REFUND_COLUMNS, row))
    refund["id"] = str(refund["id"])
    refund["reservation_id"] = str(refund["reservation_id"])
    return refund


def insert_pending_refund(
    cur: PgCursor,
    *,
    reservation_id: str,
    hotel_id: str,
    reason: str,
    amount_minor: int,
    gateway_payment_id: str | None,
) -> tuple[str | None, bool]:
    """Insert a pending refund, at most one per (reservation, reason).

    Args:
        cur: Database cursor (within transaction).
        reservation_id: Reservation UUID being refunded.
        hotel_id: Hotel identifier.
        reason: 'late_capture' or 'cancelled'.
        amount_minor: Refund amount in minor currency units.
        gateway_payment_id: Gateway payment to refund, if known.

    Returns:
        Tuple of (refund_id, created).
    """
    cur.execute(
        """
        INSERT INTO pending_refunds (
            reservation_id, hotel_id, reason, amount_minor, gateway_payment_id
        )
        VALUES (%s, %s, %s, %s, %s)
        ON CONFLICT (reservation_id, reason) DO NOTHING
        RETURNING id
        """,
        (reservation_id, hotel_id, reason, amount_minor, gateway_payment_id),
    )
    row = cur.fetchone()
    if row is not None:
        return (str(row[0]), True)

    cur.execute(
        "SELECT id FROM pending_refunds WHERE reservation_id = %s AND reason = %s",
        (reservation_id, reason),
    )
    row = cur.fetchone()
    return (str(row[0]), False) if row else (None, False)


def get_pending_refund(
    cur: PgCursor,
    refund_id: str,
    *,
    for_update: bool = False,
) -> dict[str, Any] | None:
    """Fetch a refund record by id, optionally locking the row."""
    query = f"{_SELECT} WHERE id = %s"
    if for_update:
        query += " FOR UPDATE"
    cur.execute(query, (refund_id,))
    row = cur.fetchone()
    return _row_to_refund(row) if row else None


def list_pending_refunds(
    cur: PgCursor,
    reservation_id: str,
) -> list[dict[str, Any]]:
    """List refund records for a reservation."""
    cur.execute(
        f"{_SELECT} WHERE reservation_id = %s ORDER BY created_at",
        (reservation_id,),
    )
    return [_row_to_refund(row) for row in cur.fetchall()]


def list_refund_ids_by_status(
    cur: PgCursor,
    *,
    status: str,
    limit: int,
) -> list[str]:
    """List refund ids in a status, oldest first."""
    cur.execute(
        """
        SELECT id FROM pending_refunds
        WHERE status = %s
        ORDER BY created_at ASC
        LIMIT %s
        """,
        (status, limit),
    )
    return [str(row[0]) for row in cur.fetchall()]


def mark_refund_processed(
    cur: PgCursor,
    *,
    refund_id: str,
    gateway_refund_id: str,
    processed_at: datetime,
) -> bool:
    """Record a successful gateway refund.

    Returns:
        True if the row moved to processed, False if it already was.
    """
    cur.execute(
        """
        UPDATE pending_refunds
        SET status = 'processed', gateway_refund_id = %s,
            processed_at = %s, failure_reason = NULL
        WHERE id = %s AND status <> 'processed'
        """,
        (gateway_refund_id, processed_at, refund_id),
    )
    return cur.rowcount == 1


def mark_refund_failed(
    cur: PgCursor,
    *,
    refund_id: str,
    failure_reason: str,
) -> bool:
    """Record a failed refund attempt; processed refunds are left alone."""
    cur.execute(
        """
        UPDATE pending_refunds
        SET status = 'failed', failure_reason = %s
        WHERE id = %s AND status <> 'processed'
        """,
        (failure_reason, refund_id),
    )
    return cur.rowcount == 1
