"""Payout ledger repository - one commission/payout entry per reservation.

Uses raw SQL with psycopg2 (no ORM).
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from psycopg2.extensions import cursor as PgCursor

_ENTRY_COLUMNS = (
    "id",
    "reservation_id",
    "hotel_id",
    "total_amount",
    "commission_amount",
    "gateway_fee",
    "owner_payout_amount",
    "currency",
    "payout_status",
    "payout_reference",
    "payout_date",
    "created_at",
)


def _row_to_entry(row: tuple) -> dict[str, Any]:
    entry = dict(zip(_ENTRY_COLUMNS, row))
    entry["id"] = str(entry["id"])
    entry["reservation_id"] = str(entry["reservation_id"])
    return entry


def insert_payout_entry(
    cur: PgCursor,
    *,
    reservation_id: str,
    hotel_id: str,
    total_amount: int,
    commission_amount: int,
    gateway_fee: int,
    owner_payout_amount: int,
    currency: str,
) -> tuple[str | None, bool]:
    """Insert a ledger entry, idempotent via UNIQUE(reservation_id).

    Args:
        cur: Database cursor (within transaction).
        reservation_id: Confirmed reservation UUID.
        hotel_id: Hotel identifier.
        total_amount: Reservation subtotal.
        commission_amount: Platform commission.
        gateway_fee: Payment gateway fee.
        owner_payout_amount: Amount owed to the hotel owner.
        currency: Currency code.

    Returns:
        Tuple of (entry_id, created).
        - entry_id: UUID string of the entry.
        - created: True if newly created, False if it already existed.
    """
    cur.execute(
        """
        INSERT INTO payout_ledger (
            reservation_id, hotel_id, total_amount, commission_amount,
            gateway_fee, owner_payout_amount, currency
        )
        VALUES (%s, %s, %s, %s, %s, %s, %s)
        ON CONFLICT (reservation_id) DO NOTHING
        RETURNING id
        """,
        (
            reservation_id,
            hotel_id,
            total_amount,
            commission_amount,
            gateway_fee,
            owner_payout_amount,
            currency,
        ),
    )
    row = cur.fetchone()

    if row is not None:
        return (str(row[0]), True)

    cur.execute(
        "SELECT id FROM payout_ledger WHERE reservation_id = %s",
        (reservation_id,),
    )
    row = cur.fetchone()
    if row is not None:
        return (str(row[0]), False)

    return (None, False)


def get_payout_entry(
    cur: PgCursor,
    entry_id: str,
    *,
    for_update: bool = False,
) -> dict[str, Any] | None:
    """Fetch a ledger entry by ID."""
    query = f"SELECT {', '.join(_ENTRY_COLUMNS)} FROM payout_ledger WHERE id = %s"
    if for_update:
        query += " FOR UPDATE"
    cur.execute(query, (entry_id,))
    row = cur.fetchone()
    return _row_to_entry(row) if row else None


def get_payout_entry_for_reservation(
    cur: PgCursor,
    reservation_id: str,
) -> dict[str, Any] | None:
    """Fetch the ledger entry of a reservation, if any."""
    cur.execute(
        f"SELECT {', '.join(_ENTRY_COLUMNS)} FROM payout_ledger WHERE reservation_id = %s",
        (reservation_id,),
    )
    row = cur.fetchone()
    return _row_to_entry(row) if row else None


def mark_entry_paid(
    cur: PgCursor,
    *,
    entry_id: str,
    payout_reference: str,
    paid_at: datetime,
) -> bool:
    """Move an entry from UNPAID to PAID.

    Returns:
        True if updated, False if the entry is missing or not UNPAID.
    """
    cur.execute(
        """
        UPDATE payout_ledger
        SET payout_status = 'PAID',
            payout_reference = %s,
            payout_date = %s,
            updated_at = now()
        WHERE id = %s AND payout_status = 'UNPAID'
        """,
        (payout_reference, paid_at, entry_id),
    )
    return cur.rowcount == 1
