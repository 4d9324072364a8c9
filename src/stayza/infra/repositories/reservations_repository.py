"""Reservations repository - persistence for reservation records.

Uses raw SQL with psycopg2 (no ORM).
Status changes go through update_reservation_status(), which only
applies when the row is still in the expected source state.
"""

from datetime import date, datetime
from decimal import Decimal

from psycopg2.extensions import cursor as PgCursor

_RESERVATION_COLUMNS = (
    "id",
    "booking_ref",
    "hotel_id",
    "user_id",
    "check_in",
    "check_out",
    "rooms",
    "nights",
    "base_price_per_night",
    "price_per_night",
    "subtotal",
    "commission_percent",
    "commission_amount",
    "owner_payout_amount",
    "currency",
    "status",
    "lock_expires_at",
    "payment_method",
    "payment_status",
    "gateway_order_id",
    "gateway_payment_id",
    "paid_at",
    "cancelled_at",
    "completed_at",
    "created_at",
)

_SELECT = f"SELECT {', '.join(_RESERVATION_COLUMNS)} FROM reservations"

# Columns a status transition may set alongside status
_TRANSITION_FIELDS = frozenset(
    {
        "lock_expires_at",
        "payment_status",
        "gateway_payment_id",
        "gateway_signature",
        "paid_at",
        "cancelled_at",
        "completed_at",
    }
)


def _row_to_reservation(row: tuple) -> dict:
    reservation = dict(zip(_RESERVATION_COLUMNS, row))
    reservation["id"] = str(reservation["id"])
    return reservation


def insert_reservation(
    cur: PgCursor,
    *,
    booking_ref: str,
    hotel_id: str,
    user_id: str,
    check_in: date,
    check_out: date,
    rooms: int,
    nights: int,
    base_price_per_night: Decimal,
    price_per_night: int,
    subtotal: int,
    commission_percent: Decimal,
    commission_amount: int,
    owner_payout_amount: int,
    currency: str,
    lock_expires_at: datetime,
) -> dict:
    """Insert a reservation in LOCKED state.

    Args:
        cur: Database cursor (within transaction).
        booking_ref: Human-readable booking reference.
        hotel_id: Hotel identifier.
        user_id: Authenticated user identifier.
        check_in: Check-in date.
        check_out: Check-out date.
        rooms: Rooms held.
        nights: Number of nights.
        base_price_per_night: Hotel base price at reservation time.
        price_per_night: Dynamic price per night.
        subtotal: price_per_night * nights * rooms.
        commission_percent: Commission percent applied.
        commission_amount: Platform commission.
        owner_payout_amount: Hotel owner share.
        currency: Currency code.
        lock_expires_at: Lock deadline.

    Returns:
        Dict with the stored reservation.
    """
    cur.execute(
        f"""
        INSERT INTO reservations (
            booking_ref, hotel_id, user_id, check_in, check_out,
            rooms, nights, base_price_per_night, price_per_night, subtotal,
            commission_percent, commission_amount, owner_payout_amount,
            currency, status, lock_expires_at, payment_status
        )
        VALUES (
            %s, %s, %s, %s, %s,
            %s, %s, %s, %s, %s,
            %s, %s, %s,
            %s, 'LOCKED', %s, 'PENDING'
        )
        RETURNING {', '.join(_RESERVATION_COLUMNS)}
        """,
        (
            booking_ref,
            hotel_id,
            user_id,
            check_in,
            check_out,
            rooms,
            nights,
            base_price_per_night,
            price_per_night,
            subtotal,
            commission_percent,
            commission_amount,
            owner_payout_amount,
            currency,
            lock_expires_at,
        ),
    )
    return _row_to_reservation(cur.fetchone())


def get_reservation(
    cur: PgCursor,
    reservation_id: str,
    *,
    for_update: bool = False,
) -> dict | None:
    """Retrieve a reservation by ID, optionally locking the row.

    Args:
        cur: Database cursor.
        reservation_id: Reservation UUID.
        for_update: Lock the row until the transaction ends.

    Returns:
        Dict with reservation data or None if not found.
    """
    query = f"{_SELECT} WHERE id = %s"
    if for_update:
        query += " FOR UPDATE"
    cur.execute(query, (reservation_id,))
    row = cur.fetchone()
    return _row_to_reservation(row) if row else None


def get_reservation_by_order(
    cur: PgCursor,
    gateway_order_id: str,
    *,
    for_update: bool = False,
) -> dict | None:
    """Retrieve a reservation by its gateway order identifier.

    Args:
        cur: Database cursor.
        gateway_order_id: Order id issued by the payment gateway.
        for_update: Lock the row until the transaction ends.

    Returns:
        Dict with reservation data or None if not found.
    """
    query = f"{_SELECT} WHERE gateway_order_id = %s"
    if for_update:
        query += " FOR UPDATE"
    cur.execute(query, (gateway_order_id,))
    row = cur.fetchone()
    return _row_to_reservation(row) if row else None


def count_user_reservations_since(
    cur: PgCursor,
    *,
    user_id: str,
    since: datetime,
) -> int:
    """Count reservations created by a user since a timestamp."""
    cur.execute(
        """
        SELECT COUNT(*) FROM reservations
        WHERE user_id = %s AND created_at >= %s
        """,
        (user_id, since),
    )
    return cur.fetchone()[0]


def list_user_reservations(
    cur: PgCursor,
    *,
    user_id: str,
    limit: int,
) -> list[dict]:
    """List a user's reservations, newest first."""
    cur.execute(
        f"{_SELECT} WHERE user_id = %s ORDER BY created_at DESC, id DESC LIMIT %s",
        (user_id, limit),
    )
    return [_row_to_reservation(row) for row in cur.fetchall()]


def list_expired_lock_ids(
    cur: PgCursor,
    *,
    now: datetime,
    limit: int,
) -> list[str]:
    """List LOCKED reservations whose lock deadline has passed.

    Args:
        cur: Database cursor.
        now: Reference time.
        limit: Maximum number of ids to return.

    Returns:
        Reservation UUID strings, oldest deadline first.
    """
    cur.execute(
        """
        SELECT id FROM reservations
        WHERE status = 'LOCKED' AND lock_expires_at < %s
        ORDER BY lock_expires_at ASC
        LIMIT %s
        """,
        (now, limit),
    )
    return [str(row[0]) for row in cur.fetchall()]


def set_gateway_order(
    cur: PgCursor,
    *,
    reservation_id: str,
    gateway_order_id: str,
) -> bool:
    """Attach a gateway order to a LOCKED reservation without an order.

    Returns:
        True if the order was stored, False if the guard failed.
    """
    cur.execute(
        """
        UPDATE reservations
        SET gateway_order_id = %s, payment_status = 'PENDING', updated_at = now()
        WHERE id = %s AND status = 'LOCKED' AND gateway_order_id IS NULL
        """,
        (gateway_order_id, reservation_id),
    )
    return cur.rowcount == 1


def update_reservation_status(
    cur: PgCursor,
    *,
    reservation_id: str,
    from_status: str,
    to_status: str,
    fields: dict | None = None,
) -> bool:
    """Apply a status change only if the row is still in from_status.

    Args:
        cur: Database cursor (within transaction).
        reservation_id: Reservation UUID.
        from_status: Required current status.
        to_status: New status.
        fields: Extra columns to set (restricted to transition fields).

    Returns:
        True if the row was updated, False if the guard failed.

    Raises:
        ValueError: If fields contains a column that is not a transition field.
    """
    fields = fields or {}
    unknown = set(fields) - _TRANSITION_FIELDS
    if unknown:
        raise ValueError(f"Not a transition field: {sorted(unknown)}")

    assignments = ["status = %s", "updated_at = now()"]
    params: list = [to_status]
    for column, value in fields.items():
        assignments.append(f"{column} = %s")
        params.append(value)
    params.extend([reservation_id, from_status])

    cur.execute(
        f"""
        UPDATE reservations
        SET {', '.join(assignments)}
        WHERE id = %s AND status = %s
        """,
        params,
    )
    return cur.rowcount == 1


def get_reservation_status(cur: PgCursor, reservation_id: str) -> str | None:
    """Return the current status of a reservation, or None if missing."""
    cur.execute("SELECT status FROM reservations WHERE id = %s", (reservation_id,))
    row = cur.fetchone()
    return row[0] if row else None


def set_payment_status(
    cur: PgCursor,
    *,
    reservation_id: str,
    payment_status: str,
) -> bool:
    """Set payment_status without touching the lifecycle status."""
    cur.execute(
        """
        UPDATE reservations
        SET payment_status = %s, updated_at = now()
        WHERE id = %s
        """,
        (payment_status, reservation_id),
    )
    return cur.rowcount == 1
