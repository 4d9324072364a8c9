"""Hotels repository - inventory ledger for hotel room counts.

Uses raw SQL with psycopg2 (no ORM).
Every mutation of available_rooms is a single guarded UPDATE, so the
bound 0 <= available_rooms <= total_rooms holds under concurrency: the
row lock taken by the UPDATE serializes competing writers and the WHERE
guard is re-evaluated against the committed value.
"""

from psycopg2.extensions import cursor as PgCursor

_HOTEL_COLUMNS = (
    "id",
    "name",
    "is_active",
    "total_rooms",
    "available_rooms",
    "base_price",
    "weekend_multiplier",
    "surge_multiplier",
    "festival_multiplier",
    "commission_percent",
    "min_price_floor",
    "max_price_cap",
    "currency",
    "occupancy_rate",
    "total_bookings",
    "total_revenue",
)


def _row_to_hotel(row: tuple) -> dict:
    return dict(zip(_HOTEL_COLUMNS, row))


def get_hotel(
    cur: PgCursor,
    hotel_id: str,
    *,
    for_update: bool = False,
) -> dict | None:
    """Retrieve a hotel snapshot by ID.

    Args:
        cur: Database cursor.
        hotel_id: Hotel identifier.
        for_update: Lock the row so the snapshot stays current until commit.

    Returns:
        Dict with hotel data or None if not found.
    """
    query = f"SELECT {', '.join(_HOTEL_COLUMNS)} FROM hotels WHERE id = %s"
    if for_update:
        query += " FOR UPDATE"
    cur.execute(query, (hotel_id,))
    row = cur.fetchone()
    return _row_to_hotel(row) if row else None


def _adjust_available_rooms(
    cur: PgCursor,
    *,
    hotel_id: str,
    delta: int,
    guard: str,
) -> int | None:
    # SET expressions see the pre-update row, so occupancy uses the delta too
    cur.execute(
        f"""
        UPDATE hotels
        SET available_rooms = available_rooms + %(delta)s,
            occupancy_rate = round(
                (total_rooms - (available_rooms + %(delta)s)) * 100.0 / total_rooms
            ),
            updated_at = now()
        WHERE id = %(hotel_id)s
          AND {guard}
        RETURNING available_rooms
        """,
        {"delta": delta, "hotel_id": hotel_id},
    )
    row = cur.fetchone()
    return row[0] if row else None


def decrement_available_rooms(
    cur: PgCursor,
    *,
    hotel_id: str,
    rooms: int,
) -> int | None:
    """Take rooms out of inventory with an availability guard.

    Args:
        cur: Database cursor (within transaction).
        hotel_id: Hotel identifier.
        rooms: Number of rooms to hold.

    Returns:
        New available_rooms value, or None if the guard failed
        (not enough rooms, hotel inactive or missing).
    """
    return _adjust_available_rooms(
        cur,
        hotel_id=hotel_id,
        delta=-rooms,
        guard="is_active AND available_rooms + %(delta)s >= 0",
    )


def increment_available_rooms(
    cur: PgCursor,
    *,
    hotel_id: str,
    rooms: int,
) -> int | None:
    """Return rooms to inventory with an upper-bound guard.

    Args:
        cur: Database cursor (within transaction).
        hotel_id: Hotel identifier.
        rooms: Number of rooms to release.

    Returns:
        New available_rooms value, or None if releasing would exceed
        total_rooms (inventory inconsistency) or the hotel is missing.
    """
    return _adjust_available_rooms(
        cur,
        hotel_id=hotel_id,
        delta=rooms,
        guard="available_rooms + %(delta)s <= total_rooms",
    )


def record_confirmed_booking(
    cur: PgCursor,
    *,
    hotel_id: str,
    amount: int,
) -> None:
    """Bump hotel aggregate counters for a confirmed reservation.

    Args:
        cur: Database cursor (within transaction).
        hotel_id: Hotel identifier.
        amount: Reservation subtotal (currency units).
    """
    cur.execute(
        """
        UPDATE hotels
        SET total_bookings = total_bookings + 1,
            total_revenue = total_revenue + %s,
            updated_at = now()
        WHERE id = %s
        """,
        (amount, hotel_id),
    )
