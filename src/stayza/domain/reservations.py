"""Reservation domain logic - transactional reservation locking.

Implements safe inventory reservation with zero overbooking guarantee.
Validation, pricing, inventory decrement and reservation insert happen
in a single transaction; either all of it commits or none of it does.

Inventory is taken at reservation time (status LOCKED), not at payment
time. The lock is released by exactly one of: payment failure/lock
expiry (LOCKED -> EXPIRED), cancellation (CONFIRMED -> CANCELLED) or the
end of the stay (CONFIRMED -> COMPLETED).
"""

from __future__ import annotations

import logging
import os
import secrets
import time
from datetime import date, datetime, timedelta
from decimal import Decimal
from typing import Any

from psycopg2.extensions import cursor as PgCursor

from stayza.domain.inventory import hold_rooms, release_rooms
from stayza.domain.pricing import PriceBreakdown, price_stay, stay_nights
from stayza.domain.transitions import (
    CANCELLED,
    COMPLETED,
    CONFIRMED,
    transition,
)
from stayza.errors import (
    HotelUnavailable,
    InsufficientInventory,
    InvalidInput,
    NotReservationOwner,
    RateLimited,
    ReservationNotFound,
)
from stayza.infra.db import run_in_txn, txn
from stayza.infra.repositories.hotels_repository import get_hotel
from stayza.infra.repositories.pending_refunds_repository import (
    REASON_CANCELLED,
    insert_pending_refund,
)
from stayza.infra.repositories.reservations_repository import (
    count_user_reservations_since,
    get_reservation,
    insert_reservation,
    list_user_reservations,
)
from stayza.infra.time import start_of_utc_day, utc_now, utc_today

logger = logging.getLogger(__name__)

DEFAULT_CURRENCY = "INR"


def lock_duration() -> timedelta:
    """How long a LOCKED reservation holds inventory (RESERVATION_LOCK_MINUTES)."""
    return timedelta(minutes=int(os.environ.get("RESERVATION_LOCK_MINUTES", "10")))


def daily_reservation_limit() -> int:
    """Per-user reservations allowed per UTC day (DAILY_RESERVATION_LIMIT)."""
    return int(os.environ.get("DAILY_RESERVATION_LIMIT", "5"))


def generate_booking_ref() -> str:
    """Human-readable booking reference, e.g. STZ-482913-9F3A1C."""
    timestamp = str(int(time.time() * 1000))[-6:]
    return f"STZ-{timestamp}-{secrets.token_hex(3).upper()}"


def _check_owner(reservation: dict, user_id: str | None) -> None:
    if user_id is not None and reservation["user_id"] != user_id:
        raise NotReservationOwner("Reservation belongs to another user")


def reserve(
    *,
    user_id: str,
    hotel_id: str,
    check_in: date,
    check_out: date,
    rooms: int,
    now: datetime | None = None,
) -> tuple[dict, PriceBreakdown]:
    """Lock inventory for a stay and create a LOCKED reservation.

    This function, in one transaction:
    1. Serializes the user's reservation attempts (advisory lock) and
       enforces the daily reservation limit
    2. Locks the hotel row and validates it is active with enough rooms
    3. Prices the stay from the locked (current) hotel snapshot
    4. Decrements available_rooms with a guard (zero overbooking)
    5. Inserts the reservation with lock_expires_at = now + lock duration

    Conflicts (serialization failure/deadlock) retry the whole unit.

    Args:
        user_id: Authenticated user identifier.
        hotel_id: Hotel identifier.
        check_in: Check-in date.
        check_out: Check-out date (exclusive).
        rooms: Rooms requested (>= 1).
        now: Reference time (default: current UTC time).

    Returns:
        Tuple of (reservation dict, price breakdown).

    Raises:
        InvalidDateRange: If check_out <= check_in.
        InvalidInput: If rooms < 1.
        RateLimited: If the user reached the daily limit.
        HotelUnavailable: If the hotel is missing or inactive.
        InsufficientInventory: If not enough rooms are available.
        StorageConflict: If conflicts persisted through every retry.
    """
    stay_nights(check_in, check_out)
    if isinstance(rooms, bool) or not isinstance(rooms, int) or rooms < 1:
        raise InvalidInput("rooms must be a positive integer")

    now = now or utc_now()
    limit = daily_reservation_limit()

    def _do(cur: PgCursor) -> tuple[dict, PriceBreakdown]:
        # Step 1: abuse threshold (per-user serialization keeps the count exact)
        cur.execute("SELECT pg_advisory_xact_lock(hashtext(%s))", (user_id,))
        today_count = count_user_reservations_since(
            cur, user_id=user_id, since=start_of_utc_day(now)
        )
        if today_count >= limit:
            raise RateLimited("Daily reservation limit exceeded")

        # Step 2: hotel snapshot, locked until commit
        hotel = get_hotel(cur, hotel_id, for_update=True)
        if hotel is None or not hotel["is_active"]:
            raise HotelUnavailable("Hotel not available")
        if hotel["available_rooms"] < rooms:
            raise InsufficientInventory("Not enough rooms available")

        # Step 3: price against the current snapshot
        pricing = price_stay(hotel, check_in, check_out, rooms, today=now.date())

        # Step 4: guarded decrement
        hold_rooms(cur, hotel_id=hotel_id, rooms=rooms)

        # Step 5: reservation record
        reservation = insert_reservation(
            cur,
            booking_ref=generate_booking_ref(),
            hotel_id=hotel_id,
            user_id=user_id,
            check_in=check_in,
            check_out=check_out,
            rooms=rooms,
            nights=pricing.nights,
            base_price_per_night=Decimal(str(hotel["base_price"])),
            price_per_night=pricing.price_per_night,
            subtotal=pricing.subtotal,
            commission_percent=pricing.commission_percent,
            commission_amount=pricing.commission_amount,
            owner_payout_amount=pricing.owner_amount,
            currency=hotel.get("currency") or DEFAULT_CURRENCY,
            lock_expires_at=now + lock_duration(),
        )
        return reservation, pricing

    reservation, pricing = run_in_txn(_do)

    logger.info(
        "reservation locked",
        extra={
            "reservation_id": reservation["id"],
            "hotel_id": hotel_id,
            "rooms": rooms,
            "subtotal": pricing.subtotal,
        },
    )
    return reservation, pricing


def get_reservation_for_user(reservation_id: str, user_id: str | None) -> dict:
    """Fetch a reservation, enforcing ownership when user_id is given.

    Raises:
        ReservationNotFound: If the reservation does not exist.
        NotReservationOwner: If it belongs to another user.
    """
    with txn() as cur:
        reservation = get_reservation(cur, reservation_id)
    if reservation is None:
        raise ReservationNotFound(f"Reservation not found: {reservation_id}")
    _check_owner(reservation, user_id)
    return reservation


def list_reservations_for_user(user_id: str, *, limit: int = 50) -> list[dict]:
    """Return the user's reservations, most recently created first."""
    with txn() as cur:
        return list_user_reservations(cur, user_id=user_id, limit=limit)


def cancel_reservation(
    reservation_id: str,
    *,
    user_id: str | None,
    now: datetime | None = None,
) -> dict:
    """Cancel a CONFIRMED reservation and give its rooms back.

    A pending refund for the full amount is recorded; the refund worker
    pays it back through the gateway. Cancelling an already cancelled
    reservation is a no-op.

    Returns:
        {"status": "cancelled" | "already_cancelled", "reservation_id": str}

    Raises:
        ReservationNotFound: If the reservation does not exist.
        NotReservationOwner: If it belongs to another user.
        ConflictingTransition: If it is not CONFIRMED (e.g. still LOCKED).
    """
    now = now or utc_now()

    def _do(cur: PgCursor) -> dict:
        reservation = get_reservation(cur, reservation_id, for_update=True)
        if reservation is None:
            raise ReservationNotFound(f"Reservation not found: {reservation_id}")
        _check_owner(reservation, user_id)

        applied = transition(cur, reservation_id, CONFIRMED, CANCELLED, cancelled_at=now)
        if not applied:
            return {"status": "already_cancelled", "reservation_id": reservation_id}

        release_rooms(cur, reservation)
        insert_pending_refund(
            cur,
            reservation_id=reservation_id,
            hotel_id=reservation["hotel_id"],
            reason=REASON_CANCELLED,
            amount_minor=int(reservation["subtotal"]) * 100,
            gateway_payment_id=reservation["gateway_payment_id"],
        )
        return {"status": "cancelled", "reservation_id": reservation_id}

    result = run_in_txn(_do)
    logger.info(
        "reservation cancel processed",
        extra={"reservation_id": reservation_id, "status": result["status"]},
    )
    return result


def complete_reservation(reservation_id: str, *, today: date | None = None) -> dict:
    """Close a CONFIRMED reservation once the stay has ended.

    Returns:
        {"status": "completed" | "already_completed", "reservation_id": str}

    Raises:
        ReservationNotFound: If the reservation does not exist.
        InvalidInput: If check-out has not been reached yet.
        ConflictingTransition: If it is not CONFIRMED.
    """
    today = today or utc_today()

    def _do(cur: PgCursor) -> dict:
        reservation = get_reservation(cur, reservation_id, for_update=True)
        if reservation is None:
            raise ReservationNotFound(f"Reservation not found: {reservation_id}")

        if reservation["status"] == CONFIRMED and today < reservation["check_out"]:
            raise InvalidInput("Stay has not ended yet")

        applied = transition(
            cur, reservation_id, CONFIRMED, COMPLETED, completed_at=utc_now()
        )
        if not applied:
            return {"status": "already_completed", "reservation_id": reservation_id}

        release_rooms(cur, reservation)
        return {"status": "completed", "reservation_id": reservation_id}

    return run_in_txn(_do)


def serialize_reservation(reservation: dict) -> dict[str, Any]:
    """JSON-friendly view of a reservation (no gateway signature)."""
    data: dict[str, Any] = {}
    for key, value in reservation.items():
        if isinstance(value, (date, datetime)):
            data[key] = value.isoformat()
        elif isinstance(value, Decimal):
            data[key] = float(value)
        else:
            data[key] = value
    return data
