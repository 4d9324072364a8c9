"""Reservation lifecycle state machine.

Statuses move forward only:

    LOCKED -> CONFIRMED | EXPIRED
    CONFIRMED -> CANCELLED | COMPLETED

A transition is applied with a guarded UPDATE (WHERE status = from), so
two actors racing on the same reservation (payment reconciler and lock
reaper) resolve to whichever commits first; the loser sees the guard
fail and gets either an idempotent no-op (row already at the target) or
ConflictingTransition (row moved elsewhere).
"""

from __future__ import annotations

from psycopg2.extensions import cursor as PgCursor

from stayza.errors import ConflictingTransition, ReservationNotFound
from stayza.infra.repositories.reservations_repository import (
    get_reservation_status,
    update_reservation_status,
)

LOCKED = "LOCKED"
CONFIRMED = "CONFIRMED"
EXPIRED = "EXPIRED"
CANCELLED = "CANCELLED"
COMPLETED = "COMPLETED"

PAYMENT_PAID = "PAID"
PAYMENT_FAILED = "FAILED"
PAYMENT_REFUNDED = "REFUNDED"

ALLOWED_TRANSITIONS: dict[str, frozenset[str]] = {
    LOCKED: frozenset({CONFIRMED, EXPIRED}),
    CONFIRMED: frozenset({CANCELLED, COMPLETED}),
    EXPIRED: frozenset(),
    CANCELLED: frozenset(),
    COMPLETED: frozenset(),
}


def check_transition(from_status: str, to_status: str) -> None:
    """Raise ValueError if the lifecycle does not allow from -> to."""
    if to_status not in ALLOWED_TRANSITIONS.get(from_status, frozenset()):
        raise ValueError(f"Transition {from_status} -> {to_status} is not allowed")


def transition(
    cur: PgCursor,
    reservation_id: str,
    from_status: str,
    to_status: str,
    **fields: object,
) -> bool:
    """Move a reservation from one status to another under a guard.

    Args:
        cur: Database cursor (within transaction).
        reservation_id: Reservation UUID.
        from_status: Required current status.
        to_status: Target status.
        **fields: Extra reservation columns to set with the status.

    Returns:
        True if this call applied the transition.
        False if the reservation was already at to_status (no-op).

    Raises:
        ValueError: If the lifecycle forbids from -> to.
        ReservationNotFound: If the reservation does not exist.
        ConflictingTransition: If the reservation is in any other status.
    """
    check_transition(from_status, to_status)

    if update_reservation_status(
        cur,
        reservation_id=reservation_id,
        from_status=from_status,
        to_status=to_status,
        fields=fields,
    ):
        return True

    current = get_reservation_status(cur, reservation_id)
    if current is None:
        raise ReservationNotFound(f"Reservation not found: {reservation_id}")
    if current == to_status:
        return False
    raise ConflictingTransition(
        f"Reservation is {current}, cannot move to {to_status}",
        current_status=current,
        target_status=to_status,
    )
