"""Inventory ledger operations shared by every reservation transition."""

from psycopg2.extensions import cursor as PgCursor

from stayza.errors import InsufficientInventory, InventoryConsistencyError
from stayza.infra.repositories.hotels_repository import (
    decrement_available_rooms,
    increment_available_rooms,
)


def hold_rooms(cur: PgCursor, *, hotel_id: str, rooms: int) -> int:
    """Take rooms out of a hotel's inventory.

    Returns:
        Remaining available rooms.

    Raises:
        InsufficientInventory: If fewer than ``rooms`` are available.
    """
    remaining = decrement_available_rooms(cur, hotel_id=hotel_id, rooms=rooms)
    if remaining is None:
        raise InsufficientInventory("Not enough rooms available")
    return remaining


def release_rooms(cur: PgCursor, reservation: dict) -> int:
    """Give a reservation's rooms back to its hotel.

    Must run in the same transaction as the status transition that ends
    the reservation's claim, so the release happens exactly once.

    Returns:
        Available rooms after the release.

    Raises:
        InventoryConsistencyError: If the release would exceed total_rooms.
    """
    available = increment_available_rooms(
        cur,
        hotel_id=reservation["hotel_id"],
        rooms=reservation["rooms"],
    )
    if available is None:
        raise InventoryConsistencyError(
            f"Failed to release {reservation['rooms']} rooms for hotel "
            f"{reservation['hotel_id']}"
        )
    return available
