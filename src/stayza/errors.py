"""Failure taxonomy for the reservation core.

Every failure that reaches a caller carries a stable ``kind`` string and
a human message. The API layer renders them with a single exception
handler (see ``stayza.api.factory``) using ``http_status``.
"""

from __future__ import annotations


class ReservationError(Exception):
    """Base class for structured reservation/payment failures."""

    kind = "internal_error"
    http_status = 500

    def __init__(self, message: str | None = None, **meta: object) -> None:
        self.message = message or self.__class__.__doc__ or self.kind
        self.meta = meta
        super().__init__(self.message)

    def to_dict(self) -> dict:
        return {"kind": self.kind, "message": self.message}


class InvalidInput(ReservationError):
    """Malformed dates, counts or pricing parameters."""

    kind = "invalid_input"
    http_status = 400


class InvalidDateRange(InvalidInput):
    """Check-out must be after check-in."""

    kind = "invalid_date_range"


class HotelUnavailable(ReservationError):
    """Hotel does not exist or is not accepting reservations."""

    kind = "hotel_unavailable"
    http_status = 404


class InsufficientInventory(ReservationError):
    """Not enough rooms available."""

    kind = "insufficient_inventory"
    http_status = 409


class RateLimited(ReservationError):
    """Daily reservation limit exceeded."""

    kind = "rate_limited"
    http_status = 429


class InvalidSignature(ReservationError):
    """Payment signal signature does not match."""

    kind = "invalid_signature"
    http_status = 400


class ReservationNotFound(ReservationError):
    """Reservation not found."""

    kind = "reservation_not_found"
    http_status = 404


class NotReservationOwner(ReservationError):
    """Reservation belongs to another user."""

    kind = "forbidden"
    http_status = 403


class ConflictingTransition(ReservationError):
    """Reservation is no longer in the state required for this action."""

    kind = "conflicting_transition"
    http_status = 409

    def __init__(
        self,
        message: str | None = None,
        *,
        current_status: str | None = None,
        target_status: str | None = None,
        **meta: object,
    ) -> None:
        self.current_status = current_status
        self.target_status = target_status
        super().__init__(message, **meta)


class StorageConflict(ReservationError):
    """Concurrent update conflict; retries exhausted."""

    kind = "storage_conflict"
    http_status = 503


class InventoryConsistencyError(ReservationError):
    """Inventory state is inconsistent with reservation state."""

    kind = "inventory_inconsistent"
    http_status = 500


class GatewayError(ReservationError):
    """Payment gateway request failed."""

    kind = "gateway_error"
    http_status = 502
