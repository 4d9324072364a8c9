"""Dynamic pricing - pure price computation for a stay.

No I/O and no clock reads: the caller passes the hotel snapshot and the
booking date (``today``), so identical inputs always give identical output.

Per-night price is built by multiplying a running value, in order:
weekend surge, occupancy surge/discount, early-booking discount,
last-minute surge, manual surge, festival multiplier; then clamped and
rounded to an integer currency unit.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass
from datetime import date
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any, Mapping

from stayza.errors import InvalidDateRange, InvalidInput

DEFAULT_WEEKEND_MULTIPLIER = Decimal("1.1")
DEFAULT_COMMISSION_PERCENT = Decimal("15")

# (occupancy strictly above, multiplier), checked in order
HIGH_OCCUPANCY_SURGES = ((Decimal("80"), Decimal("1.35")), (Decimal("60"), Decimal("1.2")))
LOW_OCCUPANCY_THRESHOLD = Decimal("30")
LOW_OCCUPANCY_DISCOUNT = Decimal("0.85")

EARLY_BOOKING_DAYS = 15
EARLY_BOOKING_DISCOUNT = Decimal("0.9")
LAST_MINUTE_DAYS = 1
LAST_MINUTE_SURGE = Decimal("1.25")

MIN_PRICE_FACTOR = Decimal("0.7")
MAX_PRICE_FACTOR = Decimal("2.5")

# date.weekday(): Friday=4, Saturday=5
WEEKEND_CHECKIN_DAYS = (4, 5)


@dataclass(frozen=True)
class PriceBreakdown:
    """Immutable price snapshot taken at reservation time."""

    price_per_night: int
    nights: int
    rooms: int
    subtotal: int
    commission_percent: Decimal
    commission_amount: int
    owner_amount: int
    occupancy_percent: int

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["commission_percent"] = float(self.commission_percent)
        return data


def round_half_up(value: Decimal) -> int:
    """Round to the nearest integer, halves away from zero."""
    return int(value.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def _decimal(value: Any, field: str) -> Decimal:
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError) as e:
        raise InvalidInput(f"Hotel pricing field {field} is not numeric") from e


def _optional_decimal(hotel: Mapping[str, Any], field: str) -> Decimal | None:
    value = hotel.get(field)
    if value is None:
        return None
    return _decimal(value, field)


def occupancy_percent(total_rooms: int, available_rooms: int) -> Decimal:
    """Percentage of rooms currently held by LOCKED or CONFIRMED reservations."""
    return Decimal(total_rooms - available_rooms) / Decimal(total_rooms) * 100


def stay_nights(check_in: date, check_out: date) -> int:
    """Number of nights for a stay (minimum 1).

    Raises:
        InvalidDateRange: If check_out is not after check_in.
    """
    if check_out <= check_in:
        raise InvalidDateRange("check_out must be after check_in")
    return max((check_out - check_in).days, 1)


def price_stay(
    hotel: Mapping[str, Any],
    check_in: date,
    check_out: date,
    rooms: int,
    *,
    today: date,
) -> PriceBreakdown:
    """Compute the price breakdown for a stay.

    Args:
        hotel: Hotel snapshot with base_price, total_rooms, available_rooms
            and optional weekend_multiplier, surge_multiplier,
            festival_multiplier, commission_percent, min_price_floor,
            max_price_cap.
        check_in: Check-in date.
        check_out: Check-out date (exclusive).
        rooms: Rooms requested.
        today: Booking date, used for early-booking / last-minute rules.

    Returns:
        PriceBreakdown.

    Raises:
        InvalidDateRange: If check_out <= check_in.
        InvalidInput: If rooms < 1 or the hotel lacks pricing fields.
    """
    nights = stay_nights(check_in, check_out)

    if isinstance(rooms, bool) or not isinstance(rooms, int) or rooms < 1:
        raise InvalidInput("rooms must be a positive integer")

    for field in ("base_price", "total_rooms", "available_rooms"):
        if hotel.get(field) is None:
            raise InvalidInput(f"Hotel is missing pricing field {field}")

    base_price = _decimal(hotel["base_price"], "base_price")
    total_rooms = int(hotel["total_rooms"])
    available_rooms = int(hotel["available_rooms"])

    if base_price <= 0:
        raise InvalidInput("Hotel base_price must be positive")
    if total_rooms < 1:
        raise InvalidInput("Hotel total_rooms must be at least 1")

    price = base_price

    if check_in.weekday() in WEEKEND_CHECKIN_DAYS:
        weekend = _optional_decimal(hotel, "weekend_multiplier")
        price *= weekend or DEFAULT_WEEKEND_MULTIPLIER

    occupancy = occupancy_percent(total_rooms, available_rooms)
    for threshold, multiplier in HIGH_OCCUPANCY_SURGES:
        if occupancy > threshold:
            price *= multiplier
            break
    else:
        if occupancy < LOW_OCCUPANCY_THRESHOLD:
            price *= LOW_OCCUPANCY_DISCOUNT

    # Both day-count rules are evaluated independently
    days_before = (check_in - today).days
    if days_before >= EARLY_BOOKING_DAYS:
        price *= EARLY_BOOKING_DISCOUNT
    if days_before <= LAST_MINUTE_DAYS:
        price *= LAST_MINUTE_SURGE

    surge = _optional_decimal(hotel, "surge_multiplier")
    if surge:
        price *= surge
    festival = _optional_decimal(hotel, "festival_multiplier")
    if festival:
        price *= festival

    floor = _optional_decimal(hotel, "min_price_floor") or base_price * MIN_PRICE_FACTOR
    cap = _optional_decimal(hotel, "max_price_cap") or base_price * MAX_PRICE_FACTOR
    price = min(max(price, floor), cap)

    price_per_night = round_half_up(price)
    subtotal = price_per_night * nights * rooms

    commission_percent = _optional_decimal(hotel, "commission_percent")
    if commission_percent is None:
        commission_percent = DEFAULT_COMMISSION_PERCENT
    commission_amount = round_half_up(Decimal(subtotal) * commission_percent / 100)

    return PriceBreakdown(
        price_per_night=price_per_night,
        nights=nights,
        rooms=rooms,
        subtotal=subtotal,
        commission_percent=commission_percent,
        commission_amount=commission_amount,
        owner_amount=subtotal - commission_amount,
        occupancy_percent=round_half_up(occupancy),
    )
