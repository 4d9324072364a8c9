"""Integration tests for reservation locking - real Postgres.

Requires DATABASE_URL. Skipped otherwise.
"""

import os
from concurrent.futures import ThreadPoolExecutor
from datetime import date, datetime, timedelta, timezone
from unittest.mock import patch

import pytest

from helpers import attach_order, available_rooms, load_reservation, unique_user
from stayza.domain.reconciliation import SOURCE_WEBHOOK, confirm_payment
from stayza.domain.reservations import (
    cancel_reservation,
    complete_reservation,
    get_reservation_for_user,
    list_reservations_for_user,
    reserve,
)
from stayza.errors import (
    ConflictingTransition,
    HotelUnavailable,
    InsufficientInventory,
    InvalidDateRange,
    InvalidInput,
    NotReservationOwner,
    RateLimited,
)

pytestmark = pytest.mark.skipif(
    not os.environ.get("DATABASE_URL"),
    reason="DATABASE_URL not set - skipping DB integration tests",
)

BOOKED_AT = datetime(2026, 10, 13, 9, 0, tzinfo=timezone.utc)
CHECK_IN = date(2026, 11, 2)
CHECK_OUT = date(2026, 11, 4)


def _reserve(hotel_id, *, user_id=None, rooms=1, **kwargs):
    return reserve(
        user_id=user_id or unique_user(),
        hotel_id=hotel_id,
        check_in=kwargs.pop("check_in", CHECK_IN),
        check_out=kwargs.pop("check_out", CHECK_OUT),
        rooms=rooms,
        **kwargs,
    )


class TestReserve:
    def test_locks_rooms_and_snapshots_price(self, db_hotel):
        hotel_id = db_hotel()

        reservation, pricing = _reserve(hotel_id, rooms=2, now=BOOKED_AT)

        assert reservation["status"] == "LOCKED"
        assert reservation["payment_status"] == "PENDING"
        assert reservation["lock_expires_at"] == BOOKED_AT + timedelta(minutes=10)
        assert reservation["price_per_night"] == 1530
        assert reservation["subtotal"] == 6120
        assert reservation["commission_amount"] == 918
        assert reservation["owner_payout_amount"] == 5202
        assert reservation["booking_ref"].startswith("STZ-")
        assert pricing.subtotal == 6120
        assert available_rooms(hotel_id) == 8

    def test_lock_duration_is_configurable(self, db_hotel, monkeypatch):
        monkeypatch.setenv("RESERVATION_LOCK_MINUTES", "3")
        hotel_id = db_hotel()

        reservation, _ = _reserve(hotel_id, now=BOOKED_AT)

        assert reservation["lock_expires_at"] == BOOKED_AT + timedelta(minutes=3)

    def test_not_enough_rooms_has_no_side_effect(self, db_hotel):
        hotel_id = db_hotel(total_rooms=2)

        with pytest.raises(InsufficientInventory):
            _reserve(hotel_id, rooms=3)

        assert available_rooms(hotel_id) == 2

    def test_inactive_hotel(self, db_hotel):
        hotel_id = db_hotel(is_active=False)

        with pytest.raises(HotelUnavailable):
            _reserve(hotel_id)

        assert available_rooms(hotel_id) == 10

    def test_unknown_hotel(self):
        with pytest.raises(HotelUnavailable):
            _reserve("no-such-hotel")

    def test_invalid_date_range(self, db_hotel):
        hotel_id = db_hotel()

        with pytest.raises(InvalidDateRange):
            _reserve(hotel_id, check_in=CHECK_OUT, check_out=CHECK_IN)

        assert available_rooms(hotel_id) == 10

    def test_zero_rooms_rejected(self, db_hotel):
        hotel_id = db_hotel()

        with pytest.raises(InvalidInput):
            _reserve(hotel_id, rooms=0)

    def test_daily_limit(self, db_hotel, monkeypatch):
        monkeypatch.setenv("DAILY_RESERVATION_LIMIT", "2")
        hotel_id = db_hotel()
        user_id = unique_user()

        _reserve(hotel_id, user_id=user_id)
        _reserve(hotel_id, user_id=user_id)
        with pytest.raises(RateLimited):
            _reserve(hotel_id, user_id=user_id)

        assert available_rooms(hotel_id) == 8

    def test_concurrent_reservations_never_overbook(self, db_hotel):
        hotel_id = db_hotel(total_rooms=3)

        def attempt(_):
            try:
                _reserve(hotel_id)
                return "ok"
            except InsufficientInventory:
                return "full"

        with ThreadPoolExecutor(max_workers=10) as pool:
            outcomes = list(pool.map(attempt, range(10)))

        assert outcomes.count("ok") == 3
        assert outcomes.count("full") == 7
        assert available_rooms(hotel_id) == 0

    def test_concurrent_attempts_by_one_user_respect_limit(self, db_hotel, monkeypatch):
        monkeypatch.setenv("DAILY_RESERVATION_LIMIT", "2")
        hotel_id = db_hotel()
        user_id = unique_user()

        def attempt(_):
            try:
                _reserve(hotel_id, user_id=user_id)
                return "ok"
            except RateLimited:
                return "limited"

        with ThreadPoolExecutor(max_workers=6) as pool:
            outcomes = list(pool.map(attempt, range(6)))

        assert outcomes.count("ok") == 2
        assert available_rooms(hotel_id) == 8


class TestReadAndLifecycle:
    def test_owner_can_read(self, db_hotel):
        hotel_id = db_hotel()
        reservation, _ = _reserve(hotel_id, user_id="owner-a")

        assert get_reservation_for_user(reservation["id"], "owner-a")["id"] == reservation["id"]
        with pytest.raises(NotReservationOwner):
            get_reservation_for_user(reservation["id"], "owner-b")

    def test_lists_only_own_reservations_newest_first(self, db_hotel):
        hotel_id = db_hotel()
        user_id = unique_user()
        first, _ = _reserve(hotel_id, user_id=user_id)
        second, _ = _reserve(hotel_id, user_id=user_id, rooms=2)
        _reserve(hotel_id)

        listed = list_reservations_for_user(user_id)

        assert [r["id"] for r in listed] == [second["id"], first["id"]]
        assert list_reservations_for_user(user_id, limit=1)[0]["id"] == second["id"]
        assert list_reservations_for_user(unique_user()) == []

    def test_locked_reservation_cannot_be_cancelled(self, db_hotel):
        hotel_id = db_hotel()
        reservation, _ = _reserve(hotel_id, user_id="owner-a")

        with pytest.raises(ConflictingTransition):
            cancel_reservation(reservation["id"], user_id="owner-a")

        assert load_reservation(reservation["id"])["status"] == "LOCKED"
        assert available_rooms(hotel_id) == 9

    def test_locked_reservation_cannot_be_completed(self, db_hotel):
        hotel_id = db_hotel()
        reservation, _ = _reserve(hotel_id)

        with pytest.raises(ConflictingTransition):
            complete_reservation(reservation["id"], today=date(2026, 12, 1))

    def test_completion_defaults_to_the_current_utc_date(self, db_hotel):
        hotel_id = db_hotel()
        reservation, _ = _reserve(hotel_id)
        order_id = attach_order(reservation["id"])
        confirm_payment(order_id=order_id, payment_id="pay_1", source=SOURCE_WEBHOOK)

        with patch("stayza.domain.reservations.utc_today", return_value=CHECK_OUT - timedelta(days=1)):
            with pytest.raises(InvalidInput):
                complete_reservation(reservation["id"])
        with patch("stayza.domain.reservations.utc_today", return_value=CHECK_OUT):
            assert complete_reservation(reservation["id"])["status"] == "completed"

        assert available_rooms(hotel_id) == 10
