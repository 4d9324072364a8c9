"""Integration tests for expired-lock reaping - real Postgres.

Requires DATABASE_URL. Skipped otherwise.
"""

import os
import threading
from datetime import date, datetime, timedelta, timezone
from unittest.mock import patch

import pytest

from helpers import attach_order, available_rooms, load_reservation, unique_user
from stayza.domain import reaper
from stayza.domain.reaper import expire_reservation, sweep_expired_locks
from stayza.domain.reconciliation import SOURCE_WEBHOOK, confirm_payment
from stayza.domain.reservations import reserve

pytestmark = pytest.mark.skipif(
    not os.environ.get("DATABASE_URL"),
    reason="DATABASE_URL not set - skipping DB integration tests",
)

BOOKED_AT = datetime(2026, 10, 13, 9, 0, tzinfo=timezone.utc)
AFTER_LOCK = BOOKED_AT + timedelta(minutes=11)


def _locked(hotel_id, rooms=2):
    reservation, _ = reserve(
        user_id=unique_user(),
        hotel_id=hotel_id,
        check_in=date(2026, 11, 2),
        check_out=date(2026, 11, 4),
        rooms=rooms,
        now=BOOKED_AT,
    )
    return reservation


class TestExpireReservation:
    def test_expires_and_releases_rooms(self, db_hotel):
        hotel_id = db_hotel()
        reservation = _locked(hotel_id)
        assert available_rooms(hotel_id) == 8

        result = expire_reservation(reservation["id"], now=AFTER_LOCK)

        assert result == {
            "status": "expired",
            "reservation_id": reservation["id"],
            "rooms_released": 2,
        }
        stored = load_reservation(reservation["id"])
        assert stored["status"] == "EXPIRED"
        assert stored["payment_status"] == "FAILED"
        assert stored["lock_expires_at"] is None
        assert available_rooms(hotel_id) == 10

    def test_second_expiry_is_noop(self, db_hotel):
        hotel_id = db_hotel()
        reservation = _locked(hotel_id)

        expire_reservation(reservation["id"], now=AFTER_LOCK)
        result = expire_reservation(reservation["id"], now=AFTER_LOCK)

        assert result == {"status": "noop"}
        assert available_rooms(hotel_id) == 10

    def test_lock_not_lapsed_yet(self, db_hotel):
        hotel_id = db_hotel()
        reservation = _locked(hotel_id)

        result = expire_reservation(reservation["id"], now=BOOKED_AT + timedelta(minutes=5))

        assert result == {"status": "not_expired_yet"}
        assert load_reservation(reservation["id"])["status"] == "LOCKED"
        assert available_rooms(hotel_id) == 8

    def test_confirmed_reservation_is_not_expired(self, db_hotel):
        hotel_id = db_hotel()
        reservation = _locked(hotel_id)
        order_id = attach_order(reservation["id"])
        confirm_payment(order_id=order_id, payment_id="pay_1", source=SOURCE_WEBHOOK)

        result = expire_reservation(reservation["id"], now=AFTER_LOCK)

        assert result == {"status": "noop"}
        assert load_reservation(reservation["id"])["status"] == "CONFIRMED"
        assert available_rooms(hotel_id) == 8

    def test_unknown_reservation(self):
        assert expire_reservation("00000000-0000-0000-0000-000000000000") == {"status": "noop"}


class TestSweep:
    def test_sweep_expires_lapsed_locks(self, db_hotel):
        hotel_id = db_hotel()
        first = _locked(hotel_id, rooms=1)
        second = _locked(hotel_id, rooms=3)

        summary = sweep_expired_locks(now=AFTER_LOCK)

        assert summary["expired"] >= 2
        assert load_reservation(first["id"])["status"] == "EXPIRED"
        assert load_reservation(second["id"])["status"] == "EXPIRED"
        assert available_rooms(hotel_id) == 10

    def test_one_failing_reservation_does_not_stop_the_sweep(self, db_hotel):
        hotel_id = db_hotel()
        first, broken, last = (_locked(hotel_id, rooms=1) for _ in range(3))
        real_expire = reaper.expire_reservation

        def expire(reservation_id, **kwargs):
            if reservation_id == broken["id"]:
                raise RuntimeError("storage unavailable")
            return real_expire(reservation_id, **kwargs)

        with patch(
            "stayza.domain.reaper.list_expired_lock_ids",
            return_value=[first["id"], broken["id"], last["id"]],
        ), patch("stayza.domain.reaper.expire_reservation", side_effect=expire):
            summary = sweep_expired_locks(now=AFTER_LOCK)

        assert summary == {"found": 3, "expired": 2, "skipped": 0, "failed": 1}
        assert load_reservation(first["id"])["status"] == "EXPIRED"
        assert load_reservation(last["id"])["status"] == "EXPIRED"
        assert load_reservation(broken["id"])["status"] == "LOCKED"
        assert available_rooms(hotel_id) == 9

    def test_overlapping_sweeps_release_once(self, db_hotel):
        hotel_id = db_hotel()
        reservations = [_locked(hotel_id, rooms=1) for _ in range(4)]
        barrier = threading.Barrier(2)
        summaries = []

        def sweep():
            barrier.wait()
            summaries.append(sweep_expired_locks(now=AFTER_LOCK))

        threads = [threading.Thread(target=sweep) for _ in range(2)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert all(s["failed"] == 0 for s in summaries)
        assert available_rooms(hotel_id) == 10
        for reservation in reservations:
            assert load_reservation(reservation["id"])["status"] == "EXPIRED"

    def test_confirmation_and_expiry_race_has_one_winner(self, db_hotel):
        hotel_id = db_hotel()
        reservation = _locked(hotel_id)
        order_id = attach_order(reservation["id"])
        barrier = threading.Barrier(2)
        results = {}

        def confirm():
            barrier.wait()
            results["confirm"] = confirm_payment(
                order_id=order_id, payment_id="pay_race", source=SOURCE_WEBHOOK
            )

        def expire():
            barrier.wait()
            results["expire"] = expire_reservation(reservation["id"], now=AFTER_LOCK)

        threads = [threading.Thread(target=confirm), threading.Thread(target=expire)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        stored = load_reservation(reservation["id"])
        if stored["status"] == "CONFIRMED":
            assert results["confirm"]["status"] == "confirmed"
            assert results["expire"]["status"] == "noop"
            assert available_rooms(hotel_id) == 8
        else:
            assert stored["status"] == "EXPIRED"
            assert results["expire"]["status"] == "expired"
            assert results["confirm"]["status"] == "refund_required"
            assert available_rooms(hotel_id) == 10
