"""Tests for guest reservation endpoints (domain functions patched)."""

from datetime import date
from decimal import Decimal
from unittest.mock import patch

import pytest
from fastapi.testclient import TestClient

from stayza.api.auth import CurrentUser, get_current_user
from stayza.api.factory import create_app
from stayza.domain.pricing import PriceBreakdown
from stayza.errors import (
    ConflictingTransition,
    HotelUnavailable,
    InsufficientInventory,
    InvalidDateRange,
    NotReservationOwner,
    RateLimited,
    ReservationNotFound,
    StorageConflict,
)

from helpers import sample_reservation

USER = CurrentUser(id="user-1", external_subject="sub-1", email=None, name=None)

PRICING = PriceBreakdown(
    price_per_night=1530,
    nights=2,
    rooms=2,
    subtotal=6120,
    commission_percent=Decimal("15"),
    commission_amount=918,
    owner_amount=5202,
    occupancy_percent=0,
)

BODY = {"hotel_id": "hotel-1", "check_in": "2026-11-02", "check_out": "2026-11-04", "rooms": 2}


@pytest.fixture
def client():
    app = create_app(role="public")
    app.dependency_overrides[get_current_user] = lambda: USER
    return TestClient(app)


class TestCreateReservation:
    def test_creates_locked_reservation(self, client):
        reservation = sample_reservation()
        with patch(
            "stayza.api.routes.reservations.reserve",
            return_value=(reservation, PRICING),
        ) as mock_reserve:
            response = client.post("/reservations", json=BODY)

        assert response.status_code == 201
        data = response.json()
        assert data["ok"] is True
        assert data["reservation"]["id"] == reservation["id"]
        assert data["reservation"]["status"] == "LOCKED"
        assert data["reservation"]["check_in"] == "2026-11-02"
        assert data["pricing"]["subtotal"] == 6120
        assert data["pricing"]["commission_amount"] == 918
        mock_reserve.assert_called_once_with(
            user_id="user-1",
            hotel_id="hotel-1",
            check_in=date(2026, 11, 2),
            check_out=date(2026, 11, 4),
            rooms=2,
        )

    @pytest.mark.parametrize(
        "error,status_code,kind",
        [
            (InvalidDateRange("bad dates"), 400, "invalid_date_range"),
            (HotelUnavailable("gone"), 404, "hotel_unavailable"),
            (InsufficientInventory("full"), 409, "insufficient_inventory"),
            (RateLimited("slow down"), 429, "rate_limited"),
            (StorageConflict("busy"), 503, "storage_conflict"),
        ],
    )
    def test_domain_failures_are_rendered(self, client, error, status_code, kind):
        with patch("stayza.api.routes.reservations.reserve", side_effect=error):
            response = client.post("/reservations", json=BODY)

        assert response.status_code == status_code
        assert response.json() == {
            "ok": False,
            "error": {"kind": kind, "message": error.message},
        }

    def test_missing_dates_is_validation_error(self, client):
        with patch("stayza.api.routes.reservations.reserve") as mock_reserve:
            response = client.post("/reservations", json={"hotel_id": "hotel-1"})

        assert response.status_code == 422
        mock_reserve.assert_not_called()

    def test_requires_authentication(self):
        client = TestClient(create_app(role="public"))
        response = client.post("/reservations", json=BODY)
        assert response.status_code == 401


class TestListReservations:
    def test_lists_callers_reservations(self, client):
        newer = sample_reservation(status="CONFIRMED")
        older = sample_reservation(status="EXPIRED")
        with patch(
            "stayza.api.routes.reservations.list_reservations_for_user",
            return_value=[newer, older],
        ) as mock_list:
            response = client.get("/reservations")

        assert response.status_code == 200
        body = response.json()
        assert [r["id"] for r in body["reservations"]] == [newer["id"], older["id"]]
        assert body["reservations"][0]["check_in"] == "2026-11-02"
        mock_list.assert_called_once_with("user-1", limit=50)

    def test_limit_is_bounded(self, client):
        with patch("stayza.api.routes.reservations.list_reservations_for_user") as mock_list:
            response = client.get("/reservations", params={"limit": 500})
        assert response.status_code == 422
        mock_list.assert_not_called()

    def test_requires_authentication(self):
        client = TestClient(create_app(role="public"))
        response = client.get("/reservations")
        assert response.status_code == 401


class TestReadReservation:
    def test_owner_reads_reservation(self, client):
        reservation = sample_reservation(status="CONFIRMED")
        with patch(
            "stayza.api.routes.reservations.get_reservation_for_user",
            return_value=reservation,
        ) as mock_get:
            response = client.get(f"/reservations/{reservation['id']}")

        assert response.status_code == 200
        assert response.json()["reservation"]["status"] == "CONFIRMED"
        mock_get.assert_called_once_with(reservation["id"], "user-1")

    def test_other_users_reservation_is_forbidden(self, client):
        with patch(
            "stayza.api.routes.reservations.get_reservation_for_user",
            side_effect=NotReservationOwner(),
        ):
            response = client.get("/reservations/r1")

        assert response.status_code == 403
        assert response.json()["error"]["kind"] == "forbidden"

    def test_unknown_reservation(self, client):
        with patch(
            "stayza.api.routes.reservations.get_reservation_for_user",
            side_effect=ReservationNotFound(),
        ):
            response = client.get("/reservations/r1")

        assert response.status_code == 404


class TestCancelReservation:
    def test_cancel(self, client):
        with patch(
            "stayza.api.routes.reservations.cancel_reservation",
            return_value={"status": "cancelled", "reservation_id": "r1"},
        ) as mock_cancel:
            response = client.post("/reservations/r1/cancel")

        assert response.status_code == 200
        assert response.json() == {"ok": True, "status": "cancelled", "reservation_id": "r1"}
        mock_cancel.assert_called_once_with("r1", user_id="user-1")

    def test_cancel_locked_reservation_conflicts(self, client):
        with patch(
            "stayza.api.routes.reservations.cancel_reservation",
            side_effect=ConflictingTransition(current_status="LOCKED", target_status="CANCELLED"),
        ):
            response = client.post("/reservations/r1/cancel")

        assert response.status_code == 409
        assert response.json()["error"]["kind"] == "conflicting_transition"
