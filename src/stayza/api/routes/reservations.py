"""Guest reservation endpoints.

POST /reservations               lock rooms, returns reservation + price
GET  /reservations               caller's reservations, newest first
GET  /reservations/{id}          owner-only read
POST /reservations/{id}/cancel   CONFIRMED -> CANCELLED, rooms released
"""

from __future__ import annotations

from datetime import date

from fastapi import APIRouter, Depends, Path, Query
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from stayza.api.auth import CurrentUser, get_current_user
from stayza.domain.reservations import (
    cancel_reservation,
    get_reservation_for_user,
    list_reservations_for_user,
    reserve,
    serialize_reservation,
)
from stayza.observability.correlation import get_correlation_id
from stayza.observability.logging import get_logger
from stayza.observability.redaction import id_prefix, safe_log_context

router = APIRouter(prefix="/reservations", tags=["reservations"])

logger = get_logger(__name__)


class CreateReservationRequest(BaseModel):
    """Request body for a new reservation."""

    hotel_id: str = Field(min_length=1)
    check_in: date
    check_out: date
    rooms: int = 1


@router.post("", status_code=201)
def create_reservation(
    body: CreateReservationRequest,
    user: CurrentUser = Depends(get_current_user),
) -> JSONResponse:
    """Lock inventory and create a LOCKED reservation.

    Domain failures (invalid dates, no rooms, rate limit) are rendered
    by the app-level ReservationError handler.
    """
    reservation, pricing = reserve(
        user_id=user.id,
        hotel_id=body.hotel_id,
        check_in=body.check_in,
        check_out=body.check_out,
        rooms=body.rooms,
    )

    logger.info(
        "reservation created",
        extra={
            "extra_fields": safe_log_context(
                correlationId=get_correlation_id(),
                reservation_id_prefix=id_prefix(reservation["id"]),
                hotel_id=body.hotel_id,
                rooms=body.rooms,
            )
        },
    )

    return JSONResponse(
        status_code=201,
        content={
            "ok": True,
            "reservation": serialize_reservation(reservation),
            "pricing": pricing.to_dict(),
        },
    )


@router.get("")
def list_reservations(
    limit: int = Query(50, ge=1, le=100),
    user: CurrentUser = Depends(get_current_user),
) -> dict:
    reservations = list_reservations_for_user(user.id, limit=limit)
    return {
        "ok": True,
        "reservations": [serialize_reservation(r) for r in reservations],
    }


@router.get("/{reservation_id}")
def read_reservation(
    reservation_id: str = Path(..., description="Reservation UUID"),
    user: CurrentUser = Depends(get_current_user),
) -> dict:
    reservation = get_reservation_for_user(reservation_id, user.id)
    return {"ok": True, "reservation": serialize_reservation(reservation)}


@router.post("/{reservation_id}/cancel")
def cancel(
    reservation_id: str = Path(..., description="Reservation UUID"),
    user: CurrentUser = Depends(get_current_user),
) -> dict:
    """Cancel a confirmed reservation (idempotent)."""
    result = cancel_reservation(reservation_id, user_id=user.id)

    logger.info(
        "reservation cancel requested",
        extra={
            "extra_fields": safe_log_context(
                correlationId=get_correlation_id(),
                reservation_id_prefix=id_prefix(reservation_id),
                status=result["status"],
            )
        },
    )
    return {"ok": True, **result}
