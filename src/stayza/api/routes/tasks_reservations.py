"""Worker routes for reservation lifecycle tasks.

POST /tasks/reservations/reap       one expired-lock sweep (scheduler-driven)
POST /tasks/reservations/complete   CONFIRMED -> COMPLETED after check-out
"""

from typing import Any

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from stayza.api.task_auth import require_task_auth
from stayza.domain.reaper import sweep_expired_locks
from stayza.domain.reservations import complete_reservation
from stayza.observability.correlation import get_correlation_id
from stayza.observability.logging import get_logger
from stayza.observability.redaction import id_prefix, safe_log_context

router = APIRouter(
    prefix="/tasks/reservations",
    tags=["tasks"],
    dependencies=[Depends(require_task_auth)],
)

logger = get_logger(__name__)


@router.post("/reap")
def reap_expired_locks() -> JSONResponse:
    """Expire LOCKED reservations past their deadline and release rooms.

    Safe to call concurrently with the periodic reaper.
    """
    summary = sweep_expired_locks()

    logger.info(
        "reap task completed",
        extra={"extra_fields": safe_log_context(correlationId=get_correlation_id(), **summary)},
    )
    return JSONResponse(status_code=200, content={"ok": True, **summary})


@router.post("/complete")
async def complete(request: Request) -> JSONResponse:
    """Close a finished stay.

    Expected payload:
    - reservation_id: Reservation UUID (required)
    """
    correlation_id = get_correlation_id()

    try:
        payload: dict[str, Any] = await request.json()
    except Exception:
        logger.warning(
            "invalid json body",
            extra={"extra_fields": safe_log_context(correlationId=correlation_id)},
        )
        return JSONResponse(status_code=400, content={"ok": False, "error": "invalid json"})

    reservation_id = payload.get("reservation_id", "") if isinstance(payload, dict) else ""
    if not reservation_id:
        return JSONResponse(
            status_code=400,
            content={"ok": False, "error": "missing required fields"},
        )

    result = complete_reservation(reservation_id)

    logger.info(
        "complete task processed",
        extra={
            "extra_fields": safe_log_context(
                correlationId=correlation_id,
                reservation_id_prefix=id_prefix(reservation_id),
                status=result["status"],
            )
        },
    )
    return JSONResponse(status_code=200, content={"ok": True, **result})
