"""Worker route for the external payout process."""

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from stayza.api.task_auth import require_task_auth
from stayza.domain.payouts import mark_payout_paid
from stayza.observability.correlation import get_correlation_id
from stayza.observability.logging import get_logger
from stayza.observability.redaction import id_prefix, safe_log_context

router = APIRouter(
    prefix="/tasks/payouts",
    tags=["tasks"],
    dependencies=[Depends(require_task_auth)],
)

logger = get_logger(__name__)


class MarkPaidRequest(BaseModel):
    entry_id: str = Field(min_length=1)
    payout_reference: str = Field(min_length=1)


@router.post("/mark-paid")
def mark_paid(body: MarkPaidRequest) -> JSONResponse:
    """UNPAID -> PAID for one ledger entry (idempotent per reference)."""
    result = mark_payout_paid(body.entry_id, payout_reference=body.payout_reference)

    logger.info(
        "payout mark-paid processed",
        extra={
            "extra_fields": safe_log_context(
                correlationId=get_correlation_id(),
                entry_id_prefix=id_prefix(body.entry_id),
                status=result["status"],
            )
        },
    )
    return JSONResponse(status_code=200, content={"ok": True, **result})
