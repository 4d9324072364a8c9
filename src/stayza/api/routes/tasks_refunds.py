"""Worker routes for refund execution.

POST /tasks/refunds/process   send one refund to the gateway (manual retry too)
POST /tasks/refunds/sweep     attempt every pending refund once (scheduler-driven)
"""

from __future__ import annotations

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from stayza.api.task_auth import require_task_auth
from stayza.domain.refunds import process_pending_refunds, process_refund
from stayza.gateway.client import GatewayClient
from stayza.observability.correlation import get_correlation_id
from stayza.observability.logging import get_logger
from stayza.observability.redaction import id_prefix, safe_log_context

router = APIRouter(
    prefix="/tasks/refunds",
    tags=["tasks"],
    dependencies=[Depends(require_task_auth)],
)

logger = get_logger(__name__)

_gateway_client: GatewayClient | None = None


def _get_gateway_client() -> GatewayClient:
    global _gateway_client
    if _gateway_client is None:
        _gateway_client = GatewayClient()
    return _gateway_client


class ProcessRefundRequest(BaseModel):
    refund_id: str = Field(min_length=1)


@router.post("/process")
def process(body: ProcessRefundRequest) -> JSONResponse:
    """Refund one pending or failed refund; processed ones are a no-op."""
    correlation_id = get_correlation_id()
    result = process_refund(
        body.refund_id,
        gateway_client=_get_gateway_client(),
        correlation_id=correlation_id,
    )

    logger.info(
        "refund task processed",
        extra={
            "extra_fields": safe_log_context(
                correlationId=correlation_id,
                refund_id_prefix=id_prefix(body.refund_id),
                status=result["status"],
            )
        },
    )
    return JSONResponse(status_code=200, content={"ok": True, **result})


@router.post("/sweep")
def sweep() -> JSONResponse:
    summary = process_pending_refunds(gateway_client=_get_gateway_client())

    logger.info(
        "refund sweep task completed",
        extra={"extra_fields": safe_log_context(correlationId=get_correlation_id(), **summary)},
    )
    return JSONResponse(status_code=200, content={"ok": True, **summary})
