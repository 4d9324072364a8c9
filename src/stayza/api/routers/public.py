"""Public-facing routes (APP_ROLE=public)."""

from fastapi import APIRouter

from stayza.api.routes import payments, reservations, webhooks_payments

router = APIRouter()


@router.get("/health")
def health() -> dict:
    """Health check endpoint."""
    return {"status": "ok"}


router.include_router(reservations.router)
router.include_router(payments.router)
router.include_router(webhooks_payments.router)
