"""FastAPI application factory with role-based route mounting."""

import os
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Literal

from fastapi import FastAPI, Request, Response
from fastapi.responses import JSONResponse

from stayza.errors import ReservationError
from stayza.observability.correlation import (
    CORRELATION_ID_HEADER,
    generate_correlation_id,
    reset_correlation_id,
    set_correlation_id,
)
from stayza.observability.logging import configure_root_logging, get_logger
from stayza.observability.redaction import safe_log_context
from stayza.workers.reaper import ReaperWorker, reaper_enabled

from .routers import public, worker

AppRole = Literal["public", "worker"]

logger = get_logger(__name__)


def _lifespan_for(role: str):
    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        reaper: ReaperWorker | None = None
        if role == "worker" and reaper_enabled():
            reaper = ReaperWorker()
            await reaper.start()
        app.state.reaper = reaper
        try:
            yield
        finally:
            if reaper is not None:
                await reaper.stop()

    return lifespan


async def _reservation_error_handler(request: Request, exc: ReservationError) -> JSONResponse:
    log = logger.error if exc.http_status >= 500 else logger.warning
    log(
        "request failed",
        extra={
            "extra_fields": safe_log_context(
                path=request.url.path,
                kind=exc.kind,
                status_code=exc.http_status,
            )
        },
    )
    return JSONResponse(
        status_code=exc.http_status,
        content={"ok": False, "error": exc.to_dict()},
    )


def create_app(role: AppRole | None = None) -> FastAPI:
    """Create FastAPI app with routes based on APP_ROLE.

    Args:
        role: Explicit role override. If None, reads from APP_ROLE env var.
              Defaults to "public" if env var is not set.

    Returns:
        Configured FastAPI application. The worker role also runs the
        periodic reaper for the lifetime of the app (REAPER_ENABLED).
    """
    if role is None:
        role = os.environ.get("APP_ROLE", "public")  # type: ignore[assignment]

    configure_root_logging()

    app = FastAPI(
        title="Stayza",
        docs_url=None,
        redoc_url=None,
        lifespan=_lifespan_for(role),
    )

    @app.middleware("http")
    async def correlation_id_middleware(request: Request, call_next) -> Response:
        cid = request.headers.get(CORRELATION_ID_HEADER) or generate_correlation_id()
        token = set_correlation_id(cid)
        try:
            response = await call_next(request)
            response.headers[CORRELATION_ID_HEADER] = cid
            return response
        finally:
            reset_correlation_id(token)

    app.add_exception_handler(ReservationError, _reservation_error_handler)

    app.include_router(public.router)

    # Worker routes only for worker role
    if role == "worker":
        app.include_router(worker.router)

    return app
