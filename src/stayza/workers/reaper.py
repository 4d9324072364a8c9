"""Periodic expired-lock reaper for the worker process.

Runs sweep_expired_locks() on a fixed interval in a background asyncio
task. The sweep itself is blocking (psycopg2), so each run is pushed to
a thread. Sweeps are idempotent; running several worker replicas only
costs duplicate SELECTs.
"""

from __future__ import annotations

import asyncio
import os
import time
from collections.abc import Callable

from stayza.domain.reaper import sweep_expired_locks
from stayza.observability.correlation import correlation_scope
from stayza.observability.logging import get_logger
from stayza.observability.redaction import safe_log_context

logger = get_logger(__name__)

DEFAULT_INTERVAL_SECONDS = 60


def reaper_interval_seconds() -> float:
    """Sweep interval (REAPER_INTERVAL_SECONDS)."""
    return float(os.environ.get("REAPER_INTERVAL_SECONDS", str(DEFAULT_INTERVAL_SECONDS)))


def reaper_enabled() -> bool:
    """Whether the worker process runs the periodic reaper (REAPER_ENABLED)."""
    return os.environ.get("REAPER_ENABLED", "true").lower() in ("1", "true", "yes")


class ReaperWorker:
    """Background task that releases expired reservation locks."""

    def __init__(
        self,
        interval_seconds: float | None = None,
        sweep: Callable[[], dict] = sweep_expired_locks,
    ) -> None:
        self.interval_seconds = (
            interval_seconds if interval_seconds is not None else reaper_interval_seconds()
        )
        self._sweep = sweep
        self._task: asyncio.Task | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(self) -> None:
        """Start the sweep loop (no-op if already running)."""
        if self.running:
            logger.warning("reaper already running")
            return
        self._task = asyncio.create_task(self._run())
        logger.info(
            "reaper started",
            extra={"extra_fields": safe_log_context(interval_seconds=self.interval_seconds)},
        )

    async def stop(self) -> None:
        """Cancel the sweep loop and wait for it to finish."""
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info("reaper stopped")

    async def run_once(self) -> dict | None:
        """Run a single sweep; failures are logged, never raised."""
        started = time.monotonic()
        with correlation_scope():
            try:
                summary = await asyncio.to_thread(self._sweep)
            except Exception:
                logger.exception("reaper sweep failed")
                return None

        if summary.get("found"):
            logger.info(
                "reaper sweep completed",
                extra={
                    "extra_fields": safe_log_context(
                        duration_seconds=round(time.monotonic() - started, 3),
                        **summary,
                    )
                },
            )
        return summary

    async def _run(self) -> None:
        while True:
            started = time.monotonic()
            await self.run_once()
            elapsed = time.monotonic() - started
            await asyncio.sleep(max(0.0, self.interval_seconds - elapsed))
