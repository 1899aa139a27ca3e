"""
Dispatch relay: durable, at-least-once worker trigger.

Admission writes a ``dispatch_outbox`` row in the same transaction as the
job. The relay runs as a background task, picks up due rows and POSTs an
empty JSON body to the worker URL with a bearer credential. The worker
claims pending jobs itself, so the request carries nothing job-specific.

A non-2xx response or transport error reschedules the row with exponential
backoff; after ``max_attempts`` the row is marked ``failed`` and logged at
ERROR. Rows survive restarts, so a crash between commit and delivery only
delays the trigger.
"""

import asyncio
import logging
from datetime import datetime, timedelta
from typing import Callable, Optional, Tuple

import httpx
from sqlalchemy import func, select
from sqlalchemy.orm import sessionmaker

from ..config import (
    WORKER_TRIGGER_URL, WORKER_TRIGGER_TOKEN, DISPATCH_TIMEOUT_MS, DISPATCH_MAX_ATTEMPTS,
    DISPATCH_BACKOFF_BASE_SECONDS, DISPATCH_BACKOFF_MAX_SECONDS, DISPATCH_POLL_SECONDS,
    DISPATCH_BATCH_SIZE,
)
from ..db import session_scope
from ..models.dispatch import DispatchOutbox
from ..utils.timeutil import utcnow
from .prometheus_metrics import prometheus_metrics

logger = logging.getLogger("integrations_api.dispatch")


def backoff_delay(attempts: int, base: float = DISPATCH_BACKOFF_BASE_SECONDS,
                  cap: float = DISPATCH_BACKOFF_MAX_SECONDS) -> float:
    """Delay before retry number ``attempts`` (1-based)."""
    return min(cap, base * (2 ** max(0, attempts - 1)))


class DispatchRelay:
    """Delivers queued worker triggers from the outbox"""

    def __init__(
        self,
        session_factory: sessionmaker,
        url: str = WORKER_TRIGGER_URL,
        token: str = WORKER_TRIGGER_TOKEN,
        clock: Callable[[], datetime] = utcnow,
        timeout_ms: int = DISPATCH_TIMEOUT_MS,
        max_attempts: int = DISPATCH_MAX_ATTEMPTS,
        poll_seconds: float = DISPATCH_POLL_SECONDS,
        batch_size: int = DISPATCH_BATCH_SIZE,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.session_factory = session_factory
        self.url = url
        self.token = token
        self.clock = clock
        self.timeout_ms = timeout_ms
        self.max_attempts = max_attempts
        self.poll_seconds = poll_seconds
        self.batch_size = batch_size
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None
        self._task: Optional[asyncio.Task] = None
        self._wake: Optional[asyncio.Event] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._warned_unconfigured = False

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self):
        self._loop = asyncio.get_running_loop()
        self._wake = asyncio.Event()
        self._task = asyncio.create_task(self._run())
        logger.info("Dispatch relay started", extra={
            "component": "dispatch",
            "url": self.url or None,
            "poll_seconds": self.poll_seconds,
        })

    async def stop(self):
        if self._task is not None:
            self._task.cancel()
            await asyncio.gather(self._task, return_exceptions=True)
            self._task = None
        if self._client is not None:
            await self._client.aclose()
            self._client = None
        logger.info("Dispatch relay stopped", extra={"component": "dispatch"})

    def wake(self):
        """Ask the relay to drain now. Never blocks; safe from any thread."""
        if self._loop is None or self._wake is None or self._loop.is_closed():
            return
        self._loop.call_soon_threadsafe(self._wake.set)

    async def _run(self):
        while True:
            try:
                await self.drain_once()
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("Dispatch drain failed", extra={"component": "dispatch"})
            try:
                await asyncio.wait_for(self._wake.wait(), timeout=self.poll_seconds)
            except asyncio.TimeoutError:
                pass
            self._wake.clear()

    # ------------------------------------------------------------------
    # Delivery
    # ------------------------------------------------------------------

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout_ms / 1000.0, transport=self._transport)
        return self._client

    async def drain_once(self) -> int:
        """Attempt every due row once. Returns the number delivered."""
        if not self.url:
            if not self._warned_unconfigured:
                logger.warning("WORKER_TRIGGER_URL not set; dispatch requests stay queued",
                               extra={"component": "dispatch"})
                self._warned_unconfigured = True
            return 0

        now = self.clock()
        with session_scope(self.session_factory) as s:
            stmt = (
                select(DispatchOutbox.id, DispatchOutbox.job_id)
                .where(DispatchOutbox.status == "queued", DispatchOutbox.next_attempt_at <= now)
                .order_by(DispatchOutbox.created_at.asc())
                .limit(self.batch_size)
            )
            due = [(row.id, row.job_id) for row in s.execute(stmt)]

        delivered = 0
        for outbox_id, job_id in due:
            ok, error = await self._post()
            self._record(outbox_id, job_id, ok, error)
            delivered += int(ok)

        self._update_backlog()
        return delivered

    async def _post(self) -> Tuple[bool, Optional[str]]:
        headers = {"Content-Type": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        try:
            r = await self._get_client().post(self.url, json={}, headers=headers)
            r.raise_for_status()
            return True, None
        except httpx.TimeoutException:
            return False, "timeout"
        except httpx.HTTPStatusError as e:
            return False, f"http_{e.response.status_code}"
        except httpx.HTTPError as e:
            return False, f"{type(e).__name__}: {e}"

    def _record(self, outbox_id: str, job_id: str, ok: bool, error: Optional[str]):
        now = self.clock()
        with session_scope(self.session_factory) as s:
            row = s.get(DispatchOutbox, outbox_id)
            if row is None or row.status != "queued":
                return
            row.attempts += 1
            if ok:
                row.status = "delivered"
                row.delivered_at = now
                row.last_error = None
                prometheus_metrics.increment_dispatch("delivered")
                logger.info("Worker triggered for job %s", job_id, extra={
                    "component": "dispatch", "job_id": job_id, "attempts": row.attempts,
                })
                return

            row.last_error = error
            if row.attempts >= self.max_attempts:
                row.status = "failed"
                prometheus_metrics.increment_dispatch("failed")
                logger.error("Giving up on worker trigger for job %s: %s", job_id, error, extra={
                    "component": "dispatch", "job_id": job_id, "attempts": row.attempts,
                })
                return

            delay = backoff_delay(row.attempts)
            row.next_attempt_at = now + timedelta(seconds=delay)
            prometheus_metrics.increment_dispatch("retry")
            logger.warning("Worker trigger failed for job %s: %s; retrying in %ss", job_id, error, delay, extra={
                "component": "dispatch", "job_id": job_id, "attempts": row.attempts,
            })

    def _update_backlog(self):
        with session_scope(self.session_factory) as s:
            depth = s.execute(
                select(func.count()).select_from(DispatchOutbox).where(DispatchOutbox.status == "queued")
            ).scalar_one()
        prometheus_metrics.set_dispatch_backlog(depth)
