"""
Background sweep for stuck jobs nobody resubmits.

Admission only reclaims a stale job when someone submits the same key again.
The reaper closes the remaining gap: pending jobs whose trigger never led to
a claim, and running jobs whose worker died, are forced to ``error`` on a
timer.
"""

import asyncio
import logging
from datetime import datetime, timedelta
from typing import Dict, Optional

from ..config import REAPER_INTERVAL_SECONDS, REAPER_PENDING_MINUTES, REAPER_RUNNING_MINUTES
from ..context import ServiceContext
from .prometheus_metrics import prometheus_metrics

logger = logging.getLogger("integrations_api.reaper")

PENDING_TIMEOUT_MESSAGE = "timeout: job stayed pending for more than {minutes} minutes"
RUNNING_TIMEOUT_MESSAGE = "timeout: job stayed running for more than {minutes} minutes"
RUNNING_WITHOUT_START_MESSAGE = "timeout: job running without started_at"


class JobReaper:

    def __init__(self, context: ServiceContext,
                 pending_minutes: int = REAPER_PENDING_MINUTES,
                 running_minutes: int = REAPER_RUNNING_MINUTES,
                 interval_seconds: float = REAPER_INTERVAL_SECONDS):
        self.context = context
        self.pending_after = timedelta(minutes=pending_minutes)
        self.running_after = timedelta(minutes=running_minutes)
        self.interval_seconds = interval_seconds
        self._task: Optional[asyncio.Task] = None

    def sweep(self, now: Optional[datetime] = None) -> Dict[str, int]:
        """Force-fail every overdue job once. Returns counts per reason."""
        now = now or self.context.now()
        counts = {"reaper_pending": 0, "reaper_running": 0}

        session = self.context.open_session()
        store = self.context.job_store(session)
        try:
            for job in store.reap_candidates(now - self.pending_after, now - self.running_after):
                if job.status == "pending":
                    reason = "reaper_pending"
                    message = PENDING_TIMEOUT_MESSAGE.format(minutes=int(self.pending_after.total_seconds() // 60))
                elif job.started_at is None:
                    reason = "reaper_running"
                    message = RUNNING_WITHOUT_START_MESSAGE
                else:
                    reason = "reaper_running"
                    message = RUNNING_TIMEOUT_MESSAGE.format(minutes=int(self.running_after.total_seconds() // 60))

                if store.force_error(job, message):
                    counts[reason] += 1
                    logger.warning("Reaped job %s: %s", job.id, message, extra={
                        "component": "reaper",
                        "job_id": job.id,
                        "tenant_id": job.tenant_id,
                        "provider_slug": job.provider_slug,
                    })
            store.commit()
        except Exception:
            store.rollback()
            raise
        finally:
            session.close()

        for reason, count in counts.items():
            if count:
                prometheus_metrics.increment_reclaimed(reason, count)
        return counts

    async def start(self):
        self._task = asyncio.create_task(self._run())
        logger.info("Job reaper started", extra={"component": "reaper", "interval_seconds": self.interval_seconds})

    async def stop(self):
        if self._task is not None:
            self._task.cancel()
            await asyncio.gather(self._task, return_exceptions=True)
            self._task = None

    async def _run(self):
        while True:
            await asyncio.sleep(self.interval_seconds)
            try:
                self.sweep()
            except Exception:
                logger.exception("Reaper sweep failed", extra={"component": "reaper"})
