"""
Client-side reconciliation of integration jobs.

``JobView`` is the session's materialized list of jobs, newest first, keyed
by id. Two producers feed it through the same idempotent merge:

* the push feed (``insert``/``update``/``delete`` events from the SSE stream);
* full refetches, run at start, after a stream loss, and a short delay after
  every successful submit to cover events the stream missed.

Merges are last-write-wins per record. There is no version ordering: a late
``update`` simply overwrites, which is enough because terminal jobs never
change again.

``JobReconciler`` owns a view for one session. ``start()`` loads the list and
opens the subscription; ``close()`` tears both down.
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Iterable, List, Optional, Set

import httpx

from ..config import CLIENT_REFETCH_DELAY_SECONDS, JOB_LIST_LIMIT
from ..services.staleness import STALE_THRESHOLD, is_live
from ..utils.timeutil import parse_ts, utcnow
from .api import AdmissionConflict, ClientError, IntegrationsClient

logger = logging.getLogger("integrations_api.reconciler")

Record = Dict[str, Any]


@dataclass(frozen=True)
class Notice:
    level: str  # info | warning | error
    title: str
    message: str


class JobView:

    def __init__(self, records: Iterable[Record] = ()):
        self._jobs: List[Record] = []
        self.replace_all(records)

    def __len__(self):
        return len(self._jobs)

    def list(self) -> List[Record]:
        return list(self._jobs)

    def replace_all(self, records: Iterable[Record]):
        """Snapshot merge: the fetched list becomes the view, newest first."""
        unique: Dict[str, Record] = {}
        for rec in records:
            unique[rec["id"]] = dict(rec)
        self._jobs = _newest_first(unique.values())

    def apply(self, event: Record) -> bool:
        """Merge one change event. Returns True if the view changed.

        ``insert`` and ``update`` both act as upserts: a record already in the
        view is replaced in place, an unknown one is prepended.
        """
        kind = (event.get("eventType") or "").lower()
        record = event.get("record") or {}
        job_id = record.get("id")
        if not job_id:
            return False

        idx = self._index(job_id)
        if kind == "delete":
            if idx is None:
                return False
            del self._jobs[idx]
            return True

        if kind not in ("insert", "update"):
            return False
        if idx is None:
            # Unknown id: a fresh insert, or an update whose insert we missed
            self._jobs.insert(0, dict(record))
            return True
        if self._jobs[idx] == record:
            return False
        self._jobs[idx] = dict(record)
        return True

    def _index(self, job_id: str) -> Optional[int]:
        for i, rec in enumerate(self._jobs):
            if rec.get("id") == job_id:
                return i
        return None

    def _for_key(self, tenant_id: str, provider_slug: str) -> List[Record]:
        return [r for r in self._jobs
                if r.get("tenant_id") == tenant_id and r.get("provider_slug") == provider_slug]

    def active_job(self, tenant_id: str, provider_slug: str, now: Optional[datetime] = None,
                   threshold: timedelta = STALE_THRESHOLD) -> Optional[Record]:
        """First pending/running job for the key that the server would not reclaim."""
        now = now or utcnow()
        for rec in self._for_key(tenant_id, provider_slug):
            if is_live(rec, now, threshold):
                return rec
        return None

    def latest_job(self, tenant_id: str, provider_slug: str) -> Optional[Record]:
        matches = self._for_key(tenant_id, provider_slug)
        return matches[0] if matches else None

    def history_for(self, tenant_id: str, provider_slug: str) -> List[Record]:
        return self._for_key(tenant_id, provider_slug)


def _newest_first(records: Iterable[Record]) -> List[Record]:
    floor = datetime.min.replace(tzinfo=timezone.utc)
    return sorted(records, key=lambda r: parse_ts(r.get("created_at")) or floor, reverse=True)


class JobReconciler:

    def __init__(
        self,
        client: IntegrationsClient,
        tenant_id: Optional[str] = None,
        on_notice: Optional[Callable[[Notice], None]] = None,
        clock: Callable[[], datetime] = utcnow,
        refetch_delay: float = CLIENT_REFETCH_DELAY_SECONDS,
        reconnect_delay: float = 1.0,
        max_reconnect_delay: float = 30.0,
        limit: int = JOB_LIST_LIMIT,
    ):
        self.client = client
        self.tenant_id = tenant_id
        self.on_notice = on_notice
        self.clock = clock
        self.refetch_delay = refetch_delay
        self.reconnect_delay = reconnect_delay
        self.max_reconnect_delay = max_reconnect_delay
        self.limit = limit
        self.view = JobView()
        self.loading = True
        self._feed_task: Optional[asyncio.Task] = None
        self._timers: Set[asyncio.Task] = set()

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def list(self) -> List[Record]:
        return self.view.list()

    def active_job(self, tenant_id: str, provider_slug: str) -> Optional[Record]:
        return self.view.active_job(tenant_id, provider_slug, now=self.clock())

    def latest_job(self, tenant_id: str, provider_slug: str) -> Optional[Record]:
        return self.view.latest_job(tenant_id, provider_slug)

    def history_for(self, tenant_id: str, provider_slug: str) -> List[Record]:
        return self.view.history_for(tenant_id, provider_slug)

    # ------------------------------------------------------------------
    # Producers
    # ------------------------------------------------------------------

    async def refetch(self) -> bool:
        try:
            records = await self.client.list_jobs(tenant_id=self.tenant_id, limit=self.limit)
        except (ClientError, httpx.HTTPError) as e:
            logger.error("Job list fetch failed: %s", e, extra={"component": "reconciler"})
            return False
        finally:
            self.loading = False
        self.view.replace_all(records)
        return True

    def handle_event(self, event: Record) -> bool:
        return self.view.apply(event)

    async def _follow(self):
        delay = self.reconnect_delay
        while True:
            try:
                async for event in self.client.stream_changes(self.tenant_id):
                    self.handle_event(event)
                    delay = self.reconnect_delay
                logger.info("Change feed closed by server", extra={"component": "reconciler"})
            except asyncio.CancelledError:
                raise
            except (ClientError, httpx.HTTPError) as e:
                logger.warning("Change feed lost: %s", e, extra={"component": "reconciler"})
            except Exception:
                logger.exception("Change feed consumer failed; reconnecting", extra={"component": "reconciler"})
            # Events may have been missed while disconnected
            await self.refetch()
            await asyncio.sleep(delay)
            delay = min(self.max_reconnect_delay, delay * 2)

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    async def submit(self, tenant_id: str, provider_slug: str) -> Optional[Record]:
        """Ask the server to start a run. Never inserts a placeholder job."""
        try:
            result = await self.client.run_integration(tenant_id, provider_slug)
        except AdmissionConflict as e:
            self._notify("warning", "Run in progress", "A run is already in progress for this integration.")
            return {"error": e.message, "job_id": e.job_id, "status": e.status}
        except ClientError as e:
            self._notify("error", "Could not create job", e.message or "Unknown error")
            return None

        self._notify("info", "Job created", f"Integration {provider_slug} queued.")
        self._schedule_refetch()
        return {"job_id": result.job_id, "status": result.status}

    def _schedule_refetch(self):
        async def _later():
            await asyncio.sleep(self.refetch_delay)
            await self.refetch()

        task = asyncio.create_task(_later())
        self._timers.add(task)
        task.add_done_callback(self._timers.discard)

    def _notify(self, level: str, title: str, message: str):
        if self.on_notice is not None:
            self.on_notice(Notice(level, title, message))

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self):
        await self.refetch()
        self._feed_task = asyncio.create_task(self._follow())

    async def close(self):
        tasks = list(self._timers)
        if self._feed_task is not None:
            tasks.append(self._feed_task)
            self._feed_task = None
        for t in tasks:
            t.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._timers.clear()
