"""
In-process change feed for integration jobs.

The job store publishes one event per committed insert/update; each SSE
connection holds a ``Subscription`` with a bounded asyncio queue. Publishing
is safe from worker threads (sync FastAPI routes run in a threadpool): events
are handed to the subscriber's loop with ``call_soon_threadsafe``.

A subscriber that falls behind loses events rather than blocking publishers.
Clients recover from that with their refetch fallback.
"""

import asyncio
import logging
import threading
from dataclasses import dataclass, field
from typing import Any, Dict, FrozenSet, List, Literal, Optional

from .prometheus_metrics import prometheus_metrics

logger = logging.getLogger("integrations_api.change_feed")

EventType = Literal["insert", "update", "delete"]


@dataclass(frozen=True)
class JobChange:
    event_type: EventType
    record: Dict[str, Any]

    @property
    def tenant_id(self) -> Optional[str]:
        return self.record.get("tenant_id")

    def to_dict(self) -> Dict[str, Any]:
        return {"eventType": self.event_type, "record": self.record}


@dataclass(eq=False)
class Subscription:
    loop: asyncio.AbstractEventLoop
    queue: asyncio.Queue
    tenant_ids: Optional[FrozenSet[str]] = None  # None = every tenant
    dropped: int = 0

    def accepts(self, change: JobChange) -> bool:
        return self.tenant_ids is None or change.tenant_id in self.tenant_ids

    def _offer(self, change: JobChange):
        try:
            self.queue.put_nowait(change)
        except asyncio.QueueFull:
            self.dropped += 1
            if self.dropped == 1 or self.dropped % 100 == 0:
                logger.warning("Change feed subscriber lagging, dropping events", extra={
                    "component": "change_feed",
                    "dropped": self.dropped,
                })

    async def get(self, timeout: Optional[float] = None) -> Optional[JobChange]:
        """Next event, or None when ``timeout`` elapses first."""
        try:
            return await asyncio.wait_for(self.queue.get(), timeout)
        except asyncio.TimeoutError:
            return None


class ChangeFeed:
    """Fan-out of job changes to every open subscription"""

    def __init__(self, queue_size: int = 1000):
        self.queue_size = queue_size
        self._subscribers: List[Subscription] = []
        self._lock = threading.Lock()

    def subscribe(self, tenant_ids: Optional[FrozenSet[str]] = None) -> Subscription:
        """Register a subscription bound to the running event loop."""
        sub = Subscription(
            loop=asyncio.get_running_loop(),
            queue=asyncio.Queue(maxsize=self.queue_size),
            tenant_ids=frozenset(tenant_ids) if tenant_ids is not None else None,
        )
        with self._lock:
            self._subscribers.append(sub)
            count = len(self._subscribers)
        prometheus_metrics.set_change_feed_subscribers(count)
        logger.info("Change feed subscription opened", extra={"component": "change_feed", "subscribers": count})
        return sub

    def unsubscribe(self, sub: Subscription):
        with self._lock:
            if sub in self._subscribers:
                self._subscribers.remove(sub)
            count = len(self._subscribers)
        prometheus_metrics.set_change_feed_subscribers(count)
        logger.info("Change feed subscription closed", extra={"component": "change_feed", "subscribers": count})

    @property
    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._subscribers)

    def publish(self, change: JobChange):
        with self._lock:
            targets = [s for s in self._subscribers if s.accepts(change)]
        for sub in targets:
            if sub.loop.is_closed():
                continue
            try:
                sub.loop.call_soon_threadsafe(sub._offer, change)
            except RuntimeError:
                # Loop shut down between the check and the call
                continue

    def publish_all(self, changes: List[JobChange]):
        for change in changes:
            self.publish(change)
