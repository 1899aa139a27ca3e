"""
Explicit service context.

One ``ServiceContext`` is built when the process starts (FastAPI lifespan)
and closed at shutdown. Routes and background tasks receive it instead of
reaching for module globals, which also lets tests build one around an
isolated database and a fixed clock.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Callable, Optional

from sqlalchemy.orm import Session, sessionmaker

from .config import CHANGE_FEED_QUEUE_SIZE
from .services.change_feed import ChangeFeed
from .services.job_store import JobStore
from .services.staleness import STALE_THRESHOLD
from .utils.timeutil import utcnow

if TYPE_CHECKING:
    from .services.dispatch import DispatchRelay

logger = logging.getLogger("integrations_api.context")


@dataclass
class ServiceContext:
    session_factory: sessionmaker
    clock: Callable[[], datetime] = utcnow
    feed: ChangeFeed = field(default_factory=lambda: ChangeFeed(CHANGE_FEED_QUEUE_SIZE))
    relay: Optional["DispatchRelay"] = None
    stale_threshold: timedelta = STALE_THRESHOLD

    def now(self) -> datetime:
        return self.clock()

    def open_session(self) -> Session:
        return self.session_factory()

    def job_store(self, session: Session) -> JobStore:
        return JobStore(session, feed=self.feed, clock=self.clock)

    def wake_dispatch(self):
        if self.relay is not None:
            self.relay.wake()

    async def close(self):
        if self.relay is not None:
            await self.relay.stop()
        logger.info("Service context closed", extra={"component": "context"})


def build_context(session_factory: Optional[sessionmaker] = None, **overrides) -> ServiceContext:
    if session_factory is None:
        from .db import SessionLocal
        session_factory = SessionLocal
    return ServiceContext(session_factory=session_factory, **overrides)
