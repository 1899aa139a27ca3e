"""
Job store: durable CRUD over ``integration_jobs``.

The store is the single source of truth for job state. It wraps one
SQLAlchemy session; mutations are staged and become visible (in the database
and on the change feed) only when ``commit()`` succeeds.

Uniqueness of the active job per (tenant, provider) is enforced by the
database through the ``active_key`` column: it is populated while a job is
pending or running and cleared on every terminal transition. ``create_pending``
therefore raises ``IntegrityError`` when it loses a race against another
admission for the same key.

State transitions made here are conditional updates (``WHERE status IN ...``)
so a reclamation cannot clobber a job the worker finished a moment earlier,
and two workers cannot claim the same pending job.
"""

import logging
import uuid
from datetime import datetime, timedelta
from typing import Callable, Iterable, List, Optional, Tuple

from sqlalchemy import and_, or_, select, update
from sqlalchemy.orm import Session

from ..config import JOB_LIST_LIMIT, JOB_MAX_ATTEMPTS
from ..errors import JobAlreadyFinished, JobNotFound
from ..models.dispatch import DispatchOutbox
from ..models.job import ACTIVE_STATUSES, IntegrationJob, active_key_for
from ..schemas.job import job_to_dict
from ..utils.timeutil import as_utc, utcnow
from .change_feed import ChangeFeed, JobChange
from .integrations import mirror_integration_status
from .prometheus_metrics import prometheus_metrics
from .staleness import STALE_THRESHOLD, is_live

logger = logging.getLogger("integrations_api.job_store")

CLAIM_PROGRESS = 5


class JobStore:

    def __init__(self, session: Session, feed: Optional[ChangeFeed] = None,
                 clock: Callable[[], datetime] = utcnow):
        self.session = session
        self.feed = feed
        self.clock = clock
        self._staged: List[Tuple[str, IntegrationJob]] = []

    # ------------------------------------------------------------------
    # Unit of work
    # ------------------------------------------------------------------

    def commit(self):
        self.session.flush()
        changes = [JobChange(kind, job_to_dict(job)) for kind, job in self._staged]
        self.session.commit()
        self._staged.clear()
        if self.feed is not None:
            self.feed.publish_all(changes)

    def rollback(self):
        self.session.rollback()
        self._staged.clear()

    def _stage(self, kind: str, job: IntegrationJob):
        self._staged.append((kind, job))

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get(self, job_id: str) -> IntegrationJob:
        job = self.session.get(IntegrationJob, job_id)
        if job is None:
            raise JobNotFound(job_id)
        return job

    def find_active(self, tenant_id: str, provider_slug: str) -> Optional[IntegrationJob]:
        """Any pending/running job for the key, stale or not."""
        stmt = (
            select(IntegrationJob)
            .where(
                IntegrationJob.tenant_id == tenant_id,
                IntegrationJob.provider_slug == provider_slug,
                IntegrationJob.status.in_(ACTIVE_STATUSES),
            )
            .order_by(IntegrationJob.created_at.desc())
            .limit(1)
        )
        return self.session.execute(stmt).scalars().first()

    def find_live(self, tenant_id: str, provider_slug: str, now: Optional[datetime] = None,
                  threshold: timedelta = STALE_THRESHOLD) -> Optional[IntegrationJob]:
        """The active job for the key, only if it is not stale."""
        job = self.find_active(tenant_id, provider_slug)
        if job is not None and is_live(job, now or self.clock(), threshold):
            return job
        return None

    def list_jobs(self, tenant_ids: Optional[Iterable[str]] = None, provider_slug: Optional[str] = None,
                  limit: int = JOB_LIST_LIMIT) -> List[IntegrationJob]:
        stmt = select(IntegrationJob).order_by(IntegrationJob.created_at.desc(), IntegrationJob.id.desc())
        if tenant_ids is not None:
            stmt = stmt.where(IntegrationJob.tenant_id.in_(list(tenant_ids)))
        if provider_slug:
            stmt = stmt.where(IntegrationJob.provider_slug == provider_slug)
        return list(self.session.execute(stmt.limit(limit)).scalars())

    def reap_candidates(self, pending_before: datetime, running_before: datetime) -> List[IntegrationJob]:
        """Pending jobs created before, or running jobs started before, the cutoffs."""
        stmt = select(IntegrationJob).where(or_(
            and_(IntegrationJob.status == "pending", IntegrationJob.created_at < pending_before),
            and_(IntegrationJob.status == "running", IntegrationJob.started_at < running_before),
            and_(IntegrationJob.status == "running", IntegrationJob.started_at.is_(None)),
        ))
        return list(self.session.execute(stmt).scalars())

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def create_pending(self, tenant_id: str, provider_slug: str, actor: Optional[str],
                       payload: Optional[dict] = None, enqueue_dispatch: bool = True) -> IntegrationJob:
        now = self.clock()
        job = IntegrationJob(
            id=str(uuid.uuid4()),
            tenant_id=tenant_id,
            provider_slug=provider_slug,
            status="pending",
            progress=0,
            attempts=0,
            max_attempts=JOB_MAX_ATTEMPTS,
            payload=payload or {},
            created_by=actor,
            created_at=now,
            active_key=active_key_for(tenant_id, provider_slug),
        )
        self.session.add(job)
        # Flush now so a duplicate active_key fails here, not at commit
        self.session.flush()
        if enqueue_dispatch:
            self.session.add(DispatchOutbox(
                id=str(uuid.uuid4()),
                job_id=job.id,
                status="queued",
                attempts=0,
                next_attempt_at=now,
                created_at=now,
            ))
        self._stage("insert", job)
        return job

    def force_error(self, job: IntegrationJob, message: str, mirror_error: Optional[str] = None) -> bool:
        """Reclaim an active job. Returns False if it left the active set meanwhile."""
        now = self.clock()
        values = {
            "status": "error",
            "error_message": message,
            "finished_at": now,
            "progress": 0,
            "active_key": None,
        }
        if job.started_at is not None:
            values["execution_time_ms"] = _elapsed_ms(job.started_at, now)
        if not self._transition(job.id, ACTIVE_STATUSES, values):
            return False
        mirror_integration_status(self.session, job.tenant_id, job.provider_slug, "error",
                                  error=mirror_error or message)
        prometheus_metrics.clear_job_progress(job.tenant_id, job.provider_slug)
        self._stage("update", job)
        return True

    def claim_next_pending(self) -> Optional[IntegrationJob]:
        """Oldest pending job, moved to running; None when nothing is pending."""
        now = self.clock()
        for _ in range(5):
            stmt = (
                select(IntegrationJob.id)
                .where(IntegrationJob.status == "pending")
                .order_by(IntegrationJob.created_at.asc())
                .limit(1)
            )
            job_id = self.session.execute(stmt).scalar_one_or_none()
            if job_id is None:
                return None
            claimed = self._transition(job_id, ("pending",), {
                "status": "running",
                "started_at": now,
                "attempts": IntegrationJob.attempts + 1,
                "progress": CLAIM_PROGRESS,
            })
            if claimed:
                job = self.get(job_id)
                mirror_integration_status(self.session, job.tenant_id, job.provider_slug, "running", run_at=now)
                prometheus_metrics.set_job_progress(job.tenant_id, job.provider_slug, job.progress)
                self._stage("update", job)
                return job
            # Another worker took it; try the next one
        return None

    def apply_update(self, job_id: str, status: Optional[str] = None, progress: Optional[int] = None,
                     error_message: Optional[str] = None, result=None) -> IntegrationJob:
        """Worker-reported progress or outcome. Terminal jobs are immutable."""
        job = self.get(job_id)
        if job.is_terminal:
            raise JobAlreadyFinished(job.id, job.status)

        now = self.clock()
        values = {}
        if progress is not None:
            values["progress"] = progress
        if status == "running" and job.status == "pending":
            values["status"] = "running"
            values["started_at"] = job.started_at or now
        elif status in ("success", "error"):
            values.update({
                "status": status,
                "finished_at": now,
                "active_key": None,
                "progress": 100 if status == "success" else 0,
                "error_message": (error_message or "Job failed") if status == "error" else None,
                "result": result if status == "success" else None,
            })
            if job.started_at is not None:
                values["execution_time_ms"] = _elapsed_ms(job.started_at, now)

        if values and not self._transition(job.id, ACTIVE_STATUSES, values):
            # Finished by another session; the identity map still holds the old status
            job = self.session.get(IntegrationJob, job_id, populate_existing=True)
            raise JobAlreadyFinished(job.id, job.status)
        job = self.get(job_id)

        if job.is_terminal:
            mirror_integration_status(self.session, job.tenant_id, job.provider_slug, job.status,
                                      error=job.error_message)
            prometheus_metrics.clear_job_progress(job.tenant_id, job.provider_slug)
            logger.info("Job %s finished with %s", job.id, job.status, extra={
                "component": "job_store",
                "job_id": job.id,
                "tenant_id": job.tenant_id,
                "provider_slug": job.provider_slug,
            })
        else:
            prometheus_metrics.set_job_progress(job.tenant_id, job.provider_slug, job.progress)
        self._stage("update", job)
        return job

    def _transition(self, job_id: str, expected: Iterable[str], values: dict) -> bool:
        stmt = (
            update(IntegrationJob)
            .where(IntegrationJob.id == job_id, IntegrationJob.status.in_(list(expected)))
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if self.session.execute(stmt).rowcount != 1:
            return False
        self.session.get(IntegrationJob, job_id, populate_existing=True)
        return True


def _elapsed_ms(started_at: datetime, now: datetime) -> int:
    return max(0, int((now - as_utc(started_at)).total_seconds() * 1000))
