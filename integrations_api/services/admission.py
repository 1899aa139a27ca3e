"""
Admission controller for integration runs.

``submit`` gates creation of a job for a (tenant, provider) key:

1. the tenant must have an enabled configuration for the provider;
2. an active job younger than the stale threshold wins, and the caller gets
   ``JobConflict`` carrying that job;
3. an older active job is forced to ``error`` (auto-heal) and admission
   continues;
4. a new ``pending`` job is inserted together with its dispatch request, and
   the dispatch relay is woken without waiting for it.

The controller holds no state between calls. Two concurrent submissions for
the same key are serialized by the ``active_key`` unique index: the loser's
insert fails and it reports the winner as a conflict.
"""

import logging
import time
from dataclasses import dataclass
from typing import Optional

from sqlalchemy.exc import IntegrityError

from ..context import ServiceContext
from ..errors import IntegrationDisabled, IntegrationNotFound, JobConflict, ValidationFailed
from ..logging_config import log_job_event
from .integrations import IntegrationService
from .prometheus_metrics import prometheus_metrics
from .staleness import job_age

logger = logging.getLogger("integrations_api.admission")

AUTO_HEAL_MESSAGE = "auto-heal: job exceeded time threshold"
AUTO_HEAL_INTEGRATION_MESSAGE = "auto-heal: previous job was stuck"


@dataclass
class AdmissionResult:
    job_id: str
    status: str
    reclaimed_job_id: Optional[str] = None

    def to_dict(self):
        return {"job_id": self.job_id, "status": self.status}


class AdmissionController:

    def __init__(self, context: ServiceContext):
        self.context = context

    def submit(self, tenant_id: Optional[str], provider_slug: Optional[str], actor: Optional[str]) -> AdmissionResult:
        started = time.perf_counter()
        try:
            return self._submit(tenant_id, provider_slug, actor)
        finally:
            prometheus_metrics.observe_admission_latency(time.perf_counter() - started)

    def _submit(self, tenant_id, provider_slug, actor) -> AdmissionResult:
        tenant_id = (tenant_id or "").strip()
        provider_slug = (provider_slug or "").strip()
        if not tenant_id or not provider_slug:
            prometheus_metrics.increment_admissions("invalid")
            raise ValidationFailed("tenant_id and provider_slug are required")

        session = self.context.open_session()
        store = self.context.job_store(session)
        try:
            try:
                IntegrationService(session).require_enabled(tenant_id, provider_slug)
            except IntegrationNotFound:
                prometheus_metrics.increment_admissions("not_found")
                raise
            except IntegrationDisabled:
                prometheus_metrics.increment_admissions("disabled")
                raise

            reclaimed_id = None
            existing = store.find_active(tenant_id, provider_slug)
            if existing is not None:
                now = self.context.now()
                age = job_age(existing, now)
                if age <= self.context.stale_threshold:
                    prometheus_metrics.increment_admissions("conflict")
                    logger.info("Job already in progress", extra={
                        "component": "admission",
                        "tenant_id": tenant_id,
                        "provider_slug": provider_slug,
                        "job_id": existing.id,
                    })
                    raise JobConflict(existing.id, existing.status)

                if store.force_error(existing, AUTO_HEAL_MESSAGE, mirror_error=AUTO_HEAL_INTEGRATION_MESSAGE):
                    reclaimed_id = existing.id
                    prometheus_metrics.increment_reclaimed("admission")
                    logger.warning("Reclaimed stale job %s after %ss", existing.id, int(age.total_seconds()), extra={
                        "component": "admission",
                        "tenant_id": tenant_id,
                        "provider_slug": provider_slug,
                        "job_id": existing.id,
                        "age_seconds": int(age.total_seconds()),
                    })

            try:
                job = store.create_pending(tenant_id, provider_slug, actor)
                store.commit()
                job_id, status = job.id, job.status
            except IntegrityError:
                # Lost the race for the key's active slot
                store.rollback()
                winner = store.find_active(tenant_id, provider_slug)
                if winner is None:
                    raise
                prometheus_metrics.increment_admissions("conflict")
                logger.info("Concurrent admission lost to job %s", winner.id, extra={
                    "component": "admission",
                    "tenant_id": tenant_id,
                    "provider_slug": provider_slug,
                    "job_id": winner.id,
                })
                raise JobConflict(winner.id, winner.status)
        except Exception:
            store.rollback()
            raise
        finally:
            session.close()

        prometheus_metrics.increment_admissions("created")
        log_job_event("job_created", f"Job {job_id} created for {provider_slug}",
                      job_id=job_id, tenant_id=tenant_id, provider_slug=provider_slug,
                      reclaimed_job_id=reclaimed_id)

        try:
            self.context.wake_dispatch()
        except Exception:
            # The outbox row is durable; the relay's poll picks it up later
            logger.exception("Failed to wake dispatch relay", extra={"component": "admission", "job_id": job_id})

        return AdmissionResult(job_id=job_id, status=status, reclaimed_job_id=reclaimed_id)
