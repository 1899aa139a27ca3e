"""
Tests for the background job reaper
"""

from integrations_api.models import IntegrationJob, TenantIntegration
from integrations_api.services.reaper import JobReaper


def _submit(context, provider="acessorias"):
    with context.open_session() as s:
        store = context.job_store(s)
        job = store.create_pending("default", provider, actor=None)
        store.commit()
        return job.id


def _claim(context):
    with context.open_session() as s:
        store = context.job_store(s)
        job = store.claim_next_pending()
        store.commit()
        return job.id


def _get(context, job_id):
    with context.open_session() as s:
        return s.get(IntegrationJob, job_id)


def test_young_jobs_are_left_alone(context, clock):
    running = _submit(context, "acessorias")
    clock.advance(seconds=1)
    pending = _submit(context, "contabil")
    assert _claim(context) == running
    clock.advance(minutes=10)

    assert JobReaper(context).sweep() == {"reaper_pending": 0, "reaper_running": 0}
    assert _get(context, running).status == "running"
    assert _get(context, pending).status == "pending"


def test_pending_job_reaped_after_fifteen_minutes(context, clock, make_integration):
    make_integration()
    job_id = _submit(context)
    clock.advance(minutes=16)

    counts = JobReaper(context).sweep()
    assert counts == {"reaper_pending": 1, "reaper_running": 0}
    job = _get(context, job_id)
    assert job.status == "error"
    assert job.active_key is None
    assert job.error_message == "timeout: job stayed pending for more than 15 minutes"

    with context.open_session() as s:
        assert s.query(TenantIntegration).one().last_status == "error"


def test_running_job_reaped_after_forty_five_minutes(context, clock):
    job_id = _submit(context)
    _claim(context)

    clock.advance(minutes=30)
    assert JobReaper(context).sweep()["reaper_running"] == 0

    clock.advance(minutes=16)
    assert JobReaper(context).sweep()["reaper_running"] == 1
    job = _get(context, job_id)
    assert job.status == "error"
    assert job.error_message == "timeout: job stayed running for more than 45 minutes"
    assert job.execution_time_ms == 46 * 60 * 1000


def test_finished_jobs_are_never_reaped(context, clock):
    job_id = _submit(context)
    with context.open_session() as s:
        store = context.job_store(s)
        store.apply_update(job_id, status="success")
        store.commit()

    clock.advance(hours=5)
    assert JobReaper(context).sweep() == {"reaper_pending": 0, "reaper_running": 0}
    assert _get(context, job_id).status == "success"


def test_custom_thresholds(context, clock):
    _submit(context)
    clock.advance(minutes=3)
    assert JobReaper(context, pending_minutes=2).sweep()["reaper_pending"] == 1
