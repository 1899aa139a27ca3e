"""
Tests for the job store: uniqueness, transitions, claim and listing
"""

import asyncio

import pytest
from sqlalchemy.exc import IntegrityError

from integrations_api.db import SessionLocal
from integrations_api.errors import JobAlreadyFinished, JobNotFound
from integrations_api.models import DispatchOutbox, IntegrationJob, TenantIntegration
from integrations_api.services.change_feed import ChangeFeed
from integrations_api.services.job_store import CLAIM_PROGRESS, JobStore


@pytest.fixture
def store(clock):
    session = SessionLocal()
    yield JobStore(session, clock=clock)
    session.close()


def _make_job(store, tenant="default", provider="acessorias"):
    job = store.create_pending(tenant, provider, actor="tester")
    store.commit()
    return job


def test_create_pending_sets_active_key_and_outbox(store, clock):
    job = _make_job(store)
    assert job.status == "pending"
    assert job.progress == 0
    assert job.active_key == "default:acessorias"
    assert job.created_at is not None

    outbox = store.session.query(DispatchOutbox).filter_by(job_id=job.id).one()
    assert outbox.status == "queued"
    assert outbox.attempts == 0


def test_second_active_job_for_key_is_rejected_by_database(store):
    _make_job(store)
    with pytest.raises(IntegrityError):
        store.create_pending("default", "acessorias", actor="tester")
    store.rollback()
    assert store.session.query(IntegrationJob).count() == 1


def test_other_provider_is_independent(store):
    _make_job(store, provider="acessorias")
    _make_job(store, provider="contabil")
    assert store.session.query(IntegrationJob).count() == 2


def test_force_error_frees_the_slot(store, clock):
    job = _make_job(store)
    clock.advance(minutes=20)
    assert store.force_error(job, "auto-heal: job exceeded time threshold")
    store.commit()

    assert job.status == "error"
    assert job.active_key is None
    assert job.finished_at is not None
    assert job.error_message == "auto-heal: job exceeded time threshold"

    # Slot is free again
    _make_job(store)
    assert store.session.query(IntegrationJob).count() == 2


def test_force_error_skips_finished_job(store):
    job = _make_job(store)
    store.apply_update(job.id, status="success")
    store.commit()
    assert store.force_error(job, "too late") is False
    assert store.get(job.id).status == "success"


def test_claim_takes_oldest_pending(store, clock, make_integration):
    make_integration(provider="acessorias")
    first = _make_job(store, provider="acessorias")
    clock.advance(seconds=5)
    _make_job(store, provider="contabil")

    claimed = store.claim_next_pending()
    store.commit()
    assert claimed.id == first.id
    assert claimed.status == "running"
    assert claimed.progress == CLAIM_PROGRESS
    assert claimed.attempts == 1
    assert claimed.started_at is not None

    ti = store.session.query(TenantIntegration).filter_by(provider="acessorias").one()
    assert ti.last_status == "running"
    assert ti.last_run is not None


def test_claim_with_nothing_pending(store):
    assert store.claim_next_pending() is None


def test_success_update_finishes_job(store, clock, make_integration):
    make_integration()
    job = _make_job(store)
    store.claim_next_pending()
    store.commit()

    clock.advance(seconds=90)
    done = store.apply_update(job.id, status="success", result={"imported": 12})
    store.commit()
    assert done.status == "success"
    assert done.progress == 100
    assert done.active_key is None
    assert done.execution_time_ms == 90_000
    assert done.result == {"imported": 12}

    ti = store.session.query(TenantIntegration).one()
    assert ti.last_status == "success"
    assert ti.last_error is None


def test_error_update_records_message(store):
    job = _make_job(store)
    failed = store.apply_update(job.id, status="error")
    store.commit()
    assert failed.status == "error"
    assert failed.progress == 0
    assert failed.error_message == "Job failed"


def test_progress_only_update(store):
    job = _make_job(store)
    store.claim_next_pending()
    updated = store.apply_update(job.id, progress=40)
    store.commit()
    assert updated.status == "running"
    assert updated.progress == 40


def test_terminal_job_is_immutable(store):
    job = _make_job(store)
    store.apply_update(job.id, status="error", error_message="boom")
    store.commit()
    with pytest.raises(JobAlreadyFinished):
        store.apply_update(job.id, status="success")
    with pytest.raises(JobAlreadyFinished):
        store.apply_update(job.id, progress=50)


def test_get_unknown_job(store):
    with pytest.raises(JobNotFound):
        store.get("does-not-exist")


def test_list_jobs_newest_first_and_filtered(store, clock):
    a = _make_job(store, provider="acessorias")
    store.apply_update(a.id, status="success")
    store.commit()
    clock.advance(minutes=1)
    b = _make_job(store, provider="acessorias")
    clock.advance(minutes=1)
    c = _make_job(store, provider="contabil")

    assert [j.id for j in store.list_jobs()] == [c.id, b.id, a.id]
    assert [j.id for j in store.list_jobs(provider_slug="acessorias")] == [b.id, a.id]
    assert store.list_jobs(tenant_ids=["other"]) == []
    assert len(store.list_jobs(limit=1)) == 1


def test_find_live_ignores_stale_job(store, clock):
    job = _make_job(store)
    assert store.find_live("default", "acessorias").id == job.id
    clock.advance(minutes=16)
    assert store.find_live("default", "acessorias") is None
    assert store.find_active("default", "acessorias").id == job.id


def test_commit_publishes_changes(clock):
    """Committed writes reach subscribers; rolled back writes do not"""

    async def scenario():
        feed = ChangeFeed()
        sub = feed.subscribe()
        session = SessionLocal()
        try:
            store = JobStore(session, feed=feed, clock=clock)
            store.create_pending("default", "acessorias", actor=None)
            store.rollback()
            assert await sub.get(timeout=0.05) is None

            job = store.create_pending("default", "acessorias", actor=None)
            store.commit()
            change = await sub.get(timeout=1)
            assert change.event_type == "insert"
            assert change.record["id"] == job.id
            assert change.record["status"] == "pending"
        finally:
            session.close()
            feed.unsubscribe(sub)

    asyncio.run(scenario())


def test_conflicting_finish_reports_current_status(store):
    """A finish applied by another session wins; the loser sees its real status"""
    job = _make_job(store)
    assert store.get(job.id).status == "pending"

    other = SessionLocal()
    try:
        other_store = JobStore(other)
        other_store.apply_update(job.id, status="error", error_message="worker crashed")
        other_store.commit()
    finally:
        other.close()

    with pytest.raises(JobAlreadyFinished) as exc:
        store.apply_update(job.id, status="success")
    assert exc.value.status == "error"
    assert exc.value.to_dict()["error"] == f"Job {job.id} is already error"
