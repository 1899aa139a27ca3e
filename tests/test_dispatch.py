"""
Tests for the outbox dispatch relay
"""

import asyncio
import json
from datetime import timedelta

import httpx
import pytest

from integrations_api.db import SessionLocal
from integrations_api.models import DispatchOutbox
from integrations_api.services.dispatch import DispatchRelay, backoff_delay
from integrations_api.services.job_store import JobStore

WORKER_URL = "http://worker.test/process-integration-job"


def _queue_job(clock, provider="acessorias"):
    session = SessionLocal()
    try:
        store = JobStore(session, clock=clock)
        job = store.create_pending("default", provider, actor=None)
        store.commit()
        return job.id
    finally:
        session.close()


def _outbox():
    with SessionLocal() as s:
        return s.query(DispatchOutbox).all()


def _relay(clock, handler, **kwargs):
    return DispatchRelay(
        SessionLocal,
        url=kwargs.pop("url", WORKER_URL),
        token="worker-secret",
        clock=clock,
        transport=httpx.MockTransport(handler),
        **kwargs,
    )


async def _drain(relay):
    try:
        return await relay.drain_once()
    finally:
        await relay.stop()


def test_backoff_doubles_and_caps():
    assert backoff_delay(1, base=2, cap=300) == 2
    assert backoff_delay(2, base=2, cap=300) == 4
    assert backoff_delay(5, base=2, cap=300) == 32
    assert backoff_delay(20, base=2, cap=300) == 300


def test_delivery_posts_empty_body_with_bearer(clock):
    job_id = _queue_job(clock)
    seen = []

    def handler(request: httpx.Request):
        seen.append(request)
        return httpx.Response(200, json={"message": "ok"})

    delivered = asyncio.run(_drain(_relay(clock, handler)))

    assert delivered == 1
    assert len(seen) == 1
    assert str(seen[0].url) == WORKER_URL
    assert seen[0].method == "POST"
    assert seen[0].headers["Authorization"] == "Bearer worker-secret"
    assert json.loads(seen[0].content) == {}

    [row] = _outbox()
    assert row.job_id == job_id
    assert row.status == "delivered"
    assert row.attempts == 1
    assert row.delivered_at is not None


def test_failure_schedules_retry_with_backoff(clock):
    _queue_job(clock)

    def handler(request):
        return httpx.Response(503)

    assert asyncio.run(_drain(_relay(clock, handler))) == 0

    [row] = _outbox()
    assert row.status == "queued"
    assert row.attempts == 1
    assert row.last_error == "http_503"
    assert row.next_attempt_at.replace(tzinfo=None) == (clock() + timedelta(seconds=2)).replace(tzinfo=None)


def test_row_not_retried_before_it_is_due(clock):
    _queue_job(clock)
    calls = []

    def handler(request):
        calls.append(request)
        return httpx.Response(500)

    asyncio.run(_drain(_relay(clock, handler)))
    asyncio.run(_drain(_relay(clock, handler)))
    assert len(calls) == 1

    clock.advance(seconds=3)
    asyncio.run(_drain(_relay(clock, handler)))
    assert len(calls) == 2


def test_gives_up_after_max_attempts(clock):
    _queue_job(clock)

    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    for _ in range(3):
        asyncio.run(_drain(_relay(clock, handler, max_attempts=3)))
        clock.advance(minutes=10)

    [row] = _outbox()
    assert row.status == "failed"
    assert row.attempts == 3
    assert row.last_error.startswith("ConnectError")


def test_unconfigured_url_leaves_rows_queued(clock):
    _queue_job(clock)

    def handler(request):
        pytest.fail("no request expected")

    assert asyncio.run(_drain(_relay(clock, handler, url=""))) == 0
    [row] = _outbox()
    assert row.status == "queued"
    assert row.attempts == 0


def test_wake_triggers_prompt_delivery(clock):
    """A woken relay drains without waiting for its poll interval"""
    async def scenario():
        def handler(request):
            return httpx.Response(204)

        relay = _relay(clock, handler, poll_seconds=60)
        await relay.start()
        try:
            # First drain ran at start with nothing queued
            await asyncio.sleep(0.05)
            _queue_job(clock)
            relay.wake()
            for _ in range(100):
                if _outbox()[0].status == "delivered":
                    break
                await asyncio.sleep(0.02)
        finally:
            await relay.stop()

    asyncio.run(scenario())
    [row] = _outbox()
    assert row.status == "delivered"
