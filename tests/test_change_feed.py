"""
Tests for the in-process change feed and the SSE generator
"""

import asyncio
import json

from integrations_api.api.jobs import event_generator
from integrations_api.services.change_feed import ChangeFeed, JobChange


def _change(job_id, tenant="default", kind="update"):
    return JobChange(kind, {"id": job_id, "tenant_id": tenant, "status": "running"})


def test_change_serializes_as_event():
    change = _change("j1", kind="insert")
    assert change.to_dict() == {
        "eventType": "insert",
        "record": {"id": "j1", "tenant_id": "default", "status": "running"},
    }


def test_subscribers_only_see_their_tenants():
    async def scenario():
        feed = ChangeFeed()
        everyone = feed.subscribe()
        acme_only = feed.subscribe(frozenset({"acme"}))
        assert feed.subscriber_count == 2

        feed.publish_all([_change("j1", "default"), _change("j2", "acme")])

        got_all = [await everyone.get(timeout=1), await everyone.get(timeout=1)]
        assert [c.record["id"] for c in got_all] == ["j1", "j2"]
        got_acme = await acme_only.get(timeout=1)
        assert got_acme.record["id"] == "j2"
        assert await acme_only.get(timeout=0.05) is None

        feed.unsubscribe(everyone)
        feed.unsubscribe(acme_only)
        assert feed.subscriber_count == 0

    asyncio.run(scenario())


def test_lagging_subscriber_drops_instead_of_blocking():
    async def scenario():
        feed = ChangeFeed(queue_size=2)
        sub = feed.subscribe()
        for i in range(5):
            feed.publish(_change(f"j{i}"))
        await asyncio.sleep(0)
        assert sub.queue.qsize() == 2
        assert sub.dropped == 3
        feed.unsubscribe(sub)

    asyncio.run(scenario())


def test_publish_from_worker_thread():
    async def scenario():
        feed = ChangeFeed()
        sub = feed.subscribe()
        await asyncio.get_running_loop().run_in_executor(None, feed.publish, _change("j9"))
        change = await sub.get(timeout=1)
        assert change.record["id"] == "j9"
        feed.unsubscribe(sub)

    asyncio.run(scenario())


class FakeRequest:
    """Reports a disconnect after a fixed number of checks"""

    def __init__(self, checks_before_disconnect):
        self.remaining = checks_before_disconnect

    async def is_disconnected(self):
        self.remaining -= 1
        return self.remaining < 0


def test_event_generator_frames_and_unsubscribes():
    async def scenario():
        feed = ChangeFeed()
        gen = event_generator(FakeRequest(2), feed, None, keepalive=0.05)

        assert await gen.__anext__() == ": connected\n\n"
        assert feed.subscriber_count == 1

        feed.publish(_change("j1", kind="insert"))
        frame = await gen.__anext__()
        assert frame.startswith("data: ")
        assert json.loads(frame[len("data: "):].strip())["record"]["id"] == "j1"

        assert await gen.__anext__() == ": keepalive\n\n"

        chunks = [chunk async for chunk in gen]
        assert chunks == []
        assert feed.subscriber_count == 0

    asyncio.run(scenario())


def test_event_generator_respects_tenant_scope():
    async def scenario():
        feed = ChangeFeed()
        gen = event_generator(FakeRequest(1), feed, ["acme"], keepalive=0.05)
        await gen.__anext__()
        feed.publish(_change("other", tenant="default"))
        assert await gen.__anext__() == ": keepalive\n\n"
        await gen.aclose()
        assert feed.subscriber_count == 0

    asyncio.run(scenario())
