"""Tests for EventOutbox and the HTTP/queue sinks."""

from __future__ import annotations

import asyncio
import json

import httpx
import pytest

from agentworker.events.models import BillingUsageEvent, LogStreamEvent, SSEEvent
from agentworker.events.outbox import EventOutbox
from agentworker.events.sinks import BillingSink, LogStreamSink, SSESink


def _billing() -> BillingUsageEvent:
    return BillingUsageEvent(
        workspace_id="ws-1",
        project_id="proj-1",
        agent_id="qa",
        run_id="rec-1",
        provider="anthropic",
        model="claude-sonnet-4-20250514",
        input_tokens=10,
        output_tokens=5,
        cost=0.1,
        price=0.2,
        card_id="card-1",
    )


class _Sink:
    failure_level = "error"

    def __init__(self, name, event_type, behaviour=None):
        self.name = name
        self.event_type = event_type
        self.behaviour = behaviour
        self.seen: list = []

    async def deliver(self, event):
        if self.behaviour == "raise":
            raise RuntimeError("boom")
        if self.behaviour == "hang":
            await asyncio.sleep(10)
        self.seen.append(event)


@pytest.mark.asyncio
async def test_routes_events_by_type():
    log_sink = _Sink("log", LogStreamEvent)
    sse_sink = _Sink("sse", SSEEvent)
    outbox = EventOutbox([log_sink, sse_sink])

    assert await outbox.log_event("run-1", "status", status="running") is True
    assert await outbox.broadcast("card-1", "agent_complete", {"runId": "run-1"}) is True

    assert [e.type for e in log_sink.seen] == ["status"]
    assert log_sink.seen[0].data == {"status": "running"}
    assert [e.type for e in sse_sink.seen] == ["agent_complete"]


@pytest.mark.asyncio
async def test_failing_sink_is_isolated_and_counted():
    broken = _Sink("broken", LogStreamEvent, "raise")
    healthy = _Sink("healthy", LogStreamEvent)
    outbox = EventOutbox([broken, healthy])

    assert await outbox.log_event("run-1", "log", message="hi") is False
    assert len(healthy.seen) == 1

    stats = outbox.stats()
    assert stats["broken"] == {"delivered": 0, "failed": 1, "lastError": "RuntimeError: boom"}
    assert stats["healthy"]["delivered"] == 1


@pytest.mark.asyncio
async def test_slow_sink_times_out():
    outbox = EventOutbox([_Sink("slow", SSEEvent, "hang")], timeout=0.05)
    assert await outbox.broadcast("card-1", "message", {}) is False
    assert outbox.stats()["slow"]["failed"] == 1


@pytest.mark.asyncio
async def test_log_stream_sink_posts_event():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = str(request.url)
        seen["body"] = json.loads(request.content)
        return httpx.Response(202)

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        sink = LogStreamSink(client, "http://logs:8003/")
        await sink.deliver(LogStreamEvent(run_id="run-1", type="completion", data={"status": "completed"}))

    assert seen["url"] == "http://logs:8003/logs/run-1/events"
    assert seen["body"]["runId"] == "run-1"
    assert seen["body"]["type"] == "completion"
    assert seen["body"]["data"] == {"status": "completed"}


@pytest.mark.asyncio
async def test_sse_sink_raises_on_http_error():
    async with httpx.AsyncClient(transport=httpx.MockTransport(lambda r: httpx.Response(500))) as client:
        sink = SSESink(client, "http://api:3010")
        with pytest.raises(httpx.HTTPStatusError):
            await sink.deliver(SSEEvent(card_id="card-1", type="message", data={}))


@pytest.mark.asyncio
async def test_billing_sink_pushes_to_queue(memory_queue):
    await BillingSink(memory_queue).deliver(_billing())
    item = await memory_queue.pop("billing-events")
    assert item.payload["inputTokens"] == 10
    assert item.payload["cardId"] == "card-1"
    assert item.payload["price"] == 0.2


@pytest.mark.asyncio
async def test_billing_push_failure_counts_as_delivery_failure():
    class DownQueue:
        async def push(self, queue, payload, priority=0):
            return False

    outbox = EventOutbox([BillingSink(DownQueue())])
    assert await outbox.publish(_billing()) is False
    assert outbox.stats()["billing"]["failed"] == 1
