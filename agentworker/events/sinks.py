"""Delivery targets for side-channel events."""

from __future__ import annotations

from typing import Any

import httpx

from agentworker.events.models import BillingUsageEvent, LogStreamEvent, SSEEvent
from agentworker.services import StoreUnavailableError
from agentworker.store.base import QueueBackend


class LogStreamSink:
    """``POST {base_url}/logs/{runId}/events`` on the log-streaming service."""

    name = "log_stream"
    event_type = LogStreamEvent
    failure_level = "warning"

    def __init__(self, client: httpx.AsyncClient, base_url: str) -> None:
        self._client = client
        self._base_url = base_url.rstrip("/")

    async def deliver(self, event: LogStreamEvent) -> None:
        resp = await self._client.post(
            f"{self._base_url}/logs/{event.run_id}/events", json=event.to_dict()
        )
        resp.raise_for_status()


class BillingSink:
    """Pushes usage onto the billing queue for asynchronous aggregation."""

    name = "billing"
    event_type = BillingUsageEvent
    failure_level = "error"

    def __init__(self, queue: QueueBackend, queue_name: str = "billing-events") -> None:
        self._queue = queue
        self._queue_name = queue_name

    async def deliver(self, event: BillingUsageEvent) -> None:
        if not await self._queue.push(self._queue_name, event.to_dict()):
            raise StoreUnavailableError(f"push to {self._queue_name} failed")


class SSESink:
    """``POST {api_url}/api/context/cards/{cardId}/broadcast``.

    The relay is often absent in development, so failures only log at
    debug level.
    """

    name = "sse"
    event_type = SSEEvent
    failure_level = "debug"

    def __init__(self, client: httpx.AsyncClient, api_url: str) -> None:
        self._client = client
        self._api_url = api_url.rstrip("/")

    async def deliver(self, event: SSEEvent) -> None:
        resp = await self._client.post(
            f"{self._api_url}/api/context/cards/{event.card_id}/broadcast",
            json=event.to_dict(),
        )
        resp.raise_for_status()


def describe(sink: Any) -> str:
    return getattr(sink, "name", type(sink).__name__)
