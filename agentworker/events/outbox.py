"""Event outbox: failure-isolated fan-out to the side-channel sinks."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Any, Protocol

import structlog

from agentworker.events.models import Event, LogStreamEvent, SSEEvent
from agentworker.events.sinks import describe

log = structlog.get_logger("agentworker.events")

_LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warning": logging.WARNING,
    "error": logging.ERROR,
}


class EventSink(Protocol):
    name: str
    event_type: type
    failure_level: str

    async def deliver(self, event: Any) -> None: ...


@dataclass
class SinkStats:
    delivered: int = 0
    failed: int = 0
    last_error: str | None = None


class EventOutbox:
    """Publishes each event to every sink that accepts its type.

    A sink failure (exception or timeout) is logged and counted, never
    raised: side channels must not change a run's outcome or block it for
    longer than ``timeout`` per sink.
    """

    def __init__(self, sinks: Sequence[EventSink], timeout: float = 5.0) -> None:
        self._sinks = list(sinks)
        self._timeout = timeout
        self._stats: dict[str, SinkStats] = {describe(s): SinkStats() for s in self._sinks}

    async def publish(self, event: Event) -> bool:
        """Return ``True`` when every matching sink accepted the event."""
        ok = True
        for sink in self._sinks:
            if not isinstance(event, sink.event_type):
                continue
            name = describe(sink)
            stats = self._stats.setdefault(name, SinkStats())
            try:
                await asyncio.wait_for(sink.deliver(event), timeout=self._timeout)
            except Exception as exc:
                ok = False
                stats.failed += 1
                stats.last_error = f"{type(exc).__name__}: {exc}"
                log.log(
                    _LEVELS.get(sink.failure_level, logging.WARNING),
                    "outbox.delivery_failed",
                    sink=name,
                    event_type=type(event).__name__,
                    error=stats.last_error,
                )
            else:
                stats.delivered += 1
        return ok

    async def log_event(self, run_id: str, type_: str, **data: Any) -> bool:
        return await self.publish(LogStreamEvent(run_id=run_id, type=type_, data=data))  # type: ignore[arg-type]

    async def broadcast(self, card_id: str, type_: str, data: dict[str, Any]) -> bool:
        return await self.publish(SSEEvent(card_id=card_id, type=type_, data=data))

    def stats(self) -> dict[str, dict[str, Any]]:
        return {
            name: {"delivered": s.delivered, "failed": s.failed, "lastError": s.last_error}
            for name, s in self._stats.items()
        }
