"""In-process queue and state store for single-process deployments and tests."""

from __future__ import annotations

import asyncio
import itertools
import json
import time
from collections import defaultdict, deque
from typing import Any, Callable

import structlog

from agentworker.store.base import QueueItem

log = structlog.get_logger("agentworker.store")


def _detach(value: Any) -> Any:
    """Copy a value through JSON, as a persistent backend would."""
    return json.loads(json.dumps(value, default=str))


class MemoryQueue:
    """FIFO queues backed by deques.

    Pop happens within a single event-loop step, which makes it atomic with
    respect to every other coroutine sharing the queue.
    """

    def __init__(self) -> None:
        self._queues: dict[str, deque[QueueItem]] = defaultdict(deque)
        self._ids = itertools.count(1)
        self._cond: asyncio.Condition | None = None

    def _condition(self) -> asyncio.Condition:
        # Created lazily so the queue can be built outside a running loop.
        if self._cond is None:
            self._cond = asyncio.Condition()
        return self._cond

    async def push(self, queue: str, payload: Any, priority: int = 0) -> bool:
        try:
            detached = _detach(payload)
        except (TypeError, ValueError):
            log.warning("queue.push_failed", queue=queue, exc_info=True)
            return False
        item = QueueItem(id=str(next(self._ids)), queue=queue, payload=detached, priority=priority)
        cond = self._condition()
        async with cond:
            self._queues[queue].append(item)
            cond.notify_all()
        return True

    async def pop(self, queue: str, timeout_seconds: float = 0) -> QueueItem | None:
        items = self._queues[queue]
        if items or timeout_seconds <= 0:
            return items.popleft() if items else None

        cond = self._condition()
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout_seconds
        async with cond:
            while not items:
                remaining = deadline - loop.time()
                if remaining <= 0:
                    return None
                try:
                    await asyncio.wait_for(cond.wait(), timeout=remaining)
                except asyncio.TimeoutError:
                    return None
            return items.popleft()

    async def length(self, queue: str) -> int:
        return len(self._queues[queue])


class MemoryStateStore:
    """Dict-backed :class:`~agentworker.store.base.StateStore`.

    ``clock`` returns seconds and is injectable so tests can move time.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._data: dict[str, tuple[Any, float | None]] = {}

    def _live(self, key: str) -> tuple[Any, float | None] | None:
        entry = self._data.get(key)
        if entry is None:
            return None
        _, expires_at = entry
        if expires_at is not None and expires_at <= self._clock():
            return None
        return entry

    async def get(self, key: str) -> Any | None:
        entry = self._live(key)
        return _detach(entry[0]) if entry else None

    async def set(self, key: str, value: Any, ttl_seconds: float | None = None) -> None:
        expires_at = self._clock() + ttl_seconds if ttl_seconds is not None else None
        self._data[key] = (_detach(value), expires_at)

    async def delete(self, key: str) -> None:
        self._data.pop(key, None)

    async def scan(self, prefix: str) -> dict[str, Any]:
        result = {}
        for key in list(self._data):
            if key.startswith(prefix):
                entry = self._live(key)
                if entry is not None:
                    result[key] = _detach(entry[0])
        return result

    async def purge_expired(self) -> int:
        expired = [k for k in list(self._data) if self._live(k) is None]
        for key in expired:
            del self._data[key]
        return len(expired)
