"""Queue and key/value store contracts shared by every backend."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Protocol


@dataclass
class QueueItem:
    """One claimed unit of work.

    ``priority`` is carried through push/pop but never used for ordering;
    delivery is strictly FIFO per queue.
    """

    id: str
    queue: str
    payload: Any
    priority: int = 0
    enqueued_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class QueueBackend(Protocol):
    """Named FIFO queues with an atomic pop.

    Implementations fail soft: an unreachable backend makes ``push`` return
    ``False``, ``pop`` return ``None`` and ``length`` return ``0``.
    """

    async def push(self, queue: str, payload: Any, priority: int = 0) -> bool: ...

    async def pop(self, queue: str, timeout_seconds: float = 0) -> QueueItem | None: ...

    async def length(self, queue: str) -> int: ...


class StateStore(Protocol):
    """Key/value records with an optional per-key time-to-live.

    Expired keys are invisible to ``get`` and ``scan``. Values must be
    JSON-serialisable. Unlike queues, stores raise
    :class:`~agentworker.services.StoreUnavailableError` on backend failure.
    """

    async def get(self, key: str) -> Any | None: ...

    async def set(self, key: str, value: Any, ttl_seconds: float | None = None) -> None: ...

    async def delete(self, key: str) -> None: ...

    async def scan(self, prefix: str) -> dict[str, Any]: ...

    async def purge_expired(self) -> int: ...
