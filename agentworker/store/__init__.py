"""Durable queue and ephemeral state storage."""

from __future__ import annotations

from dataclasses import dataclass

from sqlalchemy.ext.asyncio import AsyncEngine

from agentworker.core.config import Settings
from agentworker.core.database import create_engine, create_session_factory, create_tables
from agentworker.store.base import QueueBackend, QueueItem, StateStore
from agentworker.store.memory import MemoryQueue, MemoryStateStore
from agentworker.store.sql import SqlQueue, SqlStateStore

__all__ = [
    "MemoryQueue",
    "MemoryStateStore",
    "QueueBackend",
    "QueueItem",
    "SqlQueue",
    "SqlStateStore",
    "StateStore",
    "Stores",
    "open_stores",
]


@dataclass
class Stores:
    """The queue and state backends of one process."""

    queue: QueueBackend
    state: StateStore
    engine: AsyncEngine | None = None

    async def close(self) -> None:
        if self.engine is not None:
            await self.engine.dispose()


async def open_stores(settings: Settings) -> Stores:
    """Build the backends named by ``settings.store_backend``."""
    if settings.store_backend == "memory":
        return Stores(queue=MemoryQueue(), state=MemoryStateStore())
    if settings.store_backend != "sql":
        raise ValueError(f"unknown store backend: {settings.store_backend!r}")

    engine = create_engine(settings.database_url)
    await create_tables(engine)
    factory = create_session_factory(engine)
    return Stores(
        queue=SqlQueue(factory, poll_interval=settings.queue_poll_interval),
        state=SqlStateStore(factory),
        engine=engine,
    )
