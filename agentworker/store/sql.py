"""SQL-backed queue and state store (PostgreSQL in production, SQLite in tests)."""

from __future__ import annotations

import asyncio
import json
from datetime import datetime, timedelta, timezone
from typing import Any

import structlog
from sqlalchemy import delete, func, or_, select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm import aliased

from agentworker.models import QueueItem as QueueItemRow
from agentworker.models import StateEntry
from agentworker.services import StoreUnavailableError
from agentworker.store.base import QueueItem

log = structlog.get_logger("agentworker.store")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SqlQueue:
    """FIFO queues in the ``queue_items`` table.

    A pop is one ``DELETE … RETURNING`` whose target row is chosen with
    ``FOR UPDATE SKIP LOCKED``: two workers can never return the same row,
    and neither waits on the other's lock. Blocking pops poll until the
    deadline.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        poll_interval: float = 0.2,
    ) -> None:
        self._session_factory = session_factory
        self._poll_interval = poll_interval

    async def push(self, queue: str, payload: Any, priority: int = 0) -> bool:
        try:
            body = json.dumps(payload, default=str)
        except (TypeError, ValueError):
            log.warning("queue.push_failed", queue=queue, reason="unserialisable", exc_info=True)
            return False
        try:
            async with self._session_factory() as session:
                session.add(QueueItemRow(queue=queue, payload=body, priority=priority))
                await session.commit()
        except (SQLAlchemyError, OSError):
            log.warning("queue.push_failed", queue=queue, exc_info=True)
            return False
        return True

    async def _claim(self, queue: str) -> QueueItem | None:
        head = aliased(QueueItemRow)
        oldest = (
            select(head.id)
            .where(head.queue == queue)
            .order_by(head.id)
            .limit(1)
            .with_for_update(skip_locked=True)
            .scalar_subquery()
        )
        stmt = (
            delete(QueueItemRow)
            .where(QueueItemRow.id == oldest)
            .returning(
                QueueItemRow.id,
                QueueItemRow.payload,
                QueueItemRow.priority,
                QueueItemRow.enqueued_at,
            )
        )
        async with self._session_factory() as session:
            row = (await session.execute(stmt)).first()
            await session.commit()
        if row is None:
            return None
        return QueueItem(
            id=str(row.id),
            queue=queue,
            payload=json.loads(row.payload),
            priority=row.priority,
            enqueued_at=row.enqueued_at,
        )

    async def pop(self, queue: str, timeout_seconds: float = 0) -> QueueItem | None:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + max(timeout_seconds, 0)
        while True:
            try:
                item = await self._claim(queue)
            except (SQLAlchemyError, OSError):
                log.warning("queue.pop_failed", queue=queue, exc_info=True)
                return None
            if item is not None:
                return item
            remaining = deadline - loop.time()
            if remaining <= 0:
                return None
            await asyncio.sleep(min(self._poll_interval, remaining))

    async def length(self, queue: str) -> int:
        try:
            async with self._session_factory() as session:
                stmt = select(func.count()).select_from(QueueItemRow).where(
                    QueueItemRow.queue == queue
                )
                return (await session.execute(stmt)).scalar_one()
        except (SQLAlchemyError, OSError):
            log.warning("queue.length_failed", queue=queue, exc_info=True)
            return 0


class SqlStateStore:
    """Key/value records in the ``state_entries`` table."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    @staticmethod
    def _not_expired(now: datetime):
        return or_(StateEntry.expires_at.is_(None), StateEntry.expires_at > now)

    async def get(self, key: str) -> Any | None:
        stmt = select(StateEntry.value).where(
            StateEntry.key == key, self._not_expired(_utcnow())
        )
        try:
            async with self._session_factory() as session:
                return (await session.execute(stmt)).scalar_one_or_none()
        except (SQLAlchemyError, OSError) as exc:
            raise StoreUnavailableError(f"state get failed for {key}") from exc

    async def set(self, key: str, value: Any, ttl_seconds: float | None = None) -> None:
        expires_at = _utcnow() + timedelta(seconds=ttl_seconds) if ttl_seconds is not None else None
        try:
            async with self._session_factory() as session:
                dialect = session.bind.dialect.name
                insert = pg_insert if dialect == "postgresql" else sqlite_insert
                stmt = insert(StateEntry).values(key=key, value=value, expires_at=expires_at)
                stmt = stmt.on_conflict_do_update(
                    index_elements=[StateEntry.key],
                    set_={"value": value, "expires_at": expires_at, "updated_at": func.now()},
                )
                await session.execute(stmt)
                await session.commit()
        except (SQLAlchemyError, OSError) as exc:
            raise StoreUnavailableError(f"state set failed for {key}") from exc

    async def delete(self, key: str) -> None:
        try:
            async with self._session_factory() as session:
                await session.execute(delete(StateEntry).where(StateEntry.key == key))
                await session.commit()
        except (SQLAlchemyError, OSError) as exc:
            raise StoreUnavailableError(f"state delete failed for {key}") from exc

    async def scan(self, prefix: str) -> dict[str, Any]:
        stmt = (
            select(StateEntry.key, StateEntry.value)
            .where(StateEntry.key.startswith(prefix, autoescape=True))
            .where(self._not_expired(_utcnow()))
            .order_by(StateEntry.key)
        )
        try:
            async with self._session_factory() as session:
                rows = (await session.execute(stmt)).all()
        except (SQLAlchemyError, OSError) as exc:
            raise StoreUnavailableError(f"state scan failed for {prefix}") from exc
        return {row.key: row.value for row in rows}

    async def purge_expired(self) -> int:
        stmt = delete(StateEntry).where(
            StateEntry.expires_at.is_not(None), StateEntry.expires_at <= _utcnow()
        )
        try:
            async with self._session_factory() as session:
                result = await session.execute(stmt)
                await session.commit()
        except (SQLAlchemyError, OSError) as exc:
            raise StoreUnavailableError("state purge failed") from exc
        return result.rowcount or 0
