"""queue_items table."""

from datetime import datetime

from sqlalchemy import VARCHAR, BigInteger, DateTime, Index, Integer, Text, func, text
from sqlalchemy.orm import Mapped, mapped_column

from agentworker.core.database import Base


class QueueItem(Base):
    __tablename__ = "queue_items"

    # Autoincrement id gives FIFO order within a queue.
    id: Mapped[int] = mapped_column(
        BigInteger().with_variant(Integer, "sqlite"), primary_key=True, autoincrement=True
    )
    queue: Mapped[str] = mapped_column(VARCHAR(100), nullable=False)
    payload: Mapped[str] = mapped_column(Text, nullable=False)
    priority: Mapped[int] = mapped_column(Integer, nullable=False, server_default=text("0"))
    enqueued_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )

    __table_args__ = (Index("idx_queue_items_queue_id", "queue", "id"),)
