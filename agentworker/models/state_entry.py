"""state_entries table: key/value records with optional expiry."""

from datetime import datetime
from typing import Any, Optional

from sqlalchemy import JSON, VARCHAR, DateTime, Index
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from agentworker.core.database import Base, TimestampMixin


class StateEntry(TimestampMixin, Base):
    __tablename__ = "state_entries"

    key: Mapped[str] = mapped_column(VARCHAR(255), primary_key=True)
    value: Mapped[Any] = mapped_column(JSON().with_variant(JSONB, "postgresql"), nullable=False)
    expires_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    __table_args__ = (Index("idx_state_entries_expires_at", "expires_at"),)
