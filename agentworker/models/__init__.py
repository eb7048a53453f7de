"""SQLAlchemy ORM models: one file per table."""

from agentworker.models.queue_item import QueueItem
from agentworker.models.state_entry import StateEntry

__all__ = [
    "QueueItem",
    "StateEntry",
]
