"""Best-effort side-channel events: log stream, billing queue, SSE relay."""

from agentworker.events.models import BillingUsageEvent, LogStreamEvent, SSEEvent
from agentworker.events.outbox import EventOutbox, EventSink, SinkStats
from agentworker.events.sinks import BillingSink, LogStreamSink, SSESink

__all__ = [
    "BillingSink",
    "BillingUsageEvent",
    "EventOutbox",
    "EventSink",
    "LogStreamEvent",
    "LogStreamSink",
    "SSEEvent",
    "SSESink",
    "SinkStats",
]
