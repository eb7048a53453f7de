"""Context persistence: per-card markdown log and structured conversation store."""

from agentworker.context.context_file import ContextFileService, ConversationEntry
from agentworker.context.conversation import ConversationStore

__all__ = [
    "ContextFileService",
    "ConversationEntry",
    "ConversationStore",
]
