"""Context store: bounded history and shared key-value context."""

from aicollab.context.models import (
    ContextChange,
    ContextMetrics,
    ContextSnapshot,
    ConversationMessage,
    MessageSender,
    ValueMetadata,
)
from aicollab.context.store import ContextStore

__all__ = [
    "ContextChange",
    "ContextMetrics",
    "ContextSnapshot",
    "ContextStore",
    "ConversationMessage",
    "MessageSender",
    "ValueMetadata",
]
