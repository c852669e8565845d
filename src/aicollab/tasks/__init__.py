"""Tasks: capabilities, task lifecycle and results."""

from aicollab.tasks.capabilities import (
    BuiltinCapability,
    Capability,
    has_required_capabilities,
    missing_capabilities,
)
from aicollab.tasks.models import (
    ContextValue,
    ConversationOutput,
    ConversationTurn,
    ResourceUsage,
    StructuredOutput,
    Task,
    TaskPriority,
    TaskResult,
    TaskResultStatus,
    TaskState,
    TaskStateKind,
    TextOutput,
    capability_set,
)

__all__ = [
    "BuiltinCapability",
    "Capability",
    "ContextValue",
    "ConversationOutput",
    "ConversationTurn",
    "ResourceUsage",
    "StructuredOutput",
    "Task",
    "TaskPriority",
    "TaskResult",
    "TaskResultStatus",
    "TaskState",
    "TaskStateKind",
    "TextOutput",
    "capability_set",
    "has_required_capabilities",
    "missing_capabilities",
]
