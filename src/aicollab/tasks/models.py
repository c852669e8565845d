"""Pydantic models for tasks and task results."""

from __future__ import annotations

import logging
import uuid
from collections.abc import Iterable
from datetime import UTC, datetime
from enum import IntEnum, StrEnum
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, Field, model_validator
from typing_extensions import TypeAliasType

from aicollab.exceptions import InvalidStateTransition
from aicollab.tasks.capabilities import Capability

logger = logging.getLogger("aicollab.tasks.models")

# Closed set of values a task or context map may carry, at any nesting depth.
# Bytes are the only non-JSON member and are base64-encoded on export.
ContextValue = TypeAliasType(
    "ContextValue",
    "Union[str, bool, int, float, bytes, list[ContextValue], dict[str, ContextValue], None]",
)


def _now() -> datetime:
    return datetime.now(UTC)


def _generate_id() -> str:
    return str(uuid.uuid4())


class TaskPriority(IntEnum):
    """Advisory priority; ordered low < normal < high < critical."""

    LOW = 0
    NORMAL = 1
    HIGH = 2
    CRITICAL = 3


class TaskResultStatus(StrEnum):
    COMPLETED = "completed"
    PARTIALLY_COMPLETED = "partially_completed"
    FAILED = "failed"
    TIMED_OUT = "timed_out"
    CANCELLED = "cancelled"


_ERROR_STATUSES = {TaskResultStatus.FAILED, TaskResultStatus.TIMED_OUT}


# ---------------------------------------------------------------------------
# Task state machine
# ---------------------------------------------------------------------------


class TaskStateKind(StrEnum):
    CREATED = "created"
    QUEUED = "queued"
    EXECUTING = "executing"
    COMPLETED = "completed"
    FAILED = "failed"


_STATE_RANK = {
    TaskStateKind.CREATED: 0,
    TaskStateKind.QUEUED: 1,
    TaskStateKind.EXECUTING: 2,
    TaskStateKind.COMPLETED: 3,
    TaskStateKind.FAILED: 3,
}


class TaskState(BaseModel, frozen=True):
    """Lifecycle state. ``completed`` carries a result status, ``failed`` a message."""

    kind: TaskStateKind = TaskStateKind.CREATED
    result_status: TaskResultStatus | None = None
    message: str | None = None

    @classmethod
    def created(cls) -> TaskState:
        return cls(kind=TaskStateKind.CREATED)

    @classmethod
    def queued(cls) -> TaskState:
        return cls(kind=TaskStateKind.QUEUED)

    @classmethod
    def executing(cls) -> TaskState:
        return cls(kind=TaskStateKind.EXECUTING)

    @classmethod
    def completed(cls, status: TaskResultStatus = TaskResultStatus.COMPLETED) -> TaskState:
        return cls(kind=TaskStateKind.COMPLETED, result_status=status)

    @classmethod
    def failed(cls, message: str) -> TaskState:
        return cls(kind=TaskStateKind.FAILED, message=message)

    @property
    def is_terminal(self) -> bool:
        return self.kind in (TaskStateKind.COMPLETED, TaskStateKind.FAILED)

    def can_transition_to(self, target: TaskState) -> bool:
        """Forward-only: no state is re-entered and terminal states are final."""
        if self.is_terminal:
            return False
        return _STATE_RANK[target.kind] > _STATE_RANK[self.kind]

    def __str__(self) -> str:
        if self.kind is TaskStateKind.COMPLETED:
            return f"completed({self.result_status})"
        if self.kind is TaskStateKind.FAILED:
            return f"failed({self.message})"
        return self.kind.value


# ---------------------------------------------------------------------------
# Task
# ---------------------------------------------------------------------------


class Task(BaseModel):
    """A unit of work matched to agents by required capabilities."""

    id: str = Field(default_factory=_generate_id, frozen=True)
    description: str = ""
    query: str
    context: dict[str, ContextValue] = Field(default_factory=dict)
    required_capabilities: frozenset[Capability] = frozenset()
    priority: TaskPriority = TaskPriority.NORMAL
    timeout: float = 30.0  # seconds
    state: TaskState = Field(default_factory=TaskState.created)
    created_at: datetime = Field(default_factory=_now)
    updated_at: datetime = Field(default_factory=_now)

    def update_state(self, new_state: TaskState) -> None:
        """Move to *new_state* and bump ``updated_at``.

        Raises :class:`InvalidStateTransition` for backward moves or moves
        out of a terminal state.
        """
        if not self.state.can_transition_to(new_state):
            raise InvalidStateTransition(str(self.state), str(new_state))
        logger.debug("Task %s: %s -> %s", self.id, self.state, new_state)
        self.state = new_state
        self.updated_at = _now()

    def has_timed_out(self, now: datetime | None = None) -> bool:
        """Pure check of ``now - created_at > timeout``; ignores ``state``."""
        now = now or _now()
        return (now - self.created_at).total_seconds() > self.timeout

    def requires(self, capability: Capability) -> bool:
        return capability in self.required_capabilities

    def with_context(self, **values: ContextValue) -> Task:
        """Return a copy whose context also carries *values* (same id)."""
        return self.model_copy(update={"context": {**self.context, **values}})


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------


class TextOutput(BaseModel, frozen=True):
    kind: Literal["text"] = "text"
    text: str


class StructuredOutput(BaseModel, frozen=True):
    kind: Literal["structured"] = "structured"
    data: dict[str, ContextValue]


class ConversationTurn(BaseModel, frozen=True):
    role: str
    content: str


class ConversationOutput(BaseModel, frozen=True):
    kind: Literal["conversation"] = "conversation"
    messages: list[ConversationTurn]


TaskOutput = Annotated[
    TextOutput | StructuredOutput | ConversationOutput, Field(discriminator="kind")
]


class ResourceUsage(BaseModel, frozen=True):
    input_tokens: int = 0
    output_tokens: int = 0
    total_tokens: int = 0
    cpu_usage: float | None = None
    memory_usage_mb: float | None = None

    @model_validator(mode="before")
    @classmethod
    def _default_total(cls, data: Any) -> Any:
        if isinstance(data, dict) and data.get("total_tokens") is None:
            data = {**data, "total_tokens": data.get("input_tokens", 0) + data.get("output_tokens", 0)}
        return data


class TaskResult(BaseModel, frozen=True):
    """Immutable outcome of one task execution attempt."""

    result_id: str = Field(default_factory=_generate_id)
    task_id: str
    status: TaskResultStatus
    output: TaskOutput | None = None
    error: str | None = None
    completed_at: datetime = Field(default_factory=_now)
    execution_duration: float | None = None
    resource_usage: ResourceUsage | None = None
    agent_id: str | None = None
    metadata: dict[str, ContextValue] = Field(default_factory=dict)

    @model_validator(mode="after")
    def _error_iff_failure(self) -> TaskResult:
        if self.status in _ERROR_STATUSES and not self.error:
            raise ValueError(f"status {self.status} requires an error message")
        if self.status not in _ERROR_STATUSES and self.error is not None:
            raise ValueError(f"status {self.status} must not carry an error")
        return self

    # -- Factories -------------------------------------------------------------

    @classmethod
    def success(cls, task_id: str, text: str, **kwargs: Any) -> TaskResult:
        return cls(task_id=task_id, status=TaskResultStatus.COMPLETED, output=TextOutput(text=text), **kwargs)

    @classmethod
    def failure(cls, task_id: str, error: str, **kwargs: Any) -> TaskResult:
        return cls(task_id=task_id, status=TaskResultStatus.FAILED, error=error, **kwargs)

    @classmethod
    def timed_out(cls, task_id: str, error: str, **kwargs: Any) -> TaskResult:
        return cls(task_id=task_id, status=TaskResultStatus.TIMED_OUT, error=error, **kwargs)

    @classmethod
    def cancelled(cls, task_id: str, **kwargs: Any) -> TaskResult:
        return cls(task_id=task_id, status=TaskResultStatus.CANCELLED, **kwargs)

    # -- Accessors -------------------------------------------------------------

    @property
    def text(self) -> str:
        """Output rendered as text (empty when there is none)."""
        match self.output:
            case TextOutput(text=text):
                return text
            case StructuredOutput(data=data):
                return str(data)
            case ConversationOutput(messages=messages):
                return "\n".join(f"{m.role}: {m.content}" for m in messages)
        return ""

    @property
    def succeeded(self) -> bool:
        return self.status in (TaskResultStatus.COMPLETED, TaskResultStatus.PARTIALLY_COMPLETED)

    def with_agent(self, agent_id: str) -> TaskResult:
        return self.model_copy(update={"agent_id": agent_id})


def capability_set(capabilities: Iterable[Capability | str]) -> frozenset[Capability]:
    """Build a capability set from tags or ``Capability.parse`` strings."""
    return frozenset(c if isinstance(c, Capability) else Capability.parse(c) for c in capabilities)
