"""Records held by the context store and its export snapshot."""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, Field, JsonValue

from aicollab.tasks.models import (
    ContextValue,
    Task,
    TaskResult,
    TaskResultStatus,
    TextOutput,
    capability_set,
)


def _now() -> datetime:
    return datetime.now(UTC)


class MessageSender(StrEnum):
    USER = "user"
    AGENT = "agent"
    SYSTEM = "system"


class ConversationMessage(BaseModel, frozen=True):
    """One entry of a conversation history."""

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    sender: MessageSender
    content: str
    timestamp: datetime = Field(default_factory=_now)
    metadata: dict[str, str] = Field(default_factory=dict)


@dataclass(frozen=True)
class ContextChange:
    """Delivered to subscribers whenever a stored value changes."""

    key: str
    old_value: ContextValue | None
    new_value: ContextValue | None
    timestamp: datetime
    context_id: str


class ValueMetadata(BaseModel, frozen=True):
    type_name: str
    timestamp: datetime
    version: int = 1


class ContextMetrics(BaseModel):
    task_count: int = 0
    result_count: int = 0
    message_count: int = 0
    creation_time: datetime = Field(default_factory=_now)


# ---------------------------------------------------------------------------
# Export snapshot
# ---------------------------------------------------------------------------


class TaskRecord(BaseModel):
    """Serializable projection of a Task. The task context is not exported."""

    id: str
    description: str
    query: str
    required_capabilities: list[str]
    priority: int
    timeout: float
    state: dict[str, Any]
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_task(cls, task: Task) -> TaskRecord:
        return cls(
            id=task.id,
            description=task.description,
            query=task.query,
            required_capabilities=sorted(str(c) for c in task.required_capabilities),
            priority=int(task.priority),
            timeout=task.timeout,
            state=task.state.model_dump(mode="json"),
            created_at=task.created_at,
            updated_at=task.updated_at,
        )

    def to_task(self) -> Task:
        return Task(
            id=self.id,
            description=self.description,
            query=self.query,
            required_capabilities=capability_set(self.required_capabilities),
            priority=self.priority,
            timeout=self.timeout,
            state=self.state,
            created_at=self.created_at,
            updated_at=self.updated_at,
        )


class ResultRecord(BaseModel):
    """Serializable projection of a TaskResult. Only text output survives."""

    result_id: str
    task_id: str
    status: TaskResultStatus
    output_text: str | None = None
    error: str | None = None
    completed_at: datetime
    execution_duration: float | None = None
    agent_id: str | None = None

    @classmethod
    def from_result(cls, result: TaskResult) -> ResultRecord:
        return cls(
            result_id=result.result_id,
            task_id=result.task_id,
            status=result.status,
            output_text=result.text if result.output is not None else None,
            error=result.error,
            completed_at=result.completed_at,
            execution_duration=result.execution_duration,
            agent_id=result.agent_id,
        )

    def to_result(self) -> TaskResult:
        return TaskResult(
            result_id=self.result_id,
            task_id=self.task_id,
            status=self.status,
            output=TextOutput(text=self.output_text) if self.output_text is not None else None,
            error=self.error,
            completed_at=self.completed_at,
            execution_duration=self.execution_duration,
            agent_id=self.agent_id,
        )


class ContextSnapshot(BaseModel):
    context_id: str
    created_at: datetime
    last_accessed_at: datetime
    max_history_size: int
    tasks: list[TaskRecord] = Field(default_factory=list)
    results: list[ResultRecord] = Field(default_factory=list)
    conversations: dict[str, list[ConversationMessage]] = Field(default_factory=dict)
    global_context: dict[str, JsonValue] = Field(default_factory=dict)
    metrics: ContextMetrics = Field(default_factory=ContextMetrics)
