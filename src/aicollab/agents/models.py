"""Agent identity, lifecycle state and configuration."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from enum import StrEnum
from typing import TYPE_CHECKING

from pydantic import BaseModel, Field

from aicollab.exceptions import InvalidAgentId

if TYPE_CHECKING:
    from aicollab.config.models import AgentDefaults


@dataclass(frozen=True)
class AgentExchangeId:
    """Opaque registry key for an agent, distinct from its display name."""

    value: uuid.UUID = field(default_factory=uuid.uuid4)

    @classmethod
    def parse(cls, raw: str) -> AgentExchangeId:
        try:
            return cls(uuid.UUID(raw))
        except (ValueError, AttributeError, TypeError):
            raise InvalidAgentId(str(raw)) from None

    def __str__(self) -> str:
        return str(self.value)


class AgentStateKind(StrEnum):
    INITIALIZING = "initializing"
    IDLE = "idle"
    BUSY = "busy"
    PAUSED = "paused"
    SHUTTING_DOWN = "shutting_down"
    TERMINATED = "terminated"
    ERROR = "error"


@dataclass(frozen=True)
class AgentState:
    """Current agent state; ``busy`` carries the task id, ``error`` a message."""

    kind: AgentStateKind
    task_id: str | None = None
    message: str | None = None

    @classmethod
    def initializing(cls) -> AgentState:
        return cls(AgentStateKind.INITIALIZING)

    @classmethod
    def idle(cls) -> AgentState:
        return cls(AgentStateKind.IDLE)

    @classmethod
    def busy(cls, task_id: str) -> AgentState:
        return cls(AgentStateKind.BUSY, task_id=task_id)

    @classmethod
    def paused(cls) -> AgentState:
        return cls(AgentStateKind.PAUSED)

    @classmethod
    def shutting_down(cls) -> AgentState:
        return cls(AgentStateKind.SHUTTING_DOWN)

    @classmethod
    def terminated(cls) -> AgentState:
        return cls(AgentStateKind.TERMINATED)

    @classmethod
    def error(cls, message: str) -> AgentState:
        return cls(AgentStateKind.ERROR, message=message)

    def __str__(self) -> str:
        if self.kind is AgentStateKind.BUSY:
            return f"busy({self.task_id})"
        if self.kind is AgentStateKind.ERROR:
            return f"error({self.message})"
        return self.kind.value


class RetryPolicy(BaseModel, frozen=True):
    max_retries: int = 3
    initial_delay: float = 1.0  # seconds
    backoff_factor: float = 2.0

    @classmethod
    def no_retry(cls) -> RetryPolicy:
        return cls(max_retries=0, initial_delay=0.0, backoff_factor=0.0)

    def delay_for(self, attempt: int) -> float:
        """Delay before retry number *attempt* (1-based)."""
        return self.initial_delay * (self.backoff_factor ** (attempt - 1))


class AgentConfiguration(BaseModel):
    """Runtime-replaceable agent settings, applied through ``initialize``."""

    rate_limit: int = 60  # requests per minute, 0 disables
    max_tokens: int = Field(default=4096, ge=1)  # caps num_predict
    temperature: float = Field(default=0.7, ge=0.0, le=2.0)
    model_id: str | None = None
    timeout: float = Field(default=30.0, gt=0)  # upper bound on any task run by this agent
    retry_policy: RetryPolicy = Field(default_factory=RetryPolicy)
    additional_params: dict[str, str] = Field(default_factory=dict)

    @classmethod
    def from_defaults(
        cls, defaults: AgentDefaults, model_id: str | None = None, temperature: float | None = None
    ) -> AgentConfiguration:
        """Configuration from ``Settings.agent``; *temperature* overrides the default."""
        if temperature is None:
            temperature = defaults.temperature if defaults.temperature is not None else 0.7
        return cls(
            rate_limit=defaults.rate_limit,
            max_tokens=defaults.max_tokens,
            temperature=temperature,
            model_id=model_id,
            timeout=defaults.timeout,
            retry_policy=RetryPolicy(max_retries=defaults.max_retries),
            additional_params=dict(defaults.extra),
        )


@dataclass(frozen=True)
class AgentInitResult:
    success: bool
    message: str | None = None

    @classmethod
    def ok(cls) -> AgentInitResult:
        return cls(True)

    @classmethod
    def failure(cls, message: str) -> AgentInitResult:
        return cls(False, message)
